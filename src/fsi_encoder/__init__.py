"""
fsi_encoder
===========

Cross-validated encoding models for multivariate activity patterns evoked
by finger-chord stimulation.

Design Principles:
    - Config-driven: regions, participants, models and compute settings
      live in YAML and are passed explicitly to the driver
    - Closed model family: nine named models from ``null`` to
      ``noise_ceiling``, each fitted through the same fold interface
    - Prior-calibrated estimation: feature patterns are posterior means
      under a region-level chord covariance
    - Reproducible: no randomness in fitting, provenance stored with every
      result table

Package Layout::

    cli/          Typer CLI commands (fit, summarize, list-models)
    design/       Chord set and feature design matrices
    eval/         Splits, fit metrics, cross-validation driver, normalisation
    io/           Pattern loading and result persistence
    models/       Model family, prior projection, ridge estimator, optimizers
    utils/        Logging
"""

__version__ = "0.1.0"
