"""
Pattern Prediction
==================

Chord-level predicted patterns for each member of the model family, and
the nonlinear scaling fit of the ``1finger_nonlinear`` model.

Design Principles:
    - Every prediction is ``X · U`` with a 31-row, chord-indexed ``X``
    - ``null``: each chord gets the mean training pattern of all chords
      with the same number of stimulated fingers (``X = X0 · pinv(X0)``
      applied to the 31 training condition patterns)
    - ``noise_ceiling``: the training condition patterns themselves
    - ``1finger_nonlinear``: single-finger design with the rows of
      k-finger chords (k = 2..5) scaled by ``exp(theta[k-2])``; the
      exponential keeps every scale positive
    - Patterns are compared after removing each channel's mean across
      chords
"""

from __future__ import annotations

from typing import Optional

import numpy as np

from fsi_encoder.design.chords import (
    N_CHORDS,
    N_DIGITS,
    design_matrix,
    digit_count_indicator,
    digit_counts,
)
from fsi_encoder.errors import ConfigurationError, OptimizationNonConvergence
from fsi_encoder.models.base import ModelKind
from fsi_encoder.models.optimizers import OptimizationResult, ParameterOptimizer
from fsi_encoder.utils.logging import get_logger

logger = get_logger(__name__)

N_NONLINEAR_PARAMS = N_DIGITS - 1
NONLINEAR_THETA0 = np.log([0.9, 0.8, 0.7, 0.6])


def null_projection() -> np.ndarray:
    """31 × 31 averaging operator over chords with equal finger counts."""
    X0 = digit_count_indicator()
    return X0 @ np.linalg.pinv(X0)


def nonlinear_design(theta: np.ndarray) -> np.ndarray:
    """Single-finger design with per-finger-count log scales.

    Parameters
    ----------
    theta : np.ndarray, shape (4,)
        Log scale for chords of 2, 3, 4 and 5 fingers.
    """
    theta = np.asarray(theta, dtype=np.float64).ravel()
    if theta.size != N_NONLINEAR_PARAMS:
        raise ConfigurationError(
            f"1finger_nonlinear needs {N_NONLINEAR_PARAMS} parameters, got {theta.size}"
        )
    scale = np.concatenate([[1.0], np.exp(theta)])
    return design_matrix("1finger") * scale[digit_counts() - 1][:, None]


def prediction_matrix(kind: ModelKind, theta: Optional[np.ndarray] = None) -> np.ndarray:
    """31-row prediction design for a model.

    For ``null`` the operator acts on the 31 condition patterns; for the
    feature models it acts on their feature patterns; ``noise_ceiling`` is
    the identity.
    """
    kind = ModelKind(kind)
    if kind is ModelKind.NULL:
        return null_projection()
    if kind is ModelKind.NOISE_CEILING:
        return np.eye(N_CHORDS)
    if kind is ModelKind.ONE_FINGER_NONLINEAR:
        if theta is None:
            raise ConfigurationError("1finger_nonlinear prediction requires parameters")
        return nonlinear_design(theta)
    return design_matrix(kind.design)


def predict_patterns(
    patterns: np.ndarray,
    kind: ModelKind,
    theta: Optional[np.ndarray] = None,
) -> np.ndarray:
    """Predicted 31 × P chord patterns ``X · U``.

    Parameters
    ----------
    patterns : np.ndarray
        Feature patterns (F × P) for feature models, or the 31 training
        condition patterns for ``null`` / ``noise_ceiling``.
    kind : ModelKind
        Model to predict with.
    theta : np.ndarray or None
        Log scales, only for ``1finger_nonlinear``.
    """
    X = prediction_matrix(kind, theta)
    patterns = np.asarray(patterns, dtype=np.float64)
    if patterns.shape[0] != X.shape[1]:
        raise ConfigurationError(
            f"Model '{ModelKind(kind).value}' expects {X.shape[1]} pattern rows, "
            f"got {patterns.shape[0]}"
        )
    return X @ patterns


def centre_channels(Y: np.ndarray) -> np.ndarray:
    """Remove each channel's mean across rows."""
    return Y - Y.mean(axis=0, keepdims=True)


def nonlinear_loss(
    theta: np.ndarray,
    features: np.ndarray,
    conditions: np.ndarray,
    rows: Optional[np.ndarray] = None,
) -> float:
    """Residual sum of squares of the nonlinear model's prediction.

    Parameters
    ----------
    theta : np.ndarray, shape (4,)
        Log scales.
    features : np.ndarray, shape (5, P)
        Single-finger feature patterns.
    conditions : np.ndarray, shape (31, P)
        Training condition patterns the prediction is fitted to.
    rows : np.ndarray or None
        Chord rows (0-based) entering the loss; all 31 when None.
    """
    pred = nonlinear_design(theta) @ features
    target = conditions
    if rows is not None:
        pred, target = pred[rows], target[rows]
    resid = centre_channels(target) - centre_channels(pred)
    return float((resid**2).sum())


def fit_nonlinear_params(
    features: np.ndarray,
    conditions: np.ndarray,
    optimizer: ParameterOptimizer,
    theta0: np.ndarray = NONLINEAR_THETA0,
    rows: Optional[np.ndarray] = None,
) -> OptimizationResult:
    """Fit the four log scales of ``1finger_nonlinear`` by minimising RSS.

    Non-convergence is logged as an ``OptimizationNonConvergence`` and the
    best point found is returned; check ``result.converged``.
    """
    theta0 = np.asarray(theta0, dtype=np.float64)
    if theta0.size != N_NONLINEAR_PARAMS:
        raise ConfigurationError(
            f"theta0 must have {N_NONLINEAR_PARAMS} entries, got {theta0.size}"
        )

    result = optimizer.minimize(
        lambda th: nonlinear_loss(th, features, conditions, rows), theta0
    )
    if not result.converged:
        logger.warning(
            "%s | optimizer=%s n_iter=%d rss=%.4g (%s)",
            OptimizationNonConvergence.__name__, optimizer.name,
            result.n_iter, result.fun, result.message,
        )
    return result


def digit_count_activity(Y_pred: np.ndarray, centre: bool = False) -> np.ndarray:
    """Average predicted activity per number of stimulated fingers.

    Parameters
    ----------
    Y_pred : np.ndarray, shape (31, P)
        Predicted chord patterns.
    centre : bool
        Remove each channel's mean across chords first.

    Returns
    -------
    np.ndarray, shape (5,)
        Mean over chords with 1..5 fingers and over channels.
    """
    if centre:
        Y_pred = centre_channels(Y_pred)
    group_mean = np.linalg.pinv(digit_count_indicator()) @ Y_pred
    return group_mean.mean(axis=1)
