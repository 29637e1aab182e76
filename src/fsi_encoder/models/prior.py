"""
Prior Covariance Handling
=========================

Validation of the region-level chord covariance ``G`` and its projection
into the feature space of a design matrix.

Design Principles:
    - ``G`` is estimated once per region from independent data and is
      read-only here; every function returns a new array
    - Projection is the pseudo-inverse composition
      ``pinv(Z0) · G · pinv(Z0)ᵗ``, applied only to designs with full
      column rank (a rank-deficient design would silently collapse
      features onto each other)
    - Priors stored in vector form (stacked lower triangle) are rebuilt
      with :func:`square_from_lower_triangle`
"""

from __future__ import annotations

import numpy as np

from fsi_encoder.errors import ConfigurationError

_SYMMETRY_RTOL = 1e-8
_PSD_RTOL = 1e-8


def validate_prior(G: np.ndarray, n_conditions: int | None = None) -> np.ndarray:
    """Check that ``G`` is a usable covariance matrix.

    Parameters
    ----------
    G : np.ndarray
        Candidate covariance.
    n_conditions : int or None
        Required size; skipped when None.

    Returns
    -------
    np.ndarray
        ``G`` as float64, exactly symmetrised.

    Raises
    ------
    ConfigurationError
        If ``G`` is not square, has the wrong size, contains non-finite
        values, is not symmetric, or has clearly negative eigenvalues.
    """
    G = np.asarray(G, dtype=np.float64)
    if G.ndim != 2 or G.shape[0] != G.shape[1]:
        raise ConfigurationError(f"Prior covariance must be square, got shape {G.shape}")
    if n_conditions is not None and G.shape[0] != n_conditions:
        raise ConfigurationError(
            f"Prior covariance is {G.shape[0]}×{G.shape[1]}, expected "
            f"{n_conditions}×{n_conditions}"
        )
    if not np.all(np.isfinite(G)):
        raise ConfigurationError("Prior covariance contains non-finite values")

    scale = max(float(np.abs(G).max()), np.finfo(float).tiny)
    if np.abs(G - G.T).max() > _SYMMETRY_RTOL * scale:
        raise ConfigurationError("Prior covariance is not symmetric")
    G = (G + G.T) / 2

    eigvals = np.linalg.eigvalsh(G)
    if eigvals.min() < -_PSD_RTOL * max(abs(eigvals).max(), np.finfo(float).tiny):
        raise ConfigurationError(
            f"Prior covariance is not positive semi-definite "
            f"(min eigenvalue {eigvals.min():.3g})"
        )
    return G


def project_prior(G: np.ndarray, design: np.ndarray) -> np.ndarray:
    """Project a condition-space covariance into a design's feature space.

    Parameters
    ----------
    G : np.ndarray, shape (C, C)
        Condition (chord) covariance.
    design : np.ndarray, shape (C, F)
        Condition × feature design matrix, full column rank.

    Returns
    -------
    np.ndarray, shape (F, F)
        ``pinv(design) @ G @ pinv(design).T``, symmetrised.

    Raises
    ------
    ConfigurationError
        If the design is not 2-D, does not match ``G``, or is rank deficient.
    """
    design = np.asarray(design, dtype=np.float64)
    if design.ndim != 2:
        raise ConfigurationError(f"Design matrix must be 2-D, got shape {design.shape}")
    G = validate_prior(G, n_conditions=design.shape[0])

    n_features = design.shape[1]
    rank = np.linalg.matrix_rank(design)
    if rank < n_features:
        raise ConfigurationError(
            f"Design matrix is rank deficient (rank {rank} < {n_features} features)"
        )

    Z_pinv = np.linalg.pinv(design)
    G_feat = Z_pinv @ G @ Z_pinv.T
    return (G_feat + G_feat.T) / 2


def square_from_lower_triangle(vec: np.ndarray) -> np.ndarray:
    """Rebuild a symmetric K × K matrix from its stacked lower triangle.

    Entries are ordered column by column through the lower triangle
    (diagonal included): ``G[0,0], G[1,0], ..., G[K-1,0], G[1,1], ...``.
    This is the same sequence as the upper triangle read row by row.

    Raises
    ------
    ConfigurationError
        If the vector length is not a triangular number.
    """
    vec = np.asarray(vec, dtype=np.float64).ravel()
    m = vec.size
    K = int(np.floor(np.sqrt(2 * m)))
    if K * (K + 1) // 2 != m:
        raise ConfigurationError(f"Bad lower-triangle vector length: {m}")

    G = np.zeros((K, K))
    G[np.triu_indices(K)] = vec
    return G + G.T - np.diag(np.diag(G))
