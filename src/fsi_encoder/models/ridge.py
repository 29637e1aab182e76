"""
Prior-Calibrated Ridge Estimator
================================

Bayesian-ridge estimate of latent feature patterns from noisy chord × run
observations, regularised by an empirical prior covariance.

Generative model (channels i.i.d.)::

    Y = Z U + E,    U ~ N(0, s · G),    E ~ N(0, σ · I)

Design Principles:
    - Two variance components: signal scale ``s`` and noise scale ``σ``,
      fitted by maximising the marginal likelihood of the training rows
    - Run means are not modelled away (no run-effect term)
    - Everything runs through one eigendecomposition of ``Z G Zᵗ``;
      ``s`` has a closed-form profile solution, so the search is 1-D over
      ``log(σ / s)``: a coarse grid scan, then a bounded Brent refinement
      inside the best grid cell
    - Posterior mean ``U = s G Zᵗ (s Z G Zᵗ + σ I)⁻¹ Y`` is evaluated on the
      positive eigen-subspace (exact, since ``G Zᵗ`` vanishes on the rest)
    - Refuses to fit when the signal rank exceeds the channel count
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import numpy as np
from scipy import linalg
from scipy.optimize import minimize_scalar

from fsi_encoder.design.chords import N_CHORDS, design_matrix, validate_chord_ids
from fsi_encoder.errors import ConfigurationError, DegenerateEstimate, InsufficientChannels
from fsi_encoder.models.prior import project_prior, validate_prior
from fsi_encoder.utils.logging import get_logger

logger = get_logger(__name__)

CONDITION_FEATURES = "condition"


@dataclass(frozen=True)
class FeatureEstimate:
    """Result of one estimator fit.

    Attributes
    ----------
    patterns : np.ndarray, shape (F, P)
        Posterior mean pattern per feature.
    log_signal, log_noise : float
        Fitted log variance components (``log s``, ``log σ``).
    log_likelihood : float
        Maximised marginal log-likelihood.
    converged : bool
        Whether the hyperparameter search met its tolerance.
    rank : int
        Rank of the signal covariance ``Z G Zᵗ`` over the training rows.
    """

    patterns: np.ndarray
    log_signal: float
    log_noise: float
    log_likelihood: float
    converged: bool
    rank: int

    @property
    def theta(self) -> np.ndarray:
        """Raw hyperparameter pair ``[log s, log σ]``."""
        return np.array([self.log_signal, self.log_noise])

    @property
    def shrinkage(self) -> float:
        """Regularisation ratio ``λ = σ / s``."""
        return float(np.exp(self.log_noise - self.log_signal))


class PriorRidgeEstimator:
    """Variance-component ridge regression with a fixed prior shape.

    Parameters
    ----------
    prior : np.ndarray, shape (F, F)
        Prior feature covariance ``G`` (PSD). Only its shape matters; the
        overall scale is fitted.
    features : str
        Name of the feature set, for logging and error messages.
    log_ratio_bounds : tuple[float, float]
        Search interval for ``log(σ / s)``.
    max_iter : int
        Iteration budget of the bounded scalar search.
    xatol : float
        Absolute tolerance on ``log(σ / s)``.
    n_grid : int
        Points of the coarse scan that brackets the scalar search; the
        profile likelihood is not always unimodal in ``log(σ / s)``.
    """

    def __init__(
        self,
        prior: np.ndarray,
        features: str = "",
        log_ratio_bounds: tuple[float, float] = (-30.0, 30.0),
        max_iter: int = 500,
        xatol: float = 1e-6,
        n_grid: int = 61,
    ):
        self.prior = validate_prior(prior)
        self.features = features
        self.log_ratio_bounds = (float(log_ratio_bounds[0]), float(log_ratio_bounds[1]))
        self.max_iter = max_iter
        self.xatol = xatol
        self.n_grid = n_grid
        self._estimate: Optional[FeatureEstimate] = None

        if self.log_ratio_bounds[0] >= self.log_ratio_bounds[1]:
            raise ConfigurationError(f"Bad log-ratio bounds: {log_ratio_bounds}")
        if n_grid < 3:
            raise ConfigurationError(f"n_grid must be at least 3, got {n_grid}")

    def fit(self, Y: np.ndarray, Z: np.ndarray) -> FeatureEstimate:
        """Fit variance components and compute the posterior mean patterns.

        Parameters
        ----------
        Y : np.ndarray, shape (N, P)
            Training observations (rows = chord × run instances).
        Z : np.ndarray, shape (N, F)
            Row-wise feature design.

        Returns
        -------
        FeatureEstimate

        Raises
        ------
        InsufficientChannels
            If ``rank(Z G Zᵗ)`` exceeds the number of channels ``P``.
        DegenerateEstimate
            If the training data have zero total sum of squares.
        """
        Y = np.asarray(Y, dtype=np.float64)
        Z = np.asarray(Z, dtype=np.float64)
        if Y.ndim == 1:
            Y = Y.reshape(-1, 1)

        N, P = Y.shape
        if Z.shape != (N, self.prior.shape[0]):
            raise ConfigurationError(
                f"Design shape {Z.shape} does not match Y rows ({N}) and "
                f"prior size ({self.prior.shape[0]})"
            )

        A = Z @ self.prior @ Z.T
        d, Q = linalg.eigh((A + A.T) / 2)
        tol = max(d.max(), 0.0) * N * np.finfo(float).eps
        positive = d > tol
        rank = int(positive.sum())
        if rank == 0:
            raise ConfigurationError(
                f"Prior for features '{self.features}' carries no signal on the training rows"
            )
        if rank > P:
            raise InsufficientChannels(rank, P, self.features)
        d = np.where(positive, d, 0.0)

        # Per-eigenvector sums of squares, pooled over channels
        b = ((Q.T @ Y) ** 2).sum(axis=1)
        if not b.sum() > 0:
            raise DegenerateEstimate("Training patterns have zero sum of squares")

        n_obs = N * P

        def profile_nll(log_ratio: float) -> float:
            w = d + np.exp(log_ratio)
            signal = (b / w).sum() / n_obs
            return 0.5 * (n_obs * np.log(signal) + P * np.log(w).sum() + n_obs)

        grid = np.linspace(*self.log_ratio_bounds, self.n_grid)
        best = int(np.argmin([profile_nll(x) for x in grid]))
        bracket = (grid[max(best - 1, 0)], grid[min(best + 1, self.n_grid - 1)])

        res = minimize_scalar(
            profile_nll,
            bounds=bracket,
            method="bounded",
            options={"xatol": self.xatol, "maxiter": self.max_iter},
        )
        log_ratio = float(res.x)
        ratio = np.exp(log_ratio)
        signal = (b / (d + ratio)).sum() / n_obs
        log_signal = float(np.log(signal))

        Qp = Q[:, positive]
        patterns = self.prior @ Z.T @ (Qp / (d[positive] + ratio)) @ (Qp.T @ Y)

        estimate = FeatureEstimate(
            patterns=patterns,
            log_signal=log_signal,
            log_noise=log_signal + log_ratio,
            log_likelihood=float(-res.fun - 0.5 * n_obs * np.log(2 * np.pi)),
            converged=bool(res.success),
            rank=rank,
        )
        self._estimate = estimate

        logger.debug(
            "prior_ridge | features=%s Y=(%d,%d) F=%d rank=%d log_s=%.3f log_noise=%.3f lambda=%.4g",
            self.features or "?", N, P, Z.shape[1], rank,
            estimate.log_signal, estimate.log_noise, estimate.shrinkage,
        )
        if log_ratio <= self.log_ratio_bounds[0] + 10 * self.xatol:
            logger.debug("prior_ridge | features=%s shrinkage at lower bound (noise-free fit)", self.features)
        return estimate

    @property
    def estimate(self) -> FeatureEstimate:
        if self._estimate is None:
            raise RuntimeError("Estimator not fitted.")
        return self._estimate

    @property
    def patterns(self) -> np.ndarray:
        return self.estimate.patterns


def feature_prior(region_prior: np.ndarray, features: str) -> np.ndarray:
    """Prior covariance in the feature space of ``features``."""
    if features == CONDITION_FEATURES:
        return validate_prior(region_prior, n_conditions=N_CHORDS)
    return project_prior(region_prior, design_matrix(features))


def feature_design(chords: np.ndarray, features: str) -> np.ndarray:
    """Row-wise design: one row of the chord-level design per observation."""
    chords = validate_chord_ids(chords)
    if features == CONDITION_FEATURES:
        Z0 = np.eye(N_CHORDS)
    else:
        Z0 = design_matrix(features)
    return Z0[chords - 1]


def estimate_feature_patterns(
    betas: np.ndarray,
    chords: np.ndarray,
    region_prior: np.ndarray,
    features: str = CONDITION_FEATURES,
    **estimator_kwargs,
) -> FeatureEstimate:
    """Estimate feature patterns for one training set.

    Parameters
    ----------
    betas : np.ndarray, shape (N, P)
        Training observations.
    chords : np.ndarray, shape (N,)
        Chord id (1..31) of each row.
    region_prior : np.ndarray, shape (31, 31)
        Region-level chord covariance.
    features : str
        ``'condition'`` for the unconstrained 31-chord basis, or a design
        name from :func:`fsi_encoder.design.chords.design_names`.
    **estimator_kwargs
        Forwarded to :class:`PriorRidgeEstimator`.

    Returns
    -------
    FeatureEstimate
        ``patterns`` has 31 rows for ``'condition'``, otherwise one row per
        design column.
    """
    Z = feature_design(chords, features)
    prior = feature_prior(region_prior, features)
    estimator = PriorRidgeEstimator(prior, features=features, **estimator_kwargs)
    return estimator.fit(betas, Z)
