"""
Encoding Model Base Class
=========================

Closed model family and the abstract interface every member implements.

Design Principles:
    - ``ModelKind`` enumerates the nine models; string values are the
      names used in configs and result tables, ``model_id`` runs 1..9 in
      family order
    - One ``EncodingModel`` subclass per kind, each carrying only what it
      needs (only ``1finger_nonlinear`` has parameters)
    - ``fit_fold(context) → ModelFoldFit``: a model sees the training rows
      of one fold and returns 31 chord-indexed predicted patterns
    - The 31-condition training estimate is computed once per fold by the
      driver and handed in through the context

Family::

    id  name                    features used for estimation
    1   null                    31 conditions (averaged by finger count)
    2   1finger                 5 singles
    3   2finger                 singles + pairs
    4   3finger                 + triplets
    5   4finger                 + quadruplets
    6   1finger_nonlinear       5 singles, 4 fitted scales
    7   2finger_distantPairs    singles + 6 distant pairs
    8   2finger_adjacentPairs   singles + 4 adjacent pairs
    9   noise_ceiling           31 conditions
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

import numpy as np

from fsi_encoder.models.ridge import FeatureEstimate


class ModelKind(str, Enum):
    NULL = "null"
    ONE_FINGER = "1finger"
    TWO_FINGER = "2finger"
    THREE_FINGER = "3finger"
    FOUR_FINGER = "4finger"
    ONE_FINGER_NONLINEAR = "1finger_nonlinear"
    TWO_FINGER_DISTANT = "2finger_distantPairs"
    TWO_FINGER_ADJACENT = "2finger_adjacentPairs"
    NOISE_CEILING = "noise_ceiling"

    @property
    def model_id(self) -> int:
        return list(ModelKind).index(self) + 1

    @property
    def design(self) -> Optional[str]:
        """Feature design estimated for this model (None for condition-based models)."""
        if self in (ModelKind.NULL, ModelKind.NOISE_CEILING):
            return None
        if self is ModelKind.ONE_FINGER_NONLINEAR:
            return "1finger"
        return self.value


def model_names() -> list[str]:
    return [k.value for k in ModelKind]


@dataclass(frozen=True)
class FoldContext:
    """Training inputs of one fold, shared read-only by all models.

    Attributes
    ----------
    betas : np.ndarray, shape (N, P)
        Training rows.
    chords : np.ndarray, shape (N,)
        Chord id of each training row.
    region_prior : np.ndarray, shape (31, 31)
        Region-level chord covariance.
    conditions : FeatureEstimate or None
        31-condition estimate of the training rows; None when it could
        not be computed.
    estimator_kwargs : dict
        Forwarded to :class:`fsi_encoder.models.ridge.PriorRidgeEstimator`.
    """

    betas: np.ndarray
    chords: np.ndarray
    region_prior: np.ndarray
    conditions: Optional[FeatureEstimate] = None
    estimator_kwargs: dict[str, Any] = field(default_factory=dict)

    @property
    def observed_rows(self) -> np.ndarray:
        """0-based chord rows present in the training data, ascending."""
        return np.unique(self.chords) - 1


@dataclass(frozen=True)
class ModelFoldFit:
    """One model's fit on one fold.

    Attributes
    ----------
    predicted : np.ndarray, shape (31, P)
        Predicted chord patterns.
    estimate : FeatureEstimate
        Estimate the prediction was built from (source of the
        regularisation hyperparameters).
    params : np.ndarray or None
        Fitted nonlinear parameters; None for linear models.
    warnings : tuple[tuple[str, str], ...]
        ``(category, message)`` pairs raised during the fit.
    """

    predicted: np.ndarray
    estimate: FeatureEstimate
    params: Optional[np.ndarray] = None
    warnings: tuple[tuple[str, str], ...] = ()


class EncodingModel(ABC):
    """Abstract base class for the chord encoding models."""

    kind: ModelKind

    @property
    def name(self) -> str:
        return self.kind.value

    @property
    def model_id(self) -> int:
        return self.kind.model_id

    @property
    def n_params(self) -> int:
        """Number of nonlinear parameters fitted per fold."""
        return 0

    @property
    def requires_condition_estimate(self) -> bool:
        return False

    @abstractmethod
    def fit_fold(self, context: FoldContext) -> ModelFoldFit:
        """Fit on one fold's training rows and predict all 31 chords.

        Parameters
        ----------
        context : FoldContext
            Training inputs of the fold.

        Returns
        -------
        ModelFoldFit
        """
        ...

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r})"
