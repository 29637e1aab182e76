"""
Model Family
============

Concrete encoding models and the factory that builds the family from a
list of names.

Design Principles:
    - ``null`` and ``noise_ceiling`` reuse the fold's 31-condition estimate;
      they estimate nothing themselves
    - Linear feature models estimate their own patterns against their own
      design and projected prior
    - ``1finger_nonlinear`` estimates single-finger patterns, then fits four
      log scales against the condition estimate with an injected
      ``ParameterOptimizer``
    - ``build_model_family()`` returns models in family order regardless of
      the order names were given in

Usage::

    from fsi_encoder.models.family import build_model_family
    from fsi_encoder.models.optimizers import PowellOptimizer

    models = build_model_family(["null", "1finger", "noise_ceiling"])
    models = build_model_family("all", optimizer=PowellOptimizer())
"""

from __future__ import annotations

from typing import Iterable, Optional, Sequence

import numpy as np

from fsi_encoder.errors import ConfigurationError, OptimizationNonConvergence
from fsi_encoder.models.base import EncodingModel, FoldContext, ModelFoldFit, ModelKind
from fsi_encoder.models.optimizers import NelderMeadOptimizer, ParameterOptimizer
from fsi_encoder.models.predict import (
    N_NONLINEAR_PARAMS,
    NONLINEAR_THETA0,
    fit_nonlinear_params,
    predict_patterns,
)
from fsi_encoder.models.ridge import FeatureEstimate, estimate_feature_patterns
from fsi_encoder.utils.logging import get_logger

logger = get_logger(__name__)


def _require_conditions(model: EncodingModel, context: FoldContext) -> FeatureEstimate:
    if context.conditions is None:
        raise ConfigurationError(f"Model '{model.name}' needs the 31-condition training estimate")
    return context.conditions


class NullModel(EncodingModel):
    """Finger-count averages of the training condition patterns."""

    kind = ModelKind.NULL

    @property
    def requires_condition_estimate(self) -> bool:
        return True

    def fit_fold(self, context: FoldContext) -> ModelFoldFit:
        conditions = _require_conditions(self, context)
        predicted = predict_patterns(conditions.patterns, self.kind)
        return ModelFoldFit(predicted=predicted, estimate=conditions)


class NoiseCeilingModel(EncodingModel):
    """Training condition patterns used as their own prediction."""

    kind = ModelKind.NOISE_CEILING

    @property
    def requires_condition_estimate(self) -> bool:
        return True

    def fit_fold(self, context: FoldContext) -> ModelFoldFit:
        conditions = _require_conditions(self, context)
        return ModelFoldFit(predicted=conditions.patterns.copy(), estimate=conditions)


class FeatureModel(EncodingModel):
    """Linear model over one of the chord feature designs."""

    def __init__(self, kind: ModelKind | str):
        kind = ModelKind(kind)
        if kind.design is None or kind is ModelKind.ONE_FINGER_NONLINEAR:
            raise ConfigurationError(f"'{kind.value}' is not a linear feature model")
        self.kind = kind

    def fit_fold(self, context: FoldContext) -> ModelFoldFit:
        estimate = estimate_feature_patterns(
            context.betas,
            context.chords,
            context.region_prior,
            features=self.kind.design,
            **context.estimator_kwargs,
        )
        predicted = predict_patterns(estimate.patterns, self.kind)
        return ModelFoldFit(predicted=predicted, estimate=estimate)


class NonlinearFingerModel(EncodingModel):
    """Single-finger model with fitted per-finger-count scaling.

    Parameters
    ----------
    theta0 : array-like, shape (4,)
        Starting log scales for chords of 2..5 fingers.
    optimizer : ParameterOptimizer or None
        Search strategy; Nelder-Mead when None.
    """

    kind = ModelKind.ONE_FINGER_NONLINEAR

    def __init__(
        self,
        theta0: Optional[Sequence[float]] = None,
        optimizer: Optional[ParameterOptimizer] = None,
    ):
        theta0 = NONLINEAR_THETA0 if theta0 is None else np.asarray(theta0, dtype=np.float64)
        if theta0.shape != (N_NONLINEAR_PARAMS,):
            raise ConfigurationError(
                f"theta0 must have {N_NONLINEAR_PARAMS} entries, got shape {theta0.shape}"
            )
        self.theta0 = theta0
        self.optimizer = optimizer or NelderMeadOptimizer()

    @property
    def n_params(self) -> int:
        return N_NONLINEAR_PARAMS

    @property
    def requires_condition_estimate(self) -> bool:
        return True

    def fit_fold(self, context: FoldContext) -> ModelFoldFit:
        conditions = _require_conditions(self, context)
        estimate = estimate_feature_patterns(
            context.betas,
            context.chords,
            context.region_prior,
            features=self.kind.design,
            **context.estimator_kwargs,
        )
        result = fit_nonlinear_params(
            estimate.patterns,
            conditions.patterns,
            self.optimizer,
            theta0=self.theta0,
            rows=context.observed_rows,
        )
        warnings = ()
        if not result.converged:
            warnings = (
                (
                    OptimizationNonConvergence.__name__,
                    f"{self.optimizer.name} stopped after {result.n_iter} iterations: {result.message}",
                ),
            )
        predicted = predict_patterns(estimate.patterns, self.kind, result.x)
        return ModelFoldFit(
            predicted=predicted, estimate=estimate, params=result.x, warnings=warnings
        )


MODEL_FAMILY: tuple[ModelKind, ...] = tuple(ModelKind)


def get_model(
    name: ModelKind | str,
    optimizer: Optional[ParameterOptimizer] = None,
    theta0: Optional[Sequence[float]] = None,
) -> EncodingModel:
    """Construct one model by name.

    Raises
    ------
    ConfigurationError
        If ``name`` is not a member of the family.
    """
    try:
        kind = ModelKind(name)
    except ValueError:
        raise ConfigurationError(
            f"Unknown model: '{name}'. Available: {[k.value for k in MODEL_FAMILY]}"
        ) from None

    if kind is ModelKind.NULL:
        return NullModel()
    if kind is ModelKind.NOISE_CEILING:
        return NoiseCeilingModel()
    if kind is ModelKind.ONE_FINGER_NONLINEAR:
        return NonlinearFingerModel(theta0=theta0, optimizer=optimizer)
    return FeatureModel(kind)


def build_model_family(
    names: Iterable[str] | str = "all",
    optimizer: Optional[ParameterOptimizer] = None,
    theta0: Optional[Sequence[float]] = None,
) -> list[EncodingModel]:
    """Build the requested models in family order.

    Parameters
    ----------
    names : iterable of str or ``'all'``
        Model names; duplicates are ignored.
    optimizer : ParameterOptimizer or None
        Strategy for ``1finger_nonlinear``.
    theta0 : sequence of float or None
        Starting point for ``1finger_nonlinear``.

    Returns
    -------
    list[EncodingModel]
    """
    if isinstance(names, str):
        if names != "all":
            names = [names]
        else:
            names = [k.value for k in MODEL_FAMILY]

    models = {}
    for name in names:
        model = get_model(name, optimizer=optimizer, theta0=theta0)
        models[model.kind] = model
    if not models:
        raise ConfigurationError("No models selected")

    ordered = [models[k] for k in MODEL_FAMILY if k in models]
    logger.debug("Model family: %s", [m.name for m in ordered])
    return ordered
