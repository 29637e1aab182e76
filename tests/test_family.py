"""Tests for the model family (models/base.py, models/family.py)."""

from __future__ import annotations

import numpy as np
import pytest

from fsi_encoder.errors import ConfigurationError
from fsi_encoder.models.base import FoldContext, ModelKind, model_names
from fsi_encoder.models.family import (
    FeatureModel,
    NonlinearFingerModel,
    NullModel,
    build_model_family,
    get_model,
)
from fsi_encoder.models.optimizers import NelderMeadOptimizer, PowellOptimizer
from fsi_encoder.models.ridge import CONDITION_FEATURES, estimate_feature_patterns


@pytest.fixture()
def context(rng, region_prior, make_participant):
    data = make_participant(rng.standard_normal((31, 40)), n_runs=2, noise=0.3)
    conditions = estimate_feature_patterns(
        data.betas, data.chords, region_prior, features=CONDITION_FEATURES
    )
    return FoldContext(
        betas=data.betas, chords=data.chords, region_prior=region_prior, conditions=conditions
    )


class TestModelKind:

    def test_ids_in_family_order(self):
        assert model_names() == [
            "null",
            "1finger",
            "2finger",
            "3finger",
            "4finger",
            "1finger_nonlinear",
            "2finger_distantPairs",
            "2finger_adjacentPairs",
            "noise_ceiling",
        ]
        assert [k.model_id for k in ModelKind] == list(range(1, 10))

    def test_designs(self):
        assert ModelKind.NULL.design is None
        assert ModelKind.NOISE_CEILING.design is None
        assert ModelKind.ONE_FINGER_NONLINEAR.design == "1finger"
        assert ModelKind.TWO_FINGER_ADJACENT.design == "2finger_adjacentPairs"


class TestFactory:

    def test_all(self):
        models = build_model_family("all")
        assert [m.name for m in models] == model_names()
        assert [m.n_params for m in models] == [0, 0, 0, 0, 0, 4, 0, 0, 0]

    def test_family_order_and_duplicates(self):
        models = build_model_family(["noise_ceiling", "1finger", "null", "1finger"])
        assert [m.name for m in models] == ["null", "1finger", "noise_ceiling"]

    def test_single_name(self):
        assert [m.name for m in build_model_family("3finger")] == ["3finger"]

    def test_unknown(self):
        with pytest.raises(ConfigurationError, match="Unknown model"):
            get_model("5finger")

    def test_empty(self):
        with pytest.raises(ConfigurationError):
            build_model_family([])

    def test_optimizer_injected(self):
        opt = PowellOptimizer()
        model = build_model_family(["1finger_nonlinear"], optimizer=opt)[0]
        assert model.optimizer is opt

    def test_not_a_feature_model(self):
        with pytest.raises(ConfigurationError):
            FeatureModel("noise_ceiling")

    def test_bad_theta0(self):
        with pytest.raises(ConfigurationError):
            NonlinearFingerModel(theta0=[0.0, 0.0, 0.0])


class TestFitFold:

    def test_condition_models_need_estimate(self, context):
        bare = FoldContext(context.betas, context.chords, context.region_prior)
        with pytest.raises(ConfigurationError):
            NullModel().fit_fold(bare)

    @pytest.mark.parametrize("name", ["null", "1finger", "2finger_distantPairs", "noise_ceiling"])
    def test_prediction_shape(self, context, name):
        fit = get_model(name).fit_fold(context)
        assert fit.predicted.shape == (31, 40)
        assert fit.params is None
        assert fit.warnings == ()

    def test_noise_ceiling_returns_conditions(self, context):
        fit = get_model("noise_ceiling").fit_fold(context)
        np.testing.assert_array_equal(fit.predicted, context.conditions.patterns)
        assert fit.estimate is context.conditions

    def test_nonlinear_params(self, context):
        fit = get_model("1finger_nonlinear").fit_fold(context)
        assert fit.params.shape == (4,)
        assert fit.estimate.rank == 5

    def test_nonlinear_non_convergence_flagged(self, context):
        model = NonlinearFingerModel(optimizer=NelderMeadOptimizer(max_iter=1))
        fit = model.fit_fold(context)
        assert [cat for cat, _ in fit.warnings] == ["OptimizationNonConvergence"]
        assert np.all(np.isfinite(fit.predicted))
