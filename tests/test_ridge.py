"""Tests for the prior-calibrated ridge estimator (models/ridge.py).

Key properties:
  - noise-free data with repeated rows: posterior mean equals the true
    feature patterns
  - estimation is deterministic (identical inputs → identical outputs)
  - feature rank above the channel count raises InsufficientChannels
"""

from __future__ import annotations

import pickle

import numpy as np
import pytest

from fsi_encoder.design.chords import design_matrix
from fsi_encoder.errors import ConfigurationError, DegenerateEstimate, InsufficientChannels
from fsi_encoder.models.prior import project_prior
from fsi_encoder.models.ridge import (
    PriorRidgeEstimator,
    estimate_feature_patterns,
    feature_design,
    feature_prior,
)


def _single_finger_rows(U, n_runs=2, n_reps=1):
    chords = np.tile(np.repeat(np.arange(1, 6), n_reps), n_runs)
    return U[chords - 1], chords


class TestFeatureDesign:

    def test_condition_basis(self):
        Z = feature_design(np.array([3, 1, 31]), "condition")
        assert Z.shape == (3, 31)
        np.testing.assert_array_equal(Z.argmax(axis=1), [2, 0, 30])

    def test_design_rows(self):
        Z = feature_design(np.array([6, 6]), "2finger")
        np.testing.assert_array_equal(Z, design_matrix("2finger")[[5, 5]])

    def test_feature_prior(self, region_prior):
        np.testing.assert_allclose(
            feature_prior(region_prior, "1finger"),
            project_prior(region_prior, design_matrix("1finger")),
        )
        assert feature_prior(region_prior, "condition").shape == (31, 31)


class TestRecovery:

    def test_noise_free_recovers_patterns(self, rng, region_prior):
        U = rng.standard_normal((5, 8))
        Y, chords = _single_finger_rows(U, n_runs=2)
        est = estimate_feature_patterns(Y, chords, region_prior, features="1finger")
        np.testing.assert_allclose(est.patterns, U, atol=1e-6)
        assert est.rank == 5
        assert est.shrinkage < 1e-6

    def test_noise_free_condition_estimate(self, rng, region_prior):
        chord_patterns = rng.standard_normal((31, 40))
        chords = np.tile(np.arange(1, 32), 2)
        est = estimate_feature_patterns(chord_patterns[chords - 1], chords, region_prior)
        np.testing.assert_allclose(est.patterns, chord_patterns, atol=1e-6)

    def test_noisy_data_shrinks(self, rng, region_prior):
        U = rng.standard_normal((5, 50))
        Y, chords = _single_finger_rows(U, n_runs=4)
        Y = Y + rng.standard_normal(Y.shape)
        est = estimate_feature_patterns(Y, chords, region_prior, features="1finger")
        assert est.shrinkage > 1e-6
        assert np.isfinite(est.log_likelihood)
        assert est.converged
        # shrinkage pulls estimates towards zero relative to the plain average
        raw = np.vstack([Y[chords == c].mean(axis=0) for c in range(1, 6)])
        assert (est.patterns**2).sum() < (raw**2).sum()

    def test_theta_and_shrinkage(self, rng, region_prior):
        U = rng.standard_normal((5, 20))
        Y, chords = _single_finger_rows(U, n_runs=3)
        Y = Y + 0.5 * rng.standard_normal(Y.shape)
        est = estimate_feature_patterns(Y, chords, region_prior, features="1finger")
        assert est.theta.shape == (2,)
        np.testing.assert_allclose(est.shrinkage, np.exp(est.theta[1] - est.theta[0]))

    def test_idempotent(self, rng, region_prior):
        U = rng.standard_normal((5, 12))
        Y, chords = _single_finger_rows(U, n_runs=3)
        Y = Y + 0.3 * rng.standard_normal(Y.shape)
        a = estimate_feature_patterns(Y, chords, region_prior, features="1finger")
        b = estimate_feature_patterns(Y, chords, region_prior, features="1finger")
        np.testing.assert_array_equal(a.patterns, b.patterns)
        np.testing.assert_array_equal(a.theta, b.theta)
        assert a.shrinkage == b.shrinkage


class TestFailures:

    def test_insufficient_channels(self, rng, region_prior):
        U = rng.standard_normal((5, 3))
        Y, chords = _single_finger_rows(U)
        with pytest.raises(InsufficientChannels) as info:
            estimate_feature_patterns(Y, chords, region_prior, features="1finger")
        assert info.value.required_rank == 5
        assert info.value.n_channels == 3
        assert isinstance(info.value, ConfigurationError)

    def test_insufficient_channels_pickles(self):
        exc = pickle.loads(pickle.dumps(InsufficientChannels(15, 4, "2finger")))
        assert (exc.required_rank, exc.n_channels, exc.features) == (15, 4, "2finger")

    def test_zero_data(self, region_prior):
        chords = np.tile(np.arange(1, 6), 2)
        with pytest.raises(DegenerateEstimate):
            estimate_feature_patterns(np.zeros((10, 6)), chords, region_prior, features="1finger")

    def test_design_shape_mismatch(self, region_prior):
        est = PriorRidgeEstimator(np.eye(5))
        with pytest.raises(ConfigurationError):
            est.fit(np.ones((4, 6)), np.ones((4, 3)))

    def test_bad_bounds(self):
        with pytest.raises(ConfigurationError):
            PriorRidgeEstimator(np.eye(3), log_ratio_bounds=(5.0, -5.0))

    def test_not_fitted(self):
        with pytest.raises(RuntimeError):
            PriorRidgeEstimator(np.eye(3)).patterns
