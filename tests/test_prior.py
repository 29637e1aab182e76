"""Tests for prior validation and projection (models/prior.py)."""

from __future__ import annotations

import numpy as np
import pytest

from fsi_encoder.design.chords import design_matrix
from fsi_encoder.errors import ConfigurationError
from fsi_encoder.models.prior import project_prior, square_from_lower_triangle, validate_prior


class TestValidatePrior:

    def test_accepts_psd(self, region_prior):
        G = validate_prior(region_prior, n_conditions=31)
        np.testing.assert_array_equal(G, G.T)

    def test_rejects_wrong_size(self, region_prior):
        with pytest.raises(ConfigurationError):
            validate_prior(region_prior[:30, :30], n_conditions=31)

    def test_rejects_non_square(self):
        with pytest.raises(ConfigurationError):
            validate_prior(np.ones((3, 4)))

    def test_rejects_asymmetric(self):
        G = np.eye(3)
        G[0, 1] = 0.5
        with pytest.raises(ConfigurationError):
            validate_prior(G)

    def test_rejects_negative_eigenvalue(self):
        with pytest.raises(ConfigurationError):
            validate_prior(np.diag([1.0, -0.5, 1.0]))

    def test_rejects_nan(self):
        G = np.eye(3)
        G[1, 1] = np.nan
        with pytest.raises(ConfigurationError):
            validate_prior(G)


class TestProjectPrior:

    def test_round_trip(self, rng):
        """A prior generated in feature space is recovered by projection."""
        Z0 = design_matrix("2finger")
        B = rng.standard_normal((15, 15))
        G_feat = B @ B.T
        G = Z0 @ G_feat @ Z0.T
        np.testing.assert_allclose(project_prior(G, Z0), G_feat, rtol=1e-8, atol=1e-8)

    def test_shape(self, region_prior):
        assert project_prior(region_prior, design_matrix("4finger")).shape == (30, 30)

    def test_rank_deficient_design(self, region_prior):
        Z0 = design_matrix("1finger")
        Z0 = np.column_stack([Z0, Z0[:, 0]])
        with pytest.raises(ConfigurationError, match="rank deficient"):
            project_prior(region_prior, Z0)

    def test_design_size_mismatch(self, region_prior):
        with pytest.raises(ConfigurationError):
            project_prior(region_prior, design_matrix("1finger")[:20])


class TestLowerTriangle:

    def test_reconstruction(self, rng):
        B = rng.standard_normal((4, 4))
        G = B + B.T
        vec = np.concatenate([G[j:, j] for j in range(4)])
        np.testing.assert_array_equal(square_from_lower_triangle(vec), G)

    def test_region_prior_size(self, region_prior):
        vec = np.concatenate([region_prior[j:, j] for j in range(31)])
        assert vec.size == 496
        np.testing.assert_allclose(square_from_lower_triangle(vec), region_prior)

    def test_bad_length(self):
        with pytest.raises(ConfigurationError):
            square_from_lower_triangle(np.ones(5))
