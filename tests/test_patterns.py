"""Tests for the pattern table loader (io/patterns.py)."""

from __future__ import annotations

import numpy as np
import pytest

from fsi_encoder.errors import ConfigurationError
from fsi_encoder.io.patterns import (
    PRIOR_FILENAME,
    discover_subjects,
    load_participant,
    load_region,
    load_region_prior,
)


def _write_participant(region_dir, subject, data):
    np.savez(region_dir / f"sub-{subject}.npz", betas=data.betas, run=data.runs, chord=data.chords)


@pytest.fixture()
def data_dir(tmp_path, rng, region_prior, make_participant):
    region_dir = tmp_path / "BA3b"
    region_dir.mkdir()
    np.save(region_dir / PRIOR_FILENAME, region_prior)
    for subject in ("02", "01"):
        data = make_participant(rng.standard_normal((31, 6)), chords=range(1, 6), subject=subject)
        _write_participant(region_dir, subject, data)
    return tmp_path


class TestLoader:

    def test_discover(self, data_dir):
        assert discover_subjects(data_dir, "BA3b") == ["01", "02"]

    def test_discover_missing_region(self, data_dir):
        with pytest.raises(FileNotFoundError):
            discover_subjects(data_dir, "BA4a")

    def test_load_participant(self, data_dir):
        data = load_participant(data_dir, "BA3b", "01")
        assert data.subject == "01"
        assert data.betas.shape == (10, 6)
        np.testing.assert_array_equal(data.run_ids, [1, 2])

    def test_missing_participant(self, data_dir):
        with pytest.raises(FileNotFoundError):
            load_participant(data_dir, "BA3b", "99")

    def test_missing_arrays(self, data_dir):
        np.savez(data_dir / "BA3b" / "sub-03.npz", betas=np.ones((2, 2)))
        with pytest.raises(ConfigurationError, match="missing arrays"):
            load_participant(data_dir, "BA3b", "03")

    def test_prior_square(self, data_dir, region_prior):
        np.testing.assert_allclose(load_region_prior(data_dir, "BA3b"), region_prior)

    def test_prior_lower_triangle(self, data_dir, region_prior):
        np.save(data_dir / "BA3b" / PRIOR_FILENAME, region_prior[np.triu_indices(31)])
        np.testing.assert_allclose(load_region_prior(data_dir, "BA3b"), region_prior)

    def test_prior_wrong_size(self, data_dir):
        np.save(data_dir / "BA3b" / PRIOR_FILENAME, np.eye(5))
        with pytest.raises(ConfigurationError):
            load_region_prior(data_dir, "BA3b")

    def test_load_region_skips_bad_participants(self, data_dir):
        np.savez(data_dir / "BA3b" / "sub-03.npz", betas=np.ones((2, 2)))
        participants, prior = load_region(data_dir, "BA3b")
        assert [p.subject for p in participants] == ["01", "02"]
        assert prior.shape == (31, 31)

    def test_load_region_subset(self, data_dir):
        participants, _ = load_region(data_dir, "BA3b", subjects=["02", "07"])
        assert [p.subject for p in participants] == ["02"]
