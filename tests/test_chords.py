"""Tests for the chord design library (design/chords.py).

Key properties:
  - 31 chords in canonical order: singles, pairs, triplets, quadruplets,
    then all five fingers
  - design shapes: 1finger 31×5, 2finger 31×15, 3finger 31×25, 4finger 31×30
  - adjacent / distant pair designs partition the 10 pairs
"""

from __future__ import annotations

import numpy as np
import pytest

from fsi_encoder.design.chords import (
    CHORDS,
    N_CHORDS,
    chord_labels,
    chord_matrix,
    design_matrix,
    design_names,
    digit_count_indicator,
    digit_counts,
    pair_indicator,
    subset_indicator,
    validate_chord_ids,
)
from fsi_encoder.errors import ConfigurationError


class TestChordSet:
    """Tests for the canonical chord order."""

    def test_count_and_ids(self):
        assert N_CHORDS == 31
        assert [c.id for c in CHORDS] == list(range(1, 32))

    def test_canonical_order(self):
        labels = chord_labels()
        assert labels[:5] == ["1", "2", "3", "4", "5"]
        assert labels[5] == "12"
        assert labels[14] == "45"
        assert labels[15] == "123"
        assert labels[-1] == "12345"

    def test_stimulation_vector(self):
        chord = next(c for c in CHORDS if c.label == "135")
        np.testing.assert_array_equal(chord.stimulation, [1, 0, 1, 0, 1])
        assert chord.n_digits == 3

    def test_digit_counts(self):
        counts = digit_counts()
        assert np.bincount(counts)[1:].tolist() == [5, 10, 10, 5, 1]
        np.testing.assert_array_equal(digit_count_indicator().sum(axis=0), [5, 10, 10, 5, 1])

    def test_validate_chord_ids(self):
        np.testing.assert_array_equal(validate_chord_ids([1.0, 31.0]), [1, 31])
        with pytest.raises(ConfigurationError):
            validate_chord_ids([0, 5])
        with pytest.raises(ConfigurationError):
            validate_chord_ids([32])
        with pytest.raises(ConfigurationError):
            validate_chord_ids([1.5])
        with pytest.raises(ConfigurationError):
            validate_chord_ids([[1, 2]])


class TestDesignMatrices:
    """Tests for feature design shapes and content."""

    @pytest.mark.parametrize(
        "name, n_features",
        [
            ("1finger", 5),
            ("2finger", 15),
            ("3finger", 25),
            ("4finger", 30),
            ("2finger_adjacentPairs", 9),
            ("2finger_distantPairs", 11),
        ],
    )
    def test_shapes(self, name, n_features):
        assert design_matrix(name).shape == (31, n_features)

    def test_single_finger_equals_chord_matrix(self):
        np.testing.assert_array_equal(design_matrix("1finger"), chord_matrix())

    def test_nested_designs(self):
        two = design_matrix("2finger")
        three = design_matrix("3finger")
        np.testing.assert_array_equal(three[:, :15], two)

    def test_pair_partition(self):
        adjacent = pair_indicator("adjacent")
        distant = pair_indicator("distant")
        assert adjacent.shape[1] + distant.shape[1] == 10
        assert adjacent.shape[1] == 4

        all_pairs = {tuple(col) for col in pair_indicator("all").T}
        split = [tuple(col) for col in np.hstack([adjacent, distant]).T]
        assert len(set(split)) == 10
        assert set(split) == all_pairs

    def test_pair_feature_on_only_when_both_fingers_stimulated(self):
        pairs = subset_indicator(2)
        # column 0 is fingers (1, 2)
        on = {CHORDS[i].label for i in np.flatnonzero(pairs[:, 0])}
        assert on == {"12", "123", "124", "125", "1234", "1235", "1245", "12345"}

    def test_full_chord_row(self):
        # five-finger chord activates every feature of every design
        for name in design_names():
            assert design_matrix(name)[-1].all()

    def test_returns_copies(self):
        X = design_matrix("1finger")
        X[:] = 0
        assert design_matrix("1finger").sum() == 80

    def test_unknown_design(self):
        with pytest.raises(ConfigurationError):
            design_matrix("5finger")
        with pytest.raises(ConfigurationError):
            pair_indicator("neighbours")
        with pytest.raises(ConfigurationError):
            subset_indicator(6)
