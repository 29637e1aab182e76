"""Shared pytest fixtures for fsi_encoder tests."""

from __future__ import annotations

from typing import Callable, Optional, Sequence

import numpy as np
import pytest

from fsi_encoder.design.chords import N_CHORDS
from fsi_encoder.eval.crossval import ParticipantData


@pytest.fixture()
def rng():
    """Deterministic random generator."""
    return np.random.default_rng(42)


@pytest.fixture()
def region_prior(rng):
    """Full-rank 31 × 31 chord covariance."""
    B = rng.standard_normal((N_CHORDS, N_CHORDS))
    return B @ B.T / N_CHORDS + np.eye(N_CHORDS)


@pytest.fixture()
def make_participant(rng) -> Callable[..., ParticipantData]:
    """Factory for synthetic participants.

    ``chord_patterns`` is 31 × P (row c-1 = true pattern of chord c). Rows
    are laid out run by run, chords in the given order, ``n_reps`` rows per
    (chord, run) cell, plus i.i.d. Gaussian noise of SD ``noise``.
    """

    def _make(
        chord_patterns: np.ndarray,
        chords: Optional[Sequence[int]] = None,
        n_runs: int = 2,
        n_reps: int = 1,
        noise: float = 0.0,
        subject: str = "s01",
    ) -> ParticipantData:
        chords = np.arange(1, N_CHORDS + 1) if chords is None else np.asarray(chords)
        run_col, chord_col = [], []
        for run in range(1, n_runs + 1):
            for c in chords:
                run_col.extend([run] * n_reps)
                chord_col.extend([int(c)] * n_reps)
        run_col = np.array(run_col)
        chord_col = np.array(chord_col)
        betas = chord_patterns[chord_col - 1].copy()
        if noise > 0:
            betas += noise * rng.standard_normal(betas.shape)
        return ParticipantData(subject=subject, betas=betas, runs=run_col, chords=chord_col)

    return _make
