"""
Chord Design Library
====================

Indicator design matrices that map the 31 finger-chord conditions onto the
feature sets of the encoding models.

Design Principles:
    - One canonical chord order, defined once: single fingers, then pairs,
      triplets, quadruplets (lexicographic within each size), then the
      five-finger chord. Chord ids run 1..31 in that order.
    - Fingers are numbered 1 (thumb) .. 5 (little finger); column ``d - 1``
      of a stimulation vector is finger ``d``.
    - Matrices are built once and cached; callers always receive copies,
      so the cached arrays can be shared across workers.
    - A k-finger feature is "on" for a chord when all k fingers of the
      feature are stimulated in that chord.

Feature counts::

    1finger                 31 × 5    singles
    2finger                 31 × 15   singles + 10 pairs
    3finger                 31 × 25   + 10 triplets
    4finger                 31 × 30   + 5 quadruplets
    2finger_adjacentPairs   31 × 9    singles + 4 neighbouring pairs
    2finger_distantPairs    31 × 11   singles + 6 non-neighbouring pairs
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from itertools import combinations
from typing import Callable, Literal

import numpy as np

from fsi_encoder.errors import ConfigurationError

N_DIGITS = 5
DIGIT_NAMES = ("thumb", "index", "middle", "ring", "little")


@dataclass(frozen=True)
class Chord:
    """One stimulated finger combination.

    Attributes
    ----------
    id : int
        Canonical chord id, 1..31.
    fingers : tuple[int, ...]
        Stimulated fingers (1 = thumb .. 5 = little), ascending.
    """

    id: int
    fingers: tuple[int, ...]

    @property
    def n_digits(self) -> int:
        return len(self.fingers)

    @property
    def label(self) -> str:
        """Finger string, e.g. ``'135'`` for thumb + middle + little."""
        return "".join(str(f) for f in self.fingers)

    @property
    def stimulation(self) -> np.ndarray:
        """5-bit stimulation vector (thumb..little)."""
        vec = np.zeros(N_DIGITS, dtype=int)
        vec[np.asarray(self.fingers) - 1] = 1
        return vec


def _build_chords() -> tuple[Chord, ...]:
    chords = []
    for n in range(1, N_DIGITS + 1):
        for fingers in combinations(range(1, N_DIGITS + 1), n):
            chords.append(Chord(id=len(chords) + 1, fingers=fingers))
    return tuple(chords)


CHORDS: tuple[Chord, ...] = _build_chords()
N_CHORDS = len(CHORDS)


def finger_subsets(k: int) -> list[tuple[int, ...]]:
    """All k-finger subsets in lexicographic order."""
    if not 1 <= k <= N_DIGITS:
        raise ConfigurationError(f"Subset size must be in 1..{N_DIGITS}, got {k}")
    return list(combinations(range(1, N_DIGITS + 1), k))


def is_adjacent(pair: tuple[int, int]) -> bool:
    """True when the two fingers of a pair are neighbours."""
    return abs(pair[1] - pair[0]) == 1


def _containment(subsets: list[tuple[int, ...]]) -> np.ndarray:
    X = np.zeros((N_CHORDS, len(subsets)))
    for i, chord in enumerate(CHORDS):
        active = set(chord.fingers)
        for j, subset in enumerate(subsets):
            if active.issuperset(subset):
                X[i, j] = 1.0
    return X


def _frozen(X: np.ndarray) -> np.ndarray:
    X.setflags(write=False)
    return X


@lru_cache(maxsize=None)
def _chord_matrix() -> np.ndarray:
    return _frozen(np.vstack([c.stimulation for c in CHORDS]).astype(float))


def chord_matrix() -> np.ndarray:
    """31 × 5 stimulation matrix (rows = chords, columns = fingers)."""
    return _chord_matrix().copy()


def chord_labels() -> list[str]:
    return [c.label for c in CHORDS]


def validate_chord_ids(chords: np.ndarray) -> np.ndarray:
    """Return ``chords`` as an int array, checking every id is in 1..31."""
    arr = np.asarray(chords)
    if arr.ndim != 1:
        raise ConfigurationError(f"Chord vector must be 1-D, got shape {arr.shape}")
    if arr.size and not np.all(np.equal(np.mod(arr, 1), 0)):
        raise ConfigurationError("Chord ids must be integers")
    arr = arr.astype(int)
    bad = (arr < 1) | (arr > N_CHORDS)
    if np.any(bad):
        raise ConfigurationError(
            f"Chord ids must lie in 1..{N_CHORDS}; got {sorted(set(arr[bad].tolist()))}"
        )
    return arr


def digit_counts() -> np.ndarray:
    """Number of stimulated fingers per chord, shape (31,)."""
    return np.array([c.n_digits for c in CHORDS])


def digit_count_indicator() -> np.ndarray:
    """31 × 5 indicator of how many fingers each chord stimulates."""
    counts = digit_counts()
    return (counts[:, None] == np.arange(1, N_DIGITS + 1)[None, :]).astype(float)


@lru_cache(maxsize=None)
def _subset_indicator(k: int) -> np.ndarray:
    return _frozen(_containment(finger_subsets(k)))


def subset_indicator(k: int) -> np.ndarray:
    """31 × C(5, k) indicator of which k-finger subsets each chord contains."""
    return _subset_indicator(k).copy()


def pair_indicator(
    adjacency: Literal["all", "adjacent", "distant"] = "all",
) -> np.ndarray:
    """Finger-pair indicator, optionally filtered by finger adjacency."""
    pairs = finger_subsets(2)
    if adjacency == "adjacent":
        pairs = [p for p in pairs if is_adjacent(p)]
    elif adjacency == "distant":
        pairs = [p for p in pairs if not is_adjacent(p)]
    elif adjacency != "all":
        raise ConfigurationError(f"Unknown pair adjacency: '{adjacency}'")
    return _containment(pairs)


_DESIGNS: dict[str, Callable[[], list[np.ndarray]]] = {
    "1finger": lambda: [subset_indicator(1)],
    "2finger": lambda: [subset_indicator(1), subset_indicator(2)],
    "3finger": lambda: [subset_indicator(k) for k in (1, 2, 3)],
    "4finger": lambda: [subset_indicator(k) for k in (1, 2, 3, 4)],
    "2finger_adjacentPairs": lambda: [subset_indicator(1), pair_indicator("adjacent")],
    "2finger_distantPairs": lambda: [subset_indicator(1), pair_indicator("distant")],
}


def design_names() -> list[str]:
    return list(_DESIGNS)


@lru_cache(maxsize=None)
def _design_matrix(name: str) -> np.ndarray:
    return _frozen(np.hstack(_DESIGNS[name]()))


def design_matrix(name: str) -> np.ndarray:
    """Chord × feature design matrix for a named feature set.

    Parameters
    ----------
    name : str
        One of :func:`design_names`.

    Returns
    -------
    np.ndarray, shape (31, F)

    Raises
    ------
    ConfigurationError
        If ``name`` is not a known feature set.
    """
    if name not in _DESIGNS:
        raise ConfigurationError(
            f"Unknown design: '{name}'. Available: {design_names()}"
        )
    return _design_matrix(name).copy()
