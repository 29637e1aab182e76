"""
Fit Evaluation Metrics
======================

Sums of squares and cross-products behind the pattern correlation used
to score every model.

Design Principles:
    - Both matrices are centred by removing each channel's mean across
      chords before any sum is taken
    - One combined correlation over all chords and channels jointly:
      ``r = SSC / sqrt(SS_ref · SS_pred)``
    - A zero sum of squares gives ``r = NaN``, never an exception
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

_ROUNDOFF = 1e-24


@dataclass(frozen=True)
class FitSums:
    """Aggregate sums for one prediction/reference pair."""

    ss_reference: float
    ss_predicted: float
    ss_cross: float

    @property
    def r(self) -> float:
        """Pattern correlation; NaN when either sum of squares is zero."""
        denom = self.ss_reference * self.ss_predicted
        if not np.isfinite(denom) or denom <= 0:
            return float("nan")
        return float(self.ss_cross / np.sqrt(denom))


def evaluate_fit(predicted: np.ndarray, reference: np.ndarray) -> FitSums:
    """Compute the fit sums between predicted and reference patterns.

    Parameters
    ----------
    predicted : np.ndarray, shape (C, P)
        Predicted patterns for the C chords present in the reference.
    reference : np.ndarray, shape (C, P)
        Training estimate or held-out patterns, same chord order.

    Returns
    -------
    FitSums

    Raises
    ------
    ValueError
        If the two matrices differ in shape.
    """
    predicted = np.atleast_2d(np.asarray(predicted, dtype=np.float64))
    reference = np.atleast_2d(np.asarray(reference, dtype=np.float64))
    if predicted.shape != reference.shape:
        raise ValueError(
            f"Prediction shape {predicted.shape} does not match reference {reference.shape}"
        )

    pred_c = _centre(predicted)
    ref_c = _centre(reference)
    return FitSums(
        ss_reference=float((ref_c**2).sum()),
        ss_predicted=float((pred_c**2).sum()),
        ss_cross=float((ref_c * pred_c).sum()),
    )


def _centre(Y: np.ndarray) -> np.ndarray:
    """Remove channel means; patterns constant across chords become exact zeros."""
    Yc = Y - Y.mean(axis=0, keepdims=True)
    # centring identical rows leaves round-off residue
    if (Yc**2).sum() <= _ROUNDOFF * (Y**2).sum():
        return np.zeros_like(Yc)
    return Yc


def average_by_chord(betas: np.ndarray, chords: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """Average repeated rows of each chord.

    Parameters
    ----------
    betas : np.ndarray, shape (N, P)
    chords : np.ndarray, shape (N,)

    Returns
    -------
    chord_ids : np.ndarray
        Distinct chord ids, ascending.
    means : np.ndarray, shape (len(chord_ids), P)
        Mean pattern per chord, in ``chord_ids`` order.
    """
    betas = np.asarray(betas, dtype=np.float64)
    chords = np.asarray(chords).ravel()
    chord_ids, inverse = np.unique(chords, return_inverse=True)
    sums = np.zeros((chord_ids.size, betas.shape[1]))
    np.add.at(sums, inverse, betas)
    counts = np.bincount(inverse, minlength=chord_ids.size)
    return chord_ids, sums / counts[:, None]
