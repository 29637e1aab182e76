"""
Fit Records
===========

Immutable per-(participant, region, model) results and their flat table
form.

Design Principles:
    - ``model_theta`` exists only for the nonlinear model; every other
      record carries ``None`` and the table shows NaN in its place
    - Warnings are data: each ``Diagnostic`` names its category, the fold
      it came from and a message
    - ``records_to_frame()`` is the only place records become a
      ``pandas.DataFrame``

Table Columns::

    subject, region, model, model_id, n_folds,
    theta_1..theta_4, log_signal, log_noise, shrinkage,
    r_train, r_test, avg_act_1..avg_act_5, avg_act_centred_1..avg_act_centred_5,
    n_diagnostics
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Optional

import numpy as np
import pandas as pd

from fsi_encoder.design.chords import N_DIGITS

N_THETA = N_DIGITS - 1

COLUMNS = (
    ["subject", "region", "model", "model_id", "n_folds"]
    + [f"theta_{i + 1}" for i in range(N_THETA)]
    + ["log_signal", "log_noise", "shrinkage", "r_train", "r_test"]
    + [f"avg_act_{k + 1}" for k in range(N_DIGITS)]
    + [f"avg_act_centred_{k + 1}" for k in range(N_DIGITS)]
    + ["n_diagnostics"]
)


@dataclass(frozen=True)
class Diagnostic:
    """A recovered problem attached to a fit record.

    Attributes
    ----------
    category : str
        ``'NumericDegeneracy'`` or ``'OptimizationNonConvergence'``.
    fold : int or None
        Held-out run of the fold, None for participant-level issues.
    message : str
    """

    category: str
    fold: Optional[int]
    message: str

    def __str__(self) -> str:
        where = f"run {self.fold}" if self.fold is not None else "all folds"
        return f"{self.category} ({where}): {self.message}"


@dataclass(frozen=True)
class FitRecord:
    """Fold-averaged fit of one model for one participant and region."""

    subject: str
    region: str
    model: str
    model_id: int
    n_folds: int
    model_theta: Optional[np.ndarray]
    reg_theta: np.ndarray
    shrinkage: float
    r_train: float
    r_test: float
    fold_r_train: np.ndarray
    fold_r_test: np.ndarray
    avg_activity: np.ndarray
    avg_activity_centred: np.ndarray
    diagnostics: tuple[Diagnostic, ...] = ()

    def to_row(self) -> dict[str, Any]:
        """Flatten into one table row (see module docstring for columns)."""
        theta = self.model_theta if self.model_theta is not None else np.full(N_THETA, np.nan)
        row: dict[str, Any] = {
            "subject": self.subject,
            "region": self.region,
            "model": self.model,
            "model_id": self.model_id,
            "n_folds": self.n_folds,
        }
        row.update({f"theta_{i + 1}": float(v) for i, v in enumerate(theta)})
        row.update(
            {
                "log_signal": float(self.reg_theta[0]),
                "log_noise": float(self.reg_theta[1]),
                "shrinkage": self.shrinkage,
                "r_train": self.r_train,
                "r_test": self.r_test,
            }
        )
        row.update({f"avg_act_{k + 1}": float(v) for k, v in enumerate(self.avg_activity)})
        row.update(
            {f"avg_act_centred_{k + 1}": float(v) for k, v in enumerate(self.avg_activity_centred)}
        )
        row["n_diagnostics"] = len(self.diagnostics)
        return row


def records_to_frame(records: Iterable[FitRecord]) -> pd.DataFrame:
    """Tidy table with one row per record, columns in ``COLUMNS`` order."""
    rows = [r.to_row() for r in records]
    return pd.DataFrame(rows, columns=COLUMNS)
