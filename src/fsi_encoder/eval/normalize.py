"""
Result Normalisation
====================

Rescales cross-validated fits between the null model (0) and the noise
ceiling (1), separately for every participant and region.

Design Principles:
    - ``r_norm = (r_test − r_test[null]) / (r_test[noise_ceiling] − r_test[null])``
    - No pooling across participants: each (subject, region) group supplies
      its own references
    - The reference rows are set to exactly 0 and 1 rather than computed,
      so rounding can never move them
    - Undefined groups (NaN reference, zero span) give NaN, never 0
"""

from __future__ import annotations

import numpy as np
import pandas as pd

from fsi_encoder.errors import ConfigurationError
from fsi_encoder.models.base import ModelKind
from fsi_encoder.utils.logging import get_logger

logger = get_logger(__name__)

GROUP_KEYS = ["subject", "region"]


def _normalize_group(group: pd.DataFrame) -> pd.Series:
    models = group["model"]
    null = group.loc[models == ModelKind.NULL.value, "r_test"]
    ceiling = group.loc[models == ModelKind.NOISE_CEILING.value, "r_test"]
    if null.empty or ceiling.empty:
        subject, region = group["subject"].iloc[0], group["region"].iloc[0]
        raise ConfigurationError(
            f"Normalisation needs 'null' and 'noise_ceiling' rows "
            f"(subject={subject}, region={region})"
        )

    r_null = float(null.iloc[0])
    span = float(ceiling.iloc[0]) - r_null
    if not np.isfinite(span) or span == 0:
        logger.warning(
            "normalize | subject=%s region=%s undefined span (null=%s ceiling=%s)",
            group["subject"].iloc[0], group["region"].iloc[0], r_null, float(ceiling.iloc[0]),
        )
        r_norm = pd.Series(np.nan, index=group.index)
    else:
        r_norm = (group["r_test"] - r_null) / span

    r_norm[models == ModelKind.NULL.value] = 0.0
    r_norm[models == ModelKind.NOISE_CEILING.value] = 1.0
    return r_norm


def normalize_fits(frame: pd.DataFrame) -> pd.DataFrame:
    """Add an ``r_norm`` column to a fit table.

    Parameters
    ----------
    frame : pandas.DataFrame
        Fit table with at least ``subject``, ``region``, ``model`` and
        ``r_test`` columns.

    Returns
    -------
    pandas.DataFrame
        Copy of ``frame`` with ``r_norm``.

    Raises
    ------
    ConfigurationError
        If a (subject, region) group lacks a ``null`` or ``noise_ceiling``
        row.
    """
    out = frame.copy()
    out["r_norm"] = np.nan
    for _, group in out.groupby(GROUP_KEYS, sort=False):
        out.loc[group.index, "r_norm"] = _normalize_group(group)
    return out


def summarize_fits(frame: pd.DataFrame) -> pd.DataFrame:
    """Mean and standard error of the fits per region and model.

    Parameters
    ----------
    frame : pandas.DataFrame
        Fit table; normalised first when ``r_norm`` is missing.

    Returns
    -------
    pandas.DataFrame
        One row per (region, model) in family order with ``n``,
        ``r_test_mean``, ``r_test_sem``, ``r_norm_mean`` and ``r_norm_sem``.
        NaN fits are ignored.
    """
    if "r_norm" not in frame.columns:
        frame = normalize_fits(frame)

    grouped = frame.groupby(["region", "model_id", "model"], sort=True)
    summary = grouped.agg(
        n=("subject", "nunique"),
        r_test_mean=("r_test", "mean"),
        r_test_sem=("r_test", "sem"),
        r_norm_mean=("r_norm", "mean"),
        r_norm_sem=("r_norm", "sem"),
    )
    return summary.reset_index()
