"""
Artifact Persistence
====================

Saves and loads fit tables together with their provenance and config.

Design Principles:
    - CSV for the fit table (one row per subject × model, readable anywhere)
    - JSON for provenance and diagnostics (human-readable, git-diffable)
    - YAML snapshot of the config used for each run
    - Directory structure: ``output_dir/fits/region-<name>/``

Output Layout::

    fits/region-<name>/
        fits.csv             one row per (subject, model)
        provenance.json
        config.yaml          (if provided)
        diagnostics.json     (if provided) failures and per-record warnings
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Optional

import numpy as np
import pandas as pd
import yaml

from fsi_encoder.eval.crossval import RegionFit
from fsi_encoder.utils.logging import get_logger

logger = get_logger(__name__)

_LABEL_COLUMNS = ("subject", "region", "model")


def get_fit_dir(output_dir: Path, region: str) -> Path:
    """Directory holding the fit table of one region (created if needed)."""
    fit_dir = Path(output_dir) / "fits" / f"region-{region}"
    fit_dir.mkdir(parents=True, exist_ok=True)
    return fit_dir


def save_fit_table(
    frame: pd.DataFrame,
    output_dir: Path,
    region: str,
    provenance: dict,
    config_snapshot: Optional[dict] = None,
    diagnostics: Optional[dict] = None,
) -> Path:
    """Save one region's fit table and its metadata.

    Parameters
    ----------
    frame : pandas.DataFrame
        Fit table (see :data:`fsi_encoder.eval.records.COLUMNS`), optionally
        with ``r_norm``.
    output_dir : Path
        Root output directory.
    region : str
        Region name.
    provenance : dict
        Provenance metadata.
    config_snapshot : dict or None
        Config to save as YAML.
    diagnostics : dict or None
        Failures and warnings, saved as JSON.

    Returns
    -------
    Path
        Path to the region's fit directory.
    """
    fit_dir = get_fit_dir(output_dir, region)

    frame.to_csv(fit_dir / "fits.csv", index=False)
    _save_json(fit_dir / "provenance.json", _make_serializable(provenance))

    if config_snapshot is not None:
        with open(fit_dir / "config.yaml", "w") as f:
            yaml.dump(config_snapshot, f, default_flow_style=False, sort_keys=False)

    if diagnostics is not None:
        _save_json(fit_dir / "diagnostics.json", _make_serializable(diagnostics))

    logger.info("Saved fit table for region-%s (%d rows): %s", region, len(frame), fit_dir)
    return fit_dir


def region_diagnostics(fit: RegionFit) -> dict:
    """Collect failures and per-record warnings of a region fit."""
    warnings: dict[str, list[str]] = {}
    for record in fit.records:
        if record.diagnostics:
            warnings[f"{record.subject}/{record.model}"] = [str(d) for d in record.diagnostics]
    return {"failures": dict(fit.failures), "warnings": warnings}


def load_fit_table(output_dir: Path, region: str) -> pd.DataFrame:
    """Load the fit table of one region.

    Raises
    ------
    FileNotFoundError
        If no table was saved for ``region``.
    """
    path = Path(output_dir) / "fits" / f"region-{region}" / "fits.csv"
    if not path.exists():
        raise FileNotFoundError(f"Fit table not found: {path}")
    # "null" is a model name, so NA parsing is limited to the numeric columns
    header = pd.read_csv(path, nrows=0).columns
    frame = pd.read_csv(
        path,
        dtype={col: str for col in header if col in _LABEL_COLUMNS},
        keep_default_na=False,
        na_values={col: ["", "NaN", "nan"] for col in header if col not in _LABEL_COLUMNS},
    )
    logger.info("Loaded fit table: %s (%d rows)", path, len(frame))
    return frame


def load_provenance(output_dir: Path, region: str) -> dict:
    path = Path(output_dir) / "fits" / f"region-{region}" / "provenance.json"
    if not path.exists():
        return {}
    with open(path) as f:
        return json.load(f)


def _save_json(path: Path, data: dict) -> None:
    """Save dict as JSON."""
    with open(path, "w") as f:
        json.dump(data, f, indent=2, default=str)


def _make_serializable(obj: Any) -> Any:
    """Make a nested dict/list JSON-serializable (convert numpy types)."""
    if isinstance(obj, dict):
        return {str(k): _make_serializable(v) for k, v in obj.items()}
    elif isinstance(obj, (list, tuple)):
        return [_make_serializable(v) for v in obj]
    elif isinstance(obj, np.ndarray):
        return obj.tolist()
    elif isinstance(obj, np.integer):
        return int(obj)
    elif isinstance(obj, np.floating):
        return float(obj)
    elif isinstance(obj, np.bool_):
        return bool(obj)
    return obj
