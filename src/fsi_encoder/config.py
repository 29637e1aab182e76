"""
Configuration Schema and Loader
===============================

Pydantic-based configuration for a finger-chord encoding analysis. Every
run-time choice (regions, participants, models, estimator and optimizer
settings, parallelism, verbosity) lives in one validated YAML file and is
passed explicitly into the driver.

Design Principles:
    - Single source of truth for all analysis parameters
    - Pydantic validation catches unknown model names, malformed starting
      points and inverted bounds before any fitting starts
    - No global state: the driver receives the config object

Configuration Hierarchy::

    AnalysisConfig
    ├── PathsConfig          data directory, output directory, log directory
    ├── RegionConfig[]       regions to process
    ├── EstimatorConfig      prior-ridge hyperparameter search
    ├── OptimizerConfig      nonlinear scale fit (1finger_nonlinear)
    └── ComputeConfig        joblib parallelism
"""

from __future__ import annotations

import datetime
import hashlib
import json
import subprocess
from pathlib import Path
from typing import Any, Literal

import numpy as np
import yaml
from pydantic import BaseModel, Field, field_validator

from fsi_encoder import __version__
from fsi_encoder.models.base import model_names


# ---------------------------------------------------------------------------
# Schema sections
# ---------------------------------------------------------------------------


class PathsConfig(BaseModel):
    """Filesystem paths."""

    data_dir: Path = Field(
        ..., description="Root of the pattern tables: <data_dir>/<region>/sub-<id>.npz"
    )
    output_dir: Path = Field(default=Path("output"), description="Root output directory")
    log_dir: Path | None = Field(
        default=None, description="Directory for plain-text log files (console only when unset)"
    )


class RegionConfig(BaseModel):
    """Single region definition."""

    name: str = Field(..., description="Region directory name under data_dir (e.g. 'BA3b')")
    label: str | None = Field(default=None, description="Display label for reports")

    @property
    def display(self) -> str:
        return self.label or self.name


class EstimatorConfig(BaseModel):
    """Prior-ridge estimator settings."""

    log_ratio_bounds: tuple[float, float] = Field(
        default=(-30.0, 30.0),
        description="Search interval for log(noise / signal)",
    )
    max_iter: int = Field(default=500, gt=0, description="Iteration budget of the scalar search")
    xatol: float = Field(default=1e-6, gt=0, description="Absolute tolerance on log(noise / signal)")
    n_grid: int = Field(default=61, ge=3, description="Coarse scan points bracketing the search")

    @field_validator("log_ratio_bounds")
    @classmethod
    def _ordered(cls, v: tuple[float, float]) -> tuple[float, float]:
        if v[0] >= v[1]:
            raise ValueError(f"log_ratio_bounds must be increasing, got {v}")
        return v


class OptimizerConfig(BaseModel):
    """Nonlinear parameter search for ``1finger_nonlinear``."""

    method: str = Field(
        default="nelder-mead",
        description="Registered optimizer name ('nelder-mead', 'powell', or a custom one)",
    )
    max_iter: int = Field(default=50000, gt=0, description="Iteration budget")
    xatol: float = Field(default=1e-4, gt=0, description="Absolute parameter tolerance")
    fatol: float = Field(default=1e-4, gt=0, description="Absolute objective tolerance")
    theta0: list[float] = Field(
        default_factory=lambda: np.log([0.9, 0.8, 0.7, 0.6]).tolist(),
        description="Starting log scales for chords of 2, 3, 4 and 5 fingers",
    )

    @field_validator("theta0")
    @classmethod
    def _four_scales(cls, v: list[float]) -> list[float]:
        if len(v) != 4:
            raise ValueError(f"theta0 must have 4 entries, got {len(v)}")
        return v

    def optimizer_kwargs(self) -> dict[str, Any]:
        """Keyword dict for :func:`fsi_encoder.models.optimizers.create_optimizer`."""
        return self.model_dump(exclude={"theta0"})


class ComputeConfig(BaseModel):
    """Parallelism settings (joblib)."""

    n_jobs: int = Field(default=1, description="Participants fitted in parallel (-1 = all cores)")
    fold_n_jobs: int = Field(default=1, description="Folds fitted in parallel per participant")
    backend: Literal["loky", "threading", "multiprocessing"] = Field(
        default="loky", description="joblib backend"
    )
    timeout: float | None = Field(
        default=None, gt=0, description="Per-task timeout in seconds (None = no limit)"
    )


class AnalysisConfig(BaseModel):
    """Top-level analysis configuration."""

    paths: PathsConfig
    regions: list[RegionConfig] = Field(..., min_length=1, description="Regions to process")
    subjects: list[str] | Literal["all"] = Field(
        default="all", description="Participant IDs. 'all' discovers them per region."
    )
    models: list[str] | Literal["all"] = Field(
        default="all", description="Models to fit. 'all' fits the whole family."
    )
    estimator: EstimatorConfig = Field(default_factory=EstimatorConfig)
    optimizer: OptimizerConfig = Field(default_factory=OptimizerConfig)
    compute: ComputeConfig = Field(default_factory=ComputeConfig)
    verbose: bool = Field(default=False, description="Report per-participant progress at INFO")
    log_level: str = Field(default="INFO", description="Root log level")

    @field_validator("subjects", mode="before")
    @classmethod
    def _coerce_subjects(cls, v: Any) -> list[str] | str:
        if isinstance(v, list):
            return [str(s) for s in v]
        return v

    @field_validator("models")
    @classmethod
    def _known_models(cls, v: list[str] | str) -> list[str] | str:
        if isinstance(v, list):
            unknown = [m for m in v if m not in model_names()]
            if unknown:
                raise ValueError(f"Unknown models {unknown}; available: {model_names()}")
            if not v:
                raise ValueError("models must not be empty")
        return v


# ---------------------------------------------------------------------------
# Loading helpers
# ---------------------------------------------------------------------------


def load_config(path: str | Path) -> AnalysisConfig:
    """Load and validate a YAML config file.

    Parameters
    ----------
    path : str | Path
        Path to YAML config file.

    Returns
    -------
    AnalysisConfig
        Validated configuration object.
    """
    path = Path(path)
    with open(path, "r") as f:
        raw = yaml.safe_load(f)
    return AnalysisConfig(**raw)


def config_to_dict(cfg: AnalysisConfig) -> dict:
    """Plain, YAML-safe dictionary of a config."""
    return json.loads(cfg.model_dump_json())


def save_config_snapshot(cfg: AnalysisConfig, dest: Path) -> None:
    """Save a YAML snapshot of the config for provenance."""
    dest.parent.mkdir(parents=True, exist_ok=True)
    with open(dest, "w") as f:
        yaml.dump(config_to_dict(cfg), f, default_flow_style=False, sort_keys=False)


def build_provenance(cfg: AnalysisConfig) -> dict:
    """Build a provenance dictionary for artifact tracking.

    Returns
    -------
    dict
        Timestamp, package version, config hash and git commit (when
        available).
    """
    prov: dict[str, Any] = {
        "timestamp": datetime.datetime.now(datetime.timezone.utc).isoformat(),
        "fsi_encoder_version": __version__,
        "config_hash": hashlib.sha256(cfg.model_dump_json().encode()).hexdigest(),
    }
    try:
        git_hash = subprocess.check_output(
            ["git", "rev-parse", "HEAD"], stderr=subprocess.DEVNULL
        ).decode().strip()
        prov["git_commit"] = git_hash
    except (OSError, subprocess.CalledProcessError):
        prov["git_commit"] = "unavailable"
    return prov
