"""
Pattern Table Loader
====================

Reads pre-processed chord patterns and region priors from disk.

Design Principles:
    - One ``.npz`` per participant and region holding ``betas`` (N × P),
      ``run`` (N,) and ``chord`` (N,)
    - One region prior per region: ``region_G.npy``, either the 31 × 31
      matrix or its 496-entry stacked lower triangle
    - Subject IDs are strings; ``sub-`` prefixes are stripped on discovery
    - Loading is the only I/O; everything returned is validated in memory

Directory Layout::

    <data_dir>/<region>/
        region_G.npy
        sub-01.npz
        sub-02.npz
        ...
"""

from __future__ import annotations

from pathlib import Path
from typing import Sequence

import numpy as np

from fsi_encoder.design.chords import N_CHORDS
from fsi_encoder.errors import ConfigurationError
from fsi_encoder.eval.crossval import ParticipantData
from fsi_encoder.models.prior import square_from_lower_triangle, validate_prior
from fsi_encoder.utils.logging import get_logger

logger = get_logger(__name__)

PRIOR_FILENAME = "region_G.npy"
_REQUIRED_ARRAYS = ("betas", "run", "chord")


def participant_path(data_dir: Path, region: str, subject: str) -> Path:
    return Path(data_dir) / region / f"sub-{subject}.npz"


def discover_subjects(data_dir: Path, region: str) -> list[str]:
    """Participant IDs with a pattern file in ``<data_dir>/<region>``, sorted.

    Raises
    ------
    FileNotFoundError
        If the region directory does not exist.
    """
    region_dir = Path(data_dir) / region
    if not region_dir.is_dir():
        raise FileNotFoundError(f"Region directory not found: {region_dir}")
    subjects = sorted(p.stem[len("sub-"):] for p in region_dir.glob("sub-*.npz"))
    logger.info("Discovered %d subjects in %s", len(subjects), region_dir)
    return subjects


def load_participant(data_dir: Path, region: str, subject: str) -> ParticipantData:
    """Load one participant's patterns for one region.

    Raises
    ------
    FileNotFoundError
        If the participant file is missing.
    ConfigurationError
        If required arrays are missing or inconsistent.
    """
    path = participant_path(data_dir, region, subject)
    if not path.exists():
        raise FileNotFoundError(f"Pattern file not found: {path}")

    with np.load(path) as npz:
        missing = [k for k in _REQUIRED_ARRAYS if k not in npz.files]
        if missing:
            raise ConfigurationError(f"{path.name}: missing arrays {missing}")
        data = ParticipantData(
            subject=subject,
            betas=npz["betas"],
            runs=npz["run"],
            chords=npz["chord"],
        )
    logger.debug(
        "Loaded sub-%s / %s: rows=%d channels=%d runs=%d",
        subject, region, data.betas.shape[0], data.n_channels, data.run_ids.size,
    )
    return data


def load_region_prior(data_dir: Path, region: str) -> np.ndarray:
    """Load and validate the 31 × 31 region prior.

    Raises
    ------
    FileNotFoundError
        If ``region_G.npy`` is missing.
    ConfigurationError
        If the stored prior is not a valid 31 × 31 covariance.
    """
    path = Path(data_dir) / region / PRIOR_FILENAME
    if not path.exists():
        raise FileNotFoundError(f"Region prior not found: {path}")
    G = np.load(path)
    if G.ndim == 1:
        G = square_from_lower_triangle(G)
    return validate_prior(G, n_conditions=N_CHORDS)


def load_region(
    data_dir: Path,
    region: str,
    subjects: Sequence[str] | str = "all",
) -> tuple[list[ParticipantData], np.ndarray]:
    """Load all requested participants and the prior of one region.

    Parameters
    ----------
    data_dir : Path
        Root of the pattern tables.
    region : str
        Region directory name.
    subjects : sequence of str or ``'all'``
        Participants to load; ``'all'`` discovers them.

    Returns
    -------
    participants : list[ParticipantData]
        Participants that loaded; missing or malformed files are logged
        and skipped.
    prior : np.ndarray, shape (31, 31)
    """
    prior = load_region_prior(data_dir, region)
    if subjects == "all":
        subjects = discover_subjects(data_dir, region)

    participants = []
    for s_id in subjects:
        try:
            participants.append(load_participant(data_dir, region, s_id))
        except (FileNotFoundError, ConfigurationError) as e:
            logger.error("Subject %s: %s (skipping)", s_id, e)
    return participants, prior
