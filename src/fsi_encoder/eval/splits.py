"""
Cross-Validation Splits
=======================

Leave-one-run-out train/test partitions.

Design Principles:
    - Folds are defined by run id, never by row index
    - ``sklearn.model_selection.LeaveOneGroupOut`` does the bookkeeping;
      folds come out in ascending run order
    - Every run is the test fold exactly once
"""

from __future__ import annotations

from typing import Generator

import numpy as np
from sklearn.model_selection import LeaveOneGroupOut

from fsi_encoder.errors import ConfigurationError
from fsi_encoder.utils.logging import get_logger

logger = get_logger(__name__)


def leave_one_run_out(
    runs: np.ndarray,
) -> Generator[tuple[int, np.ndarray, np.ndarray], None, None]:
    """Generate one fold per distinct run.

    Parameters
    ----------
    runs : np.ndarray, shape (N,)
        Run id of each observation row.

    Yields
    ------
    run : int
        Held-out run id.
    train_idx : np.ndarray
        Rows of all other runs.
    test_idx : np.ndarray
        Rows of the held-out run.

    Raises
    ------
    ConfigurationError
        If fewer than two distinct runs are present.
    """
    runs = np.asarray(runs).ravel()
    n_runs = np.unique(runs).size
    if n_runs < 2:
        raise ConfigurationError(f"Leave-one-run-out needs at least 2 runs, got {n_runs}")

    logo = LeaveOneGroupOut()
    for fold_idx, (train_idx, test_idx) in enumerate(logo.split(runs, groups=runs)):
        run = runs[test_idx[0]].item()
        logger.debug(
            "Fold %d/%d: run=%s train=%d test=%d",
            fold_idx + 1, n_runs, run, len(train_idx), len(test_idx),
        )
        yield run, train_idx, test_idx
