"""
Structured Logging for fsi_encoder
==================================

Console and file logging for analysis runs. The console goes through a
``rich`` handler; a plain-text copy can be written next to the outputs of
a batch run.

Design Principles:
    - Handlers live on the root logger and are installed at most once each;
      every module just calls ``get_logger(__name__)``
    - Messages read ``event | key=value key=value`` so that log files can
      be grepped by event and field
    - Progress chatter (participant / fold / model) is logged at INFO only
      when the analysis config sets ``verbose``, at DEBUG otherwise
    - ``log()`` tags one-line summaries with a severity colour

Severity Levels:
    info     (cyan)     routine progress
    ok       (green)    a region or command finished cleanly
    warn     (yellow)   recoverable issues (degenerate fits, non-convergence)
    error    (red)      aborted participants or regions
    metric   (magenta)  quantitative results (r_test, r_norm, shrinkage)

Usage::

    from fsi_encoder.utils.logging import get_logger, log

    logger = get_logger(__name__)
    logger.info("participant | subject=s02 region=BA3b channels=412")
    log("region_complete | region=BA3b fitted=12 failed=0", severity="ok")
"""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

SEVERITY_COLORS = {
    "info": "cyan",
    "ok": "green",
    "warn": "yellow",
    "error": "red",
    "metric": "magenta",
}

FILE_FORMAT = "[%(asctime)s] %(levelname)-7s %(name)s | %(message)s"

_console = Console(stderr=True)
_handlers: dict[str, Optional[logging.Handler]] = {"console": None, "file": None}


def _console_handler() -> logging.Handler:
    handler = RichHandler(
        console=_console,
        show_path=False,
        markup=True,
        rich_tracebacks=True,
    )
    handler.setFormatter(logging.Formatter("%(message)s"))
    return handler


def _file_handler(path: Path) -> logging.Handler:
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setFormatter(logging.Formatter(FILE_FORMAT))
    return handler


def _parse_level(level: str) -> int:
    value = logging.getLevelName(level.upper())
    return value if isinstance(value, int) else logging.INFO


def configure_logging(
    level: str = "INFO",
    log_dir: Optional[str | Path] = None,
    log_file: Optional[str] = None,
) -> Optional[Path]:
    """
    Install the console handler and, optionally, a log file.

    Repeated calls set the root level again; the console handler is added
    only once. A call with ``log_dir`` replaces any previous log file.

    Args:
        level:    Root level name (DEBUG, INFO, WARNING, ERROR).
        log_dir:  Directory for the log file, created if missing.
        log_file: File name; ``fsi_encoder_<YYYYmmdd_HHMMSS>.log`` if None.

    Returns:
        Path of the active log file, or None when logging to console only.
    """
    root = logging.getLogger()
    root.setLevel(_parse_level(level))

    if _handlers["console"] is None:
        _handlers["console"] = _console_handler()
        root.addHandler(_handlers["console"])

    if log_dir is not None:
        name = log_file or f"fsi_encoder_{datetime.now():%Y%m%d_%H%M%S}.log"
        previous = _handlers["file"]
        if previous is not None:
            root.removeHandler(previous)
            previous.close()
        _handlers["file"] = _file_handler(Path(log_dir) / name)
        root.addHandler(_handlers["file"])

    active = _handlers["file"]
    return Path(active.baseFilename) if isinstance(active, logging.FileHandler) else None


def get_logger(name: str, level: Optional[str] = None) -> logging.Logger:
    """
    Logger for ``name``; installs the console handler on first use.

    Args:
        name:  Usually ``__name__``.
        level: Optional level for this logger only.
    """
    if _handlers["console"] is None:
        configure_logging()

    logger = logging.getLogger(name)
    if level is not None:
        logger.setLevel(_parse_level(level))
    return logger


def log(msg: str, severity: str = "info") -> None:
    """
    Log a one-line summary tagged with a severity colour.

    ``warn`` and ``error`` map onto WARNING and ERROR; everything else is
    INFO with colour markup on the console.
    """
    logger = get_logger("fsi_encoder")
    if severity == "error":
        logger.error(msg)
    elif severity == "warn":
        logger.warning(msg)
    else:
        colour = SEVERITY_COLORS.get(severity, "white")
        logger.info(f"[{colour}]{msg}[/{colour}]")


def progress_level(verbose: bool) -> int:
    """Level for per-participant / per-fold progress messages."""
    return logging.INFO if verbose else logging.DEBUG
