"""
Cross-Validation Driver
=======================

Leave-one-run-out fitting and evaluation of the model family for one
participant, one region, or a whole analysis.

Design Principles:
    - Each fold owns its training/test slices and estimator state; folds
      share only read-only inputs (region prior, design matrices)
    - Per fold, the 31-condition estimate of the training rows is computed
      once; it feeds ``null``, ``noise_ceiling`` and the nonlinear fit, and
      is the reference for ``r_train``
    - Held-out rows are averaged per chord (ascending chord id) and every
      prediction is scored only on the chords present in the reference
    - Failures are isolated: ``LinAlgError`` / ``DegenerateEstimate`` in one
      model and fold give NaN metrics plus a diagnostic;
      ``ConfigurationError`` aborts the participant, and ``fit_region``
      records it and moves on
    - Fold metrics are averaged with an unweighted arithmetic mean (NaN
      propagates); the shrinkage ratio uses a NaN-ignoring mean
    - Two levels of ``joblib`` parallelism: participants within a region,
      folds within a participant

Data Flow::

    ParticipantData ──► leave_one_run_out ──► fit_fold (per run)
                                                 │  condition estimate
                                                 │  model.fit_fold (per model)
                                                 │  evaluate_fit (train / test)
                                                 ▼
                         FitRecord (per model) ◄── fold averaging
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, Optional, Sequence

import numpy as np
import pandas as pd
from joblib import Parallel, delayed

from fsi_encoder.config import AnalysisConfig
from fsi_encoder.design.chords import N_CHORDS, N_DIGITS, validate_chord_ids
from fsi_encoder.errors import ConfigurationError, DegenerateEstimate, NumericDegeneracy
from fsi_encoder.eval.metrics import average_by_chord, evaluate_fit
from fsi_encoder.eval.records import Diagnostic, FitRecord, records_to_frame
from fsi_encoder.eval.splits import leave_one_run_out
from fsi_encoder.models.base import EncodingModel, FoldContext
from fsi_encoder.models.family import build_model_family
from fsi_encoder.models.optimizers import create_optimizer
from fsi_encoder.models.predict import digit_count_activity
from fsi_encoder.models.prior import validate_prior
from fsi_encoder.models.ridge import CONDITION_FEATURES, FeatureEstimate, estimate_feature_patterns
from fsi_encoder.utils.logging import get_logger, log, progress_level

logger = get_logger(__name__)

_RECOVERABLE = (np.linalg.LinAlgError, DegenerateEstimate)


# ---------------------------------------------------------------------------
# Inputs
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ParticipantData:
    """Observations of one participant in one region.

    Attributes
    ----------
    subject : str
        Participant identifier.
    betas : np.ndarray, shape (N, P)
        One row per chord × run instance, one column per channel.
    runs : np.ndarray, shape (N,)
        Run id of each row.
    chords : np.ndarray, shape (N,)
        Chord id (1..31) of each row.

    Raises
    ------
    ConfigurationError
        On mismatched shapes, invalid chord ids, fewer than two runs, or
        unequal row counts across the (chord, run) cells present.
    """

    subject: str
    betas: np.ndarray
    runs: np.ndarray
    chords: np.ndarray

    def __post_init__(self) -> None:
        betas = np.asarray(self.betas, dtype=np.float64)
        runs = np.asarray(self.runs).ravel()
        if betas.ndim != 2:
            raise ConfigurationError(f"betas must be 2-D, got shape {betas.shape}")
        chords = validate_chord_ids(np.asarray(self.chords).ravel())
        if not (runs.size == chords.size == betas.shape[0]):
            raise ConfigurationError(
                f"Row counts differ: betas={betas.shape[0]} runs={runs.size} chords={chords.size}"
            )
        if np.unique(runs).size < 2:
            raise ConfigurationError(f"Subject {self.subject}: at least 2 runs are required")

        _, cell_counts = np.unique(np.column_stack([runs, chords]), axis=0, return_counts=True)
        if np.unique(cell_counts).size > 1:
            raise ConfigurationError(
                f"Subject {self.subject}: (chord, run) cells have unequal row counts "
                f"({sorted(set(cell_counts.tolist()))})"
            )

        object.__setattr__(self, "subject", str(self.subject))
        object.__setattr__(self, "betas", betas)
        object.__setattr__(self, "runs", runs)
        object.__setattr__(self, "chords", chords)

    @property
    def n_channels(self) -> int:
        return self.betas.shape[1]

    @property
    def run_ids(self) -> np.ndarray:
        return np.unique(self.runs)


@dataclass
class FoldResult:
    """Metrics of one model on one fold."""

    model: str
    run: int
    r_train: float
    r_test: float
    reg_theta: np.ndarray
    shrinkage: float
    params: Optional[np.ndarray]
    avg_activity: np.ndarray
    avg_activity_centred: np.ndarray
    diagnostics: list[Diagnostic] = field(default_factory=list)


def _failed_fold(model: EncodingModel, run: int, reason: str) -> FoldResult:
    nan5 = np.full(N_DIGITS, np.nan)
    return FoldResult(
        model=model.name,
        run=run,
        r_train=np.nan,
        r_test=np.nan,
        reg_theta=np.full(2, np.nan),
        shrinkage=np.nan,
        params=np.full(model.n_params, np.nan) if model.n_params else None,
        avg_activity=nan5,
        avg_activity_centred=nan5.copy(),
        diagnostics=[Diagnostic(NumericDegeneracy.__name__, run, reason)],
    )


# ---------------------------------------------------------------------------
# One fold
# ---------------------------------------------------------------------------


def fit_fold(
    data: ParticipantData,
    prior: np.ndarray,
    run: int,
    train_idx: np.ndarray,
    test_idx: np.ndarray,
    models: Sequence[EncodingModel],
    estimator: Optional[dict[str, Any]] = None,
) -> list[FoldResult]:
    """Fit and score every model on one leave-one-run-out fold.

    Parameters
    ----------
    data : ParticipantData
        Participant observations.
    prior : np.ndarray, shape (31, 31)
        Region-level chord covariance.
    run : int
        Held-out run id.
    train_idx, test_idx : np.ndarray
        Row indices of the training runs and the held-out run.
    models : sequence of EncodingModel
        Models to fit, in output order.
    estimator : dict or None
        Keyword arguments for the prior-ridge estimator.

    Returns
    -------
    list[FoldResult]
        One entry per model.

    Raises
    ------
    ConfigurationError
        For problems that invalidate the participant (e.g. too few channels).
    """
    estimator = dict(estimator or {})
    Y_train = data.betas[train_idx]
    chords_train = data.chords[train_idx]

    conditions: Optional[FeatureEstimate] = None
    condition_error = ""
    try:
        conditions = estimate_feature_patterns(
            Y_train, chords_train, prior, features=CONDITION_FEATURES, **estimator
        )
    except _RECOVERABLE as exc:
        condition_error = f"condition estimate failed: {exc}"
        logger.warning("fold | subject=%s run=%s %s", data.subject, run, condition_error)

    context = FoldContext(
        betas=Y_train,
        chords=chords_train,
        region_prior=prior,
        conditions=conditions,
        estimator_kwargs=estimator,
    )
    train_rows = context.observed_rows
    test_ids, Y_test = average_by_chord(data.betas[test_idx], data.chords[test_idx])
    test_rows = test_ids - 1

    results = []
    for model in models:
        if conditions is None and model.requires_condition_estimate:
            results.append(_failed_fold(model, run, condition_error))
            continue
        try:
            fit = model.fit_fold(context)
        except _RECOVERABLE as exc:
            logger.warning(
                "fold | subject=%s run=%s model=%s %s: %s",
                data.subject, run, model.name, type(exc).__name__, exc,
            )
            results.append(_failed_fold(model, run, f"{type(exc).__name__}: {exc}"))
            continue

        diagnostics = [Diagnostic(cat, run, msg) for cat, msg in fit.warnings]

        r_train = np.nan
        if conditions is not None:
            r_train = evaluate_fit(fit.predicted[train_rows], conditions.patterns[train_rows]).r
        r_test = evaluate_fit(fit.predicted[test_rows], Y_test).r
        for label, value in (("r_train", r_train), ("r_test", r_test)):
            if np.isnan(value):
                diagnostics.append(
                    Diagnostic(NumericDegeneracy.__name__, run, f"{label} undefined (zero variance)")
                )

        results.append(
            FoldResult(
                model=model.name,
                run=run,
                r_train=r_train,
                r_test=r_test,
                reg_theta=fit.estimate.theta,
                shrinkage=fit.estimate.shrinkage,
                params=None if fit.params is None else np.asarray(fit.params, dtype=np.float64),
                avg_activity=digit_count_activity(fit.predicted),
                avg_activity_centred=digit_count_activity(fit.predicted, centre=True),
                diagnostics=diagnostics,
            )
        )
        logger.debug(
            "fold | subject=%s run=%s model=%s r_train=%.4f r_test=%.4f lambda=%.4g",
            data.subject, run, model.name, r_train, r_test, fit.estimate.shrinkage,
        )
    return results


# ---------------------------------------------------------------------------
# One participant
# ---------------------------------------------------------------------------


def _nanmean(values: np.ndarray) -> float:
    values = np.asarray(values, dtype=np.float64)
    if np.all(np.isnan(values)):
        return float("nan")
    return float(np.nanmean(values))


def _aggregate(
    model: EncodingModel,
    folds: list[FoldResult],
    subject: str,
    region: str,
) -> FitRecord:
    params = None
    if model.n_params:
        params = np.mean([f.params for f in folds], axis=0)
    fold_r_train = np.array([f.r_train for f in folds])
    fold_r_test = np.array([f.r_test for f in folds])
    return FitRecord(
        subject=subject,
        region=region,
        model=model.name,
        model_id=model.model_id,
        n_folds=len(folds),
        model_theta=params,
        reg_theta=np.mean([f.reg_theta for f in folds], axis=0),
        shrinkage=_nanmean([f.shrinkage for f in folds]),
        r_train=float(np.mean(fold_r_train)),
        r_test=float(np.mean(fold_r_test)),
        fold_r_train=fold_r_train,
        fold_r_test=fold_r_test,
        avg_activity=np.mean([f.avg_activity for f in folds], axis=0),
        avg_activity_centred=np.mean([f.avg_activity_centred for f in folds], axis=0),
        diagnostics=tuple(d for f in folds for d in f.diagnostics),
    )


def fit_participant(
    data: ParticipantData,
    prior: np.ndarray,
    models: Optional[Sequence[EncodingModel]] = None,
    estimator: Optional[dict[str, Any]] = None,
    n_jobs: int = 1,
    backend: str = "loky",
    timeout: Optional[float] = None,
    region: str = "",
    verbose: bool = False,
) -> list[FitRecord]:
    """Cross-validate the model family for one participant.

    Parameters
    ----------
    data : ParticipantData
        Participant observations.
    prior : np.ndarray, shape (31, 31)
        Region-level chord covariance.
    models : sequence of EncodingModel or None
        Models to fit; the full family when None.
    estimator : dict or None
        Keyword arguments for the prior-ridge estimator.
    n_jobs : int
        Folds fitted in parallel (joblib).
    backend : str
        joblib backend.
    timeout : float or None
        Per-task joblib timeout in seconds.
    region : str
        Region name stored on the records.
    verbose : bool
        Report progress at INFO instead of DEBUG.

    Returns
    -------
    list[FitRecord]
        One record per model, in family order.

    Raises
    ------
    ConfigurationError
        If the prior is invalid or a model cannot be fitted with this
        participant's data (e.g. ``InsufficientChannels``).
    """
    prior = validate_prior(prior, n_conditions=N_CHORDS)
    models = list(models) if models is not None else build_model_family()
    folds = list(leave_one_run_out(data.runs))
    level = progress_level(verbose)
    logger.log(
        level,
        "participant | subject=%s region=%s rows=%d channels=%d folds=%d models=%d",
        data.subject, region or "-", data.betas.shape[0], data.n_channels, len(folds), len(models),
    )

    fold_results = Parallel(n_jobs=n_jobs, backend=backend, timeout=timeout)(
        delayed(fit_fold)(data, prior, run, train_idx, test_idx, models, estimator)
        for run, train_idx, test_idx in folds
    )

    records = []
    for i, model in enumerate(models):
        per_fold = [fold[i] for fold in fold_results]
        record = _aggregate(model, per_fold, data.subject, region)
        records.append(record)
        logger.log(
            level,
            "model | subject=%s model=%s r_train=%.4f r_test=%.4f diagnostics=%d",
            data.subject, model.name, record.r_train, record.r_test, len(record.diagnostics),
        )
    return records


# ---------------------------------------------------------------------------
# Region / analysis
# ---------------------------------------------------------------------------


@dataclass
class RegionFit:
    """Records of all participants of one region, plus aborted participants."""

    region: str
    records: list[FitRecord] = field(default_factory=list)
    failures: dict[str, str] = field(default_factory=dict)

    @property
    def frame(self) -> pd.DataFrame:
        return records_to_frame(self.records)


def models_from_config(config: AnalysisConfig) -> list[EncodingModel]:
    """Model family with the configured optimizer and starting point."""
    optimizer = create_optimizer(config.optimizer.optimizer_kwargs())
    return build_model_family(config.models, optimizer=optimizer, theta0=config.optimizer.theta0)


def _fit_isolated(
    data: ParticipantData,
    prior: np.ndarray,
    models: list[EncodingModel],
    region: str,
    config: AnalysisConfig,
) -> tuple[str, list[FitRecord], Optional[str]]:
    try:
        records = fit_participant(
            data,
            prior,
            models=models,
            estimator=config.estimator.model_dump(),
            n_jobs=config.compute.fold_n_jobs,
            backend=config.compute.backend,
            timeout=config.compute.timeout,
            region=region,
            verbose=config.verbose,
        )
    except ConfigurationError as exc:
        return data.subject, [], f"{type(exc).__name__}: {exc}"
    return data.subject, records, None


def fit_region(
    participants: Sequence[ParticipantData],
    prior: np.ndarray,
    region: str,
    config: AnalysisConfig,
) -> RegionFit:
    """Fit every participant of one region.

    A ``ConfigurationError`` aborts only the participant that raised it;
    it is logged and recorded in ``RegionFit.failures``.
    """
    models = models_from_config(config)
    prior = validate_prior(prior, n_conditions=N_CHORDS)
    logger.log(
        progress_level(config.verbose),
        "region | region=%s participants=%d models=%s",
        region, len(participants), [m.name for m in models],
    )

    outcomes = Parallel(
        n_jobs=config.compute.n_jobs,
        backend=config.compute.backend,
        timeout=config.compute.timeout,
    )(delayed(_fit_isolated)(data, prior, models, region, config) for data in participants)

    result = RegionFit(region=region)
    for subject, records, error in outcomes:
        if error is not None:
            logger.error("participant_failed | subject=%s region=%s %s", subject, region, error)
            result.failures[subject] = error
            continue
        result.records.extend(records)

    log(
        f"region_complete | region={region} fitted={len(participants) - len(result.failures)} "
        f"failed={len(result.failures)}",
        severity="ok" if not result.failures else "warn",
    )
    return result


RegionLoader = Callable[[str, Sequence[str] | str], tuple[list[ParticipantData], np.ndarray]]


def iter_region_fits(load_region: RegionLoader, config: AnalysisConfig) -> Iterator[RegionFit]:
    """Fit the configured regions one at a time.

    Parameters
    ----------
    load_region : callable
        ``load_region(region_name, subjects) → (participants, prior)``, e.g.
        ``functools.partial(fsi_encoder.io.patterns.load_region, data_dir)``.
    config : AnalysisConfig
        Analysis configuration (regions, subjects, models, compute).

    Yields
    ------
    RegionFit
        One per region that loaded; regions whose prior or directory is
        missing, or that have no usable participant, are logged and skipped.
    """
    for region in config.regions:
        try:
            participants, prior = load_region(region.name, config.subjects)
        except (FileNotFoundError, ConfigurationError) as exc:
            logger.error("region_skipped | region=%s %s", region.name, exc)
            continue
        if not participants:
            logger.error("region_skipped | region=%s no participants loaded", region.name)
            continue
        yield fit_region(participants, prior, region.name, config)


def run_analysis(load_region: RegionLoader, config: AnalysisConfig) -> pd.DataFrame:
    """Fit all configured regions into one table.

    Returns
    -------
    pandas.DataFrame
        One row per (subject, region, model); see
        :data:`fsi_encoder.eval.records.COLUMNS`.
    """
    frames = [fit.frame for fit in iter_region_fits(load_region, config)]
    if not frames:
        return records_to_frame([])
    return pd.concat(frames, ignore_index=True)
