"""
Training orchestrator — one EnsembleModel per (segment, horizon) pair.

Jobs
----
``build_jobs()`` turns a ``HorizonDatasetBuilder`` and a segment assignment
into independent ``TrainingJob`` objects, each carrying the segment's
training frame and the matching live frame. ``train_all()`` dispatches them
to a ``joblib.Parallel`` worker pool and joins every result before returning
(the barrier the forecaster relies on). CV folds run sequentially inside a
job.

Failure isolation
-----------------
A job that fails with a selection, training or numerical error is recorded in
``TrainingReport.failures`` and does not abort its siblings. The caller
decides what to do with a partial report; ``TrainingReport.raise_for_failures``
raises ``TrainingFailedError`` listing every failed pair.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

import numpy as np
import pandas as pd
from joblib import Parallel, delayed
from lightgbm.basic import LightGBMError

from tpv_forecaster.config import AppConfig
from tpv_forecaster.features.horizon import HorizonDatasetBuilder
from tpv_forecaster.features.selector import FeatureSelectionError
from tpv_forecaster.ml.ensemble import EnsembleModel, TrainingError
from tpv_forecaster.utils.logging import job_logger

logger = logging.getLogger(__name__)

JobKey = tuple[int, int]

# Errors that fail a single job; anything else propagates.
_JOB_ERRORS = (
    FeatureSelectionError,
    TrainingError,
    ValueError,
    FloatingPointError,
    np.linalg.LinAlgError,
    LightGBMError,
)


class TrainingFailedError(RuntimeError):
    """Raised when one or more (segment, horizon) jobs failed.

    Attributes:
        failures: ``{(segment, horizon): error message}``.
    """

    def __init__(self, failures: dict[JobKey, str]) -> None:
        self.failures = dict(failures)
        lines = [f"  segment={s} horizon={h}: {msg}" for (s, h), msg in sorted(failures.items())]
        super().__init__(
            f"{len(failures)} training job(s) failed:\n" + "\n".join(lines)
        )


@dataclass(frozen=True)
class TrainingJob:
    """Everything one worker needs to fit and later score a pair."""

    segment: int
    horizon: int
    frame: pd.DataFrame
    live_frame: pd.DataFrame

    @property
    def key(self) -> JobKey:
        return (self.segment, self.horizon)


@dataclass(frozen=True)
class JobResult:
    segment: int
    horizon: int
    model: EnsembleModel | None = None
    error: str | None = None


@dataclass(frozen=True)
class TrainingReport:
    """Joined outcome of every training job.

    Attributes:
        models:   Fitted models keyed by ``(segment, horizon)``.
        failures: Error message per failed ``(segment, horizon)``.
    """

    models: dict[JobKey, EnsembleModel] = field(default_factory=dict)
    failures: dict[JobKey, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failures

    def raise_for_failures(self) -> None:
        if self.failures:
            raise TrainingFailedError(self.failures)

    def metrics(self) -> pd.DataFrame:
        """One row per fitted pair: rows, feature count, CV MAE and R²."""
        records = []
        for (segment, horizon), model in sorted(self.models.items()):
            meta = model.metadata
            records.append(
                {
                    "segment": segment,
                    "horizon": horizon,
                    "n_rows": meta.n_rows,
                    "n_features": len(meta.selected_features),
                    "cv_mae": meta.cv_mae,
                    "cv_r2": meta.cv_r2,
                }
            )
        return pd.DataFrame.from_records(
            records, columns=["segment", "horizon", "n_rows", "n_features", "cv_mae", "cv_r2"]
        )

    def save(self, artifact_dir: Path) -> list[Path]:
        """Write every model as ``ensemble_s<segment>_h<horizon>.{pkl,json}``."""
        written: list[Path] = []
        for (segment, horizon), model in sorted(self.models.items()):
            stem = f"ensemble_s{segment}_h{horizon}"
            artifact_path = artifact_dir / f"{stem}.pkl"
            model.save(artifact_path)
            model.write_metadata(artifact_dir / f"{stem}.json")
            written.append(artifact_path)
        return written


def build_jobs(
    builder: HorizonDatasetBuilder,
    assignment: pd.Series,
    horizons: list[int],
) -> list[TrainingJob]:
    """One job per (segment, horizon), segments in label order."""
    jobs: list[TrainingJob] = []
    for segment in sorted(int(s) for s in assignment.unique()):
        members = assignment.index[assignment == segment]
        for horizon in horizons:
            jobs.append(
                TrainingJob(
                    segment=segment,
                    horizon=horizon,
                    frame=builder.training_frame(horizon, members),
                    live_frame=builder.live_frame(horizon, members),
                )
            )
    return jobs


def run_job(job: TrainingJob, config: AppConfig) -> JobResult:
    """Fit one ensemble; job-local errors become a failed ``JobResult``."""
    model = EnsembleModel(
        segment=job.segment,
        horizon=job.horizon,
        ensemble_config=config.ensemble,
        selection_config=config.selection,
        seed=config.seed,
    )
    try:
        model.fit(job.frame)
    except _JOB_ERRORS as exc:
        return JobResult(job.segment, job.horizon, error=f"{type(exc).__name__}: {exc}")
    return JobResult(job.segment, job.horizon, model=model)


def train_all(jobs: list[TrainingJob], config: AppConfig) -> TrainingReport:
    """Run every job on a worker pool and join the results.

    Args:
        jobs:   Output of ``build_jobs()``.
        config: Application config (ensemble, selection, seed, ``n_jobs``).

    Returns:
        ``TrainingReport`` covering every job, successful or not.
    """
    logger.info("Training %d job(s) with n_jobs=%d", len(jobs), config.n_jobs)
    results = Parallel(n_jobs=config.n_jobs)(delayed(run_job)(job, config) for job in jobs)

    models: dict[JobKey, EnsembleModel] = {}
    failures: dict[JobKey, str] = {}
    for result in results:
        key = (result.segment, result.horizon)
        if result.error is not None:
            failures[key] = result.error
            job_logger(logger, *key).error("training failed: %s", result.error)
        else:
            models[key] = result.model

    logger.info("Training complete: %d model(s), %d failure(s)", len(models), len(failures))
    return TrainingReport(models=models, failures=failures)
