"""
PipelineStage — shared run bookkeeping for segment / impute / train / forecast.

A stage is built once with the ``AppConfig`` and driven through ``run()``.
Subclasses implement ``_execute()``, which leaves its product on
``self.output`` and returns how many rows (merchants, cells, models) it
produced. ``run()`` wraps that call in a ``RunMetadata`` record:

    started ──_execute() returns──▶ success   (rows_processed set)
            ──_execute() raises───▶ failed    (error_message set, re-raised)

Both outcomes are appended to ``self.runs``; ``last_run`` is the newest.
The record snapshots the full config, seed included, so a stage can be
replayed on the same inputs.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any
from uuid import uuid4

from tpv_forecaster.config import AppConfig
from tpv_forecaster.models.meta import RunMetadata
from tpv_forecaster.utils.time_utils import utcnow

logger = logging.getLogger(__name__)


class PipelineStage(ABC):
    """Base class for the four forecasting stages.

    Attributes:
        stage_name: One of ``VALID_PIPELINE_STAGES``; set by each subclass.
        config:     Application config shared by every stage of a pipeline.
        output:     Whatever the last successful ``_execute()`` produced.
        runs:       Finished run records, oldest first.
    """

    stage_name: str

    def __init__(self, config: AppConfig) -> None:
        self.config = config
        self.output: Any = None
        self.runs: list[RunMetadata] = []

    @property
    def last_run(self) -> RunMetadata | None:
        return self.runs[-1] if self.runs else None

    def _start(self) -> RunMetadata:
        run = RunMetadata(
            run_slug=str(uuid4()),
            pipeline_stage=self.stage_name,
            config_snapshot=self.config.model_dump(),
            started_at=utcnow(),
        )
        logger.info("[%s] start  run=%s", self.stage_name, run.run_slug)
        return run

    def _finish(self, run: RunMetadata, rows: int = 0, error: Exception | None = None) -> None:
        run.finished_at = utcnow()
        if error is None:
            run.status = "success"
            run.rows_processed = rows
            logger.info(
                "[%s] done   run=%s rows=%d elapsed=%.2fs",
                self.stage_name, run.run_slug, rows, run.elapsed_seconds,
            )
        else:
            run.status = "failed"
            run.error_message = f"{type(error).__name__}: {error}"
            logger.error(
                "[%s] failed run=%s elapsed=%.2fs: %s",
                self.stage_name, run.run_slug, run.elapsed_seconds, run.error_message,
            )
        self.runs.append(run)

    def run(self, **kwargs) -> RunMetadata:
        """Execute the stage once and return its finished run record.

        Errors from ``_execute()`` are recorded on the run and re-raised
        unchanged; ``self.output`` keeps its previous value in that case.
        """
        run = self._start()
        try:
            rows = self._execute(run=run, **kwargs)
        except Exception as exc:
            self._finish(run, error=exc)
            raise
        self._finish(run, rows=rows)
        return run

    @abstractmethod
    def _execute(self, run: RunMetadata, **kwargs) -> int:
        """Do the stage's work; set ``self.output`` and return a row count."""
