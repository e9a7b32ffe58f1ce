"""
Run and model metadata — the reproducibility backbone.

``RunMetadata`` is the pipeline execution audit record. Every stage run
records a complete ``config_snapshot`` (full AppConfig as a dict, seed
included) so any run can be exactly reproduced by restoring that config and
re-running on the same inputs.

``ModelMetadata`` describes one trained (segment, horizon) ensemble: the
features it kept and its cross-validated performance. It is frozen.

``RunMetadata`` is NOT frozen — its ``status``, ``rows_processed``,
``error_message`` and ``finished_at`` fields change as the stage executes.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, field_validator

VALID_PIPELINE_STAGES = frozenset({"segment", "impute", "train", "forecast"})
VALID_RUN_STATUSES = frozenset({"started", "success", "failed"})


class ModelMetadata(BaseModel):
    """Summary of one fitted (segment, horizon) ensemble.

    Attributes:
        segment: Segment label (1..K).
        horizon: Forecast horizon in months.
        n_rows: Training rows (merchants in the segment).
        selected_features: Predictor columns kept by feature selection.
        elastic_net_params: Tuned ``alpha`` / ``l1_ratio``.
        knn_neighbors: Effective neighborhood size after clamping.
        cv_mae: Cross-validated mean absolute error of the stacked ensemble.
        cv_r2: Cross-validated coefficient of determination of the ensemble.
        trained_at: UTC datetime the fit finished.
    """

    model_config = ConfigDict(frozen=True)

    segment: int
    horizon: int
    n_rows: int
    selected_features: list[str]
    elastic_net_params: dict[str, float]
    knn_neighbors: int
    cv_mae: float
    cv_r2: float
    trained_at: datetime

    @field_validator("cv_mae")
    @classmethod
    def validate_mae(cls, v: float) -> float:
        if v < 0:
            raise ValueError(f"cv_mae must be non-negative, got {v}.")
        return v

    @field_validator("cv_r2")
    @classmethod
    def validate_r2(cls, v: float) -> float:
        if v > 1.0:
            raise ValueError(f"cv_r2 cannot exceed 1.0, got {v}.")
        return v


class RunMetadata(BaseModel):
    """Pipeline stage execution audit record.

    Attributes:
        run_slug: UUID4 string uniquely identifying this stage run.
        pipeline_stage: Which stage produced this record.
        status: Current execution status.
        config_snapshot: Full ``AppConfig.model_dump()`` at run start time.
        rows_processed: Count of records the stage produced.
        error_message: Error description if ``status == "failed"``.
        started_at: UTC datetime when the stage began.
        finished_at: UTC datetime when the stage completed or failed.
    """

    # status, rows_processed, error_message and finished_at change during run()
    model_config = ConfigDict(frozen=False)

    run_slug: str
    pipeline_stage: str
    status: str = "started"
    config_snapshot: dict[str, Any]
    rows_processed: int = 0
    error_message: Optional[str] = None
    started_at: datetime
    finished_at: Optional[datetime] = None

    @field_validator("pipeline_stage")
    @classmethod
    def validate_pipeline_stage(cls, v: str) -> str:
        if v not in VALID_PIPELINE_STAGES:
            raise ValueError(
                f"Unknown pipeline_stage '{v}'. Must be one of {sorted(VALID_PIPELINE_STAGES)}."
            )
        return v

    @field_validator("status")
    @classmethod
    def validate_status(cls, v: str) -> str:
        if v not in VALID_RUN_STATUSES:
            raise ValueError(
                f"Unknown status '{v}'. Must be one of {sorted(VALID_RUN_STATUSES)}."
            )
        return v

    @property
    def elapsed_seconds(self) -> float:
        """Wall-clock duration; 0.0 while the run is still open."""
        if self.finished_at is None:
            return 0.0
        return (self.finished_at - self.started_at).total_seconds()
