"""
End-to-end forecast run.

``ForecastPipeline`` coordinates the stages in a fixed order:

  Step 1 — Ingest:    Deduplicate and validate registrations; pivot the long
                      monthly table into the MonthlySeries matrix.
  Step 2 — Coverage:  Both inputs must list exactly the same merchants
                      (``CoverageError`` otherwise, before any imputation).
  Step 3 — Segment:   ``SegmentStage`` (clustering or forced assignment).
  Step 4 — Impute:    ``ImputeStage`` → CompletedSeries.
  Step 5 — Train:     ``TrainStage`` → one ensemble per (segment, horizon).
  Step 6 — Forecast:  ``ForecastStage`` → ForecastTable.

Any stage error aborts the run; there is no partial output. Merchant order
in every product follows the order of the registration table.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Mapping, Optional

import pandas as pd

from tpv_forecaster.config import AppConfig
from tpv_forecaster.imputation.imputer import ImputationResult
from tpv_forecaster.ingestion.registrations import (
    deduplicate_registrations,
    validate_registrations,
)
from tpv_forecaster.ingestion.series import check_coverage, to_series_matrix
from tpv_forecaster.ml.trainer import TrainingReport
from tpv_forecaster.models.meta import RunMetadata
from tpv_forecaster.pipeline.forecast import ForecastStage
from tpv_forecaster.pipeline.impute import ImputeStage
from tpv_forecaster.pipeline.segment import SegmentStage
from tpv_forecaster.pipeline.train import TrainStage
from tpv_forecaster.segmentation.segmenter import SegmentationResult

logger = logging.getLogger(__name__)


# ── Result types ──────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class PipelineResult:
    """Immutable products of one forecast run.

    Attributes:
        segmentation:  SegmentAssignment and how it was obtained.
        imputation:    CompletedSeries and fill counts.
        training:      Fitted models keyed by (segment, horizon).
        forecasts:     ForecastTable (merchant id x horizon).
        stage_runs:    ``RunMetadata`` per stage, in execution order.
    """

    segmentation: SegmentationResult
    imputation: ImputationResult
    training: TrainingReport
    forecasts: pd.DataFrame
    stage_runs: list[RunMetadata] = field(default_factory=list)

    @property
    def assignment(self) -> pd.Series:
        return self.segmentation.assignment

    @property
    def completed(self) -> pd.DataFrame:
        return self.imputation.completed


# ── Orchestrator ──────────────────────────────────────────────────────────────

class ForecastPipeline:
    """Run ingestion, segmentation, imputation, training and forecasting.

    Args:
        config: AppConfig for this run.
    """

    def __init__(self, config: AppConfig) -> None:
        self.config = config

    def prepare_inputs(
        self,
        registrations: pd.DataFrame,
        series_long: pd.DataFrame,
    ) -> tuple[pd.DataFrame, pd.DataFrame]:
        """Validate both inputs and align the series to registration order.

        Raises:
            RegistrationValidationError, SeriesValidationError, CoverageError.
        """
        validated = validate_registrations(deduplicate_registrations(registrations))
        series = to_series_matrix(
            series_long,
            n_months=self.config.series.n_months,
            reference_period=self.config.series.reference_period,
        )
        check_coverage(validated.index, series.index)
        return validated, series.loc[validated.index]

    def run(
        self,
        registrations: pd.DataFrame,
        series_long: pd.DataFrame,
        assignment: Optional[Mapping[str, int]] = None,
    ) -> PipelineResult:
        """Produce the ForecastTable for every merchant.

        Args:
            registrations: Registration table (duplicates allowed).
            series_long:   Long monthly table (``merchant_id``, ``month``,
                           ``volume``).
            assignment:    Optional forced merchant id → segment mapping;
                           skips clustering.

        Returns:
            ``PipelineResult``.

        Raises:
            CoverageError:       Inputs list different merchants.
            SegmentationError:   Empty segment or degenerate K search.
            ImputationError:     Undefined imputed cells.
            TrainingFailedError: One or more (segment, horizon) jobs failed.
            ForecastError:       Missing forecast cells.
        """
        logger.info(
            "Forecast run starting | horizons=%s seed=%d",
            list(self.config.forecast.horizons), self.config.seed,
        )
        validated, series = self.prepare_inputs(registrations, series_long)

        segment_stage = SegmentStage(self.config)
        impute_stage = ImputeStage(self.config)
        train_stage = TrainStage(self.config)
        forecast_stage = ForecastStage(self.config)

        segment_stage.run(registrations=validated, assignment=assignment)
        segmentation: SegmentationResult = segment_stage.output

        impute_stage.run(series=series, assignment=segmentation.assignment)
        imputation: ImputationResult = impute_stage.output

        train_stage.run(
            completed=imputation.completed,
            registrations=validated,
            assignment=segmentation.assignment,
        )
        trained = train_stage.output

        forecast_stage.run(
            jobs=trained.jobs, report=trained.report, merchant_ids=imputation.completed.index
        )

        runs = [
            *segment_stage.runs, *impute_stage.runs, *train_stage.runs, *forecast_stage.runs,
        ]
        logger.info(
            "Forecast run complete | merchants=%d segments=%d models=%d",
            len(validated), segmentation.n_segments, len(trained.report.models),
        )
        return PipelineResult(
            segmentation=segmentation,
            imputation=imputation,
            training=trained.report,
            forecasts=forecast_stage.output,
            stage_runs=runs,
        )
