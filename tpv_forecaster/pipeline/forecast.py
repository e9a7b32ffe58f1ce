"""
ForecastStage — score every segment's live frames and assemble the
ForecastTable (merchants x horizons, labelled by target month).
"""

from __future__ import annotations

import pandas as pd

from tpv_forecaster.ml.predictor import forecast
from tpv_forecaster.ml.trainer import TrainingJob, TrainingReport
from tpv_forecaster.models.meta import RunMetadata
from tpv_forecaster.pipeline.base import PipelineStage


class ForecastStage(PipelineStage):
    """Run the fitted ensembles on the live frames."""

    stage_name = "forecast"

    def _execute(
        self,
        run: RunMetadata,
        jobs: list[TrainingJob],
        report: TrainingReport,
        merchant_ids: pd.Index,
        **kwargs,
    ) -> int:
        self.output = forecast(
            report,
            jobs,
            merchant_ids=merchant_ids,
            horizons=list(self.config.forecast.horizons),
            reference_period=self.config.series.reference_period,
        )
        return int(self.output.size)
