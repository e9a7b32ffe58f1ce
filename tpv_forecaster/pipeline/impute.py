"""
ImputeStage — fill the gaps of the MonthlySeries.

Neighbor search is scoped to the segment assignment produced by
``SegmentStage``. Output: ``ImputationResult``; rows processed = cells filled.
"""

from __future__ import annotations

import pandas as pd

from tpv_forecaster.imputation.imputer import SeriesImputer
from tpv_forecaster.models.meta import RunMetadata
from tpv_forecaster.pipeline.base import PipelineStage


class ImputeStage(PipelineStage):
    """Produce the CompletedSeries."""

    stage_name = "impute"

    def _execute(
        self,
        run: RunMetadata,
        series: pd.DataFrame,
        assignment: pd.Series,
        **kwargs,
    ) -> int:
        imputer = SeriesImputer(self.config.imputation, n_months=self.config.series.n_months)
        self.output = imputer.impute(series, assignment)
        return self.output.n_filled
