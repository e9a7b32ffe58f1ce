"""
Forecaster — score live frames with the fitted ensembles.

For every horizon, each segment's live frame is scored by that segment's
model (scaler ``transform`` only). Per-horizon predictions are concatenated
across segments and reindexed to the merchant order of the completed series;
horizons become the columns of one ForecastTable labelled by target month.
Any cell left empty is a ``ForecastError``.
"""

from __future__ import annotations

import logging
from typing import Optional

import pandas as pd

from tpv_forecaster.ml.trainer import TrainingJob, TrainingReport
from tpv_forecaster.utils.time_utils import target_month_label

logger = logging.getLogger(__name__)


class ForecastError(RuntimeError):
    """Raised when the forecast table would have missing cells.

    Attributes:
        missing: ``{column label: [merchant ids]}`` of the empty cells.
    """

    def __init__(self, message: str, missing: dict[str, list[str]] | None = None) -> None:
        super().__init__(message)
        self.missing = missing or {}


def forecast(
    report: TrainingReport,
    jobs: list[TrainingJob],
    merchant_ids: pd.Index,
    horizons: list[int],
    reference_period: Optional[str] = None,
) -> pd.DataFrame:
    """Assemble the ForecastTable.

    Args:
        report:           Joined training report (must have no failures).
        jobs:             Jobs whose live frames are to be scored.
        merchant_ids:     Row order of the output.
        horizons:         Horizons to emit, in column order.
        reference_period: Calendar anchor for column labels, if any.

    Returns:
        DataFrame indexed by merchant id, one column per horizon.

    Raises:
        ForecastError: A model is missing or a merchant has no prediction.
    """
    if report.failures:
        raise ForecastError(
            f"Refusing to forecast with {len(report.failures)} failed training job(s)."
        )

    by_horizon: dict[int, list[pd.Series]] = {h: [] for h in horizons}
    for job in jobs:
        if job.horizon not in by_horizon:
            continue
        model = report.models.get(job.key)
        if model is None:
            raise ForecastError(
                f"No fitted model for segment={job.segment} horizon={job.horizon}."
            )
        by_horizon[job.horizon].append(model.predict(job.live_frame))

    columns: dict[str, pd.Series] = {}
    missing: dict[str, list[str]] = {}
    for horizon in horizons:
        label = target_month_label(reference_period, horizon)
        parts = by_horizon[horizon]
        combined = pd.concat(parts) if parts else pd.Series(dtype=float)
        if combined.index.has_duplicates:
            dupes = combined.index[combined.index.duplicated()].unique().tolist()
            raise ForecastError(f"Merchants scored more than once for {label}: {dupes[:10]}")
        column = combined.reindex(merchant_ids)
        gaps = column.index[column.isna()].tolist()
        if gaps:
            missing[label] = gaps
        columns[label] = column

    if missing:
        total = sum(len(v) for v in missing.values())
        raise ForecastError(f"Forecast table has {total} missing cell(s).", missing=missing)

    table = pd.DataFrame(columns, index=merchant_ids)
    table.index.name = merchant_ids.name or "merchant_id"
    logger.info("Forecast table: %d merchants x %d horizon(s)", *table.shape)
    return table
