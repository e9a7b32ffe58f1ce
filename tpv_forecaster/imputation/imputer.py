"""
SeriesImputer — blend of neighbor and trend estimates for missing months.

Per segment:
  1. ``neighbors.impute_neighbors()`` over the segment's rows.
  2. ``trend.attr_na()`` per merchant.
  3. Blend each originally missing cell::

        neighbor defined, trend defined   -> w·neighbor + (1-w)·trend   (w = 0.7)
        neighbor defined, trend undefined -> neighbor   (NaN or overflowed trend)
        neighbor undefined                -> failure

Observed cells are never rewritten, so a complete series comes back
identical to its input. Failures are collected for the whole matrix and
raised together as ``ImputationError`` — a (merchant, month) pair is never
silently filled with a placeholder, and no infinite value reaches the
CompletedSeries.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np
import pandas as pd

from tpv_forecaster.config import ImputationConfig
from tpv_forecaster.imputation.neighbors import impute_neighbors
from tpv_forecaster.imputation.trend import attr_na
from tpv_forecaster.ingestion.series import SeriesValidationError, validate_series_matrix

logger = logging.getLogger(__name__)

_MAX_REPORTED_FAILURES = 10


class ImputationError(RuntimeError):
    """Raised when cells remain undefined after both estimators.

    Attributes:
        failures: ``(merchant_id, month)`` pairs that could not be imputed.
    """

    def __init__(self, failures: list[tuple[str, int]]) -> None:
        self.failures = failures
        merchants = sorted({m for m, _ in failures})
        super().__init__(
            f"Imputation failed for {len(failures)} cell(s) across "
            f"{len(merchants)} merchant(s); first: {failures[:_MAX_REPORTED_FAILURES]}"
        )


@dataclass(frozen=True)
class ImputationResult:
    """Output of ``SeriesImputer.impute()``.

    Attributes:
        completed:       CompletedSeries frame (no NaN), same shape as input.
        n_filled:        Number of cells filled.
        n_neighbor_only: Cells filled from the neighbor estimate alone
                         because the trend was undefined.
    """

    completed: pd.DataFrame
    n_filled: int
    n_neighbor_only: int


class SeriesImputer:
    """Fill gaps in MonthlySeries using segment-scoped neighbors and trend.

    Args:
        config:   Imputation section of ``AppConfig``.
        n_months: Expected series width N.
    """

    def __init__(self, config: ImputationConfig, n_months: int) -> None:
        self.config = config
        self.n_months = n_months

    def impute(self, series: pd.DataFrame, assignment: pd.Series) -> ImputationResult:
        """Impute every missing cell of ``series``.

        Args:
            series:     MonthlySeries frame (index = merchant id, cols 1..N).
            assignment: SegmentAssignment covering every merchant of ``series``.

        Returns:
            ``ImputationResult`` with a NaN-free copy of ``series``.

        Raises:
            SeriesValidationError: Malformed series or incomplete assignment.
            ImputationError:       Cells that neither estimator can define.
        """
        validate_series_matrix(series, self.n_months)
        unassigned = series.index.difference(assignment.index)
        if len(unassigned) > 0:
            raise SeriesValidationError(
                f"{len(unassigned)} merchant(s) have no segment: {unassigned[:5].tolist()}"
            )

        values = series.to_numpy(dtype=float)
        missing = np.isnan(values)
        completed = values.copy()
        segments = assignment.reindex(series.index).to_numpy()
        w = self.config.neighbor_weight
        n_neighbor_only = 0

        for segment in pd.unique(segments):
            rows = np.flatnonzero(segments == segment)
            block = values[rows]
            if not np.isnan(block).any():
                continue

            neighbor = impute_neighbors(
                block,
                n_neighbors=self.config.n_neighbors,
                empty_row_policy=self.config.empty_row_policy,
            )
            trend = np.vstack([attr_na(r) for r in block])
            trend_undefined = ~np.isfinite(trend)

            blended = np.where(
                trend_undefined, neighbor, w * neighbor + (1.0 - w) * trend
            )
            block_missing = missing[rows]
            n_neighbor_only += int((block_missing & trend_undefined & np.isfinite(neighbor)).sum())

            filled_block = block.copy()
            filled_block[block_missing] = blended[block_missing]
            completed[rows] = filled_block

            logger.debug(
                "Segment %s: filled %d cell(s) over %d merchant(s).",
                segment, int(block_missing.sum()), len(rows),
            )

        undefined = np.argwhere(~np.isfinite(completed))
        if undefined.size:
            failures = [
                (str(series.index[r]), int(series.columns[c])) for r, c in undefined
            ]
            raise ImputationError(failures)

        n_filled = int(missing.sum())
        logger.info(
            "Imputed %d of %d cell(s) (%d from neighbors alone).",
            n_filled, missing.size, n_neighbor_only,
        )
        frame = pd.DataFrame(completed, index=series.index.copy(), columns=series.columns.copy())
        return ImputationResult(completed=frame, n_filled=n_filled, n_neighbor_only=n_neighbor_only)
