"""
Per-horizon training and live feature frames.

Frames are built from the CompletedSeries (months ``1..N``, N = reference
month) and a fixed set of registration dummy columns.

Training frame for horizon h (target = month N, which is known):
    history          months ``1 .. N-h``
    trend_projection log-linear trend fitted on that history, projected
                     h months forward (to month N)
    outcome          volume at month N

Live frame for horizon h (target = month N+h, unknown):
    history          months ``h+1 .. N``
    trend_projection trend fitted on that history, projected h months forward

History columns are named by distance to the target month, ``lag_<d>`` with
``d = target - month``, so both frames share the same layout ``lag_h ..
lag_{N-1}``. Each extra month of horizon drops exactly one trailing history
column. Column order: ``outcome`` (training only), ``trend_projection``,
lags in ascending distance, registration dummies.
"""

from __future__ import annotations

import logging

import numpy as np
import pandas as pd

from tpv_forecaster.config import FeatureSelectionConfig
from tpv_forecaster.features.selector import select_features
from tpv_forecaster.imputation.trend import project
from tpv_forecaster.segmentation.encoding import one_hot_encode

logger = logging.getLogger(__name__)

OUTCOME_COL = "outcome"
TREND_COL = "trend_projection"


def lag_columns(n_months: int, horizon: int) -> list[str]:
    """History column names for ``horizon``: ``lag_h .. lag_{N-1}``."""
    return [f"lag_{d}" for d in range(horizon, n_months)]


def select_registration_features(
    registrations: pd.DataFrame,
    completed: pd.DataFrame,
    attributes: list[str],
    config: FeatureSelectionConfig,
    seed: int,
) -> list[str]:
    """Choose the registration dummies carried into every horizon frame.

    Dummies of ``attributes`` are ranked against reference-month volume with
    the same selector used per (segment, horizon) job.

    Returns:
        Selected dummy column names (at most ``config.max_features``).
    """
    dummies = one_hot_encode(registrations, attributes)
    if dummies.shape[1] == 0:
        return []
    frame = dummies.reindex(completed.index).copy()
    frame[OUTCOME_COL] = completed[completed.columns[-1]]
    scores = select_features(frame, OUTCOME_COL, config, seed=seed)
    logger.info("Registration features kept: %s", scores.selected)
    return scores.selected


class HorizonDatasetBuilder:
    """Assemble horizon frames over the CompletedSeries.

    Args:
        completed:             CompletedSeries (index = merchant id, cols 1..N).
        registration_features: Dummy columns to append, indexed by merchant
                               id (may have zero columns).
    """

    def __init__(self, completed: pd.DataFrame, registration_features: pd.DataFrame) -> None:
        if completed.isna().any().any():
            raise ValueError("HorizonDatasetBuilder needs a series without gaps.")
        self.completed = completed
        self.n_months = completed.shape[1]
        self.registration_features = registration_features.reindex(completed.index)

    def _check_horizon(self, horizon: int) -> None:
        if not 1 <= horizon < self.n_months:
            raise ValueError(
                f"horizon must be in 1..{self.n_months - 1} for a {self.n_months}-month series, "
                f"got {horizon}."
            )

    def _assemble(self, window: np.ndarray, horizon: int, index: pd.Index) -> pd.DataFrame:
        # window columns run oldest -> newest; lags run nearest -> farthest
        trend = np.array([project(row, horizon)[-1] for row in window])
        lags = pd.DataFrame(
            window[:, ::-1], index=index, columns=lag_columns(self.n_months, horizon)
        )
        frame = pd.concat(
            [pd.Series(trend, index=index, name=TREND_COL), lags,
             self.registration_features.loc[index]],
            axis=1,
        )
        return frame

    def training_frame(self, horizon: int, merchants: pd.Index | None = None) -> pd.DataFrame:
        """Frame predicting month N from months ``1..N-h``."""
        self._check_horizon(horizon)
        data = self.completed if merchants is None else self.completed.loc[merchants]
        values = data.to_numpy(dtype=float)
        window = values[:, : self.n_months - horizon]
        frame = self._assemble(window, horizon, data.index)
        frame.insert(0, OUTCOME_COL, values[:, -1])
        return frame

    def live_frame(self, horizon: int, merchants: pd.Index | None = None) -> pd.DataFrame:
        """Frame predicting month N+h from months ``h+1..N`` (no outcome)."""
        self._check_horizon(horizon)
        data = self.completed if merchants is None else self.completed.loc[merchants]
        window = data.to_numpy(dtype=float)[:, horizon:]
        return self._assemble(window, horizon, data.index)
