"""Fixtures for the ML layer tests: training frames and completed series."""

from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from tpv_forecaster.config import EnsembleConfig, FeatureSelectionConfig, ImputationConfig
from tpv_forecaster.features.horizon import HorizonDatasetBuilder
from tpv_forecaster.imputation.imputer import SeriesImputer


@pytest.fixture
def ensemble_config() -> EnsembleConfig:
    return EnsembleConfig(cv_repeats=2, stacker_n_estimators=20)


@pytest.fixture
def selection_config() -> FeatureSelectionConfig:
    return FeatureSelectionConfig(n_estimators=10)


@pytest.fixture
def training_frame() -> pd.DataFrame:
    """30 merchants; outcome roughly proportional to the latest lags."""
    rng = np.random.default_rng(5)
    base = rng.uniform(1_000.0, 20_000.0, size=30)
    lags = {f"lag_{d}": base * (1.0 - 0.02 * d) + rng.normal(0, 50, size=30) for d in range(1, 5)}
    frame = pd.DataFrame(lags, index=pd.Index([f"T{i:02d}" for i in range(30)], name="merchant_id"))
    frame.insert(0, "trend_projection", base * 1.01)
    frame.insert(0, "outcome", base * 1.02 + rng.normal(0, 50, size=30))
    frame["category_retail"] = (np.arange(30) % 2).astype(float)
    return frame


@pytest.fixture
def completed(series_matrix, forced_assignment) -> pd.DataFrame:
    imputer = SeriesImputer(ImputationConfig(), n_months=series_matrix.shape[1])
    return imputer.impute(series_matrix, pd.Series(forced_assignment)).completed


@pytest.fixture
def builder(completed) -> HorizonDatasetBuilder:
    return HorizonDatasetBuilder(completed, pd.DataFrame(index=completed.index))
