"""
Shared pytest fixtures for the TPV Forecaster test suite.

Provides:
  - ``registrations_df``: raw registration table for ten merchants.
  - ``series_long``: their six-month volume history in long format, with gaps.
  - ``series_matrix``: the same history pivoted to MonthlySeries shape.
  - ``forced_assignment``: two segments of five merchants.
  - ``small_config``: an ``AppConfig`` sized for the ten-merchant scenario.
"""

from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from tpv_forecaster.config import (
    AppConfig,
    EnsembleConfig,
    FeatureSelectionConfig,
    ForecastConfig,
    LoggingConfig,
    SeriesConfig,
)

MERCHANT_IDS = [f"M{i:02d}" for i in range(1, 11)]
N_MONTHS = 6

# (merchant, month) cells left absent in the long table
GAPS = {("M02", 3), ("M04", 1), ("M07", 2), ("M07", 4), ("M09", 6)}


def make_volume(i: int, month: int) -> float:
    """Deterministic growing volume for merchant index ``i`` (0-based)."""
    base = 1_000.0 * (i + 1)
    growth = 1.03 + 0.01 * (i % 5)
    return round(base * growth ** month, 2)


# ── Input tables ──────────────────────────────────────────────────────────────

@pytest.fixture
def registrations_df() -> pd.DataFrame:
    """Ten registration rows with mixed state spellings."""
    return pd.DataFrame(
        {
            "merchant_id": MERCHANT_IDS,
            "size_tier": [0, 1, 0, 2, 1, 3, 2, 3, 2, 3],
            "category": ["food", "food", "retail", "food", "retail",
                         "services", "services", "retail", "services", "services"],
            "state": ["SP", "São Paulo", "rj", "RJ", "Minas Gerais",
                      "sp", "MG", "Rio de Janeiro", "SP", "mg"],
            "document_type": ["CPF", "cpf", "CPF", "CNPJ", "CPF",
                              "CNPJ", "CNPJ", "CNPJ", "CNPJ", "CNPJ"],
            "ticket_category": ["low", "low", "mid", "mid", "low",
                                "high", "high", "mid", "high", "high"],
            "estimated_volume": [1_000.0, 2_000.0, 3_000.0, 4_000.0, 5_000.0,
                                 6_000.0, 7_000.0, 8_000.0, 9_000.0, 10_000.0],
        }
    )


@pytest.fixture
def series_long() -> pd.DataFrame:
    """Long (merchant_id, month, volume) rows; GAPS cells are omitted."""
    rows = [
        {"merchant_id": mid, "month": month, "volume": make_volume(i, month)}
        for i, mid in enumerate(MERCHANT_IDS)
        for month in range(1, N_MONTHS + 1)
        if (mid, month) not in GAPS
    ]
    return pd.DataFrame(rows)


@pytest.fixture
def series_matrix() -> pd.DataFrame:
    """MonthlySeries frame (index = merchant id, columns 1..6) with NaN gaps."""
    data = {
        month: [
            np.nan if (mid, month) in GAPS else make_volume(i, month)
            for i, mid in enumerate(MERCHANT_IDS)
        ]
        for month in range(1, N_MONTHS + 1)
    }
    frame = pd.DataFrame(data, index=pd.Index(MERCHANT_IDS, name="merchant_id"))
    return frame.astype(float)


@pytest.fixture
def forced_assignment() -> dict[str, int]:
    """Merchants 1-5 in segment 1, 6-10 in segment 2."""
    return {mid: (1 if i < 5 else 2) for i, mid in enumerate(MERCHANT_IDS)}


# ── Config ────────────────────────────────────────────────────────────────────

@pytest.fixture
def small_config() -> AppConfig:
    """Six-month series, horizon 1, serial workers, light forests."""
    return AppConfig(
        series=SeriesConfig(n_months=N_MONTHS, reference_period=None),
        selection=FeatureSelectionConfig(n_estimators=20),
        ensemble=EnsembleConfig(cv_repeats=2, stacker_n_estimators=20),
        forecast=ForecastConfig(horizons=[1]),
        logging=LoggingConfig(log_file=""),
        n_jobs=1,
        seed=7,
    )
