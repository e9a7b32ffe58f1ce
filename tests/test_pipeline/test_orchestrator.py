"""
Tests for tpv_forecaster/pipeline/orchestrator.py.

What we test
------------
ForecastPipeline.run() — ten merchants, six months, two forced segments of
five, horizon 1:
  - The forecast table has exactly ten predictions, none missing.
  - Each of the two models reports MAE >= 0 and R² <= 1.
  - Imputed series has no gaps; observed volumes are untouched.
  - Stage run records cover segment, impute, train, forecast with success.
  - Same seed and inputs give identical forecasts.
  - Clustering path (no forced assignment) also yields a full table.

Failure paths:
  - A merchant present in only one input raises CoverageError before
    imputation.
  - A failing (segment, horizon) job surfaces as TrainingFailedError.
"""

from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from tpv_forecaster.config import SegmentationConfig
from tpv_forecaster.ingestion.series import CoverageError
from tpv_forecaster.ml.trainer import TrainingFailedError
from tpv_forecaster.pipeline.orchestrator import ForecastPipeline


@pytest.fixture
def result(small_config, registrations_df, series_long, forced_assignment):
    return ForecastPipeline(small_config).run(
        registrations_df, series_long, assignment=forced_assignment
    )


# ── Ten-merchant scenario ─────────────────────────────────────────────────────

def test_ten_predictions(result, registrations_df):
    table = result.forecasts
    assert table.shape == (10, 1)
    assert list(table.columns) == ["m+1"]
    assert list(table.index) == registrations_df["merchant_id"].tolist()
    assert not table.isna().any().any()


def test_two_models_with_bounded_metrics(result):
    assert sorted(result.training.models) == [(1, 1), (2, 1)]
    for model in result.training.models.values():
        assert model.metadata.n_rows == 5
        assert model.metadata.cv_mae >= 0.0
        assert model.metadata.cv_r2 <= 1.0


def test_assignment_is_forced_partition(result, forced_assignment):
    assert result.assignment.to_dict() == forced_assignment
    assert result.segmentation.sizes() == {1: 5, 2: 5}


def test_completed_series_preserves_observed(result, series_matrix):
    completed = result.completed
    assert not completed.isna().any().any()
    observed = series_matrix.notna().to_numpy()
    assert np.array_equal(
        completed.loc[series_matrix.index].to_numpy()[observed],
        series_matrix.to_numpy()[observed],
    )
    assert result.imputation.n_filled == 5


def test_stage_runs_recorded(result):
    stages = [run.pipeline_stage for run in result.stage_runs]
    assert stages == ["segment", "impute", "train", "forecast"]
    assert all(run.status == "success" for run in result.stage_runs)
    assert all(run.finished_at is not None for run in result.stage_runs)
    assert result.stage_runs[0].config_snapshot["seed"] == 7


def test_reproducible(small_config, registrations_df, series_long, forced_assignment, result):
    again = ForecastPipeline(small_config).run(
        registrations_df, series_long, assignment=forced_assignment
    )
    pd.testing.assert_frame_equal(again.forecasts, result.forecasts)


def test_calendar_reference_labels(small_config, registrations_df, series_long, forced_assignment):
    config = small_config.model_copy(
        update={"series": small_config.series.model_copy(update={"reference_period": "2023-07"})}
    )
    table = ForecastPipeline(config).run(
        registrations_df, series_long, assignment=forced_assignment
    ).forecasts
    assert list(table.columns) == ["2023-08"]


def test_clustering_path(small_config, registrations_df, series_long):
    config = small_config.model_copy(
        update={"segmentation": SegmentationConfig(n_segments=2, n_init=3)}
    )
    result = ForecastPipeline(config).run(registrations_df, series_long)
    assert result.segmentation.n_segments == 2
    assert result.forecasts.shape == (10, 1)
    assert not result.forecasts.isna().any().any()


# ── Failure paths ─────────────────────────────────────────────────────────────

def test_coverage_error_before_imputation(small_config, registrations_df, series_long):
    series = series_long[series_long["merchant_id"] != "M05"]
    with pytest.raises(CoverageError) as excinfo:
        ForecastPipeline(small_config).run(registrations_df, series)
    assert excinfo.value.missing_from_series == ["M05"]
    assert excinfo.value.missing_from_registrations == []


def test_coverage_error_extra_series_merchant(small_config, registrations_df, series_long):
    extra = pd.DataFrame({"merchant_id": ["M77"], "month": [1], "volume": [10.0]})
    with pytest.raises(CoverageError) as excinfo:
        ForecastPipeline(small_config).run(registrations_df, pd.concat([series_long, extra]))
    assert excinfo.value.missing_from_registrations == ["M77"]


def test_training_failure_reported(small_config, registrations_df, series_long):
    # a one-merchant segment cannot be cross-validated
    assignment = {f"M{i:02d}": (2 if i == 10 else 1) for i in range(1, 11)}
    with pytest.raises(TrainingFailedError) as excinfo:
        ForecastPipeline(small_config).run(registrations_df, series_long, assignment=assignment)
    assert set(excinfo.value.failures) == {(2, 1)}
