"""
Tests for tpv_forecaster/ml/ensemble.py.

What we test
------------
EnsembleModel.fit():
  - Returns ModelMetadata with cv_mae >= 0 and cv_r2 <= 1.
  - Keeps at most 15 features, all training input columns.
  - Scaler maps every training input into [0, 1] and stores its bounds.
  - KNN neighborhood is clamped to the smallest training fold.
  - Missing outcome, fewer than 2 rows, gaps and infinities raise TrainingError.
  - Same seed and frame give identical predictions.

EnsembleModel.predict():
  - One finite prediction per live row, indexed like the input.
  - Never refits the scaler, even on out-of-range live data.
  - Raises before fit() and on missing training columns.

EnsembleModel.save() / load() / write_metadata():
  - save() raises on an unfitted model.
  - Round-trip keeps predictions and metadata.
  - Metadata JSON carries the expected keys.
"""

from __future__ import annotations

import json

import numpy as np
import pandas as pd
import pytest

from tpv_forecaster.ml.ensemble import EnsembleModel, TrainingError


def _model(ensemble_config, selection_config, seed: int = 3) -> EnsembleModel:
    return EnsembleModel(
        segment=1,
        horizon=2,
        ensemble_config=ensemble_config,
        selection_config=selection_config,
        seed=seed,
    )


@pytest.fixture
def fitted(ensemble_config, selection_config, training_frame) -> EnsembleModel:
    model = _model(ensemble_config, selection_config)
    model.fit(training_frame)
    return model


# ── fit() ─────────────────────────────────────────────────────────────────────

def test_not_fitted_before_fit(ensemble_config, selection_config):
    assert not _model(ensemble_config, selection_config).is_fitted


def test_fit_returns_bounded_metrics(fitted, training_frame):
    meta = fitted.metadata
    assert fitted.is_fitted
    assert meta.segment == 1 and meta.horizon == 2
    assert meta.n_rows == len(training_frame)
    assert meta.cv_mae >= 0.0
    assert meta.cv_r2 <= 1.0
    assert set(meta.elastic_net_params) == {"alpha", "l1_ratio"}


def test_selected_features_bounded(fitted, training_frame):
    inputs = [c for c in training_frame.columns if c != "outcome"]
    assert fitted.input_columns == inputs
    assert 1 <= len(fitted.selected_features) <= 15
    assert set(fitted.selected_features) <= set(inputs)


def test_scaler_maps_training_inputs_into_unit_range(fitted, training_frame):
    inputs = training_frame[fitted.input_columns]
    scaled = fitted.scaler.transform(inputs)
    assert scaled.min() >= -1e-12
    assert scaled.max() <= 1.0 + 1e-12


def test_scaler_bounds_reproduced(fitted, training_frame):
    inputs = training_frame[fitted.input_columns]
    np.testing.assert_allclose(fitted.scaler.data_min_, inputs.min().to_numpy())
    np.testing.assert_allclose(fitted.scaler.data_max_, inputs.max().to_numpy())
    restored = fitted.scaler.inverse_transform(fitted.scaler.transform(inputs))
    np.testing.assert_allclose(restored, inputs.to_numpy(), rtol=1e-9)


def test_knn_clamped_to_smallest_fold(ensemble_config, selection_config, training_frame):
    model = _model(ensemble_config, selection_config)
    meta = model.fit(training_frame.iloc[:5])
    # 5 rows -> 5 folds -> training folds of 4
    assert meta.knn_neighbors == 4


def test_default_knn_on_larger_frame(fitted):
    # 30 rows, 10 folds -> training folds of 27 >= 9
    assert fitted.metadata.knn_neighbors == 9


def test_fit_requires_outcome(ensemble_config, selection_config, training_frame):
    with pytest.raises(TrainingError, match="outcome"):
        _model(ensemble_config, selection_config).fit(training_frame.drop(columns="outcome"))


def test_fit_requires_two_rows(ensemble_config, selection_config, training_frame):
    with pytest.raises(TrainingError, match=">= 2 rows"):
        _model(ensemble_config, selection_config).fit(training_frame.iloc[:1])


def test_fit_rejects_gaps(ensemble_config, selection_config, training_frame):
    frame = training_frame.copy()
    frame.iloc[3, 2] = np.nan
    with pytest.raises(TrainingError, match="missing values"):
        _model(ensemble_config, selection_config).fit(frame)


def test_fit_rejects_infinities(ensemble_config, selection_config, training_frame):
    frame = training_frame.copy()
    frame.iloc[5, 1] = np.inf
    with pytest.raises(TrainingError, match="infinities"):
        _model(ensemble_config, selection_config).fit(frame)


def test_fit_reproducible(ensemble_config, selection_config, training_frame):
    live = training_frame.drop(columns="outcome")
    a = _model(ensemble_config, selection_config)
    b = _model(ensemble_config, selection_config)
    a.fit(training_frame)
    b.fit(training_frame)
    pd.testing.assert_series_equal(a.predict(live), b.predict(live))
    assert a.metadata.cv_mae == b.metadata.cv_mae


# ── predict() ─────────────────────────────────────────────────────────────────

def test_predict_one_per_row(fitted, training_frame):
    live = training_frame.drop(columns="outcome").iloc[:7]
    preds = fitted.predict(live)
    assert preds.index.equals(live.index)
    assert np.isfinite(preds.to_numpy()).all()


def test_predict_ignores_outcome_column(fitted, training_frame):
    with_outcome = fitted.predict(training_frame)
    without = fitted.predict(training_frame.drop(columns="outcome"))
    pd.testing.assert_series_equal(with_outcome, without)


def test_predict_does_not_refit_scaler(fitted, training_frame):
    before_min = fitted.scaler.data_min_.copy()
    before_max = fitted.scaler.data_max_.copy()
    live = training_frame.drop(columns="outcome") * 10.0
    fitted.predict(live)
    np.testing.assert_array_equal(fitted.scaler.data_min_, before_min)
    np.testing.assert_array_equal(fitted.scaler.data_max_, before_max)


def test_predict_before_fit_raises(ensemble_config, selection_config, training_frame):
    with pytest.raises(RuntimeError, match="before fit"):
        _model(ensemble_config, selection_config).predict(training_frame)


def test_predict_missing_column_raises(fitted, training_frame):
    with pytest.raises(KeyError, match="lag_1"):
        fitted.predict(training_frame.drop(columns=["outcome", "lag_1"]))


# ── Persistence ───────────────────────────────────────────────────────────────

def test_save_unfitted_raises(ensemble_config, selection_config, tmp_path):
    with pytest.raises(RuntimeError, match="unfitted"):
        _model(ensemble_config, selection_config).save(tmp_path / "m.pkl")


def test_save_load_round_trip(fitted, training_frame, tmp_path):
    path = tmp_path / "models" / "ensemble_s1_h2.pkl"
    fitted.save(path)
    loaded = EnsembleModel.load(path)
    live = training_frame.drop(columns="outcome")
    assert loaded.is_fitted
    assert (loaded.segment, loaded.horizon) == (1, 2)
    assert loaded.metadata == fitted.metadata
    pd.testing.assert_series_equal(loaded.predict(live), fitted.predict(live))


def test_load_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        EnsembleModel.load(tmp_path / "absent.pkl")


def test_write_metadata(fitted, tmp_path):
    path = tmp_path / "ensemble_s1_h2.json"
    fitted.write_metadata(path)
    meta = json.loads(path.read_text())
    for key in ("model_type", "base_learners", "stacker", "input_columns",
                "scaler_min", "scaler_max", "selected_features", "cv_mae", "cv_r2"):
        assert key in meta
    assert meta["base_learners"] == ["elastic_net", "knn"]
    assert len(meta["scaler_min"]) == len(meta["input_columns"])
