"""
Two-layer stacked ensemble for one (segment, horizon) pair.

Layer 1 — base learners, fitted on min-max scaled, selected predictors:
  elastic_net  ``ElasticNet``; ``alpha`` / ``l1_ratio`` picked from a fixed
               grid by the highest mean out-of-fold R² (first grid point
               wins ties).
  knn          ``KNeighborsRegressor(n_neighbors=9, weights="distance")``;
               the neighborhood is clamped to the smallest training fold so
               every fold and the final fit use the same k.

Layer 2 — stacker:
  ``LGBMRegressor`` with fixed hyperparameters (learning rate 0.1, depth 3,
  200 trees, min leaf size 10) and L1 objective, i.e. trained to minimize
  mean absolute error, on the base learners' out-of-fold predictions
  (averaged across repeats).

Validation
----------
Base learners and the stacker use the same repeated k-fold scheme
(``cross_validation.resolve_scheme``). The stacker's pooled OOF MAE and R²
are the ensemble's reported ``cv_mae`` / ``cv_r2``.

Prediction
----------
The scaler fitted on the training frame is applied with ``transform`` only —
never refit on prediction data.
"""

from __future__ import annotations

import json
import logging
from itertools import product
from pathlib import Path
from typing import Any

import numpy as np
import pandas as pd
from lightgbm import LGBMRegressor
from sklearn.linear_model import ElasticNet
from sklearn.neighbors import KNeighborsRegressor
from sklearn.preprocessing import MinMaxScaler

from tpv_forecaster.config import EnsembleConfig, FeatureSelectionConfig
from tpv_forecaster.features.horizon import OUTCOME_COL
from tpv_forecaster.features.selector import select_features
from tpv_forecaster.ml.cross_validation import CVResult, CVScheme, cross_validate, resolve_scheme
from tpv_forecaster.models.meta import ModelMetadata
from tpv_forecaster.utils.logging import job_logger
from tpv_forecaster.utils.time_utils import utcnow

logger = logging.getLogger(__name__)

BASE_LEARNERS: tuple[str, ...] = ("elastic_net", "knn")


class TrainingError(RuntimeError):
    """Raised when a (segment, horizon) ensemble cannot be fitted."""


class EnsembleModel:
    """Scaler + feature selection + two base learners + LightGBM stacker.

    Attributes:
        segment:  Segment label this model serves.
        horizon:  Forecast horizon in months.
        MODEL_VERSION: Version string embedded in saved artifacts.
    """

    MODEL_VERSION = "v1.0.0"

    def __init__(
        self,
        segment: int,
        horizon: int,
        ensemble_config: EnsembleConfig | None = None,
        selection_config: FeatureSelectionConfig | None = None,
        seed: int = 42,
    ) -> None:
        self.segment = segment
        self.horizon = horizon
        self.ensemble_config = ensemble_config or EnsembleConfig()
        self.selection_config = selection_config or FeatureSelectionConfig()
        self.seed = seed

        self._scaler: MinMaxScaler | None = None
        self._input_cols: list[str] = []
        self._selected_cols: list[str] = []
        self._elastic_net: ElasticNet | None = None
        self._knn: KNeighborsRegressor | None = None
        self._stacker: LGBMRegressor | None = None
        self._metadata: ModelMetadata | None = None

    # ── Properties ────────────────────────────────────────────────────────────

    @property
    def is_fitted(self) -> bool:
        """True after fit() has completed."""
        return self._stacker is not None

    @property
    def input_columns(self) -> list[str]:
        """Non-outcome columns the scaler was fitted on, in order."""
        return list(self._input_cols)

    @property
    def selected_features(self) -> list[str]:
        return list(self._selected_cols)

    @property
    def scaler(self) -> MinMaxScaler | None:
        return self._scaler

    @property
    def metadata(self) -> ModelMetadata | None:
        return self._metadata

    # ── Training ──────────────────────────────────────────────────────────────

    def _tune_elastic_net(
        self, X: pd.DataFrame, y: np.ndarray, scheme: CVScheme
    ) -> tuple[dict[str, float], CVResult]:
        cfg = self.ensemble_config
        best: tuple[dict[str, float], CVResult] | None = None
        for alpha, l1_ratio in product(cfg.elastic_net_alphas, cfg.elastic_net_l1_ratios):
            result = cross_validate(
                lambda a=alpha, r=l1_ratio: ElasticNet(
                    alpha=a, l1_ratio=r, max_iter=10000, random_state=self.seed
                ),
                X, y, scheme,
            )
            if best is None or result.r2 > best[1].r2:
                best = ({"alpha": alpha, "l1_ratio": l1_ratio}, result)
        assert best is not None
        return best

    def _make_stacker(self) -> LGBMRegressor:
        cfg = self.ensemble_config
        return LGBMRegressor(
            objective="l1",
            learning_rate=cfg.stacker_learning_rate,
            max_depth=cfg.stacker_max_depth,
            n_estimators=cfg.stacker_n_estimators,
            min_child_samples=cfg.stacker_min_child_samples,
            random_state=self.seed,
            deterministic=True,
            n_jobs=1,
            verbose=-1,
        )

    def fit(self, frame: pd.DataFrame) -> ModelMetadata:
        """Fit the full pipeline on a TrainingFrame.

        Args:
            frame: Outcome column plus predictor columns for one segment.

        Returns:
            ``ModelMetadata`` with the cross-validated MAE and R².

        Raises:
            TrainingError: Missing outcome, fewer than 2 rows, or gaps.
            FeatureSelectionError: No predictor qualifies.
        """
        if OUTCOME_COL not in frame.columns:
            raise TrainingError(f"Training frame has no '{OUTCOME_COL}' column.")
        if len(frame) < 2:
            raise TrainingError(
                f"segment={self.segment} horizon={self.horizon}: need >= 2 rows, got {len(frame)}."
            )
        if not np.isfinite(frame.to_numpy(dtype=float)).all():
            raise TrainingError(
                f"segment={self.segment} horizon={self.horizon}: "
                "training frame has missing values or infinities."
            )

        cfg = self.ensemble_config
        self._input_cols = [c for c in frame.columns if c != OUTCOME_COL]
        y = frame[OUTCOME_COL].to_numpy(dtype=float)

        # 1. Min-max scaling fitted on this frame only
        self._scaler = MinMaxScaler().fit(frame[self._input_cols])
        scaled = pd.DataFrame(
            self._scaler.transform(frame[self._input_cols]),
            index=frame.index,
            columns=self._input_cols,
        )

        # 2. Feature selection on the scaled frame
        selection = select_features(
            scaled.assign(**{OUTCOME_COL: y}), OUTCOME_COL, self.selection_config, seed=self.seed
        )
        self._selected_cols = selection.selected
        job_logger(logger, self.segment, self.horizon).debug(
            "kept %d of %d predictors: %s",
            len(self._selected_cols), len(self._input_cols), self._selected_cols,
        )
        X = scaled[self._selected_cols]

        # 3. Base learners under repeated k-fold
        scheme = resolve_scheme(len(frame), cfg.cv_folds, cfg.cv_repeats, self.seed)
        k = max(1, min(cfg.knn_neighbors, scheme.min_train_size))
        enet_params, enet_cv = self._tune_elastic_net(X, y, scheme)
        knn_cv = cross_validate(
            lambda: KNeighborsRegressor(n_neighbors=k, weights="distance"), X, y, scheme
        )

        # 4. Stacker on out-of-fold base predictions
        level_one = pd.DataFrame(
            {"elastic_net": enet_cv.mean_oof, "knn": knn_cv.mean_oof}, index=frame.index
        )
        stack_cv = cross_validate(self._make_stacker, level_one, y, scheme)

        self._elastic_net = ElasticNet(
            max_iter=10000, random_state=self.seed, **enet_params
        ).fit(X, y)
        self._knn = KNeighborsRegressor(n_neighbors=k, weights="distance").fit(X, y)
        self._stacker = self._make_stacker().fit(level_one, y)

        # 5. Monitoring metrics
        self._metadata = ModelMetadata(
            segment=self.segment,
            horizon=self.horizon,
            n_rows=len(frame),
            selected_features=list(self._selected_cols),
            elastic_net_params=enet_params,
            knn_neighbors=k,
            cv_mae=stack_cv.mae,
            cv_r2=stack_cv.r2,
            trained_at=utcnow(),
        )
        job_logger(logger, self.segment, self.horizon).info(
            "rows=%d features=%d  enet r2=%.3f  knn r2=%.3f  stack mae=%.2f r2=%.3f",
            len(frame), len(self._selected_cols),
            enet_cv.r2, knn_cv.r2, stack_cv.mae, stack_cv.r2,
        )
        return self._metadata

    # ── Inference ─────────────────────────────────────────────────────────────

    def predict(self, frame: pd.DataFrame) -> pd.Series:
        """Score a live frame with the training column layout.

        Args:
            frame: Predictor columns (an ``outcome`` column, if present, is
                   ignored). Must contain every training input column.

        Returns:
            Series of predictions indexed like ``frame``.

        Raises:
            RuntimeError: If the model is not fitted.
            KeyError:     If a training input column is missing.
        """
        if not self.is_fitted:
            raise RuntimeError("EnsembleModel.predict() called before fit().")
        missing = [c for c in self._input_cols if c not in frame.columns]
        if missing:
            raise KeyError(f"Live frame is missing training columns: {missing}")

        scaled = pd.DataFrame(
            self._scaler.transform(frame[self._input_cols]),
            index=frame.index,
            columns=self._input_cols,
        )
        X = scaled[self._selected_cols]
        level_one = pd.DataFrame(
            {"elastic_net": self._elastic_net.predict(X), "knn": self._knn.predict(X)},
            index=frame.index,
        )
        return pd.Series(self._stacker.predict(level_one), index=frame.index, name=self.horizon)

    # ── Persistence ───────────────────────────────────────────────────────────

    def save(self, artifact_path: Path) -> None:
        """Serialize the fitted pipeline to a joblib pickle file.

        Raises:
            RuntimeError: If the model has not been fitted.
        """
        if not self.is_fitted:
            raise RuntimeError("Cannot save an unfitted EnsembleModel.")

        import joblib

        artifact_path.parent.mkdir(parents=True, exist_ok=True)
        joblib.dump(
            {
                "segment":          self.segment,
                "horizon":          self.horizon,
                "seed":             self.seed,
                "ensemble_config":  self.ensemble_config.model_dump(),
                "selection_config": self.selection_config.model_dump(),
                "scaler":           self._scaler,
                "input_cols":       self._input_cols,
                "selected_cols":    self._selected_cols,
                "elastic_net":      self._elastic_net,
                "knn":              self._knn,
                "stacker":          self._stacker,
                "metadata":         self._metadata.model_dump() if self._metadata else None,
                "model_version":    self.MODEL_VERSION,
            },
            artifact_path,
        )
        logger.info("Model artifact saved: %s", artifact_path)

    @classmethod
    def load(cls, artifact_path: Path) -> "EnsembleModel":
        """Load an EnsembleModel written by ``save()``.

        Raises:
            FileNotFoundError: If ``artifact_path`` does not exist.
        """
        import joblib

        if not artifact_path.exists():
            raise FileNotFoundError(f"Model artifact not found: {artifact_path}")

        state: dict[str, Any] = joblib.load(artifact_path)
        inst = cls(
            segment=state["segment"],
            horizon=state["horizon"],
            ensemble_config=EnsembleConfig(**state["ensemble_config"]),
            selection_config=FeatureSelectionConfig(**state["selection_config"]),
            seed=state["seed"],
        )
        inst._scaler        = state["scaler"]
        inst._input_cols    = state["input_cols"]
        inst._selected_cols = state["selected_cols"]
        inst._elastic_net   = state["elastic_net"]
        inst._knn           = state["knn"]
        inst._stacker       = state["stacker"]
        if state.get("metadata"):
            inst._metadata = ModelMetadata(**state["metadata"])
        logger.info(
            "Model artifact loaded: %s (segment=%d, horizon=%d)",
            artifact_path, inst.segment, inst.horizon,
        )
        return inst

    def write_metadata(self, meta_path: Path) -> None:
        """Write a JSON metadata sidecar alongside the model artifact."""
        if self._metadata is None:
            raise RuntimeError("Cannot write metadata for an unfitted EnsembleModel.")
        meta = {
            "schema_version":  self.MODEL_VERSION,
            "model_type":      "stacked_ensemble",
            "base_learners":   list(BASE_LEARNERS),
            "stacker":         "lightgbm",
            "input_columns":   self._input_cols,
            "scaler_min":      self._scaler.data_min_.tolist(),
            "scaler_max":      self._scaler.data_max_.tolist(),
            **self._metadata.model_dump(mode="json"),
        }
        meta_path.parent.mkdir(parents=True, exist_ok=True)
        meta_path.write_text(json.dumps(meta, indent=2))
        logger.debug("Model metadata written: %s", meta_path)
