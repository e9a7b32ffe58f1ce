"""
Application configuration management.

Load order (each layer overrides the previous):
  1. ``config/default.toml``      — committed static defaults
  2. ``config/local.toml``        — optional local overrides (gitignored)
  3. ``.env``                     — local secrets and env overrides (gitignored)
  4. Environment variables        — ``TPV_FORECASTER_*`` prefix

Entry point: ``load_config(config_path=None) -> AppConfig``

All pipeline stages and CLI commands receive an ``AppConfig`` instance —
never raw dicts or individual env var lookups scattered through the codebase.
Every randomized step reads ``AppConfig.seed``; there is no ambient global
random state anywhere in the package.
"""

from __future__ import annotations

import os
import tomllib
from pathlib import Path
from typing import Any, Callable, Literal, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, field_validator, model_validator

# ── Sub-config models ─────────────────────────────────────────────────────────


class DataConfig(BaseModel):
    """Filesystem paths used by the CLI collaborators."""

    model_config = ConfigDict(frozen=True)

    raw_dir: str = "data/raw"
    output_dir: str = "data/outputs"
    artifact_dir: str = "data/outputs/model_artifacts"


class SeriesConfig(BaseModel):
    """Shape of the monthly volume series.

    ``n_months`` is the fixed series width N. ``reference_period`` is the
    calendar month of offset N (``"YYYY-MM"``); when set, date-indexed input
    is mapped onto offsets and forecast columns are labelled by target month.
    """

    model_config = ConfigDict(frozen=True)

    n_months: int = 37
    reference_period: Optional[str] = None

    @field_validator("n_months")
    @classmethod
    def validate_n_months(cls, v: int) -> int:
        if v < 2:
            raise ValueError(f"n_months must be >= 2, got {v}.")
        return v

    @field_validator("reference_period")
    @classmethod
    def validate_reference_period(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        parts = v.split("-")
        if len(parts) != 2 or not all(p.isdigit() for p in parts) or not 1 <= int(parts[1]) <= 12:
            raise ValueError(f"reference_period must look like 'YYYY-MM', got '{v}'.")
        return v


class ImputationConfig(BaseModel):
    """Neighbor/trend imputation parameters."""

    model_config = ConfigDict(frozen=True)

    n_neighbors: int = 5
    neighbor_weight: float = 0.7
    empty_row_policy: Literal["fail", "donor_mean"] = "fail"

    @field_validator("neighbor_weight")
    @classmethod
    def validate_weight(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError(f"neighbor_weight must be in [0.0, 1.0], got {v}.")
        return v

    @field_validator("n_neighbors")
    @classmethod
    def validate_neighbors(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"n_neighbors must be >= 1, got {v}.")
        return v


class SegmentationConfig(BaseModel):
    """Merchant clustering parameters.

    ``n_segments`` skips the sampled silhouette search when set.
    """

    model_config = ConfigDict(frozen=True)

    attributes: list[str] = [
        "size_tier", "category", "state", "document_type", "ticket_category",
    ]
    n_segments: Optional[int] = None
    min_clusters: int = 2
    max_clusters: int = 12
    sample_size: int = 2000
    n_trials: int = 10
    k_selection: Literal["mode", "mean"] = "mode"
    n_init: int = 10

    @model_validator(mode="after")
    def validate_cluster_range(self) -> "SegmentationConfig":
        if self.min_clusters < 2:
            raise ValueError(f"min_clusters must be >= 2, got {self.min_clusters}.")
        if self.max_clusters < self.min_clusters:
            raise ValueError(
                f"max_clusters ({self.max_clusters}) must be >= "
                f"min_clusters ({self.min_clusters})."
            )
        if self.n_segments is not None and self.n_segments < 1:
            raise ValueError(f"n_segments must be >= 1, got {self.n_segments}.")
        return self


class FeatureSelectionConfig(BaseModel):
    """Predictor ranking parameters."""

    model_config = ConfigDict(frozen=True)

    percentile: float = 75.0
    max_features: int = 15
    n_estimators: int = 100

    @field_validator("percentile")
    @classmethod
    def validate_percentile(cls, v: float) -> float:
        if not 0.0 < v < 100.0:
            raise ValueError(f"percentile must be in (0, 100), got {v}.")
        return v


class EnsembleConfig(BaseModel):
    """Base learner, stacker and cross-validation hyperparameters."""

    model_config = ConfigDict(frozen=True)

    cv_folds: int = 10
    cv_repeats: int = 3
    knn_neighbors: int = 9
    elastic_net_alphas: list[float] = [0.0001, 0.001, 0.01, 0.1, 1.0]
    elastic_net_l1_ratios: list[float] = [0.1, 0.5, 0.9]
    stacker_learning_rate: float = 0.1
    stacker_max_depth: int = 3
    stacker_n_estimators: int = 200
    stacker_min_child_samples: int = 10

    @field_validator("cv_folds")
    @classmethod
    def validate_folds(cls, v: int) -> int:
        if v < 2:
            raise ValueError(f"cv_folds must be >= 2, got {v}.")
        return v


class ForecastConfig(BaseModel):
    """Forecast generation settings."""

    model_config = ConfigDict(frozen=True)

    horizons: list[int] = [1, 2, 3, 4, 5]

    @field_validator("horizons")
    @classmethod
    def validate_horizons(cls, v: list[int]) -> list[int]:
        if not v or any(h < 1 for h in v):
            raise ValueError(f"horizons must be a non-empty list of ints >= 1, got {v}.")
        return sorted(set(v))


class LoggingConfig(BaseModel):
    """Logging output settings."""

    model_config = ConfigDict(frozen=True)

    level: str = "INFO"
    log_file: str = "data/logs/forecaster.log"
    json_format: bool = False

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        valid = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid:
            raise ValueError(f"Log level must be one of {sorted(valid)}, got '{v}'.")
        return v.upper()


class AppConfig(BaseModel):
    """Complete application configuration — the single source of truth.

    All pipeline stages and CLI commands receive an ``AppConfig`` instance.
    It is constructed by ``load_config()`` which merges TOML + .env.
    """

    model_config = ConfigDict(frozen=True)

    data: DataConfig = DataConfig()
    series: SeriesConfig = SeriesConfig()
    imputation: ImputationConfig = ImputationConfig()
    segmentation: SegmentationConfig = SegmentationConfig()
    selection: FeatureSelectionConfig = FeatureSelectionConfig()
    ensemble: EnsembleConfig = EnsembleConfig()
    forecast: ForecastConfig = ForecastConfig()
    logging: LoggingConfig = LoggingConfig()
    seed: int = 42
    n_jobs: int = -1
    debug: bool = False

    @model_validator(mode="after")
    def validate_horizons_fit_series(self) -> "AppConfig":
        longest = max(self.forecast.horizons)
        if longest >= self.series.n_months:
            raise ValueError(
                f"Longest horizon ({longest}) must be shorter than the series "
                f"length ({self.series.n_months}) so at least one history month remains."
            )
        return self


# ── Loader ────────────────────────────────────────────────────────────────────

_SECTIONS: dict[str, type[BaseModel]] = {
    "data": DataConfig,
    "series": SeriesConfig,
    "imputation": ImputationConfig,
    "segmentation": SegmentationConfig,
    "selection": FeatureSelectionConfig,
    "ensemble": EnsembleConfig,
    "forecast": ForecastConfig,
    "logging": LoggingConfig,
}


def _as_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes")


def _as_int_list(value: str) -> list[int]:
    return [int(part) for part in value.split(",") if part.strip()]


# env var → (TOML table, key, parser)
_ENV_OVERRIDES: dict[str, tuple[str, str, Callable[[str], Any]]] = {
    "TPV_FORECASTER_SEED": ("run", "seed", int),
    "TPV_FORECASTER_N_JOBS": ("run", "n_jobs", int),
    "TPV_FORECASTER_DEBUG": ("run", "debug", _as_bool),
    "TPV_FORECASTER_LOG_LEVEL": ("logging", "level", str),
    "TPV_FORECASTER_REFERENCE_PERIOD": ("series", "reference_period", str),
    "TPV_FORECASTER_HORIZONS": ("forecast", "horizons", _as_int_list),
}


def _find_project_root() -> Path:
    """Nearest ancestor of this package holding ``pyproject.toml``."""
    here = Path(__file__).resolve().parent
    for candidate in (here, *here.parents[:4]):
        if (candidate / "pyproject.toml").exists():
            return candidate
    return here.parent


def _read_toml(path: Path) -> dict[str, Any]:
    with open(path, "rb") as f:
        return tomllib.load(f)


def load_config(config_path: Optional[Path] = None) -> AppConfig:
    """Build an ``AppConfig`` from TOML, ``.env`` and the environment.

    Args:
        config_path: TOML file to start from; ``config/default.toml`` under
            the project root when omitted. A ``local.toml`` next to it is
            merged on top.

    Raises:
        FileNotFoundError: ``config_path`` does not exist.
        pydantic.ValidationError: A merged value is out of range.
        ValueError: An environment override cannot be parsed.
    """
    root = _find_project_root()
    load_dotenv(dotenv_path=root / ".env", override=False)

    path = Path(config_path) if config_path is not None else root / "config" / "default.toml"
    if not path.exists():
        raise FileNotFoundError(
            f"Config file not found: {path}\n"
            "Create config/default.toml or pass --config explicitly."
        )

    raw = _read_toml(path)
    local = path.parent / "local.toml"
    if local.exists():
        raw = _deep_merge(raw, _read_toml(local))

    return _build_app_config(_apply_env_overrides(raw))


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Table-wise merge; scalars and lists in ``override`` replace ``base``."""
    merged = dict(base)
    for key, val in override.items():
        if isinstance(val, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], val)
        else:
            merged[key] = val
    return merged


def _apply_env_overrides(raw: dict[str, Any]) -> dict[str, Any]:
    """Overlay the ``TPV_FORECASTER_*`` variables listed in ``_ENV_OVERRIDES``.

    ``TPV_FORECASTER_HORIZONS`` takes a comma-separated list, e.g. ``"1,3,6"``.
    Unset or empty variables leave the TOML value alone.
    """
    for var, (table, key, parse) in _ENV_OVERRIDES.items():
        value = os.environ.get(var)
        if value:
            raw.setdefault(table, {})[key] = parse(value)
    return raw


def _build_app_config(raw: dict[str, Any]) -> AppConfig:
    """Validate each TOML table into its section model; ``[run]`` holds top-level fields."""
    sections = {name: model(**raw.get(name, {})) for name, model in _SECTIONS.items()}
    return AppConfig(**sections, **raw.get("run", {}))
