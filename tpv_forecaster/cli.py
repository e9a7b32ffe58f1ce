"""
TPV Forecaster command line.

Commands
--------
validate-config   Parse the TOML/env config and print the settings that
                  shape a run (series width, horizons, segmentation, seed).
run               Registrations + monthly volumes in, forecast table out.
                  Domain errors are printed as ``[ERROR] <Type>: <reason>``
                  with exit code 1; nothing is written in that case.

Example::

    tpv-forecaster run --registrations data/raw/registrations.csv \\
                       --series data/raw/monthly_volume.parquet \\
                       --out data/outputs/forecast.csv --save-models
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

import pandas as pd
import typer

app = typer.Typer(
    name="tpv-forecaster",
    help="Merchant monthly TPV forecaster — segment, impute, train, forecast.",
    add_completion=False,
)


# ── Helpers ───────────────────────────────────────────────────────────────────

def _load_config_or_exit(config_path: Optional[str] = None):
    """``load_config()`` or exit 1 with the reason on stderr."""
    from pydantic import ValidationError

    from tpv_forecaster.config import load_config

    try:
        return load_config(Path(config_path) if config_path else None)
    except FileNotFoundError as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1)
    except (ValidationError, ValueError) as exc:
        typer.echo(f"[ERROR] Config validation failed: {exc}", err=True)
        raise typer.Exit(code=1)


def _configure_logging(config):
    from tpv_forecaster.utils.logging import configure_logging
    configure_logging(config.logging)


def _read_table(path: Path) -> pd.DataFrame:
    """Read a CSV or Parquet table, chosen by file suffix."""
    if not path.exists():
        raise FileNotFoundError(f"Input file not found: {path}")
    if path.suffix.lower() == ".parquet":
        return pd.read_parquet(path)
    return pd.read_csv(path, dtype={"merchant_id": str})


def _write_table(frame: pd.DataFrame, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    if path.suffix.lower() == ".parquet":
        frame.to_parquet(path)
    else:
        frame.to_csv(path)


def _run_summary(config) -> list[tuple[str, object]]:
    seg = config.segmentation
    return [
        ("Series length", f"{config.series.n_months} months"),
        ("Reference period", config.series.reference_period or "(relative)"),
        ("Forecast horizons", ", ".join(str(h) for h in config.forecast.horizons)),
        ("Segments", seg.n_segments or f"searched in {seg.min_clusters}..{seg.max_clusters}"),
        ("Empty rows", config.imputation.empty_row_policy),
        ("Seed", config.seed),
        ("Workers (n_jobs)", config.n_jobs),
        ("Log level", config.logging.level),
    ]


# ── Commands ──────────────────────────────────────────────────────────────────

@app.command("validate-config")
def validate_config(
    config_path: Optional[str] = typer.Option(
        None,
        "--config",
        help="Path to TOML config file (default: config/default.toml).",
    ),
    show_full: bool = typer.Option(
        False,
        "--full",
        help="Also dump every field as JSON.",
    ),
) -> None:
    """Check the config parses and print the run-shaping settings."""
    config = _load_config_or_exit(config_path)

    for label, value in _run_summary(config):
        typer.echo(f"  {label + ':':<19}{value}")
    if show_full:
        typer.echo(json.dumps(config.model_dump(), indent=2, default=str))
    typer.echo("[OK] Config valid.")


@app.command("run")
def run(
    registrations_path: str = typer.Option(
        ...,
        "--registrations",
        help="Registration table (.csv or .parquet).",
    ),
    series_path: str = typer.Option(
        ...,
        "--series",
        help="Long monthly volume table: merchant_id, month, volume (.csv or .parquet).",
    ),
    out_path: str = typer.Option(
        ...,
        "--out",
        help="Where to write the forecast table (.csv or .parquet).",
    ),
    segments_path: Optional[str] = typer.Option(
        None,
        "--segments",
        help="Optional forced assignment table: merchant_id, segment.",
    ),
    save_models: bool = typer.Option(
        False,
        "--save-models",
        help="Write every fitted ensemble to config.data.artifact_dir.",
    ),
    config_path: Optional[str] = typer.Option(
        None,
        "--config",
        help="Path to TOML config file.",
    ),
) -> None:
    """Segment, impute, train and forecast every merchant.

    Exits with code 1 on any input, coverage, imputation, training or
    forecast error. No partial table is written.
    """
    from tpv_forecaster.imputation.imputer import ImputationError
    from tpv_forecaster.ingestion.registrations import RegistrationValidationError
    from tpv_forecaster.ingestion.series import CoverageError, SeriesValidationError
    from tpv_forecaster.ml.predictor import ForecastError
    from tpv_forecaster.ml.trainer import TrainingFailedError
    from tpv_forecaster.pipeline.orchestrator import ForecastPipeline
    from tpv_forecaster.segmentation.segmenter import SegmentationError

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    try:
        registrations = _read_table(Path(registrations_path))
        series_long = _read_table(Path(series_path))
        assignment = None
        if segments_path:
            seg = _read_table(Path(segments_path))
            assignment = dict(zip(seg["merchant_id"].astype(str), seg["segment"].astype(int)))
    except (FileNotFoundError, KeyError) as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1)

    try:
        result = ForecastPipeline(config).run(registrations, series_long, assignment=assignment)
    except (
        RegistrationValidationError,
        SeriesValidationError,
        CoverageError,
        SegmentationError,
        ImputationError,
        TrainingFailedError,
        ForecastError,
    ) as exc:
        typer.echo(f"[ERROR] {type(exc).__name__}: {exc}", err=True)
        raise typer.Exit(code=1)

    out = Path(out_path)
    _write_table(result.forecasts, out)

    typer.echo(f"Segments: {result.segmentation.n_segments}  sizes={result.segmentation.sizes()}")
    typer.echo(f"Imputed cells: {result.imputation.n_filled}")
    typer.echo("")
    typer.echo(result.training.metrics().to_string(index=False))
    typer.echo("")

    if save_models:
        written = result.training.save(Path(config.data.artifact_dir))
        typer.echo(f"Saved {len(written)} model artifact(s) to {config.data.artifact_dir}")

    typer.echo(f"[OK] Forecast for {len(result.forecasts)} merchant(s) written to {out}")


# ── Entry point ───────────────────────────────────────────────────────────────

if __name__ == "__main__":
    app()
