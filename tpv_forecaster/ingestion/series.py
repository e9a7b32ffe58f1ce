"""
Monthly series shaping and coverage checks.

The volume history arrives in long format — one row per (merchant, month) —
and the core works on the fixed-width MonthlySeries shape: a DataFrame
indexed by merchant id with integer columns ``1..N`` (N = reference month)
and NaN for absent months.

Month column
------------
Either integer offsets ``1..N`` already, or anything ``pd.to_datetime``
accepts. Dates require ``reference_period`` (the calendar month of offset N).

Validation
----------
``SeriesValidationError`` is raised for offsets outside ``1..N``, duplicate
(merchant, month) rows, non-numeric volumes, or a matrix whose width is not
N. ``CoverageError`` is raised when the registration table and the series
table do not describe exactly the same merchants.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional

import numpy as np
import pandas as pd

from tpv_forecaster.utils.time_utils import dates_to_offsets

logger = logging.getLogger(__name__)


class SeriesValidationError(ValueError):
    """Raised when monthly series input is malformed."""


class CoverageError(RuntimeError):
    """Raised when merchant ids differ between registration and series tables.

    Attributes:
        missing_from_series:        Ids registered but without a series.
        missing_from_registrations: Ids with a series but no registration.
    """

    def __init__(
        self,
        missing_from_series: list[str],
        missing_from_registrations: list[str],
    ) -> None:
        self.missing_from_series = missing_from_series
        self.missing_from_registrations = missing_from_registrations
        super().__init__(
            "Merchant coverage mismatch: "
            f"{len(missing_from_series)} registered id(s) have no series "
            f"(e.g. {missing_from_series[:5]}), "
            f"{len(missing_from_registrations)} series id(s) are not registered "
            f"(e.g. {missing_from_registrations[:5]})."
        )


def to_series_matrix(
    long_df: pd.DataFrame,
    n_months: int,
    reference_period: Optional[str] = None,
    id_col: str = "merchant_id",
    month_col: str = "month",
    value_col: str = "volume",
) -> pd.DataFrame:
    """Pivot long-format volume rows into the MonthlySeries shape.

    Args:
        long_df:          Rows of (merchant id, month, volume).
        n_months:         Series width N.
        reference_period: ``"YYYY-MM"`` of offset N; required for date months.
        id_col:           Merchant id column.
        month_col:        Month offset or date column.
        value_col:        Volume column (NaN allowed).

    Returns:
        Float DataFrame indexed by merchant id (str), columns ``1..n_months``.

    Raises:
        SeriesValidationError: See module docstring.
    """
    missing = [c for c in (id_col, month_col, value_col) if c not in long_df.columns]
    if missing:
        raise SeriesValidationError(f"Series table missing columns: {missing}")

    df = long_df[[id_col, month_col, value_col]].copy()
    df[id_col] = df[id_col].astype(str).str.strip()

    if pd.api.types.is_numeric_dtype(df[month_col]):
        if df[month_col].isna().any():
            raise SeriesValidationError(f"Column '{month_col}' has missing month offsets.")
        offsets = df[month_col].astype(int)
    else:
        if reference_period is None:
            raise SeriesValidationError(
                f"Column '{month_col}' holds dates; series.reference_period must be set."
            )
        offsets = dates_to_offsets(df[month_col], reference_period, n_months)
    df["_offset"] = offsets

    out_of_window = df[(df["_offset"] < 1) | (df["_offset"] > n_months)]
    if not out_of_window.empty:
        raise SeriesValidationError(
            f"{len(out_of_window)} row(s) fall outside month offsets 1..{n_months} "
            f"(e.g. merchant {out_of_window[id_col].iloc[0]!r}, "
            f"offset {int(out_of_window['_offset'].iloc[0])})."
        )

    dupes = df.duplicated([id_col, "_offset"])
    if dupes.any():
        first = df.loc[dupes].iloc[0]
        raise SeriesValidationError(
            f"{int(dupes.sum())} duplicate (merchant, month) row(s), "
            f"e.g. merchant {first[id_col]!r} month {int(first['_offset'])}."
        )

    values = pd.to_numeric(df[value_col], errors="coerce")
    bad = values.isna() & df[value_col].notna()
    if bad.any():
        raise SeriesValidationError(
            f"{int(bad.sum())} non-numeric volume value(s), "
            f"e.g. {df.loc[bad, value_col].iloc[0]!r}."
        )
    df[value_col] = values.astype(float)

    matrix = df.pivot(index=id_col, columns="_offset", values=value_col)
    matrix = matrix.reindex(columns=range(1, n_months + 1))
    ids_in_order = df[id_col].drop_duplicates().tolist()
    matrix = matrix.loc[ids_in_order]
    matrix.index.name = "merchant_id"
    matrix.columns.name = None
    return matrix.astype(float)


def validate_series_matrix(matrix: pd.DataFrame, n_months: int) -> None:
    """Check a MonthlySeries frame has width N, unique ids and numeric values.

    Raises:
        SeriesValidationError: With a descriptive cause.
    """
    expected = list(range(1, n_months + 1))
    if list(matrix.columns) != expected:
        raise SeriesValidationError(
            f"Series must have month columns 1..{n_months}; "
            f"got {len(matrix.columns)} column(s): {list(matrix.columns)[:5]}..."
        )
    if matrix.index.has_duplicates:
        dupes = matrix.index[matrix.index.duplicated()].unique().tolist()
        raise SeriesValidationError(f"Duplicate merchant ids in series: {dupes[:5]}")
    non_numeric = [c for c in matrix.columns if not pd.api.types.is_numeric_dtype(matrix[c])]
    if non_numeric:
        raise SeriesValidationError(f"Non-numeric month columns: {non_numeric[:5]}")
    if np.isinf(matrix.to_numpy(dtype=float)).any():
        raise SeriesValidationError("Series contains infinite values.")


def check_coverage(
    registration_ids: Iterable[str],
    series_ids: Iterable[str],
) -> None:
    """Require the two input tables to cover exactly the same merchants.

    Raises:
        CoverageError: If either side has ids the other lacks.
    """
    reg = list(dict.fromkeys(registration_ids))
    ser = list(dict.fromkeys(series_ids))
    reg_set, ser_set = set(reg), set(ser)
    missing_from_series = [m for m in reg if m not in ser_set]
    missing_from_registrations = [m for m in ser if m not in reg_set]
    if missing_from_series or missing_from_registrations:
        raise CoverageError(missing_from_series, missing_from_registrations)
    logger.info("Coverage check passed: %d merchants in both tables.", len(reg))
