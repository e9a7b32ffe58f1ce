"""
Month-offset utilities for the monthly volume series.

Key concepts:
  - Month offset: series positions are integers 1..N, where N is the
    reference month (the last month with known volume).
  - Reference period: optional calendar anchor (``"YYYY-MM"``) for offset N.
    When set, dates in the long-format input map onto offsets and forecast
    columns are labelled with the calendar month they target.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

import pandas as pd


def utcnow() -> datetime:
    """Return the current UTC datetime with timezone info.

    Prefer this over ``datetime.utcnow()`` (which returns naive datetimes).
    """
    return datetime.now(tz=timezone.utc)


def reference_to_period(reference_period: str) -> pd.Period:
    """Parse a ``"YYYY-MM"`` string into a monthly ``pd.Period``."""
    return pd.Period(reference_period, freq="M")


def dates_to_offsets(
    dates: pd.Series,
    reference_period: str,
    n_months: int,
) -> pd.Series:
    """Map calendar dates onto month offsets 1..N.

    The reference period maps to ``n_months``; earlier months map to smaller
    offsets. Dates outside the window yield offsets outside ``[1, n_months]``
    and are left for the caller to reject.

    Args:
        dates:            Anything ``pd.to_datetime`` accepts.
        reference_period: ``"YYYY-MM"`` of offset N.
        n_months:         Series width N.

    Returns:
        Integer Series aligned with ``dates``.
    """
    ref = reference_to_period(reference_period)
    periods = pd.to_datetime(dates).dt.to_period("M")
    deltas = periods.apply(lambda p: (ref - p).n)
    return (n_months - deltas).astype(int)


def target_month_label(reference_period: Optional[str], horizon: int) -> str:
    """Label for the forecast column of ``horizon`` months past the reference.

    Returns ``"YYYY-MM"`` when a reference period is configured, otherwise
    the relative label ``"m+<h>"``.
    """
    if reference_period is None:
        return f"m+{horizon}"
    return str(reference_to_period(reference_period) + horizon)
