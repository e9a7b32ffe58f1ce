"""
Registration table validation and duplicate-id resolution.

The registration table arrives from upstream cleansing as a DataFrame with
one row per merchant. Two helpers guard the boundary:

``deduplicate_registrations()``
    Collapses repeated merchant ids into one record:
      - the most recent record wins for every attribute, except
      - the earliest registration date is kept, and
      - state is the most frequent value across the duplicates, ties broken
        toward the most recent record.
    Recency is the ``updated_at`` column when present, otherwise row order
    (later rows are more recent). Rows with no ``updated_at`` value count as
    older than every timestamped row and keep row order among themselves.

``validate_registrations()``
    Checks required columns, id uniqueness, and validates every row against
    ``MerchantAttributes`` (state normalization included). All rows are
    validated before anything is returned; failures are reported together.
"""

from __future__ import annotations

import logging
from typing import Any

import pandas as pd
from pydantic import ValidationError

from tpv_forecaster.models.merchant import REGISTRATION_COLUMNS, MerchantAttributes

logger = logging.getLogger(__name__)

_MAX_REPORTED_FAILURES = 10


class RegistrationValidationError(ValueError):
    """Raised when the registration table is malformed.

    Attributes:
        failures: Human-readable description per rejected row or column.
    """

    def __init__(self, failures: list[str]) -> None:
        self.failures = failures
        shown = "\n  ".join(failures[:_MAX_REPORTED_FAILURES])
        more = len(failures) - _MAX_REPORTED_FAILURES
        suffix = f"\n  ... and {more} more." if more > 0 else ""
        super().__init__(f"Registration table rejected:\n  {shown}{suffix}")


def _most_frequent_recent(values: pd.Series) -> Any:
    """Mode of ``values``; ties resolved toward the value seen last."""
    counts = values.value_counts(dropna=True)
    if counts.empty:
        return values.iloc[-1]
    top = counts[counts == counts.max()].index
    for value in reversed(values.tolist()):
        if value in top:
            return value
    return top[0]


def deduplicate_registrations(
    registrations: pd.DataFrame,
    registered_col: str = "registered_at",
    updated_col: str = "updated_at",
) -> pd.DataFrame:
    """Resolve duplicate merchant ids into a single record each.

    Args:
        registrations: Raw registration rows; may repeat ``merchant_id``.
        registered_col: Registration date column (earliest kept), optional.
        updated_col:    Record recency column, optional.

    Returns:
        New DataFrame with unique ``merchant_id`` values, in order of first
        appearance.
    """
    df = registrations.reset_index(drop=True).copy()
    df["_row"] = range(len(df))
    order = [updated_col, "_row"] if updated_col in df.columns else ["_row"]
    df = df.sort_values(order, kind="mergesort", na_position="first")

    duplicated = df["merchant_id"].duplicated(keep=False)
    if not duplicated.any():
        return registrations.copy()

    logger.info(
        "Resolving %d duplicate registration rows across %d merchant ids.",
        int(duplicated.sum()),
        df.loc[duplicated, "merchant_id"].nunique(),
    )

    grouped = df.groupby("merchant_id", sort=False)
    latest = grouped.tail(1).set_index("merchant_id")
    latest["state"] = grouped["state"].apply(_most_frequent_recent)
    if registered_col in df.columns:
        latest[registered_col] = grouped[registered_col].min()

    first_seen = (
        df.sort_values("_row", kind="mergesort")
        .drop_duplicates("merchant_id")["merchant_id"]
    )
    result = latest.loc[first_seen.tolist()].reset_index()
    return result.drop(columns="_row")[list(registrations.columns)]


def validate_registrations(registrations: pd.DataFrame) -> pd.DataFrame:
    """Validate the registration table and return it indexed by merchant id.

    Args:
        registrations: One row per merchant with the ``REGISTRATION_COLUMNS``.

    Returns:
        DataFrame indexed by ``merchant_id`` (string), columns in
        ``REGISTRATION_COLUMNS`` order minus the id, states normalized.

    Raises:
        RegistrationValidationError: Missing columns, duplicate ids, or rows
            that fail ``MerchantAttributes`` validation.
    """
    missing = [c for c in REGISTRATION_COLUMNS if c not in registrations.columns]
    if missing:
        raise RegistrationValidationError(
            [f"missing required columns: {missing}"]
        )

    ids = registrations["merchant_id"].astype(str).str.strip()
    dupes = ids[ids.duplicated()].unique().tolist()
    if dupes:
        raise RegistrationValidationError(
            [f"duplicate merchant_id '{d}' (run deduplicate_registrations first)" for d in dupes]
        )

    records: list[dict[str, Any]] = []
    failures: list[str] = []
    for position, row in enumerate(
        registrations[list(REGISTRATION_COLUMNS)].to_dict(orient="records")
    ):
        if pd.isna(row.get("estimated_volume")):
            row["estimated_volume"] = None
        try:
            records.append(MerchantAttributes(**row).model_dump())
        except ValidationError as exc:
            errs = "; ".join(
                f"{'.'.join(str(p) for p in e['loc'])}: {e['msg']}" for e in exc.errors()
            )
            failures.append(f"row {position} (merchant_id={row.get('merchant_id')}): {errs}")

    if failures:
        raise RegistrationValidationError(failures)

    validated = pd.DataFrame.from_records(records, columns=list(REGISTRATION_COLUMNS))
    unknown = int((validated["state"] == "UNKNOWN").sum())
    if unknown:
        logger.warning("%d merchant(s) have an unmapped state (UNKNOWN).", unknown)
    return validated.set_index("merchant_id")
