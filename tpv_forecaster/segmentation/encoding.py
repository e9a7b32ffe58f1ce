"""One-hot encoding of registration attributes for clustering and modelling."""

from __future__ import annotations

import pandas as pd


def one_hot_encode(
    registrations: pd.DataFrame,
    attributes: list[str],
    drop_first: bool = True,
) -> pd.DataFrame:
    """Expand categorical registration attributes into indicator columns.

    Every attribute is treated as categorical (the ordinal size tier
    included). With ``drop_first`` one reference level per attribute — the
    first in sorted order — is dropped to avoid collinearity.

    Args:
        registrations: Validated registration frame indexed by merchant id.
        attributes:    Columns to expand.
        drop_first:    Drop the reference level of each attribute.

    Returns:
        Float DataFrame of 0/1 indicators, same index, columns named
        ``<attribute>_<level>``.

    Raises:
        KeyError: If an attribute is not a column of ``registrations``.
    """
    missing = [a for a in attributes if a not in registrations.columns]
    if missing:
        raise KeyError(f"Registration attributes not found: {missing}")
    categorical = registrations[attributes].astype(str)
    return pd.get_dummies(categorical, drop_first=drop_first, dtype=float)
