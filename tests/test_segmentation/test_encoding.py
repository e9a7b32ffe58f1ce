"""
Tests for tpv_forecaster/segmentation/encoding.py.

What we test
------------
one_hot_encode():
  - One indicator per non-reference level; first sorted level dropped.
  - Numeric attributes (size tier) are treated as categories.
  - Index preserved; values are 0.0 / 1.0 floats.
  - Unknown attribute raises KeyError.
"""

from __future__ import annotations

import pandas as pd
import pytest

from tpv_forecaster.segmentation.encoding import one_hot_encode


@pytest.fixture
def frame() -> pd.DataFrame:
    return pd.DataFrame(
        {"size_tier": [0, 1, 2, 1], "category": ["food", "retail", "food", "services"]},
        index=pd.Index(["a", "b", "c", "d"], name="merchant_id"),
    )


def test_drop_first_columns(frame):
    encoded = one_hot_encode(frame, ["size_tier", "category"])
    assert list(encoded.columns) == [
        "size_tier_1", "size_tier_2", "category_retail", "category_services",
    ]


def test_keep_all_levels(frame):
    encoded = one_hot_encode(frame, ["category"], drop_first=False)
    assert list(encoded.columns) == ["category_food", "category_retail", "category_services"]


def test_values_and_index(frame):
    encoded = one_hot_encode(frame, ["category"])
    assert encoded.index.equals(frame.index)
    assert encoded.dtypes.eq(float).all()
    assert encoded.loc["b", "category_retail"] == 1.0
    assert encoded.loc["a"].sum() == 0.0


def test_unknown_attribute(frame):
    with pytest.raises(KeyError, match="state"):
        one_hot_encode(frame, ["state"])
