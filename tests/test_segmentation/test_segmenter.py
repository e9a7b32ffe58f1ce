"""
Tests for tpv_forecaster/segmentation/segmenter.py.

What we test
------------
Segmenter.fit():
  - Assignment is a total partition: every merchant exactly once, labels 1..K.
  - Same seed and input give the same assignment.
  - Labels are numbered by first appearance.
  - A K with more clusters than distinct profiles is an empty-segment error.
  - Single-level attributes and K above the merchant count are rejected.

Segmenter.search_n_segments():
  - Picks K inside the configured range, one winner per trial, reproducibly.
  - K may equal the number of distinct profiles: two profiles give two
    segments.
  - Fewer distinct profiles than the smallest candidate K raises
    SegmentationError.

_combine_trial_winners():
  - "mode" breaks ties toward the smaller K; "mean" rounds half up.

Segmenter.from_mapping() / validate_assignment():
  - Accepts a valid forced partition in merchant order.
  - Rejects missing merchants and gaps in the label range.
"""

from __future__ import annotations

import pandas as pd
import pytest

from tpv_forecaster.config import SegmentationConfig
from tpv_forecaster.segmentation.segmenter import (
    SegmentationError,
    Segmenter,
    _combine_trial_winners,
)

ATTRIBUTES = ["size_tier", "category", "state", "document_type", "ticket_category"]

# Three well separated groups, two variants each -> six distinct profiles
_PROFILES = [
    (0, "food", "SP", "CPF", "low"),
    (0, "food", "RJ", "CPF", "low"),
    (2, "retail", "MG", "CNPJ", "mid"),
    (2, "retail", "BA", "CNPJ", "mid"),
    (4, "services", "RS", "CNPJ", "high"),
    (4, "services", "PR", "CNPJ", "high"),
]


def _registrations(profiles, copies: int) -> pd.DataFrame:
    rows = [p for p in profiles for _ in range(copies)]
    ids = [f"R{i:03d}" for i in range(len(rows))]
    frame = pd.DataFrame(rows, columns=ATTRIBUTES, index=pd.Index(ids, name="merchant_id"))
    frame["estimated_volume"] = 1_000.0
    return frame


@pytest.fixture
def registrations() -> pd.DataFrame:
    return _registrations(_PROFILES, copies=5)


def _config(**overrides) -> SegmentationConfig:
    base = dict(max_clusters=5, sample_size=30, n_trials=3, n_init=3)
    base.update(overrides)
    return SegmentationConfig(**base)


# ── fit() ─────────────────────────────────────────────────────────────────────

def test_fixed_k_is_total_partition(registrations):
    result = Segmenter(_config(n_segments=3), seed=1).fit(registrations)
    assignment = result.assignment
    assert result.n_segments == 3
    assert assignment.index.equals(registrations.index)
    assert not assignment.index.has_duplicates
    assert set(assignment.unique()) == {1, 2, 3}
    assert sum(result.sizes().values()) == len(registrations)
    assert result.search is None
    assert result.inertia is not None


def test_fixed_k_groups_identical_profiles(registrations):
    assignment = Segmenter(_config(n_segments=3), seed=1).fit(registrations).assignment
    for start in range(0, len(registrations), 5):
        assert assignment.iloc[start:start + 5].nunique() == 1


def test_fit_reproducible(registrations):
    a = Segmenter(_config(), seed=11).fit(registrations)
    b = Segmenter(_config(), seed=11).fit(registrations)
    pd.testing.assert_series_equal(a.assignment, b.assignment)
    assert a.n_segments == b.n_segments


def test_labels_numbered_by_first_appearance(registrations):
    assignment = Segmenter(_config(n_segments=3), seed=1).fit(registrations).assignment
    first_seen = list(dict.fromkeys(assignment.tolist()))
    assert first_seen == sorted(first_seen) == [1, 2, 3]


def test_more_clusters_than_profiles_is_empty_segment():
    registrations = _registrations(_PROFILES[:3], copies=4)
    with pytest.raises(SegmentationError, match="empty segment"):
        Segmenter(_config(n_segments=4), seed=1).fit(registrations)


def test_single_level_attributes_rejected():
    registrations = _registrations(_PROFILES[:1], copies=6)
    with pytest.raises(SegmentationError, match="nothing to cluster"):
        Segmenter(_config(), seed=1).fit(registrations)


def test_k_above_merchant_count_rejected():
    registrations = _registrations(_PROFILES, copies=1)
    with pytest.raises(SegmentationError, match="exceeds"):
        Segmenter(_config(n_segments=7), seed=1).fit(registrations)


# ── search_n_segments() ───────────────────────────────────────────────────────

def test_search_picks_k_in_range(registrations):
    segmenter = Segmenter(_config(), seed=3)
    X = segmenter.encode(registrations).to_numpy(dtype=float)
    search = segmenter.search_n_segments(X)
    assert 2 <= search.chosen_k <= 5
    assert len(search.trial_best_k) == 3
    assert all(2 <= k <= 5 for k in search.trial_best_k)


def test_search_reproducible(registrations):
    segmenter = Segmenter(_config(), seed=3)
    X = segmenter.encode(registrations).to_numpy(dtype=float)
    assert segmenter.search_n_segments(X) == segmenter.search_n_segments(X)


def test_two_profiles_split_into_two_segments():
    registrations = _registrations([_PROFILES[0], _PROFILES[4]], copies=20)
    result = Segmenter(_config(n_trials=2, sample_size=40), seed=1).fit(registrations)
    assert result.n_segments == 2
    assert result.search.trial_best_k == [2, 2]
    assert result.sizes() == {1: 20, 2: 20}
    # each profile lands in exactly one segment
    first = result.assignment.iloc[:20]
    second = result.assignment.iloc[20:]
    assert first.nunique() == 1 and second.nunique() == 1
    assert first.iloc[0] != second.iloc[0]


def test_search_degenerate_raises():
    registrations = _registrations(_PROFILES[:2], copies=10)
    with pytest.raises(SegmentationError, match="no valid K"):
        Segmenter(_config(min_clusters=3), seed=1).fit(registrations)


# ── _combine_trial_winners() ──────────────────────────────────────────────────

def test_mode_ties_go_to_smaller_k():
    assert _combine_trial_winners([4, 3, 4, 3, 5], "mode") == 3


def test_mode_majority():
    assert _combine_trial_winners([6, 6, 2], "mode") == 6


def test_mean_rounds_half_up():
    assert _combine_trial_winners([2, 3], "mean") == 3
    assert _combine_trial_winners([2, 2, 3], "mean") == 2


# ── from_mapping() ────────────────────────────────────────────────────────────

def test_from_mapping_valid(registrations):
    mapping = {mid: (1 if i % 2 else 2) for i, mid in enumerate(reversed(registrations.index))}
    result = Segmenter.from_mapping(mapping, registrations.index)
    assert result.assignment.index.equals(registrations.index)
    assert result.n_segments == 2
    assert result.assignment.loc["R000"] == mapping["R000"]


def test_from_mapping_missing_merchant(registrations):
    mapping = {mid: 1 for mid in registrations.index[:-1]}
    with pytest.raises(SegmentationError, match="unassigned"):
        Segmenter.from_mapping(mapping, registrations.index)


def test_from_mapping_label_gap(registrations):
    mapping = {mid: (1 if i < 10 else 3) for i, mid in enumerate(registrations.index)}
    with pytest.raises(SegmentationError, match="empty segment"):
        Segmenter.from_mapping(mapping, registrations.index)
