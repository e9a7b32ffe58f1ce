"""
Segmenter — k-means clustering of merchants on registration attributes.

Cluster-count search
--------------------
Silhouette width over the full merchant base is quadratic in merchant count,
so K is chosen on samples:

  for trial in 1..n_trials:
      draw ``sample_size`` merchants without replacement
      for K in min_clusters..max_clusters:
          k-means on the sample, mean silhouette width
      record the arg-max K of this trial

The trial winners are combined by ``k_selection``:
  - ``"mode"`` — most frequent winner; ties go to the smaller K.
  - ``"mean"`` — mean of winners, rounded half up.

K is capped at the number of distinct encoded rows in the sample and at the
sample size minus one. With exactly K distinct profiles every profile gets
its own cluster, which is a valid segmentation.
Candidates whose k-means run yields fewer than K labels are skipped; a
search in which no trial has a valid candidate is a
``SegmentationError``.

Final clustering
----------------
``KMeans(n_clusters=K, n_init=n_init, random_state=seed)`` over the full
one-hot matrix — sklearn keeps the restart with the lowest inertia. Labels
are renumbered ``1..K`` in order of first appearance along the merchant
index, so the same seed and inputs always give the same assignment.
An empty segment is a ``SegmentationError``.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Mapping

import numpy as np
import pandas as pd
from sklearn.cluster import KMeans
from sklearn.metrics import silhouette_score

from tpv_forecaster.config import SegmentationConfig
from tpv_forecaster.segmentation.encoding import one_hot_encode

logger = logging.getLogger(__name__)


class SegmentationError(RuntimeError):
    """Raised for empty segments or a degenerate cluster-count search."""


@dataclass(frozen=True)
class ClusterCountSearch:
    """Outcome of the sampled silhouette search.

    Attributes:
        chosen_k:     K used for the final clustering.
        trial_best_k: Arg-max K of every trial that had a valid candidate.
        trial_scores: Per trial, ``{K: mean silhouette}``.
    """

    chosen_k: int
    trial_best_k: list[int]
    trial_scores: list[dict[int, float]] = field(default_factory=list)


@dataclass(frozen=True)
class SegmentationResult:
    """SegmentAssignment plus how it was obtained.

    Attributes:
        assignment:  Series merchant id → segment label ``1..K``.
        n_segments:  K.
        search:      Cluster-count search, or ``None`` if K was fixed.
        inertia:     Final k-means inertia, or ``None`` for forced labels.
    """

    assignment: pd.Series
    n_segments: int
    search: ClusterCountSearch | None = None
    inertia: float | None = None

    def sizes(self) -> dict[int, int]:
        """Merchant count per segment."""
        return {int(k): int(v) for k, v in self.assignment.value_counts().sort_index().items()}


def _relabel_by_first_appearance(labels: np.ndarray) -> np.ndarray:
    order = {label: i + 1 for i, label in enumerate(pd.unique(labels))}
    return np.array([order[label] for label in labels], dtype=int)


def _combine_trial_winners(winners: list[int], method: str) -> int:
    if method == "mean":
        return int(np.floor(np.mean(winners) + 0.5))
    counts = Counter(winners)
    top = max(counts.values())
    return min(k for k, c in counts.items() if c == top)


def validate_assignment(assignment: pd.Series, merchant_ids: pd.Index) -> None:
    """Check an assignment is a total, non-overlapping partition into ``1..K``.

    Raises:
        SegmentationError: Missing or unknown merchants, duplicates, labels
            outside ``1..K`` or empty segments.
    """
    if assignment.index.has_duplicates:
        raise SegmentationError("Segment assignment lists a merchant more than once.")
    missing = merchant_ids.difference(assignment.index)
    extra = assignment.index.difference(merchant_ids)
    if len(missing) or len(extra):
        raise SegmentationError(
            f"Segment assignment must cover exactly the merchant base: "
            f"{len(missing)} unassigned (e.g. {missing[:5].tolist()}), "
            f"{len(extra)} unknown (e.g. {extra[:5].tolist()})."
        )
    if assignment.isna().any():
        raise SegmentationError("Segment assignment contains missing labels.")
    labels = set(int(v) for v in assignment.unique())
    k = max(labels)
    empty = sorted(set(range(1, k + 1)) - labels)
    if min(labels) < 1 or empty:
        raise SegmentationError(
            f"Segment labels must fill 1..{k}; empty segment(s): {empty}."
        )


class Segmenter:
    """Cluster merchants by their one-hot registration attributes.

    Args:
        config: Segmentation section of ``AppConfig``.
        seed:   Seed for sampling and k-means initialization.
    """

    def __init__(self, config: SegmentationConfig, seed: int) -> None:
        self.config = config
        self.seed = seed

    def encode(self, registrations: pd.DataFrame) -> pd.DataFrame:
        encoded = one_hot_encode(registrations, list(self.config.attributes))
        if encoded.shape[1] == 0:
            raise SegmentationError(
                f"Attributes {self.config.attributes} have a single level each; "
                "nothing to cluster on."
            )
        return encoded

    def search_n_segments(self, X: np.ndarray) -> ClusterCountSearch:
        """Choose K by sampled silhouette search (see module docstring)."""
        cfg = self.config
        rng = np.random.default_rng(self.seed)
        sample_size = min(cfg.sample_size, X.shape[0])
        winners: list[int] = []
        all_scores: list[dict[int, float]] = []

        for trial in range(cfg.n_trials):
            idx = rng.choice(X.shape[0], size=sample_size, replace=False)
            sample = X[idx]
            # silhouette needs 2 <= labels <= n - 1; k-means cannot exceed the distinct rows
            k_cap = min(len(np.unique(sample, axis=0)), sample_size - 1)
            scores: dict[int, float] = {}
            for k in range(cfg.min_clusters, cfg.max_clusters + 1):
                if k > k_cap:
                    break
                labels = KMeans(
                    n_clusters=k, n_init=cfg.n_init, random_state=self.seed + trial
                ).fit_predict(sample)
                n_labels = len(np.unique(labels))
                if n_labels != k or n_labels >= sample_size:
                    continue
                scores[k] = float(silhouette_score(sample, labels))
            all_scores.append(scores)
            if scores:
                best = max(scores, key=lambda kk: (scores[kk], -kk))
                winners.append(best)
                logger.debug("K search trial %d: best K=%d (%.4f)", trial, best, scores[best])

        if not winners:
            raise SegmentationError(
                f"Cluster-count search found no valid K in "
                f"{cfg.min_clusters}..{cfg.max_clusters} over {cfg.n_trials} trial(s) "
                f"of {sample_size} merchants."
            )

        chosen = _combine_trial_winners(winners, cfg.k_selection)
        logger.info(
            "K search: trial winners=%s -> K=%d (%s)", winners, chosen, cfg.k_selection
        )
        return ClusterCountSearch(chosen_k=chosen, trial_best_k=winners, trial_scores=all_scores)

    def fit(self, registrations: pd.DataFrame) -> SegmentationResult:
        """Assign every merchant of ``registrations`` to a segment.

        Args:
            registrations: Validated registration frame indexed by merchant id.

        Returns:
            ``SegmentationResult`` with labels ``1..K``.

        Raises:
            SegmentationError: Degenerate search or an empty segment.
        """
        if registrations.empty:
            raise SegmentationError("Cannot segment an empty registration table.")

        X = self.encode(registrations).to_numpy(dtype=float)

        search: ClusterCountSearch | None = None
        if self.config.n_segments is not None:
            k = self.config.n_segments
        else:
            search = self.search_n_segments(X)
            k = search.chosen_k

        if k > X.shape[0]:
            raise SegmentationError(f"K={k} exceeds the number of merchants ({X.shape[0]}).")

        model = KMeans(n_clusters=k, n_init=self.config.n_init, random_state=self.seed)
        labels = _relabel_by_first_appearance(model.fit_predict(X))
        assignment = pd.Series(labels, index=registrations.index.copy(), name="segment")

        found = len(np.unique(labels))
        if found != k:
            raise SegmentationError(
                f"k-means produced {k - found} empty segment(s) out of K={k}; "
                "the encoded attributes have too few distinct profiles."
            )

        result = SegmentationResult(
            assignment=assignment, n_segments=k, search=search, inertia=float(model.inertia_)
        )
        logger.info("Segmented %d merchants into K=%d: sizes=%s", len(assignment), k, result.sizes())
        return result

    @staticmethod
    def from_mapping(mapping: Mapping[str, int], merchant_ids: pd.Index) -> SegmentationResult:
        """Wrap a precomputed assignment after checking it is a valid partition."""
        assignment = pd.Series(dict(mapping), name="segment").astype(int)
        assignment.index = assignment.index.astype(str)
        validate_assignment(assignment, merchant_ids)
        assignment = assignment.reindex(merchant_ids)
        return SegmentationResult(assignment=assignment, n_segments=int(assignment.max()))
