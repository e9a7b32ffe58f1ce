"""
Inverse-distance k-nearest-neighbor imputation within one segment.

Donors are the fully observed rows of the segment. For every row with gaps:

1. Distance to each donor is Euclidean over the months the row observes
   (``sklearn.metrics.pairwise.nan_euclidean_distances``). That function
   rescales by ``sqrt(N / n_observed)``; the factor is the same for every
   donor of a given row, so neighbor ranking and normalized weights are
   exactly those of the plain intersection distance.
2. The ``k`` nearest donors are kept (stable order on ties; fewer than ``k``
   if the segment has fewer donors).
3. Each missing month is the inverse-distance weighted mean of that month
   across the kept donors. If any kept donor is at distance zero, only the
   zero-distance donors are averaged, with equal weights.

Complete rows are returned unchanged.

Undefined cells stay NaN:
  - the segment has no fully observed donor;
  - the row observes no month at all, under ``empty_row_policy="fail"``.
    With ``"donor_mean"`` such a row receives the plain mean of all donors.
"""

from __future__ import annotations

import logging

import numpy as np
from sklearn.metrics.pairwise import nan_euclidean_distances

logger = logging.getLogger(__name__)


def impute_neighbors(
    matrix: np.ndarray,
    n_neighbors: int = 5,
    empty_row_policy: str = "fail",
) -> np.ndarray:
    """Fill gaps in ``matrix`` from its fully observed rows.

    Args:
        matrix:           2-D float array (rows = merchants, cols = months).
        n_neighbors:      k.
        empty_row_policy: ``"fail"`` or ``"donor_mean"`` for rows with no
                          observed month.

    Returns:
        New array of the same shape. Cells the estimator cannot define are NaN.
    """
    if empty_row_policy not in ("fail", "donor_mean"):
        raise ValueError(f"Unknown empty_row_policy '{empty_row_policy}'.")

    values = np.asarray(matrix, dtype=float)
    result = values.copy()
    missing = np.isnan(values)
    complete = ~missing.any(axis=1)
    donors = values[complete]

    incomplete_rows = np.flatnonzero(~complete)
    if incomplete_rows.size == 0:
        return result
    if donors.shape[0] == 0:
        logger.warning(
            "No fully observed rows among %d; %d row(s) left undefined.",
            values.shape[0], incomplete_rows.size,
        )
        return result

    for i in incomplete_rows:
        row = values[i]
        gaps = missing[i]

        if gaps.all():
            if empty_row_policy == "donor_mean":
                result[i] = donors.mean(axis=0)
            continue

        distances = nan_euclidean_distances(row.reshape(1, -1), donors)[0]
        nearest = np.argsort(distances, kind="stable")[:n_neighbors]
        nearest_dist = distances[nearest]

        if np.any(nearest_dist == 0.0):
            weights = (nearest_dist == 0.0).astype(float)
        else:
            weights = 1.0 / nearest_dist

        result[i, gaps] = weights @ donors[nearest][:, gaps] / weights.sum()

    return result
