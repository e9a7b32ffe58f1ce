"""
Repeated k-fold cross-validation with pooled out-of-fold predictions.

Scheme
------
``RepeatedKFold(n_splits, n_repeats, random_state=seed)``. Within one repeat
every row is held out exactly once, so each repeat yields a complete vector
of out-of-fold (OOF) predictions. Scores are computed on the pooled OOF
vector of each repeat and averaged over repeats; this keeps R² defined even
when a fold holds a single row.

The number of folds is clamped to the number of rows. All folds of all
repeats must finish before any score is reported.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Callable

import numpy as np
import pandas as pd
from sklearn.base import RegressorMixin
from sklearn.metrics import mean_absolute_error, r2_score
from sklearn.model_selection import RepeatedKFold


@dataclass(frozen=True)
class CVScheme:
    """Resolved fold layout for a frame of ``n_rows`` rows.

    Attributes:
        n_splits:       Folds per repeat (after clamping).
        n_repeats:      Repeats.
        seed:           Fold assignment seed.
        min_train_size: Smallest training-fold size across the scheme.
    """

    n_splits: int
    n_repeats: int
    seed: int
    min_train_size: int

    def splitter(self) -> RepeatedKFold:
        return RepeatedKFold(
            n_splits=self.n_splits, n_repeats=self.n_repeats, random_state=self.seed
        )


@dataclass(frozen=True)
class CVResult:
    """Out-of-fold predictions and fold-averaged scores.

    Attributes:
        oof:  Array of shape ``(n_repeats, n_rows)``.
        mae:  Mean over repeats of the pooled OOF mean absolute error.
        r2:   Mean over repeats of the pooled OOF R².
    """

    oof: np.ndarray
    mae: float
    r2: float

    @property
    def mean_oof(self) -> np.ndarray:
        """OOF predictions averaged across repeats (one per row)."""
        return self.oof.mean(axis=0)


def resolve_scheme(n_rows: int, n_splits: int, n_repeats: int, seed: int) -> CVScheme:
    """Clamp the fold count to ``n_rows`` and compute the smallest train fold.

    Raises:
        ValueError: If ``n_rows < 2``.
    """
    if n_rows < 2:
        raise ValueError(f"Cross-validation needs at least 2 rows, got {n_rows}.")
    splits = min(n_splits, n_rows)
    return CVScheme(
        n_splits=splits,
        n_repeats=n_repeats,
        seed=seed,
        min_train_size=n_rows - math.ceil(n_rows / splits),
    )


def cross_validate(
    make_estimator: Callable[[], RegressorMixin],
    X: pd.DataFrame,
    y: np.ndarray,
    scheme: CVScheme,
) -> CVResult:
    """Fit a fresh estimator per fold and collect OOF predictions.

    Args:
        make_estimator: Zero-argument factory returning an unfitted regressor.
        X:              Predictors.
        y:              Outcome.
        scheme:         Fold layout from ``resolve_scheme()``.

    Returns:
        ``CVResult`` with per-repeat OOF predictions and averaged scores.
    """
    y = np.asarray(y, dtype=float)
    oof = np.full((scheme.n_repeats, len(y)), np.nan)

    for fold, (train_idx, test_idx) in enumerate(scheme.splitter().split(X)):
        repeat = fold // scheme.n_splits
        model = make_estimator().fit(X.iloc[train_idx], y[train_idx])
        oof[repeat, test_idx] = model.predict(X.iloc[test_idx])

    if np.isnan(oof).any() or np.isinf(oof).any():
        raise FloatingPointError("Cross-validation produced non-finite predictions.")

    maes = [mean_absolute_error(y, oof[r]) for r in range(scheme.n_repeats)]
    r2s = [r2_score(y, oof[r]) for r in range(scheme.n_repeats)]
    return CVResult(oof=oof, mae=float(np.mean(maes)), r2=float(np.mean(r2s)))
