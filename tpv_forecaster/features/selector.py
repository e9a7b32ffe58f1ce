"""
Univariate predictor ranking and bounded top-subset selection.

Three independent importance scores are computed for every candidate
predictor against the outcome:

  info_gain    ``mutual_info_regression`` — entropy-based information gain.
  association  ``f_regression`` F-statistic — linear association strength.
  forest       ``RandomForestRegressor.feature_importances_`` — impurity
               decrease, a model-based ranking heuristic.

NaN scores (constant columns) count as 0. Each score vector is min-max
rescaled to [0, 1] across predictors so the three are commensurate; the
average of the three is the predictor's final score.

Selection keeps predictors scoring at or above the configured percentile
(75th by default) of the averaged scores, then truncates to the top
``max_features`` (15) by descending score. Ties keep original column order.
Every randomized scorer takes ``seed``, so the result is deterministic.
"""

from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass

import numpy as np
import pandas as pd
from sklearn.ensemble import RandomForestRegressor
from sklearn.feature_selection import f_regression, mutual_info_regression

from tpv_forecaster.config import FeatureSelectionConfig

logger = logging.getLogger(__name__)


class FeatureSelectionError(RuntimeError):
    """Raised when no predictor qualifies for selection."""


@dataclass(frozen=True)
class FeatureScores:
    """Per-predictor scores, indexed by column name in input order.

    Attributes:
        table:     DataFrame with ``info_gain``, ``association``, ``forest``
                   (rescaled to [0, 1]) and ``score`` (their mean).
        threshold: Percentile cut applied to ``score``.
        selected:  Kept predictors, best first.
    """

    table: pd.DataFrame
    threshold: float
    selected: list[str]


def _rescale(values: np.ndarray) -> np.ndarray:
    values = np.nan_to_num(np.asarray(values, dtype=float), nan=0.0, posinf=0.0, neginf=0.0)
    lo, hi = values.min(), values.max()
    if hi - lo <= 0.0:
        return np.zeros_like(values)
    return (values - lo) / (hi - lo)


def score_predictors(
    X: pd.DataFrame,
    y: pd.Series,
    n_estimators: int = 100,
    seed: int = 42,
) -> pd.DataFrame:
    """Compute the three rescaled importance scores and their mean.

    Args:
        X:            Candidate predictors (numeric).
        y:            Outcome.
        n_estimators: Trees in the ranking forest.
        seed:         Seed for mutual information and the forest.

    Returns:
        DataFrame indexed by predictor name (input order).
    """
    values = X.to_numpy(dtype=float)
    target = y.to_numpy(dtype=float)
    n_rows = values.shape[0]

    with warnings.catch_warnings():
        # constant columns make f_regression divide by zero; scored as 0 below
        warnings.simplefilter("ignore", RuntimeWarning)
        f_stat, _ = f_regression(values, target)

    info_gain = mutual_info_regression(
        values, target, n_neighbors=max(1, min(3, n_rows - 1)), random_state=seed
    )
    forest = RandomForestRegressor(
        n_estimators=n_estimators, random_state=seed, n_jobs=1
    ).fit(values, target)

    table = pd.DataFrame(
        {
            "info_gain": _rescale(info_gain),
            "association": _rescale(f_stat),
            "forest": _rescale(forest.feature_importances_),
        },
        index=X.columns,
    )
    table["score"] = table[["info_gain", "association", "forest"]].mean(axis=1)
    return table


def select_features(
    frame: pd.DataFrame,
    outcome: str,
    config: FeatureSelectionConfig,
    seed: int = 42,
) -> FeatureScores:
    """Rank the predictors of ``frame`` and keep a bounded top subset.

    Args:
        frame:   One outcome column plus candidate predictor columns.
        outcome: Name of the outcome column.
        config:  Percentile / bound / forest size.
        seed:    Seed for the randomized scorers.

    Returns:
        ``FeatureScores`` whose ``selected`` list holds at most
        ``config.max_features`` names, all columns of ``frame``.

    Raises:
        FeatureSelectionError: No candidates or too few rows to score.
    """
    predictors = [c for c in frame.columns if c != outcome]
    if not predictors:
        raise FeatureSelectionError("Frame has no predictor columns to select from.")
    if len(frame) < 2:
        raise FeatureSelectionError(
            f"Need at least 2 rows to score predictors, got {len(frame)}."
        )

    table = score_predictors(
        frame[predictors], frame[outcome], n_estimators=config.n_estimators, seed=seed
    )
    threshold = float(np.percentile(table["score"].to_numpy(), config.percentile))
    qualifying = table[table["score"] >= threshold]
    # the top scorer always meets a percentile threshold
    if qualifying.empty:
        raise FeatureSelectionError(
            f"No predictor reached the {config.percentile:g}th percentile "
            f"score threshold ({threshold:.4f})."
        )

    ranked = qualifying["score"].sort_values(ascending=False, kind="mergesort")
    selected = ranked.index[: config.max_features].tolist()
    logger.debug(
        "Selected %d of %d predictor(s) (threshold=%.4f): %s",
        len(selected), len(predictors), threshold, selected,
    )
    return FeatureScores(table=table, threshold=threshold, selected=selected)
