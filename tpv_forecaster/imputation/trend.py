"""
Log-linear trend estimator for a single monthly volume series.

Model
-----
Volumes are shifted so the smallest observed value maps to 1 and then
log-transformed, which keeps the transform defined for negative volumes
(refunds, chargebacks)::

    y' = ln(y - min(y) + 1)

An ordinary least-squares line ``y' = a·x + b`` is fitted against the month
index ``x = 1..N`` over observed positions only, and inverted with::

    ŷ(x) = exp(a·x + b) + min(y) - 1

Two uses:

``attr_na(y)``
    Fill missing positions in place of NaN; observed values are returned
    untouched, bit for bit.

``project(y, m)``
    Evaluate the fitted line at ``N+1 .. N+m``.

Undefined fits
--------------
A series with zero observed values has no trend. ``fit_trend`` returns
``None`` and both helpers propagate NaN (the "unknown" marker) rather than a
numeric placeholder. A single observation yields a flat line through it. A steep fit whose
exponential overflows is undefined at the overflowing months, which also
come back NaN.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np


@dataclass(frozen=True)
class TrendFit:
    """Fitted log-linear trend.

    Attributes:
        slope:     ``a`` in log space.
        intercept: ``b`` in log space.
        offset:    ``min(y)`` over the observed values.
        length:    Length N of the series the fit came from.
    """

    slope: float
    intercept: float
    offset: float
    length: int

    def evaluate(self, x: np.ndarray) -> np.ndarray:
        """Evaluate the inverted trend at month indices ``x``.

        Positions where ``exp`` overflows come back NaN (undefined).
        """
        x = np.asarray(x, dtype=float)
        with np.errstate(over="ignore"):
            values = np.exp(self.slope * x + self.intercept) + self.offset - 1.0
        return np.where(np.isfinite(values), values, np.nan)

    def project(self, months_ahead: int) -> np.ndarray:
        """Evaluate at ``N+1 .. N+months_ahead``."""
        return self.evaluate(np.arange(self.length + 1, self.length + months_ahead + 1))


def fit_trend(y: np.ndarray) -> TrendFit | None:
    """Fit the log-linear trend to a series with NaN gaps.

    Args:
        y: 1-D array of monthly volumes, NaN where absent.

    Returns:
        ``TrendFit``, or ``None`` if ``y`` has no observed values.
    """
    y = np.asarray(y, dtype=float)
    x = np.arange(1, len(y) + 1, dtype=float)
    observed = ~np.isnan(y)
    if not observed.any():
        return None

    y_obs = y[observed]
    offset = float(y_obs.min())
    y_log = np.log(y_obs - offset + 1.0)

    if observed.sum() == 1:
        slope, intercept = 0.0, float(y_log[0])
    else:
        slope, intercept = np.polyfit(x[observed], y_log, 1)

    return TrendFit(
        slope=float(slope),
        intercept=float(intercept),
        offset=offset,
        length=len(y),
    )


def attr_na(y: np.ndarray) -> np.ndarray:
    """Fill missing positions with the fitted trend.

    Observed positions are copied unchanged. A series with no observed values
    comes back all-NaN.
    """
    y = np.asarray(y, dtype=float)
    filled = y.copy()
    fit = fit_trend(y)
    if fit is None:
        return filled
    missing = np.isnan(y)
    filled[missing] = fit.evaluate(np.flatnonzero(missing) + 1)
    return filled


def project(y: np.ndarray, months_ahead: int) -> np.ndarray:
    """Project the fitted trend ``months_ahead`` months past the series end.

    Returns NaN for every position when the trend is undefined.
    """
    if months_ahead < 1:
        raise ValueError(f"months_ahead must be >= 1, got {months_ahead}.")
    fit = fit_trend(y)
    if fit is None:
        return np.full(months_ahead, np.nan)
    return fit.project(months_ahead)
