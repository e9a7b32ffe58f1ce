"""
Gap filling for the monthly volume series.

Modules
-------
trend      : log-linear trend fit, ``attr_na`` gap fill and ``project``.
neighbors  : missing-aware inverse-distance neighbor estimate within a segment.
imputer    : SeriesImputer — blends the two estimates, raises ImputationError.
"""
