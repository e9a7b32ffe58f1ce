"""Feature engineering package.

Modules
-------
selector — three-score predictor ranking with a bounded top subset
horizon  — per-horizon training and live frames (trend + lags + dummies)
"""
