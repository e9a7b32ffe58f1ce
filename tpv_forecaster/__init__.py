"""Merchant monthly TPV forecaster."""

__version__ = "0.1.0"
