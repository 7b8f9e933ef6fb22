"""Forecasting module -- USD FX snapshot and probability-weighted pipeline totals."""
