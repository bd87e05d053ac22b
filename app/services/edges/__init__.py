"""Percentile statistics and daily edge computation."""
