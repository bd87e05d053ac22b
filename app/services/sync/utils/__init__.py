"""Normalization, alias and scoring helpers shared by the matchers."""
