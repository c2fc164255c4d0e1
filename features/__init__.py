"""
Feature preparation package.

This package joins region geometry with indicator tables, derives
per-capita rates, flags collinear indicators and standardizes the
clustering variables.
"""

from .table import build_feature_table, derive_rates, collinear_pairs, describe_indicators
from .standardize import standardize

__all__ = [
    'build_feature_table',
    'derive_rates',
    'collinear_pairs',
    'describe_indicators',
    'standardize'
]
