"""
Synthetic data generators for testing and development.

This module provides deterministic polygon lattices and indicator tables
with known ground truth clustering patterns.
"""

from .lattice import lattice_regions, lattice_weights, make_indicators, strip_regions, region_id

__all__ = ['lattice_regions', 'lattice_weights', 'make_indicators', 'strip_regions', 'region_id']
