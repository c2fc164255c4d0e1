"""
pytest configuration with shared lattice fixtures.
"""

import pytest
import numpy as np
import pandas as pd

from synthetic_data.lattice import lattice_regions, make_indicators, strip_regions


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )


@pytest.fixture
def grid_regions():
    """6x6 lattice split into four 3x3 blocks."""
    return lattice_regions(width=6, height=6, block_w=3, block_h=3)


@pytest.fixture
def grid_indicators(grid_regions):
    """Count indicators whose rates follow the 3x3 blocks."""
    return make_indicators(grid_regions, n_indicators=3, noise=0.02, random_state=7)


@pytest.fixture
def path_regions():
    """A-B-C-D-E strip: A,B alike, D,E alike, C midway."""
    return strip_regions([
        [0.00, 0.00],
        [0.02, 0.01],
        [0.50, 0.50],
        [1.00, 0.99],
        [0.98, 1.00]
    ])


@pytest.fixture
def small_features():
    """Small random feature frame for unit tests."""
    rng = np.random.default_rng(42)
    n_points = 30
    return pd.DataFrame({
        'region_id': [f'R{i:03d}' for i in range(n_points)],
        'x0': rng.normal(size=n_points),
        'x1': rng.normal(size=n_points),
        'x2': rng.uniform(size=n_points)
    })
