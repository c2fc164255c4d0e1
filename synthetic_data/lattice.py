"""
Deterministic polygon lattices and indicator tables for tests and end-to-end validation.
"""

from __future__ import annotations

import pandas as pd
import numpy as np
import math
import logging
from typing import List, Optional
import geopandas as gpd
from shapely.geometry import box
from libpysal import weights

try:
    from libpysal.weights import lat2W
    HAS_LAT2W = True
except ImportError:
    HAS_LAT2W = False

logger = logging.getLogger(__name__)


def region_id(row: int, col: int) -> str:
    """Deterministic lattice ID, R{row:03d}{col:03d}."""
    return f"R{row:03d}{col:03d}"


def lattice_regions(
    width: int,
    height: int,
    block_w: int,
    block_h: int,
    crs: Optional[str] = "EPSG:3857"
) -> gpd.GeoDataFrame:
    """
    Build a grid of unit-square regions with coarse ground-truth blocks.

    Parameters
    ----------
    width : int
        Number of columns.
    height : int
        Number of rows.
    block_w : int
        Number of columns per coarse block (for ground truth labels).
    block_h : int
        Number of rows per coarse block.
    crs : str | None
        Projected CRS attached to the polygons.

    Returns
    -------
    gpd.GeoDataFrame
        Columns ['region_id', 'row', 'col', 'block_id', 'geometry'] in
        row-major order. Squares share full edges with rook neighbours
        and corners with diagonal (queen) neighbours.
    """
    if width <= 0 or height <= 0:
        raise ValueError("width and height must be positive")

    if block_w <= 0 or block_h <= 0:
        raise ValueError("block_w and block_h must be positive")

    n_block_cols = math.ceil(width / block_w)

    rows, cols = np.indices((height, width))
    rows_flat = rows.flatten()
    cols_flat = cols.flatten()
    block_ids = (rows_flat // block_h) * n_block_cols + (cols_flat // block_w)

    gdf = gpd.GeoDataFrame(
        {
            'region_id': [region_id(r, c) for r, c in zip(rows_flat, cols_flat)],
            'row': rows_flat,
            'col': cols_flat,
            'block_id': block_ids
        },
        geometry=[box(c, r, c + 1, r + 1) for r, c in zip(rows_flat, cols_flat)],
        crs=crs
    )

    logger.info(f"Created {width}x{height} lattice with {len(np.unique(block_ids))} blocks")
    return gdf


def lattice_weights(width: int, height: int, rook: bool = True) -> weights.W:
    """
    Lattice contiguity built from grid positions instead of geometry.

    IDs and order match lattice_regions(width, height, ...).
    """
    if not HAS_LAT2W:
        raise ImportError("libpysal.weights.lat2W is required")

    w_grid = lat2W(nrows=height, ncols=width, rook=rook)

    # lat2W numbers cells row-major, like lattice_regions
    ids = [region_id(r, c) for r in range(height) for c in range(width)]
    neighbors = {ids[i]: [ids[j] for j in w_grid.neighbors[i]] for i in range(len(ids))}

    w = weights.W(neighbors, id_order=ids, silence_warnings=True)
    w.transform = 'b'  # binary weights
    return w


def make_indicators(
    regions: gpd.GeoDataFrame,
    n_indicators: int = 3,
    noise: float = 0.02,
    random_state: Optional[int] = 42,
    total_col: str = "TT_HOUSEHOLDS"
) -> pd.DataFrame:
    """
    Count indicators whose rates are constant within each block plus noise.

    Parameters
    ----------
    regions : gpd.GeoDataFrame
        Must contain 'region_id' and 'block_id'.
    n_indicators : int
        Number of count columns, named C0..C{n-1}.
    noise : float
        Standard deviation of the per-region rate noise.
    random_state : int | None
        Seed for the local Generator.
    total_col : str
        Name of the denominator column.

    Returns
    -------
    pd.DataFrame
        Columns ['region_id', total_col, 'C0', ...], one row per region.
        Rates C_i / total recover the block structure.
    """
    if 'region_id' not in regions.columns or 'block_id' not in regions.columns:
        raise ValueError("regions must contain 'region_id' and 'block_id' columns")

    if n_indicators < 1:
        raise ValueError("n_indicators must be positive")

    if noise < 0:
        raise ValueError("noise must be non-negative")

    rng = np.random.default_rng(random_state)

    blocks = np.unique(regions['block_id'])
    block_rates = rng.uniform(0.1, 0.9, size=(len(blocks), n_indicators))
    block_index = np.searchsorted(blocks, regions['block_id'].to_numpy())

    totals = rng.integers(500, 1500, size=len(regions))
    rates = block_rates[block_index] + (rng.normal(0, noise, size=(len(regions), n_indicators)) if noise > 0 else 0.0)
    rates = np.clip(rates, 0.0, 1.0)

    df = pd.DataFrame({'region_id': regions['region_id'].to_numpy(), total_col: totals})
    for i in range(n_indicators):
        df[f"C{i}"] = np.round(rates[:, i] * totals).astype(int)

    logger.info(f"Generated {n_indicators} indicators for {len(df)} regions, random_state={random_state}")
    return df


def strip_regions(values: List[List[float]], crs: Optional[str] = "EPSG:3857") -> tuple:
    """
    A 1 x n strip of regions (a path graph under rook or queen) with given features.

    Returns
    -------
    (gpd.GeoDataFrame, pd.DataFrame)
        Regions R000000..R000{n-1} and an attribute table with columns
        ['region_id', 'x0', ...] holding `values` row by row.
    """
    values = np.asarray(values, dtype=float)
    if values.ndim != 2 or len(values) < 2:
        raise ValueError("values must be a 2-D array with at least two rows")

    gdf = lattice_regions(width=len(values), height=1, block_w=1, block_h=1, crs=crs)
    attrs = pd.DataFrame(values, columns=[f"x{i}" for i in range(values.shape[1])])
    attrs.insert(0, 'region_id', gdf['region_id'].to_numpy())
    return gdf, attrs
