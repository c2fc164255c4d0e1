"""
Feature table builder: join region geometry with indicator attributes.
"""

from __future__ import annotations

import pandas as pd
import numpy as np
import logging
from typing import Any, Dict, List, Tuple
import geopandas as gpd

from clustering.errors import DataMismatchError

logger = logging.getLogger(__name__)

JOIN_POLICIES = ("inner", "left")


def build_feature_table(
    geo: gpd.GeoDataFrame,
    attrs: pd.DataFrame,
    key: str,
    how: str = "inner"
) -> Tuple[gpd.GeoDataFrame, Dict[str, Any]]:
    """
    Join a region geometry table with an attribute table on a shared key.

    Parameters
    ----------
    geo : gpd.GeoDataFrame
        One row per region with the key column and a geometry column.
    attrs : pd.DataFrame
        Indicator table keyed by the same region identifier.
    key : str
        Name of the join key column, present in both tables.
    how : str
        'inner' drops unmatched rows on both sides; 'left' keeps every
        geometry row and leaves missing attributes as NaN.

    Returns
    -------
    table : gpd.GeoDataFrame
        Joined table in geometry row order, key cast to str.
    report : dict
        {'n_matched': int, 'unmatched_geometry': list, 'unmatched_attributes': list}

    Raises
    ------
    DataMismatchError
        If the key is missing or duplicated in either table, or nothing matches.

    Notes
    -----
    Keys are compared as strings so that '0101' and 101 never silently match.
    """
    if how not in JOIN_POLICIES:
        raise ValueError(f"Unsupported join policy: {how} (use one of {JOIN_POLICIES})")

    if key not in geo.columns:
        raise DataMismatchError(f"Join key '{key}' not found in geometry table")
    if key not in attrs.columns:
        raise DataMismatchError(f"Join key '{key}' not found in attribute table")

    geo = geo.copy()
    attrs = attrs.copy()
    geo[key] = geo[key].astype(str)
    attrs[key] = attrs[key].astype(str)

    for name, table in (("geometry", geo), ("attribute", attrs)):
        if table[key].duplicated().any():
            dups = table.loc[table[key].duplicated(), key].unique()
            raise DataMismatchError(f"Duplicate keys in {name} table: {list(dups[:5])}")

    # Attribute columns that would collide with geometry columns are not joined
    overlap = [col for col in attrs.columns if col in geo.columns and col != key]
    if overlap:
        raise DataMismatchError(f"Columns present in both tables: {overlap}")

    merged = geo.merge(attrs, on=key, how="outer", indicator=True, sort=False)

    unmatched_geometry = merged.loc[merged['_merge'] == 'left_only', key].tolist()
    unmatched_attributes = merged.loc[merged['_merge'] == 'right_only', key].tolist()
    n_matched = int((merged['_merge'] == 'both').sum())

    if n_matched == 0:
        raise DataMismatchError(
            f"Join on '{key}' matched no rows "
            f"({len(geo)} geometry rows, {len(attrs)} attribute rows)"
        )

    if unmatched_geometry or unmatched_attributes:
        logger.warning(
            f"Join on '{key}' is partial: {len(unmatched_geometry)} geometry rows and "
            f"{len(unmatched_attributes)} attribute rows unmatched"
        )

    keep = ['both'] if how == "inner" else ['both', 'left_only']
    # Re-apply the geometry row order; the outer merge may interleave rows
    order = {region: pos for pos, region in enumerate(geo[key])}
    table = merged[merged['_merge'].isin(keep)].drop(columns=['_merge'])
    table = table.iloc[np.argsort(table[key].map(order).to_numpy(), kind="stable")]
    table = gpd.GeoDataFrame(table.reset_index(drop=True), geometry=geo.geometry.name, crs=geo.crs)

    logger.info(f"Feature table built with {len(table)} regions ({how} join on '{key}')")

    report = {
        'n_matched': n_matched,
        'unmatched_geometry': unmatched_geometry,
        'unmatched_attributes': unmatched_attributes
    }
    return table, report


def derive_rates(
    df: pd.DataFrame,
    count_cols: List[str],
    total_col: str,
    scale: float = 1000.0,
    suffix: str = "_PR"
) -> pd.DataFrame:
    """
    Convert raw counts into rates per `scale` units of `total_col`.

    Adds one column '<count><suffix>' per count column; input is not modified.
    """
    missing = [col for col in list(count_cols) + [total_col] if col not in df.columns]
    if missing:
        raise ValueError(f"Missing count columns: {missing}")

    total = df[total_col].astype(float)
    bad = ~(total > 0)
    if bad.any():
        raise ValueError(
            f"'{total_col}' must be positive to derive rates; "
            f"{int(bad.sum())} rows are zero, negative or missing (index {list(df.index[bad][:5])})"
        )

    out = df.copy()
    for col in count_cols:
        out[f"{col}{suffix}"] = df[col].astype(float) / total * scale

    logger.debug(f"Derived {len(count_cols)} rate columns per {scale:g} '{total_col}'")
    return out


def collinear_pairs(
    df: pd.DataFrame,
    cols: List[str],
    threshold: float = 0.8,
    method: str = "pearson"
) -> pd.DataFrame:
    """
    List variable pairs whose absolute correlation exceeds `threshold`.

    Returns
    -------
    pd.DataFrame
        Columns ['var_a', 'var_b', 'corr'] sorted by |corr| descending.

    Notes
    -----
    Flags only; excluding a flagged variable is the caller's decision.
    """
    if not 0.0 <= threshold <= 1.0:
        raise ValueError("threshold must be within [0, 1]")

    missing = [col for col in cols if col not in df.columns]
    if missing:
        raise ValueError(f"Missing columns: {missing}")

    corr = df[cols].corr(method=method)

    rows = []
    for i, var_a in enumerate(cols):
        for var_b in cols[i + 1:]:
            value = corr.loc[var_a, var_b]
            if np.isfinite(value) and abs(value) > threshold:
                rows.append({'var_a': var_a, 'var_b': var_b, 'corr': float(value)})

    pairs = pd.DataFrame(rows, columns=['var_a', 'var_b', 'corr'])
    if len(pairs):
        pairs = pairs.iloc[np.argsort(-pairs['corr'].abs().to_numpy(), kind="stable")].reset_index(drop=True)
        logger.info(f"{len(pairs)} variable pairs exceed |r| > {threshold}")

    return pairs


def describe_indicators(df: pd.DataFrame, cols: List[str]) -> pd.DataFrame:
    """Per-indicator count/mean/std/min/median/max, one row per column."""
    summary = df[cols].agg(['count', 'mean', 'std', 'min', 'median', 'max']).T
    summary.index.name = 'indicator'
    return summary
