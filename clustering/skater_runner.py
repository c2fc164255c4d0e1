"""
SKATER regionalization: contiguous clusters by pruning a minimum spanning tree.
"""

from __future__ import annotations

import pandas as pd
import numpy as np
import logging
from typing import List, Optional, Tuple, TypedDict
import networkx as nx
from libpysal import weights

from .errors import InvalidClusterCountError, validate_n_clusters
from .hierarchical import relabel_by_appearance
from .proximity import dissimilarity_matrix, edge_costs, spanning_forest

logger = logging.getLogger(__name__)


class SkaterConfig(TypedDict, total=False):
    """Configuration for SKATER algorithm; min_size defaults to 1 and method to 'native'."""
    n_clusters: int
    min_size: int
    method: str


def _ssd(X: np.ndarray, nodes: List[int]) -> float:
    members = X[nodes]
    return float(((members - members.mean(axis=0)) ** 2).sum())


def _best_cut(X: np.ndarray, tree: nx.Graph, min_size: int) -> Optional[Tuple[float, Tuple[int, int], List[int], List[int]]]:
    """Edge of `tree` whose removal most reduces the sum of squared deviations."""
    nodes = sorted(tree.nodes)
    base = _ssd(X, nodes)
    best = None

    for u, v in sorted(tuple(sorted(edge)) for edge in tree.edges):
        pruned = tree.copy()
        pruned.remove_edge(u, v)
        side_a = sorted(nx.node_connected_component(pruned, u))
        side_b = sorted(set(nodes) - set(side_a))

        if len(side_a) < min_size or len(side_b) < min_size:
            continue

        gain = base - _ssd(X, side_a) - _ssd(X, side_b)
        if best is None or gain > best[0]:
            best = (gain, (u, v), side_a, side_b)

    return best


def skater_partition(
    X: np.ndarray,
    forest: nx.Graph,
    n_clusters: int,
    min_size: int = 1
) -> np.ndarray:
    """
    Split a spanning forest into `n_clusters` connected pieces.

    Each step removes, across all current pieces, the tree edge whose
    removal gives the largest drop in total within-piece sum of squared
    deviations while leaving both sides with at least `min_size` regions.

    Parameters
    ----------
    X : np.ndarray
        Feature matrix; row i is forest node i.
    forest : nx.Graph
        Minimum spanning tree or forest over nodes 0..n-1.
    n_clusters : int
        Number of pieces to produce.
    min_size : int
        Minimum number of regions per piece.

    Returns
    -------
    np.ndarray
        Labels in [1, n_clusters], numbered by first appearance.

    Raises
    ------
    InvalidClusterCountError
        If the forest already has more components than n_clusters.
    ValueError
        If no cut satisfying min_size is left before reaching n_clusters.
    """
    X = np.asarray(X, dtype=float)
    n = len(X)
    validate_n_clusters(n_clusters, n)

    if forest.number_of_nodes() != n:
        raise ValueError(f"Forest has {forest.number_of_nodes()} nodes for {n} regions")
    if min_size < 1:
        raise ValueError("min_size must be >= 1")
    if min_size * n_clusters > n:
        raise ValueError(f"min_size={min_size} is infeasible for {n_clusters} clusters over {n} regions")

    pieces = [forest.subgraph(c).copy() for c in nx.connected_components(forest)]
    if len(pieces) > n_clusters:
        raise InvalidClusterCountError(
            f"Graph has {len(pieces)} disconnected components; "
            f"cannot form {n_clusters} contiguous clusters"
        )

    while len(pieces) < n_clusters:
        best = None
        best_piece = None
        for idx, piece in enumerate(pieces):
            if piece.number_of_nodes() < 2 * min_size:
                continue
            cut = _best_cut(X, piece, min_size)
            if cut is not None and (best is None or cut[0] > best[0]):
                best, best_piece = cut, idx

        if best is None:
            raise ValueError(
                f"No feasible edge removal left at {len(pieces)} clusters (min_size={min_size})"
            )

        gain, edge, side_a, side_b = best
        piece = pieces.pop(best_piece)
        pieces.append(piece.subgraph(side_a).copy())
        pieces.append(piece.subgraph(side_b).copy())
        logger.debug(f"Removed edge {edge}, SSD reduced by {gain:.4f}")

    labels = np.zeros(n, dtype=int)
    for label, piece in enumerate(pieces, start=1):
        labels[list(piece.nodes)] = label

    return relabel_by_appearance(labels)


def _run_spopt(df: pd.DataFrame, w: weights.W, feature_cols: List[str], cfg: SkaterConfig) -> np.ndarray:
    try:
        from spopt.region import Skater
    except ImportError:
        raise ImportError("spopt is required for method='spopt'")

    import geopandas as gpd

    # GeoDataFrame without geometry; spopt only reads the attribute columns
    gdf = gpd.GeoDataFrame(df[feature_cols].reset_index(drop=True).astype(float))
    kwargs = {'floor': cfg['min_size']} if cfg['min_size'] > 1 else {}
    skater = Skater(gdf, w, attrs_name=feature_cols, n_clusters=cfg['n_clusters'], islands="increase", **kwargs)
    skater.solve()
    return relabel_by_appearance(np.asarray(skater.labels_))


def run_skater(
    df: pd.DataFrame,
    w: weights.W,
    cfg: SkaterConfig,
    feature_cols: List[str],
    id_col: str = "region_id",
    D: Optional[np.ndarray] = None
) -> Tuple[pd.DataFrame, np.ndarray]:
    """
    Run SKATER and return a mapping DataFrame and labels aligned to df order.

    Parameters
    ----------
    df : pd.DataFrame
        Must contain `id_col` and the standardized feature columns.
    w : weights.W
        Neighbour graph aligned to df[id_col] via reorder_w_to_id_order.
    cfg : SkaterConfig
        Algorithm parameters; method is 'native' or 'spopt'.
    feature_cols : list[str]
        Columns forming the attribute space.
    id_col : str
        Region identifier column.
    D : np.ndarray | None
        Precomputed Euclidean dissimilarity matrix used as MST edge cost.

    Returns
    -------
    mapping : pd.DataFrame
        Columns [id_col, 'cluster'] in the same order as df.
    labels : np.ndarray
        Cluster IDs (1..K) aligned to df rows.

    Notes
    -----
    The 'spopt' method builds its own spanning tree with spopt's default
    dissimilarity and is kept as an independent cross-check.
    """
    method = cfg.get('method', 'native')
    min_size = cfg.get('min_size', 1)

    validate_n_clusters(cfg['n_clusters'], len(df))

    if df[id_col].duplicated().any():
        duplicated_ids = df.loc[df[id_col].duplicated(), id_col].unique()
        raise ValueError(f"Duplicate region IDs found in DataFrame: {duplicated_ids}")

    missing = [col for col in feature_cols if col not in df.columns]
    if missing:
        raise ValueError(f"Missing feature columns: {missing}")

    X = df[feature_cols].to_numpy(dtype=float)
    if not np.isfinite(X).all():
        raise ValueError("Feature columns must be finite (no NaN/Inf values)")

    # Validate W alignment
    if len(w.id_order) != len(df):
        raise ValueError("Weights graph size doesn't match DataFrame")

    if list(w.id_order) != list(df[id_col].astype(str)):
        raise ValueError(f"Weights id_order doesn't match df['{id_col}'] order")

    logger.info(f"Running SKATER ({method}) with {cfg['n_clusters']} clusters...")

    if method == 'native':
        if D is None:
            D = dissimilarity_matrix(X)
        forest = spanning_forest(edge_costs(w, D))
        labels = skater_partition(X, forest, cfg['n_clusters'], min_size=min_size)
    elif method == 'spopt':
        labels = _run_spopt(df, w, feature_cols, {**cfg, 'min_size': min_size})
    else:
        raise ValueError(f"Unsupported SKATER method: {method}")

    logger.info(f"SKATER completed, created {len(np.unique(labels))} clusters")

    mapping = pd.DataFrame({
        id_col: df[id_col].astype(str).to_numpy(),
        'cluster': labels
    })

    return mapping, labels
