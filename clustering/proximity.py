"""
Attribute dissimilarity, geographic distance and MST construction over a neighbour graph.
"""

from __future__ import annotations

import pandas as pd
import numpy as np
import logging
from typing import Optional, Union
import geopandas as gpd
import networkx as nx
from libpysal import weights
from sklearn.metrics import pairwise_distances

logger = logging.getLogger(__name__)

# Public metric name -> sklearn/scipy metric name
METRICS = {
    'euclidean': 'euclidean',
    'manhattan': 'manhattan',
    'minkowski': 'minkowski',
    'chebyshev': 'chebyshev',
    'maximum': 'chebyshev',
    'canberra': 'canberra'
}


def dissimilarity_matrix(
    X: Union[np.ndarray, pd.DataFrame],
    metric: str = "euclidean",
    p: float = 2.0,
    n_jobs: Optional[int] = 1
) -> np.ndarray:
    """
    Pairwise attribute-space distances between regions.

    Parameters
    ----------
    X : array-like, shape (n_regions, n_features)
        Standardized feature matrix.
    metric : str
        'euclidean', 'manhattan', 'minkowski', 'chebyshev' ('maximum') or 'canberra'.
    p : float
        Minkowski order; only used when metric='minkowski'.
    n_jobs : int | None
        Row blocks computed in parallel when != 1.

    Returns
    -------
    np.ndarray
        Symmetric (n, n) float64 matrix with a zero diagonal.
    """
    if metric not in METRICS:
        raise ValueError(f"Unsupported metric: {metric} (use one of {sorted(METRICS)})")

    X = np.asarray(X, dtype=float)
    if X.ndim != 2 or len(X) == 0:
        raise ValueError("X must be a non-empty 2-D feature matrix")

    if not np.isfinite(X).all():
        raise ValueError("Feature matrix must be finite (no NaN/Inf values)")

    kwargs = {}
    if metric == 'minkowski':
        if p < 1:
            raise ValueError("Minkowski order p must be >= 1")
        kwargs['p'] = p

    D = pairwise_distances(X, metric=METRICS[metric], n_jobs=n_jobs, **kwargs)

    # Canberra leaves 0/0 terms undefined on all-zero rows
    D = np.nan_to_num(D, nan=0.0)
    D = (D + D.T) / 2.0
    np.fill_diagonal(D, 0.0)

    logger.debug(f"Computed {len(D)}x{len(D)} '{metric}' dissimilarity matrix")
    return D


def geographic_distance_matrix(gdf: gpd.GeoDataFrame) -> np.ndarray:
    """Euclidean distances between region centroids, in CRS units."""
    if gdf.crs is not None and gdf.crs.is_geographic:
        logger.warning("Centroid distances computed on a geographic CRS; reproject first")

    centroids = gdf.geometry.centroid
    coords = np.column_stack([centroids.x.to_numpy(), centroids.y.to_numpy()])
    return dissimilarity_matrix(coords, metric='euclidean')


def edge_costs(w: weights.W, D: np.ndarray) -> nx.Graph:
    """
    Weight every neighbour-graph edge by attribute dissimilarity.

    Parameters
    ----------
    w : weights.W
        Neighbour graph; node i is w.id_order[i].
    D : np.ndarray
        Dissimilarity matrix aligned with w.id_order.

    Returns
    -------
    nx.Graph
        Nodes 0..n-1 (attribute 'region' holds the ID), edges carry 'weight' = D[i, j].
    """
    if D.shape != (w.n, w.n):
        raise ValueError(f"Dissimilarity matrix shape {D.shape} doesn't match graph size {w.n}")

    position = {region: i for i, region in enumerate(w.id_order)}

    G = nx.Graph()
    for i, region in enumerate(w.id_order):
        G.add_node(i, region=region)

    for region, neighbors in w.neighbors.items():
        i = position[region]
        for neighbor in neighbors:
            j = position[neighbor]
            if i < j:
                G.add_edge(i, j, weight=float(D[i, j]))
            elif i == j:
                logger.debug(f"Ignoring self-loop on region {region}")

    return G


def spanning_forest(G: nx.Graph) -> nx.Graph:
    """
    Minimum spanning tree of each connected component (Kruskal).

    Returns
    -------
    nx.Graph
        Forest over all nodes of G; N - c edges for c components.

    Notes
    -----
    Isolated regions stay as single-node trees.
    """
    forest = nx.Graph()
    forest.add_nodes_from(G.nodes(data=True))

    components = [sorted(c) for c in nx.connected_components(G)]
    components.sort(key=lambda c: c[0])

    for nodes in components:
        if len(nodes) == 1:
            continue
        tree = nx.minimum_spanning_tree(G.subgraph(nodes), weight='weight', algorithm='kruskal')
        forest.add_edges_from(tree.edges(data=True))

    if len(components) > 1:
        logger.warning(f"Graph has {len(components)} components; built a spanning forest")

    logger.debug(
        f"Spanning forest: {forest.number_of_edges()} edges, "
        f"total weight {forest.size(weight='weight'):.4f}"
    )
    return forest
