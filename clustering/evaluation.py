"""
Evaluation metrics for clustering quality, spatial fragmentation, and stability.
"""

from __future__ import annotations

import pandas as pd
import numpy as np
import logging
from collections import deque
from typing import Dict, List, Mapping, Union
from sklearn.metrics import silhouette_score, davies_bouldin_score, adjusted_rand_score
from sklearn.metrics.cluster import pair_confusion_matrix
from libpysal import weights
import networkx as nx

from .hierarchical import within_dispersion

logger = logging.getLogger(__name__)


def quality_scores(
    X: Union[np.ndarray, pd.DataFrame],
    labels: np.ndarray,
    max_samples: int = 10000,
    random_state: int = 42
) -> Dict[str, float]:
    """
    Compute compactness/separation metrics in feature space.

    Parameters
    ----------
    X : array-like, shape (n_regions, n_features)
        Standardized feature matrix.
    labels : np.ndarray
        Cluster assignment for each row of X.
    max_samples : int
        Maximum rows for silhouette computation.
    random_state : int
        Random seed for reproducible subsampling.

    Returns
    -------
    dict
        {'silhouette': float | nan, 'davies_bouldin': float | nan}
    """
    X = np.asarray(X, dtype=float)
    labels = np.asarray(labels)

    if not np.isfinite(X).all():
        logger.warning("Non-finite values found in features - returning NaN scores")
        return {'silhouette': np.nan, 'davies_bouldin': np.nan}

    n_clusters = len(np.unique(labels))
    # Silhouette is undefined unless 2 <= k <= n - 1
    if n_clusters <= 1 or n_clusters >= len(X):
        return {'silhouette': np.nan, 'davies_bouldin': np.nan}

    rng = np.random.RandomState(random_state)
    if len(X) > max_samples:
        logger.info(f"Subsampling {max_samples} points for silhouette score computation")
        indices = rng.choice(len(X), max_samples, replace=False)
        X_sample, labels_sample = X[indices], labels[indices]
    else:
        X_sample, labels_sample = X, labels

    try:
        silhouette = float(silhouette_score(X_sample, labels_sample))
    except ValueError as e:
        logger.warning(f"Silhouette score computation failed: {e}")
        silhouette = np.nan

    try:
        davies_bouldin = float(davies_bouldin_score(X, labels))
    except ValueError as e:
        logger.warning(f"Davies-Bouldin score computation failed: {e}")
        davies_bouldin = np.nan

    return {
        'silhouette': silhouette,
        'davies_bouldin': davies_bouldin
    }


def fragmentation(
    labels: np.ndarray,
    w: weights.W,
    use_bfs: bool = True
) -> Dict[str, object]:
    """
    Count spatially disjoint pieces within each cluster under W.

    Parameters
    ----------
    labels : np.ndarray
        Cluster IDs aligned with w.id_order.
    w : weights.W
        Spatial graph.
    use_bfs : bool
        Use BFS over W directly instead of a NetworkX conversion.

    Returns
    -------
    dict
        {'fragmentation': int, 'violating_clusters': int,
         'connected_fraction': float in [0,1], 'n_clusters': int,
         'per_cluster': {label: number of contiguous pieces}}

    Notes
    -----
    A cluster made of k' disjoint contiguous pieces contributes k' - 1;
    a spatially constrained partition scores 0.
    """
    labels = np.asarray(labels)
    if len(labels) != len(w.id_order):
        raise ValueError("Labels length doesn't match weights graph size")

    unique_labels = np.unique(labels)
    per_cluster = {}

    if use_bfs:
        for label in unique_labels:
            cluster_nodes = [w.id_order[i] for i in np.flatnonzero(labels == label)]
            cluster_node_set = set(cluster_nodes)
            visited = set()
            pieces = 0

            for start in cluster_nodes:
                if start in visited:
                    continue
                pieces += 1
                visited.add(start)
                queue = deque([start])
                while queue:
                    node = queue.popleft()
                    for neighbor in w.neighbors.get(node, []):
                        if neighbor in cluster_node_set and neighbor not in visited:
                            visited.add(neighbor)
                            queue.append(neighbor)

            per_cluster[label.item()] = pieces
    else:
        # NetworkX nodes are integer positions in w.id_order
        G = w.to_networkx()
        for label in unique_labels:
            subgraph = G.subgraph(np.flatnonzero(labels == label).tolist())
            per_cluster[label.item()] = nx.number_connected_components(subgraph)

    violating_clusters = sum(1 for pieces in per_cluster.values() if pieces > 1)
    n_clusters = len(unique_labels)

    return {
        'fragmentation': int(sum(pieces - 1 for pieces in per_cluster.values())),
        'violating_clusters': violating_clusters,
        'connected_fraction': (n_clusters - violating_clusters) / n_clusters if n_clusters > 0 else 1.0,
        'n_clusters': n_clusters,
        'per_cluster': per_cluster
    }


def partition_stability(labels_a: np.ndarray, labels_b: np.ndarray) -> Dict[str, float]:
    """
    Agreement between two clusterings of the same regions.

    Returns
    -------
    dict
        {'ari': adjusted Rand index, 'jaccard': pairs grouped together in
        both partitions over pairs grouped together in either}
    """
    labels_a = np.asarray(labels_a)
    labels_b = np.asarray(labels_b)
    if labels_a.shape != labels_b.shape:
        raise ValueError("Label arrays must have same length")

    # Off-diagonal cells count ordered pairs split in exactly one partition
    pairs = pair_confusion_matrix(labels_a, labels_b)
    together = pairs[1, 1]
    either = together + pairs[0, 1] + pairs[1, 0]

    return {
        'ari': float(adjusted_rand_score(labels_a, labels_b)),
        'jaccard': float(together / either) if either > 0 else 1.0
    }


def within_cluster_ss(X: Union[np.ndarray, pd.DataFrame], labels: np.ndarray) -> float:
    """Total within-cluster sum of squares in feature space."""
    return within_dispersion(np.asarray(X, dtype=float), np.asarray(labels))


def cluster_summary(
    mapping: pd.DataFrame,
    df: pd.DataFrame,
    feature_cols: List[str],
    id_col: str = "region_id"
) -> pd.DataFrame:
    """
    Per-cluster size and mean/median/variance of each feature.

    Parameters
    ----------
    mapping : pd.DataFrame
        [id_col, 'cluster'] assignment.
    df : pd.DataFrame
        Table with id_col and the feature columns.
    feature_cols : list[str]
        Features to summarize.
    id_col : str
        Region identifier column.

    Returns
    -------
    pd.DataFrame
        One row per cluster: ['cluster', 'n_regions', '<feat>_mean',
        '<feat>_median', '<feat>_var', ...], sorted by cluster.
    """
    if id_col not in mapping.columns or 'cluster' not in mapping.columns:
        raise ValueError(f"mapping must contain '{id_col}' and 'cluster' columns")

    if id_col not in df.columns:
        raise ValueError(f"df must contain '{id_col}' column")

    missing_cols = [col for col in feature_cols if col not in df.columns]
    if missing_cols:
        raise ValueError(f"Missing feature columns in df: {missing_cols}")

    left = mapping[[id_col, 'cluster']].astype({id_col: str})
    right = df[[id_col] + list(feature_cols)].astype({id_col: str})
    merged = left.merge(right, on=id_col, how='left', indicator=True)

    if (merged['_merge'] != 'both').any():
        missing = merged.loc[merged['_merge'] != 'both', id_col].unique()
        missing_display = list(missing[:5]) + (['...'] if len(missing) > 5 else [])
        raise ValueError(f"IDs in mapping missing from df: {missing_display}")

    merged = merged.drop(columns=['_merge'])
    grouped = merged.groupby('cluster', sort=True)

    summary = grouped.size().rename('n_regions').to_frame()
    for col in feature_cols:
        stats = grouped[col].agg(['mean', 'median', 'var'])
        stats.columns = [f"{col}_{stat}" for stat in stats.columns]
        summary = summary.join(stats)

    return summary.reset_index()


def compare_variants(
    assignments: Mapping[str, np.ndarray],
    w: weights.W,
    X: Union[np.ndarray, pd.DataFrame]
) -> pd.DataFrame:
    """
    Side-by-side quality of several clusterings of the same regions.

    Returns
    -------
    pd.DataFrame
        One row per variant: ['variant', 'n_clusters', 'fragmentation',
        'violating_clusters', 'within_ss', 'silhouette', 'davies_bouldin',
        'ari', 'jaccard'].

    Notes
    -----
    'ari' and 'jaccard' measure agreement with the first variant, so the
    first row always scores 1.0.
    """
    if not assignments:
        raise ValueError("No cluster assignments to compare")

    reference = next(iter(assignments.values()))

    rows = []
    for name, labels in assignments.items():
        frag = fragmentation(labels, w)
        scores = quality_scores(X, labels)
        rows.append({
            'variant': name,
            'n_clusters': frag['n_clusters'],
            'fragmentation': frag['fragmentation'],
            'violating_clusters': frag['violating_clusters'],
            'within_ss': within_cluster_ss(X, labels),
            **scores,
            **partition_stability(reference, labels)
        })

    return pd.DataFrame(rows, columns=[
        'variant', 'n_clusters', 'fragmentation', 'violating_clusters',
        'within_ss', 'silhouette', 'davies_bouldin', 'ari', 'jaccard'
    ])
