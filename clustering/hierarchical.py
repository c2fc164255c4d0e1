"""
Unconstrained agglomerative clustering: linkage choice, tree cutting and gap statistic.
"""

from __future__ import annotations

import pandas as pd
import numpy as np
import logging
from typing import Optional, Union
from joblib import Parallel, delayed
from scipy.cluster.hierarchy import linkage, fcluster
from scipy.spatial.distance import squareform

from .errors import validate_n_clusters
from .proximity import dissimilarity_matrix

logger = logging.getLogger(__name__)

LINKAGES = ('ward', 'single', 'complete', 'average')


def linkage_tree(D: np.ndarray, method: str = "ward") -> np.ndarray:
    """
    Agglomerative hierarchy over a square dissimilarity matrix.

    Returns
    -------
    np.ndarray
        SciPy linkage matrix Z of shape (n-1, 4).

    Notes
    -----
    Ward on a non-Euclidean dissimilarity uses the Lance-Williams update
    and has no within-variance interpretation.
    """
    if method not in LINKAGES:
        raise ValueError(f"Unsupported linkage: {method} (use one of {LINKAGES})")

    D = np.asarray(D, dtype=float)
    if D.ndim != 2 or D.shape[0] != D.shape[1]:
        raise ValueError("D must be a square dissimilarity matrix")
    if len(D) < 2:
        raise ValueError("At least two observations are required")

    condensed = squareform(D, checks=False)
    return linkage(condensed, method=method)


def agglomerative_coefficient(Z: np.ndarray) -> float:
    """
    Agglomerative coefficient of a hierarchy, in [0, 1].

    For each observation, take the height at which it is first merged
    divided by the height of the final merge; the coefficient is the mean
    of one minus that ratio. Values near 1 indicate strong structure.
    """
    n = len(Z) + 1
    first_merge = np.zeros(n)
    for row in Z:
        height = row[2]
        for child in (int(row[0]), int(row[1])):
            if child < n:
                first_merge[child] = height

    top = Z[-1, 2]
    if top <= 0:
        return 0.0
    return float(np.mean(1.0 - first_merge / top))


def compare_linkages(D: np.ndarray, methods=LINKAGES) -> pd.Series:
    """Agglomerative coefficient for each linkage method, indexed by method."""
    scores = {method: agglomerative_coefficient(linkage_tree(D, method)) for method in methods}
    result = pd.Series(scores, name='agglomerative_coefficient')
    logger.info("Agglomerative coefficients: " + ", ".join(f"{m}={v:.4f}" for m, v in scores.items()))
    return result


def best_linkage(D: np.ndarray, methods=LINKAGES) -> str:
    """Linkage with the largest agglomerative coefficient (first listed on ties)."""
    scores = compare_linkages(D, methods)
    return str(scores.idxmax())


def relabel_by_appearance(labels: np.ndarray) -> np.ndarray:
    """Renumber labels 1..k in order of first appearance along the rows."""
    labels = np.asarray(labels)
    _, first_index = np.unique(labels, return_index=True)
    ordered = labels[np.sort(first_index)]
    label_map = {old: new for new, old in enumerate(ordered, start=1)}
    return np.array([label_map[label] for label in labels], dtype=int)


def cut_tree(Z: np.ndarray, n_clusters: int) -> np.ndarray:
    """
    Cut a hierarchy into `n_clusters` groups.

    Returns
    -------
    np.ndarray
        Labels in [1, n_clusters]; the first region always gets label 1.
    """
    n = len(Z) + 1
    validate_n_clusters(n_clusters, n)

    labels = fcluster(Z, t=n_clusters, criterion='maxclust')
    found = len(np.unique(labels))
    if found != n_clusters:
        # Tied merge heights can make maxclust stop early
        logger.warning(f"Tree cut produced {found} clusters instead of {n_clusters}")

    return relabel_by_appearance(labels)


def hierarchical_clusters(D: np.ndarray, n_clusters: int, method: str = "ward") -> np.ndarray:
    """Cluster labels in [1, k] from agglomerative clustering on D."""
    validate_n_clusters(n_clusters, len(D))
    Z = linkage_tree(D, method)
    labels = cut_tree(Z, n_clusters)
    logger.info(f"Hierarchical ({method}) clustering created {len(np.unique(labels))} clusters")
    return labels


def within_dispersion(X: np.ndarray, labels: np.ndarray) -> float:
    """Pooled within-cluster sum of squared distances to cluster centroids."""
    total = 0.0
    for label in np.unique(labels):
        members = X[labels == label]
        total += float(((members - members.mean(axis=0)) ** 2).sum())
    return total


def _log_dispersions(
    X: np.ndarray,
    k_values: np.ndarray,
    method: str,
    metric: str
) -> np.ndarray:
    Z = linkage_tree(dissimilarity_matrix(X, metric=metric), method)
    log_w = []
    for k in k_values:
        labels = np.ones(len(X), dtype=int) if k == 1 else fcluster(Z, t=k, criterion='maxclust')
        # Guard log(0) when every cluster is a singleton
        log_w.append(np.log(max(within_dispersion(X, labels), np.finfo(float).tiny)))
    return np.array(log_w)


def gap_statistic(
    X: Union[np.ndarray, pd.DataFrame],
    k_max: int = 10,
    n_refs: int = 50,
    method: str = "ward",
    metric: str = "euclidean",
    random_state: Optional[int] = 42,
    n_jobs: Optional[int] = 1
) -> pd.DataFrame:
    """
    Gap statistic for k = 1..k_max with hierarchical clustering.

    Parameters
    ----------
    X : array-like, shape (n_regions, n_features)
        Standardized feature matrix.
    k_max : int
        Largest cluster count evaluated; capped at n_regions.
    n_refs : int
        Number of uniform reference datasets (B).
    method, metric : str
        Linkage and dissimilarity used for both the data and the references.
    random_state : int | None
        Seed for the local Generator that draws the references.
    n_jobs : int | None
        Reference datasets are evaluated in parallel when != 1.

    Returns
    -------
    pd.DataFrame
        Columns ['k', 'log_w', 'e_log_w', 'gap', 'se'].

    Notes
    -----
    References are drawn uniformly over the bounding box of each feature.
    All references are drawn before fanning out, so results don't depend
    on n_jobs. A failing reference aborts the whole computation.
    """
    X = np.asarray(X, dtype=float)
    n = len(X)
    if n < 2:
        raise ValueError("At least two observations are required")
    if k_max < 2:
        raise ValueError("k_max must be >= 2")
    if n_refs < 1:
        raise ValueError("n_refs must be >= 1")

    k_max = min(k_max, n)
    k_values = np.arange(1, k_max + 1)

    rng = np.random.default_rng(random_state)
    low, high = X.min(axis=0), X.max(axis=0)
    references = [rng.uniform(low, high, size=X.shape) for _ in range(n_refs)]

    log_w = _log_dispersions(X, k_values, method, metric)

    logger.info(f"Computing gap statistic for k=1..{k_max} with {n_refs} references")
    ref_log_w = Parallel(n_jobs=n_jobs)(
        delayed(_log_dispersions)(ref, k_values, method, metric) for ref in references
    )
    ref_log_w = np.vstack(ref_log_w)

    e_log_w = ref_log_w.mean(axis=0)
    se = ref_log_w.std(axis=0) * np.sqrt(1.0 + 1.0 / n_refs)

    return pd.DataFrame({
        'k': k_values,
        'log_w': log_w,
        'e_log_w': e_log_w,
        'gap': e_log_w - log_w,
        'se': se
    })


def select_k_from_gap(gap_df: pd.DataFrame) -> int:
    """
    Smallest k >= 2 whose gap is within one standard error of the best gap.

    k = 1 is never returned; the maximum is taken over k >= 2 only.
    """
    candidates = gap_df[gap_df['k'] >= 2].reset_index(drop=True)
    if candidates.empty:
        raise ValueError("Gap table has no candidate k >= 2")

    best = int(candidates['gap'].to_numpy().argmax())
    cutoff = candidates.loc[best, 'gap'] - candidates.loc[best, 'se']
    chosen = int(candidates.loc[candidates['gap'] >= cutoff, 'k'].min())

    logger.info(f"Gap statistic selects k={chosen} (max gap at k={int(candidates.loc[best, 'k'])})")
    return chosen
