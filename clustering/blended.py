"""
Hierarchical clustering on a convex blend of attribute and geographic dissimilarity.
"""

from __future__ import annotations

import pandas as pd
import numpy as np
import logging
from typing import Optional, Sequence
from joblib import Parallel, delayed

from .errors import validate_n_clusters
from .hierarchical import hierarchical_clusters

logger = logging.getLogger(__name__)

DEFAULT_ALPHAS = tuple(np.round(np.arange(0.0, 1.01, 0.1), 2))


def _scaled(D: np.ndarray) -> np.ndarray:
    top = D.max()
    return D / top if top > 0 else D


def blended_dissimilarity(D0: np.ndarray, D1: np.ndarray, alpha: float) -> np.ndarray:
    """
    (1 - alpha) * D0 + alpha * D1, each matrix first divided by its maximum.

    Parameters
    ----------
    D0 : np.ndarray
        Attribute dissimilarity.
    D1 : np.ndarray
        Geographic dissimilarity over the same regions.
    alpha : float
        Weight of the geographic part, in [0, 1].
    """
    if not 0.0 <= alpha <= 1.0:
        raise ValueError(f"alpha must be within [0, 1], got {alpha}")

    D0 = np.asarray(D0, dtype=float)
    D1 = np.asarray(D1, dtype=float)
    if D0.shape != D1.shape or D0.ndim != 2 or D0.shape[0] != D0.shape[1]:
        raise ValueError(f"D0 {D0.shape} and D1 {D1.shape} must be square and of equal shape")

    return (1.0 - alpha) * _scaled(D0) + alpha * _scaled(D1)


def pseudo_inertia(D: np.ndarray, labels: Optional[np.ndarray] = None) -> float:
    """
    Within-cluster pseudo-inertia of a partition under dissimilarity D.

    With uniform weights 1/n, the inertia of a cluster C is
    sum_{i<j in C} d_ij^2 / (n^2 * mu_C), mu_C = |C| / n.
    Without labels, the total inertia of the whole set is returned.
    """
    n = len(D)
    if labels is None:
        labels = np.zeros(n, dtype=int)

    total = 0.0
    for label in np.unique(labels):
        idx = np.flatnonzero(labels == label)
        if len(idx) < 2:
            continue
        block = D[np.ix_(idx, idx)] ** 2
        mu = len(idx) / n
        total += block.sum() / 2.0 / (n * n * mu)
    return float(total)


def homogeneity(D: np.ndarray, labels: np.ndarray) -> float:
    """Proportion of total pseudo-inertia explained by the partition, 1 - W/T."""
    total = pseudo_inertia(D)
    if total == 0:
        return 1.0
    return 1.0 - pseudo_inertia(D, labels) / total


def blended_clusters(
    D0: np.ndarray,
    D1: np.ndarray,
    n_clusters: int,
    alpha: float,
    method: str = "ward"
) -> np.ndarray:
    """Cluster labels in [1, k] from hierarchical clustering on the blended matrix."""
    validate_n_clusters(n_clusters, len(D0))
    return hierarchical_clusters(blended_dissimilarity(D0, D1, alpha), n_clusters, method)


def _evaluate_alpha(D0, D1, n_clusters, alpha, method):
    labels = blended_clusters(D0, D1, n_clusters, alpha, method)
    return {'alpha': float(alpha), 'q0': homogeneity(D0, labels), 'q1': homogeneity(D1, labels)}


def choose_alpha(
    D0: np.ndarray,
    D1: np.ndarray,
    n_clusters: int,
    alphas: Sequence[float] = DEFAULT_ALPHAS,
    method: str = "ward",
    n_jobs: Optional[int] = 1
) -> pd.DataFrame:
    """
    Scan the mixing parameter and report attribute vs spatial homogeneity.

    Parameters
    ----------
    D0, D1 : np.ndarray
        Attribute and geographic dissimilarity matrices.
    n_clusters : int
        Cluster count used for every candidate.
    alphas : sequence of float
        Candidate mixing weights in [0, 1].
    method : str
        Linkage method.
    n_jobs : int | None
        Candidates evaluated in parallel when != 1.

    Returns
    -------
    pd.DataFrame
        Columns ['alpha', 'q0', 'q1', 'q0_norm', 'q1_norm'], one row per alpha.
        q0/q1 are homogeneities in attribute/geographic space; the
        normalized columns divide by q0 at alpha=0 and q1 at alpha=1.

    Notes
    -----
    One failing candidate aborts the scan.
    """
    if len(alphas) == 0:
        raise ValueError("alphas must not be empty")
    validate_n_clusters(n_clusters, len(D0))

    grid = sorted(set(float(a) for a in alphas) | {0.0, 1.0})

    logger.info(f"Scanning {len(grid)} alpha values for {n_clusters} clusters")
    rows = Parallel(n_jobs=n_jobs)(
        delayed(_evaluate_alpha)(D0, D1, n_clusters, alpha, method) for alpha in grid
    )

    scan = pd.DataFrame(rows, columns=['alpha', 'q0', 'q1'])
    q0_ref = scan.loc[scan['alpha'] == 0.0, 'q0'].iloc[0]
    q1_ref = scan.loc[scan['alpha'] == 1.0, 'q1'].iloc[0]
    scan['q0_norm'] = scan['q0'] / q0_ref if q0_ref > 0 else np.nan
    scan['q1_norm'] = scan['q1'] / q1_ref if q1_ref > 0 else np.nan

    requested = set(float(a) for a in alphas)
    return scan[scan['alpha'].isin(requested)].reset_index(drop=True)


def select_alpha(scan: pd.DataFrame) -> float:
    """Alpha maximizing q0_norm + q1_norm; the smallest alpha wins ties."""
    score = (scan['q0_norm'] + scan['q1_norm']).to_numpy()
    if not np.isfinite(score).any():
        raise ValueError("Alpha scan has no finite normalized homogeneity")

    chosen = float(scan['alpha'].to_numpy()[np.nanargmax(score)])
    logger.info(f"Selected alpha={chosen:.2f}")
    return chosen
