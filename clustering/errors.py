"""
Error types shared by the regionalization stages.
"""

from __future__ import annotations

import numpy as np


class DataMismatchError(ValueError):
    """Join key missing, duplicated, or matching no rows."""


class DegenerateColumnError(ValueError):
    """No usable (non-constant) feature column is left to standardize."""


class InvalidClusterCountError(ValueError):
    """Requested cluster count is outside [2, N]."""


def validate_n_clusters(n_clusters: int, n_obs: int) -> None:
    """
    Reject cluster counts that cannot produce a real partition.

    Raises
    ------
    InvalidClusterCountError
        If n_clusters is not an integer, is below 2, or exceeds n_obs.
    """
    if isinstance(n_clusters, bool) or not isinstance(n_clusters, (int, np.integer)):
        raise InvalidClusterCountError(f"n_clusters must be an integer, got {n_clusters!r}")

    n_clusters = int(n_clusters)
    if n_clusters < 2:
        raise InvalidClusterCountError(
            f"n_clusters must be >= 2 (k={n_clusters} is not a clustering)"
        )
    if n_clusters > n_obs:
        raise InvalidClusterCountError(
            f"n_clusters ({n_clusters}) cannot exceed number of regions ({n_obs})"
        )
