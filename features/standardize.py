"""
Column standardization so no indicator dominates the distance by magnitude.
"""

from __future__ import annotations

import pandas as pd
import numpy as np
import logging
from typing import List, Tuple
from sklearn.preprocessing import MinMaxScaler, StandardScaler

from clustering.errors import DegenerateColumnError

logger = logging.getLogger(__name__)

METHODS = ("minmax", "zscore", "percentile")


def standardize(
    df: pd.DataFrame,
    cols: List[str],
    method: str = "minmax"
) -> Tuple[pd.DataFrame, List[str]]:
    """
    Rescale indicator columns to a common scale.

    Parameters
    ----------
    df : pd.DataFrame
        Table holding the indicator columns.
    cols : list[str]
        Columns to standardize, in output order.
    method : str
        'minmax' maps to [0, 1]; 'zscore' to mean 0 and unit (population)
        variance; 'percentile' to the empirical percentile rank in (0, 1].

    Returns
    -------
    features : pd.DataFrame
        Standardized columns, same index and row order as df.
    dropped : list[str]
        Constant columns that were excluded.

    Raises
    ------
    ValueError
        Unknown method, missing, non-numeric or non-finite columns.
    DegenerateColumnError
        If every requested column is constant.
    """
    if method not in METHODS:
        raise ValueError(f"Unsupported standardization method: {method} (use one of {METHODS})")

    if not cols:
        raise ValueError("No columns given to standardize")

    missing = [col for col in cols if col not in df.columns]
    if missing:
        raise ValueError(f"Missing columns: {missing}")

    data = df[cols]
    for col in cols:
        if not pd.api.types.is_numeric_dtype(data[col]):
            raise ValueError(f"Column '{col}' must be numeric")

    if not np.isfinite(data.to_numpy(dtype=float)).all():
        raise ValueError("Columns must be finite (no NaN/Inf values)")

    dropped = [col for col in cols if np.ptp(data[col].to_numpy(dtype=float)) == 0]
    if dropped:
        logger.warning(f"Excluding zero-variance columns: {dropped}")

    kept = [col for col in cols if col not in dropped]
    if not kept:
        raise DegenerateColumnError(f"All columns are constant: {cols}")

    values = data[kept].to_numpy(dtype=float)
    if method == "minmax":
        scaled = MinMaxScaler().fit_transform(values)
    elif method == "zscore":
        scaled = StandardScaler().fit_transform(values)
    else:
        scaled = data[kept].rank(method="max", pct=True).to_numpy()

    logger.debug(f"Standardized {len(kept)} columns with '{method}'")

    return pd.DataFrame(scaled, columns=kept, index=df.index), dropped
