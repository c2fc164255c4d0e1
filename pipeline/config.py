"""
Run parameters for the regionalization pipeline.
"""

from __future__ import annotations

import copy
import logging
from typing import Any, Dict, List, Optional, TypedDict, Union

from clustering.adjacency import CONTIGUITY_RULES
from clustering.hierarchical import LINKAGES
from clustering.proximity import METRICS
from features.standardize import METHODS as STANDARDIZATION_METHODS
from features.table import JOIN_POLICIES

logger = logging.getLogger(__name__)

CONSTRAINED_VARIANTS = ('skater', 'blended')
SKATER_METHODS = ('native', 'spopt')


class RateConfig(TypedDict):
    """Counts converted to rates per `scale` units of `total_col`."""
    count_cols: List[str]
    total_col: str
    scale: float


class PipelineConfig(TypedDict, total=False):
    """Configuration for a full pipeline run."""
    key: str
    join: str
    rates: Optional[RateConfig]
    feature_cols: Optional[List[str]]
    exclude_cols: List[str]
    collinearity_threshold: float
    standardization: str
    metric: str
    minkowski_p: float
    contiguity: Dict[str, Any]
    linkage: str
    n_clusters: Union[int, str]
    gap: Dict[str, Any]
    constrained: List[str]
    skater: Dict[str, Any]
    alpha: Union[float, str]
    alpha_grid: List[float]
    n_jobs: Optional[int]


DEFAULT_CONFIG: PipelineConfig = {
    'key': 'region_id',
    'join': 'inner',
    'rates': None,
    'feature_cols': None,
    'exclude_cols': [],
    'collinearity_threshold': 0.8,
    'standardization': 'minmax',
    'metric': 'euclidean',
    'minkowski_p': 2.0,
    'contiguity': {'rule': 'queen'},
    'linkage': 'ward',
    'n_clusters': 'auto',
    'gap': {'k_max': 10, 'n_refs': 50, 'random_state': 42},
    'constrained': ['skater'],
    'skater': {'min_size': 1, 'method': 'native'},
    'alpha': 'auto',
    'alpha_grid': [round(0.1 * i, 1) for i in range(11)],
    'n_jobs': 1
}


def _check_choice(name: str, value: Any, choices) -> None:
    if value not in choices:
        raise ValueError(f"Invalid '{name}': {value!r} (use one of {tuple(choices)})")


def resolve_config(cfg: Optional[Dict[str, Any]] = None) -> PipelineConfig:
    """
    Merge user settings over DEFAULT_CONFIG and validate every option.

    Nested dicts ('gap', 'skater', 'contiguity') are merged key by key.

    Raises
    ------
    ValueError
        Unknown keys or invalid values, naming the offending option.
    """
    cfg = dict(cfg or {})
    unknown = sorted(set(cfg) - set(DEFAULT_CONFIG))
    if unknown:
        raise ValueError(f"Unknown configuration keys: {unknown}")

    resolved = copy.deepcopy(DEFAULT_CONFIG)
    for key, value in cfg.items():
        if key in ('gap', 'skater') and isinstance(value, dict):
            extra = sorted(set(value) - set(DEFAULT_CONFIG[key]))
            if extra:
                raise ValueError(f"Unknown '{key}' options: {extra}")
            resolved[key].update(value)
        elif key == 'contiguity' and isinstance(value, dict):
            # Rule parameters differ per rule, so the dict replaces the default
            resolved[key] = dict(value)
        else:
            resolved[key] = copy.deepcopy(value)

    _check_choice('join', resolved['join'], JOIN_POLICIES)
    _check_choice('standardization', resolved['standardization'], STANDARDIZATION_METHODS)
    _check_choice('metric', resolved['metric'], METRICS)
    _check_choice('linkage', resolved['linkage'], LINKAGES + ('auto',))

    if not isinstance(resolved['key'], str) or not resolved['key']:
        raise ValueError("'key' must be a non-empty column name")

    if resolved['metric'] == 'minkowski' and resolved['minkowski_p'] < 1:
        raise ValueError("'minkowski_p' must be >= 1")

    if not 0.0 <= resolved['collinearity_threshold'] <= 1.0:
        raise ValueError("'collinearity_threshold' must be within [0, 1]")

    rates = resolved['rates']
    if rates is not None:
        missing = [k for k in ('count_cols', 'total_col') if k not in rates]
        if missing:
            raise ValueError(f"'rates' is missing {missing}")
        rates.setdefault('scale', 1000.0)

    contiguity = resolved['contiguity']
    if not isinstance(contiguity, dict) or 'rule' not in contiguity:
        raise ValueError("'contiguity' must be a dict with a 'rule' entry")
    if not callable(contiguity['rule']):
        _check_choice('contiguity.rule', contiguity['rule'], CONTIGUITY_RULES)

    n_clusters = resolved['n_clusters']
    if n_clusters != 'auto' and (isinstance(n_clusters, bool) or not isinstance(n_clusters, int)):
        raise ValueError(f"'n_clusters' must be an integer or 'auto', got {n_clusters!r}")

    gap = resolved['gap']
    if gap['k_max'] < 2:
        raise ValueError("'gap.k_max' must be >= 2")
    if gap['n_refs'] < 1:
        raise ValueError("'gap.n_refs' must be >= 1")

    constrained = list(resolved['constrained'])
    for variant in constrained:
        _check_choice('constrained', variant, CONSTRAINED_VARIANTS)
    resolved['constrained'] = constrained

    _check_choice('skater.method', resolved['skater']['method'], SKATER_METHODS)
    if resolved['skater']['min_size'] < 1:
        raise ValueError("'skater.min_size' must be >= 1")

    alpha = resolved['alpha']
    if alpha != 'auto' and not (isinstance(alpha, (int, float)) and 0.0 <= alpha <= 1.0):
        raise ValueError(f"'alpha' must be within [0, 1] or 'auto', got {alpha!r}")

    if not resolved['alpha_grid'] or any(not 0.0 <= a <= 1.0 for a in resolved['alpha_grid']):
        raise ValueError("'alpha_grid' must be a non-empty list of values in [0, 1]")

    logger.debug(f"Resolved pipeline configuration: {resolved}")
    return resolved
