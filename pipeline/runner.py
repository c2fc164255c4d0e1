"""
End-to-end regionalization: feature table -> standardization -> proximity -> clusters -> evaluation.
"""

from __future__ import annotations

import pandas as pd
import numpy as np
import logging
from typing import Any, Dict, List, Optional, TypedDict
import geopandas as gpd

from clustering.adjacency import contiguity_graph, graph_components
from clustering.blended import blended_clusters, choose_alpha, select_alpha
from clustering.errors import validate_n_clusters
from clustering.evaluation import cluster_summary, compare_variants
from clustering.hierarchical import compare_linkages, gap_statistic, hierarchical_clusters, select_k_from_gap
from clustering.proximity import dissimilarity_matrix, geographic_distance_matrix
from clustering.skater_runner import run_skater
from features.standardize import standardize
from features.table import build_feature_table, collinear_pairs, derive_rates

from .config import PipelineConfig, resolve_config

logger = logging.getLogger(__name__)


class PipelineResult(TypedDict):
    """Outputs of every stage of one pipeline run."""
    config: PipelineConfig
    table: gpd.GeoDataFrame
    join_report: Dict[str, Any]
    collinear: pd.DataFrame
    features: pd.DataFrame
    dropped_cols: List[str]
    components: Dict[str, Any]
    linkage_scores: pd.Series
    linkage: str
    gap: Optional[pd.DataFrame]
    n_clusters: int
    alpha_scan: Optional[pd.DataFrame]
    alpha: Optional[float]
    labels: Dict[str, np.ndarray]
    assignments: pd.DataFrame
    comparison: pd.DataFrame
    summaries: Dict[str, pd.DataFrame]
    warnings: List[str]


def _feature_columns(table: pd.DataFrame, attrs: pd.DataFrame, cfg: PipelineConfig) -> List[str]:
    if cfg['feature_cols'] is not None:
        cols = list(cfg['feature_cols'])
    elif cfg['rates'] is not None:
        cols = [f"{col}_PR" for col in cfg['rates']['count_cols']]
    else:
        cols = [
            col for col in attrs.columns
            if col != cfg['key'] and pd.api.types.is_numeric_dtype(attrs[col])
        ]

    cols = [col for col in cols if col not in cfg['exclude_cols']]
    missing = [col for col in cols if col not in table.columns]
    if missing:
        raise ValueError(f"Feature columns not found in joined table: {missing}")
    if not cols:
        raise ValueError("No feature columns selected")
    return cols


def _skater_cluster_count(
    n_clusters: int,
    components: Dict[str, Any],
    cfg: PipelineConfig,
    warnings: List[str]
) -> int:
    """Each graph component is at least one contiguous cluster, so SKATER may need more than k."""
    n_components = components['n_components']
    if n_components <= n_clusters or 'skater' not in cfg['constrained']:
        return n_clusters

    message = (
        f"SKATER uses {n_components} clusters instead of {n_clusters}: "
        f"the neighbour graph has {n_components} components"
    )
    logger.warning(message)
    warnings.append(message)
    return n_components


def run_pipeline(
    geo: gpd.GeoDataFrame,
    attrs: pd.DataFrame,
    cfg: Optional[Dict[str, Any]] = None
) -> PipelineResult:
    """
    Run every clustering variant on one region table and compare them.

    Parameters
    ----------
    geo : gpd.GeoDataFrame
        Region polygons with the join key column, in one projected CRS.
    attrs : pd.DataFrame
        Indicator table with the join key column.
    cfg : dict | None
        Overrides for DEFAULT_CONFIG; validated before any work starts.

    Returns
    -------
    PipelineResult
        Stage outputs; 'labels' maps variant name ('hierarchical', 'skater',
        'blended') to labels aligned with 'table', and 'warnings' collects
        every recoverable data-quality condition met on the way.

    Notes
    -----
    Deterministic for a fixed configuration: the gap statistic draws its
    references from gap.random_state and every other stage is exact.

    With join='left', regions without attributes are excluded before
    rates and standardization. When the neighbour graph has more
    components than k, SKATER forms one cluster per component instead.
    """
    cfg = resolve_config(cfg)
    key = cfg['key']
    warnings: List[str] = []

    # Stage 1: feature table
    table, join_report = build_feature_table(geo, attrs, key, how=cfg['join'])
    if join_report['unmatched_geometry'] or join_report['unmatched_attributes']:
        warnings.append(
            f"Partial join: {len(join_report['unmatched_geometry'])} geometry rows and "
            f"{len(join_report['unmatched_attributes'])} attribute rows unmatched"
        )

    # A left join keeps geometry rows with NaN attributes; they cannot be clustered
    unmatched = join_report['unmatched_geometry'] if cfg['join'] == 'left' else []
    if unmatched:
        shown = unmatched[:5] + (['...'] if len(unmatched) > 5 else [])
        warnings.append(f"Regions without attributes excluded: {len(unmatched)} ({shown})")
        logger.warning(f"Excluding {len(unmatched)} regions without attributes: {shown}")
        table = table[~table[key].isin(unmatched)].reset_index(drop=True)

    if cfg['rates'] is not None:
        rates = cfg['rates']
        table = derive_rates(table, rates['count_cols'], rates['total_col'], scale=rates['scale'])

    feature_cols = _feature_columns(table, attrs, cfg)
    n_regions = len(table)

    # Fail fast on the cluster count before any clustering work
    if cfg['n_clusters'] != 'auto':
        validate_n_clusters(cfg['n_clusters'], n_regions)
    elif n_regions < 3:
        raise ValueError(f"Automatic cluster count needs at least 3 regions, got {n_regions}")

    collinear = collinear_pairs(table, feature_cols, threshold=cfg['collinearity_threshold'])
    for row in collinear.itertuples(index=False):
        warnings.append(f"Collinear variables: {row.var_a} ~ {row.var_b} (r={row.corr:.2f})")

    # Stage 2: standardization
    features, dropped_cols = standardize(table, feature_cols, method=cfg['standardization'])
    for col in dropped_cols:
        warnings.append(f"Zero-variance column excluded: {col}")
    X = features.to_numpy()

    # Stage 3: proximity and adjacency
    D = dissimilarity_matrix(X, metric=cfg['metric'], p=cfg['minkowski_p'], n_jobs=cfg['n_jobs'])

    contiguity = dict(cfg['contiguity'])
    rule = contiguity.pop('rule')
    w = contiguity_graph(table, rule=rule, id_col=key, **contiguity)
    components = graph_components(w)
    if components['n_components'] > 1:
        warnings.append(
            f"Neighbour graph is disconnected: {components['n_components']} components, "
            f"islands {components['islands']}"
        )

    skater_k = None
    if cfg['n_clusters'] != 'auto':
        skater_k = _skater_cluster_count(int(cfg['n_clusters']), components, cfg, warnings)

    # Stage 4: clustering
    linkage_scores = compare_linkages(D)
    linkage = str(linkage_scores.idxmax()) if cfg['linkage'] == 'auto' else cfg['linkage']

    gap = None
    if cfg['n_clusters'] == 'auto':
        gap = gap_statistic(
            X,
            k_max=min(cfg['gap']['k_max'], n_regions - 1),
            n_refs=cfg['gap']['n_refs'],
            method=linkage,
            metric=cfg['metric'] if cfg['metric'] != 'minkowski' else 'euclidean',
            random_state=cfg['gap']['random_state'],
            n_jobs=cfg['n_jobs']
        )
        n_clusters = select_k_from_gap(gap)
        skater_k = _skater_cluster_count(n_clusters, components, cfg, warnings)
    else:
        n_clusters = int(cfg['n_clusters'])

    labels = {'hierarchical': hierarchical_clusters(D, n_clusters, method=linkage)}

    ids = table[key].astype(str)
    feature_frame = pd.concat([ids.rename(key), features.reset_index(drop=True)], axis=1)
    kept_cols = list(features.columns)

    if 'skater' in cfg['constrained']:
        skater_cfg = {'n_clusters': skater_k, **cfg['skater']}
        _, labels['skater'] = run_skater(feature_frame, w, skater_cfg, kept_cols, id_col=key, D=D)

    alpha_scan = None
    alpha = None
    if 'blended' in cfg['constrained']:
        D_geo = geographic_distance_matrix(table)
        if cfg['alpha'] == 'auto':
            alpha_scan = choose_alpha(D, D_geo, n_clusters, cfg['alpha_grid'], method=linkage, n_jobs=cfg['n_jobs'])
            alpha = select_alpha(alpha_scan)
        else:
            alpha = float(cfg['alpha'])
        labels['blended'] = blended_clusters(D, D_geo, n_clusters, alpha, method=linkage)

    # Tied merge heights (duplicate feature rows) can leave a tree cut short
    for name, variant_labels in labels.items():
        expected = skater_k if name == 'skater' else n_clusters
        found = len(np.unique(variant_labels))
        if found != expected:
            warnings.append(f"Variant '{name}' produced {found} clusters instead of {expected}")

    # Stage 5: evaluation
    comparison = compare_variants(labels, w, X)
    assignments = pd.DataFrame({key: ids.to_numpy(), **labels})

    summaries = {}
    for name, variant_labels in labels.items():
        mapping = pd.DataFrame({key: ids.to_numpy(), 'cluster': variant_labels})
        summaries[name] = cluster_summary(mapping, feature_frame, kept_cols, id_col=key)

    logger.info(
        f"Pipeline finished: {n_regions} regions, k={n_clusters}, "
        f"variants {list(labels)}, {len(warnings)} warnings"
    )

    return {
        'config': cfg,
        'table': table,
        'join_report': join_report,
        'collinear': collinear,
        'features': features,
        'dropped_cols': dropped_cols,
        'components': components,
        'linkage_scores': linkage_scores,
        'linkage': linkage,
        'gap': gap,
        'n_clusters': n_clusters,
        'alpha_scan': alpha_scan,
        'alpha': alpha,
        'labels': labels,
        'assignments': assignments,
        'comparison': comparison,
        'summaries': summaries,
        'warnings': warnings
    }
