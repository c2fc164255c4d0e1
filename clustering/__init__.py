"""
Clustering package for spatially constrained regionalization.

This package provides neighbour graph building, attribute dissimilarity and
minimum spanning trees, unconstrained hierarchical clustering, SKATER and
blended-distance constrained clustering, and evaluation metrics.
"""

from .errors import (
    DataMismatchError,
    DegenerateColumnError,
    InvalidClusterCountError,
    validate_n_clusters
)
from .adjacency import contiguity_graph, graph_components, reorder_w_to_id_order, CONTIGUITY_RULES
from .proximity import dissimilarity_matrix, geographic_distance_matrix, edge_costs, spanning_forest
from .hierarchical import (
    LINKAGES,
    linkage_tree,
    agglomerative_coefficient,
    compare_linkages,
    best_linkage,
    cut_tree,
    hierarchical_clusters,
    gap_statistic,
    select_k_from_gap
)
from .skater_runner import run_skater, skater_partition, SkaterConfig
from .blended import blended_dissimilarity, blended_clusters, pseudo_inertia, homogeneity, choose_alpha, select_alpha
from .evaluation import (
    quality_scores,
    fragmentation,
    partition_stability,
    within_cluster_ss,
    cluster_summary,
    compare_variants
)

__all__ = [
    # Errors
    'DataMismatchError',
    'DegenerateColumnError',
    'InvalidClusterCountError',
    'validate_n_clusters',

    # Graphs and distances
    'contiguity_graph',
    'graph_components',
    'reorder_w_to_id_order',
    'CONTIGUITY_RULES',
    'dissimilarity_matrix',
    'geographic_distance_matrix',
    'edge_costs',
    'spanning_forest',

    # Unconstrained
    'LINKAGES',
    'linkage_tree',
    'agglomerative_coefficient',
    'compare_linkages',
    'best_linkage',
    'cut_tree',
    'hierarchical_clusters',
    'gap_statistic',
    'select_k_from_gap',

    # Constrained
    'run_skater',
    'skater_partition',
    'SkaterConfig',
    'blended_dissimilarity',
    'blended_clusters',
    'pseudo_inertia',
    'homogeneity',
    'choose_alpha',
    'select_alpha',

    # Evaluation
    'quality_scores',
    'fragmentation',
    'partition_stability',
    'within_cluster_ss',
    'cluster_summary',
    'compare_variants'
]
