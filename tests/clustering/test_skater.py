"""Unit tests for SKATER regionalization."""

from __future__ import annotations

import pytest
import pandas as pd
import numpy as np
import networkx as nx
from libpysal import weights

from clustering.adjacency import contiguity_graph
from clustering.errors import InvalidClusterCountError
from clustering.evaluation import fragmentation
from clustering.hierarchical import hierarchical_clusters
from clustering.proximity import dissimilarity_matrix, edge_costs, spanning_forest
from clustering.skater_runner import run_skater, skater_partition
from features.standardize import standardize

try:
    import spopt  # noqa: F401
    HAS_SPOPT = True
except ImportError:
    HAS_SPOPT = False


def _path_inputs(path_regions):
    gdf, attrs = path_regions
    w = contiguity_graph(gdf, rule='rook')
    return attrs, w


class TestSkaterPartition:
    """Test MST pruning."""

    def test_path_scenario_contiguous(self, path_regions):
        """k=2 on A-B-C-D-E cuts the path once; never a holed split."""
        attrs, w = _path_inputs(path_regions)

        mapping, labels = run_skater(attrs, w, {'n_clusters': 2}, ['x0', 'x1'])

        assert fragmentation(labels, w)['fragmentation'] == 0
        # Labels along a path change exactly once
        assert int((np.diff(labels) != 0).sum()) == 1
        assert labels[0] == labels[1]
        assert labels[3] == labels[4]
        assert list(mapping.columns) == ['region_id', 'cluster']
        assert list(mapping['region_id']) == list(attrs['region_id'])

    def test_path_scenario_attribute_only_may_fragment(self):
        """Hierarchical clustering ignores adjacency: A and C may share a label without B."""
        X = np.array([[0.0], [10.0], [0.1], [10.1], [0.2]])
        ids = [f"R000{i:03d}" for i in range(5)]
        w = weights.W({
            ids[i]: [ids[j] for j in (i - 1, i + 1) if 0 <= j < 5] for i in range(5)
        }, id_order=ids)

        hier = hierarchical_clusters(dissimilarity_matrix(X), 2)
        forest = spanning_forest(edge_costs(w, dissimilarity_matrix(X)))
        constrained = skater_partition(X, forest, 2)

        assert fragmentation(hier, w)['fragmentation'] > 0
        assert fragmentation(constrained, w)['fragmentation'] == 0

    def test_grid_blocks_contiguous(self, grid_regions, grid_indicators):
        """Every SKATER cluster on a lattice is one contiguous piece."""
        rates = grid_indicators[['C0', 'C1', 'C2']].div(grid_indicators['TT_HOUSEHOLDS'], axis=0)
        features, _ = standardize(rates, ['C0', 'C1', 'C2'])
        df = pd.concat([grid_indicators[['region_id']], features], axis=1)
        w = contiguity_graph(grid_regions, rule='queen')

        _, labels = run_skater(df, w, {'n_clusters': 4}, ['C0', 'C1', 'C2'])

        assert sorted(np.unique(labels)) == [1, 2, 3, 4]
        assert fragmentation(labels, w)['fragmentation'] == 0

    def test_every_region_labelled_once(self, grid_regions, grid_indicators):
        w = contiguity_graph(grid_regions, rule='rook')
        X = grid_indicators[['C0', 'C1', 'C2']].to_numpy(dtype=float)
        forest = spanning_forest(edge_costs(w, dissimilarity_matrix(X)))

        labels = skater_partition(X, forest, 5)

        assert len(labels) == 36
        assert set(labels) == {1, 2, 3, 4, 5}

    def test_k_equals_n_gives_singletons(self, path_regions):
        attrs, w = _path_inputs(path_regions)

        _, labels = run_skater(attrs, w, {'n_clusters': 5}, ['x0', 'x1'])

        assert list(labels) == [1, 2, 3, 4, 5]

    def test_k_one_rejected(self, path_regions):
        attrs, w = _path_inputs(path_regions)

        with pytest.raises(InvalidClusterCountError):
            run_skater(attrs, w, {'n_clusters': 1}, ['x0', 'x1'])

    def test_k_above_n_rejected(self, path_regions):
        attrs, w = _path_inputs(path_regions)

        with pytest.raises(InvalidClusterCountError):
            run_skater(attrs, w, {'n_clusters': 6}, ['x0', 'x1'])

    def test_min_size_respected(self, path_regions):
        """With min_size=2 the outlying singleton cut is not allowed."""
        attrs, w = _path_inputs(path_regions)

        _, labels = run_skater(attrs, w, {'n_clusters': 2, 'min_size': 2}, ['x0', 'x1'])

        assert np.bincount(labels)[1:].min() >= 2

    def test_min_size_infeasible(self, path_regions):
        attrs, w = _path_inputs(path_regions)

        with pytest.raises(ValueError, match="infeasible"):
            run_skater(attrs, w, {'n_clusters': 3, 'min_size': 2}, ['x0', 'x1'])

    def test_forest_components_count_as_clusters(self):
        """Two components and k=3: one extra cut, islands kept whole."""
        X = np.array([[0.0], [0.1], [5.0], [5.1], [9.0]])
        forest = nx.Graph()
        forest.add_nodes_from(range(5))
        forest.add_weighted_edges_from([(0, 1, 0.1), (1, 2, 4.9), (2, 3, 0.1)])

        labels = skater_partition(X, forest, 3)

        np.testing.assert_array_equal(labels, [1, 1, 2, 2, 3])

    def test_more_components_than_k_rejected(self):
        forest = nx.Graph()
        forest.add_nodes_from(range(4))
        forest.add_edge(0, 1, weight=1.0)

        with pytest.raises(InvalidClusterCountError, match="disconnected"):
            skater_partition(np.zeros((4, 1)), forest, 2)

    def test_misaligned_weights_rejected(self, path_regions):
        attrs, w = _path_inputs(path_regions)
        shuffled = attrs.iloc[::-1].reset_index(drop=True)

        with pytest.raises(ValueError, match="id_order"):
            run_skater(shuffled, w, {'n_clusters': 2}, ['x0', 'x1'])

    def test_idempotent(self, grid_regions, grid_indicators):
        w = contiguity_graph(grid_regions, rule='queen')
        df = grid_indicators

        _, first = run_skater(df, w, {'n_clusters': 4}, ['C0', 'C1', 'C2'])
        _, second = run_skater(df, w, {'n_clusters': 4}, ['C0', 'C1', 'C2'])

        np.testing.assert_array_equal(first, second)


@pytest.mark.skipif(not HAS_SPOPT, reason="spopt not available")
class TestSpoptBackend:
    """spopt's SKATER as an independent implementation."""

    def test_spopt_contiguous(self, path_regions):
        attrs, w = _path_inputs(path_regions)

        _, labels = run_skater(attrs, w, {'n_clusters': 2, 'method': 'spopt'}, ['x0', 'x1'])

        assert len(np.unique(labels)) == 2
        assert fragmentation(labels, w)['fragmentation'] == 0
