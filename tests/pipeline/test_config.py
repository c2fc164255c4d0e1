"""Unit tests for pipeline configuration."""

from __future__ import annotations

import pytest

from pipeline.config import DEFAULT_CONFIG, resolve_config


class TestResolveConfig:
    """Test defaults, merging and validation."""

    def test_defaults(self):
        cfg = resolve_config()

        assert cfg == DEFAULT_CONFIG
        assert cfg is not DEFAULT_CONFIG
        assert cfg['alpha_grid'][0] == 0.0 and cfg['alpha_grid'][-1] == 1.0

    def test_nested_merge(self):
        cfg = resolve_config({'gap': {'n_refs': 10}, 'skater': {'min_size': 3}})

        assert cfg['gap'] == {'k_max': 10, 'n_refs': 10, 'random_state': 42}
        assert cfg['skater'] == {'min_size': 3, 'method': 'native'}

    def test_defaults_not_mutated(self):
        resolve_config({'gap': {'n_refs': 3}})

        assert DEFAULT_CONFIG['gap']['n_refs'] == 50

    def test_contiguity_replaced(self):
        cfg = resolve_config({'contiguity': {'rule': 'knn', 'k': 4}})

        assert cfg['contiguity'] == {'rule': 'knn', 'k': 4}

    def test_callable_contiguity_rule(self):
        def rule(gdf, ids, **params):
            return None

        assert resolve_config({'contiguity': {'rule': rule}})['contiguity']['rule'] is rule

    def test_rates_default_scale(self):
        cfg = resolve_config({'rates': {'count_cols': ['C0'], 'total_col': 'TT_HOUSEHOLDS'}})

        assert cfg['rates']['scale'] == 1000.0

    @pytest.mark.parametrize("overrides, match", [
        ({'colour': 'red'}, "Unknown configuration"),
        ({'gap': {'seed': 1}}, "Unknown 'gap'"),
        ({'join': 'outer'}, "join"),
        ({'standardization': 'robust'}, "standardization"),
        ({'metric': 'cosine'}, "metric"),
        ({'linkage': 'centroid'}, "linkage"),
        ({'contiguity': {'rule': 'bishop'}}, "contiguity.rule"),
        ({'contiguity': {'k': 3}}, "contiguity"),
        ({'n_clusters': 2.5}, "n_clusters"),
        ({'n_clusters': True}, "n_clusters"),
        ({'gap': {'k_max': 1}}, "k_max"),
        ({'constrained': ['voronoi']}, "constrained"),
        ({'skater': {'method': 'exact'}}, "skater.method"),
        ({'skater': {'min_size': 0}}, "min_size"),
        ({'alpha': 1.5}, "alpha"),
        ({'alpha_grid': []}, "alpha_grid"),
        ({'collinearity_threshold': 2.0}, "collinearity_threshold"),
        ({'metric': 'minkowski', 'minkowski_p': 0.5}, "minkowski_p"),
        ({'rates': {'count_cols': ['C0']}}, "total_col"),
        ({'key': ''}, "key")
    ])
    def test_invalid_values(self, overrides, match):
        with pytest.raises(ValueError, match=match):
            resolve_config(overrides)

    def test_explicit_k_accepted(self):
        """Range of k is checked against the data later, not here."""
        assert resolve_config({'n_clusters': 1})['n_clusters'] == 1
