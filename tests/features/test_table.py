"""Unit tests for the feature table builder."""

from __future__ import annotations

import pytest
import pandas as pd
import numpy as np
import geopandas as gpd
from shapely.geometry import box

from clustering.errors import DataMismatchError
from features.table import build_feature_table, derive_rates, collinear_pairs, describe_indicators


def _geo(ids):
    return gpd.GeoDataFrame(
        {'region_id': ids},
        geometry=[box(i, 0, i + 1, 1) for i in range(len(ids))],
        crs="EPSG:3857"
    )


class TestBuildFeatureTable:
    """Test joining geometry with attributes."""

    def test_full_match(self):
        """Every region matches; geometry order is kept."""
        geo = _geo(['A', 'B', 'C'])
        attrs = pd.DataFrame({'region_id': ['C', 'A', 'B'], 'pop': [30, 10, 20]})

        table, report = build_feature_table(geo, attrs, 'region_id')

        assert list(table['region_id']) == ['A', 'B', 'C']
        assert list(table['pop']) == [10, 20, 30]
        assert isinstance(table, gpd.GeoDataFrame)
        assert table.crs == geo.crs
        assert report['n_matched'] == 3
        assert report['unmatched_geometry'] == []
        assert report['unmatched_attributes'] == []

    def test_partial_match_inner(self):
        """Unmatched rows on both sides are reported and dropped."""
        geo = _geo(['A', 'B', 'C'])
        attrs = pd.DataFrame({'region_id': ['B', 'C', 'D'], 'pop': [20, 30, 40]})

        table, report = build_feature_table(geo, attrs, 'region_id', how='inner')

        assert list(table['region_id']) == ['B', 'C']
        assert report['n_matched'] == 2
        assert report['unmatched_geometry'] == ['A']
        assert report['unmatched_attributes'] == ['D']

    def test_partial_match_left(self):
        """Left join keeps every geometry row with NaN attributes."""
        geo = _geo(['A', 'B', 'C'])
        attrs = pd.DataFrame({'region_id': ['B', 'C', 'D'], 'pop': [20, 30, 40]})

        table, _ = build_feature_table(geo, attrs, 'region_id', how='left')

        assert list(table['region_id']) == ['A', 'B', 'C']
        assert np.isnan(table['pop'].iloc[0])

    def test_keys_compared_as_strings(self):
        """Integer and string keys of the same value match."""
        geo = _geo(['1', '2'])
        attrs = pd.DataFrame({'region_id': [1, 2], 'pop': [5, 6]})

        table, report = build_feature_table(geo, attrs, 'region_id')

        assert report['n_matched'] == 2
        assert list(table['pop']) == [5, 6]

    def test_zero_matches_raises(self):
        geo = _geo(['A', 'B'])
        attrs = pd.DataFrame({'region_id': ['X', 'Y'], 'pop': [1, 2]})

        with pytest.raises(DataMismatchError, match="matched no rows"):
            build_feature_table(geo, attrs, 'region_id')

    def test_missing_key_raises(self):
        geo = _geo(['A'])
        attrs = pd.DataFrame({'code': ['A'], 'pop': [1]})

        with pytest.raises(DataMismatchError, match="attribute table"):
            build_feature_table(geo, attrs, 'region_id')

    def test_duplicate_key_raises(self):
        geo = _geo(['A', 'B'])
        attrs = pd.DataFrame({'region_id': ['A', 'A'], 'pop': [1, 2]})

        with pytest.raises(DataMismatchError, match="Duplicate"):
            build_feature_table(geo, attrs, 'region_id')

    def test_invalid_join_policy(self):
        with pytest.raises(ValueError):
            build_feature_table(_geo(['A']), pd.DataFrame({'region_id': ['A']}), 'region_id', how='outer')


class TestDeriveRates:
    """Test count-to-rate conversion."""

    def test_rates_per_thousand(self):
        df = pd.DataFrame({'TT': [1000, 500], 'RADIO': [250, 100]})

        out = derive_rates(df, ['RADIO'], 'TT')

        assert list(out['RADIO_PR']) == [250.0, 200.0]
        assert 'RADIO_PR' not in df.columns

    def test_custom_scale_and_suffix(self):
        df = pd.DataFrame({'TT': [200], 'TV': [50]})

        out = derive_rates(df, ['TV'], 'TT', scale=100.0, suffix='_pct')

        assert out['TV_pct'].iloc[0] == pytest.approx(25.0)

    def test_zero_total_raises(self):
        df = pd.DataFrame({'TT': [100, 0], 'TV': [5, 0]})

        with pytest.raises(ValueError, match="positive"):
            derive_rates(df, ['TV'], 'TT')

    def test_missing_column_raises(self):
        with pytest.raises(ValueError, match="Missing"):
            derive_rates(pd.DataFrame({'TT': [1]}), ['TV'], 'TT')


class TestCollinearPairs:
    """Test collinearity flagging."""

    def test_flags_correlated_pair(self):
        rng = np.random.default_rng(0)
        a = rng.normal(size=50)
        df = pd.DataFrame({
            'a': a,
            'b': 2 * a + rng.normal(scale=0.01, size=50),
            'c': rng.normal(size=50)
        })

        pairs = collinear_pairs(df, ['a', 'b', 'c'], threshold=0.8)

        assert len(pairs) == 1
        assert (pairs.loc[0, 'var_a'], pairs.loc[0, 'var_b']) == ('a', 'b')
        assert pairs.loc[0, 'corr'] > 0.99

    def test_negative_correlation_flagged(self):
        df = pd.DataFrame({'a': [1.0, 2.0, 3.0, 4.0], 'b': [4.0, 3.0, 2.0, 1.0]})

        pairs = collinear_pairs(df, ['a', 'b'])

        assert pairs.loc[0, 'corr'] == pytest.approx(-1.0)

    def test_never_drops_columns(self):
        df = pd.DataFrame({'a': [1.0, 2.0, 3.0], 'b': [2.0, 4.0, 6.0]})

        collinear_pairs(df, ['a', 'b'])

        assert list(df.columns) == ['a', 'b']

    def test_no_pairs(self):
        df = pd.DataFrame({'a': [1.0, 2.0, 3.0, 4.0], 'b': [1.0, -1.0, -1.0, 1.0]})

        pairs = collinear_pairs(df, ['a', 'b'])

        assert pairs.empty
        assert list(pairs.columns) == ['var_a', 'var_b', 'corr']


def test_describe_indicators():
    df = pd.DataFrame({'a': [1.0, 2.0, 3.0], 'b': [10.0, 10.0, 40.0]})

    summary = describe_indicators(df, ['a', 'b'])

    assert list(summary.index) == ['a', 'b']
    assert summary.loc['a', 'median'] == 2.0
    assert summary.loc['b', 'max'] == 40.0
