"""
Tests for the feature importance summary.
"""

import numpy as np
import pandas as pd
import pytest

from src.importance import (
    aggregate_feature_importance,
    cluster_importance,
    feature_group,
    get_feature_importance,
    normalize_importance_table,
    plot_feature_importance,
    summarize_by_feature_group,
    top_n_range,
)


class FittedModel:
    """Stand-in for a fitted estimator exposing feature_importances_."""

    def __init__(self, importances):
        self.feature_importances_ = np.asarray(importances, dtype=float)


class Booster:
    """Stand-in for a raw booster exposing get_score()."""

    def get_score(self, importance_type='weight'):
        assert importance_type == 'gain'
        return {'mean_7_2017': 30.0, 'promo_14_2017': 10.0}


@pytest.fixture
def xgb_table():
    return pd.DataFrame({
        'Feature': ['promo_14_2017', 'mean_7_2017', 'mean_14_2017', 'day_1_2017', 'mean_4_dow0_2017'],
        'Gain': [0.10, 0.50, 0.30, 0.06, 0.04],
        'Cover': [0.2, 0.2, 0.2, 0.2, 0.2],
        'Frequency': [0.1, 0.4, 0.3, 0.1, 0.1]
    })


def test_normalize_xgboost_columns(xgb_table):
    table = normalize_importance_table(xgb_table)
    assert list(table.columns[:4]) == ['feature', 'gain', 'cover', 'frequency']
    assert table['feature'].iloc[0] == 'mean_7_2017'
    assert table['gain_pct'].sum() == pytest.approx(100.0)


def test_normalize_sums_duplicate_features():
    table = normalize_importance_table(pd.DataFrame({
        'feature': ['a', 'b', 'a'],
        'importance': [1.0, 3.0, 2.0]
    }))
    assert table.set_index('feature').loc['a', 'gain'] == 3.0
    assert len(table) == 2


def test_normalize_rejects_bad_tables():
    with pytest.raises(ValueError, match="empty"):
        normalize_importance_table(pd.DataFrame())
    with pytest.raises(ValueError, match="gain"):
        normalize_importance_table(pd.DataFrame({'feature': ['a'], 'weight': [1]}))


def test_cluster_importance_fixed_k(xgb_table):
    table = cluster_importance(xgb_table, n_clusters=2)
    clusters = table.set_index('feature')['cluster']
    assert clusters['mean_7_2017'] == 1
    assert clusters['day_1_2017'] == 2
    assert clusters['mean_4_dow0_2017'] == 2


def test_cluster_importance_picks_k():
    table = pd.DataFrame({
        'feature': list('abcdef'),
        'gain': [10.0, 10.0, 5.0, 5.0, 0.0, 0.0]
    })
    clustered = cluster_importance(table).set_index('feature')
    assert clustered['cluster'].max() == 3
    assert clustered.loc['a', 'cluster'] == 1
    assert clustered.loc['c', 'cluster'] == 2
    assert clustered.loc['f', 'cluster'] == 3


def test_cluster_importance_degenerate_inputs():
    equal = pd.DataFrame({'feature': ['a', 'b', 'c'], 'gain': [1.0, 1.0, 1.0]})
    assert set(cluster_importance(equal)['cluster']) == {1}

    single = pd.DataFrame({'feature': ['a'], 'gain': [2.0]})
    assert list(cluster_importance(single, n_clusters=4)['cluster']) == [1]


@pytest.mark.parametrize("name,group", [
    ('mean_14_2017', 'mean'),
    ('mean_4_dow3_2017', 'mean_dow'),
    ('day_1_2017', 'day'),
    ('promo_14_2017', 'promo'),
    ('perishable', 'perishable'),
])
def test_feature_group(name, group):
    assert feature_group(name) == group


def test_summarize_by_feature_group(xgb_table):
    summary = summarize_by_feature_group(xgb_table).set_index('group')
    assert summary.loc['mean', 'n_features'] == 2
    assert summary.loc['mean', 'gain'] == pytest.approx(0.80)
    assert summary.loc['mean', 'top_feature'] == 'mean_7_2017'
    assert summary.index[0] == 'mean'


def test_get_feature_importance_from_estimator():
    imp = get_feature_importance(FittedModel([0.2, 0.8]), ['x', 'y'])
    assert list(imp['feature']) == ['y', 'x']
    assert imp['gain_pct'].iloc[0] == pytest.approx(80.0)


def test_get_feature_importance_from_booster():
    imp = get_feature_importance(Booster(), ['mean_7_2017', 'promo_14_2017', 'day_1_2017'])
    assert imp.set_index('feature').loc['day_1_2017', 'gain'] == 0.0
    assert imp['feature'].iloc[0] == 'mean_7_2017'


def test_get_feature_importance_errors():
    with pytest.raises(TypeError):
        get_feature_importance(object(), ['x'])
    with pytest.raises(ValueError, match="2 importances"):
        get_feature_importance(FittedModel([0.5, 0.5]), ['x', 'y', 'z'])


def test_aggregate_feature_importance():
    models = [FittedModel([0.2, 0.8]), FittedModel([0.4, 0.6])]
    agg = aggregate_feature_importance(models, ['x', 'y']).set_index('feature')
    assert agg.loc['y', 'gain'] == pytest.approx(0.7)
    assert agg.loc['y', 'gain_pct'] == pytest.approx(70.0)
    assert agg.loc['x', 'gain_std'] > 0


def test_plot_feature_importance(xgb_table, tmp_path):
    path = plot_feature_importance(cluster_importance(xgb_table), top_n=3, plots_dir=tmp_path)
    assert path.exists()


@pytest.mark.parametrize("n_features,expected", [
    (0, None),
    (3, None),
    (5, None),
    (6, (5, 6, 6)),
    (120, (5, 120, 30)),
])
def test_top_n_range(n_features, expected):
    assert top_n_range(n_features) == expected
