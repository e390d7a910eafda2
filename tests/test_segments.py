"""
Tests for the segment error breakdowns.
"""

import numpy as np
import pandas as pd
import pytest

from src.segments import (
    analyze_zero_vs_nonzero,
    error_breakdowns,
    error_by_segment,
    error_matrix,
    overall_metrics,
    plot_geography_and_store_errors,
    plot_error_heatmap,
    score_frame,
    segment_labels,
    worst_series,
)

LN2 = np.log(2)


def test_overall_metrics(eval_df):
    metrics = overall_metrics(eval_df)
    # store 1 is exact, stores 2 and 3 are off by log(2) on every row
    assert metrics['rmsle'] == pytest.approx(np.sqrt(2 / 3) * LN2)
    assert metrics['n_obs'] == 18
    assert metrics['n_stores'] == 3


def test_error_by_store(eval_df):
    table = error_by_segment(eval_df, 'store_nbr')
    by_store = table.set_index('store_nbr')

    assert by_store.loc[1, 'rmsle'] == pytest.approx(0.0)
    assert by_store.loc[2, 'rmsle'] == pytest.approx(LN2)
    assert by_store['n_obs'].sum() == 18
    assert table['error_share'].sum() == pytest.approx(1.0)
    assert by_store.loc[1, 'error_share'] == 0.0


def test_error_by_segment_sorted_worst_first(eval_df):
    table = error_by_segment(eval_df, 'state')
    assert list(table['rmsle']) == sorted(table['rmsle'], reverse=True)


def test_error_by_type_groups_stores(eval_df):
    table = error_by_segment(eval_df, 'type').set_index('type')
    # type A = stores 1 (exact) and 3 (off by ln2)
    assert table.loc['A', 'n_obs'] == 12
    assert table.loc['A', 'rmsle'] == pytest.approx(np.sqrt(0.5) * LN2)
    assert table.loc['D', 'rmsle'] == pytest.approx(LN2)


def test_nwrmsle_uses_perishable_weight(eval_df):
    table = error_by_segment(eval_df, 'store_nbr').set_index('store_nbr')
    # uniform error within a store, so weighting leaves it unchanged
    assert table.loc[2, 'nwrmsle'] == pytest.approx(LN2)

    mixed = error_by_segment(eval_df, 'cluster').set_index('cluster')
    assert mixed.loc[13, 'nwrmsle'] == pytest.approx(mixed.loc[13, 'rmsle'])


def test_missing_segment_value_is_its_own_row(eval_df):
    df = eval_df.copy()
    df.loc[df['item_nbr'] == 300, 'family'] = np.nan

    table = error_by_segment(df, 'family')

    assert table['family'].isna().sum() == 1
    assert table['n_obs'].sum() == len(df)
    assert 'Unknown' in list(segment_labels(table['family']))


def test_unknown_segment_column(eval_df):
    with pytest.raises(KeyError, match="region"):
        error_by_segment(eval_df, 'region')


def test_score_frame_drops_rows_without_actual(eval_df):
    df = eval_df.copy()
    df.loc[0, 'unit_sales'] = np.nan
    scored = score_frame(df)
    assert len(scored) == len(df) - 1
    assert {'sq_log_error', 'weight'} <= set(scored.columns)
    assert set(scored['weight']) <= {1.0, 1.25}


def test_error_breakdowns_skips_absent_columns(eval_df):
    results = error_breakdowns(eval_df.drop(columns=['cluster']))
    assert 'family' in results
    assert 'type_family' in results
    assert 'cluster' not in results


def test_error_matrix(eval_df):
    matrix = error_matrix(eval_df, 'family', 'type')
    assert matrix.shape == (3, 2)
    assert matrix.loc['DAIRY', 'D'] == pytest.approx(LN2)


def test_zero_vs_nonzero(eval_df):
    results = analyze_zero_vs_nonzero(eval_df)
    n_zero = (eval_df['unit_sales'] == 0).sum()
    if n_zero:
        assert results['zero_actual']['count'] == n_zero
    assert results['nonzero_actual']['count'] == len(eval_df) - n_zero


def test_worst_series(eval_df):
    worst = worst_series(eval_df, n=4)
    assert len(worst) == 4
    assert (worst['store_nbr'] != 1).all()
    assert 'family' in worst.columns


def test_segment_labels():
    labels = segment_labels(pd.Series([13.0, np.nan, 'A', pd.Timestamp('2017-08-01')]))
    assert list(labels) == ['13', 'Unknown', 'A', '2017-08-01']


def test_plots_are_written(eval_df, tmp_path):
    breakdowns = error_breakdowns(eval_df)
    path = plot_geography_and_store_errors(breakdowns, tmp_path)
    assert path.exists()

    path = plot_error_heatmap(error_matrix(eval_df), tmp_path)
    assert path.exists()


def test_partially_scored_frame_is_rescored(eval_df):
    # sq_log_error without weight, e.g. a table saved from an earlier run
    partial = score_frame(eval_df).drop(columns='weight')

    expected = error_by_segment(eval_df, 'family').set_index('family')
    table = error_by_segment(partial, 'family').set_index('family')
    assert table.loc['DAIRY', 'nwrmsle'] == pytest.approx(expected.loc['DAIRY', 'nwrmsle'])

    assert overall_metrics(partial)['nwrmsle'] == pytest.approx(overall_metrics(eval_df)['nwrmsle'])
    assert analyze_zero_vs_nonzero(partial)['nonzero_actual']['count'] > 0
