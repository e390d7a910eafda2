"""
End-to-end tests for report generation.
"""

import pandas as pd
import pytest

from src.data_prep import build_evaluation_frame, generate_synthetic_data
from src.report import (
    generate_report_markdown,
    main,
    run_full_report,
    save_report_tables,
)


@pytest.fixture
def synthetic():
    data = generate_synthetic_data(n_days=3, n_stores=4, n_items=12, save=False)
    eval_df = build_evaluation_frame(data['predictions'], data['validation'],
                                     data['stores'], data['items'])
    return eval_df, data['feature_importance']


def test_run_full_report(synthetic, tmp_path):
    eval_df, importance = synthetic
    results = run_full_report(eval_df, importance, save_plots=True, plots_dir=tmp_path)

    assert results['overall']['n_obs'] == len(eval_df)
    assert {'state', 'city', 'type', 'cluster', 'family', 'perishable', 'date'} <= set(results['breakdowns'])
    assert results['importance']['cluster'].min() == 1
    assert len(results['plots']) == 6
    assert all(p.exists() for p in results['plots'])


def test_report_without_importance(synthetic):
    eval_df, _ = synthetic
    results = run_full_report(eval_df, None, save_plots=False)
    assert 'importance' not in results

    report = generate_report_markdown(results)
    assert '## Feature Importance' not in report
    assert '## Error by Segment' in report


def test_save_tables_and_markdown(synthetic, tmp_path):
    eval_df, importance = synthetic
    results = run_full_report(eval_df, importance, save_plots=False)

    written = save_report_tables(results, tmp_path)
    names = {p.name for p in written}
    assert {'overall_metrics.csv', 'error_by_family.csv', 'error_by_type.csv',
            'feature_importance.csv', 'error_matrix_family_type.csv'} <= names

    family = pd.read_csv(tmp_path / 'error_by_family.csv')
    assert family['n_obs'].sum() == len(eval_df)

    report = generate_report_markdown(results, top_n=5)
    assert report.startswith('# Favorita Forecast Error Report')
    assert '### Geography' in report
    assert '- Cluster 1:' in report
    assert '### Gain by Feature Group' in report


def test_unknown_store_appears_in_report(synthetic):
    eval_df, importance = synthetic
    df = eval_df.copy()
    df.loc[df['store_nbr'] == 1, ['city', 'state', 'type', 'cluster']] = None

    results = run_full_report(df, importance, save_plots=False)
    report = generate_report_markdown(results, top_n=50)
    assert '| Unknown |' in report


def test_cli_with_synthetic_data(tmp_path):
    results = main([
        '--synthetic',
        '--data-dir', str(tmp_path / 'data'),
        '--output-dir', str(tmp_path / 'reports'),
        '--no-plots',
    ])

    assert results['overall']['n_obs'] > 0
    assert (tmp_path / 'reports' / 'forecast_error_report.md').exists()
    assert (tmp_path / 'reports' / 'error_by_state.csv').exists()
