"""
Report generation for the Favorita forecast error analysis.

Runs the segment breakdowns and the importance summary over an evaluation
frame, writes the tables as CSV and renders a markdown report.

Run: python -m src.report --synthetic
"""

import argparse
from pathlib import Path
from typing import Dict, List, Optional

import pandas as pd
import numpy as np

from .data_prep import load_report_inputs, generate_synthetic_data
from .segments import (
    DIMENSION_GROUPS,
    score_frame,
    overall_metrics,
    error_breakdowns,
    error_matrix,
    analyze_zero_vs_nonzero,
    worst_series,
    segment_labels,
    plot_geography_and_store_errors,
    plot_family_errors,
    plot_error_heatmap,
    plot_error_over_time,
    plot_actual_vs_predicted,
)
from .importance import cluster_importance, summarize_by_feature_group, plot_feature_importance
from .utils import get_plots_dir, get_reports_dir, get_data_dir

REPORT_TOP_N = 10


def run_full_report(eval_df: pd.DataFrame,
                    importance_df: Optional[pd.DataFrame] = None,
                    save_plots: bool = True,
                    plots_dir: Optional[Path] = None) -> Dict:
    """
    Run the complete error analysis and return all results.
    """
    if plots_dir is None:
        plots_dir = get_plots_dir()

    print("=" * 70)
    print("FAVORITA FORECAST ERROR REPORT")
    print("=" * 70)

    results = {'plots': []}

    print("\n[1/6] Scoring predictions...")
    scored = score_frame(eval_df)
    results['overall'] = overall_metrics(scored)

    print("[2/6] Computing segment breakdowns...")
    results['breakdowns'] = error_breakdowns(scored)

    print("[3/6] Building family x store type error matrix...")
    if 'family' in scored.columns and 'type' in scored.columns:
        results['heatmap'] = error_matrix(scored, 'family', 'type')

    print("[4/6] Analyzing zero vs non-zero actuals and worst series...")
    results['zero_vs_nonzero'] = analyze_zero_vs_nonzero(scored)
    results['worst_series'] = worst_series(scored, n=20)

    print("[5/6] Summarizing feature importance...")
    if importance_df is not None:
        results['importance'] = cluster_importance(importance_df)
        results['importance_groups'] = summarize_by_feature_group(importance_df)
    else:
        print("  No feature importance table available, skipping")

    print("[6/6] Rendering charts...")
    if save_plots:
        breakdowns = results['breakdowns']
        results['plots'].append(plot_geography_and_store_errors(breakdowns, plots_dir))
        if 'family' in breakdowns:
            results['plots'].append(plot_family_errors(breakdowns['family'], plots_dir))
        if 'heatmap' in results:
            results['plots'].append(plot_error_heatmap(results['heatmap'], plots_dir))
        if 'date' in breakdowns:
            results['plots'].append(plot_error_over_time(breakdowns['date'], plots_dir))
        results['plots'].append(plot_actual_vs_predicted(scored, plots_dir=plots_dir))
        if 'importance' in results:
            results['plots'].append(plot_feature_importance(results['importance'], plots_dir=plots_dir))

    print("\n" + "=" * 70)
    print(f"REPORT COMPLETE! Overall RMSLE = {results['overall']['rmsle']:.4f}, "
          f"NWRMSLE = {results['overall']['nwrmsle']:.4f}")
    if save_plots:
        print(f"All plots saved to: {plots_dir}")
    print("=" * 70)

    return results


def save_report_tables(results: Dict, reports_dir: Optional[Path] = None) -> List[Path]:
    """Write every result table as CSV; returns the written paths."""
    if reports_dir is None:
        reports_dir = get_reports_dir()
    reports_dir = Path(reports_dir)
    reports_dir.mkdir(parents=True, exist_ok=True)

    written = []

    overall = pd.DataFrame([results['overall']])
    overall.to_csv(reports_dir / 'overall_metrics.csv', index=False)
    written.append(reports_dir / 'overall_metrics.csv')

    for name, table in results.get('breakdowns', {}).items():
        path = reports_dir / f'error_by_{name}.csv'
        table.to_csv(path, index=False)
        written.append(path)

    if 'heatmap' in results:
        path = reports_dir / 'error_matrix_family_type.csv'
        results['heatmap'].to_csv(path)
        written.append(path)

    for key, filename in [('worst_series', 'worst_series.csv'),
                          ('importance', 'feature_importance.csv'),
                          ('importance_groups', 'feature_importance_groups.csv')]:
        if key in results:
            path = reports_dir / filename
            results[key].to_csv(path, index=False)
            written.append(path)

    print(f"Saved {len(written)} tables to {reports_dir}")
    return written


def _fmt(value) -> str:
    if isinstance(value, (float, np.floating)):
        if np.isnan(value):
            return 'N/A'
        return f"{value:,.4f}" if abs(value) < 100 else f"{value:,.1f}"
    if isinstance(value, (int, np.integer)):
        return f"{value:,}"
    return str(value)


def _markdown_table(table: pd.DataFrame, columns: List[str], n: Optional[int] = None) -> str:
    """Render selected columns of a table as a markdown table."""
    data = table[columns].head(n) if n else table[columns]
    lines = [
        "| " + " | ".join(columns) + " |",
        "|" + "|".join("---" for _ in columns) + "|",
    ]
    for _, row in data.iterrows():
        lines.append("| " + " | ".join(_fmt(row[c]) for c in columns) + " |")
    return "\n".join(lines) + "\n"


def _segment_section(name: str, table: pd.DataFrame, dim_cols: List[str], top_n: int) -> str:
    display = table.copy()
    for col in dim_cols:
        display[col] = segment_labels(display[col])
    display['error_share'] = display['error_share'] * 100

    columns = dim_cols + ['n_obs', 'rmsle', 'nwrmsle', 'bias', 'error_share']
    shown = min(top_n, len(display))
    section = f"\n#### {name} (worst {shown} of {len(display)})\n\n"
    return section + _markdown_table(display, columns, top_n)


def generate_report_markdown(results: Dict, top_n: int = REPORT_TOP_N) -> str:
    """
    Generate a markdown report from run_full_report() results.
    """
    overall = results.get('overall', {})

    report = f"""# Favorita Forecast Error Report


## Overview

| Metric | Value |
|--------|-------|
| Validation Window | {overall.get('start_date', 'N/A')} to {overall.get('end_date', 'N/A')} |
| Scored Rows | {_fmt(overall.get('n_obs', 0))} |
| Stores | {_fmt(overall.get('n_stores', 0))} |
| Items | {_fmt(overall.get('n_items', 0))} |
| Zero Actuals | {overall.get('zero_pct', 0):.1f}% |
| RMSLE | {_fmt(overall.get('rmsle', np.nan))} |
| NWRMSLE (perishable x1.25) | {_fmt(overall.get('nwrmsle', np.nan))} |
| MAE | {_fmt(overall.get('mae', np.nan))} |
| Bias | {_fmt(overall.get('bias', np.nan))} |

## Error by Segment

`error_share` is the segment's percentage of the total squared log error.
Rows labelled `Unknown` come from keys missing in the store or item tables.
"""

    breakdowns = results.get('breakdowns', {})
    for group, dims in DIMENSION_GROUPS.items():
        present = [d for d in dims if d in breakdowns]
        if not present:
            continue
        report += f"\n### {group.title()}\n"
        for dim in present:
            report += _segment_section(dim, breakdowns[dim], [dim], top_n)

    if 'type_family' in breakdowns:
        report += "\n### Store Type x Family\n"
        report += _segment_section('type x family', breakdowns['type_family'], ['type', 'family'], top_n)

    zero = results.get('zero_vs_nonzero', {})
    if zero:
        report += "\n## Zero vs Non-Zero Actuals\n"
        if 'zero_actual' in zero:
            z = zero['zero_actual']
            report += f"""
- {z['count']:,} rows with zero actual sales; mean prediction {z['mean_pred']:.2f}
- {z['over_predict_pct']:.1f}% of them predicted above 0.5 units
- They carry {z['error_share'] * 100:.1f}% of the total squared log error
"""
        if 'nonzero_actual' in zero:
            nz = zero['nonzero_actual']
            report += f"- Non-zero actuals: RMSLE {nz['rmsle']:.4f} over {nz['count']:,} rows\n"

    if 'worst_series' in results and len(results['worst_series']):
        worst = results['worst_series']
        cols = [c for c in ('store_nbr', 'item_nbr', 'family') if c in worst.columns]
        display = worst.copy()
        for col in cols:
            display[col] = segment_labels(display[col])
        report += "\n## Worst Store-Item Series\n\n"
        report += _markdown_table(display, cols + ['n_obs', 'rmsle', 'mean_actual', 'mean_pred'], top_n)

    if 'importance' in results:
        imp = results['importance']
        n_clusters = int(imp['cluster'].max())
        report += "\n## Feature Importance\n\n"
        report += f"{len(imp)} features grouped into {n_clusters} importance clusters by gain.\n\n"
        cols = ['feature', 'gain_pct', 'cluster'] + [c for c in ('cover', 'frequency') if c in imp.columns]
        report += _markdown_table(imp, cols, 2 * top_n)

        for cluster_id, members in imp.groupby('cluster'):
            report += (f"- Cluster {cluster_id}: {len(members)} features, "
                       f"{members['gain_pct'].sum():.1f}% of gain\n")

    if 'importance_groups' in results:
        report += "\n### Gain by Feature Group\n\n"
        report += _markdown_table(results['importance_groups'],
                                  ['group', 'n_features', 'gain_pct', 'top_feature'], top_n)

    plots = results.get('plots', [])
    if plots:
        report += "\n## Plots Generated\n\n"
        for path in plots:
            report += f"- `{Path(path).name}`\n"

    report += """
---
*Generated by the Favorita forecast error report*
"""

    return report


def main(argv: Optional[List[str]] = None) -> Dict:
    parser = argparse.ArgumentParser(description="Favorita forecast error report")
    parser.add_argument('--data-dir', type=Path, default=None,
                        help="Directory with stores.csv, items.csv, validation and predictions")
    parser.add_argument('--snapshot', type=Path, default=None,
                        help="Workspace snapshot (joblib) holding predictions and importance")
    parser.add_argument('--output-dir', type=Path, default=None,
                        help="Where report tables and markdown are written")
    parser.add_argument('--plots-dir', type=Path, default=None)
    parser.add_argument('--no-plots', action='store_true')
    parser.add_argument('--synthetic', action='store_true',
                        help="Generate a synthetic dataset into --data-dir first")
    args = parser.parse_args(argv)

    data_dir = args.data_dir or get_data_dir("raw")
    if args.synthetic:
        generate_synthetic_data(data_dir=data_dir)

    eval_df, importance_df = load_report_inputs(data_dir, args.snapshot)
    results = run_full_report(eval_df, importance_df,
                              save_plots=not args.no_plots,
                              plots_dir=args.plots_dir)

    reports_dir = args.output_dir or get_reports_dir()
    save_report_tables(results, reports_dir)

    report_path = Path(reports_dir) / 'forecast_error_report.md'
    report_path.write_text(generate_report_markdown(results))
    print(f"Report written to {report_path}")

    return results


if __name__ == "__main__":
    main()
