"""
Segment error analysis for the Favorita forecast error report.

Breaks RMSLE down by geography (state, city), store (type, cluster),
item (family, class, perishable), time and promotion, and renders the
corresponding charts.
"""

import pandas as pd
import numpy as np
import matplotlib.pyplot as plt
import seaborn as sns
from pathlib import Path
from typing import Dict, List, Optional, Union
import warnings

from .metrics import squared_log_error, perishable_weights, compute_all_metrics, mae
from .utils import get_plots_dir

warnings.filterwarnings('ignore')

plt.style.use('seaborn-v0_8-whitegrid')
sns.set_palette("husl")

ACTUAL_COL = 'unit_sales'
PRED_COL = 'pred'
UNKNOWN_LABEL = 'Unknown'

DIMENSION_GROUPS = {
    'geography': ['state', 'city'],
    'store': ['type', 'cluster', 'store_nbr'],
    'item': ['family', 'class', 'perishable'],
    'time': ['date', 'dayofweek'],
    'promotion': ['onpromotion'],
}

# Single-column breakdowns plus the one cross breakdown used for the heatmap
DEFAULT_DIMENSIONS = {
    dim: [dim] for group in DIMENSION_GROUPS.values() for dim in group
}
DEFAULT_DIMENSIONS['type_family'] = ['type', 'family']

SEGMENT_COLUMNS = ['n_obs', 'rmsle', 'nwrmsle', 'mae', 'bias',
                   'mean_actual', 'mean_pred', 'zero_pct', 'error_share']

# Columns added by score_frame; a frame carrying both is used as is
SCORE_COLUMNS = {'sq_log_error', 'weight'}


def score_frame(df: pd.DataFrame,
                actual_col: str = ACTUAL_COL,
                pred_col: str = PRED_COL,
                verbose: bool = True) -> pd.DataFrame:
    """
    Keep rows that have both an actual and a prediction and add
    per-row `sq_log_error` and competition `weight` columns.
    """
    mask = df[actual_col].notna() & df[pred_col].notna()
    n_dropped = int((~mask).sum())
    if n_dropped and verbose:
        print(f"Scoring {mask.sum():,} rows ({n_dropped:,} without actual or prediction left out)")

    scored = df[mask].copy()
    scored['sq_log_error'] = squared_log_error(scored[actual_col].values, scored[pred_col].values)
    if 'perishable' in scored.columns:
        scored['weight'] = perishable_weights(scored['perishable'].values)
    else:
        scored['weight'] = 1.0

    return scored


def overall_metrics(df: pd.DataFrame,
                    actual_col: str = ACTUAL_COL,
                    pred_col: str = PRED_COL) -> Dict[str, float]:
    """Metrics over the whole scored frame."""
    scored = df if SCORE_COLUMNS <= set(df.columns) else score_frame(df, actual_col, pred_col)
    metrics = compute_all_metrics(scored[actual_col].values,
                                  scored[pred_col].values,
                                  scored['weight'].values)
    metrics['n_obs'] = len(scored)
    metrics['n_stores'] = scored['store_nbr'].nunique()
    metrics['n_items'] = scored['item_nbr'].nunique()
    metrics['start_date'] = scored['date'].min()
    metrics['end_date'] = scored['date'].max()
    metrics['zero_pct'] = float((scored[actual_col] == 0).mean() * 100) if len(scored) else np.nan
    return metrics


def error_by_segment(df: pd.DataFrame,
                     group_cols: Union[str, List[str]],
                     actual_col: str = ACTUAL_COL,
                     pred_col: str = PRED_COL,
                     ascending: bool = False) -> pd.DataFrame:
    """
    Compute prediction errors per segment.

    Returns one row per segment with n_obs, RMSLE, NWRMSLE, MAE, bias,
    mean actual/prediction, percentage of zero actuals and the segment's
    share of the total squared log error. Missing segment values (from
    unmatched join keys) are kept as their own row. Sorted worst-first.
    """
    if isinstance(group_cols, str):
        group_cols = [group_cols]

    missing = [c for c in group_cols if c not in df.columns]
    if missing:
        raise KeyError(f"Unknown segment column(s): {', '.join(missing)}")

    scored = df if SCORE_COLUMNS <= set(df.columns) else score_frame(df, actual_col, pred_col, verbose=False)

    work = scored[group_cols].copy()
    error = scored[pred_col] - scored[actual_col]
    work['sq_log_error'] = scored['sq_log_error']
    work['w_sq_log_error'] = scored['sq_log_error'] * scored['weight']
    work['weight'] = scored['weight']
    work['abs_error'] = error.abs()
    work['error'] = error
    work['actual'] = scored[actual_col]
    work['pred'] = scored[pred_col]
    work['is_zero'] = (scored[actual_col] == 0).astype(float)

    table = work.groupby(group_cols, dropna=False, observed=True, sort=False).agg(
        n_obs=('sq_log_error', 'size'),
        sle_sum=('sq_log_error', 'sum'),
        wsle_sum=('w_sq_log_error', 'sum'),
        weight_sum=('weight', 'sum'),
        mae=('abs_error', 'mean'),
        bias=('error', 'mean'),
        mean_actual=('actual', 'mean'),
        mean_pred=('pred', 'mean'),
        zero_pct=('is_zero', 'mean'),
    ).reset_index()

    table['rmsle'] = np.sqrt(table['sle_sum'] / table['n_obs'])
    table['nwrmsle'] = np.sqrt(table['wsle_sum'] / table['weight_sum'])
    table['zero_pct'] = table['zero_pct'] * 100

    total = work['sq_log_error'].sum()
    table['error_share'] = table['sle_sum'] / total if total > 0 else 0.0

    table = table[group_cols + SEGMENT_COLUMNS]
    return table.sort_values('rmsle', ascending=ascending, kind='mergesort').reset_index(drop=True)


def error_breakdowns(df: pd.DataFrame,
                     dimensions: Optional[Dict[str, List[str]]] = None,
                     actual_col: str = ACTUAL_COL,
                     pred_col: str = PRED_COL) -> Dict[str, pd.DataFrame]:
    """Run error_by_segment for every dimension whose columns are present."""
    if dimensions is None:
        dimensions = DEFAULT_DIMENSIONS

    scored = df if SCORE_COLUMNS <= set(df.columns) else score_frame(df, actual_col, pred_col)

    results = {}
    for name, cols in dimensions.items():
        if not all(c in scored.columns for c in cols):
            print(f"Skipping '{name}' breakdown: column(s) not in frame")
            continue
        results[name] = error_by_segment(scored, cols, actual_col, pred_col)

    return results


def error_matrix(df: pd.DataFrame,
                 row_col: str = 'family',
                 col_col: str = 'type',
                 value: str = 'rmsle') -> pd.DataFrame:
    """RMSLE pivot of two dimensions, e.g. item family x store type."""
    table = error_by_segment(df, [row_col, col_col])
    table[row_col] = segment_labels(table[row_col])
    table[col_col] = segment_labels(table[col_col])
    matrix = table.pivot(index=row_col, columns=col_col, values=value)
    return matrix.sort_index().sort_index(axis=1)


def analyze_zero_vs_nonzero(df: pd.DataFrame,
                            actual_col: str = ACTUAL_COL,
                            pred_col: str = PRED_COL) -> Dict:
    """
    Analyze errors on zero vs non-zero actual sales.
    """
    scored = df if SCORE_COLUMNS <= set(df.columns) else score_frame(df, actual_col, pred_col, verbose=False)
    results = {}

    zero_mask = scored[actual_col] == 0
    zero_df = scored[zero_mask]
    if len(zero_df) > 0:
        results['zero_actual'] = {
            'count': len(zero_df),
            'mean_pred': zero_df[pred_col].mean(),
            'mae': mae(zero_df[actual_col].values, zero_df[pred_col].values),
            'over_predict_pct': (zero_df[pred_col] > 0.5).mean() * 100,
            'error_share': zero_df['sq_log_error'].sum() / max(scored['sq_log_error'].sum(), 1e-12)
        }

    nonzero_df = scored[~zero_mask]
    if len(nonzero_df) > 0:
        metrics = compute_all_metrics(nonzero_df[actual_col].values,
                                      nonzero_df[pred_col].values,
                                      nonzero_df['weight'].values)
        metrics['count'] = len(nonzero_df)
        results['nonzero_actual'] = metrics

    return results


def worst_series(df: pd.DataFrame, n: int = 20, min_obs: int = 1) -> pd.DataFrame:
    """The n (store, item) series with the highest RMSLE."""
    cols = ['store_nbr', 'item_nbr'] + [c for c in ('family',) if c in df.columns]
    table = error_by_segment(df, cols)
    return table[table['n_obs'] >= min_obs].head(n).reset_index(drop=True)


# =============================================================================
# PLOTS
# =============================================================================

def segment_labels(values: pd.Series) -> pd.Series:
    """String labels for segment values; missing values become 'Unknown'."""
    def _label(v):
        if pd.isna(v):
            return UNKNOWN_LABEL
        if isinstance(v, pd.Timestamp):
            return v.strftime('%Y-%m-%d')
        if isinstance(v, (float, np.floating)) and float(v).is_integer():
            return str(int(v))
        return str(v)

    return values.map(_label).astype(str)


def plot_segment_errors(table: pd.DataFrame,
                        dim_col: str,
                        ax=None,
                        top_n: int = 20,
                        title: Optional[str] = None,
                        color: str = 'steelblue'):
    """Horizontal bar chart of RMSLE per segment (worst on top)."""
    if ax is None:
        _, ax = plt.subplots(figsize=(8, max(3, 0.35 * min(top_n, len(table)))))

    data = table.sort_values('rmsle', ascending=False).head(top_n).iloc[::-1]
    labels = segment_labels(data[dim_col])

    ax.barh(range(len(data)), data['rmsle'], color=color, edgecolor='black')
    ax.set_yticks(range(len(data)))
    ax.set_yticklabels(labels)
    ax.set_xlabel('RMSLE')
    ax.set_title(title or f'RMSLE by {dim_col}')

    for i, (score, n_obs) in enumerate(zip(data['rmsle'], data['n_obs'])):
        ax.text(score, i, f' {score:.3f} (n={n_obs:,})', va='center', fontsize=7)

    return ax


def plot_geography_and_store_errors(breakdowns: Dict[str, pd.DataFrame],
                                    plots_dir: Optional[Path] = None) -> Path:
    """2x2 grid: RMSLE by state, city, store type and cluster."""
    if plots_dir is None:
        plots_dir = get_plots_dir()
    plots_dir = Path(plots_dir)
    plots_dir.mkdir(parents=True, exist_ok=True)

    fig, axes = plt.subplots(2, 2, figsize=(16, 12))
    panels = [
        ('state', axes[0, 0], 'RMSLE by State', 'steelblue'),
        ('city', axes[0, 1], 'RMSLE by City (worst 15)', 'coral'),
        ('type', axes[1, 0], 'RMSLE by Store Type', 'seagreen'),
        ('cluster', axes[1, 1], 'RMSLE by Store Cluster', 'purple'),
    ]
    for dim, ax, title, color in panels:
        if dim in breakdowns:
            plot_segment_errors(breakdowns[dim], dim, ax=ax, top_n=15, title=title, color=color)
        else:
            ax.set_visible(False)

    plt.tight_layout()
    path = plots_dir / 'error_by_geography_store.png'
    plt.savefig(path, dpi=150, bbox_inches='tight')
    plt.close()

    print(f"Saved geography/store error plots to {plots_dir}")
    return path


def plot_family_errors(family_table: pd.DataFrame,
                       plots_dir: Optional[Path] = None) -> Path:
    """RMSLE and share of total error per item family."""
    if plots_dir is None:
        plots_dir = get_plots_dir()
    plots_dir = Path(plots_dir)
    plots_dir.mkdir(parents=True, exist_ok=True)

    n = len(family_table)
    fig, axes = plt.subplots(1, 2, figsize=(16, max(5, 0.35 * n)))

    plot_segment_errors(family_table, 'family', ax=axes[0], top_n=n, title='RMSLE by Item Family')

    data = family_table.sort_values('error_share', ascending=True)
    axes[1].barh(range(len(data)), data['error_share'] * 100, color='coral', edgecolor='black')
    axes[1].set_yticks(range(len(data)))
    axes[1].set_yticklabels(segment_labels(data['family']))
    axes[1].set_xlabel('Share of Total Squared Log Error (%)')
    axes[1].set_title('Error Contribution by Item Family')

    plt.tight_layout()
    path = plots_dir / 'error_by_family.png'
    plt.savefig(path, dpi=150, bbox_inches='tight')
    plt.close()

    print(f"Saved family error plots to {plots_dir}")
    return path


def plot_error_heatmap(matrix: pd.DataFrame,
                       plots_dir: Optional[Path] = None,
                       filename: str = 'error_heatmap_family_type.png') -> Path:
    """Heatmap of an error_matrix() result."""
    if plots_dir is None:
        plots_dir = get_plots_dir()
    plots_dir = Path(plots_dir)
    plots_dir.mkdir(parents=True, exist_ok=True)

    fig, ax = plt.subplots(figsize=(max(6, 1.2 * matrix.shape[1]), max(5, 0.4 * matrix.shape[0])))
    sns.heatmap(matrix, cmap='YlOrRd', annot=True, fmt='.2f', linewidths=0.5, ax=ax,
                cbar_kws={'label': 'RMSLE'})
    ax.set_title(f'RMSLE: {matrix.index.name} x {matrix.columns.name}')

    plt.tight_layout()
    path = plots_dir / filename
    plt.savefig(path, dpi=150, bbox_inches='tight')
    plt.close()

    print(f"Saved error heatmap to {path}")
    return path


def plot_error_over_time(date_table: pd.DataFrame,
                         plots_dir: Optional[Path] = None) -> Path:
    """RMSLE per day across the validation window."""
    if plots_dir is None:
        plots_dir = get_plots_dir()
    plots_dir = Path(plots_dir)
    plots_dir.mkdir(parents=True, exist_ok=True)

    data = date_table.dropna(subset=['date']).sort_values('date')

    fig, ax = plt.subplots(figsize=(14, 5))
    ax.plot(data['date'], data['rmsle'], marker='o', linewidth=1.5, color='steelblue', label='RMSLE')
    ax.plot(data['date'], data['nwrmsle'], marker='s', linewidth=1, linestyle='--',
            color='coral', label='NWRMSLE')
    ax.set_xlabel('Date')
    ax.set_ylabel('Error')
    ax.set_title('Daily Error Across the Validation Window')
    ax.legend()
    fig.autofmt_xdate()

    plt.tight_layout()
    path = plots_dir / 'error_over_time.png'
    plt.savefig(path, dpi=150, bbox_inches='tight')
    plt.close()

    print(f"Saved error over time plot to {plots_dir}")
    return path


def plot_actual_vs_predicted(df: pd.DataFrame,
                             actual_col: str = ACTUAL_COL,
                             pred_col: str = PRED_COL,
                             plots_dir: Optional[Path] = None) -> Path:
    """Hexbin of log1p(actual) vs log1p(prediction) plus the log error histogram."""
    if plots_dir is None:
        plots_dir = get_plots_dir()
    plots_dir = Path(plots_dir)
    plots_dir.mkdir(parents=True, exist_ok=True)

    scored = df.dropna(subset=[actual_col, pred_col])
    log_actual = np.log1p(scored[actual_col].clip(lower=0))
    log_pred = np.log1p(scored[pred_col].clip(lower=0))

    fig, axes = plt.subplots(1, 2, figsize=(14, 6))

    hb = axes[0].hexbin(log_actual, log_pred, gridsize=40, cmap='Blues', mincnt=1, bins='log')
    lim = max(log_actual.max(), log_pred.max(), 1)
    axes[0].plot([0, lim], [0, lim], 'r--', linewidth=1)
    axes[0].set_xlabel('log1p(Actual)')
    axes[0].set_ylabel('log1p(Predicted)')
    axes[0].set_title('Actual vs Predicted (log scale)')
    fig.colorbar(hb, ax=axes[0], label='log10(count)')

    axes[1].hist(log_pred - log_actual, bins=60, color='steelblue', edgecolor='black', alpha=0.7)
    axes[1].axvline(0, color='red', linestyle='--')
    axes[1].set_xlabel('log1p(Predicted) - log1p(Actual)')
    axes[1].set_ylabel('Count')
    axes[1].set_title('Log Error Distribution')

    plt.tight_layout()
    path = plots_dir / 'actual_vs_predicted.png'
    plt.savefig(path, dpi=150, bbox_inches='tight')
    plt.close()

    print(f"Saved actual vs predicted plot to {plots_dir}")
    return path
