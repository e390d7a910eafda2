"""
Feature importance summary for the Favorita forecast error report.

Works on the gain/cover/frequency table exported from the gradient
boosting model, or extracts one from fitted estimators. Features are
grouped into importance tiers with a 1-D k-means on gain.
"""

import re
import pandas as pd
import numpy as np
import matplotlib.pyplot as plt
import seaborn as sns
from sklearn.cluster import KMeans
from pathlib import Path
from typing import Any, List, Optional
import warnings

from .utils import get_plots_dir

warnings.filterwarnings('ignore')


def normalize_importance_table(df: pd.DataFrame) -> pd.DataFrame:
    """
    Bring an importance table to columns feature, gain, [cover, frequency],
    gain_pct, sorted by gain descending.

    Accepts xgboost-style capitalized headers and `importance` for gain.
    """
    if df is None or len(df) == 0:
        raise ValueError("Feature importance table is None or empty")

    table = df.rename(columns=str.lower).rename(columns={'importance': 'gain'})
    missing = [c for c in ('feature', 'gain') if c not in table.columns]
    if missing:
        raise ValueError(f"Feature importance table is missing columns: {', '.join(missing)}")

    value_cols = [c for c in ('gain', 'cover', 'frequency') if c in table.columns]
    table = table.groupby('feature', as_index=False, sort=False)[value_cols].sum()

    total = table['gain'].sum()
    table['gain_pct'] = table['gain'] / total * 100 if total > 0 else 0.0

    return table.sort_values('gain', ascending=False, kind='mergesort').reset_index(drop=True)


def get_feature_importance(model: Any, feature_names: List[str]) -> pd.DataFrame:
    """
    Extract feature importance from a fitted model.

    Uses feature_importances_ (sklearn, LightGBM and XGBoost sklearn APIs)
    or a booster's get_score(importance_type='gain').
    """
    if hasattr(model, 'feature_importances_'):
        importance = np.asarray(model.feature_importances_, dtype=float)
    elif hasattr(model, 'get_score'):
        scores = model.get_score(importance_type='gain')
        importance = np.array([scores.get(f, 0.0) for f in feature_names], dtype=float)
    else:
        raise TypeError(f"{type(model).__name__} exposes no feature importance")

    if len(importance) != len(feature_names):
        raise ValueError(
            f"Model reports {len(importance)} importances for {len(feature_names)} feature names"
        )

    return normalize_importance_table(pd.DataFrame({
        'feature': feature_names,
        'gain': importance
    }))


def aggregate_feature_importance(models: List[Any], feature_names: List[str]) -> pd.DataFrame:
    """
    Aggregate feature importance across multiple models (CV folds).
    """
    all_imp = []

    for i, model in enumerate(models):
        imp = get_feature_importance(model, feature_names)
        imp['fold'] = i + 1
        all_imp.append(imp)

    all_imp_df = pd.concat(all_imp, ignore_index=True)

    agg_imp = all_imp_df.groupby('feature').agg({
        'gain': ['mean', 'std']
    }).reset_index()
    agg_imp.columns = ['feature', 'gain', 'gain_std']
    agg_imp['gain_std'] = agg_imp['gain_std'].fillna(0.0)

    return normalize_importance_table(agg_imp[['feature', 'gain']]).merge(
        agg_imp[['feature', 'gain_std']], on='feature', how='left'
    )


def _choose_n_clusters(gains: np.ndarray,
                       max_clusters: int,
                       variance_explained: float,
                       random_state: int) -> int:
    total_ss = float(((gains - gains.mean()) ** 2).sum())
    if total_ss == 0 or max_clusters <= 1:
        return 1

    for k in range(2, max_clusters + 1):
        km = KMeans(n_clusters=k, n_init=10, random_state=random_state).fit(gains)
        if 1 - km.inertia_ / total_ss >= variance_explained:
            return k

    return max_clusters


def cluster_importance(df: pd.DataFrame,
                       n_clusters: Optional[int] = None,
                       max_clusters: int = 10,
                       variance_explained: float = 0.9,
                       random_state: int = 42) -> pd.DataFrame:
    """
    Group features into importance tiers with 1-D k-means on gain.

    Cluster 1 holds the most important features. With n_clusters=None the
    smallest k whose clustering explains `variance_explained` of the gain
    variance is used.
    """
    table = normalize_importance_table(df)
    gains = table['gain'].to_numpy(dtype=float).reshape(-1, 1)
    n_unique = len(np.unique(gains))

    if n_clusters is None:
        n_clusters = _choose_n_clusters(gains, min(max_clusters, n_unique),
                                        variance_explained, random_state)
    n_clusters = max(1, min(n_clusters, n_unique))

    if n_clusters == 1:
        labels = np.zeros(len(table), dtype=int)
    else:
        labels = KMeans(n_clusters=n_clusters, n_init=10,
                        random_state=random_state).fit(gains).labels_

    # Renumber so that cluster 1 has the highest mean gain
    order = (pd.Series(table['gain'].values, index=labels)
             .groupby(level=0).mean()
             .sort_values(ascending=False).index)
    mapping = {old: new for new, old in enumerate(order, start=1)}
    table['cluster'] = [mapping[label] for label in labels]

    return table


def feature_group(name: str) -> str:
    """
    Strip window lengths, day indices and year suffixes from a feature name.

    mean_14_2017 -> mean, mean_4_dow3_2017 -> mean_dow, day_1_2017 -> day
    """
    stripped = re.sub(r'\d+', '', str(name))
    stripped = re.sub(r'_+', '_', stripped).strip('_')
    return stripped or str(name)


def summarize_by_feature_group(df: pd.DataFrame) -> pd.DataFrame:
    """Total gain per feature group."""
    table = normalize_importance_table(df)
    table['group'] = table['feature'].map(feature_group)

    summary = table.groupby('group').agg(
        n_features=('feature', 'count'),
        gain=('gain', 'sum'),
        gain_pct=('gain_pct', 'sum'),
        top_feature=('feature', 'first')
    ).reset_index()

    return summary.sort_values('gain', ascending=False).reset_index(drop=True)


def top_n_range(n_features: int, floor: int = 5, default: int = 30) -> Optional[tuple]:
    """
    (min, max, value) for a "features shown" selector, or None when the
    table is too short to need one and every feature should be shown.
    """
    if n_features <= floor:
        return None
    return floor, n_features, min(default, n_features)


def plot_feature_importance(clustered: pd.DataFrame,
                            top_n: int = 30,
                            plots_dir: Optional[Path] = None) -> Path:
    """Horizontal bar chart of gain coloured by importance cluster."""
    if plots_dir is None:
        plots_dir = get_plots_dir()
    plots_dir = Path(plots_dir)
    plots_dir.mkdir(parents=True, exist_ok=True)

    data = clustered.head(top_n).iloc[::-1]
    n_clusters = int(clustered['cluster'].max())
    palette = sns.color_palette('viridis', n_clusters)
    colors = [palette[c - 1] for c in data['cluster']]

    fig, ax = plt.subplots(figsize=(10, max(4, 0.3 * len(data))))
    ax.barh(range(len(data)), data['gain_pct'], color=colors, edgecolor='black')
    ax.set_yticks(range(len(data)))
    ax.set_yticklabels(data['feature'])
    ax.set_xlabel('Gain (%)')
    ax.set_title(f'Top {len(data)} Features by Gain ({n_clusters} importance clusters)')

    handles = [plt.Rectangle((0, 0), 1, 1, color=palette[i]) for i in range(n_clusters)]
    ax.legend(handles, [f'Cluster {i + 1}' for i in range(n_clusters)], loc='lower right')

    plt.tight_layout()
    path = plots_dir / 'feature_importance.png'
    plt.savefig(path, dpi=150, bbox_inches='tight')
    plt.close()

    print(f"Saved feature importance plot to {plots_dir}")
    return path
