"""
Data preparation module for the Favorita forecast error report.
Handles loading the reference tables, the validation window and the model
outputs, and joins them into one evaluation frame.
"""

import pandas as pd
import numpy as np
from pathlib import Path
from typing import Dict, Optional, Tuple, Union
import joblib
from tqdm import tqdm

from .utils import get_data_dir, print_memory_usage

FORECAST_KEY = ['date', 'store_nbr', 'item_nbr']

STORE_COLUMNS = ['store_nbr', 'city', 'state', 'type', 'cluster']
ITEM_COLUMNS = ['item_nbr', 'family', 'class', 'perishable']

SNAPSHOT_FILENAME = "workspace.joblib"

PathLike = Union[str, Path]


def _check_columns(df: pd.DataFrame, required, name: str):
    missing = [c for c in required if c not in df.columns]
    if missing:
        raise ValueError(f"{name} is missing required columns: {', '.join(missing)}")


def _read_table(filepath: Path) -> pd.DataFrame:
    if filepath.suffix == '.parquet':
        return pd.read_parquet(filepath)
    return pd.read_csv(filepath)


def load_stores_data(data_dir: Optional[Path] = None) -> pd.DataFrame:
    """Load stores.csv with store metadata."""
    if data_dir is None:
        data_dir = get_data_dir("raw")

    filepath = Path(data_dir) / "stores.csv"
    if not filepath.exists():
        raise FileNotFoundError(
            f"Store metadata not found at {filepath}. "
            "Run download_favorita_reference() or generate_synthetic_data() first."
        )

    df = pd.read_csv(filepath)
    _check_columns(df, STORE_COLUMNS, "stores.csv")

    df['store_nbr'] = df['store_nbr'].astype('int16')
    df['cluster'] = df['cluster'].astype('int16')

    print_memory_usage(df, "stores.csv")
    return df


def load_items_data(data_dir: Optional[Path] = None) -> pd.DataFrame:
    """Load items.csv with item metadata."""
    if data_dir is None:
        data_dir = get_data_dir("raw")

    filepath = Path(data_dir) / "items.csv"
    if not filepath.exists():
        raise FileNotFoundError(
            f"Item metadata not found at {filepath}. "
            "Run download_favorita_reference() or generate_synthetic_data() first."
        )

    df = pd.read_csv(filepath)
    _check_columns(df, ITEM_COLUMNS, "items.csv")

    df['item_nbr'] = df['item_nbr'].astype('int32')
    df['class'] = df['class'].astype('int16')
    df['perishable'] = df['perishable'].astype('int8')

    print_memory_usage(df, "items.csv")
    return df


def load_validation_data(path: PathLike) -> pd.DataFrame:
    """
    Load actual unit sales for the validation window.

    Accepts CSV or parquet with columns:
    - date, store_nbr, item_nbr, unit_sales, [onpromotion]
    """
    filepath = Path(path)
    if not filepath.exists():
        raise FileNotFoundError(f"Validation data not found at {filepath}")

    print(f"Loading {filepath}...")
    df = _read_table(filepath)
    return _prepare_validation(df, filepath.name)


def _prepare_validation(df: pd.DataFrame, name: str = "validation") -> pd.DataFrame:
    _check_columns(df, FORECAST_KEY + ['unit_sales'], name)

    df = df.copy()
    df['date'] = pd.to_datetime(df['date'])
    df['unit_sales'] = df['unit_sales'].astype('float32')
    if 'onpromotion' in df.columns:
        # Favorita leaves promotion unknown for part of the history
        df['onpromotion'] = df['onpromotion'].astype('boolean')

    print_memory_usage(df, "Validation")
    return df


def load_predictions(path: PathLike) -> pd.DataFrame:
    """
    Load model predictions from CSV or parquet.

    Accepts the prediction column as `pred` or `unit_sales_pred`.
    """
    filepath = Path(path)
    if not filepath.exists():
        raise FileNotFoundError(f"Predictions not found at {filepath}")

    print(f"Loading {filepath}...")
    df = _read_table(filepath)
    return _prepare_predictions(df, filepath.name)


def _prepare_predictions(df: pd.DataFrame, name: str = "predictions") -> pd.DataFrame:
    df = df.rename(columns={'unit_sales_pred': 'pred'})
    _check_columns(df, FORECAST_KEY + ['pred'], name)

    df = df.copy()
    df['date'] = pd.to_datetime(df['date'])
    df['pred'] = df['pred'].astype('float32')

    print_memory_usage(df, "Predictions")
    return df


def save_workspace_snapshot(objects: Dict, path: PathLike) -> Path:
    """
    Save a workspace snapshot (dict of named objects) with joblib.

    Expected keys: `predictions` and optionally `importance`, `validation`,
    `feature_names`, `model`.
    """
    if 'predictions' not in objects:
        raise ValueError("Snapshot must contain a 'predictions' table")

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    joblib.dump(objects, path)
    print(f"Saved workspace snapshot to {path} ({', '.join(sorted(objects))})")
    return path


def load_workspace_snapshot(path: PathLike) -> Dict:
    """Load a workspace snapshot saved by save_workspace_snapshot()."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Workspace snapshot not found at {path}")

    print(f"Loading {path}...")
    objects = joblib.load(path)

    if not isinstance(objects, dict):
        raise ValueError(f"Snapshot {path} holds a {type(objects).__name__}, expected a dict")
    if not isinstance(objects.get('predictions'), pd.DataFrame):
        raise ValueError(f"Snapshot {path} has no 'predictions' DataFrame")

    print(f"Snapshot objects: {', '.join(sorted(objects))}")
    return objects


def _drop_joined_columns(df: pd.DataFrame, joined: list, keys: list, source: str) -> pd.DataFrame:
    # The joined table is the source of truth for its columns
    overlap = [c for c in joined if c not in keys and c in df.columns]
    if not overlap:
        return df
    print(f"  Replacing {', '.join(overlap)} with values from {source}")
    return df.drop(columns=overlap)


def build_evaluation_frame(predictions: pd.DataFrame,
                           validation: pd.DataFrame,
                           stores: pd.DataFrame,
                           items: pd.DataFrame) -> pd.DataFrame:
    """
    Join predictions with actuals and store/item metadata.

    All joins are left joins on the prediction rows. A key without a match
    leaves NaN in the joined columns; those rows stay in the frame so that
    they show up as their own segment downstream.

    Columns the predictions already carry (e.g. `onpromotion` from
    test.csv) are replaced by the validation and reference values.
    Duplicate forecast keys on either side raise ValueError.
    """
    dupes = predictions.duplicated(FORECAST_KEY).sum()
    if dupes:
        raise ValueError(f"Predictions contain {dupes:,} duplicate (date, store_nbr, item_nbr) rows")

    dupes = validation.duplicated(FORECAST_KEY).sum()
    if dupes:
        raise ValueError(f"Validation contains {dupes:,} duplicate (date, store_nbr, item_nbr) rows")

    print("\nMerging predictions with validation actuals...")
    val_cols = [c for c in validation.columns if c in FORECAST_KEY + ['unit_sales', 'onpromotion']]
    eval_df = _drop_joined_columns(predictions, val_cols, FORECAST_KEY, "validation")
    eval_df = eval_df.merge(validation[val_cols], on=FORECAST_KEY, how='left')
    n_missing = eval_df['unit_sales'].isna().sum()
    if n_missing:
        print(f"  {n_missing:,} predictions have no matching actual")

    print("Merging with store metadata...")
    eval_df = _drop_joined_columns(eval_df, STORE_COLUMNS, ['store_nbr'], "stores")
    eval_df = eval_df.merge(stores[STORE_COLUMNS], on='store_nbr', how='left')
    n_missing = eval_df['type'].isna().sum()
    if n_missing:
        print(f"  {n_missing:,} rows reference unknown stores")

    print("Merging with item metadata...")
    eval_df = _drop_joined_columns(eval_df, ITEM_COLUMNS, ['item_nbr'], "items")
    eval_df = eval_df.merge(items[ITEM_COLUMNS], on='item_nbr', how='left')
    n_missing = eval_df['family'].isna().sum()
    if n_missing:
        print(f"  {n_missing:,} rows reference unknown items")

    eval_df['dayofweek'] = eval_df['date'].dt.day_name()

    eval_df = eval_df.sort_values(FORECAST_KEY).reset_index(drop=True)
    print_memory_usage(eval_df, "Evaluation frame")

    return eval_df


def load_importance_table(path: PathLike) -> pd.DataFrame:
    """Load a feature importance table exported from the booster."""
    filepath = Path(path)
    if not filepath.exists():
        raise FileNotFoundError(f"Feature importance table not found at {filepath}")
    return _read_table(filepath)


def load_report_inputs(data_dir: Optional[Path] = None,
                       snapshot_path: Optional[PathLike] = None
                       ) -> Tuple[pd.DataFrame, Optional[pd.DataFrame]]:
    """
    Resolve all report inputs and return (eval_df, importance_df).

    Predictions and importance come from the snapshot when one exists,
    otherwise from predictions.csv / feature_importance.csv. Validation
    actuals come from the snapshot if it carries them, else validation.csv.
    """
    if data_dir is None:
        data_dir = get_data_dir("raw")
    data_dir = Path(data_dir)

    if snapshot_path is None and (data_dir / SNAPSHOT_FILENAME).exists():
        snapshot_path = data_dir / SNAPSHOT_FILENAME

    print("=" * 70)
    print("Loading Report Inputs")
    print("=" * 70)

    snapshot = load_workspace_snapshot(snapshot_path) if snapshot_path is not None else {}

    if 'predictions' in snapshot:
        predictions = _prepare_predictions(snapshot['predictions'], "snapshot predictions")
    elif (data_dir / "predictions.csv").exists():
        predictions = load_predictions(data_dir / "predictions.csv")
    elif (data_dir / "predictions.parquet").exists():
        predictions = load_predictions(data_dir / "predictions.parquet")
    else:
        raise FileNotFoundError(
            f"No workspace snapshot or predictions file found in {data_dir}. "
            "Run generate_synthetic_data() for a demo dataset."
        )

    if isinstance(snapshot.get('validation'), pd.DataFrame):
        validation = _prepare_validation(snapshot['validation'], "snapshot validation")
    elif (data_dir / "validation.parquet").exists():
        validation = load_validation_data(data_dir / "validation.parquet")
    else:
        validation = load_validation_data(data_dir / "validation.csv")

    stores = load_stores_data(data_dir)
    items = load_items_data(data_dir)

    importance = snapshot.get('importance')
    if importance is None and (data_dir / "feature_importance.csv").exists():
        importance = load_importance_table(data_dir / "feature_importance.csv")

    eval_df = build_evaluation_frame(predictions, validation, stores, items)
    return eval_df, importance


def generate_synthetic_data(n_days: int = 16,
                            n_stores: int = 10,
                            n_items: int = 60,
                            data_dir: Optional[Path] = None,
                            seed: int = 42,
                            save: bool = True) -> dict:
    """
    Generate synthetic report inputs matching the Favorita schema.

    Useful when the real competition outputs are not available. The
    prediction noise depends on store type and item family so the segment
    breakdowns have something to show.
    """
    rng = np.random.default_rng(seed)

    if data_dir is None:
        data_dir = get_data_dir("raw")
    data_dir = Path(data_dir)

    print("Generating synthetic Favorita-like report inputs...")

    dates = pd.date_range(start='2017-07-31', periods=n_days, freq='D')

    cities = ['Quito', 'Guayaquil', 'Cuenca', 'Machala', 'Santo Domingo']
    states = {'Quito': 'Pichincha', 'Guayaquil': 'Guayas', 'Cuenca': 'Azuay',
              'Machala': 'El Oro', 'Santo Domingo': 'Santo Domingo de los Tsachilas'}
    store_cities = rng.choice(cities, n_stores)

    stores_df = pd.DataFrame({
        'store_nbr': range(1, n_stores + 1),
        'city': store_cities,
        'state': [states[c] for c in store_cities],
        'type': rng.choice(['A', 'B', 'C', 'D', 'E'], n_stores),
        'cluster': rng.integers(1, 18, n_stores)
    })

    families = ['GROCERY I', 'BEVERAGES', 'PRODUCE', 'CLEANING', 'DAIRY',
                'BREAD/BAKERY', 'POULTRY', 'MEATS', 'PERSONAL CARE', 'AUTOMOTIVE']
    perishable_families = {'PRODUCE', 'DAIRY', 'BREAD/BAKERY', 'POULTRY', 'MEATS'}
    item_families = rng.choice(families, n_items)

    items_df = pd.DataFrame({
        'item_nbr': 96995 + np.arange(n_items) * 1013,
        'family': item_families,
        'class': rng.integers(1000, 3000, n_items),
        'perishable': [int(f in perishable_families) for f in item_families]
    })

    type_noise = {'A': 0.3, 'B': 0.4, 'C': 0.5, 'D': 0.45, 'E': 0.7}
    family_scale = {'GROCERY I': 12.0, 'BEVERAGES': 10.0, 'PRODUCE': 8.0, 'CLEANING': 5.0}
    store_type = dict(zip(stores_df['store_nbr'], stores_df['type']))
    item_family = dict(zip(items_df['item_nbr'], items_df['family']))

    val_rows = []
    pred_rows = []
    for date in tqdm(dates, desc="Generating validation window"):
        for store in stores_df['store_nbr']:
            for item in items_df['item_nbr']:
                family = item_family[item]
                base = rng.exponential(family_scale.get(family, 3.0))
                onpromotion = bool(rng.random() < 0.1)
                actual = base * (1.4 if onpromotion else 1.0)
                if rng.random() < 0.3:
                    actual = 0.0
                # Returns show up as negative unit sales in Favorita
                elif rng.random() < 0.002:
                    actual = -actual

                noise = rng.normal(0, type_noise[store_type[store]])
                pred = max(0.0, np.expm1(np.log1p(max(base, 0.0)) + noise))

                val_rows.append((date, store, item, round(actual, 3), onpromotion))
                pred_rows.append((date, store, item, pred))

    validation_df = pd.DataFrame(val_rows, columns=FORECAST_KEY + ['unit_sales', 'onpromotion'])
    predictions_df = pd.DataFrame(pred_rows, columns=FORECAST_KEY + ['pred'])

    features = (
        [f'mean_{w}_2017' for w in (3, 7, 14, 30, 60, 140)]
        + [f'promo_{w}_2017' for w in (14, 60, 140)]
        + [f'day_{d}_2017' for d in range(1, 8)]
        + [f'mean_4_dow{d}_2017' for d in range(7)]
    )
    gain = np.sort(rng.gamma(0.6, 1.0, len(features)))[::-1]
    importance_df = pd.DataFrame({
        'Feature': features,
        'Gain': gain / gain.sum(),
        'Cover': rng.dirichlet(np.ones(len(features))),
        'Frequency': rng.dirichlet(np.ones(len(features)))
    })

    datasets = {
        'stores': stores_df,
        'items': items_df,
        'validation': validation_df,
        'predictions': predictions_df,
        'feature_importance': importance_df
    }

    if save:
        data_dir.mkdir(parents=True, exist_ok=True)
        for name, df in datasets.items():
            filepath = data_dir / f"{name}.csv"
            df.to_csv(filepath, index=False)
            print(f"Saved {filepath} ({len(df):,} rows)")

        save_workspace_snapshot({
            'predictions': predictions_df,
            'importance': importance_df,
            'feature_names': features
        }, data_dir / SNAPSHOT_FILENAME)

    return datasets


if __name__ == "__main__":
    import sys

    if len(sys.argv) > 1 and sys.argv[1] == '--synthetic':
        print("Generating synthetic data for testing...")
        generate_synthetic_data()
    else:
        try:
            eval_df, importance_df = load_report_inputs()
            print("\nSample of evaluation frame:")
            print(eval_df.head())
        except FileNotFoundError as e:
            print(f"Error: {e}")
            print("\nTo generate synthetic data for testing, run:")
            print("  python -m src.data_prep --synthetic")
