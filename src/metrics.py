"""
Error metrics for the Favorita forecast error report.

The competition scores Normalized Weighted RMSLE, with perishable items
weighted 1.25 and everything else 1.0. Plain RMSLE is the same metric with
unit weights.
"""

import numpy as np
from typing import Dict, Optional

PERISHABLE_WEIGHT = 1.25


def _as_arrays(y_true, y_pred):
    y_true = np.asarray(y_true, dtype=float).flatten()
    y_pred = np.asarray(y_pred, dtype=float).flatten()
    if y_true.shape != y_pred.shape:
        raise ValueError(f"Length mismatch: {len(y_true)} actuals vs {len(y_pred)} predictions")
    return y_true, y_pred


def squared_log_error(y_true: np.ndarray, y_pred: np.ndarray) -> np.ndarray:
    """
    Per-row squared log error.

    Both sides are clipped to 0 first: unit sales go negative on returns and
    log1p is undefined below -1.
    """
    y_true, y_pred = _as_arrays(y_true, y_pred)
    log_diff = np.log1p(np.maximum(y_pred, 0)) - np.log1p(np.maximum(y_true, 0))
    return log_diff ** 2


def rmsle(y_true: np.ndarray, y_pred: np.ndarray) -> float:
    """
    Root Mean Squared Logarithmic Error.

    RMSLE = sqrt(mean((log1p(pred) - log1p(actual))^2))
    """
    sle = squared_log_error(y_true, y_pred)
    if len(sle) == 0:
        return np.nan
    return float(np.sqrt(np.mean(sle)))


def perishable_weights(perishable) -> np.ndarray:
    """Map perishable flags to competition weights. Unknown items get 1.0."""
    perishable = np.asarray(perishable, dtype=float).flatten()
    return np.where(perishable == 1, PERISHABLE_WEIGHT, 1.0)


def nwrmsle(y_true: np.ndarray,
            y_pred: np.ndarray,
            weights: Optional[np.ndarray] = None) -> float:
    """Normalized Weighted RMSLE (the competition metric)."""
    sle = squared_log_error(y_true, y_pred)
    if len(sle) == 0:
        return np.nan
    if weights is None:
        weights = np.ones_like(sle)
    weights = np.asarray(weights, dtype=float).flatten()
    return float(np.sqrt(np.sum(weights * sle) / np.sum(weights)))


def mae(y_true: np.ndarray, y_pred: np.ndarray) -> float:
    """Mean Absolute Error."""
    y_true, y_pred = _as_arrays(y_true, y_pred)
    return float(np.mean(np.abs(y_pred - y_true))) if len(y_true) else np.nan


def rmse(y_true: np.ndarray, y_pred: np.ndarray) -> float:
    """Root Mean Squared Error."""
    y_true, y_pred = _as_arrays(y_true, y_pred)
    return float(np.sqrt(np.mean((y_pred - y_true) ** 2))) if len(y_true) else np.nan


def bias(y_true: np.ndarray, y_pred: np.ndarray) -> float:
    """Mean bias (mean(pred - actual)). Positive = over-predicting."""
    y_true, y_pred = _as_arrays(y_true, y_pred)
    return float(np.mean(y_pred - y_true)) if len(y_true) else np.nan


def compute_all_metrics(y_true: np.ndarray,
                        y_pred: np.ndarray,
                        weights: Optional[np.ndarray] = None) -> Dict[str, float]:
    """Compute all standard metrics."""
    return {
        'rmsle': rmsle(y_true, y_pred),
        'nwrmsle': nwrmsle(y_true, y_pred, weights),
        'mae': mae(y_true, y_pred),
        'rmse': rmse(y_true, y_pred),
        'bias': bias(y_true, y_pred)
    }
