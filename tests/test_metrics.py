"""
Tests for the error metrics.
"""

import numpy as np
import pytest

from src.metrics import (
    rmsle,
    nwrmsle,
    mae,
    rmse,
    bias,
    perishable_weights,
    squared_log_error,
    compute_all_metrics,
    PERISHABLE_WEIGHT,
)


def test_rmsle_perfect_prediction():
    y = np.array([0.0, 1.0, 10.0, 250.0])
    assert rmsle(y, y) == 0.0


def test_rmsle_known_value():
    # log diffs are [1, 0] -> sqrt(mean([1, 0]))
    actual = np.array([0.0, np.e - 1])
    pred = np.array([np.e - 1, np.e - 1])
    assert rmsle(actual, pred) == pytest.approx(np.sqrt(0.5))


def test_rmsle_clips_negative_values():
    """Returns (negative unit sales) and negative predictions count as zero."""
    assert rmsle([-5.0, 3.0], [0.0, 3.0]) == 0.0
    assert rmsle([0.0], [-2.0]) == 0.0


def test_rmsle_empty_is_nan():
    assert np.isnan(rmsle([], []))


def test_length_mismatch_raises():
    with pytest.raises(ValueError, match="Length mismatch"):
        rmsle([1.0, 2.0], [1.0])


def test_squared_log_error_per_row():
    sle = squared_log_error([0.0, 1.0], [0.0, 3.0])
    np.testing.assert_allclose(sle, [0.0, np.log(2) ** 2])


def test_perishable_weights():
    weights = perishable_weights([1, 0, np.nan])
    np.testing.assert_allclose(weights, [PERISHABLE_WEIGHT, 1.0, 1.0])


def test_nwrmsle_weights_perishable_rows():
    actual = np.array([0.0, 5.0])
    pred = np.array([np.e - 1, 5.0])
    weights = np.array([1.25, 1.0])
    assert nwrmsle(actual, pred, weights) == pytest.approx(np.sqrt(1.25 / 2.25))


def test_nwrmsle_without_weights_equals_rmsle():
    actual = np.array([1.0, 4.0, 0.0])
    pred = np.array([2.0, 3.0, 1.0])
    assert nwrmsle(actual, pred) == pytest.approx(rmsle(actual, pred))


def test_bias_sign_and_simple_metrics():
    actual = np.array([1.0, 2.0, 3.0])
    pred = np.array([2.0, 3.0, 4.0])
    assert bias(actual, pred) == pytest.approx(1.0)
    assert mae(actual, pred) == pytest.approx(1.0)
    assert rmse(actual, pred) == pytest.approx(1.0)


def test_compute_all_metrics_keys():
    metrics = compute_all_metrics([1.0, 2.0], [1.0, 2.0])
    assert set(metrics) == {'rmsle', 'nwrmsle', 'mae', 'rmse', 'bias'}
    assert metrics['rmsle'] == 0.0
