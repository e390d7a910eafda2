"""
Shared fixtures for the report test suite.
"""

import matplotlib
matplotlib.use('Agg')

import numpy as np
import pandas as pd
import pytest


@pytest.fixture
def stores():
    return pd.DataFrame({
        'store_nbr': [1, 2, 3],
        'city': ['Quito', 'Quito', 'Guayaquil'],
        'state': ['Pichincha', 'Pichincha', 'Guayas'],
        'type': ['A', 'D', 'A'],
        'cluster': [13, 8, 13]
    })


@pytest.fixture
def items():
    return pd.DataFrame({
        'item_nbr': [100, 200, 300],
        'family': ['GROCERY I', 'DAIRY', 'CLEANING'],
        'class': [1010, 2712, 3008],
        'perishable': [0, 1, 0]
    })


@pytest.fixture
def validation():
    dates = pd.to_datetime(['2017-08-01', '2017-08-02'])
    rows = []
    for date in dates:
        for store in (1, 2, 3):
            for item in (100, 200, 300):
                rows.append((date, store, item, float(store * item % 7), store == 2))
    return pd.DataFrame(rows, columns=['date', 'store_nbr', 'item_nbr', 'unit_sales', 'onpromotion'])


@pytest.fixture
def predictions(validation):
    preds = validation[['date', 'store_nbr', 'item_nbr']].copy()
    # Exact for store 1, off by a constant factor elsewhere
    factor = np.where(validation['store_nbr'] == 1, 1.0, 2.0)
    preds['pred'] = validation['unit_sales'].values * factor + (factor - 1)
    return preds


@pytest.fixture
def eval_df(predictions, validation, stores, items):
    from src.data_prep import build_evaluation_frame
    return build_evaluation_frame(predictions, validation, stores, items)
