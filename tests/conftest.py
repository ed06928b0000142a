"""Shared fixtures for the MetaPool test suite."""

import warnings

import matplotlib
matplotlib.use('Agg')

import pandas as pd
import pytest

from metapool import (
    HierarchicalMetaModel,
    PooledNormalModel,
    prepare_effect_sizes,
    simulate_effect_sizes,
)


# Tiny MCMC runs: enough to exercise the code, not to converge
FAST_MCMC = {'chains': 2, 'draws': 150, 'tune': 150, 'cores': 1, 'verbose': False}


@pytest.fixture(scope='session')
def raw_effect_sizes():
    """Simulated raw table: 6 studies, 3 outcomes."""
    return simulate_effect_sizes(n_studies=6, n_outcomes=3, random_seed=3)


@pytest.fixture(scope='session')
def effect_data(raw_effect_sizes):
    return prepare_effect_sizes(raw_effect_sizes)


@pytest.fixture
def canonical_frame():
    """Hand-built canonical table with both design types."""
    return pd.DataFrame({
        'study': ['A', 'A', 'B', 'C'],
        'outcome': ['stress', 'behavior', 'stress', 'behavior'],
        'design': [0, 0, 1, 1],
        'effect_size': [0.2, 0.4, 0.0, 0.0],
        'se': [0.1, 0.1, 0.1, 0.1],
    })


@pytest.fixture(scope='session')
def fitted_pooled(effect_data):
    model = PooledNormalModel(random_seed=42)
    with warnings.catch_warnings():
        warnings.simplefilter("ignore")
        model.fit(effect_data, **FAST_MCMC)
    return model


@pytest.fixture(scope='session')
def fitted_hierarchical(effect_data):
    model = HierarchicalMetaModel(random_seed=42)
    with warnings.catch_warnings():
        warnings.simplefilter("ignore")
        model.fit(effect_data, **FAST_MCMC)
    return model
