"""
Unit Tests for Effect Size Data Handling
========================================

Covers standard error derivation, column renaming, validation, integer
encoding of studies/outcomes, CSV loading and data simulation.
"""

import numpy as np
import pandas as pd
import pytest

from metapool import (
    EffectSizeData,
    load_effect_sizes,
    prepare_effect_sizes,
    simulate_effect_sizes,
    standard_error_from_ci,
)
from metapool.analysis import fixed_effect_estimate


# ============================================================================
# Test 1: Standard Errors from Confidence Bounds
# ============================================================================

def test_se_from_95_ci():
    se = standard_error_from_ci(0.1, 0.5)
    assert se == pytest.approx(0.4 / (2 * 1.959964), rel=1e-5)


def test_se_from_90_ci_is_larger_than_from_95_ci():
    """Same width at a lower level implies a larger SE."""
    se_95 = standard_error_from_ci([0.0], [1.0], level=0.95)
    se_90 = standard_error_from_ci([0.0], [1.0], level=0.90)
    assert se_90[0] > se_95[0]


def test_se_vectorized():
    se = standard_error_from_ci(np.array([0.0, -1.0]), np.array([0.392, 1.0]))
    assert se.shape == (2,)
    assert se[0] == pytest.approx(0.1, rel=1e-3)


def test_se_rejects_inverted_bounds():
    with pytest.raises(ValueError, match="below lower"):
        standard_error_from_ci([0.5], [0.1])


@pytest.mark.parametrize("level", [0.0, 1.0, 95])
def test_se_rejects_bad_level(level):
    with pytest.raises(ValueError):
        standard_error_from_ci([0.0], [1.0], level=level)


# ============================================================================
# Test 2: Validation
# ============================================================================

def test_valid_frame_is_encoded(canonical_frame):
    data = EffectSizeData.from_frame(canonical_frame)

    assert data.n_obs == 4
    assert data.studies == ['A', 'B', 'C']
    assert data.outcomes == ['behavior', 'stress']
    assert data.df['study_idx'].tolist() == [0, 0, 1, 2]
    assert data.df['outcome_idx'].tolist() == [1, 0, 1, 0]


def test_input_frame_not_mutated(canonical_frame):
    EffectSizeData(canonical_frame)
    assert 'study_idx' not in canonical_frame.columns


@pytest.mark.parametrize("column", ['study', 'outcome', 'design', 'effect_size', 'se'])
def test_missing_column_raises(canonical_frame, column):
    with pytest.raises(ValueError, match=column):
        EffectSizeData(canonical_frame.drop(columns=column))


def test_empty_table_raises(canonical_frame):
    with pytest.raises(ValueError, match="empty"):
        EffectSizeData(canonical_frame.iloc[:0])


def test_non_dataframe_raises():
    with pytest.raises(TypeError):
        EffectSizeData({'study': ['A']})


def test_nan_effect_size_raises(canonical_frame):
    canonical_frame.loc[0, 'effect_size'] = np.nan
    with pytest.raises(ValueError, match="effect_size"):
        EffectSizeData(canonical_frame)


@pytest.mark.parametrize("column", ['study', 'outcome', 'design'])
def test_missing_label_raises(canonical_frame, column):
    """A blank study/outcome/design cell would otherwise get code -1."""
    canonical_frame[column] = canonical_frame[column].astype(object)
    canonical_frame.loc[2, column] = np.nan
    with pytest.raises(ValueError, match=column):
        EffectSizeData(canonical_frame)


def test_every_row_gets_a_valid_study_code(raw_effect_sizes):
    data = prepare_effect_sizes(raw_effect_sizes)
    assert (data.df['study_idx'] >= 0).all()
    assert (data.df['outcome_idx'] >= 0).all()


def test_non_positive_se_raises(canonical_frame):
    canonical_frame.loc[2, 'se'] = 0.0
    with pytest.raises(ValueError, match="positive"):
        EffectSizeData(canonical_frame)


def test_non_binary_design_raises(canonical_frame):
    canonical_frame.loc[0, 'design'] = 2
    with pytest.raises(ValueError, match="binary"):
        EffectSizeData(canonical_frame)


def test_few_studies_warns(canonical_frame):
    two_studies = canonical_frame[canonical_frame['study'] != 'C']
    with pytest.warns(UserWarning, match="studies"):
        EffectSizeData(two_studies)


def test_model_inputs(canonical_frame):
    inputs = EffectSizeData(canonical_frame).to_model_inputs()

    np.testing.assert_allclose(inputs['y'], [0.2, 0.4, 0.0, 0.0])
    np.testing.assert_allclose(inputs['se'], [0.1] * 4)
    assert inputs['study_idx'].dtype == np.int64
    assert inputs['coords']['study'] == ['A', 'B', 'C']
    assert inputs['coords']['obs'][0] == 'A: stress'


def test_duplicate_rows_get_unique_labels(canonical_frame):
    doubled = pd.concat([canonical_frame, canonical_frame.iloc[[0]]])
    labels = EffectSizeData(doubled).row_labels()

    assert len(labels) == len(set(labels)) == 5
    assert labels[-1] == 'A: stress (2)'


def test_summary_by_study(canonical_frame):
    summary = EffectSizeData(canonical_frame).summary(by='study')

    assert list(summary['study']) == ['A', 'B', 'C']
    assert summary.loc[0, 'n'] == 2
    assert summary.loc[0, 'mean_effect'] == pytest.approx(0.3)


def test_summary_bad_grouping_raises(canonical_frame):
    with pytest.raises(ValueError):
        EffectSizeData(canonical_frame).summary(by='design')


# ============================================================================
# Test 3: Renaming and Loading
# ============================================================================

def test_prepare_renames_and_derives_se():
    raw = pd.DataFrame({
        'study': ['S1', 'S2', 'S3'],
        'outcome': ['o', 'o', 'o'],
        'rct': [1, 0, 1],
        'd': [0.3, 0.1, 0.5],
        'ci_lower': [0.1, -0.1, 0.3],
        'ci_upper': [0.5, 0.3, 0.7],
    })
    data = prepare_effect_sizes(raw)

    assert 'effect_size' in data.df.columns
    assert 'design' in data.df.columns
    np.testing.assert_allclose(data.df['se'], 0.4 / (2 * 1.959964), rtol=1e-5)


def test_prepare_keeps_existing_se(canonical_frame):
    raw = canonical_frame.rename(columns={'design': 'rct', 'effect_size': 'd'})
    data = prepare_effect_sizes(raw)
    np.testing.assert_allclose(data.df['se'], 0.1)


def test_prepare_without_se_or_ci_raises(canonical_frame):
    with pytest.raises(ValueError, match="ci_lower"):
        prepare_effect_sizes(canonical_frame.drop(columns='se'))


def test_prepare_custom_column_map():
    raw = pd.DataFrame({
        'paper': ['P1', 'P2', 'P3'],
        'measure': ['m', 'm', 'm'],
        'randomized': [0, 1, 1],
        'g': [0.2, 0.3, 0.4],
        'se': [0.1, 0.2, 0.1],
    })
    column_map = {'paper': 'study', 'measure': 'outcome',
                  'randomized': 'design', 'g': 'effect_size'}
    data = prepare_effect_sizes(raw, column_map=column_map)

    assert data.studies == ['P1', 'P2', 'P3']


def test_load_csv(tmp_path, raw_effect_sizes):
    path = tmp_path / "effects.csv"
    raw_effect_sizes.to_csv(path, index=False)

    data = load_effect_sizes(path, verbose=False)

    assert data.n_obs == len(raw_effect_sizes)
    assert (data.df['se'] > 0).all()


def test_load_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_effect_sizes(tmp_path / "nope.csv")


# ============================================================================
# Test 4: Simulation
# ============================================================================

def test_simulation_columns_and_reproducibility():
    a = simulate_effect_sizes(n_studies=5, n_outcomes=3, random_seed=11)
    b = simulate_effect_sizes(n_studies=5, n_outcomes=3, random_seed=11)

    assert list(a.columns) == ['study', 'outcome', 'rct', 'd', 'ci_lower', 'ci_upper']
    pd.testing.assert_frame_equal(a, b)


def test_simulation_structure():
    raw = simulate_effect_sizes(n_studies=8, n_outcomes=4, random_seed=5)

    # One design type per study, each outcome at most once per study
    assert (raw.groupby('study')['rct'].nunique() == 1).all()
    assert not raw.duplicated(['study', 'outcome']).any()
    assert raw['study'].nunique() == 8

    # Symmetric confidence bounds around the estimate
    np.testing.assert_allclose(
        raw['d'] - raw['ci_lower'], raw['ci_upper'] - raw['d']
    )


def test_simulation_many_outcomes_named_generically():
    raw = simulate_effect_sizes(n_studies=3, n_outcomes=9, random_seed=0)
    assert raw['outcome'].str.startswith('outcome_').all()


def test_simulation_rejects_zero_studies():
    with pytest.raises(ValueError):
        simulate_effect_sizes(n_studies=0)


# ============================================================================
# Test 5: Classical Fixed-Effect Baseline
# ============================================================================

def test_fixed_effect_estimate(canonical_frame):
    estimate = fixed_effect_estimate(EffectSizeData(canonical_frame))

    assert estimate['pooled_mean'] == pytest.approx(0.15)
    assert estimate['pooled_se'] == pytest.approx(np.sqrt(1 / 400))
    assert estimate['intercept'] == pytest.approx(0.3)
    assert estimate['design_coef'] == pytest.approx(-0.3)


def test_fixed_effect_weights_by_precision():
    df = pd.DataFrame({
        'study': ['A', 'B', 'C'],
        'outcome': ['o', 'o', 'o'],
        'design': [0, 0, 0],
        'effect_size': [0.0, 1.0, 1.0],
        'se': [0.1, 1.0, 1.0],
    })
    estimate = fixed_effect_estimate(EffectSizeData(df))

    # weights 100, 1, 1
    assert estimate['pooled_mean'] == pytest.approx(2 / 102)
    assert np.isnan(estimate['design_coef'])
