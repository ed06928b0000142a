"""
Post-fit analysis: shrinkage, classical baseline and model comparison.

"""

from typing import Dict

import arviz as az
import numpy as np
import pandas as pd
from sklearn.linear_model import LinearRegression

from .data import EffectSizeData
from .models.base import BayesianMetaModel
from .models.hierarchical import HierarchicalMetaModel


def fixed_effect_estimate(data: EffectSizeData) -> Dict[str, float]:
    """
    Classical inverse-variance weighted meta-regression on design type.

    Fits effect_size ~ design by weighted least squares with weights 1/se²
    (no pooling structure, no heterogeneity), for comparison with the
    Bayesian estimates.

    Parameters
    ----------
    data : EffectSizeData
        Validated effect size table

    Returns
    -------
    estimate : Dict[str, float]
        - 'pooled_mean': inverse-variance weighted mean of all effects
        - 'pooled_se': its standard error, sqrt(1 / sum(w))
        - 'intercept': weighted regression intercept (design == 0)
        - 'design_coef': weighted regression coefficient of design
    """
    y = data.df['effect_size'].to_numpy()
    weights = 1.0 / data.df['se'].to_numpy() ** 2

    pooled_mean = float(np.sum(weights * y) / np.sum(weights))
    pooled_se = float(np.sqrt(1.0 / np.sum(weights)))

    X = data.df[['design']].to_numpy(dtype=np.float64)
    if np.unique(X).size < 2:
        # Single design type: regression slope is not identified
        intercept = pooled_mean
        design_coef = float('nan')
    else:
        lr = LinearRegression()
        lr.fit(X, y, sample_weight=weights)
        intercept = float(lr.intercept_)
        design_coef = float(lr.coef_[0])

    return {
        'pooled_mean': pooled_mean,
        'pooled_se': pooled_se,
        'intercept': intercept,
        'design_coef': design_coef,
    }


def compute_shrinkage(model: HierarchicalMetaModel) -> pd.DataFrame:
    """
    Compare observed effects with their partially pooled posterior means.

    The shrinkage weight for row i is

        λ_i = (θ̂_i - m_i) / (y_i - m_i)

    where m_i is the row's group-level prediction (theta without the
    row residual). λ ≈ 1 means no shrinkage, λ ≈ 0 complete pooling.
    Rows with |y_i - m_i| < 0.01 get λ = 1.

    Parameters
    ----------
    model : HierarchicalMetaModel
        Fitted hierarchical model

    Returns
    -------
    shrinkage : pd.DataFrame
        Columns: study, outcome, se, observed, posterior_mean,
        group_prediction, shrinkage_weight
    """
    model._check_fitted()

    effects = model.true_effects()
    group_prediction = model.expected_effects()

    denom = effects['observed'].to_numpy() - group_prediction
    numer = effects['mean'].to_numpy() - group_prediction

    weights = np.ones_like(denom)
    # |y - m| < 0.01: row already at its group prediction, weight stays 1
    mask = np.abs(denom) >= 0.01
    weights[mask] = numer[mask] / denom[mask]

    return pd.DataFrame({
        'study': effects['study'],
        'outcome': effects['outcome'],
        'se': effects['se'],
        'observed': effects['observed'],
        'posterior_mean': effects['mean'],
        'group_prediction': group_prediction,
        'shrinkage_weight': weights,
    })


def compare_models(
    models: Dict[str, BayesianMetaModel],
    ic: str = 'loo'
) -> pd.DataFrame:
    """
    Rank fitted models by expected log predictive density.

    Parameters
    ----------
    models : Dict[str, BayesianMetaModel]
        Name -> fitted model; all must be fitted to the same data
    ic : str, optional (default='loo')
        Information criterion passed to arviz.compare ('loo' or 'waic')

    Returns
    -------
    comparison : pd.DataFrame
        arviz.compare table, best model first
    """
    if len(models) < 2:
        raise ValueError(
            f"Need at least two models to compare. Got: {len(models)}"
        )

    traces = {}
    for name, model in models.items():
        if model.trace_ is None:
            raise ValueError(f"Model '{name}' not fitted. Call fit() first.")
        traces[name] = model.trace_

    return az.compare(traces, ic=ic)


def posterior_predictive_check(model: BayesianMetaModel) -> Dict[str, float]:
    """
    Summarize how well replicated data reproduce the observed spread.

    Returns
    -------
    check : Dict[str, float]
        - 'observed_mean', 'observed_sd'
        - 'replicated_mean', 'replicated_sd': averaged over draws
        - 'p_value_sd': P(sd(y_rep) >= sd(y)); values near 0 or 1 signal misfit
    """
    model._check_fitted()

    if 'posterior_predictive' not in model.trace_.groups():
        raise ValueError("Trace has no posterior predictive samples")

    y = model.data_.df['effect_size'].to_numpy()
    y_rep = model.trace_.posterior_predictive['y_obs'].values
    y_rep = y_rep.reshape(-1, y_rep.shape[-1])

    rep_sd = y_rep.std(axis=1)

    return {
        'observed_mean': float(y.mean()),
        'observed_sd': float(y.std()),
        'replicated_mean': float(y_rep.mean()),
        'replicated_sd': float(rep_sd.mean()),
        'p_value_sd': float((rep_sd >= y.std()).mean()),
    }
