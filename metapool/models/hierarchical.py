"""
Hierarchical Measurement-Error Model for Meta-Analysis

Each reported effect size is treated as a noisy measurement of a latent
true effect, with the reported standard error as known measurement noise.
True effects are partially pooled across studies and across outcomes via
shared hyperpriors, and shifted by a design-type coefficient.

Model structure:
    Level 1 (Population): mu, beta_design, tau_study, tau_outcome, tau_resid
    Level 2 (Groups):     u_study[s], u_outcome[o]
    Level 3 (Rows):       theta_i = mu + beta_design * design_i
                                    + u_study[s_i] + u_outcome[o_i] + e_i
    Measurement:          effect_size_i ~ Normal(theta_i, se_i)

"""

from typing import Dict

import numpy as np
import pandas as pd
import pymc as pm

from .base import BayesianMetaModel


class HierarchicalMetaModel(BayesianMetaModel):
    """
    Partial-pooling meta-analysis model with known measurement error.

    Uses a non-centered parameterization for all group-level deviations
    to avoid funnel geometry when the between-group variances are small.

    Parameters
    ----------
    prior_mu_sd : float, optional (default=1.0)
        Prior standard deviation of the grand mean effect (prior mean 0)
    prior_beta_sd : float, optional (default=0.5)
        Prior standard deviation of the design-type coefficient
    prior_tau_sd : float, optional (default=0.5)
        Scale of the half-normal priors on the three heterogeneity components
    random_seed : int, optional (default=42)
        Random seed for MCMC reproducibility

    Attributes
    ----------
    model_ : pm.Model
        PyMC model object
    trace_ : az.InferenceData
        Posterior samples from MCMC

    Examples
    --------
    >>> model = HierarchicalMetaModel()
    >>> model.fit(data, chains=4, draws=2000, tune=1000)
    >>> model.check_convergence()
    >>> model.study_effects()
    >>> model.design_effect()
    """

    name = "hierarchical"
    diagnostic_vars = [
        'mu', 'beta_design', 'tau_study', 'tau_outcome', 'tau_resid',
        'u_study', 'u_outcome', 'theta',
    ]

    def __init__(
        self,
        prior_mu_sd: float = 1.0,
        prior_beta_sd: float = 0.5,
        prior_tau_sd: float = 0.5,
        random_seed: int = 42
    ):
        super().__init__(random_seed=random_seed)

        for label, value in [('prior_mu_sd', prior_mu_sd),
                             ('prior_beta_sd', prior_beta_sd),
                             ('prior_tau_sd', prior_tau_sd)]:
            if value <= 0:
                raise ValueError(f"{label} must be positive. Got: {value}")

        self.prior_mu_sd = prior_mu_sd
        self.prior_beta_sd = prior_beta_sd
        self.prior_tau_sd = prior_tau_sd

    def _specify_model(
        self,
        inputs: Dict[str, object],
        verbose: bool = True
    ) -> pm.Model:
        """
        Specify the hierarchical model in PyMC.

        Parameters
        ----------
        inputs : Dict
            Output of EffectSizeData.to_model_inputs()
        verbose : bool
            Print model structure

        Returns
        -------
        model : pm.Model
        """
        y = inputs['y']
        se = inputs['se']
        design = inputs['design']
        study_idx = inputs['study_idx']
        outcome_idx = inputs['outcome_idx']
        coords = inputs['coords']

        with pm.Model(coords=coords) as model:
            # Level 1: population hyperpriors
            mu = pm.Normal('mu', mu=0.0, sigma=self.prior_mu_sd)
            beta_design = pm.Normal('beta_design', mu=0.0, sigma=self.prior_beta_sd)
            tau_study = pm.HalfNormal('tau_study', sigma=self.prior_tau_sd)
            tau_outcome = pm.HalfNormal('tau_outcome', sigma=self.prior_tau_sd)
            tau_resid = pm.HalfNormal('tau_resid', sigma=self.prior_tau_sd)

            # Level 2: group deviations (non-centered)
            z_study = pm.Normal('z_study', mu=0.0, sigma=1.0, dims='study')
            z_outcome = pm.Normal('z_outcome', mu=0.0, sigma=1.0, dims='outcome')
            u_study = pm.Deterministic('u_study', tau_study * z_study, dims='study')
            u_outcome = pm.Deterministic(
                'u_outcome', tau_outcome * z_outcome, dims='outcome'
            )

            # Level 3: row-level true effects
            z_resid = pm.Normal('z_resid', mu=0.0, sigma=1.0, dims='obs')
            theta = pm.Deterministic(
                'theta',
                mu
                + beta_design * design
                + u_study[study_idx]
                + u_outcome[outcome_idx]
                + tau_resid * z_resid,
                dims='obs'
            )

            # Measurement error with known standard errors
            pm.Normal('y_obs', mu=theta, sigma=se, observed=y, dims='obs')

        if verbose:
            n_study = len(coords['study'])
            n_outcome = len(coords['outcome'])
            n_obs = len(y)
            print(f"\n✓ PyMC model specified")
            print(f"  Parameters:")
            print(f"    mu, beta_design: 2 population coefficients")
            print(f"    tau_study, tau_outcome, tau_resid: 3 heterogeneity scales")
            print(f"    z_study: {n_study} study deviations (non-centered)")
            print(f"    z_outcome: {n_outcome} outcome deviations (non-centered)")
            print(f"    z_resid: {n_obs} row deviations (non-centered)")
            print(f"  Total parameters: {5 + n_study + n_outcome + n_obs}")
            print(f"  Total observations: {n_obs}")

        return model

    def _group_table(self, var: str, labels, hdi_prob: float) -> pd.DataFrame:
        group_draws = self.posterior_draws('mu')[:, None] + self.posterior_draws(var)

        rows = []
        for k, label in enumerate(labels):
            interval = self._interval(group_draws[:, k], hdi_prob)
            interval['group'] = label
            interval['deviation'] = float(self.posterior_draws(var)[:, k].mean())
            rows.append(interval)

        return pd.DataFrame(rows)[
            ['group', 'mean', 'sd', 'hdi_lower', 'hdi_upper', 'deviation']
        ]

    def study_effects(self, hdi_prob: float = 0.95) -> pd.DataFrame:
        """Posterior of mu + u_study for every study."""
        self._check_fitted()
        return self._group_table('u_study', self.data_.studies, hdi_prob)

    def outcome_effects(self, hdi_prob: float = 0.95) -> pd.DataFrame:
        """Posterior of mu + u_outcome for every outcome."""
        self._check_fitted()
        return self._group_table('u_outcome', self.data_.outcomes, hdi_prob)

    def expected_effects(self) -> np.ndarray:
        """
        Posterior mean of each row's group-level prediction.

        This is theta without the row-level residual term, i.e. the value
        the row is shrunk toward.
        """
        self._check_fitted()
        inputs = self.data_.to_model_inputs()

        draws = (
            self.posterior_draws('mu')[:, None]
            + self.posterior_draws('beta_design')[:, None] * inputs['design']
            + self.posterior_draws('u_study')[:, inputs['study_idx']]
            + self.posterior_draws('u_outcome')[:, inputs['outcome_idx']]
        )
        return draws.mean(axis=0)

    def true_effects(self, hdi_prob: float = 0.95) -> pd.DataFrame:
        """
        Per-row posterior of the latent true effect next to the observed one.

        Returns
        -------
        effects : pd.DataFrame
            Columns: study, outcome, design, observed, se, mean, sd,
            hdi_lower, hdi_upper
        """
        self._check_fitted()
        theta = self.posterior_draws('theta')
        df = self.data_.df

        rows = []
        for i in range(theta.shape[1]):
            interval = self._interval(theta[:, i], hdi_prob)
            rows.append({
                'study': df['study'].iloc[i],
                'outcome': df['outcome'].iloc[i],
                'design': int(df['design'].iloc[i]),
                'observed': float(df['effect_size'].iloc[i]),
                'se': float(df['se'].iloc[i]),
                **interval,
            })

        return pd.DataFrame(rows)

    def design_effect(self, hdi_prob: float = 0.95) -> Dict[str, float]:
        """Posterior of beta_design with the probability that it is positive."""
        draws = self.posterior_draws('beta_design')
        result = self._interval(draws, hdi_prob)
        result['prob_positive'] = float((draws > 0).mean())
        return result

    def baseline_effect(self, hdi_prob: float = 0.95) -> Dict[str, float]:
        """Posterior of mu, the expected effect for design == 0."""
        return self._interval(self.posterior_draws('mu'), hdi_prob)

    def overall_draws(self) -> np.ndarray:
        """
        Draws of the design-averaged grand mean,
        mu + beta_design * mean(design).

        Comparable to the pooled model's mu, which averages over rows of
        both design types.
        """
        self._check_fitted()
        design_share = float(self.data_.df['design'].mean())
        return (
            self.posterior_draws('mu')
            + self.posterior_draws('beta_design') * design_share
        )

    def overall_effect(self, hdi_prob: float = 0.95) -> Dict[str, float]:
        """Posterior of the design-averaged grand mean effect."""
        return self._interval(self.overall_draws(), hdi_prob)

    def heterogeneity(self) -> pd.DataFrame:
        """
        Posterior means of the heterogeneity scales and their variance shares.

        Returns
        -------
        heterogeneity : pd.DataFrame
            Columns: component, tau_mean, variance_share
        """
        components = ['tau_study', 'tau_outcome', 'tau_resid']
        tau = np.column_stack([self.posterior_draws(c) for c in components])
        variance = tau ** 2
        share = variance / variance.sum(axis=1, keepdims=True)

        return pd.DataFrame({
            'component': [c.replace('tau_', '') for c in components],
            'tau_mean': tau.mean(axis=0),
            'variance_share': share.mean(axis=0),
        })
