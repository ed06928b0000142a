"""
Naive pooled normal model.

Treats every reported effect size as an exchangeable draw from a single
normal distribution. Reported standard errors and the study/outcome
grouping are ignored, which makes this the baseline the hierarchical
model is compared against.

"""

from typing import Dict

import pymc as pm

from .base import BayesianMetaModel


class PooledNormalModel(BayesianMetaModel):
    """
    Complete-pooling model: effect_size_i ~ Normal(mu, sigma).

    Parameters
    ----------
    prior_mu_sd : float, optional (default=1.0)
        Prior standard deviation of the pooled mean (prior mean 0)
    prior_sigma_sd : float, optional (default=1.0)
        Scale of the half-normal prior on the spread of effect sizes
    random_seed : int, optional (default=42)
        Random seed for MCMC reproducibility

    Examples
    --------
    >>> model = PooledNormalModel()
    >>> model.fit(data, chains=4, draws=2000, tune=1000)
    >>> model.pooled_effect()
    {'mean': 0.31, 'sd': 0.05, 'hdi_lower': 0.21, 'hdi_upper': 0.41}
    """

    name = "pooled"
    diagnostic_vars = ['mu', 'sigma']

    def __init__(
        self,
        prior_mu_sd: float = 1.0,
        prior_sigma_sd: float = 1.0,
        random_seed: int = 42
    ):
        super().__init__(random_seed=random_seed)

        if prior_mu_sd <= 0:
            raise ValueError(f"prior_mu_sd must be positive. Got: {prior_mu_sd}")
        if prior_sigma_sd <= 0:
            raise ValueError(
                f"prior_sigma_sd must be positive. Got: {prior_sigma_sd}"
            )

        self.prior_mu_sd = prior_mu_sd
        self.prior_sigma_sd = prior_sigma_sd

    def _specify_model(
        self,
        inputs: Dict[str, object],
        verbose: bool = True
    ) -> pm.Model:
        coords = {'obs': inputs['coords']['obs']}

        with pm.Model(coords=coords) as model:
            mu = pm.Normal('mu', mu=0.0, sigma=self.prior_mu_sd)
            sigma = pm.HalfNormal('sigma', sigma=self.prior_sigma_sd)

            pm.Normal(
                'y_obs',
                mu=mu,
                sigma=sigma,
                observed=inputs['y'],
                dims='obs'
            )

        if verbose:
            print(f"\n✓ PyMC model specified")
            print(f"  mu ~ Normal(0, {self.prior_mu_sd})")
            print(f"  sigma ~ HalfNormal({self.prior_sigma_sd})")
            print(f"  y_obs ~ Normal(mu, sigma), {len(inputs['y'])} observations")

        return model

    def pooled_effect(self, hdi_prob: float = 0.95) -> Dict[str, float]:
        """Posterior mean, sd and HDI of the pooled mean effect."""
        return self._interval(self.posterior_draws('mu'), hdi_prob)
