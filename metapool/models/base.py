"""
Shared MCMC machinery for the meta-analysis models.

Subclasses only specify the PyMC model; sampling via NUTS, convergence
diagnostics and trace persistence are handled here.

"""

from pathlib import Path
from typing import Dict, List, Optional

import arviz as az
import numpy as np
import pandas as pd
import pymc as pm

from ..data import EffectSizeData


class BayesianMetaModel:
    """
    Base class for meta-analysis models fitted with PyMC.

    Parameters
    ----------
    random_seed : int, optional (default=42)
        Random seed for MCMC reproducibility

    Attributes
    ----------
    model_ : pm.Model
        PyMC model object
    trace_ : az.InferenceData
        Posterior, log-likelihood and posterior predictive samples
    convergence_ : Dict
        Convergence diagnostics (R̂, ESS, divergences)
    data_ : EffectSizeData
        Data the model was fitted to
    """

    name = "base"

    # Parameters checked for convergence; None means every posterior variable
    diagnostic_vars: Optional[List[str]] = None

    def __init__(self, random_seed: int = 42):
        self.random_seed = random_seed

        self.model_ = None
        self.trace_ = None
        self.convergence_ = None
        self.data_ = None

    def _specify_model(
        self,
        inputs: Dict[str, object],
        verbose: bool = True
    ) -> pm.Model:
        raise NotImplementedError

    def fit(
        self,
        data: EffectSizeData,
        chains: int = 4,
        draws: int = 2000,
        tune: int = 1000,
        target_accept: float = 0.90,
        cores: Optional[int] = None,
        verbose: bool = True
    ) -> "BayesianMetaModel":
        """
        Fit the model via MCMC (NUTS).

        Parameters
        ----------
        data : EffectSizeData
            Validated effect size table
        chains : int, optional (default=4)
            Number of independent MCMC chains, run in parallel
        draws : int, optional (default=2000)
            Number of samples per chain
        tune : int, optional (default=1000)
            Number of warmup iterations per chain
        target_accept : float, optional (default=0.90)
            Target acceptance rate for NUTS
        cores : int, optional (default=None)
            Number of CPU cores to use. If None, uses all available cores
        verbose : bool, optional (default=True)
            If True, print MCMC progress

        Returns
        -------
        self : BayesianMetaModel
            Fitted model with populated trace_
        """
        if not isinstance(data, EffectSizeData):
            raise TypeError(
                f"data must be EffectSizeData. Got: {type(data).__name__}"
            )

        self.data_ = data
        inputs = data.to_model_inputs()

        if verbose:
            print(f"\n{'=' * 80}")
            print(f"{self.name.upper()} MODEL: MCMC SAMPLING")
            print(f"{'=' * 80}")
            print(f"Observations: {data.n_obs}")
            print(f"Studies: {data.n_studies}")
            print(f"Outcomes: {data.n_outcomes}")
            print(f"\nMCMC Configuration:")
            print(f"  Chains: {chains}")
            print(f"  Draws per chain: {draws}")
            print(f"  Warmup iterations: {tune}")
            print(f"  Target acceptance: {target_accept}")
            print(f"  Total samples: {chains * draws}")

        self.model_ = self._specify_model(inputs, verbose=verbose)

        if verbose:
            print(f"\nStart time: {pd.Timestamp.now().strftime('%H:%M:%S')}")

        with self.model_:
            self.trace_ = pm.sample(
                draws=draws,
                tune=tune,
                chains=chains,
                cores=cores,
                target_accept=target_accept,
                return_inferencedata=True,
                random_seed=self.random_seed,
                progressbar=verbose,
                idata_kwargs={'log_likelihood': True}
            )
            pm.sample_posterior_predictive(
                self.trace_,
                extend_inferencedata=True,
                random_seed=self.random_seed,
                progressbar=False
            )

        if verbose:
            print(f"End time: {pd.Timestamp.now().strftime('%H:%M:%S')}")
            print(f"\n✓ MCMC sampling completed")
            print(f"  Divergent transitions: {self.n_divergences()}")

        return self

    def _check_fitted(self) -> None:
        if self.trace_ is None:
            raise ValueError(
                f"{type(self).__name__} not fitted. Call fit() first."
            )

    def n_divergences(self) -> int:
        """Number of divergent transitions across all chains."""
        self._check_fitted()
        if 'sample_stats' not in self.trace_.groups():
            return 0
        return int(self.trace_.sample_stats['diverging'].values.sum())

    def check_convergence(
        self,
        rhat_threshold: float = 1.01,
        ess_threshold: float = 400,
        verbose: bool = True
    ) -> Dict[str, object]:
        """
        Check MCMC convergence using R̂, ESS and divergent transitions.

        Parameters
        ----------
        rhat_threshold : float, optional (default=1.01)
            Maximum acceptable R̂
        ess_threshold : float, optional (default=400)
            Minimum acceptable bulk effective sample size
        verbose : bool, optional (default=True)
            If True, print convergence summary

        Returns
        -------
        convergence : Dict
            - 'rhat_ok', 'rhat_max'
            - 'ess_ok', 'ess_min'
            - 'divergences', 'divergences_ok'
            - 'all_ok': every criterion met

        Raises
        ------
        ValueError
            If model hasn't been fitted yet
        """
        self._check_fitted()

        rhat = az.rhat(self.trace_, var_names=self.diagnostic_vars)
        rhat_values = np.concatenate(
            [rhat[var].values.ravel() for var in rhat.data_vars]
        )
        rhat_max = float(np.nanmax(rhat_values))
        rhat_ok = rhat_max < rhat_threshold

        ess = az.ess(self.trace_, var_names=self.diagnostic_vars)
        ess_values = np.concatenate(
            [ess[var].values.ravel() for var in ess.data_vars]
        )
        ess_min = float(np.nanmin(ess_values))
        ess_ok = ess_min > ess_threshold

        divergences = self.n_divergences()
        divergences_ok = divergences == 0

        all_ok = rhat_ok and ess_ok and divergences_ok

        if verbose:
            print(f"\n{'=' * 80}")
            print(f"CONVERGENCE DIAGNOSTICS ({self.name})")
            print(f"{'=' * 80}")
            print(f"  Max R̂: {rhat_max:.4f} "
                  f"({'✓ PASS' if rhat_ok else '✗ FAIL'}, < {rhat_threshold})")
            print(f"  Min ESS: {ess_min:.0f} "
                  f"({'✓ PASS' if ess_ok else '✗ FAIL'}, > {ess_threshold:.0f})")
            print(f"  Divergences: {divergences} "
                  f"({'✓ PASS' if divergences_ok else '✗ FAIL'})")
            if not all_ok:
                print("\nTroubleshooting:")
                if not rhat_ok:
                    print("  - Chains disagree: increase tune/draws")
                if not ess_ok:
                    print("  - High autocorrelation: increase draws")
                if not divergences_ok:
                    print("  - Divergences: raise target_accept or tighten "
                          "variance priors")

        self.convergence_ = {
            'rhat_ok': bool(rhat_ok),
            'rhat_max': rhat_max,
            'ess_ok': bool(ess_ok),
            'ess_min': ess_min,
            'divergences': divergences,
            'divergences_ok': bool(divergences_ok),
            'all_ok': bool(all_ok),
        }

        return self.convergence_

    def summary(
        self,
        var_names: Optional[List[str]] = None,
        hdi_prob: float = 0.95
    ) -> pd.DataFrame:
        """ArviZ posterior summary (mean, sd, HDI, R̂, ESS)."""
        self._check_fitted()
        if var_names is None:
            var_names = self.diagnostic_vars
        return az.summary(self.trace_, var_names=var_names, hdi_prob=hdi_prob)

    def posterior_draws(self, var_name: str) -> np.ndarray:
        """
        Posterior draws of one variable, flattened over chains.

        Returns
        -------
        draws : np.ndarray, shape (chains * draws, ...)
        """
        self._check_fitted()
        if var_name not in self.trace_.posterior:
            raise KeyError(f"Unknown posterior variable: '{var_name}'")

        values = self.trace_.posterior[var_name].values
        return values.reshape((-1,) + values.shape[2:])

    def _interval(self, draws: np.ndarray, hdi_prob: float) -> Dict[str, float]:
        lower, upper = az.hdi(draws, hdi_prob=hdi_prob)
        return {
            'mean': float(draws.mean()),
            'sd': float(draws.std()),
            'hdi_lower': float(lower),
            'hdi_upper': float(upper),
        }

    def save_trace(
        self,
        filepath: str,
        verbose: bool = True
    ) -> None:
        """
        Save the trace to NetCDF format.

        Can be loaded again with load_trace() or arviz.from_netcdf().
        """
        self._check_fitted()

        filepath = Path(filepath)
        filepath.parent.mkdir(parents=True, exist_ok=True)

        self.trace_.to_netcdf(str(filepath))

        if verbose:
            print(f"✓ Trace saved to {filepath}")

    @staticmethod
    def load_trace(
        filepath: str,
        verbose: bool = True
    ) -> az.InferenceData:
        """
        Load a trace from NetCDF format.

        Raises
        ------
        FileNotFoundError
            If filepath doesn't exist
        """
        filepath = Path(filepath)

        if not filepath.exists():
            raise FileNotFoundError(f"Trace file not found: {filepath}")

        trace = az.from_netcdf(str(filepath))

        if verbose:
            chains = trace.posterior.sizes['chain']
            draws = trace.posterior.sizes['draw']
            print(f"✓ Trace loaded from {filepath}")
            print(f"  Chains: {chains}")
            print(f"  Draws per chain: {draws}")

        return trace
