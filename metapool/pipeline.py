"""MetaPool MetaAnalysis - Main User Interface"""

import pickle
import warnings
from pathlib import Path
from typing import Dict, Optional, Union

import pandas as pd

from . import plotting
from .analysis import (
    compare_models,
    compute_shrinkage,
    fixed_effect_estimate,
    posterior_predictive_check,
)
from .data import EffectSizeData, prepare_effect_sizes
from .models.hierarchical import HierarchicalMetaModel
from .models.pooled import PooledNormalModel


MCMC_SETTINGS = {
    'quick': {'chains': 2, 'draws': 500, 'tune': 500, 'target_accept': 0.90},
    'full': {'chains': 4, 'draws': 2000, 'tune': 1000, 'target_accept': 0.90},
}


class MetaAnalysis:
    """
    End-to-end Bayesian meta-analysis of effect sizes.

    Fits a naive pooled normal model and a hierarchical measurement-error
    model to the same effect size table, validates convergence, and
    summarizes, compares and plots both posteriors.

    Parameters
    ----------
    quick_mode : bool, default=False
        If True, uses faster MCMC settings for prototyping.
        Set False for reported results.

    random_seed : int, default=42
        Random seed for reproducibility.

    cores : int, optional
        CPU cores for parallel chains. If None, PyMC uses all available.

    Examples
    --------
    >>> from metapool import MetaAnalysis, load_effect_sizes
    >>>
    >>> data = load_effect_sizes('parenting_effects.csv')
    >>> analysis = MetaAnalysis()
    >>> analysis.fit(data)
    >>>
    >>> analysis.summarize()['design_effect']
    >>> analysis.compare()
    >>> analysis.make_figures('results/figures')
    """

    def __init__(
        self,
        quick_mode: bool = False,
        random_seed: int = 42,
        cores: Optional[int] = None
    ):
        self.quick_mode = quick_mode
        self.random_seed = random_seed
        self.cores = cores

        # Will be initialized during fit()
        self.data = None
        self.pooled_model = None
        self.hierarchical_model = None

    @property
    def mcmc_settings(self) -> Dict[str, float]:
        return MCMC_SETTINGS['quick' if self.quick_mode else 'full']

    def fit(
        self,
        data: Union[EffectSizeData, pd.DataFrame],
        validate_convergence: bool = True,
        verbose: bool = True
    ) -> 'MetaAnalysis':
        """
        Fit the pooled and hierarchical models.

        Parameters
        ----------
        data : EffectSizeData or pd.DataFrame
            Effect size table. A DataFrame is renamed and validated with
            prepare_effect_sizes() first.

        validate_convergence : bool, default=True
            If True, raises error if either model has R̂ ≥ 1.01 and warns on
            low ESS or divergent transitions.

        verbose : bool, default=True
            If True, print sampling progress.

        Returns
        -------
        self : MetaAnalysis
            Fitted analysis.
        """
        if isinstance(data, pd.DataFrame):
            data = prepare_effect_sizes(data)
        elif not isinstance(data, EffectSizeData):
            raise TypeError(
                "data must be EffectSizeData or a pandas DataFrame. "
                f"Got: {type(data).__name__}"
            )

        settings = self.mcmc_settings

        print(f"\n{'='*70}")
        print(f"MetaPool: Fitting {data.n_obs} effect sizes "
              f"from {data.n_studies} studies")
        print(f"{'='*70}\n")

        # Fit into locals so a failed refit leaves the previous state intact
        print("[Step 1/2] Fitting pooled normal model...")
        pooled = PooledNormalModel(random_seed=self.random_seed)
        pooled.fit(data, cores=self.cores, verbose=verbose, **settings)

        print("\n[Step 2/2] Fitting hierarchical measurement-error model...")
        hierarchical = HierarchicalMetaModel(random_seed=self.random_seed)
        hierarchical.fit(data, cores=self.cores, verbose=verbose, **settings)

        self.data = data
        self.pooled_model = pooled
        self.hierarchical_model = hierarchical

        if validate_convergence:
            self._validate_convergence(self.pooled_model, verbose=verbose)
            self._validate_convergence(self.hierarchical_model, verbose=verbose)

        print(f"\n{'='*70}")
        print("✓ MetaPool analysis fitted successfully!")
        print(f"{'='*70}\n")

        return self

    def _check_fitted(self):
        if self.hierarchical_model is None or self.pooled_model is None:
            raise RuntimeError("Analysis not fitted. Call .fit() first.")

    def summarize(self, hdi_prob: float = 0.95) -> Dict[str, object]:
        """
        Key posterior quantities from both models.

        Returns
        -------
        summary : dict
            - pooled_effect: mu of the pooled model
            - overall_effect: hierarchical grand mean averaged over the
              observed design mix (comparable to pooled_effect)
            - baseline_effect: hierarchical mu, the design == 0 mean
            - design_effect: beta_design with P(beta_design > 0)
            - heterogeneity: DataFrame of tau components and variance shares
            - fixed_effect: classical inverse-variance baseline
            - ppc: posterior predictive spread check per model
        """
        self._check_fitted()

        return {
            'pooled_effect': self.pooled_model.pooled_effect(hdi_prob),
            'overall_effect': self.hierarchical_model.overall_effect(hdi_prob),
            'baseline_effect': self.hierarchical_model.baseline_effect(hdi_prob),
            'design_effect': self.hierarchical_model.design_effect(hdi_prob),
            'heterogeneity': self.hierarchical_model.heterogeneity(),
            'fixed_effect': fixed_effect_estimate(self.data),
            'ppc': {
                'pooled': posterior_predictive_check(self.pooled_model),
                'hierarchical': posterior_predictive_check(self.hierarchical_model),
            },
        }

    def compare(self, ic: str = 'loo') -> pd.DataFrame:
        """Rank the two models by expected log predictive density."""
        self._check_fitted()
        return compare_models(
            {
                'pooled': self.pooled_model,
                'hierarchical': self.hierarchical_model,
            },
            ic=ic
        )

    def shrinkage(self) -> pd.DataFrame:
        """Observed vs partially pooled effect per row."""
        self._check_fitted()
        return compute_shrinkage(self.hierarchical_model)

    def get_convergence_diagnostics(self) -> pd.DataFrame:
        """
        Return MCMC convergence diagnostics (R̂, ESS) for both models.

        Returns
        -------
        diagnostics : pd.DataFrame
            DataFrame with columns: model, parameter, r_hat, ess_bulk, ess_tail
        """
        self._check_fitted()

        frames = []
        for model in (self.pooled_model, self.hierarchical_model):
            summary = model.summary().reset_index()
            summary = summary.rename(columns={'index': 'parameter'})
            summary.insert(0, 'model', model.name)
            frames.append(summary[['model', 'parameter', 'r_hat',
                                   'ess_bulk', 'ess_tail']])

        return pd.concat(frames, ignore_index=True)

    def make_figures(self, output_dir: str) -> Dict[str, Path]:
        """
        Write every figure of the analysis as PNG files.

        Returns
        -------
        paths : dict
            Figure name -> written path
        """
        import matplotlib.pyplot as plt

        self._check_fitted()
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)

        pooled = self.pooled_model
        hier = self.hierarchical_model
        figures = {
            'effect_sizes': lambda p: plotting.plot_effect_sizes(self.data, output_path=p),
            'pooled_posterior': lambda p: plotting.plot_pooled_posterior(pooled, output_path=p),
            'pooled_trace': lambda p: plotting.plot_trace(pooled, output_path=p),
            'hierarchical_trace': lambda p: plotting.plot_trace(hier, output_path=p),
            'forest': lambda p: plotting.plot_forest(hier, output_path=p),
            'study_effects': lambda p: plotting.plot_group_effects(hier, 'study', output_path=p),
            'outcome_effects': lambda p: plotting.plot_group_effects(hier, 'outcome', output_path=p),
            'shrinkage': lambda p: plotting.plot_shrinkage(self.shrinkage(), output_path=p),
            'design_effect': lambda p: plotting.plot_design_effect(hier, output_path=p),
            'model_comparison': lambda p: plotting.plot_model_comparison(pooled, hier, output_path=p),
            'pooled_ppc': lambda p: plotting.plot_ppc(pooled, output_path=p),
            'hierarchical_ppc': lambda p: plotting.plot_ppc(hier, output_path=p),
        }

        paths = {}
        for name, make in figures.items():
            path = output_dir / f"{name}.png"
            fig = make(str(path))
            plt.close(fig)
            paths[name] = path

        return paths

    def save(self, filepath: str):
        """
        Save fitted analysis to disk.

        Note: PyMC model objects cannot be pickled directly; they are
        detached during save. Traces are kept.
        """
        backups = {}
        for model in (self.pooled_model, self.hierarchical_model):
            if model is not None:
                backups[id(model)] = (model, model.model_)
                model.model_ = None

        try:
            with open(filepath, 'wb') as f:
                pickle.dump(self, f)
            print(f"✓ Analysis saved to {filepath}")
        finally:
            for model, pm_model in backups.values():
                model.model_ = pm_model

    @classmethod
    def load(cls, filepath: str) -> 'MetaAnalysis':
        """Load fitted analysis from disk."""
        with open(filepath, 'rb') as f:
            analysis = pickle.load(f)
        print(f"✓ Analysis loaded from {filepath}")
        return analysis

    # ---- Private methods ----

    def _validate_convergence(self, model, verbose: bool = True):
        """Check MCMC convergence and raise error if R̂ fails."""
        diagnostics = model.check_convergence(verbose=verbose)

        if not diagnostics['rhat_ok']:
            raise RuntimeError(
                f"MCMC convergence failed for the {model.name} model! "
                f"R̂ ≥ 1.01 detected.\n"
                f"Max R̂ = {diagnostics['rhat_max']:.4f}\n\n"
                "Try increasing MCMC draws: MetaAnalysis(quick_mode=False)"
            )

        if not diagnostics['ess_ok']:
            warnings.warn(
                f"Low effective sample size in the {model.name} model "
                f"(ESS = {diagnostics['ess_min']:.0f}). "
                "Consider increasing MCMC draws for more reliable inference."
            )

        if not diagnostics['divergences_ok']:
            warnings.warn(
                f"{diagnostics['divergences']} divergent transitions in the "
                f"{model.name} model. Posterior estimates may be biased."
            )

        print(f"  ✓ Convergence validated for {model.name} model "
              f"(max R̂ = {diagnostics['rhat_max']:.4f}, "
              f"min ESS = {diagnostics['ess_min']:.0f})")
