"""
Figures for the meta-analysis workflow.

Consistent styling plus one function per figure: raw effect sizes,
posterior densities, trace plots, forest plots, shrinkage, design effect,
model comparison and posterior predictive checks.

"""

from pathlib import Path
from typing import List, Optional, Tuple

import arviz as az
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
from scipy import stats

from .data import EffectSizeData
from .models.hierarchical import HierarchicalMetaModel
from .models.pooled import PooledNormalModel


class MetaPoolPlotStyle:
    """
    Consistent figure styling for all MetaPool figures.

    Examples
    --------
    >>> MetaPoolPlotStyle.apply()
    >>> fig, ax = MetaPoolPlotStyle.create_figure()
    >>> ax.plot(x, y, color=MetaPoolPlotStyle.COLORS['hierarchical'])
    """

    FIGSIZE_MAIN = (10, 6)
    FIGSIZE_SQUARE = (8, 8)
    FIGSIZE_WIDE = (12, 5)

    DPI = 300

    COLORS = {
        'observed': '#7f7f7f',      # Gray for raw data
        'pooled': '#ff7f0e',        # Orange for complete pooling
        'hierarchical': '#1f77b4',  # Blue for partial pooling
        'population': '#d62728',    # Red for grand mean
        'design_0': '#2ca02c',      # Green for non-randomized designs
        'design_1': '#9467bd',      # Purple for randomized designs
    }

    FONTSIZE_TITLE = 14
    FONTSIZE_LABEL = 12
    FONTSIZE_TICK = 10
    FONTSIZE_LEGEND = 10

    @classmethod
    def apply(cls) -> None:
        """Apply MetaPool style to matplotlib globally."""
        plt.rcParams['figure.figsize'] = cls.FIGSIZE_MAIN
        plt.rcParams['figure.dpi'] = 100
        plt.rcParams['savefig.dpi'] = cls.DPI

        plt.rcParams['font.size'] = cls.FONTSIZE_TICK
        plt.rcParams['axes.titlesize'] = cls.FONTSIZE_TITLE
        plt.rcParams['axes.labelsize'] = cls.FONTSIZE_LABEL
        plt.rcParams['xtick.labelsize'] = cls.FONTSIZE_TICK
        plt.rcParams['ytick.labelsize'] = cls.FONTSIZE_TICK
        plt.rcParams['legend.fontsize'] = cls.FONTSIZE_LEGEND

        plt.rcParams['grid.alpha'] = 0.3
        plt.rcParams['grid.linestyle'] = '--'

        plt.rcParams['lines.linewidth'] = 2
        plt.rcParams['axes.linewidth'] = 1

        plt.rcParams['legend.frameon'] = True
        plt.rcParams['legend.framealpha'] = 0.8

    @classmethod
    def create_figure(
        cls,
        figsize: Optional[Tuple[float, float]] = None,
        **kwargs
    ) -> Tuple[plt.Figure, plt.Axes]:
        """Create a figure with MetaPool style applied."""
        if figsize is None:
            figsize = cls.FIGSIZE_MAIN

        fig, ax = plt.subplots(figsize=figsize, **kwargs)
        return fig, ax

    @classmethod
    def save_figure(
        cls,
        fig: plt.Figure,
        filepath: str,
        dpi: Optional[int] = None,
        bbox_inches: str = 'tight',
        **kwargs
    ) -> None:
        """Save figure with publication quality settings."""
        if dpi is None:
            dpi = cls.DPI

        filepath = Path(filepath)
        filepath.parent.mkdir(parents=True, exist_ok=True)
        fig.savefig(filepath, dpi=dpi, bbox_inches=bbox_inches, **kwargs)
        print(f"[OK] Figure saved: {filepath}")

    @classmethod
    def format_axis(
        cls,
        ax: plt.Axes,
        title: Optional[str] = None,
        xlabel: Optional[str] = None,
        ylabel: Optional[str] = None,
        grid: bool = True,
        legend: bool = False
    ) -> None:
        """Apply consistent formatting to an axis."""
        if title:
            ax.set_title(title, fontsize=cls.FONTSIZE_TITLE, fontweight='bold')

        if xlabel:
            ax.set_xlabel(xlabel, fontsize=cls.FONTSIZE_LABEL)

        if ylabel:
            ax.set_ylabel(ylabel, fontsize=cls.FONTSIZE_LABEL)

        if grid:
            ax.grid(True, alpha=0.3, linestyle='--')

        if legend:
            ax.legend(fontsize=cls.FONTSIZE_LEGEND, framealpha=0.8)

        ax.tick_params(labelsize=cls.FONTSIZE_TICK)


def _finish(fig: plt.Figure, output_path: Optional[str]) -> plt.Figure:
    if output_path is not None:
        MetaPoolPlotStyle.save_figure(fig, output_path)
    return fig


def _row_height(n_rows: int) -> float:
    return max(4.0, 0.3 * n_rows + 1.5)


def plot_effect_sizes(
    data: EffectSizeData,
    ci_level: float = 0.95,
    output_path: Optional[str] = None
) -> plt.Figure:
    """
    Observed effect sizes with confidence intervals, colored by design type.

    Rows are ordered by study, then outcome.
    """
    z = stats.norm.ppf((1 + ci_level) / 2)
    df = data.df.sort_values(['study', 'outcome']).reset_index(drop=True)
    labels = [f"{s}: {o}" for s, o in zip(df['study'], df['outcome'])]
    y_pos = np.arange(len(df))[::-1]

    fig, ax = MetaPoolPlotStyle.create_figure(figsize=(10, _row_height(len(df))))
    colors = MetaPoolPlotStyle.COLORS

    for design in (0, 1):
        mask = (df['design'] == design).to_numpy()
        if not mask.any():
            continue
        ax.errorbar(
            df['effect_size'][mask],
            y_pos[mask],
            xerr=z * df['se'][mask],
            fmt='s',
            color=colors[f'design_{design}'],
            capsize=2,
            label=f"design = {design}"
        )

    ax.axvline(0, color='black', linestyle='--', linewidth=1, alpha=0.7)
    ax.set_yticks(y_pos)
    ax.set_yticklabels(labels)
    MetaPoolPlotStyle.format_axis(
        ax,
        title='Observed effect sizes',
        xlabel=f'Effect size ({ci_level:.0%} CI)',
        legend=True
    )

    fig.tight_layout()
    return _finish(fig, output_path)


def plot_pooled_posterior(
    model: PooledNormalModel,
    output_path: Optional[str] = None
) -> plt.Figure:
    """Posterior densities of the pooled model's mean and spread."""
    fig, axes = plt.subplots(1, 2, figsize=MetaPoolPlotStyle.FIGSIZE_WIDE)

    az.plot_posterior(
        model.trace_,
        var_names=['mu', 'sigma'],
        hdi_prob=0.95,
        color=MetaPoolPlotStyle.COLORS['pooled'],
        ax=axes
    )
    axes[0].set_title('mu (pooled mean)')
    axes[1].set_title('sigma (spread of effects)')

    fig.tight_layout()
    return _finish(fig, output_path)


def plot_trace(
    model,
    var_names: Optional[List[str]] = None,
    output_path: Optional[str] = None
) -> plt.Figure:
    """ArviZ trace plot for visual convergence checks."""
    if var_names is None:
        var_names = [
            v for v in model.diagnostic_vars
            if model.trace_.posterior[v].ndim == 2
        ]

    axes = az.plot_trace(model.trace_, var_names=var_names, compact=True)
    fig = np.asarray(axes).ravel()[0].figure
    fig.suptitle(f'Trace plot ({model.name} model)', fontweight='bold')

    fig.tight_layout()
    return _finish(fig, output_path)


def plot_forest(
    model: HierarchicalMetaModel,
    ci_level: float = 0.95,
    output_path: Optional[str] = None
) -> plt.Figure:
    """
    Observed effects next to posterior true effects for every row.

    Gray squares are observed effects with ci_level CIs; blue circles are
    posterior means with ci_level HDIs. The red line is the
    design-averaged grand mean.
    """
    z = stats.norm.ppf((1 + ci_level) / 2)
    effects = model.true_effects(hdi_prob=ci_level).sort_values(['study', 'outcome'])
    effects = effects.reset_index(drop=True)
    labels = [f"{s}: {o}" for s, o in zip(effects['study'], effects['outcome'])]
    y_pos = np.arange(len(effects))[::-1]
    colors = MetaPoolPlotStyle.COLORS

    fig, ax = MetaPoolPlotStyle.create_figure(
        figsize=(10, _row_height(len(effects)))
    )

    ax.errorbar(
        effects['observed'],
        y_pos + 0.15,
        xerr=z * effects['se'],
        fmt='s',
        color=colors['observed'],
        alpha=0.7,
        capsize=2,
        label='Observed'
    )
    ax.errorbar(
        effects['mean'],
        y_pos - 0.15,
        xerr=[
            effects['mean'] - effects['hdi_lower'],
            effects['hdi_upper'] - effects['mean'],
        ],
        fmt='o',
        color=colors['hierarchical'],
        capsize=2,
        label='Posterior (partial pooling)'
    )

    grand_mean = model.overall_effect()['mean']
    ax.axvline(grand_mean, color=colors['population'], linestyle='-',
               linewidth=1.5, label=f'Grand mean ({grand_mean:.2f})')
    ax.axvline(0, color='black', linestyle='--', linewidth=1, alpha=0.5)

    ax.set_yticks(y_pos)
    ax.set_yticklabels(labels)
    MetaPoolPlotStyle.format_axis(
        ax,
        title='Observed vs partially pooled effects',
        xlabel='Effect size',
        legend=True
    )

    fig.tight_layout()
    return _finish(fig, output_path)


def plot_group_effects(
    model: HierarchicalMetaModel,
    group: str = 'study',
    output_path: Optional[str] = None
) -> plt.Figure:
    """Posterior mean and HDI of mu + u_group for every study or outcome."""
    if group == 'study':
        table = model.study_effects()
    elif group == 'outcome':
        table = model.outcome_effects()
    else:
        raise ValueError(f"group must be 'study' or 'outcome'. Got: {group}")

    y_pos = np.arange(len(table))[::-1]
    colors = MetaPoolPlotStyle.COLORS

    fig, ax = MetaPoolPlotStyle.create_figure(figsize=(8, _row_height(len(table))))

    ax.errorbar(
        table['mean'],
        y_pos,
        xerr=[table['mean'] - table['hdi_lower'],
              table['hdi_upper'] - table['mean']],
        fmt='o',
        color=colors['hierarchical'],
        capsize=3
    )
    baseline = model.baseline_effect()['mean']
    ax.axvline(baseline, color=colors['population'], linewidth=1.5,
               label=f'mu, design = 0 ({baseline:.2f})')
    ax.set_yticks(y_pos)
    ax.set_yticklabels(table['group'])
    MetaPoolPlotStyle.format_axis(
        ax,
        title=f'Posterior {group} effects',
        xlabel='Effect size (95% HDI)',
        legend=True
    )

    fig.tight_layout()
    return _finish(fig, output_path)


def plot_shrinkage(
    shrinkage: pd.DataFrame,
    output_path: Optional[str] = None
) -> plt.Figure:
    """
    Arrows from each observed effect to its posterior mean.

    Marker size grows with precision (1/se), so the least precise
    rows show the largest pull toward their group prediction.
    """
    colors = MetaPoolPlotStyle.COLORS
    fig, ax = MetaPoolPlotStyle.create_figure(figsize=MetaPoolPlotStyle.FIGSIZE_SQUARE)

    sizes = 20 + 200 * (1 / shrinkage['se']) / (1 / shrinkage['se']).max()

    ax.scatter(shrinkage['observed'], shrinkage['posterior_mean'],
               s=sizes, color=colors['hierarchical'], alpha=0.7,
               edgecolors='black', zorder=3, label='Row (size ∝ precision)')

    lo = min(shrinkage['observed'].min(), shrinkage['posterior_mean'].min())
    hi = max(shrinkage['observed'].max(), shrinkage['posterior_mean'].max())
    pad = 0.05 * (hi - lo + 1e-9)
    ax.plot([lo - pad, hi + pad], [lo - pad, hi + pad], color=colors['observed'],
            linestyle='--', linewidth=1, label='No pooling (y = x)')
    ax.axhline(shrinkage['group_prediction'].mean(), color=colors['population'],
               linewidth=1, alpha=0.7, label='Mean group prediction')

    MetaPoolPlotStyle.format_axis(
        ax,
        title='Shrinkage toward group predictions',
        xlabel='Observed effect size',
        ylabel='Posterior mean true effect',
        legend=True
    )

    fig.tight_layout()
    return _finish(fig, output_path)


def plot_design_effect(
    model: HierarchicalMetaModel,
    output_path: Optional[str] = None
) -> plt.Figure:
    """Posterior density of beta_design with a reference line at zero."""
    fig, ax = MetaPoolPlotStyle.create_figure()

    az.plot_posterior(
        model.trace_,
        var_names=['beta_design'],
        hdi_prob=0.95,
        ref_val=0,
        color=MetaPoolPlotStyle.COLORS['hierarchical'],
        ax=ax
    )
    ax.set_title('Design-type effect (beta_design)', fontweight='bold')

    fig.tight_layout()
    return _finish(fig, output_path)


def plot_model_comparison(
    pooled: PooledNormalModel,
    hierarchical: HierarchicalMetaModel,
    output_path: Optional[str] = None
) -> plt.Figure:
    """Overlaid posteriors of the overall mean effect from both models."""
    colors = MetaPoolPlotStyle.COLORS
    fig, ax = MetaPoolPlotStyle.create_figure()

    az.plot_kde(pooled.posterior_draws('mu'), ax=ax, label='Pooled normal',
                plot_kwargs={'color': colors['pooled']})
    az.plot_kde(hierarchical.overall_draws(), ax=ax,
                label='Hierarchical (design-averaged)',
                plot_kwargs={'color': colors['hierarchical']})
    ax.axvline(0, color='black', linestyle='--', linewidth=1, alpha=0.5)

    MetaPoolPlotStyle.format_axis(
        ax,
        title='Overall effect: pooled vs hierarchical',
        xlabel='Mean effect over all rows',
        ylabel='Posterior density',
        legend=True
    )

    fig.tight_layout()
    return _finish(fig, output_path)


def plot_ppc(
    model,
    num_pp_samples: int = 100,
    output_path: Optional[str] = None
) -> plt.Figure:
    """ArviZ posterior predictive check of the observed effect sizes."""
    fig, ax = MetaPoolPlotStyle.create_figure()

    az.plot_ppc(model.trace_, num_pp_samples=num_pp_samples,
                random_seed=model.random_seed, ax=ax)
    ax.set_title(f'Posterior predictive check ({model.name} model)',
                 fontweight='bold')

    fig.tight_layout()
    return _finish(fig, output_path)


# Apply style on import
MetaPoolPlotStyle.apply()
