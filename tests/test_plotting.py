"""
Smoke tests for the figure functions.

Each figure must render from a fitted model and be written to disk when
an output path is given.
"""

import matplotlib.pyplot as plt
import numpy as np
import pytest
from scipy import stats

from metapool import plotting
from metapool.analysis import compute_shrinkage


@pytest.fixture(autouse=True)
def close_figures():
    yield
    plt.close('all')


def test_style_constants():
    assert plotting.MetaPoolPlotStyle.DPI == 300
    assert 'hierarchical' in plotting.MetaPoolPlotStyle.COLORS
    assert plt.rcParams['savefig.dpi'] == plotting.MetaPoolPlotStyle.DPI


def test_plot_effect_sizes_saves(effect_data, tmp_path):
    path = tmp_path / "figures" / "effect_sizes.png"
    fig = plotting.plot_effect_sizes(effect_data, output_path=str(path))

    assert isinstance(fig, plt.Figure)
    assert path.exists()
    assert len(fig.axes[0].get_yticklabels()) == effect_data.n_obs


def test_plot_pooled_posterior(fitted_pooled):
    fig = plotting.plot_pooled_posterior(fitted_pooled)
    assert len(fig.axes) == 2


@pytest.mark.parametrize("fixture", ['fitted_pooled', 'fitted_hierarchical'])
def test_plot_trace(fixture, request):
    model = request.getfixturevalue(fixture)
    fig = plotting.plot_trace(model)
    assert isinstance(fig, plt.Figure)


def test_plot_forest(fitted_hierarchical):
    fig = plotting.plot_forest(fitted_hierarchical)
    labels = [t.get_text() for t in fig.axes[0].get_legend().get_texts()]
    assert 'Observed' in labels


def _observed_bar_widths(fig):
    """Horizontal extent of each observed-effect error bar."""
    container = fig.axes[0].containers[0]
    segments = container.lines[2][0].get_segments()
    return np.array([seg[:, 0].max() - seg[:, 0].min() for seg in segments])


def test_plot_forest_uses_ci_level(fitted_hierarchical):
    wide = _observed_bar_widths(plotting.plot_forest(fitted_hierarchical))
    narrow = _observed_bar_widths(
        plotting.plot_forest(fitted_hierarchical, ci_level=0.5)
    )

    expected_ratio = stats.norm.ppf(0.75) / stats.norm.ppf(0.975)
    np.testing.assert_allclose(narrow / wide, expected_ratio, rtol=1e-6)


@pytest.mark.parametrize("group", ['study', 'outcome'])
def test_plot_group_effects(fitted_hierarchical, group):
    fig = plotting.plot_group_effects(fitted_hierarchical, group=group)
    assert isinstance(fig, plt.Figure)


def test_plot_group_effects_bad_group(fitted_hierarchical):
    with pytest.raises(ValueError):
        plotting.plot_group_effects(fitted_hierarchical, group='design')


def test_plot_shrinkage(fitted_hierarchical):
    fig = plotting.plot_shrinkage(compute_shrinkage(fitted_hierarchical))
    assert isinstance(fig, plt.Figure)


def test_plot_design_effect(fitted_hierarchical):
    fig = plotting.plot_design_effect(fitted_hierarchical)
    assert isinstance(fig, plt.Figure)


def test_plot_model_comparison(fitted_pooled, fitted_hierarchical):
    fig = plotting.plot_model_comparison(fitted_pooled, fitted_hierarchical)
    assert len(fig.axes[0].get_lines()) >= 2
    labels = [t.get_text() for t in fig.axes[0].get_legend().get_texts()]
    assert 'Hierarchical (design-averaged)' in labels


def test_plot_ppc(fitted_hierarchical):
    fig = plotting.plot_ppc(fitted_hierarchical, num_pp_samples=20)
    assert isinstance(fig, plt.Figure)
