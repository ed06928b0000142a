"""
MetaPool: Bayesian Hierarchical Meta-Analysis of Effect Sizes

Pool effect sizes across studies and outcomes with a hierarchical
measurement-error model, and contrast it with a naive pooled normal model.
Sampling is done with PyMC (NUTS); diagnostics and summaries with ArviZ.
"""

from .version import __version__, __author__, __description__
from .data import (
    EffectSizeData,
    load_effect_sizes,
    prepare_effect_sizes,
    simulate_effect_sizes,
    standard_error_from_ci,
)
from .models import HierarchicalMetaModel, PooledNormalModel
from .pipeline import MetaAnalysis

__all__ = [
    'MetaAnalysis',
    'EffectSizeData',
    'HierarchicalMetaModel',
    'PooledNormalModel',
    'load_effect_sizes',
    'prepare_effect_sizes',
    'simulate_effect_sizes',
    'standard_error_from_ci',
    '__version__',
    '__author__',
    '__description__',
]
