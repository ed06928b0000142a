"""Bayesian meta-analysis models"""

from .base import BayesianMetaModel
from .pooled import PooledNormalModel
from .hierarchical import HierarchicalMetaModel

__all__ = ['BayesianMetaModel', 'PooledNormalModel', 'HierarchicalMetaModel']
