"""Version information for MetaPool."""

__version__ = "0.1.0"
__author__ = "MetaPool Contributors"
__email__ = "metapool@users.noreply.github.com"
__description__ = "Bayesian hierarchical meta-analysis of effect sizes with PyMC"
__url__ = "https://github.com/metapool/metapool"
