"""
Effect Size Data for Bayesian Meta-Analysis

This module loads and validates the flat table of study effect sizes used by
the meta-analysis models: one row per (study, outcome) pair with a binary
design-type indicator, the observed effect size and its standard error.

Standard errors are derived from reported confidence bounds when the source
table does not carry them directly.

"""

import warnings
from pathlib import Path
from typing import Dict, List, Optional, Union

import numpy as np
import pandas as pd
from scipy import stats


# Canonical column names used throughout the package
CANONICAL_COLUMNS = ['study', 'outcome', 'design', 'effect_size', 'se']

# Raw column name -> canonical column name
DEFAULT_COLUMN_MAP = {
    'study': 'study',
    'outcome': 'outcome',
    'rct': 'design',
    'd': 'effect_size',
}

DEFAULT_OUTCOMES = [
    'parenting_behavior',
    'child_behavior',
    'parent_stress',
    'parent_knowledge',
    'child_wellbeing',
]


def standard_error_from_ci(
    lower: Union[np.ndarray, pd.Series, float],
    upper: Union[np.ndarray, pd.Series, float],
    level: float = 0.95
) -> np.ndarray:
    """
    Derive standard errors from symmetric confidence bounds.

    Parameters
    ----------
    lower : array-like
        Lower confidence bounds
    upper : array-like
        Upper confidence bounds
    level : float, optional (default=0.95)
        Confidence level of the reported interval

    Returns
    -------
    se : np.ndarray
        Standard errors, (upper - lower) / (2 * z) with z the normal
        quantile for the given level

    Raises
    ------
    ValueError
        If level is not in (0, 1) or any upper bound is below its lower bound
    """
    if not 0 < level < 1:
        raise ValueError(f"level must be in (0, 1). Got: {level}")

    lower = np.asarray(lower, dtype=np.float64)
    upper = np.asarray(upper, dtype=np.float64)

    if np.any(upper < lower):
        n_bad = int(np.sum(upper < lower))
        raise ValueError(
            f"Upper confidence bound below lower bound in {n_bad} row(s)"
        )

    z = stats.norm.ppf((1 + level) / 2)
    return (upper - lower) / (2 * z)


class EffectSizeData:
    """
    Validated effect size table ready for the meta-analysis models.

    Parameters
    ----------
    df : pd.DataFrame
        Table with the canonical columns 'study', 'outcome', 'design',
        'effect_size' and 'se'. Extra columns are kept.

    Attributes
    ----------
    df : pd.DataFrame
        Validated table with added integer codes 'study_idx', 'outcome_idx'
    studies : List[str]
        Study labels in code order
    outcomes : List[str]
        Outcome labels in code order

    Examples
    --------
    >>> data = load_effect_sizes('data/parenting_effects.csv')
    >>> data.n_studies, data.n_outcomes
    (14, 5)
    >>> inputs = data.to_model_inputs()
    """

    def __init__(self, df: pd.DataFrame):
        self.df = self._validate(df)

        study_codes, studies = pd.factorize(self.df['study'], sort=True)
        outcome_codes, outcomes = pd.factorize(self.df['outcome'], sort=True)

        self.df['study_idx'] = study_codes.astype(np.int64)
        self.df['outcome_idx'] = outcome_codes.astype(np.int64)
        self.studies = [str(s) for s in studies]
        self.outcomes = [str(o) for o in outcomes]

        if self.n_studies < 3:
            warnings.warn(
                f"Only {self.n_studies} studies provided. "
                "Between-study variation is weakly identified with fewer than 3."
            )

    @classmethod
    def from_frame(cls, df: pd.DataFrame) -> "EffectSizeData":
        """Build from a DataFrame that already uses the canonical columns."""
        return cls(df)

    @staticmethod
    def _validate(df: pd.DataFrame) -> pd.DataFrame:
        if not isinstance(df, pd.DataFrame):
            raise TypeError(
                f"Expected a pandas DataFrame. Got: {type(df).__name__}"
            )

        if len(df) == 0:
            raise ValueError("Effect size table is empty")

        for col in CANONICAL_COLUMNS:
            if col not in df.columns:
                raise ValueError(f"Effect size table missing column '{col}'")

        df = df.copy().reset_index(drop=True)

        for col in ['study', 'outcome', 'design']:
            if df[col].isna().any():
                n_missing = int(df[col].isna().sum())
                raise ValueError(
                    f"Missing values found in '{col}' ({n_missing} row(s))"
                )

        if df['effect_size'].isna().any():
            raise ValueError("NaN values found in 'effect_size'")
        if df['se'].isna().any():
            raise ValueError("NaN values found in 'se'")

        df['effect_size'] = df['effect_size'].astype(np.float64)
        df['se'] = df['se'].astype(np.float64)

        if (df['se'] <= 0).any():
            raise ValueError(
                f"Standard errors must be positive. "
                f"Got minimum se = {df['se'].min():.4f}"
            )

        design_values = set(pd.unique(df['design']))
        if not design_values <= {0, 1}:
            raise ValueError(
                f"'design' must be binary (0/1). Got unique values: "
                f"{sorted(design_values)}"
            )
        df['design'] = df['design'].astype(np.int64)

        return df

    @property
    def n_obs(self) -> int:
        return len(self.df)

    @property
    def n_studies(self) -> int:
        return len(self.studies)

    @property
    def n_outcomes(self) -> int:
        return len(self.outcomes)

    def to_model_inputs(self) -> Dict[str, object]:
        """
        Arrays and coordinates consumed by the PyMC models.

        Returns
        -------
        inputs : Dict
            - 'y': observed effect sizes, shape (n_obs,)
            - 'se': standard errors, shape (n_obs,)
            - 'design': design indicator, shape (n_obs,)
            - 'study_idx': study code per row, shape (n_obs,)
            - 'outcome_idx': outcome code per row, shape (n_obs,)
            - 'coords': dict with 'study', 'outcome' and 'obs' labels
        """
        return {
            'y': self.df['effect_size'].to_numpy(dtype=np.float64),
            'se': self.df['se'].to_numpy(dtype=np.float64),
            'design': self.df['design'].to_numpy(dtype=np.float64),
            'study_idx': self.df['study_idx'].to_numpy(dtype=np.int64),
            'outcome_idx': self.df['outcome_idx'].to_numpy(dtype=np.int64),
            'coords': {
                'study': self.studies,
                'outcome': self.outcomes,
                'obs': self.row_labels(),
            },
        }

    def row_labels(self) -> List[str]:
        """One unique 'study: outcome' label per row."""
        labels = []
        seen = {}
        for s, o in zip(self.df['study'], self.df['outcome']):
            label = f"{s}: {o}"
            seen[label] = seen.get(label, 0) + 1
            if seen[label] > 1:
                # Repeated study/outcome pair (e.g. several measures)
                label = f"{label} ({seen[label]})"
            labels.append(label)
        return labels

    def summary(self, by: str = 'study') -> pd.DataFrame:
        """
        Count, mean effect and mean standard error per study or outcome.

        Parameters
        ----------
        by : str, optional (default='study')
            'study' or 'outcome'
        """
        if by not in ('study', 'outcome'):
            raise ValueError(f"by must be 'study' or 'outcome'. Got: {by}")

        return (
            self.df.groupby(by)
            .agg(
                n=('effect_size', 'size'),
                mean_effect=('effect_size', 'mean'),
                mean_se=('se', 'mean'),
                design=('design', 'max'),
            )
            .reset_index()
        )

    def __len__(self) -> int:
        return self.n_obs

    def __repr__(self) -> str:
        return (
            f"EffectSizeData(n_obs={self.n_obs}, n_studies={self.n_studies}, "
            f"n_outcomes={self.n_outcomes})"
        )


def prepare_effect_sizes(
    raw: pd.DataFrame,
    column_map: Optional[Dict[str, str]] = None,
    ci_level: float = 0.95
) -> EffectSizeData:
    """
    Rename raw columns and derive standard errors, then validate.

    Parameters
    ----------
    raw : pd.DataFrame
        Raw effect size table
    column_map : Dict[str, str], optional
        Raw name -> canonical name. Defaults to DEFAULT_COLUMN_MAP
    ci_level : float, optional (default=0.95)
        Level of the reported confidence bounds

    Returns
    -------
    data : EffectSizeData
    """
    if column_map is None:
        column_map = DEFAULT_COLUMN_MAP

    df = raw.rename(columns=column_map)

    if 'se' not in df.columns:
        if 'ci_lower' not in df.columns or 'ci_upper' not in df.columns:
            raise ValueError(
                "Effect size table needs either an 'se' column or "
                "'ci_lower' and 'ci_upper' columns"
            )
        df['se'] = standard_error_from_ci(
            df['ci_lower'], df['ci_upper'], level=ci_level
        )

    return EffectSizeData(df)


def load_effect_sizes(
    filepath: Union[str, Path],
    column_map: Optional[Dict[str, str]] = None,
    ci_level: float = 0.95,
    verbose: bool = True
) -> EffectSizeData:
    """
    Load an effect size CSV file.

    Parameters
    ----------
    filepath : str or Path
        Path to CSV file
    column_map : Dict[str, str], optional
        Raw name -> canonical name. Defaults to DEFAULT_COLUMN_MAP
    ci_level : float, optional (default=0.95)
        Level of the reported confidence bounds
    verbose : bool, optional (default=True)
        If True, print a short description of the loaded table

    Returns
    -------
    data : EffectSizeData

    Raises
    ------
    FileNotFoundError
        If filepath doesn't exist
    """
    filepath = Path(filepath)

    if not filepath.exists():
        raise FileNotFoundError(f"Effect size file not found: {filepath}")

    raw = pd.read_csv(filepath)
    data = prepare_effect_sizes(raw, column_map=column_map, ci_level=ci_level)

    if verbose:
        print(f"✓ Loaded effect sizes from {filepath}")
        print(f"  Rows: {data.n_obs}")
        print(f"  Studies: {data.n_studies}")
        print(f"  Outcomes: {data.n_outcomes}")
        print(f"  Effect size range: [{data.df['effect_size'].min():.3f}, "
              f"{data.df['effect_size'].max():.3f}]")

    return data


def simulate_effect_sizes(
    n_studies: int = 12,
    n_outcomes: int = 4,
    mu: float = 0.3,
    beta_design: float = -0.1,
    sigma_study: float = 0.15,
    sigma_outcome: float = 0.1,
    sigma_resid: float = 0.05,
    ci_level: float = 0.95,
    random_seed: int = 42
) -> pd.DataFrame:
    """
    Simulate a raw effect size table from the hierarchical generative model.

    Each study uses a single design type and reports a random non-empty
    subset of outcomes. Observed effects are true effects plus sampling
    noise with standard errors drawn from Uniform(0.08, 0.35).

    Parameters
    ----------
    n_studies : int, optional (default=12)
        Number of studies
    n_outcomes : int, optional (default=4)
        Number of distinct outcomes
    mu : float
        Grand mean effect for design == 0
    beta_design : float
        Shift in true effect for design == 1
    sigma_study, sigma_outcome, sigma_resid : float
        Standard deviations of study, outcome and residual deviations
    ci_level : float, optional (default=0.95)
        Level of the reported confidence bounds
    random_seed : int, optional (default=42)
        Random seed for reproducibility

    Returns
    -------
    raw : pd.DataFrame
        Columns 'study', 'outcome', 'rct', 'd', 'ci_lower', 'ci_upper'
    """
    if n_studies < 1 or n_outcomes < 1:
        raise ValueError(
            f"n_studies and n_outcomes must be positive. "
            f"Got: {n_studies}, {n_outcomes}"
        )

    rng = np.random.default_rng(random_seed)

    if n_outcomes <= len(DEFAULT_OUTCOMES):
        outcome_names = DEFAULT_OUTCOMES[:n_outcomes]
    else:
        outcome_names = [f"outcome_{k + 1}" for k in range(n_outcomes)]

    u_study = rng.normal(0, sigma_study, size=n_studies)
    u_outcome = rng.normal(0, sigma_outcome, size=n_outcomes)
    design = rng.integers(0, 2, size=n_studies)
    z = stats.norm.ppf((1 + ci_level) / 2)

    rows = []
    for j in range(n_studies):
        n_reported = rng.integers(1, n_outcomes + 1)
        reported = np.sort(rng.choice(n_outcomes, size=n_reported, replace=False))

        for k in reported:
            theta = (
                mu
                + beta_design * design[j]
                + u_study[j]
                + u_outcome[k]
                + rng.normal(0, sigma_resid)
            )
            se = rng.uniform(0.08, 0.35)
            d = rng.normal(theta, se)
            rows.append({
                'study': f"Study {j + 1:02d}",
                'outcome': outcome_names[k],
                'rct': int(design[j]),
                'd': d,
                'ci_lower': d - z * se,
                'ci_upper': d + z * se,
            })

    return pd.DataFrame(rows)
