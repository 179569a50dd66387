"""
Common data types for repeated measures tests.

Contains the frozen parameter payloads that go inside Result[P] envelopes
and the intermediate estimates passed between the moment estimator, the
statistic evaluator and the resampling engine. Each payload is a pure data
container with no computation.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import numpy as np
from numpy.typing import NDArray


@dataclass(frozen=True)
class MomentEstimate:
    """
    Cell means and the covariance of the estimated cell means.

    Attributes:
        mean: (n_cells,) cell means in canonical cell order
        covariance: (n_cells, n_cells) block-diagonal covariance of `mean`;
            block g is the subject-level covariance of group g divided by n_g
        group_covariances: per-group (t, t) subject-level covariances
            (not divided by the group size)
        group_sizes: (n_groups,) number of subjects per between-subject group
    """
    mean: NDArray[np.floating[Any]]
    covariance: NDArray[np.floating[Any]]
    group_covariances: tuple[NDArray[np.floating[Any]], ...]
    group_sizes: NDArray[np.integer[Any]]

    @property
    def n_total(self) -> int:
        """Total number of subjects."""
        return int(np.sum(self.group_sizes))


@dataclass(frozen=True)
class StatisticResult:
    """
    WTS and ATS for one hypothesis matrix.

    The WTS is referred to a chi-square distribution with `wts_df`
    degrees of freedom; the ATS to F(`ats_df1`, `ats_df2`). `ats_df2`
    is inf when its trace estimator vanishes.
    """
    wts: float
    wts_df: int
    wts_p_value: float
    ats: float
    ats_df1: float
    ats_df2: float
    ats_p_value: float
    singular_covariance: bool = False


@dataclass(frozen=True)
class ResamplingParams:
    """
    Parameter payload for a resampling run.

    Distributions have one row per repetition and one column per effect.
    Rows of degenerate repetitions hold NaN. ATS fields are None unless the
    method resamples the ATS (wild bootstrap only).

    `resampled` flags the effects the method can test. Permutation only
    tests effects that compare between-subject groups; the distribution
    columns, p-values and quantiles of the other effects are NaN.

    p-values use the add-one correction over valid repetitions:
    (1 + #{T* >= T_obs}) / (1 + n_valid).
    """
    effects: tuple[str, ...]
    method: str
    iterations: int
    alpha: float
    observed_wts: NDArray[np.floating[Any]]               # (k,)
    observed_ats: NDArray[np.floating[Any]]               # (k,)
    wts_distribution: NDArray[np.floating[Any]]           # (iterations, k)
    ats_distribution: NDArray[np.floating[Any]] | None    # (iterations, k)
    wts_p_values: NDArray[np.floating[Any]]               # (k,)
    ats_p_values: NDArray[np.floating[Any]] | None        # (k,)
    wts_quantiles: NDArray[np.floating[Any]]              # (k,) (1-alpha)-quantiles
    resampled: NDArray[np.bool_]                          # (k,)
    n_degenerate: int


@dataclass(frozen=True)
class DescriptiveRow:
    """One cell of the descriptive table."""
    levels: tuple[str, ...]
    n: int
    mean: float
    ci_lower: float
    ci_upper: float


@dataclass(frozen=True)
class MarginalMean:
    """Pooled summary of every response observed at one factor level."""
    factor: str
    level: str
    n: int
    mean: float
    variance: float
    ci_lower: float
    ci_upper: float


@dataclass(frozen=True)
class EffectTest:
    """Asymptotic and resampling results for one tested effect."""
    effect: str
    statistic: StatisticResult
    resampling_wts_p_value: float | None
    resampling_ats_p_value: float | None


@dataclass(frozen=True)
class RMParams:
    """
    Parameter payload for rm_test().

    Includes descriptive statistics, the covariance estimate and one
    EffectTest per tested effect.
    """
    tests: tuple[EffectTest, ...]
    descriptive: tuple[DescriptiveRow, ...]
    marginal_means: tuple[MarginalMean, ...]
    mean: NDArray[np.floating[Any]]
    covariance: NDArray[np.floating[Any]]
    factor_names: tuple[str, ...]
    within_factors: tuple[str, ...]
    between_factors: tuple[str, ...]
    group_sizes: NDArray[np.integer[Any]]
    n_subjects: int
    n_obs: int
    resampling: str
    iterations: int
    alpha: float
    ci_method: str
    singular_covariance: bool
