"""
Repeated measures solver dispatch.

Public API:
    build_hypothesis_matrices(design, ...) -> [(effect, H), ...]
    estimate_moments(sample, design) -> MomentEstimate
    evaluate_statistics(hypothesis, mean, covariance, group_sizes) -> StatisticResult
    resample(sample, design, hypothesis, ...) -> ResamplingSolution
    rm_test(y, subject, within=..., between=..., ...) -> RMSolution
"""

from __future__ import annotations

import warnings
from typing import Any, Callable, Sequence

import numpy as np
from numpy.typing import NDArray

from pyrmstats.core.compute.timing import Timer
from pyrmstats.core.exceptions import ConfigurationError, NumericWarning
from pyrmstats.core.result import Result
from pyrmstats.core.validation import check_1d, check_array, check_labels
from pyrmstats.rm._common import (
    EffectTest,
    MomentEstimate,
    RMParams,
    ResamplingParams,
    StatisticResult,
)
from pyrmstats.rm._config import CIMethod, ResamplingConfig, ResamplingMethod
from pyrmstats.rm._descriptive import cell_table, marginal_means
from pyrmstats.rm._hypothesis import (
    OTHER_FACTOR_MODES,
    hypothesis_matrices,
    is_group_contrast,
)
from pyrmstats.rm._moments import estimate_moments_impl, moments_from_wide
from pyrmstats.rm._statistics import (
    SINGULAR_COVARIANCE_MESSAGE,
    covariance_is_singular,
    evaluate_statistics_impl,
    hypothesis_projection,
    hypothesis_rank,
    statistics_for_effect,
)
from pyrmstats.rm.backends.cpu import CPUResamplingBackend
from pyrmstats.rm.design import DesignDescriptor, ResamplingDesign, Sample
from pyrmstats.rm.solution import ResamplingSolution, RMSolution


def build_hypothesis_matrices(
    design: DesignDescriptor,
    *,
    other_factors: str = 'average',
) -> list[tuple[str, NDArray[np.floating[Any]]]]:
    """
    Hypothesis matrices for every effect declared on a design.

    Args:
        design: Factorial structure and declared effects
        other_factors: How factors outside an effect enter the Kronecker
            product: 'average' (J/k, marginal hypotheses) or 'identity'
            (I, conditional hypotheses)

    Returns:
        [(effect_name, H), ...], lowest order first. Each H is square with
        one row per cell, symmetric and idempotent.

    Examples:
        >>> design = DesignDescriptor.from_levels(between={'A': 2}, within={'B': 3})
        >>> [name for name, _ in build_hypothesis_matrices(design)]
        ['A', 'B', 'A:B']
    """
    return hypothesis_matrices(design, other_factors=other_factors)


def estimate_moments(sample: Sample, design: DesignDescriptor) -> MomentEstimate:
    """
    Cell means and their block-diagonal covariance.

    Args:
        sample: Long-format observations (see Sample.from_labels)
        design: Design the sample's cell indices refer to

    Returns:
        MomentEstimate with mean (n_cells,) and covariance (n_cells, n_cells)

    Raises:
        DataError: If subjects are unbalanced or a group has fewer than 2
            subjects
    """
    return estimate_moments_impl(sample, design)


def evaluate_statistics(
    hypothesis: Any,
    mean: Any,
    covariance: Any,
    group_sizes: Any,
) -> StatisticResult:
    """
    Wald-type and ANOVA-type statistics for one hypothesis.

    Pure function of its inputs. Issues a NumericWarning, and still returns
    the statistics, when the covariance is numerically singular.

    Args:
        hypothesis: (r, n_cells) hypothesis matrix
        mean: (n_cells,) cell means
        covariance: (n_cells, n_cells) covariance of the cell means
        group_sizes: Subjects per between-subject group

    Returns:
        StatisticResult with WTS, df, p-value and ATS, df1, df2, p-value
    """
    return evaluate_statistics_impl(hypothesis, mean, covariance, group_sizes)


def resample(
    sample: Sample,
    design: DesignDescriptor,
    hypothesis: Any = None,
    *,
    method: ResamplingMethod | str = 'Perm',
    iterations: int = 10000,
    seed: int | None = None,
    n_workers: int | None = None,
    alpha: float = 0.05,
    should_stop: Callable[[], bool] | None = None,
) -> ResamplingSolution:
    """
    Resampling distributions and p-values of WTS and ATS.

    Each resampled data set is evaluated against every hypothesis, so
    several effects share one run.

    Args:
        sample: Observed long-format data
        design: Design of the sample
        hypothesis: A single (r, n_cells) matrix, a list of (name, H)
            pairs, or None for all effects declared on the design
        method: 'Perm' (permutation), 'paramBS' (parametric bootstrap) or
            'WildBS' (wild bootstrap). Only the wild bootstrap resamples
            the ATS. Permutation only resamples hypotheses that compare
            between-subject groups; see ResamplingSolution.resampled.
        iterations: Number of repetitions
        seed: Root seed; the same seed gives the same distributions for
            any n_workers
        n_workers: Worker processes; None uses every CPU, 1 runs in-process
        alpha: Level of the reported WTS quantiles
        should_stop: Polled between chunks of repetitions; returning True
            raises ResamplingAborted

    Returns:
        ResamplingSolution

    Raises:
        ConfigurationError: For invalid options or hypothesis shapes
        DataError: For invalid samples
    """
    config = ResamplingConfig.create(
        method=method,
        iterations=iterations,
        alpha=alpha,
        n_workers=n_workers,
        seed=seed,
    )
    if hypothesis is None:
        hypotheses = hypothesis_matrices(design)
    else:
        hypotheses = _named_hypotheses(hypothesis)

    wide = sample.to_wide(design)
    resampling_design = ResamplingDesign.for_resampling(wide, hypotheses, config)
    result = CPUResamplingBackend().solve(resampling_design, should_stop=should_stop)
    return ResamplingSolution(_result=result)


def rm_test(
    y: Any,
    subject: Any,
    *,
    within: dict[str, Any],
    between: dict[str, Any] | None = None,
    effects: Sequence[str | Sequence[str]] | None = None,
    resampling: ResamplingMethod | str = 'Perm',
    iterations: int = 10000,
    alpha: float = 0.05,
    n_workers: int | None = None,
    seed: int | None = None,
    ci_method: CIMethod | str = 't-quantile',
    other_factors: str = 'average',
    should_stop: Callable[[], bool] | None = None,
) -> RMSolution:
    """
    Tests for repeated measures designs with WTS, ATS and resampling.

    Tests every main effect and interaction of the between- and
    within-subject factors with the Wald-type statistic (chi-square
    approximation) and the ANOVA-type statistic (F approximation), and
    adds resampling p-values from one run shared by all effects.
    Covariances may differ between groups and are left unstructured.

    Args:
        y: Response variable (1D numeric, long format)
        subject: Subject identifiers (1D, same length as y). Subjects in
            different between-subject groups need distinct labels.
        within: {factor_name: 1D labels} for within-subject factors
        between: {factor_name: 1D labels} for between-subject factors
        effects: None for the full factorial, or all main effects only
        resampling: 'Perm', 'paramBS' or 'WildBS'
        iterations: Number of resampling repetitions
        alpha: Significance level for confidence intervals
        n_workers: Worker processes; None uses every CPU
        seed: Root seed for resampling
        ci_method: 't-quantile' or 'resampling' (sqrt of the (1-alpha)
            quantile of the resampled WTS of the last effect)
        other_factors: 'average' or 'identity', see build_hypothesis_matrices
        should_stop: Polled between chunks of repetitions

    Returns:
        RMSolution

    Raises:
        ConfigurationError: For invalid options or effect declarations, or
            for resampling intervals when permutation tests no effect
        DataError: For missing values, unbalanced subjects or groups with
            fewer than 2 subjects
        ResamplingAborted: If should_stop() returned True

    Examples:
        >>> result = rm_test(y, subject, within={'time': time},
        ...                  between={'group': group}, seed=1)
        >>> print(result.summary())
        >>> result.wts['group']   # (statistic, df, p-value)
    """
    timer = Timer()
    timer.start()
    warnings_list: list[str] = []

    config = ResamplingConfig.create(
        method=resampling,
        iterations=iterations,
        alpha=alpha,
        n_workers=n_workers,
        seed=seed,
        ci_method=ci_method,
    )
    if other_factors not in OTHER_FACTOR_MODES:
        raise ConfigurationError(
            f"other_factors must be 'average' or 'identity', got {other_factors!r}",
            option='other_factors',
            value=other_factors,
        )

    with timer.section('validation'):
        y_arr = check_array(y, "y")
        check_1d(y_arr, "y")
        n = len(y_arr)
        if not within and not between:
            raise ConfigurationError("At least one factor is required")
        between_labels = {
            name: check_labels(lab, name, n) for name, lab in (between or {}).items()
        }
        within_labels = {
            name: check_labels(lab, name, n) for name, lab in (within or {}).items()
        }
        design = DesignDescriptor.from_levels(
            between={name: _level_order(lab) for name, lab in between_labels.items()},
            within={name: _level_order(lab) for name, lab in within_labels.items()},
            effects=effects,
        )
        hypotheses = hypothesis_matrices(design, other_factors=other_factors)
        if (
            config.method is ResamplingMethod.PERMUTATION
            and config.ci_method is CIMethod.RESAMPLING
            and not any(
                is_group_contrast(H, design.n_groups, design.n_within_cells)
                for _, H in hypotheses
            )
        ):
            raise ConfigurationError(
                "ci_method='resampling' with permutation needs an effect that "
                "compares between-subject groups; use 'paramBS' or 'WildBS'",
                option='ci_method',
                value=config.ci_method.value,
            )
        sample = Sample.from_labels(
            design, y_arr, subject, {**between_labels, **within_labels},
        )
        wide = sample.to_wide(design)

    with timer.section('moments'):
        moments = moments_from_wide(wide)
        singular = covariance_is_singular(moments.covariance)
        if singular:
            warnings.warn(SINGULAR_COVARIANCE_MESSAGE, NumericWarning, stacklevel=2)
            warnings_list.append(SINGULAR_COVARIANCE_MESSAGE)

    with timer.section('statistics'):
        statistics = [
            statistics_for_effect(
                H,
                hypothesis_projection(H),
                hypothesis_rank(H),
                moments.mean,
                moments.covariance,
                moments.group_sizes,
                singular=singular,
            )
            for _, H in hypotheses
        ]

    with timer.section('resampling'):
        backend = CPUResamplingBackend()
        resampled = backend.solve(
            ResamplingDesign.for_resampling(wide, hypotheses, config),
            should_stop=should_stop,
        )
        warnings_list.extend(resampled.warnings)
    resampling_solution = ResamplingSolution(_result=resampled)
    rp = resampled.params

    with timer.section('descriptive'):
        quantile = (
            _last_resampled_quantile(rp)
            if config.ci_method is CIMethod.RESAMPLING else None
        )
        descriptive = cell_table(design, moments, config.alpha, quantile)
        marginals = marginal_means(design, sample, config.alpha)

    tests = tuple(
        EffectTest(
            effect=name,
            statistic=stat,
            resampling_wts_p_value=(
                float(rp.wts_p_values[j]) if rp.resampled[j] else None
            ),
            resampling_ats_p_value=(
                None if rp.ats_p_values is None else float(rp.ats_p_values[j])
            ),
        )
        for j, ((name, _), stat) in enumerate(zip(hypotheses, statistics))
    )

    timer.stop()

    params = RMParams(
        tests=tests,
        descriptive=descriptive,
        marginal_means=marginals,
        mean=moments.mean,
        covariance=moments.covariance,
        factor_names=design.factor_names,
        within_factors=tuple(f.name for f in design.within_factors),
        between_factors=tuple(f.name for f in design.between_factors),
        group_sizes=moments.group_sizes,
        n_subjects=moments.n_total,
        n_obs=sample.n_obs,
        resampling=config.method.value,
        iterations=config.iterations,
        alpha=config.alpha,
        ci_method=config.ci_method.value,
        singular_covariance=singular,
    )

    result = Result(
        params=params,
        info={
            'cells': design.cells,
            'group_labels': design.group_labels,
            'other_factors': other_factors,
            'seed': config.seed,
            'n_workers': config.n_workers,
            'n_degenerate': rp.n_degenerate,
        },
        timing=timer.result(),
        backend_name='cpu',
        warnings=tuple(warnings_list),
    )
    return RMSolution(_result=result, _resampling=resampling_solution)


def _level_order(labels: NDArray) -> list[str]:
    """Sorted unique labels; numeric labels sort by value."""
    unique = set(labels.tolist())
    try:
        return sorted(unique, key=float)
    except ValueError:
        return sorted(unique)


def _last_resampled_quantile(rp: ResamplingParams) -> float:
    """WTS quantile of the highest-order effect that has a resampling distribution."""
    j = int(np.flatnonzero(rp.resampled)[-1])
    return float(rp.wts_quantiles[j])


def _named_hypotheses(hypothesis: Any) -> list[tuple[str, Any]]:
    """Normalize a matrix or a sequence of (name, matrix) pairs."""
    if isinstance(hypothesis, np.ndarray):
        return [('H', hypothesis)]
    items = list(hypothesis)
    if items and all(
        isinstance(item, tuple) and len(item) == 2 and isinstance(item[0], str)
        for item in items
    ):
        return items
    try:
        H = np.asarray(items, dtype=np.float64)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(
            "hypothesis must be a matrix or a list of (name, matrix) pairs",
            option='hypothesis',
        ) from e
    if H.ndim != 2:
        raise ConfigurationError(
            f"hypothesis must be a matrix or a list of (name, matrix) pairs, "
            f"got an array of shape {H.shape}",
            option='hypothesis',
            value=H.shape,
        )
    return [('H', H)]
