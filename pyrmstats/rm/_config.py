"""
Resampling configuration.

ResamplingMethod and CIMethod replace string dispatch on method names;
ResamplingConfig bundles every option the resampling engine reads.
All validation happens in ResamplingConfig.create(), before any data is
touched.
"""

from __future__ import annotations

import numbers
import os
from dataclasses import dataclass
from enum import Enum

from pyrmstats.core.exceptions import ConfigurationError


class ResamplingMethod(str, Enum):
    """Data perturbation scheme used to build the null distribution."""
    PERMUTATION = "Perm"
    PARAMETRIC_BOOTSTRAP = "paramBS"
    WILD_BOOTSTRAP = "WildBS"

    @property
    def resamples_ats(self) -> bool:
        """Only the wild bootstrap is valid for the ATS."""
        return self is ResamplingMethod.WILD_BOOTSTRAP

    @classmethod
    def parse(cls, value: ResamplingMethod | str) -> ResamplingMethod:
        if isinstance(value, cls):
            return value
        for member in cls:
            if value == member.value:
                return member
        raise ConfigurationError(
            f"Resampling must be one of 'Perm', 'paramBS' or 'WildBS', got {value!r}",
            option='resampling',
            value=value,
        )


class CIMethod(str, Enum):
    """Quantile used for the descriptive confidence intervals."""
    T_QUANTILE = "t-quantile"
    RESAMPLING = "resampling"

    @classmethod
    def parse(cls, value: CIMethod | str) -> CIMethod:
        if isinstance(value, cls):
            return value
        for member in cls:
            if value == member.value:
                return member
        raise ConfigurationError(
            f"CI method must be one of 't-quantile' or 'resampling', got {value!r}",
            option='ci_method',
            value=value,
        )


@dataclass(frozen=True)
class ResamplingConfig:
    """
    Frozen resampling options.

    Attributes:
        method: Perturbation scheme.
        iterations: Number of independent repetitions.
        alpha: Significance level for quantiles and confidence intervals.
        n_workers: Number of worker processes; 1 runs in-process.
        seed: Root seed. None draws fresh OS entropy.
        ci_method: Quantile used for descriptive confidence intervals.
    """
    method: ResamplingMethod
    iterations: int
    alpha: float
    n_workers: int
    seed: int | None
    ci_method: CIMethod

    @classmethod
    def create(
        cls,
        method: ResamplingMethod | str = ResamplingMethod.PERMUTATION,
        iterations: int = 10000,
        alpha: float = 0.05,
        n_workers: int | None = None,
        seed: int | None = None,
        ci_method: CIMethod | str = CIMethod.T_QUANTILE,
    ) -> ResamplingConfig:
        """
        Create a resampling configuration with validation.

        Raises:
            ConfigurationError: If any option is invalid.
        """
        method_enum = ResamplingMethod.parse(method)
        ci_enum = CIMethod.parse(ci_method)

        if isinstance(iterations, bool) or not isinstance(iterations, numbers.Integral) or iterations < 1:
            raise ConfigurationError(
                f"iterations must be a positive integer, got {iterations!r}",
                option='iterations',
                value=iterations,
            )

        if not 0.0 < alpha < 1.0:
            raise ConfigurationError(
                f"alpha must lie in (0, 1), got {alpha!r}",
                option='alpha',
                value=alpha,
            )

        if n_workers is None:
            n_workers = os.cpu_count() or 1
        elif isinstance(n_workers, bool) or not isinstance(n_workers, numbers.Integral) or n_workers < 1:
            raise ConfigurationError(
                f"n_workers must be a positive integer or None, got {n_workers!r}",
                option='n_workers',
                value=n_workers,
            )

        if seed is not None and (isinstance(seed, bool) or not isinstance(seed, numbers.Integral) or seed < 0):
            raise ConfigurationError(
                f"seed must be a non-negative integer or None, got {seed!r}",
                option='seed',
                value=seed,
            )

        return cls(
            method=method_enum,
            iterations=int(iterations),
            alpha=float(alpha),
            n_workers=int(n_workers),
            seed=None if seed is None else int(seed),
            ci_method=ci_enum,
        )
