"""
Repeated measures tests with Wald-type and ANOVA-type statistics.

Public API:
    rm_test(y, subject, within=..., ...) -> RMSolution      # end-to-end analysis
    build_hypothesis_matrices(design) -> [(effect, H), ...]
    estimate_moments(sample, design) -> MomentEstimate
    evaluate_statistics(H, mean, covariance, group_sizes) -> StatisticResult
    resample(sample, design, H, ...) -> ResamplingSolution

Design objects:
    DesignDescriptor.from_levels(between=..., within=..., effects=...)
    Sample.from_labels(design, y, subject, labels)
    ResamplingConfig.create(method=..., iterations=..., ...)
"""

from pyrmstats.rm.solvers import (
    build_hypothesis_matrices,
    estimate_moments,
    evaluate_statistics,
    resample,
    rm_test,
)
from pyrmstats.rm.solution import ResamplingSolution, RMSolution
from pyrmstats.rm.design import DesignDescriptor, Factor, Sample
from pyrmstats.rm._common import MomentEstimate, StatisticResult
from pyrmstats.rm._config import CIMethod, ResamplingConfig, ResamplingMethod

__all__ = [
    "rm_test",
    "build_hypothesis_matrices",
    "estimate_moments",
    "evaluate_statistics",
    "resample",
    "RMSolution",
    "ResamplingSolution",
    "DesignDescriptor",
    "Factor",
    "Sample",
    "MomentEstimate",
    "StatisticResult",
    "CIMethod",
    "ResamplingConfig",
    "ResamplingMethod",
]
