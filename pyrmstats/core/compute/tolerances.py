"""
Numerical thresholds shared by the statistic evaluator and the
resampling engine.

Used by the solvers, the test suite, and the singularity diagnostics.
"""

from dataclasses import dataclass

import numpy as np


@dataclass(frozen=True)
class ToleranceTier:
    """Tolerance specification for numerical comparison."""
    rtol: float
    atol: float
    name: str
    description: str


# Reference double precision: pure functions must reproduce themselves
CPU_FP64 = ToleranceTier(
    rtol=1e-10,
    atol=1e-12,
    name='cpu_fp64',
    description='CPU double precision',
)

# Quantities built from a generalized inverse of a rank-deficient matrix
CPU_FP64_RANK_DEFICIENT = ToleranceTier(
    rtol=1e-6,
    atol=1e-8,
    name='cpu_fp64_rank_deficient',
    description='CPU double precision, generalized inverse of a singular matrix',
)

# Relative eigenvalue cutoff for the generalized inverse. Same cutoff as
# MASS::ginv in R (sqrt of machine epsilon).
GINV_RTOL = float(np.sqrt(np.finfo(np.float64).eps))

# A covariance estimate whose smallest/largest eigenvalue ratio falls below
# this is reported as singular.
SINGULARITY_THRESHOLD = 1e-10

# Warn when more than this fraction of resampling repetitions is degenerate.
DEGENERATE_WARN_FRACTION = 0.01


def is_singular(eigenvalues: np.ndarray) -> bool:
    """True if a PSD matrix with these eigenvalues is numerically singular."""
    top = float(np.max(np.abs(eigenvalues))) if eigenvalues.size else 0.0
    if top == 0.0:
        return True
    return float(np.min(eigenvalues)) <= SINGULARITY_THRESHOLD * top
