"""
Cell means and covariance estimation.

Between-subject groups are independent and each subject contributes one
vector of repeated measurements, so the covariance of the vector of cell
means is block diagonal with one (t x t) block per group:

    Cov(mean_g) = S_g / n_g

where S_g is the unbiased covariance of the subject vectors in group g.
Designs without within-subject factors (t = 1) and designs without
between-subject factors (one group) are the same computation.

The estimate may be singular (t > n_g, or collinear measurements); this
module does not check for it.
"""

from __future__ import annotations

from typing import Any

import numpy as np
from numpy.typing import NDArray
from scipy.linalg import block_diag

from pyrmstats.rm._common import MomentEstimate
from pyrmstats.rm.design import DesignDescriptor, Sample, WideSample


def group_moments(
    Y_g: NDArray[np.floating[Any]],
) -> tuple[NDArray[np.floating[Any]], NDArray[np.floating[Any]]]:
    """
    Mean vector and unbiased covariance of one group's subject vectors.

    Args:
        Y_g: (n_g, t) subjects x within cells, n_g >= 2

    Returns:
        (mean (t,), S (t, t))
    """
    mean = Y_g.mean(axis=0)
    centered = Y_g - mean
    S = centered.T @ centered / (Y_g.shape[0] - 1)
    return mean, S


def moments_from_wide(wide: WideSample) -> MomentEstimate:
    """Moment estimate from subject-level data."""
    sizes = wide.group_sizes
    means = []
    covs = []
    for Y_g in wide.blocks():
        mean_g, S_g = group_moments(Y_g)
        means.append(mean_g)
        covs.append(S_g)

    covariance = block_diag(*(S_g / n_g for S_g, n_g in zip(covs, sizes)))

    return MomentEstimate(
        mean=np.concatenate(means),
        covariance=covariance,
        group_covariances=tuple(covs),
        group_sizes=sizes,
    )


def estimate_moments_impl(sample: Sample, design: DesignDescriptor) -> MomentEstimate:
    """Reshape a long-format sample and estimate its moments."""
    return moments_from_wide(sample.to_wide(design))
