"""
Data perturbations for the resampling engine.

Each function maps the observed subject-level data to one resampled data
set. They draw only from the generator they are given and never modify
their inputs.

    permute_groups:      shuffle group membership of whole subjects
    parametric_draw:     new subjects from N(0, S_g) per group
    wild_sign_flip:      centered subject vectors times Rademacher signs

The bootstraps generate data with all cell means equal to zero, which
satisfies every null hypothesis H mu = 0 at once, so one resampled data
set serves all tested effects.
"""

from __future__ import annotations

from typing import Callable

import numpy as np

from pyrmstats.rm._common import MomentEstimate
from pyrmstats.rm._config import ResamplingMethod
from pyrmstats.rm.design import WideSample

Perturbation = Callable[[WideSample, MomentEstimate, np.random.Generator], WideSample]


def permute_groups(
    wide: WideSample,
    observed: MomentEstimate,
    rng: np.random.Generator,
) -> WideSample:
    """
    Reassign subjects to between-subject groups at random.

    Each subject keeps its full vector of repeated measurements; group
    sizes are preserved. Only hypotheses comparing groups change under
    this perturbation.
    """
    return wide.replace(group=rng.permutation(wide.group))


def parametric_draw(
    wide: WideSample,
    observed: MomentEstimate,
    rng: np.random.Generator,
) -> WideSample:
    """Draw n_g subjects per group from N(0, S_g), S_g the observed covariance."""
    t = wide.Y.shape[1]
    Y = np.empty_like(wide.Y)
    for g, S_g in enumerate(observed.group_covariances):
        rows = wide.group == g
        Y[rows] = rng.multivariate_normal(
            np.zeros(t), S_g, size=int(rows.sum()), method='eigh',
        )
    return wide.replace(Y=Y)


def wild_sign_flip(
    wide: WideSample,
    observed: MomentEstimate,
    rng: np.random.Generator,
) -> WideSample:
    """Multiply each subject's centered vector by an independent +1/-1."""
    t = wide.Y.shape[1]
    group_means = observed.mean.reshape(-1, t)
    residuals = wide.Y - group_means[wide.group]
    signs = rng.choice(np.array([-1.0, 1.0]), size=wide.Y.shape[0])
    return wide.replace(Y=residuals * signs[:, None])


PERTURBATIONS: dict[ResamplingMethod, Perturbation] = {
    ResamplingMethod.PERMUTATION: permute_groups,
    ResamplingMethod.PARAMETRIC_BOOTSTRAP: parametric_draw,
    ResamplingMethod.WILD_BOOTSTRAP: wild_sign_flip,
}
