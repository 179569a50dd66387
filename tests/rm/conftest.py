"""
Shared fixtures for repeated measures tests.

Data are simulated in long format: each subject has a random intercept and
one observation per within-subject level.
"""

import numpy as np
import pytest

from pyrmstats.rm.design import DesignDescriptor, Sample


def _simulate(rng, group_sizes, n_time, group_shift=0.0, time_slope=0.0, noise=1.0):
    """Long-format arrays (y, subject, group, time)."""
    y, subject, group, time = [], [], [], []
    for g, n_g in enumerate(group_sizes):
        for s in range(n_g):
            intercept = rng.normal()
            for k in range(n_time):
                y.append(intercept + g * group_shift + k * time_slope + noise * rng.normal())
                subject.append(f"g{g + 1}s{s + 1}")
                group.append(f"G{g + 1}")
                time.append(f"t{k + 1}")
    return np.array(y), np.array(subject), np.array(group), np.array(time)


@pytest.fixture
def simulate():
    """Factory for simulated long-format data."""
    return _simulate


@pytest.fixture
def null_data(rng):
    """Two groups of 10 subjects, 4 time points, no effects."""
    return _simulate(rng, (10, 10), 4)


@pytest.fixture
def design_2x4():
    """Between factor group (2 levels), within factor time (4 levels)."""
    return DesignDescriptor.from_levels(
        between={'group': ['G1', 'G2']},
        within={'time': ['t1', 't2', 't3', 't4']},
    )


@pytest.fixture
def sample_2x4(design_2x4, null_data):
    y, subject, group, time = null_data
    return Sample.from_labels(design_2x4, y, subject, {'group': group, 'time': time})
