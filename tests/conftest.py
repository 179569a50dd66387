"""
pytest configuration and shared fixtures.
"""

import pytest
import numpy as np


@pytest.fixture
def rng():
    """Seeded random number generator for reproducible tests."""
    return np.random.default_rng(42)


@pytest.fixture
def spd_covariance(rng):
    """Well-conditioned 4x4 covariance matrix."""
    A = rng.standard_normal((4, 4))
    return A @ A.T + 0.5 * np.eye(4)
