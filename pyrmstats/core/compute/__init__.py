"""
Shared compute infrastructure for PyRMStats.

This module provides timing utilities and numerical thresholds that are
shared across domain code. Domain-specific backends live in
{domain}/backends/.

Submodules:
    timing: Execution timing utilities
    tolerances: Numerical thresholds (generalized inverse, singularity)
"""

from pyrmstats.core.compute.timing import Timer

__all__ = [
    "Timer",
]
