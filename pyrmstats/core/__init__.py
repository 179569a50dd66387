"""
Core infrastructure for PyRMStats.

This module provides shared abstractions and utilities used by the
domain submodule (rm).

Key components:
    result: Generic Result[P] envelope
    exceptions: Exception hierarchy and NumericWarning
    validation: Input validators
    compute: Timing and numerical thresholds
"""

from pyrmstats.core.result import Result
from pyrmstats.core.exceptions import (
    PyRMStatsError,
    ValidationError,
    ConfigurationError,
    DataError,
    DimensionError,
    NumericalError,
    ResamplingAborted,
    NumericWarning,
)

__all__ = [
    # Result
    "Result",
    # Exceptions
    "PyRMStatsError",
    "ValidationError",
    "ConfigurationError",
    "DataError",
    "DimensionError",
    "NumericalError",
    "ResamplingAborted",
    "NumericWarning",
]
