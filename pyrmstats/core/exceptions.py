"""
Exception hierarchy for PyRMStats.

All exceptions inherit from PyRMStatsError to allow catching any
library-specific error. Input problems are split into configuration
errors (bad option values) and data errors (bad samples); both are
raised before any statistic is computed.

Design principles:
    - Exceptions carry diagnostic information as attributes
    - Error messages are actionable with actual vs expected values
    - Numeric trouble that still yields a value is a warning, not an error
"""


class PyRMStatsError(Exception):
    """Base exception for all PyRMStats errors."""
    pass


class ValidationError(PyRMStatsError):
    """
    Input validation failed.

    Raised when user-provided inputs fail validation checks.
    """
    pass


class ConfigurationError(ValidationError):
    """
    An option value is invalid.

    Raised for unknown resampling or CI method names, malformed effect
    declarations (partial interaction sets), non-positive iteration
    counts, alpha outside (0, 1) and similar.

    Attributes:
        option: Name of the offending option, if known
        value: The rejected value
    """

    def __init__(
        self,
        message: str,
        option: str | None = None,
        value: object = None,
    ):
        super().__init__(message)
        self.option = option
        self.value = value


class DataError(ValidationError):
    """
    The sample cannot be analysed.

    Raised for missing values, between-subject groups with fewer than two
    subjects, subjects that do not cover every within-subject cell, and
    subjects that appear in more than one between-subject group.

    Attributes:
        group: Label of the offending between-subject group, if any
        n_subjects: Number of subjects found in that group, if known
    """

    def __init__(
        self,
        message: str,
        group: str | None = None,
        n_subjects: int | None = None,
    ):
        super().__init__(message)
        self.group = group
        self.n_subjects = n_subjects


class DimensionError(DataError):
    """
    Array dimensions are incorrect or inconsistent.

    Raised when array shapes don't match expected dimensions or
    when multiple arrays have inconsistent shapes.
    """
    pass


class NumericalError(PyRMStatsError):
    """
    Numerical computation failed.

    Base class for errors arising from numerical issues during computation.
    """
    pass


class ResamplingAborted(PyRMStatsError):
    """
    A resampling run was cancelled between repetitions.

    Attributes:
        completed: Number of repetitions finished before cancellation
        requested: Number of repetitions requested
    """

    def __init__(self, message: str, completed: int, requested: int):
        super().__init__(message)
        self.completed = completed
        self.requested = requested


class NumericWarning(RuntimeWarning):
    """
    A statistic was computed from a numerically doubtful input.

    Issued for singular or near-singular covariance estimates (the WTS
    relies on a generalized inverse and may be invalid, the ATS is not
    affected) and when too many resampling repetitions were degenerate.
    """
    pass
