"""
Input validators for PyRMStats.

Each validator checks one property of one argument and raises at once,
naming the argument and the offending value. Nothing is repaired
silently: a missing response is an error, not a dropped row.

Shape problems raise DimensionError, unusable data DataError, and input
that cannot be read as numbers at all ValidationError.
"""

from typing import Any

import numpy as np
from numpy.typing import ArrayLike, NDArray

from pyrmstats.core.exceptions import DataError, DimensionError, ValidationError


def check_array(array: ArrayLike, name: str) -> NDArray[np.floating[Any]]:
    """
    Convert numeric input to a float64 array.

    Raises:
        ValidationError: If the input is ragged, mixed or non-numeric
    """
    try:
        arr = np.asarray(array)
    except (ValueError, TypeError) as e:
        raise ValidationError(f"{name}: cannot convert to array: {e}") from e

    if arr.dtype == object or not np.issubdtype(arr.dtype, np.number):
        raise ValidationError(
            f"{name}: non-numeric values (dtype {arr.dtype}); expected numbers"
        )
    return arr.astype(np.float64, copy=False)


def check_labels(array: ArrayLike, name: str, n: int) -> NDArray:
    """
    Convert a label vector to a 1D array of strings of length n.

    Labels are compared as strings everywhere, so 1 and '1' name the
    same level.

    Raises:
        DimensionError: If the labels are not 1D or have the wrong length
        DataError: If any label is missing (None or NaN)
    """
    arr = np.asarray(array)
    if arr.ndim != 1:
        raise DimensionError(f"{name}: expected 1D, got {arr.ndim}D")
    if len(arr) != n:
        raise DimensionError(
            f"{name}: length {len(arr)} doesn't match y length {n}"
        )
    for v in arr:
        if v is None or (isinstance(v, float) and np.isnan(v)):
            raise DataError(f"{name}: contains missing labels")
    return np.array([str(v) for v in arr])


def check_finite(array: NDArray[np.floating[Any]], name: str) -> None:
    """
    Verify array contains no NaN or Inf values.

    Raises:
        DataError: If array contains non-finite values
    """
    if not np.all(np.isfinite(array)):
        n_nan = int(np.sum(np.isnan(array)))
        n_inf = int(np.sum(np.isinf(array)))
        raise DataError(
            f"{name}: contains non-finite values ({n_nan} NaN, {n_inf} Inf)"
        )


def check_ndim(array: NDArray[np.floating[Any]], ndim: int, name: str) -> None:
    """
    Verify array has exactly the specified number of dimensions.

    Raises:
        DimensionError: If array has wrong number of dimensions
    """
    if array.ndim != ndim:
        raise DimensionError(
            f"{name}: expected {ndim}D array, got {array.ndim}D with shape {array.shape}"
        )


def check_1d(array: NDArray[np.floating[Any]], name: str) -> None:
    """Verify array is 1-dimensional."""
    check_ndim(array, 1, name)


def check_square(array: NDArray[np.floating[Any]], size: int, name: str) -> None:
    """
    Verify array is a (size, size) matrix.

    Raises:
        DimensionError: If the shape differs
    """
    if array.shape != (size, size):
        raise DimensionError(
            f"{name}: expected shape ({size}, {size}), got {array.shape}"
        )


def check_group_sizes(
    group_sizes: NDArray,
    labels: list[str],
    min_subjects: int = 2,
) -> None:
    """
    Verify every between-subject group holds at least min_subjects subjects.

    Args:
        group_sizes: Number of subjects per group, in canonical group order
        labels: Human-readable group labels for error messages
        min_subjects: Required minimum (2 for an unbiased covariance)

    Raises:
        DataError: Naming the first group that is too small
    """
    for label, size in zip(labels, group_sizes):
        if size < min_subjects:
            raise DataError(
                f"Between-subject group {label!r} has {int(size)} subject(s); "
                f"at least {min_subjects} are required to estimate its covariance",
                group=label,
                n_subjects=int(size),
            )
