"""
Wald-type (WTS) and ANOVA-type (ATS) statistics.

With mu the cell means, Sigma the covariance of mu (block diagonal, one
block per between-subject group), and N the total number of subjects,
the usual formulation uses V_N = N * Sigma:

    WTS = N mu' H' (H V_N H')^+ H mu        ~ chi2(rank H)
    ATS = N mu' T mu / tr(T V_N)            ~ F(f1, f0)

with T = H' (H H')^+ H the projection onto the row space of H (T = H for
the projection matrices built by this package). The factor N cancels in
both statistics, so they are computed directly from Sigma.

ATS degrees of freedom (Brunner, Dette & Munk 1997):

    f1 = tr(T Sigma)^2 / tr(T Sigma T Sigma)
    f0 = tr(T Sigma)^2 / sum_g tr(D_g^2 Sigma_g^2) / (n_g - 1)

where D_g is the diagonal of T restricted to group g's cells and Sigma_g
is group g's covariance block.

References:
    Friedrich, S., Brunner, E. and Pauly, M. (2017). Permuting
    longitudinal data in spite of the dependencies. Journal of
    Multivariate Analysis, 153, 255-265.
"""

from __future__ import annotations

import warnings
from typing import Any

import numpy as np
from numpy.typing import NDArray
from scipy import linalg as sla
from scipy import stats as sp_stats

from pyrmstats.core.compute.tolerances import GINV_RTOL, is_singular
from pyrmstats.core.exceptions import (
    DataError,
    DimensionError,
    NumericalError,
    NumericWarning,
)
from pyrmstats.core.validation import check_square
from pyrmstats.rm._common import StatisticResult

SINGULAR_COVARIANCE_MESSAGE = (
    "The covariance matrix is singular. The WTS provides no valid test statistic!"
)


def generalized_inverse(M: NDArray[np.floating[Any]]) -> NDArray[np.floating[Any]]:
    """
    Moore-Penrose inverse of a symmetric PSD matrix.

    Raises:
        NumericalError: If the eigendecomposition fails
    """
    M_sym = (M + M.T) / 2.0
    try:
        return sla.pinvh(M_sym, rtol=GINV_RTOL)
    except (np.linalg.LinAlgError, ValueError) as e:
        raise NumericalError(f"Generalized inverse failed: {e}") from e


def hypothesis_projection(H: NDArray[np.floating[Any]]) -> NDArray[np.floating[Any]]:
    """T = H' (H H')^+ H."""
    return H.T @ generalized_inverse(H @ H.T) @ H


def hypothesis_rank(H: NDArray[np.floating[Any]]) -> int:
    """Degrees of freedom of the WTS."""
    return int(np.linalg.matrix_rank(H))


def wald_type_statistic(
    H: NDArray[np.floating[Any]],
    mean: NDArray[np.floating[Any]],
    covariance: NDArray[np.floating[Any]],
) -> float:
    """mu' H' (H Sigma H')^+ H mu."""
    Hm = H @ mean
    ginv = generalized_inverse(H @ covariance @ H.T)
    return max(float(Hm @ ginv @ Hm), 0.0)


def anova_type_statistic(
    T: NDArray[np.floating[Any]],
    mean: NDArray[np.floating[Any]],
    covariance: NDArray[np.floating[Any]],
) -> float:
    """mu' T mu / tr(T Sigma); NaN when the trace vanishes."""
    trace = float(np.trace(T @ covariance))
    if not trace > 0.0:
        return float('nan')
    return max(float(mean @ T @ mean), 0.0) / trace


def ats_degrees_of_freedom(
    T: NDArray[np.floating[Any]],
    covariance: NDArray[np.floating[Any]],
    group_sizes: NDArray[np.integer[Any]],
) -> tuple[float, float]:
    """
    Numerator and denominator degrees of freedom of the ATS.

    Returns:
        (f1, f0); f0 is inf when its trace estimator is zero, both are NaN
        when tr(T Sigma) is zero
    """
    TS = T @ covariance
    trace = float(np.trace(TS))
    if not trace > 0.0:
        return float('nan'), float('nan')

    f1 = trace ** 2 / float(np.trace(TS @ TS))

    t = covariance.shape[0] // len(group_sizes)
    diag_T = np.diag(T)
    denominator = 0.0
    for g, n_g in enumerate(group_sizes):
        sl = slice(g * t, (g + 1) * t)
        block = covariance[sl, sl]
        # tr(D^2 Sigma_g^2) = sum_i d_i^2 (Sigma_g^2)_ii
        block_sq_diag = np.einsum('ij,ji->i', block, block)
        denominator += float(diag_T[sl] ** 2 @ block_sq_diag) / (n_g - 1)

    f0 = trace ** 2 / denominator if denominator > 0.0 else float('inf')
    return f1, f0


def ats_p_value(ats: float, f1: float, f0: float) -> float:
    """Upper tail of F(f1, f0), chi2(f1)/f1 when f0 is infinite."""
    if not np.isfinite(ats) or not np.isfinite(f1):
        return float('nan')
    if np.isinf(f0):
        return float(sp_stats.chi2.sf(f1 * ats, f1))
    return float(sp_stats.f.sf(ats, f1, f0))


def covariance_is_singular(covariance: NDArray[np.floating[Any]]) -> bool:
    """True if the covariance estimate is numerically singular."""
    eigenvalues = np.linalg.eigvalsh((covariance + covariance.T) / 2.0)
    return is_singular(eigenvalues)


def check_covariance(covariance: NDArray[np.floating[Any]], stacklevel: int = 3) -> bool:
    """Warn with NumericWarning if the covariance is singular; return the flag."""
    singular = covariance_is_singular(covariance)
    if singular:
        warnings.warn(SINGULAR_COVARIANCE_MESSAGE, NumericWarning, stacklevel=stacklevel)
    return singular


def statistics_for_effect(
    H: NDArray[np.floating[Any]],
    T: NDArray[np.floating[Any]],
    df: int,
    mean: NDArray[np.floating[Any]],
    covariance: NDArray[np.floating[Any]],
    group_sizes: NDArray[np.integer[Any]],
    *,
    singular: bool = False,
) -> StatisticResult:
    """
    Both statistics for one effect, without any checks or warnings.

    H, T and df are fixed per effect; callers that evaluate many samples
    compute them once.
    """
    wts = wald_type_statistic(H, mean, covariance)
    ats = anova_type_statistic(T, mean, covariance)
    f1, f0 = ats_degrees_of_freedom(T, covariance, group_sizes)

    return StatisticResult(
        wts=wts,
        wts_df=df,
        wts_p_value=float(sp_stats.chi2.sf(wts, df)) if df > 0 else float('nan'),
        ats=ats,
        ats_df1=f1,
        ats_df2=f0,
        ats_p_value=ats_p_value(ats, f1, f0),
        singular_covariance=singular,
    )


def evaluate_statistics_impl(
    H: Any,
    mean: Any,
    covariance: Any,
    group_sizes: Any,
) -> StatisticResult:
    """
    Validate inputs, check the covariance, and compute WTS and ATS.

    Raises:
        DimensionError: If shapes are inconsistent
        NumericalError: If inputs are not finite
    """
    H_arr = np.atleast_2d(np.asarray(H, dtype=np.float64))
    mean_arr = np.asarray(mean, dtype=np.float64).ravel()
    cov_arr = np.asarray(covariance, dtype=np.float64)
    sizes = np.asarray(group_sizes, dtype=np.int64).ravel()

    p = mean_arr.shape[0]
    check_square(cov_arr, p, "covariance")
    if H_arr.shape[1] != p:
        raise DimensionError(
            f"hypothesis: expected {p} columns, got shape {H_arr.shape}"
        )
    if sizes.size == 0 or p % sizes.size != 0:
        raise DimensionError(
            f"group_sizes: {sizes.size} groups do not divide {p} cells evenly"
        )
    if np.any(sizes < 2):
        raise DataError(
            f"group_sizes: every group needs at least 2 subjects, got {sizes.tolist()}"
        )
    if not (np.all(np.isfinite(mean_arr)) and np.all(np.isfinite(cov_arr))):
        raise NumericalError("mean and covariance must be finite")

    singular = check_covariance(cov_arr, stacklevel=4)
    return statistics_for_effect(
        H_arr,
        hypothesis_projection(H_arr),
        hypothesis_rank(H_arr),
        mean_arr,
        cov_arr,
        sizes,
        singular=singular,
    )
