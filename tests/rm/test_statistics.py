"""
Tests for the statistic evaluator.

Validates:
    - WTS and ATS against direct formulas
    - Degrees of freedom (rank of H; trace-ratio ATS df)
    - Non-negativity and purity (bit-identical repeated evaluation)
    - Singular covariance handling: warning, not failure
    - Input errors
"""

import numpy as np
import pytest
from scipy import stats as sp_stats

from pyrmstats.core.compute.tolerances import CPU_FP64, CPU_FP64_RANK_DEFICIENT
from pyrmstats.core.exceptions import DataError, DimensionError, NumericalError, NumericWarning
from pyrmstats.rm import evaluate_statistics
from pyrmstats.rm._hypothesis import centering_matrix, full_factorial_hypotheses
from pyrmstats.rm._statistics import (
    anova_type_statistic,
    ats_degrees_of_freedom,
    ats_p_value,
    generalized_inverse,
    hypothesis_projection,
    wald_type_statistic,
)


# ═══════════════════════════════════════════════════════════════════════
# Formulas
# ═══════════════════════════════════════════════════════════════════════


class TestFormulas:
    """Statistics match their definitions."""

    def test_wts_full_rank(self):
        """With H = I the WTS is mu' Sigma^-1 mu."""
        mean = np.array([1.0, -2.0, 0.5, 0.0])
        cov = np.diag([0.5, 2.0, 1.0, 4.0])
        result = evaluate_statistics(np.eye(4), mean, cov, [10, 10])
        expected = float(mean @ np.linalg.solve(cov, mean))
        assert result.wts == pytest.approx(expected, rel=CPU_FP64.rtol)
        assert result.wts_df == 4
        assert result.wts_p_value == pytest.approx(sp_stats.chi2.sf(expected, 4), rel=1e-10)

    def test_wts_uses_generalized_inverse(self, spd_covariance):
        H = centering_matrix(4)
        mean = np.array([1.0, 2.0, 3.0, 4.0])
        result = evaluate_statistics(H, mean, spd_covariance, [20])
        Hm = H @ mean
        expected = float(Hm @ np.linalg.pinv(H @ spd_covariance @ H) @ Hm)
        assert result.wts == pytest.approx(expected, rel=CPU_FP64_RANK_DEFICIENT.rtol)
        assert result.wts_df == 3

    def test_ats(self, spd_covariance):
        H = centering_matrix(4)
        mean = np.array([0.3, -0.1, 0.4, 0.2])
        result = evaluate_statistics(H, mean, spd_covariance, [15])
        expected = float(mean @ H @ mean) / float(np.trace(H @ spd_covariance))
        assert result.ats == pytest.approx(expected, rel=CPU_FP64.rtol)

    def test_ats_numerator_df(self, spd_covariance):
        H = centering_matrix(4)
        result = evaluate_statistics(H, np.zeros(4), spd_covariance, [15])
        TS = H @ spd_covariance
        expected = np.trace(TS) ** 2 / np.trace(TS @ TS)
        assert result.ats_df1 == pytest.approx(expected, rel=CPU_FP64.rtol)

    def test_ats_denominator_df(self, spd_covariance):
        """f0 = tr(T Sigma)^2 / sum_g tr(D_g^2 Sigma_g^2) / (n_g - 1)."""
        H = centering_matrix(4)
        n = 15
        _, f0 = ats_degrees_of_freedom(H, spd_covariance, np.array([n]))
        D = np.diag(np.diag(H))
        expected = (
            np.trace(H @ spd_covariance) ** 2
            / (np.trace(D @ D @ spd_covariance @ spd_covariance) / (n - 1))
        )
        assert f0 == pytest.approx(expected, rel=CPU_FP64.rtol)

    def test_ats_p_value_uses_f_distribution(self):
        assert ats_p_value(2.0, 3.0, 40.0) == pytest.approx(sp_stats.f.sf(2.0, 3.0, 40.0))

    def test_ats_p_value_infinite_denominator(self):
        assert ats_p_value(2.0, 3.0, np.inf) == pytest.approx(sp_stats.chi2.sf(6.0, 3.0))

    def test_projection_of_projection_is_itself(self):
        for _, H in full_factorial_hypotheses((2, 3), ('A', 'B')):
            np.testing.assert_allclose(hypothesis_projection(H), H, atol=1e-10)

    def test_generalized_inverse_of_singular_matrix(self):
        M = centering_matrix(3)
        G = generalized_inverse(M)
        np.testing.assert_allclose(M @ G @ M, M, atol=1e-10)


# ═══════════════════════════════════════════════════════════════════════
# Invariants
# ═══════════════════════════════════════════════════════════════════════


class TestInvariants:
    """Non-negativity, rank = df, purity."""

    @pytest.mark.parametrize("seed", range(10))
    def test_non_negative(self, seed):
        rng = np.random.default_rng(seed)
        A = rng.standard_normal((6, 6))
        cov = A @ A.T
        mean = rng.standard_normal(6) * 3
        for _, H in full_factorial_hypotheses((2, 3), ('A', 'B')):
            T = hypothesis_projection(H)
            assert wald_type_statistic(H, mean, cov) >= 0.0
            assert anova_type_statistic(T, mean, cov) >= 0.0

    def test_df_equals_rank(self, rng):
        A = rng.standard_normal((6, 6))
        cov = A @ A.T + np.eye(6)
        for _, H in full_factorial_hypotheses((2, 3), ('A', 'B')):
            result = evaluate_statistics(H, rng.standard_normal(6), cov, [10, 10])
            assert result.wts_df == np.linalg.matrix_rank(H)

    def test_bit_identical_repeats(self, rng):
        A = rng.standard_normal((6, 6))
        cov = A @ A.T + np.eye(6)
        mean = rng.standard_normal(6)
        _, H = full_factorial_hypotheses((2, 3), ('A', 'B'))[2]
        first = evaluate_statistics(H, mean, cov, [8, 12])
        for _ in range(5):
            assert evaluate_statistics(H, mean, cov, [8, 12]) == first

    def test_inputs_not_modified(self, spd_covariance):
        mean = np.array([1.0, 2.0, 3.0, 4.0])
        cov = spd_covariance.copy()
        evaluate_statistics(centering_matrix(4), mean, cov, [10])
        np.testing.assert_array_equal(cov, spd_covariance)
        np.testing.assert_array_equal(mean, [1.0, 2.0, 3.0, 4.0])


# ═══════════════════════════════════════════════════════════════════════
# Singular covariance
# ═══════════════════════════════════════════════════════════════════════


class TestSingularCovariance:
    """A singular covariance is a warning; both statistics are returned."""

    def test_warns_and_returns(self):
        v = np.array([1.0, -1.0, 0.5, 0.0])
        cov = np.outer(v, v)
        mean = np.array([0.2, 0.1, -0.3, 0.4])
        with pytest.warns(NumericWarning, match="covariance matrix is singular"):
            result = evaluate_statistics(centering_matrix(4), mean, cov, [5])
        assert result.singular_covariance
        assert np.isfinite(result.wts)
        assert np.isfinite(result.ats)

    def test_regular_covariance_not_flagged(self, spd_covariance):
        result = evaluate_statistics(centering_matrix(4), np.ones(4), spd_covariance, [10])
        assert not result.singular_covariance


# ═══════════════════════════════════════════════════════════════════════
# Input errors
# ═══════════════════════════════════════════════════════════════════════


class TestInputErrors:
    """Inconsistent inputs fail before any computation."""

    def test_group_of_one(self, spd_covariance):
        with pytest.raises(DataError, match="at least 2 subjects"):
            evaluate_statistics(centering_matrix(4), np.zeros(4), spd_covariance, [1])

    def test_wrong_covariance_shape(self):
        with pytest.raises(DimensionError, match="covariance"):
            evaluate_statistics(centering_matrix(4), np.zeros(4), np.eye(3), [10])

    def test_wrong_hypothesis_columns(self, spd_covariance):
        with pytest.raises(DimensionError, match="hypothesis"):
            evaluate_statistics(centering_matrix(3), np.zeros(4), spd_covariance, [10])

    def test_groups_do_not_divide_cells(self, spd_covariance):
        with pytest.raises(DimensionError, match="group_sizes"):
            evaluate_statistics(centering_matrix(4), np.zeros(4), spd_covariance, [5, 5, 5])

    def test_non_finite_mean(self, spd_covariance):
        with pytest.raises(NumericalError, match="finite"):
            evaluate_statistics(
                centering_matrix(4), [np.nan, 0.0, 0.0, 0.0], spd_covariance, [10],
            )
