"""
Tests for the resampling engine.

Validates:
    - Perturbations (permutation, parametric and wild bootstrap)
    - p-value range and add-one correction
    - Reproducibility: same seed, any number of workers
    - ATS resampling only for the wild bootstrap
    - Permutation only tests group contrasts; null p-values are uniform
    - Hypothesis input forms
    - Cancellation between chunks
    - Degenerate repetitions are skipped and reported
"""

from concurrent.futures import Future

import numpy as np
import pytest
from scipy import stats as sp_stats

from pyrmstats.core.exceptions import ConfigurationError, NumericWarning, ResamplingAborted
from pyrmstats.rm import DesignDescriptor, Sample, build_hypothesis_matrices, resample
from pyrmstats.rm._config import ResamplingMethod
from pyrmstats.rm._moments import moments_from_wide
from pyrmstats.rm._perturbations import (
    PERTURBATIONS,
    parametric_draw,
    permute_groups,
    wild_sign_flip,
)
from pyrmstats.rm.backends import cpu as cpu_backend
from pyrmstats.rm.backends.cpu import SERIAL_CHUNK, resampling_p_value


@pytest.fixture
def inline_pool(monkeypatch):
    """Replace the process pool with one that runs work on submit; records shutdowns."""
    executors = []

    class InlineExecutor:
        def __init__(self, max_workers):
            self.shutdown_calls = []
            executors.append(self)

        def submit(self, fn, *args):
            future = Future()
            future.set_result(fn(*args))
            return future

        def shutdown(self, wait=True, cancel_futures=False):
            self.shutdown_calls.append((wait, cancel_futures))

    monkeypatch.setattr(cpu_backend, 'ProcessPoolExecutor', InlineExecutor)
    return executors


# ═══════════════════════════════════════════════════════════════════════
# Perturbations
# ═══════════════════════════════════════════════════════════════════════


class TestPerturbations:
    """Each perturbation returns a new WideSample of the same shape."""

    def test_permutation_keeps_subject_vectors(self, sample_2x4, design_2x4, rng):
        wide = sample_2x4.to_wide(design_2x4)
        observed = moments_from_wide(wide)
        star = permute_groups(wide, observed, rng)
        np.testing.assert_array_equal(star.Y, wide.Y)
        np.testing.assert_array_equal(star.group_sizes, wide.group_sizes)
        assert not np.array_equal(star.group, wide.group)

    def test_parametric_draw_shape(self, sample_2x4, design_2x4, rng):
        wide = sample_2x4.to_wide(design_2x4)
        star = parametric_draw(wide, moments_from_wide(wide), rng)
        assert star.Y.shape == wide.Y.shape
        np.testing.assert_array_equal(star.group, wide.group)

    def test_parametric_draw_is_centered(self, sample_2x4, design_2x4):
        wide = sample_2x4.to_wide(design_2x4)
        observed = moments_from_wide(wide)
        draws = np.stack([
            parametric_draw(wide, observed, np.random.default_rng(i)).Y
            for i in range(200)
        ])
        assert np.abs(draws.mean()) < 0.1

    def test_wild_flip_magnitudes(self, sample_2x4, design_2x4, rng):
        wide = sample_2x4.to_wide(design_2x4)
        observed = moments_from_wide(wide)
        star = wild_sign_flip(wide, observed, rng)
        residuals = wide.Y - observed.mean.reshape(2, 4)[wide.group]
        np.testing.assert_allclose(np.abs(star.Y), np.abs(residuals), rtol=1e-12)
        ratio = star.Y / residuals
        np.testing.assert_allclose(np.abs(ratio), 1.0, rtol=1e-12)
        assert np.all(np.ptp(ratio, axis=1) < 1e-12)

    def test_original_not_modified(self, sample_2x4, design_2x4, rng):
        wide = sample_2x4.to_wide(design_2x4)
        before = wide.Y.copy()
        observed = moments_from_wide(wide)
        for perturb in PERTURBATIONS.values():
            perturb(wide, observed, rng)
        np.testing.assert_array_equal(wide.Y, before)

    def test_one_perturbation_per_method(self):
        assert set(PERTURBATIONS) == set(ResamplingMethod)


# ═══════════════════════════════════════════════════════════════════════
# p-values
# ═══════════════════════════════════════════════════════════════════════


class TestPValue:
    """Add-one p-values over valid repetitions."""

    def test_add_one(self):
        assert resampling_p_value(np.array([1.0, 2.0, 3.0]), 2.5) == pytest.approx(2 / 4)

    def test_never_zero(self):
        assert resampling_p_value(np.zeros(99), 5.0) == pytest.approx(1 / 100)

    def test_nan_repetitions_skipped(self):
        assert resampling_p_value(np.array([1.0, np.nan, 3.0, 2.0]), 2.0) == pytest.approx(3 / 4)

    def test_nan_observed(self):
        assert np.isnan(resampling_p_value(np.ones(5), np.nan))

    @pytest.mark.parametrize("method", ["Perm", "paramBS", "WildBS"])
    def test_range(self, sample_2x4, design_2x4, method):
        R = 99
        result = resample(
            sample_2x4, design_2x4, method=method, iterations=R, seed=1, n_workers=1,
        )
        p = result.wts_p_values[result.resampled]
        assert p.size > 0
        assert np.all(p >= 1 / (R + 1))
        assert np.all(p <= 1.0)


# ═══════════════════════════════════════════════════════════════════════
# Engine
# ═══════════════════════════════════════════════════════════════════════


class TestResample:
    """End-to-end resampling runs."""

    def test_effects_and_shapes(self, sample_2x4, design_2x4):
        result = resample(sample_2x4, design_2x4, method="WildBS", iterations=50, seed=3, n_workers=1)
        assert result.effects == ('group', 'time', 'group:time')
        assert result.wts_distribution.shape == (50, 3)
        assert result.ats_distribution.shape == (50, 3)
        assert result.iterations == 50
        assert result.backend_name == 'cpu_resampling'

    def test_single_matrix(self, sample_2x4, design_2x4):
        H = dict(build_hypothesis_matrices(design_2x4))['group']
        result = resample(sample_2x4, design_2x4, H, iterations=20, seed=3, n_workers=1)
        assert result.effects == ('H',)
        assert 0.0 < result.wts_p_value <= 1.0

    @pytest.mark.parametrize("method", ["Perm", "paramBS"])
    def test_no_ats_for_wts_only_methods(self, sample_2x4, design_2x4, method):
        result = resample(sample_2x4, design_2x4, method=method, iterations=20, seed=3, n_workers=1)
        assert result.ats_distribution is None
        assert result.ats_p_values is None
        assert result.ats_p_value is None

    def test_wild_bootstrap_resamples_ats(self, sample_2x4, design_2x4):
        result = resample(sample_2x4, design_2x4, method="WildBS", iterations=20, seed=3, n_workers=1)
        assert result.ats_p_values.shape == (3,)
        assert np.all(np.isfinite(result.ats_distribution))

    @pytest.mark.parametrize("method", ["Perm", "paramBS", "WildBS"])
    def test_same_seed_same_result(self, sample_2x4, design_2x4, method):
        a = resample(sample_2x4, design_2x4, method=method, iterations=60, seed=11, n_workers=1)
        b = resample(sample_2x4, design_2x4, method=method, iterations=60, seed=11, n_workers=1)
        np.testing.assert_array_equal(a.wts_distribution, b.wts_distribution)
        np.testing.assert_array_equal(a.wts_p_values, b.wts_p_values)

    def test_different_seeds_differ(self, sample_2x4, design_2x4):
        a = resample(sample_2x4, design_2x4, method="WildBS", iterations=30, seed=1, n_workers=1)
        b = resample(sample_2x4, design_2x4, method="WildBS", iterations=30, seed=2, n_workers=1)
        assert not np.array_equal(a.wts_distribution, b.wts_distribution)

    @pytest.mark.parametrize("method", ["Perm", "WildBS"])
    def test_independent_of_worker_count(self, sample_2x4, design_2x4, method):
        serial = resample(sample_2x4, design_2x4, method=method, iterations=40, seed=5, n_workers=1)
        pooled = resample(sample_2x4, design_2x4, method=method, iterations=40, seed=5, n_workers=2)
        np.testing.assert_array_equal(serial.wts_distribution, pooled.wts_distribution)
        if method == "WildBS":
            np.testing.assert_array_equal(serial.ats_distribution, pooled.ats_distribution)
        assert pooled.info['n_workers'] == 2

    def test_detects_group_effect(self, simulate, rng, design_2x4):
        y, subject, group, time = simulate(rng, (10, 10), 4, group_shift=3.0)
        sample = Sample.from_labels(design_2x4, y, subject, {'group': group, 'time': time})
        result = resample(sample, design_2x4, method="Perm", iterations=199, seed=2, n_workers=1)
        assert result.wts_p_values[0] < 0.05

    def test_quantiles(self, sample_2x4, design_2x4):
        result = resample(
            sample_2x4, design_2x4, method="paramBS", iterations=200, alpha=0.1, seed=4, n_workers=1,
        )
        expected = np.quantile(result.wts_distribution[:, 0], 0.9)
        assert result.wts_quantiles[0] == pytest.approx(expected)

    def test_timing_and_summary(self, sample_2x4, design_2x4):
        result = resample(sample_2x4, design_2x4, iterations=10, seed=1, n_workers=1)
        assert 'repetitions' in result.timing
        text = result.summary()
        assert "Perm" in text
        assert "group:time" in text
        assert "ResamplingSolution" in repr(result)


# ═══════════════════════════════════════════════════════════════════════
# Warnings and cancellation
# ═══════════════════════════════════════════════════════════════════════


class TestDiagnostics:
    """Single-group permutation, degenerate repetitions, aborts."""

    def test_single_group_permutation_tests_nothing(self, simulate, rng):
        y, subject, _, time = simulate(rng, (8,), 3)
        design = DesignDescriptor.from_levels(within={'time': ['t1', 't2', 't3']})
        sample = Sample.from_labels(design, y, subject, {'time': time})
        with pytest.warns(NumericWarning, match="no resampling p-value for: time"):
            result = resample(sample, design, method="Perm", iterations=20, seed=1, n_workers=1)
        assert not result.resampled.any()
        assert result.wts_p_value is None
        assert np.all(np.isnan(result.wts_distribution))
        assert result.n_degenerate == 0
        assert result.info['n_chunks'] == 0

    def test_degenerate_repetitions(self, sample_2x4, design_2x4, monkeypatch):
        def broken(wide, observed, rng):
            return wide.replace(Y=np.full_like(wide.Y, np.nan))

        monkeypatch.setitem(PERTURBATIONS, ResamplingMethod.PARAMETRIC_BOOTSTRAP, broken)
        with pytest.warns(NumericWarning, match="degenerate"):
            result = resample(
                sample_2x4, design_2x4, method="paramBS", iterations=30, seed=1, n_workers=1,
            )
        assert result.n_degenerate == 30
        assert np.all(np.isnan(result.wts_distribution))
        np.testing.assert_array_equal(result.wts_p_values, 1.0)

    def test_abort_before_start(self, sample_2x4, design_2x4):
        with pytest.raises(ResamplingAborted) as exc_info:
            resample(
                sample_2x4, design_2x4, iterations=100, seed=1, n_workers=1,
                should_stop=lambda: True,
            )
        assert exc_info.value.completed == 0
        assert exc_info.value.requested == 100

    def test_abort_between_chunks(self, sample_2x4, design_2x4):
        calls = []

        def stop_on_second_poll():
            calls.append(1)
            return len(calls) > 1

        with pytest.raises(ResamplingAborted) as exc_info:
            resample(
                sample_2x4, design_2x4, iterations=2 * SERIAL_CHUNK, seed=1, n_workers=1,
                should_stop=stop_on_second_poll,
            )
        assert exc_info.value.completed == SERIAL_CHUNK

    def test_abort_in_pool(self, sample_2x4, design_2x4):
        with pytest.raises(ResamplingAborted):
            resample(
                sample_2x4, design_2x4, iterations=40, seed=1, n_workers=2,
                should_stop=lambda: True,
            )

    def test_abort_in_pool_does_not_wait(self, sample_2x4, design_2x4, inline_pool):
        polls = []

        def stop_on_second_poll():
            polls.append(1)
            return len(polls) > 1

        with pytest.raises(ResamplingAborted) as exc_info:
            resample(
                sample_2x4, design_2x4, iterations=40, seed=1, n_workers=2,
                should_stop=stop_on_second_poll,
            )
        assert 0 < exc_info.value.completed < 40
        assert inline_pool[0].shutdown_calls == [(False, True)]

    def test_pool_completes_normally(self, sample_2x4, design_2x4, inline_pool):
        result = resample(sample_2x4, design_2x4, iterations=40, seed=1, n_workers=2)
        assert inline_pool[0].shutdown_calls == [(True, False)]
        serial = resample(sample_2x4, design_2x4, iterations=40, seed=1, n_workers=1)
        np.testing.assert_array_equal(result.wts_distribution, serial.wts_distribution)


# ═══════════════════════════════════════════════════════════════════════
# Permutation scope
# ═══════════════════════════════════════════════════════════════════════


class TestPermutationScope:
    """Shuffling group membership only tests effects that compare groups."""

    def test_within_effect_not_resampled(self, simulate, rng, design_2x4):
        y, subject, group, time = simulate(rng, (10, 10), 4, time_slope=1.0)
        sample = Sample.from_labels(design_2x4, y, subject, {'group': group, 'time': time})
        with pytest.warns(NumericWarning, match="no resampling p-value for: time"):
            result = resample(sample, design_2x4, method="Perm", iterations=99, seed=1, n_workers=1)
        np.testing.assert_array_equal(result.resampled, [True, False, True])
        assert np.isnan(result.wts_p_values[1])
        assert np.all(np.isnan(result.wts_distribution[:, 1]))
        assert np.isnan(result.wts_quantiles[1])
        assert np.all(np.isfinite(result.wts_distribution[:, [0, 2]]))
        assert result.n_degenerate == 0
        assert any("time" in w for w in result.warnings)
        time_line = next(
            line for line in result.summary().splitlines() if line.startswith("time ")
        )
        assert time_line.split()[2] == "-"

    @pytest.mark.parametrize("method", ["paramBS", "WildBS"])
    def test_bootstraps_resample_every_effect(self, sample_2x4, design_2x4, method):
        result = resample(sample_2x4, design_2x4, method=method, iterations=20, seed=1, n_workers=1)
        assert result.resampled.all()
        assert not any("no resampling p-value" in w for w in result.warnings)

    def test_null_p_values_roughly_uniform(self, simulate, design_2x4):
        H = dict(build_hypothesis_matrices(design_2x4))['group']
        p_values = []
        for seed in range(60):
            y, subject, group, time = simulate(np.random.default_rng(1000 + seed), (8, 8), 4)
            sample = Sample.from_labels(design_2x4, y, subject, {'group': group, 'time': time})
            result = resample(
                sample, design_2x4, H, method="Perm", iterations=99, seed=seed, n_workers=1,
            )
            p_values.append(result.wts_p_value)
        p = np.array(p_values)
        assert sp_stats.kstest(p, 'uniform').statistic < 0.25
        assert 0.25 <= np.mean(p <= 0.5) <= 0.75
        assert np.mean(p <= 0.1) <= 0.25


# ═══════════════════════════════════════════════════════════════════════
# Hypothesis input
# ═══════════════════════════════════════════════════════════════════════


class TestHypothesisInput:
    """Accepted and rejected forms of the hypothesis argument."""

    def test_nested_list_matrix(self, sample_2x4, design_2x4):
        H = dict(build_hypothesis_matrices(design_2x4))['group']
        result = resample(sample_2x4, design_2x4, H.tolist(), iterations=20, seed=3, n_workers=1)
        reference = resample(sample_2x4, design_2x4, H, iterations=20, seed=3, n_workers=1)
        assert result.effects == ('H',)
        assert result.wts_p_value == reference.wts_p_value

    def test_named_pairs(self, sample_2x4, design_2x4):
        pairs = build_hypothesis_matrices(design_2x4)[:1]
        result = resample(sample_2x4, design_2x4, pairs, iterations=20, seed=3, n_workers=1)
        assert result.effects == ('group',)

    def test_list_of_bare_matrices_rejected(self, sample_2x4, design_2x4):
        matrices = [H for _, H in build_hypothesis_matrices(design_2x4)]
        with pytest.raises(ConfigurationError, match="list of \\(name, matrix\\) pairs"):
            resample(sample_2x4, design_2x4, matrices, iterations=20, seed=3, n_workers=1)

    def test_ragged_input_rejected(self, sample_2x4, design_2x4):
        with pytest.raises(ConfigurationError, match="hypothesis must be"):
            resample(sample_2x4, design_2x4, [[1.0, -1.0], [1.0]], iterations=20, n_workers=1)

    def test_wrong_width_rejected(self, sample_2x4, design_2x4):
        with pytest.raises(ConfigurationError, match="expected 8 columns"):
            resample(sample_2x4, design_2x4, np.eye(3), iterations=20, n_workers=1)
