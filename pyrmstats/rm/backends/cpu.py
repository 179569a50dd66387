"""
CPU backend for resampling WTS and ATS.

CPUResamplingBackend: permutation, parametric bootstrap and wild bootstrap,
optionally spread over a process pool.

Every repetition gets its own child of np.random.SeedSequence(seed), so the
resampled distributions depend only on the seed, not on the number of
workers or the order in which chunks finish. Results are written into a
preallocated buffer indexed by repetition number.
"""

from __future__ import annotations

import warnings
from concurrent.futures import ProcessPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable

import numpy as np
from numpy.typing import NDArray

from pyrmstats.core.compute.timing import Timer
from pyrmstats.core.compute.tolerances import DEGENERATE_WARN_FRACTION
from pyrmstats.core.exceptions import NumericalError, NumericWarning, ResamplingAborted
from pyrmstats.core.result import Result
from pyrmstats.rm._common import MomentEstimate, ResamplingParams
from pyrmstats.rm._config import ResamplingMethod
from pyrmstats.rm._hypothesis import is_group_contrast
from pyrmstats.rm._moments import moments_from_wide
from pyrmstats.rm._perturbations import PERTURBATIONS
from pyrmstats.rm._statistics import (
    anova_type_statistic,
    hypothesis_projection,
    wald_type_statistic,
)
from pyrmstats.rm.design import ResamplingDesign, WideSample

# Repetitions per chunk when running in-process; also the granularity at
# which should_stop is polled.
SERIAL_CHUNK = 250

# Chunks per worker when running in a pool.
CHUNKS_PER_WORKER = 4


@dataclass(frozen=True)
class _Chunk:
    """Everything one worker needs for a contiguous block of repetitions."""
    start: int
    seeds: tuple[np.random.SeedSequence, ...]
    wide: WideSample
    observed: MomentEstimate
    hypotheses: tuple[NDArray, ...]
    projections: tuple[NDArray, ...]
    method: ResamplingMethod


def _run_chunk(chunk: _Chunk) -> tuple[int, NDArray, NDArray | None]:
    """
    Run a block of repetitions.

    Returns:
        (start, wts (m, k), ats (m, k) or None). Degenerate repetitions
        are NaN.
    """
    perturb = PERTURBATIONS[chunk.method]
    want_ats = chunk.method.resamples_ats
    m = len(chunk.seeds)
    k = len(chunk.hypotheses)
    wts = np.full((m, k), np.nan)
    ats = np.full((m, k), np.nan) if want_ats else None

    for i, seed in enumerate(chunk.seeds):
        rng = np.random.default_rng(seed)
        star = moments_from_wide(perturb(chunk.wide, chunk.observed, rng))
        if not (np.all(np.isfinite(star.mean)) and np.all(np.isfinite(star.covariance))):
            continue
        for j, (H, T) in enumerate(zip(chunk.hypotheses, chunk.projections)):
            try:
                wts[i, j] = wald_type_statistic(H, star.mean, star.covariance)
            except NumericalError:
                wts[i, j] = np.nan
            if want_ats:
                ats[i, j] = anova_type_statistic(T, star.mean, star.covariance)

    return chunk.start, wts, ats


def resampling_p_value(
    distribution: NDArray[np.floating[Any]],
    observed: float,
) -> float:
    """(1 + #{T* >= T_obs}) / (1 + n_valid), ignoring NaN repetitions."""
    if not np.isfinite(observed):
        return float('nan')
    valid = distribution[np.isfinite(distribution)]
    count = int(np.sum(valid >= observed))
    return float(count + 1) / float(valid.size + 1)


def _quantile(distribution: NDArray[np.floating[Any]], prob: float) -> float:
    valid = distribution[np.isfinite(distribution)]
    if valid.size == 0:
        return float('nan')
    return float(np.quantile(valid, prob))


class CPUResamplingBackend:
    """
    CPU backend for resampling repeated measures statistics.

    Computes the observed WTS/ATS, runs `iterations` independent
    repetitions of the configured perturbation, and aggregates resampling
    p-values and WTS quantiles for every hypothesis.
    """

    @property
    def name(self) -> str:
        return 'cpu_resampling'

    def solve(
        self,
        design: ResamplingDesign,
        *,
        should_stop: Callable[[], bool] | None = None,
    ) -> Result[ResamplingParams]:
        """
        Run resampling and return Result[ResamplingParams].

        Args:
            design: Frozen inputs of the run
            should_stop: Polled between chunks of repetitions; returning
                True aborts the run

        Raises:
            ResamplingAborted: If should_stop() returned True
        """
        timer = Timer()
        timer.start()

        config = design.config
        wide = design.wide
        names = tuple(name for name, _ in design.hypotheses)
        hypotheses = tuple(H for _, H in design.hypotheses)
        warnings_list: list[str] = []

        with timer.section('observed_statistics'):
            observed = moments_from_wide(wide)
            projections = tuple(hypothesis_projection(H) for H in hypotheses)
            obs_wts = np.array([
                wald_type_statistic(H, observed.mean, observed.covariance)
                for H in hypotheses
            ])
            obs_ats = np.array([
                anova_type_statistic(T, observed.mean, observed.covariance)
                for T in projections
            ])

        k = len(hypotheses)
        if config.method is ResamplingMethod.PERMUTATION:
            resampled = np.array([
                is_group_contrast(H, wide.n_groups, wide.Y.shape[1])
                for H in hypotheses
            ], dtype=bool)
            skipped = [name for name, ok in zip(names, resampled) if not ok]
            if skipped:
                msg = (
                    "Permutation only tests effects that compare between-subject "
                    f"groups; no resampling p-value for: {', '.join(skipped)}."
                )
                warnings.warn(msg, NumericWarning, stacklevel=2)
                warnings_list.append(msg)
        else:
            resampled = np.ones(k, dtype=bool)
        active = np.flatnonzero(resampled)

        R = config.iterations
        wts_star = np.full((R, k), np.nan)
        ats_star = np.full((R, k), np.nan) if config.method.resamples_ats else None

        seeds = np.random.SeedSequence(config.seed).spawn(R)
        n_chunks = (
            -(-R // SERIAL_CHUNK) if config.n_workers == 1
            else min(R, config.n_workers * CHUNKS_PER_WORKER)
        )
        bounds = np.linspace(0, R, n_chunks + 1).astype(int)
        chunks = [
            _Chunk(
                start=int(lo),
                seeds=tuple(seeds[lo:hi]),
                wide=wide,
                observed=observed,
                hypotheses=tuple(hypotheses[j] for j in active),
                projections=tuple(projections[j] for j in active),
                method=config.method,
            )
            for lo, hi in zip(bounds[:-1], bounds[1:])
            if hi > lo and active.size
        ]

        def store(start: int, wts: NDArray, ats: NDArray | None) -> None:
            rows = slice(start, start + len(wts))
            wts_star[rows, active] = wts
            if ats_star is not None:
                ats_star[rows, active] = ats

        with timer.section('repetitions'):
            if config.n_workers == 1:
                self._run_serial(chunks, store, should_stop, R)
            else:
                self._run_pool(chunks, store, should_stop, R, config.n_workers)

        with timer.section('aggregation'):
            nan = float('nan')
            wts_p = np.array([
                resampling_p_value(wts_star[:, j], obs_wts[j]) if resampled[j] else nan
                for j in range(k)
            ])
            ats_p = None
            if ats_star is not None:
                ats_p = np.array([
                    resampling_p_value(ats_star[:, j], obs_ats[j]) for j in range(k)
                ])
            quantiles = np.array([
                _quantile(wts_star[:, j], 1.0 - config.alpha) for j in range(k)
            ])

            degenerate = ~np.all(np.isfinite(wts_star[:, active]), axis=1)
            if ats_star is not None:
                degenerate |= ~np.all(np.isfinite(ats_star[:, active]), axis=1)
            n_degenerate = int(np.sum(degenerate)) if active.size else 0
            if n_degenerate > DEGENERATE_WARN_FRACTION * R:
                msg = (
                    f"{n_degenerate} of {R} resampling repetitions were degenerate "
                    f"and were skipped when computing p-values."
                )
                warnings.warn(msg, NumericWarning, stacklevel=2)
                warnings_list.append(msg)

        timer.stop()

        params = ResamplingParams(
            effects=names,
            method=config.method.value,
            iterations=R,
            alpha=config.alpha,
            observed_wts=obs_wts,
            observed_ats=obs_ats,
            wts_distribution=wts_star,
            ats_distribution=ats_star,
            wts_p_values=wts_p,
            ats_p_values=ats_p,
            wts_quantiles=quantiles,
            resampled=resampled,
            n_degenerate=n_degenerate,
        )

        return Result(
            params=params,
            info={
                'method': config.method.value,
                'iterations': R,
                'seed': config.seed,
                'n_workers': config.n_workers,
                'n_chunks': len(chunks),
                'n_subjects': int(wide.Y.shape[0]),
            },
            timing=timer.result(),
            backend_name=self.name,
            warnings=tuple(warnings_list),
        )

    def _run_serial(self, chunks, store, should_stop, R: int) -> None:
        """Run chunks in-process, polling should_stop between them."""
        completed = 0
        for chunk in chunks:
            if should_stop is not None and should_stop():
                raise ResamplingAborted(
                    f"Resampling aborted after {completed} of {R} repetitions",
                    completed=completed,
                    requested=R,
                )
            store(*_run_chunk(chunk))
            completed += len(chunk.seeds)

    def _run_pool(self, chunks, store, should_stop, R: int, n_workers: int) -> None:
        """
        Run chunks in a process pool, collecting in submission order.

        On abort the pool is shut down without waiting: queued chunks are
        cancelled and chunks already running are abandoned.
        """
        completed = 0
        aborted = False
        executor = ProcessPoolExecutor(max_workers=n_workers)
        try:
            futures = [executor.submit(_run_chunk, chunk) for chunk in chunks]
            for future in futures:
                if should_stop is not None and should_stop():
                    aborted = True
                    raise ResamplingAborted(
                        f"Resampling aborted after {completed} of {R} repetitions",
                        completed=completed,
                        requested=R,
                    )
                start, wts, ats = future.result()
                store(start, wts, ats)
                completed += len(wts)
        finally:
            executor.shutdown(wait=not aborted, cancel_futures=aborted)
