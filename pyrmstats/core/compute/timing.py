"""
Wall-clock timing for solvers.

Every solver fills Result.timing from a Timer: one overall duration plus
the accumulated duration of each named phase.
"""

import time
from contextlib import contextmanager
from typing import Iterator


class Timer:
    """
    Overall timer with accumulating named phases.

    Usage:
        timer = Timer()
        timer.start()
        with timer.section('moments'):
            moments = moments_from_wide(wide)
        with timer.section('repetitions'):
            run_chunks(...)
        timer.stop()
        timer.result()
        # {'total_seconds': 0.05, 'moments': 0.001, 'repetitions': 0.049}

    A phase entered several times reports the sum of its durations.
    """

    def __init__(self):
        self._t0: float | None = None
        self._total: float | None = None
        self._phases: dict[str, float] = {}

    def start(self) -> None:
        self._t0 = time.perf_counter()

    def stop(self) -> None:
        if self._t0 is None:
            raise RuntimeError("Timer.stop() called before start()")
        self._total = time.perf_counter() - self._t0

    @contextmanager
    def section(self, name: str) -> Iterator[None]:
        """Add the duration of the enclosed block to phase `name`, even if it raises."""
        t0 = time.perf_counter()
        try:
            yield
        finally:
            self._phases[name] = self._phases.get(name, 0.0) + (time.perf_counter() - t0)

    def result(self) -> dict[str, float]:
        """
        Timing breakdown.

        Raises:
            RuntimeError: If the timer has not been stopped
        """
        if self._total is None:
            raise RuntimeError("Timer.result() called before stop()")
        return {'total_seconds': self._total, **self._phases}
