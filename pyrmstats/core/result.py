"""
Generic result container for all PyRMStats computations.

Every computation returns its numeric payload wrapped in a Result. The
envelope carries what is common to all of them: run metadata, timing,
the name of the backend that did the work, and non-fatal warnings.

Design decisions:
    - Generic over parameter payload P for type safety
    - info dict for flexible metadata (method, iterations, seed)
    - timing is optional (don't burden unit tests)
    - Immutable (frozen=True); resampled runs never mutate an observed result
"""

from dataclasses import dataclass, field
from typing import TypeVar, Generic, Any

P = TypeVar('P')  # Parameter payload type


@dataclass(frozen=True)
class Result(Generic[P]):
    """
    Immutable result envelope for statistical computations.

    Type Parameters:
        P: The domain-specific parameter payload type

    Attributes:
        params: Domain-specific payload (statistics, distributions, tables)
        info: Structured metadata (method, iterations, seed, ...)
        timing: Execution timing breakdown, or None if not measured
        backend_name: Identifier of the backend that produced this result
        warnings: Non-fatal issues encountered during computation

    Examples:
        >>> Result(
        ...     params=ResamplingParams(...),
        ...     info={'method': 'WildBS', 'iterations': 1000, 'seed': 42},
        ...     timing={'total_seconds': 0.8, 'repetitions': 0.79},
        ...     backend_name='cpu_resampling',
        ... )
    """
    params: P
    info: dict[str, Any]
    timing: dict[str, float] | None
    backend_name: str
    warnings: tuple[str, ...] = field(default_factory=tuple)

    def has_warning(self, substring: str) -> bool:
        """Check if any warning contains the given substring."""
        return any(substring in w for w in self.warnings)
