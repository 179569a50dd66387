"""
Repeated measures backends.

Available backends:
    CPUResamplingBackend: Permutation and bootstrap resampling on CPU,
        serial or over a process pool
"""

from pyrmstats.rm.backends.cpu import CPUResamplingBackend

__all__ = [
    "CPUResamplingBackend",
]
