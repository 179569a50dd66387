"""
PyRMStats: semi-parametric tests for repeated measures designs.

Wald-type and ANOVA-type statistics for factorial designs with any number
of between- and within-subject factors, without assuming normality,
sphericity or equal covariances across groups. Resampling (permutation,
parametric bootstrap, wild bootstrap) improves the small-sample behaviour
of the asymptotic tests.

Submodules:
    rm: Hypothesis matrices, moment estimation, WTS/ATS and resampling
    core: Result envelope, exceptions, validation, timing
"""

__version__ = "0.1.0"

from pyrmstats import rm

__all__ = [
    "__version__",
    "rm",
]
