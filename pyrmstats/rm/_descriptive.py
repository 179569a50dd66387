"""
Descriptive summaries for repeated measures designs.

cell_table: one row per cell with mean and confidence interval.
marginal_means: pooled responses per factor level.
"""

from __future__ import annotations

import numpy as np
from scipy import stats as sp_stats

from pyrmstats.rm._common import DescriptiveRow, MarginalMean, MomentEstimate
from pyrmstats.rm.design import DesignDescriptor, Sample


def cell_table(
    design: DesignDescriptor,
    moments: MomentEstimate,
    alpha: float,
    wts_quantile: float | None = None,
) -> tuple[DescriptiveRow, ...]:
    """
    Cell means with 100(1 - alpha)% confidence intervals.

    The interval is mean +/- se * q with se = sqrt(diag(Sigma)). q is the
    t-quantile t_{1-alpha/2}(n_g) by default, or sqrt(wts_quantile) when a
    resampled WTS quantile is given.

    Args:
        design: Design the moments belong to
        moments: Observed moment estimate
        alpha: Significance level
        wts_quantile: (1 - alpha)-quantile of a resampled WTS distribution,
            or None for t-quantile intervals
    """
    t = design.n_within_cells
    se = np.sqrt(np.clip(np.diag(moments.covariance), 0.0, None))
    rows = []
    for c, levels in enumerate(design.cells):
        n_g = int(moments.group_sizes[c // t])
        if wts_quantile is None:
            q = float(sp_stats.t.ppf(1.0 - alpha / 2.0, df=n_g))
        else:
            q = float(np.sqrt(wts_quantile))
        mean = float(moments.mean[c])
        half = q * float(se[c])
        rows.append(DescriptiveRow(
            levels=tuple(levels),
            n=n_g,
            mean=mean,
            ci_lower=mean - half,
            ci_upper=mean + half,
        ))
    return tuple(rows)


def marginal_means(
    design: DesignDescriptor,
    sample: Sample,
    alpha: float,
) -> tuple[MarginalMean, ...]:
    """
    Mean, variance and t-interval of all responses at each factor level.

    The interval uses n degrees of freedom, like the cell table.

    Observations are pooled over subjects and over the other factors, so
    repeated measurements of one subject count separately.
    """
    level_idx = np.unravel_index(sample.cell, design.n_levels)
    out = []
    for j, factor in enumerate(design.factors):
        for i, level in enumerate(factor.levels):
            values = sample.y[level_idx[j] == i]
            n = len(values)
            mean = float(np.mean(values)) if n else float('nan')
            if n > 1:
                variance = float(np.var(values, ddof=1))
                q = float(sp_stats.t.ppf(1.0 - alpha / 2.0, df=n))
                half = q * float(np.sqrt(variance / n))
            else:
                variance = float('nan')
                half = float('nan')
            out.append(MarginalMean(
                factor=factor.name,
                level=level,
                n=n,
                mean=mean,
                variance=variance,
                ci_lower=mean - half,
                ci_upper=mean + half,
            ))
    return tuple(out)
