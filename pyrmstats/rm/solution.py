"""
User-facing repeated measures solution types.

Each solution wraps a Result[Params] and provides convenient accessors and
formatted summary output.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import numpy as np
from numpy.typing import NDArray

from pyrmstats.core.result import Result
from pyrmstats.rm._common import (
    DescriptiveRow,
    EffectTest,
    MarginalMean,
    RMParams,
    ResamplingParams,
)


# =====================================================================
# ResamplingSolution
# =====================================================================


@dataclass
class ResamplingSolution:
    """
    User-facing resampling results.

    Produced by resample(). Column j of every distribution belongs to
    effects[j].
    """
    _result: Result[ResamplingParams]

    @property
    def effects(self) -> tuple[str, ...]:
        return self._result.params.effects

    @property
    def method(self) -> str:
        return self._result.params.method

    @property
    def iterations(self) -> int:
        return self._result.params.iterations

    @property
    def observed_wts(self) -> NDArray[np.floating[Any]]:
        return self._result.params.observed_wts

    @property
    def observed_ats(self) -> NDArray[np.floating[Any]]:
        return self._result.params.observed_ats

    @property
    def wts_distribution(self) -> NDArray[np.floating[Any]]:
        """Resampled WTS, shape (iterations, n_effects); NaN for degenerate rows."""
        return self._result.params.wts_distribution

    @property
    def ats_distribution(self) -> NDArray[np.floating[Any]] | None:
        """Resampled ATS, or None unless the method is the wild bootstrap."""
        return self._result.params.ats_distribution

    @property
    def wts_p_values(self) -> NDArray[np.floating[Any]]:
        """Resampling WTS p-values; NaN for effects the method cannot test."""
        return self._result.params.wts_p_values

    @property
    def ats_p_values(self) -> NDArray[np.floating[Any]] | None:
        return self._result.params.ats_p_values

    @property
    def resampled(self) -> NDArray[np.bool_]:
        """Per effect, whether the method produced a resampling distribution."""
        return self._result.params.resampled

    @property
    def wts_p_value(self) -> float | None:
        """Resampling WTS p-value of the first (or only) effect, or None."""
        if not self.resampled[0]:
            return None
        return float(self.wts_p_values[0])

    @property
    def ats_p_value(self) -> float | None:
        """Resampling ATS p-value of the first (or only) effect, or None."""
        p = self.ats_p_values
        return None if p is None else float(p[0])

    @property
    def wts_quantiles(self) -> NDArray[np.floating[Any]]:
        """(1 - alpha)-quantile of each resampled WTS distribution."""
        return self._result.params.wts_quantiles

    @property
    def n_degenerate(self) -> int:
        return self._result.params.n_degenerate

    @property
    def info(self) -> dict[str, Any]:
        return self._result.info

    @property
    def timing(self) -> dict[str, float] | None:
        return self._result.timing

    @property
    def backend_name(self) -> str:
        return self._result.backend_name

    @property
    def warnings(self) -> tuple[str, ...]:
        return self._result.warnings

    def summary(self) -> str:
        """Observed statistics and resampling p-values per effect."""
        lines = [
            f"Resampling ({self.method}, {self.iterations} repetitions)",
            "=" * 64,
            f"{'Effect':<20} {'WTS':>10} {'p(WTS)':>12} {'ATS':>10} {'p(ATS)':>10}",
            "-" * 64,
        ]
        ats_p = self.ats_p_values
        for j, name in enumerate(self.effects):
            p_wts = f"{self.wts_p_values[j]:.4f}" if self.resampled[j] else "-"
            p_ats = "-" if ats_p is None else f"{ats_p[j]:.4f}"
            lines.append(
                f"{name:<20} {self.observed_wts[j]:>10.4f} "
                f"{p_wts:>12} {self.observed_ats[j]:>10.4f} {p_ats:>10}"
            )
        if self.n_degenerate:
            lines.append("")
            lines.append(f"Degenerate repetitions skipped: {self.n_degenerate}")
        return "\n".join(lines)

    def __repr__(self) -> str:
        return (
            f"ResamplingSolution(method={self.method!r}, "
            f"iterations={self.iterations}, effects={list(self.effects)})"
        )


# =====================================================================
# RMSolution
# =====================================================================


@dataclass
class RMSolution:
    """
    User-facing result for rm_test().

    Holds descriptive statistics, the covariance estimate, asymptotic WTS
    and ATS tests per effect, and resampling p-values.
    """
    _result: Result[RMParams]
    _resampling: ResamplingSolution

    @property
    def tests(self) -> tuple[EffectTest, ...]:
        return self._result.params.tests

    @property
    def effects(self) -> tuple[str, ...]:
        return tuple(t.effect for t in self.tests)

    @property
    def descriptive(self) -> tuple[DescriptiveRow, ...]:
        return self._result.params.descriptive

    @property
    def marginal_means(self) -> tuple[MarginalMean, ...]:
        return self._result.params.marginal_means

    @property
    def mean(self) -> NDArray[np.floating[Any]]:
        """Cell means in canonical cell order."""
        return self._result.params.mean

    @property
    def covariance(self) -> NDArray[np.floating[Any]]:
        """Estimated covariance of the cell means."""
        return self._result.params.covariance

    @property
    def group_sizes(self) -> NDArray[np.integer[Any]]:
        return self._result.params.group_sizes

    @property
    def n_subjects(self) -> int:
        return self._result.params.n_subjects

    @property
    def n_obs(self) -> int:
        return self._result.params.n_obs

    @property
    def resampling(self) -> ResamplingSolution:
        return self._resampling

    @property
    def singular_covariance(self) -> bool:
        return self._result.params.singular_covariance

    @property
    def wts(self) -> dict[str, tuple[float, int, float]]:
        """{effect: (statistic, df, p-value)}."""
        return {
            t.effect: (t.statistic.wts, t.statistic.wts_df, t.statistic.wts_p_value)
            for t in self.tests
        }

    @property
    def ats(self) -> dict[str, tuple[float, float, float, float]]:
        """{effect: (statistic, df1, df2, p-value)}."""
        return {
            t.effect: (
                t.statistic.ats,
                t.statistic.ats_df1,
                t.statistic.ats_df2,
                t.statistic.ats_p_value,
            )
            for t in self.tests
        }

    @property
    def resampling_p_values(self) -> dict[str, tuple[float | None, float | None]]:
        """{effect: (WTS p-value, ATS p-value)}; None where the method has no test."""
        return {
            t.effect: (t.resampling_wts_p_value, t.resampling_ats_p_value)
            for t in self.tests
        }

    @property
    def info(self) -> dict[str, Any]:
        return self._result.info

    @property
    def timing(self) -> dict[str, float] | None:
        return self._result.timing

    @property
    def backend_name(self) -> str:
        return self._result.backend_name

    @property
    def warnings(self) -> tuple[str, ...]:
        return self._result.warnings

    def summary(self) -> str:
        """Descriptive table, WTS, ATS and resampling p-values."""
        p = self._result.params
        factors = p.factor_names
        conf_pct = f"{100 * (1 - p.alpha):g}%"

        lines = [
            "Repeated Measures Analysis: Wald-type and ANOVA-type Statistics",
            "=" * 72,
            f"Between-subject factors: {', '.join(p.between_factors) or '(none)'}",
            f"Within-subject factors:  {', '.join(p.within_factors) or '(none)'}",
            f"Subjects: {p.n_subjects}",
            f"Observations: {p.n_obs}",
            "",
            f"Descriptive ({conf_pct} CI, {p.ci_method}):",
        ]
        header = " ".join(f"{name:>10}" for name in factors)
        lines.append(f"  {header} {'n':>5} {'Means':>10} {'Lower':>10} {'Upper':>10}")
        for row in self.descriptive:
            levels = " ".join(f"{lev:>10}" for lev in row.levels)
            lines.append(
                f"  {levels} {row.n:>5} {row.mean:>10.4f} "
                f"{row.ci_lower:>10.4f} {row.ci_upper:>10.4f}"
            )

        lines.append("")
        lines.append("Wald-Type Statistic (WTS):")
        lines.append(f"  {'Effect':<20} {'Test stat':>12} {'df':>4} {'p-value':>12}")
        for t in self.tests:
            s = t.statistic
            lines.append(
                f"  {t.effect:<20} {s.wts:>12.4f} {s.wts_df:>4} "
                f"{s.wts_p_value:>12.4e} {_significance_stars(s.wts_p_value)}"
            )

        lines.append("")
        lines.append("ANOVA-Type Statistic (ATS):")
        lines.append(
            f"  {'Effect':<20} {'Test stat':>12} {'df1':>8} {'df2':>10} {'p-value':>12}"
        )
        for t in self.tests:
            s = t.statistic
            lines.append(
                f"  {t.effect:<20} {s.ats:>12.4f} {s.ats_df1:>8.3f} "
                f"{s.ats_df2:>10.3f} {s.ats_p_value:>12.4e} "
                f"{_significance_stars(s.ats_p_value)}"
            )

        lines.append("")
        lines.append(f"p-values resampling ({p.resampling}, {p.iterations} repetitions):")
        lines.append(f"  {'Effect':<20} {'WTS':>12} {'ATS':>12}")
        for t in self.tests:
            wts_p = (
                "-" if t.resampling_wts_p_value is None
                else f"{t.resampling_wts_p_value:.4f}"
            )
            ats_p = (
                "-" if t.resampling_ats_p_value is None
                else f"{t.resampling_ats_p_value:.4f}"
            )
            lines.append(f"  {t.effect:<20} {wts_p:>12} {ats_p:>12}")

        lines.append("-" * 72)
        lines.append("Signif. codes:  0 '***' 0.001 '**' 0.01 '*' 0.05 '.' 0.1 ' ' 1")

        if self.singular_covariance:
            lines.append("")
            lines.append("Warning: singular covariance matrix; the WTS is not a valid test.")

        return "\n".join(lines)

    def __repr__(self) -> str:
        return (
            f"RMSolution(n_subjects={self.n_subjects}, "
            f"effects={list(self.effects)}, "
            f"resampling={self._result.params.resampling!r})"
        )


# =====================================================================
# Helpers
# =====================================================================


def _significance_stars(p: float | None) -> str:
    """Return significance stars for a p-value."""
    if p is None or np.isnan(p):
        return ""
    if p < 0.001:
        return "***"
    if p < 0.01:
        return "**"
    if p < 0.05:
        return "*"
    if p < 0.1:
        return "."
    return ""
