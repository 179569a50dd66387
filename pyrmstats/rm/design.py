"""
Design objects for repeated measures tests.

DesignDescriptor describes the factorial structure (immutable, built once).
Sample holds the long-format observations of one analysis run.
WideSample is the subject x within-cell view of a Sample that the moment
estimator and the resampling perturbations work on.
ResamplingDesign bundles everything the resampling backend needs.

Canonical ordering, used everywhere: between-subject factors first, then
within-subject factors; cells are the Cartesian product of the factor levels
with the last factor varying fastest. Cell c therefore belongs to
between-subject group c // n_within_cells and within-subject cell
c % n_within_cells.
"""

from __future__ import annotations

from dataclasses import dataclass
from itertools import product
from typing import Any, Sequence

import numpy as np
from numpy.typing import NDArray

from pyrmstats.core.exceptions import ConfigurationError, DataError
from pyrmstats.core.validation import (
    check_1d,
    check_array,
    check_finite,
    check_group_sizes,
    check_labels,
)
from pyrmstats.rm._config import ResamplingConfig
from pyrmstats.rm._hypothesis import resolve_effects


@dataclass(frozen=True)
class Factor:
    """One design factor."""
    name: str
    levels: tuple[str, ...]
    within: bool

    @property
    def n_levels(self) -> int:
        return len(self.levels)


def _make_factors(levels_by_name: dict[str, Any] | None, within: bool) -> list[Factor]:
    factors = []
    for name, levels in (levels_by_name or {}).items():
        if isinstance(levels, (int, np.integer)):
            labels = tuple(str(i + 1) for i in range(int(levels)))
        else:
            labels = tuple(str(v) for v in levels)
        if len(labels) < 2:
            raise ConfigurationError(
                f"{name}: need at least 2 levels, got {len(labels)}",
                option=name,
                value=labels,
            )
        if len(set(labels)) != len(labels):
            raise ConfigurationError(
                f"{name}: duplicate level labels {labels}",
                option=name,
                value=labels,
            )
        factors.append(Factor(name=str(name), levels=labels, within=within))
    return factors


@dataclass(frozen=True)
class DesignDescriptor:
    """
    Factorial structure of a repeated measures design.

    Created via from_levels(), not directly.

    Attributes:
        factors: Between-subject factors followed by within-subject factors
        effects: Effects to test, each a tuple of factor names
    """
    factors: tuple[Factor, ...]
    effects: tuple[tuple[str, ...], ...]

    @staticmethod
    def from_levels(
        *,
        between: dict[str, Any] | None = None,
        within: dict[str, Any] | None = None,
        effects: Sequence[str | Sequence[str]] | None = None,
    ) -> 'DesignDescriptor':
        """
        Create a design descriptor.

        Args:
            between: {factor_name: level labels or level count}
            within: {factor_name: level labels or level count}
            effects: None for the full factorial, or the effects to test
                ('A', 'A:B' or ('A', 'B')); all main effects or all effects

        Returns:
            Validated DesignDescriptor

        Raises:
            ConfigurationError: If a factor has fewer than 2 levels, names
                collide, or the effect declaration is partial
        """
        between_factors = _make_factors(between, within=False)
        within_factors = _make_factors(within, within=True)
        factors = tuple(between_factors + within_factors)

        if not factors:
            raise ConfigurationError("Design needs at least one factor")

        names = [f.name for f in factors]
        if len(set(names)) != len(names):
            raise ConfigurationError(
                f"Factor names must be unique, got {names}",
                option='factors',
                value=names,
            )

        return DesignDescriptor(
            factors=factors,
            effects=resolve_effects(effects, names),
        )

    @property
    def factor_names(self) -> tuple[str, ...]:
        return tuple(f.name for f in self.factors)

    @property
    def n_levels(self) -> tuple[int, ...]:
        return tuple(f.n_levels for f in self.factors)

    @property
    def between_factors(self) -> tuple[Factor, ...]:
        return tuple(f for f in self.factors if not f.within)

    @property
    def within_factors(self) -> tuple[Factor, ...]:
        return tuple(f for f in self.factors if f.within)

    @property
    def n_cells(self) -> int:
        return int(np.prod(self.n_levels))

    @property
    def n_within_cells(self) -> int:
        """Repeated measurements per subject."""
        return int(np.prod([f.n_levels for f in self.within_factors]))

    @property
    def n_groups(self) -> int:
        """Number of between-subject groups."""
        return int(np.prod([f.n_levels for f in self.between_factors]))

    @property
    def cells(self) -> tuple[tuple[str, ...], ...]:
        """Level combinations in canonical order."""
        return tuple(product(*(f.levels for f in self.factors)))

    @property
    def group_labels(self) -> tuple[str, ...]:
        """Readable label per between-subject group, canonical order."""
        between = self.between_factors
        if not between:
            return ("all subjects",)
        return tuple(
            ", ".join(f"{f.name}={lev}" for f, lev in zip(between, combo))
            for combo in product(*(f.levels for f in between))
        )

    @property
    def effect_names(self) -> tuple[str, ...]:
        return tuple(":".join(e) for e in self.effects)

    def cell_index(self, level_indices: NDArray) -> NDArray:
        """
        Flat cell index from per-factor level indices.

        Args:
            level_indices: (n, n_factors) integer level indices
        """
        return np.ravel_multi_index(tuple(level_indices.T), self.n_levels)


@dataclass(frozen=True)
class WideSample:
    """
    Subject-level data: one row per subject, one column per within cell.

    Rows are ordered by between-subject group, then subject label.

    Attributes:
        Y: (n_subjects, n_within_cells) responses
        group: (n_subjects,) between-subject group index per row
        n_groups: Number of between-subject groups
        subjects: Subject label per row
    """
    Y: NDArray[np.floating[Any]]
    group: NDArray[np.integer[Any]]
    n_groups: int
    subjects: tuple[str, ...]

    @property
    def group_sizes(self) -> NDArray[np.integer[Any]]:
        return np.bincount(self.group, minlength=self.n_groups)

    def blocks(self) -> list[NDArray[np.floating[Any]]]:
        """Per-group (n_g, t) response matrices, canonical group order."""
        return [self.Y[self.group == g] for g in range(self.n_groups)]

    def replace(self, *, Y: NDArray | None = None, group: NDArray | None = None) -> WideSample:
        """Copy with new responses and/or group assignment."""
        return WideSample(
            Y=self.Y if Y is None else Y,
            group=self.group if group is None else group,
            n_groups=self.n_groups,
            subjects=self.subjects,
        )


@dataclass(frozen=True)
class Sample:
    """
    Long-format observations of one analysis run.

    Attributes:
        y: (N,) responses
        subject: (N,) subject labels
        cell: (N,) flat cell index (see DesignDescriptor.cells)
    """
    y: NDArray[np.floating[Any]]
    subject: NDArray
    cell: NDArray[np.integer[Any]]

    @staticmethod
    def from_labels(
        design: DesignDescriptor,
        y: Any,
        subject: Any,
        labels: dict[str, Any],
    ) -> 'Sample':
        """
        Create a sample from long-format label arrays.

        Args:
            design: The design the labels refer to
            y: Response variable (1D numeric)
            subject: Subject identifiers (1D)
            labels: {factor_name: 1D level labels}, one entry per factor

        Returns:
            Sample with flat cell indices

        Raises:
            DataError: On missing values, unknown levels or length mismatches
        """
        y_arr = check_array(y, "y")
        check_1d(y_arr, "y")
        check_finite(y_arr, "y")
        n = len(y_arr)
        if n == 0:
            raise DataError("y: no observations")

        subject_arr = check_labels(subject, "subject", n)

        missing = [name for name in design.factor_names if name not in labels]
        if missing:
            raise DataError(f"No labels given for factor(s) {missing}")

        level_idx = np.empty((n, len(design.factors)), dtype=np.intp)
        for j, factor in enumerate(design.factors):
            lab = check_labels(labels[factor.name], factor.name, n)
            lookup = {lev: i for i, lev in enumerate(factor.levels)}
            unknown = sorted(set(lab) - lookup.keys())
            if unknown:
                raise DataError(
                    f"{factor.name}: labels {unknown} are not levels of the design "
                    f"({list(factor.levels)})"
                )
            level_idx[:, j] = [lookup[v] for v in lab]

        return Sample(
            y=y_arr,
            subject=subject_arr,
            cell=design.cell_index(level_idx),
        )

    @property
    def n_obs(self) -> int:
        return len(self.y)

    def to_wide(self, design: DesignDescriptor) -> WideSample:
        """
        Reshape to one row per subject.

        Raises:
            DataError: If a subject spans several between-subject groups,
                does not have exactly one observation in every within cell,
                or a group has fewer than 2 subjects
        """
        t = design.n_within_cells
        group_of_obs = self.cell // t
        within_of_obs = self.cell % t

        subjects, subj_idx = np.unique(self.subject, return_inverse=True)
        n_subj = len(subjects)

        subject_group = np.full(n_subj, -1, dtype=np.intp)
        for s, g in zip(subj_idx, group_of_obs):
            if subject_group[s] == -1:
                subject_group[s] = g
            elif subject_group[s] != g:
                raise DataError(
                    f"Subject {subjects[s]!r} appears in more than one "
                    f"between-subject group; subjects in different groups "
                    f"need distinct labels"
                )

        counts = np.zeros((n_subj, t), dtype=np.intp)
        np.add.at(counts, (subj_idx, within_of_obs), 1)
        if np.any(counts != 1):
            bad = int(np.flatnonzero(np.any(counts != 1, axis=1))[0])
            raise DataError(
                f"Subject {subjects[bad]!r} has {counts[bad].tolist()} observations "
                f"per within-subject cell; exactly one per cell is required. "
                f"The number of subjects ({n_subj}) times the number of "
                f"within-subject cells ({t}) must equal the number of "
                f"observations ({self.n_obs})."
            )

        Y = np.empty((n_subj, t), dtype=np.float64)
        Y[subj_idx, within_of_obs] = self.y

        order = np.lexsort((np.arange(n_subj), subject_group))
        group = subject_group[order]
        check_group_sizes(
            np.bincount(group, minlength=design.n_groups),
            list(design.group_labels),
        )

        return WideSample(
            Y=Y[order],
            group=group,
            n_groups=design.n_groups,
            subjects=tuple(str(s) for s in subjects[order]),
        )


@dataclass(frozen=True)
class ResamplingDesign:
    """
    Frozen inputs of one resampling run.

    Attributes:
        wide: Observed subject-level data
        hypotheses: ((effect_name, H), ...) tested on every repetition
        config: Validated resampling options
    """
    wide: WideSample
    hypotheses: tuple[tuple[str, NDArray[np.floating[Any]]], ...]
    config: ResamplingConfig

    @classmethod
    def for_resampling(
        cls,
        wide: WideSample,
        hypotheses: Sequence[tuple[str, NDArray]],
        config: ResamplingConfig,
    ) -> ResamplingDesign:
        """
        Create a resampling design with validation.

        Raises:
            ConfigurationError: If no hypothesis is given or a matrix does
                not match the number of cells
        """
        if not hypotheses:
            raise ConfigurationError("At least one hypothesis matrix is required")

        n_cells = wide.Y.shape[1] * wide.n_groups
        checked = []
        for name, H in hypotheses:
            H_arr = np.asarray(H, dtype=np.float64)
            if H_arr.ndim != 2 or H_arr.shape[1] != n_cells:
                raise ConfigurationError(
                    f"Hypothesis {name!r}: expected {n_cells} columns, "
                    f"got shape {H_arr.shape}",
                    option='hypothesis',
                    value=H_arr.shape,
                )
            checked.append((str(name), H_arr))

        return cls(wide=wide, hypotheses=tuple(checked), config=config)
