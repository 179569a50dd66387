"""
Hypothesis matrices for crossed factorial designs.

Every main effect and interaction is tested with a projection matrix that
acts on the vector of all cell means (canonical cell order: first factor
varies slowest). The matrix is a Kronecker product with one factor per
design factor:

    - factors in the effect:      P_k = I_k - J_k / k   (centering)
    - factors not in the effect:  J_k / k               (averaging, default)
                                  I_k                   (other_factors='identity')

Averaging gives the usual marginal hypotheses ("the effect is zero after
averaging over the other factors"); identity gives conditional hypotheses
("the effect is zero at every level of the other factors"). Both choices
yield symmetric idempotent matrices whose rank is the test's degrees of
freedom.

Effect declarations must be either all main effects or the full factorial.
In both cases the full factorial set is generated first and the requested
subset is selected from it.
"""

from __future__ import annotations

from functools import reduce
from itertools import combinations
from typing import TYPE_CHECKING, Any, Sequence

import numpy as np
from numpy.typing import NDArray

from pyrmstats.core.compute.tolerances import GINV_RTOL
from pyrmstats.core.exceptions import ConfigurationError

if TYPE_CHECKING:
    from pyrmstats.rm.design import DesignDescriptor


OTHER_FACTOR_MODES = ('average', 'identity')


def effect_name(effect: Sequence[str]) -> str:
    """'A:B' for the interaction of A and B."""
    return ":".join(effect)


def centering_matrix(k: int) -> NDArray[np.floating[Any]]:
    """I_k - J_k / k."""
    return np.eye(k) - np.full((k, k), 1.0 / k)


def averaging_matrix(k: int) -> NDArray[np.floating[Any]]:
    """J_k / k."""
    return np.full((k, k), 1.0 / k)


def full_factorial_effects(factor_names: Sequence[str]) -> list[tuple[str, ...]]:
    """
    All main effects and interactions, lowest order first.

    For factors (A, B, C): A, B, C, A:B, A:C, B:C, A:B:C.
    """
    names = tuple(factor_names)
    effects: list[tuple[str, ...]] = []
    for order in range(1, len(names) + 1):
        effects.extend(combinations(names, order))
    return effects


def effect_matrix(
    n_levels: Sequence[int],
    members: Sequence[bool],
    *,
    other_factors: str = 'average',
) -> NDArray[np.floating[Any]]:
    """
    Kronecker product of per-factor matrices for one effect.

    Args:
        n_levels: Level count per factor, canonical factor order
        members: True where the factor participates in the effect
        other_factors: 'average' (J/k) or 'identity' (I) for the rest

    Returns:
        (prod(n_levels), prod(n_levels)) projection matrix
    """
    if other_factors not in OTHER_FACTOR_MODES:
        raise ConfigurationError(
            f"other_factors must be 'average' or 'identity', got {other_factors!r}",
            option='other_factors',
            value=other_factors,
        )
    rest = averaging_matrix if other_factors == 'average' else np.eye
    blocks = [
        centering_matrix(k) if member else rest(k)
        for k, member in zip(n_levels, members)
    ]
    return reduce(np.kron, blocks)


def full_factorial_hypotheses(
    n_levels: Sequence[int],
    factor_names: Sequence[str],
    *,
    other_factors: str = 'average',
) -> list[tuple[str, NDArray[np.floating[Any]]]]:
    """
    One hypothesis matrix per main effect and interaction.

    Returns:
        [(effect_name, H), ...] in full_factorial_effects() order;
        2**len(n_levels) - 1 entries.
    """
    if len(n_levels) != len(factor_names):
        raise ConfigurationError(
            f"Got {len(n_levels)} level counts for {len(factor_names)} factors"
        )
    names = tuple(factor_names)
    out = []
    for effect in full_factorial_effects(names):
        members = [name in effect for name in names]
        H = effect_matrix(n_levels, members, other_factors=other_factors)
        out.append((effect_name(effect), H))
    return out


def resolve_effects(
    declared: Sequence[str | Sequence[str]] | None,
    factor_names: Sequence[str],
) -> tuple[tuple[str, ...], ...]:
    """
    Normalize and check an effect declaration.

    Args:
        declared: None (full factorial), or effects given as 'A:B' strings
            or name tuples
        factor_names: Factor names in canonical order

    Returns:
        The selected effects, each ordered canonically, in
        full_factorial_effects() order.

    Raises:
        ConfigurationError: For unknown factors, repeated effects, or a
            declaration that is neither all main effects nor the full
            factorial.
    """
    names = tuple(factor_names)
    full = full_factorial_effects(names)
    if declared is None:
        return tuple(full)

    position = {name: i for i, name in enumerate(names)}
    normalized: list[tuple[str, ...]] = []
    for item in declared:
        parts = item.split(":") if isinstance(item, str) else list(item)
        parts = [p.strip() for p in parts]
        unknown = [p for p in parts if p not in position]
        if unknown or not parts:
            raise ConfigurationError(
                f"Effect {item!r} refers to unknown factor(s) {unknown}; "
                f"factors are {list(names)}",
                option='effects',
                value=item,
            )
        if len(set(parts)) != len(parts):
            raise ConfigurationError(
                f"Effect {item!r} repeats a factor",
                option='effects',
                value=item,
            )
        normalized.append(tuple(sorted(parts, key=position.__getitem__)))

    if len(set(normalized)) != len(normalized):
        raise ConfigurationError(
            f"Effects declared more than once: {list(declared)}",
            option='effects',
            value=list(declared),
        )

    requested = set(normalized)
    main_effects = {(name,) for name in names}
    if requested == main_effects:
        return tuple(e for e in full if len(e) == 1)
    if requested == set(full):
        return tuple(full)

    raise ConfigurationError(
        f"Declared {len(normalized)} effect(s) for {len(names)} factor(s); "
        f"specify all main effects only ({len(names)}) or the full factorial "
        f"({len(full)}). Partial interaction sets are not supported.",
        option='effects',
        value=list(declared),
    )


def hypothesis_matrices(
    design: DesignDescriptor,
    *,
    other_factors: str = 'average',
) -> list[tuple[str, NDArray[np.floating[Any]]]]:
    """
    Hypothesis matrices for the effects declared on a design.

    The full factorial set is built and the declared effects are kept.
    """
    full = full_factorial_hypotheses(
        design.n_levels, design.factor_names, other_factors=other_factors,
    )
    keep = {effect_name(e) for e in design.effects}
    return [(name, H) for name, H in full if name in keep]


def is_group_contrast(
    H: NDArray[np.floating[Any]],
    n_groups: int,
    n_within: int,
) -> bool:
    """
    True if H vanishes on every mean vector that is equal across groups.

    Such a hypothesis only compares between-subject groups, which is what
    shuffling group membership can test. Effects involving a between-subject
    factor qualify; pure within-subject effects and every hypothesis of a
    single-group design do not.
    """
    H = np.asarray(H, dtype=np.float64)
    shared = np.kron(np.ones((n_groups, 1)), np.eye(n_within))
    scale = max(1.0, float(np.max(np.abs(H)))) if H.size else 1.0
    return bool(np.all(np.abs(H @ shared) <= GINV_RTOL * scale))
