"""
Random effects specification, Z matrix construction, and Λ_θ parameterization.

This module handles:
1. Parsing grouping variables and random effect terms
2. Building the random effects design matrix Z
3. Constructing the relative covariance factor Λ_θ from θ
4. θ bounds, starting values and boundary (singularity) checks
5. Splitting θ into per-group lower triangles and back

The θ parameterization follows Bates et al. (2015): θ holds the elements
of the lower-triangular Cholesky factor of the *relative* covariance
matrix. Within a group the triangle is stored row by row, which for a
2×2 block coincides with lme4's column-major order.
"""

from __future__ import annotations

from dataclasses import dataclass
import numpy as np
from numpy.typing import NDArray

from glmmcompare.core.exceptions import ValidationError, DimensionError


@dataclass(frozen=True)
class RandomEffectSpec:
    """Specification for one grouping factor's random effects.

    Attributes:
        group_name: Name of the grouping factor (e.g. 'rep').
        group_ids: Integer group labels for each observation, shape (n,).
            Values are 0-indexed consecutive integers.
        levels: Sorted unique group labels (J,).
        terms: Names of the random effect terms (e.g. ('1', 'cov')).
        Z_block: Design matrix block for this grouping factor, shape (n, J*q).
        n_groups: Number of unique groups (J).
        n_terms: Number of random effect terms per group (q).
        theta_size: Number of θ parameters for this block = q*(q+1)/2.
    """
    group_name: str
    group_ids: NDArray
    levels: NDArray
    terms: tuple[str, ...]
    Z_block: NDArray
    n_groups: int
    n_terms: int
    theta_size: int


def parse_random_effects(
    groups: dict[str, NDArray],
    random_effects: dict[str, list[str]] | None,
    random_data: dict[str, NDArray] | None,
    n: int,
) -> list[RandomEffectSpec]:
    """Parse grouping input into RandomEffectSpec objects.

    Args:
        groups: Mapping of grouping factor name → group labels array (n,).
        random_effects: Mapping of group name → list of term names.
            If None, defaults to random intercept ('1') for each group.
            Example: {'rep': ['1', 'cov']} for (1 + cov | rep).
        random_data: Mapping of variable name → data array (n,) for
            random slope variables.
        n: Number of observations.

    Returns:
        List of RandomEffectSpec, one per grouping factor, in the order
        of ``groups``.
    """
    if random_effects is None:
        random_effects = {name: ['1'] for name in groups}

    if random_data is None:
        random_data = {}

    specs = []
    for group_name, group_raw in groups.items():
        group_raw = np.asarray(group_raw)
        if group_raw.shape[0] != n:
            raise DimensionError(
                f"Group '{group_name}' has {group_raw.shape[0]} elements, "
                f"expected {n}"
            )

        levels, group_ids = np.unique(group_raw, return_inverse=True)
        terms = tuple(random_effects.get(group_name, ['1']))
        if not terms:
            raise ValidationError(
                f"Group '{group_name}' has an empty random effect term list"
            )
        n_terms = len(terms)

        Z_block = _build_z_block(group_ids, len(levels), terms, random_data, n)

        specs.append(RandomEffectSpec(
            group_name=group_name,
            group_ids=group_ids,
            levels=levels,
            terms=terms,
            Z_block=Z_block,
            n_groups=len(levels),
            n_terms=n_terms,
            theta_size=n_terms * (n_terms + 1) // 2,
        ))

    return specs


def _build_z_block(
    group_ids: NDArray,
    n_groups: int,
    terms: tuple[str, ...],
    random_data: dict[str, NDArray],
    n: int,
) -> NDArray:
    """Build the Z matrix block for one grouping factor.

    Columns are term-major: [term0_group0, term0_group1, ...,
    term1_group0, ...]. For '1' the column is the group indicator; for a
    slope term it is the indicator times the variable.
    """
    Z = np.zeros((n, n_groups * len(terms)), dtype=np.float64)
    rows = np.arange(n)

    for t_idx, term in enumerate(terms):
        cols = t_idx * n_groups + group_ids
        if term == '1':
            Z[rows, cols] = 1.0
            continue
        if term not in random_data:
            raise ValidationError(
                f"Random slope term '{term}' requires data in "
                f"random_data dict, but '{term}' was not found. "
                f"Available: {list(random_data.keys())}"
            )
        values = np.asarray(random_data[term], dtype=np.float64)
        if values.shape[0] != n:
            raise DimensionError(
                f"Random data '{term}' has {values.shape[0]} elements, "
                f"expected {n}"
            )
        Z[rows, cols] = values

    return Z


def build_z_matrix(specs: list[RandomEffectSpec]) -> NDArray:
    """Concatenate Z blocks from all grouping factors: Z = [Z_1 | Z_2 | ...]."""
    if not specs:
        raise ValidationError("At least one random effect specification required")
    return np.hstack([spec.Z_block for spec in specs])


def lower_triangle(theta_k: NDArray, q: int) -> NDArray:
    """Form the q × q lower-triangular factor T from its row-major elements."""
    T = np.zeros((q, q), dtype=np.float64)
    T[np.tril_indices(q)] = theta_k
    return T


def build_lambda(theta: NDArray, specs: list[RandomEffectSpec]) -> NDArray:
    """Build block-diagonal Λ_θ from the theta parameter vector.

    For grouping factor k with q_k terms and J_k groups the block is
    T_k ⊗ I_J_k, matching the term-major column order of Z.
    """
    blocks = []
    offset = 0
    for spec in specs:
        T = lower_triangle(theta[offset:offset + spec.theta_size], spec.n_terms)
        offset += spec.theta_size
        blocks.append(np.kron(T, np.eye(spec.n_groups)))

    total_q = sum(s.n_groups * s.n_terms for s in specs)
    Lambda = np.zeros((total_q, total_q), dtype=np.float64)
    pos = 0
    for block in blocks:
        size = block.shape[0]
        Lambda[pos:pos + size, pos:pos + size] = block
        pos += size
    return Lambda


def _diagonal_mask(specs: list[RandomEffectSpec]) -> NDArray:
    """Boolean mask over θ marking the diagonal elements of each T_k."""
    mask = []
    for spec in specs:
        for row in range(spec.n_terms):
            for col in range(row + 1):
                mask.append(row == col)
    return np.array(mask, dtype=bool)


def theta_lower_bounds(specs: list[RandomEffectSpec]) -> NDArray:
    """Lower bounds for θ: 0 on the diagonal, -inf off the diagonal."""
    return np.where(_diagonal_mask(specs), 0.0, -np.inf)


def theta_start(specs: list[RandomEffectSpec]) -> NDArray:
    """Starting θ: identity relative covariance (1 on the diagonal, 0 off)."""
    return np.where(_diagonal_mask(specs), 1.0, 0.0)


def is_singular_theta(
    theta: NDArray,
    specs: list[RandomEffectSpec],
    tol: float = 1e-4,
) -> bool:
    """True if any diagonal element of θ lies within tol of its 0 bound.

    Same rule as lme4::isSingular: the fitted covariance matrix is on the
    boundary of the parameter space (a zero variance or a ±1 correlation).
    """
    return bool(np.any(np.abs(theta[_diagonal_mask(specs)]) < tol))


def split_theta(theta: NDArray, specs: list[RandomEffectSpec]) -> dict[str, NDArray]:
    """Split flat θ into group name → row-major lower triangle."""
    blocks = {}
    offset = 0
    for spec in specs:
        blocks[spec.group_name] = np.array(theta[offset:offset + spec.theta_size])
        offset += spec.theta_size
    return blocks


def join_theta(
    blocks: dict[str, NDArray],
    specs: list[RandomEffectSpec],
) -> NDArray:
    """Inverse of split_theta: flatten per-group triangles in grouping-factor order.

    Raises:
        ValidationError: If a group is missing or a block has the wrong size.
    """
    parts = []
    for spec in specs:
        if spec.group_name not in blocks:
            raise ValidationError(
                f"theta0 has no block for group '{spec.group_name}'. "
                f"Available: {list(blocks.keys())}"
            )
        block = np.asarray(blocks[spec.group_name], dtype=np.float64).ravel()
        if block.shape[0] != spec.theta_size:
            raise DimensionError(
                f"theta0 block for '{spec.group_name}' has {block.shape[0]} "
                f"elements, expected {spec.theta_size}"
            )
        parts.append(block)
    return np.concatenate(parts)
