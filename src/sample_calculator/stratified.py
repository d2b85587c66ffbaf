"""Group allocation and draws for the stratified designs."""

from __future__ import annotations

import math
import random

from .draws import sample_without_replacement
from .logging_setup import get_logger
from .models import (
    SampleGroup,
    SamplingDesign,
    StratifiedPopulation,
)
from .stats import round_half_up

log = get_logger("stratified")


def allocate_proportional(n: int, sizes: list[int]) -> list[int]:
    """Split ``n`` across groups in proportion to their declared sizes.

    Each share is rounded independently, so the total may drift from ``n`` by
    up to ``len(sizes) - 1``.

    Args:
        n (int): Required total sample size.
        sizes (list[int]): Declared group sizes.

    Returns:
        list[int]: Per-group sample sizes.
    """
    total = sum(sizes)
    if total <= 0:
        return [0 for _ in sizes]
    return [max(0, round_half_up(n * size / total)) for size in sizes]


def allocate_equal(n: int, groups: int) -> tuple[list[int], int]:
    """Round ``n`` up to a multiple of ``groups`` and split it evenly.

    Args:
        n (int): Required total sample size.
        groups (int): Number of groups.

    Returns:
        tuple[list[int], int]: Per-group sizes and the rounded-up total.
    """
    if groups <= 0:
        raise ValueError("At least one group is required")
    per_group = max(0, math.ceil(n / groups))
    return [per_group] * groups, per_group * groups


def equal_split(population_size: int, groups: int) -> list[int]:
    """Implicit group sizes when strata carry no declared size."""

    base, remainder = divmod(population_size, groups)
    return [base + (1 if i < remainder else 0) for i in range(groups)]


def group_sizes(
    design: SamplingDesign, population: StratifiedPopulation
) -> list[int]:
    """Resolve the population size of every stratum.

    The proportional design needs every stratum to declare its size. The
    non-proportional design keeps the declared sizes and splits what is left
    of ``N`` evenly over the strata without one.
    """
    declared = [s.size for s in population.strata]
    missing = [s.name for s in population.strata if s.size is None]
    if not missing:
        return declared
    if design == SamplingDesign.PROPORTIONAL:
        raise ValueError(
            "Proportional allocation requires a size for every group; "
            f"missing: {', '.join(missing)}"
        )
    remainder = population.population_size - sum(
        size for size in declared if size is not None
    )
    implicit = iter(equal_split(remainder, len(missing)))
    return [next(implicit) if size is None else size for size in declared]


def draw_stratified(
    design: SamplingDesign,
    population: StratifiedPopulation,
    n: int,
    rng: random.Random,
) -> tuple[list[SampleGroup], int]:
    """Allocate ``n`` across the strata and sample every group.

    Every group is drawn without replacement from its own local range
    ``1..size``; indices are not unique across groups. A group never takes
    more rows than it holds, so small strata cap their share.

    Args:
        design (SamplingDesign): Proportional or non-proportional design.
        population (StratifiedPopulation): Abstract strata.
        n (int): Required total sample size.
        rng (random.Random): Shared random source for all groups.

    Returns:
        tuple[list[SampleGroup], int]: Drawn groups and the effective total
        allocated (the rounded-up total for the non-proportional design).
    """
    sizes = group_sizes(design, population)
    if design == SamplingDesign.PROPORTIONAL:
        allocation = allocate_proportional(n, sizes)
    else:
        allocation, _ = allocate_equal(n, len(sizes))
    allocation = [min(k, size) for k, size in zip(allocation, sizes)]
    allocated_total = sum(allocation)

    groups = []
    for stratum, size, k in zip(population.strata, sizes, allocation):
        indices = sample_without_replacement(size, k, rng)
        groups.append(
            SampleGroup(
                label=stratum.name,
                allocated_size=k,
                population_size=size,
                indices=indices,
            )
        )

    log.info(
        "strata_allocated",
        design=design.value,
        required=n,
        allocated=allocated_total,
        allocation=allocation,
    )
    return groups, allocated_total
