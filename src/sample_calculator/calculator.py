"""Calculation dispatcher turning a config and population into a sample."""

from __future__ import annotations

import random

from .draws import sample_with_replacement, sample_without_replacement
from .ingest import filter_by_year
from .logging_setup import get_logger
from .models import (
    Dataset,
    EventCode,
    SampleGroup,
    SamplingConfig,
    SamplingDesign,
    SamplingResult,
    StratifiedPopulation,
    YearFilter,
)
from .stats import (
    calc_sample_size,
    calc_stratified_sample_size,
    get_z,
    initial_sample_size,
    initial_stratified_sample_size,
)
from .stratified import draw_stratified

log = get_logger("calculator")

SAMPLE_GROUP_LABEL = "Sample"


def population_size(
    config: SamplingConfig,
    dataset: Dataset | None = None,
    population: StratifiedPopulation | None = None,
    year_filter: YearFilter | None = None,
) -> int:
    """Size of the population the next calculation would draw from."""

    if config.design.is_stratified:
        return population.population_size if population else 0
    if dataset is None:
        return 0
    return len(filter_by_year(dataset, year_filter))


def calculate(
    config: SamplingConfig,
    dataset: Dataset | None = None,
    population: StratifiedPopulation | None = None,
    year_filter: YearFilter | None = None,
) -> SamplingResult | None:
    """Compute the required sample size and draw the sample.

    Args:
        config (SamplingConfig): Validated calculator settings.
        dataset (Dataset | None): Loaded rows for the simple designs.
        population (StratifiedPopulation | None): Strata for the stratified
            designs.
        year_filter (YearFilter | None): Optional year restriction applied to
            the dataset before the formula and the draw.

    Returns:
        SamplingResult | None: The result, or ``None`` when the population is
        empty and the calculation is skipped.
    """
    rng = random.Random(config.random_seed)
    z = get_z(config.confidence_level)

    if config.design.is_stratified:
        return _calculate_stratified(config, population, z, rng)
    return _calculate_simple(config, dataset, year_filter, z, rng)


def _calculate_simple(
    config: SamplingConfig,
    dataset: Dataset | None,
    year_filter: YearFilter | None,
    z: float,
    rng: random.Random,
) -> SamplingResult | None:
    """SRSWR / SRSWOR over the (optionally year-filtered) dataset rows."""

    if dataset is None:
        log.warning(EventCode.CALCULATION_SKIPPED.value, reason="no_dataset")
        return None

    pool = filter_by_year(dataset, year_filter)
    total = len(pool)
    if total == 0:
        log.warning(
            EventCode.CALCULATION_SKIPPED.value, reason="empty_population"
        )
        return None

    n0 = initial_sample_size(
        z, config.margin_of_error_percent, config.assumed_std_dev
    )
    n = calc_sample_size(
        total, z, config.margin_of_error_percent, config.assumed_std_dev
    )
    log.info(
        EventCode.SAMPLE_SIZE_CALCULATED.value,
        design=config.design.value,
        z=z,
        n0=n0,
        n=n,
        population=total,
    )

    if config.design == SamplingDesign.SRSWR:
        positions = sample_with_replacement(total, n, rng)
    else:
        positions = sample_without_replacement(total, n, rng)

    # Positions address the filtered pool; report source row numbers
    picked = [pool[p - 1] for p in positions]
    group = SampleGroup(
        label=SAMPLE_GROUP_LABEL,
        allocated_size=n,
        population_size=total,
        indices=[source for source, _ in picked],
        rows=[row for _, row in picked],
    )

    log.info(
        EventCode.SAMPLING_DONE.value,
        design=config.design.value,
        drawn=len(group.indices),
    )
    return SamplingResult(
        required_sample_size=n,
        initial_sample_size=n0,
        population_size=total,
        z_score=z,
        config=config,
        groups=[group],
        headers=list(dataset.headers),
        year_filter=year_filter,
    )


def _calculate_stratified(
    config: SamplingConfig,
    population: StratifiedPopulation | None,
    z: float,
    rng: random.Random,
) -> SamplingResult | None:
    """Proportional / non-proportional draws over abstract strata."""

    if population is None or not population.population_size:
        log.warning(
            EventCode.CALCULATION_SKIPPED.value, reason="empty_population"
        )
        return None

    total = population.population_size
    n0 = initial_stratified_sample_size(z, config.margin_of_error_percent)
    n = calc_stratified_sample_size(total, z, config.margin_of_error_percent)
    log.info(
        EventCode.SAMPLE_SIZE_CALCULATED.value,
        design=config.design.value,
        z=z,
        n0=n0,
        n=n,
        population=total,
    )

    groups, allocated = draw_stratified(config.design, population, n, rng)
    if config.design == SamplingDesign.NON_PROPORTIONAL:
        required = allocated
    else:
        required = n

    log.info(
        EventCode.SAMPLING_DONE.value,
        design=config.design.value,
        groups=len(groups),
        drawn=sum(len(g.indices) for g in groups),
    )
    return SamplingResult(
        required_sample_size=required,
        initial_sample_size=n0,
        population_size=total,
        z_score=z,
        config=config,
        groups=groups,
    )
