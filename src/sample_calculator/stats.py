"""Z-score and sample-size formulas for the sampling calculator."""

from __future__ import annotations

import math

Z_CAP = 3.5
STRATIFIED_PROPORTION = 0.05

# Rational approximation of the inverse normal CDF
_A = (2.515517, 0.802853, 0.010328)
_B = (1.432788, 0.189269, 0.001308)


def round_half_up(value: float) -> int:
    """Round to the nearest integer with halves going up."""
    return int(math.floor(value + 0.5))


def get_z(confidence_level: float) -> float:
    """Return the two-tailed standard normal critical value.

    Args:
        confidence_level (float): Confidence level in (0, 1), e.g. ``0.95``.

    Returns:
        float: ``z`` such that ``P(|Z| <= z) == confidence_level``, rounded to
        four decimals and capped at ``3.5`` as the level approaches one.
    """
    p = 1 - (1 - confidence_level) / 2
    if p >= 1:
        return Z_CAP
    t = math.sqrt(-2 * math.log(1 - p))
    numerator = _A[0] + _A[1] * t + _A[2] * t**2
    denominator = 1 + _B[0] * t + _B[1] * t**2 + _B[2] * t**3
    return round(t - numerator / denominator, 4)


def initial_sample_size(
    z: float, margin_percent: float, std_dev: float
) -> float:
    """Uncorrected sample size ``(Z * sigma / e) ** 2``."""
    e = margin_percent / 100
    return (z * std_dev / e) ** 2


def initial_stratified_sample_size(z: float, margin_percent: float) -> float:
    """Uncorrected sample size for an assumed error proportion of 5%."""
    e = margin_percent / 100
    p = STRATIFIED_PROPORTION
    return z**2 * p * (1 - p) / e**2


def finite_population_correction(n0: float, population_size: int) -> int:
    """Shrink ``n0`` for a population of ``population_size`` items.

    A zero population is not guarded and raises ``ZeroDivisionError``.
    """
    return round_half_up(n0 / (1 + (n0 - 1) / population_size))


def calc_sample_size(
    population_size: int,
    z: float,
    margin_percent: float,
    std_dev: float,
) -> int:
    """Required simple random sample size.

    Args:
        population_size (int): Population size ``N``.
        z (float): Critical value from :func:`get_z`.
        margin_percent (float): Margin of error in percent, e.g. ``5``.
        std_dev (float): Assumed standard deviation in (0, 1].

    Returns:
        int: Sample size after the finite-population correction.
    """
    n0 = initial_sample_size(z, margin_percent, std_dev)
    return finite_population_correction(n0, population_size)


def calc_stratified_sample_size(
    population_size: int, z: float, margin_percent: float
) -> int:
    """Required total sample size for the stratified designs.

    Args:
        population_size (int): Population size ``N``.
        z (float): Critical value from :func:`get_z`.
        margin_percent (float): Margin of error in percent.

    Returns:
        int: Sample size after the finite-population correction.
    """
    n0 = initial_stratified_sample_size(z, margin_percent)
    return finite_population_correction(n0, population_size)
