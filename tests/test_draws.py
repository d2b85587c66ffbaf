"""Unit tests for the random index draws."""

from __future__ import annotations

import random
from collections import Counter

import pytest

from sample_calculator.draws import (
    sample_with_replacement,
    sample_without_replacement,
)


@pytest.mark.parametrize(
    ("total", "k"), [(10, 3), (10, 10), (10, 25), (1000, 278), (1, 1)]
)
def test_without_replacement_shape(
    total: int, k: int, rng: random.Random
) -> None:
    drawn = sample_without_replacement(total, k, rng)
    assert len(drawn) == min(k, total)
    assert all(a < b for a, b in zip(drawn, drawn[1:]))
    assert all(1 <= i <= total for i in drawn)


def test_without_replacement_is_roughly_uniform() -> None:
    rng = random.Random(2024)
    counts = Counter(
        sample_without_replacement(5, 1, rng)[0] for _ in range(5000)
    )
    assert set(counts) == {1, 2, 3, 4, 5}
    for value in range(1, 6):
        assert 850 <= counts[value] <= 1150


def test_with_replacement_shape(rng: random.Random) -> None:
    drawn = sample_with_replacement(20, 50, rng)
    assert len(drawn) == 50
    assert all(1 <= i <= 20 for i in drawn)
    # 50 draws from 20 values must repeat
    assert len(set(drawn)) < len(drawn)


def test_with_replacement_single_item(rng: random.Random) -> None:
    assert sample_with_replacement(1, 7, rng) == [1] * 7


def test_empty_population_yields_nothing() -> None:
    assert sample_without_replacement(0, 5) == []
    assert sample_with_replacement(0, 5) == []
    assert sample_without_replacement(5, 0) == []


def test_seeded_draws_are_reproducible() -> None:
    first = sample_without_replacement(500, 40, random.Random(9))
    second = sample_without_replacement(500, 40, random.Random(9))
    assert first == second
