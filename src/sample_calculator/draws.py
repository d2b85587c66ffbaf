"""Random index draws over a 1-based population."""

from __future__ import annotations

import random


def sample_with_replacement(
    total: int, k: int, rng: random.Random | None = None
) -> list[int]:
    """Draw ``k`` independent uniform indices from ``1..total``.

    Duplicates are allowed and the output keeps draw order.

    Args:
        total (int): Population size.
        k (int): Number of draws.
        rng (random.Random | None): Random source; a fresh one when omitted.

    Returns:
        list[int]: Drawn 1-based indices, empty when there is nothing to draw.
    """
    if total <= 0 or k <= 0:
        return []
    rng = rng or random.Random()
    return [rng.randint(1, total) for _ in range(k)]


def sample_without_replacement(
    total: int, k: int, rng: random.Random | None = None
) -> list[int]:
    """Draw ``min(k, total)`` distinct indices from ``1..total``.

    A Fisher-Yates shuffle over the full range selects the indices, which are
    then returned in ascending order so they read against the source file.

    Args:
        total (int): Population size.
        k (int): Requested sample size.
        rng (random.Random | None): Random source; a fresh one when omitted.

    Returns:
        list[int]: Sorted unique 1-based indices.
    """
    if total <= 0 or k <= 0:
        return []
    rng = rng or random.Random()
    k = min(k, total)
    pool = list(range(1, total + 1))
    for i in range(total - 1, 0, -1):
        j = rng.randint(0, i)
        pool[i], pool[j] = pool[j], pool[i]
    return sorted(pool[:k])
