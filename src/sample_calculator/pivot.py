"""Prefix-by-year pivot of a loan ledger and per-year sample draws."""

from __future__ import annotations

import random
import re
from collections import Counter, defaultdict

from .draws import sample_without_replacement
from .ingest import extract_year
from .logging_setup import get_logger
from .models import (
    CellValue,
    Dataset,
    EventCode,
    PivotCell,
    PivotGroup,
    PivotSample,
    SampleGroup,
    SamplingConfig,
)
from .stats import calc_sample_size, get_z

log = get_logger("pivot")

# Two capital letters followed by three digits; the first three characters
# form the prefix the ledger is grouped by.
CODE_PATTERN = re.compile(r"^[A-Z]{2}[0-9]{3}")
PREFIX_LENGTH = 3

Keyed = tuple[str, int, int, list[CellValue]]


def extract_code(value: CellValue) -> str | None:
    """Return the account-code prefix of a cell, or ``None``.

    >>> extract_code(" AB123-77 ")
    'AB1'
    >>> extract_code("ab123") is None
    True
    """
    if value is None:
        return None
    text = str(value).strip()
    if not CODE_PATTERN.match(text):
        return None
    return text[:PREFIX_LENGTH]


def _check_column(dataset: Dataset, column: int, role: str) -> None:
    if not 0 <= column < len(dataset.headers):
        raise ValueError(
            f"{role} column {column} is out of range for "
            f"{len(dataset.headers)} columns"
        )


def _keyed_rows(
    dataset: Dataset, date_column: int, code_column: int
) -> tuple[list[Keyed], int]:
    """Tag every row with its prefix and year; drop rows missing either."""

    _check_column(dataset, date_column, "Date")
    _check_column(dataset, code_column, "Code")

    keyed = []
    skipped = 0
    for source, row in enumerate(dataset.rows, start=1):
        prefix = extract_code(row[code_column])
        year = extract_year(row[date_column])
        if prefix is None or year is None:
            skipped += 1
            continue
        keyed.append((prefix, year, source, row))
    return keyed, skipped


def build_pivot(
    dataset: Dataset,
    date_column: int,
    code_column: int,
    config: SamplingConfig | None = None,
) -> list[PivotGroup]:
    """Count rows per code prefix and year and size a sample for each cell.

    Every (prefix, year) cell is treated as its own population, so its sample
    size is the simple-design formula applied to the cell count.

    Args:
        dataset (Dataset): Loaded ledger.
        date_column (int): Column holding the posting date.
        code_column (int): Column holding the account code.
        config (SamplingConfig | None): Confidence, margin and standard
            deviation for the per-cell sample sizes.

    Returns:
        list[PivotGroup]: Groups sorted by prefix, rows sorted by year.

    Raises:
        ValueError: If either column is out of range.
    """
    config = config or SamplingConfig()
    z = get_z(config.confidence_level)
    keyed, skipped = _keyed_rows(dataset, date_column, code_column)

    counts: dict[str, Counter] = defaultdict(Counter)
    for prefix, year, _, _ in keyed:
        counts[prefix][year] += 1

    groups = []
    for prefix in sorted(counts):
        by_year = counts[prefix]
        total = sum(by_year.values())
        cells = [
            PivotCell(
                year=year,
                count=count,
                percent=count / total * 100,
                sample_size=calc_sample_size(
                    count,
                    z,
                    config.margin_of_error_percent,
                    config.assumed_std_dev,
                ),
            )
            for year, count in sorted(by_year.items())
        ]
        groups.append(PivotGroup(prefix=prefix, total=total, rows=cells))

    log.info(
        EventCode.PIVOT_BUILT.value,
        prefixes=len(groups),
        rows=len(keyed),
        skipped=skipped,
    )
    return groups


def pivot_sample(
    dataset: Dataset,
    date_column: int,
    code_column: int,
    prefix: str,
    year_sizes: dict[int, int],
    rng: random.Random | None = None,
) -> PivotSample:
    """Draw rows of one prefix, year by year, without replacement.

    A year asking for more rows than it holds takes all of them.

    Args:
        dataset (Dataset): Loaded ledger.
        date_column (int): Column holding the posting date.
        code_column (int): Column holding the account code.
        prefix (str): Prefix produced by :func:`extract_code`.
        year_sizes (dict[int, int]): Requested sample size per year.
        rng (random.Random | None): Random source; fresh when omitted.

    Returns:
        PivotSample: One group per requested year, in year order. Indices are
        1-based positions in the dataset.

    Raises:
        ValueError: If a column is out of range, a size is negative, or no
            row carries ``prefix``.
    """
    rng = rng or random.Random()
    negative = [year for year, size in year_sizes.items() if size < 0]
    if negative:
        raise ValueError(f"Negative sample size for year {negative[0]}")

    keyed, _ = _keyed_rows(dataset, date_column, code_column)
    pools: dict[int, list[tuple[int, list[CellValue]]]] = defaultdict(list)
    for row_prefix, year, source, row in keyed:
        if row_prefix == prefix:
            pools[year].append((source, row))
    if not pools:
        raise ValueError(f"No rows with code prefix {prefix!r}")

    groups = []
    for year in sorted(year_sizes):
        pool = pools.get(year, [])
        k = min(year_sizes[year], len(pool))
        positions = sample_without_replacement(len(pool), k, rng)
        picked = [pool[p - 1] for p in positions]
        groups.append(
            SampleGroup(
                label=str(year),
                allocated_size=k,
                population_size=len(pool),
                indices=[source for source, _ in picked],
                rows=[row for _, row in picked],
            )
        )

    sample = PivotSample(
        prefix=prefix, headers=list(dataset.headers), groups=groups
    )
    log.info(
        EventCode.PIVOT_SAMPLED.value,
        prefix=prefix,
        years=len(groups),
        drawn=sample.total_drawn,
    )
    return sample


def pivot_sizes(pivot: list[PivotGroup], prefix: str) -> dict[int, int]:
    """Per-year sample sizes the pivot computed for ``prefix``."""

    for group in pivot:
        if group.prefix == prefix:
            return {cell.year: cell.sample_size for cell in group.rows}
    raise ValueError(f"No rows with code prefix {prefix!r}")
