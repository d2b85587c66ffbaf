"""Shared pytest fixtures for sampling calculator tests."""

from __future__ import annotations

import random
from datetime import datetime
from pathlib import Path

import pytest
from openpyxl import Workbook

from sample_calculator.ingest import load_dataset
from sample_calculator.models import (
    Dataset,
    SamplingConfig,
    SamplingDesign,
    StratifiedPopulation,
    Stratum,
)

POPULATION_HEADERS = ["Invoice", "Amount", "Date"]
LEDGER_HEADERS = ["Code", "Posted", "Amount"]
DATA_DIR = Path(__file__).parent / "data"


def write_workbook(path: Path, rows: list[list]) -> Path:
    """Write ``rows`` to the first sheet of a new workbook."""
    wb = Workbook()
    ws = wb.active
    for row in rows:
        ws.append(row)
    wb.save(path)
    return path


def population_rows(count: int = 1000) -> list[list]:
    """Invoices alternating between 2023 and 2024 dates."""
    return [
        [
            f"INV-{i:04d}",
            round(i * 10.5, 2),
            datetime(2023 + i % 2, 1 + i % 12, 1),
        ]
        for i in range(1, count + 1)
    ]


def ledger_rows() -> list[list]:
    """Loan ledger: AB1 codes in 2023 (30) and 2024 (20), CD4 in 2024 (10).

    Ten further rows carry a malformed code or an undated posting.
    """
    rows = [
        [f"AB1{i:02d}-{i}", datetime(2023, 1 + i % 12, 5), 100 + i]
        for i in range(30)
    ]
    rows += [
        [f"AB1{50 + i}", datetime(2024, 3, 1 + i), 200] for i in range(20)
    ]
    rows += [[f"CD4{i:02d}", f"2024-07-{10 + i}", 50] for i in range(10)]
    rows += [
        ["ab123", datetime(2024, 1, 1), 1],
        ["A1234", datetime(2024, 1, 1), 1],
        [None, datetime(2024, 1, 1), 1],
        [12345, datetime(2024, 1, 1), 1],
        ["AB", datetime(2024, 1, 1), 1],
    ]
    rows += [[f"AB19{i}", "n/a", 1] for i in range(5)]
    return rows


@pytest.fixture(scope="session")
def population_xlsx(tmp_path_factory) -> Path:
    """Workbook with a header row and 1000 invoices."""
    path = tmp_path_factory.mktemp("data") / "population.xlsx"
    return write_workbook(path, [POPULATION_HEADERS, *population_rows()])


@pytest.fixture(scope="session")
def population_dataset(population_xlsx: Path) -> Dataset:
    return load_dataset(population_xlsx)


@pytest.fixture()
def ledger_xlsx(tmp_path: Path) -> Path:
    return write_workbook(
        tmp_path / "ledger.xlsx", [LEDGER_HEADERS, *ledger_rows()]
    )


@pytest.fixture()
def ledger_dataset() -> Dataset:
    return Dataset(
        headers=LEDGER_HEADERS, rows=ledger_rows(), source_name="ledger.xlsx"
    )


@pytest.fixture()
def small_dataset() -> Dataset:
    """In-memory dataset with mixed year cell types."""
    return Dataset(
        headers=["Ref", "Period"],
        rows=[
            ["A", datetime(2024, 6, 1)],
            ["B", 45444],
            ["C", "FY2023 report"],
            ["D", "unknown"],
            ["E", None],
            ["F", "2023-12-31"],
        ],
        source_name="small.xlsx",
    )


@pytest.fixture()
def srswor_config() -> SamplingConfig:
    return SamplingConfig(
        design=SamplingDesign.SRSWOR,
        confidence_level=0.95,
        margin_of_error_percent=5.0,
        assumed_std_dev=0.5,
        random_seed=123,
    )


@pytest.fixture()
def strata() -> StratifiedPopulation:
    return StratifiedPopulation(
        strata=[
            Stratum(name="Branch North", size=600),
            Stratum(name="Branch South", size=400),
        ]
    )


@pytest.fixture()
def rng() -> random.Random:
    return random.Random(42)
