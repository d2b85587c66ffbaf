"""Tests for the Excel sample export."""

from __future__ import annotations

from datetime import datetime
from pathlib import Path

import pytest
from openpyxl import load_workbook

from sample_calculator import reporter
from sample_calculator.calculator import calculate
from sample_calculator.pivot import pivot_sample
from sample_calculator.models import (
    Annotation,
    Dataset,
    SamplingConfig,
    SamplingDesign,
    SamplingResult,
    StratifiedPopulation,
    YearFilter,
)
from sample_calculator.reporter import (
    ExportError,
    export_pivot_workbook,
    export_workbook,
    resolve_export_path,
)


@pytest.fixture()
def simple_result(
    population_dataset: Dataset, srswor_config: SamplingConfig
) -> SamplingResult:
    return calculate(srswor_config, dataset=population_dataset)


@pytest.fixture()
def stratified_result(strata: StratifiedPopulation) -> SamplingResult:
    config = SamplingConfig(design=SamplingDesign.PROPORTIONAL, random_seed=5)
    return calculate(config, population=strata)


def _parameters(path: Path) -> dict:
    ws = load_workbook(path).worksheets[0]
    return {
        row[0]: row[1]
        for row in ws.iter_rows(min_row=2, values_only=True)
    }


def test_simple_export_layout(
    simple_result: SamplingResult, tmp_path: Path
) -> None:
    annotations = {
        (0, 0): Annotation(has_error=True, note="Missing approval"),
        (0, 1): Annotation(has_error=False),
    }
    path = export_workbook(
        simple_result, annotations, tmp_path / "review.xlsx"
    )

    wb = load_workbook(path)
    assert wb.sheetnames == ["Parameters", "Sample"]
    ws = wb["Sample"]
    header = [cell.value for cell in ws[1]]
    assert header == ["No.", "Invoice", "Amount", "Date", "Error", "Note"]
    assert ws.max_row == 279

    group = simple_result.groups[0]
    assert ws["A2"].value == 1
    assert ws["B2"].value == group.rows[0][0]
    assert isinstance(ws["D2"].value, datetime)
    assert ws["E2"].value == "Yes"
    assert ws["F2"].value == "Missing approval"
    assert ws["E2"].fill.fgColor.rgb.endswith("F8D7DA")
    assert ws["E3"].value == "No"
    assert ws["F3"].value in (None, "")
    assert ws["E279"].value == "No"


def test_parameters_sheet(
    population_dataset: Dataset,
    srswor_config: SamplingConfig,
    tmp_path: Path,
) -> None:
    result = calculate(
        srswor_config,
        dataset=population_dataset,
        year_filter=YearFilter(column=2, year=2024),
    )
    path = export_workbook(result, {}, tmp_path / "params.xlsx")

    values = _parameters(path)
    assert values["Sampling Design"].endswith("(SRSWOR)")
    assert values["Confidence Level"] == pytest.approx(0.95)
    assert values["Margin of Error (%)"] == pytest.approx(5.0)
    assert values["Final Sample Size (n)"] == result.required_sample_size
    assert values["Population Size (N)"] == 500
    assert values["Year Filter"] == 2024


def test_stratified_export_has_summary(
    stratified_result: SamplingResult, tmp_path: Path
) -> None:
    annotations = {
        (0, 0): Annotation(has_error=True, note="Wrong amount"),
        (0, 1): Annotation(has_error=True),
        (1, 3): Annotation(has_error=True),
    }
    path = export_workbook(
        stratified_result, annotations, tmp_path / "strata.xlsx"
    )

    wb = load_workbook(path)
    assert wb.sheetnames == [
        "Parameters",
        "Summary",
        "Branch North",
        "Branch South",
    ]
    summary = list(wb["Summary"].iter_rows(values_only=True))
    assert summary[0] == ("Group", "Sample Size", "Errors", "Error %")
    assert summary[1][:3] == ("Branch North", 41, 2)
    assert summary[1][3] == pytest.approx(2 / 41)
    assert summary[2][:3] == ("Branch South", 27, 1)
    assert summary[3][:3] == ("Total", 68, 3)
    assert summary[3][3] == pytest.approx(3 / 68)

    north = wb["Branch North"]
    assert [c.value for c in north[1]] == [
        "No.",
        "Population Index",
        "Error",
        "Note",
    ]
    assert north["B2"].value == stratified_result.groups[0].indices[0]
    assert north["C2"].value == "Yes"
    assert north["D2"].value == "Wrong amount"
    assert "Standard Deviation (σ)" not in _parameters(path)


def test_mongolian_captions(
    simple_result: SamplingResult, tmp_path: Path
) -> None:
    path = export_workbook(
        simple_result,
        {(0, 0): Annotation(has_error=True)},
        tmp_path / "mn.xlsx",
        locale="mn",
    )
    wb = load_workbook(path)
    assert wb.sheetnames == ["Дүн", "Түүвэр"]
    ws = wb["Түүвэр"]
    assert ws["E2"].value == "Тийм"
    assert ws["E3"].value == "Үгүй"


def test_unknown_locale(simple_result: SamplingResult, tmp_path: Path) -> None:
    with pytest.raises(ValueError):
        export_workbook(simple_result, {}, tmp_path / "x.xlsx", locale="fr")


def test_xlsx_suffix_is_appended(
    simple_result: SamplingResult, tmp_path: Path
) -> None:
    path = export_workbook(simple_result, {}, tmp_path / "review")
    assert path == tmp_path / "review.xlsx"
    assert path.exists()


def test_resolve_export_path(tmp_path: Path) -> None:
    assert resolve_export_path(tmp_path) == tmp_path / "sample_result.xlsx"
    assert resolve_export_path(tmp_path, "../up.xlsx") == tmp_path / "up.xlsx"
    assert resolve_export_path(tmp_path, "Q1.XLSX") == tmp_path / "Q1.XLSX"


def test_unique_sheet_names() -> None:
    used: set[str] = set()
    long_name = "Regional branch office number 0001"
    first = reporter._unique_sheet_name(long_name, used)
    second = reporter._unique_sheet_name(long_name, used)
    assert first == long_name[:31]
    assert second == "Regional branch office numb (2)"
    assert reporter._unique_sheet_name("North/South: [A]", used) == (
        "North_South_ _A_"
    )
    assert reporter._unique_sheet_name(long_name.upper(), used) == (
        "REGIONAL BRANCH OFFICE NUMB (3)"
    )


def test_failed_export_leaves_no_file(
    simple_result: SamplingResult, tmp_path: Path, monkeypatch
) -> None:
    def broken(*args, **kwargs):
        raise RuntimeError("disk full")

    monkeypatch.setattr(reporter, "_write_group_sheet", broken)
    target = tmp_path / "broken.xlsx"
    with pytest.raises(ExportError, match="disk full"):
        export_workbook(simple_result, {}, target)
    assert not target.exists()


def test_pivot_export_layout(ledger_dataset: Dataset, tmp_path: Path) -> None:
    sample = pivot_sample(ledger_dataset, 1, 0, "AB1", {2023: 4, 2024: 3})
    path = export_pivot_workbook(sample, tmp_path / "pivot")

    wb = load_workbook(path)
    assert wb.sheetnames == ["Pivot", "AB1 2023", "AB1 2024"]
    overview = list(wb["Pivot"].iter_rows(values_only=True))
    assert overview[0] == ("Prefix", "Year", "Rows", "Sample Size")
    assert overview[1] == ("AB1", "2023", 30, 4)
    assert overview[2] == ("AB1", "2024", 20, 3)
    assert overview[3][0] == "Total"
    assert overview[3][2:] == (50, 7)

    year_sheet = wb["AB1 2023"]
    assert [c.value for c in year_sheet[1]] == [
        "No.",
        "Code",
        "Posted",
        "Amount",
        "Error",
        "Note",
    ]
    assert year_sheet.max_row == 5
    assert year_sheet["B2"].value == sample.groups[0].rows[0][0]
    assert year_sheet["E2"].value == "No"


def test_pivot_export_in_mongolian(
    ledger_dataset: Dataset, tmp_path: Path
) -> None:
    sample = pivot_sample(ledger_dataset, 1, 0, "CD4", {2024: 2})
    path = export_pivot_workbook(sample, tmp_path / "mn.xlsx", locale="mn")
    wb = load_workbook(path)
    assert wb.sheetnames == ["Пивот", "CD4 2024"]
    assert wb["Пивот"]["A1"].value == "Угтвар"
