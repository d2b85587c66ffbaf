"""Excel export of drawn samples and their review annotations."""

from __future__ import annotations

import re
from datetime import date, datetime
from pathlib import Path
from typing import Any, Callable

import xlsxwriter
from tqdm import tqdm

from .logging_setup import get_logger
from .models import (
    Annotation,
    EventCode,
    PivotSample,
    SampleGroup,
    SamplingResult,
)

DEFAULT_EXPORT_FILENAME = "sample_result.xlsx"
SHEET_NAME_LIMIT = 31
_INVALID_SHEET_CHARS = re.compile(r"[\[\]:*?/\\]")

HEADER_BLUE = "#009CDE"
SUMMARY_GREEN = "#3F9C35"
ERROR_RED = "#F8D7DA"
LABEL_GREY = "#63666A"
ZEBRA_BLUE = "#E5F5FC"
DATE_FORMAT = "yyyy-mm-dd"

LOCALES: dict[str, dict[str, Any]] = {
    "en": {
        "yes": "Yes",
        "no": "No",
        "row_number": "No.",
        "population_index": "Population Index",
        "has_error": "Error",
        "note": "Note",
        "parameters_sheet": "Parameters",
        "summary_sheet": "Summary",
        "sample_sheet": "Sample",
        "parameter": "Parameter",
        "value": "Value",
        "design": "Sampling Design",
        "confidence": "Confidence Level",
        "margin": "Margin of Error (%)",
        "std_dev": "Standard Deviation (σ)",
        "z": "Z Score",
        "n0": "Initial Estimate (n₀)",
        "n": "Final Sample Size (n)",
        "population": "Population Size (N)",
        "year": "Year Filter",
        "group": "Group",
        "sample_size": "Sample Size",
        "error_count": "Errors",
        "error_percent": "Error %",
        "total": "Total",
        "pivot_sheet": "Pivot",
        "prefix": "Prefix",
        "pivot_year": "Year",
        "rows": "Rows",
        "designs": {
            "srswr": "Simple random with replacement (SRSWR)",
            "srswor": "Simple random without replacement (SRSWOR)",
            "prop": "Proportional stratified",
            "nonprop": "Non-proportional stratified",
        },
    },
    "mn": {
        "yes": "Тийм",
        "no": "Үгүй",
        "row_number": "№",
        "population_index": "Хүн амын индекс",
        "has_error": "Алдаатай эсэх",
        "note": "Тайлбар",
        "parameters_sheet": "Дүн",
        "summary_sheet": "Нэгтгэл",
        "sample_sheet": "Түүвэр",
        "parameter": "Параметр",
        "value": "Утга",
        "design": "Түүврийн дизайн",
        "confidence": "Итгэлийн түвшин",
        "margin": "Алдааны марж (%)",
        "std_dev": "Стандарт хазайлт (σ)",
        "z": "Z утга",
        "n0": "Анхны тооцоо (n₀)",
        "n": "Эцсийн түүврийн хэмжээ (n)",
        "population": "Нийт хүн ам (N)",
        "year": "Он",
        "group": "Бүлэг",
        "sample_size": "Түүврийн хэмжээ",
        "error_count": "Алдааны тоо",
        "error_percent": "Алдааны хувь",
        "total": "Нийт",
        "pivot_sheet": "Пивот",
        "prefix": "Угтвар",
        "pivot_year": "Он",
        "rows": "Мөрийн тоо",
        "designs": {
            "srswr": "Буцаалттай энгийн санамсаргүй (SRSWR)",
            "srswor": "Буцаалтгүй энгийн санамсаргүй (SRSWOR)",
            "prop": "Пропорциональ",
            "nonprop": "Пропорциональ биш",
        },
    },
}

AnnotationMap = dict[tuple[int, int], Annotation]

log = get_logger("reporter")


class ExportError(RuntimeError):
    """Raised when the export workbook cannot be built."""


def resolve_export_path(output_dir: Path, filename: str | None = None) -> Path:
    """Build the workbook path, defaulting the name and forcing ``.xlsx``.

    Only the final path component of ``filename`` is used.
    """
    name = Path(filename or DEFAULT_EXPORT_FILENAME).name or (
        DEFAULT_EXPORT_FILENAME
    )
    if not name.lower().endswith(".xlsx"):
        name = f"{name}.xlsx"
    return Path(output_dir) / name


def export_workbook(
    result: SamplingResult,
    annotations: AnnotationMap,
    output_path: Path,
    locale: str = "en",
    show_progress: bool = False,
) -> Path:
    """Write the annotated sample to an Excel workbook.

    Args:
        result (SamplingResult): Calculated sample.
        annotations (AnnotationMap): Review marks keyed by
            ``(group_index, position)``.
        output_path (Path): Target ``.xlsx`` path; the suffix is appended
            when missing.
        locale (str): Caption language, ``"en"`` or ``"mn"``.
        show_progress (bool): Whether to display tqdm progress while writing.

    Returns:
        Path: Filesystem path to the generated workbook.

    Raises:
        ExportError: If the workbook could not be written. No partial file
            is left behind.
    """
    output_path = _write_guarded(
        output_path,
        locale,
        lambda workbook, formats, text: _write_sample_sheets(
            workbook, formats, result, annotations, text, show_progress
        ),
    )
    log.info(
        EventCode.EXPORT_WRITTEN.value,
        path=str(output_path),
        groups=len(result.groups),
        annotated=len(annotations),
    )
    return output_path


def export_pivot_workbook(
    sample: PivotSample,
    output_path: Path,
    locale: str = "en",
    show_progress: bool = False,
) -> Path:
    """Write a prefix sample: an overview sheet plus one sheet per year.

    The year sheets carry empty review columns for the auditor to fill in.

    Raises:
        ExportError: If the workbook could not be written.
    """
    output_path = _write_guarded(
        output_path,
        locale,
        lambda workbook, formats, text: _write_pivot_sheets(
            workbook, formats, sample, text, show_progress
        ),
    )
    log.info(
        EventCode.EXPORT_WRITTEN.value,
        path=str(output_path),
        prefix=sample.prefix,
        groups=len(sample.groups),
    )
    return output_path


def _write_guarded(
    output_path: Path,
    locale: str,
    write_sheets: Callable[[xlsxwriter.Workbook, dict, dict], None],
) -> Path:
    """Open the workbook, run ``write_sheets`` and remove it on failure."""

    if locale not in LOCALES:
        raise ValueError(f"Unsupported locale: {locale}")
    output_path = resolve_export_path(
        Path(output_path).parent, Path(output_path).name
    )
    output_path.parent.mkdir(parents=True, exist_ok=True)

    options = {
        "constant_memory": True,
        "strings_to_formulas": False,
        "strings_to_urls": False,
        "remove_timezone": True,
    }
    try:
        with xlsxwriter.Workbook(str(output_path), options) as workbook:
            formats = _create_workbook_formats(workbook)
            write_sheets(workbook, formats, LOCALES[locale])
    except Exception as exc:
        log.error(
            EventCode.EXPORT_FAILED.value,
            path=str(output_path),
            error=f"{type(exc).__name__}: {exc}",
        )
        output_path.unlink(missing_ok=True)
        raise ExportError(f"Could not build export workbook: {exc}") from exc
    return output_path


def _write_sample_sheets(
    workbook: xlsxwriter.Workbook,
    formats: dict[str, Any],
    result: SamplingResult,
    annotations: AnnotationMap,
    text: dict[str, Any],
    show_progress: bool,
) -> None:
    """Write every sheet of the sample export workbook."""

    used_names: set[str] = set()

    _write_parameters_sheet(
        workbook,
        formats,
        result,
        text,
        _unique_sheet_name(text["parameters_sheet"], used_names),
    )

    stratified = result.config.design.is_stratified
    if stratified and len(result.groups) > 1:
        _write_summary_sheet(
            workbook,
            formats,
            result.groups,
            annotations,
            text,
            _unique_sheet_name(text["summary_sheet"], used_names),
        )

    for group_idx, group in enumerate(result.groups):
        label = group.label if stratified else text["sample_sheet"]
        _write_group_sheet(
            workbook,
            formats,
            _unique_sheet_name(label, used_names),
            group_idx,
            group,
            result.headers if not stratified else None,
            annotations,
            text,
            show_progress,
        )


def _create_workbook_formats(workbook: xlsxwriter.Workbook) -> dict[str, Any]:
    """Create all formatting styles for the workbook.

    Args:
        workbook (xlsxwriter.Workbook): Workbook that needs the formats.

    Returns:
        dict[str, Any]: Named format objects reused across sheets.
    """
    return {
        "header": workbook.add_format(
            {
                "bold": True,
                "font_color": "#FFFFFF",
                "bg_color": HEADER_BLUE,
                "border": 1,
                "align": "center",
            }
        ),
        "header_green": workbook.add_format(
            {
                "bold": True,
                "font_color": "#FFFFFF",
                "bg_color": SUMMARY_GREEN,
                "border": 1,
                "align": "center",
            }
        ),
        "label": workbook.add_format({"font_color": LABEL_GREY, "border": 1}),
        "value_wrap": workbook.add_format({"text_wrap": True, "border": 1}),
        "number": workbook.add_format({"num_format": "0.0000", "border": 1}),
        "integer": workbook.add_format({"num_format": "#,##0", "border": 1}),
        "percent": workbook.add_format({"num_format": "0.00%", "border": 1}),
        "normal_row": workbook.add_format({"border": 1}),
        "alt_row": workbook.add_format({"bg_color": ZEBRA_BLUE, "border": 1}),
        "error_row": workbook.add_format({"bg_color": ERROR_RED, "border": 1}),
        "normal_date": workbook.add_format(
            {"num_format": DATE_FORMAT, "border": 1}
        ),
        "alt_date": workbook.add_format(
            {"num_format": DATE_FORMAT, "bg_color": ZEBRA_BLUE, "border": 1}
        ),
        "error_date": workbook.add_format(
            {"num_format": DATE_FORMAT, "bg_color": ERROR_RED, "border": 1}
        ),
        "total": workbook.add_format({"bold": True, "border": 1}),
        "total_percent": workbook.add_format(
            {"bold": True, "num_format": "0.00%", "border": 1}
        ),
    }


def _unique_sheet_name(label: str, used: set[str]) -> str:
    """Sanitize a label into a unique sheet name of at most 31 characters."""

    base = _INVALID_SHEET_CHARS.sub("_", label).strip().strip("'")
    base = base[:SHEET_NAME_LIMIT] or "Sheet"
    name = base
    counter = 2
    while name.lower() in used:
        suffix = f" ({counter})"
        name = base[: SHEET_NAME_LIMIT - len(suffix)] + suffix
        counter += 1
    used.add(name.lower())
    return name


def _write_parameters_sheet(
    workbook: xlsxwriter.Workbook,
    formats: dict[str, Any],
    result: SamplingResult,
    text: dict[str, Any],
    sheet_name: str,
) -> None:
    """Echo the calculator inputs and the derived sizes."""

    ws = workbook.add_worksheet(sheet_name)
    ws.set_column("A:A", 32)
    ws.set_column("B:B", 48)

    ws.write(0, 0, text["parameter"], formats["header"])
    ws.write(0, 1, text["value"], formats["header"])

    config = result.config
    rows: list[tuple[str, Any, str]] = [
        (text["design"], text["designs"][config.design.value], "value_wrap"),
        (text["confidence"], config.confidence_level, "percent"),
        (text["margin"], config.margin_of_error_percent, "number"),
    ]
    if not config.design.is_stratified:
        rows.append((text["std_dev"], config.assumed_std_dev, "number"))
    rows.extend(
        [
            (text["z"], result.z_score, "number"),
            (text["n0"], result.initial_sample_size, "number"),
            (text["n"], result.required_sample_size, "integer"),
            (text["population"], result.population_size, "integer"),
        ]
    )
    if result.year_filter and result.year_filter.year is not None:
        rows.append((text["year"], result.year_filter.year, "value_wrap"))

    for r, (label, value, fmt_name) in enumerate(rows, start=1):
        ws.write(r, 0, label, formats["label"])
        ws.write(r, 1, value, formats[fmt_name])


def _group_error_count(
    group_idx: int, group: SampleGroup, annotations: AnnotationMap
) -> int:
    return sum(
        1
        for position in range(len(group.indices))
        if annotations.get((group_idx, position), Annotation()).has_error
    )


def _write_summary_sheet(
    workbook: xlsxwriter.Workbook,
    formats: dict[str, Any],
    groups: list[SampleGroup],
    annotations: AnnotationMap,
    text: dict[str, Any],
    sheet_name: str,
) -> None:
    """Per-group error counts and percentages with a total row."""

    ws = workbook.add_worksheet(sheet_name)
    ws.set_column("A:A", 30)
    ws.set_column("B:D", 16)

    captions = [
        text["group"],
        text["sample_size"],
        text["error_count"],
        text["error_percent"],
    ]
    for c, caption in enumerate(captions):
        ws.write(0, c, caption, formats["header_green"])

    total_drawn = 0
    total_errors = 0
    row = 1
    for group_idx, group in enumerate(groups):
        drawn = len(group.indices)
        errors = _group_error_count(group_idx, group, annotations)
        total_drawn += drawn
        total_errors += errors
        ws.write(row, 0, group.label, formats["normal_row"])
        ws.write_number(row, 1, drawn, formats["integer"])
        ws.write_number(row, 2, errors, formats["integer"])
        ws.write_number(
            row, 3, errors / drawn if drawn else 0.0, formats["percent"]
        )
        row += 1

    ws.write(row, 0, text["total"], formats["total"])
    ws.write_number(row, 1, total_drawn, formats["total"])
    ws.write_number(row, 2, total_errors, formats["total"])
    ws.write_number(
        row,
        3,
        total_errors / total_drawn if total_drawn else 0.0,
        formats["total_percent"],
    )


def _write_group_sheet(
    workbook: xlsxwriter.Workbook,
    formats: dict[str, Any],
    sheet_name: str,
    group_idx: int,
    group: SampleGroup,
    headers: list[str] | None,
    annotations: AnnotationMap,
    text: dict[str, Any],
    show_progress: bool,
) -> None:
    """Write one group of drawn rows with their review marks.

    Args:
        workbook (xlsxwriter.Workbook): Workbook being written.
        formats (dict[str, Any]): Formatting dictionary for styles.
        sheet_name (str): Sanitized sheet name.
        group_idx (int): Index of the group in the result.
        group (SampleGroup): Drawn group.
        headers (list[str] | None): Dataset headers for the simple designs,
            ``None`` for strata that only carry population indices.
        annotations (AnnotationMap): Review marks.
        text (dict[str, Any]): Locale captions.
        show_progress (bool): Whether to display tqdm progress bars.
    """
    ws = workbook.add_worksheet(sheet_name)
    if headers is not None:
        data_captions = headers
    else:
        data_captions = [text["population_index"]]
    captions = [
        text["row_number"],
        *data_captions,
        text["has_error"],
        text["note"],
    ]
    flag_col = len(data_captions) + 1
    ws.set_column(0, 0, 8)
    ws.set_column(1, len(data_captions), 18)
    ws.set_column(flag_col, flag_col, 14)
    ws.set_column(flag_col + 1, flag_col + 1, 40)
    for c, caption in enumerate(captions):
        ws.write(0, c, caption, formats["header"])

    positions = range(len(group.indices))
    iterator = (
        positions
        if not show_progress
        else tqdm(positions, desc=f"Writing {sheet_name}", unit="row")
    )
    for position in iterator:
        annotation = annotations.get((group_idx, position), Annotation())
        if annotation.has_error:
            style = "error"
        elif position % 2:
            style = "alt"
        else:
            style = "normal"
        row_fmt = formats[f"{style}_row"]
        date_fmt = formats[f"{style}_date"]

        r = position + 1
        ws.write_number(r, 0, r, row_fmt)
        if headers is not None:
            cells = group.rows[position]
        else:
            cells = [group.indices[position]]
        for c, value in enumerate(cells, start=1):
            if value is None:
                ws.write_blank(r, c, None, row_fmt)
            elif isinstance(value, (datetime, date)):
                ws.write_datetime(r, c, value, date_fmt)
            else:
                ws.write(r, c, value, row_fmt)
        ws.write(
            r,
            flag_col,
            text["yes"] if annotation.has_error else text["no"],
            row_fmt,
        )
        ws.write(r, flag_col + 1, annotation.note, row_fmt)


def _write_pivot_sheets(
    workbook: xlsxwriter.Workbook,
    formats: dict[str, Any],
    sample: PivotSample,
    text: dict[str, Any],
    show_progress: bool,
) -> None:
    """Overview of the drawn years followed by one sheet per year."""

    used_names: set[str] = set()
    ws = workbook.add_worksheet(
        _unique_sheet_name(text["pivot_sheet"], used_names)
    )
    ws.set_column("A:A", 14)
    ws.set_column("B:D", 16)

    captions = [
        text["prefix"],
        text["pivot_year"],
        text["rows"],
        text["sample_size"],
    ]
    for c, caption in enumerate(captions):
        ws.write(0, c, caption, formats["header_green"])

    row = 1
    for group in sample.groups:
        ws.write(row, 0, sample.prefix, formats["normal_row"])
        ws.write(row, 1, group.label, formats["normal_row"])
        ws.write_number(row, 2, group.population_size, formats["integer"])
        ws.write_number(row, 3, len(group.indices), formats["integer"])
        row += 1
    ws.write(row, 0, text["total"], formats["total"])
    ws.write_blank(row, 1, None, formats["total"])
    ws.write_number(
        row,
        2,
        sum(g.population_size for g in sample.groups),
        formats["total"],
    )
    ws.write_number(row, 3, sample.total_drawn, formats["total"])

    for group_idx, group in enumerate(sample.groups):
        _write_group_sheet(
            workbook,
            formats,
            _unique_sheet_name(f"{sample.prefix} {group.label}", used_names),
            group_idx,
            group,
            sample.headers,
            {},
            text,
            show_progress,
        )
