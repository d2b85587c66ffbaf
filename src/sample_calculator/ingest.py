"""Spreadsheet ingestion and year filtering for sampling datasets."""

from __future__ import annotations

import re
import zipfile
from datetime import date, datetime
from pathlib import Path
from typing import Any

import xlrd
from openpyxl import load_workbook
from openpyxl.utils.datetime import from_excel
from openpyxl.utils.exceptions import InvalidFileException

from .logging_setup import get_logger
from .models import CellValue, Dataset, EventCode, YearFilter

log = get_logger("ingest")

SUPPORTED_EXTENSIONS = (".xlsx", ".xls")
YEAR_PATTERN = re.compile(r"\d{4}")

# Failures raised by the workbook readers for missing or corrupt files
READER_ERRORS = (
    OSError,
    KeyError,
    zipfile.BadZipFile,
    InvalidFileException,
    xlrd.XLRDError,
)


class UnsupportedFileError(ValueError):
    """Raised when the uploaded file is not an Excel workbook."""


class InsufficientRowsError(ValueError):
    """Raised when a sheet holds no data beyond its header row."""


class UnreadableFileError(ValueError):
    """Raised when a workbook is missing, corrupt or not really Excel."""


def check_extension(file_name: str) -> str:
    """Return the lower-cased extension of a supported workbook name.

    Raises:
        UnsupportedFileError: If the extension is not ``.xlsx``/``.xls``.
    """
    suffix = Path(file_name).suffix.lower()
    if suffix not in SUPPORTED_EXTENSIONS:
        raise UnsupportedFileError(
            "Only Excel files (.xlsx, .xls) can be used as a sampling "
            "population."
        )
    return suffix


def load_dataset(file_path: Path, source_name: str | None = None) -> Dataset:
    """Load the first sheet of a workbook into a :class:`Dataset`.

    Args:
        file_path (Path): Path to an ``.xlsx`` or ``.xls`` workbook.
        source_name (str | None): Display name of the upload. Defaults to the
            file name.

    Returns:
        Dataset: Header row plus every non-blank data row.

    Raises:
        UnsupportedFileError: If the extension is not ``.xlsx``/``.xls``.
        InsufficientRowsError: If the sheet has fewer than two rows.
        UnreadableFileError: If the file cannot be opened or parsed.
    """
    file_path = Path(file_path)
    name = source_name or file_path.name
    suffix = check_extension(name)

    reader = _read_xls_rows if suffix == ".xls" else _read_xlsx_rows
    try:
        raw_rows = reader(file_path)
    except READER_ERRORS as exc:
        raise UnreadableFileError(
            f"{name} could not be read as an Excel workbook: {exc}"
        ) from exc

    rows = [row for row in raw_rows if not _is_blank(row)]
    if len(rows) < 2:
        raise InsufficientRowsError(
            "The file does not contain enough data: a header row and at "
            "least one data row are required."
        )

    headers = _build_headers(rows[0])
    width = len(headers)
    data = [_pad(row, width) for row in rows[1:]]
    dataset = Dataset(headers=headers, rows=data, source_name=name)

    log.info(
        EventCode.DATASET_LOADED.value,
        path=str(file_path),
        source=name,
        rows=len(dataset),
        columns=width,
    )
    return dataset


def _read_xlsx_rows(file_path: Path) -> list[list[CellValue]]:
    """Read cached cell values from the first sheet of an ``.xlsx`` file."""

    workbook = load_workbook(file_path, read_only=True, data_only=True)
    try:
        sheet = workbook.worksheets[0]
        return [
            [_normalize_cell(value) for value in row]
            for row in sheet.iter_rows(values_only=True)
        ]
    finally:
        workbook.close()


def _read_xls_rows(file_path: Path) -> list[list[CellValue]]:
    """Read the first sheet of a legacy ``.xls`` file."""

    book = xlrd.open_workbook(str(file_path))
    sheet = book.sheet_by_index(0)
    return [
        [
            _xls_cell(sheet.cell(r, c), book.datemode)
            for c in range(sheet.ncols)
        ]
        for r in range(sheet.nrows)
    ]


def _xls_cell(cell: xlrd.sheet.Cell, datemode: int) -> CellValue:
    """Convert an xlrd cell into a plain Python value."""

    if cell.ctype in (
        xlrd.XL_CELL_EMPTY,
        xlrd.XL_CELL_BLANK,
        xlrd.XL_CELL_ERROR,
    ):
        return None
    if cell.ctype == xlrd.XL_CELL_BOOLEAN:
        return bool(cell.value)
    if cell.ctype == xlrd.XL_CELL_DATE:
        try:
            return xlrd.xldate_as_datetime(cell.value, datemode)
        except xlrd.xldate.XLDateError:
            return cell.value
    if cell.ctype == xlrd.XL_CELL_NUMBER:
        return _normalize_cell(cell.value)
    return str(cell.value)


def _normalize_cell(value: Any) -> CellValue:
    """Coerce a raw cell value into a :data:`CellValue`."""

    if value is None or isinstance(value, (bool, int, str, datetime, date)):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else value
    return str(value)


def _is_blank(row: list[CellValue]) -> bool:
    return all(value is None or value == "" for value in row)


def _build_headers(row: list[CellValue]) -> list[str]:
    """Stringify the header row, naming blank cells by position."""

    headers = []
    for idx, value in enumerate(row, start=1):
        text = "" if value is None else str(value).strip()
        headers.append(text or f"Column {idx}")
    return headers


def _pad(row: list[CellValue], width: int) -> list[CellValue]:
    if len(row) >= width:
        return list(row[:width])
    return list(row) + [None] * (width - len(row))


def extract_year(value: CellValue) -> int | None:
    """Extract a calendar year from a cell.

    Dates yield their year. Numbers are decoded as spreadsheet date serials.
    Any other value falls back to the first four-digit run of its text.

    Args:
        value (CellValue): Raw cell value.

    Returns:
        int | None: The year, or ``None`` when the cell carries no year.
    """
    if value is None:
        return None
    if isinstance(value, (datetime, date)):
        return value.year
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            decoded = from_excel(value)
        except (OverflowError, ValueError):
            return None
        return getattr(decoded, "year", None)
    match = YEAR_PATTERN.search(str(value))
    return int(match.group(0)) if match else None


def _column_values(dataset: Dataset, column: int) -> list[CellValue]:
    if column >= len(dataset.headers):
        raise ValueError(
            f"Year column {column} is out of range for "
            f"{len(dataset.headers)} columns"
        )
    return [row[column] for row in dataset.rows]


def available_years(dataset: Dataset, column: int) -> list[int]:
    """Sorted distinct years found in ``column``; unparseable cells skipped."""

    years = {extract_year(v) for v in _column_values(dataset, column)}
    years.discard(None)
    return sorted(years)


def filter_by_year(
    dataset: Dataset, year_filter: YearFilter | None = None
) -> list[tuple[int, list[CellValue]]]:
    """Return the sampling population as ``(source_index, row)`` pairs.

    Source indices are 1-based positions in the dataset. Without a selected
    year every row counts, including rows whose year cannot be parsed.

    Args:
        dataset (Dataset): Loaded dataset.
        year_filter (YearFilter | None): Optional year restriction.

    Returns:
        list[tuple[int, list[CellValue]]]: Population rows in file order.
    """
    population = list(enumerate(dataset.rows, start=1))
    if year_filter is None:
        return population

    values = _column_values(dataset, year_filter.column)
    years = [extract_year(v) for v in values]
    unparseable = sum(1 for y in years if y is None)
    if unparseable:
        log.debug(
            EventCode.YEAR_UNPARSEABLE.value,
            column=dataset.headers[year_filter.column],
            count=unparseable,
        )
    if year_filter.year is None:
        return population

    filtered = [
        pair
        for pair, year in zip(population, years)
        if year == year_filter.year
    ]
    log.info(
        EventCode.YEAR_FILTER_APPLIED.value,
        column=dataset.headers[year_filter.column],
        year=year_filter.year,
        rows=len(filtered),
        total=len(population),
    )
    return filtered
