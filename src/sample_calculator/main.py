"""CLI entry point for the random sampling calculator."""

from __future__ import annotations

import argparse
import json
import sys
import time
from datetime import datetime, timezone
from pathlib import Path
from uuid import uuid4

from .logging_setup import configure_logging, get_logger
from .models import (
    AnnotationEntry,
    Dataset,
    EventCode,
    RunSummary,
    SamplingConfig,
    SamplingDesign,
    StratifiedPopulation,
    Stratum,
    YearFilter,
)
from .reporter import (
    DEFAULT_EXPORT_FILENAME,
    LOCALES,
    ExportError,
    resolve_export_path,
)
from .session import SamplingSession, SessionStateError

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_SKIPPED = 2


def _stratum(value: str) -> Stratum:
    """Parse ``NAME`` or ``NAME=SIZE`` into a :class:`Stratum`."""

    name, sep, size = value.partition("=")
    name = name.strip()
    if not name:
        raise argparse.ArgumentTypeError("stratum name must not be empty")
    if not sep:
        return Stratum(name=name)
    try:
        parsed = int(size)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(
            f"invalid stratum size: {size!r}"
        ) from exc
    if parsed <= 0:
        raise argparse.ArgumentTypeError("stratum size must be positive")
    return Stratum(name=name, size=parsed)


def _year_size(value: str) -> tuple[int, int]:
    """Parse ``YEAR=N`` into a year and its requested sample size."""

    year, sep, size = value.partition("=")
    try:
        if not sep:
            raise ValueError(value)
        parsed = (int(year), int(size))
    except ValueError as exc:
        raise argparse.ArgumentTypeError(
            f"expected YEAR=N, got {value!r}"
        ) from exc
    if parsed[1] < 0:
        raise argparse.ArgumentTypeError("sample size must not be negative")
    return parsed


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments for the sampling calculator.

    Args:
        argv (list[str] | None): Argument list; ``sys.argv`` when omitted.

    Returns:
        argparse.Namespace: Parsed command-line namespace.
    """

    parser = argparse.ArgumentParser(
        description="Audit random sampling calculator",
    )
    parser.add_argument(
        "--design",
        choices=[d.value for d in SamplingDesign],
        default=SamplingDesign.SRSWOR.value,
        help="Sampling design",
    )
    parser.add_argument(
        "--confidence",
        type=float,
        default=0.95,
        help="Confidence level in (0, 1)",
    )
    parser.add_argument(
        "--margin",
        type=float,
        default=5.0,
        help="Margin of error in percent",
    )
    parser.add_argument(
        "--std-dev",
        type=float,
        default=0.5,
        help="Assumed standard deviation for the simple designs",
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=None,
        help="Random seed for a reproducible draw",
    )
    parser.add_argument(
        "--input",
        type=Path,
        default=None,
        help="Population workbook (.xlsx/.xls) for the simple designs",
    )
    parser.add_argument(
        "--year-column",
        type=str,
        default=None,
        help="Header name or 0-based index of the column holding dates",
    )
    parser.add_argument(
        "--year",
        type=int,
        default=None,
        help="Only sample rows from this year (requires --year-column)",
    )
    parser.add_argument(
        "--population",
        type=int,
        default=None,
        help="Population size N for the stratified designs",
    )
    parser.add_argument(
        "--stratum",
        type=_stratum,
        action="append",
        default=[],
        metavar="NAME[=SIZE]",
        help="Stratified group; repeat for every group",
    )
    parser.add_argument(
        "--pivot-code-column",
        type=str,
        default=None,
        help=(
            "Header name or 0-based index of the account-code column; "
            "switches to the prefix-by-year pivot (dates come from "
            "--year-column)"
        ),
    )
    parser.add_argument(
        "--pivot-prefix",
        type=str,
        default=None,
        help="Code prefix to sample; without it only the pivot is printed",
    )
    parser.add_argument(
        "--pivot-size",
        type=_year_size,
        action="append",
        default=[],
        metavar="YEAR=N",
        help="Sample size for one year of the prefix; defaults to the pivot",
    )
    parser.add_argument(
        "--annotations",
        type=Path,
        default=None,
        help="JSON list of {group, position, has_error, note} review marks",
    )
    parser.add_argument(
        "--output-dir",
        type=Path,
        required=True,
        help="Directory where the Excel export will be saved",
    )
    parser.add_argument(
        "--output-name",
        type=str,
        default=DEFAULT_EXPORT_FILENAME,
        help="Export file name",
    )
    parser.add_argument(
        "--locale",
        choices=sorted(LOCALES),
        default="en",
        help="Language of the export captions",
    )
    parser.add_argument(
        "--progress",
        action="store_true",
        help="Show progress bars while writing the export",
    )
    parser.add_argument(
        "--run-id",
        type=str,
        default=None,
        help="Optional run identifier; if omitted a UUID is generated",
    )
    return parser.parse_args(argv)


def resolve_column(dataset: Dataset, column: str) -> int:
    """Resolve a header name or 0-based index to a column index."""

    if column in dataset.headers:
        return dataset.headers.index(column)
    try:
        return int(column)
    except ValueError:
        raise ValueError(f"Unknown column: {column!r}") from None


def load_annotations(path: Path) -> list[AnnotationEntry]:
    """Read review marks from a JSON file."""

    payload = json.loads(path.read_text(encoding="utf-8"))
    return [AnnotationEntry.model_validate(item) for item in payload]


def _prepare_session(
    args: argparse.Namespace, config: SamplingConfig
) -> SamplingSession:
    """Load the population described by the CLI arguments."""

    session = SamplingSession(config)
    if config.design.is_stratified:
        if not args.stratum:
            raise ValueError("Stratified designs need at least one --stratum")
        session.set_population(
            StratifiedPopulation(
                population_size=args.population, strata=args.stratum
            )
        )
        return session

    if args.input is None:
        raise ValueError("--input is required for the simple designs")
    if args.year is not None and args.year_column is None:
        raise ValueError("--year requires --year-column")
    dataset = session.load_dataset(args.input)
    if args.year_column is not None:
        column = resolve_column(dataset, args.year_column)
        session.set_year_filter(YearFilter(column=column, year=args.year))
    return session


def run(args: argparse.Namespace) -> int:
    """Run the full calculation workflow from CLI parameters to export.

    Args:
        args (argparse.Namespace): Parsed CLI arguments.

    Returns:
        int: Process exit status code.
    """
    run_id = args.run_id or str(uuid4())
    configure_logging(run_id)
    log = get_logger("main")

    started = time.perf_counter()
    started_dt = datetime.now(timezone.utc)

    config = SamplingConfig(
        design=args.design,
        confidence_level=args.confidence,
        margin_of_error_percent=args.margin,
        assumed_std_dev=args.std_dev,
        random_seed=args.seed,
    )
    log.info(
        EventCode.RUN_START.value, parameters=config.model_dump(mode="json")
    )
    if args.pivot_code_column is not None:
        return _run_pivot(args, config, run_id, started, started_dt)

    session = _prepare_session(args, config)
    calc_start = time.perf_counter()
    result = session.calculate()
    calculation_seconds = time.perf_counter() - calc_start
    if result is None:
        print("Population is empty; nothing to sample.", file=sys.stderr)
        return EXIT_SKIPPED

    if args.annotations is not None:
        for entry in load_annotations(args.annotations):
            session.annotate(
                entry.group, entry.position, entry.has_error, entry.note
            )

    report_start = time.perf_counter()
    report_path = session.export(
        resolve_export_path(args.output_dir, args.output_name),
        locale=args.locale,
        show_progress=args.progress,
    )
    reporting_seconds = time.perf_counter() - report_start
    print(f"Sample written to: {report_path}")

    summary = RunSummary(
        run_id=run_id,
        started_at_utc=started_dt,
        finished_at_utc=datetime.now(timezone.utc),
        duration_seconds=round(time.perf_counter() - started, 2),
        calculation_seconds=round(calculation_seconds, 2),
        reporting_seconds=round(reporting_seconds, 2),
        parameters=config.model_dump(mode="json"),
        population_size=result.population_size,
        required_sample_size=result.required_sample_size,
        drawn_rows=result.total_drawn,
        annotated_errors=session.error_count(),
        output_excel=str(report_path),
    )
    _write_summary(args.output_dir, summary)
    return EXIT_OK


def _run_pivot(
    args: argparse.Namespace,
    config: SamplingConfig,
    run_id: str,
    started: float,
    started_dt: datetime,
) -> int:
    """Print the prefix-by-year pivot, or sample one prefix of it."""

    if args.input is None:
        raise ValueError("--pivot-code-column requires --input")
    if args.year_column is None:
        raise ValueError("--pivot-code-column requires --year-column")

    session = SamplingSession(config)
    dataset = session.load_dataset(args.input)
    date_column = resolve_column(dataset, args.year_column)
    code_column = resolve_column(dataset, args.pivot_code_column)

    calc_start = time.perf_counter()
    if args.pivot_prefix is None:
        for group in session.build_pivot(date_column, code_column):
            for cell in group.rows:
                print(
                    f"{group.prefix}\t{cell.year}\t{cell.count}\t"
                    f"{cell.percent:.2f}%\t{cell.sample_size}"
                )
        return EXIT_OK

    year_sizes = dict(args.pivot_size) if args.pivot_size else None
    sample = session.pivot_sample(
        date_column, code_column, args.pivot_prefix, year_sizes
    )
    calculation_seconds = time.perf_counter() - calc_start

    report_start = time.perf_counter()
    report_path = session.export_pivot(
        resolve_export_path(args.output_dir, args.output_name),
        locale=args.locale,
        show_progress=args.progress,
    )
    reporting_seconds = time.perf_counter() - report_start
    print(f"Sample written to: {report_path}")

    summary = RunSummary(
        run_id=run_id,
        started_at_utc=started_dt,
        finished_at_utc=datetime.now(timezone.utc),
        duration_seconds=round(time.perf_counter() - started, 2),
        calculation_seconds=round(calculation_seconds, 2),
        reporting_seconds=round(reporting_seconds, 2),
        parameters={
            **config.model_dump(mode="json"),
            "pivot_prefix": sample.prefix,
        },
        population_size=sum(g.population_size for g in sample.groups),
        required_sample_size=sum(g.allocated_size for g in sample.groups),
        drawn_rows=sample.total_drawn,
        annotated_errors=0,
        output_excel=str(report_path),
    )
    _write_summary(args.output_dir, summary)
    return EXIT_OK


def _write_summary(output_dir: Path, summary: RunSummary) -> Path:
    """Persist the run summary as ``runs/<run_id>.json``."""

    runs_dir = output_dir / "runs"
    runs_dir.mkdir(parents=True, exist_ok=True)
    summary_path = runs_dir / f"{summary.run_id}.json"
    with open(summary_path, "w", encoding="utf-8") as f:
        json.dump(summary.model_dump(mode="json"), f, indent=2)
    get_logger("main").info(
        EventCode.RUN_SUMMARY.value, path=str(summary_path)
    )
    print(f"Summary written to: {summary_path}")
    return summary_path


def main(argv: list[str] | None = None) -> int:
    """Console entry point; reports user errors without a traceback."""

    args = parse_args(argv)
    try:
        return run(args)
    except (ValueError, IndexError, SessionStateError, ExportError) as exc:
        get_logger("main").error("RUN_FAILED", error=str(exc))
        print(f"Error: {exc}", file=sys.stderr)
        return EXIT_ERROR


if __name__ == "__main__":
    sys.exit(main())
