"""Stateful calculator session: load, calculate, annotate, export."""

from __future__ import annotations

import random
from enum import Enum
from pathlib import Path

from .calculator import calculate, population_size
from .ingest import available_years, load_dataset
from .logging_setup import get_logger
from .models import (
    Annotation,
    Dataset,
    EventCode,
    PivotGroup,
    PivotSample,
    SamplingConfig,
    SamplingResult,
    StratifiedPopulation,
    YearFilter,
)
from .pivot import build_pivot, pivot_sample, pivot_sizes
from .reporter import AnnotationMap, export_pivot_workbook, export_workbook

log = get_logger("session")


class SessionState(str, Enum):
    """Lifecycle of a sampling session."""

    IDLE = "idle"
    CONFIGURED = "configured"
    CALCULATED = "calculated"
    ANNOTATING = "annotating"
    EXPORTED = "exported"


class SessionStateError(RuntimeError):
    """Raised when an action is not valid in the current session state."""


class SamplingSession:
    """In-memory state of one auditor working through a sample.

    A new upload or population replaces the previous one and discards any
    result. Every calculation discards the previous annotations.
    """

    def __init__(self, config: SamplingConfig | None = None) -> None:
        self.config = config or SamplingConfig()
        self.dataset: Dataset | None = None
        self.population: StratifiedPopulation | None = None
        self.year_filter: YearFilter | None = None
        self.result: SamplingResult | None = None
        self.annotations: AnnotationMap = {}
        self.pivot_result: PivotSample | None = None
        self.state = SessionState.IDLE

    def update_config(self, config: SamplingConfig) -> None:
        """Replace the settings; switching design discards the sample."""

        design_changed = config.design != self.config.design
        self.config = config
        if design_changed and self.state != SessionState.IDLE:
            self._reconfigure()

    def load_dataset(
        self, file_path: Path, source_name: str | None = None
    ) -> Dataset:
        """Load a workbook as the session population."""

        dataset = load_dataset(file_path, source_name)
        self.set_dataset(dataset)
        return dataset

    def set_dataset(self, dataset: Dataset) -> None:
        self.dataset = dataset
        self.year_filter = None
        self.pivot_result = None
        self._reconfigure()

    def set_population(self, population: StratifiedPopulation) -> None:
        self.population = population
        self._reconfigure()

    def set_year_filter(self, year_filter: YearFilter | None) -> None:
        """Select the year column and year used to narrow the dataset."""

        if year_filter is not None:
            if self.dataset is None:
                raise SessionStateError("Load a dataset before filtering it")
            if year_filter.column >= len(self.dataset.headers):
                raise ValueError(
                    f"Year column {year_filter.column} is out of range"
                )
        self.year_filter = year_filter

    def available_years(self, column: int) -> list[int]:
        if self.dataset is None:
            raise SessionStateError("No dataset loaded")
        return available_years(self.dataset, column)

    @property
    def population_size(self) -> int:
        return population_size(
            self.config, self.dataset, self.population, self.year_filter
        )

    @property
    def can_calculate(self) -> bool:
        return self.state != SessionState.IDLE and self.population_size > 0

    def calculate(self) -> SamplingResult | None:
        """Draw a new sample, discarding the previous one and its marks.

        Returns:
            SamplingResult | None: The new result, or ``None`` when the
            population is empty and the calculation was skipped.
        """
        if not self.can_calculate:
            log.warning(
                EventCode.CALCULATION_SKIPPED.value,
                state=self.state.value,
                design=self.config.design.value,
            )
            return None

        result = calculate(
            self.config, self.dataset, self.population, self.year_filter
        )
        if result is None:
            return None
        self.result = result
        self.annotations = {}
        self.state = SessionState.CALCULATED
        return result

    def annotate(
        self,
        group_index: int,
        position: int,
        has_error: bool,
        note: str = "",
    ) -> Annotation:
        """Mark one drawn row as erroneous or clean.

        Raises:
            SessionStateError: If no sample has been calculated yet.
            IndexError: If the group or position does not exist.
        """
        if self.result is None:
            raise SessionStateError("Calculate a sample before annotating")
        if not 0 <= group_index < len(self.result.groups):
            raise IndexError(f"No sample group {group_index}")
        group = self.result.groups[group_index]
        if not 0 <= position < len(group.indices):
            raise IndexError(
                f"No row {position} in sample group {group_index}"
            )

        annotation = Annotation(has_error=has_error, note=note)
        self.annotations[(group_index, position)] = annotation
        self.state = SessionState.ANNOTATING
        log.info(
            EventCode.ANNOTATION_UPDATED.value,
            group=group_index,
            position=position,
            has_error=has_error,
        )
        return annotation

    def error_count(self) -> int:
        return sum(1 for a in self.annotations.values() if a.has_error)

    def export(
        self,
        output_path: Path,
        locale: str = "en",
        show_progress: bool = False,
    ) -> Path:
        """Write the annotated sample to ``output_path``."""

        if self.result is None:
            raise SessionStateError("Calculate a sample before exporting")
        path = export_workbook(
            self.result,
            self.annotations,
            output_path,
            locale=locale,
            show_progress=show_progress,
        )
        self.state = SessionState.EXPORTED
        return path

    def build_pivot(
        self, date_column: int, code_column: int
    ) -> list[PivotGroup]:
        """Count the dataset rows per code prefix and year."""

        if self.dataset is None:
            raise SessionStateError("Load a dataset before building a pivot")
        return build_pivot(self.dataset, date_column, code_column, self.config)

    def pivot_sample(
        self,
        date_column: int,
        code_column: int,
        prefix: str,
        year_sizes: dict[int, int] | None = None,
    ) -> PivotSample:
        """Draw the rows of one prefix per year.

        Without ``year_sizes`` every year of the prefix takes the sample size
        computed by the pivot.
        """
        if self.dataset is None:
            raise SessionStateError("Load a dataset before sampling a pivot")
        if year_sizes is None:
            year_sizes = pivot_sizes(
                self.build_pivot(date_column, code_column), prefix
            )
        self.pivot_result = pivot_sample(
            self.dataset,
            date_column,
            code_column,
            prefix,
            year_sizes,
            random.Random(self.config.random_seed),
        )
        return self.pivot_result

    def export_pivot(
        self,
        output_path: Path,
        locale: str = "en",
        show_progress: bool = False,
    ) -> Path:
        if self.pivot_result is None:
            raise SessionStateError("Draw a pivot sample before exporting it")
        return export_pivot_workbook(
            self.pivot_result, output_path, locale, show_progress
        )

    def _reconfigure(self) -> None:
        self.result = None
        self.annotations = {}
        self.state = SessionState.CONFIGURED
