"""Core data models for the random sampling calculator."""

from __future__ import annotations

from datetime import date, datetime
from enum import Enum

from pydantic import BaseModel, Field, model_validator

CellValue = bool | int | float | datetime | date | str | None


class SamplingDesign(str, Enum):
    """Supported sampling designs."""

    SRSWR = "srswr"
    SRSWOR = "srswor"
    PROPORTIONAL = "prop"
    NON_PROPORTIONAL = "nonprop"

    @property
    def is_stratified(self) -> bool:
        return self in (
            SamplingDesign.PROPORTIONAL,
            SamplingDesign.NON_PROPORTIONAL,
        )


class SamplingConfig(BaseModel):
    """Calculator inputs shared by every design."""

    design: SamplingDesign = SamplingDesign.SRSWOR
    confidence_level: float = Field(default=0.95, gt=0, lt=1)
    margin_of_error_percent: float = Field(default=5.0, gt=0)
    assumed_std_dev: float = Field(default=0.5, gt=0, le=1)
    random_seed: int | None = Field(default=None, ge=0)


class Dataset(BaseModel):
    """Tabular population loaded from the first sheet of a spreadsheet."""

    headers: list[str]
    rows: list[list[CellValue]]
    source_name: str = ""

    def __len__(self) -> int:
        return len(self.rows)


class YearFilter(BaseModel):
    """Restricts a dataset population to rows from one year."""

    column: int = Field(ge=0)
    year: int | None = None


class Stratum(BaseModel):
    """Named group of an abstract stratified population."""

    name: str = Field(min_length=1)
    size: int | None = Field(default=None, gt=0)


class StratifiedPopulation(BaseModel):
    """Population size and group structure for stratified designs."""

    population_size: int | None = Field(default=None, gt=0)
    strata: list[Stratum] = Field(min_length=1)

    @model_validator(mode="after")
    def fill_population_size(self) -> "StratifiedPopulation":
        """Default N to the sum of the declared group sizes.

        When N is given it must agree with the declared sizes: equal to their
        sum when every stratum has one, and large enough to leave at least one
        unit for each stratum without a size otherwise.
        """

        declared = [s.size for s in self.strata if s.size is not None]
        undeclared = len(self.strata) - len(declared)
        if self.population_size is None:
            if undeclared:
                raise ValueError(
                    "population_size is required when any stratum size is "
                    "omitted"
                )
            self.population_size = sum(declared)
        elif not undeclared:
            if sum(declared) != self.population_size:
                raise ValueError(
                    "population_size must equal the sum of the stratum "
                    f"sizes ({self.population_size} != {sum(declared)})"
                )
        elif sum(declared) + undeclared > self.population_size:
            raise ValueError(
                "Declared stratum sizes leave no units for the strata "
                "without a size"
            )
        return self


class SampleGroup(BaseModel):
    """One group of drawn population indices."""

    label: str
    allocated_size: int = Field(ge=0)
    population_size: int = Field(ge=0)
    indices: list[int] = Field(default_factory=list)
    rows: list[list[CellValue]] = Field(default_factory=list)


class SamplingResult(BaseModel):
    """Outcome of a single calculation run."""

    required_sample_size: int
    initial_sample_size: float
    population_size: int
    z_score: float
    config: SamplingConfig
    groups: list[SampleGroup]
    headers: list[str] = Field(default_factory=list)
    year_filter: YearFilter | None = None

    @property
    def total_drawn(self) -> int:
        return sum(len(g.indices) for g in self.groups)


class PivotCell(BaseModel):
    """Row count and sample size for one prefix and year."""

    year: int
    count: int = Field(ge=0)
    percent: float
    sample_size: int = Field(ge=0)


class PivotGroup(BaseModel):
    """Per-year breakdown of the rows sharing an account-code prefix."""

    prefix: str
    total: int = Field(ge=0)
    rows: list[PivotCell] = Field(default_factory=list)


class PivotSample(BaseModel):
    """Rows drawn for one prefix, one group per requested year."""

    prefix: str
    headers: list[str]
    groups: list[SampleGroup]

    @property
    def total_drawn(self) -> int:
        return sum(len(g.indices) for g in self.groups)


class Annotation(BaseModel):
    """Reviewer mark for one drawn row."""

    has_error: bool = False
    note: str = ""


class AnnotationEntry(Annotation):
    """Annotation addressed by group index and position within the group."""

    group: int = Field(ge=0)
    position: int = Field(ge=0)


class EventCode(str, Enum):
    """Enumeration of structured logging event codes."""

    RUN_START = "RUN_START"
    DATASET_LOADED = "DATASET_LOADED"
    YEAR_FILTER_APPLIED = "YEAR_FILTER_APPLIED"
    YEAR_UNPARSEABLE = "YEAR_UNPARSEABLE"
    SAMPLE_SIZE_CALCULATED = "SAMPLE_SIZE_CALCULATED"
    CALCULATION_SKIPPED = "CALCULATION_SKIPPED"
    SAMPLING_DONE = "SAMPLING_DONE"
    ANNOTATION_UPDATED = "ANNOTATION_UPDATED"
    EXPORT_WRITTEN = "EXPORT_WRITTEN"
    EXPORT_FAILED = "EXPORT_FAILED"
    PIVOT_BUILT = "PIVOT_BUILT"
    PIVOT_SAMPLED = "PIVOT_SAMPLED"
    RUN_SUMMARY = "RUN_SUMMARY"


class RunSummary(BaseModel):
    """Aggregate run results and timings persisted as JSON."""

    run_id: str
    started_at_utc: datetime
    finished_at_utc: datetime
    duration_seconds: float
    calculation_seconds: float
    reporting_seconds: float
    parameters: dict
    population_size: int
    required_sample_size: int
    drawn_rows: int
    annotated_errors: int
    output_excel: str
    version: str = "1.0.0"
