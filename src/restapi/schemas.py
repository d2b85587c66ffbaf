"""Pydantic models shared across the REST API."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from sample_calculator.models import (
    AnnotationEntry,
    SamplingConfig,
    SamplingResult,
    StratifiedPopulation,
    YearFilter,
)
from sample_calculator.session import SessionState

Locale = Literal["en", "mn"]


class SessionCreateResponse(BaseModel):
    """Response model for session creation."""

    session_id: str
    state: SessionState


class DatasetInfo(BaseModel):
    """Shape of the uploaded population."""

    source_name: str
    headers: list[str]
    rows: int


class YearsResponse(BaseModel):
    """Distinct years found in one dataset column."""

    column: int
    header: str
    years: list[int]


class SessionDetail(BaseModel):
    """Everything the client needs to render a session."""

    session_id: str
    state: SessionState
    created_at: datetime
    config: SamplingConfig
    dataset: DatasetInfo | None = None
    population: StratifiedPopulation | None = None
    year_filter: YearFilter | None = None
    population_size: int = 0
    can_calculate: bool = False
    result: SamplingResult | None = None
    annotations: list[AnnotationEntry] = Field(default_factory=list)


class PivotSampleRequest(BaseModel):
    """Prefix and per-year sizes for a pivot sample draw."""

    date_column: int = Field(ge=0)
    code_column: int = Field(ge=0)
    prefix: str = Field(min_length=1)
    year_sizes: dict[int, int] | None = None
