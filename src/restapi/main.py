"""FastAPI service exposing the sampling calculator as browser sessions."""

from __future__ import annotations

import logging

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
)
for noisy in ("uvicorn", "uvicorn.access"):
    logging.getLogger(noisy).setLevel(logging.WARNING)

from fastapi import FastAPI, File, Form, HTTPException, Query, UploadFile
from fastapi.responses import FileResponse, RedirectResponse
from pydantic import ValidationError

from sample_calculator.logging_setup import bind_session, configure_logging
from sample_calculator.models import (
    Annotation,
    AnnotationEntry,
    PivotGroup,
    PivotSample,
    SamplingConfig,
    SamplingDesign,
    SamplingResult,
    StratifiedPopulation,
    YearFilter,
)
from sample_calculator.reporter import ExportError
from sample_calculator.session import SessionStateError

from .schemas import (
    DatasetInfo,
    Locale,
    PivotSampleRequest,
    SessionCreateResponse,
    SessionDetail,
    YearsResponse,
)
from .sessions import SessionManager, SessionNotFoundError, SessionRecord
from .storage import SessionStorage

XLSX_MEDIA_TYPE = (
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
)

app = FastAPI(
    title="Audit Sampling Calculator API",
    version="1.0.0",
    description="Random sample size calculation, drawing and review export.",
)
configure_logging(run_id="api")
api_logger = logging.getLogger("restapi.api")
storage = SessionStorage()
manager = SessionManager(storage)


def _record(session_id: str) -> SessionRecord:
    try:
        record = manager.get(session_id)
    except SessionNotFoundError:
        api_logger.warning("Session %s not found", session_id)
        raise HTTPException(status_code=404, detail="Session not found")
    bind_session(session_id)
    return record


@app.get("/", include_in_schema=False)
async def docs_redirect():
    return RedirectResponse(url="/docs")


@app.post(
    "/sessions", response_model=SessionCreateResponse, tags=["Sessions"]
)
def create_session(
    design: SamplingDesign = Form(SamplingDesign.SRSWOR),
    confidence_level: float = Form(0.95),
    margin_of_error_percent: float = Form(5.0),
    assumed_std_dev: float = Form(0.5),
    random_seed: int | None = Form(None),
) -> SessionCreateResponse:
    try:
        config = SamplingConfig(
            design=design,
            confidence_level=confidence_level,
            margin_of_error_percent=margin_of_error_percent,
            assumed_std_dev=assumed_std_dev,
            random_seed=random_seed,
        )
    except ValidationError as exc:
        api_logger.warning("Invalid session parameters: %s", exc)
        raise HTTPException(status_code=422, detail=str(exc)) from exc

    record = manager.create(config)
    return SessionCreateResponse(
        session_id=record.session_id, state=record.session.state
    )


@app.get(
    "/sessions/{session_id}", response_model=SessionDetail, tags=["Sessions"]
)
def get_session(session_id: str) -> SessionDetail:
    """Retrieve the current state of a session."""
    return manager.detail(_record(session_id))


@app.delete("/sessions/{session_id}", status_code=204, tags=["Sessions"])
def delete_session(session_id: str) -> None:
    """Forget a session and remove its files."""
    try:
        manager.discard(session_id)
    except SessionNotFoundError:
        raise HTTPException(status_code=404, detail="Session not found")


@app.put(
    "/sessions/{session_id}/config",
    response_model=SessionDetail,
    tags=["Sessions"],
)
def update_config(
    session_id: str, config: SamplingConfig
) -> SessionDetail:
    """Replace the calculator settings.

    A change of design discards the current sample; other changes keep it
    until the next calculation.
    """
    record = _record(session_id)
    record.session.update_config(config)
    return manager.detail(record)


@app.post(
    "/sessions/{session_id}/dataset",
    response_model=DatasetInfo,
    tags=["Population"],
)
def upload_dataset(
    session_id: str, file: UploadFile = File(...)
) -> DatasetInfo:
    """Upload a workbook as the population for the simple designs."""
    _record(session_id)
    try:
        dataset = manager.upload_dataset(session_id, file)
    except ValueError as exc:
        api_logger.warning("Rejected upload for %s: %s", session_id, exc)
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return DatasetInfo(
        source_name=dataset.source_name,
        headers=dataset.headers,
        rows=len(dataset),
    )


@app.get(
    "/sessions/{session_id}/years",
    response_model=YearsResponse,
    tags=["Population"],
)
def list_years(
    session_id: str, column: int = Query(..., ge=0)
) -> YearsResponse:
    """Distinct years found in a dataset column."""
    session = _record(session_id).session
    try:
        years = session.available_years(column)
    except SessionStateError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return YearsResponse(
        column=column, header=session.dataset.headers[column], years=years
    )


@app.put(
    "/sessions/{session_id}/year-filter",
    response_model=SessionDetail,
    tags=["Population"],
)
def set_year_filter(
    session_id: str, year_filter: YearFilter
) -> SessionDetail:
    record = _record(session_id)
    try:
        record.session.set_year_filter(year_filter)
    except SessionStateError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return manager.detail(record)


@app.delete(
    "/sessions/{session_id}/year-filter",
    response_model=SessionDetail,
    tags=["Population"],
)
def clear_year_filter(session_id: str) -> SessionDetail:
    record = _record(session_id)
    record.session.set_year_filter(None)
    return manager.detail(record)


@app.put(
    "/sessions/{session_id}/population",
    response_model=SessionDetail,
    tags=["Population"],
)
def set_population(
    session_id: str, population: StratifiedPopulation
) -> SessionDetail:
    """Declare N and the strata for the stratified designs."""
    record = _record(session_id)
    record.session.set_population(population)
    return manager.detail(record)


@app.post(
    "/sessions/{session_id}/calculate",
    response_model=SamplingResult,
    tags=["Sampling"],
)
def calculate(session_id: str) -> SamplingResult:
    """Draw a new sample, discarding previous annotations."""
    session = _record(session_id).session
    try:
        result = session.calculate()
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if result is None:
        raise HTTPException(
            status_code=409, detail="Population is empty; nothing to sample."
        )
    return result


@app.put(
    "/sessions/{session_id}/annotations/{group}/{position}",
    response_model=AnnotationEntry,
    tags=["Sampling"],
)
def annotate(
    session_id: str, group: int, position: int, annotation: Annotation
) -> AnnotationEntry:
    """Mark one drawn row as erroneous or clean."""
    session = _record(session_id).session
    try:
        saved = session.annotate(
            group, position, annotation.has_error, annotation.note
        )
    except SessionStateError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except IndexError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return AnnotationEntry(
        group=group,
        position=position,
        has_error=saved.has_error,
        note=saved.note,
    )


@app.post("/sessions/{session_id}/export", tags=["Sampling"])
def export(
    session_id: str,
    filename: str | None = Query(None),
    locale: Locale = Query("en"),
) -> FileResponse:
    """Build the annotated workbook and download it."""
    session = _record(session_id).session
    target = manager.storage.export_path(session_id, filename)
    try:
        path = session.export(target, locale=locale)
    except SessionStateError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except ExportError as exc:
        api_logger.error("Export failed for session %s: %s", session_id, exc)
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    return FileResponse(
        path=path, media_type=XLSX_MEDIA_TYPE, filename=path.name
    )


@app.get(
    "/sessions/{session_id}/pivot",
    response_model=list[PivotGroup],
    tags=["Pivot"],
)
def build_pivot(
    session_id: str,
    date_column: int = Query(..., ge=0),
    code_column: int = Query(..., ge=0),
) -> list[PivotGroup]:
    """Row counts and sample sizes per account-code prefix and year."""
    session = _record(session_id).session
    try:
        return session.build_pivot(date_column, code_column)
    except SessionStateError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.post(
    "/sessions/{session_id}/pivot-sample",
    response_model=PivotSample,
    tags=["Pivot"],
)
def pivot_sample(session_id: str, request: PivotSampleRequest) -> PivotSample:
    """Draw the rows of one prefix per year; sizes default to the pivot."""
    session = _record(session_id).session
    try:
        return session.pivot_sample(
            request.date_column,
            request.code_column,
            request.prefix,
            request.year_sizes,
        )
    except SessionStateError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.post("/sessions/{session_id}/pivot-export", tags=["Pivot"])
def export_pivot(
    session_id: str,
    filename: str | None = Query(None),
    locale: Locale = Query("en"),
) -> FileResponse:
    """Download the last pivot sample as a workbook."""
    session = _record(session_id).session
    target = manager.storage.export_path(session_id, filename)
    try:
        path = session.export_pivot(target, locale=locale)
    except SessionStateError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except ExportError as exc:
        api_logger.error("Export failed for session %s: %s", session_id, exc)
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    return FileResponse(
        path=path, media_type=XLSX_MEDIA_TYPE, filename=path.name
    )


@app.middleware("http")
async def log_requests(request, call_next):
    api_logger.info("HTTP %s %s started", request.method, request.url.path)
    response = await call_next(request)
    api_logger.info(
        "HTTP %s %s completed -> %s",
        request.method,
        request.url.path,
        response.status_code,
    )
    return response
