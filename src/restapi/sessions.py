"""In-memory registry of calculator sessions for the REST API."""

from __future__ import annotations

import logging
import threading
import uuid
from datetime import datetime, timezone

from fastapi import UploadFile

from sample_calculator.ingest import check_extension
from sample_calculator.models import AnnotationEntry, Dataset, SamplingConfig
from sample_calculator.session import SamplingSession

from .schemas import DatasetInfo, SessionDetail
from .storage import SessionStorage

logger = logging.getLogger("restapi.sessions")


class SessionNotFoundError(KeyError):
    """Raised when a session id is unknown."""


class SessionRecord:
    """A calculator session plus its API bookkeeping."""

    def __init__(self, session_id: str, session: SamplingSession) -> None:
        self.session_id = session_id
        self.session = session
        self.created_at = datetime.now(timezone.utc)


class SessionManager:
    """Creates, looks up and discards sessions.

    The lock guards the registry only; a single session is not meant to be
    driven by concurrent requests.
    """

    def __init__(self, storage: SessionStorage | None = None) -> None:
        self.storage = storage or SessionStorage()
        self._sessions: dict[str, SessionRecord] = {}
        self._lock = threading.Lock()

    def create(self, config: SamplingConfig) -> SessionRecord:
        session_id = uuid.uuid4().hex
        record = SessionRecord(session_id, SamplingSession(config))
        with self._lock:
            self._sessions[session_id] = record
        logger.info("Created session %s (%s)", session_id, config.design.value)
        return record

    def get(self, session_id: str) -> SessionRecord:
        with self._lock:
            record = self._sessions.get(session_id)
        if record is None:
            raise SessionNotFoundError(session_id)
        return record

    def discard(self, session_id: str) -> None:
        with self._lock:
            record = self._sessions.pop(session_id, None)
        if record is None:
            raise SessionNotFoundError(session_id)
        self.storage.remove(session_id)
        logger.info("Discarded session %s", session_id)

    def upload_dataset(self, session_id: str, file: UploadFile) -> Dataset:
        """Store an uploaded workbook and load it as the session dataset."""

        record = self.get(session_id)
        file_name = file.filename or "input.xlsx"
        suffix = check_extension(file_name)
        path = self.storage.save_upload(session_id, suffix, file.file)
        logger.info("Stored upload %s for session %s", file_name, session_id)
        return record.session.load_dataset(path, source_name=file_name)

    @staticmethod
    def detail(record: SessionRecord) -> SessionDetail:
        """Build the API view of a session."""

        session = record.session
        dataset = None
        if session.dataset is not None:
            dataset = DatasetInfo(
                source_name=session.dataset.source_name,
                headers=session.dataset.headers,
                rows=len(session.dataset),
            )
        annotations = [
            AnnotationEntry(
                group=group,
                position=position,
                has_error=annotation.has_error,
                note=annotation.note,
            )
            for (group, position), annotation in sorted(
                session.annotations.items()
            )
        ]
        return SessionDetail(
            session_id=record.session_id,
            state=session.state,
            created_at=record.created_at,
            config=session.config,
            dataset=dataset,
            population=session.population,
            year_filter=session.year_filter,
            population_size=session.population_size,
            can_calculate=session.can_calculate,
            result=session.result,
            annotations=annotations,
        )
