"""Utilities for persisting session uploads and exports on disk."""

from __future__ import annotations

import shutil
from pathlib import Path
from typing import BinaryIO

from sample_calculator.reporter import resolve_export_path

ARTIFACT_ROOT = Path("restapi_artifacts")


class SessionStorage:
    """Filesystem-based artifact helper, one directory per session."""

    def __init__(self, root: Path | None = None) -> None:
        self.root = root or ARTIFACT_ROOT
        self.root.mkdir(parents=True, exist_ok=True)

    def session_dir(self, session_id: str) -> Path:
        path = self.root / session_id
        path.mkdir(parents=True, exist_ok=True)
        return path

    def input_path(self, session_id: str, suffix: str) -> Path:
        return self.session_dir(session_id) / f"input{suffix}"

    def export_path(self, session_id: str, filename: str | None) -> Path:
        return resolve_export_path(self.session_dir(session_id), filename)

    def save_upload(
        self, session_id: str, suffix: str, source: BinaryIO
    ) -> Path:
        """
        Copy an uploaded workbook into the session directory.
        :param session_id:
        :param suffix: Validated file extension, e.g. ``.xlsx``
        :param source: Readable binary stream of the upload
        :return: Path of the stored copy
        """
        path = self.input_path(session_id, suffix)
        with path.open("wb") as handle:
            shutil.copyfileobj(source, handle)
        return path

    def remove(self, session_id: str) -> None:
        """
        Delete every artifact of a session.
        :param session_id:
        :return: None
        """
        shutil.rmtree(self.root / session_id, ignore_errors=True)
