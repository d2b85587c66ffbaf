"""structlog setup shared by the CLI and the session API.

Engine events are emitted through structlog and handed to stdlib logging as a
single line: the CLI run id (or the API session id) followed by the JSON
payload, so that one calculation can be grepped out of a mixed log.
"""

from __future__ import annotations

import json
import logging
from typing import Any

import structlog
from structlog.types import EventDict, WrappedLogger


def _context_prefix_renderer(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> str:
    """Render ``<session_id|run_id> {json}``."""

    del logger, method_name
    prefix = event_dict.get("session_id") or event_dict.get("run_id", "-")
    payload = json.dumps(event_dict, separators=(",", ":"), default=str)
    return f"{prefix} {payload}"


def configure_logging(run_id: str, level: int = logging.INFO) -> None:
    """Route engine events through stdlib logging for one run.

    Clears any previously bound context, then binds ``run_id`` so every
    event of the run carries it. ``logging.basicConfig`` is a no-op when the
    host (the API, a test runner) already installed handlers.
    """
    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.add_log_level,
        structlog.processors.format_exc_info,
        _context_prefix_renderer,
    ]

    logging.basicConfig(level=level, format="%(message)s")
    structlog.configure(
        processors=processors,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
    )
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(run_id=run_id)


def bind_session(session_id: str) -> None:
    """Tag the engine events of the current request with a session id.

    Each synchronous API handler runs in a copied context, so the binding
    ends with the request.
    """
    structlog.contextvars.bind_contextvars(session_id=session_id)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
