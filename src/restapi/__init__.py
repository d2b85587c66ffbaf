"""REST API layer for the sampling calculator."""

from .schemas import SessionCreateResponse, SessionDetail
from .sessions import SessionManager
from .storage import SessionStorage
