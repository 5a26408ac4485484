"""Session management utilities for chatloop."""

from .manager import MAX_SESSIONS, SessionContext, SessionLoadError, SessionManager, SessionMetadata

__all__ = [
    "SessionManager",
    "SessionContext",
    "SessionMetadata",
    "SessionLoadError",
    "MAX_SESSIONS",
]
