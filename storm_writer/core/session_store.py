"""
In-memory research session registry. Keyed by session_id; sessions live for the process lifetime.
"""

import logging
import threading

from storm_writer.agent.pipeline import ResearchSession

logger = logging.getLogger(__name__)

# session_id -> ResearchSession
_sessions: dict[str, ResearchSession] = {}
_lock = threading.Lock()


def get_session(session_id: str | None) -> ResearchSession | None:
    """Return the session or None when the id is missing or unknown."""
    if not session_id or not isinstance(session_id, str):
        logger.info("[session_store:get_session] IN  session_id=%r -> none", session_id)
        return None
    with _lock:
        session = _sessions.get(session_id)
    logger.info("[session_store:get_session] IN  session_id=%s OUT found=%s", session_id[:16], session is not None)
    return session


def get_or_create_session(session_id: str | None = None) -> ResearchSession:
    """Return the session for session_id, creating it (with that id when given) if absent."""
    with _lock:
        if session_id and session_id in _sessions:
            return _sessions[session_id]
        session = ResearchSession(id=session_id) if session_id else ResearchSession()
        _sessions[session.id] = session
    logger.info("[session_store:get_or_create_session] created session_id=%s", session.id[:16])
    return session


def drop_session(session_id: str) -> None:
    with _lock:
        _sessions.pop(session_id, None)
    logger.info("[session_store:drop_session] session_id=%s", session_id[:16])


def clear_sessions() -> None:
    with _lock:
        _sessions.clear()
