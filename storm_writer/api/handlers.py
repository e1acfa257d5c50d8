"""
API handlers: look up sessions, call pipeline/services, map results/errors to HTTP.

Responsibility: Bridge HTTP types and services. Marshalling and exception-to-HTTP mapping.
Lives in the API layer so services stay free of FastAPI/HTTP types.
"""

import logging
from contextlib import contextmanager

from fastapi import HTTPException

from storm_writer.agent.pipeline import ResearchSession, revert_rewrite
from storm_writer.core.errors import InvalidTransitionError, LLMError, ServiceUnavailableError
from storm_writer.core.session_store import get_session
from storm_writer.schemas.research import SessionResponse
from storm_writer.services.research_service import rewrite_session

logger = logging.getLogger(__name__)

REWRITE_FAILED_MESSAGE = "Failed to rewrite the article."


@contextmanager
def http_errors():
    """Translate application exceptions raised inside the block into HTTPException."""
    try:
        yield
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    except InvalidTransitionError as e:
        raise HTTPException(status_code=409, detail=e.message) from e
    except ServiceUnavailableError as e:
        raise HTTPException(status_code=503, detail=e.message) from e
    except LLMError as e:
        raise HTTPException(status_code=502, detail=e.message) from e


def session_view(session: ResearchSession) -> SessionResponse:
    return SessionResponse(
        session_id=session.id,
        topic=session.topic,
        stage=session.stage.value,
        progress=session.progress(),
        perspectives=list(session.perspectives),
        research_data=list(session.research_data),
        sources=list(session.sources),
        outline=session.outline,
        article=session.article,
        is_rewritten=session.is_rewritten,
        error=session.error,
        history_id=session.history_id,
    )


def require_session(session_id: str) -> ResearchSession:
    session = get_session(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail=f"Unknown session: {session_id!r}")
    return session


def handle_rewrite(session_id: str, style: str, variant: str) -> SessionResponse:
    """Rewrite pass; on provider failure the error is recorded on the session and returned as 502."""
    session = require_session(session_id)
    try:
        with http_errors():
            rewrite_session(session, style, variant)
    except HTTPException as e:
        if e.status_code in (502, 503):
            session.error = REWRITE_FAILED_MESSAGE
            logger.warning("[handlers:handle_rewrite] session=%s failed: %s", session_id[:16], e.detail)
        raise
    return session_view(session)


def handle_revert(session_id: str) -> SessionResponse:
    session = require_session(session_id)
    with http_errors():
        revert_rewrite(session)
    return session_view(session)
