"""
API route aggregator: register endpoints and delegate to handlers and services; no logic here.
"""

import json
import logging
import queue

from fastapi import APIRouter, HTTPException
from fastapi.responses import StreamingResponse

from storm_writer.agent.graph import drive_pipeline, spawn_pipeline, start_research
from storm_writer.agent.pipeline import ResearchSession, reset
from storm_writer.agent.prompts import LANGUAGE_VARIANTS, REWRITE_STYLES
from storm_writer.api.handlers import handle_revert, handle_rewrite, http_errors, require_session, session_view
from storm_writer.core.history_store import get_history_store
from storm_writer.core.session_store import drop_session, get_or_create_session
from storm_writer.schemas.research import (
    HistoryItem,
    ResearchRequest,
    RewriteOptionsResponse,
    RewriteRequest,
    SessionResponse,
)

logger = logging.getLogger(__name__)
router = APIRouter()


# --- System ---

@router.get("/", tags=["system"])
def root():
    return {"status": "Research article backend running"}


@router.get("/health", tags=["system"])
def health():
    return {"ok": True}


# --- Research ---

@router.post(
    "/research",
    response_model=SessionResponse,
    tags=["research"],
    summary="Research a topic and write the article (sync)",
    description="Runs every stage to completion. 400 on empty topic, 409 if the session is already running.",
)
def post_research(body: ResearchRequest) -> SessionResponse:
    logger.info("[api:post_research] IN  topic=%r session_id=%s", body.topic, body.session_id)
    session = get_or_create_session(body.session_id)
    with http_errors():
        run_id = start_research(session, body.topic)
    for _ in drive_pipeline(session, run_id):
        pass
    logger.info("[api:post_research] OUT stage=%s article_len=%d sources=%d", session.stage.value, len(session.article), len(session.sources))
    return session_view(session)


def _sse_generator(session: ResearchSession, events: queue.Queue):
    """Relay a running pipeline's events as Server-Sent Events. Closing early leaves the run going."""
    yield f"event: session\ndata: {json.dumps({'session_id': session.id})}\n\n"
    while True:
        evt = events.get()
        if evt is None:
            break
        event_type = evt.get("event", "")
        data = {k: v for k, v in evt.items() if k != "event"}
        yield f"event: {event_type}\ndata: {json.dumps(data)}\n\n"


@router.post(
    "/research/stream",
    tags=["research"],
    summary="Research a topic (SSE stream)",
    description="Stream pipeline progress via Server-Sent Events. Events: session, stage, perspectives, research, outline, article, error, reset, done.",
)
def post_research_stream(body: ResearchRequest) -> StreamingResponse:
    logger.info("[api:post_research_stream] IN  topic=%r session_id=%s", body.topic, body.session_id)
    session = get_or_create_session(body.session_id)
    with http_errors():
        run_id = start_research(session, body.topic)
    _, events = spawn_pipeline(session, run_id)
    return StreamingResponse(
        _sse_generator(session, events),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


@router.get("/research/{session_id}", response_model=SessionResponse, tags=["research"], summary="Session state and progress")
def get_research(session_id: str) -> SessionResponse:
    return session_view(require_session(session_id))


@router.post(
    "/research/{session_id}/reset",
    response_model=SessionResponse,
    tags=["research"],
    summary="Reset the session to IDLE",
    description="Discards all accumulated state. A call already in flight is not cancelled; its result is ignored.",
)
def post_reset(session_id: str) -> SessionResponse:
    session = require_session(session_id)
    reset(session)
    return session_view(session)


@router.delete("/research/{session_id}", tags=["research"], summary="Forget a session")
def delete_research(session_id: str) -> dict:
    session = require_session(session_id)
    reset(session)
    drop_session(session.id)
    return {"deleted": True}


# --- Rewrite ---

@router.get("/rewrite/options", response_model=RewriteOptionsResponse, tags=["rewrite"])
def get_rewrite_options() -> RewriteOptionsResponse:
    return RewriteOptionsResponse(styles=dict(REWRITE_STYLES), variants=dict(LANGUAGE_VARIANTS))


@router.post(
    "/research/{session_id}/rewrite",
    response_model=SessionResponse,
    tags=["rewrite"],
    summary="Rewrite the finished article in another style",
    description="Only after DONE with an article. The original is kept for one-step revert.",
)
def post_rewrite(session_id: str, body: RewriteRequest) -> SessionResponse:
    logger.info("[api:post_rewrite] IN  session_id=%s style=%s variant=%s", session_id, body.style, body.variant)
    return handle_rewrite(session_id, body.style, body.variant)


@router.post("/research/{session_id}/revert", response_model=SessionResponse, tags=["rewrite"], summary="Restore the original article")
def post_revert(session_id: str) -> SessionResponse:
    return handle_revert(session_id)


# --- History ---

@router.get("/history", response_model=list[HistoryItem], tags=["history"], summary="Completed runs, newest first")
def get_history() -> list[HistoryItem]:
    return get_history_store().get_history()


@router.get("/history/{item_id}", response_model=HistoryItem, tags=["history"])
def get_history_item(item_id: str) -> HistoryItem:
    item = get_history_store().get_item(item_id)
    if item is None:
        raise HTTPException(status_code=404, detail=f"History item not found: {item_id!r}")
    return item


@router.delete("/history/{item_id}", response_model=list[HistoryItem], tags=["history"], summary="Delete one item")
def delete_history_item(item_id: str) -> list[HistoryItem]:
    return get_history_store().delete_item(item_id)


@router.delete("/history", tags=["history"], summary="Clear all history")
def delete_history() -> dict:
    get_history_store().clear()
    return {"cleared": True}
