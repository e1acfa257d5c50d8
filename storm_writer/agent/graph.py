"""
LangGraph pipeline: generate_questions → research_question (loop) → generate_outline → generate_article.

Nodes make one external call each and apply the result through an explicit
transition in agent/pipeline.py; routing only reads the stage those transitions
set. Calls run strictly one at a time. A reset while a call is in flight bumps the
session's run_id: the stale result is dropped and the graph ends. The run_id check
and the transition that applies a result happen under the session lock.
"""

import logging
import queue
import threading
import uuid
from datetime import datetime, timezone
from typing import Any, Iterator, TypedDict

from langgraph.errors import GraphRecursionError
from langgraph.graph import END, START, StateGraph

from storm_writer.agent.pipeline import (
    ResearchSession,
    ResearchStage,
    article_failed,
    article_ready,
    begin,
    next_question,
    outline_failed,
    outline_ready,
    perspectives_ready,
    questions_failed,
    record_answer,
    skip_question,
)
from storm_writer.core.config import GRAPH_BASE_STEPS, GRAPH_MAX_RESEARCH_STEPS
from storm_writer.core.history_store import get_history_store
from storm_writer.schemas.research import HistoryItem
from storm_writer.services.research_service import (
    generate_article,
    generate_outline,
    generate_perspectives_and_questions,
    research_question,
)

logger = logging.getLogger(__name__)


class PipelineState(TypedDict):
    session: ResearchSession
    run_id: int
    event: dict  # what the last node did, for streaming


def _is_stale(state: PipelineState) -> bool:
    session = state["session"]
    stale = session.run_id != state["run_id"]
    if stale:
        logger.info("[graph] session=%s run %d superseded by run %d; dropping result", session.id[:8], state["run_id"], session.run_id)
    return stale


def _generate_questions(state: PipelineState) -> dict:
    """Node 1: perspectives and questions. Failure aborts the run to IDLE."""
    session = state["session"]
    logger.info("[graph:generate_questions] IN  topic=%r", session.topic)
    try:
        perspectives = generate_perspectives_and_questions(session.topic)
    except Exception:
        logger.exception("[graph:generate_questions] failed")
        with session.lock:
            if _is_stale(state):
                return {"event": {"event": "stale"}}
            questions_failed(session)
        return {"session": session, "event": {"event": "error", "message": session.error}}
    with session.lock:
        if _is_stale(state):
            return {"event": {"event": "stale"}}
        perspectives_ready(session, perspectives)
    logger.info("[graph:generate_questions] OUT questions=%d", len(session.questions))
    return {
        "session": session,
        "event": {
            "event": "perspectives",
            "perspectives": [p.model_dump() for p in session.perspectives],
            "questions_total": len(session.questions),
        },
    }


def _research_question(state: PipelineState) -> dict:
    """Node 2: research the question at the counter. Failure skips it; the counter advances either way."""
    session = state["session"]
    with session.lock:
        if _is_stale(state):
            return {"event": {"event": "stale"}}
        question = next_question(session)
    logger.info("[graph:research_question] IN  index=%d/%d question=%r", session.research_index + 1, len(session.questions), question)
    try:
        result = research_question(question)
    except Exception:
        logger.exception("[graph:research_question] failed question=%r", question)
        with session.lock:
            if _is_stale(state):
                return {"event": {"event": "stale"}}
            skip_question(session, question)
        return {
            "session": session,
            "event": {
                "event": "research",
                "question": question,
                "ok": False,
                "message": session.error,
                "questions_done": session.research_index,
                "questions_total": len(session.questions),
            },
        }
    with session.lock:
        if _is_stale(state):
            return {"event": {"event": "stale"}}
        record_answer(session, question, result)
    logger.info("[graph:research_question] OUT answer_len=%d sources_total=%d", len(result.answer), len(session.sources))
    return {
        "session": session,
        "event": {
            "event": "research",
            "question": question,
            "ok": True,
            "answer": result.answer,
            "sources": [s.model_dump() for s in result.sources],
            "questions_done": session.research_index,
            "questions_total": len(session.questions),
        },
    }


def _generate_outline(state: PipelineState) -> dict:
    """Node 3: outline. Failure ends the run (DONE) without an article."""
    session = state["session"]
    try:
        outline = generate_outline(session.topic, session.research_data)
    except Exception:
        logger.exception("[graph:generate_outline] failed")
        with session.lock:
            if _is_stale(state):
                return {"event": {"event": "stale"}}
            outline_failed(session)
        return {"session": session, "event": {"event": "error", "message": session.error}}
    with session.lock:
        if _is_stale(state):
            return {"event": {"event": "stale"}}
        outline_ready(session, outline)
    return {"session": session, "event": {"event": "outline", "outline": outline}}


def _generate_article(state: PipelineState) -> dict:
    """Node 4: final article."""
    session = state["session"]
    try:
        article = generate_article(session.topic, session.outline, session.research_data)
    except Exception:
        logger.exception("[graph:generate_article] failed")
        with session.lock:
            if _is_stale(state):
                return {"event": {"event": "stale"}}
            article_failed(session)
        return {"session": session, "event": {"event": "error", "message": session.error}}
    with session.lock:
        if _is_stale(state):
            return {"event": {"event": "stale"}}
        article_ready(session, article)
    return {"session": session, "event": {"event": "article", "article": article}}


_STAGE_NODES = {
    ResearchStage.GENERATING_QUESTIONS: "generate_questions",
    ResearchStage.RESEARCHING: "research_question",
    ResearchStage.GENERATING_OUTLINE: "generate_outline",
    ResearchStage.GENERATING_ARTICLE: "generate_article",
}


def _route_by_stage(state: PipelineState) -> str:
    """Next node for the session's stage; IDLE, DONE or a superseded run end the graph."""
    if _is_stale(state):
        return END
    next_node = _STAGE_NODES.get(state["session"].stage, END)
    logger.info("[graph:route] stage=%s -> %s", state["session"].stage.value, next_node)
    return next_node


def build_graph():
    """
    Build and compile the pipeline graph. The entry and every node route on the session's
    stage, so research_question loops on itself until the question counter is exhausted
    and a run can be picked up again from whatever stage it is in.
    """
    graph = StateGraph(PipelineState)

    graph.add_node("generate_questions", _generate_questions)
    graph.add_node("research_question", _research_question)
    graph.add_node("generate_outline", _generate_outline)
    graph.add_node("generate_article", _generate_article)

    graph.add_conditional_edges(START, _route_by_stage)
    for node in ("generate_questions", "research_question", "generate_outline", "generate_article"):
        graph.add_conditional_edges(node, _route_by_stage)

    return graph.compile()


def save_to_history(session: ResearchSession) -> HistoryItem:
    item = HistoryItem(
        id=uuid.uuid4().hex,
        topic=session.topic,
        article=session.article,
        sources=list(session.sources),
        timestamp=datetime.now(timezone.utc).isoformat(),
    )
    get_history_store().save_research(item)
    session.history_id = item.id
    return item


def start_research(session: ResearchSession, topic: str) -> int:
    """Validate topic and enter GENERATING_QUESTIONS. Raises ValueError / InvalidTransitionError."""
    run_id = begin(session, topic)
    logger.info("[graph:start_research] session=%s run_id=%d topic=%r", session.id[:8], run_id, session.topic)
    return run_id


def _recursion_limit(session: ResearchSession) -> int:
    remaining = len(session.questions) - session.research_index
    return GRAPH_BASE_STEPS + max(GRAPH_MAX_RESEARCH_STEPS, remaining)


def drive_pipeline(session: ResearchSession, run_id: int) -> Iterator[dict[str, Any]]:
    """
    Run the graph for a session already started with start_research and yield events:
    {"event": "stage"|"perspectives"|"research"|"outline"|"article"|"error"|"reset"|"done", ...}.
    A completed article is saved to history before "done".

    The question count is unknown until the first node runs, so a run that outgrows the
    step limit is resumed from its current stage with a limit sized to what is left.
    """
    initial: PipelineState = {"session": session, "run_id": run_id, "event": {}}
    yield {"event": "stage", "stage": session.stage.value, "progress": session.progress().model_dump()}
    graph = build_graph()
    while True:
        config = {"recursion_limit": _recursion_limit(session)}
        try:
            for update in graph.stream(initial, config=config):
                # update: {node_name: {"session": ..., "event": {...}}}
                for node_name, state_update in update.items():
                    evt = (state_update or {}).get("event") or {}
                    if evt.get("event") == "stale":
                        logger.info("[graph:drive_pipeline] node=%s result dropped after reset", node_name)
                        yield {"event": "reset"}
                        return
                    if evt:
                        yield evt
                    yield {"event": "stage", "stage": session.stage.value, "progress": session.progress().model_dump()}
        except GraphRecursionError:
            if session.run_id == run_id and session.is_running:
                logger.warning(
                    "[graph:drive_pipeline] step limit %d reached stage=%s index=%d/%d; resuming",
                    config["recursion_limit"], session.stage.value, session.research_index, len(session.questions),
                )
                continue
        break
    if session.run_id != run_id:
        yield {"event": "reset"}
        return
    if session.stage == ResearchStage.DONE and session.article:
        save_to_history(session)
    logger.info("[graph:drive_pipeline] END stage=%s error=%r history_id=%s", session.stage.value, session.error, session.history_id)
    yield {
        "event": "done",
        "stage": session.stage.value,
        "error": session.error,
        "history_id": session.history_id,
    }


def spawn_pipeline(session: ResearchSession, run_id: int) -> tuple[threading.Thread, queue.Queue]:
    """
    Drive the pipeline on a worker thread that owns the session until the run ends.
    Events are put on the returned queue, followed by None. The run does not depend
    on anyone reading the queue, so a client that goes away cannot stall it.
    """
    events: queue.Queue = queue.Queue()

    def _worker() -> None:
        try:
            for evt in drive_pipeline(session, run_id):
                events.put(evt)
        except Exception as e:
            logger.exception("[graph:spawn_pipeline] run failed session=%s", session.id[:8])
            events.put({"event": "error", "message": str(e)})
        finally:
            events.put(None)

    worker = threading.Thread(target=_worker, name=f"pipeline-{session.id[:8]}", daemon=True)
    worker.start()
    logger.info("[graph:spawn_pipeline] session=%s run_id=%d worker=%s", session.id[:8], run_id, worker.name)
    return worker, events


def run_pipeline(session: ResearchSession, topic: str) -> ResearchSession:
    """Run all stages to completion synchronously."""
    run_id = start_research(session, topic)
    for _ in drive_pipeline(session, run_id):
        pass
    return session
