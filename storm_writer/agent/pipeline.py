"""
Research pipeline stage machine.

IDLE -> GENERATING_QUESTIONS -> RESEARCHING -> GENERATING_OUTLINE -> GENERATING_ARTICLE -> DONE

ResearchSession holds everything a run accumulates. Each function below is one
explicit transition: it checks the current stage, applies the result of a stage's
external call, and sets the next stage. No I/O here; graph.py makes the calls.
"""

import logging
import threading
import uuid
from dataclasses import dataclass, field
from enum import Enum

from storm_writer.core.errors import InvalidTransitionError
from storm_writer.schemas.research import Perspective, Progress, ResearchData, ResearchResult, Source

logger = logging.getLogger(__name__)

QUESTIONS_FAILED_MESSAGE = "Failed to generate research questions. Please check your API key and try again."
OUTLINE_FAILED_MESSAGE = "Failed to generate the article outline."
ARTICLE_FAILED_MESSAGE = "Failed to generate the final article."
EMPTY_TOPIC_MESSAGE = "Please enter a topic."


class ResearchStage(str, Enum):
    IDLE = "IDLE"
    GENERATING_QUESTIONS = "GENERATING_QUESTIONS"
    RESEARCHING = "RESEARCHING"
    GENERATING_OUTLINE = "GENERATING_OUTLINE"
    GENERATING_ARTICLE = "GENERATING_ARTICLE"
    DONE = "DONE"


STAGE_LABELS: dict[ResearchStage, str] = {
    ResearchStage.IDLE: "Waiting for a topic",
    ResearchStage.GENERATING_QUESTIONS: "Generating Questions",
    ResearchStage.RESEARCHING: "Gathering Information",
    ResearchStage.GENERATING_OUTLINE: "Creating Outline",
    ResearchStage.GENERATING_ARTICLE: "Writing Article",
    ResearchStage.DONE: "Completed",
}


@dataclass
class ResearchSession:
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    topic: str = ""
    stage: ResearchStage = ResearchStage.IDLE
    perspectives: list[Perspective] = field(default_factory=list)
    research_data: list[ResearchData] = field(default_factory=list)
    sources: list[Source] = field(default_factory=list)
    outline: str = ""
    article: str = ""
    original_article: str = ""
    error: str | None = None
    research_index: int = 0
    history_id: str | None = None
    # Bumped on begin/reset so results of calls issued by an earlier run are dropped
    run_id: int = 0
    # Held while a result is checked against run_id and applied, and by begin/reset
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False, compare=False)

    @property
    def questions(self) -> list[str]:
        """Flattened questions of all perspectives, in order."""
        return [q for p in self.perspectives for q in p.questions]

    @property
    def is_running(self) -> bool:
        return self.stage not in (ResearchStage.IDLE, ResearchStage.DONE)

    @property
    def is_rewritten(self) -> bool:
        return bool(self.original_article) and self.article != self.original_article

    def progress(self) -> Progress:
        return Progress(
            stage=self.stage.value,
            label=STAGE_LABELS[self.stage],
            questions_total=len(self.questions),
            questions_done=self.research_index,
        )


def _require(session: ResearchSession, operation: str, *stages: ResearchStage) -> None:
    if session.stage not in stages:
        raise InvalidTransitionError(operation, session.stage.value)


def _set_stage(session: ResearchSession, stage: ResearchStage) -> None:
    logger.info("[pipeline] session=%s %s -> %s", session.id[:8], session.stage.value, stage.value)
    session.stage = stage


def _clear(session: ResearchSession) -> None:
    session.topic = ""
    session.perspectives = []
    session.research_data = []
    session.sources = []
    session.outline = ""
    session.article = ""
    session.original_article = ""
    session.error = None
    session.research_index = 0
    session.history_id = None
    session.run_id += 1


def reset(session: ResearchSession) -> None:
    """Discard everything accumulated and return to IDLE. Allowed from any stage."""
    with session.lock:
        _clear(session)
        _set_stage(session, ResearchStage.IDLE)


def begin(session: ResearchSession, topic: str) -> int:
    """Start a fresh run for topic. Returns the run id the run's results must carry."""
    with session.lock:
        _require(session, "start research", ResearchStage.IDLE, ResearchStage.DONE)
        if not topic or not topic.strip():
            session.error = EMPTY_TOPIC_MESSAGE
            raise ValueError(EMPTY_TOPIC_MESSAGE)
        _clear(session)
        session.topic = topic.strip()
        _set_stage(session, ResearchStage.GENERATING_QUESTIONS)
        return session.run_id


def questions_failed(session: ResearchSession, message: str = QUESTIONS_FAILED_MESSAGE) -> None:
    _require(session, "fail question generation", ResearchStage.GENERATING_QUESTIONS)
    session.error = message
    _set_stage(session, ResearchStage.IDLE)


def _finish_research_if_complete(session: ResearchSession) -> None:
    if session.research_index >= len(session.questions):
        _set_stage(session, ResearchStage.GENERATING_OUTLINE)


def perspectives_ready(session: ResearchSession, perspectives: list[Perspective]) -> None:
    """Fix the question list. With zero questions research is complete immediately."""
    _require(session, "accept perspectives", ResearchStage.GENERATING_QUESTIONS)
    session.perspectives = list(perspectives)
    session.research_index = 0
    _set_stage(session, ResearchStage.RESEARCHING)
    _finish_research_if_complete(session)


def next_question(session: ResearchSession) -> str:
    _require(session, "pick next question", ResearchStage.RESEARCHING)
    return session.questions[session.research_index]


def merge_sources(existing: list[Source], new: list[Source]) -> list[Source]:
    """Append sources whose uri is non-empty and not seen yet. Never removes."""
    seen = {s.uri for s in existing}
    merged = list(existing)
    for src in new:
        if not src.uri or src.uri in seen:
            continue
        seen.add(src.uri)
        merged.append(src)
    return merged


def record_answer(session: ResearchSession, question: str, result: ResearchResult) -> None:
    _require(session, "record research", ResearchStage.RESEARCHING)
    session.research_data.append(ResearchData(question=question, answer=result.answer))
    session.sources = merge_sources(session.sources, result.sources)
    session.research_index += 1
    _finish_research_if_complete(session)


def skip_question(session: ResearchSession, question: str) -> None:
    """Research for question failed: note it and move on."""
    _require(session, "skip question", ResearchStage.RESEARCHING)
    session.error = f'Failed to research question: "{question}". Skipping.'
    session.research_index += 1
    _finish_research_if_complete(session)


def outline_ready(session: ResearchSession, outline: str) -> None:
    _require(session, "accept outline", ResearchStage.GENERATING_OUTLINE)
    session.outline = outline
    _set_stage(session, ResearchStage.GENERATING_ARTICLE)


def outline_failed(session: ResearchSession, message: str = OUTLINE_FAILED_MESSAGE) -> None:
    _require(session, "fail outline", ResearchStage.GENERATING_OUTLINE)
    session.error = message
    _set_stage(session, ResearchStage.DONE)


def article_ready(session: ResearchSession, article: str) -> None:
    _require(session, "accept article", ResearchStage.GENERATING_ARTICLE)
    session.article = article
    session.original_article = article
    _set_stage(session, ResearchStage.DONE)


def article_failed(session: ResearchSession, message: str = ARTICLE_FAILED_MESSAGE) -> None:
    _require(session, "fail article", ResearchStage.GENERATING_ARTICLE)
    session.error = message
    _set_stage(session, ResearchStage.DONE)


# --- Rewrite side-pass (stage is never changed) ---

def require_article(session: ResearchSession, operation: str) -> None:
    _require(session, operation, ResearchStage.DONE)
    if not session.original_article:
        raise InvalidTransitionError(operation, f"{session.stage.value} without an article")


def apply_rewrite(session: ResearchSession, text: str) -> None:
    """Show a rewritten article; the original stays available for revert."""
    require_article(session, "rewrite article")
    session.article = text


def revert_rewrite(session: ResearchSession) -> None:
    require_article(session, "revert article")
    session.article = session.original_article
