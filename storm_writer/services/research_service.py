"""
Research operations: the external calls behind each pipeline stage.

Responsibility: build the prompt, call the LLM, turn the response into domain
objects. Raises on failure; no stage logic here (see agent/pipeline.py).
"""

import json
import logging
import re

from pydantic import ValidationError

from storm_writer.agent.llm import generate_json, generate_text, web_search_answer
from storm_writer.agent.pipeline import ResearchSession, apply_rewrite, require_article
from storm_writer.agent.prompts import (
    LANGUAGE_VARIANTS,
    PERSPECTIVES_SCHEMA,
    REWRITE_STYLES,
    article_prompt,
    outline_prompt,
    perspectives_prompt,
    rewrite_prompt,
)
from storm_writer.core.config import (
    ARTICLE_MAX_TOKENS,
    OUTLINE_MAX_TOKENS,
    QUESTIONS_MAX_TOKENS,
    RESEARCH_MAX_TOKENS,
)
from storm_writer.core.errors import LLMError
from storm_writer.schemas.research import Perspective, ResearchData, ResearchResult

logger = logging.getLogger(__name__)

INVALID_PERSPECTIVES_MESSAGE = "The AI returned an invalid format for perspectives and questions."

_FENCE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)


def parse_perspectives(text: str) -> list[Perspective]:
    """
    Parse the perspectives JSON. Accepts a bare array or an object wrapping it under
    "perspectives"; tolerates a Markdown code fence around the JSON.
    """
    raw = (text or "").strip()
    m = _FENCE.match(raw)
    if m:
        raw = m.group(1)
    try:
        data = json.loads(raw)
        if isinstance(data, dict):
            data = data.get("perspectives")
        if not isinstance(data, list):
            raise ValueError("expected a JSON array of perspectives")
        return [Perspective.model_validate(p) for p in data]
    except (ValueError, ValidationError) as e:
        logger.error("[research_service:parse_perspectives] failed to parse perspectives JSON: %r", raw[:500])
        raise LLMError(INVALID_PERSPECTIVES_MESSAGE) from e


def generate_perspectives_and_questions(topic: str) -> list[Perspective]:
    logger.info("[research_service:generate_perspectives] IN  topic=%r", topic)
    text = generate_json(perspectives_prompt(topic), PERSPECTIVES_SCHEMA, max_tokens=QUESTIONS_MAX_TOKENS)
    perspectives = parse_perspectives(text)
    logger.info(
        "[research_service:generate_perspectives] OUT perspectives=%d questions=%d",
        len(perspectives),
        sum(len(p.questions) for p in perspectives),
    )
    return perspectives


def research_question(question: str) -> ResearchResult:
    """Web-grounded answer for one question. Sources carry non-empty uris."""
    logger.info("[research_service:research_question] IN  question=%r", question)
    return web_search_answer(question, max_tokens=RESEARCH_MAX_TOKENS)


def generate_outline(topic: str, research_data: list[ResearchData]) -> str:
    logger.info("[research_service:generate_outline] IN  topic=%r research_items=%d", topic, len(research_data))
    outline = generate_text(outline_prompt(topic, research_data), max_tokens=OUTLINE_MAX_TOKENS)
    logger.info("[research_service:generate_outline] OUT outline_len=%d", len(outline))
    return outline


def generate_article(topic: str, outline: str, research_data: list[ResearchData]) -> str:
    logger.info("[research_service:generate_article] IN  topic=%r outline_len=%d", topic, len(outline))
    article = generate_text(article_prompt(topic, outline, research_data), max_tokens=ARTICLE_MAX_TOKENS)
    logger.info("[research_service:generate_article] OUT article_len=%d", len(article))
    return article


def validate_rewrite_options(style: str, variant: str) -> None:
    if style not in REWRITE_STYLES:
        raise ValueError(f"Unknown style {style!r}. Choose one of: {', '.join(REWRITE_STYLES)}")
    if variant not in LANGUAGE_VARIANTS:
        raise ValueError(f"Unknown language variant {variant!r}. Choose one of: {', '.join(LANGUAGE_VARIANTS)}")


def rewrite_article(article: str, style: str, variant: str) -> str:
    validate_rewrite_options(style, variant)
    logger.info("[research_service:rewrite_article] IN  style=%s variant=%s article_len=%d", style, variant, len(article))
    out = generate_text(rewrite_prompt(article, style, variant), max_tokens=ARTICLE_MAX_TOKENS)
    logger.info("[research_service:rewrite_article] OUT len=%d", len(out))
    return out


def rewrite_session(session: ResearchSession, style: str, variant: str) -> str:
    """
    Rewrite the session's original article (never a previous rewrite) and display it.
    The stage is unchanged; a failed call leaves the displayed article as it was.
    """
    validate_rewrite_options(style, variant)
    require_article(session, "rewrite article")
    text = rewrite_article(session.original_article, style, variant)
    apply_rewrite(session, text)
    return text
