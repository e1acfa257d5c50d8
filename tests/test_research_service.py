"""
Unit tests for research operations: perspectives parsing, prompt context, rewrite pass.
"""

from unittest.mock import patch

import pytest

from storm_writer.agent.pipeline import (
    ResearchSession,
    ResearchStage,
    article_ready,
    begin,
    outline_ready,
    perspectives_ready,
)
from storm_writer.agent.prompts import format_research_context
from storm_writer.core.errors import InvalidTransitionError, LLMError
from storm_writer.schemas.research import ResearchData
from storm_writer.services.research_service import (
    INVALID_PERSPECTIVES_MESSAGE,
    generate_perspectives_and_questions,
    parse_perspectives,
    rewrite_session,
)

SERVICE = "storm_writer.services.research_service"


class TestParsePerspectives:
    def test_bare_array(self) -> None:
        out = parse_perspectives('[{"perspective": "History", "questions": ["Q1", "Q2"]}]')
        assert len(out) == 1
        assert out[0].perspective == "History"
        assert out[0].questions == ["Q1", "Q2"]

    def test_wrapped_object(self) -> None:
        out = parse_perspectives('{"perspectives": [{"perspective": "A", "questions": []}, {"perspective": "B", "questions": ["Q"]}]}')
        assert [p.perspective for p in out] == ["A", "B"]

    def test_code_fence_is_stripped(self) -> None:
        text = '```json\n[{"perspective": "A", "questions": ["Q"]}]\n```'
        assert parse_perspectives(text)[0].questions == ["Q"]

    @pytest.mark.parametrize("text", ["", "not json", '{"other": []}', '[{"questions": ["Q"]}]', '"a string"'])
    def test_invalid_raises_llm_error(self, text: str) -> None:
        with pytest.raises(LLMError) as exc:
            parse_perspectives(text)
        assert exc.value.message == INVALID_PERSPECTIVES_MESSAGE

    def test_generate_uses_json_call(self) -> None:
        with patch(f"{SERVICE}.generate_json", return_value='[{"perspective": "A", "questions": ["Q"]}]') as gen:
            out = generate_perspectives_and_questions("Looms")
        assert out[0].perspective == "A"
        assert '"Looms"' in gen.call_args.args[0]


class TestResearchContext:
    def test_pairs_joined_with_separator(self) -> None:
        data = [ResearchData(question="Q1", answer="A1"), ResearchData(question="Q2", answer="A2")]
        assert format_research_context(data) == "Question: Q1\nAnswer: A1\n\n---\n\nQuestion: Q2\nAnswer: A2"

    def test_empty(self) -> None:
        assert format_research_context([]) == ""


def _done_session(article: str) -> ResearchSession:
    session = ResearchSession()
    begin(session, "Looms")
    perspectives_ready(session, [])
    outline_ready(session, "I. Intro")
    article_ready(session, article)
    return session


class TestRewriteSession:
    def test_rewrite_replaces_article_and_keeps_original(self) -> None:
        session = _done_session("Original.")
        with patch(f"{SERVICE}.generate_text", return_value="Rewritten.") as gen:
            rewrite_session(session, "academic", "en-GB")
        assert session.article == "Rewritten."
        assert session.original_article == "Original."
        assert session.stage == ResearchStage.DONE
        assert "British English" in gen.call_args.args[0]

    def test_second_rewrite_starts_from_original(self) -> None:
        session = _done_session("Original.")
        with patch(f"{SERVICE}.generate_text", side_effect=["First.", "Second."]) as gen:
            rewrite_session(session, "academic", "en-US")
            rewrite_session(session, "concise", "en-US")
        assert "Original." in gen.call_args.args[0]
        assert "First." not in gen.call_args.args[0]
        assert session.article == "Second."

    def test_failed_rewrite_leaves_article(self) -> None:
        session = _done_session("Original.")
        with patch(f"{SERVICE}.generate_text", side_effect=LLMError("down")):
            with pytest.raises(LLMError):
                rewrite_session(session, "academic", "en-US")
        assert session.article == "Original."

    def test_unknown_style_or_variant(self) -> None:
        session = _done_session("Original.")
        with pytest.raises(ValueError):
            rewrite_session(session, "pirate", "en-US")
        with pytest.raises(ValueError):
            rewrite_session(session, "academic", "fr-FR")

    def test_rewrite_before_done_is_rejected(self) -> None:
        session = ResearchSession()
        with patch(f"{SERVICE}.generate_text") as gen:
            with pytest.raises(InvalidTransitionError):
                rewrite_session(session, "academic", "en-US")
        gen.assert_not_called()
