"""
Tests for the LangGraph pipeline driver.

Service calls are patched in storm_writer.agent.graph so no LLM provider is needed;
history goes to an in-memory store.
"""

import threading
from pathlib import Path
from unittest.mock import patch

import pytest

from storm_writer.agent.graph import drive_pipeline, run_pipeline, start_research
from storm_writer.agent import pipeline
from storm_writer.agent.pipeline import ResearchSession, ResearchStage, reset
from storm_writer.core.errors import LLMError
from storm_writer.core.history_store import HistoryStore
from storm_writer.core.kv_store import InMemoryKeyValueStore, JSONFileKeyValueStore
from storm_writer.schemas.research import Perspective, ResearchResult, Source

GRAPH = "storm_writer.agent.graph"


def _perspectives(*counts: int) -> list[Perspective]:
    return [
        Perspective(perspective=f"P{i}", questions=[f"P{i} question {j}" for j in range(n)])
        for i, n in enumerate(counts)
    ]


def _answer(question: str) -> ResearchResult:
    return ResearchResult(
        answer=f"Answer: {question}",
        sources=[Source(uri=f"https://example.org/{question.replace(' ', '-')}", title=question),
                 Source(uri="https://example.org/shared", title="Shared")],
    )


@pytest.fixture
def history() -> HistoryStore:
    store = HistoryStore(InMemoryKeyValueStore())
    with patch(f"{GRAPH}.get_history_store", return_value=store):
        yield store


@pytest.fixture
def fake_llm():
    """Patch all four stage calls with working fakes; tests override side effects as needed."""
    with patch(f"{GRAPH}.generate_perspectives_and_questions", return_value=_perspectives(3, 2, 2)) as gen_q, \
         patch(f"{GRAPH}.research_question", side_effect=_answer) as research, \
         patch(f"{GRAPH}.generate_outline", return_value="I. Intro\nII. Body") as outline, \
         patch(f"{GRAPH}.generate_article", return_value="# Topic\n\nArticle body.") as article:
        yield {"questions": gen_q, "research": research, "outline": outline, "article": article}


class TestRunPipeline:
    def test_happy_path_reaches_done_and_saves_history(self, fake_llm, history) -> None:
        session = run_pipeline(ResearchSession(), "Printing press")
        assert session.stage == ResearchStage.DONE
        assert session.error is None
        assert fake_llm["research"].call_count == 7
        assert len(session.research_data) == 7
        assert session.research_index == 7
        assert session.outline == "I. Intro\nII. Body"
        assert session.article == "# Topic\n\nArticle body."
        items = history.get_history()
        assert len(items) == 1
        assert items[0].id == session.history_id
        assert items[0].topic == "Printing press"

    def test_questions_researched_in_order(self, fake_llm, history) -> None:
        session = run_pipeline(ResearchSession(), "Printing press")
        asked = [c.args[0] for c in fake_llm["research"].call_args_list]
        assert asked == session.questions

    def test_sources_deduplicated_across_run(self, fake_llm, history) -> None:
        session = run_pipeline(ResearchSession(), "Printing press")
        uris = [s.uri for s in session.sources]
        assert len(uris) == len(set(uris))
        assert uris.count("https://example.org/shared") == 1
        assert len(uris) == 8

    def test_zero_questions_goes_to_outline(self, fake_llm, history) -> None:
        fake_llm["questions"].return_value = _perspectives(0, 0)
        session = run_pipeline(ResearchSession(), "Printing press")
        fake_llm["research"].assert_not_called()
        fake_llm["outline"].assert_called_once()
        assert session.stage == ResearchStage.DONE

    def test_question_generation_failure_aborts_to_idle(self, fake_llm, history) -> None:
        fake_llm["questions"].side_effect = LLMError("bad key")
        session = run_pipeline(ResearchSession(), "Printing press")
        assert session.stage == ResearchStage.IDLE
        assert session.error == "Failed to generate research questions. Please check your API key and try again."
        fake_llm["research"].assert_not_called()
        assert history.get_history() == []

    def test_failed_question_is_skipped(self, fake_llm, history) -> None:
        def flaky(question: str) -> ResearchResult:
            if question == "P1 question 0":
                raise LLMError("search failed")
            return _answer(question)

        fake_llm["research"].side_effect = flaky
        session = run_pipeline(ResearchSession(), "Printing press")
        assert session.stage == ResearchStage.DONE
        assert session.research_index == 7
        assert len(session.research_data) == 6
        assert "P1 question 0" not in [d.question for d in session.research_data]
        assert session.error == 'Failed to research question: "P1 question 0". Skipping.'
        fake_llm["outline"].assert_called_once()

    def test_outline_failure_finishes_without_article(self, fake_llm, history) -> None:
        fake_llm["outline"].side_effect = LLMError("boom")
        session = run_pipeline(ResearchSession(), "Printing press")
        assert session.stage == ResearchStage.DONE
        assert session.error == "Failed to generate the article outline."
        fake_llm["article"].assert_not_called()
        assert session.article == ""
        assert history.get_history() == []

    def test_article_failure_finishes_with_error(self, fake_llm, history) -> None:
        fake_llm["article"].side_effect = LLMError("boom")
        session = run_pipeline(ResearchSession(), "Printing press")
        assert session.stage == ResearchStage.DONE
        assert session.error == "Failed to generate the final article."
        assert session.history_id is None

    def test_many_questions_do_not_hit_recursion_limit(self, fake_llm, history) -> None:
        fake_llm["questions"].return_value = _perspectives(20, 20, 20)
        session = run_pipeline(ResearchSession(), "Printing press")
        assert session.research_index == 60
        assert session.stage == ResearchStage.DONE

    def test_run_longer_than_step_limit_resumes_to_done(self, fake_llm, history) -> None:
        fake_llm["questions"].return_value = _perspectives(12, 13)
        with patch(f"{GRAPH}.GRAPH_MAX_RESEARCH_STEPS", 5):
            session = run_pipeline(ResearchSession(), "Printing press")
        assert session.stage == ResearchStage.DONE
        assert session.research_index == 25
        asked = [c.args[0] for c in fake_llm["research"].call_args_list]
        assert asked == session.questions
        fake_llm["outline"].assert_called_once()
        assert history.get_history()[0].id == session.history_id

    def test_session_can_start_again_after_long_run(self, fake_llm, history) -> None:
        fake_llm["questions"].return_value = _perspectives(30)
        session = ResearchSession()
        with patch(f"{GRAPH}.GRAPH_MAX_RESEARCH_STEPS", 3):
            run_pipeline(session, "Printing press")
            run_pipeline(session, "Steam engine")
        assert session.stage == ResearchStage.DONE
        assert session.topic == "Steam engine"
        assert len(history.get_history()) == 2

    def test_corrupt_history_file_does_not_fail_run(self, fake_llm, tmp_path: Path) -> None:
        kv = JSONFileKeyValueStore(tmp_path, "test")
        kv.file.write_text("[1, 2]", encoding="utf-8")
        with patch(f"{GRAPH}.get_history_store", return_value=HistoryStore(kv)):
            session = ResearchSession()
            run_id = start_research(session, "Printing press")
            events = list(drive_pipeline(session, run_id))
        assert events[-1]["event"] == "done"
        assert events[-1]["stage"] == "DONE"
        assert session.article == "# Topic\n\nArticle body."


class TestDrivePipeline:
    def test_stream_emits_progress_events(self, fake_llm, history) -> None:
        fake_llm["questions"].return_value = _perspectives(2)
        session = ResearchSession()
        run_id = start_research(session, "Printing press")
        events = list(drive_pipeline(session, run_id))
        kinds = [e["event"] for e in events]
        assert kinds[0] == "stage"
        assert kinds[-1] == "done"
        assert kinds.count("research") == 2
        for kind in ("perspectives", "outline", "article"):
            assert kind in kinds
        research = [e for e in events if e["event"] == "research"]
        assert [e["questions_done"] for e in research] == [1, 2]
        assert events[-1]["history_id"] == session.history_id

    def test_reset_mid_run_drops_in_flight_result(self, fake_llm, history) -> None:
        session = ResearchSession()

        def reset_while_in_flight(question: str) -> ResearchResult:
            reset(session)
            return _answer(question)

        fake_llm["research"].side_effect = reset_while_in_flight
        run_id = start_research(session, "Printing press")
        events = list(drive_pipeline(session, run_id))
        assert events[-1] == {"event": "reset"}
        assert session.stage == ResearchStage.IDLE
        assert session.research_data == []
        assert fake_llm["research"].call_count == 1
        fake_llm["outline"].assert_not_called()
        assert history.get_history() == []

    def test_reset_waits_while_result_is_applied(self, fake_llm, history) -> None:
        session = ResearchSession()
        real_record_answer = pipeline.record_answer
        seen = {}

        def record_with_concurrent_reset(s, question, result):
            if "reset" not in seen:
                worker = threading.Thread(target=reset, args=(s,))
                worker.start()
                worker.join(timeout=0.2)
                seen["reset"] = worker
                seen["blocked"] = worker.is_alive()
                seen["stage"] = s.stage
            real_record_answer(s, question, result)

        with patch(f"{GRAPH}.record_answer", side_effect=record_with_concurrent_reset):
            run_id = start_research(session, "Printing press")
            list(drive_pipeline(session, run_id))
        seen["reset"].join(timeout=5)
        assert seen["blocked"] is True
        assert seen["stage"] == ResearchStage.RESEARCHING
        assert session.stage == ResearchStage.IDLE
        assert session.research_data == []
