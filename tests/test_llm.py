"""
Unit tests for provider selection and citation extraction. No network: provider
calls and web search are patched.
"""

from types import SimpleNamespace
from unittest.mock import patch

import pytest

from storm_writer.agent import llm
from storm_writer.core.errors import LLMError, ServiceUnavailableError

LLM = "storm_writer.agent.llm"


class TestResolveProvider:
    def test_auto_prefers_openai(self) -> None:
        with patch(f"{LLM}.LLM_PROVIDER", "auto"), patch(f"{LLM}.OPENAI_API_KEY", "sk"), patch(f"{LLM}.GEMINI_API_KEY", "g"):
            assert llm.resolve_provider() == "openai"

    def test_auto_falls_back_to_gemini_then_hf(self) -> None:
        with patch(f"{LLM}.LLM_PROVIDER", "auto"), patch(f"{LLM}.OPENAI_API_KEY", ""), patch(f"{LLM}.GEMINI_API_KEY", "g"):
            assert llm.resolve_provider() == "gemini"
        with patch(f"{LLM}.LLM_PROVIDER", "auto"), patch(f"{LLM}.OPENAI_API_KEY", ""), \
             patch(f"{LLM}.GEMINI_API_KEY", ""), patch(f"{LLM}.HF_API_KEY", "hf"):
            assert llm.resolve_provider() == "huggingface"

    def test_nothing_configured(self) -> None:
        with patch(f"{LLM}.LLM_PROVIDER", "auto"), patch(f"{LLM}.OPENAI_API_KEY", ""), \
             patch(f"{LLM}.GEMINI_API_KEY", ""), patch(f"{LLM}.HF_API_KEY", ""):
            with pytest.raises(ServiceUnavailableError):
                llm.resolve_provider()

    def test_explicit_provider(self) -> None:
        with patch(f"{LLM}.LLM_PROVIDER", "gemini"):
            assert llm.resolve_provider() == "gemini"
        with patch(f"{LLM}.LLM_PROVIDER", "mistral"):
            with pytest.raises(ServiceUnavailableError):
                llm.resolve_provider()


class TestGeminiParsing:
    RESPONSE = {
        "candidates": [
            {
                "content": {"parts": [{"text": "Gutenberg built "}, {"text": "the press."}]},
                "groundingMetadata": {
                    "groundingChunks": [
                        {"web": {"uri": "https://a.example", "title": "A"}},
                        {"web": {"uri": "", "title": "Empty"}},
                        {"web": {"uri": "https://b.example"}},
                        {"retrievedContext": {}},
                    ]
                },
            }
        ]
    }

    def test_text_joins_parts(self) -> None:
        assert llm._gemini_text(self.RESPONSE) == "Gutenberg built the press."

    def test_sources_drop_empty_uri_and_default_title(self) -> None:
        sources = llm._gemini_sources(self.RESPONSE)
        assert [(s.uri, s.title) for s in sources] == [
            ("https://a.example", "A"),
            ("https://b.example", "Untitled Source"),
        ]

    def test_no_candidates(self) -> None:
        assert llm._gemini_text({}) == ""
        assert llm._gemini_sources({"candidates": []}) == []


class TestOpenAICitations:
    def test_collects_url_citations(self) -> None:
        response = SimpleNamespace(
            output=[
                SimpleNamespace(type="web_search_call"),
                SimpleNamespace(
                    type="message",
                    content=[
                        SimpleNamespace(
                            annotations=[
                                SimpleNamespace(type="url_citation", url="https://a.example", title="A"),
                                SimpleNamespace(type="file_citation"),
                                SimpleNamespace(type="url_citation", url="https://b.example", title=""),
                            ]
                        )
                    ],
                ),
            ]
        )
        sources = llm._openai_citations(response)
        assert [(s.uri, s.title) for s in sources] == [
            ("https://a.example", "A"),
            ("https://b.example", "Untitled Source"),
        ]


class TestHuggingFaceGrounding:
    def test_search_results_become_sources(self) -> None:
        results = [
            {"title": "Press", "body": "About the press", "href": "https://a.example"},
            {"title": "No link", "body": "x", "href": ""},
        ]
        with patch(f"{LLM}.LLM_PROVIDER", "huggingface"), \
             patch(f"{LLM}.web_search", return_value=results), \
             patch(f"{LLM}._call_hf", return_value="Grounded answer [1].") as call:
            out = llm.web_search_answer("Who built the press?")
        assert out.answer == "Grounded answer [1]."
        assert [s.uri for s in out.sources] == ["https://a.example"]
        assert "About the press" in call.call_args.args[0]

    def test_no_results_raises(self) -> None:
        with patch(f"{LLM}.LLM_PROVIDER", "huggingface"), patch(f"{LLM}.web_search", return_value=[]):
            with pytest.raises(LLMError):
                llm.web_search_answer("Who built the press?")


class TestEmptyOutput:
    def test_empty_text_raises(self) -> None:
        with patch(f"{LLM}.LLM_PROVIDER", "huggingface"), patch(f"{LLM}._call_hf", return_value=""):
            with pytest.raises(LLMError):
                llm.generate_text("prompt")

    def test_missing_key_raises_unavailable(self) -> None:
        with patch(f"{LLM}.LLM_PROVIDER", "gemini"), patch(f"{LLM}.GEMINI_API_KEY", ""):
            with pytest.raises(ServiceUnavailableError):
                llm.generate_text("prompt")

    def test_openai_json_prompt_asks_for_wrapper(self) -> None:
        with patch(f"{LLM}.LLM_PROVIDER", "openai"), patch(f"{LLM}._call_openai", return_value='{"perspectives": []}') as call:
            assert llm.generate_json("Return JSON only.", {}) == '{"perspectives": []}'
        assert call.call_args.kwargs["json_mode"] is True
        assert '"perspectives"' in call.call_args.args[0]
