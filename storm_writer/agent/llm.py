"""
Agent LLM: OpenAI, Google Gemini (REST), or Hugging Face router.

Three call shapes are exposed, all provider-independent:
- generate_json: structured output (perspectives).
- web_search_answer: answer grounded on a web search, with citations.
- generate_text: plain completion (outline, article, rewrite).

Unlike a chat fallback, failures raise: the pipeline decides what a failure means
for its stage. ServiceUnavailableError = not configured; LLMError = call failed.
"""

import logging
from typing import Any

import httpx
from ddgs import DDGS
from openai import OpenAI, OpenAIError

from storm_writer.agent.prompts import grounded_research_prompt, research_prompt
from storm_writer.core.config import (
    GEMINI_API_BASE,
    GEMINI_API_KEY,
    GEMINI_MODEL,
    HF_API_KEY,
    HF_CHAT_URL,
    HF_LLM_MODEL,
    LLM_API_TIMEOUT,
    LLM_PROVIDER,
    OPENAI_API_KEY,
    OPENAI_LLM_MODEL,
    OPENAI_SEARCH_MODEL,
    WEB_SEARCH_MAX_RESULTS,
)
from storm_writer.core.errors import LLMError, ServiceUnavailableError
from storm_writer.schemas.research import ResearchResult, Source

logger = logging.getLogger(__name__)

PROVIDERS = ("openai", "gemini", "huggingface")
UNTITLED_SOURCE = "Untitled Source"


def resolve_provider() -> str:
    """Configured provider, or with LLM_PROVIDER=auto the first one that has an API key."""
    if LLM_PROVIDER != "auto":
        if LLM_PROVIDER not in PROVIDERS:
            raise ServiceUnavailableError(f"Unknown LLM_PROVIDER {LLM_PROVIDER!r} (expected one of {', '.join(PROVIDERS)})")
        return LLM_PROVIDER
    if OPENAI_API_KEY:
        return "openai"
    if GEMINI_API_KEY:
        return "gemini"
    if HF_API_KEY:
        return "huggingface"
    raise ServiceUnavailableError("No LLM provider configured. Set OPENAI_API_KEY, GEMINI_API_KEY or HF_API_KEY.")


def _make_source(uri: str | None, title: str | None) -> Source | None:
    uri = (uri or "").strip()
    if not uri:
        return None
    return Source(uri=uri, title=(title or "").strip() or UNTITLED_SOURCE)


# --- OpenAI ---

def _openai_client() -> OpenAI:
    if not OPENAI_API_KEY:
        raise ServiceUnavailableError("OPENAI_API_KEY is not set.")
    return OpenAI(api_key=OPENAI_API_KEY, timeout=LLM_API_TIMEOUT)


def _call_openai(prompt: str, max_tokens: int, json_mode: bool = False) -> str:
    """Chat completions. json_mode asks for a JSON object (arrays must be wrapped by the prompt)."""
    client = _openai_client()
    kwargs: dict[str, Any] = {}
    if json_mode:
        kwargs["response_format"] = {"type": "json_object"}
    try:
        response = client.chat.completions.create(
            model=OPENAI_LLM_MODEL,
            messages=[{"role": "user", "content": prompt}],
            max_tokens=max_tokens,
            **kwargs,
        )
    except OpenAIError as e:
        raise LLMError(f"OpenAI request failed: {e}") from e
    msg = response.choices[0].message if response.choices else None
    out = ((msg.content if msg else None) or "").strip()
    logger.info("[llm:openai] OUT response_len=%d", len(out))
    return out


def _openai_citations(response: Any) -> list[Source]:
    """Collect url_citation annotations from a Responses API result."""
    sources: list[Source] = []
    for item in getattr(response, "output", None) or []:
        if getattr(item, "type", "") != "message":
            continue
        for part in getattr(item, "content", None) or []:
            for ann in getattr(part, "annotations", None) or []:
                if getattr(ann, "type", "") != "url_citation":
                    continue
                src = _make_source(getattr(ann, "url", None), getattr(ann, "title", None))
                if src:
                    sources.append(src)
    return sources


def _openai_web_search(question: str) -> ResearchResult:
    client = _openai_client()
    try:
        response = client.responses.create(
            model=OPENAI_SEARCH_MODEL,
            tools=[{"type": "web_search_preview"}],
            input=research_prompt(question),
        )
    except OpenAIError as e:
        raise LLMError(f"OpenAI web search failed: {e}") from e
    answer = (getattr(response, "output_text", None) or "").strip()
    sources = _openai_citations(response)
    logger.info("[llm:openai_web_search] OUT answer_len=%d sources=%d", len(answer), len(sources))
    return ResearchResult(answer=answer, sources=sources)


# --- Gemini ---

def _call_gemini(prompt: str, schema: dict | None = None, search: bool = False) -> dict[str, Any]:
    """POST models/{model}:generateContent; returns the decoded response body."""
    if not GEMINI_API_KEY:
        raise ServiceUnavailableError("GEMINI_API_KEY is not set.")
    url = f"{GEMINI_API_BASE}/models/{GEMINI_MODEL}:generateContent"
    headers = {"x-goog-api-key": GEMINI_API_KEY, "Content-Type": "application/json"}
    payload: dict[str, Any] = {"contents": [{"role": "user", "parts": [{"text": prompt}]}]}
    if schema is not None:
        payload["generationConfig"] = {"responseMimeType": "application/json", "responseSchema": schema}
    if search:
        payload["tools"] = [{"google_search": {}}]
    try:
        with httpx.Client(timeout=LLM_API_TIMEOUT) as client:
            response = client.post(url, json=payload, headers=headers)
    except httpx.HTTPError as e:
        raise LLMError(f"Gemini request failed: {e}") from e
    if response.status_code != 200:
        logger.warning("[llm:gemini] error %s: %s", response.status_code, response.text[:200])
        raise LLMError(f"Gemini returned HTTP {response.status_code}")
    return response.json()


def _gemini_text(data: dict[str, Any]) -> str:
    candidates = data.get("candidates") or []
    if not candidates:
        return ""
    parts = (candidates[0].get("content") or {}).get("parts") or []
    return "".join(p.get("text") or "" for p in parts if isinstance(p, dict)).strip()


def _gemini_sources(data: dict[str, Any]) -> list[Source]:
    candidates = data.get("candidates") or []
    if not candidates:
        return []
    chunks = (candidates[0].get("groundingMetadata") or {}).get("groundingChunks") or []
    sources = []
    for chunk in chunks:
        web = chunk.get("web") or {}
        src = _make_source(web.get("uri"), web.get("title"))
        if src:
            sources.append(src)
    return sources


# --- Hugging Face ---

def _call_hf(prompt: str, max_tokens: int) -> str:
    """Hugging Face router chat completions. Returns generated text."""
    if not HF_API_KEY:
        raise ServiceUnavailableError("HF_API_KEY is not set.")
    headers = {"Authorization": f"Bearer {HF_API_KEY}", "Content-Type": "application/json"}
    payload = {
        "model": HF_LLM_MODEL,
        "messages": [{"role": "user", "content": prompt}],
        "max_tokens": max_tokens,
    }
    try:
        with httpx.Client(timeout=LLM_API_TIMEOUT) as client:
            response = client.post(HF_CHAT_URL, json=payload, headers=headers)
    except httpx.HTTPError as e:
        raise LLMError(f"Hugging Face request failed: {e}") from e
    if response.status_code != 200:
        logger.warning("[llm:hf] HF LLM error %s: %s", response.status_code, response.text[:200])
        raise LLMError(f"Hugging Face returned HTTP {response.status_code}")
    choices = response.json().get("choices") or []
    out = ""
    if choices and isinstance(choices[0], dict):
        out = ((choices[0].get("message") or {}).get("content") or "").strip()
    logger.info("[llm:hf] OUT response_len=%d", len(out))
    return out


def web_search(query: str, max_results: int = WEB_SEARCH_MAX_RESULTS) -> list[dict[str, str]]:
    """DuckDuckGo text search via ddgs. Returns [{title, body, href}]."""
    q = (query or "").strip()
    if not q:
        return []
    try:
        with DDGS() as ddgs:
            results = list(ddgs.text(q, max_results=max_results))
    except Exception as e:
        raise LLMError(f"Web search failed: {e}") from e
    logger.info("[llm:web_search] query=%r results=%d", q, len(results))
    return [
        {
            "title": (r.get("title") or "").strip(),
            "body": (r.get("body") or "").strip(),
            "href": (r.get("href") or "").strip(),
        }
        for r in results[:max_results]
    ]


def _hf_web_search(question: str, max_tokens: int) -> ResearchResult:
    results = web_search(question)
    if not results:
        raise LLMError(f"No web results for {question!r}")
    block = "\n\n".join(
        f"[{i}] {r['title']}\n{r['body']}\nURL: {r['href']}" for i, r in enumerate(results, 1)
    )
    answer = _call_hf(grounded_research_prompt(question, block), max_tokens)
    sources = [s for s in (_make_source(r["href"], r["title"]) for r in results) if s]
    return ResearchResult(answer=answer, sources=sources)


# --- Public API ---

def generate_json(prompt: str, schema: dict, max_tokens: int = 1024) -> str:
    """Return raw JSON text. Caller parses and validates."""
    provider = resolve_provider()
    logger.info("[llm:generate_json] IN  provider=%s prompt_len=%d", provider, len(prompt))
    if provider == "openai":
        wrapped = prompt + '\nWrap the array in a JSON object under the key "perspectives".'
        out = _call_openai(wrapped, max_tokens, json_mode=True)
    elif provider == "gemini":
        out = _gemini_text(_call_gemini(prompt, schema=schema))
    else:
        out = _call_hf(prompt, max_tokens)
    if not out:
        raise LLMError(f"{provider} returned an empty response")
    return out


def web_search_answer(question: str, max_tokens: int = 1024) -> ResearchResult:
    """Answer question with web grounding; sources have non-empty uris."""
    provider = resolve_provider()
    logger.info("[llm:web_search_answer] IN  provider=%s question=%r", provider, question)
    if provider == "openai":
        result = _openai_web_search(question)
    elif provider == "gemini":
        data = _call_gemini(research_prompt(question), search=True)
        result = ResearchResult(answer=_gemini_text(data), sources=_gemini_sources(data))
    else:
        result = _hf_web_search(question, max_tokens)
    if not result.answer:
        raise LLMError(f"{provider} returned an empty answer")
    logger.info("[llm:web_search_answer] OUT answer_len=%d sources=%d", len(result.answer), len(result.sources))
    return result


def generate_text(prompt: str, max_tokens: int = 1024) -> str:
    provider = resolve_provider()
    logger.info("[llm:generate_text] IN  provider=%s prompt_len=%d max_tokens=%d", provider, len(prompt), max_tokens)
    logger.debug("[llm:generate_text] prompt_sample=%r", prompt[:500])
    if provider == "openai":
        out = _call_openai(prompt, max_tokens)
    elif provider == "gemini":
        out = _gemini_text(_call_gemini(prompt))
    else:
        out = _call_hf(prompt, max_tokens)
    if not out:
        raise LLMError(f"{provider} returned an empty response")
    return out
