"""
Application configuration (env, settings, constants).

Responsibility: Centralize config loading, environment variables, and app-wide
constants. Keeps the rest of the app decoupled from how config is sourced.
"""

import os

from dotenv import load_dotenv

load_dotenv()

# LLM provider: "auto" picks the first configured of openai -> gemini -> huggingface
LLM_PROVIDER: str = (os.getenv("LLM_PROVIDER", "auto").strip().lower() or "auto")

# OpenAI (primary). Search model must support the web_search_preview tool.
OPENAI_API_KEY: str = os.getenv("OPENAI_API_KEY", "").strip()
OPENAI_LLM_MODEL: str = (
    os.getenv("OPENAI_LLM_MODEL", "gpt-4o-mini").strip() or "gpt-4o-mini"
)
OPENAI_SEARCH_MODEL: str = (
    os.getenv("OPENAI_SEARCH_MODEL", "gpt-4o-mini").strip() or "gpt-4o-mini"
)

# Google Gemini (REST generateContent with google_search grounding)
GEMINI_API_KEY: str = (os.getenv("GEMINI_API_KEY", "") or os.getenv("API_KEY", "")).strip()
GEMINI_MODEL: str = os.getenv("GEMINI_MODEL", "gemini-2.5-flash").strip() or "gemini-2.5-flash"
GEMINI_API_BASE: str = "https://generativelanguage.googleapis.com/v1beta"

# Hugging Face chat (no native search: grounded via ddgs web search)
HF_API_KEY: str = os.getenv("HF_API_KEY", "").strip()
HF_CHAT_URL: str = "https://router.huggingface.co/v1/chat/completions"
HF_LLM_MODEL: str = (
    os.getenv("HF_LLM_MODEL", "meta-llama/Llama-3.2-3B-Instruct").strip()
    or "meta-llama/Llama-3.2-3B-Instruct"
)

# API timeouts (seconds). Transport-level only; the pipeline itself never times out.
LLM_API_TIMEOUT: float = float(os.getenv("LLM_API_TIMEOUT", "120"))

# Token limits per call
QUESTIONS_MAX_TOKENS: int = 1024
RESEARCH_MAX_TOKENS: int = 1024
OUTLINE_MAX_TOKENS: int = 1500
ARTICLE_MAX_TOKENS: int = 4096

# Web search (Hugging Face grounding)
WEB_SEARCH_MAX_RESULTS: int = 5

# Graph recursion limit = base steps (questions, outline, article, slack) + research loop cap
GRAPH_BASE_STEPS: int = 10
GRAPH_MAX_RESEARCH_STEPS: int = int(os.getenv("GRAPH_MAX_RESEARCH_STEPS", "500"))

# Persistence: "sqlite" (default), "memory", or "file"
STORE_BACKEND: str = os.getenv("STORE_BACKEND", "sqlite").strip().lower() or "sqlite"
STORE_PATH: str = os.getenv("STORE_PATH", "data/storm_writer.db").strip() or "data/storm_writer.db"
STORE_NAMESPACE: str = "storm_writer"
HISTORY_KEY: str = "aiResearchHistory"

# Streamlit client -> backend
API_BASE: str = os.getenv("API_BASE", "http://localhost:8000")
