"""Schemas for research data, history items, and the research endpoints."""

from pydantic import BaseModel, Field


class Perspective(BaseModel):
    """One thematic angle on the topic with the questions that research it."""

    perspective: str = Field(..., description="A high-level perspective or theme on the topic.")
    questions: list[str] = Field(default_factory=list, description="Researchable questions for this perspective.")

    model_config = {"frozen": True}


class Source(BaseModel):
    """A grounding citation returned alongside a web-search answer."""

    uri: str = ""
    title: str = "Untitled Source"


class ResearchData(BaseModel):
    question: str
    answer: str


class ResearchResult(BaseModel):
    """Answer for one question plus its grounding sources."""

    answer: str
    sources: list[Source] = Field(default_factory=list)


class HistoryItem(BaseModel):
    """A completed run, persisted in the history store."""

    id: str
    topic: str
    article: str
    sources: list[Source] = Field(default_factory=list)
    timestamp: str = Field(..., description="ISO-8601 UTC timestamp of completion.")


# --- API bodies ---

class ResearchRequest(BaseModel):
    """Request body for POST /research and POST /research/stream."""

    topic: str = Field(..., description="Topic to research and write about.")
    session_id: str | None = Field(None, description="Reuse an existing session; a new one is created when omitted.")


class RewriteRequest(BaseModel):
    """Request body for POST /research/{session_id}/rewrite."""

    style: str = Field(..., min_length=1, description="Rewrite style, see GET /rewrite/options.")
    variant: str = Field("en-US", min_length=1, description="Language variant, e.g. en-US or en-GB.")


class Progress(BaseModel):
    stage: str
    label: str
    questions_total: int = 0
    questions_done: int = 0


class SessionResponse(BaseModel):
    """Snapshot of a research session."""

    session_id: str
    topic: str
    stage: str
    progress: Progress
    perspectives: list[Perspective] = Field(default_factory=list)
    research_data: list[ResearchData] = Field(default_factory=list)
    sources: list[Source] = Field(default_factory=list)
    outline: str = ""
    article: str = ""
    is_rewritten: bool = False
    error: str | None = None
    history_id: str | None = None

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "session_id": "0f6c1c0e5a9b4e0f9d1a2b3c4d5e6f70",
                    "topic": "History of the printing press",
                    "stage": "DONE",
                    "progress": {"stage": "DONE", "label": "Completed", "questions_total": 9, "questions_done": 9},
                    "article": "# History of the printing press\n...",
                    "sources": [{"uri": "https://example.org/gutenberg", "title": "Gutenberg"}],
                }
            ]
        }
    }


class RewriteOptionsResponse(BaseModel):
    styles: dict[str, str]
    variants: dict[str, str]
