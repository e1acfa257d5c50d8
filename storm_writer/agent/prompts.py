"""
Prompt builders for the five pipeline calls, plus rewrite styles and language variants.
"""

from storm_writer.schemas.research import ResearchData

# Rewrite style -> instruction given to the model
REWRITE_STYLES: dict[str, str] = {
    "academic": "a formal academic register with precise terminology and measured claims",
    "simplified": "plain language a curious 12-year-old could follow, with short sentences and defined terms",
    "journalistic": "a news-feature style with a strong lede and short paragraphs",
    "narrative": "an engaging narrative voice that tells the story of the topic while staying factual",
    "concise": "a condensed version about half the original length that keeps every key fact",
}

# Language variant code -> name used in the prompt
LANGUAGE_VARIANTS: dict[str, str] = {
    "en-US": "American English",
    "en-GB": "British English",
    "en-AU": "Australian English",
    "en-IN": "Indian English",
}

# JSON schema for the perspectives response (Gemini responseSchema format)
PERSPECTIVES_SCHEMA: dict = {
    "type": "ARRAY",
    "items": {
        "type": "OBJECT",
        "properties": {
            "perspective": {
                "type": "STRING",
                "description": "A unique, high-level perspective or theme on the main topic.",
            },
            "questions": {
                "type": "ARRAY",
                "description": "A list of 2-3 specific, researchable questions related to this perspective.",
                "items": {"type": "STRING"},
            },
        },
        "required": ["perspective", "questions"],
    },
}


def format_research_context(research_data: list[ResearchData]) -> str:
    """Join question/answer pairs into one block for the outline and article prompts."""
    return "\n\n---\n\n".join(f"Question: {d.question}\nAnswer: {d.answer}" for d in research_data)


def perspectives_prompt(topic: str) -> str:
    return f"""
        You are an expert researcher. Break the topic "{topic}" down into several distinct
        perspectives so that together they give a comprehensive overview.

        Instructions:
        1. Choose 3-4 perspectives or sub-topics (e.g. historical context, technology, social impact,
           key figures, future developments).
        2. For each perspective, write 2-3 specific, fact-based questions that web research can answer.
        3. Questions must be open-ended and invite detailed answers, not yes/no.

        Return JSON only: an array of objects, each with "perspective" (string) and "questions" (array of strings).
        """


def research_prompt(question: str) -> str:
    return f"""
        Give a comprehensive, factual answer to the following question: "{question}".
        Cite your sources. The answer should be detailed and supported by the search results.
        Synthesize what the web says into a clear and concise answer.
        """


def grounded_research_prompt(question: str, search_results: str) -> str:
    """For providers without a native search tool: the search results are pasted in."""
    return f"""
        Answer the following question using ONLY the web search results below: "{question}".
        Be detailed and factual. Refer to results by their number, e.g. [1], when you use them.
        If the results do not answer the question, say what is missing.

        Web search results:
        {search_results}

        Answer:
        """


def outline_prompt(topic: str, research_data: list[ResearchData]) -> str:
    return f"""
        Using the research data below for the topic "{topic}", write a detailed, hierarchical outline
        for a comprehensive article, structured like an encyclopedia entry: introduction, main body
        sections with sub-points, and a conclusion.
        Use Roman numerals (I, II, III) for main sections and capital letters (A, B, C) for sub-sections.

        Research data to synthesize:
        {format_research_context(research_data)}
        """


def article_prompt(topic: str, outline: str, research_data: list[ResearchData]) -> str:
    return f"""
        You are an expert writer creating a comprehensive, well-structured, encyclopedic article on
        the topic "{topic}", in a neutral, objective tone.

        Follow the structure of the outline. Write each section from the research data only; do not
        invent information. Format with Markdown headings (# for the title, ## for main sections,
        ### for sub-sections).

        **Topic:**
        {topic}

        **Article Outline:**
        {outline}

        **Research Data:**
        {format_research_context(research_data)}

        Now write the full article.
        """


def rewrite_prompt(article: str, style: str, variant: str) -> str:
    """Caller validates style and variant against REWRITE_STYLES / LANGUAGE_VARIANTS."""
    return f"""
        Rewrite the article below in {REWRITE_STYLES[style]}.
        Use {LANGUAGE_VARIANTS[variant]} spelling, vocabulary and conventions throughout.

        Keep every fact, keep the Markdown heading structure, and do not add information.
        Return only the rewritten article.

        Article:
        {article}
        """
