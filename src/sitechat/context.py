"""Context assembly, confidence scoring and source extraction for answers."""

from __future__ import annotations

from typing import Final, Sequence

from .retrieval import RetrievalResult

CONFIDENCE_FLOOR: Final[float] = 0.1
QA_CONFIDENCE_CAP: Final[float] = 0.95
PAGE_CONFIDENCE_FACTOR: Final[float] = 0.8
PAGE_CONFIDENCE_CAP: Final[float] = 0.85
TRUNCATION_MARKER: Final[str] = "..."


def fallback_context(website_name: str, summary: str | None = None) -> str:
    context = (
        f'No specific passage from "{website_name}" matched this question. '
        f"Answer in general terms about {website_name} and say when the information is not available."
    )
    if summary:
        context = f"{context}\n\nAbout {website_name}:\n{summary.strip()}"
    return context


def assemble_context(
    result: RetrievalResult,
    *,
    website_name: str,
    summary: str | None = None,
    max_chars: int = 4000,
    excerpt_chars: int = 400,
) -> str:
    """Render matches into a bounded prompt context; never returns an empty string.

    Facts are listed first; page excerpts are appended only while the context is
    still under ``max_chars``. An over-long result is cut to ``max_chars`` and
    suffixed with ``...``.
    """

    context = ""
    if result.qa_matches:
        context += "Relevant Information:\n"
        for match in result.qa_matches:
            context += f"Q: {match.fact.question}\nA: {match.fact.answer}\n\n"

    if result.page_matches and len(context) < max_chars:
        context += "Website Content:\n"
        for match in result.page_matches:
            if len(context) >= max_chars:
                break
            title = match.page.title or match.page.url
            context += f"Page: {title}\nContent: {match.page.body_text[:excerpt_chars]}...\n\n"

    if not context.strip():
        context = fallback_context(website_name, summary)

    if len(context) > max_chars:
        context = context[:max_chars] + TRUNCATION_MARKER
    return context


def score_confidence(qa_scores: Sequence[float], page_scores: Sequence[float]) -> float:
    """Heuristic confidence in ``[0, 1]`` from the retrieved similarity scores."""

    if qa_scores:
        value = min(sum(qa_scores) / len(qa_scores), QA_CONFIDENCE_CAP)
    elif page_scores:
        value = min(sum(page_scores) / len(page_scores) * PAGE_CONFIDENCE_FACTOR, PAGE_CONFIDENCE_CAP)
    else:
        return CONFIDENCE_FLOOR
    return min(1.0, max(CONFIDENCE_FLOOR, value))


def confidence_for(result: RetrievalResult) -> float:
    return score_confidence(
        [match.similarity for match in result.qa_matches],
        [match.similarity for match in result.page_matches],
    )


def extract_sources(result: RetrievalResult, *, max_sources: int = 5) -> list[str]:
    """Fact source pages, then matched page URLs; de-duplicated and capped."""

    sources: list[str] = []
    seen: set[str] = set()
    candidates: list[str] = []
    for match in result.qa_matches:
        candidates.extend(match.fact.source_pages)
    candidates.extend(match.page.url for match in result.page_matches)
    for url in candidates:
        if url and url not in seen:
            seen.add(url)
            sources.append(url)
    return sources[:max_sources]


__all__ = [
    "CONFIDENCE_FLOOR",
    "assemble_context",
    "confidence_for",
    "extract_sources",
    "fallback_context",
    "score_confidence",
]
