"""Derive question/answer facts from a page corpus with the generation model."""

from __future__ import annotations

import asyncio
import json
import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Sequence, Union

from .config import Settings
from .errors import ExternalServiceError
from .generation import GenerationService
from .models import Page, QAFact, normalize_category, utc_now
from .observability import MetricsRecorder
from .prompts import (
    OVERVIEW_SYSTEM_PROMPT,
    bot_system_prompt,
    fact_batch_prompt,
    normalize_bot_type,
    overview_prompt,
)

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json)?", re.IGNORECASE)


@dataclass(frozen=True, slots=True)
class FactDraft:
    """A validated fact item before it is stamped with sources."""

    question: str
    answer: str
    category: str
    keywords: tuple[str, ...]
    confidence: float | None


@dataclass(frozen=True, slots=True)
class ParsedFacts:
    items: tuple[FactDraft, ...]
    dropped: int = 0


@dataclass(frozen=True, slots=True)
class MalformedResponse:
    reason: str


ParseResult = Union[ParsedFacts, MalformedResponse]


def parse_fact_response(text: str) -> ParseResult:
    """Parse a model reply expected to hold ``{"qa_pairs": [...]}``.

    Code fences are removed and the outermost JSON object is decoded. Items
    without a non-empty string question and answer are dropped; categories are
    normalised, keywords coerced to strings and numeric confidences clamped to
    ``[0, 1]`` (missing or non-numeric confidence is left as ``None``).
    """

    cleaned = _FENCE_RE.sub("", text or "").strip()
    start = cleaned.find("{")
    end = cleaned.rfind("}")
    if start < 0 or end <= start:
        return MalformedResponse("no JSON object in response")
    try:
        data = json.loads(cleaned[start : end + 1])
    except json.JSONDecodeError as exc:
        return MalformedResponse(f"invalid JSON: {exc.msg}")
    if not isinstance(data, dict):
        return MalformedResponse("response is not a JSON object")
    raw_items = data.get("qa_pairs")
    if not isinstance(raw_items, list):
        return MalformedResponse("qa_pairs is missing or not a list")

    items: list[FactDraft] = []
    dropped = 0
    for raw in raw_items:
        draft = _validate_item(raw)
        if draft is None:
            dropped += 1
        else:
            items.append(draft)
    return ParsedFacts(items=tuple(items), dropped=dropped)


def _validate_item(raw: Any) -> FactDraft | None:
    if not isinstance(raw, dict):
        return None
    question = raw.get("question")
    answer = raw.get("answer")
    if not isinstance(question, str) or not isinstance(answer, str):
        return None
    question = question.strip()
    answer = answer.strip()
    if not question or not answer:
        return None

    keywords_raw = raw.get("keywords")
    if isinstance(keywords_raw, str):
        keywords_raw = [part for part in keywords_raw.split(",")]
    keywords: tuple[str, ...] = ()
    if isinstance(keywords_raw, list):
        keywords = tuple(str(item).strip() for item in keywords_raw if str(item).strip())

    confidence = raw.get("confidence")
    if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
        confidence = None
    else:
        confidence = min(1.0, max(0.0, float(confidence)))

    return FactDraft(
        question=question,
        answer=answer,
        category=normalize_category(raw.get("category")),
        keywords=keywords,
        confidence=confidence,
    )


class KnowledgeCompiler:
    """Turn pages into QA facts, batch by batch, then add overview facts."""

    def __init__(
        self,
        settings: Settings,
        generation: GenerationService,
        *,
        metrics: MetricsRecorder | None = None,
    ) -> None:
        self._settings = settings
        self._generation = generation
        self._metrics = metrics

    async def compile(self, pages: Sequence[Page], bot_type: str) -> tuple[QAFact, ...]:
        """Return every fact the model produced; an empty tuple means nothing usable."""

        bot_type = normalize_bot_type(bot_type)
        batch_size = max(1, self._settings.compiler_batch_size)
        batches = [pages[offset : offset + batch_size] for offset in range(0, len(pages), batch_size)]
        start = time.perf_counter()
        logger.info("compile.start pages=%s batches=%s bot_type=%s", len(pages), len(batches), bot_type)

        facts: list[QAFact] = []
        malformed = 0
        for index, batch in enumerate(batches):
            if index and self._settings.compiler_batch_delay:
                await asyncio.sleep(self._settings.compiler_batch_delay)
            produced = await self._run_batch(
                system_prompt=bot_system_prompt(bot_type),
                user_prompt=fact_batch_prompt(batch, bot_type, page_chars=self._settings.compiler_page_chars),
                sources=[page.url for page in batch],
                default_confidence=self._settings.default_fact_confidence,
                label=f"batch-{index + 1}",
            )
            if produced is None:
                malformed += 1
            else:
                facts.extend(produced)

        overview_pages = list(pages[: self._settings.overview_pages])
        if overview_pages:
            if batches and self._settings.compiler_batch_delay:
                await asyncio.sleep(self._settings.compiler_batch_delay)
            produced = await self._run_batch(
                system_prompt=OVERVIEW_SYSTEM_PROMPT,
                user_prompt=overview_prompt(overview_pages, page_chars=self._settings.overview_page_chars),
                sources=[page.url for page in overview_pages],
                default_confidence=self._settings.overview_fact_confidence,
                label="overview",
            )
            if produced is None:
                malformed += 1
            else:
                facts.extend(produced)

        logger.info(
            "compile.completed facts=%s failed_batches=%s",
            len(facts),
            malformed,
        )
        if self._metrics:
            self._metrics.record_timing("compile.duration", time.perf_counter() - start)
            self._metrics.increment("compile.facts", value=len(facts))
            if malformed:
                self._metrics.increment("compile.failed_batches", value=malformed)
        return tuple(facts)

    async def _run_batch(
        self,
        *,
        system_prompt: str,
        user_prompt: str,
        sources: list[str],
        default_confidence: float,
        label: str,
    ) -> list[QAFact] | None:
        try:
            reply = await asyncio.to_thread(
                self._generation.generate,
                system_prompt,
                user_prompt,
                temperature=self._settings.qa_temperature,
                max_tokens=self._settings.qa_max_tokens,
            )
        except ExternalServiceError as exc:
            logger.warning("compile.batch.failed batch=%s error=%s", label, exc)
            return None

        result = parse_fact_response(reply)
        if isinstance(result, MalformedResponse):
            logger.warning("compile.batch.malformed batch=%s reason=%s", label, result.reason)
            return None

        generated_at = utc_now()
        facts = [
            QAFact(
                question=draft.question,
                answer=draft.answer,
                category=draft.category,
                keywords=draft.keywords,
                confidence=default_confidence if draft.confidence is None else draft.confidence,
                source_pages=tuple(sources),
                generated_at=generated_at,
            )
            for draft in result.items
        ]
        logger.info("compile.batch.completed batch=%s facts=%s dropped=%s", label, len(facts), result.dropped)
        return facts


__all__ = [
    "FactDraft",
    "KnowledgeCompiler",
    "MalformedResponse",
    "ParseResult",
    "ParsedFacts",
    "parse_fact_response",
]
