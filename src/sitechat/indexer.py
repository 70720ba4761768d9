"""Embed pages and facts and persist them into the knowledge-base index."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Sequence, TypeVar

from .config import Settings
from .embeddings import EmbeddingService, prepare_embedding_text
from .errors import EmbeddingFailure, ExternalServiceError
from .jobs import CancellationToken
from .knowledge_base import KnowledgeBaseIndex
from .models import Page, QAFact
from .observability import MetricsRecorder

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class IndexReport:
    pages_indexed: int
    facts_indexed: int
    pages_skipped: int
    facts_skipped: int
    cancelled: bool = False


def page_embedding_text(page: Page, *, body_chars: int, max_chars: int) -> str:
    return prepare_embedding_text(f"{page.title} {page.description} {page.body_text[:body_chars]}", max_chars)


def fact_embedding_text(fact: QAFact, *, max_chars: int) -> str:
    return prepare_embedding_text(f"{fact.question} {fact.answer}", max_chars)


class KnowledgeBaseIndexer:
    """Sequential, paced embedding of one knowledge base's pages and facts.

    A failure to embed a single item is logged and the item skipped; the rest
    of the corpus is still indexed.
    """

    def __init__(
        self,
        settings: Settings,
        embeddings: EmbeddingService,
        index: KnowledgeBaseIndex,
        *,
        metrics: MetricsRecorder | None = None,
    ) -> None:
        self._settings = settings
        self._embeddings = embeddings
        self._index = index
        self._metrics = metrics

    async def index(
        self,
        kb_id: str,
        pages: Sequence[Page],
        facts: Sequence[QAFact],
        *,
        token: CancellationToken | None = None,
    ) -> IndexReport:
        start = time.perf_counter()
        logger.info("index.start kb=%s pages=%s facts=%s", kb_id, len(pages), len(facts))

        max_chars = self._settings.embedding_max_chars
        body_chars = self._settings.page_embedding_chars
        page_vectors, pages_skipped, cancelled, embedded = await self._embed_all(
            pages,
            lambda page: page_embedding_text(page, body_chars=body_chars, max_chars=max_chars),
            lambda page: page.url,
            token,
        )
        batch_size = self._settings.indexer_batch_size
        fact_vectors: list[tuple[QAFact, list[float]]] = []
        facts_skipped = 0
        if not cancelled:
            for offset in range(0, len(page_vectors), batch_size):
                self._index.add_pages(kb_id, page_vectors[offset : offset + batch_size])
            fact_vectors, facts_skipped, cancelled, _ = await self._embed_all(
                facts,
                lambda fact: fact_embedding_text(fact, max_chars=max_chars),
                lambda fact: fact.question,
                token,
                embedded=embedded,
            )
        if not cancelled:
            for offset in range(0, len(fact_vectors), batch_size):
                self._index.add_facts(kb_id, fact_vectors[offset : offset + batch_size])

        report = IndexReport(
            pages_indexed=len(page_vectors),
            facts_indexed=len(fact_vectors),
            pages_skipped=pages_skipped,
            facts_skipped=facts_skipped,
            cancelled=cancelled,
        )
        logger.info(
            "index.completed kb=%s pages=%s facts=%s skipped=%s cancelled=%s",
            kb_id,
            report.pages_indexed,
            report.facts_indexed,
            report.pages_skipped + report.facts_skipped,
            report.cancelled,
        )
        if self._metrics:
            self._metrics.record_timing("index.duration", time.perf_counter() - start)
            self._metrics.increment("index.items", value=report.pages_indexed + report.facts_indexed)
            skipped = report.pages_skipped + report.facts_skipped
            if skipped:
                self._metrics.increment("index.skipped", value=skipped)
        return report

    async def _embed_all(
        self,
        items: Sequence[T],
        text_for,
        label_for,
        token: CancellationToken | None,
        *,
        embedded: int = 0,
    ) -> tuple[list[tuple[T, list[float]]], int, bool, int]:
        vectors: list[tuple[T, list[float]]] = []
        skipped = 0
        for item in items:
            if token is not None and token.cancelled:
                return vectors, skipped, True, embedded
            if embedded and self._settings.indexer_delay:
                await asyncio.sleep(self._settings.indexer_delay)
            embedded += 1
            try:
                text = text_for(item)
                vector = await asyncio.to_thread(self._embeddings.embed_one, text)
            except (EmbeddingFailure, ExternalServiceError) as exc:
                logger.warning("index.item.skipped item=%s error=%s", label_for(item), exc)
                skipped += 1
                continue
            if len(vector) != self._index.vector_size:
                logger.warning(
                    "index.item.skipped item=%s error=dimension %s != %s",
                    label_for(item),
                    len(vector),
                    self._index.vector_size,
                )
                skipped += 1
                continue
            vectors.append((item, vector))
        return vectors, skipped, False, embedded


__all__ = ["IndexReport", "KnowledgeBaseIndexer", "fact_embedding_text", "page_embedding_text"]
