"""Query-time similarity search over one knowledge base."""

from __future__ import annotations

import asyncio
import logging
import math
import time
from dataclasses import dataclass
from typing import Sequence

from .config import Settings
from .embeddings import EmbeddingService
from .knowledge_base import KnowledgeBaseIndex
from .models import Page, QAFact
from .observability import MetricsRecorder
from .vector_store import SearchResult

logger = logging.getLogger(__name__)


def cosine_similarity(a: Sequence[float] | None, b: Sequence[float] | None) -> float:
    """``dot(a, b) / (|a| * |b|)``; 0.0 for empty vectors or zero magnitude.

    Components beyond the shorter vector are ignored.
    """

    if not a or not b:
        return 0.0
    dot = 0.0
    norm_a = 0.0
    norm_b = 0.0
    for x, y in zip(a, b):
        dot += x * y
        norm_a += x * x
        norm_b += y * y
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return dot / (math.sqrt(norm_a) * math.sqrt(norm_b))


@dataclass(frozen=True, slots=True)
class FactMatch:
    fact: QAFact
    similarity: float


@dataclass(frozen=True, slots=True)
class PageMatch:
    page: Page
    similarity: float


@dataclass(frozen=True, slots=True)
class RetrievalResult:
    qa_matches: tuple[FactMatch, ...] = ()
    page_matches: tuple[PageMatch, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.qa_matches and not self.page_matches


class SimilarityRetriever:
    """Rank stored facts and pages against a query.

    Qdrant supplies the candidate set; the in-process :func:`cosine_similarity`
    decides the final score, the threshold cut and the ordering.
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

    async def retrieve(self, kb_id: str, query: str, limit: int | None = None) -> RetrievalResult:
        limit = max(1, limit or self._settings.retrieval_limit)
        start = time.perf_counter()
        query_vector = await asyncio.to_thread(self._embeddings.embed_one, query)
        candidates = max(limit, self._settings.retrieval_candidates)

        fact_hits = self._index.search_facts(kb_id, query_vector, limit=candidates)
        page_hits = self._index.search_pages(kb_id, query_vector, limit=candidates)

        qa_matches = [
            FactMatch(fact=QAFact.from_payload(hit.payload or {}), similarity=score)
            for hit, score in self._rank(query_vector, fact_hits, limit)
        ]
        page_matches = [
            PageMatch(page=Page.from_payload(hit.payload or {}), similarity=score)
            for hit, score in self._rank(query_vector, page_hits, limit)
        ]
        logger.info(
            "retrieve.completed kb=%s facts=%s pages=%s",
            kb_id,
            len(qa_matches),
            len(page_matches),
        )
        if self._metrics:
            self._metrics.record_timing("retrieve.duration", time.perf_counter() - start)
        return RetrievalResult(qa_matches=tuple(qa_matches), page_matches=tuple(page_matches))

    def _rank(
        self,
        query_vector: Sequence[float],
        hits: Sequence[SearchResult],
        limit: int,
    ) -> list[tuple[SearchResult, float]]:
        threshold = self._settings.similarity_threshold
        scored = []
        for hit in hits:
            score = cosine_similarity(query_vector, hit.vector)
            if score >= threshold and hit.payload:
                scored.append((hit, score))
        scored.sort(key=lambda item: item[1], reverse=True)
        return scored[:limit]


__all__ = [
    "FactMatch",
    "PageMatch",
    "RetrievalResult",
    "SimilarityRetriever",
    "cosine_similarity",
]
