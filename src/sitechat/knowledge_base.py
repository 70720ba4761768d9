"""Per-knowledge-base access to the shared page and fact collections."""

from __future__ import annotations

import logging
from typing import Iterator, Sequence
from uuid import NAMESPACE_URL, uuid5

from qdrant_client import QdrantClient, models

from .config import Settings
from .models import Page, QAFact
from .vector_store import QdrantVectorStore, SearchResult, VectorRecord

logger = logging.getLogger(__name__)

KB_FIELD = "knowledge_base_id"


def _kb_filter(kb_id: str, **extra: str) -> models.Filter:
    conditions = [models.FieldCondition(key=KB_FIELD, match=models.MatchValue(value=kb_id))]
    for key, value in extra.items():
        conditions.append(models.FieldCondition(key=key, match=models.MatchValue(value=value)))
    return models.Filter(must=conditions)


def page_point_id(kb_id: str, url: str) -> str:
    return str(uuid5(NAMESPACE_URL, f"{kb_id}:page:{url}"))


def fact_point_id(kb_id: str, fact: QAFact) -> str:
    return str(uuid5(NAMESPACE_URL, f"{kb_id}:fact:{fact.question}\n{fact.answer}"))


class KnowledgeBaseIndex:
    """Store pages and facts with their vectors, scoped by knowledge base id.

    Every knowledge base shares the two collections; each point carries the
    owning ``knowledge_base_id`` in its payload and every read is filtered on it.
    """

    def __init__(self, pages: QdrantVectorStore, facts: QdrantVectorStore) -> None:
        self._pages = pages
        self._facts = facts

    @classmethod
    def create(
        cls,
        client: QdrantClient,
        *,
        pages_collection: str,
        facts_collection: str,
        vector_size: int,
    ) -> "KnowledgeBaseIndex":
        pages = QdrantVectorStore(
            client,
            pages_collection,
            vector_size=vector_size,
            indexed_fields=(KB_FIELD, "url"),
        )
        facts = QdrantVectorStore(
            client,
            facts_collection,
            vector_size=vector_size,
            indexed_fields=(KB_FIELD, "category"),
        )
        for store in (pages, facts):
            store.ensure_collection()
            store.ensure_payload_indexes()
        return cls(pages, facts)

    @classmethod
    def from_settings(cls, settings: Settings, *, vector_size: int) -> "KnowledgeBaseIndex":
        client = QdrantClient(**settings.qdrant_client_kwargs())
        return cls.create(
            client,
            pages_collection=settings.pages_collection,
            facts_collection=settings.facts_collection,
            vector_size=vector_size,
        )

    @property
    def vector_size(self) -> int:
        return self._pages.vector_size

    # Writes -----------------------------------------------------------

    def add_pages(self, kb_id: str, items: Sequence[tuple[Page, Sequence[float]]]) -> int:
        records = [
            VectorRecord(
                id=page_point_id(kb_id, page.url),
                vector=vector,
                payload={KB_FIELD: kb_id, **page.to_payload()},
            )
            for page, vector in items
        ]
        self._pages.upsert(records)
        return len(records)

    def add_facts(self, kb_id: str, items: Sequence[tuple[QAFact, Sequence[float]]]) -> int:
        records = [
            VectorRecord(
                id=fact_point_id(kb_id, fact),
                vector=vector,
                payload={KB_FIELD: kb_id, **fact.to_payload()},
            )
            for fact, vector in items
        ]
        self._facts.upsert(records)
        return len(records)

    def purge(self, kb_id: str) -> None:
        """Delete every page and fact belonging to the knowledge base."""

        flt = _kb_filter(kb_id)
        self._pages.delete_by_filter(flt)
        self._facts.delete_by_filter(flt)
        logger.info("knowledge_base.purged kb=%s", kb_id)

    # Reads ------------------------------------------------------------

    def search_pages(self, kb_id: str, vector: Sequence[float], *, limit: int) -> list[SearchResult]:
        return self._pages.search(vector, limit=limit, query_filter=_kb_filter(kb_id), with_vectors=True)

    def search_facts(self, kb_id: str, vector: Sequence[float], *, limit: int) -> list[SearchResult]:
        return self._facts.search(vector, limit=limit, query_filter=_kb_filter(kb_id), with_vectors=True)

    def iter_pages(self, kb_id: str) -> Iterator[Page]:
        for payload in self._pages.iter_payloads(scroll_filter=_kb_filter(kb_id)):
            yield Page.from_payload(payload)

    def iter_facts(self, kb_id: str, *, category: str | None = None) -> Iterator[QAFact]:
        extra = {"category": category} if category else {}
        for payload in self._facts.iter_payloads(scroll_filter=_kb_filter(kb_id, **extra)):
            yield QAFact.from_payload(payload)

    def count_pages(self, kb_id: str) -> int:
        return self._pages.count(_kb_filter(kb_id))

    def count_facts(self, kb_id: str) -> int:
        return self._facts.count(_kb_filter(kb_id))


__all__ = ["KnowledgeBaseIndex", "KB_FIELD", "fact_point_id", "page_point_id"]
