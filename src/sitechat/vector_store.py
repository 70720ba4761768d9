"""Qdrant vector store helpers."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable, List, Sequence

from qdrant_client import QdrantClient, models

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class VectorRecord:
    """Payload representing a vector to be stored in Qdrant."""

    id: int | str
    vector: Sequence[float]
    payload: dict[str, Any] | None = None


@dataclass(slots=True)
class SearchResult:
    """Result item returned from a similarity search."""

    id: int | str
    score: float
    payload: dict[str, Any] | None
    vector: list[float] | None = None


class QdrantVectorStore:
    """Thin wrapper over one Qdrant collection with a fixed vector size."""

    def __init__(
        self,
        client: QdrantClient,
        collection_name: str,
        *,
        vector_size: int,
        distance: models.Distance = models.Distance.COSINE,
        indexed_fields: Sequence[str] = (),
    ) -> None:
        if vector_size <= 0:
            msg = "vector_size must be a positive integer"
            raise ValueError(msg)

        self._client = client
        self._collection_name = collection_name
        self._vector_size = vector_size
        self._distance = distance
        self._indexed_fields = tuple(indexed_fields)

    @property
    def collection_name(self) -> str:
        return self._collection_name

    @property
    def vector_size(self) -> int:
        return self._vector_size

    def ensure_collection(self) -> None:
        """Create the collection, recreating it when the stored vector size differs."""

        if not self._client.collection_exists(self._collection_name):
            self._create_collection()
            return

        info = self._client.get_collection(self._collection_name)
        existing_size = info.config.params.vectors.size
        if existing_size != self._vector_size:
            logger.warning(
                "vector_store.recreate collection=%s existing_size=%s expected_size=%s",
                self._collection_name,
                existing_size,
                self._vector_size,
            )
            self._client.delete_collection(self._collection_name)
            self._create_collection()

    def ensure_payload_indexes(self) -> None:
        """Index the payload fields used for filtering."""

        for field_name in self._indexed_fields:
            try:
                self._client.create_payload_index(
                    collection_name=self._collection_name,
                    field_name=field_name,
                    field_schema=models.PayloadSchemaType.KEYWORD,
                )
            except Exception as exc:  # pragma: no cover - remote server specifics
                if "exists" in str(exc).lower():
                    continue
                logger.warning(
                    "vector_store.payload_index.failed collection=%s field=%s error=%s",
                    self._collection_name,
                    field_name,
                    exc,
                )

    def upsert(self, records: Sequence[VectorRecord], *, wait: bool = True) -> None:
        """Insert or update vectors in the collection."""

        if not records:
            return

        ids: list[int | str] = []
        vectors: list[list[float]] = []
        payloads: list[dict[str, Any]] = []
        for record in records:
            vector_list = [float(value) for value in record.vector]
            if len(vector_list) != self._vector_size:
                msg = (
                    f"Vector for id {record.id!r} has length {len(vector_list)}, "
                    f"expected {self._vector_size}."
                )
                raise ValueError(msg)
            ids.append(record.id)
            vectors.append(vector_list)
            payloads.append(record.payload or {})

        self._client.upsert(
            collection_name=self._collection_name,
            points=models.Batch(ids=ids, vectors=vectors, payloads=payloads),
            wait=wait,
        )

    def search(
        self,
        vector: Sequence[float],
        *,
        limit: int = 5,
        query_filter: models.Filter | None = None,
        score_threshold: float | None = None,
        with_vectors: bool = False,
    ) -> List[SearchResult]:
        """Search for similar vectors in the collection."""

        query_vector = list(vector)
        if len(query_vector) != self._vector_size:
            msg = f"Query vector has length {len(query_vector)}, expected {self._vector_size}."
            raise ValueError(msg)

        response = self._client.query_points(
            collection_name=self._collection_name,
            query=query_vector,
            query_filter=query_filter,
            limit=limit,
            score_threshold=score_threshold,
            with_payload=True,
            with_vectors=with_vectors,
        )

        results: list[SearchResult] = []
        for point in response.points:
            stored = point.vector if with_vectors and isinstance(point.vector, list) else None
            results.append(
                SearchResult(
                    id=point.id,
                    score=point.score,
                    payload=dict(point.payload) if point.payload is not None else None,
                    vector=[float(value) for value in stored] if stored is not None else None,
                )
            )
        return results

    def iter_payloads(
        self,
        *,
        scroll_filter: models.Filter | None = None,
        batch_size: int = 256,
    ) -> Iterable[dict[str, Any]]:
        """Yield payload dictionaries for points that match the optional filter."""

        offset = None
        while True:
            points, offset = self._client.scroll(
                collection_name=self._collection_name,
                scroll_filter=scroll_filter,
                with_payload=True,
                limit=batch_size,
                offset=offset,
            )
            for point in points:
                if point.payload:
                    yield dict(point.payload)
            if offset is None:
                break

    def count(self, count_filter: models.Filter | None = None) -> int:
        """Return the number of stored vectors, optionally restricted by a filter."""

        return self._client.count(self._collection_name, count_filter=count_filter, exact=True).count

    def delete_by_filter(self, flt: models.Filter) -> models.UpdateResult:
        """Remove vectors matching the provided Qdrant filter."""

        return self._client.delete(
            collection_name=self._collection_name,
            points_selector=models.FilterSelector(filter=flt),
        )

    def _create_collection(self) -> None:
        self._client.create_collection(
            collection_name=self._collection_name,
            vectors_config=models.VectorParams(size=self._vector_size, distance=self._distance),
        )


__all__ = ["QdrantVectorStore", "SearchResult", "VectorRecord"]
