"""Embedding service supporting OpenAI, Ollama and SentenceTransformers backends."""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from enum import Enum, auto
from typing import TYPE_CHECKING, List

import httpx
from openai import OpenAI, OpenAIError

from .config import OPENAI_EMBEDDING_DIMENSIONS, Settings
from .errors import EmbeddingFailure, ExternalServiceError

if TYPE_CHECKING:  # pragma: no cover - type hints only
    from sentence_transformers import SentenceTransformer

logger = logging.getLogger(__name__)

_WHITESPACE_RE = re.compile(r"\s+")


class EmbeddingBackend(Enum):
    """Supported embedding backends."""

    OPENAI = auto()
    HUGGINGFACE = auto()
    OLLAMA = auto()


def prepare_embedding_text(text: str, max_chars: int) -> str:
    """Collapse whitespace and cap the text at ``max_chars`` characters.

    Raises :class:`EmbeddingFailure` when nothing is left to embed.
    """

    cleaned = _WHITESPACE_RE.sub(" ", text or "").strip()
    if not cleaned:
        raise EmbeddingFailure("Cannot embed empty text")
    if max_chars > 0 and len(cleaned) > max_chars:
        cleaned = cleaned[:max_chars]
    return cleaned


class EmbeddingService:
    """High-level interface for embedding generation."""

    def __init__(self, settings: Settings, *, validate: bool = True) -> None:
        self._settings = settings
        if settings.is_openai_backend:
            backend = EmbeddingBackend.OPENAI
        elif settings.is_ollama_embedding_backend:
            backend = EmbeddingBackend.OLLAMA
        else:
            backend = EmbeddingBackend.HUGGINGFACE

        self._backend = backend
        self._dimension: int | None = None
        self._max_chars = settings.embedding_max_chars
        self._openai_client: OpenAI | None = None
        self._hf_model: SentenceTransformer | None = None
        self._ollama_model: str | None = None
        self._ollama_client: httpx.Client | None = None

        if backend is EmbeddingBackend.OPENAI:
            self._setup_openai(validate)
        elif backend is EmbeddingBackend.OLLAMA:
            self._setup_ollama()
        else:
            self._setup_huggingface(validate)

    @classmethod
    def from_env(cls, *, validate: bool = True) -> "EmbeddingService":
        """Create the embedding service from environment configuration."""

        return cls(Settings.from_env(), validate=validate)

    @property
    def backend(self) -> EmbeddingBackend:
        return self._backend

    @property
    def dimension(self) -> int:
        """Return the embedding dimensionality for the active backend."""

        if self._dimension is None:
            msg = "Embedding dimension is not initialised."
            raise RuntimeError(msg)
        return self._dimension

    @property
    def model_identifier(self) -> str:
        return self._settings.embedding_model

    def embed(self, texts: Sequence[str]) -> List[List[float]]:
        """Generate embeddings for a sequence of texts.

        Inputs are whitespace-normalised and capped before submission. Backend
        failures surface as :class:`ExternalServiceError`.
        """

        if not texts:
            return []
        prepared = [prepare_embedding_text(text, self._max_chars) for text in texts]

        if self._backend is EmbeddingBackend.OPENAI:
            assert self._openai_client is not None  # for mypy
            try:
                result = self._openai_client.embeddings.create(
                    model=self._settings.required_openai_model,
                    input=prepared,
                )
            except OpenAIError as exc:
                logger.error("embedding.openai.error error=%s", exc)
                raise ExternalServiceError("openai-embeddings", str(exc)) from exc
            return [list(item.embedding) for item in result.data]

        if self._backend is EmbeddingBackend.OLLAMA:
            return [self._ollama_embed(text) for text in prepared]

        assert self._hf_model is not None
        try:
            vectors = self._hf_model.encode(prepared, show_progress_bar=False)
        except (RuntimeError, ValueError) as exc:
            raise ExternalServiceError("sentence-transformers", str(exc)) from exc
        if hasattr(vectors, "tolist"):
            return vectors.tolist()
        return [list(vector) for vector in vectors]

    def embed_one(self, text: str) -> List[float]:
        """Generate an embedding for a single piece of text."""

        vectors = self.embed([text])
        if not vectors or not vectors[0]:
            raise EmbeddingFailure("Embedding backend returned no vector")
        return vectors[0]

    def close(self) -> None:
        """Release any underlying client resources."""

        if self._ollama_client is not None:
            self._ollama_client.close()
            self._ollama_client = None

    # Internal helpers -------------------------------------------------

    def _setup_openai(self, validate: bool) -> None:
        api_key = self._settings.openai_api_key or None
        if not api_key:
            msg = "OPENAI_API_KEY must be set when using the OpenAI embedding backend."
            raise ValueError(msg)

        model = self._settings.required_openai_model
        self._openai_client = OpenAI(api_key=api_key)
        self._dimension = OPENAI_EMBEDDING_DIMENSIONS[model]

        if validate:
            self._openai_client.models.retrieve(model)

    def _setup_huggingface(self, validate: bool) -> None:
        from sentence_transformers import SentenceTransformer

        model_name = self._settings.embedding_model
        self._hf_model = SentenceTransformer(model_name)
        self._dimension = int(self._hf_model.get_sentence_embedding_dimension())

        if validate and self._dimension <= 0:
            msg = f"Unexpected embedding dimension ({self._dimension}) for model '{model_name}'."
            raise ValueError(msg)

    def _setup_ollama(self) -> None:
        model = self._settings.ollama_embedding_model
        if not model:
            msg = "EMBEDDING_MODEL must include an Ollama model identifier (e.g. 'ollama:nomic-embed-text')."
            raise ValueError(msg)

        self._ollama_model = model
        self._ollama_client = httpx.Client(
            base_url=self._settings.ollama_base_url.rstrip("/"),
            timeout=self._settings.ollama_request_timeout,
        )

        vector = self._ollama_embed("__dimension_probe__")
        if not vector:
            msg = f"Ollama embedding backend '{model}' returned no data."
            raise ValueError(msg)
        self._dimension = len(vector)

    def _ollama_embed(self, text: str) -> List[float]:
        if self._ollama_client is None or not self._ollama_model:
            msg = "Ollama embedding backend is not initialised."
            raise RuntimeError(msg)

        payload = {"model": self._ollama_model, "prompt": text}
        try:
            response = self._ollama_client.post("/api/embeddings", json=payload)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.error("embedding.ollama.error model=%s error=%s", self._ollama_model, exc)
            raise ExternalServiceError("ollama-embeddings", str(exc)) from exc

        try:
            data = response.json()
        except ValueError as exc:
            logger.error("embedding.ollama.invalid_json model=%s error=%s", self._ollama_model, exc)
            raise ExternalServiceError("ollama-embeddings", "response was not valid JSON") from exc
        if not isinstance(data, dict):
            raise ExternalServiceError("ollama-embeddings", "response was not a JSON object")

        embedding = data.get("embedding")
        if not embedding:
            raise EmbeddingFailure("Ollama embedding response did not include an 'embedding' field.")

        try:
            vector = [float(value) for value in embedding]
        except (TypeError, ValueError) as exc:
            raise EmbeddingFailure("Ollama embedding response contained non-numeric values.") from exc
        if self._dimension is not None and len(vector) != self._dimension:
            msg = f"Ollama embedding dimension changed from {self._dimension} to {len(vector)}."
            raise EmbeddingFailure(msg)
        return vector


__all__ = ["EmbeddingBackend", "EmbeddingService", "prepare_embedding_text"]
