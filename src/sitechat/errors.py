"""Error taxonomy shared across the crawl, compile, index and answer stages."""

from __future__ import annotations

from typing import Sequence


class SiteChatError(Exception):
    """Base class for every error raised by the pipeline."""


class FetchError(SiteChatError):
    """A single URL could not be retrieved (network failure, timeout or non-2xx)."""

    def __init__(self, url: str, message: str, *, status_code: int | None = None) -> None:
        super().__init__(f"{url}: {message}")
        self.url = url
        self.status_code = status_code


class ContentTooThin(SiteChatError):
    """Extracted page text is below the minimum word count."""

    def __init__(self, url: str, word_count: int, minimum: int) -> None:
        super().__init__(f"{url}: {word_count} words (minimum {minimum})")
        self.url = url
        self.word_count = word_count
        self.minimum = minimum


class NoContentExtracted(SiteChatError):
    """A crawl finished without a single usable page."""

    def __init__(self, root_url: str, errors: Sequence[object] = ()) -> None:
        super().__init__(f"No content could be extracted from {root_url}")
        self.root_url = root_url
        self.errors = tuple(errors)


class QAGenerationFailed(SiteChatError):
    """Knowledge compilation produced no facts at all."""


class EmbeddingFailure(SiteChatError):
    """Text could not be turned into an embedding vector."""


class ExternalServiceError(SiteChatError):
    """An embedding, generation or storage backend call failed."""

    def __init__(self, service: str, message: str) -> None:
        super().__init__(f"{service}: {message}")
        self.service = service


class KnowledgeBaseNotReady(SiteChatError):
    """A query arrived for a job that has not completed."""

    def __init__(self, job_id: str, status: str | None, progress: int) -> None:
        super().__init__(f"Knowledge base {job_id} is not ready (status={status}, progress={progress})")
        self.job_id = job_id
        self.status = status
        self.progress = progress


class InvalidTransition(SiteChatError):
    """A job status change that the state machine does not allow."""


__all__ = [
    "SiteChatError",
    "FetchError",
    "ContentTooThin",
    "NoContentExtracted",
    "QAGenerationFailed",
    "EmbeddingFailure",
    "ExternalServiceError",
    "KnowledgeBaseNotReady",
    "InvalidTransition",
]
