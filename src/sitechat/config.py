"""Configuration helpers for the SiteChat service."""

from __future__ import annotations

from dataclasses import dataclass, field
import os
from pathlib import Path
from typing import TYPE_CHECKING, Any, Final

from dotenv import load_dotenv

if TYPE_CHECKING:  # pragma: no cover - type hints only
    from .observability import MetricsRecorder

load_dotenv()

OPENAI_EMBEDDING_DIMENSIONS: Final[dict[str, int]] = {
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "text-embedding-ada-002": 1536,
}

DEFAULT_EXCLUDE_PATTERNS: Final[tuple[str, ...]] = (
    "/admin",
    "/login",
    "/api",
    ".pdf",
    ".jpg",
    ".png",
    ".gif",
    ".css",
    ".js",
)

_DEFAULT_EMBEDDING_MODEL: Final[str] = "sentence-transformers/all-MiniLM-L6-v2"
_DEFAULT_QDRANT_URL: Final[str] = "http://localhost:6333"
_DEFAULT_QDRANT_COLLECTION: Final[str] = "sitechat"
_DEFAULT_CHAT_BACKEND: Final[str] = "openai"
_DEFAULT_OPENAI_CHAT_MODEL: Final[str] = "gpt-4o-mini"
_DEFAULT_OLLAMA_URL: Final[str] = "http://localhost:11434"
_DEFAULT_OLLAMA_MODEL: Final[str] = "llama3.1:8b"
_DEFAULT_OLLAMA_TIMEOUT: Final[float] = 60.0
_DEFAULT_DATA_DIR: Final[str] = "data"
_DEFAULT_USER_AGENT: Final[str] = "SiteChat-Bot/1.0.0"
_DEFAULT_CRAWLER_TIMEOUT: Final[float] = 30.0
_DEFAULT_CRAWLER_DELAY: Final[float] = 1.0
_DEFAULT_CRAWLER_MAX_PAGES: Final[int] = 50
_DEFAULT_REQUEST_MAX_PAGES: Final[int] = 20
_DEFAULT_SITEMAP_MAX_DEPTH: Final[int] = 3
_DEFAULT_SITEMAP_MAX_FETCHES: Final[int] = 25
_DEFAULT_MIN_WORD_COUNT: Final[int] = 20
_DEFAULT_COMPILER_BATCH_SIZE: Final[int] = 2
_DEFAULT_COMPILER_BATCH_DELAY: Final[float] = 1.5
_DEFAULT_COMPILER_PAGE_CHARS: Final[int] = 1500
_DEFAULT_OVERVIEW_PAGES: Final[int] = 3
_DEFAULT_OVERVIEW_PAGE_CHARS: Final[int] = 800
_DEFAULT_FACT_CONFIDENCE: Final[float] = 0.8
_DEFAULT_OVERVIEW_FACT_CONFIDENCE: Final[float] = 0.85
_DEFAULT_QA_TEMPERATURE: Final[float] = 0.3
_DEFAULT_QA_MAX_TOKENS: Final[int] = 2000
_DEFAULT_INDEXER_DELAY: Final[float] = 0.1
_DEFAULT_INDEXER_BATCH_SIZE: Final[int] = 32
_DEFAULT_PAGE_EMBEDDING_CHARS: Final[int] = 2000
_DEFAULT_EMBEDDING_MAX_CHARS: Final[int] = 8000
_DEFAULT_SIMILARITY_THRESHOLD: Final[float] = 0.7
_DEFAULT_RETRIEVAL_LIMIT: Final[int] = 3
_DEFAULT_RETRIEVAL_CANDIDATES: Final[int] = 20
_DEFAULT_CONTEXT_MAX_CHARS: Final[int] = 4000
_DEFAULT_PAGE_EXCERPT_CHARS: Final[int] = 400
_DEFAULT_MAX_SOURCES: Final[int] = 5
_DEFAULT_CHAT_TEMPERATURE: Final[float] = 0.7
_DEFAULT_CHAT_MAX_TOKENS: Final[int] = 500
_DEFAULT_SUMMARY_PAGES: Final[int] = 3
_DEFAULT_SUMMARY_PAGE_CHARS: Final[int] = 1000
_DEFAULT_SUMMARY_MAX_TOKENS: Final[int] = 800
_DEFAULT_INTERACTION_RETENTION_DAYS: Final[int] = 90


def _env_optional_bool(name: str) -> bool | None:
    """Read an optional boolean environment variable."""

    raw = os.getenv(name)
    if raw is None:
        return None
    value = raw.strip().lower()
    if value in {"1", "true", "yes", "on"}:
        return True
    if value in {"0", "false", "no", "off"}:
        return False
    msg = f"Environment variable {name} must be a boolean value (true/false)."
    raise ValueError(msg)


def _env_optional_int(name: str) -> int | None:
    """Read an optional integer environment variable."""

    raw = os.getenv(name)
    if raw is None:
        return None
    value = raw.strip()
    if not value:
        return None
    try:
        return int(value)
    except ValueError as exc:
        raise ValueError(f"Environment variable {name} must be an integer") from exc


def _env_optional_float(name: str) -> float | None:
    """Read an optional float environment variable."""

    raw = os.getenv(name)
    if raw is None:
        return None
    value = raw.strip()
    if not value:
        return None
    try:
        return float(value)
    except ValueError as exc:
        raise ValueError(f"Environment variable {name} must be a float") from exc


def _env_float(name: str, default: float) -> float:
    """Read a float environment variable with a fallback (preserving zero)."""

    value = _env_optional_float(name)
    return default if value is None else value


def _env_int(name: str, default: int) -> int:
    value = _env_optional_int(name)
    return default if value is None else value


def _env_bool(name: str, default: bool) -> bool:
    """Read a boolean environment variable with a fallback."""

    value = _env_optional_bool(name)
    if value is None:
        return default
    return value


def _env_list(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    """Read a comma separated environment variable."""

    raw = os.getenv(name)
    if raw is None:
        return default
    return tuple(item.strip() for item in raw.split(",") if item.strip())


@dataclass(slots=True)
class Settings:
    """Runtime settings loaded from environment variables."""

    embedding_model: str = _DEFAULT_EMBEDDING_MODEL
    openai_api_key: str | None = None
    qdrant_url: str = _DEFAULT_QDRANT_URL
    qdrant_api_key: str | None = None
    qdrant_collection: str = _DEFAULT_QDRANT_COLLECTION
    chat_backend: str = _DEFAULT_CHAT_BACKEND
    openai_chat_model: str = _DEFAULT_OPENAI_CHAT_MODEL
    ollama_base_url: str = _DEFAULT_OLLAMA_URL
    ollama_model: str = _DEFAULT_OLLAMA_MODEL
    ollama_request_timeout: float = _DEFAULT_OLLAMA_TIMEOUT
    data_dir: str = _DEFAULT_DATA_DIR
    crawler_user_agent: str = _DEFAULT_USER_AGENT
    crawler_timeout: float = _DEFAULT_CRAWLER_TIMEOUT
    crawler_delay: float = _DEFAULT_CRAWLER_DELAY
    crawler_max_pages: int = _DEFAULT_CRAWLER_MAX_PAGES
    default_max_pages: int = _DEFAULT_REQUEST_MAX_PAGES
    crawler_exclude_patterns: tuple[str, ...] = field(default_factory=lambda: DEFAULT_EXCLUDE_PATTERNS)
    crawler_keep_query: bool = False
    sitemap_max_depth: int = _DEFAULT_SITEMAP_MAX_DEPTH
    sitemap_max_fetches: int = _DEFAULT_SITEMAP_MAX_FETCHES
    min_word_count: int = _DEFAULT_MIN_WORD_COUNT
    compiler_batch_size: int = _DEFAULT_COMPILER_BATCH_SIZE
    compiler_batch_delay: float = _DEFAULT_COMPILER_BATCH_DELAY
    compiler_page_chars: int = _DEFAULT_COMPILER_PAGE_CHARS
    overview_pages: int = _DEFAULT_OVERVIEW_PAGES
    overview_page_chars: int = _DEFAULT_OVERVIEW_PAGE_CHARS
    default_fact_confidence: float = _DEFAULT_FACT_CONFIDENCE
    overview_fact_confidence: float = _DEFAULT_OVERVIEW_FACT_CONFIDENCE
    qa_temperature: float = _DEFAULT_QA_TEMPERATURE
    qa_max_tokens: int = _DEFAULT_QA_MAX_TOKENS
    indexer_delay: float = _DEFAULT_INDEXER_DELAY
    indexer_batch_size: int = _DEFAULT_INDEXER_BATCH_SIZE
    page_embedding_chars: int = _DEFAULT_PAGE_EMBEDDING_CHARS
    embedding_max_chars: int = _DEFAULT_EMBEDDING_MAX_CHARS
    similarity_threshold: float = _DEFAULT_SIMILARITY_THRESHOLD
    retrieval_limit: int = _DEFAULT_RETRIEVAL_LIMIT
    retrieval_candidates: int = _DEFAULT_RETRIEVAL_CANDIDATES
    context_max_chars: int = _DEFAULT_CONTEXT_MAX_CHARS
    page_excerpt_chars: int = _DEFAULT_PAGE_EXCERPT_CHARS
    max_sources: int = _DEFAULT_MAX_SOURCES
    chat_temperature: float = _DEFAULT_CHAT_TEMPERATURE
    chat_max_tokens: int = _DEFAULT_CHAT_MAX_TOKENS
    summary_pages: int = _DEFAULT_SUMMARY_PAGES
    summary_page_chars: int = _DEFAULT_SUMMARY_PAGE_CHARS
    summary_max_tokens: int = _DEFAULT_SUMMARY_MAX_TOKENS
    interaction_logging_enabled: bool = True
    interaction_retention_days: int = _DEFAULT_INTERACTION_RETENTION_DAYS
    interaction_log_dir: str | None = None
    observability_metrics_enabled: bool = True
    observability_namespace: str = "sitechat"
    observability_prometheus_enabled: bool = False

    @classmethod
    def from_env(cls) -> "Settings":
        """Create settings by reading environment variables."""

        return cls(
            embedding_model=os.getenv("EMBEDDING_MODEL", _DEFAULT_EMBEDDING_MODEL),
            openai_api_key=os.getenv("OPENAI_API_KEY"),
            qdrant_url=os.getenv("QDRANT_URL", _DEFAULT_QDRANT_URL),
            qdrant_api_key=os.getenv("QDRANT_API_KEY"),
            qdrant_collection=os.getenv("QDRANT_COLLECTION", _DEFAULT_QDRANT_COLLECTION),
            chat_backend=os.getenv("CHAT_BACKEND", _DEFAULT_CHAT_BACKEND),
            openai_chat_model=os.getenv("OPENAI_CHAT_MODEL", _DEFAULT_OPENAI_CHAT_MODEL),
            ollama_base_url=os.getenv("OLLAMA_BASE_URL", _DEFAULT_OLLAMA_URL),
            ollama_model=os.getenv("OLLAMA_MODEL", _DEFAULT_OLLAMA_MODEL),
            ollama_request_timeout=_env_float("OLLAMA_TIMEOUT", _DEFAULT_OLLAMA_TIMEOUT),
            data_dir=os.getenv("DATA_DIR", _DEFAULT_DATA_DIR),
            crawler_user_agent=os.getenv("CRAWLER_USER_AGENT", _DEFAULT_USER_AGENT),
            crawler_timeout=_env_float("CRAWLER_TIMEOUT", _DEFAULT_CRAWLER_TIMEOUT),
            crawler_delay=max(0.0, _env_float("CRAWLER_DELAY", _DEFAULT_CRAWLER_DELAY)),
            crawler_max_pages=max(1, _env_int("CRAWLER_MAX_PAGES", _DEFAULT_CRAWLER_MAX_PAGES)),
            default_max_pages=max(1, _env_int("CRAWLER_DEFAULT_MAX_PAGES", _DEFAULT_REQUEST_MAX_PAGES)),
            crawler_exclude_patterns=_env_list("CRAWLER_EXCLUDE_PATTERNS", DEFAULT_EXCLUDE_PATTERNS),
            crawler_keep_query=_env_bool("CRAWLER_KEEP_QUERY", False),
            sitemap_max_depth=max(0, _env_int("SITEMAP_MAX_DEPTH", _DEFAULT_SITEMAP_MAX_DEPTH)),
            sitemap_max_fetches=max(1, _env_int("SITEMAP_MAX_FETCHES", _DEFAULT_SITEMAP_MAX_FETCHES)),
            min_word_count=max(0, _env_int("MIN_WORD_COUNT", _DEFAULT_MIN_WORD_COUNT)),
            compiler_batch_size=max(1, _env_int("COMPILER_BATCH_SIZE", _DEFAULT_COMPILER_BATCH_SIZE)),
            compiler_batch_delay=max(0.0, _env_float("COMPILER_BATCH_DELAY", _DEFAULT_COMPILER_BATCH_DELAY)),
            compiler_page_chars=_env_int("COMPILER_PAGE_CHARS", _DEFAULT_COMPILER_PAGE_CHARS),
            overview_pages=max(0, _env_int("OVERVIEW_PAGES", _DEFAULT_OVERVIEW_PAGES)),
            overview_page_chars=_env_int("OVERVIEW_PAGE_CHARS", _DEFAULT_OVERVIEW_PAGE_CHARS),
            default_fact_confidence=_env_float("DEFAULT_FACT_CONFIDENCE", _DEFAULT_FACT_CONFIDENCE),
            overview_fact_confidence=_env_float(
                "OVERVIEW_FACT_CONFIDENCE", _DEFAULT_OVERVIEW_FACT_CONFIDENCE
            ),
            qa_temperature=_env_float("QA_TEMPERATURE", _DEFAULT_QA_TEMPERATURE),
            qa_max_tokens=_env_int("QA_MAX_TOKENS", _DEFAULT_QA_MAX_TOKENS),
            indexer_delay=max(0.0, _env_float("INDEXER_DELAY", _DEFAULT_INDEXER_DELAY)),
            indexer_batch_size=max(1, _env_int("INDEXER_BATCH_SIZE", _DEFAULT_INDEXER_BATCH_SIZE)),
            page_embedding_chars=_env_int("PAGE_EMBEDDING_CHARS", _DEFAULT_PAGE_EMBEDDING_CHARS),
            embedding_max_chars=_env_int("EMBEDDING_MAX_CHARS", _DEFAULT_EMBEDDING_MAX_CHARS),
            similarity_threshold=_env_float("SIMILARITY_THRESHOLD", _DEFAULT_SIMILARITY_THRESHOLD),
            retrieval_limit=max(1, _env_int("RETRIEVAL_LIMIT", _DEFAULT_RETRIEVAL_LIMIT)),
            retrieval_candidates=max(1, _env_int("RETRIEVAL_CANDIDATES", _DEFAULT_RETRIEVAL_CANDIDATES)),
            context_max_chars=max(1, _env_int("CONTEXT_MAX_CHARS", _DEFAULT_CONTEXT_MAX_CHARS)),
            page_excerpt_chars=_env_int("PAGE_EXCERPT_CHARS", _DEFAULT_PAGE_EXCERPT_CHARS),
            max_sources=max(1, _env_int("MAX_SOURCES", _DEFAULT_MAX_SOURCES)),
            chat_temperature=_env_float("CHAT_TEMPERATURE", _DEFAULT_CHAT_TEMPERATURE),
            chat_max_tokens=_env_int("CHAT_MAX_TOKENS", _DEFAULT_CHAT_MAX_TOKENS),
            summary_pages=max(1, _env_int("SUMMARY_PAGES", _DEFAULT_SUMMARY_PAGES)),
            summary_page_chars=_env_int("SUMMARY_PAGE_CHARS", _DEFAULT_SUMMARY_PAGE_CHARS),
            summary_max_tokens=_env_int("SUMMARY_MAX_TOKENS", _DEFAULT_SUMMARY_MAX_TOKENS),
            interaction_logging_enabled=_env_bool("INTERACTION_LOGGING_ENABLED", True),
            interaction_retention_days=max(
                0, _env_int("INTERACTION_RETENTION_DAYS", _DEFAULT_INTERACTION_RETENTION_DAYS)
            ),
            interaction_log_dir=os.getenv("INTERACTION_LOG_DIR"),
            observability_metrics_enabled=_env_bool("OBSERVABILITY_METRICS_ENABLED", True),
            observability_namespace=os.getenv("OBSERVABILITY_NAMESPACE", "sitechat"),
            observability_prometheus_enabled=_env_bool("OBSERVABILITY_PROMETHEUS_ENABLED", False),
        )

    @property
    def is_openai_backend(self) -> bool:
        """Return True when the configured embedding backend is OpenAI."""

        return self.embedding_model.strip().lower() in OPENAI_EMBEDDING_DIMENSIONS

    @property
    def is_ollama_embedding_backend(self) -> bool:
        """Return True when embeddings should be generated via an Ollama-hosted model."""

        return self.embedding_model.strip().lower().startswith("ollama:")

    @property
    def is_huggingface_backend(self) -> bool:
        """Return True when the configured embedding backend is a local HuggingFace model."""

        return not self.is_openai_backend and not self.is_ollama_embedding_backend

    @property
    def ollama_embedding_model(self) -> str | None:
        """Return the Ollama embedding model name without the prefix when configured."""

        if not self.is_ollama_embedding_backend:
            return None
        _, _, name = self.embedding_model.partition(":")
        return name.strip() or None

    @property
    def required_openai_model(self) -> str:
        """Return the OpenAI embedding model identifier, validating the selection."""

        if not self.is_openai_backend:
            msg = "OpenAI model requested but embedding_model is not an OpenAI model."
            raise ValueError(msg)
        return self.embedding_model.strip().lower()

    @property
    def is_openai_chat_backend(self) -> bool:
        """Return True when using the OpenAI Responses API for generation."""

        return self.chat_backend.lower() == "openai"

    @property
    def is_ollama_chat_backend(self) -> bool:
        """Return True when generation runs against an Ollama-hosted model."""

        return self.chat_backend.lower() == "ollama"

    @property
    def pages_collection(self) -> str:
        return f"{self.qdrant_collection}_pages"

    @property
    def facts_collection(self) -> str:
        return f"{self.qdrant_collection}_facts"

    def qdrant_client_kwargs(self) -> dict[str, Any]:
        """Configuration arguments for instantiating a Qdrant client."""

        kwargs: dict[str, Any] = {"url": self.qdrant_url}
        if self.qdrant_api_key:
            kwargs["api_key"] = self.qdrant_api_key
        return kwargs

    def build_metrics_recorder(self) -> "MetricsRecorder":
        """Instantiate the configured metrics recorder."""

        from .observability import MetricsRecorder

        return MetricsRecorder(
            enabled=self.observability_metrics_enabled,
            namespace=self.observability_namespace,
            prometheus_enabled=self.observability_prometheus_enabled,
        )

    def jobs_path(self) -> Path:
        """Return the directory holding persisted generation jobs."""

        return Path(self.data_dir).resolve() / "jobs"

    def interaction_log_path(self) -> Path:
        """Return the directory where interaction logs should be stored."""

        if self.interaction_log_dir:
            return Path(self.interaction_log_dir).expanduser().resolve()
        return Path(self.data_dir).resolve() / "interactions"
