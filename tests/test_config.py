from __future__ import annotations

from pathlib import Path

import pytest

from sitechat.config import DEFAULT_EXCLUDE_PATTERNS, Settings


def test_defaults_from_empty_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("EMBEDDING_MODEL", "CRAWLER_MAX_PAGES", "SIMILARITY_THRESHOLD", "CRAWLER_EXCLUDE_PATTERNS"):
        monkeypatch.delenv(name, raising=False)

    settings = Settings.from_env()

    assert settings.crawler_max_pages == 50
    assert settings.similarity_threshold == 0.7
    assert settings.crawler_exclude_patterns == DEFAULT_EXCLUDE_PATTERNS
    assert settings.is_huggingface_backend


def test_environment_overrides(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("DATA_DIR", str(tmp_path))
    monkeypatch.setenv("CRAWLER_MAX_PAGES", "0")
    monkeypatch.setenv("CRAWLER_DELAY", "-2")
    monkeypatch.setenv("SIMILARITY_THRESHOLD", "0")
    monkeypatch.setenv("CRAWLER_EXCLUDE_PATTERNS", "/private, .zip ,,")
    monkeypatch.setenv("INTERACTION_LOGGING_ENABLED", "off")
    monkeypatch.setenv("QDRANT_COLLECTION", "kb")

    settings = Settings.from_env()

    assert settings.crawler_max_pages == 1
    assert settings.crawler_delay == 0.0
    assert settings.similarity_threshold == 0.0
    assert settings.crawler_exclude_patterns == ("/private", ".zip")
    assert settings.interaction_logging_enabled is False
    assert settings.pages_collection == "kb_pages"
    assert settings.facts_collection == "kb_facts"
    assert settings.jobs_path() == tmp_path.resolve() / "jobs"
    assert settings.interaction_log_path() == tmp_path.resolve() / "interactions"


@pytest.mark.parametrize(
    ("name", "value"),
    [
        ("CRAWLER_MAX_PAGES", "lots"),
        ("SIMILARITY_THRESHOLD", "high"),
        ("INTERACTION_LOGGING_ENABLED", "perhaps"),
    ],
)
def test_malformed_values_raise(monkeypatch: pytest.MonkeyPatch, name: str, value: str) -> None:
    monkeypatch.setenv(name, value)

    with pytest.raises(ValueError, match=name):
        Settings.from_env()


def test_backend_selection() -> None:
    openai = Settings(embedding_model="Text-Embedding-3-Large")
    ollama = Settings(embedding_model="ollama:nomic-embed-text")

    assert openai.is_openai_backend
    assert openai.required_openai_model == "text-embedding-3-large"
    assert ollama.is_ollama_embedding_backend
    assert ollama.ollama_embedding_model == "nomic-embed-text"
    with pytest.raises(ValueError):
        ollama.required_openai_model
    assert Settings(chat_backend="Ollama").is_ollama_chat_backend
    assert not Settings(chat_backend="Ollama").is_openai_chat_backend


def test_qdrant_kwargs_include_api_key_only_when_set() -> None:
    assert Settings(qdrant_url="http://q:6333").qdrant_client_kwargs() == {"url": "http://q:6333"}
    assert Settings(qdrant_api_key="secret").qdrant_client_kwargs()["api_key"] == "secret"


def test_build_metrics_recorder() -> None:
    recorder = Settings(observability_prometheus_enabled=True).build_metrics_recorder()

    assert recorder.enabled
    assert recorder.prometheus_enabled
