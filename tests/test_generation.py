from __future__ import annotations

from typing import Any, Dict

import httpx
import pytest

from sitechat.config import Settings
from sitechat.errors import ExternalServiceError
from sitechat.generation import GenerationService


class _StubResponses:
    def __init__(self, text: str) -> None:
        self.text = text
        self.calls: list[Dict[str, Any]] = []

    def create(self, **kwargs: Any) -> Any:  # noqa: ANN401
        self.calls.append(kwargs)
        return type("Response", (), {"output_text": self.text})()


class _StubOpenAIClient:
    def __init__(self, text: str = "Hello there") -> None:
        self.responses = _StubResponses(text)


class _StubHttpClient:
    def __init__(self, payload: Dict[str, Any], status_code: int = 200) -> None:
        self.payload = payload
        self.status_code = status_code
        self.requests: list[Dict[str, Any]] = []

    def post(self, url: str, *, json: Dict[str, Any], timeout: float) -> httpx.Response:
        self.requests.append({"url": url, "json": json, "timeout": timeout})
        return httpx.Response(self.status_code, json=self.payload, request=httpx.Request("POST", url))


def test_openai_backend_uses_responses_api() -> None:
    client = _StubOpenAIClient("  The answer.  ")
    service = GenerationService(Settings(chat_backend="openai", openai_chat_model="gpt-test"), openai_client=client)

    text = service.generate("system", "user", temperature=0.2, max_tokens=120)

    assert text == "The answer."
    call = client.responses.calls[0]
    assert call["model"] == "gpt-test"
    assert call["input"][0] == {"role": "system", "content": "system"}
    assert call["input"][1] == {"role": "user", "content": "user"}
    assert call["temperature"] == 0.2
    assert call["max_output_tokens"] == 120


def test_openai_backend_defaults_temperature_and_drops_bad_limits() -> None:
    client = _StubOpenAIClient()
    service = GenerationService(Settings(chat_backend="openai", chat_temperature=0.55), openai_client=client)

    service.generate("s", "u", max_tokens=0)

    call = client.responses.calls[0]
    assert call["temperature"] == 0.55
    assert call["max_output_tokens"] is None


def test_openai_backend_without_key_raises() -> None:
    service = GenerationService(Settings(chat_backend="openai", openai_api_key=None))

    with pytest.raises(ExternalServiceError):
        service.generate("s", "u")


def test_empty_reply_raises() -> None:
    service = GenerationService(Settings(chat_backend="openai"), openai_client=_StubOpenAIClient(""))

    with pytest.raises(ExternalServiceError):
        service.generate("s", "u")


def test_ollama_backend_posts_chat_payload() -> None:
    http = _StubHttpClient({"message": {"content": " Hi from ollama "}})
    settings = Settings(
        chat_backend="ollama",
        ollama_base_url="http://ollama:11434/",
        ollama_model="llama-test",
        ollama_request_timeout=12.5,
    )
    service = GenerationService(settings, http_client=http)

    assert service.generate("sys", "question", temperature=0.4, max_tokens=64) == "Hi from ollama"

    request = http.requests[0]
    assert request["url"] == "http://ollama:11434/api/chat"
    assert request["timeout"] == 12.5
    assert request["json"]["model"] == "llama-test"
    assert request["json"]["stream"] is False
    assert request["json"]["options"] == {"temperature": 0.4, "num_predict": 64}
    assert [message["role"] for message in request["json"]["messages"]] == ["system", "user"]


def test_ollama_http_error_is_wrapped() -> None:
    http = _StubHttpClient({"error": "model not found"}, status_code=404)
    service = GenerationService(Settings(chat_backend="ollama"), http_client=http)

    with pytest.raises(ExternalServiceError):
        service.generate("sys", "question")


def test_unsupported_backend_raises() -> None:
    service = GenerationService(Settings(chat_backend="carrier-pigeon"))

    with pytest.raises(ExternalServiceError):
        service.generate("sys", "question")


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(200, text="<html>gateway hiccup</html>"),
        httpx.Response(200, json=["not", "an", "object"]),
    ],
)
def test_ollama_unusable_reply_is_wrapped(response: httpx.Response) -> None:
    transport = httpx.MockTransport(lambda request: response)
    with httpx.Client(transport=transport) as http:
        service = GenerationService(Settings(chat_backend="ollama"), http_client=http)

        with pytest.raises(ExternalServiceError):
            service.generate("sys", "question")
