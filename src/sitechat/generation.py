"""Text generation through the OpenAI Responses API or an Ollama chat endpoint."""

from __future__ import annotations

import logging
import time

import httpx
from openai import OpenAI, OpenAIError

from .config import Settings
from .errors import ExternalServiceError
from .observability import MetricsRecorder

logger = logging.getLogger(__name__)


class GenerationService:
    """Send a system/user prompt pair to the configured chat backend."""

    def __init__(
        self,
        settings: Settings,
        *,
        metrics: MetricsRecorder | None = None,
        openai_client: OpenAI | None = None,
        http_client: httpx.Client | None = None,
    ) -> None:
        self._settings = settings
        self._metrics = metrics
        self._openai_client = openai_client
        self._http = http_client

    @property
    def backend(self) -> str:
        return self._settings.chat_backend

    def generate(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> str:
        """Return the model's reply text.

        Raises :class:`ExternalServiceError` on transport failures, unknown
        backends and empty replies.
        """

        temperature = self._settings.chat_temperature if temperature is None else max(0.0, temperature)
        if max_tokens is not None and max_tokens <= 0:
            max_tokens = None

        start = time.perf_counter()
        if self._settings.is_openai_chat_backend:
            text = self._invoke_openai(system_prompt, user_prompt, temperature=temperature, max_tokens=max_tokens)
        elif self._settings.is_ollama_chat_backend:
            text = self._invoke_ollama(system_prompt, user_prompt, temperature=temperature, max_tokens=max_tokens)
        else:
            raise ExternalServiceError("generation", f"Unsupported chat backend: {self._settings.chat_backend}")

        if self._metrics:
            self._metrics.record_timing(
                "generation.duration",
                time.perf_counter() - start,
                backend=self._settings.chat_backend,
            )
        if not text:
            raise ExternalServiceError(self._settings.chat_backend, "empty response")
        return text

    # Internal helpers -------------------------------------------------

    def _invoke_openai(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        temperature: float,
        max_tokens: int | None,
    ) -> str:
        client = self._get_openai_client()
        try:
            response = client.responses.create(
                model=self._settings.openai_chat_model,
                input=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                temperature=temperature,
                max_output_tokens=max_tokens,
            )
        except OpenAIError as exc:
            logger.error("generation.openai.error model=%s error=%s", self._settings.openai_chat_model, exc)
            raise ExternalServiceError("openai", str(exc)) from exc

        text = str(getattr(response, "output_text", "") or "").strip()
        logger.info(
            "generation.openai.success model=%s chars=%s",
            self._settings.openai_chat_model,
            len(text),
        )
        return text

    def _invoke_ollama(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        temperature: float,
        max_tokens: int | None,
    ) -> str:
        model = (self._settings.ollama_model or "").strip()
        if not model:
            raise ExternalServiceError("ollama", "OLLAMA_MODEL must be set when using the Ollama chat backend")

        url = f"{self._settings.ollama_base_url.rstrip('/')}/api/chat"
        payload: dict = {
            "model": model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "stream": False,
        }
        options: dict[str, float | int] = {}
        if temperature > 0.0:
            options["temperature"] = temperature
        if max_tokens is not None:
            options["num_predict"] = max_tokens
        if options:
            payload["options"] = options

        try:
            if self._http is not None:
                response = self._http.post(url, json=payload, timeout=self._settings.ollama_request_timeout)
            else:
                response = httpx.post(url, json=payload, timeout=self._settings.ollama_request_timeout)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.error("generation.ollama.error model=%s error=%s", model, exc)
            raise ExternalServiceError("ollama", str(exc)) from exc

        try:
            data = response.json()
        except ValueError as exc:
            logger.error("generation.ollama.invalid_json model=%s error=%s", model, exc)
            raise ExternalServiceError("ollama", "response was not valid JSON") from exc
        if not isinstance(data, dict):
            raise ExternalServiceError("ollama", "response was not a JSON object")
        message = data.get("message") or {}
        if not isinstance(message, dict):
            message = {}
        content = message.get("content") or data.get("response", "")
        text = str(content).strip() if content else ""
        if not text:
            logger.warning("generation.ollama.empty_response model=%s", model)
        else:
            logger.info("generation.ollama.success model=%s chars=%s", model, len(text))
        return text

    def _get_openai_client(self) -> OpenAI:
        if self._openai_client is None:
            if not self._settings.openai_api_key:
                raise ExternalServiceError("openai", "OPENAI_API_KEY must be set for the OpenAI chat backend")
            self._openai_client = OpenAI(api_key=self._settings.openai_api_key)
        return self._openai_client


__all__ = ["GenerationService"]
