from __future__ import annotations

from dataclasses import dataclass
from random import random
import time
from typing import Callable, Protocol

import httpx

from docqa.config import Settings

RETRYABLE_STATUS_CODES = frozenset({408, 425, 429, 500, 502, 503, 504})


class LLMClientError(RuntimeError):
    pass


@dataclass(frozen=True)
class ChatMessage:
    role: str
    content: str


@dataclass(frozen=True)
class ChatResult:
    answer: str
    model: str
    used_fallback: bool


class LLMClient(Protocol):
    def generate(self, messages: list[ChatMessage]) -> ChatResult: ...


def _is_retryable(exc: Exception) -> bool:
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code in RETRYABLE_STATUS_CODES
    return isinstance(exc, httpx.TransportError)


class OllamaChatClient:
    """OpenAI-compatible chat completions with retries and a fallback model.

    Each model candidate gets up to ``max_attempts`` tries; only transient
    errors are retried. When the default model is exhausted the fallback model
    is tried the same way before :class:`LLMClientError` is raised.
    """

    def __init__(
        self,
        *,
        base_url: str,
        default_model: str,
        fallback_model: str,
        timeout_seconds: float = 30.0,
        max_attempts: int = 2,
        retry_base_seconds: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._default_model = default_model
        self._fallback_model = fallback_model
        self._timeout_seconds = timeout_seconds
        self._max_attempts = max(1, max_attempts)
        self._retry_base_seconds = retry_base_seconds
        self._sleep = sleep

    def generate(self, messages: list[ChatMessage]) -> ChatResult:
        last_error: Exception | None = None
        for model, used_fallback in self._model_candidates():
            try:
                content = self._generate_with_retries(model=model, messages=messages)
            except (httpx.HTTPError, ValueError) as exc:
                last_error = exc
                print(f"[llm] model failed model={model} error={exc}", flush=True)
                continue

            return ChatResult(answer=content, model=model, used_fallback=used_fallback)

        if last_error is not None:
            raise LLMClientError(str(last_error)) from last_error
        raise LLMClientError("No model candidates configured")

    def _model_candidates(self) -> list[tuple[str, bool]]:
        candidates: list[tuple[str, bool]] = [(self._default_model, False)]
        if self._fallback_model and self._fallback_model != self._default_model:
            candidates.append((self._fallback_model, True))
        return candidates

    def _generate_with_retries(self, *, model: str, messages: list[ChatMessage]) -> str:
        delay = self._retry_base_seconds
        attempt = 1
        while True:
            try:
                return self._chat_completion(model=model, messages=messages)
            except httpx.HTTPError as exc:
                if not _is_retryable(exc) or attempt >= self._max_attempts:
                    raise
                print(
                    f"[llm] request failed model={model} attempt={attempt}/{self._max_attempts} "
                    f"error={exc}; retrying in {delay:.1f}s",
                    flush=True,
                )
                self._sleep(delay + random() * 0.2 * delay)
                delay *= 2
                attempt += 1

    def _headers(self) -> dict[str, str]:
        return {}

    def _chat_completion(self, *, model: str, messages: list[ChatMessage]) -> str:
        response = httpx.post(
            f"{self._base_url}/chat/completions",
            json={
                "model": model,
                "messages": [
                    {"role": message.role, "content": message.content} for message in messages
                ],
                "temperature": 0,
            },
            headers=self._headers(),
            timeout=self._timeout_seconds,
        )
        response.raise_for_status()

        payload = response.json()
        choices = payload.get("choices")
        if not isinstance(choices, list) or not choices:
            raise ValueError("Invalid chat completion payload: missing choices")

        message = choices[0].get("message") if isinstance(choices[0], dict) else None
        content = message.get("content") if isinstance(message, dict) else None
        if not isinstance(content, str) or not content.strip():
            raise ValueError("Invalid chat completion payload: missing assistant content")

        return content.strip()


class OpenAIChatClient(OllamaChatClient):
    def __init__(self, *, api_key: str, **kwargs) -> None:
        if not api_key:
            raise ValueError("api_key is required for the openai llm provider")
        super().__init__(**kwargs)
        self._api_key = api_key

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._api_key}"}


def create_llm_client(settings: Settings) -> LLMClient:
    options = {
        "base_url": settings.llm_base_url,
        "default_model": settings.llm_model,
        "fallback_model": settings.llm_fallback_model,
        "timeout_seconds": settings.llm_timeout_seconds,
        "max_attempts": settings.llm_max_attempts,
    }
    if settings.llm_provider == "ollama":
        return OllamaChatClient(**options)
    if settings.llm_provider == "openai":
        return OpenAIChatClient(api_key=settings.llm_api_key, **options)
    raise ValueError(f"Unknown LLM provider: {settings.llm_provider!r}")
