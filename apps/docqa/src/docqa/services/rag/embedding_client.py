from __future__ import annotations

from typing import Any, Protocol

import httpx

from docqa.config import Settings

RETRYABLE_STATUS_CODES = frozenset({408, 409, 425, 429, 500, 502, 503, 504})


class EmbeddingClientError(RuntimeError):
    def __init__(self, message: str, *, retryable: bool = False) -> None:
        super().__init__(message)
        self.retryable = retryable


class EmbeddingClient(Protocol):
    def embed_texts(self, texts: list[str]) -> list[list[float]]: ...


def _error_from_http(exc: httpx.HTTPError) -> EmbeddingClientError:
    if isinstance(exc, httpx.HTTPStatusError):
        status_code = exc.response.status_code
        return EmbeddingClientError(
            f"embedding request failed status={status_code}: {exc}",
            retryable=status_code in RETRYABLE_STATUS_CODES,
        )
    return EmbeddingClientError(str(exc), retryable=isinstance(exc, httpx.TransportError))


def _decode_json(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError as exc:
        # A body that is not JSON will not parse on retry either.
        raise EmbeddingClientError(f"Invalid embeddings payload: {exc}") from exc


def _parse_vectors(payload: Any, *, expected: int) -> list[list[float]]:
    data = payload.get("data") if isinstance(payload, dict) else None
    if not isinstance(data, list):
        raise EmbeddingClientError("Invalid embeddings payload: missing data")

    if all(isinstance(item, dict) and isinstance(item.get("index"), int) for item in data):
        data = sorted(data, key=lambda item: item["index"])

    vectors: list[list[float]] = []
    for item in data:
        embedding = item.get("embedding") if isinstance(item, dict) else None
        if not isinstance(embedding, list) or not embedding:
            raise EmbeddingClientError("Invalid embeddings payload: missing embedding vector")
        try:
            vectors.append([float(value) for value in embedding])
        except (TypeError, ValueError) as exc:
            raise EmbeddingClientError(f"Invalid embeddings payload: {exc}") from exc

    if len(vectors) != expected:
        raise EmbeddingClientError(
            f"Invalid embeddings payload: expected {expected} vectors, got {len(vectors)}"
        )

    return vectors


class OllamaEmbeddingClient:
    def __init__(self, *, base_url: str, model: str, timeout_seconds: float = 30.0) -> None:
        self._base_url = base_url.rstrip("/")
        self._model = model
        self._timeout_seconds = timeout_seconds

    def embed_texts(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []

        try:
            response = httpx.post(
                f"{self._base_url}/embeddings",
                json={"model": self._model, "input": texts},
                timeout=self._timeout_seconds,
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise _error_from_http(exc) from exc

        return _parse_vectors(_decode_json(response), expected=len(texts))


class OpenAIEmbeddingClient:
    def __init__(
        self,
        *,
        base_url: str,
        api_key: str,
        model: str,
        dimensions: int | None = None,
        timeout_seconds: float = 30.0,
    ) -> None:
        if not api_key:
            raise ValueError("api_key is required for the openai embedding provider")
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._model = model
        self._dimensions = dimensions
        self._timeout_seconds = timeout_seconds

    def embed_texts(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []

        body: dict[str, Any] = {"model": self._model, "input": texts}
        if self._dimensions is not None:
            body["dimensions"] = self._dimensions

        try:
            response = httpx.post(
                f"{self._base_url}/embeddings",
                json=body,
                headers={"Authorization": f"Bearer {self._api_key}"},
                timeout=self._timeout_seconds,
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise _error_from_http(exc) from exc

        return _parse_vectors(_decode_json(response), expected=len(texts))


def create_embedding_client(settings: Settings) -> EmbeddingClient:
    provider = settings.rag_embedding_provider
    if provider == "ollama":
        return OllamaEmbeddingClient(
            base_url=settings.rag_embedding_base_url,
            model=settings.rag_embedding_model,
            timeout_seconds=settings.rag_embedding_timeout_seconds,
        )
    if provider == "openai":
        return OpenAIEmbeddingClient(
            base_url=settings.rag_embedding_base_url,
            api_key=settings.rag_embedding_api_key,
            model=settings.rag_embedding_model,
            dimensions=settings.rag_embedding_dim,
            timeout_seconds=settings.rag_embedding_timeout_seconds,
        )
    raise ValueError(f"Unknown embedding provider: {provider!r}")
