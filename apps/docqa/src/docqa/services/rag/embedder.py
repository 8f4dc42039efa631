from __future__ import annotations

from random import random
import time
from typing import Callable, Sequence

from docqa.services.rag.embedding_client import EmbeddingClient, EmbeddingClientError
from docqa.services.rag.errors import (
    EmbeddingDimensionMismatch,
    EmbeddingUnavailable,
    IngestionTimeout,
)


class Embedder:
    """Batches texts through an :class:`EmbeddingClient` with bounded retries.

    Transient endpoint failures (rate limits, 5xx, transport errors) are
    retried with exponential backoff up to ``max_attempts`` per batch. Anything
    else, or exhaustion, raises :class:`EmbeddingUnavailable`. A vector whose
    length differs from ``dimensions`` raises :class:`EmbeddingDimensionMismatch`
    immediately.
    """

    def __init__(
        self,
        client: EmbeddingClient,
        *,
        dimensions: int | None,
        batch_size: int = 64,
        max_attempts: int = 4,
        retry_base_seconds: float = 1.0,
        retry_max_seconds: float = 30.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if batch_size <= 0:
            raise ValueError("batch_size must be > 0")
        if max_attempts <= 0:
            raise ValueError("max_attempts must be > 0")
        self._client = client
        self._dimensions = dimensions
        self._batch_size = batch_size
        self._max_attempts = max_attempts
        self._retry_base_seconds = retry_base_seconds
        self._retry_max_seconds = retry_max_seconds
        self._sleep = sleep

    @property
    def dimensions(self) -> int | None:
        return self._dimensions

    def embed(self, texts: Sequence[str], *, deadline: float | None = None) -> list[list[float]]:
        vectors: list[list[float]] = []
        expected = self._dimensions
        for batch_start in range(0, len(texts), self._batch_size):
            _check_deadline(deadline)
            batch = list(texts[batch_start : batch_start + self._batch_size])
            batch_vectors = self._embed_batch(batch, deadline=deadline)
            if expected is None and batch_vectors:
                expected = len(batch_vectors[0])
            for offset, vector in enumerate(batch_vectors):
                if len(vector) != expected:
                    raise EmbeddingDimensionMismatch(
                        f"embedding {batch_start + offset} has dimension {len(vector)}, "
                        f"expected {expected}"
                    )
            vectors.extend(batch_vectors)

        return vectors

    def embed_query(self, text: str) -> list[float]:
        return self.embed([text])[0]

    def _embed_batch(self, batch: list[str], *, deadline: float | None) -> list[list[float]]:
        delay = self._retry_base_seconds
        attempt = 1

        while True:
            try:
                vectors = self._client.embed_texts(batch)
            except EmbeddingClientError as exc:
                if not exc.retryable:
                    raise EmbeddingUnavailable(f"embedding request rejected: {exc}") from exc
                if attempt >= self._max_attempts:
                    raise EmbeddingUnavailable(
                        f"embedding endpoint unavailable after {attempt} attempts: {exc}"
                    ) from exc
                print(
                    f"[embedder] batch failed attempt={attempt}/{self._max_attempts} "
                    f"error={exc}; retrying in {delay:.1f}s",
                    flush=True,
                )
                _check_deadline(deadline)
                self._sleep(delay + random() * 0.2 * delay)
                delay = min(delay * 2, self._retry_max_seconds)
                attempt += 1
                continue

            if len(vectors) != len(batch):
                raise EmbeddingUnavailable(
                    f"embedding endpoint returned {len(vectors)} vectors for {len(batch)} texts"
                )
            return vectors


def _check_deadline(deadline: float | None) -> None:
    if deadline is not None and time.monotonic() >= deadline:
        raise IngestionTimeout("ingestion deadline exceeded during embedding")
