from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

DOCUMENT_STAGES = ("pending", "extracting", "chunking", "embedding", "storing", "ready", "failed")


@dataclass(frozen=True)
class ExtractedDocument:
    text: str
    # Character offset at which each page starts; page numbers are 1-based.
    page_starts: tuple[int, ...] = ()


@dataclass(frozen=True)
class TextChunk:
    index: int
    text: str
    start_char: int
    end_char: int
    token_count: int
    overlap_tokens: int


@dataclass(frozen=True)
class Fragment:
    chunk_index: int
    text: str
    token_count: int
    embedding: list[float]
    page_numbers: tuple[int, ...] = ()
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Document:
    id: str
    name: str
    status: str
    stage: str
    source_path: str | None
    error: str | None
    metadata: dict[str, Any]
    created_at: datetime | None
    updated_at: datetime | None


@dataclass(frozen=True)
class RetrievalResult:
    fragment_id: str
    document_id: str
    document_name: str
    chunk_index: int
    text: str
    score: float
    page_numbers: tuple[int, ...]


@dataclass(frozen=True)
class IngestionJob:
    job_id: str
    document_id: str
    source_path: str
    metadata: dict[str, Any] = field(default_factory=dict)
    attempts: int = 0
    max_attempts: int = 3


@dataclass(frozen=True)
class ProgressEvent:
    document_id: str
    status: str
    detail: str | None = None


@dataclass(frozen=True)
class IngestionSummary:
    document_id: str
    status: str
    fragment_count: int
    duration_ms: int
    error: str | None = None
    retryable: bool = False


@dataclass(frozen=True)
class ConversationTurn:
    role: str
    text: str
    timestamp: datetime


@dataclass(frozen=True)
class Answer:
    text: str
    source_fragments: list[RetrievalResult]
    model: str
    used_fallback: bool
