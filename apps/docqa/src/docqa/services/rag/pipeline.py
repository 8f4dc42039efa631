from __future__ import annotations

from pathlib import Path
import time
from time import perf_counter
from typing import Mapping

from docqa.services.rag.chunker import chunk_text, page_numbers_for_span
from docqa.services.rag.document_repository import DocumentRepository
from docqa.services.rag.embedder import Embedder
from docqa.services.rag.errors import ExtractionFailed, IngestionTimeout
from docqa.services.rag.extractor import TextExtractor, extract_document
from docqa.services.rag.fragment_store import FragmentStore
from docqa.services.rag.notifier import LogProgressNotifier, ProgressNotifier
from docqa.services.rag.types import (
    Fragment,
    IngestionJob,
    IngestionSummary,
    ProgressEvent,
)


class IngestionPipeline:
    """Runs one document through extracting → chunking → embedding → storing.

    Every stage transition is written to the document row before the stage
    starts and announced to the progress notifier. A failure in any stage marks
    the document ``failed`` with the cause and returns a summary; exceptions
    escape :meth:`run` only when the failure itself could not be recorded.
    Fragments are written through :meth:`FragmentStore.store`, which replaces
    any earlier set for the document in one transaction.
    """

    def __init__(
        self,
        *,
        documents: DocumentRepository,
        store: FragmentStore,
        embedder: Embedder,
        max_tokens: int,
        overlap_tokens: int,
        notifier: ProgressNotifier | None = None,
        extractors: Mapping[str, TextExtractor] | None = None,
    ) -> None:
        self._documents = documents
        self._store = store
        self._embedder = embedder
        self._max_tokens = max_tokens
        self._overlap_tokens = overlap_tokens
        self._notifier = notifier or LogProgressNotifier()
        self._extractors = extractors

    def run(self, job: IngestionJob, *, deadline: float | None = None) -> IngestionSummary:
        start = perf_counter()
        document_id = job.document_id
        stage = "pending"

        try:
            stage = self._enter(document_id, "extracting", deadline=deadline)
            extracted = extract_document(Path(job.source_path), self._extractors)

            stage = self._enter(document_id, "chunking", deadline=deadline)
            chunks = chunk_text(
                extracted.text,
                max_tokens=self._max_tokens,
                overlap_tokens=self._overlap_tokens,
            )

            stage = self._enter(
                document_id, "embedding", deadline=deadline, detail=f"chunks={len(chunks)}"
            )
            vectors = self._embedder.embed([chunk.text for chunk in chunks], deadline=deadline)

            stage = self._enter(document_id, "storing", deadline=deadline)
            fragments = [
                Fragment(
                    chunk_index=chunk.index,
                    text=chunk.text,
                    token_count=chunk.token_count,
                    embedding=vector,
                    page_numbers=page_numbers_for_span(
                        extracted.page_starts, chunk.start_char, chunk.end_char
                    ),
                    metadata={
                        **job.metadata,
                        "start_char": chunk.start_char,
                        "end_char": chunk.end_char,
                        "overlap_tokens": chunk.overlap_tokens,
                    },
                )
                for chunk, vector in zip(chunks, vectors)
            ]
            stored = self._store.store(document_id, fragments)
        except Exception as exc:
            return self._fail(job, stage=stage, exc=exc, start=start)

        self._documents.update_status(document_id, status="ready", stage="ready")
        self._notify(document_id, "ready", f"fragments={stored}")
        duration_ms = int((perf_counter() - start) * 1000)
        print(
            f"[ingest] document ready document_id={document_id} fragments={stored} "
            f"duration_ms={duration_ms}",
            flush=True,
        )
        return IngestionSummary(
            document_id=document_id,
            status="ready",
            fragment_count=stored,
            duration_ms=duration_ms,
        )

    def _enter(
        self,
        document_id: str,
        stage: str,
        *,
        deadline: float | None,
        detail: str | None = None,
    ) -> str:
        if deadline is not None and time.monotonic() >= deadline:
            raise IngestionTimeout(f"ingestion deadline exceeded before {stage}")
        self._documents.update_status(document_id, status="processing", stage=stage)
        self._notify(document_id, stage, detail)
        return stage

    def _fail(
        self,
        job: IngestionJob,
        *,
        stage: str,
        exc: Exception,
        start: float,
    ) -> IngestionSummary:
        error = f"{type(exc).__name__}: {exc}"
        self._documents.update_status(job.document_id, status="failed", stage="failed", error=error)
        self._notify(job.document_id, "failed", error)
        print(
            f"[ingest] document failed document_id={job.document_id} stage={stage} error={error}",
            flush=True,
        )
        return IngestionSummary(
            document_id=job.document_id,
            status="failed",
            fragment_count=0,
            duration_ms=int((perf_counter() - start) * 1000),
            error=error,
            retryable=not isinstance(exc, ExtractionFailed),
        )

    def _notify(self, document_id: str, status: str, detail: str | None = None) -> None:
        try:
            self._notifier.notify(ProgressEvent(document_id=document_id, status=status, detail=detail))
        except Exception as exc:
            print(
                f"[ingest] progress notification failed document_id={document_id} "
                f"status={status} error={exc!r}",
                flush=True,
            )
