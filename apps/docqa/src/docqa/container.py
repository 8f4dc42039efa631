from __future__ import annotations

from dataclasses import dataclass
import time
from typing import Callable

from sqlalchemy.engine import Engine

from docqa.config import Settings, get_settings
from docqa.db import create_db_engine
from docqa.llm import LLMClient, create_llm_client
from docqa.services.rag.answer import AnswerAssembler
from docqa.services.rag.conversation import InMemoryConversationStore
from docqa.services.rag.document_repository import DocumentRepository
from docqa.services.rag.embedder import Embedder
from docqa.services.rag.embedding_client import EmbeddingClient, create_embedding_client
from docqa.services.rag.fragment_store import FragmentStore
from docqa.services.rag.job_queue import SqlJobQueue
from docqa.services.rag.notifier import ProgressNotifier, create_progress_notifier
from docqa.services.rag.pipeline import IngestionPipeline
from docqa.services.rag.retriever import Retriever


@dataclass
class Services:
    engine: Engine
    documents: DocumentRepository
    store: FragmentStore
    embedder: Embedder
    pipeline: IngestionPipeline
    retriever: Retriever
    conversations: InMemoryConversationStore
    assembler: AnswerAssembler
    queue: SqlJobQueue
    owns_engine: bool = True

    def close(self) -> None:
        if self.owns_engine:
            self.engine.dispose()


def build_services(
    settings: Settings | None = None,
    *,
    engine: Engine | None = None,
    embedding_client: EmbeddingClient | None = None,
    llm_client: LLMClient | None = None,
    notifier: ProgressNotifier | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> Services:
    """Compose every component from settings.

    Collaborators passed in explicitly replace the configured ones; an engine
    passed in is left open by :meth:`Services.close`.
    """
    settings = settings or get_settings()
    owns_engine = engine is None
    if engine is None:
        engine = create_db_engine(settings.database_url, echo=settings.db_echo)

    documents = DocumentRepository(engine)
    store = FragmentStore(engine, ef_search=settings.rag_hnsw_ef_search)
    embedder = Embedder(
        embedding_client or create_embedding_client(settings),
        dimensions=settings.rag_embedding_dim,
        batch_size=settings.rag_embedding_batch_size,
        max_attempts=settings.rag_embedding_max_attempts,
        retry_base_seconds=settings.rag_embedding_retry_base_seconds,
        retry_max_seconds=settings.rag_embedding_retry_max_seconds,
        sleep=sleep,
    )
    pipeline = IngestionPipeline(
        documents=documents,
        store=store,
        embedder=embedder,
        max_tokens=settings.chunk_max_tokens,
        overlap_tokens=settings.rag_chunk_overlap_tokens,
        notifier=notifier or create_progress_notifier(settings),
    )
    retriever = Retriever(embedder=embedder, store=store, default_top_k=settings.rag_top_k)
    conversations = InMemoryConversationStore(max_turns=settings.conversation_max_turns)
    assembler = AnswerAssembler(
        retriever=retriever,
        conversations=conversations,
        llm_client=llm_client or create_llm_client(settings),
        max_context_chars=settings.answer_max_context_chars,
        history_turns=settings.answer_history_turns,
    )
    queue = SqlJobQueue(engine, default_max_attempts=settings.job_max_attempts)

    return Services(
        engine=engine,
        documents=documents,
        store=store,
        embedder=embedder,
        pipeline=pipeline,
        retriever=retriever,
        conversations=conversations,
        assembler=assembler,
        queue=queue,
        owns_engine=owns_engine,
    )
