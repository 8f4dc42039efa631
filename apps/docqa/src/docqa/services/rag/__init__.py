from docqa.services.rag.answer import AnswerAssembler
from docqa.services.rag.chunker import chunk_text
from docqa.services.rag.embedder import Embedder
from docqa.services.rag.fragment_store import FragmentStore
from docqa.services.rag.pipeline import IngestionPipeline
from docqa.services.rag.retriever import Retriever
from docqa.services.rag.types import Answer, IngestionSummary, RetrievalResult

__all__ = [
    "Answer",
    "AnswerAssembler",
    "Embedder",
    "FragmentStore",
    "IngestionPipeline",
    "IngestionSummary",
    "RetrievalResult",
    "Retriever",
    "chunk_text",
]
