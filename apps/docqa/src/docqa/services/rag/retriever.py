from __future__ import annotations

from docqa.services.rag.embedder import Embedder
from docqa.services.rag.fragment_store import FragmentStore
from docqa.services.rag.types import RetrievalResult


class Retriever:
    def __init__(self, *, embedder: Embedder, store: FragmentStore, default_top_k: int = 5) -> None:
        self._embedder = embedder
        self._store = store
        self._default_top_k = default_top_k

    def retrieve(
        self,
        query: str,
        *,
        top_k: int | None = None,
        document_id: str | None = None,
    ) -> list[RetrievalResult]:
        normalized_query = query.strip()
        if not normalized_query:
            raise ValueError("query must not be empty")

        resolved_top_k = self._default_top_k if top_k is None else top_k
        if resolved_top_k <= 0:
            raise ValueError("top_k must be > 0")

        query_vector = self._embedder.embed_query(normalized_query)
        # The document filter is applied by the store before ranking.
        return self._store.search(query_vector, top_k=resolved_top_k, document_id=document_id)
