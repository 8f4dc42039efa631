from __future__ import annotations

from array import array
import math
from typing import Any, Sequence

from sqlalchemy import delete, func, insert, select, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from docqa.models import DocumentRecord, FragmentRecord
from docqa.services.rag.errors import StorageWriteFailed
from docqa.services.rag.types import Fragment, RetrievalResult


def _encode_embedding(values: list[float]) -> bytes:
    vector = array("f", values)
    return vector.tobytes()


def _decode_embedding(blob: bytes) -> list[float]:
    vector = array("f")
    vector.frombytes(blob)
    return vector.tolist()


def _vector_literal(values: Sequence[float]) -> str:
    return "[" + ",".join(repr(float(value)) for value in values) + "]"


def _cosine(a: Sequence[float], b: Sequence[float]) -> float:
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)


def fragment_id(document_id: str, chunk_index: int) -> str:
    return f"{document_id}-{chunk_index:04d}"


class FragmentStore:
    """Fragments with their vectors, searchable by cosine similarity.

    On PostgreSQL the ``fragments.embedding`` column is a pgvector ``vector``
    backed by an HNSW ``vector_cosine_ops`` index and search runs in SQL. Other
    dialects store packed float32 blobs and search exactly in process. Both
    paths score with cosine similarity and order by score descending, then
    ``chunk_index`` ascending.
    """

    def __init__(self, engine: Engine, *, ef_search: int = 0) -> None:
        self._engine = engine
        self._ef_search = ef_search

    @property
    def _is_postgresql(self) -> bool:
        return self._engine.dialect.name == "postgresql"

    def store(self, document_id: str, fragments: Sequence[Fragment]) -> int:
        """Replace every fragment of *document_id* with *fragments* atomically."""
        dimensions = {len(fragment.embedding) for fragment in fragments}
        if len(dimensions) > 1:
            raise StorageWriteFailed(
                f"fragments for document {document_id} mix embedding dimensions {sorted(dimensions)}"
            )

        rows = [self._row(document_id, fragment) for fragment in fragments]

        try:
            with self._engine.begin() as connection:
                owner = connection.execute(
                    select(DocumentRecord.id).where(DocumentRecord.id == document_id)
                ).first()
                if owner is None:
                    raise StorageWriteFailed(f"document not found: {document_id}")

                connection.execute(
                    delete(FragmentRecord).where(FragmentRecord.document_id == document_id)
                )
                if rows:
                    connection.execute(insert(FragmentRecord), rows)
        except SQLAlchemyError as exc:
            raise StorageWriteFailed(
                f"failed to store {len(rows)} fragments for document {document_id}: {exc}"
            ) from exc

        return len(rows)

    def _row(self, document_id: str, fragment: Fragment) -> dict[str, Any]:
        embedding: Any = list(fragment.embedding)
        if not self._is_postgresql:
            embedding = _encode_embedding(embedding)
        return {
            "id": fragment_id(document_id, fragment.chunk_index),
            "document_id": document_id,
            "chunk_index": fragment.chunk_index,
            "text": fragment.text,
            "token_count": fragment.token_count,
            "embedding": embedding,
            "embedding_dim": len(fragment.embedding),
            "page_numbers": list(fragment.page_numbers),
            "metadata_json": dict(fragment.metadata),
        }

    def count(self, document_id: str | None = None) -> int:
        stmt = select(func.count()).select_from(FragmentRecord)
        if document_id is not None:
            stmt = stmt.where(FragmentRecord.document_id == document_id)
        with self._engine.connect() as connection:
            return int(connection.execute(stmt).scalar_one())

    def search(
        self,
        query_vector: Sequence[float],
        *,
        top_k: int,
        document_id: str | None = None,
    ) -> list[RetrievalResult]:
        if top_k <= 0:
            raise ValueError("top_k must be > 0")
        if not query_vector:
            raise ValueError("query_vector must not be empty")

        if self._is_postgresql:
            results = self._search_pgvector(query_vector, top_k=top_k, document_id=document_id)
        else:
            results = self._search_exact(query_vector, top_k=top_k, document_id=document_id)

        # ANN candidates beyond top_k are never returned.
        return results[:top_k]

    def _search_pgvector(
        self,
        query_vector: Sequence[float],
        *,
        top_k: int,
        document_id: str | None,
    ) -> list[RetrievalResult]:
        where_clause = "WHERE f.document_id = :document_id" if document_id is not None else ""
        params: dict[str, Any] = {"query": _vector_literal(query_vector), "limit": top_k}
        if document_id is not None:
            params["document_id"] = document_id

        with self._engine.begin() as connection:
            self._apply_search_settings(connection)
            rows = connection.execute(
                text(
                    f"""
                    SELECT f.id, f.document_id, d.name AS document_name, f.chunk_index,
                           f.text, f.page_numbers,
                           1 - (f.embedding <=> CAST(:query AS vector)) AS score
                    FROM fragments f
                    JOIN documents d ON d.id = f.document_id
                    {where_clause}
                    ORDER BY f.embedding <=> CAST(:query AS vector) ASC,
                             f.chunk_index ASC,
                             f.document_id ASC
                    LIMIT :limit
                    """
                ),
                params,
            ).mappings().all()

        return [
            RetrievalResult(
                fragment_id=row["id"],
                document_id=row["document_id"],
                document_name=row["document_name"],
                chunk_index=int(row["chunk_index"]),
                text=row["text"],
                score=float(row["score"]),
                page_numbers=tuple(row["page_numbers"] or ()),
            )
            for row in rows
        ]

    def _apply_search_settings(self, connection: Connection) -> None:
        if self._ef_search > 0:
            connection.execute(text(f"SET LOCAL hnsw.ef_search = {int(self._ef_search)}"))

    def _search_exact(
        self,
        query_vector: Sequence[float],
        *,
        top_k: int,
        document_id: str | None,
    ) -> list[RetrievalResult]:
        stmt = select(
            FragmentRecord.id,
            FragmentRecord.document_id,
            DocumentRecord.name,
            FragmentRecord.chunk_index,
            FragmentRecord.text,
            FragmentRecord.page_numbers,
            FragmentRecord.embedding,
        ).join(DocumentRecord, DocumentRecord.id == FragmentRecord.document_id)
        if document_id is not None:
            stmt = stmt.where(FragmentRecord.document_id == document_id)

        with self._engine.connect() as connection:
            rows = connection.execute(stmt).all()

        results = [
            RetrievalResult(
                fragment_id=row.id,
                document_id=row.document_id,
                document_name=row.name,
                chunk_index=row.chunk_index,
                text=row.text,
                score=_cosine(query_vector, _decode_embedding(row.embedding)),
                page_numbers=tuple(row.page_numbers or ()),
            )
            for row in rows
        ]
        results.sort(key=lambda result: (-result.score, result.chunk_index, result.document_id))
        return results[:top_k]
