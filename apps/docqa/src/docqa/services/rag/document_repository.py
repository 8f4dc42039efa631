from __future__ import annotations

from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from sqlalchemy import delete, select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from docqa.models import DOCUMENT_STATUSES, DocumentRecord, FragmentRecord
from docqa.services.rag.types import DOCUMENT_STAGES, Document


def _to_document(record: DocumentRecord) -> Document:
    return Document(
        id=record.id,
        name=record.name,
        status=record.status,
        stage=record.stage,
        source_path=record.source_path,
        error=record.error,
        metadata=dict(record.metadata_json or {}),
        created_at=record.created_at,
        updated_at=record.updated_at,
    )


class DocumentRepository:
    """Document rows and their processing status."""

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    def create(
        self,
        *,
        name: str,
        source_path: str | None = None,
        metadata: dict[str, Any] | None = None,
        document_id: str | None = None,
        session: Session | None = None,
    ) -> Document:
        now = datetime.now(timezone.utc)
        record = DocumentRecord(
            id=document_id or uuid4().hex,
            name=name,
            source_path=source_path,
            status="pending",
            stage="pending",
            metadata_json=metadata,
            created_at=now,
            updated_at=now,
        )
        if session is not None:
            # Caller owns the transaction.
            session.add(record)
            session.flush()
            return _to_document(record)
        with Session(self._engine) as own_session:
            own_session.add(record)
            own_session.commit()
            return _to_document(record)

    def get(self, document_id: str) -> Document | None:
        with Session(self._engine) as session:
            record = session.get(DocumentRecord, document_id)
            return _to_document(record) if record is not None else None

    def list_documents(self, *, status: str | None = None) -> list[Document]:
        with Session(self._engine) as session:
            stmt = select(DocumentRecord)
            if status is not None:
                stmt = stmt.where(DocumentRecord.status == status)
            records = session.scalars(
                stmt.order_by(DocumentRecord.created_at.asc(), DocumentRecord.id.asc())
            ).all()
            return [_to_document(record) for record in records]

    def update_status(
        self,
        document_id: str,
        *,
        status: str,
        stage: str,
        error: str | None = None,
    ) -> None:
        if status not in DOCUMENT_STATUSES:
            raise ValueError(f"Unknown document status: {status!r}")
        if stage not in DOCUMENT_STAGES:
            raise ValueError(f"Unknown document stage: {stage!r}")

        with Session(self._engine) as session:
            record = session.get(DocumentRecord, document_id)
            if record is None:
                raise LookupError(f"document not found: {document_id}")
            record.status = status
            record.stage = stage
            record.error = error
            record.updated_at = datetime.now(timezone.utc)
            session.commit()

    def delete(self, document_id: str) -> bool:
        # Fragments go in the same transaction even where FK cascades are off.
        with self._engine.begin() as connection:
            connection.execute(
                delete(FragmentRecord).where(FragmentRecord.document_id == document_id)
            )
            deleted = connection.execute(
                delete(DocumentRecord).where(DocumentRecord.id == document_id)
            )
        return deleted.rowcount == 1
