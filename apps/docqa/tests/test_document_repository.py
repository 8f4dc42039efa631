import pytest
from sqlalchemy.engine import Engine

from docqa.services.rag.document_repository import DocumentRepository


def test_create_starts_pending(engine: Engine) -> None:
    documents = DocumentRepository(engine)

    created = documents.create(name="guide.pdf", source_path="/data/guide.pdf", metadata={"team": "ops"})
    loaded = documents.get(created.id)

    assert loaded is not None
    assert loaded.status == "pending"
    assert loaded.stage == "pending"
    assert loaded.metadata == {"team": "ops"}
    assert loaded.error is None


def test_update_status_records_stage_and_error(engine: Engine) -> None:
    documents = DocumentRepository(engine)
    document_id = documents.create(name="guide.pdf").id

    documents.update_status(document_id, status="failed", stage="failed", error="ExtractionFailed: bad")

    loaded = documents.get(document_id)
    assert loaded is not None
    assert loaded.status == "failed"
    assert loaded.error == "ExtractionFailed: bad"
    assert [document.id for document in documents.list_documents(status="failed")] == [document_id]
    assert documents.list_documents(status="ready") == []


def test_update_status_rejects_unknown_values(engine: Engine) -> None:
    documents = DocumentRepository(engine)
    document_id = documents.create(name="guide.pdf").id

    with pytest.raises(ValueError, match="status"):
        documents.update_status(document_id, status="archived", stage="pending")
    with pytest.raises(ValueError, match="stage"):
        documents.update_status(document_id, status="processing", stage="indexing")


def test_update_status_for_missing_document_raises(engine: Engine) -> None:
    with pytest.raises(LookupError):
        DocumentRepository(engine).update_status("missing", status="ready", stage="ready")


def test_delete_missing_document_returns_false(engine: Engine) -> None:
    assert DocumentRepository(engine).delete("missing") is False
