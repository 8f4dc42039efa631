from __future__ import annotations

import argparse
import json
from pathlib import Path
import sys
from typing import Any

from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from docqa.config import get_settings
from docqa.db import create_db_engine
from docqa.services.rag.document_repository import DocumentRepository
from docqa.services.rag.job_queue import SqlJobQueue


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="docqa-enqueue",
        description="Register a document and queue it for ingestion",
    )
    parser.add_argument("path", help="Path to a .txt, .md or .pdf document")
    parser.add_argument("--name", default=None, help="Display name (defaults to the file name)")
    parser.add_argument(
        "--metadata-json",
        default=None,
        help="JSON object stored with the document and copied onto its fragments",
    )
    return parser


def _parse_metadata(raw: str | None) -> dict[str, Any]:
    if raw is None:
        return {}
    parsed = json.loads(raw)
    if not isinstance(parsed, dict):
        raise ValueError("--metadata-json must be a JSON object")
    return parsed


def enqueue_document(
    engine: Engine,
    path: Path,
    *,
    name: str | None = None,
    metadata: dict[str, Any] | None = None,
    max_attempts: int | None = None,
) -> tuple[str, str]:
    """Create a pending document and queue its ingestion job.

    Both rows are written in one transaction, so a failed enqueue leaves no
    orphaned pending document behind. Returns ``(document_id, job_id)``.
    """
    source_path = str(path.resolve())
    with Session(engine) as session, session.begin():
        document = DocumentRepository(engine).create(
            name=name or path.name,
            source_path=source_path,
            metadata=metadata,
            session=session,
        )
        job_id = SqlJobQueue(engine).enqueue(
            document_id=document.id,
            source_path=source_path,
            metadata=metadata,
            max_attempts=max_attempts,
            session=session,
        )
    return document.id, job_id


def main() -> None:
    parser = _build_parser()
    args = parser.parse_args()
    settings = get_settings()

    engine = create_db_engine(settings.database_url, echo=settings.db_echo)
    try:
        document_id, job_id = enqueue_document(
            engine,
            Path(args.path),
            name=args.name,
            metadata=_parse_metadata(args.metadata_json),
            max_attempts=settings.job_max_attempts,
        )
    except Exception as exc:
        print(f"[docqa-enqueue] failed: {exc}", file=sys.stderr, flush=True)
        raise SystemExit(1) from exc
    finally:
        engine.dispose()

    print(
        f"[docqa-enqueue] queued document_id={document_id} job_id={job_id}",
        flush=True,
    )


if __name__ == "__main__":
    main()
