from __future__ import annotations

from datetime import datetime, timedelta, timezone
import json
from typing import Any, Protocol
from uuid import uuid4

from sqlalchemy import DateTime, bindparam, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.orm import Session

from docqa.models import JobRecord
from docqa.services.rag.types import IngestionJob

JOB_TYPE = "document_ingest"


class JobQueue(Protocol):
    def claim(self) -> IngestionJob | None: ...

    def ack(self, job: IngestionJob, result_json: dict[str, Any]) -> bool: ...

    def nack(self, job: IngestionJob, *, error: str) -> str: ...


def _normalize_payload(payload_json: Any) -> dict[str, Any] | None:
    if isinstance(payload_json, dict):
        return payload_json
    if isinstance(payload_json, str) and payload_json.strip():
        try:
            parsed = json.loads(payload_json)
        except json.JSONDecodeError:
            return None
        if isinstance(parsed, dict):
            return parsed
    return None


def _job_from_row(row: Any, *, default_max_attempts: int) -> IngestionJob:
    payload = _normalize_payload(row["payload_json"])
    if payload is None:
        raise ValueError("job payload must be a JSON object")

    document_id = payload.get("document_id")
    source_path = payload.get("source_path")
    if not isinstance(document_id, str) or not document_id:
        raise ValueError("job payload is missing document_id")
    if not isinstance(source_path, str) or not source_path:
        raise ValueError("job payload is missing source_path")

    metadata = payload.get("metadata")
    return IngestionJob(
        job_id=str(row["id"]),
        document_id=document_id,
        source_path=source_path,
        metadata=metadata if isinstance(metadata, dict) else {},
        attempts=int(row["attempts"] or 0),
        max_attempts=int(row["max_attempts"] or default_max_attempts),
    )


class SqlJobQueue:
    """At-least-once ingestion job queue on the ``jobs`` table.

    ``queued`` → ``running`` on claim; ``running`` → ``completed`` on ack;
    ``running`` → ``queued`` on nack until ``max_attempts`` deliveries have
    failed, then ``dead_letter``. A ``running`` job whose lease expired is
    treated as a crashed delivery and nacked by :meth:`reclaim_stale`.

    ack and nack only settle the row while it is still ``running`` with the
    attempt count seen at claim time; a delivery that was reclaimed and handed
    out again is superseded and its late outcome is dropped.
    """

    def __init__(self, engine: Engine, *, default_max_attempts: int = 3) -> None:
        self._engine = engine
        self._default_max_attempts = default_max_attempts

    def enqueue(
        self,
        *,
        document_id: str,
        source_path: str,
        metadata: dict[str, Any] | None = None,
        max_attempts: int | None = None,
        session: Session | None = None,
    ) -> str:
        """Queue an ingestion job.

        With *session* the row is only flushed; the caller's transaction
        decides whether it is committed.
        """
        now = datetime.now(timezone.utc)
        job = JobRecord(
            id=uuid4().hex,
            type=JOB_TYPE,
            status="queued",
            payload_json={
                "document_id": document_id,
                "source_path": source_path,
                "metadata": metadata or {},
            },
            attempts=0,
            max_attempts=max_attempts or self._default_max_attempts,
            created_at=now,
            updated_at=now,
        )
        if session is not None:
            session.add(job)
            session.flush()
            return job.id
        with Session(self._engine) as own_session:
            own_session.add(job)
            own_session.commit()
            return job.id

    def get(self, job_id: str) -> JobRecord | None:
        with Session(self._engine, expire_on_commit=False) as session:
            return session.get(JobRecord, job_id)

    def claim(self) -> IngestionJob | None:
        while True:
            with self._engine.begin() as connection:
                row = self._claim_row(connection)
                if row is None:
                    return None
                try:
                    return _job_from_row(row, default_max_attempts=self._default_max_attempts)
                except ValueError as exc:
                    # Unparseable payloads can never succeed.
                    self._mark(
                        connection,
                        job_id=str(row["id"]),
                        status="dead_letter",
                        attempts=int(row["attempts"] or 0),
                        error=str(exc),
                    )
                    print(f"[queue] job dead-lettered job_id={row['id']} error={exc}", flush=True)

    def _claim_row(self, connection: Connection) -> Any:
        if self._engine.dialect.name == "postgresql":
            row = connection.execute(
                text(
                    """
                    SELECT id, payload_json, attempts, max_attempts
                    FROM jobs
                    WHERE type = :type AND status = 'queued'
                    ORDER BY created_at ASC, id ASC
                    FOR UPDATE SKIP LOCKED
                    LIMIT 1
                    """
                ),
                {"type": JOB_TYPE},
            ).mappings().first()
            if row is None:
                return None
            self._mark_running(connection, str(row["id"]))
            return row

        row = connection.execute(
            text(
                """
                SELECT id, payload_json, attempts, max_attempts
                FROM jobs
                WHERE type = :type AND status = 'queued'
                ORDER BY created_at ASC, id ASC
                LIMIT 1
                """
            ),
            {"type": JOB_TYPE},
        ).mappings().first()
        if row is None:
            return None
        if self._mark_running(connection, str(row["id"])) != 1:
            return None
        return row

    def _mark_running(self, connection: Connection, job_id: str) -> int:
        claimed = connection.execute(
            text(
                """
                UPDATE jobs
                SET status = 'running',
                    started_at = CURRENT_TIMESTAMP,
                    updated_at = CURRENT_TIMESTAMP,
                    finished_at = NULL,
                    error = NULL
                WHERE id = :job_id AND status = 'queued'
                """
            ),
            {"job_id": job_id},
        )
        return claimed.rowcount

    def ack(self, job: IngestionJob, result_json: dict[str, Any]) -> bool:
        """Complete *job*; returns False if this delivery was superseded."""
        with self._engine.begin() as connection:
            updated = connection.execute(
                text(
                    """
                    UPDATE jobs
                    SET status = 'completed',
                        result_json = :result_json,
                        finished_at = CURRENT_TIMESTAMP,
                        updated_at = CURRENT_TIMESTAMP,
                        error = NULL
                    WHERE id = :job_id AND status = 'running' AND attempts = :attempts
                    """
                ),
                {
                    "job_id": job.job_id,
                    "attempts": job.attempts,
                    "result_json": json.dumps(result_json),
                },
            )
        if updated.rowcount != 1:
            _log_superseded(job, "ack")
            return False
        return True

    def nack(self, job: IngestionJob, *, error: str) -> str:
        """Fail this delivery; returns ``queued``, ``dead_letter`` or ``superseded``."""
        next_attempts = job.attempts + 1
        status = "queued" if next_attempts < job.max_attempts else "dead_letter"
        with self._engine.begin() as connection:
            updated = self._mark(
                connection,
                job_id=job.job_id,
                status=status,
                attempts=next_attempts,
                error=error,
                expected_attempts=job.attempts,
            )
        if updated != 1:
            _log_superseded(job, "nack")
            return "superseded"
        return status

    def _mark(
        self,
        connection: Connection,
        *,
        job_id: str,
        status: str,
        attempts: int,
        error: str,
        expected_attempts: int | None = None,
    ) -> int:
        params: dict[str, Any] = {
            "job_id": job_id,
            "status": status,
            "attempts": attempts,
            "error": error,
        }
        # Only the current running delivery may settle the row.
        delivery_clause = ""
        if expected_attempts is not None:
            delivery_clause = " AND status = 'running' AND attempts = :expected_attempts"
            params["expected_attempts"] = expected_attempts

        updated = connection.execute(
            text(
                f"""
                UPDATE jobs
                SET status = CAST(:status AS VARCHAR),
                    attempts = :attempts,
                    error = :error,
                    finished_at = CASE WHEN CAST(:status AS VARCHAR) = 'dead_letter' THEN CURRENT_TIMESTAMP ELSE NULL END,
                    started_at = CASE WHEN CAST(:status AS VARCHAR) = 'queued' THEN NULL ELSE started_at END,
                    updated_at = CURRENT_TIMESTAMP
                WHERE id = :job_id{delivery_clause}
                """
            ),
            params,
        )
        return updated.rowcount

    def reclaim_stale(self, *, lease_seconds: float) -> int:
        cutoff = datetime.now(timezone.utc) - timedelta(seconds=lease_seconds)
        with self._engine.connect() as connection:
            rows = connection.execute(
                text(
                    """
                    SELECT id, payload_json, attempts, max_attempts
                    FROM jobs
                    WHERE type = :type AND status = 'running' AND started_at < :cutoff
                    """
                ).bindparams(bindparam("cutoff", type_=DateTime(timezone=True))),
                {"type": JOB_TYPE, "cutoff": cutoff},
            ).mappings().all()

        reclaimed = 0
        for row in rows:
            current_attempts = int(row["attempts"] or 0)
            attempts = current_attempts + 1
            max_attempts = int(row["max_attempts"] or self._default_max_attempts)
            status = "queued" if attempts < max_attempts else "dead_letter"
            with self._engine.begin() as connection:
                updated = self._mark(
                    connection,
                    job_id=str(row["id"]),
                    status=status,
                    attempts=attempts,
                    error=f"lease expired after {lease_seconds:.0f}s",
                    expected_attempts=current_attempts,
                )
            if updated == 1:
                reclaimed += 1
                print(
                    f"[queue] reclaimed stale job job_id={row['id']} status={status}",
                    flush=True,
                )
        return reclaimed


def _log_superseded(job: IngestionJob, action: str) -> None:
    print(
        f"[queue] {action} ignored, delivery superseded job_id={job.job_id} "
        f"attempts={job.attempts}",
        flush=True,
    )
