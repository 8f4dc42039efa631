from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import asdict
import signal
from threading import BoundedSemaphore, Event
import time
from typing import Callable

from docqa.config import get_settings
from docqa.container import build_services
from docqa.services.rag.job_queue import JobQueue, SqlJobQueue
from docqa.services.rag.types import IngestionJob, IngestionSummary

Runner = Callable[[IngestionJob, float], IngestionSummary]


def process_job(
    queue: JobQueue,
    job: IngestionJob,
    *,
    runner: Runner,
    timeout_seconds: float,
) -> str:
    """Run one delivery and settle it with the queue.

    The job is acked once the document reached ``ready`` or a permanent
    ``failed``; a retryable failure or an exception (outcome not recorded) is
    nacked so the queue redelivers or dead-letters it.

    Returns ``completed``, the nack status, or ``superseded`` when the lease
    expired and the job was handed to another delivery meanwhile.
    """
    deadline = time.monotonic() + timeout_seconds
    try:
        summary = runner(job, deadline)
    except Exception as exc:
        status = queue.nack(job, error=f"{type(exc).__name__}: {exc}")
        print(
            f"[worker] job errored job_id={job.job_id} attempts={job.attempts + 1}/{job.max_attempts} "
            f"status={status} error={exc!r}",
            flush=True,
        )
        return status

    if summary.status == "ready" or not summary.retryable:
        if not queue.ack(job, asdict(summary)):
            return "superseded"
        print(
            f"[worker] job completed job_id={job.job_id} document_id={job.document_id} "
            f"document_status={summary.status} fragments={summary.fragment_count}",
            flush=True,
        )
        return "completed"

    status = queue.nack(job, error=summary.error or "ingestion failed")
    print(
        f"[worker] job failed job_id={job.job_id} attempts={job.attempts + 1}/{job.max_attempts} "
        f"status={status} error={summary.error}",
        flush=True,
    )
    return status


class JobConsumer:
    """Claims jobs while a slot is free and runs them on a bounded thread pool.

    ``concurrency`` caps how many documents are in memory at once. A job is
    claimed only after a slot has been reserved, so claimed-but-idle jobs never
    pile up behind busy workers.
    """

    def __init__(
        self,
        queue: SqlJobQueue,
        *,
        runner: Runner,
        concurrency: int,
        timeout_seconds: float,
        poll_seconds: float = 5.0,
        lease_seconds: float | None = None,
    ) -> None:
        if concurrency <= 0:
            raise ValueError("concurrency must be > 0")
        if lease_seconds is not None and lease_seconds <= timeout_seconds:
            # A running job must not be reclaimed before its deadline passes.
            raise ValueError("lease_seconds must exceed timeout_seconds")
        self._queue = queue
        self._runner = runner
        self._concurrency = concurrency
        self._timeout_seconds = timeout_seconds
        self._poll_seconds = poll_seconds
        self._lease_seconds = lease_seconds
        self._slots = BoundedSemaphore(concurrency)
        self._executor = ThreadPoolExecutor(max_workers=concurrency, thread_name_prefix="ingest")

    @property
    def concurrency(self) -> int:
        return self._concurrency

    def poll_once(self) -> int:
        if self._lease_seconds is not None:
            self._queue.reclaim_stale(lease_seconds=self._lease_seconds)

        submitted = 0
        while self._slots.acquire(blocking=False):
            try:
                job = self._queue.claim()
            except Exception:
                self._slots.release()
                raise
            if job is None:
                self._slots.release()
                break

            future = self._executor.submit(
                process_job,
                self._queue,
                job,
                runner=self._runner,
                timeout_seconds=self._timeout_seconds,
            )
            future.add_done_callback(self._on_done)
            submitted += 1
        return submitted

    def _on_done(self, future: Future[str]) -> None:
        self._slots.release()
        exc = future.exception()
        if exc is not None:
            # Settling failed; the lease reclaim redelivers the job.
            print(f"[worker] job settlement failed error={exc!r}", flush=True)

    def run(self, stop_event: Event) -> None:
        while not stop_event.is_set():
            try:
                submitted = self.poll_once()
            except Exception as exc:
                print(f"[worker] poll failed error={exc!r}", flush=True)
                submitted = 0
            if submitted == 0:
                stop_event.wait(self._poll_seconds)

    def shutdown(self, *, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


def main() -> None:
    settings = get_settings()
    services = build_services(settings)
    consumer = JobConsumer(
        services.queue,
        runner=lambda job, deadline: services.pipeline.run(job, deadline=deadline),
        concurrency=settings.worker_concurrency,
        timeout_seconds=settings.worker_job_timeout_seconds,
        poll_seconds=settings.worker_poll_seconds,
        lease_seconds=settings.worker_lease_seconds,
    )

    stop_event = Event()

    def _request_stop(signum: int, frame: object) -> None:
        del frame
        print(f"[worker] stop requested signal={signum}", flush=True)
        stop_event.set()

    signal.signal(signal.SIGTERM, _request_stop)
    signal.signal(signal.SIGINT, _request_stop)

    print(
        f"[worker] started worker_id={settings.worker_id} "
        f"concurrency={settings.worker_concurrency} "
        f"timeout_seconds={settings.worker_job_timeout_seconds:.0f}",
        flush=True,
    )
    try:
        consumer.run(stop_event)
    finally:
        consumer.shutdown(wait=True)
        services.close()
        print(f"[worker] stopped worker_id={settings.worker_id}", flush=True)


if __name__ == "__main__":
    main()
