from __future__ import annotations

from dataclasses import asdict
from typing import Protocol, Sequence

import httpx

from docqa.config import Settings
from docqa.services.rag.types import ProgressEvent


class ProgressNotifier(Protocol):
    def notify(self, event: ProgressEvent) -> None: ...


class LogProgressNotifier:
    def notify(self, event: ProgressEvent) -> None:
        detail = f" detail={event.detail}" if event.detail else ""
        print(
            f"[progress] document_id={event.document_id} status={event.status}{detail}",
            flush=True,
        )


class WebhookProgressNotifier:
    def __init__(self, *, url: str, timeout_seconds: float = 5.0) -> None:
        self._url = url
        self._timeout_seconds = timeout_seconds

    def notify(self, event: ProgressEvent) -> None:
        response = httpx.post(self._url, json=asdict(event), timeout=self._timeout_seconds)
        response.raise_for_status()


class CompositeProgressNotifier:
    def __init__(self, notifiers: Sequence[ProgressNotifier]) -> None:
        self._notifiers = list(notifiers)

    def notify(self, event: ProgressEvent) -> None:
        errors: list[Exception] = []
        for notifier in self._notifiers:
            try:
                notifier.notify(event)
            except Exception as exc:
                errors.append(exc)
        if errors:
            raise RuntimeError(f"{len(errors)} progress notifier(s) failed: {errors[0]}") from errors[0]


def create_progress_notifier(settings: Settings) -> ProgressNotifier:
    if not settings.progress_webhook_url:
        return LogProgressNotifier()
    return CompositeProgressNotifier(
        [LogProgressNotifier(), WebhookProgressNotifier(url=settings.progress_webhook_url)]
    )
