from __future__ import annotations

from collections import deque
from datetime import datetime, timezone
from threading import Lock, RLock
from typing import ContextManager, Protocol

from docqa.services.rag.types import ConversationTurn

ROLES = frozenset({"user", "assistant"})


def make_turn(role: str, text: str) -> ConversationTurn:
    if role not in ROLES:
        raise ValueError(f"Unknown conversation role: {role!r}")
    return ConversationTurn(role=role, text=text, timestamp=datetime.now(timezone.utc))


class ConversationStore(Protocol):
    def append(self, conversation_id: str, turn: ConversationTurn) -> None: ...

    def history(self, conversation_id: str) -> list[ConversationTurn]: ...

    def exchange(self, conversation_id: str) -> ContextManager[object]: ...


class InMemoryConversationStore:
    """Bounded per-conversation history held for the life of the process.

    Nothing is persisted: a restart loses every conversation. Appends to one
    conversation are serialized by that conversation's lock; distinct
    conversations never contend. :meth:`exchange` holds the same lock across a
    whole question/answer round so concurrent questions in one conversation
    cannot interleave their turns.
    """

    def __init__(self, *, max_turns: int) -> None:
        if max_turns <= 0:
            raise ValueError("max_turns must be > 0")
        self._max_turns = max_turns
        self._turns: dict[str, deque[ConversationTurn]] = {}
        self._locks: dict[str, RLock] = {}
        self._registry_lock = Lock()

    def _lock_for(self, conversation_id: str) -> RLock:
        with self._registry_lock:
            lock = self._locks.get(conversation_id)
            if lock is None:
                # Reentrant: append and history run inside exchange.
                lock = RLock()
                self._locks[conversation_id] = lock
                self._turns[conversation_id] = deque(maxlen=self._max_turns)
            return lock

    def exchange(self, conversation_id: str) -> RLock:
        return self._lock_for(conversation_id)

    def append(self, conversation_id: str, turn: ConversationTurn) -> None:
        with self._lock_for(conversation_id):
            # deque(maxlen) drops from the oldest end.
            self._turns[conversation_id].append(turn)

    def history(self, conversation_id: str) -> list[ConversationTurn]:
        with self._registry_lock:
            lock = self._locks.get(conversation_id)
        if lock is None:
            return []
        with lock:
            return list(self._turns[conversation_id])
