from __future__ import annotations

from docqa.llm import ChatMessage, LLMClient, LLMClientError
from docqa.services.rag.conversation import ConversationStore, make_turn
from docqa.services.rag.errors import GenerationUnavailable
from docqa.services.rag.retriever import Retriever
from docqa.services.rag.types import Answer, ConversationTurn, RetrievalResult

SYSTEM_INSTRUCTIONS = (
    "You answer questions about the user's documents. "
    "Ground every statement in the numbered context fragments and cite them as [n]. "
    "If the fragments do not contain the answer, say so briefly."
)

NO_CONTEXT_NOTE = (
    "No relevant fragments were found in the indexed documents. "
    "Tell the user the documents do not cover this question; "
    "any general-knowledge answer must be labelled as not grounded in their documents."
)


def _pages_label(page_numbers: tuple[int, ...]) -> str:
    if not page_numbers:
        return ""
    if len(page_numbers) == 1:
        return f", page {page_numbers[0]}"
    return f", pages {page_numbers[0]}-{page_numbers[-1]}"


def render_context(
    results: list[RetrievalResult],
    *,
    max_chars: int,
) -> tuple[str, list[RetrievalResult]]:
    """Render fragments with provenance until *max_chars* is reached.

    Returns the rendered block and the fragments that made it in. The first
    fragment is always included, truncated if it alone exceeds the budget.
    """
    parts: list[str] = []
    used: list[RetrievalResult] = []
    total_chars = 0

    for number, result in enumerate(results, 1):
        header = (
            f"[{number}] {result.document_name}"
            f"{_pages_label(result.page_numbers)} (fragment {result.chunk_index})"
        )
        block = f"{header}\n{result.text}"
        if total_chars + len(block) > max_chars:
            if used:
                break
            block = block[:max_chars]

        parts.append(block)
        used.append(result)
        total_chars += len(block) + 2

    return "\n\n".join(parts), used


def build_messages(
    *,
    question: str,
    context: str,
    history: list[ConversationTurn],
) -> list[ChatMessage]:
    grounding = f"Context:\n{context}" if context else NO_CONTEXT_NOTE
    messages = [ChatMessage(role="system", content=f"{SYSTEM_INSTRUCTIONS}\n\n{grounding}")]
    messages.extend(ChatMessage(role=turn.role, content=turn.text) for turn in history)
    messages.append(ChatMessage(role="user", content=question))
    return messages


class AnswerAssembler:
    def __init__(
        self,
        *,
        retriever: Retriever,
        conversations: ConversationStore,
        llm_client: LLMClient,
        max_context_chars: int = 8000,
        history_turns: int = 10,
    ) -> None:
        self._retriever = retriever
        self._conversations = conversations
        self._llm_client = llm_client
        self._max_context_chars = max_context_chars
        self._history_turns = history_turns

    def answer(
        self,
        conversation_id: str,
        question: str,
        *,
        document_id: str | None = None,
        top_k: int | None = None,
    ) -> Answer:
        normalized_question = question.strip()
        if not normalized_question:
            raise ValueError("question must not be empty")

        results = self._retriever.retrieve(
            normalized_question, top_k=top_k, document_id=document_id
        )
        context, used = render_context(results, max_chars=self._max_context_chars)

        # One question/answer round at a time per conversation, so turns from
        # concurrent questions never interleave.
        with self._conversations.exchange(conversation_id):
            history = self._conversations.history(conversation_id)
            if self._history_turns:
                history = history[-self._history_turns :]
            else:
                history = []
            messages = build_messages(
                question=normalized_question, context=context, history=history
            )

            # Recorded before generation so a failed call keeps the question.
            self._conversations.append(conversation_id, make_turn("user", normalized_question))
            try:
                chat_result = self._llm_client.generate(messages)
            except LLMClientError as exc:
                print(
                    f"[answer] generation failed conversation_id={conversation_id} error={exc}",
                    flush=True,
                )
                raise GenerationUnavailable(f"LLM request failed: {exc}") from exc

            self._conversations.append(
                conversation_id, make_turn("assistant", chat_result.answer)
            )

        return Answer(
            text=chat_result.answer,
            source_fragments=used,
            model=chat_result.model,
            used_fallback=chat_result.used_fallback,
        )
