from threading import Event, Thread

import pytest

from docqa.llm import ChatMessage, ChatResult, LLMClientError
from docqa.services.rag.answer import NO_CONTEXT_NOTE, AnswerAssembler, render_context
from docqa.services.rag.conversation import InMemoryConversationStore, make_turn
from docqa.services.rag.errors import GenerationUnavailable
from docqa.services.rag.types import RetrievalResult


def _result(index: int, text: str, *, pages: tuple[int, ...] = (1,)) -> RetrievalResult:
    return RetrievalResult(
        fragment_id=f"doc-1-{index:04d}",
        document_id="doc-1",
        document_name="manual.pdf",
        chunk_index=index,
        text=text,
        score=1.0 - index / 10,
        page_numbers=pages,
    )


class _FakeRetriever:
    def __init__(self, results: list[RetrievalResult]) -> None:
        self._results = results
        self.calls: list[tuple[str, int | None, str | None]] = []

    def retrieve(self, query: str, *, top_k: int | None = None, document_id: str | None = None):
        self.calls.append((query, top_k, document_id))
        return list(self._results)


class _FakeLLMClient:
    def __init__(self, *, answer: str = "The pump is primed first [1].", fail: bool = False) -> None:
        self._answer = answer
        self._fail = fail
        self.messages: list[list[ChatMessage]] = []

    def generate(self, messages: list[ChatMessage]) -> ChatResult:
        self.messages.append(messages)
        if self._fail:
            raise LLMClientError("upstream unavailable")
        return ChatResult(answer=self._answer, model="primary", used_fallback=False)


def _assembler(retriever, llm_client, conversations=None, **kwargs) -> AnswerAssembler:
    return AnswerAssembler(
        retriever=retriever,
        conversations=conversations or InMemoryConversationStore(max_turns=20),
        llm_client=llm_client,
        **kwargs,
    )


def test_answer_cites_retrieved_fragments_and_records_turns() -> None:
    conversations = InMemoryConversationStore(max_turns=20)
    retriever = _FakeRetriever([_result(0, "Prime the pump before start.", pages=(3, 4))])
    llm_client = _FakeLLMClient()

    answer = _assembler(retriever, llm_client, conversations).answer(
        "c1", " How do I start the pump? ", top_k=3, document_id="doc-1"
    )

    assert answer.text == "The pump is primed first [1]."
    assert [fragment.fragment_id for fragment in answer.source_fragments] == ["doc-1-0000"]
    assert answer.model == "primary"
    assert retriever.calls == [("How do I start the pump?", 3, "doc-1")]

    system = llm_client.messages[0][0]
    assert system.role == "system"
    assert "[1] manual.pdf, pages 3-4 (fragment 0)" in system.content
    assert "Prime the pump before start." in system.content
    assert llm_client.messages[0][-1] == ChatMessage(role="user", content="How do I start the pump?")

    history = conversations.history("c1")
    assert [(turn.role, turn.text) for turn in history] == [
        ("user", "How do I start the pump?"),
        ("assistant", "The pump is primed first [1]."),
    ]


def test_answer_without_fragments_says_so() -> None:
    llm_client = _FakeLLMClient(answer="Your documents do not cover this.")

    answer = _assembler(_FakeRetriever([]), llm_client).answer("c1", "What is the capital of Peru?")

    assert answer.source_fragments == []
    assert NO_CONTEXT_NOTE in llm_client.messages[0][0].content
    assert "Context:" not in llm_client.messages[0][0].content


def test_prior_turns_are_sent_in_order() -> None:
    conversations = InMemoryConversationStore(max_turns=20)
    conversations.append("c1", make_turn("user", "first question"))
    conversations.append("c1", make_turn("assistant", "first answer"))
    llm_client = _FakeLLMClient()

    _assembler(_FakeRetriever([]), llm_client, conversations).answer("c1", "follow up")

    messages = llm_client.messages[0]
    assert [(message.role, message.content) for message in messages[1:]] == [
        ("user", "first question"),
        ("assistant", "first answer"),
        ("user", "follow up"),
    ]


def test_history_turns_limits_rendered_history() -> None:
    conversations = InMemoryConversationStore(max_turns=20)
    for index in range(6):
        conversations.append("c1", make_turn("user" if index % 2 == 0 else "assistant", f"t{index}"))
    llm_client = _FakeLLMClient()

    _assembler(_FakeRetriever([]), llm_client, conversations, history_turns=2).answer("c1", "next")

    assert [message.content for message in llm_client.messages[0][1:]] == ["t4", "t5", "next"]


def test_generation_failure_keeps_question_turn() -> None:
    conversations = InMemoryConversationStore(max_turns=20)

    with pytest.raises(GenerationUnavailable, match="upstream unavailable"):
        _assembler(_FakeRetriever([]), _FakeLLMClient(fail=True), conversations).answer(
            "c1", "Will this be kept?"
        )

    assert [(turn.role, turn.text) for turn in conversations.history("c1")] == [
        ("user", "Will this be kept?")
    ]


def test_empty_question_is_rejected() -> None:
    with pytest.raises(ValueError):
        _assembler(_FakeRetriever([]), _FakeLLMClient()).answer("c1", "   ")


def test_render_context_respects_budget_but_keeps_first_fragment() -> None:
    results = [_result(0, "x" * 300), _result(1, "y" * 300)]

    context, used = render_context(results, max_chars=200)

    assert used == [results[0]]
    assert len(context) == 200

    context, used = render_context(results, max_chars=10_000)
    assert used == results
    assert context.index("[1]") < context.index("[2]")


class _SlowFirstLLMClient:
    """Blocks the first generation until released; answers echo the question."""

    def __init__(self) -> None:
        self.first_entered = Event()
        self.release_first = Event()
        self.messages: list[list[ChatMessage]] = []

    def generate(self, messages: list[ChatMessage]) -> ChatResult:
        self.messages.append(messages)
        if len(self.messages) == 1:
            self.first_entered.set()
            self.release_first.wait(5)
        return ChatResult(
            answer=f"answer to {messages[-1].content}", model="primary", used_fallback=False
        )


def test_concurrent_questions_in_one_conversation_do_not_interleave() -> None:
    conversations = InMemoryConversationStore(max_turns=20)
    llm_client = _SlowFirstLLMClient()
    assembler = _assembler(_FakeRetriever([_result(0, "Prime the pump.")]), llm_client, conversations)

    first = Thread(target=assembler.answer, args=("c1", "first question"))
    second = Thread(target=assembler.answer, args=("c1", "second question"))
    first.start()
    assert llm_client.first_entered.wait(5)
    second.start()
    second.join(0.2)
    assert second.is_alive()
    assert len(llm_client.messages) == 1

    llm_client.release_first.set()
    first.join(5)
    second.join(5)

    history = conversations.history("c1")
    assert [(turn.role, turn.text) for turn in history] == [
        ("user", "first question"),
        ("assistant", "answer to first question"),
        ("user", "second question"),
        ("assistant", "answer to second question"),
    ]
    second_prompt = llm_client.messages[1]
    assert [(message.role, message.content) for message in second_prompt[1:]] == [
        ("user", "first question"),
        ("assistant", "answer to first question"),
        ("user", "second question"),
    ]


def test_other_conversations_are_not_blocked_by_a_pending_answer() -> None:
    conversations = InMemoryConversationStore(max_turns=20)
    llm_client = _SlowFirstLLMClient()
    assembler = _assembler(_FakeRetriever([]), llm_client, conversations)

    slow = Thread(target=assembler.answer, args=("c1", "slow question"))
    slow.start()
    try:
        assert llm_client.first_entered.wait(5)
        answer = assembler.answer("c2", "quick question")
    finally:
        llm_client.release_first.set()
        slow.join(5)

    assert answer.text == "answer to quick question"
    assert [turn.role for turn in conversations.history("c2")] == ["user", "assistant"]
