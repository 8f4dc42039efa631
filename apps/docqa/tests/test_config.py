import pytest

from docqa.config import get_settings


def test_chunk_max_tokens_is_capped_by_embedding_token_limit(monkeypatch) -> None:
    monkeypatch.setenv("RAG_CHUNK_MAX_TOKENS", "9000")
    monkeypatch.setenv("RAG_EMBEDDING_TOKEN_LIMIT", "512")

    settings = get_settings()

    assert settings.rag_chunk_max_tokens == 9000
    assert settings.chunk_max_tokens == 512


def test_defaults_without_env(monkeypatch) -> None:
    for name in (
        "RAG_CHUNK_MAX_TOKENS",
        "RAG_CHUNK_OVERLAP_TOKENS",
        "RAG_EMBEDDING_PROVIDER",
        "RAG_TOP_K",
        "WORKER_CONCURRENCY",
        "JOB_MAX_ATTEMPTS",
        "CONVERSATION_MAX_TURNS",
    ):
        monkeypatch.delenv(name, raising=False)

    settings = get_settings()

    assert settings.chunk_max_tokens == 400
    assert settings.rag_chunk_overlap_tokens == 40
    assert settings.rag_embedding_provider == "ollama"
    assert settings.rag_top_k == 5
    assert settings.worker_concurrency == 2
    assert settings.job_max_attempts == 3
    assert settings.conversation_max_turns == 20


def test_integer_settings_are_clamped_and_booleans_parsed(monkeypatch) -> None:
    monkeypatch.setenv("WORKER_CONCURRENCY", "0")
    monkeypatch.setenv("RAG_TOP_K", "-3")
    monkeypatch.setenv("DOCQA_DB_ECHO", "Yes")
    monkeypatch.setenv("LLM_PROVIDER", " OpenAI ")

    settings = get_settings()

    assert settings.worker_concurrency == 1
    assert settings.rag_top_k == 1
    assert settings.db_echo is True
    assert settings.llm_provider == "openai"


def test_non_numeric_integer_setting_raises(monkeypatch) -> None:
    monkeypatch.setenv("RAG_EMBEDDING_BATCH_SIZE", "lots")

    with pytest.raises(ValueError):
        get_settings()


def test_lease_shorter_than_job_timeout_is_rejected(monkeypatch) -> None:
    monkeypatch.setenv("WORKER_JOB_TIMEOUT_SECONDS", "120")
    monkeypatch.setenv("WORKER_LEASE_SECONDS", "60")

    with pytest.raises(ValueError, match="WORKER_LEASE_SECONDS"):
        get_settings()


def test_lease_equal_to_job_timeout_is_rejected(monkeypatch) -> None:
    monkeypatch.setenv("WORKER_JOB_TIMEOUT_SECONDS", "300")
    monkeypatch.setenv("WORKER_LEASE_SECONDS", "300")

    with pytest.raises(ValueError):
        get_settings()


def test_lease_longer_than_job_timeout_is_accepted(monkeypatch) -> None:
    monkeypatch.setenv("WORKER_JOB_TIMEOUT_SECONDS", "300")
    monkeypatch.setenv("WORKER_LEASE_SECONDS", "301")

    settings = get_settings()

    assert settings.worker_lease_seconds > settings.worker_job_timeout_seconds
