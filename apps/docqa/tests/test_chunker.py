import pytest

from docqa.services.rag.chunker import chunk_text, estimate_tokens, page_numbers_for_span


def _paragraph(prefix: str, count: int) -> str:
    return " ".join(f"{prefix}{index}" for index in range(count))


def _rebuild_tokens(chunks) -> list[str]:
    tokens: list[str] = []
    for chunk in chunks:
        tokens.extend(chunk.text.split()[chunk.overlap_tokens :])
    return tokens


def test_three_paragraph_document_splits_on_paragraphs_with_overlap() -> None:
    text = "\n\n".join(
        [_paragraph("a", 170), _paragraph("b", 160), _paragraph("c", 170)]
    )

    chunks = chunk_text(text, max_tokens=200, overlap_tokens=20)

    assert len(chunks) == 3
    assert [chunk.index for chunk in chunks] == [0, 1, 2]
    assert all(chunk.token_count <= 200 for chunk in chunks)
    assert chunks[0].text == _paragraph("a", 170)
    assert chunks[0].overlap_tokens == 0

    first_tokens = chunks[0].text.split()
    second_tokens = chunks[1].text.split()
    assert chunks[1].overlap_tokens == 20
    assert second_tokens[:20] == first_tokens[-20:]
    assert second_tokens[20:] == _paragraph("b", 160).split()

    assert _rebuild_tokens(chunks) == text.split()


def test_chunk_spans_point_back_into_source_text() -> None:
    text = "Alpha beta gamma.\n\nDelta epsilon zeta. Eta theta iota.\n\nKappa lambda."

    chunks = chunk_text(text, max_tokens=4, overlap_tokens=1)

    for chunk in chunks:
        assert text[chunk.start_char : chunk.end_char] == chunk.text
        assert chunk.token_count == estimate_tokens(chunk.text)
        assert chunk.token_count <= 4
    assert _rebuild_tokens(chunks) == text.split()


def test_single_sentence_longer_than_budget_is_hard_cut() -> None:
    text = _paragraph("w", 25)

    chunks = chunk_text(text, max_tokens=10, overlap_tokens=2)

    assert all(chunk.token_count <= 10 for chunk in chunks)
    assert all(chunk.overlap_tokens == 2 for chunk in chunks[1:])
    assert _rebuild_tokens(chunks) == text.split()


def test_prefers_sentence_boundaries_inside_long_paragraph() -> None:
    first = "one two three four five."
    second = "six seven eight nine ten."
    text = f"{first} {second}"

    chunks = chunk_text(text, max_tokens=6, overlap_tokens=0)

    assert [chunk.text for chunk in chunks] == [first, second]


def test_overlap_is_clamped_to_half_of_max_tokens() -> None:
    text = _paragraph("t", 40)

    chunks = chunk_text(text, max_tokens=10, overlap_tokens=50)

    assert all(chunk.overlap_tokens <= 5 for chunk in chunks)
    assert all(chunk.token_count <= 10 for chunk in chunks)
    assert _rebuild_tokens(chunks) == text.split()


def test_chunking_is_deterministic() -> None:
    text = "\n\n".join(_paragraph(f"p{index}_", 37) for index in range(6))

    first = chunk_text(text, max_tokens=50, overlap_tokens=7)
    second = chunk_text(text, max_tokens=50, overlap_tokens=7)

    assert first == second


def test_short_text_is_a_single_chunk() -> None:
    chunks = chunk_text("  just a few words  ", max_tokens=100, overlap_tokens=10)

    assert len(chunks) == 1
    assert chunks[0].text == "just a few words"
    assert chunks[0].overlap_tokens == 0


def test_whitespace_only_text_has_no_chunks() -> None:
    assert chunk_text(" \n\n\t ", max_tokens=100, overlap_tokens=10) == []


@pytest.mark.parametrize(
    ("max_tokens", "overlap_tokens"),
    [(0, 0), (-5, 0), (10, -1)],
)
def test_invalid_parameters_raise(max_tokens: int, overlap_tokens: int) -> None:
    with pytest.raises(ValueError):
        chunk_text("some text", max_tokens=max_tokens, overlap_tokens=overlap_tokens)


def test_page_numbers_for_span() -> None:
    page_starts = (0, 100, 250)

    assert page_numbers_for_span(page_starts, 10, 50) == (1,)
    assert page_numbers_for_span(page_starts, 90, 120) == (1, 2)
    assert page_numbers_for_span(page_starts, 100, 300) == (2, 3)
    assert page_numbers_for_span((), 0, 10) == ()
