from __future__ import annotations

from bisect import bisect_right
import re

from docqa.services.rag.types import TextChunk

_TOKEN_RE = re.compile(r"\S+")
_PARAGRAPH_BREAK_RE = re.compile(r"\n[^\S\n]*\n")
_SENTENCE_END_RE = re.compile(r"[.!?][\"')\]]*$")


def estimate_tokens(text: str) -> int:
    return len(text.split())


def _paragraph_ranges(text: str, spans: list[tuple[int, int]]) -> list[tuple[int, int]]:
    ranges: list[tuple[int, int]] = []
    start = 0
    for index in range(1, len(spans)):
        gap = text[spans[index - 1][1] : spans[index][0]]
        if _PARAGRAPH_BREAK_RE.search(gap):
            ranges.append((start, index))
            start = index
    ranges.append((start, len(spans)))
    return ranges


def _sentence_ranges(
    text: str,
    spans: list[tuple[int, int]],
    start: int,
    end: int,
) -> list[tuple[int, int]]:
    ranges: list[tuple[int, int]] = []
    cursor = start
    for index in range(start, end):
        token = text[spans[index][0] : spans[index][1]]
        if _SENTENCE_END_RE.search(token):
            ranges.append((cursor, index + 1))
            cursor = index + 1
    if cursor < end:
        ranges.append((cursor, end))
    return ranges


def _units(text: str, spans: list[tuple[int, int]], budget: int) -> list[tuple[int, int]]:
    units: list[tuple[int, int]] = []
    for paragraph_start, paragraph_end in _paragraph_ranges(text, spans):
        if paragraph_end - paragraph_start <= budget:
            units.append((paragraph_start, paragraph_end))
            continue
        for sentence_start, sentence_end in _sentence_ranges(
            text, spans, paragraph_start, paragraph_end
        ):
            if sentence_end - sentence_start <= budget:
                units.append((sentence_start, sentence_end))
                continue
            # Hard cut for a single sentence longer than the budget.
            for cut in range(sentence_start, sentence_end, budget):
                units.append((cut, min(cut + budget, sentence_end)))
    return units


def chunk_text(text: str, *, max_tokens: int, overlap_tokens: int) -> list[TextChunk]:
    """Split *text* into overlapping chunks of at most *max_tokens* tokens.

    Tokens are whitespace-separated words. Boundaries prefer paragraphs, then
    sentences, then hard token cuts. Each chunk after the first starts with
    the trailing ``overlap_tokens`` of its predecessor; the overlap is clamped
    to half of ``max_tokens``. Output is a pure function of the arguments.
    """
    if max_tokens <= 0:
        raise ValueError("max_tokens must be > 0")
    if overlap_tokens < 0:
        raise ValueError("overlap_tokens must be >= 0")

    overlap = min(overlap_tokens, max_tokens // 2)
    spans = [(match.start(), match.end()) for match in _TOKEN_RE.finditer(text)]
    if not spans:
        return []

    ranges: list[tuple[int, int, int]] = []
    start = end = lead = -1
    for unit_start, unit_end in _units(text, spans, max_tokens - overlap):
        if start < 0:
            start, end, lead = unit_start, unit_end, 0
            continue
        if unit_end - start <= max_tokens:
            end = unit_end
            continue

        ranges.append((start, end, lead))
        lead = min(overlap, end - start - 1)
        start, end = end - lead, unit_end
    ranges.append((start, end, lead))

    chunks: list[TextChunk] = []
    for index, (token_start, token_end, lead_tokens) in enumerate(ranges):
        start_char = spans[token_start][0]
        end_char = spans[token_end - 1][1]
        chunks.append(
            TextChunk(
                index=index,
                text=text[start_char:end_char],
                start_char=start_char,
                end_char=end_char,
                token_count=token_end - token_start,
                overlap_tokens=lead_tokens,
            )
        )
    return chunks


def page_numbers_for_span(
    page_starts: tuple[int, ...],
    start_char: int,
    end_char: int,
) -> tuple[int, ...]:
    if not page_starts or end_char <= start_char:
        return ()
    first = max(1, bisect_right(page_starts, start_char))
    last = max(first, bisect_right(page_starts, end_char - 1))
    return tuple(range(first, last + 1))
