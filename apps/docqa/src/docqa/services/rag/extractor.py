from __future__ import annotations

from pathlib import Path
from typing import Mapping, Protocol

from pypdf import PdfReader
from pypdf.errors import PyPdfError

from docqa.services.rag.errors import ExtractionFailed
from docqa.services.rag.types import ExtractedDocument

PAGE_BREAK = "\f"


class TextExtractor(Protocol):
    def extract(self, path: Path) -> ExtractedDocument: ...


def _join_pages(pages: list[str]) -> ExtractedDocument:
    page_starts: list[int] = []
    parts: list[str] = []
    cursor = 0
    for page in pages:
        page_starts.append(cursor)
        parts.append(page)
        cursor += len(page) + 2
    return ExtractedDocument(text="\n\n".join(parts), page_starts=tuple(page_starts))


class PlainTextExtractor:
    """UTF-8 text and Markdown. A form feed separates pages."""

    def extract(self, path: Path) -> ExtractedDocument:
        try:
            raw = path.read_text(encoding="utf-8")
        except UnicodeDecodeError as exc:
            raise ExtractionFailed(f"{path.name} is not valid UTF-8: {exc}") from exc
        except OSError as exc:
            raise ExtractionFailed(f"cannot read {path}: {exc}") from exc

        return _join_pages(raw.split(PAGE_BREAK))


class PdfExtractor:
    def extract(self, path: Path) -> ExtractedDocument:
        try:
            reader = PdfReader(str(path))
            pages = [(page.extract_text() or "").strip() for page in reader.pages]
        except (PyPdfError, OSError, ValueError) as exc:
            raise ExtractionFailed(f"cannot parse PDF {path.name}: {exc}") from exc

        return _join_pages(pages)


DEFAULT_EXTRACTORS: Mapping[str, TextExtractor] = {
    ".txt": PlainTextExtractor(),
    ".md": PlainTextExtractor(),
    ".pdf": PdfExtractor(),
}


def extract_document(
    path: Path,
    extractors: Mapping[str, TextExtractor] | None = None,
) -> ExtractedDocument:
    registry = extractors if extractors is not None else DEFAULT_EXTRACTORS
    if not path.exists():
        raise ExtractionFailed(f"Source file not found: {path}")
    if not path.is_file():
        raise ExtractionFailed(f"Source path is not a file: {path}")

    extractor = registry.get(path.suffix.lower())
    if extractor is None:
        raise ExtractionFailed(
            f"Unsupported document type {path.suffix or '<none>'!r} "
            f"(supported: {sorted(registry)})"
        )

    document = extractor.extract(path)
    if not document.text.strip():
        raise ExtractionFailed(f"No text could be extracted from {path.name}")
    return document
