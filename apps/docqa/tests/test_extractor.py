from pathlib import Path

import pytest

from docqa.services.rag.errors import ExtractionFailed
from docqa.services.rag.extractor import extract_document
from docqa.services.rag.types import ExtractedDocument


def test_plain_text_pages_are_split_on_form_feed(tmp_path: Path) -> None:
    path = tmp_path / "manual.txt"
    path.write_text("first page\fsecond page", encoding="utf-8")

    document = extract_document(path)

    assert document.text == "first page\n\nsecond page"
    assert document.page_starts == (0, 12)
    assert document.text[document.page_starts[1] :].startswith("second page")


def test_markdown_is_read_as_single_page(tmp_path: Path) -> None:
    path = tmp_path / "notes.MD"
    path.write_text("# Title\n\nBody text.", encoding="utf-8")

    document = extract_document(path)

    assert document.text == "# Title\n\nBody text."
    assert document.page_starts == (0,)


def test_missing_file_fails_extraction(tmp_path: Path) -> None:
    with pytest.raises(ExtractionFailed, match="not found"):
        extract_document(tmp_path / "absent.txt")


def test_unsupported_suffix_fails_extraction(tmp_path: Path) -> None:
    path = tmp_path / "sheet.xlsx"
    path.write_bytes(b"PK\x03\x04")

    with pytest.raises(ExtractionFailed, match="Unsupported document type"):
        extract_document(path)


def test_invalid_utf8_fails_extraction(tmp_path: Path) -> None:
    path = tmp_path / "latin1.txt"
    path.write_bytes("caf\xe9".encode("latin-1"))

    with pytest.raises(ExtractionFailed, match="not valid UTF-8"):
        extract_document(path)


def test_empty_text_fails_extraction(tmp_path: Path) -> None:
    path = tmp_path / "blank.md"
    path.write_text("   \n\n  ", encoding="utf-8")

    with pytest.raises(ExtractionFailed, match="No text"):
        extract_document(path)


def test_corrupt_pdf_fails_extraction(tmp_path: Path) -> None:
    path = tmp_path / "broken.pdf"
    path.write_bytes(b"this is not a pdf")

    with pytest.raises(ExtractionFailed):
        extract_document(path)


def test_custom_extractor_registry(tmp_path: Path) -> None:
    class _UpperExtractor:
        def extract(self, path: Path) -> ExtractedDocument:
            return ExtractedDocument(text=path.read_text(encoding="utf-8").upper(), page_starts=(0,))

    path = tmp_path / "data.csv"
    path.write_text("a,b", encoding="utf-8")

    document = extract_document(path, {".csv": _UpperExtractor()})

    assert document.text == "A,B"
