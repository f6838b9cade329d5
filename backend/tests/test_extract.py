from __future__ import annotations

import io
import zipfile

import pytest

from app.errors import ExtractionError, InvalidUpload, UnrecognizedFormat
from app.pipeline.extract import DocumentFormat, detect_format, extract_text


def _docx_bytes(*paragraphs: str) -> bytes:
    docx = pytest.importorskip("docx")
    document = docx.Document()
    for paragraph in paragraphs:
        document.add_paragraph(paragraph)
    buffer = io.BytesIO()
    document.save(buffer)
    return buffer.getvalue()


def _corrupted_pdf_bytes() -> bytes:
    return b"%PDF-1.7\n1 0 obj<</Type/Catalog/Pages 2 0 R" + b"\x00\xff garbage" * 20


def test_detect_format_uses_content_signature_not_filename() -> None:
    assert detect_format(b"%PDF-1.4\n...", "chapter1.docx") is DocumentFormat.PDF
    assert detect_format(_docx_bytes("Hello"), "chapter1.pdf") is DocumentFormat.DOCX
    assert detect_format("Plain chapter text".encode(), "chapter1.txt") is DocumentFormat.TEXT


def test_detect_format_rejects_unknown_payloads() -> None:
    with pytest.raises(UnrecognizedFormat):
        detect_format(b"\x89PNG\r\n\x1a\n\x00\x00", "scan.png")
    with pytest.raises(UnrecognizedFormat):
        detect_format(b"Plain text but wrong extension", "notes.md")
    with pytest.raises(UnrecognizedFormat):
        detect_format(b"binary\x00data", "notes.txt")
    with pytest.raises(InvalidUpload):
        detect_format(b"", "empty.txt")


def test_detect_format_rejects_zip_that_is_not_a_word_document() -> None:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        archive.writestr("readme.txt", "not a document")

    with pytest.raises(UnrecognizedFormat):
        detect_format(buffer.getvalue(), "chapter.docx")


def test_extract_text_reads_docx_paragraphs() -> None:
    data = _docx_bytes("Chapter One", "Background of the study.")

    text = extract_text(data, DocumentFormat.DOCX)

    assert "Chapter One" in text
    assert "Background of the study." in text


def test_extract_text_decodes_plain_text_with_bom() -> None:
    assert extract_text("\ufeffIntroduction".encode("utf-8"), DocumentFormat.TEXT) == "Introduction"


def test_extract_text_raises_typed_error_for_corrupted_pdf() -> None:
    with pytest.raises(ExtractionError):
        extract_text(_corrupted_pdf_bytes(), DocumentFormat.PDF)


def test_extract_text_raises_for_empty_or_undecodable_input() -> None:
    with pytest.raises(ExtractionError):
        extract_text(b"", DocumentFormat.TEXT)
    with pytest.raises(ExtractionError):
        extract_text(b"\xff\xfe\xfa", DocumentFormat.TEXT)


def test_document_format_from_mime() -> None:
    assert DocumentFormat.from_mime("application/pdf; charset=binary") is DocumentFormat.PDF
    assert DocumentFormat.from_mime("TEXT/PLAIN") is DocumentFormat.TEXT
    with pytest.raises(UnrecognizedFormat):
        DocumentFormat.from_mime("image/png")
    with pytest.raises(UnrecognizedFormat):
        DocumentFormat.from_mime(None)
