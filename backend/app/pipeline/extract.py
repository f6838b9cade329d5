"""Document format detection and plain-text extraction."""

from __future__ import annotations

import io
import logging
import zipfile
from enum import Enum
from pathlib import Path

from app.errors import ExtractionError, InvalidUpload, UnrecognizedFormat

logger = logging.getLogger(__name__)

_PDF_MAGIC = b"%PDF-"
_ZIP_MAGIC = b"PK\x03\x04"
_DOCX_MEMBERS = {"[Content_Types].xml", "word/document.xml"}
_TEXT_EXTENSIONS = {".txt"}
_TEXT_SNIFF_BYTES = 8192


class DocumentFormat(str, Enum):
    """Accepted upload formats, keyed by their canonical MIME type."""

    PDF = "application/pdf"
    DOCX = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
    TEXT = "text/plain"

    @property
    def label(self) -> str:
        return self.name

    @classmethod
    def from_mime(cls, mime_type: str | None) -> "DocumentFormat":
        normalized = (mime_type or "").split(";")[0].strip().lower()
        try:
            return cls(normalized)
        except ValueError as exc:
            raise UnrecognizedFormat(f"Unsupported document type: {mime_type or 'unknown'}") from exc


def _looks_like_text(data: bytes) -> bool:
    head = data[:_TEXT_SNIFF_BYTES]
    if b"\x00" in head:
        return False
    try:
        data.decode("utf-8-sig")
    except UnicodeDecodeError:
        return False
    return True


def _is_docx_package(data: bytes) -> bool:
    try:
        with zipfile.ZipFile(io.BytesIO(data)) as archive:
            return _DOCX_MEMBERS.issubset(set(archive.namelist()))
    except zipfile.BadZipFile:
        return False


def detect_format(data: bytes, filename: str) -> DocumentFormat:
    """Classify an upload by its binary signature; the client's declared type is ignored.

    Plain text has no signature, so it is accepted only for ``.txt`` names whose
    content decodes as UTF-8 and carries no NUL bytes.
    """
    if not data:
        raise InvalidUpload("Uploaded file is empty")

    if data.startswith(_PDF_MAGIC):
        return DocumentFormat.PDF

    if data.startswith(_ZIP_MAGIC):
        if _is_docx_package(data):
            return DocumentFormat.DOCX
        raise UnrecognizedFormat("Archive is not a word-processor document. Accepted types: PDF, DOCX, TXT.")

    if Path(filename).suffix.lower() in _TEXT_EXTENSIONS and _looks_like_text(data):
        return DocumentFormat.TEXT

    raise UnrecognizedFormat("Unable to determine the file type. Accepted types: PDF, DOCX, TXT.")


def _extract_pdf(data: bytes) -> str:
    from pypdf import PdfReader

    try:
        reader = PdfReader(io.BytesIO(data))
        if reader.is_encrypted:
            raise ExtractionError("PDF is encrypted")
        pages = [page.extract_text() or "" for page in reader.pages]
    except ExtractionError:
        raise
    except Exception as exc:  # noqa: BLE001
        raise ExtractionError(f"Could not parse PDF: {exc}") from exc
    return "\n\n".join(text.strip() for text in pages if text.strip())


def _extract_docx(data: bytes) -> str:
    import docx

    try:
        document = docx.Document(io.BytesIO(data))
    except Exception as exc:  # noqa: BLE001
        raise ExtractionError(f"Could not parse DOCX: {exc}") from exc

    lines = [paragraph.text for paragraph in document.paragraphs if paragraph.text.strip()]
    for table in document.tables:
        for row in table.rows:
            cells = [cell.text.strip() for cell in row.cells if cell.text.strip()]
            if cells:
                lines.append(" ".join(cells))
    return "\n".join(lines)


def _extract_plain(data: bytes) -> str:
    try:
        return data.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise ExtractionError(f"Text file is not valid UTF-8: {exc}") from exc


def extract_text(data: bytes, document_format: DocumentFormat) -> str:
    """Return the plain text of a document.

    An empty return value means the document parsed but holds no text; any
    parse failure raises ``ExtractionError`` instead.
    """
    if not data:
        raise ExtractionError("Cannot extract text from an empty document")

    if document_format is DocumentFormat.PDF:
        text = _extract_pdf(data)
    elif document_format is DocumentFormat.DOCX:
        text = _extract_docx(data)
    elif document_format is DocumentFormat.TEXT:
        text = _extract_plain(data)
    else:
        raise UnrecognizedFormat(f"No extractor for {document_format!r}")

    logger.debug("text extracted", extra={"format": document_format.label, "chars": len(text)})
    return text
