#!/usr/bin/env python3
"""Reference-document text extraction.

Supports PDF (via pypdf), DOCX (via python-docx), and plain text. Uploads
are processed in memory; nothing is written to disk. The extracted text is
opaque reference input for section generation and is truncated by the
regenerator before it reaches a prompt.
"""

import hashlib
import io
import logging
import os
from dataclasses import dataclass
from pathlib import PurePath

logger = logging.getLogger("grantkit.documents.extractor")

MAX_UPLOAD_BYTES = int(os.environ.get("GRANTKIT_MAX_UPLOAD_BYTES", str(100 * 1024 * 1024)))

PDF_MIME = "application/pdf"
DOCX_MIME = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
TEXT_MIMES = ("text/plain", "text/markdown")


class ExtractionError(Exception):
    """Base class for extraction failures."""
    message = "파일 처리 중 오류가 발생했습니다."


class UnsupportedFormatError(ExtractionError):
    message = "지원하지 않는 파일 형식입니다. PDF, DOCX, TXT 파일만 업로드 가능합니다."


class FileTooLargeError(ExtractionError):
    message = "파일 크기가 너무 큽니다."


class ExtractionFailedError(ExtractionError):
    message = "파일에서 텍스트를 추출하지 못했습니다."


@dataclass
class ExtractedDocument:
    filename: str
    text: str
    page_count: int
    file_hash: str

    def to_dict(self) -> dict:
        return {
            "filename": self.filename,
            "text": self.text,
            "chars": len(self.text),
            "page_count": self.page_count,
            "file_hash": self.file_hash,
        }


def _guess_mime(filename: str) -> str:
    ext = PurePath(filename or "").suffix.lower()
    return {
        ".pdf": PDF_MIME,
        ".docx": DOCX_MIME,
        ".txt": "text/plain",
        ".md": "text/markdown",
    }.get(ext, "application/octet-stream")


def _kind(filename: str, mime_type: str) -> str:
    """Classify an upload as pdf, docx or text; extension wins over MIME."""
    guessed = _guess_mime(filename)
    if guessed != "application/octet-stream":
        mime_type = guessed
    mime_type = (mime_type or "").split(";")[0].strip().lower()
    if mime_type == PDF_MIME:
        return "pdf"
    if mime_type == DOCX_MIME:
        return "docx"
    if mime_type in TEXT_MIMES:
        return "text"
    raise UnsupportedFormatError(f"Unsupported upload type: {filename!r} ({mime_type or 'unknown'})")


def _extract_pdf(data: bytes) -> tuple[str, int]:
    from pypdf import PdfReader
    reader = PdfReader(io.BytesIO(data))
    pages = [page.extract_text() or "" for page in reader.pages]
    return "\n".join(pages), len(pages)


def _extract_docx(data: bytes) -> tuple[str, int]:
    from docx import Document
    doc = Document(io.BytesIO(data))
    text = "\n".join(p.text for p in doc.paragraphs)
    return text, max(1, len(text) // 3000)


def _extract_text(data: bytes) -> tuple[str, int]:
    text = data.decode("utf-8", errors="replace")
    return text, max(1, len(text) // 3000)


EXTRACTORS = {
    "pdf": _extract_pdf,
    "docx": _extract_docx,
    "text": _extract_text,
}


def extract_text(data: bytes, filename: str = "", mime_type: str = "",
                 max_bytes: int = None) -> ExtractedDocument:
    """Extract plain text from an uploaded file.

    Args:
        data: Raw file content.
        filename: Original filename; its extension decides the format.
        mime_type: Declared content type, used when the extension is unknown.
        max_bytes: Size ceiling, defaults to MAX_UPLOAD_BYTES.

    Raises:
        UnsupportedFormatError: not a PDF, DOCX or text file.
        FileTooLargeError: ``data`` exceeds the size ceiling.
        ExtractionFailedError: the parser rejected the file.
    """
    limit = MAX_UPLOAD_BYTES if max_bytes is None else max_bytes
    kind = _kind(filename, mime_type)
    if len(data) > limit:
        raise FileTooLargeError(f"{filename or 'upload'} is {len(data)} bytes (limit {limit})")

    try:
        text, page_count = EXTRACTORS[kind](data)
    except Exception as exc:
        logger.warning("Extraction of %s (%s) failed: %s", filename, kind, exc)
        raise ExtractionFailedError(str(exc)) from exc

    doc = ExtractedDocument(
        filename=filename,
        text=text.strip(),
        page_count=page_count,
        file_hash=hashlib.sha256(data).hexdigest(),
    )
    logger.info("Extracted %d chars from %s (%s, %d pages)",
                len(doc.text), filename, kind, page_count)
    return doc
