"""Plain-text extraction for uploaded files.

Uses PyMuPDF (fitz) for PDFs; every other supported type is treated as
UTF-8 text.
"""

from __future__ import annotations

import logging
import mimetypes
from pathlib import Path
from typing import Iterator

import fitz  # PyMuPDF

from ragchat.errors import UnreadableFile
from ragchat.utils.text import normalize_whitespace

LOGGER = logging.getLogger(__name__)

PDF_CONTENT_TYPE = "application/pdf"
DEFAULT_CONTENT_TYPE = "text/plain"
MAX_FILE_BYTES = 10 * 1024 * 1024

SUPPORTED_SUFFIXES: dict[str, str] = {
    ".txt": "text/plain",
    ".md": "text/markdown",
    ".json": "application/json",
    ".csv": "text/csv",
    ".log": "text/plain",
    ".pdf": PDF_CONTENT_TYPE,
    ".js": "text/javascript",
    ".ts": "text/typescript",
    ".jsx": "text/jsx",
    ".tsx": "text/tsx",
    ".css": "text/css",
    ".html": "text/html",
    ".xml": "text/xml",
}


def guess_content_type(path: Path) -> str:
    """Map a file name to the MIME label stored with the document."""
    suffix = path.suffix.lower()
    if suffix in SUPPORTED_SUFFIXES:
        return SUPPORTED_SUFFIXES[suffix]
    guessed, _ = mimetypes.guess_type(path.name)
    return guessed or DEFAULT_CONTENT_TYPE


def iter_pdf_pages(data: bytes, *, name: str = "<upload>") -> Iterator[str]:
    """Yield normalized text content page by page."""
    try:
        doc = fitz.open(stream=data, filetype="pdf")
    except Exception as exc:
        raise UnreadableFile(name, f"Error parsing PDF: {exc}") from exc

    try:
        for index in range(len(doc)):
            try:
                text = doc[index].get_text() or ""
            except Exception as exc:  # pragma: no cover
                LOGGER.warning("Failed to read page %s in %s: %s", index, name, exc)
                continue
            normalized = normalize_whitespace(text.splitlines())
            if normalized:
                yield normalized
    finally:
        doc.close()


def extract_text(data: bytes, content_type: str, *, name: str = "<upload>") -> str:
    """Return the plain text of a file.

    Raises `UnreadableFile` when nothing but whitespace comes out.
    """
    if content_type == PDF_CONTENT_TYPE:
        text = "\n".join(iter_pdf_pages(data, name=name))
    else:
        text = data.decode("utf-8", errors="replace")

    if not text.strip():
        raise UnreadableFile(name)
    return text


def read_file_text(path: Path) -> tuple[str, str, int]:
    """Read a file from disk and return ``(text, content_type, size)``."""
    content_type = guess_content_type(path)
    try:
        data = path.read_bytes()
    except OSError as exc:
        raise UnreadableFile(path.name, f"Error reading file: {exc}") from exc
    if len(data) > MAX_FILE_BYTES:
        raise UnreadableFile(path.name, f"File exceeds {MAX_FILE_BYTES} bytes")
    return extract_text(data, content_type, name=path.name), content_type, len(data)
