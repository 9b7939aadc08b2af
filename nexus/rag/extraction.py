"""Raw document bytes to plain text."""
from __future__ import annotations

from pathlib import PurePath

import fitz

from nexus.core.exceptions import IngestionFailure

PDF_MIME_TYPES = {"application/pdf", "application/x-pdf"}
TEXT_EXTENSIONS = {".txt", ".md", ".csv", ".json"}
TEXT_MIME_TYPES = {"application/json"}


def detect_kind(filename: str, mime_type: str | None) -> str | None:
    suffix = PurePath(filename or "").suffix.lower()
    mime = (mime_type or "").split(";")[0].strip().lower()
    if mime in PDF_MIME_TYPES or suffix == ".pdf":
        return "pdf"
    if mime.startswith("text/") or mime in TEXT_MIME_TYPES or suffix in TEXT_EXTENSIONS:
        return "text"
    return None


def extract_pdf_text(data: bytes) -> str:
    """Concatenate the text of every page, newline separated."""
    try:
        with fitz.open(stream=data, filetype="pdf") as doc:
            return "\n".join(page.get_text("text") for page in doc)
    # FileDataError and EmptyFileError are RuntimeError subclasses.
    except (RuntimeError, ValueError) as exc:
        raise IngestionFailure(f"PDF could not be parsed: {exc}") from exc


def extract_text(data: bytes, filename: str, mime_type: str | None = None) -> str:
    kind = detect_kind(filename, mime_type)
    if kind == "pdf":
        return extract_pdf_text(data)
    if kind == "text":
        try:
            return data.decode("utf-8-sig")
        except UnicodeDecodeError as exc:
            raise IngestionFailure(f"Text document is not valid UTF-8: {exc}") from exc
    raise IngestionFailure(f"Unsupported document type: {mime_type or PurePath(filename or '').suffix or 'unknown'}")
