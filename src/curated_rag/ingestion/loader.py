"""Upload validation and the default document parser.

Parsing is a collaborator of the ingestion pipeline: anything matching
:data:`DocumentParser` (``bytes`` + extension → plain text) can replace
:func:`extract_text`.
"""

from __future__ import annotations

import io
from collections.abc import Callable
from pathlib import PurePath

import docx
from langchain_community.document_loaders.parsers import PyPDFParser
from langchain_core.documents.base import Blob

from curated_rag.config import settings
from curated_rag.errors import ErrorCode, InputError

DocumentParser = Callable[[bytes, str], str]


def file_type_of(filename: str) -> str:
    """Lower-cased extension of *filename* without the dot (``""`` if none)."""
    return PurePath(filename).suffix.lstrip(".").lower()


def validate_upload(filename: str, size: int) -> str:
    """Check size and extension of an upload and return its file type.

    Raises
    ------
    InputError
        ``FILE_TOO_LARGE`` or ``UNSUPPORTED_FORMAT``; never retried.
    """
    if size > settings.max_file_size_bytes:
        raise InputError(
            "File too large",
            code=ErrorCode.FILE_TOO_LARGE,
            details={"size": size, "max_size": settings.max_file_size_bytes},
        )
    file_type = file_type_of(filename)
    if file_type not in settings.allowed_file_types:
        raise InputError(
            "Unsupported file format",
            code=ErrorCode.UNSUPPORTED_FORMAT,
            details={"file_type": file_type, "allowed": settings.allowed_file_types},
        )
    return file_type


def extract_text(data: bytes, file_type: str) -> str:
    """Extract plain text from a ``txt``, ``md``, ``pdf`` or ``docx`` payload."""
    file_type = file_type.lower()
    if file_type in ("txt", "md"):
        return data.decode("utf-8", errors="replace")
    if file_type == "pdf":
        pages = PyPDFParser().lazy_parse(Blob.from_data(data, mime_type="application/pdf"))
        return "\n\n".join(page.page_content for page in pages)
    if file_type == "docx":
        return _docx_text(data)
    raise InputError(f"Unsupported file type: {file_type}", code=ErrorCode.UNSUPPORTED_FORMAT)


def _docx_text(data: bytes) -> str:
    """Non-empty paragraphs, then table rows with cells joined by ``|``."""
    document = docx.Document(io.BytesIO(data))
    parts = [p.text for p in document.paragraphs if p.text.strip()]
    for table in document.tables:
        for row in table.rows:
            row_text = " | ".join(cell.text.strip() for cell in row.cells)
            if row_text.strip(" |"):
                parts.append(row_text)
    return "\n\n".join(parts)
