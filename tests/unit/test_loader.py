"""Unit tests for upload validation and text extraction."""

from __future__ import annotations

import io

import docx
import pytest

from curated_rag.config import settings
from curated_rag.errors import ErrorCode, InputError
from curated_rag.ingestion.loader import extract_text, file_type_of, validate_upload


class TestValidateUpload:
    def test_accepts_allowed_type(self) -> None:
        assert validate_upload("Notes.MD", 1024) == "md"
        assert validate_upload("handbook.docx", 1024) == "docx"

    def test_rejects_oversize(self) -> None:
        with pytest.raises(InputError) as info:
            validate_upload("big.pdf", settings.max_file_size_bytes + 1)
        assert info.value.code == ErrorCode.FILE_TOO_LARGE
        assert info.value.retryable is False

    @pytest.mark.parametrize("filename", ["slides.pptx", "archive", "image.png"])
    def test_rejects_unsupported(self, filename: str) -> None:
        with pytest.raises(InputError) as info:
            validate_upload(filename, 10)
        assert info.value.code == ErrorCode.UNSUPPORTED_FORMAT


def test_file_type_of() -> None:
    assert file_type_of("report.final.PDF") == "pdf"
    assert file_type_of("README") == ""


class TestExtractText:
    def test_plain_text(self) -> None:
        assert extract_text("héllo wörld".encode(), "txt") == "héllo wörld"

    def test_markdown_is_passed_through(self) -> None:
        assert extract_text(b"# Title\n\nBody.", "md") == "# Title\n\nBody."

    def test_docx_paragraphs_and_tables(self) -> None:
        document = docx.Document()
        document.add_paragraph("Refunds are issued within 30 days.")
        document.add_paragraph("")
        document.add_paragraph("Receipts are required.")
        table = document.add_table(rows=1, cols=2)
        table.rows[0].cells[0].text = "Region"
        table.rows[0].cells[1].text = "EU"
        buffer = io.BytesIO()
        document.save(buffer)

        text = extract_text(buffer.getvalue(), "docx")
        assert text == "Refunds are issued within 30 days.\n\nReceipts are required.\n\nRegion | EU"

    def test_unknown_type(self) -> None:
        with pytest.raises(InputError):
            extract_text(b"...", "pptx")
