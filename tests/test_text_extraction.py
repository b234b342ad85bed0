"""
Tests for TextExtractionStage using real PDF and Word files built in memory.
"""
import io

import fitz
import pytest
from docx import Document as DocxDocument

from caseflow.services.text_extraction import (
    DocumentExtractionError,
    EmptyDocumentError,
    TextExtractionStage,
    UploadedFile,
)

BODY = "Reading assessment: the student decodes grade-level words accurately but slowly."


def _pdf_bytes(*pages: str, **save_options) -> bytes:
    doc = fitz.open()
    for text in pages:
        page = doc.new_page()
        page.insert_text((72, 72), text, fontsize=11)
    data = doc.tobytes(**save_options)
    doc.close()
    return data


def _docx_bytes() -> bytes:
    doc = DocxDocument()
    doc.add_paragraph("Teacher interview summary")
    doc.add_paragraph(BODY)
    table = doc.add_table(rows=2, cols=2)
    table.cell(0, 0).text = "Subject"
    table.cell(0, 1).text = "Observation"
    table.cell(1, 0).text = "Math"
    table.cell(1, 1).text = "Needs extra time on word problems"
    buf = io.BytesIO()
    doc.save(buf)
    return buf.getvalue()


@pytest.mark.asyncio
async def test_extracts_plain_text():
    stage = TextExtractionStage()
    docs = await stage.extract([UploadedFile("notes.txt", BODY.encode("utf-8"))])

    assert len(docs) == 1
    assert docs[0].filename == "notes.txt"
    assert docs[0].content == BODY


@pytest.mark.asyncio
async def test_latin1_text_falls_back():
    text = "Élève observé en classe de français, participation régulière et attentive."
    stage = TextExtractionStage()
    docs = await stage.extract([UploadedFile("notes.txt", text.encode("latin-1"))])

    assert docs[0].content == text


@pytest.mark.asyncio
async def test_extracts_pdf_pages():
    stage = TextExtractionStage()
    data = _pdf_bytes("First page of the report", "Second page with observations")

    docs = await stage.extract([UploadedFile("report.pdf", data, "application/pdf")])

    content = docs[0].content
    assert "First page of the report" in content
    assert "Second page with observations" in content
    assert content.index("First page") < content.index("Second page")


@pytest.mark.asyncio
async def test_password_protected_pdf_is_rejected():
    stage = TextExtractionStage()
    data = _pdf_bytes(
        BODY,
        encryption=fitz.PDF_ENCRYPT_AES_256,
        owner_pw="owner",
        user_pw="secret",
    )

    with pytest.raises(DocumentExtractionError) as exc_info:
        await stage.extract([UploadedFile("locked.pdf", data)])

    assert exc_info.value.filename == "locked.pdf"
    assert "password" in str(exc_info.value)


@pytest.mark.asyncio
async def test_corrupt_pdf_is_rejected():
    stage = TextExtractionStage()

    with pytest.raises(DocumentExtractionError) as exc_info:
        await stage.extract([UploadedFile("broken.pdf", b"not really a pdf")])

    assert "broken.pdf" in str(exc_info.value)


@pytest.mark.asyncio
async def test_extracts_docx_paragraphs_and_tables():
    stage = TextExtractionStage()

    docs = await stage.extract([UploadedFile("interview.docx", _docx_bytes())])

    content = docs[0].content
    assert "Teacher interview summary" in content
    assert BODY in content
    assert "Math | Needs extra time on word problems" in content


@pytest.mark.asyncio
async def test_unsupported_extension_names_the_file():
    stage = TextExtractionStage()
    files = [
        UploadedFile("notes.txt", BODY.encode("utf-8")),
        UploadedFile("archive.zip", b"PK\x03\x04"),
    ]

    with pytest.raises(DocumentExtractionError) as exc_info:
        await stage.extract(files)

    assert exc_info.value.filename == "archive.zip"


@pytest.mark.asyncio
async def test_too_little_text_raises_empty_document_error():
    stage = TextExtractionStage()

    with pytest.raises(EmptyDocumentError) as exc_info:
        await stage.extract([UploadedFile("a.txt", b"0123456789"), UploadedFile("b.txt", b"   ")])

    assert exc_info.value.extracted_chars == 10
    assert exc_info.value.minimum == 50


@pytest.mark.asyncio
async def test_threshold_counts_all_files_together():
    stage = TextExtractionStage(min_chars=20)
    files = [UploadedFile("a.txt", b"0123456789"), UploadedFile("b.md", b"abcdefghij")]

    docs = await stage.extract(files)

    assert [d.filename for d in docs] == ["a.txt", "b.md"]


def test_uploaded_file_properties():
    upload = UploadedFile("Scan.PDF", b"12345")
    assert upload.extension == ".pdf"
    assert upload.size == 5
