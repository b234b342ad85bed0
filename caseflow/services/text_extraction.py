"""
Text extraction stage for uploaded case documents.

Turns the raw bytes of each uploaded file into plain text ready to be sent
to the analysis service. PDFs are read through PyMuPDF with an OCR fallback
for image-only pages, Word documents through python-docx, scanned images
through Tesseract, and plain text formats are decoded directly.
"""
from __future__ import annotations

import io
import logging
import os
from dataclasses import dataclass
from typing import List, Optional, Sequence

import fitz  # PyMuPDF
import pytesseract
from docx import Document as DocxDocument
from PIL import Image

from caseflow.config import settings
from caseflow.models.schemas import DocumentText

logger = logging.getLogger(__name__)

PDF_TYPES = {".pdf"}
WORD_TYPES = {".docx", ".doc"}
TEXT_TYPES = {".txt", ".md", ".csv", ".rtf"}
IMAGE_TYPES = {".png", ".jpg", ".jpeg", ".tif", ".tiff"}


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class DocumentExtractionError(RuntimeError):
    """A single file could not be read; the whole submission is rejected."""

    def __init__(self, filename: str, reason: str) -> None:
        self.filename = filename
        self.reason = reason
        super().__init__(f"Failed to extract text from {filename!r}: {reason}")


class EmptyDocumentError(RuntimeError):
    """The submitted files produced too little text to analyse."""

    def __init__(self, extracted_chars: int, minimum: int) -> None:
        self.extracted_chars = extracted_chars
        self.minimum = minimum
        super().__init__(
            "No usable text could be extracted from the uploaded documents "
            f"({extracted_chars} characters, at least {minimum} required)"
        )


# ---------------------------------------------------------------------------
# Data structures
# ---------------------------------------------------------------------------

@dataclass
class UploadedFile:
    """An uploaded file held in memory for the duration of one attempt."""

    filename: str
    data: bytes
    content_type: Optional[str] = None

    @property
    def extension(self) -> str:
        return os.path.splitext(self.filename)[1].lower()

    @property
    def size(self) -> int:
        return len(self.data)


# ---------------------------------------------------------------------------
# Stage
# ---------------------------------------------------------------------------

class TextExtractionStage:
    """Extracts text from every uploaded file, in submission order."""

    def __init__(self, min_chars: Optional[int] = None) -> None:
        self.min_chars = settings.MIN_EXTRACTED_CHARS if min_chars is None else min_chars
        if settings.TESSERACT_CMD:
            pytesseract.pytesseract.tesseract_cmd = settings.TESSERACT_CMD

    async def extract(self, files: Sequence[UploadedFile]) -> List[DocumentText]:
        """
        Extract text from all files.

        Args:
            files: Uploaded files, in the order the user submitted them.

        Returns:
            One DocumentText per file, in the same order.

        Raises:
            DocumentExtractionError: Any single file is unreadable or unsupported.
            EmptyDocumentError:      The combined text is below the minimum length.
        """
        documents: List[DocumentText] = []
        for upload in files:
            content = await self._extract_one(upload)
            logger.info(
                "Extracted %d characters from %s", len(content), upload.filename
            )
            documents.append(DocumentText(filename=upload.filename, content=content))

        total = sum(len(doc.content.strip()) for doc in documents)
        if total < self.min_chars:
            raise EmptyDocumentError(total, self.min_chars)

        return documents

    async def _extract_one(self, upload: UploadedFile) -> str:
        ext = upload.extension
        if ext not in settings.SUPPORTED_FILE_TYPES:
            raise DocumentExtractionError(
                upload.filename, f"unsupported file type {ext or '(none)'!r}"
            )
        if ext in PDF_TYPES:
            return await self._extract_pdf(upload)
        if ext in WORD_TYPES:
            return await self._extract_docx(upload)
        if ext in TEXT_TYPES:
            return _decode_text(upload.data)
        if ext in IMAGE_TYPES:
            return await self._extract_image(upload)
        raise DocumentExtractionError(upload.filename, f"no extractor for {ext!r}")

    # ------------------------------------------------------------------
    # PDF
    # ------------------------------------------------------------------

    async def _extract_pdf(self, upload: UploadedFile) -> str:
        try:
            doc = fitz.open(stream=upload.data, filetype="pdf")
        except Exception as exc:
            raise DocumentExtractionError(upload.filename, f"cannot open PDF: {exc}") from exc

        try:
            if doc.needs_pass:
                raise DocumentExtractionError(
                    upload.filename, "PDF is password-protected"
                )

            pages: List[str] = []
            for page in doc:
                text = page.get_text("text")
                if not text.strip():
                    # Image-only page
                    text = await self._ocr_page(page)
                if text.strip():
                    pages.append(text.strip())
            return "\n\n".join(pages)
        finally:
            doc.close()

    async def _ocr_page(self, page: fitz.Page) -> str:
        """Render an entire page at 2x scale and run Tesseract OCR."""
        try:
            pix = page.get_pixmap(matrix=fitz.Matrix(2, 2))
            img = Image.open(io.BytesIO(pix.tobytes("png")))
            return pytesseract.image_to_string(img)
        except Exception as exc:
            logger.warning("Full-page OCR failed on page %d: %s", page.number + 1, exc)
            return ""

    # ------------------------------------------------------------------
    # Word
    # ------------------------------------------------------------------

    async def _extract_docx(self, upload: UploadedFile) -> str:
        try:
            doc = DocxDocument(io.BytesIO(upload.data))
        except Exception as exc:
            raise DocumentExtractionError(
                upload.filename, f"cannot open Word document: {exc}"
            ) from exc

        parts: List[str] = [p.text.strip() for p in doc.paragraphs if p.text.strip()]

        for table in doc.tables:
            for row in table.rows:
                cells = [cell.text.strip() for cell in row.cells]
                non_empty = [c for c in cells if c]
                if non_empty:
                    parts.append(" | ".join(non_empty))

        return "\n".join(parts)

    # ------------------------------------------------------------------
    # Images
    # ------------------------------------------------------------------

    async def _extract_image(self, upload: UploadedFile) -> str:
        try:
            img = Image.open(io.BytesIO(upload.data))
            return pytesseract.image_to_string(img)
        except Exception as exc:
            raise DocumentExtractionError(upload.filename, f"OCR failed: {exc}") from exc


def _decode_text(data: bytes) -> str:
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        return data.decode("latin-1")
