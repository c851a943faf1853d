"""File-to-text adapter for uploaded lab reports (PDF/image/plain text)."""
from __future__ import annotations

import io
import logging
from typing import Tuple

import pytesseract
from PIL import Image
from pypdf import PdfReader

from labsync import config
from labsync.utils.errors import TextExtractionError

logger = logging.getLogger("labsync")

SUPPORTED_IMAGE_EXT = {".png", ".jpg", ".jpeg", ".tiff", ".bmp", ".webp"}


def _pdf_text(data: bytes, max_pages: int) -> str:
    reader = PdfReader(io.BytesIO(data))
    pages = reader.pages[:max_pages]
    return "\n".join((page.extract_text() or "") for page in pages).strip()


def extract_text_from_bytes(
    data: bytes,
    filename: str,
    content_type: str,
    max_pages: int = config.PDF_MAX_PAGES,
) -> Tuple[str, str]:
    """Return (text, source) where source is one of pdf, ocr, text."""
    lowered = (filename or "").lower()
    mt = (content_type or "").lower()

    if mt == "application/pdf" or lowered.endswith(".pdf"):
        try:
            text = _pdf_text(data, max_pages)
        except Exception as exc:
            raise TextExtractionError(f"PDF extraction failed: {exc}") from exc
        if not text:
            raise TextExtractionError("No text extracted from PDF")
        return text, "pdf"

    if mt.startswith("image/") or any(lowered.endswith(ext) for ext in SUPPORTED_IMAGE_EXT):
        try:
            img = Image.open(io.BytesIO(data))
            text = pytesseract.image_to_string(img, lang="eng")
        except Exception as exc:
            raise TextExtractionError(f"OCR failed: {exc}") from exc
        if not text.strip():
            raise TextExtractionError("OCR produced empty output")
        return text, "ocr"

    try:
        return data.decode("utf-8"), "text"
    except UnicodeDecodeError as exc:
        raise TextExtractionError("Unable to decode file as UTF-8 text") from exc


__all__ = ["extract_text_from_bytes"]
