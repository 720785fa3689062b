"""Document-to-text helpers (PDF/image/text)."""
from __future__ import annotations

import io
from typing import Tuple

import pytesseract
from PIL import Image, UnidentifiedImageError
from pypdf import PdfReader
from pypdf.errors import PdfReadError

SUPPORTED_IMAGE_EXT = {".png", ".jpg", ".jpeg", ".tiff", ".bmp", ".webp"}
SUPPORTED_TEXT_EXT = {".txt"}
SUPPORTED_CONTENT_TYPES = {"application/pdf", "text/plain"}


def _is_pdf(filename: str, content_type: str) -> bool:
    return content_type == "application/pdf" or filename.endswith(".pdf")


def _is_image(filename: str, content_type: str) -> bool:
    return content_type.startswith("image/") or any(filename.endswith(ext) for ext in SUPPORTED_IMAGE_EXT)


def is_supported(filename: str | None, content_type: str | None) -> bool:
    lowered = (filename or "").lower()
    mt = (content_type or "").lower()
    if _is_pdf(lowered, mt) or _is_image(lowered, mt):
        return True
    return mt in SUPPORTED_CONTENT_TYPES or any(lowered.endswith(ext) for ext in SUPPORTED_TEXT_EXT)


def extract_text_from_bytes(data: bytes, filename: str, content_type: str) -> Tuple[str, str]:
    """Return ``(text, source)``; raises ``ValueError`` when the document is unreadable."""
    lowered = (filename or "").lower()
    mt = (content_type or "").lower()

    if _is_pdf(lowered, mt):
        try:
            reader = PdfReader(io.BytesIO(data))
            pages = [page.extract_text() or "" for page in reader.pages]
        except PdfReadError as exc:
            raise ValueError(f"Unreadable PDF: {exc}") from exc
        text = "\n".join(pages).strip()
        if not text:
            raise ValueError("No text extracted from PDF")
        return text, "pdf"

    if _is_image(lowered, mt):
        try:
            img = Image.open(io.BytesIO(data))
        except UnidentifiedImageError as exc:
            raise ValueError("Unreadable image") from exc
        text = pytesseract.image_to_string(img, lang="eng")
        if not text.strip():
            raise ValueError("OCR produced empty output")
        return text, "ocr"

    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise ValueError("Unable to decode file as UTF-8 text") from exc
    if not text.strip():
        raise ValueError("Document contains no text")
    return text, "text"


__all__ = ["extract_text_from_bytes", "is_supported"]
