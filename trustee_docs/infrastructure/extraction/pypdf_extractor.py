"""
Adapter: Text Extractor (pypdf + plain-text decoding)

PDFs go through pypdf page by page; text-like types are decoded. Anything
else (images, office files) yields empty text with a warning. OCR is out of
scope here.
"""

import io
import logging

from pypdf import PdfReader
from pypdf.errors import PdfReadError, PdfStreamError

from trustee_docs.core.interfaces.text_extractor import ExtractedText, ITextExtractor

logger = logging.getLogger(__name__)

TEXT_TYPES = ("text/", "application/json", "application/xml")
TEXT_SUFFIXES = (".txt", ".csv", ".md", ".json", ".xml")


class PyPdfTextExtractor(ITextExtractor):
    """Deterministic text extraction: same bytes in, same text out."""

    def __init__(self, max_pages: int = 200):
        self._max_pages = max_pages

    def extract(self, data: bytes, mime_type: str, filename: str = "") -> ExtractedText:
        mime_type = (mime_type or "").lower()
        name = (filename or "").lower()

        if mime_type == "application/pdf" or name.endswith(".pdf") or data[:5] == b"%PDF-":
            return self._extract_pdf(data)
        if mime_type.startswith(TEXT_TYPES) or name.endswith(TEXT_SUFFIXES):
            return ExtractedText(raw_text=self._decode(data), pages=1, extractor="text")

        logger.info(f"No text extractor for {mime_type or 'unknown type'} ({filename})")
        return ExtractedText(
            raw_text="",
            extractor="none",
            warnings=[f"Unsupported format for text extraction: {mime_type or 'unknown'}"],
        )

    def _extract_pdf(self, data: bytes) -> ExtractedText:
        try:
            reader = PdfReader(io.BytesIO(data))
        except (PdfReadError, PdfStreamError) as e:
            return ExtractedText(raw_text="", extractor="pypdf", warnings=[f"Failed to read PDF: {e}"])
        except Exception as e:
            return ExtractedText(raw_text="", extractor="pypdf", warnings=[f"Unexpected error reading PDF: {e}"])

        if reader.is_encrypted:
            return ExtractedText(raw_text="", extractor="pypdf", warnings=["PDF is encrypted"])

        pages: list[str] = []
        warnings: list[str] = []
        total = len(reader.pages)
        for page_num, page in enumerate(reader.pages[: self._max_pages], start=1):
            try:
                pages.append(page.extract_text() or "")
            except Exception as e:
                warnings.append(f"Page {page_num}: text extraction failed ({e})")
        if total > self._max_pages:
            warnings.append(f"Only the first {self._max_pages} of {total} pages were read")

        text = "\n".join(p for p in pages if p.strip())
        if not text.strip():
            warnings.append("No extractable text (scanned PDF?)")
        return ExtractedText(raw_text=text, pages=total, extractor="pypdf", warnings=warnings)

    @staticmethod
    def _decode(data: bytes) -> str:
        for encoding in ("utf-8", "cp1252"):
            try:
                return data.decode(encoding)
            except UnicodeDecodeError:
                continue
        return data.decode("latin-1")
