"""
Contract: Text Extractor

Turns stored document bytes into plain text for the analysis stages.
Any engine (pypdf, OCR, an external API) must implement this contract.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field


@dataclass
class ExtractedText:
    """Result of text extraction."""
    raw_text: str
    pages: int = 0
    extractor: str = ""
    warnings: list[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.raw_text.strip()


class ITextExtractor(ABC):
    """
    Port: Text Extractor

    Must not raise for unsupported or unreadable formats: it returns an
    empty ExtractedText with a warning so the pipeline can still ask the
    oracle with the document hints alone.
    """

    @abstractmethod
    def extract(self, data: bytes, mime_type: str, filename: str = "") -> ExtractedText:
        """
        Extract text from a document.

        Args:
            data: Document bytes.
            mime_type: Declared MIME type.
            filename: Original name (used to sniff the format).

        Returns:
            ExtractedText with raw text and page count.
        """
        ...
