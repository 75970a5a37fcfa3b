"""Document parser producing page-by-page text for PDF and plain text."""

import logging
import re
from pathlib import Path

import chardet

from textbook_rag.exceptions import ParseError, ValidationError
from textbook_rag.models.parsed import ParsedDocument

logger = logging.getLogger(__name__)

# Supported file extensions mapped to format identifiers
SUPPORTED_FORMATS: dict[str, str] = {
    ".pdf": "pdf",
    ".txt": "txt",
    ".md": "txt",
}

PDF_MAGIC = b"%PDF-"

# Page separator for plain text uploads
FORM_FEED = "\f"


def detect_format(data: bytes, filename: str | None = None) -> str:
    """Determine the document format from its content and filename.

    The PDF signature wins over the extension; otherwise the extension
    decides. Raw bytes without a usable name must be a PDF.

    Args:
        data: Raw file content.
        filename: Optional original filename.

    Returns:
        Format string ("pdf" or "txt").

    Raises:
        ValidationError: If the format is not supported.
    """
    if data.lstrip()[:5] == PDF_MAGIC:
        return "pdf"

    ext = Path(filename).suffix.lower() if filename else ""
    if ext not in SUPPORTED_FORMATS:
        raise ValidationError(
            f"Unsupported file format: '{ext or 'unknown'}'. "
            f"Supported: {', '.join(SUPPORTED_FORMATS.keys())}",
            {"filename": filename},
        )
    file_format = SUPPORTED_FORMATS[ext]
    if file_format == "pdf":
        raise ValidationError(
            "File has a .pdf extension but no PDF signature",
            {"filename": filename},
        )
    return file_format


class DocumentParser:
    """Parses uploaded files into a ParsedDocument with one entry per page."""

    def parse(self, file_path: str | Path) -> ParsedDocument:
        """Parse a file on disk.

        Raises:
            FileNotFoundError: If file_path does not exist.
        """
        path = Path(file_path)
        if not path.exists():
            raise FileNotFoundError(f"File not found: {path}")
        return self.parse_bytes(path.read_bytes(), filename=path.name)

    def parse_bytes(self, data: bytes, filename: str | None = None) -> ParsedDocument:
        """Parse raw file content.

        Args:
            data: The file content.
            filename: Original filename, used for format detection and
                as a fallback title.

        Returns:
            A ParsedDocument with per-page text.

        Raises:
            ValidationError: If the content is empty or unsupported.
            ParseError: If the content cannot be read or holds no text.
        """
        if not data:
            raise ValidationError("Document is empty", {"filename": filename})

        file_format = detect_format(data, filename)
        if file_format == "pdf":
            pages = self._parse_pdf(data, filename)
        else:
            pages = self._parse_txt(data, filename)

        document = ParsedDocument(
            title=self._extract_title(pages, filename),
            pages=pages,
            source_name=filename or "",
            file_format=file_format,
            byte_size=len(data),
        )
        if not document.has_text:
            raise ParseError(
                "Document contains no extractable text",
                {"filename": filename, "pages": document.page_count},
            )

        logger.info(
            "Parsed %s (%s): %d pages", filename or "<upload>", file_format, document.page_count
        )
        return document

    def _parse_pdf(self, data: bytes, filename: str | None) -> list[str]:
        """Extract text from each page of a PDF using pymupdf (fitz)."""
        import fitz  # type: ignore[import-untyped]

        try:
            with fitz.open(stream=data, filetype="pdf") as doc:
                return [page.get_text("text") for page in doc]
        except Exception as exc:
            logger.exception("Failed to parse PDF: %s", filename)
            raise ParseError(f"Failed to parse PDF: {exc}", {"filename": filename}) from exc

    def _parse_txt(self, data: bytes, filename: str | None) -> list[str]:
        """Decode a plain text file and split it into pages on form feeds.

        Tries UTF-8 first, then uses chardet for fallback detection.
        """
        return self._decode(data, filename).split(FORM_FEED)

    def _decode(self, raw_bytes: bytes, filename: str | None) -> str:
        try:
            return raw_bytes.decode("utf-8")
        except UnicodeDecodeError:
            pass

        detected = chardet.detect(raw_bytes)
        encoding = detected.get("encoding") or "utf-8"
        confidence = detected.get("confidence") or 0

        if confidence < 0.7:
            logger.warning(
                "Low confidence encoding detection for %s: %s (%.0f%%)",
                filename,
                encoding,
                confidence * 100,
            )

        try:
            return raw_bytes.decode(encoding)
        except (UnicodeDecodeError, LookupError) as exc:
            raise ParseError(
                f"Failed to decode text file as {encoding}",
                {"filename": filename},
            ) from exc

    def _extract_title(self, pages: list[str], filename: str | None) -> str:
        """Best-guess title: a short first line, else the filename stem."""
        fallback = Path(filename).stem if filename else "Untitled Textbook"
        first_page = next((page for page in pages if page.strip()), "")

        for line in first_page.strip().split("\n")[:5]:
            stripped = line.strip()
            if stripped and len(stripped) <= 100:
                alpha_chars = len(re.findall(r"[A-Za-z]", stripped))
                if alpha_chars / max(len(stripped), 1) > 0.5:
                    return stripped

        return fallback
