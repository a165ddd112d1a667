"""Text extraction for uploaded documents.

Supports PDF (via PyPDF2) and UTF-8 plain text. Extracted text has its
newlines collapsed to spaces and is trimmed, ready for chunking.
"""
import io
import structlog
from PyPDF2 import PdfReader
from PyPDF2.errors import PdfReadError

from ragcore.errors import ChunkingError
from ragcore.rag.chunker import normalize_document

logger = structlog.get_logger()

PDF_TYPE = "application/pdf"
TEXT_TYPE = "text/plain"
SUPPORTED_TYPES = (PDF_TYPE, TEXT_TYPE)


class UnsupportedDocumentError(ValueError):
    """The upload's content type cannot be turned into text."""


def extract_text(data: bytes, content_type: str) -> str:
    """Extract normalized text from raw document bytes.

    Args:
        data: Raw file content
        content_type: MIME type of the upload (parameters such as charset are ignored)

    Returns:
        Newline-collapsed, trimmed text

    Raises:
        UnsupportedDocumentError: If the content type is not supported
        ChunkingError: If the content cannot be decoded as text
    """
    mime = (content_type or "").split(";")[0].strip().lower()

    if mime == PDF_TYPE:
        try:
            reader = PdfReader(io.BytesIO(data))
            text = "\n".join(page.extract_text() or "" for page in reader.pages)
        except (PdfReadError, ValueError, KeyError) as e:
            logger.error("pdf_extraction_failed", error=str(e), error_type=type(e).__name__)
            raise ChunkingError("extract", e) from e
    elif mime == TEXT_TYPE:
        try:
            text = data.decode("utf-8")
        except UnicodeDecodeError as e:
            logger.error("text_decode_failed", error=str(e))
            raise ChunkingError("extract", e) from e
    else:
        raise UnsupportedDocumentError(f"Unsupported file type: {content_type or 'unknown'}")

    normalized = normalize_document(text)
    logger.info("document_extracted", content_type=mime, text_length=len(normalized))
    return normalized
