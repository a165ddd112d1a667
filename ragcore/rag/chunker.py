"""Text chunking with overlap for RAG pipeline.

Wraps LangChain's RecursiveCharacterTextSplitter: text is cut on the coarsest
separator present, oversized pieces are cut again on the next finer one, and
neighbouring pieces are merged into chunks of at most ``chunk_size``
characters that share up to ``chunk_overlap`` characters.

Chunk positions come from the splitter's ``start_index`` metadata, so every
chunk is an exact substring of the document.
"""
from typing import List, Optional, Sequence, Union
from dataclasses import dataclass
import structlog
from langchain_text_splitters import RecursiveCharacterTextSplitter

from ragcore import config
from ragcore.errors import ChunkingError

logger = structlog.get_logger()

# Document-level down to character-level
DEFAULT_SEPARATORS = ("\n\n", "\n", " ", "")


@dataclass
class TextChunk:
    """Represents a chunk of text with position information."""

    content: str
    char_start: int
    char_end: int
    chunk_index: int


def normalize_document(text: str) -> str:
    """Collapse newlines to spaces and trim, as done before chunking uploads."""
    return text.replace("\r\n", " ").replace("\n", " ").replace("\r", " ").strip()


class TextChunker:
    """Recursive character text chunker with overlap support."""

    def __init__(
        self,
        chunk_size: int = None,
        chunk_overlap: int = None,
        separators: Optional[Sequence[str]] = None,
    ):
        """Initialize the text chunker.

        Args:
            chunk_size: Maximum size of each chunk in characters (default from config)
            chunk_overlap: Overlap between chunks in characters (default from config)
            separators: Separators to try, coarsest first (default: paragraph,
                line, word, character)
        """
        self.chunk_size = config.CHUNK_SIZE if chunk_size is None else chunk_size
        self.chunk_overlap = (
            config.CHUNK_OVERLAP if chunk_overlap is None else chunk_overlap
        )
        self.separators = tuple(DEFAULT_SEPARATORS if separators is None else separators)

        # Validate parameters
        if self.chunk_size < 1:
            raise ValueError(f"Chunk size ({self.chunk_size}) must be positive")
        if self.chunk_overlap < 0:
            raise ValueError(f"Overlap ({self.chunk_overlap}) must not be negative")
        if self.chunk_overlap >= self.chunk_size:
            raise ValueError(
                f"Overlap ({self.chunk_overlap}) must be less than "
                f"chunk size ({self.chunk_size})"
            )

        self._splitter = RecursiveCharacterTextSplitter(
            chunk_size=self.chunk_size,
            chunk_overlap=self.chunk_overlap,
            separators=list(self.separators),
            add_start_index=True,
            length_function=len,
        )

        logger.debug(
            "chunker_initialized",
            chunk_size=self.chunk_size,
            chunk_overlap=self.chunk_overlap,
        )

    def split(self, document: Union[str, bytes]) -> List[str]:
        """Split a document into passage strings.

        Raises:
            ChunkingError: If the input cannot be decoded as text
        """
        return [chunk.content for chunk in self.chunk_text(document)]

    def chunk_text(self, document: Union[str, bytes]) -> List[TextChunk]:
        """Split text into overlapping chunks.

        Args:
            document: Text to chunk; bytes are decoded as UTF-8

        Returns:
            List of TextChunk objects, in document order

        Raises:
            ChunkingError: If the input cannot be decoded as text
        """
        text = self._as_text(document)
        if not text:
            return []

        chunks: List[TextChunk] = []
        for doc in self._splitter.create_documents([text]):
            # Pieces with no finer separator left come back unstripped
            content = doc.page_content.strip()
            if not content:
                continue
            start = doc.metadata.get("start_index", -1)
            if start < 0:
                start = text.find(content)
            else:
                start += doc.page_content.index(content)
            chunks.append(
                TextChunk(
                    content=content,
                    char_start=start,
                    char_end=start + len(content),
                    chunk_index=len(chunks),
                )
            )

        if chunks:
            logger.info(
                "text_chunked",
                text_length=len(text),
                chunk_count=len(chunks),
                avg_chunk_size=sum(len(c.content) for c in chunks) // len(chunks),
            )

        return chunks

    def get_chunk_stats(self, chunks: List[TextChunk]) -> dict:
        """Get statistics about a set of chunks.

        Args:
            chunks: List of TextChunk objects

        Returns:
            Dictionary with chunk statistics
        """
        if not chunks:
            return {
                "chunk_count": 0,
                "total_chars": 0,
                "avg_chunk_size": 0,
                "min_chunk_size": 0,
                "max_chunk_size": 0,
                "overlap": self.chunk_overlap,
            }

        chunk_sizes = [len(c.content) for c in chunks]

        return {
            "chunk_count": len(chunks),
            "total_chars": sum(chunk_sizes),
            "avg_chunk_size": sum(chunk_sizes) // len(chunks),
            "min_chunk_size": min(chunk_sizes),
            "max_chunk_size": max(chunk_sizes),
            "overlap": self.chunk_overlap,
        }

    @staticmethod
    def _as_text(document: Union[str, bytes]) -> str:
        if isinstance(document, str):
            return document
        if isinstance(document, (bytes, bytearray)):
            try:
                return bytes(document).decode("utf-8")
            except UnicodeDecodeError as e:
                logger.error("document_decode_failed", error=str(e))
                raise ChunkingError("split", e) from e
        raise ChunkingError(
            "split", detail=f"expected text, got {type(document).__name__}"
        )
