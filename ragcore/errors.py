"""Error taxonomy for the retrieval pipeline.

Every component wraps the failure of its collaborator in one of these,
chaining the original exception, so the caller sees which operation failed
and why.
"""
from typing import List, Optional


class RAGError(Exception):
    """Base class for retrieval pipeline errors."""

    def __init__(self, operation: str, cause: Optional[BaseException] = None, detail: str = None):
        self.operation = operation
        self.cause = cause
        reason = detail or (str(cause) if cause is not None else "unknown error")
        super().__init__(f"{operation} failed: {reason}")


class ChunkingError(RAGError):
    """Input could not be turned into text passages."""


class EmbeddingError(RAGError):
    """The embedding oracle failed or returned an unusable vector."""


class StoreError(RAGError):
    """The vector index could not be read or written."""


class RetrievalError(RAGError):
    """A query could not be answered from the index."""


class IngestError(RAGError):
    """One or more chunks of a document failed to embed or insert.

    Chunks that succeeded stay in the index; ``inserted`` counts them.
    """

    def __init__(self, errors: List[BaseException], inserted: int, total: int):
        self.errors = errors
        self.inserted = inserted
        self.total = total
        first = errors[0] if errors else None
        super().__init__(
            "ingest",
            cause=first,
            detail=(
                f"{len(errors)} of {total} chunks failed "
                f"({inserted} inserted); first error: {first}"
            ),
        )
