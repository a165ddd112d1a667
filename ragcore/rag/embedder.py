"""Embedding adapter over the Ollama embeddings endpoint."""
from dataclasses import dataclass, field
from typing import List, Optional
import structlog

from ragcore import config
from ragcore.errors import EmbeddingError
from ragcore.llm_client import OllamaClient
from ragcore.rag.ranker import cosine_similarity, vector_norm

logger = structlog.get_logger()


@dataclass(frozen=True)
class Embedding:
    """A fixed-length vector for one text, with its precomputed norm."""

    vector: List[float]
    norm: float = field(default=None)

    def __post_init__(self):
        if self.norm is None:
            object.__setattr__(self, "norm", vector_norm(self.vector))

    @property
    def dimension(self) -> int:
        return len(self.vector)

    def similarity(self, other: "Embedding") -> float:
        """Cosine similarity to another embedding from the same model."""
        return cosine_similarity(self.vector, other.vector, self.norm, other.norm)


class Embedder:
    """Turns text into embeddings, one oracle call per text.

    Holds no per-call state, so concurrent ``embed`` calls are independent.
    """

    def __init__(self, client: Optional[OllamaClient] = None, model: str = None):
        """Initialize the embedder.

        Args:
            client: Ollama client used as the embedding oracle
            model: Embedding model name (default from config)
        """
        self.client = client or OllamaClient()
        self.model = model or config.EMBEDDING_MODEL

    async def embed(self, text: str) -> Embedding:
        """Embed a single text.

        Args:
            text: Passage or query text

        Returns:
            Embedding for the text

        Raises:
            EmbeddingError: If the oracle fails or returns no vector
        """
        try:
            response = await self.client.embeddings(prompt=text, model=self.model)
        except Exception as e:
            logger.error(
                "embedding_generation_failed",
                model=self.model,
                text_preview=text[:100],
                error=str(e),
                error_type=type(e).__name__,
            )
            raise EmbeddingError("embed", e) from e

        vector = response.get("embedding") if isinstance(response, dict) else None
        if not vector:
            logger.error("empty_embedding_returned", model=self.model, text_preview=text[:100])
            raise EmbeddingError("embed", detail="oracle returned an empty embedding")

        try:
            values = [float(v) for v in vector]
        except (TypeError, ValueError) as e:
            raise EmbeddingError("embed", detail=f"malformed embedding: {e}") from e

        return Embedding(vector=values)
