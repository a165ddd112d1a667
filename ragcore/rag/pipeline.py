"""Retrieval pipeline: ingest documents and answer queries from the index.

Orchestrates:
- Chunking, embedding and storing documents (fan-out per chunk)
- Embedding queries and ranking stored passages
- Building the grounding context for the chat model
"""
import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Union
import structlog

from ragcore import config
from ragcore.errors import (
    EmbeddingError,
    IngestError,
    RAGError,
    RetrievalError,
    StoreError,
)
from ragcore.llm_client import OllamaClient
from ragcore.rag import ranker
from ragcore.rag.chunker import TextChunker
from ragcore.rag.embedder import Embedder
from ragcore.rag.store import IndexRecord, VectorStore

logger = structlog.get_logger()

PROMPT_TEMPLATE = """Use the following information to answer the user's question.

Context: {context}
Question: {question}

If the question is not related to the context, answer as best you can without relying on the context.
"""


@dataclass
class IngestResult:
    """Outcome of a successful ingest."""

    chunk_count: int
    record_ids: List[str] = field(default_factory=list)
    stats: Dict[str, int] = field(default_factory=dict)


@dataclass
class GroundedAnswer:
    """Chat response together with the context it was grounded on."""

    response: str
    context: str
    passages: List[str]


def build_context(top_texts: Sequence[str]) -> str:
    """Join ranked passages into one grounding block.

    Passages are kept verbatim and in the given order.
    """
    return "\n\n".join(
        f"[Source {i}]\n{text}" for i, text in enumerate(top_texts, 1)
    )


def corpus_from_records(records: Sequence[IndexRecord]) -> Dict[str, List[float]]:
    """Map passage text to its stored vector.

    Records without text metadata are skipped. A repeated text keeps the
    position of its first record and the vector of its last.
    """
    corpus: Dict[str, List[float]] = {}
    for record in records:
        text = record.text
        if text is None:
            continue
        corpus[text] = record.vector
    return corpus


class RetrievalPipeline:
    """Composes chunker, embedder, store and ranker into ingest and query flows."""

    def __init__(
        self,
        store: VectorStore,
        embedder: Embedder,
        chunker: Optional[TextChunker] = None,
        chat_client: Optional[OllamaClient] = None,
        top_k: int = None,
        max_concurrency: int = None,
    ):
        """Initialize the pipeline.

        Args:
            store: Opened vector store holding the index
            embedder: Embedder used for passages and queries
            chunker: Text chunker (default: config chunk size and overlap)
            chat_client: Client used for grounded chat answers
            top_k: Default number of passages to retrieve (default from config)
            max_concurrency: Max embed+insert tasks in flight per ingest
        """
        self.store = store
        self.embedder = embedder
        self.chunker = chunker or TextChunker()
        self.chat_client = chat_client
        self.top_k = config.RETRIEVAL_TOP_K if top_k is None else top_k
        self.max_concurrency = (
            config.EMBED_CONCURRENCY if max_concurrency is None else max_concurrency
        )

        if self.top_k < 1:
            raise ValueError(f"top_k must be at least 1, got {self.top_k}")
        if self.max_concurrency < 1:
            raise ValueError(
                f"max_concurrency must be at least 1, got {self.max_concurrency}"
            )

        logger.info(
            "retrieval_pipeline_initialized",
            top_k=self.top_k,
            max_concurrency=self.max_concurrency,
            chunk_size=self.chunker.chunk_size,
            chunk_overlap=self.chunker.chunk_overlap,
        )

    async def ingest(self, document: Union[str, bytes]) -> IngestResult:
        """Chunk a document, embed every chunk and store the vectors.

        All chunks are processed even if some fail. Chunks that succeeded
        stay in the index when others fail; the call still raises.

        Args:
            document: Newline-collapsed, trimmed document text

        Returns:
            IngestResult with the ids of the inserted records and chunk stats

        Raises:
            ChunkingError: If the document is not valid text
            StoreError: If the index cannot be created
            IngestError: If any chunk failed to embed or insert
        """
        await self.store.create_index_if_absent()

        text_chunks = self.chunker.chunk_text(document)
        stats = self.chunker.get_chunk_stats(text_chunks)
        if not text_chunks:
            logger.warning("no_chunks_created")
            return IngestResult(chunk_count=0, stats=stats)
        chunks = [chunk.content for chunk in text_chunks]

        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def embed_and_insert(text: str) -> str:
            async with semaphore:
                embedding = await self.embedder.embed(text)
                record = await self.store.insert(embedding.vector, {"text": text})
                return record.id

        results = await asyncio.gather(
            *(embed_and_insert(text) for text in chunks),
            return_exceptions=True,
        )

        errors = [r for r in results if isinstance(r, BaseException)]
        record_ids = [r for r in results if not isinstance(r, BaseException)]

        if errors:
            logger.error(
                "document_ingest_failed",
                chunk_count=len(chunks),
                failed=len(errors),
                inserted=len(record_ids),
                first_error=str(errors[0]),
            )
            raise IngestError(errors, inserted=len(record_ids), total=len(chunks))

        logger.info("document_ingested", **stats)
        return IngestResult(chunk_count=len(chunks), record_ids=record_ids, stats=stats)

    async def retrieve(self, query: str, top_k: Optional[int] = None) -> List[str]:
        """Return the passages most similar to a query, best first.

        Args:
            query: User query text
            top_k: Number of passages to return (default: pipeline top_k);
                fewer are returned if the index holds fewer

        Returns:
            Passage texts ordered by descending similarity

        Raises:
            ValueError: If top_k is less than 1
            RetrievalError: If the index cannot be read or the query cannot
                be embedded
        """
        top_k = self.top_k if top_k is None else top_k
        if top_k < 1:
            raise ValueError(f"top_k must be at least 1, got {top_k}")

        logger.info("retrieval_started", query_length=len(query), top_k=top_k)

        try:
            records = await self.store.list_all()
            corpus = corpus_from_records(records)
            query_embedding = await self.embedder.embed(query)
            scored = ranker.score(query_embedding.vector, corpus)
        except (EmbeddingError, StoreError, ValueError) as e:
            logger.error(
                "retrieval_failed",
                error=str(e),
                error_type=type(e).__name__,
                query_preview=query[:100],
            )
            raise RetrievalError("retrieve", e) from e

        top = scored[:top_k]

        logger.info(
            "retrieval_completed",
            corpus_size=len(corpus),
            results_returned=len(top),
            top_similarity=top[0][1] if top else None,
        )

        return [text for text, _ in top]

    async def answer(self, message: str, top_k: Optional[int] = None) -> GroundedAnswer:
        """Retrieve context for a message and ask the chat model with it.

        Raises:
            RetrievalError: If retrieval fails
            RAGError: If the chat model call fails
        """
        if self.chat_client is None:
            raise RAGError("chat", detail="no chat client configured")

        passages = await self.retrieve(message, top_k=top_k)
        context = build_context(passages)
        prompt = PROMPT_TEMPLATE.format(context=context, question=message)

        try:
            response = await self.chat_client.prompt(prompt)
        except Exception as e:
            logger.error("grounded_chat_failed", error=str(e), error_type=type(e).__name__)
            raise RAGError("chat", e) from e

        return GroundedAnswer(response=response, context=context, passages=passages)

    async def inspect(self, include_vectors: bool = True) -> List[Dict[str, Any]]:
        """List every stored record for diagnostics.

        Raises:
            StoreError: If the index cannot be read
        """
        records = await self.store.list_all()
        return [record.to_dict(include_vector=include_vectors) for record in records]

    async def reset(self) -> None:
        """Drop every record and start a new empty index generation.

        Raises:
            StoreError: If the reset fails
        """
        await self.store.reset()

    async def aclose(self) -> None:
        """Close the Ollama clients used for embeddings and chat."""
        clients = []
        for client in (self.embedder.client, self.chat_client):
            if client is not None and all(client is not c for c in clients):
                clients.append(client)
        for client in clients:
            await client.aclose()
