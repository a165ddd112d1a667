"""Tests for ingest, retrieval and grounded answers."""
import pytest

from ragcore import config
from ragcore.errors import IngestError, RAGError, RetrievalError, EmbeddingError
from ragcore.rag.chunker import TextChunker
from ragcore.rag.embedder import Embedder
from ragcore.rag.pipeline import (
    RetrievalPipeline,
    build_context,
    corpus_from_records,
)
from ragcore.rag.store import IndexRecord, InMemoryVectorStore
from tests.conftest import FakeOllamaClient

PASSAGE_VECTORS = {
    "cats are small mammals": [1.0, 0.0, 0.2],
    "rockets launch into orbit": [0.0, 1.0, 0.0],
    "dogs are loyal pets": [0.2, 0.0, 1.0],
    "tell me about pets": [0.1, 0.0, 1.0],
}


def make_pipeline(store, client, **kwargs) -> RetrievalPipeline:
    return RetrievalPipeline(
        store=store,
        embedder=Embedder(client=client),
        chat_client=client,
        **kwargs,
    )


class TestIngest:
    @pytest.mark.asyncio
    async def test_short_document_becomes_one_record(self, pipeline, memory_store):
        result = await pipeline.ingest("A cat sat. A dog ran.")

        records = await memory_store.list_all()
        assert result.chunk_count == 1
        assert len(records) == 1
        assert records[0].metadata == {"text": "A cat sat. A dog ran."}
        assert result.record_ids == [records[0].id]

    @pytest.mark.asyncio
    async def test_ingest_creates_index(self, pipeline, memory_store):
        assert await memory_store.is_index_created() is False

        await pipeline.ingest("some text")

        assert await memory_store.is_index_created() is True

    @pytest.mark.asyncio
    async def test_empty_document_creates_index_without_records(self, pipeline, memory_store):
        result = await pipeline.ingest("")

        assert result.chunk_count == 0
        assert await memory_store.is_index_created() is True
        assert await memory_store.list_all() == []
        assert result.stats["chunk_count"] == 0

    @pytest.mark.asyncio
    async def test_ingest_reports_chunk_stats(self, pipeline):
        document = " ".join(f"token{i}" for i in range(300))

        result = await pipeline.ingest(document)

        assert result.stats["chunk_count"] == result.chunk_count
        assert 0 < result.stats["max_chunk_size"] <= 500
        assert result.stats["overlap"] == 100

    @pytest.mark.asyncio
    async def test_every_chunk_is_embedded_and_stored(self, pipeline, memory_store, fake_client):
        document = " ".join(f"token{i}" for i in range(300))

        result = await pipeline.ingest(document)

        records = await memory_store.list_all()
        assert result.chunk_count > 1
        assert len(records) == result.chunk_count
        assert sorted(fake_client.embedding_calls) == sorted(r.text for r in records)

    @pytest.mark.asyncio
    async def test_fan_out_respects_concurrency_limit(self, memory_store):
        client = FakeOllamaClient()
        pipeline = make_pipeline(
            memory_store,
            client,
            chunker=TextChunker(chunk_size=20, chunk_overlap=0),
            max_concurrency=2,
        )

        await pipeline.ingest(" ".join(f"w{i}" for i in range(100)))

        assert client.peak_in_flight == 2

    @pytest.mark.asyncio
    async def test_partial_failure_raises_after_all_chunks_settle(self, memory_store):
        client = FakeOllamaClient(fail_when=lambda text: "poison" in text)
        pipeline = make_pipeline(
            memory_store,
            client,
            chunker=TextChunker(chunk_size=20, chunk_overlap=0),
        )
        document = "alpha beta gamma delta poison epsilon zeta eta theta iota kappa"

        with pytest.raises(IngestError) as exc_info:
            await pipeline.ingest(document)

        error = exc_info.value
        chunks = TextChunker(chunk_size=20, chunk_overlap=0).split(document)
        assert error.total == len(chunks)
        assert len(client.embedding_calls) == len(chunks)
        assert len(error.errors) == 1
        assert isinstance(error.errors[0], EmbeddingError)
        # Successful chunks stay stored
        records = await memory_store.list_all()
        assert len(records) == error.inserted == len(chunks) - 1
        assert all("poison" not in r.text for r in records)


class TestRetrieve:
    @pytest.fixture
    def client(self) -> FakeOllamaClient:
        return FakeOllamaClient(vectors=PASSAGE_VECTORS)

    async def _populate(self, pipeline, passages):
        for passage in passages:
            await pipeline.ingest(passage)

    @pytest.mark.asyncio
    async def test_top_one_is_most_similar_passage(self, memory_store, client):
        pipeline = make_pipeline(memory_store, client)
        await self._populate(
            pipeline,
            ["cats are small mammals", "rockets launch into orbit", "dogs are loyal pets"],
        )

        assert await pipeline.retrieve("tell me about pets", top_k=1) == ["dogs are loyal pets"]

    @pytest.mark.asyncio
    async def test_default_top_k_returns_ranked_passages(self, memory_store, client):
        pipeline = make_pipeline(memory_store, client, top_k=3)
        await self._populate(
            pipeline,
            ["cats are small mammals", "rockets launch into orbit", "dogs are loyal pets"],
        )

        assert await pipeline.retrieve("tell me about pets") == [
            "dogs are loyal pets",
            "cats are small mammals",
            "rockets launch into orbit",
        ]

    @pytest.mark.asyncio
    async def test_top_k_larger_than_corpus_returns_everything_once(self, memory_store, client):
        pipeline = make_pipeline(memory_store, client)
        await self._populate(pipeline, ["cats are small mammals", "dogs are loyal pets"])

        results = await pipeline.retrieve("tell me about pets", top_k=3)

        assert sorted(results) == ["cats are small mammals", "dogs are loyal pets"]

    @pytest.mark.asyncio
    async def test_empty_index_returns_empty_list(self, memory_store, client):
        pipeline = make_pipeline(memory_store, client)

        assert await pipeline.retrieve("tell me about pets") == []

    @pytest.mark.asyncio
    async def test_oracle_failure_surfaces_as_retrieval_error(self, memory_store):
        client = FakeOllamaClient(
            vectors=PASSAGE_VECTORS,
            fail_when=lambda text: text == "malformed \x00 query",
        )
        pipeline = make_pipeline(memory_store, client)
        await self._populate(pipeline, ["cats are small mammals", "dogs are loyal pets"])

        with pytest.raises(RetrievalError) as exc_info:
            await pipeline.retrieve("malformed \x00 query")

        assert isinstance(exc_info.value.__cause__, EmbeddingError)

    @pytest.mark.asyncio
    async def test_store_failure_surfaces_as_retrieval_error(self, client):
        pipeline = make_pipeline(InMemoryVectorStore(), client)

        with pytest.raises(RetrievalError):
            await pipeline.retrieve("tell me about pets")

    @pytest.mark.asyncio
    async def test_invalid_top_k_rejected(self, memory_store, client):
        pipeline = make_pipeline(memory_store, client)

        with pytest.raises(ValueError):
            await pipeline.retrieve("tell me about pets", top_k=0)


class TestAnswer:
    @pytest.mark.asyncio
    async def test_answer_grounds_prompt_on_retrieved_context(self, memory_store):
        client = FakeOllamaClient(vectors=PASSAGE_VECTORS, reply="Dogs are loyal.")
        pipeline = make_pipeline(memory_store, client, top_k=1)
        await pipeline.ingest("dogs are loyal pets")
        await pipeline.ingest("rockets launch into orbit")

        answer = await pipeline.answer("tell me about pets")

        assert answer.response == "Dogs are loyal."
        assert answer.passages == ["dogs are loyal pets"]
        assert "dogs are loyal pets" in client.prompts[0]
        assert "Question: tell me about pets" in client.prompts[0]
        assert answer.context in client.prompts[0]

    @pytest.mark.asyncio
    async def test_chat_failure_is_wrapped(self, memory_store):
        class FailingChat(FakeOllamaClient):
            async def prompt(self, text, model=None):
                raise RuntimeError("model crashed")

        client = FailingChat(vectors=PASSAGE_VECTORS)
        pipeline = make_pipeline(memory_store, client)

        with pytest.raises(RAGError) as exc_info:
            await pipeline.answer("tell me about pets")

        assert exc_info.value.operation == "chat"

    @pytest.mark.asyncio
    async def test_answer_without_chat_client_fails(self, memory_store, embedder):
        pipeline = RetrievalPipeline(store=memory_store, embedder=embedder)

        with pytest.raises(RAGError):
            await pipeline.answer("hello")


class TestInspectAndReset:
    @pytest.mark.asyncio
    async def test_inspect_lists_records(self, pipeline):
        await pipeline.ingest("A cat sat. A dog ran.")

        items = await pipeline.inspect()
        without_vectors = await pipeline.inspect(include_vectors=False)

        assert items[0]["metadata"] == {"text": "A cat sat. A dog ran."}
        assert "vector" in items[0]
        assert "vector" not in without_vectors[0]

    @pytest.mark.asyncio
    async def test_reset_then_list_is_empty(self, pipeline):
        await pipeline.ingest("A cat sat. A dog ran.")

        await pipeline.reset()

        assert await pipeline.inspect() == []


class TestHelpers:
    def test_build_context_keeps_passages_verbatim_and_ordered(self):
        passages = ["  second place  ", "first\nplace"]

        context = build_context(passages)

        assert context.index("  second place  ") < context.index("first\nplace")

    def test_build_context_empty(self):
        assert build_context([]) == ""

    def test_corpus_skips_records_without_text(self):
        records = [
            IndexRecord(id="1", vector=[1.0], norm=1.0, metadata={"text": "same"}),
            IndexRecord(id="2", vector=[2.0], norm=2.0, metadata={}),
            IndexRecord(id="3", vector=[3.0], norm=3.0, metadata={"text": "same"}),
            IndexRecord(id="4", vector=[4.0], norm=4.0, metadata={"text": "other"}),
        ]

        corpus = corpus_from_records(records)

        assert corpus == {"same": [3.0], "other": [4.0]}

    def test_repeated_text_keeps_first_position_and_last_vector(self):
        records = [
            IndexRecord(id="1", vector=[1.0, 0.0], norm=1.0, metadata={"text": "dup"}),
            IndexRecord(id="2", vector=[0.0, 1.0], norm=1.0, metadata={"text": "solo"}),
            IndexRecord(id="3", vector=[0.0, 2.0], norm=2.0, metadata={"text": "dup"}),
        ]

        corpus = corpus_from_records(records)

        assert list(corpus) == ["dup", "solo"]
        assert corpus["dup"] == [0.0, 2.0]


class TestConfiguration:
    def test_zero_top_k_rejected(self, memory_store, fake_client):
        with pytest.raises(ValueError):
            make_pipeline(memory_store, fake_client, top_k=0)

    def test_zero_concurrency_rejected(self, memory_store, fake_client):
        with pytest.raises(ValueError):
            make_pipeline(memory_store, fake_client, max_concurrency=0)

    def test_defaults_come_from_config(self, memory_store, fake_client, monkeypatch):
        monkeypatch.setattr(config, "RETRIEVAL_TOP_K", 5)
        monkeypatch.setattr(config, "EMBED_CONCURRENCY", 4)

        pipeline = make_pipeline(memory_store, fake_client)

        assert pipeline.top_k == 5
        assert pipeline.max_concurrency == 4

    @pytest.mark.asyncio
    async def test_aclose_closes_shared_client_once(self, memory_store):
        class CountingClient(FakeOllamaClient):
            close_calls = 0

            async def aclose(self):
                self.close_calls += 1

        client = CountingClient()
        pipeline = make_pipeline(memory_store, client)

        await pipeline.aclose()

        assert client.close_calls == 1
