"""Shared fixtures: a fake Ollama client and opened vector stores."""
import asyncio
import string
from typing import Callable, Dict, List, Optional

import httpx
import pytest
import pytest_asyncio

from ragcore.rag.chunker import TextChunker
from ragcore.rag.embedder import Embedder
from ragcore.rag.pipeline import RetrievalPipeline
from ragcore.rag.store import InMemoryVectorStore, LocalVectorStore


def letter_vector(text: str) -> List[float]:
    """Deterministic embedding: letter counts plus a bias term."""
    lowered = text.lower()
    return [float(lowered.count(c)) for c in string.ascii_lowercase] + [1.0]


class FakeOllamaClient:
    """Stands in for OllamaClient: embeddings, prompt, list_models and aclose."""

    def __init__(
        self,
        vectors: Optional[Dict[str, List[float]]] = None,
        fail_when: Optional[Callable[[str], bool]] = None,
        reply: str = "stub reply",
    ):
        self.vectors = vectors or {}
        self.fail_when = fail_when or (lambda text: False)
        self.reply = reply
        self.embedding_calls: List[str] = []
        self.prompts: List[str] = []
        self.in_flight = 0
        self.peak_in_flight = 0
        self.closed = False

    async def embeddings(self, prompt: str, model: str = None) -> dict:
        self.embedding_calls.append(prompt)
        self.in_flight += 1
        self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0)
            if self.fail_when(prompt):
                raise httpx.ConnectError("embedding model unavailable")
            return {"embedding": self.vectors.get(prompt, letter_vector(prompt))}
        finally:
            self.in_flight -= 1

    async def prompt(self, text: str, model: str = None) -> str:
        self.prompts.append(text)
        return self.reply

    async def list_models(self) -> List[str]:
        return ["fake-model"]

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def fake_client() -> FakeOllamaClient:
    return FakeOllamaClient()


@pytest.fixture
def embedder(fake_client: FakeOllamaClient) -> Embedder:
    return Embedder(client=fake_client, model="fake-model")


@pytest_asyncio.fixture
async def memory_store():
    store = InMemoryVectorStore()
    await store.open()
    yield store
    await store.close()


@pytest_asyncio.fixture
async def local_store(tmp_path):
    store = LocalVectorStore(index_dir=tmp_path / "index")
    await store.open()
    yield store
    await store.close()


@pytest.fixture
def pipeline(memory_store, embedder, fake_client) -> RetrievalPipeline:
    return RetrievalPipeline(
        store=memory_store,
        embedder=embedder,
        chunker=TextChunker(chunk_size=500, chunk_overlap=100),
        chat_client=fake_client,
        top_k=3,
    )
