"""Pytest configuration and fixtures shared by unit and e2e tests."""
import asyncio
import hashlib
from typing import Any, Dict, List, Optional, Sequence

import httpx
import pytest

from localdocs.config import RagConfig
from localdocs.rag.embedder import Embedder
from localdocs.rag.generator import Generator
from localdocs.rag.models import Chunk
from localdocs.rag.store_faiss import IndexStore

EMBEDDING_DIMENSION = 64


def fake_embedding(text: str, dimension: int = EMBEDDING_DIMENSION) -> List[float]:
    """Bag-of-words vector: each word bumps one hashed bucket."""
    vector = [0.0] * dimension
    for word in text.lower().split():
        bucket = int(hashlib.md5(word.encode("utf-8")).hexdigest(), 16) % dimension
        vector[bucket] += 1.0
    return vector


class FakeOllamaClient:
    """In-process stand-in for OllamaClient.

    Embeddings are deterministic bag-of-words vectors. Generation replays
    ``script`` one piece per model token.
    """

    def __init__(
        self,
        script: Sequence[str] = ("Hello", " world"),
        dimension: int = EMBEDDING_DIMENSION,
        fail_embeddings: bool = False,
        stream_error_after: Optional[int] = None,
        models: Sequence[str] = ("test-chat", "test-embed"),
    ):
        self.script = list(script)
        self.dimension = dimension
        self.fail_embeddings = fail_embeddings
        self.stream_error_after = stream_error_after
        self.models = list(models)
        self.embedding_calls: List[str] = []
        self.generate_calls: List[Dict[str, Any]] = []

    async def embeddings(self, prompt: str, model: str = None) -> Dict:
        self.embedding_calls.append(prompt)
        if self.fail_embeddings:
            raise httpx.ConnectError("connection refused")
        await asyncio.sleep(0)
        return {"embedding": fake_embedding(prompt, self.dimension)}

    async def generate_stream(self, prompt: str, model: str = None, options=None):
        self.generate_calls.append({"prompt": prompt, "model": model, "options": options})
        for i, piece in enumerate(self.script):
            if self.stream_error_after is not None and i == self.stream_error_after:
                raise httpx.ReadError("stream interrupted")
            await asyncio.sleep(0)
            yield {"response": piece, "done": False}
        yield {"response": "", "done": True}

    async def list_models(self) -> List[str]:
        return list(self.models)


@pytest.fixture
def fake_client():
    return FakeOllamaClient()


@pytest.fixture
def embedder(fake_client):
    return Embedder(client=fake_client, model="test-embed")


@pytest.fixture
def generator(fake_client):
    return Generator(client=fake_client, model="test-chat")


@pytest.fixture
def rag_config():
    """Small settings so tests stay fast and readable."""
    return RagConfig(
        chunk_size=100,
        chunk_overlap=20,
        top_k=3,
        context_window_tokens=2048,
        max_answer_tokens=256,
        model_path="test-chat",
        embedding_model="test-embed",
        batch_size=10,
    )


@pytest.fixture
def store(tmp_path):
    return IndexStore(tmp_path / "index")


@pytest.fixture
def sample_chunks():
    """Chunks with distinct vocabularies so each embeds differently."""
    texts = [
        "alpha bravo charlie",
        "delta echo foxtrot",
        "golf hotel india",
        "juliet kilo lima",
        "mike november oscar",
    ]
    return [
        Chunk(
            text=text,
            source_path="/docs/manual.pdf" if i < 2 else f"/docs/note{i}.txt",
            chunk_index=i,
            page_number=i + 1 if i < 2 else None,
        )
        for i, text in enumerate(texts)
    ]
