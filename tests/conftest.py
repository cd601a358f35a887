"""
Shared fixtures: in-memory async database, OpenAI embeddings double,
deterministic token counter.
"""

import re
import zlib
from types import SimpleNamespace

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from chatkb.db import init_models
from chatkb.services.chunking import Chunker
from chatkb.services.embedding import EmbeddingConfig, EmbeddingGenerator
from chatkb.services.ingestion import IngestionService
from chatkb.services.tokens import HeuristicTokenCounter

WORD = re.compile(r"\w+", re.UNICODE)


def bag_of_words(text: str, dimensions: int) -> list[float]:
    """Hash each word into a bucket; texts sharing words point the same way."""
    vec = [0.0] * dimensions
    for word in WORD.findall(text.lower()):
        vec[zlib.crc32(word.encode("utf-8")) % dimensions] += 1.0
    return vec


class FakeEmbeddings:
    def __init__(self, embed_fn=bag_of_words, error: Exception | None = None, reverse: bool = False):
        self.embed_fn = embed_fn
        self.error = error
        self.reverse = reverse
        self.calls: list[dict] = []

    async def create(self, **params):
        self.calls.append(params)
        if self.error is not None:
            raise self.error
        dims = params.get("dimensions", 1536)
        data = [
            SimpleNamespace(index=i, embedding=self.embed_fn(text, dims))
            for i, text in enumerate(params["input"])
        ]
        if self.reverse:
            data.reverse()
        return SimpleNamespace(data=data)


class FakeOpenAI:
    def __init__(self, **kwargs):
        self.embeddings = FakeEmbeddings(**kwargs)


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    await init_models(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def counter() -> HeuristicTokenCounter:
    return HeuristicTokenCounter()


@pytest.fixture
def fake_client() -> FakeOpenAI:
    return FakeOpenAI()


@pytest.fixture
def embed_config() -> EmbeddingConfig:
    return EmbeddingConfig(model="text-embedding-3-small", dimensions=256)


@pytest.fixture
def embedder(fake_client, embed_config) -> EmbeddingGenerator:
    return EmbeddingGenerator(
        fake_client,
        default_config=embed_config,
        batch_delay=0,
        strict=False,
        dimension_policy="warn",
    )


@pytest.fixture
def chunker(counter) -> Chunker:
    return Chunker(chunk_size=50, chunk_overlap=10, counter=counter)


@pytest.fixture
def ingestion(session_factory, embedder, chunker) -> IngestionService:
    return IngestionService(session_factory=session_factory, embedder=embedder, chunker=chunker)
