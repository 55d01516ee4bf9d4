"""
Shared test fixtures.

The keyword embedder maps text onto a small vocabulary so similarity between
queries and chunks is predictable without a real embedding provider.
"""

from datetime import datetime
from typing import Dict, List, Optional, Sequence

import pytest

from ragcore.config import Settings
from ragcore.rag.chunking import ContentProvider, generate_chunk_id
from ragcore.rag.embeddings import BatchEmbedding, EmbeddingGenerator
from ragcore.rag.knowledge import (
    DocumentChunk,
    EmbeddingVector,
    KnowledgeSource,
    SourceType,
    VectorMetadata,
)
from ragcore.rag.persistence import InMemoryVectorPersistence
from ragcore.rag.vector_store import VectorStore

VOCABULARY = [
    "payment",
    "pipeline",
    "architecture",
    "refund",
    "kubernetes",
    "pricing",
    "security",
    "database",
]


class KeywordEmbeddingGenerator(EmbeddingGenerator):
    """Deterministic embedder: one dimension per vocabulary word."""

    def __init__(self, api_key: str = "test-key", batch_size: int = 100) -> None:
        super().__init__(api_key=api_key, model="keyword-test", batch_size=batch_size)
        self.batches: List[List[str]] = []

    async def _embed_batch(self, texts: List[str], model: str) -> BatchEmbedding:
        self.batches.append(list(texts))
        vectors = [[float(text.lower().count(word)) for word in VOCABULARY] for text in texts]
        return BatchEmbedding(vectors=vectors, total_tokens=len(texts) * 4, model=model)


class StaticContentProvider(ContentProvider):
    """Serves pre-defined chunk texts per source id."""

    def __init__(self, texts: Dict[str, Sequence[str]], failures: Optional[Dict[str, Exception]] = None) -> None:
        self.texts = texts
        self.failures = failures or {}
        self.calls: List[str] = []

    def supported_types(self) -> List[str]:
        return ["static"]

    async def get_chunks(self, source: KnowledgeSource) -> List[DocumentChunk]:
        self.calls.append(source.id)
        if source.id in self.failures:
            raise self.failures[source.id]
        return [
            DocumentChunk(id=generate_chunk_id(source.id, i, text), content=text, chunk_index=i)
            for i, text in enumerate(self.texts.get(source.id, []))
        ]


def make_vector(
    vector_id: str,
    values: Sequence[float],
    source_id: str = "src-1",
    chunk_index: int = 0,
    content: Optional[str] = None,
    timestamp: Optional[datetime] = None,
    **extra,
) -> EmbeddingVector:
    return EmbeddingVector(
        id=vector_id,
        vector=values,
        metadata=VectorMetadata(
            content=content if content is not None else f"content of {vector_id}",
            source_id=source_id,
            chunk_index=chunk_index,
            timestamp=timestamp or datetime(2024, 1, 1),
            extra=extra,
        ),
    )


def make_source(source_id: str, stack_id: str = "stack1", name: Optional[str] = None) -> KnowledgeSource:
    return KnowledgeSource(
        id=source_id,
        name=name or f"{source_id}.md",
        type=SourceType.FILE,
        stack_id=stack_id,
    )


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        openai_api_key="test-key",
        vector_backend="memory",
    )


@pytest.fixture
def persistence() -> InMemoryVectorPersistence:
    return InMemoryVectorPersistence()


@pytest.fixture
def store(persistence) -> VectorStore:
    return VectorStore(persistence)


@pytest.fixture
def embedder() -> KeywordEmbeddingGenerator:
    return KeywordEmbeddingGenerator()


@pytest.fixture
def vector_factory():
    return make_vector


@pytest.fixture
def source_factory():
    return make_source


@pytest.fixture
def provider_factory():
    return StaticContentProvider


@pytest.fixture
def embedder_factory():
    return KeywordEmbeddingGenerator
