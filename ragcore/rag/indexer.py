"""
Knowledge Indexing Pipeline

Orchestrates chunking, embedding generation and storage for knowledge sources.
Each source is isolated: a failure while indexing one source is reported in
its result and never aborts a multi-source run.
"""

import inspect
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Union

from ragcore.exceptions import UpstreamError
from ragcore.rag.chunking import ContentProvider
from ragcore.rag.embeddings import EmbeddingGenerator
from ragcore.rag.knowledge import (
    EmbeddingVector,
    KnowledgeSource,
    KnowledgeStack,
    SourceStatus,
    VectorMetadata,
)
from ragcore.rag.vector_store import VectorStore

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], Union[None, Awaitable[None]]]


@dataclass
class IndexingResult:
    """Outcome of indexing one knowledge source."""

    source_id: str
    success: bool
    chunk_count: int
    vector_count: int
    processing_time_ms: float
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source_id": self.source_id,
            "success": self.success,
            "chunk_count": self.chunk_count,
            "vector_count": self.vector_count,
            "processing_time_ms": self.processing_time_ms,
            "error": self.error,
        }


def _elapsed_ms(start: float) -> float:
    return (time.perf_counter() - start) * 1000


class KnowledgeIndexer:
    """
    Indexes knowledge sources into the vector store.

    Sources are processed one at a time to respect embedding provider rate
    limits and to keep progress reporting deterministic.
    """

    def __init__(self, vector_store: VectorStore, embedding_generator: EmbeddingGenerator) -> None:
        """
        Initialize the indexer.

        Args:
            vector_store: Store receiving the vectors.
            embedding_generator: Generator for chunk embeddings.
        """
        self.vector_store = vector_store
        self.embedding_generator = embedding_generator

    async def _build_vectors(
        self,
        source: KnowledgeSource,
        stack_id: str,
        content_provider: ContentProvider,
    ) -> List[EmbeddingVector]:
        chunks = await content_provider.get_chunks(source)
        if not chunks:
            return []

        embeddings = await self.embedding_generator.generate_batch_embeddings([c.content for c in chunks])
        if len(embeddings) != len(chunks):
            raise UpstreamError(f"Expected {len(chunks)} embeddings, got {len(embeddings)}")

        timestamp = datetime.utcnow()
        return [
            EmbeddingVector(
                id=chunk.id,
                vector=embedding.embedding,
                metadata=VectorMetadata(
                    content=chunk.content,
                    source_id=source.id,
                    chunk_index=chunk.chunk_index,
                    timestamp=timestamp,
                    extra={**chunk.metadata, "source_name": source.name, "stack_id": stack_id},
                ),
            )
            for chunk, embedding in zip(chunks, embeddings)
        ]

    async def index_source(
        self,
        source: KnowledgeSource,
        stack_id: str,
        content_provider: ContentProvider,
        stack: Optional[KnowledgeStack] = None,
    ) -> IndexingResult:
        """
        Index a single knowledge source.

        Never raises: any failure is returned as success=False with zero counts.

        Args:
            source: Source to index; must be in the indexing state.
            stack_id: Stack the vectors are labelled with.
            content_provider: Chunking collaborator.
            stack: Optional stack object to register the source with on success.

        Returns:
            IndexingResult describing the outcome.
        """
        start = time.perf_counter()

        if source.status != SourceStatus.INDEXING:
            message = f"Source '{source.id}' is {source.status.value}; use reindex_source to index it again"
            logger.warning(message)
            return IndexingResult(
                source_id=source.id,
                success=False,
                chunk_count=0,
                vector_count=0,
                processing_time_ms=_elapsed_ms(start),
                error=message,
            )

        try:
            vectors = await self._build_vectors(source, stack_id, content_provider)
            await self.vector_store.store_many(vectors, stack_id)

        except Exception as e:
            message = str(e) or type(e).__name__
            logger.error(f"Knowledge indexing failed for source '{source.id}': {message}")
            source.mark_error(message)
            return IndexingResult(
                source_id=source.id,
                success=False,
                chunk_count=0,
                vector_count=0,
                processing_time_ms=_elapsed_ms(start),
                error=message,
            )

        source.mark_ready(len(vectors))
        if stack is not None:
            stack.add_source(source.id)

        result = IndexingResult(
            source_id=source.id,
            success=True,
            chunk_count=len(vectors),
            vector_count=len(vectors),
            processing_time_ms=_elapsed_ms(start),
        )
        logger.info(
            f"Indexed source '{source.name}' ({source.id}): "
            f"{result.vector_count} vectors in {result.processing_time_ms:.0f}ms"
        )
        return result

    async def index_multiple_sources(
        self,
        sources: Sequence[KnowledgeSource],
        stack_id: str,
        content_provider: ContentProvider,
        on_progress: Optional[ProgressCallback] = None,
        stack: Optional[KnowledgeStack] = None,
    ) -> List[IndexingResult]:
        """
        Index sources one after another.

        Args:
            sources: Sources to index.
            stack_id: Stack the vectors are labelled with.
            content_provider: Chunking collaborator.
            on_progress: Called with (completed, total) after every source,
                whatever its outcome. May be a coroutine function.
            stack: Optional stack object to register sources with.

        Returns:
            One IndexingResult per source, in input order.
        """
        results: List[IndexingResult] = []
        total = len(sources)

        for i, source in enumerate(sources):
            result = await self.index_source(source, stack_id, content_provider, stack=stack)
            results.append(result)

            if on_progress is not None:
                try:
                    outcome = on_progress(i + 1, total)
                    if inspect.isawaitable(outcome):
                        await outcome
                except Exception as e:
                    logger.error(f"Progress callback failed after source '{source.id}': {e}")

        succeeded = sum(1 for r in results if r.success)
        logger.info(f"Batch indexing complete: {succeeded}/{total} sources indexed into stack '{stack_id}'")
        return results

    async def reindex_source(
        self,
        source: KnowledgeSource,
        stack_id: str,
        content_provider: ContentProvider,
        stack: Optional[KnowledgeStack] = None,
    ) -> IndexingResult:
        """
        Re-index a source from scratch.

        Resets its status to indexing, removes its existing vectors and indexes
        it again.
        """
        source.reindex()

        try:
            await self.vector_store.delete_by_source(source.id)
        except Exception as e:
            message = str(e) or type(e).__name__
            logger.error(f"Failed to clear vectors before reindexing '{source.id}': {message}")
            source.mark_error(message)
            return IndexingResult(
                source_id=source.id,
                success=False,
                chunk_count=0,
                vector_count=0,
                processing_time_ms=0.0,
                error=message,
            )

        return await self.index_source(source, stack_id, content_provider, stack=stack)
