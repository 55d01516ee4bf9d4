"""
Vector Store Module

In-memory vector index with secondary indexes by source and by stack, backed
by a durable persistence collaborator. Similarity search is a linear scan over
the cheapest candidate set the filters allow.

The in-memory index is authoritative for the process lifetime: it is updated
before every durable write and is never rolled back when that write fails.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set

from ragcore.exceptions import StorageError
from ragcore.rag.embeddings import cosine_similarity
from ragcore.rag.knowledge import EmbeddingVector
from ragcore.rag.persistence import InMemoryVectorPersistence, StoredVector, VectorPersistence

logger = logging.getLogger(__name__)


@dataclass
class DateRange:
    """Inclusive timestamp range."""

    start: datetime
    end: datetime

    def contains(self, timestamp: datetime) -> bool:
        return self.start <= timestamp <= self.end


@dataclass
class SearchFilters:
    """Optional restrictions on the candidate set of a search."""

    source_id: Optional[str] = None
    stack_id: Optional[str] = None
    stack_ids: List[str] = field(default_factory=list)
    date_range: Optional[DateRange] = None

    def all_stack_ids(self) -> List[str]:
        """Union of stack_id and stack_ids, de-duplicated in order."""
        ids = [self.stack_id] if self.stack_id else []
        ids.extend(self.stack_ids)
        return list(dict.fromkeys(ids))


@dataclass
class SearchQuery:
    """A similarity search request."""

    vector: Sequence[float]
    top_k: int = 10
    threshold: float = 0.7
    filters: Optional[SearchFilters] = None


@dataclass
class VectorSearchResult:
    """Result from a vector similarity search."""

    id: str
    content: str
    source_id: str
    similarity: float  # Cosine similarity in [-1, 1]
    metadata: Dict[str, Any]


@dataclass
class StorageStats:
    """Size of the in-memory index."""

    total_vectors: int
    total_sources: int
    total_stacks: int
    memory_usage: int  # approximate bytes

    def to_dict(self) -> Dict[str, int]:
        return {
            "total_vectors": self.total_vectors,
            "total_sources": self.total_sources,
            "total_stacks": self.total_stacks,
            "memory_usage": self.memory_usage,
        }


class VectorStore:
    """
    Queryable collection of embedding vectors.

    Primary collection keyed by vector id (insertion ordered), plus secondary
    indexes source_id -> ids and stack_id -> ids. A vector may be labelled with
    several stacks; it is deleted by stack removal only once no stack still
    references it.
    """

    def __init__(self, persistence: Optional[VectorPersistence] = None) -> None:
        """
        Initialize the vector store.

        Args:
            persistence: Durable storage collaborator (in-memory if not provided).
        """
        self._persistence = persistence or InMemoryVectorPersistence()

        self._vectors: Dict[str, EmbeddingVector] = {}
        self._sequence: Dict[str, int] = {}
        self._next_sequence = 0
        self._source_index: Dict[str, Set[str]] = {}
        self._stack_index: Dict[str, Set[str]] = {}
        self._vector_stacks: Dict[str, Set[str]] = {}

    @property
    def persistence(self) -> VectorPersistence:
        return self._persistence

    # ------------------------------------------------------------------
    # Index maintenance
    # ------------------------------------------------------------------

    def _index_vector(self, vector: EmbeddingVector, stack_ids: Iterable[str], sequence: Optional[int] = None) -> None:
        existing = self._vectors.get(vector.id)
        if existing is not None and existing.source_id != vector.source_id:
            self._discard(self._source_index, existing.source_id, vector.id)

        if vector.id not in self._sequence:
            if sequence is None:
                sequence = self._next_sequence
            self._sequence[vector.id] = sequence
            self._next_sequence = max(self._next_sequence, sequence + 1)

        self._vectors[vector.id] = vector
        self._source_index.setdefault(vector.source_id, set()).add(vector.id)

        for stack_id in stack_ids:
            self._stack_index.setdefault(stack_id, set()).add(vector.id)
            self._vector_stacks.setdefault(vector.id, set()).add(stack_id)

    def _remove_vector(self, vector_id: str) -> None:
        vector = self._vectors.pop(vector_id, None)
        self._sequence.pop(vector_id, None)

        for stack_id in self._vector_stacks.pop(vector_id, set()):
            self._discard(self._stack_index, stack_id, vector_id)

        if vector is not None:
            self._discard(self._source_index, vector.source_id, vector_id)

    @staticmethod
    def _discard(index: Dict[str, Set[str]], key: str, vector_id: str) -> None:
        bucket = index.get(key)
        if bucket is None:
            return
        bucket.discard(vector_id)
        if not bucket:
            del index[key]

    def _ordered(self, ids: Iterable[str]) -> List[str]:
        return sorted((i for i in ids if i in self._vectors), key=self._sequence.__getitem__)

    def _record(self, vector_id: str) -> StoredVector:
        return StoredVector(
            vector=self._vectors[vector_id],
            stack_ids=tuple(sorted(self._vector_stacks.get(vector_id, ()))),
            sequence=self._sequence[vector_id],
        )

    async def _persist(self, vector_ids: List[str]) -> None:
        if not vector_ids:
            return
        try:
            await self._persistence.upsert([self._record(i) for i in vector_ids])
        except Exception as e:
            logger.error(f"Failed to persist {len(vector_ids)} vectors: {e}")
            raise StorageError(f"Failed to persist vectors: {e}") from e

    async def _unpersist(self, vector_ids: List[str]) -> None:
        if not vector_ids:
            return
        try:
            await self._persistence.delete(vector_ids)
        except Exception as e:
            logger.error(f"Failed to delete {len(vector_ids)} vectors from storage: {e}")
            raise StorageError(f"Failed to delete vectors: {e}") from e

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def load(self) -> int:
        """
        Rebuild the in-memory indexes from durable storage.

        Returns:
            Number of vectors loaded.
        """
        try:
            records = await self._persistence.load_all()
        except Exception as e:
            logger.error(f"Failed to load vectors from storage: {e}")
            raise StorageError(f"Failed to load vectors: {e}") from e

        self._vectors.clear()
        self._sequence.clear()
        self._source_index.clear()
        self._stack_index.clear()
        self._vector_stacks.clear()
        self._next_sequence = 0

        for record in records:
            self._index_vector(record.vector, record.stack_ids, sequence=record.sequence)

        logger.info(
            f"Vector index loaded: {len(self._vectors)} vectors, "
            f"{len(self._source_index)} sources, {len(self._stack_index)} stacks"
        )
        return len(self._vectors)

    async def store(self, vector: EmbeddingVector, stack_id: Optional[str] = None) -> None:
        """
        Store a single vector (idempotent upsert by id).

        Args:
            vector: Vector to store.
            stack_id: Optional stack to label the vector with.
        """
        await self.store_many([vector], stack_id)

    async def store_many(self, vectors: List[EmbeddingVector], stack_id: Optional[str] = None) -> None:
        """
        Store vectors and write them through to durable storage.

        Args:
            vectors: Vectors to store. Existing ids are replaced in place.
            stack_id: Optional stack to label every vector with.

        Raises:
            StorageError: If the durable write fails. The in-memory index keeps the vectors.
        """
        if not vectors:
            return

        stack_ids = [stack_id] if stack_id else []
        for vector in vectors:
            self._index_vector(vector, stack_ids)

        await self._persist(list(dict.fromkeys(v.id for v in vectors)))
        logger.info(f"Stored {len(vectors)} vectors" + (f" in stack '{stack_id}'" if stack_id else ""))

    async def search(self, query: SearchQuery) -> List[VectorSearchResult]:
        """
        Search for the vectors most similar to the query vector.

        Args:
            query: Query vector, top_k, threshold and optional filters.

        Returns:
            At most top_k results with similarity >= threshold, ordered by
            similarity descending, ties in insertion order.

        Raises:
            DimensionMismatch: If a candidate's dimension differs from the query's.
        """
        if query.top_k <= 0:
            return []

        filters = query.filters or SearchFilters()
        stack_ids = filters.all_stack_ids()

        # Cheapest available filter first
        if filters.source_id:
            candidate_ids = self._ordered(self._source_index.get(filters.source_id, ()))
            candidates = [self._vectors[i] for i in candidate_ids]
        elif stack_ids:
            union: Set[str] = set()
            for stack_id in stack_ids:
                union.update(self._stack_index.get(stack_id, ()))
            candidates = [self._vectors[i] for i in self._ordered(union)]
        else:
            candidates = list(self._vectors.values())

        if filters.date_range is not None:
            candidates = [v for v in candidates if filters.date_range.contains(v.metadata.timestamp)]

        results = []
        for vector in candidates:
            similarity = cosine_similarity(query.vector, vector.vector)
            if similarity < query.threshold:
                continue
            results.append(
                VectorSearchResult(
                    id=vector.id,
                    content=vector.metadata.content,
                    source_id=vector.source_id,
                    similarity=similarity,
                    metadata=vector.metadata.to_dict(),
                )
            )

        # list.sort is stable, so equal scores keep insertion order
        results.sort(key=lambda r: r.similarity, reverse=True)

        logger.debug(f"Search scanned {len(candidates)} candidates, {len(results)} above threshold")
        return results[: query.top_k]

    def get(self, vector_id: str) -> Optional[EmbeddingVector]:
        return self._vectors.get(vector_id)

    def count(self) -> int:
        return len(self._vectors)

    def get_vectors_by_source(self, source_id: str) -> List[EmbeddingVector]:
        return [self._vectors[i] for i in self._ordered(self._source_index.get(source_id, ()))]

    def get_vectors_by_stack(self, stack_id: str) -> List[EmbeddingVector]:
        return [self._vectors[i] for i in self._ordered(self._stack_index.get(stack_id, ()))]

    def get_stack_ids(self, vector_id: str) -> Set[str]:
        return set(self._vector_stacks.get(vector_id, ()))

    async def delete_by_source(self, source_id: str) -> int:
        """
        Delete every vector owned by a source.

        Args:
            source_id: Owning source id.

        Returns:
            Number of vectors deleted.
        """
        vector_ids = self._ordered(self._source_index.get(source_id, ()))
        if not vector_ids:
            return 0

        for vector_id in vector_ids:
            self._remove_vector(vector_id)

        logger.info(f"Deleted {len(vector_ids)} vectors of source '{source_id}'")
        await self._unpersist(vector_ids)
        return len(vector_ids)

    async def delete_by_stack(self, stack_id: str) -> int:
        """
        Remove a stack.

        The stack label is dropped from every member vector; vectors left with
        no stack are deleted, vectors still referenced by another stack stay.

        Args:
            stack_id: Stack id.

        Returns:
            Number of vectors deleted.
        """
        member_ids = self._ordered(self._stack_index.pop(stack_id, ()))
        if not member_ids:
            return 0

        deleted: List[str] = []
        relabelled: List[str] = []
        for vector_id in member_ids:
            stacks = self._vector_stacks.get(vector_id, set())
            stacks.discard(stack_id)
            if stacks:
                relabelled.append(vector_id)
            else:
                self._remove_vector(vector_id)
                deleted.append(vector_id)

        logger.info(
            f"Removed stack '{stack_id}': {len(deleted)} vectors deleted, "
            f"{len(relabelled)} still referenced by other stacks"
        )
        await self._unpersist(deleted)
        await self._persist(relabelled)
        return len(deleted)

    async def clear_all(self) -> None:
        """Delete every vector from memory and durable storage."""
        self._vectors.clear()
        self._sequence.clear()
        self._source_index.clear()
        self._stack_index.clear()
        self._vector_stacks.clear()
        self._next_sequence = 0

        try:
            await self._persistence.clear()
        except Exception as e:
            logger.error(f"Failed to clear storage: {e}")
            raise StorageError(f"Failed to clear storage: {e}") from e

    def get_storage_stats(self) -> StorageStats:
        """
        Get statistics about the index.

        Memory is estimated as 8 bytes per float plus 2 bytes per character of
        serialized metadata.
        """
        memory_usage = 0
        for vector in self._vectors.values():
            memory_usage += len(vector.vector) * 8
            memory_usage += len(json.dumps(vector.metadata.to_dict(), default=str)) * 2

        return StorageStats(
            total_vectors=len(self._vectors),
            total_sources=len(self._source_index),
            total_stacks=len(self._stack_index),
            memory_usage=memory_usage,
        )
