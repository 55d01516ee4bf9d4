"""
Vector Persistence Module

Durable key-value storage behind the in-memory vector index. Records are keyed
by vector id and carry source id, timestamp and stack membership so the index
can be rebuilt at start-up.

ChromaDB is the durable backend; an in-memory backend serves tests and
ephemeral deployments.
"""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import chromadb
from chromadb.config import Settings as ChromaSettings

from ragcore.config import Settings
from ragcore.rag.knowledge import EmbeddingVector, VectorMetadata

logger = logging.getLogger(__name__)


@dataclass
class StoredVector:
    """A vector as written to durable storage."""

    vector: EmbeddingVector
    stack_ids: Tuple[str, ...] = ()
    sequence: int = 0  # insertion order in the index


class VectorPersistence(ABC):
    """
    Abstract base class for durable vector storage.

    Only the get/set/delete contract is consumed by the index.
    """

    @abstractmethod
    async def upsert(self, records: List[StoredVector]) -> None:
        """
        Insert or replace records by vector id.

        Args:
            records: Records to write.
        """
        pass

    @abstractmethod
    async def delete(self, ids: List[str]) -> None:
        """
        Delete records by vector id.

        Args:
            ids: Vector ids to delete. Unknown ids are ignored.
        """
        pass

    @abstractmethod
    async def load_all(self) -> List[StoredVector]:
        """
        Load every stored record.

        Returns:
            Records ordered by their insertion sequence.
        """
        pass

    @abstractmethod
    async def count(self) -> int:
        """Number of stored records."""
        pass

    @abstractmethod
    async def ping(self) -> bool:
        """Check that the storage backend is reachable."""
        pass

    @abstractmethod
    async def clear(self) -> None:
        """Remove every record."""
        pass


class InMemoryVectorPersistence(VectorPersistence):
    """Process-local storage with no durability across restarts."""

    def __init__(self) -> None:
        self._records: Dict[str, StoredVector] = {}

    async def upsert(self, records: List[StoredVector]) -> None:
        for record in records:
            self._records[record.vector.id] = record

    async def delete(self, ids: List[str]) -> None:
        for vector_id in ids:
            self._records.pop(vector_id, None)

    async def load_all(self) -> List[StoredVector]:
        return sorted(self._records.values(), key=lambda r: r.sequence)

    async def count(self) -> int:
        return len(self._records)

    async def ping(self) -> bool:
        return True

    async def clear(self) -> None:
        self._records.clear()


class ChromaVectorPersistence(VectorPersistence):
    """
    ChromaDB-based durable storage.

    Uses persistent storage for data durability across restarts. Metadata is
    flattened to the scalar types ChromaDB accepts.
    """

    def __init__(
        self,
        collection_name: str = "knowledge_vectors",
        persist_directory: str = "./data/chroma",
        client: Optional[Any] = None,
    ) -> None:
        """
        Initialize the ChromaDB persistence backend.

        Args:
            collection_name: Name of the ChromaDB collection.
            persist_directory: Directory for persistent storage.
            client: Optional pre-built ChromaDB client.
        """
        self.collection_name = collection_name
        self.persist_directory = persist_directory

        if client is None:
            persist_path = Path(self.persist_directory)
            persist_path.mkdir(parents=True, exist_ok=True)

            client = chromadb.PersistentClient(
                path=str(persist_path),
                settings=ChromaSettings(
                    anonymized_telemetry=False,
                    allow_reset=True,
                ),
            )

        self._client = client
        self._collection = self._client.get_or_create_collection(
            name=self.collection_name,
            metadata={"hnsw:space": "cosine"},
        )

        logger.info(
            f"ChromaDB persistence initialized: collection='{self.collection_name}', "
            f"persist_dir='{self.persist_directory}', "
            f"document_count={self._collection.count()}"
        )

    @staticmethod
    def _to_metadata(record: StoredVector) -> Dict[str, Any]:
        meta = record.vector.metadata
        return {
            "source_id": meta.source_id,
            "chunk_index": meta.chunk_index,
            "timestamp": meta.timestamp.isoformat(),
            "timestamp_epoch": meta.timestamp.timestamp(),
            "stack_ids": json.dumps(list(record.stack_ids)),
            "sequence": record.sequence,
            "extra": json.dumps(meta.extra, default=str),
        }

    @staticmethod
    def _from_row(vector_id: str, embedding: Any, document: Optional[str], metadata: Dict[str, Any]) -> StoredVector:
        vector = EmbeddingVector(
            id=vector_id,
            vector=[float(x) for x in embedding],
            metadata=VectorMetadata(
                content=document or "",
                source_id=str(metadata.get("source_id", "")),
                chunk_index=int(metadata.get("chunk_index", 0)),
                timestamp=datetime.fromisoformat(metadata["timestamp"]),
                extra=json.loads(metadata.get("extra") or "{}"),
            ),
        )
        return StoredVector(
            vector=vector,
            stack_ids=tuple(json.loads(metadata.get("stack_ids") or "[]")),
            sequence=int(metadata.get("sequence", 0)),
        )

    async def upsert(self, records: List[StoredVector]) -> None:
        if not records:
            return

        self._collection.upsert(
            ids=[r.vector.id for r in records],
            embeddings=[list(r.vector.vector) for r in records],
            documents=[r.vector.metadata.content for r in records],
            metadatas=[self._to_metadata(r) for r in records],
        )
        logger.debug(f"Upserted {len(records)} vectors into '{self.collection_name}'")

    async def delete(self, ids: List[str]) -> None:
        if not ids:
            return

        self._collection.delete(ids=ids)
        logger.debug(f"Deleted {len(ids)} vectors from '{self.collection_name}'")

    async def load_all(self) -> List[StoredVector]:
        results = self._collection.get(include=["embeddings", "documents", "metadatas"])

        ids = results.get("ids") or []
        embeddings = results.get("embeddings")
        if embeddings is None:
            embeddings = [[] for _ in ids]
        documents = results.get("documents") or [None] * len(ids)
        metadatas = results.get("metadatas") or [{} for _ in ids]

        records = [
            self._from_row(vector_id, embeddings[i], documents[i], metadatas[i] or {})
            for i, vector_id in enumerate(ids)
        ]
        records.sort(key=lambda r: r.sequence)

        logger.info(f"Loaded {len(records)} vectors from '{self.collection_name}'")
        return records

    async def count(self) -> int:
        return self._collection.count()

    async def ping(self) -> bool:
        self._client.heartbeat()
        return True

    async def clear(self) -> None:
        self._client.delete_collection(self.collection_name)
        self._collection = self._client.create_collection(
            name=self.collection_name,
            metadata={"hnsw:space": "cosine"},
        )
        logger.info(f"Cleared collection '{self.collection_name}'")


def create_vector_persistence(settings: Settings, **kwargs: Any) -> VectorPersistence:
    """
    Factory function to create a persistence backend.

    Args:
        settings: Settings selecting the backend.
        **kwargs: Additional arguments passed to the backend constructor.

    Returns:
        VectorPersistence instance.

    Raises:
        ValueError: If the backend is not supported.
    """
    backend = settings.vector_backend.lower()

    if backend == "chroma":
        return ChromaVectorPersistence(
            collection_name=settings.rag_collection_name,
            persist_directory=settings.chroma_persist_directory,
            **kwargs,
        )
    elif backend == "memory":
        return InMemoryVectorPersistence()
    else:
        raise ValueError(f"Unsupported vector backend: {settings.vector_backend}")
