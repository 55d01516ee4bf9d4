"""
Knowledge Domain Model

Embedding vectors, knowledge sources with their indexing status machine,
knowledge stacks and the document chunks produced by the chunking collaborator.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

from ragcore.exceptions import InvalidStatusTransition


@dataclass(frozen=True)
class VectorMetadata:
    """Metadata stored alongside an embedding vector."""

    content: str
    source_id: str
    chunk_index: int
    timestamp: datetime = field(default_factory=datetime.utcnow)
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        # Core fields win over free-form extras with the same key
        return {
            **self.extra,
            "content": self.content,
            "source_id": self.source_id,
            "chunk_index": self.chunk_index,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class EmbeddingVector:
    """
    An embedded chunk owned by exactly one source.

    Never mutated in place; replace it by storing a new vector under the same id.
    """

    id: str
    vector: Tuple[float, ...]
    metadata: VectorMetadata

    def __post_init__(self) -> None:
        # Accept any sequence but keep the stored copy immutable
        object.__setattr__(self, "vector", tuple(float(x) for x in self.vector))

    @property
    def source_id(self) -> str:
        return self.metadata.source_id

    @property
    def dimensions(self) -> int:
        return len(self.vector)


class SourceType(str, Enum):
    FILE = "file"
    URL = "url"
    FOLDER = "folder"


class SourceStatus(str, Enum):
    INDEXING = "indexing"
    READY = "ready"
    ERROR = "error"


@dataclass
class KnowledgeSource:
    """
    A document, folder or URL indexed into the knowledge base.

    Status moves indexing -> ready | error. Finished sources only return to
    indexing through reindex().
    """

    id: str
    name: str
    type: SourceType
    stack_id: str
    path: str = ""
    status: SourceStatus = SourceStatus.INDEXING
    chunk_count: int = 0
    indexed_at: Optional[datetime] = None
    error: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def _transition(self, target: SourceStatus) -> None:
        if self.status != SourceStatus.INDEXING:
            raise InvalidStatusTransition(self.id, self.status.value, target.value)
        self.status = target

    def mark_ready(self, chunk_count: int) -> None:
        self._transition(SourceStatus.READY)
        self.chunk_count = chunk_count
        self.indexed_at = datetime.utcnow()
        self.error = None

    def mark_error(self, message: str) -> None:
        self._transition(SourceStatus.ERROR)
        self.chunk_count = 0
        self.error = message

    def reindex(self) -> None:
        """Reset the source to indexing, from any state."""
        self.status = SourceStatus.INDEXING
        self.chunk_count = 0
        self.indexed_at = None
        self.error = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type.value,
            "stack_id": self.stack_id,
            "path": self.path,
            "status": self.status.value,
            "chunk_count": self.chunk_count,
            "indexed_at": self.indexed_at.isoformat() if self.indexed_at else None,
            "error": self.error,
        }


@dataclass
class KnowledgeStack:
    """A toggleable group of sources used to scope retrieval."""

    id: str
    name: str = ""
    description: str = ""
    source_ids: Dict[str, None] = field(default_factory=dict)  # ordered set
    is_active: bool = True
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)

    def add_source(self, source_id: str) -> None:
        self.source_ids[source_id] = None
        self.updated_at = datetime.utcnow()

    def remove_source(self, source_id: str) -> None:
        self.source_ids.pop(source_id, None)
        self.updated_at = datetime.utcnow()

    def activate(self) -> None:
        self.is_active = True
        self.updated_at = datetime.utcnow()

    def deactivate(self) -> None:
        self.is_active = False
        self.updated_at = datetime.utcnow()


def active_stack_ids(stacks: Iterable[KnowledgeStack]) -> List[str]:
    """Ids of the stacks currently included in retrieval, in the given order."""
    return [stack.id for stack in stacks if stack.is_active]


@dataclass
class DocumentChunk:
    """A bounded span of a source document's text, the unit of embedding."""

    id: str
    content: str
    chunk_index: int
    metadata: Dict[str, Any] = field(default_factory=dict)
