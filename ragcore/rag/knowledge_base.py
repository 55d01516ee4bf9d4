"""
Knowledge Base

Wires the embedding generator, vector store, indexer, retriever and chat
orchestrator together and exposes the operations the surrounding application
calls. Construct it once at application start-up and close it at shutdown.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

from ragcore.config import Settings, get_settings
from ragcore.rag.chat import RAGChatOrchestrator
from ragcore.rag.chunking import ContentProvider, TextChunker, TextFileContentProvider
from ragcore.rag.embeddings import EmbeddingGenerator, create_embedding_generator
from ragcore.rag.indexer import IndexingResult, KnowledgeIndexer, ProgressCallback
from ragcore.rag.knowledge import KnowledgeSource, KnowledgeStack
from ragcore.rag.persistence import VectorPersistence, create_vector_persistence
from ragcore.rag.retriever import RAGContext, RAGRetriever, RetrievalOptions
from ragcore.rag.vector_store import StorageStats, VectorStore

logger = logging.getLogger(__name__)


class KnowledgeBase:
    """
    Entry point for indexing and retrieval.

    Every collaborator can be injected; missing ones are built from settings.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        embedding_generator: Optional[EmbeddingGenerator] = None,
        persistence: Optional[VectorPersistence] = None,
        content_provider: Optional[ContentProvider] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.embedding_generator = embedding_generator or create_embedding_generator(self.settings)
        self.vector_store = VectorStore(persistence or create_vector_persistence(self.settings))
        self.content_provider = content_provider or TextFileContentProvider(
            TextChunker(chunk_size=self.settings.chunk_size, chunk_overlap=self.settings.chunk_overlap)
        )

        self.indexer = KnowledgeIndexer(self.vector_store, self.embedding_generator)
        self.retriever = RAGRetriever(
            self.vector_store,
            self.embedding_generator,
            default_options=RetrievalOptions.from_settings(self.settings),
            min_query_length=self.settings.rag_min_query_length,
        )
        self.chat = RAGChatOrchestrator(self.retriever)
        self._started = False

    async def start(self) -> None:
        """Load the vector index from durable storage."""
        if self._started:
            return
        loaded = await self.vector_store.load()
        self._started = True

        if not self.embedding_generator.is_configured():
            logger.warning("Embedding provider API key not set - indexing and retrieval will fail")
        logger.info(f"Knowledge base started with {loaded} vectors")

    async def close(self) -> None:
        """Release provider resources."""
        await self.embedding_generator.close()
        self._started = False
        logger.info("Knowledge base closed")

    # Indexing

    async def index_source(
        self,
        source: KnowledgeSource,
        stack_id: str,
        content_provider: Optional[ContentProvider] = None,
        stack: Optional[KnowledgeStack] = None,
    ) -> IndexingResult:
        return await self.indexer.index_source(
            source, stack_id, content_provider or self.content_provider, stack=stack
        )

    async def index_multiple_sources(
        self,
        sources: Sequence[KnowledgeSource],
        stack_id: str,
        on_progress: Optional[ProgressCallback] = None,
        content_provider: Optional[ContentProvider] = None,
        stack: Optional[KnowledgeStack] = None,
    ) -> List[IndexingResult]:
        return await self.indexer.index_multiple_sources(
            sources,
            stack_id,
            content_provider or self.content_provider,
            on_progress=on_progress,
            stack=stack,
        )

    async def reindex_source(
        self,
        source: KnowledgeSource,
        stack_id: str,
        content_provider: Optional[ContentProvider] = None,
        stack: Optional[KnowledgeStack] = None,
    ) -> IndexingResult:
        return await self.indexer.reindex_source(
            source, stack_id, content_provider or self.content_provider, stack=stack
        )

    # Retrieval

    async def search_knowledge(
        self,
        query: str,
        stack_ids: Sequence[str],
        options: Optional[RetrievalOptions] = None,
        history: Optional[Sequence[Any]] = None,
    ) -> RAGContext:
        return await self.retriever.retrieve(query, stack_ids, options, history)

    retrieve = search_knowledge

    def build_prompt(self, original_prompt: str, context: RAGContext, options: Optional[RetrievalOptions] = None) -> str:
        return self.retriever.build_prompt(original_prompt, context, options)

    # Maintenance

    async def remove_knowledge_source(self, source_id: str) -> int:
        """
        Delete every vector of a source.

        Raises:
            StorageError: If durable storage rejects the delete.
        """
        return await self.vector_store.delete_by_source(source_id)

    async def remove_knowledge_stack(self, stack_id: str) -> int:
        """
        Remove a stack; vectors no other stack references are deleted.

        Raises:
            StorageError: If durable storage rejects the delete.
        """
        return await self.vector_store.delete_by_stack(stack_id)

    def get_storage_stats(self) -> StorageStats:
        return self.vector_store.get_storage_stats()

    def get_knowledge_stats(self) -> Dict[str, Any]:
        """Storage statistics plus whether the embedding provider is configured."""
        return {
            **self.get_storage_stats().to_dict(),
            "is_configured": self.embedding_generator.is_configured(),
        }

    async def health_check(self) -> Dict[str, bool]:
        """
        Check the collaborators.

        Returns:
            embedding_service, vector_storage, document_processing and api_key flags.
        """
        embedding_service = self.embedding_generator.is_configured()

        vector_storage = False
        try:
            vector_storage = await self.vector_store.persistence.ping()
        except Exception as e:
            logger.error(f"Vector storage health check failed: {e}")

        document_processing = False
        try:
            document_processing = len(self.content_provider.supported_types()) > 0
        except Exception as e:
            logger.error(f"Document processing health check failed: {e}")

        return {
            "embedding_service": embedding_service,
            "vector_storage": vector_storage,
            "document_processing": document_processing,
            "api_key": bool(self.embedding_generator.api_key),
        }


@asynccontextmanager
async def open_knowledge_base(settings: Optional[Settings] = None, **kwargs: Any) -> AsyncIterator[KnowledgeBase]:
    """
    Knowledge base lifespan.

    Startup loads the vector index; shutdown releases provider resources.
    """
    knowledge_base = KnowledgeBase(settings=settings, **kwargs)
    await knowledge_base.start()
    try:
        yield knowledge_base
    finally:
        await knowledge_base.close()
