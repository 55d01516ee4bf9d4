"""
RAG (Retrieval-Augmented Generation) Pipeline

This package provides the knowledge retrieval infrastructure.

Modules:
    - embeddings: Embedding providers (OpenAI-compatible HTTP, Gemini) and cosine similarity
    - persistence: Durable vector storage (ChromaDB, in-memory)
    - vector_store: In-memory vector index with source/stack indexes and similarity search
    - knowledge: Sources, stacks, vectors and chunks
    - chunking: Default plain-text chunking collaborator
    - indexer: Source indexing pipeline with per-source failure isolation
    - retriever: Query gating, search, truncation and prompt assembly
    - chat: Conversational wrapper with citations and fallback handling
    - knowledge_base: Facade wiring everything together

Usage:
    from ragcore.rag import KnowledgeSource, SourceType, open_knowledge_base

    async with open_knowledge_base() as kb:
        source = KnowledgeSource(id="src-1", name="Handbook", type=SourceType.FILE,
                                 stack_id="docs", path="./handbook.md")
        await kb.index_source(source, "docs")

        context = await kb.search_knowledge("How do refunds work?", ["docs"])
        prompt = kb.build_prompt("How do refunds work?", context)
"""

from ragcore.rag.embeddings import (
    EmbeddingGenerator,
    EmbeddingResponse,
    GeminiEmbeddingGenerator,
    OpenAIEmbeddingGenerator,
    cosine_similarity,
    create_embedding_generator,
)
from ragcore.rag.persistence import (
    ChromaVectorPersistence,
    InMemoryVectorPersistence,
    StoredVector,
    VectorPersistence,
    create_vector_persistence,
)
from ragcore.rag.vector_store import (
    DateRange,
    SearchFilters,
    SearchQuery,
    StorageStats,
    VectorSearchResult,
    VectorStore,
)
from ragcore.rag.knowledge import (
    DocumentChunk,
    EmbeddingVector,
    KnowledgeSource,
    KnowledgeStack,
    SourceStatus,
    SourceType,
    VectorMetadata,
    active_stack_ids,
)
from ragcore.rag.chunking import ContentProvider, TextChunker, TextFileContentProvider
from ragcore.rag.indexer import IndexingResult, KnowledgeIndexer
from ragcore.rag.retriever import (
    KnowledgeSearchResult,
    RAGContext,
    RAGQueryResult,
    RAGRetriever,
    RetrievalOptions,
    build_prompt,
    extract_context,
    should_use_rag,
    truncate_content,
)
from ragcore.rag.chat import (
    ChatMessage,
    RAGChatOptions,
    RAGChatOrchestrator,
    RAGChatResult,
    format_response_with_citations,
)
from ragcore.rag.knowledge_base import KnowledgeBase, open_knowledge_base

__all__ = [
    # Embeddings
    "EmbeddingGenerator",
    "EmbeddingResponse",
    "OpenAIEmbeddingGenerator",
    "GeminiEmbeddingGenerator",
    "cosine_similarity",
    "create_embedding_generator",
    # Persistence
    "VectorPersistence",
    "ChromaVectorPersistence",
    "InMemoryVectorPersistence",
    "StoredVector",
    "create_vector_persistence",
    # Vector Store
    "VectorStore",
    "SearchQuery",
    "SearchFilters",
    "DateRange",
    "VectorSearchResult",
    "StorageStats",
    # Knowledge
    "EmbeddingVector",
    "VectorMetadata",
    "KnowledgeSource",
    "KnowledgeStack",
    "SourceType",
    "SourceStatus",
    "DocumentChunk",
    "active_stack_ids",
    "ContentProvider",
    "TextChunker",
    "TextFileContentProvider",
    # Indexing
    "KnowledgeIndexer",
    "IndexingResult",
    # Retrieval
    "RAGRetriever",
    "RAGContext",
    "RAGQueryResult",
    "RetrievalOptions",
    "KnowledgeSearchResult",
    "build_prompt",
    "extract_context",
    "should_use_rag",
    "truncate_content",
    # Chat
    "RAGChatOrchestrator",
    "RAGChatOptions",
    "RAGChatResult",
    "ChatMessage",
    "format_response_with_citations",
    # Facade
    "KnowledgeBase",
    "open_knowledge_base",
]
