"""
RAG Retriever Module

Handles query gating, semantic search across active knowledge stacks,
per-result truncation and excerpting, and context injection into prompts.
"""

import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from ragcore.config import Settings
from ragcore.rag.embeddings import EmbeddingGenerator
from ragcore.rag.vector_store import SearchFilters, SearchQuery, VectorSearchResult, VectorStore

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful assistant. Use the following context to answer questions "
    "accurately and cite sources when possible."
)

# Conversational turns that never need the knowledge base
EXCLUDE_PATTERNS = [
    re.compile(r"^(hi|hello|hey|good morning|good afternoon|good evening)\b", re.IGNORECASE),
    re.compile(r"^(thanks|thank you|ok|okay|yes|no)$", re.IGNORECASE),
    re.compile(r"^(what time|what date|current time|current date)\b", re.IGNORECASE),
]

SENTENCE_SPLIT = re.compile(r"[.!?]+")


@dataclass
class KnowledgeSearchResult:
    """A ranked, truncated search hit ready for prompt assembly."""

    content: str
    source_id: str
    source_name: str
    similarity: float
    chunk_index: int
    context: str  # most query-relevant sentence

    def to_dict(self) -> Dict[str, Any]:
        return {
            "content": self.content,
            "source_id": self.source_id,
            "source_name": self.source_name,
            "similarity": self.similarity,
            "chunk_index": self.chunk_index,
            "context": self.context,
        }


@dataclass
class RAGContext:
    """Context retrieved for one query."""

    query: str
    results: List[KnowledgeSearchResult] = field(default_factory=list)
    total_sources: int = 0
    search_time_ms: float = 0.0
    relevance_threshold: float = 0.7
    rag_used: bool = False
    error: Optional[str] = None

    @property
    def top_score(self) -> float:
        """Get the highest relevance score."""
        return max((r.similarity for r in self.results), default=0.0)

    @property
    def average_score(self) -> float:
        """Get the average relevance score."""
        if not self.results:
            return 0.0
        return sum(r.similarity for r in self.results) / len(self.results)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "query": self.query,
            "results": [r.to_dict() for r in self.results],
            "total_sources": self.total_sources,
            "search_time_ms": self.search_time_ms,
            "relevance_threshold": self.relevance_threshold,
            "rag_used": self.rag_used,
            "error": self.error,
        }


@dataclass
class RetrievalOptions:
    """Per-call retrieval settings."""

    top_k: int = 5
    threshold: float = 0.7
    max_context_length: int = 2000
    include_source_info: bool = True
    enable_rag: bool = True
    system_prompt: Optional[str] = None

    @classmethod
    def from_settings(cls, settings: Settings, **overrides: Any) -> "RetrievalOptions":
        values = {
            "top_k": settings.rag_top_k,
            "threshold": settings.rag_relevance_threshold,
            "max_context_length": settings.rag_max_context_length,
        }
        values.update(overrides)
        return cls(**values)


@dataclass
class RAGQueryResult:
    """Enhanced prompt plus the context it was built from."""

    enhanced_prompt: str
    context: RAGContext
    rag_used: bool
    processing_time_ms: float

    @property
    def sources(self) -> List[KnowledgeSearchResult]:
        return self.context.results


@dataclass
class SourceCitation:
    """A source whose wording shows up in a generated response."""

    source_id: str
    source_name: str
    relevance: float
    excerpt: str


def truncate_content(content: str, max_chars: int) -> str:
    """
    Truncate content to a character budget.

    Cuts at the last space when it falls within the final 20% of the budget,
    otherwise cuts hard. An ellipsis is appended whenever content is cut, so
    the result never exceeds max_chars + 3.
    """
    if len(content) <= max_chars:
        return content

    truncated = content[:max_chars]
    last_space = truncated.rfind(" ")

    if last_space > max_chars * 0.8:
        return truncated[:last_space] + "..."

    return truncated + "..."


def extract_context(content: str, query: str) -> str:
    """
    Pick the sentence of content that mentions the most query words.

    Ties go to the earliest sentence. Falls back to the first sentence, then
    to the first 100 characters.
    """
    sentences = [s for s in SENTENCE_SPLIT.split(content) if s.strip()]
    query_words = query.lower().split()

    best_sentence = ""
    best_score = 0

    for sentence in sentences:
        sentence_lower = sentence.lower()
        score = sum(1 for word in query_words if word in sentence_lower)
        if score > best_score:
            best_score = score
            best_sentence = sentence.strip()

    if best_sentence:
        return best_sentence
    if sentences:
        return sentences[0].strip()
    return content[:100]


def should_use_rag(query: str, active_stack_ids: Sequence[str], min_length: int = 10) -> bool:
    """
    Decide whether a query is worth a knowledge base lookup.

    Skips very short queries, turns with no active stack, and greetings,
    acknowledgements or time questions.
    """
    if len(query) < min_length:
        return False

    if not active_stack_ids:
        return False

    stripped = query.strip()
    for pattern in EXCLUDE_PATTERNS:
        if pattern.search(stripped):
            return False

    return True


def build_system_prompt(include_citations: bool = True) -> str:
    """Build the system preamble used for knowledge-backed answers."""
    base_prompt = (
        "You are a helpful AI assistant with access to a knowledge base. "
        "Use the provided context to answer questions accurately and helpfully."
    )

    guidelines = [
        "Base your answers primarily on the provided context",
        "If the context doesn't contain relevant information, clearly state this",
        "Provide accurate information and avoid speculation",
        "Be concise but comprehensive in your responses",
    ]
    if include_citations:
        guidelines.append("When possible, reference the sources you used in your answer")

    guideline_text = "\n".join(f"- {g}" for g in guidelines)
    return f"{base_prompt}\n\nGuidelines:\n{guideline_text}"


def build_prompt(
    original_prompt: str,
    context: RAGContext,
    include_source_info: bool = True,
    max_context_length: int = 2000,
    system_prompt: Optional[str] = None,
) -> str:
    """
    Build a prompt with retrieved context injected.

    Result blocks are added in rank order until the next one would exceed
    max_context_length. With no results the original prompt is returned as is.
    """
    if not context.results:
        return original_prompt

    context_parts = []
    current_length = 0

    for result in context.results:
        source_info = (
            f"[Source: {result.source_name}, Relevance: {result.similarity * 100:.1f}%]\n"
            if include_source_info
            else ""
        )
        result_text = f"{source_info}{result.content}\n\n"

        if current_length + len(result_text) > max_context_length:
            break

        context_parts.append(result_text)
        current_length += len(result_text)

    context_text = "".join(context_parts)

    return f"""{system_prompt or DEFAULT_SYSTEM_PROMPT}

Context from knowledge base:
{context_text}

User question: {original_prompt}

Please answer based on the provided context. If the context doesn't contain relevant information, say so clearly."""


def enhance_query_with_history(query: str, history: Optional[Sequence[Any]] = None) -> str:
    """
    Prefix the query with the last few conversational turns.

    History items need role and content attributes (or keys).
    """
    if not history:
        return query

    lines = []
    for message in list(history)[-3:]:
        role = message.get("role") if isinstance(message, dict) else getattr(message, "role", None)
        content = message.get("content") if isinstance(message, dict) else getattr(message, "content", "")
        if role in ("user", "assistant"):
            lines.append(f"{role}: {content}")

    if not lines:
        return query

    context_messages = "\n".join(lines)
    return f"Previous conversation context:\n{context_messages}\n\nCurrent question: {query}"


def extract_source_citations(response: str, sources: Sequence[KnowledgeSearchResult]) -> List[SourceCitation]:
    """
    Find sources whose wording overlaps the response.

    Relevance is the share of source words longer than three characters that
    appear in the response; sources above 0.1 are kept, best first.
    """
    response_words = set(response.lower().split())
    citations = []

    for source in sources:
        source_words = source.content.lower().split()
        match_count = sum(1 for word in source_words if len(word) > 3 and word in response_words)
        relevance = match_count / max(len(source_words), 1)

        if relevance > 0.1:
            citations.append(
                SourceCitation(
                    source_id=source.source_id,
                    source_name=source.source_name,
                    relevance=relevance,
                    excerpt=source.context,
                )
            )

    return sorted(citations, key=lambda c: c.relevance, reverse=True)


class RAGRetriever:
    """
    RAG (Retrieval-Augmented Generation) retriever.

    Embeds queries, searches the vector store across every active stack,
    truncates and excerpts the hits, and formats them for LLM consumption.
    """

    def __init__(
        self,
        vector_store: VectorStore,
        embedding_generator: EmbeddingGenerator,
        default_options: Optional[RetrievalOptions] = None,
        min_query_length: int = 10,
    ) -> None:
        """
        Initialize the RAG retriever.

        Args:
            vector_store: Vector store for document retrieval.
            embedding_generator: Generator for query embeddings.
            default_options: Options used when a call passes none.
            min_query_length: Minimum length for should_use_rag.
        """
        self.vector_store = vector_store
        self.embedding_generator = embedding_generator
        self.default_options = default_options or RetrievalOptions()
        self.min_query_length = min_query_length

        logger.info(
            f"RAGRetriever initialized: top_k={self.default_options.top_k}, "
            f"relevance_threshold={self.default_options.threshold}"
        )

    async def retrieve(
        self,
        query: str,
        active_stack_ids: Sequence[str],
        options: Optional[RetrievalOptions] = None,
        history: Optional[Sequence[Any]] = None,
    ) -> RAGContext:
        """
        Retrieve ranked, truncated context for a query.

        Never raises: failures produce an empty context with error set.

        Args:
            query: The user's question.
            active_stack_ids: Stacks to search (their union).
            options: Retrieval options (defaults if not provided).
            history: Optional recent conversation used to enrich the query.

        Returns:
            RAGContext with results ordered by similarity.
        """
        opts = options or self.default_options
        start = time.perf_counter()

        if not opts.enable_rag or not active_stack_ids:
            return RAGContext(query=query, relevance_threshold=opts.threshold, rag_used=False)

        try:
            search_text = enhance_query_with_history(query, history)
            query_embedding = await self.embedding_generator.generate_embedding(search_text)

            # Over-fetch to leave room for downstream truncation
            search_results = await self.vector_store.search(
                SearchQuery(
                    vector=query_embedding.embedding,
                    top_k=opts.top_k * 2,
                    threshold=opts.threshold,
                    filters=SearchFilters(stack_ids=list(active_stack_ids)),
                )
            )

            max_chars_per_result = max(opts.max_context_length // max(opts.top_k, 1), 1)
            results = [
                self._to_knowledge_result(r, search_text, max_chars_per_result)
                for r in search_results[: opts.top_k]
            ]

        except Exception as e:
            logger.error(f"Knowledge search failed: {e}")
            return RAGContext(
                query=query,
                search_time_ms=(time.perf_counter() - start) * 1000,
                relevance_threshold=opts.threshold,
                rag_used=False,
                error=str(e) or type(e).__name__,
            )

        context = RAGContext(
            query=query,
            results=results,
            total_sources=len({r.source_id for r in search_results}),
            search_time_ms=(time.perf_counter() - start) * 1000,
            relevance_threshold=opts.threshold,
            rag_used=bool(results),
        )

        logger.info(
            f"Retrieved {len(results)} relevant chunks from {context.total_sources} sources "
            f"(top_score={context.top_score:.3f})"
        )
        return context

    @staticmethod
    def _to_knowledge_result(result: VectorSearchResult, query: str, max_chars: int) -> KnowledgeSearchResult:
        return KnowledgeSearchResult(
            content=truncate_content(result.content, max_chars),
            source_id=result.source_id,
            source_name=result.metadata.get("source_name") or result.source_id,
            similarity=result.similarity,
            chunk_index=result.metadata.get("chunk_index", 0),
            context=extract_context(result.content, query),
        )

    def build_prompt(
        self,
        original_prompt: str,
        context: RAGContext,
        options: Optional[RetrievalOptions] = None,
    ) -> str:
        """Build an augmented prompt using the retriever's options."""
        opts = options or self.default_options
        return build_prompt(
            original_prompt,
            context,
            include_source_info=opts.include_source_info,
            max_context_length=opts.max_context_length,
            system_prompt=opts.system_prompt,
        )

    async def process_query(
        self,
        query: str,
        active_stack_ids: Sequence[str],
        options: Optional[RetrievalOptions] = None,
        history: Optional[Sequence[Any]] = None,
    ) -> RAGQueryResult:
        """
        Retrieve context and build the enhanced prompt.

        The original query is returned unchanged when nothing relevant is found.
        """
        opts = options or self.default_options
        start = time.perf_counter()

        context = await self.retrieve(query, active_stack_ids, opts, history)

        enhanced_prompt = query
        if context.results:
            enhanced_prompt = build_prompt(
                query,
                context,
                include_source_info=opts.include_source_info,
                max_context_length=opts.max_context_length,
                system_prompt=opts.system_prompt or build_system_prompt(opts.include_source_info),
            )

        return RAGQueryResult(
            enhanced_prompt=enhanced_prompt,
            context=context,
            rag_used=context.rag_used,
            processing_time_ms=(time.perf_counter() - start) * 1000,
        )

    def should_use_rag(self, query: str, active_stack_ids: Sequence[str], min_length: Optional[int] = None) -> bool:
        return should_use_rag(query, active_stack_ids, self.min_query_length if min_length is None else min_length)
