"""
RAG Chat Orchestrator

Wraps the retriever with conversational message construction. The assistant
message it produces carries the enhanced prompt for the host application's
generation step. Failures never escape: they turn into a fallback message with
the error recorded in its metadata.
"""

import logging
import time
import uuid
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from ragcore.rag.retriever import (
    RAGContext,
    RAGQueryResult,
    RAGRetriever,
    RetrievalOptions,
)

logger = logging.getLogger(__name__)

FALLBACK_MESSAGE = (
    "I apologize, but I encountered an error while processing your message. Please try again."
)


@dataclass
class ChatMessage:
    """A single conversation message."""

    content: str
    role: str  # user, assistant, system
    id: str = field(default_factory=lambda: f"msg_{uuid.uuid4().hex[:12]}")
    timestamp: datetime = field(default_factory=datetime.utcnow)
    is_edited: bool = False
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "content": self.content,
            "role": self.role,
            "timestamp": self.timestamp.isoformat(),
            "is_edited": self.is_edited,
            "metadata": self.metadata,
        }


@dataclass
class SourceReference:
    """A knowledge source used to answer a message."""

    source_id: str
    source_name: str
    relevance: float
    excerpt: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source_id": self.source_id,
            "source_name": self.source_name,
            "relevance": self.relevance,
            "excerpt": self.excerpt,
        }


@dataclass
class RAGChatContext:
    """What retrieval contributed to a chat turn."""

    query: str
    sources_used: List[SourceReference]
    processing_time_ms: float


@dataclass
class RAGChatResult:
    message: ChatMessage
    rag_context: Optional[RAGChatContext] = None
    error: Optional[str] = None


@dataclass
class RAGChatOptions:
    """Per-message chat settings."""

    enable_rag: bool = True
    active_stack_ids: List[str] = field(default_factory=list)
    model_id: str = ""
    relevance_threshold: float = 0.7
    max_results: int = 5
    max_context_length: int = 2000
    include_source_citations: bool = True
    skip_trivial: bool = True  # gate with should_use_rag


@dataclass
class KeyInsights:
    top_source: str
    average_relevance: float
    total_sources: int
    processing_time_ms: float


@dataclass
class RAGUsageSummary:
    """Aggregate retrieval usage over many queries."""

    total_queries: int
    rag_usage_rate: float
    average_processing_time_ms: float
    average_sources_used: float
    top_sources: List[Dict[str, Any]]


def _references(context: RAGContext) -> List[SourceReference]:
    return [
        SourceReference(
            source_id=r.source_id,
            source_name=r.source_name,
            relevance=r.similarity,
            excerpt=r.context,
        )
        for r in context.results
    ]


def format_response_with_citations(response: str, sources: Sequence[SourceReference]) -> str:
    """Append a numbered source list to a response."""
    if not sources:
        return response

    citations_text = "\n".join(
        f"[{index + 1}] {source.source_name} ({int(source.relevance * 100 + 0.5)}% relevance)"
        for index, source in enumerate(sources)
    )
    return f"{response}\n\n**Sources:**\n{citations_text}"


def extract_key_insights(rag_context: RAGChatContext) -> KeyInsights:
    """Summarize a chat turn's retrieval for telemetry."""
    sources = rag_context.sources_used

    top_source = "None"
    average_relevance = 0.0
    if sources:
        top_source = max(sources, key=lambda s: s.relevance).source_name
        average_relevance = sum(s.relevance for s in sources) / len(sources)

    return KeyInsights(
        top_source=top_source,
        average_relevance=average_relevance,
        total_sources=len(sources),
        processing_time_ms=rag_context.processing_time_ms,
    )


def generate_rag_summary(results: Sequence[RAGQueryResult]) -> RAGUsageSummary:
    """Aggregate usage statistics over processed queries."""
    total_queries = len(results)
    rag_used_count = sum(1 for r in results if r.rag_used)

    sources_used = [source for r in results for source in r.sources]
    usage = Counter(source.source_id for source in sources_used)

    return RAGUsageSummary(
        total_queries=total_queries,
        rag_usage_rate=rag_used_count / total_queries if total_queries else 0.0,
        average_processing_time_ms=(
            sum(r.processing_time_ms for r in results) / total_queries if total_queries else 0.0
        ),
        average_sources_used=len(sources_used) / max(rag_used_count, 1),
        top_sources=[
            {"source_id": source_id, "usage_count": count}
            for source_id, count in usage.most_common(10)
        ],
    )


class RAGChatOrchestrator:
    """
    Conversational wrapper around the retriever.

    Produces the assistant message the host application hands to its model.
    """

    def __init__(self, retriever: RAGRetriever) -> None:
        self.retriever = retriever

    @staticmethod
    def _retrieval_options(options: RAGChatOptions) -> RetrievalOptions:
        return RetrievalOptions(
            top_k=options.max_results,
            threshold=options.relevance_threshold,
            max_context_length=options.max_context_length,
            include_source_info=options.include_source_citations,
            enable_rag=True,
        )

    def _wants_rag(self, user_message: str, options: RAGChatOptions) -> bool:
        if not options.enable_rag or not options.active_stack_ids:
            return False
        if options.skip_trivial:
            return self.retriever.should_use_rag(user_message, options.active_stack_ids)
        return True

    async def process_message(
        self,
        user_message: str,
        history: Sequence[Any],
        options: RAGChatOptions,
    ) -> RAGChatResult:
        """
        Build the assistant message for a user turn.

        Never raises.

        Args:
            user_message: The user's message.
            history: Prior conversation messages (role/content).
            options: Chat options.

        Returns:
            RAGChatResult with the message, retrieval context and any error.
        """
        start = time.perf_counter()

        try:
            if self._wants_rag(user_message, options):
                rag_result = await self.retriever.process_query(
                    user_message,
                    options.active_stack_ids,
                    self._retrieval_options(options),
                    history,
                )
            else:
                rag_result = RAGQueryResult(
                    enhanced_prompt=user_message,
                    context=RAGContext(query=user_message, relevance_threshold=options.relevance_threshold),
                    rag_used=False,
                    processing_time_ms=0.0,
                )

            sources = _references(rag_result.context)
            metadata: Dict[str, Any] = {
                "model": options.model_id,
                "rag_used": rag_result.rag_used,
                "processing_time_ms": (time.perf_counter() - start) * 1000,
                "tokens_used": 0,
            }
            if rag_result.rag_used:
                metadata["rag_sources"] = [s.to_dict() for s in sources]
            if rag_result.context.error:
                metadata["rag_error"] = rag_result.context.error

            message = ChatMessage(content=rag_result.enhanced_prompt, role="assistant", metadata=metadata)

            rag_context = None
            if rag_result.rag_used:
                rag_context = RAGChatContext(
                    query=rag_result.context.query,
                    sources_used=sources,
                    processing_time_ms=rag_result.processing_time_ms,
                )

            return RAGChatResult(message=message, rag_context=rag_context, error=rag_result.context.error)

        except Exception as e:
            error = str(e) or type(e).__name__
            logger.error(f"RAG chat processing error: {error}")

            message = ChatMessage(
                content=FALLBACK_MESSAGE,
                role="assistant",
                metadata={
                    "model": options.model_id,
                    "error": error,
                    "processing_time_ms": (time.perf_counter() - start) * 1000,
                },
            )
            return RAGChatResult(message=message, error=error)

    async def get_relevant_sources(
        self,
        query: str,
        active_stack_ids: Sequence[str],
        top_k: int = 5,
        threshold: float = 0.7,
    ) -> List[SourceReference]:
        """Look up sources for a query without building a message."""
        context = await self.retriever.retrieve(
            query,
            active_stack_ids,
            RetrievalOptions(top_k=top_k, threshold=threshold),
        )
        return _references(context)

    def should_use_rag(self, query: str, active_stack_ids: Sequence[str]) -> bool:
        return self.retriever.should_use_rag(query, active_stack_ids)

    def health_check(self) -> Dict[str, bool]:
        return {
            "rag_service": True,
            "model_service": True,  # generation is handled by the host application
            "api_configuration": self.retriever.embedding_generator.is_configured(),
        }

    format_response_with_citations = staticmethod(format_response_with_citations)
    extract_key_insights = staticmethod(extract_key_insights)
