"""Tests for the chat orchestrator and its helpers."""
import pytest

from ragcore.rag.chat import (
    FALLBACK_MESSAGE,
    RAGChatContext,
    RAGChatOptions,
    RAGChatOrchestrator,
    SourceReference,
    extract_key_insights,
    format_response_with_citations,
    generate_rag_summary,
)
from ragcore.rag.knowledge import EmbeddingVector, VectorMetadata
from ragcore.rag.retriever import KnowledgeSearchResult, RAGContext, RAGQueryResult, RAGRetriever


class ExplodingRetriever(RAGRetriever):
    async def process_query(self, *args, **kwargs):
        raise RuntimeError("retriever crashed")


@pytest.fixture
def orchestrator(store, embedder):
    return RAGChatOrchestrator(RAGRetriever(store, embedder))


async def _seed(store, embedder):
    text = "The payment pipeline retries failed charges three times."
    response = await embedder.generate_embedding(text)
    await store.store(
        EmbeddingVector(
            id="v1",
            vector=response.embedding,
            metadata=VectorMetadata(
                content=text, source_id="guide", chunk_index=0, extra={"source_name": "Payments Guide"}
            ),
        ),
        stack_id="s1",
    )


class TestProcessMessage:
    @pytest.mark.asyncio
    async def test_rag_message(self, orchestrator, store, embedder):
        await _seed(store, embedder)
        options = RAGChatOptions(active_stack_ids=["s1"], model_id="gpt-4o")

        result = await orchestrator.process_message("How does the payment pipeline handle failures?", [], options)

        assert result.error is None
        assert result.message.role == "assistant"
        assert result.message.id.startswith("msg_")
        assert "Payments Guide" in result.message.content
        assert result.message.metadata["model"] == "gpt-4o"
        assert result.message.metadata["rag_used"] is True
        assert result.message.metadata["rag_sources"][0]["source_id"] == "guide"
        assert result.rag_context.sources_used[0].source_name == "Payments Guide"

    @pytest.mark.asyncio
    async def test_trivial_message_skips_retrieval(self, orchestrator, store, embedder):
        await _seed(store, embedder)
        embedder.batches.clear()
        options = RAGChatOptions(active_stack_ids=["s1"])

        result = await orchestrator.process_message("thanks", [], options)

        assert result.message.content == "thanks"
        assert result.message.metadata["rag_used"] is False
        assert result.rag_context is None
        assert embedder.batches == []

    @pytest.mark.asyncio
    async def test_retrieval_error_is_reported(self, store, embedder_factory):
        orchestrator = RAGChatOrchestrator(RAGRetriever(store, embedder_factory(api_key="")))
        options = RAGChatOptions(active_stack_ids=["s1"])

        result = await orchestrator.process_message("explain the payment pipeline", [], options)

        assert result.message.content == "explain the payment pipeline"
        assert "API key" in result.error
        assert result.message.metadata["rag_error"] == result.error

    @pytest.mark.asyncio
    async def test_fallback_on_unexpected_failure(self, store, embedder):
        orchestrator = RAGChatOrchestrator(ExplodingRetriever(store, embedder))
        options = RAGChatOptions(active_stack_ids=["s1"], model_id="gpt-4o")

        result = await orchestrator.process_message("explain the payment pipeline", [], options)

        assert result.message.content == FALLBACK_MESSAGE
        assert result.message.metadata["error"] == "retriever crashed"
        assert result.error == "retriever crashed"

    @pytest.mark.asyncio
    async def test_get_relevant_sources(self, orchestrator, store, embedder):
        await _seed(store, embedder)

        sources = await orchestrator.get_relevant_sources("payment pipeline", ["s1"])

        assert [s.source_id for s in sources] == ["guide"]
        assert sources[0].relevance == pytest.approx(1.0)

    def test_health_check(self, orchestrator):
        assert orchestrator.health_check() == {
            "rag_service": True,
            "model_service": True,
            "api_configuration": True,
        }


class TestFormatting:
    def test_citations_appended(self):
        sources = [
            SourceReference(source_id="a", source_name="Handbook", relevance=0.876, excerpt=""),
            SourceReference(source_id="b", source_name="Runbook", relevance=0.71, excerpt=""),
        ]

        text = format_response_with_citations("Refunds take five days.", sources)

        assert text == (
            "Refunds take five days.\n\n**Sources:**\n"
            "[1] Handbook (88% relevance)\n"
            "[2] Runbook (71% relevance)"
        )

    def test_no_sources(self):
        assert format_response_with_citations("answer", []) == "answer"

    def test_half_percent_rounds_up(self):
        sources = [SourceReference(source_id="a", source_name="Handbook", relevance=0.125, excerpt="")]

        text = format_response_with_citations("answer", sources)

        assert text.endswith("[1] Handbook (13% relevance)")

    def test_key_insights(self):
        context = RAGChatContext(
            query="q",
            sources_used=[
                SourceReference(source_id="a", source_name="Handbook", relevance=0.8, excerpt=""),
                SourceReference(source_id="b", source_name="Runbook", relevance=0.9, excerpt=""),
            ],
            processing_time_ms=12.5,
        )

        insights = extract_key_insights(context)

        assert insights.top_source == "Runbook"
        assert insights.average_relevance == pytest.approx(0.85)
        assert insights.total_sources == 2
        assert insights.processing_time_ms == 12.5

    def test_key_insights_without_sources(self):
        insights = extract_key_insights(RAGChatContext(query="q", sources_used=[], processing_time_ms=0.0))
        assert insights.top_source == "None"
        assert insights.average_relevance == 0.0


class TestUsageSummary:
    def _result(self, source_ids, time_ms):
        results = [
            KnowledgeSearchResult(
                content="c", source_id=s, source_name=s, similarity=0.9, chunk_index=0, context="c"
            )
            for s in source_ids
        ]
        return RAGQueryResult(
            enhanced_prompt="p",
            context=RAGContext(query="q", results=results, rag_used=bool(results)),
            rag_used=bool(results),
            processing_time_ms=time_ms,
        )

    def test_summary(self):
        summary = generate_rag_summary(
            [
                self._result(["a", "b"], 10.0),
                self._result(["a"], 20.0),
                self._result([], 30.0),
            ]
        )

        assert summary.total_queries == 3
        assert summary.rag_usage_rate == pytest.approx(2 / 3)
        assert summary.average_processing_time_ms == pytest.approx(20.0)
        assert summary.average_sources_used == pytest.approx(1.5)
        assert summary.top_sources[0] == {"source_id": "a", "usage_count": 2}

    def test_empty_summary(self):
        summary = generate_rag_summary([])
        assert summary.total_queries == 0
        assert summary.rag_usage_rate == 0.0
        assert summary.top_sources == []
