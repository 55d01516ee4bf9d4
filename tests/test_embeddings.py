"""Tests for embedding generators and cosine similarity."""
import json
import math
from types import SimpleNamespace

import httpx
import pytest
from google.genai import errors as genai_errors

from ragcore.config import Settings
from ragcore.exceptions import ConfigurationError, DimensionMismatch, UpstreamError
from ragcore.rag.embeddings import (
    GeminiEmbeddingGenerator,
    OpenAIEmbeddingGenerator,
    cosine_similarity,
    create_embedding_generator,
)


def _openai_handler(requests, tokens_per_input=10):
    """Echo one embedding per input: [n, 1.0] where the input text is 't<n>'."""

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        requests.append(body)
        data = [
            {"embedding": [float(text[1:]), 1.0], "index": i}
            for i, text in enumerate(body["input"])
        ]
        return httpx.Response(
            200,
            json={
                "data": data,
                "usage": {"total_tokens": tokens_per_input * len(data)},
                "model": body["model"],
            },
        )

    return handler


def _generator(handler, **kwargs):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return OpenAIEmbeddingGenerator(api_key="sk-test", client=client, **kwargs)


class TestCosineSimilarity:
    def test_identical_vectors(self):
        assert cosine_similarity([1.0, 2.0, 3.0], [1.0, 2.0, 3.0]) == pytest.approx(1.0)

    def test_orthogonal_vectors(self):
        assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)

    def test_opposite_vectors(self):
        assert cosine_similarity([1.0, 0.0], [-1.0, 0.0]) == pytest.approx(-1.0)

    def test_known_value(self):
        assert cosine_similarity([1.0, 0.0], [0.9, 0.1]) == pytest.approx(0.9 / math.sqrt(0.82))

    def test_zero_norm_is_zero(self):
        assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0
        assert cosine_similarity([1.0, 1.0], [0.0, 0.0]) == 0.0

    def test_dimension_mismatch(self):
        with pytest.raises(DimensionMismatch) as exc_info:
            cosine_similarity([1.0, 0.0], [1.0, 0.0, 0.0])
        assert exc_info.value.len_a == 2
        assert exc_info.value.len_b == 3


class TestOpenAIEmbeddingGenerator:
    @pytest.mark.asyncio
    async def test_single_embedding(self):
        requests = []
        generator = _generator(_openai_handler(requests))

        response = await generator.generate_embedding("t7")

        assert response.embedding == [7.0, 1.0]
        assert response.tokens == 10
        assert response.model == "text-embedding-3-small"
        assert requests[0] == {
            "input": ["t7"],
            "model": "text-embedding-3-small",
            "encoding_format": "float",
        }

    @pytest.mark.asyncio
    async def test_sends_bearer_token(self):
        seen = {}

        def handler(request):
            seen["auth"] = request.headers["Authorization"]
            seen["url"] = str(request.url)
            return httpx.Response(200, json={"data": [{"embedding": [1.0]}], "usage": {"total_tokens": 1}})

        generator = _generator(handler, base_url="https://embeddings.internal/v1/")
        await generator.generate_embedding("hello")

        assert seen["auth"] == "Bearer sk-test"
        assert seen["url"] == "https://embeddings.internal/v1/embeddings"

    @pytest.mark.asyncio
    async def test_batches_of_one_hundred_in_order(self):
        requests = []
        generator = _generator(_openai_handler(requests))
        texts = [f"t{i}" for i in range(250)]

        responses = await generator.generate_batch_embeddings(texts)

        assert [len(r["input"]) for r in requests] == [100, 100, 50]
        assert len(responses) == 250
        assert [r.embedding[0] for r in responses] == [float(i) for i in range(250)]

    @pytest.mark.asyncio
    async def test_token_count_spread_over_batch(self):
        generator = _generator(_openai_handler([], tokens_per_input=6))
        responses = await generator.generate_batch_embeddings(["t1", "t2", "t3"])
        assert all(r.tokens == pytest.approx(6.0) for r in responses)

    @pytest.mark.asyncio
    async def test_empty_batch_makes_no_request(self):
        requests = []
        generator = _generator(_openai_handler(requests))
        assert await generator.generate_batch_embeddings([]) == []
        assert requests == []

    @pytest.mark.asyncio
    async def test_reorders_by_index(self):
        def handler(request):
            return httpx.Response(
                200,
                json={
                    "data": [
                        {"embedding": [2.0], "index": 2},
                        {"embedding": [0.0], "index": 0},
                        {"embedding": [1.0], "index": 1},
                    ],
                    "usage": {"total_tokens": 3},
                },
            )

        generator = _generator(handler)
        responses = await generator.generate_batch_embeddings(["a", "b", "c"])
        assert [r.embedding for r in responses] == [[0.0], [1.0], [2.0]]

    @pytest.mark.asyncio
    async def test_missing_api_key(self):
        generator = _generator(_openai_handler([]))
        generator.update_api_key("")

        assert not generator.is_configured()
        with pytest.raises(ConfigurationError):
            await generator.generate_embedding("hello")
        with pytest.raises(ConfigurationError):
            await generator.generate_batch_embeddings(["hello"])

    @pytest.mark.asyncio
    async def test_provider_error_message(self):
        def handler(request):
            return httpx.Response(401, json={"error": {"message": "Invalid API key"}})

        generator = _generator(handler)
        with pytest.raises(UpstreamError) as exc_info:
            await generator.generate_embedding("hello")

        assert exc_info.value.status_code == 401
        assert "Invalid API key" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_provider_error_without_body(self):
        generator = _generator(lambda request: httpx.Response(500, text="boom"))
        with pytest.raises(UpstreamError) as exc_info:
            await generator.generate_embedding("hello")
        assert "Unknown error" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_malformed_response(self):
        generator = _generator(lambda request: httpx.Response(200, json={"result": []}))
        with pytest.raises(UpstreamError):
            await generator.generate_embedding("hello")

    @pytest.mark.asyncio
    async def test_count_mismatch(self):
        def handler(request):
            return httpx.Response(200, json={"data": [{"embedding": [1.0]}], "usage": {"total_tokens": 1}})

        generator = _generator(handler)
        with pytest.raises(UpstreamError):
            await generator.generate_batch_embeddings(["a", "b"])

    @pytest.mark.asyncio
    async def test_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        generator = _generator(handler)
        with pytest.raises(UpstreamError):
            await generator.generate_embedding("hello")

    @pytest.mark.asyncio
    async def test_close_leaves_injected_client_open(self):
        client = httpx.AsyncClient(transport=httpx.MockTransport(_openai_handler([])))
        generator = OpenAIEmbeddingGenerator(api_key="sk-test", client=client)

        await generator.close()

        assert not client.is_closed
        await client.aclose()


class _FakeGeminiModels:
    def __init__(self, error=None):
        self.calls = []
        self.error = error

    async def embed_content(self, model, contents):
        self.calls.append((model, list(contents)))
        if self.error is not None:
            raise self.error
        return SimpleNamespace(
            embeddings=[SimpleNamespace(values=[float(len(text)), 1.0]) for text in contents]
        )


def _gemini(models, **kwargs):
    client = SimpleNamespace(aio=SimpleNamespace(models=models))
    return GeminiEmbeddingGenerator(api_key="gm-test", client=client, **kwargs)


class TestGeminiEmbeddingGenerator:
    @pytest.mark.asyncio
    async def test_batch_embeddings(self):
        models = _FakeGeminiModels()
        generator = _gemini(models, batch_size=2)

        responses = await generator.generate_batch_embeddings(["abcd", "abcdefgh", "ab"])

        assert [len(call[1]) for call in models.calls] == [2, 1]
        assert [r.embedding[0] for r in responses] == [4.0, 8.0, 2.0]
        # 12 chars / 4 spread over the first batch of two
        assert responses[0].tokens == pytest.approx(1.5)
        assert responses[0].model == "gemini-embedding-001"

    @pytest.mark.asyncio
    async def test_api_error(self):
        error = genai_errors.APIError(
            429,
            {"error": {"code": 429, "message": "Quota exceeded", "status": "RESOURCE_EXHAUSTED"}},
        )
        generator = _gemini(_FakeGeminiModels(error=error))

        with pytest.raises(UpstreamError) as exc_info:
            await generator.generate_embedding("hello")

        assert exc_info.value.status_code == 429
        assert exc_info.value.message.startswith("Gemini API error")

    @pytest.mark.asyncio
    async def test_not_configured_without_key(self):
        generator = GeminiEmbeddingGenerator(api_key="")
        assert not generator.is_configured()
        with pytest.raises(ConfigurationError):
            await generator.generate_embedding("hello")


class TestCreateEmbeddingGenerator:
    def test_openai_provider(self):
        settings = Settings(_env_file=None, openai_api_key="sk-test", embedding_batch_size=16)
        generator = create_embedding_generator(settings)

        assert isinstance(generator, OpenAIEmbeddingGenerator)
        assert generator.batch_size == 16
        assert generator.is_configured()

    def test_gemini_provider(self):
        settings = Settings(_env_file=None, embedding_provider="gemini")
        generator = create_embedding_generator(settings)

        assert isinstance(generator, GeminiEmbeddingGenerator)
        assert not generator.is_configured()

    def test_unknown_provider(self):
        settings = Settings(_env_file=None, embedding_provider="cohere")
        with pytest.raises(ValueError, match="Unsupported embedding provider"):
            create_embedding_generator(settings)
