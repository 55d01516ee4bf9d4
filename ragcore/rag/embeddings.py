"""
Embedding Generation Module

Converts text into fixed-dimension vectors through an external embedding
provider. Large requests are split into fixed-size batches that are sent one
after another to respect provider rate limits.
"""

import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

import httpx
from google import genai
from google.genai import errors as genai_errors

from ragcore.config import Settings
from ragcore.exceptions import ConfigurationError, DimensionMismatch, UpstreamError

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 100


@dataclass
class EmbeddingResponse:
    """Embedding for a single text."""

    embedding: List[float]
    tokens: float
    model: str


@dataclass
class BatchEmbedding:
    """Raw provider answer for one batch request."""

    vectors: List[List[float]]
    total_tokens: int
    model: str


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Cosine similarity of two vectors.

    Raises:
        DimensionMismatch: If the vectors differ in length.

    Returns:
        dot(a, b) / (|a| * |b|), or 0.0 when either norm is zero.
    """
    if len(a) != len(b):
        raise DimensionMismatch(len(a), len(b))

    dot_product = 0.0
    norm_a = 0.0
    norm_b = 0.0
    for x, y in zip(a, b):
        dot_product += x * y
        norm_a += x * x
        norm_b += y * y

    if norm_a == 0 or norm_b == 0:
        return 0.0

    return dot_product / (math.sqrt(norm_a) * math.sqrt(norm_b))


class EmbeddingGenerator(ABC):
    """
    Abstract base class for embedding generators.

    Subclasses implement a single batch call against their provider; batching,
    ordering and token accounting live here.
    """

    def __init__(self, api_key: str, model: str, batch_size: int = DEFAULT_BATCH_SIZE) -> None:
        self.api_key = api_key
        self.model = model
        self.batch_size = batch_size

    @abstractmethod
    async def _embed_batch(self, texts: List[str], model: str) -> BatchEmbedding:
        """
        Embed one batch of texts with a single provider request.

        Args:
            texts: Texts to embed (at most batch_size).
            model: Provider model identifier.

        Returns:
            Vectors in the same order as the input texts.
        """
        pass

    async def close(self) -> None:
        """Release provider resources."""
        return None

    def is_configured(self) -> bool:
        """Check whether a credential is available."""
        return bool(self.api_key)

    def update_api_key(self, api_key: str) -> None:
        self.api_key = api_key

    def update_model(self, model: str) -> None:
        self.model = model

    def _require_configured(self) -> None:
        if not self.is_configured():
            raise ConfigurationError(f"{type(self).__name__}: API key not configured")

    async def generate_embedding(self, text: str, model: Optional[str] = None) -> EmbeddingResponse:
        """
        Generate an embedding for a single text.

        Args:
            text: Text to embed.
            model: Optional model override.

        Returns:
            EmbeddingResponse with vector, token count and model id.

        Raises:
            ConfigurationError: If no credential is set.
            UpstreamError: If the provider call fails.
        """
        self._require_configured()

        batch = await self._embed_batch([text], model or self.model)
        if len(batch.vectors) != 1:
            raise UpstreamError(f"Expected 1 embedding, provider returned {len(batch.vectors)}")

        return EmbeddingResponse(
            embedding=batch.vectors[0],
            tokens=batch.total_tokens,
            model=batch.model,
        )

    async def generate_batch_embeddings(
        self,
        texts: List[str],
        model: Optional[str] = None,
    ) -> List[EmbeddingResponse]:
        """
        Generate embeddings for multiple texts.

        Texts are split into batches of batch_size and each batch is awaited
        before the next one is sent.

        Args:
            texts: Texts to embed.
            model: Optional model override.

        Returns:
            One EmbeddingResponse per input text, in input order.
        """
        self._require_configured()

        if not texts:
            return []

        model_name = model or self.model
        results: List[EmbeddingResponse] = []

        for i in range(0, len(texts), self.batch_size):
            batch_texts = texts[i : i + self.batch_size]
            batch = await self._embed_batch(batch_texts, model_name)

            if len(batch.vectors) != len(batch_texts):
                raise UpstreamError(
                    f"Provider returned {len(batch.vectors)} embeddings for {len(batch_texts)} inputs"
                )

            # Provider reports only an aggregate, so spread it over the items
            per_item_tokens = batch.total_tokens / len(batch.vectors)
            for vector in batch.vectors:
                results.append(
                    EmbeddingResponse(embedding=vector, tokens=per_item_tokens, model=batch.model)
                )

            if i + self.batch_size < len(texts):
                logger.debug(f"Processed {i + self.batch_size}/{len(texts)} embeddings")

        logger.info(f"Generated {len(results)} embeddings with model '{model_name}'")
        return results

    cosine_similarity = staticmethod(cosine_similarity)


class OpenAIEmbeddingGenerator(EmbeddingGenerator):
    """
    Embedding generator for OpenAI-compatible HTTP embedding endpoints.

    Request:  {"input": [...], "model": ..., "encoding_format": "float"}
    Response: {"data": [{"embedding": [...], "index": n}], "usage": {"total_tokens": n}, "model": ...}
    Errors:   {"error": {"message": ...}}
    """

    def __init__(
        self,
        api_key: str = "",
        model: str = "text-embedding-3-small",
        base_url: str = "https://api.openai.com/v1",
        batch_size: int = DEFAULT_BATCH_SIZE,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        """
        Initialize the HTTP embedding generator.

        Args:
            api_key: Bearer token for the provider.
            model: Default embedding model.
            base_url: Provider base URL (the /embeddings path is appended).
            batch_size: Maximum inputs per request.
            timeout: Request timeout in seconds.
            client: Optional pre-built httpx client (owned by the caller).
        """
        super().__init__(api_key=api_key, model=model, batch_size=batch_size)
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None

        logger.info(f"OpenAI embedding generator initialized with model: {self.model}")

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    @property
    def _headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }

    async def close(self) -> None:
        """Close the underlying HTTP client if this generator created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def _embed_batch(self, texts: List[str], model: str) -> BatchEmbedding:
        client = self._get_client()

        try:
            response = await client.post(
                f"{self.base_url}/embeddings",
                headers=self._headers,
                json={
                    "input": texts,
                    "model": model,
                    "encoding_format": "float",
                },
            )
        except httpx.HTTPError as e:
            logger.error(f"Embedding request failed: {e}")
            raise UpstreamError(f"Embedding request failed: {e}") from e

        if not response.is_success:
            message = self._error_message(response)
            logger.error(f"Embedding provider returned {response.status_code}: {message}")
            raise UpstreamError(f"OpenAI API error: {message}", status_code=response.status_code)

        try:
            payload = response.json()
        except ValueError as e:
            raise UpstreamError("Embedding provider returned invalid JSON", response.status_code) from e

        return self._parse_payload(payload, model, response.status_code)

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            error = response.json().get("error") or {}
            return error.get("message") or "Unknown error"
        except (ValueError, AttributeError):
            return "Unknown error"

    @staticmethod
    def _parse_payload(payload: Any, model: str, status_code: int) -> BatchEmbedding:
        if not isinstance(payload, dict) or not isinstance(payload.get("data"), list):
            raise UpstreamError("Malformed embedding response: missing 'data'", status_code)

        items = payload["data"]
        # Honour the provider's index field so vectors line up with inputs
        if items and all(isinstance(item, dict) and "index" in item for item in items):
            items = sorted(items, key=lambda item: item["index"])

        vectors = []
        for item in items:
            embedding = item.get("embedding") if isinstance(item, dict) else None
            if not isinstance(embedding, list):
                raise UpstreamError("Malformed embedding response: missing 'embedding'", status_code)
            vectors.append([float(x) for x in embedding])

        usage = payload.get("usage") or {}
        return BatchEmbedding(
            vectors=vectors,
            total_tokens=int(usage.get("total_tokens", 0)),
            model=payload.get("model") or model,
        )


class GeminiEmbeddingGenerator(EmbeddingGenerator):
    """
    Generates embeddings using Google's Gemini embedding model.

    The Gemini API reports no token usage, so counts are estimated at four
    characters per token.
    """

    def __init__(
        self,
        api_key: str = "",
        model: str = "gemini-embedding-001",
        batch_size: int = DEFAULT_BATCH_SIZE,
        client: Optional[Any] = None,
    ) -> None:
        super().__init__(api_key=api_key, model=model, batch_size=batch_size)
        self._client = client

        if self._client is None and api_key:
            self._client = genai.Client(api_key=api_key)
            logger.info(f"Gemini embedding generator initialized with model: {self.model}")
        elif not api_key:
            logger.warning("Gemini API key not configured - embeddings will not be available")

    def is_configured(self) -> bool:
        return self._client is not None

    def update_api_key(self, api_key: str) -> None:
        super().update_api_key(api_key)
        self._client = genai.Client(api_key=api_key) if api_key else None

    async def _embed_batch(self, texts: List[str], model: str) -> BatchEmbedding:
        try:
            result = await self._client.aio.models.embed_content(model=model, contents=texts)
        except genai_errors.APIError as e:
            logger.error(f"Gemini embedding request failed: {e}")
            raise UpstreamError(f"Gemini API error: {e.message}", status_code=e.code) from e

        embeddings = result.embeddings or []
        vectors = [list(embedding.values or []) for embedding in embeddings]
        if any(not vector for vector in vectors):
            raise UpstreamError("Malformed embedding response: empty vector")

        return BatchEmbedding(
            vectors=vectors,
            total_tokens=sum(len(text) // 4 for text in texts),
            model=model,
        )


def create_embedding_generator(settings: Settings, **kwargs: Any) -> EmbeddingGenerator:
    """
    Factory function to create an embedding generator.

    Args:
        settings: Settings selecting the provider and its credentials.
        **kwargs: Additional arguments passed to the generator constructor.

    Returns:
        EmbeddingGenerator instance.

    Raises:
        ValueError: If the provider is not supported.
    """
    provider = settings.embedding_provider.lower()

    if provider == "openai":
        return OpenAIEmbeddingGenerator(
            api_key=settings.openai_api_key,
            model=settings.embedding_model,
            base_url=settings.embedding_base_url,
            batch_size=settings.embedding_batch_size,
            timeout=settings.embedding_timeout_seconds,
            **kwargs,
        )
    elif provider == "gemini":
        return GeminiEmbeddingGenerator(
            api_key=settings.gemini_api_key,
            model=settings.gemini_embedding_model,
            batch_size=settings.embedding_batch_size,
            **kwargs,
        )
    else:
        raise ValueError(f"Unsupported embedding provider: {settings.embedding_provider}")
