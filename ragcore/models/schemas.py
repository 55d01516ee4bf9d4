"""
Pydantic Schemas

Request and response bodies for the knowledge HTTP endpoints.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


# =============================================================================
# Requests
# =============================================================================


class SearchRequest(BaseModel):
    """Knowledge search request."""

    query: str = Field(..., min_length=1, description="Natural language question")
    stack_ids: List[str] = Field(..., description="Active stacks to search")
    top_k: Optional[int] = Field(None, ge=1, le=50, description="Maximum results")
    threshold: Optional[float] = Field(None, ge=-1.0, le=1.0, description="Minimum cosine similarity")
    max_context_length: Optional[int] = Field(None, ge=1, description="Character budget for context")


# =============================================================================
# Responses
# =============================================================================


class SearchResultItem(BaseModel):
    content: str
    source_id: str
    source_name: str
    similarity: float
    chunk_index: int
    context: str = Field(..., description="Most query-relevant sentence")


class SearchResponse(BaseModel):
    query: str
    results: List[SearchResultItem]
    total_sources: int
    search_time_ms: float
    relevance_threshold: float
    rag_used: bool
    error: Optional[str] = None


class StatsResponse(BaseModel):
    total_vectors: int
    total_sources: int
    total_stacks: int
    memory_usage: int = Field(..., description="Approximate bytes held by the index")
    is_configured: bool


class HealthResponse(BaseModel):
    status: str = Field(..., description="healthy or degraded")
    timestamp: datetime
    embedding_service: bool
    vector_storage: bool
    document_processing: bool
    api_key: bool


class DeleteResponse(BaseModel):
    id: str
    vectors_deleted: int
