"""Pydantic Models and Schemas."""

from ragcore.models.schemas import (
    DeleteResponse,
    HealthResponse,
    SearchRequest,
    SearchResponse,
    SearchResultItem,
    StatsResponse,
)

__all__ = [
    "DeleteResponse",
    "HealthResponse",
    "SearchRequest",
    "SearchResponse",
    "SearchResultItem",
    "StatsResponse",
]
