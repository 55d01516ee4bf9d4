"""
Knowledge Endpoints

Router the host application can mount to expose knowledge base status,
search and removal. The knowledge base is read from app.state.knowledge_base.
"""

import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Request

from ragcore.exceptions import StorageError
from ragcore.models.schemas import (
    DeleteResponse,
    HealthResponse,
    SearchRequest,
    SearchResponse,
    StatsResponse,
)
from ragcore.rag.knowledge_base import KnowledgeBase
from ragcore.rag.retriever import RetrievalOptions

router = APIRouter(prefix="/knowledge", tags=["Knowledge"])
logger = logging.getLogger(__name__)


def get_knowledge_base(request: Request) -> KnowledgeBase:
    knowledge_base = getattr(request.app.state, "knowledge_base", None)
    if knowledge_base is None:
        raise HTTPException(status_code=503, detail="Knowledge base not initialized")
    return knowledge_base


@router.get("/health", response_model=HealthResponse)
async def health_check(knowledge_base: KnowledgeBase = Depends(get_knowledge_base)) -> HealthResponse:
    """
    Knowledge base health.

    Reports whether embedding, storage and chunking collaborators are usable.
    """
    checks = await knowledge_base.health_check()
    status = "healthy" if checks["embedding_service"] and checks["vector_storage"] else "degraded"
    return HealthResponse(status=status, timestamp=datetime.utcnow(), **checks)


@router.get("/stats", response_model=StatsResponse)
async def storage_stats(knowledge_base: KnowledgeBase = Depends(get_knowledge_base)) -> StatsResponse:
    return StatsResponse(**knowledge_base.get_knowledge_stats())


@router.post("/search", response_model=SearchResponse)
async def search_knowledge(
    request: SearchRequest,
    knowledge_base: KnowledgeBase = Depends(get_knowledge_base),
) -> SearchResponse:
    """Search the active stacks for context relevant to a query."""
    overrides = {
        key: value
        for key, value in {
            "top_k": request.top_k,
            "threshold": request.threshold,
            "max_context_length": request.max_context_length,
        }.items()
        if value is not None
    }
    options = RetrievalOptions.from_settings(knowledge_base.settings, **overrides)

    context = await knowledge_base.search_knowledge(request.query, request.stack_ids, options)
    return SearchResponse(**context.to_dict())


@router.delete("/sources/{source_id}", response_model=DeleteResponse)
async def remove_source(
    source_id: str,
    knowledge_base: KnowledgeBase = Depends(get_knowledge_base),
) -> DeleteResponse:
    try:
        deleted = await knowledge_base.remove_knowledge_source(source_id)
    except StorageError as e:
        logger.error(f"Failed to remove source {source_id}: {e}")
        raise HTTPException(status_code=503, detail=e.message)
    return DeleteResponse(id=source_id, vectors_deleted=deleted)


@router.delete("/stacks/{stack_id}", response_model=DeleteResponse)
async def remove_stack(
    stack_id: str,
    knowledge_base: KnowledgeBase = Depends(get_knowledge_base),
) -> DeleteResponse:
    try:
        deleted = await knowledge_base.remove_knowledge_stack(stack_id)
    except StorageError as e:
        logger.error(f"Failed to remove stack {stack_id}: {e}")
        raise HTTPException(status_code=503, detail=e.message)
    return DeleteResponse(id=stack_id, vectors_deleted=deleted)
