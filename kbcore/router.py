# FILE: kbcore/router.py
"""
FastAPI routes for the knowledge base.

Callers are trusted to pass a validated organization_id; tenant
authentication happens upstream.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request

from kbcore.errors import (
    ArticleNotFoundError,
    EmbeddingFailure,
    KnowledgeBaseError,
    StoreError,
    ValidationError,
)
from kbcore.schemas import (
    AnswerRequest,
    AnswerResponse,
    ArticleIn,
    BackfillResponse,
    DeleteResponse,
    IngestResponse,
    JobOut,
    JobStatsResponse,
    SearchRequest,
    SearchResponse,
)
from kbcore.service import KnowledgeBase

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/kb",
    tags=["knowledge-base"],
)


def get_knowledge_base(request: Request) -> KnowledgeBase:
    """Dependency: the KnowledgeBase attached to the app at startup."""
    kb = getattr(request.app.state, "knowledge_base", None)
    if kb is None:
        raise HTTPException(status_code=503, detail="Knowledge base not initialized")
    return kb


def _to_http(e: KnowledgeBaseError) -> HTTPException:
    if isinstance(e, ValidationError):
        return HTTPException(status_code=422, detail=str(e))
    if isinstance(e, ArticleNotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, StoreError):
        logger.error(f"[kb_router] Store error: {e}")
        return HTTPException(status_code=503, detail="Knowledge base storage unavailable")
    if isinstance(e, EmbeddingFailure):
        logger.error(f"[kb_router] Provider error: {e}")
        return HTTPException(status_code=502, detail="Model provider error")
    logger.error(f"[kb_router] Unhandled knowledge base error: {e}")
    return HTTPException(status_code=500, detail="Knowledge base error")


@router.post("/articles", response_model=IngestResponse, status_code=202)
def ingest_article(article: ArticleIn, kb: KnowledgeBase = Depends(get_knowledge_base)):
    """Store an article and queue it for embedding. Returns immediately."""
    try:
        job = kb.ingest(article)
    except KnowledgeBaseError as e:
        raise _to_http(e) from e
    return IngestResponse(job_id=job.job_id, article_id=job.article_id, status=job.status)


@router.delete("/articles/{article_id}", response_model=DeleteResponse)
def delete_article(
    article_id: str,
    keep_record: bool = False,
    kb: KnowledgeBase = Depends(get_knowledge_base),
):
    """Remove an article from search (unpublish with keep_record=true)."""
    try:
        removed = kb.delete(article_id, keep_record=keep_record)
    except KnowledgeBaseError as e:
        raise _to_http(e) from e
    return DeleteResponse(article_id=article_id, chunks_deleted=removed)


@router.post("/search", response_model=SearchResponse)
def search(req: SearchRequest, kb: KnowledgeBase = Depends(get_knowledge_base)):
    try:
        results = kb.search(req.organization_id, req.query, top_k=req.top_k, threshold=req.threshold)
    except KnowledgeBaseError as e:
        raise _to_http(e) from e
    return SearchResponse(query=req.query, results=results)


@router.post("/answer", response_model=AnswerResponse)
def answer(req: AnswerRequest, kb: KnowledgeBase = Depends(get_knowledge_base)):
    """Search, then synthesize a grounded answer (or the fallback)."""
    try:
        results, result_answer = kb.search_and_answer(req.organization_id, req.query)
    except KnowledgeBaseError as e:
        raise _to_http(e) from e
    return AnswerResponse(query=req.query, answer=result_answer, results=results)


@router.get("/jobs/{job_id}", response_model=JobOut)
def get_job(job_id: str, kb: KnowledgeBase = Depends(get_knowledge_base)):
    try:
        job = kb.get_job(job_id)
    except KnowledgeBaseError as e:
        raise _to_http(e) from e
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return job


@router.get("/status", response_model=JobStatsResponse)
def job_status(kb: KnowledgeBase = Depends(get_knowledge_base)):
    """Embedding job counts per status."""
    try:
        return JobStatsResponse(counts=kb.job_stats())
    except KnowledgeBaseError as e:
        raise _to_http(e) from e


@router.post("/backfill", response_model=BackfillResponse)
def backfill(organization_id: Optional[str] = None, kb: KnowledgeBase = Depends(get_knowledge_base)):
    """Queue published articles that have no chunks and no open job."""
    try:
        jobs = kb.backfill(organization_id)
    except KnowledgeBaseError as e:
        raise _to_http(e) from e
    return BackfillResponse(enqueued=len(jobs), job_ids=[job.job_id for job in jobs])
