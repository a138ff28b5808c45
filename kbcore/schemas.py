# FILE: kbcore/schemas.py
"""
Pydantic schemas for the knowledge-base core.

Request/response contracts for the boundary operations, plus the ephemeral
SearchResult and Answer records produced per query.
"""

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from kbcore.models import JobStatus


# =============================================================================
# ARTICLES / INGESTION
# =============================================================================

class ArticleIn(BaseModel):
    """Article as handed over by the surrounding application."""
    article_id: str = Field(min_length=1, max_length=64)
    organization_id: str = Field(min_length=1, max_length=64)
    title: str = ""
    content: str
    category: Optional[str] = None
    is_published: bool = True
    updated_at: Optional[datetime] = None


class IngestResponse(BaseModel):
    job_id: str
    article_id: str
    status: JobStatus


class DeleteResponse(BaseModel):
    article_id: str
    chunks_deleted: int


class JobOut(BaseModel):
    """Output schema for embedding job records."""
    model_config = ConfigDict(from_attributes=True)

    job_id: str
    article_id: str
    organization_id: str
    status: JobStatus
    attempts: int
    error_message: Optional[str] = None
    superseded_by: Optional[str] = None
    chunks_written: Optional[int] = None
    created_at: datetime
    updated_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class JobStatsResponse(BaseModel):
    counts: Dict[str, int]


class BackfillResponse(BaseModel):
    enqueued: int
    job_ids: List[str]


# =============================================================================
# SEARCH
# =============================================================================

class SearchRequest(BaseModel):
    """Request schema for semantic search."""
    organization_id: str = Field(min_length=1)
    query: str
    top_k: Optional[int] = Field(default=None, ge=1)
    threshold: Optional[float] = Field(default=None, ge=0.0, le=1.0)


class SearchResult(BaseModel):
    """Single search result with similarity score."""
    chunk_text: str
    article_title: str
    article_id: str
    chunk_index: int
    similarity: float  # Cosine similarity clamped to [0, 1]


class SearchResponse(BaseModel):
    """Response schema for semantic search."""
    query: str
    results: List[SearchResult]


# =============================================================================
# ANSWERS
# =============================================================================

class SourceReference(BaseModel):
    article_id: str
    title: str


class Answer(BaseModel):
    """Grounded answer. used_fallback is True when nothing cleared the threshold."""
    text: str
    cited_article_ids: List[str] = Field(default_factory=list)
    used_fallback: bool = False
    sources: List[SourceReference] = Field(default_factory=list)
    model_used: Optional[str] = None


class AnswerRequest(BaseModel):
    organization_id: str = Field(min_length=1)
    query: str


class AnswerResponse(BaseModel):
    query: str
    answer: Answer
    results: List[SearchResult]
