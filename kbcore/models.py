# FILE: kbcore/models.py
"""
Knowledge-base database models.

Tables:
- kb_articles: Tenant-owned article content (source of truth for chunks)
- kb_chunks: Derived text chunks + embedding vectors, stamped with the tenant id
- kb_embedding_jobs: Embedding job queue / state machine

Design Decisions:
1. Chunks are derived data. The full set for an article is replaced in one
   transaction (see vector_store.upsert_chunks), never patched row by row.
2. organization_id is denormalized onto every chunk so tenant filtering happens
   in the WHERE clause of the similarity query, not after it.
3. Embedding vectors are stored as JSON-encoded float arrays.
4. Job status is an Enum column; only the values of JobStatus are storable.
"""

import enum
from datetime import datetime, timezone

from sqlalchemy import (
    Column, Integer, String, Text, DateTime, Boolean, JSON, Enum,
    Index, UniqueConstraint,
)

from kbcore.db import Base


def utcnow() -> datetime:
    """Naive UTC timestamp (SQLite drops tzinfo, so keep everything naive)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class JobStatus(str, enum.Enum):
    """EmbeddingJob states. COMPLETED and FAILED are terminal."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class KnowledgeArticle(Base):
    """
    Article as last ingested.

    The surrounding application owns articles; this copy is what the worker
    embeds, so chunks always derive from exactly the content that was ingested.
    """
    __tablename__ = "kb_articles"

    article_id = Column(String(64), primary_key=True)
    organization_id = Column(String(64), nullable=False, index=True)
    title = Column(String(512), nullable=False, default="")
    content = Column(Text, nullable=False)
    category = Column(String(128), nullable=True)
    is_published = Column(Boolean, nullable=False, default=True)

    # Change detection: sha256 of title + content
    content_hash = Column(String(64), nullable=False)

    updated_at = Column(DateTime, default=utcnow, nullable=False)
    ingested_at = Column(DateTime, default=utcnow, nullable=False)

    def __repr__(self):
        return f"<KnowledgeArticle(id={self.article_id}, org={self.organization_id})>"


class KnowledgeChunk(Base):
    """
    One embedded passage of an article.

    chunk_index is zero-based and stable for a given article content.
    """
    __tablename__ = "kb_chunks"

    chunk_id = Column(Integer, primary_key=True, autoincrement=True)
    article_id = Column(String(64), nullable=False, index=True)
    organization_id = Column(String(64), nullable=False, index=True)
    chunk_index = Column(Integer, nullable=False)

    text = Column(Text, nullable=False)

    # JSON-encoded embedding vector
    embedding = Column(Text, nullable=False)
    embedding_dim = Column(Integer, nullable=False)

    # {title, category, is_published}
    chunk_metadata = Column("metadata", JSON, nullable=False, default=dict)

    created_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("article_id", "chunk_index", name="uq_kb_chunks_article_index"),
        Index("ix_kb_chunks_org_article", "organization_id", "article_id"),
    )

    def __repr__(self):
        return f"<KnowledgeChunk(article={self.article_id}, index={self.chunk_index})>"


class EmbeddingJob(Base):
    """
    Embedding job.

    Created by the ingestion pipeline, mutated only through kbcore.jobs.queue.
    State tracking (pending -> processing -> completed/failed).
    """
    __tablename__ = "kb_embedding_jobs"

    job_id = Column(String(36), primary_key=True)  # UUID
    article_id = Column(String(64), nullable=False, index=True)
    organization_id = Column(String(64), nullable=False, index=True)

    status = Column(
        Enum(JobStatus, native_enum=False, length=20, values_callable=lambda e: [m.value for m in e]),
        default=JobStatus.PENDING,
        nullable=False,
        index=True,
    )

    # content_hash of the article revision this job was created for
    content_hash = Column(String(64), nullable=False)

    attempts = Column(Integer, default=0, nullable=False)
    error_message = Column(Text, nullable=True)
    superseded_by = Column(String(36), nullable=True)
    chunks_written = Column(Integer, nullable=True)

    # Not claimable before this time (bounded retry backoff)
    available_at = Column(DateTime, default=utcnow, nullable=False)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, nullable=False)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("ix_kb_jobs_status_available", "status", "available_at"),
    )

    def __repr__(self):
        return f"<EmbeddingJob(id={self.job_id}, article={self.article_id}, status={self.status})>"
