# FILE: kbcore/vector_store.py
"""
Vector store over the kb_chunks table.

Contract:
- upsert_chunks(): replaces ALL chunks of an article in one transaction
  (delete + insert + commit). Readers see either the old set or the new set.
- delete_article(): removes all chunks of an article; deleting nothing is fine.
- similarity_search(): tenant filter is part of the SQL WHERE clause; cosine
  similarity is computed over that tenant's rows only.

Score convention: raw cosine similarity clamped to [0, 1] (negative cosine is
reported as 0.0). The same clamped value is compared against the threshold
and returned as SearchResult.similarity.
"""

import json
import logging
import math
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Set

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from kbcore.errors import StaleRevisionError, StoreError, ValidationError
from kbcore.models import KnowledgeArticle, KnowledgeChunk
from kbcore.schemas import SearchResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChunkInput:
    """One chunk to store: position within the article, text, vector."""
    index: int
    text: str
    embedding: List[float]


def cosine_similarity(vec_a: Sequence[float], vec_b: Sequence[float]) -> float:
    """Compute cosine similarity between two vectors (range [-1, 1])."""
    if len(vec_a) != len(vec_b):
        return 0.0

    dot_product = sum(a * b for a, b in zip(vec_a, vec_b))
    norm_a = math.sqrt(sum(a * a for a in vec_a))
    norm_b = math.sqrt(sum(b * b for b in vec_b))

    if norm_a == 0 or norm_b == 0:
        return 0.0

    return dot_product / (norm_a * norm_b)


def similarity_score(vec_a: Sequence[float], vec_b: Sequence[float]) -> float:
    """Cosine similarity clamped into [0, 1]. Used for both ranking and thresholding."""
    return min(1.0, max(0.0, cosine_similarity(vec_a, vec_b)))


class VectorStore:
    """SQLAlchemy-backed chunk store with tenant-scoped similarity search."""

    def __init__(self, session_factory: Callable[[], Session]):
        """
        Args:
            session_factory: Callable that returns a new DB session
        """
        self.session_factory = session_factory

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def upsert_chunks(
        self,
        article_id: str,
        organization_id: str,
        chunks: Sequence[ChunkInput],
        metadata: Optional[Dict[str, Any]] = None,
        revision: Optional[str] = None,
    ) -> int:
        """
        Atomically replace every chunk of article_id with `chunks`.

        With `revision`, the article row must still be published with that
        content_hash when the write happens, otherwise nothing is written and
        StaleRevisionError is raised.

        Returns number of chunks written. An empty `chunks` leaves the article
        with no chunks.
        """
        if not article_id or not organization_id:
            raise ValidationError("article_id and organization_id are required")
        self._validate_chunks(chunks)

        db = self.session_factory()
        try:
            self._check_owner(db, article_id, organization_id)

            deleted = db.query(KnowledgeChunk).filter(
                KnowledgeChunk.article_id == article_id
            ).delete(synchronize_session=False)

            # Checked after the DELETE so the write lock is already held
            if revision is not None:
                self._check_revision(db, article_id, revision)

            for chunk in sorted(chunks, key=lambda c: c.index):
                db.add(KnowledgeChunk(
                    article_id=article_id,
                    organization_id=organization_id,
                    chunk_index=chunk.index,
                    text=chunk.text,
                    embedding=json.dumps(chunk.embedding),
                    embedding_dim=len(chunk.embedding),
                    chunk_metadata=dict(metadata or {}),
                ))

            db.commit()
        except (StoreError, StaleRevisionError):
            db.rollback()
            raise
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"[vector_store] upsert failed for article {article_id}: {e}")
            raise StoreError(f"Failed to store chunks for article {article_id}: {e}") from e
        finally:
            db.close()

        logger.info(
            f"[vector_store] Replaced chunks for article {article_id} "
            f"(org={organization_id}): {deleted} -> {len(chunks)}"
        )
        return len(chunks)

    def delete_article(self, article_id: str) -> int:
        """Remove all chunks for article_id. Returns number removed (0 if none)."""
        db = self.session_factory()
        try:
            count = db.query(KnowledgeChunk).filter(
                KnowledgeChunk.article_id == article_id
            ).delete(synchronize_session=False)
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"[vector_store] delete failed for article {article_id}: {e}")
            raise StoreError(f"Failed to delete chunks for article {article_id}: {e}") from e
        finally:
            db.close()

        if count:
            logger.info(f"[vector_store] Deleted {count} chunks for article {article_id}")
        return count

    def _validate_chunks(self, chunks: Sequence[ChunkInput]):
        indexes = [c.index for c in chunks]
        if sorted(indexes) != list(range(len(chunks))):
            raise ValidationError(f"Chunk indexes must be 0..{len(chunks) - 1}, got {sorted(indexes)}")
        dims = {len(c.embedding) for c in chunks}
        if 0 in dims or len(dims) > 1:
            raise ValidationError(f"Chunk embeddings must share one non-zero size, got {sorted(dims)}")
        for c in chunks:
            if not c.text or not c.text.strip():
                raise ValidationError(f"Chunk {c.index} has empty text")

    def _check_owner(self, db: Session, article_id: str, organization_id: str):
        """Refuse to write chunks for an article owned by another tenant."""
        article_org = db.query(KnowledgeArticle.organization_id).filter(
            KnowledgeArticle.article_id == article_id
        ).scalar()
        chunk_orgs = {
            org for (org,) in db.query(KnowledgeChunk.organization_id).filter(
                KnowledgeChunk.article_id == article_id
            ).distinct()
        }
        owners = chunk_orgs | ({article_org} if article_org else set())
        if owners - {organization_id}:
            raise StoreError(
                f"Article {article_id} belongs to another organization; refusing to write chunks"
            )

    def _check_revision(self, db: Session, article_id: str, revision: str):
        row = db.query(KnowledgeArticle.content_hash, KnowledgeArticle.is_published).filter(
            KnowledgeArticle.article_id == article_id
        ).first()
        if row is None or not row.is_published or row.content_hash != revision:
            raise StaleRevisionError(f"Article {article_id} no longer matches revision {revision[:12]}")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def similarity_search(
        self,
        organization_id: str,
        query_embedding: Sequence[float],
        threshold: float,
        top_k: int,
    ) -> List[SearchResult]:
        """
        Rank organization_id's chunks by similarity to query_embedding.

        Returns at most top_k results with similarity >= threshold, ordered by
        similarity descending, ties broken by (article_id, chunk_index).
        """
        if not organization_id:
            raise ValidationError("organization_id is required")
        if top_k < 1:
            raise ValidationError("top_k must be >= 1")
        if not 0.0 <= threshold <= 1.0:
            raise ValidationError("threshold must be within [0, 1]")
        if not query_embedding:
            raise ValidationError("query_embedding is empty")

        db = self.session_factory()
        try:
            rows = db.query(KnowledgeChunk).filter(
                KnowledgeChunk.organization_id == organization_id
            ).all()
        except SQLAlchemyError as e:
            logger.error(f"[vector_store] search failed for org {organization_id}: {e}")
            raise StoreError(f"Similarity search failed: {e}") from e
        finally:
            db.close()

        scored = []
        skipped = 0
        for row in rows:
            if row.embedding_dim != len(query_embedding):
                skipped += 1
                continue
            try:
                stored = json.loads(row.embedding)
            except (json.JSONDecodeError, TypeError):
                skipped += 1
                continue
            score = similarity_score(query_embedding, stored)
            if score >= threshold:
                scored.append((score, row))

        if skipped:
            logger.warning(
                f"[vector_store] Skipped {skipped} chunks with unreadable or mismatched vectors "
                f"(org={organization_id})"
            )

        scored.sort(key=lambda pair: (-pair[0], pair[1].article_id, pair[1].chunk_index))

        return [
            SearchResult(
                chunk_text=row.text,
                article_title=(row.chunk_metadata or {}).get("title", ""),
                article_id=row.article_id,
                chunk_index=row.chunk_index,
                similarity=score,
            )
            for score, row in scored[:top_k]
        ]

    def get_chunks(self, article_id: str) -> List[KnowledgeChunk]:
        """All chunks of an article ordered by chunk_index (single query)."""
        db = self.session_factory()
        try:
            return db.query(KnowledgeChunk).filter(
                KnowledgeChunk.article_id == article_id
            ).order_by(KnowledgeChunk.chunk_index).all()
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to read chunks for article {article_id}: {e}") from e
        finally:
            db.close()

    def count_chunks(
        self,
        article_id: Optional[str] = None,
        organization_id: Optional[str] = None,
    ) -> int:
        db = self.session_factory()
        try:
            query = db.query(func.count(KnowledgeChunk.chunk_id))
            if article_id is not None:
                query = query.filter(KnowledgeChunk.article_id == article_id)
            if organization_id is not None:
                query = query.filter(KnowledgeChunk.organization_id == organization_id)
            return query.scalar() or 0
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to count chunks: {e}") from e
        finally:
            db.close()

    def indexed_article_ids(self, organization_id: Optional[str] = None) -> Set[str]:
        """Article ids that currently have at least one chunk."""
        db = self.session_factory()
        try:
            query = db.query(KnowledgeChunk.article_id).distinct()
            if organization_id is not None:
                query = query.filter(KnowledgeChunk.organization_id == organization_id)
            return {article_id for (article_id,) in query}
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to list indexed articles: {e}") from e
        finally:
            db.close()
