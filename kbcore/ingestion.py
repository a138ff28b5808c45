# FILE: kbcore/ingestion.py
"""
Ingestion pipeline.

ingest() stores the article and enqueues an embedding job in one
transaction, then returns without waiting for embeddings. Removal
(unpublish_or_delete) is synchronous: chunks stop being searchable before
the call returns.
"""

import hashlib
import logging
from typing import Callable, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from kbcore.errors import StoreError, ValidationError
from kbcore.jobs.queue import JobQueue
from kbcore.models import EmbeddingJob, KnowledgeArticle, utcnow
from kbcore.schemas import ArticleIn
from kbcore.vector_store import VectorStore

logger = logging.getLogger(__name__)


def compute_content_hash(title: str, content: str) -> str:
    """Revision fingerprint of the embedded text."""
    return hashlib.sha256(f"{title}\n\n{content}".encode("utf-8")).hexdigest()


class IngestionPipeline:
    """Article writes into the knowledge base."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        queue: JobQueue,
        vector_store: VectorStore,
    ):
        self.session_factory = session_factory
        self.queue = queue
        self.vector_store = vector_store

    def ingest(self, article: ArticleIn) -> EmbeddingJob:
        """
        Record the article and enqueue a PENDING embedding job for it.

        Every call enqueues a new job, even for unchanged content.

        Raises:
            ValidationError: empty content or unpublished article
            StoreError: database failure, or article_id owned by another organization
        """
        if not article.content or not article.content.strip():
            raise ValidationError(f"Article {article.article_id} has no content")
        if not article.is_published:
            raise ValidationError(
                f"Article {article.article_id} is not published; use unpublish_or_delete()"
            )

        content_hash = compute_content_hash(article.title, article.content)
        now = utcnow()

        db = self.session_factory()
        try:
            row = db.query(KnowledgeArticle).filter(
                KnowledgeArticle.article_id == article.article_id
            ).first()

            if row is None:
                row = KnowledgeArticle(article_id=article.article_id)
                db.add(row)
            elif row.organization_id != article.organization_id:
                raise StoreError(
                    f"Article {article.article_id} belongs to another organization"
                )

            row.organization_id = article.organization_id
            row.title = article.title
            row.content = article.content
            row.category = article.category
            row.is_published = True
            row.content_hash = content_hash
            row.updated_at = article.updated_at or now
            row.ingested_at = now

            job = self.queue.enqueue(
                article.article_id, article.organization_id, content_hash, db=db
            )
            db.commit()
        except StoreError:
            db.rollback()
            raise
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"[ingest] Failed to ingest article {article.article_id}: {e}")
            raise StoreError(f"Failed to ingest article {article.article_id}: {e}") from e
        finally:
            db.close()

        logger.info(
            f"[ingest] Article {article.article_id} (org={article.organization_id}) queued as job {job.job_id}"
        )
        return job

    def unpublish_or_delete(self, article_id: str, keep_record: bool = False) -> int:
        """
        Remove an article from search immediately.

        keep_record=False deletes the stored article; keep_record=True keeps it
        marked unpublished. Either way pending jobs for it will write nothing.
        Idempotent. Returns the number of chunks removed.
        """
        if not article_id:
            raise ValidationError("article_id is required")

        db = self.session_factory()
        try:
            row = db.query(KnowledgeArticle).filter(
                KnowledgeArticle.article_id == article_id
            ).first()
            if row is not None:
                if keep_record:
                    row.is_published = False
                    row.updated_at = utcnow()
                else:
                    db.delete(row)
                db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise StoreError(f"Failed to remove article {article_id}: {e}") from e
        finally:
            db.close()

        removed = self.vector_store.delete_article(article_id)
        logger.info(
            f"[ingest] Article {article_id} {'unpublished' if keep_record else 'deleted'}, "
            f"{removed} chunks removed"
        )
        return removed

    def backfill(self, organization_id: Optional[str] = None) -> List[EmbeddingJob]:
        """
        Enqueue jobs for published articles that have no chunks and no open job.

        Returns the jobs created.
        """
        indexed = self.vector_store.indexed_article_ids(organization_id)
        in_flight = self.queue.open_article_ids(organization_id)

        db = self.session_factory()
        try:
            query = db.query(KnowledgeArticle).filter(KnowledgeArticle.is_published == True)  # noqa: E712
            if organization_id is not None:
                query = query.filter(KnowledgeArticle.organization_id == organization_id)
            missing = [
                row for row in query.order_by(KnowledgeArticle.article_id)
                if row.article_id not in indexed and row.article_id not in in_flight
            ]

            jobs = [
                self.queue.enqueue(row.article_id, row.organization_id, row.content_hash, db=db)
                for row in missing
            ]
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise StoreError(f"Backfill failed: {e}") from e
        finally:
            db.close()

        logger.info(
            f"[ingest] Backfill enqueued {len(jobs)} jobs"
            + (f" for org {organization_id}" if organization_id else "")
        )
        return jobs
