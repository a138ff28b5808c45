# FILE: kbcore/jobs/queue.py
"""
Embedding job queue backed by the kb_embedding_jobs table.

State machine:
    PENDING --claim--> PROCESSING --complete--> COMPLETED
                                  --fail------> FAILED
                                  --fail(retryable, attempts left)--> PENDING
                                  --stale, attempts left--> PENDING
                                  --stale, out of attempts--> FAILED

claim(), complete() and fail() are conditional UPDATEs (WHERE status = ...),
so when several workers race for the same job exactly one UPDATE matches a
row. enqueue/claim/complete/fail is the whole contract a worker relies on;
a message-broker transport can replace polling without touching it.
"""

import logging
import uuid
from datetime import timedelta
from typing import Callable, Dict, List, Optional, Set

from sqlalchemy import and_, func, or_, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from kbcore.config import JOB_MAX_ATTEMPTS, JOB_RETRY_BACKOFF
from kbcore.errors import StoreError
from kbcore.models import EmbeddingJob, JobStatus, utcnow

logger = logging.getLogger(__name__)

# Stored error messages are truncated to this many characters
MAX_ERROR_LENGTH = 2000


class JobQueue:
    """Job table access for the ingestion pipeline (enqueue) and workers (everything else)."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        max_attempts: int = JOB_MAX_ATTEMPTS,
        retry_backoff: float = JOB_RETRY_BACKOFF,
    ):
        """
        Args:
            session_factory: Callable that returns a new DB session
            max_attempts: Claims allowed per job before a retryable failure becomes terminal
            retry_backoff: Seconds before a retried job is claimable again (doubles per attempt)
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.session_factory = session_factory
        self.max_attempts = max_attempts
        self.retry_backoff = retry_backoff

    # ------------------------------------------------------------------
    # Producer side
    # ------------------------------------------------------------------

    def enqueue(
        self,
        article_id: str,
        organization_id: str,
        content_hash: str,
        db: Optional[Session] = None,
    ) -> EmbeddingJob:
        """
        Create a PENDING job.

        With `db`, the job is added to the caller's transaction and the caller
        commits; otherwise it is committed here.
        """
        now = utcnow()
        job = EmbeddingJob(
            job_id=str(uuid.uuid4()),
            article_id=article_id,
            organization_id=organization_id,
            status=JobStatus.PENDING,
            content_hash=content_hash,
            attempts=0,
            available_at=now,
            created_at=now,
            updated_at=now,
        )

        if db is not None:
            db.add(job)
            db.flush()
            return job

        session = self.session_factory()
        try:
            session.add(job)
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            raise StoreError(f"Failed to enqueue job for article {article_id}: {e}") from e
        finally:
            session.close()

        logger.info(f"[job_queue] Enqueued job {job.job_id} for article {article_id}")
        return job

    # ------------------------------------------------------------------
    # Worker side
    # ------------------------------------------------------------------

    def fetch_pending(self, limit: int) -> List[str]:
        """Ids of up to `limit` claimable PENDING jobs, oldest first."""
        db = self.session_factory()
        try:
            rows = db.query(EmbeddingJob.job_id).filter(
                EmbeddingJob.status == JobStatus.PENDING,
                EmbeddingJob.available_at <= utcnow(),
            ).order_by(EmbeddingJob.created_at, EmbeddingJob.job_id).limit(limit).all()
            return [job_id for (job_id,) in rows]
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to fetch pending jobs: {e}") from e
        finally:
            db.close()

    def claim(self, job_id: str) -> bool:
        """PENDING -> PROCESSING. True only for the caller whose UPDATE matched."""
        now = utcnow()
        won = self._transition(
            job_id,
            expected=JobStatus.PENDING,
            values={
                "status": JobStatus.PROCESSING,
                "attempts": EmbeddingJob.attempts + 1,
                "started_at": now,
                "updated_at": now,
                "error_message": None,
            },
        )
        if won:
            logger.info(f"[job_queue] Claimed job {job_id}")
        else:
            logger.info(f"[job_queue] Job {job_id} no longer pending, claim lost")
        return won

    def complete(
        self,
        job_id: str,
        chunks_written: Optional[int] = None,
        superseded_by: Optional[str] = None,
    ) -> bool:
        """PROCESSING -> COMPLETED."""
        now = utcnow()
        done = self._transition(
            job_id,
            expected=JobStatus.PROCESSING,
            values={
                "status": JobStatus.COMPLETED,
                "chunks_written": chunks_written,
                "superseded_by": superseded_by,
                "completed_at": now,
                "updated_at": now,
            },
        )
        if not done:
            logger.warning(f"[job_queue] complete({job_id}) ignored: job not processing")
        return done

    def fail(self, job_id: str, error_message: str, retryable: bool = False) -> JobStatus:
        """
        Record a failure for a PROCESSING job.

        Retryable failures go back to PENDING (with backoff) while attempts
        remain; everything else ends in FAILED. Returns the resulting status.
        """
        error_message = (error_message or "Unknown error")[:MAX_ERROR_LENGTH]
        job = self.get(job_id)
        if job is None:
            raise StoreError(f"Job {job_id} not found")

        now = utcnow()
        if retryable and job.attempts < self.max_attempts:
            delay = self.retry_backoff * (2 ** max(job.attempts - 1, 0))
            requeued = self._transition(
                job_id,
                expected=JobStatus.PROCESSING,
                values={
                    "status": JobStatus.PENDING,
                    "error_message": error_message,
                    "available_at": now + timedelta(seconds=delay),
                    "updated_at": now,
                },
            )
            if requeued:
                logger.warning(
                    f"[job_queue] Job {job_id} attempt {job.attempts}/{self.max_attempts} failed, "
                    f"retry in {delay:.0f}s: {error_message}"
                )
                return JobStatus.PENDING
            return self.get(job_id).status

        failed = self._transition(
            job_id,
            expected=JobStatus.PROCESSING,
            values={
                "status": JobStatus.FAILED,
                "error_message": error_message,
                "completed_at": now,
                "updated_at": now,
            },
        )
        if failed:
            logger.error(f"[job_queue] Job {job_id} failed: {error_message}")
            return JobStatus.FAILED
        return self.get(job_id).status

    def requeue_stale(self, max_age_seconds: float) -> int:
        """
        Recover jobs stuck in PROCESSING longer than max_age_seconds.

        Jobs with attempts left go back to PENDING; jobs that used up
        max_attempts end in FAILED. Returns the number requeued.
        """
        now = utcnow()
        cutoff = now - timedelta(seconds=max_age_seconds)
        stale = (
            EmbeddingJob.status == JobStatus.PROCESSING,
            EmbeddingJob.started_at < cutoff,
        )
        db = self.session_factory()
        try:
            failed = db.execute(
                update(EmbeddingJob)
                .where(*stale, EmbeddingJob.attempts >= self.max_attempts)
                .values(
                    status=JobStatus.FAILED,
                    error_message=f"Worker timed out after {self.max_attempts} attempts",
                    completed_at=now,
                    updated_at=now,
                )
            )
            requeued = db.execute(
                update(EmbeddingJob)
                .where(*stale, EmbeddingJob.attempts < self.max_attempts)
                .values(
                    status=JobStatus.PENDING,
                    error_message="Requeued after worker timeout",
                    available_at=now,
                    updated_at=now,
                )
            )
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise StoreError(f"Failed to requeue stale jobs: {e}") from e
        finally:
            db.close()

        if failed.rowcount:
            logger.error(f"[job_queue] Failed {failed.rowcount} stale jobs out of attempts")
        if requeued.rowcount:
            logger.warning(f"[job_queue] Requeued {requeued.rowcount} stale processing jobs")
        return requeued.rowcount

    def find_newer_job(self, job: EmbeddingJob) -> Optional[str]:
        """
        Id of the most recent non-failed job for the same article created after `job`.

        Jobs created at the same instant are ordered by job_id.
        """
        db = self.session_factory()
        try:
            row = db.query(EmbeddingJob.job_id).filter(
                EmbeddingJob.article_id == job.article_id,
                or_(
                    EmbeddingJob.created_at > job.created_at,
                    and_(
                        EmbeddingJob.created_at == job.created_at,
                        EmbeddingJob.job_id > job.job_id,
                    ),
                ),
                EmbeddingJob.status != JobStatus.FAILED,
            ).order_by(EmbeddingJob.created_at.desc(), EmbeddingJob.job_id.desc()).first()
            return row[0] if row else None
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to look up newer jobs: {e}") from e
        finally:
            db.close()

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    def get(self, job_id: str) -> Optional[EmbeddingJob]:
        db = self.session_factory()
        try:
            return db.query(EmbeddingJob).filter(EmbeddingJob.job_id == job_id).first()
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to read job {job_id}: {e}") from e
        finally:
            db.close()

    def stats(self) -> Dict[str, int]:
        """Job counts per status (every status present, zero if none)."""
        db = self.session_factory()
        try:
            rows = db.query(EmbeddingJob.status, func.count(EmbeddingJob.job_id)).group_by(
                EmbeddingJob.status
            ).all()
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to read job stats: {e}") from e
        finally:
            db.close()

        counts = {status.value: 0 for status in JobStatus}
        for status, count in rows:
            counts[JobStatus(status).value] = count
        return counts

    def open_article_ids(self, organization_id: Optional[str] = None) -> Set[str]:
        """Articles with a PENDING or PROCESSING job."""
        db = self.session_factory()
        try:
            query = db.query(EmbeddingJob.article_id).filter(
                EmbeddingJob.status.in_([JobStatus.PENDING, JobStatus.PROCESSING])
            ).distinct()
            if organization_id is not None:
                query = query.filter(EmbeddingJob.organization_id == organization_id)
            return {article_id for (article_id,) in query}
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to list open jobs: {e}") from e
        finally:
            db.close()

    def _transition(self, job_id: str, expected: JobStatus, values: Dict) -> bool:
        """Conditional UPDATE; True if this call changed the row."""
        db = self.session_factory()
        try:
            result = db.execute(
                update(EmbeddingJob)
                .where(EmbeddingJob.job_id == job_id, EmbeddingJob.status == expected)
                .values(**values)
            )
            db.commit()
            return result.rowcount == 1
        except SQLAlchemyError as e:
            db.rollback()
            raise StoreError(f"Failed to update job {job_id}: {e}") from e
        finally:
            db.close()
