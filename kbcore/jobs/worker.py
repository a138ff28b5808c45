# FILE: kbcore/jobs/worker.py
"""
Embedding worker.

Polls the job queue for up to batch_size claimable jobs every poll_interval
seconds and processes each one:

    claim -> fetch article -> chunk -> embed -> upsert_chunks -> complete

A failing job is recorded (fail) and the batch moves on. The loop is
cooperative: stop() lets the current batch finish, then the loop exits
instead of sleeping through another interval.

Several workers may run against the same database; JobQueue.claim() makes
sure each job is processed by exactly one of them.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from kbcore.chunking import TextChunker
from kbcore.config import (
    WORKER_BATCH_SIZE,
    WORKER_POLL_INTERVAL,
    SKIP_SUPERSEDED_JOBS,
    STALE_PROCESSING_SECONDS,
)
from kbcore.embeddings import EmbeddingProvider
from kbcore.errors import ArticleNotFoundError, RETRYABLE_ERRORS, StaleRevisionError, StoreError
from kbcore.jobs.queue import JobQueue
from kbcore.models import EmbeddingJob, JobStatus, KnowledgeArticle
from kbcore.vector_store import ChunkInput, VectorStore

logger = logging.getLogger(__name__)


def article_text(article: KnowledgeArticle) -> str:
    """Text that gets chunked and embedded for an article."""
    title = (article.title or "").strip()
    if title:
        return f"{title}\n\n{article.content}"
    return article.content


def chunk_metadata(article: KnowledgeArticle) -> Dict[str, Any]:
    return {
        "title": article.title or "",
        "category": article.category,
        "is_published": bool(article.is_published),
    }


class EmbeddingWorker:
    """Background worker that turns pending embedding jobs into stored chunks."""

    def __init__(
        self,
        queue: JobQueue,
        vector_store: VectorStore,
        embedder: EmbeddingProvider,
        session_factory: Callable[[], Session],
        chunker: Optional[TextChunker] = None,
        batch_size: int = WORKER_BATCH_SIZE,
        poll_interval: float = WORKER_POLL_INTERVAL,
        skip_superseded: bool = SKIP_SUPERSEDED_JOBS,
        stale_after: float = STALE_PROCESSING_SECONDS,
    ):
        """
        Args:
            queue: Job queue to claim from
            vector_store: Destination for chunks
            embedder: Embedding provider
            session_factory: Callable that returns a new DB session (article reads)
            chunker: Chunker (default TextChunker())
            batch_size: Max jobs per polling cycle
            poll_interval: Seconds between polling cycles
            skip_superseded: Complete a job without embedding when a newer one exists
            stale_after: Age in seconds after which a processing job is requeued
        """
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self.queue = queue
        self.vector_store = vector_store
        self.embedder = embedder
        self.session_factory = session_factory
        self.chunker = chunker or TextChunker()
        self.batch_size = batch_size
        self.poll_interval = poll_interval
        self.skip_superseded = skip_superseded
        self.stale_after = stale_after

        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None
        self._last_run: Optional[datetime] = None
        self._last_result: Optional[Dict[str, int]] = None

    # ------------------------------------------------------------------
    # One polling cycle
    # ------------------------------------------------------------------

    def run_once(self) -> Dict[str, int]:
        """Process one batch of pending jobs. Returns counts by outcome."""
        result = {"claimed": 0, "completed": 0, "failed": 0, "retried": 0, "requeued_stale": 0}

        result["requeued_stale"] = self.queue.requeue_stale(self.stale_after)

        job_ids = self.queue.fetch_pending(self.batch_size)
        if job_ids:
            logger.info(f"[worker] Found {len(job_ids)} pending jobs")

        for job_id in job_ids:
            try:
                status = self.process_job(job_id)
            except Exception as e:
                # Recording the outcome itself failed; the job stays put for requeue_stale
                logger.error(f"[worker] Could not record outcome of job {job_id}: {e}")
                continue

            if status is None:
                continue
            result["claimed"] += 1
            if status == JobStatus.COMPLETED:
                result["completed"] += 1
            elif status == JobStatus.FAILED:
                result["failed"] += 1
            elif status == JobStatus.PENDING:
                result["retried"] += 1

        self._last_run = datetime.now(timezone.utc)
        self._last_result = result
        if result["claimed"]:
            logger.info(
                f"[worker] Cycle done: {result['completed']} completed, "
                f"{result['failed']} failed, {result['retried']} retried"
            )
        return result

    def process_job(self, job_id: str) -> Optional[JobStatus]:
        """
        Claim and process a single job.

        Returns the job's resulting status, or None if another worker
        claimed it first.
        """
        if not self.queue.claim(job_id):
            return None

        try:
            job = self.queue.get(job_id)
            if job is None:
                raise StoreError(f"Job {job_id} disappeared after claim")
            return self._process_claimed(job)
        except RETRYABLE_ERRORS as e:
            logger.warning(f"[worker] Job {job_id} hit a retryable error: {e}")
            return self.queue.fail(job_id, _describe(e), retryable=True)
        except Exception as e:
            logger.error(f"[worker] Job {job_id} failed: {e}")
            return self.queue.fail(job_id, _describe(e), retryable=False)

    def _process_claimed(self, job: EmbeddingJob) -> JobStatus:
        if self.skip_superseded:
            newer_job_id = self.queue.find_newer_job(job)
            if newer_job_id:
                logger.info(f"[worker] Job {job.job_id} superseded by {newer_job_id}, skipping")
                self.queue.complete(job.job_id, chunks_written=0, superseded_by=newer_job_id)
                return JobStatus.COMPLETED

        article = self._load_article(job.article_id)
        if article is None:
            raise ArticleNotFoundError("Article not found")
        if not self._is_current(article, job):
            self.queue.complete(job.job_id, chunks_written=0)
            return JobStatus.COMPLETED

        texts = self.chunker.chunk(article_text(article))
        logger.debug(f"[worker] Article {article.article_id}: {len(texts)} chunks")
        vectors = self.embedder.embed(texts)

        chunks = [
            ChunkInput(index=i, text=text, embedding=vector)
            for i, (text, vector) in enumerate(zip(texts, vectors))
        ]
        try:
            # The article may have changed while the embedding call was in flight
            written = self.vector_store.upsert_chunks(
                job.article_id,
                job.organization_id,
                chunks,
                metadata=chunk_metadata(article),
                revision=job.content_hash,
            )
        except StaleRevisionError as e:
            if self._load_article(job.article_id) is None:
                raise ArticleNotFoundError("Article not found") from e
            logger.info(f"[worker] Job {job.job_id} dropped its chunks: {e}")
            self.queue.complete(job.job_id, chunks_written=0)
            return JobStatus.COMPLETED

        self.queue.complete(job.job_id, chunks_written=written)
        logger.info(f"[worker] Job {job.job_id} completed: {written} chunks for article {job.article_id}")
        return JobStatus.COMPLETED

    def _is_current(self, article: KnowledgeArticle, job: EmbeddingJob) -> bool:
        """False when the article was unpublished or edited after this job was enqueued."""
        if not article.is_published:
            logger.info(f"[worker] Article {article.article_id} unpublished, job {job.job_id} writes nothing")
            return False
        if article.content_hash != job.content_hash:
            logger.info(f"[worker] Article {article.article_id} changed since job {job.job_id}, writes nothing")
            return False
        return True

    def _load_article(self, article_id: str) -> Optional[KnowledgeArticle]:
        db = self.session_factory()
        try:
            return db.query(KnowledgeArticle).filter(KnowledgeArticle.article_id == article_id).first()
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to read article {article_id}: {e}") from e
        finally:
            db.close()

    # ------------------------------------------------------------------
    # Long-running loop
    # ------------------------------------------------------------------

    async def start(self):
        """Start the polling loop as a background task."""
        if self._running:
            logger.warning("[worker] Worker already running")
            return

        self._running = True
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run_loop())
        logger.info(
            f"[worker] Started (batch_size={self.batch_size}, poll_interval={self.poll_interval}s)"
        )

    async def stop(self):
        """Stop polling. The batch in progress finishes first."""
        if not self._running:
            return
        self._running = False
        self._stop_event.set()
        if self._task:
            await self._task
            self._task = None
        logger.info("[worker] Stopped")

    async def wait(self):
        """Block until the loop exits (used by the standalone worker script)."""
        if self._task:
            await self._task

    async def _run_loop(self):
        while self._running:
            try:
                await asyncio.to_thread(self.run_once)
            except Exception as e:
                logger.error(f"[worker] Polling cycle failed: {e}")

            if not self._running:
                break
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                pass

    def get_status(self) -> Dict[str, Any]:
        return {
            "running": self._running,
            "batch_size": self.batch_size,
            "poll_interval": self.poll_interval,
            "last_run": self._last_run.isoformat() if self._last_run else None,
            "last_result": self._last_result,
        }


def _describe(exc: Exception) -> str:
    message = str(exc)
    return message if message else type(exc).__name__
