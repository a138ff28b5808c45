# FILE: kbcore/service.py
"""
KnowledgeBase: the boundary operations the surrounding application calls.

    ingest(article)             -> EmbeddingJob (non-blocking)
    delete(article_id)          -> chunks removed (synchronous)
    search(org, query, ...)     -> List[SearchResult]
    answer(org, query)          -> Answer

Every collaborator is passed in. build_knowledge_base() wires the production
ones from KnowledgeBaseSettings.
"""

import logging
from typing import Callable, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from kbcore.answerer import AnswerSynthesizer
from kbcore.chunking import TextChunker
from kbcore.config import KnowledgeBaseSettings
from kbcore.db import init_db, make_engine, make_session_factory
from kbcore.embeddings import EmbeddingProvider, OpenAIEmbeddingProvider
from kbcore.ingestion import IngestionPipeline
from kbcore.jobs import EmbeddingWorker, JobQueue
from kbcore.llm import ChatModel
from kbcore.models import EmbeddingJob
from kbcore.retrieval import Retriever
from kbcore.schemas import Answer, ArticleIn, SearchResult
from kbcore.vector_store import VectorStore

logger = logging.getLogger(__name__)


class KnowledgeBase:
    """Facade over ingestion, retrieval and answering for all tenants."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        embedder: EmbeddingProvider,
        chat_model: ChatModel,
        settings: Optional[KnowledgeBaseSettings] = None,
    ):
        self.settings = settings or KnowledgeBaseSettings()
        self.session_factory = session_factory
        self.embedder = embedder
        self.chat_model = chat_model

        self.vector_store = VectorStore(session_factory)
        self.queue = JobQueue(
            session_factory,
            max_attempts=self.settings.job_max_attempts,
            retry_backoff=self.settings.job_retry_backoff,
        )
        self.pipeline = IngestionPipeline(session_factory, self.queue, self.vector_store)
        self.retriever = Retriever(
            embedder,
            self.vector_store,
            default_threshold=self.settings.similarity_threshold,
            default_top_k=self.settings.default_top_k,
            max_top_k=self.settings.max_top_k,
        )
        self.synthesizer = AnswerSynthesizer(chat_model, context_tokens=self.settings.context_tokens)

    def build_worker(self) -> EmbeddingWorker:
        """A worker sharing this knowledge base's store, queue and embedder."""
        return EmbeddingWorker(
            self.queue,
            self.vector_store,
            self.embedder,
            self.session_factory,
            chunker=TextChunker(self.settings.chunk_tokens),
            batch_size=self.settings.worker_batch_size,
            poll_interval=self.settings.worker_poll_interval,
            skip_superseded=self.settings.skip_superseded_jobs,
            stale_after=self.settings.stale_processing_seconds,
        )

    # ------------------------------------------------------------------
    # Boundary operations
    # ------------------------------------------------------------------

    def ingest(self, article: ArticleIn) -> EmbeddingJob:
        return self.pipeline.ingest(article)

    def delete(self, article_id: str, keep_record: bool = False) -> int:
        return self.pipeline.unpublish_or_delete(article_id, keep_record=keep_record)

    def search(
        self,
        organization_id: str,
        query: str,
        top_k: Optional[int] = None,
        threshold: Optional[float] = None,
    ) -> List[SearchResult]:
        return self.retriever.search(organization_id, query, threshold=threshold, top_k=top_k)

    def answer(self, organization_id: str, query: str) -> Answer:
        return self.search_and_answer(organization_id, query)[1]

    def search_and_answer(self, organization_id: str, query: str) -> Tuple[List[SearchResult], Answer]:
        """Default-bounds search followed by synthesis; returns both."""
        results = self.retriever.search(organization_id, query)
        return results, self.synthesizer.answer(query, results)

    # ------------------------------------------------------------------
    # Job inspection / maintenance
    # ------------------------------------------------------------------

    def get_job(self, job_id: str) -> Optional[EmbeddingJob]:
        return self.queue.get(job_id)

    def job_stats(self) -> Dict[str, int]:
        return self.queue.stats()

    def backfill(self, organization_id: Optional[str] = None) -> List[EmbeddingJob]:
        return self.pipeline.backfill(organization_id)


def build_knowledge_base(
    settings: Optional[KnowledgeBaseSettings] = None,
    session_factory: Optional[Callable[[], Session]] = None,
) -> KnowledgeBase:
    """Wire a KnowledgeBase with the OpenAI-backed embedder and chat model."""
    settings = settings or KnowledgeBaseSettings.from_env()
    if session_factory is None:
        engine = make_engine(settings.database_url)
        init_db(bind=engine)
        session_factory = make_session_factory(engine)

    embedder = OpenAIEmbeddingProvider(
        api_key=settings.embedding_api_key,
        model=settings.embedding_model,
        batch_size=settings.embedding_batch_size,
        max_retries=settings.embedding_max_retries,
        initial_backoff=settings.embedding_initial_backoff,
        max_backoff=settings.embedding_max_backoff,
    )
    chat_model = ChatModel(
        api_key=settings.chat_api_key,
        model=settings.chat_model,
        temperature=settings.chat_temperature,
        max_tokens=settings.chat_max_tokens,
    )
    logger.info(
        f"[kb] Knowledge base ready (embedding={settings.embedding_model}, chat={settings.chat_model})"
    )
    return KnowledgeBase(session_factory, embedder, chat_model, settings=settings)
