"""
Knowledge-base retrieval core for a multi-tenant support platform.

Turns knowledge articles into tenant-scoped vector chunks, serves semantic
search over them, and produces grounded answers from the retrieved passages.

Core API (kbcore.service.KnowledgeBase):
    ingest(article) -> EmbeddingJob
    delete(article_id) -> chunks removed
    search(organization_id, query, top_k?, threshold?) -> List[SearchResult]
    answer(organization_id, query) -> Answer

HTTP API (kbcore.router):
    POST   /kb/articles
    DELETE /kb/articles/{article_id}
    POST   /kb/search
    POST   /kb/answer
    GET    /kb/jobs/{job_id}
    GET    /kb/status
    POST   /kb/backfill

Data Flow:
    article -> kb_articles + EmbeddingJob(pending) -> worker -> chunker
    -> embedding provider -> kb_chunks (atomic replace per article)
"""

__version__ = "0.1.0"
