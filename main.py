# FILE: main.py
"""
Knowledge Base Backend - FastAPI Application

Features:
- Article ingestion with asynchronous embedding (job queue + worker)
- Tenant-scoped semantic search
- Grounded answers with a fixed fallback when nothing relevant is found

The embedding worker runs inside this process when KB_WORKER_ENABLED=true.
Additional workers can run separately via scripts/run_embedding_worker.py.
"""
import logging
import os

from fastapi import FastAPI
from dotenv import load_dotenv

# Load .env FIRST before any other imports that might need env vars
load_dotenv()

from kbcore.config import KnowledgeBaseSettings
from kbcore.db import init_db, make_engine, make_session_factory
from kbcore.router import router as kb_router
from kbcore.service import build_knowledge_base

logging.basicConfig(
    level=os.getenv("KB_LOG_LEVEL", "INFO"),
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Knowledge Base",
    version="0.1.0",
    description="Multi-tenant knowledge-base ingestion, semantic search and grounded answers",
)


# ====== STARTUP ======

@app.on_event("startup")
async def on_startup():
    settings = KnowledgeBaseSettings.from_env()
    engine = make_engine(settings.database_url)
    init_db(bind=engine)

    logger.info("[startup] Checking environment variables...")
    if settings.embedding_api_key:
        logger.info("[startup] Embedding API key: [OK] set")
    else:
        logger.warning("[startup] Embedding API key: [X] NOT SET - ingestion jobs and search will fail")
    if settings.chat_api_key:
        logger.info("[startup] Chat API key: [OK] set")
    else:
        logger.warning("[startup] Chat API key: [X] NOT SET - answers will fail")

    kb = build_knowledge_base(settings, session_factory=make_session_factory(engine))
    app.state.knowledge_base = kb
    app.state.worker = None

    if settings.worker_enabled:
        worker = kb.build_worker()
        await worker.start()
        app.state.worker = worker
        logger.info("[startup] Embedding worker: [OK] running in-process")
    else:
        logger.info("[startup] Embedding worker: [X] DISABLED (KB_WORKER_ENABLED=false)")


@app.on_event("shutdown")
async def on_shutdown():
    worker = getattr(app.state, "worker", None)
    if worker is not None:
        await worker.stop()


# ====== ROUTERS ======

app.include_router(kb_router)


@app.get("/health")
def health():
    worker = getattr(app.state, "worker", None)
    return {
        "status": "ok",
        "worker": worker.get_status() if worker is not None else None,
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="127.0.0.1", port=int(os.getenv("PORT", "8000")))
