# FILE: tests/conftest.py
"""
Pytest configuration for the knowledge-base test suite.

Configures:
- pytest-asyncio for async test support
- In-memory SQLite databases (StaticPool) with all tables created
- KeywordEmbedder: deterministic embedding double (hashed bag of keywords)
- A MagicMock chat model
"""
import hashlib
import re
import sys
from pathlib import Path
from typing import List
from unittest.mock import MagicMock

_project_root = Path(__file__).parent.parent
if str(_project_root) not in sys.path:
    sys.path.insert(0, str(_project_root))

import pytest

from kbcore.config import KnowledgeBaseSettings
from kbcore.db import init_db, make_engine, make_session_factory
from kbcore.embeddings import EmbeddingProvider
from kbcore.schemas import ArticleIn
from kbcore.service import KnowledgeBase

# Configure pytest-asyncio
pytest_plugins = ["pytest_asyncio"]


STOPWORDS = {
    "a", "an", "and", "are", "by", "can", "do", "does", "for", "how", "i", "in",
    "is", "it", "my", "of", "on", "or", "the", "to", "what", "with", "you", "your",
}


class KeywordEmbedder(EmbeddingProvider):
    """
    Each non-stopword token adds 1.0 to the bucket md5(token) % dim.

    Texts sharing keywords get a high cosine similarity, texts sharing none
    get 0.0. Records every batch it is asked to embed.
    """

    def __init__(self, dim: int = 2048, **kwargs):
        kwargs.setdefault("sleep", lambda seconds: None)
        super().__init__(**kwargs)
        self.dim = dim
        self.batches: List[List[str]] = []

    def _embed_batch(self, batch: List[str]) -> List[List[float]]:
        self.batches.append(list(batch))
        return [self._vector(text) for text in batch]

    def _vector(self, text: str) -> List[float]:
        vector = [0.0] * self.dim
        for token in re.findall(r"[a-z0-9]+", text.lower()):
            if token in STOPWORDS:
                continue
            bucket = int(hashlib.md5(token.encode("utf-8")).hexdigest(), 16) % self.dim
            vector[bucket] += 1.0
        return vector


@pytest.fixture
def engine():
    engine = make_engine("sqlite://")
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def file_session_factory(tmp_path):
    """File-backed SQLite, for tests that touch the database from several threads."""
    engine = make_engine(f"sqlite:///{tmp_path / 'kb.db'}")
    init_db(bind=engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture
def embedder():
    return KeywordEmbedder()


@pytest.fixture
def chat_model():
    model = MagicMock()
    model.model = "test-chat-model"
    model.complete.return_value = (
        "Click Forgot Password on the login page to reset it.\n\n"
        "Related Articles:\n- Password reset"
    )
    return model


@pytest.fixture
def settings():
    return KnowledgeBaseSettings(
        worker_poll_interval=0.05,
        job_retry_backoff=0,
    )


@pytest.fixture
def kb(session_factory, embedder, chat_model, settings):
    return KnowledgeBase(session_factory, embedder, chat_model, settings=settings)


@pytest.fixture
def make_article():
    """Factory for ArticleIn with password-reset defaults."""
    def _make(**overrides):
        fields = {
            "article_id": "a1",
            "organization_id": "org1",
            "title": "Password reset",
            "content": "Reset your password by clicking Forgot Password on the login page.",
            "category": "account",
            "is_published": True,
        }
        fields.update(overrides)
        return ArticleIn(**fields)
    return _make
