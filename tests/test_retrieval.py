# FILE: tests/test_retrieval.py
"""
Tests for kbcore/retrieval.py
Query validation, defaults and tenant-scoped search.
"""

from unittest.mock import MagicMock

import pytest

from kbcore.errors import ValidationError
from kbcore.retrieval import Retriever
from kbcore.vector_store import ChunkInput, VectorStore


@pytest.fixture
def store(session_factory):
    return VectorStore(session_factory)


@pytest.fixture
def retriever(embedder, store):
    return Retriever(embedder, store, default_threshold=0.5, default_top_k=2, max_top_k=3)


def _index(store, embedder, article_id, org, title, texts):
    vectors = embedder.embed(texts)
    store.upsert_chunks(
        article_id,
        org,
        [ChunkInput(i, t, v) for i, (t, v) in enumerate(zip(texts, vectors))],
        metadata={"title": title},
    )


class TestValidation:
    """Bad queries are rejected before the embedding call."""

    @pytest.mark.parametrize("query", ["", "   ", "\n\t", None])
    def test_empty_query(self, query):
        embedder = MagicMock()
        retriever = Retriever(embedder, MagicMock())

        with pytest.raises(ValidationError):
            retriever.search("org1", query)
        embedder.embed_one.assert_not_called()
        embedder.embed.assert_not_called()

    def test_missing_organization(self):
        embedder = MagicMock()
        with pytest.raises(ValidationError):
            Retriever(embedder, MagicMock()).search("", "reset password")
        embedder.embed_one.assert_not_called()

    @pytest.mark.parametrize("kwargs", [{"threshold": -0.1}, {"threshold": 1.1}, {"top_k": 0}])
    def test_bad_bounds(self, kwargs):
        embedder = MagicMock()
        with pytest.raises(ValidationError):
            Retriever(embedder, MagicMock()).search("org1", "reset password", **kwargs)
        embedder.embed_one.assert_not_called()


class TestSearch:
    """Defaults, caps and the similarity threshold."""

    def test_defaults_passed_to_store(self):
        embedder = MagicMock()
        embedder.embed_one.return_value = [1.0, 0.0]
        store = MagicMock()
        store.similarity_search.return_value = []

        Retriever(embedder, store, default_threshold=0.42, default_top_k=4).search("org1", "  query  ")

        embedder.embed_one.assert_called_once_with("query")
        store.similarity_search.assert_called_once_with("org1", [1.0, 0.0], threshold=0.42, top_k=4)

    def test_top_k_capped(self):
        embedder = MagicMock()
        embedder.embed_one.return_value = [1.0]
        store = MagicMock()
        store.similarity_search.return_value = []

        Retriever(embedder, store, max_top_k=10).search("org1", "query", top_k=500)

        assert store.similarity_search.call_args.kwargs["top_k"] == 10

    def test_finds_relevant_chunk(self, retriever, store, embedder):
        _index(store, embedder, "a1", "org1", "Password reset",
               ["Password reset\n\nReset your password by clicking Forgot Password on the login page."])
        _index(store, embedder, "a2", "org1", "Billing cycle",
               ["Billing cycle\n\nInvoices are sent on the first day of each month."])

        results = retriever.search("org1", "how do I reset my password")

        assert [r.article_id for r in results] == ["a1"]
        assert results[0].article_title == "Password reset"
        assert results[0].similarity >= 0.5

    def test_unrelated_query_returns_empty(self, retriever, store, embedder):
        _index(store, embedder, "a1", "org1", "Password reset", ["Reset your password on the login page."])

        assert retriever.search("org1", "shipping times for orders") == []

    def test_threshold_override(self, retriever, store, embedder):
        _index(store, embedder, "a1", "org1", "Password reset", ["Reset your password on the login page."])

        assert retriever.search("org1", "reset", threshold=0.0, top_k=5)
        assert retriever.search("org1", "reset", threshold=1.0, top_k=5) == []

    def test_other_tenant_never_returned(self, retriever, store, embedder):
        _index(store, embedder, "b1", "org2", "Password reset", ["Reset your password on the login page."])

        assert retriever.search("org1", "reset password", threshold=0.0, top_k=3) == []
        assert [r.article_id for r in retriever.search("org2", "reset password")] == ["b1"]
