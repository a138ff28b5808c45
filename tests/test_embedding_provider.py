# FILE: tests/test_embedding_provider.py
"""
Tests for kbcore/embeddings/provider.py and the OpenAI error mapping in
kbcore/llm/clients.py.
"""

from typing import List
from unittest.mock import MagicMock

import httpx
import openai
import pytest

from kbcore.embeddings import EmbeddingProvider, OpenAIEmbeddingProvider
from kbcore.errors import PermanentProviderError, TransientProviderError
from kbcore.llm import classify_openai_error

_REQUEST = httpx.Request("POST", "https://api.openai.com/v1/embeddings")


def _status_error(cls, status_code: int):
    return cls(
        f"HTTP {status_code}",
        response=httpx.Response(status_code, request=_REQUEST),
        body=None,
    )


def _embedding_response(vectors, reverse=False):
    items = [MagicMock(index=i, embedding=v) for i, v in enumerate(vectors)]
    if reverse:
        items = list(reversed(items))
    return MagicMock(data=items)


class ScriptedProvider(EmbeddingProvider):
    """Returns [len(text), position] vectors; raises the scripted errors first."""

    def __init__(self, errors=None, **kwargs):
        self.sleeps: List[float] = []
        kwargs.setdefault("sleep", self.sleeps.append)
        super().__init__(**kwargs)
        self.errors = list(errors or [])
        self.calls: List[List[str]] = []

    def _embed_batch(self, batch):
        self.calls.append(list(batch))
        if self.errors:
            raise self.errors.pop(0)
        return [[float(len(text)), float(i)] for i, text in enumerate(batch)]


class TestBatching:
    """embed() splits input into provider-sized batches."""

    def test_order_and_length_preserved(self):
        provider = ScriptedProvider(batch_size=2)
        texts = ["a", "bbb", "cc", "dddd", "e"]

        vectors = provider.embed(texts)

        assert len(vectors) == len(texts)
        assert [v[0] for v in vectors] == [1.0, 3.0, 2.0, 4.0, 1.0]
        assert provider.calls == [["a", "bbb"], ["cc", "dddd"], ["e"]]

    def test_empty_input_makes_no_call(self):
        provider = ScriptedProvider()
        assert provider.embed([]) == []
        assert provider.calls == []

    def test_embed_one(self):
        provider = ScriptedProvider()
        assert provider.embed_one("hello") == [5.0, 0.0]

    def test_embedding_dim_recorded(self):
        provider = ScriptedProvider()
        assert provider.embedding_dim is None
        provider.embed(["x"])
        assert provider.embedding_dim == 2


class TestRetry:
    """Transient errors are retried with exponential backoff."""

    def test_transient_then_success(self):
        provider = ScriptedProvider(
            errors=[TransientProviderError("429"), TransientProviderError("timeout")],
            max_retries=4,
            initial_backoff=0.5,
        )

        vectors = provider.embed(["abc"])

        assert vectors == [[3.0, 0.0]]
        assert len(provider.calls) == 3
        assert provider.sleeps == [0.5, 1.0]

    def test_backoff_capped(self):
        provider = ScriptedProvider(
            errors=[TransientProviderError("x")] * 4,
            max_retries=5,
            initial_backoff=1.0,
            max_backoff=3.0,
        )
        provider.embed(["abc"])
        assert provider.sleeps == [1.0, 2.0, 3.0, 3.0]

    def test_transient_exhausted(self):
        provider = ScriptedProvider(
            errors=[TransientProviderError("429")] * 3,
            max_retries=3,
        )

        with pytest.raises(TransientProviderError, match="after 3 attempts"):
            provider.embed(["abc"])
        assert len(provider.calls) == 3
        assert len(provider.sleeps) == 2

    def test_permanent_not_retried(self):
        provider = ScriptedProvider(errors=[PermanentProviderError("bad key")], max_retries=5)

        with pytest.raises(PermanentProviderError):
            provider.embed(["abc"])
        assert len(provider.calls) == 1
        assert provider.sleeps == []


class TestValidation:
    """Provider output is checked before it is returned."""

    def test_count_mismatch(self):
        provider = ScriptedProvider()
        provider._embed_batch = lambda batch: [[1.0]]
        with pytest.raises(PermanentProviderError):
            provider.embed(["a", "b"])

    def test_dimension_change(self):
        provider = ScriptedProvider()
        provider.embed(["a"])
        provider._embed_batch = lambda batch: [[1.0, 2.0, 3.0]]
        with pytest.raises(PermanentProviderError):
            provider.embed(["b"])

    def test_invalid_settings(self):
        with pytest.raises(ValueError):
            ScriptedProvider(batch_size=0)
        with pytest.raises(ValueError):
            ScriptedProvider(max_retries=0)


class TestOpenAIEmbeddingProvider:
    """OpenAI-backed provider with a mocked SDK client."""

    def test_calls_embeddings_endpoint(self):
        client = MagicMock()
        client.embeddings.create.return_value = _embedding_response([[0.1, 0.2], [0.3, 0.4]])
        provider = OpenAIEmbeddingProvider(client=client, model="text-embedding-3-small")

        vectors = provider.embed(["first", "second"])

        assert vectors == [[0.1, 0.2], [0.3, 0.4]]
        client.embeddings.create.assert_called_once_with(
            model="text-embedding-3-small", input=["first", "second"]
        )

    def test_reorders_by_index(self):
        client = MagicMock()
        client.embeddings.create.return_value = _embedding_response(
            [[1.0, 0.0], [0.0, 1.0]], reverse=True
        )
        provider = OpenAIEmbeddingProvider(client=client)

        assert provider.embed(["a", "b"]) == [[1.0, 0.0], [0.0, 1.0]]

    def test_batches_requests(self):
        client = MagicMock()
        client.embeddings.create.side_effect = lambda model, input: _embedding_response(
            [[float(len(t)), 1.0] for t in input]
        )
        provider = OpenAIEmbeddingProvider(client=client, batch_size=2)

        vectors = provider.embed(["a", "bb", "ccc"])

        assert [v[0] for v in vectors] == [1.0, 2.0, 3.0]
        assert client.embeddings.create.call_count == 2

    def test_rate_limit_retried(self):
        client = MagicMock()
        client.embeddings.create.side_effect = [
            _status_error(openai.RateLimitError, 429),
            _embedding_response([[1.0, 2.0]]),
        ]
        provider = OpenAIEmbeddingProvider(client=client, sleep=lambda s: None)

        assert provider.embed(["a"]) == [[1.0, 2.0]]
        assert client.embeddings.create.call_count == 2

    def test_auth_error_is_permanent(self):
        client = MagicMock()
        client.embeddings.create.side_effect = _status_error(openai.AuthenticationError, 401)
        provider = OpenAIEmbeddingProvider(client=client, sleep=lambda s: None)

        with pytest.raises(PermanentProviderError):
            provider.embed(["a"])
        assert client.embeddings.create.call_count == 1

    def test_empty_text_rejected_without_call(self):
        client = MagicMock()
        provider = OpenAIEmbeddingProvider(client=client)

        with pytest.raises(PermanentProviderError):
            provider.embed(["ok", "   "])
        client.embeddings.create.assert_not_called()

    def test_missing_api_key(self):
        provider = OpenAIEmbeddingProvider(api_key=None)
        with pytest.raises(PermanentProviderError, match="No API key"):
            provider.embed(["a"])

    def test_get_info(self):
        provider = OpenAIEmbeddingProvider(api_key="sk-test", model="m", batch_size=7)
        info = provider.get_info()
        assert info["model"] == "m"
        assert info["batch_size"] == 7
        assert info["has_api_key"] is True


class TestErrorClassification:
    """OpenAI SDK exceptions map onto transient/permanent."""

    @pytest.mark.parametrize("cls,status", [
        (openai.RateLimitError, 429),
        (openai.InternalServerError, 500),
        (openai.ConflictError, 409),
    ])
    def test_transient_status_errors(self, cls, status):
        assert isinstance(classify_openai_error(_status_error(cls, status)), TransientProviderError)

    @pytest.mark.parametrize("cls,status", [
        (openai.AuthenticationError, 401),
        (openai.PermissionDeniedError, 403),
        (openai.BadRequestError, 400),
        (openai.NotFoundError, 404),
        (openai.UnprocessableEntityError, 422),
    ])
    def test_permanent_status_errors(self, cls, status):
        assert isinstance(classify_openai_error(_status_error(cls, status)), PermanentProviderError)

    def test_connection_error_is_transient(self):
        error = openai.APIConnectionError(request=_REQUEST)
        assert isinstance(classify_openai_error(error), TransientProviderError)

    def test_timeout_is_transient(self):
        error = openai.APITimeoutError(request=_REQUEST)
        assert isinstance(classify_openai_error(error), TransientProviderError)

    def test_unlisted_5xx_is_transient(self):
        error = _status_error(openai.APIStatusError, 503)
        assert isinstance(classify_openai_error(error), TransientProviderError)

    def test_unlisted_4xx_is_permanent(self):
        error = _status_error(openai.APIStatusError, 418)
        assert isinstance(classify_openai_error(error), PermanentProviderError)

    def test_provider_errors_pass_through(self):
        error = TransientProviderError("already classified")
        assert classify_openai_error(error) is error
