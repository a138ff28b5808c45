# FILE: kbcore/embeddings/provider.py
"""
Embedding provider.

embed(texts) -> vectors, order-preserving and same length in/out. One logical
call is split into batches of at most batch_size texts. Each batch is retried
with exponential backoff on TransientProviderError; PermanentProviderError
propagates immediately.
"""

import logging
import time
from typing import Any, Callable, List, Optional, Sequence

import openai

from kbcore.config import (
    EMBEDDING_MODEL,
    EMBEDDING_BATCH_SIZE,
    EMBEDDING_MAX_RETRIES,
    EMBEDDING_INITIAL_BACKOFF,
    EMBEDDING_MAX_BACKOFF,
)
from kbcore.errors import PermanentProviderError, TransientProviderError
from kbcore.llm.clients import classify_openai_error

logger = logging.getLogger(__name__)

Vector = List[float]


class EmbeddingProvider:
    """
    Base provider: batching, retry and output validation.

    Subclasses implement _embed_batch() for a single request.
    """

    def __init__(
        self,
        batch_size: int = EMBEDDING_BATCH_SIZE,
        max_retries: int = EMBEDDING_MAX_RETRIES,
        initial_backoff: float = EMBEDDING_INITIAL_BACKOFF,
        max_backoff: float = EMBEDDING_MAX_BACKOFF,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Args:
            batch_size: Max texts per underlying request
            max_retries: Attempts per batch before a transient failure propagates
            initial_backoff: Seconds before the first retry (doubles each retry)
            max_backoff: Backoff ceiling in seconds
            sleep: Sleep function (injectable for tests)
        """
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        if max_retries < 1:
            raise ValueError("max_retries must be >= 1")
        self.batch_size = batch_size
        self.max_retries = max_retries
        self.initial_backoff = initial_backoff
        self.max_backoff = max_backoff
        self._sleep = sleep

        # Set after first successful call
        self.embedding_dim: Optional[int] = None

    def embed(self, texts: Sequence[str]) -> List[Vector]:
        """Embed texts; result[i] is the vector for texts[i]."""
        texts = list(texts)
        if not texts:
            return []

        vectors: List[Vector] = []
        for start in range(0, len(texts), self.batch_size):
            batch = texts[start:start + self.batch_size]
            vectors.extend(self._embed_batch_with_retry(batch))

        if self.embedding_dim is None and vectors:
            self.embedding_dim = len(vectors[0])
        return vectors

    def embed_one(self, text: str) -> Vector:
        return self.embed([text])[0]

    def _embed_batch_with_retry(self, batch: List[str]) -> List[Vector]:
        backoff = self.initial_backoff
        last_error: Optional[TransientProviderError] = None

        for attempt in range(1, self.max_retries + 1):
            try:
                vectors = self._embed_batch(batch)
            except TransientProviderError as e:
                last_error = e
                if attempt == self.max_retries:
                    break
                logger.warning(
                    f"[embeddings] Transient failure on attempt {attempt}/{self.max_retries}, "
                    f"backing off {backoff:.2f}s: {e}"
                )
                self._sleep(backoff)
                backoff = min(backoff * 2, self.max_backoff)
                continue

            self._validate(batch, vectors)
            return vectors

        logger.error(f"[embeddings] Giving up after {self.max_retries} attempts: {last_error}")
        raise TransientProviderError(
            f"Embedding failed after {self.max_retries} attempts: {last_error}"
        )

    def _validate(self, batch: List[str], vectors: List[Vector]):
        if len(vectors) != len(batch):
            raise PermanentProviderError(
                f"Provider returned {len(vectors)} vectors for {len(batch)} texts"
            )
        dims = {len(v) for v in vectors}
        if len(dims) > 1 or 0 in dims:
            raise PermanentProviderError(f"Provider returned inconsistent vector sizes: {sorted(dims)}")
        if self.embedding_dim is not None and dims and dims != {self.embedding_dim}:
            raise PermanentProviderError(
                f"Vector size changed from {self.embedding_dim} to {dims.pop()}"
            )

    def _embed_batch(self, batch: List[str]) -> List[Vector]:
        raise NotImplementedError


class OpenAIEmbeddingProvider(EmbeddingProvider):
    """Embeddings via the OpenAI embeddings endpoint."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = EMBEDDING_MODEL,
        timeout: float = 60.0,
        client: Optional[Any] = None,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.model = model
        self._api_key = api_key
        self._timeout = timeout
        self._client = client

    @property
    def client(self):
        if self._client is None:
            if not self._api_key:
                raise PermanentProviderError("No API key configured for embeddings")
            # SDK-level retries off: retry policy lives in _embed_batch_with_retry
            self._client = openai.OpenAI(api_key=self._api_key, timeout=self._timeout, max_retries=0)
        return self._client

    def _embed_batch(self, batch: List[str]) -> List[Vector]:
        for text in batch:
            if not text or not text.strip():
                raise PermanentProviderError("Cannot embed empty text")

        try:
            response = self.client.embeddings.create(model=self.model, input=batch)
        except openai.OpenAIError as e:
            raise classify_openai_error(e) from e

        # The API echoes each input's position; don't rely on response order
        items = sorted(response.data, key=lambda item: item.index)
        return [list(item.embedding) for item in items]

    def get_info(self):
        return {
            "model": self.model,
            "batch_size": self.batch_size,
            "embedding_dim": self.embedding_dim,
            "has_api_key": self._api_key is not None or self._client is not None,
        }
