# FILE: kbcore/retrieval.py
"""
Retriever: query text -> tenant-scoped ranked chunks.
"""

import logging
from typing import List, Optional

from kbcore.config import SIMILARITY_THRESHOLD, DEFAULT_TOP_K, MAX_TOP_K
from kbcore.embeddings import EmbeddingProvider
from kbcore.errors import ValidationError
from kbcore.schemas import SearchResult
from kbcore.vector_store import VectorStore

logger = logging.getLogger(__name__)


class Retriever:
    """Embeds a query and runs a similarity search for one organization."""

    def __init__(
        self,
        embedder: EmbeddingProvider,
        vector_store: VectorStore,
        default_threshold: float = SIMILARITY_THRESHOLD,
        default_top_k: int = DEFAULT_TOP_K,
        max_top_k: int = MAX_TOP_K,
    ):
        self.embedder = embedder
        self.vector_store = vector_store
        self.default_threshold = default_threshold
        self.default_top_k = default_top_k
        self.max_top_k = max_top_k

    def search(
        self,
        organization_id: str,
        query_text: str,
        threshold: Optional[float] = None,
        top_k: Optional[int] = None,
    ) -> List[SearchResult]:
        """
        Top-K chunks of organization_id with similarity >= threshold.

        An empty list means nothing relevant was found; it is not an error.

        Raises:
            ValidationError: empty query/organization or out-of-range bounds
                (raised before the embedding call)
        """
        if not organization_id:
            raise ValidationError("organization_id is required")
        if not query_text or not query_text.strip():
            raise ValidationError("Query must not be empty")

        threshold = self.default_threshold if threshold is None else threshold
        top_k = self.default_top_k if top_k is None else top_k
        if not 0.0 <= threshold <= 1.0:
            raise ValidationError("threshold must be within [0, 1]")
        if top_k < 1:
            raise ValidationError("top_k must be >= 1")
        if top_k > self.max_top_k:
            logger.debug(f"[retriever] top_k {top_k} capped at {self.max_top_k}")
            top_k = self.max_top_k

        logger.debug(f"[retriever] org={organization_id} query={query_text[:50]!r}")
        query_embedding = self.embedder.embed_one(query_text.strip())

        results = self.vector_store.similarity_search(
            organization_id,
            query_embedding,
            threshold=threshold,
            top_k=top_k,
        )
        logger.info(
            f"[retriever] org={organization_id}: {len(results)} results "
            f"(threshold={threshold}, top_k={top_k})"
        )
        return results
