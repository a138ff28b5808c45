"""
Embedding providers.
Text -> fixed-length vector, batched, with transient-failure retry.
"""

from .provider import EmbeddingProvider, OpenAIEmbeddingProvider, Vector

__all__ = ["EmbeddingProvider", "OpenAIEmbeddingProvider", "Vector"]
