# FILE: kbcore/errors.py
"""
Knowledge-base error taxonomy.

ValidationError       - bad input, rejected before any external call, never retried
EmbeddingFailure      - provider call failed
  TransientProviderError  - rate limit / timeout / 5xx, retried with backoff
  PermanentProviderError  - bad credentials / malformed input, surfaced immediately
StoreError            - read/write failure against the vector store or job table
ArticleNotFoundError  - a job points at an article that no longer exists
StaleRevisionError    - chunks computed for an article revision that was since edited or unpublished
"""


class KnowledgeBaseError(Exception):
    """Base class for knowledge-base errors."""


class ValidationError(KnowledgeBaseError):
    """Input rejected before any provider or store call."""


class EmbeddingFailure(KnowledgeBaseError):
    """Base class for model provider failures."""


class TransientProviderError(EmbeddingFailure):
    """Rate limit, timeout or server error. Safe to retry."""


class PermanentProviderError(EmbeddingFailure):
    """Authentication failure or malformed request. Retrying will not help."""


class StoreError(KnowledgeBaseError):
    """Vector store or job table operation failed."""


class ArticleNotFoundError(KnowledgeBaseError):
    """The article a job refers to no longer exists."""


class StaleRevisionError(KnowledgeBaseError):
    """Chunks were computed for an article revision that is no longer current."""


# Failures the worker may retry at the job level
RETRYABLE_ERRORS = (TransientProviderError, StoreError)
