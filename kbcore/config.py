# FILE: kbcore/config.py
"""
Knowledge-base core configuration.

All tunables in one place for easy adjustment. Values come from the
environment (a .env file is loaded by main.py and the scripts before this
module is imported) and are gathered into KnowledgeBaseSettings, which is
what the components are constructed with.
"""

import os
from dataclasses import dataclass, field, replace
from typing import Optional

# ============================================================================
# DATABASE
# ============================================================================

DATABASE_URL: str = os.getenv("KB_DATABASE_URL", "sqlite:///./data/kb.db")

# ============================================================================
# EMBEDDINGS
# ============================================================================

EMBEDDING_MODEL: str = os.getenv("KB_EMBEDDING_MODEL", "text-embedding-3-small")
EMBEDDING_BATCH_SIZE: int = int(os.getenv("KB_EMBEDDING_BATCH_SIZE", "100"))
EMBEDDING_MAX_RETRIES: int = int(os.getenv("KB_EMBEDDING_MAX_RETRIES", "4"))
EMBEDDING_INITIAL_BACKOFF: float = float(os.getenv("KB_EMBEDDING_BACKOFF", "0.5"))  # seconds
EMBEDDING_MAX_BACKOFF: float = 8.0  # seconds

# ============================================================================
# LANGUAGE MODEL
# ============================================================================

CHAT_MODEL: str = os.getenv("KB_CHAT_MODEL", "gpt-4o-mini")
CHAT_TEMPERATURE: float = float(os.getenv("KB_CHAT_TEMPERATURE", "0.3"))
CHAT_MAX_TOKENS: int = int(os.getenv("KB_CHAT_MAX_TOKENS", "500"))

# ============================================================================
# CHUNKING
# ============================================================================

# Rough estimate used throughout: 1 token ~ 4 chars
CHUNK_TOKENS: int = int(os.getenv("KB_CHUNK_TOKENS", "400"))
CHARS_PER_TOKEN: int = 4

# ============================================================================
# RETRIEVAL
# ============================================================================

SIMILARITY_THRESHOLD: float = float(os.getenv("KB_SIMILARITY_THRESHOLD", "0.5"))
DEFAULT_TOP_K: int = int(os.getenv("KB_TOP_K", "5"))
MAX_TOP_K: int = int(os.getenv("KB_MAX_TOP_K", "50"))
CONTEXT_TOKENS: int = int(os.getenv("KB_CONTEXT_TOKENS", "3000"))

# ============================================================================
# WORKER
# ============================================================================

WORKER_BATCH_SIZE: int = int(os.getenv("KB_WORKER_BATCH_SIZE", "10"))
WORKER_POLL_INTERVAL: float = float(os.getenv("KB_WORKER_POLL_INTERVAL", "30"))  # seconds
WORKER_ENABLED: bool = os.getenv("KB_WORKER_ENABLED", "true").lower() in {"1", "true", "yes"}
JOB_MAX_ATTEMPTS: int = int(os.getenv("KB_JOB_MAX_ATTEMPTS", "3"))
JOB_RETRY_BACKOFF: float = float(os.getenv("KB_JOB_RETRY_BACKOFF", "60"))  # seconds
SKIP_SUPERSEDED_JOBS: bool = os.getenv("KB_SKIP_SUPERSEDED", "true").lower() in {"1", "true", "yes"}

# Jobs left in processing longer than this are assumed to belong to a crashed worker
STALE_PROCESSING_SECONDS: float = 1800.0


def _api_key(specific_var: str) -> Optional[str]:
    return os.getenv(specific_var) or os.getenv("OPENAI_API_KEY")


@dataclass
class KnowledgeBaseSettings:
    """Settings handed to every component. Build with from_env() or directly in tests."""
    database_url: str = DATABASE_URL

    embedding_model: str = EMBEDDING_MODEL
    embedding_api_key: Optional[str] = None
    embedding_batch_size: int = EMBEDDING_BATCH_SIZE
    embedding_max_retries: int = EMBEDDING_MAX_RETRIES
    embedding_initial_backoff: float = EMBEDDING_INITIAL_BACKOFF
    embedding_max_backoff: float = EMBEDDING_MAX_BACKOFF

    chat_model: str = CHAT_MODEL
    chat_api_key: Optional[str] = None
    chat_temperature: float = CHAT_TEMPERATURE
    chat_max_tokens: int = CHAT_MAX_TOKENS

    chunk_tokens: int = CHUNK_TOKENS

    similarity_threshold: float = SIMILARITY_THRESHOLD
    default_top_k: int = DEFAULT_TOP_K
    max_top_k: int = MAX_TOP_K
    context_tokens: int = CONTEXT_TOKENS

    worker_batch_size: int = WORKER_BATCH_SIZE
    worker_poll_interval: float = WORKER_POLL_INTERVAL
    worker_enabled: bool = WORKER_ENABLED
    job_max_attempts: int = JOB_MAX_ATTEMPTS
    job_retry_backoff: float = JOB_RETRY_BACKOFF
    skip_superseded_jobs: bool = SKIP_SUPERSEDED_JOBS
    stale_processing_seconds: float = field(default=STALE_PROCESSING_SECONDS)

    def __post_init__(self):
        if self.embedding_batch_size < 1:
            raise ValueError("embedding_batch_size must be >= 1")
        if self.embedding_max_retries < 1:
            raise ValueError("embedding_max_retries must be >= 1")
        if self.chunk_tokens < 1:
            raise ValueError("chunk_tokens must be >= 1")
        if not 0.0 <= self.similarity_threshold <= 1.0:
            raise ValueError("similarity_threshold must be within [0, 1]")
        if not 1 <= self.default_top_k <= self.max_top_k:
            raise ValueError("default_top_k must be within [1, max_top_k]")
        if self.worker_batch_size < 1:
            raise ValueError("worker_batch_size must be >= 1")
        if self.worker_poll_interval <= 0:
            raise ValueError("worker_poll_interval must be > 0")
        if self.job_max_attempts < 1:
            raise ValueError("job_max_attempts must be >= 1")

    @property
    def chunk_chars(self) -> int:
        return self.chunk_tokens * CHARS_PER_TOKEN

    @classmethod
    def from_env(cls) -> "KnowledgeBaseSettings":
        return cls(
            embedding_api_key=_api_key("KB_EMBEDDING_API_KEY"),
            chat_api_key=_api_key("KB_CHAT_API_KEY"),
        )

    def with_overrides(self, **changes) -> "KnowledgeBaseSettings":
        """Copy with the non-None `changes` applied. Validation runs again on the copy."""
        return replace(self, **{k: v for k, v in changes.items() if v is not None})
