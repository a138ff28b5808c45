# FILE: kbcore/jobs/__init__.py
"""
Embedding jobs.

- queue: EmbeddingJob state machine (enqueue / claim / complete / fail)
- worker: Polling worker that processes claimed jobs
"""

from .queue import JobQueue
from .worker import EmbeddingWorker

__all__ = [
    "JobQueue",
    "EmbeddingWorker",
]
