"""Chunking module for article text."""

from .chunker import TextChunker, chunk_text

__all__ = ["TextChunker", "chunk_text"]
