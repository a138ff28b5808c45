# FILE: kbcore/chunking/chunker.py
"""
Article chunking.

Splits article text into passages no longer than the embedding target size.
Boundaries prefer paragraphs, then sentences, then words; text with no usable
boundary is hard-sliced by character count. The output depends only on the
input text and the size limit, so re-ingesting unchanged content yields the
same chunk boundaries.
"""

import re
from typing import List

from kbcore.config import CHUNK_TOKENS, CHARS_PER_TOKEN

_PARAGRAPH_SPLIT = re.compile(r"\n\s*\n")
_SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+")
_WHITESPACE = re.compile(r"\s+")


class TextChunker:
    """Paragraph/sentence-aware chunker with a character budget."""

    def __init__(self, chunk_tokens: int = CHUNK_TOKENS):
        if chunk_tokens < 1:
            raise ValueError("chunk_tokens must be >= 1")
        self.chunk_tokens = chunk_tokens
        # Rough token estimate: 1 token ~ 4 chars
        self.max_chars = chunk_tokens * CHARS_PER_TOKEN

    def chunk(self, text: str) -> List[str]:
        """
        Chunk text into an ordered list of non-empty passages.

        Empty or whitespace-only input returns [].
        """
        if not text or not text.strip():
            return []

        chunks: List[str] = []
        current = ""

        for paragraph in self._paragraphs(text):
            for position, piece in enumerate(self._split_paragraph(paragraph)):
                if not current:
                    current = piece
                    continue

                # Pieces of one paragraph join with a space, paragraphs with a blank line
                joiner = " " if position else "\n\n"
                if len(current) + len(joiner) + len(piece) <= self.max_chars:
                    current = f"{current}{joiner}{piece}"
                else:
                    chunks.append(current)
                    current = piece

        if current:
            chunks.append(current)

        return chunks

    def _paragraphs(self, text: str) -> List[str]:
        """Normalized paragraphs (inner whitespace collapsed, empties dropped)."""
        text = text.replace("\r\n", "\n").replace("\r", "\n")
        paragraphs = []
        for raw in _PARAGRAPH_SPLIT.split(text):
            para = _WHITESPACE.sub(" ", raw).strip()
            if para:
                paragraphs.append(para)
        return paragraphs

    def _split_paragraph(self, paragraph: str) -> List[str]:
        """Split one paragraph into sentence-aligned pieces that each fit max_chars."""
        if len(paragraph) <= self.max_chars:
            return [paragraph]

        pieces: List[str] = []
        for sentence in _SENTENCE_SPLIT.split(paragraph):
            sentence = sentence.strip()
            if not sentence:
                continue
            if len(sentence) <= self.max_chars:
                pieces.append(sentence)
            else:
                pieces.extend(self._split_long(sentence))
        return pieces

    def _split_long(self, sentence: str) -> List[str]:
        """Word-pack an over-long sentence, hard-slicing words longer than max_chars."""
        pieces: List[str] = []
        current = ""
        for word in sentence.split(" "):
            while len(word) > self.max_chars:
                if current:
                    pieces.append(current)
                    current = ""
                pieces.append(word[:self.max_chars])
                word = word[self.max_chars:]
            if not word:
                continue
            if not current:
                current = word
            elif len(current) + 1 + len(word) <= self.max_chars:
                current = f"{current} {word}"
            else:
                pieces.append(current)
                current = word
        if current:
            pieces.append(current)
        return pieces


def chunk_text(text: str, chunk_tokens: int = CHUNK_TOKENS) -> List[str]:
    """Convenience function."""
    return TextChunker(chunk_tokens).chunk(text)
