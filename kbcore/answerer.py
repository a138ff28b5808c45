# FILE: kbcore/answerer.py
"""
Answer synthesis.

Takes ranked search results, assembles them into a bounded context, and asks
the language model for a grounded answer. With no results the fixed
FALLBACK_MESSAGE is returned and the model is not called.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Sequence

from kbcore.config import CONTEXT_TOKENS
from kbcore.llm import ChatModel
from kbcore.schemas import Answer, SearchResult, SourceReference

logger = logging.getLogger(__name__)


SYSTEM_PROMPT = """You are a helpful support assistant that answers questions using only the knowledge base articles provided. Follow these rules:

1. Keep the answer brief and to the point (2-3 sentences).
2. Use simple, clear language.
3. Format the response as:
   - Brief answer
   - "Related Articles:" section listing the titles of the articles you used
4. Only use information from the provided knowledge base articles.
5. If the articles don't contain the information needed, politely say so instead of answering.
6. Never make up information or use outside knowledge."""

FALLBACK_MESSAGE = (
    "I apologize, but I couldn't find any relevant information in the knowledge base "
    "to answer your question. Please try rephrasing your question or contact support "
    "for assistance."
)


@dataclass
class AssembledContext:
    """Search results formatted for the prompt."""
    text: str
    total_tokens: int
    results: List[SearchResult] = field(default_factory=list)
    truncated: bool = False


class ContextAssembler:
    """Pack results, in rank order, into a token budget."""

    def __init__(self, max_tokens: int = CONTEXT_TOKENS):
        if max_tokens < 1:
            raise ValueError("max_tokens must be >= 1")
        self.max_tokens = max_tokens

    def assemble(self, results: Sequence[SearchResult]) -> AssembledContext:
        """
        Add results until the next one would exceed max_tokens.

        The top result is always included, cut down to the budget if needed.
        """
        sections = []
        included: List[SearchResult] = []
        total_tokens = 0
        truncated = False

        for result in results:
            entry = self._format_result(result)
            entry_tokens = self._estimate_tokens(entry)

            if total_tokens + entry_tokens > self.max_tokens:
                truncated = True
                if not included:
                    entry = self._truncate(entry, self.max_tokens)
                    entry_tokens = self._estimate_tokens(entry)
                else:
                    break

            sections.append(entry)
            included.append(result)
            total_tokens += entry_tokens
            if truncated:
                break

        return AssembledContext(
            text="\n\n".join(sections),
            total_tokens=total_tokens,
            results=included,
            truncated=truncated,
        )

    def _format_result(self, result: SearchResult) -> str:
        return f"Article: {result.article_title or result.article_id}\n{result.chunk_text}\n---"

    def _estimate_tokens(self, text: str) -> int:
        """Rough estimate: words * 1.3"""
        return int(len(text.split()) * 1.3)

    def _truncate(self, text: str, max_tokens: int) -> str:
        max_words = max(1, int(max_tokens / 1.3))
        return " ".join(text.split()[:max_words])


class AnswerSynthesizer:
    """Grounded answers from retrieved chunks."""

    def __init__(self, chat_model: ChatModel, context_tokens: int = CONTEXT_TOKENS):
        self.chat_model = chat_model
        self.assembler = ContextAssembler(max_tokens=context_tokens)

    def answer(self, query_text: str, results: Sequence[SearchResult]) -> Answer:
        """
        Answer query_text from results.

        Empty results return the fallback answer without a model call.
        Provider errors from the chat model propagate.
        """
        if not results:
            logger.info("[answerer] No results above threshold, returning fallback")
            return Answer(text=FALLBACK_MESSAGE, used_fallback=True)

        context = self.assembler.assemble(results)
        if context.truncated:
            logger.debug(
                f"[answerer] Context truncated to {len(context.results)}/{len(results)} results "
                f"(~{context.total_tokens} tokens)"
            )

        user_prompt = (
            f"Knowledge Base Articles:\n\n{context.text}\n\n"
            f"User Question: Based on the provided knowledge base articles, "
            f"please provide a concise answer to: {query_text}"
        )
        text = self.chat_model.complete(SYSTEM_PROMPT, user_prompt)

        cited: List[str] = []
        sources: List[SourceReference] = []
        for result in context.results:
            if result.article_id in cited:
                continue
            cited.append(result.article_id)
            sources.append(SourceReference(article_id=result.article_id, title=result.article_title))

        logger.info(f"[answerer] Answered from {len(cited)} articles with {self.chat_model.model}")
        return Answer(
            text=text,
            cited_article_ids=cited,
            used_fallback=False,
            sources=sources,
            model_used=self.chat_model.model,
        )
