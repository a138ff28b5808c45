# FILE: tests/test_answerer.py
"""
Tests for kbcore/answerer.py
Context assembly, grounded answers and the no-results fallback.
"""

from unittest.mock import MagicMock

import pytest

from kbcore.answerer import (
    FALLBACK_MESSAGE,
    SYSTEM_PROMPT,
    AnswerSynthesizer,
    ContextAssembler,
)
from kbcore.errors import TransientProviderError
from kbcore.schemas import SearchResult


def _result(article_id, text, title=None, index=0, similarity=0.9):
    return SearchResult(
        chunk_text=text,
        article_title=title or f"Title {article_id}",
        article_id=article_id,
        chunk_index=index,
        similarity=similarity,
    )


class TestFallback:
    """No results: fixed answer, no model call."""

    def test_empty_results(self, chat_model):
        answer = AnswerSynthesizer(chat_model).answer("how do I reset my password", [])

        assert answer.used_fallback is True
        assert answer.text == FALLBACK_MESSAGE
        assert answer.cited_article_ids == []
        assert answer.sources == []
        chat_model.complete.assert_not_called()

    def test_fallback_is_deterministic(self, chat_model):
        synthesizer = AnswerSynthesizer(chat_model)
        assert synthesizer.answer("a", []) == synthesizer.answer("completely different", [])


class TestGroundedAnswer:
    """Results go into the prompt; the model's text comes back."""

    def test_calls_model_with_context(self, chat_model):
        results = [
            _result("a1", "Reset your password by clicking Forgot Password.", title="Password reset"),
            _result("a2", "Invoices go out monthly.", title="Billing"),
        ]

        answer = AnswerSynthesizer(chat_model).answer("how do I reset my password", results)

        system_prompt, user_prompt = chat_model.complete.call_args.args
        assert system_prompt == SYSTEM_PROMPT
        assert "Article: Password reset\nReset your password by clicking Forgot Password." in user_prompt
        assert "Article: Billing" in user_prompt
        assert "how do I reset my password" in user_prompt
        assert answer.text == chat_model.complete.return_value
        assert answer.used_fallback is False
        assert answer.model_used == "test-chat-model"

    def test_citations_deduplicated_in_rank_order(self, chat_model):
        results = [
            _result("a2", "chunk one", index=0),
            _result("a1", "chunk two", index=0),
            _result("a2", "chunk three", index=1),
        ]

        answer = AnswerSynthesizer(chat_model).answer("q", results)

        assert answer.cited_article_ids == ["a2", "a1"]
        assert [s.article_id for s in answer.sources] == ["a2", "a1"]
        assert answer.sources[0].title == "Title a2"

    def test_provider_error_propagates(self, chat_model):
        chat_model.complete.side_effect = TransientProviderError("rate limited")

        with pytest.raises(TransientProviderError):
            AnswerSynthesizer(chat_model).answer("q", [_result("a1", "text")])

    def test_prompt_rules(self):
        assert "Only use information from the provided knowledge base articles" in SYSTEM_PROMPT
        assert "Related Articles" in SYSTEM_PROMPT
        assert "politely say so" in SYSTEM_PROMPT
        assert "Never make up information" in SYSTEM_PROMPT


class TestContextAssembler:
    """Token budget handling."""

    def test_all_results_fit(self):
        context = ContextAssembler(max_tokens=1000).assemble([_result("a1", "one"), _result("a2", "two")])

        assert [r.article_id for r in context.results] == ["a1", "a2"]
        assert context.truncated is False
        assert context.text.index("one") < context.text.index("two")

    def test_stops_at_budget(self):
        results = [_result(f"a{i}", " ".join(["word"] * 50)) for i in range(5)]

        context = ContextAssembler(max_tokens=150).assemble(results)

        assert len(context.results) == 2
        assert context.truncated is True
        assert context.total_tokens <= 150

    def test_top_result_always_included(self):
        huge = _result("a1", " ".join(["word"] * 1000))

        context = ContextAssembler(max_tokens=50).assemble([huge, _result("a2", "small")])

        assert [r.article_id for r in context.results] == ["a1"]
        assert context.truncated is True
        assert context.total_tokens <= 50

    def test_synthesizer_cites_only_what_fit(self, chat_model):
        results = [_result(f"a{i}", " ".join(["word"] * 50)) for i in range(5)]

        answer = AnswerSynthesizer(chat_model, context_tokens=150).answer("q", results)

        assert answer.cited_article_ids == ["a0", "a1"]

    def test_invalid_budget(self):
        with pytest.raises(ValueError):
            ContextAssembler(max_tokens=0)


def test_uses_real_chat_model_interface():
    """AnswerSynthesizer only needs .complete() and .model."""
    model = MagicMock(spec=["complete", "model"])
    model.model = "m"
    model.complete.return_value = "ok"

    answer = AnswerSynthesizer(model).answer("q", [_result("a1", "text")])

    assert answer.text == "ok"
    assert answer.model_used == "m"
