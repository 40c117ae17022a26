"""
Tests for RelevanceGate
"""

from unittest.mock import AsyncMock, Mock

import pytest

from core.domain import ChatCompletion, RetrievalResult
from core.exceptions import LLMServiceError
from services.relevance_gate import RelevanceGate, parse_verdict


RESULTS = [RetrievalResult(snippet="HBr adds across the double bond", source_label="a", score=0.9)]


def _model(reply=None, error=None):
    model = Mock()
    if error is not None:
        model.complete = AsyncMock(side_effect=error)
    else:
        model.complete = AsyncMock(return_value=ChatCompletion(content=reply))
    return model


class TestParseVerdict:

    @pytest.mark.parametrize("reply,expected", [
        ("yes", True), ("Yes.", True), (" YES ", True),
        ("no", False), ("No!", False),
        ("maybe", None), ("yes and no", None), ("", None),
    ])
    def test_parse(self, reply, expected):
        assert parse_verdict(reply) is expected


class TestRelevanceGate:
    """Tests for RelevanceGate.is_relevant"""

    @pytest.mark.asyncio
    async def test_yes(self):
        assert await RelevanceGate(_model("yes")).is_relevant(RESULTS, "q", "web search") is True

    @pytest.mark.asyncio
    async def test_no(self):
        assert await RelevanceGate(_model("no")).is_relevant(RESULTS, "q", "web search") is False

    @pytest.mark.asyncio
    async def test_empty_results_skip_call(self):
        model = _model("yes")

        assert await RelevanceGate(model).is_relevant([], "q", "web search") is False
        model.complete.assert_not_awaited()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("default", [True, False])
    async def test_call_failure_uses_default(self, default):
        gate = RelevanceGate(_model(error=LLMServiceError("down")), default_on_error=default)

        assert await gate.is_relevant(RESULTS, "q", "local knowledge base") is default

    @pytest.mark.asyncio
    @pytest.mark.parametrize("default", [True, False])
    async def test_ambiguous_reply_uses_default(self, default):
        gate = RelevanceGate(_model("It depends"), default_on_error=default)

        assert await gate.is_relevant(RESULTS, "q", "local knowledge base") is default

    @pytest.mark.asyncio
    async def test_prompt_contents(self):
        model = _model("yes")

        await RelevanceGate(model, temperature=0.1).is_relevant(RESULTS, "Why Markovnikov?", "web search")

        messages = model.complete.await_args.args[0]
        assert messages[0]["role"] == "system"
        assert "yes or no" in messages[0]["content"]
        assert "Why Markovnikov?" in messages[1]["content"]
        assert "[1] HBr adds across the double bond" in messages[1]["content"]
        assert "web search" in messages[1]["content"]
        assert model.complete.await_args.kwargs["temperature"] == 0.1
