"""
Tests for the tier fallback
"""

from unittest.mock import AsyncMock, Mock

import pytest

from core.domain import RetrievalResult, SearchDecision, Tier
from core.exceptions import SearchTierError, SynthesisError
from core.interfaces import ISearchTier
from services.tier_orchestrator import TierOrchestrator, resolve_query


class FakeTier(ISearchTier):

    def __init__(self, tier, results=None, configured=True, error=None):
        self.tier = tier
        self.display_name = tier.value
        self._results = results or []
        self._configured = configured
        self._error = error
        self.queries = []

    def is_configured(self):
        return self._configured

    async def search(self, query):
        self.queries.append(query)
        if self._error:
            raise self._error
        return self._results


def _hits(label):
    return [RetrievalResult(snippet=f"{label} snippet", source_label=f"{label}.pdf", score=0.9)]


def _gate(verdicts):
    gate = Mock()
    gate.is_relevant = AsyncMock(side_effect=lambda results, query, name: verdicts[name])
    return gate


def _synthesizer(answer="synthesized answer"):
    synthesizer = Mock()
    synthesizer.synthesize = AsyncMock(return_value=answer)
    return synthesizer


SEARCH = SearchDecision(invoke_search=True, query="HBr propene")


class TestResolveQuery:

    def test_priority(self):
        assert resolve_query("tool", "question", "image", "file") == "tool"
        assert resolve_query(None, "question", "image", "file") == "question"
        assert resolve_query("", " ", "image", "file") == "image"
        assert resolve_query(None, None, None, "file") == "file"
        assert resolve_query(None) == ""


class TestTierOrchestrator:
    """Tests for TierOrchestrator.run"""

    @pytest.mark.asyncio
    async def test_local_irrelevant_specialized_unconfigured_web_relevant(self):
        local = FakeTier(Tier.LOCAL, _hits("local"))
        specialized = FakeTier(Tier.SPECIALIZED, _hits("special"), configured=False)
        web = FakeTier(Tier.WEB, _hits("web"))
        gate = _gate({"local": False, "web": True})
        synthesizer = _synthesizer()
        orchestrator = TierOrchestrator([local, specialized, web], gate, synthesizer)

        outcome = await orchestrator.run(SEARCH, question="Why?")

        assert outcome.tier == Tier.WEB
        assert outcome.results == web._results
        assert outcome.answer == "synthesized answer"
        assert specialized.queries == []
        # Only one synthesis call, made with the web results: DIRECT never ran
        synthesizer.synthesize.assert_awaited_once()
        assert synthesizer.synthesize.await_args.args[2] == web._results

    @pytest.mark.asyncio
    async def test_first_relevant_tier_wins(self):
        local = FakeTier(Tier.LOCAL, _hits("local"))
        web = FakeTier(Tier.WEB, _hits("web"))
        orchestrator = TierOrchestrator([local, web], _gate({"local": True}), _synthesizer())

        outcome = await orchestrator.run(SEARCH, question="Why?")

        assert outcome.tier == Tier.LOCAL
        assert web.queries == []

    @pytest.mark.asyncio
    async def test_all_tiers_fail_falls_back_to_direct(self):
        local = FakeTier(Tier.LOCAL, [])
        specialized = FakeTier(Tier.SPECIALIZED, error=SearchTierError("down"))
        web = FakeTier(Tier.WEB, error=RuntimeError("unexpected"))
        synthesizer = _synthesizer("direct answer")
        orchestrator = TierOrchestrator([local, specialized, web], _gate({}), synthesizer)

        outcome = await orchestrator.run(SEARCH, question="Why?")

        assert outcome.tier == Tier.DIRECT
        assert outcome.results == []
        assert outcome.answer == "direct answer"
        assert synthesizer.synthesize.await_args.args[2] is None

    @pytest.mark.asyncio
    async def test_no_tool_call_skips_search(self):
        local = FakeTier(Tier.LOCAL, _hits("local"))
        synthesizer = _synthesizer()
        orchestrator = TierOrchestrator([local], _gate({}), synthesizer)
        decision = SearchDecision(invoke_search=False, direct_answer="Planner answer.")

        outcome = await orchestrator.run(decision, question="Hello")

        assert outcome.tier == Tier.DIRECT
        assert outcome.search_skipped is True
        assert outcome.answer == "Planner answer."
        assert local.queries == []
        synthesizer.synthesize.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_no_tool_call_and_no_answer_is_an_error(self):
        orchestrator = TierOrchestrator([], _gate({}), _synthesizer())

        with pytest.raises(SynthesisError):
            await orchestrator.run(SearchDecision(invoke_search=False), question="Hello")

    @pytest.mark.asyncio
    async def test_missing_tool_query_falls_back_to_question(self):
        local = FakeTier(Tier.LOCAL, [])
        orchestrator = TierOrchestrator([local], _gate({}), _synthesizer())

        await orchestrator.run(SearchDecision(invoke_search=True, query=None), question="What is SN1?")

        assert local.queries == ["What is SN1?"]

    @pytest.mark.asyncio
    async def test_synthesis_error_propagates(self):
        local = FakeTier(Tier.LOCAL, _hits("local"))
        synthesizer = Mock()
        synthesizer.synthesize = AsyncMock(side_effect=SynthesisError("empty"))
        orchestrator = TierOrchestrator([local], _gate({"local": True}), synthesizer)

        with pytest.raises(SynthesisError):
            await orchestrator.run(SEARCH, question="Why?")
