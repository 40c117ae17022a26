# services/tier_orchestrator.py
"""Local -> Specialized -> Web -> Direct fallback, gated by relevance."""
import logging
from typing import List, Optional, Sequence

from core.domain import ConversationTurn, SearchDecision, Tier, TierOutcome
from core.exceptions import SearchTierError, SynthesisError
from core.interfaces import ISearchTier
from config import settings
from services.answer_synthesizer import AnswerSynthesizer
from services.relevance_gate import RelevanceGate

logger = logging.getLogger(settings.LOGGER_NAME)


def resolve_query(
    tool_query: Optional[str],
    question: Optional[str] = None,
    image_description: Optional[str] = None,
    file_description: Optional[str] = None,
) -> str:
    """First non-empty of: tool query, question, image description, file description."""
    for candidate in (tool_query, question, image_description, file_description):
        if candidate and candidate.strip():
            return candidate.strip()
    return ""


class TierOrchestrator:
    """
    Walks the search tiers in order and stops at the first one whose results
    pass the relevance gate. Unconfigured tiers are skipped; failing tiers
    count as empty. When no tier is accepted the answer is synthesized with
    no context (DIRECT).
    """

    def __init__(self, tiers: Sequence[ISearchTier], relevance_gate: RelevanceGate,
                 synthesizer: AnswerSynthesizer):
        self.tiers: List[ISearchTier] = list(tiers)
        self.relevance_gate = relevance_gate
        self.synthesizer = synthesizer

    async def _search_tier(self, tier: ISearchTier, query: str):
        try:
            return await tier.search(query)
        except SearchTierError as e:
            logger.warning(f"{tier.display_name} failed, treating as no results: {e}")
        except Exception as e:
            logger.error(f"Unexpected error in {tier.display_name}, treating as no results: {e}",
                         exc_info=True)
        return []

    async def run(
        self,
        decision: SearchDecision,
        question: str,
        history: Sequence[ConversationTurn] = (),
        auxiliary: Optional[str] = None,
        image_url: Optional[str] = None,
        image_description: Optional[str] = None,
        file_description: Optional[str] = None,
        system_instructions: Optional[str] = None,
    ) -> TierOutcome:
        """Raises SynthesisError when the final answer cannot be generated."""
        if not decision.invoke_search:
            if not decision.direct_answer:
                raise SynthesisError("Model returned neither a search request nor an answer")
            return TierOutcome(tier=Tier.DIRECT, results=[], answer=decision.direct_answer,
                               search_skipped=True)

        query = resolve_query(decision.query, question, image_description, file_description)
        logger.info(f"Searching tiers with query {query!r}")

        for tier in self.tiers:
            if not tier.is_configured():
                logger.info(f"Skipping {tier.display_name}: not configured")
                continue

            results = await self._search_tier(tier, query)
            if not results:
                logger.info(f"{tier.display_name} found no results")
                continue

            logger.info(f"{tier.display_name} found {len(results)} result(s)")
            if not await self.relevance_gate.is_relevant(results, query, tier.display_name):
                logger.info(f"{tier.display_name} results are not relevant")
                continue

            answer = await self.synthesizer.synthesize(
                system_instructions, history, results, question, auxiliary, image_url
            )
            return TierOutcome(tier=tier.tier, results=results, answer=answer)

        logger.info("No tier produced relevant results, answering directly")
        answer = await self.synthesizer.synthesize(
            system_instructions, history, None, question, auxiliary, image_url
        )
        return TierOutcome(tier=Tier.DIRECT, results=[], answer=answer)
