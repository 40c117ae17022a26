# services/relevance_gate.py
"""Yes/no check that retrieved results can help answer the query."""
import logging
import re
from typing import List, Optional

from core.domain import RetrievalResult
from core.exceptions import LLMServiceError, RelevanceCheckError
from core.interfaces import IChatModel
from config import settings

logger = logging.getLogger(settings.LOGGER_NAME)

RELEVANCE_SYSTEM_PROMPT = (
    "You judge whether search results are relevant to a user's question. "
    "Answer with exactly one word: yes or no."
)

_NON_WORD = re.compile(r"[^a-z]+")


def format_numbered_snippets(results: List[RetrievalResult]) -> str:
    return "\n\n".join(f"[{i}] {r.snippet}" for i, r in enumerate(results, start=1))


def parse_verdict(reply: str) -> Optional[bool]:
    """True for yes, False for no, None for anything else."""
    normalized = _NON_WORD.sub("", (reply or "").lower())
    if normalized == "yes":
        return True
    if normalized == "no":
        return False
    return None


class RelevanceGate:
    """
    Asks the model whether a tier's results are relevant.

    Never raises: ambiguous replies and failed calls resolve to
    `default_on_error`.
    """

    def __init__(
        self,
        chat_model: IChatModel,
        default_on_error: bool = settings.RELEVANCE_DEFAULT_ON_ERROR,
        temperature: float = settings.RELEVANCE_TEMPERATURE,
    ):
        self.chat_model = chat_model
        self.default_on_error = default_on_error
        self.temperature = temperature

    def build_prompt(self, results: List[RetrievalResult], query: str, source_name: str) -> str:
        return (
            "Decide whether the following search results are relevant to the user's question.\n\n"
            f"Question: {query}\n\n"
            f"Search results (from {source_name}):\n{format_numbered_snippets(results)}\n\n"
            "Answer \"yes\" if the results can help answer the question, "
            "or \"no\" if they are unrelated or not useful. Output nothing else."
        )

    async def _ask(self, prompt: str) -> str:
        try:
            completion = await self.chat_model.complete(
                [
                    {"role": "system", "content": RELEVANCE_SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                temperature=self.temperature,
            )
        except LLMServiceError as e:
            raise RelevanceCheckError(f"Relevance call failed: {e}") from e
        return completion.content

    async def is_relevant(self, results: List[RetrievalResult], query: str, source_name: str) -> bool:
        if not results:
            return False
        try:
            reply = await self._ask(self.build_prompt(results, query, source_name))
        except RelevanceCheckError as e:
            logger.warning(f"{e}; using default verdict {self.default_on_error} for {source_name}")
            return self.default_on_error

        verdict = parse_verdict(reply)
        if verdict is None:
            logger.warning(
                f"Ambiguous relevance reply {reply!r} for {source_name}; "
                f"using default verdict {self.default_on_error}"
            )
            return self.default_on_error
        logger.info(f"{source_name} relevance check: {'relevant' if verdict else 'not relevant'}")
        return verdict
