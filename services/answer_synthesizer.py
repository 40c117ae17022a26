# services/answer_synthesizer.py
"""Prompt assembly and answer generation."""
import logging
from typing import Any, Dict, List, Optional, Sequence

from core.domain import ConversationTurn, RetrievalResult
from core.exceptions import LLMServiceError, SynthesisError
from core.interfaces import IChatModel
from config import settings

logger = logging.getLogger(settings.LOGGER_NAME)

CITATION_INSTRUCTION = (
    "Mark every sentence that uses a reference snippet with KaTeX superscript citation "
    "markers, for example $^{[1][2]}$ or $^{[1-3]}$, where the numbers are the bracketed "
    "snippet numbers given above."
)


def build_system_prompt(domain: str = settings.ASSISTANT_DOMAIN) -> str:
    return (
        f"You are a university {domain} teaching assistant. Give students detailed, "
        "well-organized answers.\n"
        "1. Structure the answer in clear sections: relevant equations, mechanism, "
        "conditions, selectivity and its causes, common mistakes, and a short summary "
        "where they apply.\n"
        "2. Do not output images; write formulas and equations as text or LaTeX.\n"
        "3. When you use the reference snippets provided with the question, cite them "
        "strictly as KaTeX superscripts such as $^{[1][2]}$ (ranges as $^{[1-3]}$), using "
        "the snippet numbers. Do not write phrases like \"according to the retrieved "
        "material\"; just answer and place the markers where the material is used."
    )


SYSTEM_PROMPT = build_system_prompt()


def history_to_messages(history: Sequence[ConversationTurn]) -> List[Dict[str, Any]]:
    return [{"role": turn.role.value, "content": turn.content} for turn in history]


def build_user_content(
    user_input: str,
    context_snippets: Optional[Sequence[RetrievalResult]] = None,
    auxiliary: Optional[str] = None,
    image_url: Optional[str] = None,
) -> Any:
    """
    The single user turn: numbered snippets, the literal question, auxiliary
    content, and the citation reminder when snippets are present. With an
    image the turn becomes a multimodal part list.
    """
    parts: List[str] = []
    if context_snippets:
        numbered = "\n\n".join(
            f"[{i}] {r.snippet}" for i, r in enumerate(context_snippets, start=1)
        )
        parts.append(
            "Answer using the attached image (if any), the file content (if any) and the "
            f"following reference snippets:\n{numbered}"
        )
        if user_input:
            parts.append(f"Question: {user_input}")
    elif user_input:
        parts.append(user_input)
    if auxiliary:
        parts.append(f"File content:\n{auxiliary}")
    if context_snippets:
        parts.append(CITATION_INSTRUCTION)

    text = "\n\n".join(parts)
    if not image_url:
        return text
    content: List[Dict[str, Any]] = []
    if text:
        content.append({"type": "text", "text": text})
    content.append({"type": "image_url", "image_url": {"url": image_url}})
    return content


def build_messages(
    system_instructions: str,
    history: Sequence[ConversationTurn],
    context_snippets: Optional[Sequence[RetrievalResult]],
    user_input: str,
    auxiliary: Optional[str] = None,
    image_url: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """System message, bounded history in chronological order, then one user turn."""
    return [
        {"role": "system", "content": system_instructions},
        *history_to_messages(history),
        {"role": "user", "content": build_user_content(user_input, context_snippets, auxiliary, image_url)},
    ]


class AnswerSynthesizer:
    """Generates the answer text from snippets, history and the question."""

    def __init__(self, chat_model: IChatModel, temperature: float = settings.LLM_TEMPERATURE,
                 system_prompt: str = SYSTEM_PROMPT):
        self.chat_model = chat_model
        self.temperature = temperature
        self.system_prompt = system_prompt

    async def synthesize(
        self,
        system_instructions: Optional[str],
        history: Sequence[ConversationTurn],
        context_snippets: Optional[Sequence[RetrievalResult]],
        user_input: str,
        auxiliary: Optional[str] = None,
        image_url: Optional[str] = None,
    ) -> str:
        """Raises SynthesisError on provider failure or an empty completion."""
        messages = build_messages(
            system_instructions or self.system_prompt, history, context_snippets,
            user_input, auxiliary, image_url,
        )
        try:
            completion = await self.chat_model.complete(messages, temperature=self.temperature)
        except LLMServiceError as e:
            raise SynthesisError(f"Answer generation failed: {e.message}") from e
        if not completion.content:
            raise SynthesisError("Answer generation returned an empty completion")
        logger.info(
            f"Synthesized answer ({len(completion.content)} chars, "
            f"{len(context_snippets or [])} snippet(s))"
        )
        return completion.content
