"""
Tests for prompt assembly and AnswerSynthesizer
"""

from unittest.mock import AsyncMock, Mock

import pytest

from core.domain import ChatCompletion, ConversationTurn, RetrievalResult, Role
from core.exceptions import LLMServiceError, SynthesisError
from services.answer_synthesizer import (
    SYSTEM_PROMPT, AnswerSynthesizer, build_messages, build_user_content,
)

HISTORY = [
    ConversationTurn(session_id="s", role=Role.USER, content="earlier question"),
    ConversationTurn(session_id="s", role=Role.ASSISTANT, content="earlier answer"),
]
SNIPPETS = [
    RetrievalResult(snippet="first snippet", source_label="a.pdf", score=0.9),
    RetrievalResult(snippet="second snippet", source_label="b.pdf", score=0.8),
]


class TestPromptAssembly:

    def test_system_prompt_states_marker_contract(self):
        assert "$^{[1][2]}$" in SYSTEM_PROMPT

    def test_message_order(self):
        messages = build_messages("SYS", HISTORY, SNIPPETS, "Why?", "file text")

        assert [m["role"] for m in messages] == ["system", "user", "assistant", "user"]
        assert messages[0]["content"] == "SYS"
        assert messages[1]["content"] == "earlier question"

    def test_user_turn_with_snippets(self):
        content = build_user_content("Why?", SNIPPETS, "file text")

        assert "[1] first snippet" in content
        assert "[2] second snippet" in content
        assert "Question: Why?" in content
        assert "File content:\nfile text" in content
        assert "$^{[1][2]}$" in content
        assert content.index("[1] first snippet") < content.index("Question: Why?")

    def test_user_turn_without_snippets(self):
        content = build_user_content("Why?", None, None)

        assert content == "Why?"

    def test_image_makes_multimodal_turn(self):
        content = build_user_content("What is shown?", None, None, image_url="data:image/png;base64,AAAA")

        assert content[0] == {"type": "text", "text": "What is shown?"}
        assert content[1]["image_url"]["url"] == "data:image/png;base64,AAAA"


class TestAnswerSynthesizer:
    """Tests for AnswerSynthesizer.synthesize"""

    @pytest.mark.asyncio
    async def test_returns_completion_text(self):
        model = Mock()
        model.complete = AsyncMock(return_value=ChatCompletion(content="Answer$^{[1]}$"))
        synthesizer = AnswerSynthesizer(model, temperature=0.2)

        text = await synthesizer.synthesize(None, HISTORY, SNIPPETS, "Why?")

        assert text == "Answer$^{[1]}$"
        messages = model.complete.await_args.args[0]
        assert messages[0]["content"] == SYSTEM_PROMPT
        assert model.complete.await_args.kwargs["temperature"] == 0.2

    @pytest.mark.asyncio
    async def test_provider_failure(self):
        model = Mock()
        model.complete = AsyncMock(side_effect=LLMServiceError("timeout"))

        with pytest.raises(SynthesisError):
            await AnswerSynthesizer(model).synthesize(None, [], SNIPPETS, "Why?")

    @pytest.mark.asyncio
    async def test_empty_completion(self):
        model = Mock()
        model.complete = AsyncMock(return_value=ChatCompletion(content=""))

        with pytest.raises(SynthesisError):
            await AnswerSynthesizer(model).synthesize(None, [], None, "Why?")
