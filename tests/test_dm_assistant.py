"""
Tests for DM Assistant Module
"""

import pytest

from config.settings import ContextConfig
from message_rag.contextual_chain import APOLOGY, ContextualChain
from message_rag.dm_assistant import (
    DM_SYSTEM_PROMPT,
    SUGGESTION_INPUT,
    SUGGESTION_PROMPT,
    DMAssistant,
)
from message_rag.memory import ConversationTurn, MessageHistory
from message_rag.token_budget import TokenBudgeter

from conftest import FakeLLM


def make_assistant(primary=None, fallback=None, max_context_messages=10):
    chain = ContextualChain(
        primary=primary or FakeLLM(reply="Sure, happy to help."),
        fallback=fallback or FakeLLM(reply="fallback reply"),
        budgeter=TokenBudgeter(),
        config=ContextConfig(max_context_tokens=4000),
    )
    return DMAssistant(chain, config=ContextConfig(max_context_messages=max_context_messages))


def conversation(n):
    return [
        ConversationTurn(role="user" if i % 2 == 0 else "assistant", content=f"message-{i:02d}")
        for i in range(n)
    ]


class TestProcessDMMessage:
    """Tests for DMAssistant.process_dm_message."""

    @pytest.mark.asyncio
    async def test_reply(self):
        primary = FakeLLM(reply="Sure, happy to help.")
        assistant = make_assistant(primary=primary)

        reply = await assistant.process_dm_message("Can you help?", conversation(2))

        assert reply == "Sure, happy to help."
        prompt = primary.prompts[0]
        assert prompt.startswith(f"System: {DM_SYSTEM_PROMPT}")
        assert "user: message-00\nassistant: message-01" in prompt
        assert "User: Can you help?" in prompt

    @pytest.mark.asyncio
    async def test_only_recent_turns_used(self):
        primary = FakeLLM()
        assistant = make_assistant(primary=primary, max_context_messages=10)

        await assistant.process_dm_message("next", conversation(25))

        prompt = primary.prompts[0]
        assert "message-15" in prompt
        assert "message-24" in prompt
        assert "message-14" not in prompt
        assert "message-00" not in prompt

    @pytest.mark.asyncio
    async def test_accepts_message_history(self):
        primary = FakeLLM()
        history = MessageHistory()
        history.add_user_message("first question")

        await make_assistant(primary=primary).process_dm_message("second", history)

        assert "user: first question" in primary.prompts[0]

    @pytest.mark.asyncio
    async def test_empty_history(self):
        primary = FakeLLM()

        await make_assistant(primary=primary).process_dm_message("hello")

        assert "Context: \n\n" in primary.prompts[0]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("message", ["", "   "])
    async def test_empty_message(self, message):
        with pytest.raises(ValueError, match="empty"):
            await make_assistant().process_dm_message(message)

    @pytest.mark.asyncio
    async def test_streaming(self):
        tokens = []
        assistant = make_assistant(primary=FakeLLM(tokens=["Hi", "!"]))

        reply = await assistant.process_dm_message("hey", on_token=tokens.append)

        assert reply == "Hi!"
        assert tokens == ["Hi", "!"]

    @pytest.mark.asyncio
    async def test_apology_when_models_fail(self):
        assistant = make_assistant(primary=FakeLLM(error="500"), fallback=FakeLLM(error="503"))

        assert await assistant.process_dm_message("hey") == APOLOGY


class TestSuggestedResponse:
    """Tests for DMAssistant.get_suggested_response."""

    @pytest.mark.asyncio
    async def test_uses_last_three_turns(self):
        primary = FakeLLM(reply="What about the roadmap?")

        suggestion = await make_assistant(primary=primary).get_suggested_response(conversation(6))

        assert suggestion == "What about the roadmap?"
        prompt = primary.prompts[0]
        assert prompt.startswith(f"System: {SUGGESTION_PROMPT}")
        assert f"User: {SUGGESTION_INPUT}" in prompt
        assert "message-03" in prompt
        assert "message-05" in prompt
        assert "message-02" not in prompt

    @pytest.mark.asyncio
    @pytest.mark.parametrize("reply", [
        "You could ask: When is the demo?",
        "User: When is the demo?",
        "suggested question:   When is the demo?",
        "Q: When is the demo?",
        "  When is the demo?  ",
    ])
    async def test_prefix_stripped(self, reply):
        assistant = make_assistant(primary=FakeLLM(reply=reply))

        assert await assistant.get_suggested_response(conversation(2)) == "When is the demo?"

    @pytest.mark.asyncio
    async def test_empty_string_on_failure(self):
        assistant = make_assistant(primary=FakeLLM(error="500"), fallback=FakeLLM(error="503"))

        assert await assistant.get_suggested_response(conversation(2)) == ""
