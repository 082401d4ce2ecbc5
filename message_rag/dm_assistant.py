"""
DM Assistant

Conversational assistant for direct messages. The recent conversation is
rendered as context and run through the contextual chain, which enforces
the token budget before every model call.
"""

import logging
import re
from typing import List, Optional, Sequence, Union

from config.settings import get_settings, ContextConfig
from message_rag.contextual_chain import ChainFailure, ContextualChain
from message_rag.llm_service import TokenCallback
from message_rag.memory import ConversationTurn, MessageHistory, to_context_string

logger = logging.getLogger(__name__)

DM_SYSTEM_PROMPT = (
    "You are a helpful AI assistant in a direct messaging conversation. "
    "You should be friendly but professional, and help users with their questions and tasks. "
    "Base your responses on the conversation history when relevant, and maintain a "
    "consistent tone throughout the conversation. If you don't know something or aren't "
    "sure, be honest about it."
)

SUGGESTION_PROMPT = (
    "Based on this conversation history, suggest a question or message that the USER "
    "could ask next. Suggest a brief, natural follow-up question or message that the user "
    "might want to ask the AI assistant. Keep it concise and conversational, as if the user "
    "is chatting casually. Focus on questions that would naturally continue the "
    "conversation or explore related topics."
)

SUGGESTION_INPUT = "What could I ask next?"

SUGGESTION_TURNS = 3

HistoryLike = Union[Sequence[ConversationTurn], MessageHistory]

_SUGGESTION_PREFIX = re.compile(
    r"^(You could ask:|User:|Suggested question:|Q:|A:)\s*", re.IGNORECASE
)


def _turns(history: HistoryLike) -> List[ConversationTurn]:
    if isinstance(history, MessageHistory):
        return history.get_turns()
    return list(history or [])


class DMAssistant:
    """
    Answers direct messages using the recent conversation as context.

    Example:
        assistant = DMAssistant(chain)
        reply = await assistant.process_dm_message("And what about Friday?", history)
    """

    def __init__(
        self,
        chain: ContextualChain,
        config: Optional[ContextConfig] = None,
        system_prompt: str = DM_SYSTEM_PROMPT,
    ):
        self.chain = chain
        self.config = config or get_settings().context
        self.system_prompt = system_prompt

    async def process_dm_message(
        self,
        message: str,
        history: HistoryLike = (),
        on_token: Optional[TokenCallback] = None,
    ) -> str:
        """
        Reply to a direct message.

        Args:
            message: The user's new message
            history: Prior turns, oldest first
            on_token: Optional streaming callback

        Returns:
            The assistant reply (an apology if no model is available)

        Raises:
            ValueError: If message is empty
        """
        if not message or not message.strip():
            raise ValueError("Message cannot be empty")

        recent = _turns(history)[-self.config.max_context_messages:]
        context = to_context_string(recent)

        logger.debug(f"Processing DM with {len(recent)} history turns")
        return await self.chain.invoke(
            self.system_prompt,
            message,
            context=context,
            on_token=on_token,
        )

    async def get_suggested_response(
        self,
        history: HistoryLike,
    ) -> str:
        """
        Suggest a follow-up the user could send next.

        Returns:
            The suggestion, or "" when the model could not be reached
        """
        context = to_context_string(_turns(history)[-SUGGESTION_TURNS:])

        result = await self.chain.invoke_result(SUGGESTION_PROMPT, SUGGESTION_INPUT, context=context)
        if isinstance(result, ChainFailure):
            logger.warning(f"Could not get suggestion: {result.error}")
            return ""

        return _SUGGESTION_PREFIX.sub("", result.text.strip()).strip()
