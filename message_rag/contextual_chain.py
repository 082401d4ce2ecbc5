"""
Contextual Completion Chain

The single entry point for completion calls. Every call:
1. Truncates the context to the token budget (keeping its beginning)
2. Fills the prompt template with system prompt, context and user input
3. Calls the primary model, streaming tokens when a callback is given
4. On failure, asks the fallback model for a simple, conservative answer
5. If both fail, reports the failure; invoke() turns it into an apology

Callers that need to know what went wrong use invoke_result(); callers
that only need text for an end user use invoke(), which never raises.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Union

from config.settings import get_settings, ContextConfig
from message_rag.llm_service import CompletionError, LLMService, TokenCallback
from message_rag.token_budget import TokenBudgeter

logger = logging.getLogger(__name__)

PROMPT_TEMPLATE = (
    "System: {system_prompt}\n\n"
    "Context: {context}\n\n"
    "User: {input}\n\n"
    "Please provide a clear and concise response based on the context provided."
)

FALLBACK_TEMPLATE = (
    "Something went wrong with the primary AI model. As a fallback, please provide "
    "a basic response to:\n\n{input}\n\nKeep the response simple and conservative."
)

APOLOGY = (
    "I apologize, but I am currently unable to process your request. "
    "Please try again later."
)


@dataclass
class ChainAnswer:
    """A completed answer and which tier produced it."""

    text: str
    model: str
    used_fallback: bool = False


@dataclass
class ChainFailure:
    """Both tiers failed; error is the last failure."""

    error: CompletionError
    primary_error: Optional[CompletionError] = None


ChainResult = Union[ChainAnswer, ChainFailure]


class ContextualChain:
    """
    Budgeted prompt assembly with primary/fallback completion.

    Example:
        chain = ContextualChain(LLMService(tier="primary"), LLMService(tier="fallback"))
        text = await chain.invoke("You answer questions.", "What shipped?", context)
    """

    def __init__(
        self,
        primary: LLMService,
        fallback: LLMService,
        budgeter: Optional[TokenBudgeter] = None,
        config: Optional[ContextConfig] = None,
    ):
        self.primary = primary
        self.fallback = fallback
        self.config = config or get_settings().context
        self.budgeter = budgeter or TokenBudgeter(self.config.tokenizer_model)

    def build_prompt(self, system_prompt: str, user_input: str, context: str = "") -> str:
        """Fill the template after truncating context to the token budget."""
        context = self.budgeter.truncate(context or "", self.config.max_context_tokens)
        return PROMPT_TEMPLATE.format(
            system_prompt=system_prompt,
            context=context,
            input=user_input,
        )

    async def invoke_result(
        self,
        system_prompt: str,
        user_input: str,
        context: str = "",
        on_token: Optional[TokenCallback] = None,
    ) -> ChainResult:
        """
        Run the chain and report success or failure.

        Args:
            system_prompt: Instructions for the model
            user_input: The user's question or message
            context: Retrieved or conversational context
            on_token: Streaming callback, used for the primary tier only

        Returns:
            ChainAnswer, or ChainFailure when both tiers failed
        """
        prompt = self.build_prompt(system_prompt, user_input, context)

        try:
            response = await self.primary.generate(prompt, on_token=on_token)
            return ChainAnswer(text=response.content, model=response.model)
        except CompletionError as primary_error:
            logger.error(f"Primary model failed, using fallback: {primary_error}")

            try:
                response = await self.fallback.generate(
                    FALLBACK_TEMPLATE.format(input=user_input)
                )
                return ChainAnswer(text=response.content, model=response.model, used_fallback=True)
            except CompletionError as fallback_error:
                logger.error(f"Fallback model failed: {fallback_error}")
                return ChainFailure(error=fallback_error, primary_error=primary_error)

    async def invoke(
        self,
        system_prompt: str,
        user_input: str,
        context: str = "",
        on_token: Optional[TokenCallback] = None,
    ) -> str:
        """
        Run the chain and return text for the end user. Never raises.

        Returns:
            The model answer, or a fixed apology if both tiers failed
        """
        try:
            result = await self.invoke_result(system_prompt, user_input, context, on_token)
        except Exception as e:
            logger.error(f"Unexpected chain error: {e}")
            return APOLOGY

        if isinstance(result, ChainFailure):
            return APOLOGY
        return result.text or APOLOGY

    async def close(self) -> None:
        await self.primary.close()
        await self.fallback.close()
