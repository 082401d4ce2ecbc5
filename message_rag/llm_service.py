"""
LLM Service Module

Provides an abstraction layer for completion model providers:
- Cloud: OpenAI (GPT-4 Turbo primary, GPT-3.5 Turbo fallback) - Requires API key
- Local: Ollama (Llama2, Mistral, etc.) - Free, runs locally

Design Rationale:
- Abstract interface allows easy switching between providers
- Each LLMService is bound to one tier (primary or fallback) so model,
  temperature and output limit come from configuration, not call sites
- Streaming is optional: pass on_token to receive tokens as they arrive;
  the full text is still returned
- Provider failures surface as CompletionError

Usage:
    llm = LLMService(tier="primary")
    response = await llm.generate("What did the team decide about the launch?")

    # Streaming
    response = await llm.generate(prompt, on_token=lambda t: print(t, end=""))
"""

import asyncio
import inspect
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Literal, Optional, Union

from config.settings import get_settings, LLMConfig

# Configure logging
logger = logging.getLogger(__name__)

TokenCallback = Callable[[str], Union[None, Awaitable[None]]]


class CompletionError(RuntimeError):
    """Raised when a completion provider call fails."""


@dataclass
class LLMResponse:
    """
    Standardized response from LLM providers.

    Attributes:
        content: The generated text response
        model: Model name used for generation
        usage: Token usage statistics (if available)
        finish_reason: Why generation stopped
    """
    content: str
    model: str
    usage: Optional[Dict[str, int]] = None
    finish_reason: Optional[str] = None

    def __str__(self) -> str:
        return self.content


async def emit_token(on_token: TokenCallback, token: str) -> None:
    """Deliver a token to a sync or async callback."""
    result = on_token(token)
    if inspect.isawaitable(result):
        await result


def build_messages(prompt: str, system_prompt: Optional[str] = None) -> List[Dict[str, str]]:
    messages = []
    if system_prompt:
        messages.append({"role": "system", "content": system_prompt})
    messages.append({"role": "user", "content": prompt})
    return messages


class BaseLLMProvider(ABC):
    """
    Abstract base class for LLM providers.

    All providers must implement:
    - generate: Generate text from a prompt, optionally streaming tokens
    - model_name: Model identifier
    """

    @abstractmethod
    async def generate(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: Optional[int] = None,
        on_token: Optional[TokenCallback] = None,
    ) -> LLMResponse:
        """
        Generate a response from the LLM.

        Args:
            prompt: User prompt/question
            system_prompt: Optional system instructions
            temperature: Creativity (0-1, lower = more deterministic)
            max_tokens: Maximum tokens in response
            on_token: Optional callback receiving streamed tokens

        Returns:
            LLMResponse object
        """
        pass

    @property
    @abstractmethod
    def model_name(self) -> str:
        """Return the model name."""
        pass

    async def close(self) -> None:
        pass


class OpenAIProvider(BaseLLMProvider):
    """
    OpenAI provider for GPT models via the async chat completions API.

    Models:
    - gpt-4-turbo-preview: Primary tier
    - gpt-3.5-turbo: Fallback tier
    """

    def __init__(
        self,
        model: str = "gpt-4-turbo-preview",
        api_key: Optional[str] = None,
        timeout: float = 60.0,
    ):
        self._model = model
        self._api_key = api_key
        self._timeout = timeout
        self._client = None

        logger.info(f"Initializing OpenAIProvider: model={model}")

    def _get_client(self):
        """Get or create the async OpenAI client."""
        if self._client is None:
            from openai import AsyncOpenAI

            api_key = self._api_key or os.getenv("OPENAI_API_KEY")
            if not api_key:
                raise ValueError(
                    "OpenAI API key not found. Set OPENAI_API_KEY environment variable."
                )

            self._client = AsyncOpenAI(api_key=api_key, timeout=self._timeout)
            logger.info("OpenAI client initialized")
        return self._client

    async def generate(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: Optional[int] = None,
        on_token: Optional[TokenCallback] = None,
    ) -> LLMResponse:
        """Generate response using OpenAI."""
        client = self._get_client()

        kwargs: Dict[str, Any] = {
            "model": self._model,
            "messages": build_messages(prompt, system_prompt),
            "temperature": temperature,
        }
        if max_tokens:
            kwargs["max_tokens"] = max_tokens

        try:
            if on_token is None:
                response = await client.chat.completions.create(**kwargs)
                choice = response.choices[0]
                usage = None
                if response.usage:
                    usage = {
                        "prompt_tokens": response.usage.prompt_tokens,
                        "completion_tokens": response.usage.completion_tokens,
                        "total_tokens": response.usage.total_tokens,
                    }
                return LLMResponse(
                    content=choice.message.content or "",
                    model=response.model,
                    usage=usage,
                    finish_reason=choice.finish_reason,
                )

            stream = await client.chat.completions.create(stream=True, **kwargs)
            parts = []
            finish_reason = None
            async for chunk in stream:
                if not chunk.choices:
                    continue
                choice = chunk.choices[0]
                token = choice.delta.content
                if token:
                    parts.append(token)
                    await emit_token(on_token, token)
                if choice.finish_reason:
                    finish_reason = choice.finish_reason

            return LLMResponse(
                content="".join(parts),
                model=self._model,
                finish_reason=finish_reason,
            )
        except Exception as e:
            logger.error(f"OpenAI generation error: {e}")
            raise

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None

    @property
    def model_name(self) -> str:
        return self._model


class OllamaProvider(BaseLLMProvider):
    """
    Ollama provider for local LLM inference.

    Requirements:
    - Ollama installed: https://ollama.ai
    - Model pulled: ollama pull llama2
    """

    def __init__(
        self,
        model: str = "llama2",
        base_url: str = "http://localhost:11434",
        timeout: float = 60.0,
    ):
        self._model = model
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._client = None

        logger.info(f"Initializing OllamaProvider: model={model}, url={base_url}")

    def _get_client(self):
        """Get or create the async Ollama client."""
        if self._client is None:
            import ollama

            self._client = ollama.AsyncClient(host=self._base_url, timeout=self._timeout)
            logger.info("Ollama client initialized")
        return self._client

    async def generate(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: Optional[int] = None,
        on_token: Optional[TokenCallback] = None,
    ) -> LLMResponse:
        """Generate response using Ollama."""
        client = self._get_client()

        options: Dict[str, Any] = {"temperature": temperature}
        if max_tokens:
            options["num_predict"] = max_tokens

        messages = build_messages(prompt, system_prompt)

        try:
            if on_token is None:
                response = await client.chat(
                    model=self._model,
                    messages=messages,
                    options=options,
                )
                return LLMResponse(
                    content=response["message"]["content"],
                    model=self._model,
                    usage={
                        "prompt_tokens": response.get("prompt_eval_count", 0),
                        "completion_tokens": response.get("eval_count", 0),
                    },
                    finish_reason="stop",
                )

            parts = []
            stream = await client.chat(
                model=self._model,
                messages=messages,
                options=options,
                stream=True,
            )
            async for chunk in stream:
                token = chunk["message"]["content"]
                if token:
                    parts.append(token)
                    await emit_token(on_token, token)

            return LLMResponse(content="".join(parts), model=self._model, finish_reason="stop")
        except Exception as e:
            logger.error(f"Ollama generation error: {e}")
            raise

    @property
    def model_name(self) -> str:
        return self._model


class LLMService:
    """
    Main LLM Service with unified interface, bound to one model tier.

    Example:
        primary = LLMService(tier="primary")
        fallback = LLMService(tier="fallback")
        response = await primary.generate("Summarize the thread")
    """

    def __init__(
        self,
        provider: Optional[str] = None,
        config: Optional[LLMConfig] = None,
        tier: Literal["primary", "fallback"] = "primary",
    ):
        """
        Initialize the LLM service.

        Args:
            provider: "openai" or "ollama" (default from config)
            config: Optional LLMConfig instance
            tier: Which configured model, temperature and limit to use
        """
        self.config = config or get_settings().llm
        self.tier = tier

        if tier == "primary":
            self.temperature = self.config.primary_temperature
            self.max_tokens = self.config.primary_max_tokens
        elif tier == "fallback":
            self.temperature = self.config.fallback_temperature
            self.max_tokens = self.config.fallback_max_tokens
        else:
            raise ValueError(f"Unknown LLM tier: {tier}")

        provider = provider or self.config.provider

        if provider == "openai":
            self._provider: BaseLLMProvider = OpenAIProvider(
                model=self.config.primary_model if tier == "primary" else self.config.fallback_model,
                api_key=self.config.openai_api_key,
                timeout=self.config.request_timeout,
            )
        elif provider == "ollama":
            self._provider = OllamaProvider(
                model=self.config.ollama_model if tier == "primary" else self.config.ollama_fallback_model,
                base_url=self.config.ollama_base_url,
                timeout=self.config.request_timeout,
            )
        else:
            raise ValueError(f"Unknown LLM provider: {provider}")

        self._provider_name = provider
        logger.info(f"LLMService initialized with {provider} provider ({tier} tier)")

    async def generate(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        on_token: Optional[TokenCallback] = None,
    ) -> LLMResponse:
        """
        Generate a response from the LLM.

        Args:
            prompt: Prompt text
            system_prompt: Optional system instructions
            on_token: Optional streaming callback (sync or async)

        Returns:
            LLMResponse object

        Raises:
            CompletionError: If the provider call fails
        """
        try:
            return await asyncio.wait_for(
                self._provider.generate(
                    prompt=prompt,
                    system_prompt=system_prompt,
                    temperature=self.temperature,
                    max_tokens=self.max_tokens,
                    on_token=on_token,
                ),
                timeout=self.config.request_timeout,
            )
        except Exception as e:
            raise CompletionError(f"{self.model_name} completion failed: {e}") from e

    async def close(self) -> None:
        await self._provider.close()

    @property
    def model_name(self) -> str:
        """Return the model name."""
        return self._provider.model_name

    @property
    def provider_name(self) -> str:
        """Return the provider name."""
        return self._provider_name
