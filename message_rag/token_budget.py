"""
Token Budgeter

Counts and truncates text against a model's token budget before anything is
sent to a completion model.

Design Rationale:
- Exact counts come from the model's tiktoken encoding
- If the tokenizer cannot be loaded or fails, a character heuristic
  (~4 characters per token) keeps the pipeline running instead of failing
- A failed encoding load is remembered, so an offline host does not retry
  the encoding download on every call
- Loading an encoding may download it; warm() does that in the executor so
  the event loop is never blocked by it
- Truncation keeps the START of the text so system prompts and the most
  relevant (first) context blocks survive
"""

import asyncio
import logging
import math
from typing import Any, Dict, Optional

import tiktoken

logger = logging.getLogger(__name__)

ELLIPSIS = "..."
CHARS_PER_TOKEN = 4
DEFAULT_TOKENIZER_MODEL = "gpt-4"


class TokenBudgeter:
    """
    Token counting and truncation for prompt assembly.

    Neither method raises: tokenizer problems degrade to the character
    heuristic and are logged as warnings.
    """

    def __init__(self, default_model: str = DEFAULT_TOKENIZER_MODEL):
        self.default_model = default_model
        # model -> encoding, or None when loading failed
        self._encodings: Dict[str, Any] = {}

    def _get_encoding(self, model: str):
        """Load (and cache) the tiktoken encoding for a model; None if unavailable."""
        if model not in self._encodings:
            try:
                self._encodings[model] = tiktoken.encoding_for_model(model)
            except Exception as e:
                logger.warning(
                    f"Tokenizer unavailable for model '{model}', using character estimate: {e}"
                )
                self._encodings[model] = None
        return self._encodings[model]

    async def warm(self, model: Optional[str] = None) -> bool:
        """
        Load the encoding off the event loop.

        Returns:
            True if the exact tokenizer is available
        """
        loop = asyncio.get_running_loop()
        encoding = await loop.run_in_executor(None, self._get_encoding, model or self.default_model)
        return encoding is not None

    @staticmethod
    def estimate_tokens(text: str) -> int:
        """Character-based estimate: ceil(len / 4)."""
        return math.ceil(len(text) / CHARS_PER_TOKEN)

    def count_tokens(self, text: str, model: Optional[str] = None) -> int:
        """
        Count tokens in text for the given model.

        Args:
            text: Text to measure
            model: Tokenizer model name (defaults to the budgeter's model)

        Returns:
            Exact token count, or the character estimate if tokenization fails
        """
        if not text:
            return 0

        encoding = self._get_encoding(model or self.default_model)
        if encoding is None:
            return self.estimate_tokens(text)

        try:
            return len(encoding.encode(text))
        except Exception as e:
            logger.warning(f"Tokenization failed, using character estimate: {e}")
            return self.estimate_tokens(text)

    def truncate(self, text: str, max_tokens: int, model: Optional[str] = None) -> str:
        """
        Truncate text to at most max_tokens tokens, keeping the beginning.

        Text already within budget is returned unchanged. Truncated text ends
        with an ellipsis, so the result may measure max_tokens + 1.

        Args:
            text: Text to truncate
            max_tokens: Token budget
            model: Tokenizer model name (defaults to the budgeter's model)

        Returns:
            Text within budget
        """
        model = model or self.default_model
        token_count = self.count_tokens(text, model)
        if token_count <= max_tokens:
            return text

        truncated = None
        encoding = self._get_encoding(model)
        if encoding is not None:
            try:
                tokens = encoding.encode(text)
                truncated = encoding.decode(tokens[:max_tokens]) + ELLIPSIS
            except Exception as e:
                logger.warning(f"Tokenizer truncation failed, cutting by character ratio: {e}")

        if truncated is None:
            ratio = max_tokens / token_count
            truncated = text[: math.floor(len(text) * ratio)] + ELLIPSIS

        logger.debug(f"Truncated text from {token_count} tokens to {max_tokens}")
        return truncated
