"""
Shared fixtures and in-memory fakes.

The fakes stand in for the embedding provider, vector index, datastore and
completion models so the suite never touches the network.
"""

import hashlib
import re
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional
from unittest.mock import AsyncMock, patch

import pytest

from message_rag.embeddings import EmbeddingError, cosine_similarity
from message_rag.ingestion import Message
from message_rag.llm_service import CompletionError, LLMResponse, emit_token
from message_rag.message_store import MessageStore
from message_rag.vector_store import QueryMatch, VectorIndexError, VectorRecord


def text_to_vector(text: str, dimension: int = 8) -> List[float]:
    """Deterministic pseudo-embedding."""
    digest = hashlib.sha256(text.encode("utf-8")).digest()
    return [(b / 255.0) - 0.5 for b in digest[:dimension]]


class FakeEncoding:
    """One token per character, except "..." which is a single token."""

    _pattern = re.compile(r"\.\.\.|.", re.S)

    def encode(self, text: str) -> List[str]:
        return self._pattern.findall(text)

    def decode(self, tokens: List[str]) -> str:
        return "".join(tokens)


class FakeEmbeddingService:
    """
    Embedding service with scripted failures.

    failures maps message content to the number of calls that fail before
    it succeeds; -1 fails forever.
    """

    provider_name = "fake"
    model_name = "fake-embedding"

    def __init__(self, failures: Optional[Dict[str, int]] = None, dimension: int = 8):
        self.failures = dict(failures or {})
        self.dimension = dimension
        self.calls: List[str] = []
        self.init_error: Optional[Exception] = None
        self.initialized = False
        self.closed = False

    async def initialize(self) -> None:
        if self.init_error:
            raise self.init_error
        self.initialized = True

    async def close(self) -> None:
        self.closed = True

    async def embed(self, text: str) -> List[float]:
        self.calls.append(text)
        remaining = self.failures.get(text, 0)
        if remaining:
            if remaining > 0:
                self.failures[text] = remaining - 1
            raise EmbeddingError(f"rate limited while embedding '{text}'")
        return text_to_vector(text, self.dimension)

    async def embed_query(self, query: str) -> List[float]:
        return await self.embed(query)


class FakeVectorIndex:
    """In-memory vector index; fail_on_calls lists 1-based upsert calls that raise."""

    provider = "fake"

    def __init__(self, fail_on_calls: Iterable[int] = ()):
        self.namespaces: Dict[str, Dict[str, VectorRecord]] = {}
        self.upsert_calls: List[List[str]] = []
        self.fail_on_calls = set(fail_on_calls)
        self.init_error: Optional[Exception] = None
        self.initialized = False
        self.closed = False

    async def initialize(self) -> None:
        if self.init_error:
            raise self.init_error
        self.initialized = True

    async def close(self) -> None:
        self.closed = True

    async def upsert(self, vectors: List[VectorRecord], namespace: Optional[str] = None) -> int:
        self.upsert_calls.append([v.id for v in vectors])
        if len(self.upsert_calls) in self.fail_on_calls:
            raise VectorIndexError("index unavailable")
        stored = self.namespaces.setdefault(namespace or "", {})
        for vector in vectors:
            stored[vector.id] = vector
        return len(vectors)

    async def query(
        self,
        vector: List[float],
        top_k: int = 5,
        namespace: Optional[str] = None,
    ) -> List[QueryMatch]:
        stored = self.namespaces.get(namespace or "", {})
        matches = [
            QueryMatch(
                id=record.id,
                score=cosine_similarity(vector, record.values),
                metadata=dict(record.metadata),
            )
            for record in stored.values()
        ]
        matches.sort(key=lambda m: m.score, reverse=True)
        return matches[:top_k]

    async def count(self, namespace: Optional[str] = None) -> int:
        if namespace is None:
            return sum(len(ns) for ns in self.namespaces.values())
        return len(self.namespaces.get(namespace, {}))

    async def describe(self) -> Dict:
        return {"provider": self.provider, "total_vector_count": await self.count()}


class FakeMessageStore(MessageStore):
    """Datastore holding messages and their is_vectorized flags."""

    def __init__(self, messages: Iterable[Message] = ()):
        self.messages = {m.id: m for m in messages}
        self.vectorized = set()
        self.mark_calls: List[List[str]] = []
        self.fetch_error: Optional[Exception] = None
        self.mark_error: Optional[Exception] = None
        self.closed = False

    async def fetch_unvectorized(self, limit: int) -> List[Message]:
        if self.fetch_error:
            raise self.fetch_error
        pending = [m for m in self.messages.values() if m.id not in self.vectorized]
        pending.sort(key=lambda m: m.timestamp)
        return pending[:limit]

    async def mark_vectorized(self, ids: List[str]) -> int:
        if self.mark_error:
            raise self.mark_error
        self.mark_calls.append(list(ids))
        self.vectorized.update(ids)
        return len(ids)

    async def close(self) -> None:
        self.closed = True


class FakeLLM:
    """Completion tier that replies, streams scripted tokens, or fails."""

    def __init__(
        self,
        reply: str = "Generated answer",
        model: str = "fake-model",
        error: Optional[str] = None,
        tokens: Optional[List[str]] = None,
    ):
        self.reply = reply
        self._model = model
        self.error = error
        self.tokens = tokens or ["Generated", " ", "answer"]
        self.prompts: List[str] = []
        self.callbacks = []
        self.closed = False

    async def generate(self, prompt, system_prompt=None, on_token=None) -> LLMResponse:
        self.prompts.append(prompt)
        self.callbacks.append(on_token)
        if self.error:
            raise CompletionError(self.error)
        if on_token is not None:
            for token in self.tokens:
                await emit_token(on_token, token)
            return LLMResponse(content="".join(self.tokens), model=self._model)
        return LLMResponse(content=self.reply, model=self._model)

    @property
    def model_name(self) -> str:
        return self._model

    async def close(self) -> None:
        self.closed = True


BASE_TIME = datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)


def make_message(i: int, **overrides) -> Message:
    fields = dict(
        id=f"msg-{i}",
        content=f"message number {i}",
        timestamp=BASE_TIME + timedelta(minutes=i),
        user_id="user-1",
        channel_id="general",
    )
    fields.update(overrides)
    return Message(**fields)


@pytest.fixture(autouse=True)
def offline_tokenizer():
    """Keep tiktoken from downloading encodings during tests."""
    with patch(
        "message_rag.token_budget.tiktoken.encoding_for_model",
        return_value=FakeEncoding(),
    ) as mock_encoding_for_model:
        yield mock_encoding_for_model


@pytest.fixture
def no_sleep():
    return AsyncMock()


@pytest.fixture
def messages():
    return [make_message(i) for i in range(1, 13)]
