"""
Tests for RAG Agent Module

The agent is wired with in-memory fakes for every external client.
"""

from unittest.mock import AsyncMock

import pytest

from config.settings import VectorStoreConfig
from message_rag.contextual_chain import APOLOGY
from message_rag.memory import ConversationTurn
from message_rag.rag_agent import MessageRAGAgent, create_agent
from message_rag.rag_chain import SearchFilters
from message_rag.vector_store import PineconeVectorBackend, VectorIndexClient, VectorIndexError

from conftest import (
    FakeEmbeddingService,
    FakeLLM,
    FakeMessageStore,
    FakeVectorIndex,
    make_message,
)


@pytest.fixture
def fakes(messages):
    return {
        "embedding_service": FakeEmbeddingService(),
        "vector_index": FakeVectorIndex(),
        "message_store": FakeMessageStore(messages),
        "primary_llm": FakeLLM(reply="Answer: yes", model="gpt-4-turbo-preview"),
        "fallback_llm": FakeLLM(reply="fallback", model="gpt-3.5-turbo"),
        "sleep": AsyncMock(),
    }


@pytest.fixture
def agent(fakes):
    return MessageRAGAgent(**fakes)


class TestLifecycle:
    """Tests for initialize/close and the async context manager."""

    @pytest.mark.asyncio
    async def test_context_manager(self, fakes):
        async with create_agent(**fakes) as agent:
            assert isinstance(agent, MessageRAGAgent)
            assert fakes["embedding_service"].initialized
            assert fakes["vector_index"].initialized

        assert fakes["embedding_service"].closed
        assert fakes["vector_index"].closed
        assert fakes["message_store"].closed
        assert fakes["primary_llm"].closed
        assert fakes["fallback_llm"].closed


class TestIngestion:
    """Tests for process_pending_messages and add_messages."""

    @pytest.mark.asyncio
    async def test_process_pending_messages(self, agent, fakes, messages):
        assert await agent.process_pending_messages() == 12
        assert fakes["message_store"].vectorized == {m.id for m in messages}
        assert await agent.process_pending_messages() == 0

    @pytest.mark.asyncio
    async def test_add_messages_accepts_dicts(self, agent, fakes):
        count = await agent.add_messages([
            make_message(1),
            {
                "id": "raw-1",
                "content": "from a dict",
                "timestamp": "2024-02-01T10:00:00Z",
                "user_id": "u2",
                "channel_id": "ops",
            },
        ])

        assert count == 2
        assert set(fakes["vector_index"].namespaces[""]) == {"msg-1", "raw-1"}

    @pytest.mark.asyncio
    async def test_add_messages_reports_successes_only(self, fakes):
        fakes["embedding_service"] = FakeEmbeddingService(failures={"message number 2": -1})
        agent = MessageRAGAgent(**fakes)

        assert await agent.add_messages([make_message(1), make_message(2)]) == 1


class TestQueries:
    """Tests for search_messages and answer."""

    @pytest.mark.asyncio
    async def test_search_messages(self, agent, messages):
        await agent.add_messages(messages)

        results = await agent.search_messages("message number 4", limit=2)

        assert len(results) == 2
        assert results[0]["content"] == "message number 4"
        assert set(results[0]) == {"content", "channel_name", "user_id", "timestamp", "score"}

    @pytest.mark.asyncio
    async def test_search_messages_with_filters(self, agent):
        await agent.add_messages([make_message(1, channel_id="eng"), make_message(2, channel_id="hr")])

        results = await agent.search_messages("message", limit=5, filters=SearchFilters(channels=["hr"]))

        assert [r["channel_name"] for r in results] == ["hr"]

    @pytest.mark.asyncio
    async def test_answer(self, agent, messages):
        await agent.add_messages(messages)

        result = await agent.answer("Is the launch on?")

        assert result["answer"] == "Answer: yes"
        assert len(result["sources"]) == 5
        assert "error" not in result

    @pytest.mark.asyncio
    async def test_answer_retrieval_failure(self, fakes):
        index = FakeVectorIndex()
        index.query = AsyncMock(side_effect=VectorIndexError("index down"))
        fakes["vector_index"] = index
        agent = MessageRAGAgent(**fakes)

        result = await agent.answer("anything")

        assert result["answer"] == APOLOGY
        assert result["sources"] == []
        assert "index down" in result["error"]

    @pytest.mark.asyncio
    async def test_answer_blank_query(self, agent):
        with pytest.raises(ValueError):
            await agent.answer("  ")


class TestInitializationErrors:
    """Configuration and index errors reach the caller of every operation."""

    @pytest.fixture
    def pinecone_without_key(self):
        return VectorIndexClient(
            config=VectorStoreConfig(provider="pinecone"),
            backend=PineconeVectorBackend(dimension=8, api_key=None),
        )

    @pytest.mark.asyncio
    async def test_add_messages_missing_index_key(self, fakes, pinecone_without_key):
        fakes["vector_index"] = pinecone_without_key
        agent = MessageRAGAgent(**fakes)

        with pytest.raises(ValueError, match="Pinecone API key"):
            await agent.add_messages([make_message(1)])

        assert fakes["embedding_service"].calls == []

    @pytest.mark.asyncio
    async def test_process_pending_missing_index_key(self, fakes, pinecone_without_key):
        fakes["vector_index"] = pinecone_without_key
        agent = MessageRAGAgent(**fakes)

        with pytest.raises(ValueError):
            await agent.process_pending_messages()

        assert fakes["message_store"].mark_calls == []

    @pytest.mark.asyncio
    async def test_missing_embedding_key(self, fakes):
        fakes["embedding_service"].init_error = ValueError("OpenAI API key not found")
        agent = MessageRAGAgent(**fakes)

        with pytest.raises(ValueError, match="OpenAI API key"):
            await agent.process_pending_messages()

        assert fakes["embedding_service"].calls == []

    @pytest.mark.asyncio
    async def test_answer_raises_when_index_cannot_be_created(self, fakes):
        """Unlike query failures, a broken index setup is not turned into an apology."""
        fakes["vector_index"].init_error = VectorIndexError("index could not be created")
        agent = MessageRAGAgent(**fakes)

        with pytest.raises(VectorIndexError):
            await agent.answer("anything")
        with pytest.raises(VectorIndexError):
            await agent.search_messages("anything")

    @pytest.mark.asyncio
    async def test_direct_messages_do_not_need_the_index(self, fakes):
        fakes["vector_index"].init_error = VectorIndexError("index could not be created")
        agent = MessageRAGAgent(**fakes)

        assert await agent.process_dm_message("hello") == "Answer: yes"

    @pytest.mark.asyncio
    async def test_tokenizer_loaded_once(self, agent, offline_tokenizer):
        await agent.initialize()
        await agent.process_dm_message("hello")
        await agent.answer("question")

        assert offline_tokenizer.call_count == 1


class TestDirectMessages:
    """Tests for the DM assistant endpoints."""

    @pytest.mark.asyncio
    async def test_process_dm_message(self, agent, fakes):
        history = [ConversationTurn("user", "hello"), ConversationTurn("assistant", "hi there")]

        reply = await agent.process_dm_message("what's new?", history)

        assert reply == "Answer: yes"
        assert "assistant: hi there" in fakes["primary_llm"].prompts[0]

    @pytest.mark.asyncio
    async def test_streaming(self, agent):
        tokens = []

        await agent.process_dm_message("hey", on_token=tokens.append)

        assert "".join(tokens) == "Generated answer"

    @pytest.mark.asyncio
    async def test_get_suggested_response(self, fakes):
        fakes["primary_llm"] = FakeLLM(reply="You could ask: What's next?")
        agent = MessageRAGAgent(**fakes)

        suggestion = await agent.get_suggested_response([ConversationTurn("user", "hi")])

        assert suggestion == "What's next?"


class TestStats:
    @pytest.mark.asyncio
    async def test_get_stats(self, agent, messages):
        await agent.add_messages(messages[:3])

        stats = await agent.get_stats()

        assert stats["vector_index"]["total_vector_count"] == 3
        assert stats["embedding"]["dimension"] == 8
        assert stats["llm"] == {"primary": "gpt-4-turbo-preview", "fallback": "gpt-3.5-turbo"}
