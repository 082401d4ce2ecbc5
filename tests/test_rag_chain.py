"""
Tests for RAG Chain Module

Tests retrieval, filtering, context building and answer assembly against
in-memory fakes.
"""

from datetime import datetime, timedelta, timezone

import pytest

from config.settings import ContextConfig
from message_rag.contextual_chain import ContextualChain
from message_rag.rag_chain import (
    RAG_SYSTEM_PROMPT,
    RAGResponse,
    RetrievalFlow,
    SearchFilters,
    Source,
    build_context,
)
from message_rag.token_budget import TokenBudgeter
from message_rag.vector_store import QueryMatch, VectorRecord

from conftest import BASE_TIME, FakeEmbeddingService, FakeLLM, FakeVectorIndex, make_message, text_to_vector


def make_flow(index=None, primary=None, top_k=5):
    chain = ContextualChain(
        primary=primary or FakeLLM(reply="Answer: the launch is on Friday."),
        fallback=FakeLLM(reply="fallback"),
        budgeter=TokenBudgeter(),
        config=ContextConfig(max_context_tokens=4000),
    )
    return RetrievalFlow(FakeEmbeddingService(), index or FakeVectorIndex(), chain, top_k=top_k)


async def seed(index, messages, namespace=None):
    await index.upsert(
        [VectorRecord(id=m.id, values=text_to_vector(m.content), metadata=m.to_metadata()) for m in messages],
        namespace=namespace,
    )


class TestSearchFilters:
    """Tests for SearchFilters.matches."""

    def test_empty_filters_match_everything(self):
        assert SearchFilters().matches({"channel_id": "any"})

    def test_channels(self):
        filters = SearchFilters(channels=["eng", "ops"])

        assert filters.matches({"channel_id": "eng"})
        assert not filters.matches({"channel_id": "random"})

    def test_workspace(self):
        filters = SearchFilters(workspace_id="ws-1")

        assert filters.matches({"workspace_id": "ws-1"})
        assert not filters.matches({"workspace_id": "ws-2"})
        assert not filters.matches({})

    def test_date_range(self):
        filters = SearchFilters(
            start=datetime(2024, 1, 1, tzinfo=timezone.utc),
            end=datetime(2024, 1, 31, tzinfo=timezone.utc),
        )
        inside = int(datetime(2024, 1, 15, tzinfo=timezone.utc).timestamp() * 1000)
        before = int(datetime(2023, 12, 31, tzinfo=timezone.utc).timestamp() * 1000)

        assert filters.matches({"timestamp": inside})
        assert not filters.matches({"timestamp": before})
        assert not filters.matches({})

    def test_naive_dates_are_utc(self):
        filters = SearchFilters(start=datetime(2024, 1, 1))
        ts = int(datetime(2024, 1, 1, tzinfo=timezone.utc).timestamp() * 1000)

        assert filters.matches({"timestamp": ts})


class TestSource:
    """Tests for Source formatting."""

    def test_from_match(self):
        match = QueryMatch(
            id="m1",
            score=0.87,
            metadata={
                "content": "ship it",
                "channel_id": "eng",
                "user_id": "u1",
                "timestamp": int(BASE_TIME.timestamp() * 1000),
            },
        )

        source = Source.from_match(match)

        assert source.timestamp == BASE_TIME.isoformat()
        assert source.to_dict() == {
            "content": "ship it",
            "channel_name": "eng",
            "user_id": "u1",
            "timestamp": BASE_TIME.isoformat(),
            "score": 0.87,
        }

    def test_missing_channel(self):
        source = Source.from_match(QueryMatch(id="m1", score=0.5, metadata={"content": "x"}))
        assert source.channel_id == "unknown"

    def test_context_block(self):
        source = Source(content="ship it", channel_id="eng", user_id="u1", timestamp="T", score=1.0)

        assert source.to_context_block() == "Message: ship it\nFrom: u1\nChannel: eng\nTime: T\n"

    def test_build_context(self):
        a = Source(content="a", channel_id="c", user_id="u", timestamp="t", score=1.0)
        b = Source(content="b", channel_id="c", user_id="u", timestamp="t", score=0.5)

        context = build_context([a, b])

        assert context == a.to_context_block() + "\n" + b.to_context_block()
        assert build_context([]) == ""


class TestRetrievalFlow:
    """Tests for RetrievalFlow.search and answer."""

    @pytest.mark.asyncio
    async def test_search_ranks_by_similarity(self, messages):
        index = FakeVectorIndex()
        await seed(index, messages)

        sources = await make_flow(index).search("message number 3", limit=3)

        assert len(sources) == 3
        assert sources[0].content == "message number 3"
        assert sources[0].score == pytest.approx(1.0)
        assert [s.score for s in sources] == sorted((s.score for s in sources), reverse=True)

    @pytest.mark.asyncio
    async def test_search_blank_query(self):
        with pytest.raises(ValueError, match="empty"):
            await make_flow().search("   ")

    @pytest.mark.asyncio
    async def test_search_with_filters(self):
        index = FakeVectorIndex()
        await seed(index, [
            make_message(1, channel_id="eng"),
            make_message(2, channel_id="sales"),
            make_message(3, channel_id="eng"),
        ])

        sources = await make_flow(index).search(
            "message", limit=10, filters=SearchFilters(channels=["eng"])
        )

        assert {s.channel_id for s in sources} == {"eng"}
        assert len(sources) == 2

    @pytest.mark.asyncio
    async def test_search_namespace(self):
        index = FakeVectorIndex()
        await seed(index, [make_message(1)], namespace="ws-1")

        flow = make_flow(index)

        assert len(await flow.search("message number 1", namespace="ws-1")) == 1
        assert await flow.search("message number 1") == []

    @pytest.mark.asyncio
    async def test_answer_with_sources(self, messages):
        index = FakeVectorIndex()
        await seed(index, messages)
        primary = FakeLLM(reply="Answer: the launch is on Friday.")

        response = await make_flow(index, primary=primary, top_k=5).answer("When is the launch?")

        assert isinstance(response, RAGResponse)
        assert response.answer == "Answer: the launch is on Friday."
        assert len(response.sources) == 5
        assert response.metadata["matches_found"] == 5
        prompt = primary.prompts[0]
        assert prompt.startswith(f"System: {RAG_SYSTEM_PROMPT}")
        assert "User: When is the launch?" in prompt
        for source in response.sources:
            assert f"Message: {source.content}" in prompt

    @pytest.mark.asyncio
    async def test_empty_index_still_answers(self):
        """No matches is not an error: the model answers with empty context."""
        primary = FakeLLM(reply="I don't have enough information.")

        response = await make_flow(primary=primary).answer("Anything about pricing?")

        assert response.sources == []
        assert response.answer == "I don't have enough information."
        assert "Context: \n\n" in primary.prompts[0]

    @pytest.mark.asyncio
    async def test_filtered_out_sources_not_in_context(self):
        index = FakeVectorIndex()
        old = make_message(1, content="old plan", timestamp=BASE_TIME - timedelta(days=30))
        new = make_message(2, content="new plan")
        await seed(index, [old, new])
        primary = FakeLLM()

        response = await make_flow(index, primary=primary).answer(
            "plan", filters=SearchFilters(start=BASE_TIME - timedelta(days=1))
        )

        assert [s.content for s in response.sources] == ["new plan"]
        assert "old plan" not in primary.prompts[0]

    @pytest.mark.asyncio
    async def test_answer_blank_query(self):
        with pytest.raises(ValueError):
            await make_flow().answer("")

    @pytest.mark.asyncio
    async def test_to_dict(self, messages):
        index = FakeVectorIndex()
        await seed(index, messages[:2])

        data = (await make_flow(index).answer("message")).to_dict()

        assert set(data) == {"answer", "sources", "query", "metadata"}
        assert data["query"] == "message"
        assert len(data["sources"]) == 2
