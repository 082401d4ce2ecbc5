"""
RAG Agent Module

Provides the API interface the chat application calls. This is the main
entry point that encapsulates the ingestion, sweep, retrieval and DM
assistant pipelines.

API Contract:
    class MessageRAGAgent:
        async def process_pending_messages(self) -> int
        async def add_messages(self, messages: list) -> int
        async def search_messages(self, query: str, limit: int) -> list
        async def answer(self, query: str, filters: SearchFilters = None) -> dict
        async def process_dm_message(self, message, history, on_token=None) -> str

Design Rationale:
- Clients are constructed once and owned by the agent; tests inject fakes
- initialize() verifies credentials and the vector index; every public
  operation runs it first, so configuration errors are raised, not logged;
  close() releases every client
- End users never see provider errors: failed answers become apologies
"""

import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from config.settings import get_settings
from message_rag.contextual_chain import APOLOGY, ContextualChain
from message_rag.dm_assistant import DMAssistant, HistoryLike
from message_rag.embeddings import EmbeddingError, EmbeddingService
from message_rag.ingestion import BatchIngestionEngine, Message
from message_rag.llm_service import LLMService, TokenCallback
from message_rag.message_store import MessageStore, MongoMessageStore
from message_rag.rag_chain import RetrievalFlow, SearchFilters
from message_rag.sweeper import PendingMessageSweeper
from message_rag.token_budget import TokenBudgeter
from message_rag.vector_store import VectorIndexClient, VectorIndexError

logger = logging.getLogger(__name__)


class MessageRAGAgent:
    """
    Main RAG Agent - the public API of the message pipeline.

    Example:
        async with MessageRAGAgent() as agent:
            await agent.add_messages(messages)
            result = await agent.answer("What did we decide about pricing?")
            print(result["answer"])

    API Contract:
        answer() returns:
        {
            "answer": str,
            "sources": list[dict],
        }
    """

    def __init__(
        self,
        embedding_service: Optional[EmbeddingService] = None,
        vector_index: Optional[VectorIndexClient] = None,
        message_store: Optional[MessageStore] = None,
        primary_llm: Optional[LLMService] = None,
        fallback_llm: Optional[LLMService] = None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
    ):
        """
        Initialize the agent.

        Args:
            embedding_service: Embedding client (default from config)
            vector_index: Vector index client (default from config)
            message_store: Backing datastore (default MongoDB)
            primary_llm: Primary completion tier (default from config)
            fallback_llm: Fallback completion tier (default from config)
            sleep: Awaitable sleep for backoff and pacing (injectable for tests)
        """
        settings = get_settings()

        logger.info("Initializing Message RAG Agent...")

        self._embedding_service = embedding_service or EmbeddingService()
        self._vector_index = vector_index or VectorIndexClient(
            dimension=self._embedding_service.dimension
        )
        self._message_store = message_store or MongoMessageStore()

        self._chain = ContextualChain(
            primary=primary_llm or LLMService(tier="primary"),
            fallback=fallback_llm or LLMService(tier="fallback"),
            budgeter=TokenBudgeter(settings.context.tokenizer_model),
            config=settings.context,
        )

        self._engine = BatchIngestionEngine(
            self._embedding_service,
            self._vector_index,
            config=settings.ingestion,
            sleep=sleep,
        )
        self._sweeper = PendingMessageSweeper(
            self._message_store,
            self._engine,
            config=settings.sweeper,
            sleep=sleep,
        )
        self._retrieval = RetrievalFlow(
            self._embedding_service,
            self._vector_index,
            self._chain,
            top_k=settings.retrieval.top_k,
        )
        self._dm_assistant = DMAssistant(self._chain, config=settings.context)

        self._initialized = False
        self._tokenizer_ready = False

        logger.info(
            f"Message RAG Agent initialized: "
            f"embedding={self._embedding_service.provider_name}, "
            f"vector_store={self._vector_index.provider}"
        )

    async def initialize(self) -> None:
        """
        Verify credentials and the vector index, and load the tokenizer.

        Safe to call repeatedly; every public operation calls it first so
        configuration errors reach the caller instead of being recorded as
        per-message failures.

        Raises:
            ValueError: Missing credentials or connection settings
            VectorIndexError: The index could not be verified or created
        """
        if self._initialized:
            return
        await self._embedding_service.initialize()
        await self._vector_index.initialize()
        await self._warm_tokenizer()
        self._initialized = True

    async def _warm_tokenizer(self) -> None:
        if not self._tokenizer_ready:
            await self._chain.budgeter.warm()
            self._tokenizer_ready = True

    async def close(self) -> None:
        await self._embedding_service.close()
        await self._vector_index.close()
        await self._message_store.close()
        await self._chain.close()
        self._initialized = False

    async def __aenter__(self) -> "MessageRAGAgent":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def process_pending_messages(self) -> int:
        """
        Vectorize one page of messages not yet in the index.

        Returns:
            Number of messages vectorized
        """
        await self.initialize()
        return await self._sweeper.run()

    async def add_messages(
        self,
        messages: List[Union[Message, Dict[str, Any]]],
        namespace: Optional[str] = None,
    ) -> int:
        """
        Vectorize messages directly, bypassing the datastore flag.

        Args:
            messages: Message objects or dicts with id, content, user_id,
                channel_id and timestamp

        Returns:
            Number of messages successfully vectorized
        """
        await self.initialize()
        parsed = [m if isinstance(m, Message) else Message.from_dict(m) for m in messages]
        result = await self._engine.process_batch(parsed, namespace=namespace)
        if result.failed:
            logger.warning(f"{result.failed} of {len(parsed)} messages failed: {result.errors}")
        return result.successful

    async def search_messages(
        self,
        query: str,
        limit: int = 5,
        filters: Optional[SearchFilters] = None,
    ) -> List[Dict[str, Any]]:
        """
        Find messages similar to a query.

        Returns:
            List of source dicts, best match first
        """
        await self.initialize()
        sources = await self._retrieval.search(query, limit=limit, filters=filters)
        return [s.to_dict() for s in sources]

    async def answer(
        self,
        query: str,
        filters: Optional[SearchFilters] = None,
    ) -> Dict[str, Any]:
        """
        Answer a question from the chat history.

        Args:
            query: User's question
            filters: Optional channel/date/workspace restrictions

        Returns:
            Dictionary with answer and sources

        Raises:
            ValueError: If query is empty or configuration is missing
            VectorIndexError: If the index cannot be verified or created
        """
        await self.initialize()
        try:
            response = await self._retrieval.answer(query, filters=filters)
        except (EmbeddingError, VectorIndexError) as e:
            logger.error(f"Query error: {e}")
            return {
                "answer": APOLOGY,
                "sources": [],
                "error": str(e),
            }

        return {
            "answer": response.answer,
            "sources": [s.to_dict() for s in response.sources],
        }

    async def process_dm_message(
        self,
        message: str,
        history: HistoryLike = (),
        on_token: Optional[TokenCallback] = None,
    ) -> str:
        """Reply to a direct message, optionally streaming tokens."""
        await self._warm_tokenizer()
        return await self._dm_assistant.process_dm_message(message, history, on_token=on_token)

    async def get_suggested_response(self, history: HistoryLike) -> str:
        """Suggest the user's next message, or "" if unavailable."""
        await self._warm_tokenizer()
        return await self._dm_assistant.get_suggested_response(history)

    async def get_stats(self) -> Dict[str, Any]:
        """
        Get statistics about the pipeline.

        Returns:
            Dictionary with system statistics
        """
        await self.initialize()
        return {
            "vector_index": await self._vector_index.describe(),
            "embedding": {
                "provider": self._embedding_service.provider_name,
                "model": self._embedding_service.model_name,
                "dimension": self._embedding_service.dimension,
            },
            "llm": {
                "primary": self._chain.primary.model_name,
                "fallback": self._chain.fallback.model_name,
            },
        }


def create_agent(**kwargs) -> MessageRAGAgent:
    """
    Create a Message RAG Agent with configuration defaults.

    Args:
        **kwargs: Injected clients for MessageRAGAgent

    Returns:
        Configured MessageRAGAgent instance (call initialize() before use)
    """
    return MessageRAGAgent(**kwargs)
