"""
RAG Chain Module

Answers questions about the chat history:
1. Query embedding
2. Vector search (retrieval)
3. Channel/date/workspace filtering on match metadata
4. Context building, one block per message
5. Completion through the contextual chain (token budget + fallback)
6. Response with the messages used as sources

Design Rationale:
- Retrieval and generation stay separate; search() exposes retrieval alone
- Every source in a response corresponds to a retrieved vector
- An empty index is not an error: the model still answers, with empty
  context, and the response carries no sources

RAG Pipeline Flow:
    Question → Query Embedding → Vector Search → Filter Top-K Matches
    → Build Context → Contextual Chain → Answer with Sources
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from config.settings import get_settings
from message_rag.contextual_chain import ContextualChain
from message_rag.embeddings import EmbeddingService
from message_rag.vector_store import QueryMatch, VectorIndexClient

logger = logging.getLogger(__name__)

RAG_SYSTEM_PROMPT = """You are a helpful assistant that analyzes conversation history from a Slack-like chat application.
Your task is to:
1. Understand the context from the provided messages
2. Answer the user's question by synthesizing information from these messages
3. Provide relevant quotes or examples from the messages to support your answer
4. If the context doesn't contain enough information to answer the question, clearly state that

Format your response in a clear, structured way:

Answer: [Your direct answer to the question]
Analysis: [Your analysis of the relevant messages and how they support your answer]
Supporting Evidence: [Relevant quotes from the messages]
Additional Context: [Any important context or caveats about your answer]"""


@dataclass
class SearchFilters:
    """
    Optional restrictions applied to retrieved messages.

    Attributes:
        channels: Keep only these channel ids
        start: Keep messages at or after this time
        end: Keep messages at or before this time
        workspace_id: Keep only messages from this workspace
    """
    channels: List[str] = field(default_factory=list)
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    workspace_id: Optional[str] = None

    @staticmethod
    def _epoch_ms(value: datetime) -> int:
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return int(value.timestamp() * 1000)

    def matches(self, metadata: Dict[str, Any]) -> bool:
        if self.channels and metadata.get("channel_id") not in self.channels:
            return False
        if self.workspace_id and metadata.get("workspace_id") != self.workspace_id:
            return False

        timestamp = metadata.get("timestamp")
        if self.start is not None:
            if timestamp is None or timestamp < self._epoch_ms(self.start):
                return False
        if self.end is not None:
            if timestamp is None or timestamp > self._epoch_ms(self.end):
                return False
        return True


@dataclass
class Source:
    """A retrieved message cited in an answer."""
    content: str
    channel_id: str
    user_id: str
    timestamp: str
    score: float

    @classmethod
    def from_match(cls, match: QueryMatch) -> "Source":
        metadata = match.metadata
        timestamp = metadata.get("timestamp")
        iso = ""
        if isinstance(timestamp, (int, float)):
            iso = datetime.fromtimestamp(timestamp / 1000, tz=timezone.utc).isoformat()
        return cls(
            content=metadata.get("content", ""),
            channel_id=metadata.get("channel_id") or "unknown",
            user_id=metadata.get("user_id", ""),
            timestamp=iso,
            score=match.score,
        )

    def to_context_block(self) -> str:
        return (
            f"Message: {self.content}\n"
            f"From: {self.user_id}\n"
            f"Channel: {self.channel_id}\n"
            f"Time: {self.timestamp}\n"
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "content": self.content,
            "channel_name": self.channel_id,
            "user_id": self.user_id,
            "timestamp": self.timestamp,
            "score": self.score,
        }


@dataclass
class RAGResponse:
    """
    Complete response from the retrieval flow.

    Attributes:
        answer: The generated answer text
        sources: Messages the answer was based on
        query: The original question
        metadata: Timing and match counts
    """
    answer: str
    sources: List[Source]
    query: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary (for API response)."""
        return {
            "answer": self.answer,
            "sources": [s.to_dict() for s in self.sources],
            "query": self.query,
            "metadata": self.metadata,
        }


def build_context(sources: List[Source]) -> str:
    """Join one block per source, separated by blank lines."""
    return "\n".join(s.to_context_block() for s in sources)


class RetrievalFlow:
    """
    Question answering over vectorized chat messages.

    Example:
        flow = RetrievalFlow(embedding_service, vector_index, chain)
        response = await flow.answer("When is the release?")
        print(response.answer)
        for source in response.sources:
            print(source.channel_id, source.content)
    """

    def __init__(
        self,
        embedding_service: EmbeddingService,
        vector_index: VectorIndexClient,
        chain: ContextualChain,
        top_k: Optional[int] = None,
        system_prompt: str = RAG_SYSTEM_PROMPT,
    ):
        self.embedding_service = embedding_service
        self.vector_index = vector_index
        self.chain = chain
        self.top_k = top_k or get_settings().retrieval.top_k
        self.system_prompt = system_prompt

    async def _retrieve(
        self,
        query: str,
        top_k: int,
        filters: Optional[SearchFilters],
        namespace: Optional[str],
    ) -> List[Source]:
        query_vector = await self.embedding_service.embed_query(query)
        matches = await self.vector_index.query(query_vector, top_k=top_k, namespace=namespace)

        if filters is not None:
            matches = [m for m in matches if filters.matches(m.metadata)]

        logger.debug(f"Retrieved {len(matches)} matches for query")
        return [Source.from_match(m) for m in matches]

    async def search(
        self,
        query: str,
        limit: Optional[int] = None,
        filters: Optional[SearchFilters] = None,
        namespace: Optional[str] = None,
    ) -> List[Source]:
        """
        Retrieve relevant messages without generating an answer.

        Args:
            query: Search text
            limit: Number of results (default top_k)

        Returns:
            Sources sorted by score descending
        """
        if not query or not query.strip():
            raise ValueError("Query cannot be empty")
        return await self._retrieve(query.strip(), limit or self.top_k, filters, namespace)

    async def answer(
        self,
        query: str,
        filters: Optional[SearchFilters] = None,
        namespace: Optional[str] = None,
    ) -> RAGResponse:
        """
        Answer a question from the chat history.

        Args:
            query: User's question
            filters: Optional channel/date/workspace restrictions
            namespace: Index namespace (default from configuration)

        Returns:
            RAGResponse with answer and sources

        Raises:
            ValueError: If query is empty
            EmbeddingError, VectorIndexError: If retrieval fails
        """
        if not query or not query.strip():
            raise ValueError("Query cannot be empty")

        start_time = time.time()
        sources = await self._retrieve(query.strip(), self.top_k, filters, namespace)
        retrieval_time = time.time() - start_time

        if not sources:
            logger.warning("No matching messages found, answering without context")

        answer = await self.chain.invoke(
            self.system_prompt,
            query,
            context=build_context(sources),
        )

        total_time = time.time() - start_time
        logger.info(
            f"RAG query completed in {total_time:.2f}s "
            f"(retrieval: {retrieval_time:.2f}s, {len(sources)} sources)"
        )

        return RAGResponse(
            answer=answer,
            sources=sources,
            query=query,
            metadata={
                "retrieval_time": retrieval_time,
                "total_time": total_time,
                "matches_found": len(sources),
            },
        )
