"""
Batch Ingestion Module

Turns chat messages into vectors and writes them to the vector index with
per-message success/failure accounting.

Design Rationale:
- Messages are processed in small sub-batches; embeddings inside a
  sub-batch run concurrently, sub-batches run strictly one after another
- Each embedding call is retried with linear backoff; a message that still
  fails is recorded and left out of the upsert
- One upsert per sub-batch keeps index round-trips low; if it fails, every
  message of that sub-batch is counted as failed
- A pause between sub-batches keeps the embedding provider under its rate
  limit
- Once the clients are initialized, process_batch does not raise: every
  message ends up either successful or failed, so successful + failed
  always equals the input size
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from config.settings import get_settings, IngestionConfig
from message_rag.embeddings import EmbeddingService
from message_rag.retry import retry_with_backoff
from message_rag.vector_store import VectorIndexClient, VectorRecord

# Configure logging
logger = logging.getLogger(__name__)


def _to_datetime(value: Union[datetime, int, float, str, None]) -> datetime:
    """Accept datetimes, epoch milliseconds or ISO-8601 strings."""
    if isinstance(value, datetime):
        return value
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    if isinstance(value, str) and value:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    return datetime.now(timezone.utc)


@dataclass
class Message:
    """
    A chat message to be vectorized.

    Attributes:
        id: Stable unique id (also used as the vector id)
        content: Message text
        timestamp: When the message was posted
        user_id: Author id
        channel_id: Channel the message was posted in
        workspace_id: Optional workspace id
    """

    id: str
    content: str
    timestamp: datetime
    user_id: str
    channel_id: str
    workspace_id: Optional[str] = None

    def to_metadata(self) -> Dict[str, Any]:
        """Flat metadata stored next to the vector."""
        metadata = {
            "content": self.content,
            "timestamp": int(self.timestamp.timestamp() * 1000),
            "user_id": self.user_id,
            "channel_id": self.channel_id,
        }
        if self.workspace_id:
            metadata["workspace_id"] = self.workspace_id
        return metadata

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Message":
        """Create from a datastore row or API payload."""
        return cls(
            id=str(data.get("id") or data.get("_id")),
            content=data.get("content", ""),
            timestamp=_to_datetime(
                data.get("timestamp") or data.get("created_at") or data.get("createdAt")
            ),
            user_id=str(data.get("user_id") or data.get("userId") or ""),
            channel_id=str(data.get("channel_id") or data.get("channelId") or ""),
            workspace_id=data.get("workspace_id") or data.get("workspaceId"),
        )


@dataclass
class IngestionResult:
    """
    Outcome of one process_batch call.

    Attributes:
        successful: Messages whose vectors were upserted
        failed: Messages that were not upserted
        errors: Human-readable error per failure
        succeeded_ids: Ids of successful messages
        failed_ids: Ids of failed messages
    """

    successful: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)
    succeeded_ids: List[str] = field(default_factory=list)
    failed_ids: List[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.successful + self.failed

    def record_success(self, message_ids: List[str]) -> None:
        self.successful += len(message_ids)
        self.succeeded_ids.extend(message_ids)

    def record_failure(self, message_id: str, error: str) -> None:
        self.failed += 1
        self.failed_ids.append(message_id)
        self.errors.append(error)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "successful": self.successful,
            "failed": self.failed,
            "errors": self.errors,
        }


class BatchIngestionEngine:
    """
    Embeds and upserts messages in rate-limited sub-batches.

    Example:
        engine = BatchIngestionEngine(embedding_service, vector_index)
        result = await engine.process_batch(messages)
        print(result.successful, result.failed)
    """

    def __init__(
        self,
        embedding_service: EmbeddingService,
        vector_index: VectorIndexClient,
        config: Optional[IngestionConfig] = None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
    ):
        """
        Initialize the ingestion engine.

        Args:
            embedding_service: Produces one vector per message
            vector_index: Destination index
            config: Batch size, retry and timeout settings
            sleep: Awaitable sleep used for backoff and pacing (injectable
                for tests)
        """
        self.embedding_service = embedding_service
        self.vector_index = vector_index
        self.config = config or get_settings().ingestion
        self._sleep = sleep or asyncio.sleep

        logger.info(
            f"BatchIngestionEngine initialized: batch_size={self.config.batch_size}, "
            f"max_retries={self.config.max_retries}"
        )

    async def _embed_with_retry(self, message: Message) -> List[float]:
        async def attempt() -> List[float]:
            return await asyncio.wait_for(
                self.embedding_service.embed(message.content),
                timeout=self.config.request_timeout,
            )

        return await retry_with_backoff(
            attempt,
            max_attempts=self.config.max_retries,
            delay=self.config.retry_delay,
            sleep=self._sleep,
        )

    async def _build_record(self, message: Message) -> VectorRecord:
        values = await self._embed_with_retry(message)
        return VectorRecord(id=message.id, values=values, metadata=message.to_metadata())

    async def _process_sub_batch(
        self,
        batch: List[Message],
        namespace: Optional[str],
        result: IngestionResult,
    ) -> None:
        outcomes = await asyncio.gather(
            *(self._build_record(m) for m in batch),
            return_exceptions=True,
        )

        records: List[VectorRecord] = []
        for message, outcome in zip(batch, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(f"Failed to embed message {message.id}: {outcome}")
                result.record_failure(
                    message.id, f"Failed to process message {message.id}: {outcome}"
                )
            else:
                records.append(outcome)

        if not records:
            return

        try:
            await asyncio.wait_for(
                self.vector_index.upsert(records, namespace=namespace),
                timeout=self.config.request_timeout,
            )
        except Exception as e:
            logger.error(f"Upsert of {len(records)} vectors failed: {e}")
            for record in records:
                result.record_failure(record.id, f"Failed to upsert message {record.id}: {e}")
            return

        result.record_success([r.id for r in records])

    async def process_batch(
        self,
        messages: List[Message],
        namespace: Optional[str] = None,
    ) -> IngestionResult:
        """
        Vectorize and upsert messages.

        Args:
            messages: Messages to ingest
            namespace: Index namespace (default from configuration)

        Returns:
            IngestionResult with successful + failed == len(messages)

        Raises:
            ValueError: Missing credentials or connection settings
            VectorIndexError: The index could not be verified or created
        """
        result = IngestionResult()
        if not messages:
            return result

        # Configuration and index problems are fatal, not per-message failures
        await self.embedding_service.initialize()
        await self.vector_index.initialize()

        batch_size = max(1, self.config.batch_size)
        total_batches = (len(messages) + batch_size - 1) // batch_size

        logger.info(
            f"Processing {len(messages)} messages in {total_batches} batches of {batch_size}"
        )

        for batch_number, start in enumerate(range(0, len(messages), batch_size), 1):
            batch = messages[start:start + batch_size]
            await self._process_sub_batch(batch, namespace, result)

            logger.info(
                f"Batch {batch_number}/{total_batches} done: "
                f"{result.successful} successful, {result.failed} failed so far"
            )

            if batch_number < total_batches:
                await self._sleep(self.config.inter_batch_delay)

        logger.info(
            f"Ingestion complete: {result.successful} successful, {result.failed} failed"
        )
        return result
