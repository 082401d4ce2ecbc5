"""
Pending-Message Sweeper

Finds messages that were never vectorized and drains them through the
ingestion engine, one page per run.

The sweeper is the only writer of the is_vectorized flag and sets it only
for messages whose vectors were upserted. Anything that failed stays
pending and is picked up again by a later run.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from config.settings import get_settings, SweeperConfig
from message_rag.ingestion import BatchIngestionEngine
from message_rag.message_store import MessageStore

logger = logging.getLogger(__name__)


class PendingMessageSweeper:
    """
    Drains unvectorized messages from the datastore into the vector index.

    Example:
        sweeper = PendingMessageSweeper(store, engine)
        processed = await sweeper.run()
    """

    def __init__(
        self,
        store: MessageStore,
        engine: BatchIngestionEngine,
        config: Optional[SweeperConfig] = None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
    ):
        self.store = store
        self.engine = engine
        self.config = config or get_settings().sweeper
        self._sleep = sleep or asyncio.sleep

    async def run(self, namespace: Optional[str] = None) -> int:
        """
        Process one page of pending messages.

        Returns:
            Number of messages vectorized in this run

        Raises:
            Datastore errors, after logging them
        """
        try:
            messages = await self.store.fetch_unvectorized(self.config.page_size)
        except Exception as e:
            logger.error(f"Failed to fetch pending messages: {e}")
            raise

        if not messages:
            logger.info("No pending messages to vectorize")
            return 0

        logger.info(f"Found {len(messages)} pending messages")

        result = await self.engine.process_batch(messages, namespace=namespace)

        if result.failed:
            logger.warning(
                f"{result.failed} messages failed and remain pending: {result.errors}"
            )

        if result.succeeded_ids:
            try:
                await self.store.mark_vectorized(result.succeeded_ids)
            except Exception as e:
                logger.error(f"Failed to mark messages vectorized: {e}")
                raise

        logger.info(f"Vectorized {result.successful} of {len(messages)} pending messages")
        return result.successful

    async def run_until_drained(
        self,
        max_sweeps: int = 100,
        namespace: Optional[str] = None,
    ) -> int:
        """
        Repeat run() until a sweep vectorizes nothing.

        Stops early when a sweep makes no progress so a permanently failing
        page does not loop forever.
        """
        total = 0
        for _ in range(max_sweeps):
            processed = await self.run(namespace=namespace)
            total += processed
            if processed == 0:
                break
        return total

    async def run_periodically(
        self,
        interval_seconds: Optional[float] = None,
        max_runs: Optional[int] = None,
    ) -> int:
        """
        Run a sweep every interval_seconds.

        Datastore errors are logged and the loop keeps going; the next tick
        retries. Runs forever unless max_runs is given.

        Returns:
            Total number of messages vectorized
        """
        interval = self.config.interval_seconds if interval_seconds is None else interval_seconds
        runs = 0
        total = 0

        while max_runs is None or runs < max_runs:
            try:
                total += await self.run()
            except Exception as e:
                logger.error(f"Sweep failed, retrying in {interval}s: {e}")
            runs += 1

            if max_runs is None or runs < max_runs:
                await self._sleep(interval)

        return total
