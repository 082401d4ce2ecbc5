"""
Message Store Module

Adapter over the chat application's message collection. The pipeline only
needs two operations: read a page of messages that have no vector yet, and
flip their is_vectorized flag once the vector is durable.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from functools import partial
from typing import List, Optional

from config.settings import get_settings
from message_rag.ingestion import Message

logger = logging.getLogger(__name__)


class MessageStoreError(RuntimeError):
    """Raised when the backing datastore cannot be read or updated."""


class MessageStore(ABC):
    """Backing datastore interface used by the sweeper."""

    @abstractmethod
    async def fetch_unvectorized(self, limit: int) -> List[Message]:
        """Oldest messages with is_vectorized == false, at most limit."""
        pass

    @abstractmethod
    async def mark_vectorized(self, ids: List[str]) -> int:
        """Set is_vectorized = true for exactly these ids."""
        pass

    async def close(self) -> None:
        pass


class MongoMessageStore(MessageStore):
    """
    Message store on a MongoDB collection.

    Expected document shape:
        {_id, content, user_id, channel_id, workspace_id?, created_at,
         is_vectorized}
    """

    def __init__(
        self,
        uri: Optional[str] = None,
        database: Optional[str] = None,
        collection: Optional[str] = None,
    ):
        settings = get_settings()
        self.uri = uri or settings.vector_store.mongodb_uri
        self.database_name = database or settings.vector_store.mongodb_database
        self.collection_name = collection or settings.sweeper.messages_collection

        self._client = None
        self._collection = None
        # str(id) -> stored _id for the last fetched page, so ObjectId keys
        # survive the round trip
        self._raw_ids = {}

    def _connect(self):
        """Establish connection to MongoDB."""
        if self._collection is not None:
            return self._collection

        if not self.uri:
            raise ValueError(
                "MongoDB URI not configured. Set MONGODB_URI environment variable."
            )

        from pymongo import MongoClient

        self._client = MongoClient(self.uri)
        self._collection = self._client[self.database_name][self.collection_name]
        logger.info(
            f"Connected to message collection {self.database_name}.{self.collection_name}"
        )
        return self._collection

    async def _run(self, fn, *args, **kwargs):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, partial(fn, *args, **kwargs))

    def _fetch(self, limit: int) -> List[Message]:
        collection = self._connect()
        cursor = (
            collection.find({"is_vectorized": False})
            .sort("created_at", 1)
            .limit(limit)
        )
        messages = []
        raw_ids = {}
        for doc in cursor:
            raw_ids[str(doc["_id"])] = doc["_id"]
            messages.append(Message.from_dict(doc))
        # Only the current page is kept; ids from earlier pages are dropped
        self._raw_ids = raw_ids
        return messages

    def _mark(self, ids: List[str]) -> int:
        collection = self._connect()
        result = collection.update_many(
            {"_id": {"$in": [self._raw_ids.get(i, i) for i in ids]}},
            {"$set": {"is_vectorized": True}},
        )
        return result.modified_count

    async def fetch_unvectorized(self, limit: int) -> List[Message]:
        try:
            return await self._run(self._fetch, limit)
        except ValueError:
            raise
        except Exception as e:
            raise MessageStoreError(f"Failed to fetch unvectorized messages: {e}") from e

    async def mark_vectorized(self, ids: List[str]) -> int:
        if not ids:
            return 0
        try:
            return await self._run(self._mark, ids)
        except Exception as e:
            raise MessageStoreError(f"Failed to mark {len(ids)} messages vectorized: {e}") from e

    async def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None
            self._collection = None
