"""
Vector Store Module

Stores message embeddings and answers nearest-neighbour queries.
Supports three backends:
- Pinecone: Managed serverless index with native namespaces (default)
- FAISS: Local, fast, for development and tests
- MongoDB Atlas: Vector Search on a collection, namespaces as a filter field

Design Rationale:
- Abstract interface for easy backend switching
- Upserts are idempotent by id: re-ingesting a message overwrites its vector
- The index is verified (and created if missing) lazily on first use, once
  per client lifetime
- Backend SDKs are blocking, so the async facade runs them in the default
  executor

Schema (stored per message):
- id: Message id
- values: Embedding vector
- metadata: content, timestamp (epoch ms), user_id, channel_id[, workspace_id]
"""

import asyncio
import hashlib
import json
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from functools import partial
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from config.settings import get_settings, VectorStoreConfig

# Configure logging
logger = logging.getLogger(__name__)

DEFAULT_NAMESPACE_KEY = "__default__"


class VectorIndexError(RuntimeError):
    """Raised when the vector index cannot be reached or rejects a request."""


@dataclass
class VectorRecord:
    """
    One embedding stored in the index.

    Attributes:
        id: Message id (also the vector id)
        values: Embedding vector
        metadata: Flat metadata map
    """

    id: str
    values: List[float]
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "values": self.values, "metadata": self.metadata}


@dataclass
class QueryMatch:
    """A single nearest-neighbour hit, score higher is better."""

    id: str
    score: float
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __repr__(self) -> str:
        return f"QueryMatch(id='{self.id}', score={self.score:.4f})"


class BaseVectorBackend(ABC):
    """
    Abstract base class for vector index backends.

    Backends are synchronous; VectorIndexClient provides the async surface.
    All implementations must provide:
    - ensure_index: Verify the index exists, creating it if needed
    - upsert: Insert or overwrite records by id
    - query: Top-k nearest neighbours
    - delete: Remove records by id
    - count: Number of records in a namespace
    """

    @abstractmethod
    def ensure_index(self) -> None:
        pass

    @abstractmethod
    def upsert(self, records: List[VectorRecord], namespace: str = "") -> int:
        """
        Insert or overwrite records.

        Returns:
            Number of records written
        """
        pass

    @abstractmethod
    def query(
        self,
        vector: List[float],
        top_k: int,
        namespace: str = "",
    ) -> List[QueryMatch]:
        """
        Search for the closest records.

        Returns:
            Up to top_k matches, sorted by score descending
        """
        pass

    @abstractmethod
    def delete(self, ids: List[str], namespace: str = "") -> int:
        pass

    @abstractmethod
    def count(self, namespace: Optional[str] = None) -> int:
        """Records in a namespace, or in all namespaces when None."""
        pass

    def describe(self) -> Dict[str, Any]:
        return {"total_vector_count": self.count()}

    def close(self) -> None:
        pass


class PineconeVectorBackend(BaseVectorBackend):
    """
    Pinecone serverless index.

    The index is created with the configured dimension and metric when it
    does not exist yet. Namespaces map directly to Pinecone namespaces.
    """

    def __init__(
        self,
        dimension: int,
        api_key: Optional[str] = None,
        index_name: str = "slack-rag",
        metric: str = "cosine",
        cloud: str = "aws",
        region: str = "us-east-1",
    ):
        self.dimension = dimension
        self.api_key = api_key
        self.index_name = index_name
        self.metric = metric
        self.cloud = cloud
        self.region = region

        self._client = None
        self._index = None

        logger.info(
            f"PineconeVectorBackend initialized: index={index_name}, "
            f"dimension={dimension}, metric={metric}"
        )

    def _get_client(self):
        """Get or create the Pinecone client."""
        if self._client is None:
            if not self.api_key:
                raise ValueError(
                    "Pinecone API key not found. Set PINECONE_API_KEY environment variable."
                )

            from pinecone import Pinecone

            self._client = Pinecone(api_key=self.api_key)
        return self._client

    def ensure_index(self) -> None:
        from pinecone import ServerlessSpec

        client = self._get_client()
        existing_names = [idx.name for idx in client.list_indexes()]

        if self.index_name not in existing_names:
            logger.info(f"Creating Pinecone index '{self.index_name}'")
            client.create_index(
                name=self.index_name,
                dimension=self.dimension,
                metric=self.metric,
                spec=ServerlessSpec(cloud=self.cloud, region=self.region),
            )

        self._index = client.Index(self.index_name)
        logger.info(f"Pinecone index '{self.index_name}' ready")

    def _get_index(self):
        if self._index is None:
            self.ensure_index()
        return self._index

    def upsert(self, records: List[VectorRecord], namespace: str = "") -> int:
        if not records:
            return 0
        index = self._get_index()
        index.upsert(vectors=[r.to_dict() for r in records], namespace=namespace)
        return len(records)

    def query(
        self,
        vector: List[float],
        top_k: int,
        namespace: str = "",
    ) -> List[QueryMatch]:
        index = self._get_index()
        response = index.query(
            vector=vector,
            top_k=top_k,
            namespace=namespace,
            include_metadata=True,
        )
        matches = [
            QueryMatch(id=m.id, score=float(m.score), metadata=dict(m.metadata or {}))
            for m in response.matches
        ]
        return sorted(matches, key=lambda m: m.score, reverse=True)

    def delete(self, ids: List[str], namespace: str = "") -> int:
        if not ids:
            return 0
        self._get_index().delete(ids=ids, namespace=namespace)
        return len(ids)

    def count(self, namespace: Optional[str] = None) -> int:
        stats = self._get_index().describe_index_stats()
        if namespace is None:
            return int(stats.total_vector_count)
        ns_stats = stats.namespaces.get(namespace)
        return int(ns_stats.vector_count) if ns_stats else 0

    def describe(self) -> Dict[str, Any]:
        stats = self._get_index().describe_index_stats()
        return {
            "index_name": self.index_name,
            "dimension": self.dimension,
            "total_vector_count": int(stats.total_vector_count),
            "namespaces": {
                name: int(ns.vector_count) for name, ns in stats.namespaces.items()
            },
        }


class FAISSVectorBackend(BaseVectorBackend):
    """
    FAISS-based vector index for local development and tests.

    One IndexIDMap2 over IndexFlatIP per namespace. Vectors are normalized,
    so inner product equals cosine similarity. Upserting an existing id
    removes the old vector first (last write wins).

    FAISS indexes are not safe for concurrent reads and writes, and the
    async client runs backend calls on executor threads, so every public
    method holds one lock for its whole duration.
    """

    def __init__(
        self,
        dimension: int,
        index_path: Optional[str] = None,
    ):
        """
        Initialize FAISS backend.

        Args:
            dimension: Embedding dimension (must match your model)
            index_path: Directory to save/load namespaces (optional)
        """
        self.dimension = dimension
        self.index_path = Path(index_path) if index_path else None

        # namespace key -> faiss index
        self._indexes: Dict[str, Any] = {}
        # namespace key -> {record id -> (faiss id, metadata)}
        self._records: Dict[str, Dict[str, Tuple[int, Dict[str, Any]]]] = {}
        self._next_id = 0
        self._loaded = False
        self._lock = threading.RLock()

        logger.info(
            f"FAISSVectorBackend initialized: dimension={dimension}, "
            f"index_path={index_path}"
        )

    @staticmethod
    def _ns_key(namespace: str) -> str:
        return namespace or DEFAULT_NAMESPACE_KEY

    @staticmethod
    def _index_filename(key: str) -> str:
        """File name for a namespace; never derived from the raw namespace text."""
        return hashlib.sha256(key.encode("utf-8")).hexdigest()[:32] + ".index"

    def _new_index(self):
        try:
            import faiss
        except ImportError:
            raise ImportError(
                "faiss-cpu is required for FAISS vector store. "
                "Install with: pip install faiss-cpu"
            )
        return faiss.IndexIDMap2(faiss.IndexFlatIP(self.dimension))

    def _normalize(self, vectors: np.ndarray) -> np.ndarray:
        """Normalize vectors for cosine similarity."""
        norms = np.linalg.norm(vectors, axis=1, keepdims=True)
        norms[norms == 0] = 1  # Avoid division by zero
        return vectors / norms

    def ensure_index(self) -> None:
        with self._lock:
            if self._loaded:
                return
            if self.index_path and self.index_path.exists():
                self._load()
            self._loaded = True

    def _namespace(self, namespace: str):
        key = self._ns_key(namespace)
        if key not in self._indexes:
            self._indexes[key] = self._new_index()
            self._records[key] = {}
        return self._indexes[key], self._records[key]

    def upsert(self, records: List[VectorRecord], namespace: str = "") -> int:
        if not records:
            return 0

        for record in records:
            if len(record.values) != self.dimension:
                raise ValueError(
                    f"Vector for '{record.id}' has dimension {len(record.values)}, "
                    f"expected {self.dimension}"
                )

        # Last occurrence of an id within one call wins too
        latest = {r.id: r for r in records}
        vectors = self._normalize(
            np.array([r.values for r in latest.values()], dtype=np.float32)
        )

        with self._lock:
            index, stored = self._namespace(namespace)

            replaced = [stored[rid][0] for rid in latest if rid in stored]
            if replaced:
                index.remove_ids(np.array(replaced, dtype=np.int64))

            faiss_ids = []
            for rid, record in latest.items():
                faiss_ids.append(self._next_id)
                stored[rid] = (self._next_id, dict(record.metadata))
                self._next_id += 1

            index.add_with_ids(vectors, np.array(faiss_ids, dtype=np.int64))

            logger.debug(
                f"Upserted {len(latest)} vectors into namespace '{namespace}' "
                f"({len(replaced)} replaced)"
            )

            if self.index_path:
                self._save()

        return len(latest)

    def query(
        self,
        vector: List[float],
        top_k: int,
        namespace: str = "",
    ) -> List[QueryMatch]:
        key = self._ns_key(namespace)
        query_vector = self._normalize(np.array([vector], dtype=np.float32))

        with self._lock:
            index = self._indexes.get(key)
            if index is None or index.ntotal == 0:
                logger.warning(f"Query on empty namespace '{namespace}'")
                return []

            by_faiss_id = {fid: (rid, meta) for rid, (fid, meta) in self._records[key].items()}
            k = min(top_k, index.ntotal)
            scores, ids = index.search(query_vector, k)

        matches = []
        for score, fid in zip(scores[0], ids[0]):
            if fid < 0:  # FAISS returns -1 for not found
                continue
            entry = by_faiss_id.get(int(fid))
            if entry:
                rid, meta = entry
                matches.append(QueryMatch(id=rid, score=float(score), metadata=dict(meta)))

        return matches

    def delete(self, ids: List[str], namespace: str = "") -> int:
        key = self._ns_key(namespace)
        with self._lock:
            if key not in self._indexes:
                return 0

            stored = self._records[key]
            faiss_ids = [stored.pop(rid)[0] for rid in ids if rid in stored]
            if faiss_ids:
                self._indexes[key].remove_ids(np.array(faiss_ids, dtype=np.int64))
                if self.index_path:
                    self._save()

        return len(faiss_ids)

    def count(self, namespace: Optional[str] = None) -> int:
        with self._lock:
            if namespace is None:
                return sum(len(r) for r in self._records.values())
            return len(self._records.get(self._ns_key(namespace), {}))

    def describe(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "dimension": self.dimension,
                "total_vector_count": self.count(),
                "namespaces": {
                    ("" if k == DEFAULT_NAMESPACE_KEY else k): len(v)
                    for k, v in self._records.items()
                },
            }

    def _save(self):
        """Save every namespace index and its metadata to disk. Caller holds the lock."""
        import faiss

        self.index_path.mkdir(parents=True, exist_ok=True)

        files = {}
        for key, index in self._indexes.items():
            files[key] = self._index_filename(key)
            faiss.write_index(index, str(self.index_path / files[key]))

        metadata = {
            "dimension": self.dimension,
            "next_id": self._next_id,
            "files": files,
            "namespaces": {
                key: {rid: [fid, meta] for rid, (fid, meta) in records.items()}
                for key, records in self._records.items()
            },
        }
        with open(self.index_path / "metadata.json", "w", encoding="utf-8") as f:
            json.dump(metadata, f, indent=2)

        logger.debug(f"Saved FAISS indexes to {self.index_path}")

    def _load(self):
        """Load namespace indexes and metadata from disk."""
        import faiss

        metadata_path = self.index_path / "metadata.json"
        if not metadata_path.exists():
            return

        try:
            with open(metadata_path, "r", encoding="utf-8") as f:
                metadata = json.load(f)

            files = metadata.get("files", {})
            for key, records in metadata["namespaces"].items():
                filename = files.get(key, self._index_filename(key))
                if Path(filename).name != filename:
                    raise ValueError(f"Invalid index file name in metadata: {filename}")
                self._indexes[key] = faiss.read_index(str(self.index_path / filename))
                self._records[key] = {
                    rid: (int(fid), meta) for rid, (fid, meta) in records.items()
                }
            self._next_id = metadata["next_id"]

            logger.info(f"Loaded FAISS indexes with {self.count()} vectors")

        except Exception as e:
            logger.error(f"Failed to load FAISS index: {e}")
            self._indexes = {}
            self._records = {}
            self._next_id = 0


class MongoDBVectorBackend(BaseVectorBackend):
    """
    MongoDB Atlas Vector Search backend.

    Each record is one document keyed by "<namespace>::<id>" so the same
    message id can live in several namespaces. Queries filter on the
    namespace field inside $vectorSearch.

    Requires:
    - MongoDB Atlas cluster with Vector Search enabled
    """

    def __init__(
        self,
        dimension: int,
        uri: Optional[str] = None,
        database: str = "chat_app",
        collection: str = "message_vectors",
        vector_index: str = "vector_index",
        metric: str = "cosine",
    ):
        self.dimension = dimension
        self.uri = uri
        self.database_name = database
        self.collection_name = collection
        self.vector_index = vector_index
        self.metric = metric

        self._client = None
        self._collection = None

        logger.info(
            f"MongoDBVectorBackend initialized: db={self.database_name}, "
            f"collection={self.collection_name}"
        )

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

        # Test connection
        self._client.admin.command("ping")
        logger.info("Connected to MongoDB Atlas")

        return self._collection

    def index_definition(self) -> Dict[str, Any]:
        """Atlas vectorSearch index definition for this collection."""
        return {
            "fields": [
                {
                    "type": "vector",
                    "path": "embedding",
                    "numDimensions": self.dimension,
                    "similarity": self.metric,
                },
                {"type": "filter", "path": "namespace"},
            ]
        }

    def ensure_index(self) -> None:
        from pymongo.operations import SearchIndexModel

        collection = self._connect()
        existing = list(collection.list_search_indexes(self.vector_index))
        if existing:
            return

        logger.info(f"Creating Atlas vector index '{self.vector_index}'")
        collection.create_search_index(
            SearchIndexModel(
                definition=self.index_definition(),
                name=self.vector_index,
                type="vectorSearch",
            )
        )

    @staticmethod
    def _doc_id(record_id: str, namespace: str) -> str:
        return f"{namespace}::{record_id}"

    def upsert(self, records: List[VectorRecord], namespace: str = "") -> int:
        from pymongo import UpdateOne

        if not records:
            return 0

        collection = self._connect()
        operations = [
            UpdateOne(
                {"_id": self._doc_id(r.id, namespace)},
                {
                    "$set": {
                        "vector_id": r.id,
                        "namespace": namespace,
                        "embedding": r.values,
                        "metadata": r.metadata,
                    }
                },
                upsert=True,
            )
            for r in records
        ]

        result = collection.bulk_write(operations)
        logger.debug(
            f"MongoDB upsert: {result.upserted_count} inserted, "
            f"{result.modified_count} modified"
        )
        return len(records)

    def query(
        self,
        vector: List[float],
        top_k: int,
        namespace: str = "",
    ) -> List[QueryMatch]:
        collection = self._connect()

        pipeline = [
            {
                "$vectorSearch": {
                    "index": self.vector_index,
                    "path": "embedding",
                    "queryVector": vector,
                    "numCandidates": top_k * 10,
                    "limit": top_k,
                    "filter": {"namespace": namespace},
                }
            },
            {
                "$project": {
                    "_id": 0,
                    "vector_id": 1,
                    "metadata": 1,
                    "score": {"$meta": "vectorSearchScore"},
                }
            },
        ]

        return [
            QueryMatch(
                id=doc["vector_id"],
                score=float(doc.get("score", 0.0)),
                metadata=doc.get("metadata", {}),
            )
            for doc in collection.aggregate(pipeline)
        ]

    def delete(self, ids: List[str], namespace: str = "") -> int:
        collection = self._connect()
        result = collection.delete_many(
            {"_id": {"$in": [self._doc_id(i, namespace) for i in ids]}}
        )
        return result.deleted_count

    def count(self, namespace: Optional[str] = None) -> int:
        collection = self._connect()
        query = {} if namespace is None else {"namespace": namespace}
        return collection.count_documents(query)

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None
            self._collection = None


class VectorIndexClient:
    """
    Async vector index client with a unified interface.

    This is the class that other components should use. It selects the
    backend from configuration and verifies the index once, lazily, on the
    first operation (or on an explicit initialize()).

    Example:
        index = VectorIndexClient(dimension=1536)
        await index.upsert([VectorRecord(id="m1", values=vec, metadata={...})])
        matches = await index.query(vec, top_k=5)
    """

    def __init__(
        self,
        provider: Optional[str] = None,
        config: Optional[VectorStoreConfig] = None,
        dimension: Optional[int] = None,
        backend: Optional[BaseVectorBackend] = None,
    ):
        """
        Initialize the vector index client.

        Args:
            provider: "pinecone", "faiss" or "mongodb" (default from config)
            config: Optional VectorStoreConfig
            dimension: Embedding dimension (default from embedding config)
            backend: Pre-built backend, bypasses provider selection
        """
        settings = get_settings()
        self.config = config or settings.vector_store
        self.default_namespace = self.config.namespace
        dimension = dimension or settings.embedding.dimension

        provider = provider or self.config.provider
        self._provider_name = provider

        if backend is not None:
            self._backend = backend
        elif provider == "pinecone":
            self._backend = PineconeVectorBackend(
                dimension=dimension,
                api_key=self.config.pinecone_api_key,
                index_name=self.config.pinecone_index_name,
                metric=self.config.metric,
                cloud=self.config.pinecone_cloud,
                region=self.config.pinecone_region,
            )
        elif provider == "faiss":
            self._backend = FAISSVectorBackend(
                dimension=dimension,
                index_path=self.config.faiss_index_path,
            )
        elif provider == "mongodb":
            self._backend = MongoDBVectorBackend(
                dimension=dimension,
                uri=self.config.mongodb_uri,
                database=self.config.mongodb_database,
                collection=self.config.mongodb_collection,
                vector_index=self.config.mongodb_vector_index,
                metric=self.config.metric,
            )
        else:
            raise ValueError(f"Unknown vector store provider: {provider}")

        self._initialized = False
        self._init_lock = asyncio.Lock()

        logger.info(f"VectorIndexClient initialized with {provider} backend")

    async def _run(self, fn, *args, **kwargs):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, partial(fn, *args, **kwargs))

    def _ns(self, namespace: Optional[str]) -> str:
        return self.default_namespace if namespace is None else namespace

    async def initialize(self) -> None:
        """
        Verify (or create) the index. Safe to call repeatedly.

        Raises:
            ValueError: Missing credentials or connection settings
            VectorIndexError: Index could not be verified or created
        """
        if self._initialized:
            return

        async with self._init_lock:
            if self._initialized:
                return
            try:
                await self._run(self._backend.ensure_index)
            except ValueError:
                raise
            except Exception as e:
                logger.error(f"Vector index initialization failed: {e}")
                raise VectorIndexError(f"Vector index initialization failed: {e}") from e
            self._initialized = True

    async def upsert(
        self,
        vectors: List[VectorRecord],
        namespace: Optional[str] = None,
    ) -> int:
        """
        Insert or overwrite vectors by id.

        Returns:
            Number of vectors written

        Raises:
            VectorIndexError: If the backend rejects the write
        """
        await self.initialize()
        try:
            return await self._run(self._backend.upsert, vectors, self._ns(namespace))
        except Exception as e:
            raise VectorIndexError(f"Upsert of {len(vectors)} vectors failed: {e}") from e

    async def query(
        self,
        vector: List[float],
        top_k: int = 5,
        namespace: Optional[str] = None,
    ) -> List[QueryMatch]:
        """Return up to top_k matches sorted by score descending."""
        await self.initialize()
        try:
            return await self._run(self._backend.query, vector, top_k, self._ns(namespace))
        except Exception as e:
            raise VectorIndexError(f"Vector query failed: {e}") from e

    async def delete(self, ids: List[str], namespace: Optional[str] = None) -> int:
        await self.initialize()
        try:
            return await self._run(self._backend.delete, ids, self._ns(namespace))
        except Exception as e:
            raise VectorIndexError(f"Delete failed: {e}") from e

    async def count(self, namespace: Optional[str] = None) -> int:
        await self.initialize()
        return await self._run(self._backend.count, namespace)

    async def describe(self) -> Dict[str, Any]:
        await self.initialize()
        stats = await self._run(self._backend.describe)
        stats["provider"] = self._provider_name
        return stats

    async def close(self) -> None:
        await self._run(self._backend.close)
        self._initialized = False

    @property
    def provider(self) -> str:
        """Return the backend provider name."""
        return self._provider_name
