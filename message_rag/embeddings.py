"""
Embedding Service Module

Turns message text into fixed-length vectors, supporting both:
- Cloud: OpenAI (text-embedding-ada-002) - Requires API key, 1536 dimensions
- Local: Sentence Transformers (all-MiniLM-L6-v2) - Free, no API key needed

Design Rationale:
- Abstract interface allows easy switching between providers
- Async interface so the ingestion engine can embed a whole sub-batch
  concurrently; the blocking local model runs in the default executor
- One provider call per text and no retry here: the caller owns the retry
  policy and the success/failure bookkeeping
- Provider failures surface as EmbeddingError so callers can handle a
  single exception type

Embedding Dimensions:
- all-MiniLM-L6-v2: 384 dimensions
- all-mpnet-base-v2: 768 dimensions
- text-embedding-ada-002: 1536 dimensions
"""

import asyncio
import logging
import os
from abc import ABC, abstractmethod
from typing import List, Optional

import numpy as np

from config.settings import get_settings, EmbeddingConfig

# Configure logging
logger = logging.getLogger(__name__)


class EmbeddingError(RuntimeError):
    """Raised when the embedding provider fails to produce a vector."""


class BaseEmbeddingProvider(ABC):
    """
    Abstract base class for embedding providers.

    All embedding providers must implement:
    - embed_text: Embed a single text string
    - dimension: Return the embedding dimension
    - model_name: Return the model identifier
    """

    async def initialize(self) -> None:
        """Prepare clients or models. Raises on missing configuration."""

    async def close(self) -> None:
        """Release provider resources."""

    @abstractmethod
    async def embed_text(self, text: str) -> List[float]:
        """
        Generate embedding for a single text.

        Args:
            text: Input text to embed

        Returns:
            List of floats representing the embedding vector
        """
        pass

    @property
    @abstractmethod
    def dimension(self) -> int:
        """Return the dimension of embeddings produced."""
        pass

    @property
    @abstractmethod
    def model_name(self) -> str:
        """Return the name of the embedding model."""
        pass


class LocalEmbeddingProvider(BaseEmbeddingProvider):
    """
    Local embedding provider using Sentence Transformers.

    Useful for development and for deployments without an OpenAI key.
    The vector index dimension must match the model (384 for the default).
    """

    MODEL_DIMENSIONS = {
        "all-MiniLM-L6-v2": 384,
        "all-mpnet-base-v2": 768,
        "paraphrase-MiniLM-L6-v2": 384,
    }

    def __init__(self, model_name: str = "all-MiniLM-L6-v2"):
        self._model_name = model_name
        self._model = None

        logger.info(f"Initializing LocalEmbeddingProvider with model: {model_name}")

    def _load_model(self):
        """Lazy load the model (only when first needed)."""
        if self._model is None:
            try:
                from sentence_transformers import SentenceTransformer
            except ImportError:
                raise ImportError(
                    "sentence-transformers is required for local embeddings. "
                    "Install with: pip install sentence-transformers"
                )

            logger.info(f"Loading sentence-transformers model: {self._model_name}")
            self._model = SentenceTransformer(self._model_name)
            logger.info(
                f"Model loaded. Embedding dimension: "
                f"{self._model.get_sentence_embedding_dimension()}"
            )
        return self._model

    async def initialize(self) -> None:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._load_model)

    def _encode(self, text: str) -> List[float]:
        model = self._load_model()
        return model.encode(text, convert_to_numpy=True).tolist()

    async def embed_text(self, text: str) -> List[float]:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._encode, text)

    @property
    def dimension(self) -> int:
        if self._model is not None:
            return self._model.get_sentence_embedding_dimension()
        return self.MODEL_DIMENSIONS.get(self._model_name, 384)

    @property
    def model_name(self) -> str:
        return self._model_name


class OpenAIEmbeddingProvider(BaseEmbeddingProvider):
    """
    OpenAI embedding provider using the async embeddings API.

    Models:
    - text-embedding-ada-002: 1536 dims (default, matches the index)
    - text-embedding-3-small: 1536 dims
    - text-embedding-3-large: 3072 dims
    """

    # Model dimensions mapping
    MODEL_DIMENSIONS = {
        "text-embedding-3-small": 1536,
        "text-embedding-3-large": 3072,
        "text-embedding-ada-002": 1536,
    }

    def __init__(
        self,
        model_name: str = "text-embedding-ada-002",
        api_key: Optional[str] = None,
    ):
        """
        Initialize the OpenAI embedding provider.

        Args:
            model_name: Name of the OpenAI embedding model
            api_key: OpenAI API key (or from environment)
        """
        self._model_name = model_name
        self._api_key = api_key
        self._client = None

        if model_name not in self.MODEL_DIMENSIONS:
            logger.warning(
                f"Unknown model {model_name}, assuming 1536 dimensions. "
                f"Known models: {list(self.MODEL_DIMENSIONS.keys())}"
            )

        logger.info(f"Initializing OpenAIEmbeddingProvider with model: {model_name}")

    def _get_client(self):
        """Get or create the async OpenAI client."""
        if self._client is None:
            from openai import AsyncOpenAI

            api_key = self._api_key or os.getenv("OPENAI_API_KEY")
            if not api_key:
                raise ValueError(
                    "OpenAI API key not found. Set OPENAI_API_KEY environment "
                    "variable or pass api_key parameter."
                )

            self._client = AsyncOpenAI(api_key=api_key)
            logger.info("OpenAI embeddings client initialized")

        return self._client

    async def initialize(self) -> None:
        self._get_client()

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None

    async def embed_text(self, text: str) -> List[float]:
        client = self._get_client()
        response = await client.embeddings.create(
            input=text,
            model=self._model_name,
        )
        return response.data[0].embedding

    @property
    def dimension(self) -> int:
        return self.MODEL_DIMENSIONS.get(self._model_name, 1536)

    @property
    def model_name(self) -> str:
        return self._model_name


class EmbeddingService:
    """
    Main embedding service that provides a unified interface.

    This is the class that other components should use.
    It handles provider selection based on configuration.

    Example:
        service = EmbeddingService()  # Uses config
        await service.initialize()
        vector = await service.embed("Deploy finished at 5pm")

        # Or specify provider explicitly
        service = EmbeddingService(provider="local")
    """

    def __init__(
        self,
        provider: Optional[str] = None,
        config: Optional[EmbeddingConfig] = None,
    ):
        """
        Initialize the embedding service.

        Args:
            provider: "openai" or "local" (default from config)
            config: Optional EmbeddingConfig instance
        """
        self.config = config or get_settings().embedding

        provider = provider or self.config.provider
        self._provider_name = provider

        if provider == "openai":
            self._provider: BaseEmbeddingProvider = OpenAIEmbeddingProvider(
                model_name=self.config.openai_model,
                api_key=self.config.openai_api_key,
            )
        elif provider == "local":
            self._provider = LocalEmbeddingProvider(
                model_name=self.config.local_model
            )
        else:
            raise ValueError(f"Unknown embedding provider: {provider}")

        logger.info(
            f"EmbeddingService initialized with {provider} provider, "
            f"dimension={self._provider.dimension}"
        )

    async def initialize(self) -> None:
        """Verify credentials and load models. Errors here are fatal."""
        await self._provider.initialize()

    async def close(self) -> None:
        await self._provider.close()

    async def embed(self, text: str) -> List[float]:
        """
        Generate embedding for a single text.

        Args:
            text: Input text to embed

        Returns:
            Embedding vector as list of floats

        Raises:
            ValueError: If text is empty
            EmbeddingError: If the provider call fails
        """
        if not text or not text.strip():
            raise ValueError("Cannot embed empty text")

        try:
            return await self._provider.embed_text(text)
        except Exception as e:
            raise EmbeddingError(
                f"{self._provider_name} embedding failed: {e}"
            ) from e

    async def embed_query(self, query: str) -> List[float]:
        """
        Embed a user query for retrieval.

        Semantic alias for embed, used when embedding questions rather
        than stored messages.
        """
        return await self.embed(query)

    @property
    def dimension(self) -> int:
        """Return the embedding dimension."""
        return self._provider.dimension

    @property
    def model_name(self) -> str:
        """Return the model name."""
        return self._provider.model_name

    @property
    def provider_name(self) -> str:
        """Return the provider name (openai/local)."""
        return self._provider_name


def cosine_similarity(vec1: List[float], vec2: List[float]) -> float:
    """
    Calculate cosine similarity between two vectors.

    Args:
        vec1: First embedding vector
        vec2: Second embedding vector

    Returns:
        Similarity score between -1 and 1 (1 = identical)
    """
    arr1 = np.array(vec1)
    arr2 = np.array(vec2)

    norm1 = np.linalg.norm(arr1)
    norm2 = np.linalg.norm(arr2)

    if norm1 == 0 or norm2 == 0:
        return 0.0

    return float(np.dot(arr1, arr2) / (norm1 * norm2))
