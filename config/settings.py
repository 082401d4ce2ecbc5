"""
Configuration settings for the chat message RAG pipeline.

This module handles all configuration management using environment variables.
Provider keys, model names, batch sizes and token budgets are read from the
environment (or a .env file) so deployments never need code changes.
"""

import os
from dataclasses import dataclass, field
from typing import Literal, Optional
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


@dataclass
class EmbeddingConfig:
    """Configuration for embedding models."""

    provider: Literal["local", "openai"] = "openai"
    local_model: str = "all-MiniLM-L6-v2"
    openai_model: str = "text-embedding-ada-002"
    openai_api_key: Optional[str] = None

    # Embedding dimensions (depends on model)
    # all-MiniLM-L6-v2: 384
    # text-embedding-ada-002: 1536
    @property
    def dimension(self) -> int:
        """Return embedding dimension based on selected model."""
        if self.provider == "local":
            model_dimensions = {
                "all-MiniLM-L6-v2": 384,
                "all-mpnet-base-v2": 768,
                "paraphrase-MiniLM-L6-v2": 384,
            }
            return model_dimensions.get(self.local_model, 384)
        else:
            model_dimensions = {
                "text-embedding-3-small": 1536,
                "text-embedding-3-large": 3072,
                "text-embedding-ada-002": 1536,
            }
            return model_dimensions.get(self.openai_model, 1536)


@dataclass
class LLMConfig:
    """
    Configuration for completion providers.

    Every provider has a primary and a fallback tier. The primary tier
    streams and runs warmer; the fallback is conservative and is only used
    after the primary call fails.
    """

    provider: Literal["openai", "ollama"] = "openai"

    # OpenAI settings
    openai_api_key: Optional[str] = None
    primary_model: str = "gpt-4-turbo-preview"
    primary_temperature: float = 0.7
    primary_max_tokens: int = 1000
    fallback_model: str = "gpt-3.5-turbo"
    fallback_temperature: float = 0.3
    fallback_max_tokens: int = 2000

    # Ollama settings
    ollama_base_url: str = "http://localhost:11434"
    ollama_model: str = "llama2"
    ollama_fallback_model: str = "llama2"

    request_timeout: float = 60.0  # Seconds per completion call


@dataclass
class VectorStoreConfig:
    """Configuration for the vector index."""

    provider: Literal["pinecone", "faiss", "mongodb"] = "pinecone"
    namespace: str = ""
    metric: str = "cosine"

    # Pinecone settings
    pinecone_api_key: Optional[str] = None
    pinecone_index_name: str = "slack-rag"
    pinecone_cloud: str = "aws"
    pinecone_region: str = "us-east-1"

    # MongoDB Atlas settings
    mongodb_uri: Optional[str] = None
    mongodb_database: str = "chat_app"
    mongodb_collection: str = "message_vectors"
    mongodb_vector_index: str = "vector_index"

    # FAISS settings
    faiss_index_path: str = "./data/faiss_index"


@dataclass
class IngestionConfig:
    """Configuration for batch ingestion."""

    batch_size: int = 5  # Messages per sub-batch
    max_retries: int = 3  # Embedding attempts per message
    retry_delay: float = 1.0  # Seconds, multiplied by attempt number
    inter_batch_delay: float = 2.0  # Seconds between sub-batches
    request_timeout: float = 30.0  # Seconds per provider call


@dataclass
class SweeperConfig:
    """Configuration for the pending-message sweep."""

    page_size: int = 50
    interval_seconds: float = 300.0
    messages_collection: str = "messages"


@dataclass
class ContextConfig:
    """Token budgets for prompts sent to the completion model."""

    max_context_tokens: int = 4000
    tokenizer_model: str = "gpt-4"
    max_context_messages: int = 10  # DM history turns kept per call


@dataclass
class RetrievalConfig:
    """Configuration for retrieval settings."""

    top_k: int = 5  # Number of messages to retrieve


@dataclass
class Settings:
    """
    Main settings class that aggregates all configurations.

    Usage:
        settings = get_settings()
        print(settings.embedding.provider)
        print(settings.ingestion.batch_size)
    """

    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    llm: LLMConfig = field(default_factory=LLMConfig)
    vector_store: VectorStoreConfig = field(default_factory=VectorStoreConfig)
    ingestion: IngestionConfig = field(default_factory=IngestionConfig)
    sweeper: SweeperConfig = field(default_factory=SweeperConfig)
    context: ContextConfig = field(default_factory=ContextConfig)
    retrieval: RetrievalConfig = field(default_factory=RetrievalConfig)

    # Logging
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        """
        Create Settings instance from environment variables.

        This is the primary way to instantiate Settings.
        """
        embedding = EmbeddingConfig(
            provider=os.getenv("EMBEDDING_PROVIDER", "openai"),  # type: ignore
            local_model=os.getenv("LOCAL_EMBEDDING_MODEL", "all-MiniLM-L6-v2"),
            openai_model=os.getenv("OPENAI_EMBEDDING_MODEL", "text-embedding-ada-002"),
            openai_api_key=os.getenv("OPENAI_API_KEY"),
        )

        llm = LLMConfig(
            provider=os.getenv("LLM_PROVIDER", "openai"),  # type: ignore
            openai_api_key=os.getenv("OPENAI_API_KEY"),
            primary_model=os.getenv("PRIMARY_LLM_MODEL", "gpt-4-turbo-preview"),
            fallback_model=os.getenv("FALLBACK_LLM_MODEL", "gpt-3.5-turbo"),
            ollama_base_url=os.getenv("OLLAMA_BASE_URL", "http://localhost:11434"),
            ollama_model=os.getenv("OLLAMA_MODEL", "llama2"),
            ollama_fallback_model=os.getenv("OLLAMA_FALLBACK_MODEL", "llama2"),
            request_timeout=float(os.getenv("LLM_REQUEST_TIMEOUT", "60.0")),
        )

        vector_store = VectorStoreConfig(
            provider=os.getenv("VECTOR_STORE_PROVIDER", "pinecone"),  # type: ignore
            namespace=os.getenv("VECTOR_NAMESPACE", ""),
            pinecone_api_key=os.getenv("PINECONE_API_KEY"),
            pinecone_index_name=os.getenv("PINECONE_INDEX_NAME", "slack-rag"),
            pinecone_cloud=os.getenv("PINECONE_CLOUD", "aws"),
            pinecone_region=os.getenv("PINECONE_REGION", "us-east-1"),
            mongodb_uri=os.getenv("MONGODB_URI"),
            mongodb_database=os.getenv("MONGODB_DATABASE", "chat_app"),
            mongodb_collection=os.getenv("MONGODB_VECTOR_COLLECTION", "message_vectors"),
            mongodb_vector_index=os.getenv("MONGODB_VECTOR_INDEX", "vector_index"),
            faiss_index_path=os.getenv("FAISS_INDEX_PATH", "./data/faiss_index"),
        )

        ingestion = IngestionConfig(
            batch_size=int(os.getenv("INGEST_BATCH_SIZE", "5")),
            max_retries=int(os.getenv("INGEST_MAX_RETRIES", "3")),
            retry_delay=float(os.getenv("INGEST_RETRY_DELAY", "1.0")),
            inter_batch_delay=float(os.getenv("INGEST_INTER_BATCH_DELAY", "2.0")),
            request_timeout=float(os.getenv("REQUEST_TIMEOUT", "30.0")),
        )

        sweeper = SweeperConfig(
            page_size=int(os.getenv("SWEEP_PAGE_SIZE", "50")),
            interval_seconds=float(os.getenv("SWEEP_INTERVAL_SECONDS", "300")),
            messages_collection=os.getenv("MONGODB_MESSAGES_COLLECTION", "messages"),
        )

        context = ContextConfig(
            max_context_tokens=int(os.getenv("MAX_CONTEXT_TOKENS", "4000")),
            tokenizer_model=os.getenv("TOKENIZER_MODEL", "gpt-4"),
            max_context_messages=int(os.getenv("MAX_CONTEXT_MESSAGES", "10")),
        )

        retrieval = RetrievalConfig(
            top_k=int(os.getenv("TOP_K_RESULTS", "5")),
        )

        return cls(
            embedding=embedding,
            llm=llm,
            vector_store=vector_store,
            ingestion=ingestion,
            sweeper=sweeper,
            context=context,
            retrieval=retrieval,
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )


# Singleton pattern for settings
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """
    Get the singleton Settings instance.

    Returns:
        Settings: The application settings loaded from environment.
    """
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings


def reload_settings() -> Settings:
    """
    Reload settings from environment (useful for testing).

    Returns:
        Settings: Fresh settings instance.
    """
    global _settings
    load_dotenv(override=True)
    _settings = Settings.from_env()
    return _settings
