"""
Chat Message RAG Pipeline - Core Module

This module contains the pipeline components:
- TokenBudgeter: Token counting and truncation
- EmbeddingService: Embedding generation (OpenAI vs local)
- VectorIndexClient: Vector index interface (Pinecone/FAISS/MongoDB)
- BatchIngestionEngine: Rate-limited, retried message ingestion
- PendingMessageSweeper: Drains unvectorized messages
- ContextualChain: Budgeted completion with fallback
- RetrievalFlow: Question answering over chat history
- DMAssistant: Direct-message assistant
- MessageRAGAgent: API interface for the chat application
"""

from .token_budget import TokenBudgeter
from .embeddings import EmbeddingService, EmbeddingError
from .vector_store import VectorIndexClient, VectorIndexError, VectorRecord, QueryMatch
from .ingestion import BatchIngestionEngine, IngestionResult, Message
from .message_store import MessageStore, MongoMessageStore, MessageStoreError
from .sweeper import PendingMessageSweeper
from .llm_service import LLMService, LLMResponse, CompletionError
from .contextual_chain import ContextualChain, ChainAnswer, ChainFailure, APOLOGY
from .memory import ConversationTurn, MessageHistory, format_message_history
from .dm_assistant import DMAssistant
from .rag_chain import RetrievalFlow, RAGResponse, SearchFilters, Source
from .rag_agent import MessageRAGAgent, create_agent

__all__ = [
    # Ingestion
    "TokenBudgeter",
    "EmbeddingService",
    "EmbeddingError",
    "VectorIndexClient",
    "VectorIndexError",
    "VectorRecord",
    "QueryMatch",
    "BatchIngestionEngine",
    "IngestionResult",
    "Message",
    "MessageStore",
    "MongoMessageStore",
    "MessageStoreError",
    "PendingMessageSweeper",
    # Generation
    "LLMService",
    "LLMResponse",
    "CompletionError",
    "ContextualChain",
    "ChainAnswer",
    "ChainFailure",
    "APOLOGY",
    "ConversationTurn",
    "MessageHistory",
    "format_message_history",
    "DMAssistant",
    "RetrievalFlow",
    "RAGResponse",
    "SearchFilters",
    "Source",
    # API
    "MessageRAGAgent",
    "create_agent",
]
