"""Retrieval-augmented long-term memory for chat assistants."""

from .embeddings import EmbeddingClient, EmbeddingConfig, resolve_embedding_config
from .extractor import MemoryExtractor
from .importance import current_importance, reinforce
from .llm import CompletionRouter, GroqCompletionClient, OpenAICompatibleCompletionClient
from .manager import MemoryManager
from .models import Memory, MemorySource, RetrievedMemory
from .retention import MaintenanceScheduler, RetentionManager
from .retrieval import RetrievalEngine
from .settings import CleanupFrequency, DecayRate, MemorySettings, SettingsStore
from .storage import InMemoryKeyValueStore, KeyValueStore, SQLiteKeyValueStore
from .store import MemoryStore

__all__ = [
    "CleanupFrequency",
    "CompletionRouter",
    "DecayRate",
    "EmbeddingClient",
    "EmbeddingConfig",
    "GroqCompletionClient",
    "InMemoryKeyValueStore",
    "KeyValueStore",
    "MaintenanceScheduler",
    "Memory",
    "MemoryExtractor",
    "MemoryManager",
    "MemorySettings",
    "MemorySource",
    "MemoryStore",
    "OpenAICompatibleCompletionClient",
    "RetentionManager",
    "RetrievalEngine",
    "RetrievedMemory",
    "SQLiteKeyValueStore",
    "SettingsStore",
    "current_importance",
    "reinforce",
    "resolve_embedding_config",
]
