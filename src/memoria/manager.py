"""Memory manager: the entry point the conversation and settings layers use."""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any, Callable

from .embeddings import EmbeddingClient, resolve_embedding_config
from .extractor import MemoryExtractor
from .llm import CompletionRouter
from .logging import JSONLLogger
from .models import (
    BackfillReport,
    CleanupPreview,
    CleanupResult,
    Memory,
    MemorySource,
    MemoryStats,
    RetrievedMemory,
)
from .retention import MaintenanceReport, MaintenanceScheduler, RetentionManager
from .retrieval import ContextResult, RetrievalEngine
from .settings import MemorySettings, SettingsStore
from .storage import KeyValueStore, SQLiteKeyValueStore
from .store import MemoryStore

if TYPE_CHECKING:
    from .config import AppConfig

logger = logging.getLogger(__name__)


class MemoryManager:
    """Orchestrates memory operations: retrieval, extraction and retention.

    All components share one key-value store and read settings through
    the same accessor, so a settings change applies to the next call.
    """

    def __init__(
        self,
        kv: KeyValueStore,
        embedder: EmbeddingClient | None = None,
        router: CompletionRouter | None = None,
        clock: Callable[[], float] = time.time,
        events: JSONLLogger | None = None,
        maintenance_interval: float = 24 * 3600.0,
    ) -> None:
        """Initialize the manager over a key-value store.

        Args:
            kv: Persistence for memories and settings.
            embedder: Optional embedding client.
            router: Optional text-generation router.
            clock: Source of epoch-second timestamps.
            events: Optional JSONL event log.
            maintenance_interval: Seconds between scheduled maintenance runs.
        """
        self.kv = kv
        self.settings_store = SettingsStore(kv)
        self.store = MemoryStore(kv, clock=clock)
        self.embedder = embedder
        self.router = router
        self.events = events
        self.maintenance_interval = maintenance_interval

        accessor = self.settings_store.get
        self.retrieval = RetrievalEngine(
            self.store, accessor, embedder=embedder, router=router, events=events
        )
        self.extractor = MemoryExtractor(
            self.store, router, accessor, embedder=embedder, events=events
        )
        self.retention = RetentionManager(self.store, accessor, clock=clock, events=events)

    @classmethod
    def from_config(cls, config: AppConfig) -> MemoryManager:
        """Build a manager with SQLite storage and providers from config."""
        kv = SQLiteKeyValueStore(config.db_path)
        kv.init_db()
        settings_store = SettingsStore(kv)

        def embedding_config():
            return resolve_embedding_config(settings_store.get(), config.credentials)

        embedder = EmbeddingClient(embedding_config, timeout=config.embedding_timeout)
        router = CompletionRouter.from_config(config)
        events = JSONLLogger(log_dir=config.log_dir)
        return cls(
            kv,
            embedder=embedder,
            router=router,
            events=events,
            maintenance_interval=config.maintenance_interval_hours * 3600,
        )

    # ------------------------------------------------------------------
    # Conversation layer
    # ------------------------------------------------------------------

    async def retrieve(self, query: str) -> list[RetrievedMemory]:
        return await self.retrieval.retrieve(query)

    async def build_context(self, message: str, system_prompt: str = "") -> ContextResult:
        return await self.retrieval.build_context(message, system_prompt)

    async def extract_and_store(self, turns: list[dict[str, Any]]) -> list[Memory]:
        return await self.extractor.extract_and_store(turns)

    async def on_turn_complete(self, turns: list[dict[str, Any]]) -> list[Memory]:
        """Hook called after the assistant replies.

        Extracts new memories from the turn, then runs post-turn
        maintenance when the cleanup frequency asks for it.

        Returns:
            Newly stored memories.
        """
        memories = await self.extractor.extract_and_store(turns)
        self.retention.on_turn_complete()
        return memories

    # ------------------------------------------------------------------
    # Settings layer
    # ------------------------------------------------------------------

    def get_settings(self) -> MemorySettings:
        return self.settings_store.get()

    def save_settings(self, settings: MemorySettings) -> MemorySettings:
        return self.settings_store.save(settings)

    def update_settings(self, **changes: Any) -> MemorySettings:
        return self.settings_store.update(**changes)

    def add(self, content: str, source: MemorySource | str = MemorySource.MANUAL) -> Memory:
        return self.store.add(content, source)

    def update(self, memory_id: str, content: str) -> Memory | None:
        return self.store.update(memory_id, content)

    def delete(self, memory_id: str) -> bool:
        return self.store.delete(memory_id)

    def toggle_pinned(self, memory_id: str) -> bool:
        return self.store.toggle_pinned(memory_id)

    def list(self) -> list[Memory]:
        return self.store.list()

    def get(self, memory_id: str) -> Memory | None:
        return self.store.get(memory_id)

    def clear(self) -> None:
        self.store.clear()

    def stats(self) -> MemoryStats:
        settings = self.settings_store.get()
        return self.store.stats(settings.decay_rate, settings.importance_threshold)

    def preview_cleanup(self) -> CleanupPreview:
        return self.retention.preview_cleanup()

    def perform_cleanup(self) -> CleanupResult:
        return self.retention.perform_cleanup()

    def run_maintenance(self) -> MaintenanceReport:
        return self.retention.run_maintenance()

    async def backfill_embeddings(self) -> BackfillReport:
        return await self.retrieval.backfill()

    def scheduler(self, interval_seconds: float | None = None) -> MaintenanceScheduler:
        """Create a periodic maintenance scheduler for this manager."""
        return MaintenanceScheduler(
            self.retention, interval_seconds or self.maintenance_interval
        )

    async def aclose(self) -> None:
        """Release HTTP clients and the database connection."""
        if self.embedder is not None:
            await self.embedder.aclose()
        if self.router is not None:
            await self.router.aclose()
        self.kv.close()
