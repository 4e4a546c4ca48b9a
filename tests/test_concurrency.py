"""Tests for writes that interleave with a suspended retrieval."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from memoria.extractor import MemoryExtractor
from memoria.importance import current_importance, reinforce
from memoria.models import MemorySource
from memoria.retention import RetentionManager
from memoria.retrieval import RetrievalEngine
from memoria.settings import SettingsStore
from memoria.store import MemoryStore

QUERY = "theme"
DARK_MODE = "Prefers dark mode"
GREEN_TEA = "Drinks green tea"


class PausingEmbedder:
    """Embedder that holds the query request open until released."""

    identity = "test:embed"

    def __init__(self, vectors: dict[str, list[float]], pause_on: str) -> None:
        self.vectors = vectors
        self.pause_on = pause_on
        self.paused = asyncio.Event()
        self.resume = asyncio.Event()

    async def embed(self, text: str) -> list[float] | None:
        if text == self.pause_on:
            self.paused.set()
            await self.resume.wait()
        return self.vectors.get(text)


@pytest.fixture
def memories(store: MemoryStore, clock):
    """Two embedded memories that have gone ten days without use."""
    dark = store.add(DARK_MODE)
    tea = store.add(GREEN_TEA, MemorySource.AUTO)
    store.attach_embedding(dark.id, [1.0, 0.0], identity=PausingEmbedder.identity)
    store.attach_embedding(tea.id, [0.0, 1.0], identity=PausingEmbedder.identity)
    clock.advance(days=10)
    return dark, tea


def make_engine(store: MemoryStore, settings_store: SettingsStore) -> tuple[RetrievalEngine, PausingEmbedder]:
    embedder = PausingEmbedder({QUERY: [1.0, 0.0]}, pause_on=QUERY)
    return RetrievalEngine(store, settings_store.get, embedder=embedder), embedder


async def while_paused(embedder: PausingEmbedder, action) -> None:
    await embedder.paused.wait()
    result = action()
    if asyncio.iscoroutine(result):
        await result
    embedder.resume.set()


class TestInterleavedWrites:
    """Writes made while retrieval awaits the embedder are kept."""

    @pytest.mark.asyncio
    async def test_decay_sweep_during_retrieval(self, store, settings_store, clock, memories):
        dark, tea = memories
        rate = settings_store.get().decay_rate
        now = clock()
        expected_tea = current_importance(store.get(tea.id), rate, now)
        expected_dark = reinforce(current_importance(store.get(dark.id), rate, now))

        engine, embedder = make_engine(store, settings_store)
        retention = RetentionManager(store, settings_store.get)
        results, _ = await asyncio.gather(
            engine.retrieve(QUERY),
            while_paused(embedder, retention.decay_sweep),
        )

        assert [r.id for r in results] == [dark.id]
        swept = store.get(tea.id)
        assert swept.importance == pytest.approx(expected_tea)
        assert swept.decayed_at == now
        accessed = store.get(dark.id)
        assert accessed.access_count == 1
        assert accessed.importance == pytest.approx(expected_dark)

    @pytest.mark.asyncio
    async def test_edit_during_retrieval(self, store, settings_store, memories):
        dark, _ = memories
        engine, embedder = make_engine(store, settings_store)

        await asyncio.gather(
            engine.retrieve(QUERY),
            while_paused(embedder, lambda: store.update(dark.id, "Prefers light mode")),
        )

        edited = store.get(dark.id)
        assert edited.content == "Prefers light mode"
        assert edited.embedding is None
        assert edited.access_count == 1

    @pytest.mark.asyncio
    async def test_extraction_during_retrieval(self, store, settings_store, memories):
        dark, _ = memories
        settings_store.update(tool_model="groq:llama")
        router = AsyncMock()
        router.complete.return_value = "- The user has a cat named Miso"
        extractor = MemoryExtractor(store, router, settings_store.get)
        engine, embedder = make_engine(store, settings_store)
        turns = [
            {"role": "user", "content": "My cat Miso knocked over a plant"},
            {"role": "assistant", "content": "Cats will be cats."},
        ]

        await asyncio.gather(
            engine.retrieve(QUERY),
            while_paused(embedder, lambda: extractor.extract_and_store(turns)),
        )

        contents = [m.content for m in store.list()]
        assert "The user has a cat named Miso" in contents
        assert store.count() == 3
        assert store.get(dark.id).access_count == 1

    @pytest.mark.asyncio
    async def test_delete_during_retrieval(self, store, settings_store, memories):
        dark, tea = memories
        engine, embedder = make_engine(store, settings_store)

        results, _ = await asyncio.gather(
            engine.retrieve(QUERY),
            while_paused(embedder, lambda: store.delete(dark.id)),
        )

        assert [r.id for r in results] == [dark.id]
        assert store.get(dark.id) is None
        assert [m.id for m in store.list()] == [tea.id]
        assert store.get(tea.id).access_count == 0
