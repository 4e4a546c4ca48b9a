"""Shared fixtures for memoria tests."""

import pytest

from memoria.settings import MemorySettings, SettingsStore
from memoria.storage import InMemoryKeyValueStore
from memoria.store import MemoryStore

START = 1_700_000_000.0
DAY = 86400.0


class FakeClock:
    """Manually advanced epoch-second clock."""

    def __init__(self, now: float = START) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float = 0.0, days: float = 0.0) -> None:
        self.now += seconds + days * DAY


class FakeEmbedder:
    """Embedder returning canned vectors by text.

    Texts without a canned vector fail (return None), like a provider error.
    """

    def __init__(self, vectors: dict[str, list[float]] | None = None, identity: str | None = "test:embed"):
        self.vectors = dict(vectors or {})
        self.identity = identity
        self.calls: list[str] = []

    async def embed(self, text: str) -> list[float] | None:
        self.calls.append(text)
        return self.vectors.get(text)

    async def aclose(self) -> None:
        pass


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def kv() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore()


@pytest.fixture
def store(kv: InMemoryKeyValueStore, clock: FakeClock) -> MemoryStore:
    return MemoryStore(kv, clock=clock)


@pytest.fixture
def settings_store(kv: InMemoryKeyValueStore) -> SettingsStore:
    """Settings store with memory switched on."""
    settings_store = SettingsStore(kv)
    settings_store.save(MemorySettings(enabled=True, query_rewriting=False))
    return settings_store


@pytest.fixture
def embedder_factory():
    """Build FakeEmbedder instances."""
    return FakeEmbedder
