"""Memory collection CRUD over a key-value store."""

from __future__ import annotations

import logging
import time
import uuid
from typing import Callable, Iterable

from .importance import current_importance, reinforce
from .models import Memory, MemorySource, MemoryStats, clamp_importance
from .settings import DecayRate
from .storage import KeyValueStore

logger = logging.getLogger(__name__)

MEMORIES_KEY = "memories"

MemoryObserver = Callable[[list[Memory]], None]


class MemoryStore:
    """Persistent collection of memories.

    The whole collection lives under a single key. Every mutating method
    reads the collection, applies its change by id and writes the whole
    collection back with one ``set`` call, without any suspension point in
    between. On a single event loop this makes each mutation atomic, so
    concurrent retrievals and maintenance sweeps cannot lose each other's
    updates.
    """

    def __init__(
        self,
        kv: KeyValueStore,
        clock: Callable[[], float] = time.time,
        key: str = MEMORIES_KEY,
    ) -> None:
        """Initialize the store.

        Args:
            kv: Backing key-value store.
            clock: Source of epoch-second timestamps.
            key: Key holding the memory collection.
        """
        self.kv = kv
        self.clock = clock
        self.key = key
        self._observers: list[MemoryObserver] = []

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def list(self) -> list[Memory]:
        """Return all memories, newest additions first."""
        return self._load()

    def get(self, memory_id: str) -> Memory | None:
        """Return a memory by id, or None."""
        for memory in self._load():
            if memory.id == memory_id:
                return memory
        return None

    def count(self) -> int:
        return len(self._load())

    def search_text(self, query: str) -> list[Memory]:
        """Case-insensitive substring filter. Empty query returns all."""
        memories = self._load()
        needle = query.strip().lower()
        if not needle:
            return memories
        return [m for m in memories if needle in m.content.lower()]

    def missing_embeddings(self, identity: str | None = None) -> list[Memory]:
        """Memories without an embedding from the given provider identity."""
        return [m for m in self._load() if not m.has_embedding(identity)]

    def stats(
        self,
        rate: DecayRate = DecayRate.NORMAL,
        threshold: float = 0.0,
    ) -> MemoryStats:
        """Aggregate counts and importance figures."""
        memories = self._load()
        if not memories:
            return MemoryStats(threshold=threshold)

        now = self.clock()
        scores = [(m, current_importance(m, rate, now)) for m in memories]
        total = len(memories)
        return MemoryStats(
            total=total,
            auto=sum(1 for m in memories if m.source is MemorySource.AUTO),
            manual=sum(1 for m in memories if m.source is MemorySource.MANUAL),
            pinned=sum(1 for m in memories if m.pinned),
            avg_importance=round(sum(s for _, s in scores) / total, 1),
            below_threshold=sum(
                1 for m, s in scores if not m.pinned and s < threshold
            ),
            threshold=threshold,
        )

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def add(self, content: str, source: MemorySource | str = MemorySource.MANUAL) -> Memory:
        """Create a new memory.

        Args:
            content: The fact to remember.
            source: 'manual' (importance 60) or 'auto' (importance 40).

        Returns:
            The stored memory.

        Raises:
            ValueError: If content is empty.
        """
        content = content.strip()
        if not content:
            raise ValueError("Memory content cannot be empty")

        source = MemorySource(source)
        now = self.clock()
        memories = self._load()
        existing = {m.id for m in memories}

        memory_id = uuid.uuid4().hex
        while memory_id in existing:
            memory_id = uuid.uuid4().hex

        memory = Memory(
            id=memory_id,
            content=content,
            source=source,
            created_at=now,
            updated_at=now,
            importance=source.initial_importance,
            access_count=0,
            last_accessed_at=now,
            pinned=False,
        )
        memories.insert(0, memory)
        self._save(memories)
        return memory

    def update(self, memory_id: str, content: str) -> Memory | None:
        """Change a memory's content.

        The embedding is dropped because it no longer describes the text.

        Returns:
            The updated memory, or None if the id is unknown.

        Raises:
            ValueError: If content is empty.
        """
        content = content.strip()
        if not content:
            raise ValueError("Memory content cannot be empty")

        memories = self._load()
        memory = _find(memories, memory_id)
        if memory is None:
            return None

        memory.content = content
        memory.updated_at = self.clock()
        memory.embedding = None
        memory.embedding_model = None
        self._save(memories)
        return memory

    def delete(self, memory_id: str) -> bool:
        """Delete a memory. Returns True if it existed."""
        return self.delete_many([memory_id]) > 0

    def delete_many(self, memory_ids: Iterable[str]) -> int:
        """Delete several memories in one write. Returns how many existed."""
        doomed = set(memory_ids)
        if not doomed:
            return 0

        memories = self._load()
        kept = [m for m in memories if m.id not in doomed]
        removed = len(memories) - len(kept)
        if removed:
            self._save(kept)
        return removed

    def clear(self) -> None:
        """Delete every memory."""
        self._save([])

    def set_pinned(self, memory_id: str, pinned: bool) -> Memory | None:
        """Pin or unpin a memory. Returns None if the id is unknown."""
        memories = self._load()
        memory = _find(memories, memory_id)
        if memory is None:
            return None

        if memory.pinned != pinned:
            memory.pinned = pinned
            memory.updated_at = self.clock()
            self._save(memories)
        return memory

    def toggle_pinned(self, memory_id: str) -> bool:
        """Flip a memory's pinned flag.

        Returns:
            The new pinned state; False if the id is unknown.
        """
        memory = self.get(memory_id)
        if memory is None:
            return False
        updated = self.set_pinned(memory_id, not memory.pinned)
        return bool(updated and updated.pinned)

    def record_access(
        self,
        memory_ids: Iterable[str],
        rate: DecayRate | None = None,
    ) -> int:
        """Record that retrieval surfaced these memories.

        Each found memory gets ``access_count + 1``, its decay clock reset to
        now, and its importance reinforced. When ``rate`` is given the
        reinforcement starts from the decayed importance rather than the
        stored one. Unknown ids are ignored.

        Returns:
            Number of memories touched.
        """
        wanted = set(memory_ids)
        if not wanted:
            return 0

        now = self.clock()
        memories = self._load()
        touched = 0
        for memory in memories:
            if memory.id not in wanted:
                continue
            base = memory.importance
            if rate is not None and not memory.pinned:
                base = current_importance(memory, rate, now)
            memory.importance = reinforce(base)
            memory.access_count += 1
            memory.last_accessed_at = now
            memory.decayed_at = None
            memory.updated_at = now
            touched += 1

        if touched:
            self._save(memories)
        return touched

    def attach_embedding(
        self,
        memory_id: str,
        vector: list[float],
        identity: str | None = None,
        expected_content: str | None = None,
    ) -> bool:
        """Store a vector for a memory.

        Args:
            memory_id: Target memory.
            vector: The embedding.
            identity: Provider identity that produced the vector.
            expected_content: The text that was embedded. If the memory's
                content has changed since, the vector is discarded.

        Returns:
            True if the vector was stored.
        """
        memories = self._load()
        memory = _find(memories, memory_id)
        if memory is None:
            logger.debug("Discarding embedding for deleted memory %s", memory_id)
            return False
        if expected_content is not None and memory.content != expected_content:
            logger.debug("Discarding stale embedding for memory %s", memory_id)
            return False

        memory.embedding = [float(x) for x in vector]
        memory.embedding_model = identity
        self._save(memories)
        return True

    def set_importance(
        self,
        scores: dict[str, float],
        decayed_at: float | None = None,
    ) -> int:
        """Persist new importance scores in one write.

        Args:
            scores: Mapping of memory id to new importance.
            decayed_at: When set, marks the scores as decayed up to this
                time so the decay clock continues from there.

        Returns:
            Number of memories updated.
        """
        if not scores:
            return 0

        now = self.clock()
        memories = self._load()
        changed = 0
        for memory in memories:
            if memory.id not in scores:
                continue
            memory.importance = clamp_importance(scores[memory.id])
            memory.updated_at = now
            if decayed_at is not None:
                memory.decayed_at = decayed_at
            changed += 1

        if changed:
            self._save(memories)
        return changed

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------

    def subscribe(self, observer: MemoryObserver) -> Callable[[], None]:
        """Register a callback run after every write. Returns an unsubscribe."""
        self._observers.append(observer)
        return lambda: self._observers.remove(observer)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _load(self) -> list[Memory]:
        raw = self.kv.get(self.key)
        if not raw:
            return []
        if not isinstance(raw, list):
            logger.warning("Corrupt memory collection under %r, ignoring", self.key)
            return []

        now = self.clock()
        memories: list[Memory] = []
        seen: set[str] = set()
        for record in raw:
            try:
                memory = Memory.from_dict(record, now=now)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Skipping invalid memory record: %s", e)
                continue
            if memory.id in seen:
                logger.warning("Skipping duplicate memory id %s", memory.id)
                continue
            seen.add(memory.id)
            memories.append(memory)
        return memories

    def _save(self, memories: list[Memory]) -> None:
        self.kv.set(self.key, [m.to_dict() for m in memories])
        for observer in list(self._observers):
            try:
                observer(memories)
            except Exception:
                logger.exception("Memory observer failed")


def _find(memories: list[Memory], memory_id: str) -> Memory | None:
    for memory in memories:
        if memory.id == memory_id:
            return memory
    return None
