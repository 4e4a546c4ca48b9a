"""Data models for the memory system."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

MAX_IMPORTANCE = 100.0
MIN_IMPORTANCE = 0.0


class MemorySource(str, Enum):
    """Where a memory came from."""

    AUTO = "auto"
    MANUAL = "manual"

    @property
    def initial_importance(self) -> float:
        """Importance assigned to a freshly created memory."""
        return 60.0 if self is MemorySource.MANUAL else 40.0


class CleanupReason(str, Enum):
    """Why a cleanup plan deletes memories."""

    THRESHOLD = "threshold"
    LIMIT = "limit"
    BOTH = "both"
    NONE = "none"


def clamp_importance(value: float) -> float:
    """Clamp an importance score to [0, 100]."""
    return max(MIN_IMPORTANCE, min(MAX_IMPORTANCE, float(value)))


@dataclass
class Memory:
    """A single retained fact about the user or the conversation.

    Attributes:
        id: Opaque unique identifier, assigned at creation.
        content: The fact itself, never empty.
        source: 'auto' for extracted facts, 'manual' for user-entered ones.
        created_at: Epoch seconds when created.
        updated_at: Epoch seconds of the last content/importance/pin change.
        importance: Last persisted importance score (0-100).
        access_count: Number of times retrieval surfaced this memory.
        last_accessed_at: Epoch seconds of the last access (creation time
            until the first access).
        pinned: User flag; pinned memories never decay and are never pruned.
        embedding: Vector for semantic search, None until computed.
        embedding_model: Identity ("provider:model") that produced embedding.
        decayed_at: Epoch seconds when a decay sweep last persisted importance.
    """

    id: str
    content: str
    source: MemorySource
    created_at: float
    updated_at: float
    importance: float
    access_count: int = 0
    last_accessed_at: float = 0.0
    pinned: bool = False
    embedding: list[float] | None = None
    embedding_model: str | None = None
    decayed_at: float | None = None

    def __post_init__(self) -> None:
        self.source = MemorySource(self.source)
        self.importance = clamp_importance(self.importance)

    @property
    def decay_anchor(self) -> float:
        """Timestamp the decay clock runs from."""
        if self.decayed_at is None:
            return self.last_accessed_at
        return max(self.last_accessed_at, self.decayed_at)

    def has_embedding(self, identity: str | None = None) -> bool:
        """Check whether the memory carries a usable embedding.

        Args:
            identity: When given, the embedding must have been produced by
                this provider identity.
        """
        if not self.embedding:
            return False
        if identity is None:
            return True
        return self.embedding_model == identity

    def to_dict(self) -> dict[str, Any]:
        """Convert to the JSON-friendly record kept in the key-value store."""
        data: dict[str, Any] = {
            "id": self.id,
            "content": self.content,
            "source": self.source.value,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "importance": self.importance,
            "access_count": self.access_count,
            "last_accessed_at": self.last_accessed_at,
            "pinned": self.pinned,
        }
        if self.embedding is not None:
            data["embedding"] = list(self.embedding)
            data["embedding_model"] = self.embedding_model
        if self.decayed_at is not None:
            data["decayed_at"] = self.decayed_at
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any], now: float = 0.0) -> Memory:
        """Build a Memory from a stored record, filling legacy gaps.

        Records written by older clients may lack the forgetting fields,
        use camelCase keys, or carry millisecond timestamps.

        Args:
            data: The stored record.
            now: Fallback timestamp for records without one.

        Returns:
            The migrated Memory.
        """
        source = MemorySource(data.get("source") or MemorySource.MANUAL.value)
        created_at = _timestamp(_pick(data, "created_at", "createdAt"), now)
        updated_at = _timestamp(_pick(data, "updated_at", "updatedAt"), created_at)
        importance = data.get("importance")
        last_accessed = _pick(data, "last_accessed_at", "lastAccessedAt")
        embedding = data.get("embedding")

        return cls(
            id=str(data["id"]),
            content=str(data["content"]),
            source=source,
            created_at=created_at,
            updated_at=updated_at,
            importance=source.initial_importance if importance is None else importance,
            access_count=int(_pick(data, "access_count", "accessCount") or 0),
            last_accessed_at=_timestamp(last_accessed, created_at),
            pinned=bool(data.get("pinned", False)),
            embedding=[float(x) for x in embedding] if embedding else None,
            embedding_model=_pick(data, "embedding_model", "embeddingModel"),
            decayed_at=data.get("decayed_at"),
        )


def _pick(data: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if data.get(key) is not None:
            return data[key]
    return None


def _timestamp(value: Any, fallback: float) -> float:
    if value is None:
        return fallback
    value = float(value)
    # Desktop client records store milliseconds
    if value > 1e11:
        value /= 1000.0
    return value


@dataclass(frozen=True)
class RetrievedMemory:
    """A memory surfaced by retrieval, with its match score."""

    id: str
    content: str
    similarity: float
    source: MemorySource


@dataclass(frozen=True)
class ScoredMemory:
    """A memory paired with its importance at evaluation time."""

    memory: Memory
    current_importance: float

    @property
    def id(self) -> str:
        return self.memory.id


@dataclass
class CleanupPreview:
    """What a prune would delete and keep, planned from one snapshot."""

    to_delete: list[ScoredMemory] = field(default_factory=list)
    will_keep: list[ScoredMemory] = field(default_factory=list)
    reason: CleanupReason = CleanupReason.NONE


@dataclass
class CleanupResult:
    """Outcome of a user-triggered cleanup."""

    deleted_count: int
    deleted: list[Memory] = field(default_factory=list)
    reason: str = ""


@dataclass
class MemoryStats:
    """Aggregate numbers for the settings screen."""

    total: int = 0
    auto: int = 0
    manual: int = 0
    pinned: int = 0
    avg_importance: float = 0.0
    below_threshold: int = 0
    threshold: float = 0.0


@dataclass
class BackfillReport:
    """Result of embedding memories that lack a vector."""

    total: int = 0
    updated: int = 0
    failed: int = 0
