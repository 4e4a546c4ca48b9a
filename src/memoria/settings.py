"""Runtime memory settings and their persistence.

Settings are user-mutable and read fresh on every operation. Components
receive a zero-argument accessor (usually ``SettingsStore.get``) instead of
a settings object so they always see the latest user intent.
"""

import logging
from dataclasses import asdict, dataclass, fields, replace
from enum import Enum
from typing import Any, Callable

from .storage import KeyValueStore

logger = logging.getLogger(__name__)

SETTINGS_KEY = "memory_settings"


class DecayRate(str, Enum):
    """How quickly unused memories lose importance."""

    SLOW = "slow"
    NORMAL = "normal"
    FAST = "fast"


class CleanupFrequency(str, Enum):
    """When automatic maintenance runs."""

    AFTER_CHAT = "after_chat"
    DAILY = "daily"
    MANUAL = "manual"


# camelCase keys written by the desktop client
_CAMEL_KEYS = {
    "autoRetrieve": "auto_retrieve",
    "queryRewriting": "query_rewriting",
    "maxRetrieveCount": "max_retrieve_count",
    "similarityThreshold": "similarity_threshold",
    "autoSummarize": "auto_summarize",
    "toolModel": "tool_model",
    "embeddingModel": "embedding_model",
    "forgettingEnabled": "forgetting_enabled",
    "maxMemoryCount": "max_memory_count",
    "importanceThreshold": "importance_threshold",
    "decayRate": "decay_rate",
    "cleanupFrequency": "cleanup_frequency",
}


@dataclass
class MemorySettings:
    """Configuration record for the whole memory subsystem.

    Attributes:
        enabled: Master switch.
        auto_retrieve: Inject retrieved memories into each conversation turn.
        query_rewriting: Rewrite the query with the tool model before search.
        max_retrieve_count: Maximum memories returned per retrieval (1-20).
        similarity_threshold: Minimum cosine similarity, 0-100 scale.
        auto_summarize: Extract memories after each conversation turn.
        tool_model: "provider:model" used for rewriting and extraction.
        embedding_model: "provider:model", or a bare model name for OpenAI.
        forgetting_enabled: Allow decay and pruning.
        max_memory_count: Capacity cap (10-500).
        importance_threshold: Prune unpinned memories below this (0-50).
        decay_rate: Half-life preset.
        cleanup_frequency: When maintenance runs automatically.
    """

    enabled: bool = False
    auto_retrieve: bool = True
    query_rewriting: bool = True
    max_retrieve_count: int = 5
    similarity_threshold: float = 10
    auto_summarize: bool = True
    tool_model: str = ""
    embedding_model: str = "text-embedding-3-small"
    forgetting_enabled: bool = True
    max_memory_count: int = 100
    importance_threshold: float = 20
    decay_rate: DecayRate = DecayRate.NORMAL
    cleanup_frequency: CleanupFrequency = CleanupFrequency.AFTER_CHAT

    def __post_init__(self) -> None:
        """Coerce enum and string fields."""
        self.decay_rate = _coerce_enum(DecayRate, self.decay_rate, DecayRate.NORMAL)
        self.cleanup_frequency = _coerce_enum(
            CleanupFrequency, self.cleanup_frequency, CleanupFrequency.AFTER_CHAT
        )
        self.tool_model = (self.tool_model or "").strip()
        self.embedding_model = (self.embedding_model or "").strip()

    def normalized(self) -> "MemorySettings":
        """Return a copy with numeric fields clamped into their UI ranges."""
        return replace(
            self,
            max_retrieve_count=int(_clamp(self.max_retrieve_count, 1, 20)),
            similarity_threshold=_clamp(self.similarity_threshold, 0, 100),
            max_memory_count=int(_clamp(self.max_memory_count, 10, 500)),
            importance_threshold=_clamp(self.importance_threshold, 0, 50),
        )

    @property
    def forgetting_active(self) -> bool:
        """True when decay and pruning are allowed to run."""
        return self.enabled and self.forgetting_enabled

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["decay_rate"] = self.decay_rate.value
        data["cleanup_frequency"] = self.cleanup_frequency.value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "MemorySettings":
        """Merge a stored (possibly partial) record over the defaults.

        Unknown keys are ignored; camelCase keys are accepted.
        """
        if not data:
            return cls()

        known = {f.name for f in fields(cls)}
        kwargs: dict[str, Any] = {}
        for key, value in data.items():
            name = _CAMEL_KEYS.get(key, key)
            if name in known:
                kwargs[name] = value
        return cls(**kwargs).normalized()


def _clamp(value: Any, low: float, high: float) -> float:
    return max(low, min(high, float(value)))


def _coerce_enum(enum_cls: type[Enum], value: Any, default: Enum) -> Any:
    try:
        return enum_cls(value)
    except ValueError:
        logger.warning(
            "Unknown %s %r, using %s", enum_cls.__name__, value, default.value
        )
        return default


SettingsAccessor = Callable[[], MemorySettings]
SettingsObserver = Callable[[MemorySettings], None]


class SettingsStore:
    """Persists MemorySettings as one record in a key-value store."""

    def __init__(self, kv: KeyValueStore, key: str = SETTINGS_KEY) -> None:
        self.kv = kv
        self.key = key
        self._observers: list[SettingsObserver] = []

    def get(self) -> MemorySettings:
        """Read the current settings.

        Never cached: every call reads the store again.
        """
        stored = self.kv.get(self.key)
        if stored is None:
            return MemorySettings()
        if not isinstance(stored, dict):
            logger.warning("Corrupt memory settings record, using defaults")
            return MemorySettings()
        try:
            return MemorySettings.from_dict(stored)
        except (TypeError, ValueError) as e:
            logger.warning("Invalid memory settings (%s), using defaults", e)
            return MemorySettings()

    def save(self, settings: MemorySettings) -> MemorySettings:
        """Persist the whole settings record and notify observers.

        Numeric fields are clamped into range before saving.
        """
        settings = settings.normalized()
        self.kv.set(self.key, settings.to_dict())
        for observer in list(self._observers):
            try:
                observer(settings)
            except Exception:
                logger.exception("Settings observer failed")
        return settings

    def update(self, **changes: Any) -> MemorySettings:
        """Apply field changes to the stored settings and save them.

        Raises:
            TypeError: If a field name is unknown.
        """
        return self.save(replace(self.get(), **changes))

    def subscribe(self, observer: SettingsObserver) -> Callable[[], None]:
        """Register a change observer. Returns an unsubscribe callable."""
        self._observers.append(observer)
        return lambda: self._observers.remove(observer)
