"""Exception types for the memory subsystem."""


class MemoriaError(Exception):
    """Base class for all memoria errors."""


class ProviderNotConfiguredError(MemoriaError):
    """No usable provider (or model) is configured for an optional step."""


class EmbeddingError(MemoriaError):
    """An embedding request failed or returned an unusable payload.

    Raised inside the embedding client and converted to ``None`` at its
    public boundary.
    """


class MemoryNotFoundError(MemoriaError):
    """A memory id did not match any stored memory."""

    def __init__(self, memory_id: str) -> None:
        super().__init__(f"Memory not found: {memory_id}")
        self.memory_id = memory_id
