"""Importance decay sweeps, pruning and scheduled maintenance."""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable

from .importance import current_importance
from .models import CleanupPreview, CleanupReason, CleanupResult, ScoredMemory
from .settings import CleanupFrequency, MemorySettings, SettingsAccessor
from .store import MemoryStore

if TYPE_CHECKING:
    from .logging import JSONLLogger

logger = logging.getLogger(__name__)

# Only memories untouched for this long are re-scored by a decay sweep
DECAY_MIN_AGE_SECONDS = 3600.0
# Smaller changes are not worth a write
DECAY_MIN_DELTA = 1.0


@dataclass
class MaintenanceReport:
    """Outcome of one decay + prune pass."""

    decayed: int = 0
    deleted: list[str] = field(default_factory=list)
    skipped: bool = False

    @property
    def deleted_count(self) -> int:
        return len(self.deleted)


def plan_cleanup(
    scored: list[ScoredMemory],
    threshold: float,
    max_count: int,
) -> CleanupPreview:
    """Decide which memories a prune deletes, from one snapshot.

    Pinned memories are always kept and count toward the cap. Unpinned
    memories are visited from most to least important; each is deleted if
    it is below the threshold or if the kept set is already full.

    Args:
        scored: Every memory with its current importance.
        threshold: Importance below which unpinned memories go.
        max_count: Capacity cap for the whole collection.

    Returns:
        The deletion plan and the reason behind it.
    """
    pinned = [s for s in scored if s.memory.pinned]
    unpinned = sorted(
        (s for s in scored if not s.memory.pinned),
        key=lambda s: s.current_importance,
        reverse=True,
    )

    preview = CleanupPreview(will_keep=list(pinned))
    below_any = False
    over_any = False
    for item in unpinned:
        below = item.current_importance < threshold
        over = len(preview.will_keep) >= max_count
        if below or over:
            preview.to_delete.append(item)
            below_any = below_any or below
            over_any = over_any or over
        else:
            preview.will_keep.append(item)

    if below_any and over_any:
        preview.reason = CleanupReason.BOTH
    elif below_any:
        preview.reason = CleanupReason.THRESHOLD
    elif over_any:
        preview.reason = CleanupReason.LIMIT
    return preview


def describe_cleanup(preview: CleanupPreview, settings: MemorySettings) -> str:
    """Human-readable summary of a cleanup plan."""
    count = len(preview.to_delete)
    if count == 0:
        return "No memories need cleaning up"
    if preview.reason is CleanupReason.THRESHOLD:
        return (
            f"Removed {count} memories with importance below "
            f"{settings.importance_threshold:g}"
        )
    if preview.reason is CleanupReason.LIMIT:
        return f"Removed {count} memories to stay within the {settings.max_memory_count} limit"
    if preview.reason is CleanupReason.BOTH:
        return f"Removed {count} memories (below threshold and over the limit)"
    return f"Removed {count} memories"


class RetentionManager:
    """Applies importance decay and deletes low-value memories.

    Every operation computes its plan from one snapshot of the collection
    and commits it with a single store write, with no suspension point in
    between.
    """

    def __init__(
        self,
        store: MemoryStore,
        settings: SettingsAccessor,
        clock: Callable[[], float] | None = None,
        events: "JSONLLogger | None" = None,
    ) -> None:
        """Initialize the manager.

        Args:
            store: Memory collection.
            settings: Accessor for the current MemorySettings.
            clock: Source of epoch seconds; defaults to the store's clock.
            events: Optional JSONL event log.
        """
        self.store = store
        self.settings = settings
        self.clock = clock or store.clock
        self.events = events

    def decay_sweep(self) -> int:
        """Persist decayed importance scores.

        Only memories not updated in the last hour whose score moved by
        more than one point are written. The write records the sweep time
        as the decay anchor, so later reads keep decaying from the
        persisted value and the outcome does not depend on how often
        sweeps run.

        Returns:
            Number of memories whose importance was persisted.
        """
        settings = self.settings()
        if not settings.forgetting_active:
            return 0

        now = self.clock()
        updates: dict[str, float] = {}
        for memory in self.store.list():
            if now - memory.updated_at <= DECAY_MIN_AGE_SECONDS:
                continue
            score = current_importance(memory, settings.decay_rate, now)
            if abs(score - memory.importance) > DECAY_MIN_DELTA:
                updates[memory.id] = score

        updated = self.store.set_importance(updates, decayed_at=now)
        if updated:
            logger.debug("Decay sweep updated %d memories", updated)
        if self.events:
            self.events.log_decay(updated)
        return updated

    def score_all(self, settings: MemorySettings | None = None) -> list[ScoredMemory]:
        """Every memory with its current importance."""
        settings = settings or self.settings()
        now = self.clock()
        return [
            ScoredMemory(m, current_importance(m, settings.decay_rate, now))
            for m in self.store.list()
        ]

    def preview_cleanup(self) -> CleanupPreview:
        """Show what a prune would delete, without deleting anything."""
        settings = self.settings()
        return plan_cleanup(
            self.score_all(settings),
            settings.importance_threshold,
            settings.max_memory_count,
        )

    def prune_sweep(self) -> CleanupResult:
        """Delete unpinned memories below the threshold or over the cap.

        No-op unless memory and forgetting are both enabled.
        """
        settings = self.settings()
        if not settings.forgetting_active:
            return CleanupResult(deleted_count=0)
        return self._apply(settings)

    def perform_cleanup(self) -> CleanupResult:
        """User-triggered prune; only requires forgetting to be enabled."""
        settings = self.settings()
        if not settings.forgetting_enabled:
            return CleanupResult(deleted_count=0, reason="Forgetting is disabled")
        return self._apply(settings)

    def force_cleanup(self, count: int) -> CleanupResult:
        """Delete the ``count`` least important unpinned memories."""
        if count <= 0:
            return CleanupResult(deleted_count=0)

        unpinned = sorted(
            (s for s in self.score_all() if not s.memory.pinned),
            key=lambda s: s.current_importance,
        )
        doomed = [s.memory for s in unpinned[:count]]
        self.store.delete_many(m.id for m in doomed)
        if self.events:
            self.events.log_prune([m.id for m in doomed], "forced")
        return CleanupResult(
            deleted_count=len(doomed),
            deleted=doomed,
            reason=f"Removed the {len(doomed)} least important memories",
        )

    def run_maintenance(self) -> MaintenanceReport:
        """Decay then prune. Skipped when forgetting is inactive."""
        if not self.settings().forgetting_active:
            return MaintenanceReport(skipped=True)

        decayed = self.decay_sweep()
        result = self.prune_sweep()
        return MaintenanceReport(
            decayed=decayed,
            deleted=[m.id for m in result.deleted],
        )

    def on_turn_complete(self) -> MaintenanceReport:
        """Post-turn hook: runs maintenance when configured for after_chat."""
        if self.settings().cleanup_frequency is not CleanupFrequency.AFTER_CHAT:
            return MaintenanceReport(skipped=True)
        return self.run_maintenance()

    def _apply(self, settings: MemorySettings) -> CleanupResult:
        preview = plan_cleanup(
            self.score_all(settings),
            settings.importance_threshold,
            settings.max_memory_count,
        )
        doomed = [s.memory for s in preview.to_delete]
        if doomed:
            self.store.delete_many(m.id for m in doomed)
            logger.info(
                "Pruned %d memories (%s)", len(doomed), preview.reason.value
            )
            if self.events:
                self.events.log_prune([m.id for m in doomed], preview.reason.value)
        return CleanupResult(
            deleted_count=len(doomed),
            deleted=doomed,
            reason=describe_cleanup(preview, settings),
        )


class MaintenanceScheduler:
    """Runs maintenance at start-up and then periodically on the event loop.

    Does nothing while the cleanup frequency is set to manual.
    """

    def __init__(
        self,
        retention: RetentionManager,
        interval_seconds: float = 24 * 3600.0,
    ) -> None:
        self.retention = retention
        self.interval_seconds = interval_seconds
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the background task. Must be called inside a running loop."""
        if self.running:
            return
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Cancel the background task and wait for it to finish."""
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    def run_once(self) -> MaintenanceReport:
        """One scheduled pass, honoring the cleanup frequency."""
        settings = self.retention.settings()
        if settings.cleanup_frequency is CleanupFrequency.MANUAL:
            return MaintenanceReport(skipped=True)
        return self.retention.run_maintenance()

    async def _run(self) -> None:
        while True:
            start = time.monotonic()
            try:
                report = self.run_once()
                if not report.skipped:
                    logger.info(
                        "Maintenance: %d decayed, %d deleted",
                        report.decayed,
                        report.deleted_count,
                    )
            except Exception:
                logger.exception("Memory maintenance failed")
            elapsed = time.monotonic() - start
            await asyncio.sleep(max(0.0, self.interval_seconds - elapsed))
