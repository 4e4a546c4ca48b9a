"""JSONL event logging for memory observability."""

import json
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


@dataclass
class LogEntry:
    """A single log entry."""

    timestamp: str
    event: str
    query: str | None = None
    mode: str | None = None
    count: int | None = None
    duration_ms: float | None = None
    reason: str | None = None
    error: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict, excluding None values."""
        data = asdict(self)
        return {k: v for k, v in data.items() if v is not None and v != {} and v != []}


class JSONLLogger:
    """Logger that writes structured memory events in JSONL format."""

    def __init__(
        self,
        log_dir: str | Path | None = None,
        filename: str = "memory.jsonl",
        max_size_mb: float = 10.0,
    ) -> None:
        if log_dir is None:
            log_dir = Path.home() / ".memoria" / "logs"
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.filename = filename
        self.max_size_bytes = int(max_size_mb * 1024 * 1024)

    @property
    def log_path(self) -> Path:
        """Current log file path."""
        return self.log_dir / self.filename

    def _rotate_if_needed(self) -> None:
        """Rotate log file if it exceeds max size."""
        if not self.log_path.exists():
            return

        if self.log_path.stat().st_size >= self.max_size_bytes:
            timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S_%f")
            rotated_name = f"{self.log_path.stem}_{timestamp}.jsonl"
            self.log_path.rename(self.log_dir / rotated_name)

    def _write(self, entry: LogEntry) -> None:
        """Write a log entry to the file.

        A failed write is reported through the standard logger and dropped.
        """
        try:
            self._rotate_if_needed()
            with open(self.log_path, "a", encoding="utf-8") as f:
                f.write(json.dumps(entry.to_dict(), ensure_ascii=False) + "\n")
        except OSError as e:
            logger.warning("Could not write %s event to %s: %s", entry.event, self.log_path, e)

    def log(
        self,
        event: str,
        *,
        query: str | None = None,
        mode: str | None = None,
        count: int | None = None,
        duration_ms: float | None = None,
        reason: str | None = None,
        error: str | None = None,
        **extra: Any,
    ) -> None:
        """Log an event."""
        entry = LogEntry(
            timestamp=datetime.now(timezone.utc).isoformat(),
            event=event,
            query=query,
            mode=mode,
            count=count,
            duration_ms=duration_ms,
            reason=reason,
            error=error,
            extra=extra if extra else {},
        )
        self._write(entry)

    def log_retrieval(
        self,
        query: str,
        mode: str,
        memory_ids: list[str],
        *,
        rewritten_query: str | None = None,
        duration_ms: float | None = None,
    ) -> None:
        """Log a retrieval and which search tier produced its results."""
        self.log(
            "retrieval",
            query=query,
            mode=mode,
            count=len(memory_ids),
            duration_ms=duration_ms,
            memory_ids=memory_ids,
            rewritten_query=rewritten_query,
        )

    def log_extraction(self, count: int, *, error: str | None = None) -> None:
        """Log memories extracted after a conversation turn."""
        self.log("extraction", count=count, error=error)

    def log_decay(self, updated: int) -> None:
        """Log a decay sweep."""
        self.log("decay_sweep", count=updated)

    def log_prune(self, deleted_ids: list[str], reason: str) -> None:
        """Log a prune sweep."""
        self.log("prune_sweep", count=len(deleted_ids), reason=reason, memory_ids=deleted_ids)

    def log_backfill(self, updated: int, failed: int) -> None:
        """Log an embedding backfill."""
        self.log("embedding_backfill", count=updated, failed=failed)
