"""JSONL event log for consolidation runs."""

import json
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any


@dataclass
class LogEntry:
    """A single event log entry."""

    timestamp: str
    event: str
    run_id: str | None = None
    family_id: int | None = None
    user_id: str | None = None
    duration_ms: float | None = None
    error: str | None = None
    error_type: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict, excluding None values."""
        data = asdict(self)
        return {k: v for k, v in data.items() if v is not None and v != {} and v != []}


class JSONLLogger:
    """Logger that writes consolidation events in JSONL format."""

    def __init__(
        self,
        log_dir: str | Path,
        filename: str = "consolidation.jsonl",
        max_size_mb: float = 10.0,
    ) -> None:
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.filename = filename
        self.max_size_bytes = int(max_size_mb * 1024 * 1024)
        self._current_run_id: str | None = None

    @property
    def log_path(self) -> Path:
        """Current log file path."""
        return self.log_dir / self.filename

    def set_run_id(self, run_id: str | None) -> None:
        """Set the run_id attached to all subsequent entries."""
        self._current_run_id = run_id

    def _rotate_if_needed(self) -> None:
        """Rotate log file if it exceeds max size."""
        if not self.log_path.exists():
            return

        if self.log_path.stat().st_size >= self.max_size_bytes:
            timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
            rotated_name = f"{self.log_path.stem}_{timestamp}.jsonl"
            self.log_path.rename(self.log_dir / rotated_name)

    def _write(self, entry: LogEntry) -> None:
        self._rotate_if_needed()

        with open(self.log_path, "a", encoding="utf-8") as f:
            f.write(json.dumps(entry.to_dict(), ensure_ascii=False, default=str) + "\n")

    def log(
        self,
        event: str,
        *,
        run_id: str | None = None,
        family_id: int | None = None,
        user_id: str | None = None,
        duration_ms: float | None = None,
        error: str | None = None,
        error_type: str | None = None,
        **extra: Any,
    ) -> None:
        """Log an event."""
        entry = LogEntry(
            timestamp=datetime.now(timezone.utc).isoformat(),
            event=event,
            run_id=run_id or self._current_run_id,
            family_id=family_id,
            user_id=user_id,
            duration_ms=duration_ms,
            error=error,
            error_type=error_type,
            extra=extra if extra else {},
        )
        self._write(entry)

    def log_run_start(self, run_id: str, now: datetime, batch_count: int) -> None:
        """Log the start of a consolidation run."""
        self.log("run_start", run_id=run_id, now=now.isoformat(), batches=batch_count)

    def log_batch_start(self, family_id: int, user_id: str | None, records: int) -> None:
        """Log that a batch is about to be sent to the model."""
        self.log("batch_start", family_id=family_id, user_id=user_id, records=records)

    def log_batch_consolidated(
        self,
        family_id: int,
        user_id: str | None,
        *,
        new_facts: int,
        updated_facts: int,
        records_consolidated: int,
        duration_ms: float,
    ) -> None:
        """Log the audit line for a committed batch."""
        self.log(
            "batch_consolidated",
            family_id=family_id,
            user_id=user_id,
            duration_ms=duration_ms,
            new_facts=new_facts,
            updated_facts=updated_facts,
            records_consolidated=records_consolidated,
        )

    def log_batch_failed(
        self,
        family_id: int,
        user_id: str | None,
        error: Exception,
        duration_ms: float | None = None,
    ) -> None:
        """Log a batch that was skipped because of an error."""
        self.log(
            "batch_failed",
            family_id=family_id,
            user_id=user_id,
            duration_ms=duration_ms,
            error=str(error),
            error_type=type(error).__name__,
        )

    def log_purge(self, purged: int, cutoff: datetime) -> None:
        """Log the result of the retention sweep."""
        self.log("purge", purged=purged, cutoff=cutoff.isoformat())

    def log_purge_failed(self, error: Exception) -> None:
        """Log a failed retention sweep."""
        self.log("purge_failed", error=str(error), error_type=type(error).__name__)

    def log_run_end(self, run_id: str, consolidated: int, failed: int, duration_ms: float) -> None:
        """Log the end of a consolidation run."""
        self.log(
            "run_end",
            run_id=run_id,
            duration_ms=duration_ms,
            batches_consolidated=consolidated,
            batches_failed=failed,
        )
