"""Audit log of executed commands and denials, with efficient tail.

Events are appended to a JSONL file. Each spawned command produces one
"exec" event; each rejected request produces one "validation_failed" or
"policy_denied" event. Payload file contents are never recorded.
"""

import json
import os
import sys
import threading
from collections.abc import Iterator
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Final

from .runtime import ProcessResult

# Max chars of stdout/stderr kept per exec event
TRUNCATE_LIMIT: Final[int] = 4096

EVENT_TYPES: Final[tuple[str, ...]] = ("exec", "validation_failed", "policy_denied")

_BLOCK_SIZE: Final[int] = 4096


def default_audit_path() -> Path | None:
    """Audit file location, respecting GITOPS_AUDIT_FILE.

    An empty GITOPS_AUDIT_FILE disables auditing.
    """
    env_path = os.getenv("GITOPS_AUDIT_FILE")
    if env_path is not None:
        return Path(env_path) if env_path else None
    return Path.home() / ".gitops" / "audit.jsonl"


def _decode(line: bytes) -> dict[str, Any] | None:
    line = line.strip()
    if not line:
        return None
    try:
        event = json.loads(line.decode("utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None
    return event if isinstance(event, dict) else None


class AuditLog:
    """Thread-safe JSONL audit log.

    Features:
    - O_APPEND writes: concurrent operations never interleave lines
    - Write failures disable the log instead of failing the operation
    - Reverse-seek tail with an optional event-type filter
    """

    def __init__(self, audit_file: Path) -> None:
        self.audit_file = Path(audit_file)
        self._lock = threading.Lock()
        self._disabled = threading.Event()

    @property
    def disabled(self) -> bool:
        return self._disabled.is_set()

    def log(self, event: dict[str, Any]) -> None:
        """Append an event, stamped with an ISO-8601 UTC timestamp.

        One os.write() per event with O_APPEND, so each line lands whole at
        the end of the file on local filesystems. The first OSError disables
        the log and prints one warning to stderr.
        """
        if self._disabled.is_set():
            return

        record = {"timestamp": datetime.now(UTC).isoformat(), **event}
        line = (json.dumps(record) + "\n").encode("utf-8")

        try:
            self.audit_file.parent.mkdir(parents=True, exist_ok=True)
            fd = os.open(self.audit_file, os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o600)
            try:
                os.write(fd, line)
                os.fsync(fd)
            finally:
                os.close(fd)
        except OSError as e:
            self._disabled.set()
            print(
                f"gitops: audit log disabled, cannot write {self.audit_file}: {e}",
                file=sys.stderr,
            )

    def log_exec(self, argv: list[str], result: ProcessResult, duration_ms: int) -> None:
        self.log(
            {
                "event_type": "exec",
                "args": argv,
                "exit_code": result.exit_code,
                "signal_name": result.signal_name,
                "timeout": result.timed_out,
                "truncated": result.truncated,
                "stdout": result.stdout[:TRUNCATE_LIMIT],
                "stderr": result.stderr[:TRUNCATE_LIMIT],
                "duration_ms": duration_ms,
            }
        )

    def log_denial(self, event_type: str, operation: str, reason: str, **extra: Any) -> None:
        self.log({"event_type": event_type, "operation": operation, "reason": reason, **extra})

    def tail(
        self, n: int, event_type: str | None = None, max_buffer_bytes: int = 1_048_576
    ) -> list[dict[str, Any]]:
        """Get the last N events, oldest first.

        Args:
            n: Number of events to retrieve (must be > 0 to get results)
            event_type: Only count and return events of this type
            max_buffer_bytes: Maximum bytes to read before giving up.
                Prevents memory exhaustion on corrupt files with missing newlines.
        """
        if n <= 0 or not self.audit_file.exists():
            return []

        events: list[dict[str, Any]] = []
        with self._lock:
            for event in self._iter_newest_first(max_buffer_bytes):
                if event_type is not None and event.get("event_type") != event_type:
                    continue
                events.append(event)
                if len(events) == n:
                    break
        events.reverse()
        return events

    def _iter_newest_first(self, max_buffer_bytes: int) -> Iterator[dict[str, Any]]:
        """Decode events from the end of the file backwards, one block at a time.

        Corrupt lines are skipped. A line still incomplete when the byte
        budget runs out is dropped.
        """
        with self.audit_file.open("rb") as f:
            position = f.seek(0, os.SEEK_END)
            partial = b""
            bytes_read = 0

            while position > 0 and bytes_read < max_buffer_bytes:
                read_size = min(_BLOCK_SIZE, position)
                position -= read_size
                f.seek(position)
                lines = (f.read(read_size) + partial).split(b"\n")
                bytes_read += read_size

                # lines[0] may continue into the previous block
                partial = lines[0]
                for line in reversed(lines[1:]):
                    if (event := _decode(line)) is not None:
                        yield event

            if position == 0 and (event := _decode(partial)) is not None:
                yield event
