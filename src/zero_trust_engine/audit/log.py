"""AuditLog — append-only JSONL audit trail for engine mutations.

Every state-changing operation appends exactly one :class:`AuditRecord`.
Records go to a JSONL file when a path is configured, otherwise to an
in-memory buffer. Subscribers receive each record after it is written,
which is how the background JIT sweep emits events instead of printing.
"""
from __future__ import annotations

import datetime
import json
import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable

logger = logging.getLogger(__name__)


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class Severity(str, Enum):
    """Severity attached to an audit record."""

    INFO = "INFO"
    WARNING = "WARNING"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


@dataclass(frozen=True)
class AuditRecord:
    """A single auditable engine event.

    Parameters
    ----------
    action:
        Short snake_case name of the operation (e.g. ``"jit_expired"``).
    actor:
        The principal or subsystem that performed the operation.
    subject:
        The primary entity affected (identity id, thumbprint, segment name...).
    details:
        Arbitrary JSON-serialisable context.
    severity:
        Record severity. Defaults to INFO.
    timestamp:
        UTC time of the event. Defaults to now.
    """

    action: str
    actor: str = "system"
    subject: str = ""
    details: dict[str, object] = field(default_factory=dict)
    severity: Severity = Severity.INFO
    timestamp: datetime.datetime = field(default_factory=_utcnow)

    def to_dict(self) -> dict[str, object]:
        """Serialize to a plain dictionary suitable for JSON encoding."""
        return {
            "timestamp": self.timestamp.isoformat(),
            "actor": self.actor,
            "action": self.action,
            "subject": self.subject,
            "details": self.details,
            "severity": self.severity.value,
        }


class AuditLog:
    """Thread-safe append-only audit log.

    Parameters
    ----------
    log_path:
        Path of the JSONL file. Parent directories are created. When None,
        records are kept in an in-memory buffer.
    clock:
        Source of UTC time for records built by :meth:`record` without an
        explicit timestamp.
    """

    def __init__(
        self,
        log_path: Path | None = None,
        clock: Callable[[], datetime.datetime] = _utcnow,
    ) -> None:
        self._log_path = log_path
        self._clock = clock
        self._buffer: list[str] = []
        self._lock = threading.Lock()
        self._subscribers: list[Callable[[AuditRecord], None]] = []

        if log_path is not None:
            log_path.parent.mkdir(parents=True, exist_ok=True)

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------

    def append(self, record: AuditRecord) -> AuditRecord:
        """Append *record* and notify subscribers."""
        line = json.dumps(record.to_dict(), separators=(",", ":"), default=str)
        with self._lock:
            if self._log_path is not None:
                with self._log_path.open("a", encoding="utf-8") as fh:
                    fh.write(line + "\n")
            else:
                self._buffer.append(line)
            subscribers = list(self._subscribers)

        for callback in subscribers:
            try:
                callback(record)
            except Exception:
                logger.exception("Audit subscriber failed for action %r", record.action)
        return record

    def record(
        self,
        action: str,
        subject: str = "",
        actor: str = "system",
        severity: Severity = Severity.INFO,
        timestamp: datetime.datetime | None = None,
        **details: object,
    ) -> AuditRecord:
        """Build and append a record in one call.

        *timestamp* defaults to the log's clock.
        """
        return self.append(
            AuditRecord(
                action=action,
                actor=actor,
                subject=subject,
                details=dict(details),
                severity=severity,
                timestamp=timestamp or self._clock(),
            )
        )

    def subscribe(self, callback: Callable[[AuditRecord], None]) -> None:
        """Register *callback* to receive every record appended from now on."""
        with self._lock:
            self._subscribers.append(callback)

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    def records(
        self,
        action: str | None = None,
        subject: str | None = None,
        tail: int | None = None,
    ) -> list[dict[str, object]]:
        """Return parsed records in chronological order, optionally filtered."""
        lines = self.lines()

        parsed: list[dict[str, object]] = []
        for line in lines:
            stripped = line.strip()
            if not stripped:
                continue
            try:
                entry: dict[str, object] = json.loads(stripped)
            except json.JSONDecodeError:
                continue
            if action is not None and entry.get("action") != action:
                continue
            if subject is not None and entry.get("subject") != subject:
                continue
            parsed.append(entry)

        if tail is not None:
            return parsed[-tail:]
        return parsed

    def lines(self) -> list[str]:
        """Return the raw JSONL lines written so far. The log is left untouched."""
        with self._lock:
            if self._log_path is not None and self._log_path.exists():
                return self._log_path.read_text(encoding="utf-8").splitlines()
            return list(self._buffer)

    def __len__(self) -> int:
        return len(self.records())
