"""
SAS Field Network Check - Measurement Store
Append-only, ordered log of every finding produced during a run.

Every probe family writes through the store. Entries are kept in memory for the
report aggregator and, when a sink is attached, appended to the run's report
file as they arrive:

    [2026-10-17 09:14:02] [WARN] Gateway 192.168.1.1 latency 14.2ms is elevated
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Iterator, List, Optional, TextIO

logger = logging.getLogger(__name__)
report_logger = logging.getLogger("fieldcheck.report")


class Severity(Enum):
    """Severity levels for report entries."""
    INFO = "INFO"
    SUCCESS = "SUCCESS"
    WARN = "WARN"
    ERROR = "ERROR"


_LOGGING_LEVELS = {
    Severity.INFO: logging.INFO,
    Severity.SUCCESS: logging.INFO,
    Severity.WARN: logging.WARNING,
    Severity.ERROR: logging.ERROR,
}


@dataclass(frozen=True)
class LogEntry:
    """A single timestamped report line."""
    severity: Severity
    message: str
    timestamp: datetime = field(default_factory=datetime.now)

    def format_line(self) -> str:
        """Render the entry as one report-file line (newlines escaped)."""
        message = self.message.replace("\r", "\\r").replace("\n", "\\n")
        stamp = self.timestamp.strftime("%Y-%m-%d %H:%M:%S")
        return f"[{stamp}] [{self.severity.value}] {message}"


class ReportSinkError(Exception):
    """The report file could not be opened or written."""


class ReportFileSink:
    """Appends formatted entries to the run's report file (UTF-8)."""

    def __init__(self, path: str):
        self.path = path
        try:
            self._handle: Optional[TextIO] = open(path, "a", encoding="utf-8")
        except OSError as e:
            raise ReportSinkError(f"Cannot open report file {path}: {e}") from e

    def write(self, entry: LogEntry):
        if self._handle is None:
            return
        self._handle.write(entry.format_line() + "\n")
        self._handle.flush()

    def close(self):
        if self._handle is not None:
            self._handle.close()
            self._handle = None


class MeasurementStore:
    """
    Thread-safe, append-only sequence of LogEntry.

    Insertion order is preserved and entries are never modified or removed.
    Appends from concurrent probe families are serialized by a lock, so the
    order seen by the aggregator is the order in which appends happened.
    """

    def __init__(self, sink: Optional[ReportFileSink] = None,
                 mirror_to_logging: bool = True):
        self._entries: List[LogEntry] = []
        self._lock = threading.Lock()
        self._sink = sink
        self._mirror = mirror_to_logging

    def append(self, severity: Severity, message: str) -> LogEntry:
        entry = LogEntry(severity=severity, message=message)
        with self._lock:
            self._entries.append(entry)
            if self._sink is not None:
                try:
                    self._sink.write(entry)
                except OSError as e:
                    logger.warning(f"Failed to write report line: {e}")
        if self._mirror:
            report_logger.log(_LOGGING_LEVELS[severity], message)
        return entry

    # ── Convenience writers ──────────────────────────────────────────────

    def info(self, message: str) -> LogEntry:
        return self.append(Severity.INFO, message)

    def success(self, message: str) -> LogEntry:
        return self.append(Severity.SUCCESS, message)

    def warn(self, message: str) -> LogEntry:
        return self.append(Severity.WARN, message)

    def error(self, message: str) -> LogEntry:
        return self.append(Severity.ERROR, message)

    # ── Readers ──────────────────────────────────────────────────────────

    def entries(self) -> List[LogEntry]:
        """Snapshot copy of all entries in insertion order."""
        with self._lock:
            return list(self._entries)

    def messages(self, severity: Optional[Severity] = None) -> List[str]:
        return [e.message for e in self.entries()
                if severity is None or e.severity == severity]

    def __iter__(self) -> Iterator[LogEntry]:
        return iter(self.entries())

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def close(self):
        if self._sink is not None:
            self._sink.close()
