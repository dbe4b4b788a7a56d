"""
Operator-facing connection log.

Append-only list of timestamped entries shown in the dashboard panel.
Never persisted; lives as long as the store link. Clearable on request.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterator


class Severity(str, Enum):
    """Display severity of a connection log entry."""

    INFO = "info"
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True)
class ConnectionLogEntry:
    """Single timestamped log line."""
    ts_ms: int
    message: str
    severity: Severity

    def to_dict(self) -> dict[str, Any]:
        return {
            "ts_ms": self.ts_ms,
            "message": self.message,
            "severity": self.severity.value,
        }


class ConnectionLog:
    """
    Append-only connection log for a single store link.

    Only the link runtime appends; observers read snapshots.
    """

    def __init__(self) -> None:
        self._entries: list[ConnectionLogEntry] = []

    def append(self, entry: ConnectionLogEntry) -> None:
        self._entries.append(entry)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[ConnectionLogEntry]:
        return iter(tuple(self._entries))
