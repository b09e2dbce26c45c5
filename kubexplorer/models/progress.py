"""Progress events emitted while a namespace scan runs."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any


class ProgressEventType(StrEnum):
    SCAN_STARTED = "scan_started"
    CATALOG_RESOLVED = "catalog_resolved"
    RESOURCE_COUNTED = "resource_counted"
    PROGRESS = "progress"
    SCAN_COMPLETE = "scan_complete"
    CACHE_HIT = "cache_hit"
    SCAN_FAILED = "scan_failed"


TERMINAL_EVENT_TYPES: frozenset[ProgressEventType] = frozenset(
    {
        ProgressEventType.SCAN_COMPLETE,
        ProgressEventType.CACHE_HIT,
        ProgressEventType.SCAN_FAILED,
    }
)


@dataclass(frozen=True)
class ProgressEvent:
    """One milestone of a namespace scan.

    ``seq`` is assigned by the scan that produced the event and increases
    monotonically within that scan, so consumers can detect dropped events.
    """

    type: ProgressEventType
    namespace: str
    message: str
    seq: int = 0
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(tz=UTC))

    @property
    def terminal(self) -> bool:
        return self.type in TERMINAL_EVENT_TYPES

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "namespace": self.namespace,
            "message": self.message,
            "seq": self.seq,
            "data": self.data,
            "timestamp": self.timestamp.isoformat(),
        }

    def to_sse(self) -> str:
        """Render as one Server-Sent Events frame."""
        return f"event: {self.type.value}\ndata: {json.dumps(self.to_dict())}\n\n"
