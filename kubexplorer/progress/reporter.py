"""Non-blocking progress delivery for namespace scans.

Each consumer (an SSE connection, a CLI watch) owns a :class:`ProgressReporter`
with a small bounded queue.  The scan publishes through a
:class:`ProgressBroadcast`, which fans each event out to every attached
reporter.  A slow consumer costs the scan at most ``put_timeout`` per event;
after that the event is dropped for that consumer only.

Terminal events (scan_complete, cache_hit, scan_failed) are never dropped:
when the queue is full the oldest buffered event is discarded to make room,
so a consumer always learns that the scan has finished.
"""

from __future__ import annotations

import asyncio
import itertools
from collections.abc import AsyncIterator
from typing import Any

from kubexplorer.models.progress import ProgressEvent, ProgressEventType
from kubexplorer.models.resources import CountedResourceType
from kubexplorer.observability.logging import get_logger
from kubexplorer.observability.metrics import progress_events_dropped_total, progress_events_total

_DEFAULT_BUFFER_SIZE: int = 100
_DEFAULT_PUT_TIMEOUT_S: float = 0.1
_DEFAULT_REPORT_INTERVAL: int = 10

_logger = get_logger("progress")


class ProgressReporter:
    """One consumer's view of a scan's progress stream."""

    def __init__(
        self,
        namespace: str,
        buffer_size: int = _DEFAULT_BUFFER_SIZE,
        put_timeout_s: float = _DEFAULT_PUT_TIMEOUT_S,
    ) -> None:
        self.namespace = namespace
        self._put_timeout_s = put_timeout_s
        # None is the close sentinel.
        self._queue: asyncio.Queue[ProgressEvent | None] = asyncio.Queue(maxsize=buffer_size)
        self._closed = False
        self._finished = False
        self.dropped = 0

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def finished(self) -> bool:
        """True once a terminal event has been queued."""
        return self._finished

    async def emit(self, event: ProgressEvent) -> bool:
        """Queue ``event`` for the consumer; return False if it was not delivered.

        Never raises and never waits longer than the put timeout.
        """
        if self._closed or self._finished:
            return False

        if event.terminal:
            self._force_put(event)
            self._finished = True
            return True

        try:
            await asyncio.wait_for(self._queue.put(event), timeout=self._put_timeout_s)
        except TimeoutError:
            self.dropped += 1
            progress_events_dropped_total.inc()
            _logger.debug(
                "progress_event_dropped",
                namespace=self.namespace,
                type=event.type.value,
                dropped=self.dropped,
            )
            return False
        return True

    def close(self) -> None:
        """Stop delivery; the consumer is gone.  Idempotent."""
        if self._closed:
            return
        self._closed = True
        self._force_put(None)

    async def events(self) -> AsyncIterator[ProgressEvent]:
        """Yield queued events until a terminal event or :meth:`close`."""
        while True:
            event = await self._queue.get()
            if event is None:
                return
            yield event
            if event.terminal:
                return

    def _force_put(self, item: ProgressEvent | None) -> None:
        if self._queue.full():
            self._queue.get_nowait()
            self.dropped += 1
            progress_events_dropped_total.inc()
        self._queue.put_nowait(item)


class ProgressBroadcast:
    """Publishes the milestones of one namespace scan to attached reporters.

    Sequence numbers are assigned here, so every consumer of the same scan
    sees the same ``seq`` for the same event and can spot gaps.
    """

    def __init__(
        self,
        namespace: str,
        verbose: bool = False,
        report_interval: int = _DEFAULT_REPORT_INTERVAL,
    ) -> None:
        self.namespace = namespace
        self._verbose = verbose
        self._report_interval = max(1, report_interval)
        self._reporters: list[ProgressReporter] = []
        self._seq = itertools.count(1)

    def attach(self, reporter: ProgressReporter) -> None:
        if reporter not in self._reporters:
            self._reporters.append(reporter)

    def detach(self, reporter: ProgressReporter) -> None:
        if reporter in self._reporters:
            self._reporters.remove(reporter)

    @property
    def listeners(self) -> int:
        return sum(1 for r in self._reporters if not r.closed)

    async def publish(self, event_type: ProgressEventType, message: str, **data: Any) -> ProgressEvent:
        event = ProgressEvent(
            type=event_type,
            namespace=self.namespace,
            message=message,
            seq=next(self._seq),
            data=data,
        )
        progress_events_total.labels(type=event_type.value).inc()
        live = [r for r in self._reporters if not r.closed]
        if live:
            await asyncio.gather(*(r.emit(event) for r in live))
        return event

    # ------------------------------------------------------------------
    # Scan milestones
    # ------------------------------------------------------------------

    async def scan_started(self) -> None:
        await self.publish(
            ProgressEventType.SCAN_STARTED,
            f"Scanning namespace {self.namespace}",
        )

    async def catalog_resolved(self, discovered: int, countable: int) -> None:
        await self.publish(
            ProgressEventType.CATALOG_RESOLVED,
            f"Found {countable} countable resource types ({discovered} discovered)",
            discovered=discovered,
            countable=countable,
        )

    async def resource_counted(self, done: int, total: int, counted: CountedResourceType) -> None:
        """Report one finished count.

        Empty resource types are only reported in verbose mode; the periodic
        progress event fires every ``report_interval`` resources and on the
        last one regardless.
        """
        if counted.count > 0 or self._verbose:
            await self.publish(
                ProgressEventType.RESOURCE_COUNTED,
                f"{counted.resource.display_name}: {counted.count}",
                resource=counted.full_name,
                count=counted.count,
                status=counted.count_status.value,
            )
        if done % self._report_interval == 0 or done == total:
            percent = round(done * 100 / total) if total else 100
            await self.publish(
                ProgressEventType.PROGRESS,
                f"Counted {done}/{total} resource types",
                done=done,
                total=total,
                percent=percent,
            )

    async def scan_complete(self, resources: int, total_objects: int, duration_s: float) -> None:
        await self.publish(
            ProgressEventType.SCAN_COMPLETE,
            f"Scan complete: {total_objects} objects across {resources} resource types",
            resources=resources,
            total_objects=total_objects,
            duration_s=round(duration_s, 3),
        )

    async def cache_hit(self, resources: int, total_objects: int, age_s: float) -> None:
        await self.publish(
            ProgressEventType.CACHE_HIT,
            f"Served from cache ({resources} resource types)",
            resources=resources,
            total_objects=total_objects,
            age_s=round(age_s, 1),
        )

    async def scan_failed(self, error: str) -> None:
        await self.publish(ProgressEventType.SCAN_FAILED, f"Scan failed: {error}", error=error)
