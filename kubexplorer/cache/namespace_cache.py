"""Per-namespace cache of counted resource types.

A namespace entry is the complete result of one scan: every countable
resource type from the catalog, in discovery order, with its object count.
Entries are immutable and replaced wholesale, so readers see either the old
or the new scan, never a mixture.

Concurrent requests for the same namespace share one scan task.  Waiters
await it through ``asyncio.shield`` so that a disconnecting HTTP client does
not abort the scan for everyone else; the finished scan still populates the
cache.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from kubexplorer.catalog.resource_catalog import DiscoveryError
from kubexplorer.counter.object_counter import CountError
from kubexplorer.models.config import CacheConfig, ProgressConfig
from kubexplorer.models.resources import (
    CountedResourceType,
    CountStatus,
    NamespaceCacheEntry,
    ResourceType,
    with_count,
)
from kubexplorer.observability.logging import get_logger, log_context
from kubexplorer.observability.metrics import (
    cache_clears_total,
    cache_requests_total,
    cached_namespaces,
    count_errors_total,
    namespace_scan_duration_seconds,
    namespace_scans_deduplicated_total,
    namespace_scans_in_flight,
)
from kubexplorer.progress.reporter import ProgressBroadcast

if TYPE_CHECKING:
    from kubexplorer.catalog.resource_catalog import ResourceCatalog
    from kubexplorer.counter.object_counter import ObjectCounter
    from kubexplorer.progress.reporter import ProgressReporter


class ScanError(Exception):
    """A namespace scan could not resolve the resource catalog."""

    def __init__(self, namespace: str, message: str) -> None:
        super().__init__(f"scan of namespace {namespace} failed: {message}")
        self.namespace = namespace


@dataclass
class _Scan:
    task: asyncio.Task[NamespaceCacheEntry]
    broadcast: ProgressBroadcast


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


class NamespaceCache:
    def __init__(
        self,
        catalog: ResourceCatalog,
        counter: ObjectCounter,
        config: CacheConfig | None = None,
        progress: ProgressConfig | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._catalog = catalog
        self._counter = counter
        self._config = config or CacheConfig()
        self._progress = progress or ProgressConfig()
        self._clock = clock
        self._log = get_logger("namespace_cache")

        self._deny_list = frozenset(counter.config.deny_list)
        self._concurrency = max(1, counter.config.concurrency)

        self._entries: dict[str, NamespaceCacheEntry] = {}
        self._in_flight: dict[str, _Scan] = {}
        # Every running scan, including ones dropped from _in_flight by clear().
        self._tasks: set[asyncio.Task[NamespaceCacheEntry]] = set()
        # Bumped by clear(); scans started before a clear do not store results.
        self._generation = 0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def get_resources(
        self,
        namespace: str,
        reporter: ProgressReporter | None = None,
    ) -> tuple[CountedResourceType, ...]:
        """Return the counted resource types for ``namespace``.

        Raises:
            ScanError: the catalog could not be resolved.
            ClusterUnavailableError: no cluster client is configured.
        """
        entry, _cached = await self.get_entry(namespace, reporter)
        return entry.resources

    async def get_entry(
        self,
        namespace: str,
        reporter: ProgressReporter | None = None,
    ) -> tuple[NamespaceCacheEntry, bool]:
        """Like :meth:`get_resources` but returns the entry and whether it was a cache hit."""
        entry = self._fresh_entry(namespace)
        if entry is not None:
            cache_requests_total.labels(cache="namespace", result="hit").inc()
            self._log.debug("namespace_cache_hit", namespace=namespace, resources=len(entry.resources))
            if reporter is not None:
                broadcast = self._new_broadcast(namespace)
                broadcast.attach(reporter)
                await broadcast.cache_hit(
                    resources=len(entry.resources),
                    total_objects=entry.total_objects,
                    age_s=entry.age(self._clock()).total_seconds(),
                )
            return entry, True

        scan = self._in_flight.get(namespace)
        if scan is None:
            cache_requests_total.labels(cache="namespace", result="miss").inc()
            scan = self._start_scan(namespace)
            if reporter is not None:
                scan.broadcast.attach(reporter)
        else:
            namespace_scans_deduplicated_total.inc()
            if reporter is not None:
                scan.broadcast.attach(reporter)
            self._log.debug(
                "namespace_scan_joined",
                namespace=namespace,
                listeners=scan.broadcast.listeners,
            )

        entry = await asyncio.shield(scan.task)
        return entry, False

    def entry(self, namespace: str) -> NamespaceCacheEntry | None:
        """Return the stored entry for ``namespace`` whether fresh or stale."""
        return self._entries.get(namespace)

    def clear(self) -> None:
        """Drop every namespace entry and the catalog snapshot.

        Scans already running finish and answer their waiters, but their
        results are not stored.
        """
        dropped = len(self._entries)
        self._generation += 1
        self._entries = {}
        self._in_flight = {}
        self._catalog.invalidate()
        cache_clears_total.inc()
        cached_namespaces.set(0)
        self._log.info("cache_cleared", namespaces=dropped)

    def detach(self, namespace: str, reporter: ProgressReporter) -> None:
        """Stop delivering the running scan's events to ``reporter``."""
        scan = self._in_flight.get(namespace)
        if scan is not None:
            scan.broadcast.detach(reporter)

    async def aclose(self) -> None:
        """Cancel every running scan and wait for it to unwind.

        Called at shutdown before the cluster client is closed.
        """
        tasks = list(self._tasks)
        self._in_flight = {}
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            self._log.info("namespace_scans_cancelled", scans=len(tasks))

    def stats(self) -> dict[str, Any]:
        now = self._clock()
        ttl = self._config.namespace_ttl
        namespaces = {
            name: {
                "resources": len(entry.resources),
                "total_objects": entry.total_objects,
                "age_s": round(entry.age(now).total_seconds(), 1),
                "fresh": entry.is_fresh(ttl, now),
                "scan_duration_s": round(entry.scan_duration_s, 3),
            }
            for name, entry in sorted(self._entries.items())
        }
        catalog_entry = self._catalog.snapshot()
        catalog: dict[str, Any] | None = None
        if catalog_entry is not None:
            catalog = {
                "resources": len(catalog_entry.resources),
                "failed_groups": catalog_entry.failed_groups,
                "age_s": round(catalog_entry.age(now).total_seconds(), 1),
                "fresh": catalog_entry.is_fresh(self._catalog.ttl, now),
            }
        return {
            "namespace_ttl_s": self._config.namespace_ttl_seconds,
            "catalog_ttl_s": self._config.catalog_ttl_seconds,
            "namespaces": namespaces,
            "in_flight": sorted(self._in_flight),
            "catalog": catalog,
        }

    # ------------------------------------------------------------------
    # Scanning
    # ------------------------------------------------------------------

    def _fresh_entry(self, namespace: str) -> NamespaceCacheEntry | None:
        entry = self._entries.get(namespace)
        if entry is not None and entry.is_fresh(self._config.namespace_ttl, self._clock()):
            return entry
        return None

    def _new_broadcast(self, namespace: str) -> ProgressBroadcast:
        return ProgressBroadcast(
            namespace,
            verbose=self._progress.verbose,
            report_interval=self._progress.report_interval,
        )

    def _start_scan(self, namespace: str) -> _Scan:
        broadcast = self._new_broadcast(namespace)
        generation = self._generation
        task = asyncio.create_task(
            self._scan(namespace, broadcast, generation),
            name=f"namespace_scan_{namespace}",
        )
        scan = _Scan(task=task, broadcast=broadcast)
        self._in_flight[namespace] = scan
        self._tasks.add(task)

        def _done(finished: asyncio.Task[NamespaceCacheEntry]) -> None:
            self._tasks.discard(finished)
            if self._in_flight.get(namespace) is scan:
                del self._in_flight[namespace]
            # Mark the exception retrieved when every waiter has gone away.
            if not finished.cancelled():
                finished.exception()

        task.add_done_callback(_done)
        return scan

    async def _scan(self, namespace: str, broadcast: ProgressBroadcast, generation: int) -> NamespaceCacheEntry:
        started = time.monotonic()
        namespace_scans_in_flight.inc()
        # Count tasks inherit this binding, so their log lines carry the namespace.
        with log_context(namespace=namespace):
            try:
                return await self._run_scan(namespace, broadcast, generation, started)
            except Exception as exc:
                self._log.warning("namespace_scan_failed", error=str(exc))
                await broadcast.scan_failed(str(exc))
                raise
            finally:
                namespace_scans_in_flight.dec()
                namespace_scan_duration_seconds.observe(time.monotonic() - started)

    async def _run_scan(
        self,
        namespace: str,
        broadcast: ProgressBroadcast,
        generation: int,
        started: float,
    ) -> NamespaceCacheEntry:
        self._log.info("namespace_scan_start")
        await broadcast.scan_started()

        try:
            catalog = await self._catalog.discover()
        except DiscoveryError as exc:
            raise ScanError(namespace, str(exc)) from exc

        countable = [rt for rt in catalog if rt.namespaced and not self._denied(rt)]
        await broadcast.catalog_resolved(discovered=len(catalog), countable=len(countable))

        semaphore = asyncio.Semaphore(self._concurrency)
        done = 0

        async def count_one(resource: ResourceType) -> CountedResourceType:
            nonlocal done
            if resource.listable:
                async with semaphore:
                    result = await self._count(namespace, resource)
            else:
                result = with_count(resource, 0, CountStatus.SKIPPED)
            done += 1
            await broadcast.resource_counted(done, len(countable), result)
            return result

        # gather keeps argument order, which is the catalog's discovery order.
        counted = await asyncio.gather(*(count_one(rt) for rt in countable))

        duration = time.monotonic() - started
        entry = NamespaceCacheEntry(
            namespace=namespace,
            resources=tuple(counted),
            fetched_at=self._clock(),
            scan_duration_s=duration,
        )
        if generation == self._generation:
            self._entries[namespace] = entry
            cached_namespaces.set(len(self._entries))
        else:
            self._log.debug("namespace_scan_discarded_after_clear")

        self._log.info(
            "namespace_scan_complete",
            resources=len(entry.resources),
            total_objects=entry.total_objects,
            duration_s=round(duration, 3),
            listeners=broadcast.listeners,
        )
        await broadcast.scan_complete(
            resources=len(entry.resources),
            total_objects=entry.total_objects,
            duration_s=duration,
        )
        return entry

    async def _count(self, namespace: str, resource: ResourceType) -> CountedResourceType:
        try:
            count = await self._counter.count(namespace, resource)
        except CountError as exc:
            if exc.expected:
                self._log.debug("count_denied", resource=resource.full_name)
                return with_count(resource, 0, CountStatus.DENIED)
            count_errors_total.labels(kind="unexpected").inc()
            self._log.warning(
                "count_failed",
                resource=resource.full_name,
                error=exc.cause,
            )
            return with_count(resource, 0, CountStatus.ERROR)
        return with_count(resource, count)

    def _denied(self, resource: ResourceType) -> bool:
        return resource.name in self._deny_list or resource.full_name in self._deny_list
