"""Cluster-wide catalog of namespaced API resource types.

Discovery walks the core ``v1`` group and the preferred version of every API
group.  The result is cached as a single immutable snapshot for the catalog
TTL (default 5 minutes).

Partial failure
---------------
Clusters routinely have a few aggregated APIs (metrics-server, custom
apiservices) whose discovery endpoint is down.  Groups that fail are skipped
and reported; the call still succeeds with the remaining groups.  When every
group fails, a fixed built-in set of core resources is returned instead
(never cached, so the next call retries discovery).  Only failing to fetch
the group list itself is fatal (:class:`DiscoveryError`).
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

from kubexplorer.cluster.client import APIResourceList, ClusterAPIError, ClusterUnavailableError
from kubexplorer.models.resources import CatalogCacheEntry, ResourceType
from kubexplorer.observability.logging import get_logger
from kubexplorer.observability.metrics import (
    cache_requests_total,
    catalog_resources,
    discovery_duration_seconds,
    discovery_failed_groups_total,
    discovery_fallback_total,
)

if TYPE_CHECKING:
    from kubexplorer.cluster.client import ClusterClient

_DEFAULT_TTL = timedelta(minutes=5)

FALLBACK_RESOURCES: tuple[ResourceType, ...] = (
    ResourceType(name="pods", kind="Pod", api_group="", api_version="v1", namespaced=True, short_name="po"),
    ResourceType(name="services", kind="Service", api_group="", api_version="v1", namespaced=True, short_name="svc"),
    ResourceType(name="configmaps", kind="ConfigMap", api_group="", api_version="v1", namespaced=True, short_name="cm"),
    ResourceType(name="secrets", kind="Secret", api_group="", api_version="v1", namespaced=True),
    ResourceType(
        name="deployments", kind="Deployment", api_group="apps", api_version="v1", namespaced=True, short_name="deploy"
    ),
)


class DiscoveryError(Exception):
    """Discovery failed outright and no fallback applies."""


class PartialDiscoveryWarning(UserWarning):
    """Some API group/versions failed discovery; the rest were used."""

    def __init__(self, failed_group_versions: list[str]) -> None:
        super().__init__(f"{len(failed_group_versions)} API group(s) failed discovery")
        self.failed_group_versions = failed_group_versions


class ResourceTypeNotFoundError(LookupError):
    """No namespaced resource type matches the requested identifier."""

    def __init__(self, identifier: str) -> None:
        super().__init__(f"resource {identifier} not found or not namespaced")
        self.identifier = identifier


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


class ResourceCatalog:
    """Owns the single process-wide discovery snapshot.

    Readers get the snapshot's tuple directly; a refresh builds a new
    :class:`CatalogCacheEntry` and swaps the reference, so a reader never
    observes a partially built list.  Refreshes are serialised by a lock and
    re-check freshness after acquiring it, so a burst of cache misses causes
    one discovery round-trip.
    """

    def __init__(
        self,
        client: ClusterClient | None,
        ttl: timedelta = _DEFAULT_TTL,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._client = client
        self._ttl = ttl
        self._clock = clock
        self._log = get_logger("catalog")
        self._entry: CatalogCacheEntry | None = None
        self._lock = asyncio.Lock()
        # Bumped by invalidate(); refreshes started earlier do not store their snapshot.
        self._generation = 0
        self.last_warning: PartialDiscoveryWarning | None = None

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    def snapshot(self) -> CatalogCacheEntry | None:
        """Return the current cache entry (fresh or stale), or None."""
        return self._entry

    def invalidate(self) -> None:
        """Drop the cached snapshot; the next :meth:`discover` refreshes.

        A refresh already in progress still answers its caller but does not
        store what it found.
        """
        self._generation += 1
        self._entry = None

    async def discover(self) -> tuple[ResourceType, ...]:
        """Return the namespaced resource types, refreshing if the snapshot is stale.

        Raises:
            ClusterUnavailableError: no cluster client is configured.
            DiscoveryError: the API group list itself could not be fetched.
        """
        entry = self._fresh_entry()
        if entry is not None:
            cache_requests_total.labels(cache="catalog", result="hit").inc()
            self._log.debug(
                "catalog_cache_hit",
                resources=len(entry.resources),
                age_s=round(entry.age(self._clock()).total_seconds(), 1),
            )
            return entry.resources

        async with self._lock:
            entry = self._fresh_entry()
            if entry is not None:
                cache_requests_total.labels(cache="catalog", result="hit").inc()
                return entry.resources
            cache_requests_total.labels(cache="catalog", result="miss").inc()
            return await self._refresh()

    async def resolve(self, identifier: str) -> ResourceType:
        """Find a namespaced resource type by full name, falling back to bare name."""
        resources = await self.discover()
        for resource in resources:
            if resource.namespaced and resource.full_name == identifier:
                return resource
        for resource in resources:
            if resource.namespaced and resource.name == identifier:
                return resource
        raise ResourceTypeNotFoundError(identifier)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _fresh_entry(self) -> CatalogCacheEntry | None:
        entry = self._entry
        if entry is not None and entry.is_fresh(self._ttl, self._clock()):
            return entry
        return None

    async def _refresh(self) -> tuple[ResourceType, ...]:
        if self._client is None:
            raise ClusterUnavailableError("no kubernetes client available")

        generation = self._generation
        self._log.debug("catalog_refresh_start")
        started = time.monotonic()
        try:
            group_versions = await self._client.list_group_versions()
        except ClusterAPIError as exc:
            self._log.error("catalog_group_list_failed", error=str(exc))
            raise DiscoveryError(f"failed to discover API resources: {exc}") from exc

        results = await asyncio.gather(
            *(self._client.get_resource_list(gv) for gv in group_versions),
            return_exceptions=True,
        )

        resources: list[ResourceType] = []
        seen: set[str] = set()
        failed: list[str] = []
        for group_version, result in zip(group_versions, results, strict=True):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                failed.append(group_version)
                self._log.debug("catalog_group_failed", group_version=group_version, error=str(result))
                continue
            for resource in _parse_resource_list(result):
                if resource.full_name in seen:
                    continue
                seen.add(resource.full_name)
                resources.append(resource)

        discovery_duration_seconds.observe(time.monotonic() - started)

        if failed:
            discovery_failed_groups_total.inc(len(failed))
            self.last_warning = PartialDiscoveryWarning(failed)
            self._log.warning(
                "catalog_partial_discovery",
                failed_groups=len(failed),
                total_groups=len(group_versions),
                failed=failed[:10],
            )
        else:
            self.last_warning = None

        if failed and len(failed) == len(group_versions):
            discovery_fallback_total.inc()
            self._log.warning("catalog_using_core_fallback", resources=len(FALLBACK_RESOURCES))
            return FALLBACK_RESOURCES

        entry = CatalogCacheEntry(
            resources=tuple(resources),
            fetched_at=self._clock(),
            failed_groups=len(failed),
        )
        if generation != self._generation:
            self._log.debug("catalog_refresh_discarded_after_invalidate", resources=len(entry.resources))
            return entry.resources
        self._entry = entry
        catalog_resources.set(len(entry.resources))
        self._log.info(
            "catalog_refreshed",
            resources=len(entry.resources),
            groups=len(group_versions) - len(failed),
            duration_s=round(time.monotonic() - started, 3),
        )
        return entry.resources


def _parse_resource_list(resource_list: APIResourceList) -> list[ResourceType]:
    """Convert one discovery document into namespaced, top-level ResourceTypes."""
    parsed: list[ResourceType] = []
    for raw in resource_list.resources:
        name = str(raw.get("name", ""))
        # Subresources (pods/log, deployments/scale) are not independently listable.
        if not name or "/" in name:
            continue
        if not raw.get("namespaced", False):
            continue
        parsed.append(
            ResourceType(
                name=name,
                kind=str(raw.get("kind", "")),
                api_group=str(raw.get("group") or resource_list.group),
                api_version=str(raw.get("version") or resource_list.version),
                namespaced=True,
                short_name=_first(raw.get("shortNames")),
                verbs=tuple(str(v) for v in raw.get("verbs", []) or []),
            )
        )
    return parsed


def _first(values: Any) -> str:
    if isinstance(values, list) and values:
        return str(values[0])
    return ""
