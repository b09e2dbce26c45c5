"""Explorer service: the operations exposed to the REST API.

Thin façade over the catalog, namespace cache and cluster client.  Cluster
errors are translated into the domain exceptions the API layer maps to
status codes; nothing here knows about HTTP.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any

from kubexplorer.cluster.client import ClusterAPIError, ClusterUnavailableError
from kubexplorer.explorer.filters import ResourceFilters, top_resources
from kubexplorer.models.config import ProgressConfig
from kubexplorer.models.resources import CountedResourceType, ObjectDetail, ObjectSummary
from kubexplorer.observability.logging import get_logger
from kubexplorer.progress.reporter import ProgressReporter

if TYPE_CHECKING:
    from kubexplorer.cache.namespace_cache import NamespaceCache
    from kubexplorer.catalog.resource_catalog import ResourceCatalog
    from kubexplorer.cluster.client import ClusterClient
    from kubexplorer.models.progress import ProgressEvent
    from kubexplorer.models.resources import ResourceType

_log = get_logger("explorer")


class ObjectNotFoundError(LookupError):
    """The cluster returned 404 for a named object."""

    def __init__(self, namespace: str, resource: str, name: str) -> None:
        super().__init__(f"{resource} {name!r} not found in namespace {namespace!r}")
        self.namespace = namespace
        self.resource = resource
        self.name = name


class ProgressDisabledError(Exception):
    """Progress streaming is switched off by configuration."""


@dataclass(frozen=True)
class NamespaceResources:
    """Filtered view of one namespace's counted resource types.

    ``total_objects`` and ``discovered`` describe the unfiltered scan so the
    totals do not change as the user narrows the view.
    """

    namespace: str
    resources: list[CountedResourceType]
    total_objects: int
    discovered: int
    cached: bool
    fetched_at: datetime


class ExplorerService:
    def __init__(
        self,
        client: ClusterClient | None,
        catalog: ResourceCatalog,
        cache: NamespaceCache,
        progress: ProgressConfig | None = None,
    ) -> None:
        self._client = client
        self._catalog = catalog
        self._cache = cache
        self._progress = progress or ProgressConfig()
        self._streams: set[asyncio.Task[Any]] = set()

    @property
    def cluster_available(self) -> bool:
        return self._client is not None

    @property
    def progress_enabled(self) -> bool:
        return self._progress.enabled

    # ------------------------------------------------------------------
    # Namespaces and resource types
    # ------------------------------------------------------------------

    async def list_namespaces(self) -> list[str]:
        """Return namespace names in the order the API server lists them."""
        client = self._require_client()
        return await client.list_namespaces()

    async def get_namespace_resources(
        self,
        namespace: str,
        filters: ResourceFilters | None = None,
        reporter: ProgressReporter | None = None,
    ) -> NamespaceResources:
        entry, cached = await self._cache.get_entry(namespace, reporter)
        filters = filters or ResourceFilters()
        if filters.active:
            resources = filters.apply(entry.resources)
            _log.debug(
                "namespace_resources_filtered",
                namespace=namespace,
                shown=len(resources),
                of=len(entry.resources),
            )
        else:
            resources = list(entry.resources)
        return NamespaceResources(
            namespace=namespace,
            resources=resources,
            total_objects=entry.total_objects,
            discovered=len(entry.resources),
            cached=cached,
            fetched_at=entry.fetched_at,
        )

    @staticmethod
    def top_resources(resources: list[CountedResourceType], limit: int) -> list[CountedResourceType]:
        return top_resources(resources, limit)

    # ------------------------------------------------------------------
    # Objects
    # ------------------------------------------------------------------

    async def get_resource_objects(self, namespace: str, identifier: str) -> list[ObjectSummary]:
        """List every object of one resource type in ``namespace``.

        Raises:
            ResourceTypeNotFoundError: ``identifier`` is not a known namespaced type.
        """
        client = self._require_client()
        resource = await self._catalog.resolve(identifier)
        page = await client.list_objects(resource, namespace)
        _log.debug(
            "resource_objects_listed",
            namespace=namespace,
            resource=resource.full_name,
            objects=len(page.items),
        )
        return [ObjectSummary.from_raw(item, resource) for item in page.items]

    async def get_object(self, namespace: str, identifier: str, name: str) -> ObjectDetail:
        resource, raw = await self._fetch_object(namespace, identifier, name)
        return ObjectDetail.from_raw(raw, resource)

    async def get_raw_object(self, namespace: str, identifier: str, name: str) -> dict[str, Any]:
        """Return the object exactly as the API server serialised it."""
        _resource, raw = await self._fetch_object(namespace, identifier, name)
        return raw

    # ------------------------------------------------------------------
    # Cache and progress
    # ------------------------------------------------------------------

    def clear_cache(self) -> None:
        self._cache.clear()

    async def aclose(self) -> None:
        """Cancel open progress streams and running scans."""
        streams = list(self._streams)
        for task in streams:
            task.cancel()
        if streams:
            await asyncio.gather(*streams, return_exceptions=True)
        await self._cache.aclose()

    def cache_status(self) -> dict[str, Any]:
        status = self._cache.stats()
        warning = self._catalog.last_warning
        status["failed_group_versions"] = list(warning.failed_group_versions) if warning else []
        status["cluster_available"] = self.cluster_available
        return status

    def stream_progress(self, namespace: str) -> AsyncIterator[ProgressEvent]:
        """Start (or join) a scan of ``namespace`` and stream its progress.

        The scan keeps running and populates the cache if the consumer stops
        iterating early.

        Raises:
            ProgressDisabledError: progress streaming is disabled.
        """
        if not self._progress.enabled:
            raise ProgressDisabledError("progress streaming is disabled")
        reporter = ProgressReporter(
            namespace,
            buffer_size=self._progress.buffer_size,
            put_timeout_s=self._progress.put_timeout_seconds,
        )
        return self._stream(namespace, reporter)

    async def _stream(self, namespace: str, reporter: ProgressReporter) -> AsyncIterator[ProgressEvent]:
        task = asyncio.create_task(
            self._cache.get_resources(namespace, reporter),
            name=f"progress_stream_{namespace}",
        )
        self._streams.add(task)

        def _done(finished: asyncio.Task[Any]) -> None:
            self._streams.discard(finished)
            # A reporter that joined a scan just as it finished may never see
            # the terminal event; closing ends its iterator.
            if not reporter.finished:
                reporter.close()
            if not finished.cancelled() and finished.exception() is not None:
                _log.debug("progress_stream_scan_failed", namespace=namespace, error=str(finished.exception()))

        task.add_done_callback(_done)
        try:
            async for event in reporter.events():
                yield event
        finally:
            reporter.close()
            self._cache.detach(namespace, reporter)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require_client(self) -> ClusterClient:
        if self._client is None:
            raise ClusterUnavailableError("no kubernetes client available")
        return self._client

    async def _fetch_object(
        self,
        namespace: str,
        identifier: str,
        name: str,
    ) -> tuple[ResourceType, dict[str, Any]]:
        client = self._require_client()
        resource = await self._catalog.resolve(identifier)
        try:
            raw = await client.get_object(resource, namespace, name)
        except ClusterAPIError as exc:
            if exc.status == 404:
                raise ObjectNotFoundError(namespace, resource.full_name, name) from exc
            raise
        return resource, raw
