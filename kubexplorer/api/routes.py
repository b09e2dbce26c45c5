"""FastAPI route handlers for the kubexplorer REST API.

All routes are registered on a single APIRouter that ``app.py`` mounts
under the ``/api/v1`` prefix.

Error code conventions:
    404 RESOURCE_NOT_FOUND   -- resource type unknown or not namespaced
    404 OBJECT_NOT_FOUND     -- the cluster has no object with that name
    404 NOT_FOUND            -- endpoint disabled (progress, debug)
    502 UPSTREAM_ERROR       -- the API server rejected or failed the request
    503 CLUSTER_UNAVAILABLE  -- started without a cluster connection
    503 DISCOVERY_FAILED     -- the API group list could not be fetched
    500 INTERNAL_ERROR       -- unexpected server-side failure
"""

from __future__ import annotations

import csv
import io
from collections.abc import AsyncIterator
from typing import Any

import structlog
from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse, Response, StreamingResponse

from kubexplorer.api.schemas import (
    CacheClearResponse,
    ErrorResponse,
    HealthStatus,
    NamespaceListResponse,
    NamespaceResourcesResponse,
    ObjectDetailResponse,
    ObjectListResponse,
    ObjectSummaryResponse,
    ResourceTypeResponse,
)
from kubexplorer.cache.namespace_cache import ScanError
from kubexplorer.catalog.resource_catalog import DiscoveryError, ResourceTypeNotFoundError
from kubexplorer.cluster.client import ClusterAPIError, ClusterUnavailableError
from kubexplorer.explorer.filters import ResourceFilters
from kubexplorer.explorer.service import ExplorerService, NamespaceResources, ObjectNotFoundError
from kubexplorer.models.progress import ProgressEvent
from kubexplorer.models.resources import CountedResourceType, ObjectSummary

_log = structlog.get_logger(component="api.routes")

router = APIRouter()

_ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    404: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
    502: {"model": ErrorResponse},
    503: {"model": ErrorResponse},
}

_CSV_COLUMNS = ("name", "full_name", "kind", "api_group", "api_version", "count", "count_status")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _service(request: Request) -> ExplorerService:
    return request.app.state.service  # type: ignore[no-any-return]


def _error(status_code: int, error: str, detail: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=error, detail=detail).model_dump(),
    )


def _error_response(exc: Exception, endpoint: str) -> JSONResponse:
    """Map a domain exception to the ``{error, detail}`` envelope."""
    if isinstance(exc, ClusterUnavailableError):
        return _error(503, "CLUSTER_UNAVAILABLE", str(exc))
    if isinstance(exc, ScanError | DiscoveryError):
        _log.warning("discovery_unavailable", endpoint=endpoint, error=str(exc))
        return _error(503, "DISCOVERY_FAILED", str(exc))
    if isinstance(exc, ResourceTypeNotFoundError):
        return _error(404, "RESOURCE_NOT_FOUND", str(exc))
    if isinstance(exc, ObjectNotFoundError):
        return _error(404, "OBJECT_NOT_FOUND", str(exc))
    if isinstance(exc, ClusterAPIError):
        _log.warning("upstream_error", endpoint=endpoint, status=exc.status, error=str(exc))
        return _error(502, "UPSTREAM_ERROR", str(exc))
    _log.error(f"{endpoint}_endpoint_error", error=str(exc), exc_info=exc)
    return _error(500, "INTERNAL_ERROR", "An unexpected error occurred.")


def _counted_to_schema(counted: CountedResourceType) -> ResourceTypeResponse:
    resource = counted.resource
    return ResourceTypeResponse(
        name=resource.name,
        full_name=resource.full_name,
        display_name=resource.display_name,
        kind=resource.kind,
        short_name=resource.short_name,
        api_group=resource.api_group,
        api_version=resource.api_version,
        count=counted.count,
        count_status=counted.count_status.value,
    )


def _summary_fields(summary: ObjectSummary) -> dict[str, Any]:
    return {
        "name": summary.name,
        "namespace": summary.namespace,
        "kind": summary.kind,
        "api_version": summary.api_version,
        "creation_timestamp": summary.creation_timestamp,
        "labels": summary.labels,
        "annotations": summary.annotations,
    }


def _resources_to_schema(result: NamespaceResources) -> NamespaceResourcesResponse:
    return NamespaceResourcesResponse(
        namespace=result.namespace,
        resources=[_counted_to_schema(r) for r in result.resources],
        total_objects=result.total_objects,
        discovered=result.discovered,
        shown=len(result.resources),
        cached=result.cached,
        fetched_at=result.fetched_at.isoformat(),
    )


def _to_csv(resources: list[CountedResourceType]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(_CSV_COLUMNS)
    for counted in resources:
        writer.writerow(
            [
                counted.name,
                counted.full_name,
                counted.kind,
                counted.resource.group_label,
                counted.resource.api_version,
                counted.count,
                counted.count_status.value,
            ]
        )
    return buffer.getvalue()


async def _sse(events: AsyncIterator[ProgressEvent]) -> AsyncIterator[str]:
    async for event in events:
        yield event.to_sse()


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


@router.get(
    "/namespaces",
    response_model=NamespaceListResponse,
    summary="List namespaces",
    responses=_ERROR_RESPONSES,
)
async def get_namespaces(request: Request) -> NamespaceListResponse:
    """``GET /api/v1/namespaces``"""
    try:
        namespaces = await _service(request).list_namespaces()
    except Exception as exc:
        return _error_response(exc, "namespaces")  # type: ignore[return-value]
    return NamespaceListResponse(namespaces=namespaces, count=len(namespaces))


@router.get(
    "/resources/{namespace}",
    response_model=NamespaceResourcesResponse,
    summary="Resource types in a namespace",
    description=(
        "Returns every countable namespaced resource type with its object count.  "
        "Results are cached per namespace; filters apply to the cached scan and "
        "do not affect ``total_objects``."
    ),
    responses=_ERROR_RESPONSES,
)
async def get_resources(
    request: Request,
    namespace: str,
    search: str = "",
    populated: bool = False,
    api_group: str = Query(default="", alias="apiGroup"),
    top: int | None = Query(default=None, ge=1),
) -> NamespaceResourcesResponse:
    """``GET /api/v1/resources/{namespace}?search=&populated=&apiGroup=&top=``"""
    service = _service(request)
    filters = ResourceFilters(search=search, populated_only=populated, api_group=api_group)
    try:
        result = await service.get_namespace_resources(namespace, filters)
    except Exception as exc:
        return _error_response(exc, "resources")  # type: ignore[return-value]
    response = _resources_to_schema(result)
    if top is not None:
        response.resources = [_counted_to_schema(r) for r in service.top_resources(result.resources, top)]
        response.shown = len(response.resources)
    return response


@router.get(
    "/export/{namespace}",
    summary="Export resource counts as CSV",
    response_class=Response,
    responses=_ERROR_RESPONSES,
)
async def export_resources(
    request: Request,
    namespace: str,
    search: str = "",
    populated: bool = False,
    api_group: str = Query(default="", alias="apiGroup"),
) -> Response:
    """``GET /api/v1/export/{namespace}``"""
    filters = ResourceFilters(search=search, populated_only=populated, api_group=api_group)
    try:
        result = await _service(request).get_namespace_resources(namespace, filters)
    except Exception as exc:
        return _error_response(exc, "export")
    return Response(
        content=_to_csv(result.resources),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{namespace}-resources.csv"'},
    )


@router.get(
    "/objects/{namespace}/{resource}",
    response_model=ObjectListResponse,
    summary="List objects of one resource type",
    responses=_ERROR_RESPONSES,
)
async def get_objects(request: Request, namespace: str, resource: str) -> ObjectListResponse:
    """``GET /api/v1/objects/{namespace}/{resource}``

    ``resource`` is a full name (``deployments.apps``) or a bare plural name.
    """
    try:
        objects = await _service(request).get_resource_objects(namespace, resource)
    except Exception as exc:
        return _error_response(exc, "objects")  # type: ignore[return-value]
    return ObjectListResponse(
        namespace=namespace,
        resource=resource,
        objects=[ObjectSummaryResponse(**_summary_fields(o)) for o in objects],
        count=len(objects),
    )


@router.get(
    "/object/{namespace}/{resource}/{name}",
    response_model=ObjectDetailResponse,
    summary="Get one object's metadata, spec and status",
    responses=_ERROR_RESPONSES,
)
async def get_object(request: Request, namespace: str, resource: str, name: str) -> ObjectDetailResponse:
    """``GET /api/v1/object/{namespace}/{resource}/{name}``"""
    try:
        detail = await _service(request).get_object(namespace, resource, name)
    except Exception as exc:
        return _error_response(exc, "object")  # type: ignore[return-value]
    return ObjectDetailResponse(**_summary_fields(detail.summary), spec=detail.spec, status=detail.status)


@router.get(
    "/object-raw/{namespace}/{resource}/{name}",
    summary="Get one object as returned by the API server",
    responses=_ERROR_RESPONSES,
)
async def get_raw_object(request: Request, namespace: str, resource: str, name: str) -> Any:
    """``GET /api/v1/object-raw/{namespace}/{resource}/{name}``"""
    try:
        return await _service(request).get_raw_object(namespace, resource, name)
    except Exception as exc:
        return _error_response(exc, "object_raw")


@router.get(
    "/progress/{namespace}",
    summary="Stream scan progress",
    description=(
        "Server-Sent Events stream of a namespace scan.  Starts a scan or joins "
        "the one already running; ends after ``scan_complete``, ``cache_hit`` or "
        "``scan_failed``."
    ),
    response_class=StreamingResponse,
    responses={404: {"model": ErrorResponse}},
)
async def stream_progress(request: Request, namespace: str) -> Response:
    """``GET /api/v1/progress/{namespace}``"""
    service = _service(request)
    if not service.progress_enabled:
        return _error(404, "NOT_FOUND", "progress streaming is disabled")
    events = service.stream_progress(namespace)
    return StreamingResponse(
        _sse(events),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.post(
    "/cache/clear",
    response_model=CacheClearResponse,
    summary="Clear all caches",
    description="Drops the resource catalog and every namespace entry; the next request rescans.",
)
async def post_cache_clear(request: Request) -> CacheClearResponse:
    """``POST /api/v1/cache/clear``"""
    _service(request).clear_cache()
    _log.info("cache_clear_requested")
    return CacheClearResponse()


@router.get(
    "/health",
    response_model=HealthStatus,
    summary="Health check",
    description="Lightweight liveness probe.  Always returns 200 if the process is up.",
)
async def get_health(request: Request) -> HealthStatus:
    """``GET /api/v1/health``"""
    from kubexplorer import __version__

    return HealthStatus(
        status="ok",
        version=__version__,
        cluster_available=_service(request).cluster_available,
    )


@router.get(
    "/debug",
    summary="Cache diagnostics",
    description="Cache ages, in-flight scans and discovery failures.  Only served in debug mode.",
    responses={404: {"model": ErrorResponse}},
)
async def get_debug(request: Request) -> Any:
    """``GET /api/v1/debug``"""
    config = request.app.state.config
    if not config.debug:
        return _error(404, "NOT_FOUND", "debug endpoint is disabled")
    return _service(request).cache_status()
