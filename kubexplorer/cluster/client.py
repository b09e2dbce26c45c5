"""Control-plane access: discovery and generic namespaced list/get.

The core modules depend only on the :class:`ClusterClient` protocol and on
:class:`ClusterAPIError`; :class:`KubernetesClusterClient` is the production
implementation on top of kubernetes_asyncio's ``ApiClient``.  Requests go
through ``ApiClient.call_api`` with raw JSON responses so that any resource
type, including CRDs, can be listed without generated model classes.
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol
from urllib.parse import quote

import aiohttp
from kubernetes_asyncio.client.exceptions import ApiException

from kubexplorer.observability.logging import get_logger

if TYPE_CHECKING:
    from kubernetes_asyncio.client import ApiClient

    from kubexplorer.models.config import ClusterConfig
    from kubexplorer.models.resources import ResourceType

_JSON = "application/json"
# Ask for metadata-only list items; servers that cannot serve the partial
# representation fall back to the plain JSON media type.
_METADATA_ONLY_ACCEPT = "application/json;as=PartialObjectMetadataList;v=v1;g=meta.k8s.io,application/json"


class ClusterUnavailableError(Exception):
    """Raised when no cluster connection is configured or reachable."""


class ClusterAPIError(Exception):
    """A request to the control plane failed.

    ``status`` is the HTTP status code, or ``None`` for transport failures
    (connection refused, DNS, TLS, timeouts) where no response was received.
    """

    def __init__(self, status: int | None, reason: str, path: str = "") -> None:
        super().__init__(f"{status or 'transport'} {reason}".strip() + (f" ({path})" if path else ""))
        self.status = status
        self.reason = reason
        self.path = path


@dataclass(frozen=True)
class APIResourceList:
    """Discovery document for one group/version (``/api/v1``, ``/apis/apps/v1``)."""

    group_version: str
    resources: list[dict[str, Any]] = field(default_factory=list)

    @property
    def group(self) -> str:
        return self.group_version.split("/", 1)[0] if "/" in self.group_version else ""

    @property
    def version(self) -> str:
        return self.group_version.rsplit("/", 1)[-1]


@dataclass(frozen=True)
class ObjectList:
    """One page of a list response."""

    items: list[dict[str, Any]]
    continue_token: str = ""
    remaining_item_count: int | None = None


class ClusterClient(Protocol):
    async def list_namespaces(self) -> list[str]: ...

    async def list_group_versions(self) -> list[str]: ...

    async def get_resource_list(self, group_version: str) -> APIResourceList: ...

    async def list_objects(
        self,
        resource: ResourceType,
        namespace: str,
        *,
        limit: int | None = None,
        metadata_only: bool = False,
        timeout: float | None = None,
    ) -> ObjectList: ...

    async def get_object(self, resource: ResourceType, namespace: str, name: str) -> dict[str, Any]: ...

    async def close(self) -> None: ...


class KubernetesClusterClient:
    """:class:`ClusterClient` backed by a kubernetes_asyncio ``ApiClient``."""

    def __init__(self, api_client: ApiClient, request_timeout_s: float = 30.0) -> None:
        self._api_client = api_client
        self._timeout_s = request_timeout_s
        self._log = get_logger("cluster.client")

    @classmethod
    async def connect(cls, config: ClusterConfig) -> KubernetesClusterClient:
        """Load credentials and return a connected client.

        An explicit kubeconfig path wins; otherwise the in-cluster service
        account is tried first, then the default kubeconfig.
        """
        # Imported lazily; some kubernetes_asyncio versions probe the
        # environment on import.
        import kubernetes_asyncio.config as k8s_config
        from kubernetes_asyncio import client as k8s_client

        log = get_logger("cluster.client")
        if config.kubeconfig:
            await k8s_config.load_kube_config(config_file=config.kubeconfig, context=config.context or None)
            log.info("k8s client configured from kubeconfig", path=config.kubeconfig)
        else:
            try:
                k8s_config.load_incluster_config()  # type: ignore[no-untyped-call]
                log.info("k8s client configured from in-cluster service account")
            except k8s_config.ConfigException:
                await k8s_config.load_kube_config(context=config.context or None)
                log.info("k8s client configured from kubeconfig")

        return cls(k8s_client.ApiClient(), request_timeout_s=config.request_timeout_seconds)

    # ------------------------------------------------------------------
    # Namespaces
    # ------------------------------------------------------------------

    async def list_namespaces(self) -> list[str]:
        from kubernetes_asyncio import client as k8s_client

        v1 = k8s_client.CoreV1Api(self._api_client)
        try:
            result = await v1.list_namespace(_request_timeout=self._timeout_s)
        except ApiException as exc:
            raise ClusterAPIError(exc.status, exc.reason or "", "/api/v1/namespaces") from exc
        except (aiohttp.ClientError, TimeoutError) as exc:
            raise ClusterAPIError(None, str(exc) or type(exc).__name__, "/api/v1/namespaces") from exc
        return [item.metadata.name for item in (result.items or []) if item.metadata is not None]

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    async def list_group_versions(self) -> list[str]:
        """Return the core version(s) followed by each group's preferred version."""
        core = await self._get_json("/api")
        group_versions = [str(v) for v in core.get("versions", []) or []]

        groups = await self._get_json("/apis")
        for group in groups.get("groups", []) or []:
            preferred = group.get("preferredVersion") or {}
            gv = preferred.get("groupVersion")
            if not gv:
                versions = group.get("versions") or []
                gv = versions[0].get("groupVersion") if versions else None
            if gv:
                group_versions.append(str(gv))
        return group_versions

    async def get_resource_list(self, group_version: str) -> APIResourceList:
        path = f"/api/{group_version}" if "/" not in group_version else f"/apis/{group_version}"
        body = await self._get_json(path)
        return APIResourceList(
            group_version=str(body.get("groupVersion") or group_version),
            resources=list(body.get("resources", []) or []),
        )

    # ------------------------------------------------------------------
    # Objects
    # ------------------------------------------------------------------

    async def list_objects(
        self,
        resource: ResourceType,
        namespace: str,
        *,
        limit: int | None = None,
        metadata_only: bool = False,
        timeout: float | None = None,
    ) -> ObjectList:
        query: dict[str, Any] = {}
        if limit is not None:
            query["limit"] = limit
        if timeout is not None:
            query["timeoutSeconds"] = max(1, math.ceil(timeout))
        body = await self._get_json(
            _collection_path(resource, namespace),
            query=query,
            accept=_METADATA_ONLY_ACCEPT if metadata_only else _JSON,
            timeout=timeout,
        )
        metadata = body.get("metadata") or {}
        remaining = metadata.get("remainingItemCount")
        return ObjectList(
            items=list(body.get("items", []) or []),
            continue_token=str(metadata.get("continue") or ""),
            remaining_item_count=int(remaining) if remaining is not None else None,
        )

    async def get_object(self, resource: ResourceType, namespace: str, name: str) -> dict[str, Any]:
        return await self._get_json(f"{_collection_path(resource, namespace)}/{quote(name, safe='')}")

    async def close(self) -> None:
        await self._api_client.close()

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _get_json(
        self,
        path: str,
        query: dict[str, Any] | None = None,
        accept: str = _JSON,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        """GET ``path`` and decode the JSON body, mapping failures to ClusterAPIError."""
        try:
            response = await self._api_client.call_api(
                path,
                "GET",
                query_params=list((query or {}).items()),
                header_params={"Accept": accept},
                auth_settings=["BearerToken"],
                _preload_content=False,
                _return_http_data_only=True,
                _request_timeout=timeout or self._timeout_s,
            )
            raw = await response.read()
        except ApiException as exc:
            self._log.debug("cluster_request_failed", path=path, status=exc.status, reason=exc.reason)
            raise ClusterAPIError(exc.status, exc.reason or "", path) from exc
        except (aiohttp.ClientError, TimeoutError) as exc:
            self._log.debug("cluster_request_transport_error", path=path, error=str(exc))
            raise ClusterAPIError(None, str(exc) or type(exc).__name__, path) from exc

        try:
            decoded = json.loads(raw)
        except ValueError as exc:
            raise ClusterAPIError(None, f"invalid JSON response: {exc}", path) from exc
        if not isinstance(decoded, dict):
            raise ClusterAPIError(None, "unexpected response document", path)
        return decoded


def _collection_path(resource: ResourceType, namespace: str) -> str:
    base = f"/apis/{resource.api_group}/{resource.api_version}" if resource.api_group else f"/api/{resource.api_version}"
    return f"{base}/namespaces/{quote(namespace, safe='')}/{resource.name}"
