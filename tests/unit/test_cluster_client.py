"""Unit tests for kubexplorer.cluster.client.KubernetesClusterClient.

The kubernetes_asyncio ApiClient is replaced by a mock whose ``call_api``
serves canned JSON documents keyed by request path.
"""

from __future__ import annotations

import json
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest
from kubernetes_asyncio.client.exceptions import ApiException

from kubexplorer.cluster.client import APIResourceList, ClusterAPIError, KubernetesClusterClient
from kubexplorer.models.resources import ResourceType


def _api_client(documents: dict[str, Any]) -> MagicMock:
    async def call_api(path: str, method: str, **kwargs: Any) -> MagicMock:
        if path not in documents:
            raise ApiException(status=404, reason="Not Found")
        document = documents[path]
        if isinstance(document, Exception):
            raise document
        response = MagicMock()
        response.read = AsyncMock(return_value=document if isinstance(document, bytes) else json.dumps(document).encode())
        return response

    api_client = MagicMock()
    api_client.call_api = AsyncMock(side_effect=call_api)
    api_client.close = AsyncMock()
    return api_client


_DISCOVERY = {
    "/api": {"versions": ["v1"]},
    "/apis": {
        "groups": [
            {"name": "apps", "preferredVersion": {"groupVersion": "apps/v1"}},
            {"name": "batch", "versions": [{"groupVersion": "batch/v1"}]},
            {"name": "broken"},
        ]
    },
    "/api/v1": {"groupVersion": "v1", "resources": [{"name": "pods", "namespaced": True}]},
    "/apis/apps/v1": {"groupVersion": "apps/v1", "resources": [{"name": "deployments", "namespaced": True}]},
}


class TestDiscovery:
    @pytest.mark.asyncio
    async def test_group_versions_core_first_then_preferred(self) -> None:
        client = KubernetesClusterClient(_api_client(_DISCOVERY))
        assert await client.list_group_versions() == ["v1", "apps/v1", "batch/v1"]

    @pytest.mark.asyncio
    async def test_resource_list_paths(self) -> None:
        api_client = _api_client(_DISCOVERY)
        client = KubernetesClusterClient(api_client)

        core = await client.get_resource_list("v1")
        apps = await client.get_resource_list("apps/v1")

        assert isinstance(core, APIResourceList)
        assert core.group == ""
        assert apps.group == "apps"
        assert apps.version == "v1"
        assert [call.args[0] for call in api_client.call_api.await_args_list] == ["/api/v1", "/apis/apps/v1"]


class TestObjects:
    @pytest.mark.asyncio
    async def test_list_objects_page(self, deployments: ResourceType) -> None:
        api_client = _api_client(
            {
                "/apis/apps/v1/namespaces/default/deployments": {
                    "items": [{"metadata": {"name": "web"}}],
                    "metadata": {"continue": "abc", "remainingItemCount": 4},
                }
            }
        )
        client = KubernetesClusterClient(api_client)

        page = await client.list_objects(deployments, "default", limit=1, metadata_only=True, timeout=2.5)

        assert len(page.items) == 1
        assert page.continue_token == "abc"
        assert page.remaining_item_count == 4
        kwargs = api_client.call_api.await_args.kwargs
        assert kwargs["query_params"] == [("limit", 1), ("timeoutSeconds", 3)]
        assert "PartialObjectMetadataList" in kwargs["header_params"]["Accept"]
        assert kwargs["_request_timeout"] == 2.5

    @pytest.mark.asyncio
    async def test_list_objects_without_pagination_metadata(self, pods: ResourceType) -> None:
        client = KubernetesClusterClient(_api_client({"/api/v1/namespaces/default/pods": {"items": []}}))
        page = await client.list_objects(pods, "default")
        assert page.items == []
        assert page.continue_token == ""
        assert page.remaining_item_count is None

    @pytest.mark.asyncio
    async def test_get_object_quotes_name(self, pods: ResourceType) -> None:
        api_client = _api_client({"/api/v1/namespaces/default/pods/web%2F1": {"kind": "Pod"}})
        client = KubernetesClusterClient(api_client)
        assert await client.get_object(pods, "default", "web/1") == {"kind": "Pod"}


class TestErrors:
    @pytest.mark.asyncio
    async def test_api_exception_keeps_status(self, pods: ResourceType) -> None:
        client = KubernetesClusterClient(_api_client({}))
        with pytest.raises(ClusterAPIError) as exc_info:
            await client.get_object(pods, "default", "ghost")
        assert exc_info.value.status == 404
        assert exc_info.value.path == "/api/v1/namespaces/default/pods/ghost"

    @pytest.mark.asyncio
    async def test_transport_error_has_no_status(self, pods: ResourceType) -> None:
        client = KubernetesClusterClient(
            _api_client({"/api/v1/namespaces/default/pods": aiohttp.ClientConnectionError("connection refused")})
        )
        with pytest.raises(ClusterAPIError, match="connection refused") as exc_info:
            await client.list_objects(pods, "default")
        assert exc_info.value.status is None

    @pytest.mark.asyncio
    async def test_invalid_json(self) -> None:
        client = KubernetesClusterClient(_api_client({"/api": b"<html>", "/apis": {}}))
        with pytest.raises(ClusterAPIError, match="invalid JSON"):
            await client.list_group_versions()

    @pytest.mark.asyncio
    async def test_close_closes_api_client(self) -> None:
        api_client = _api_client({})
        await KubernetesClusterClient(api_client).close()
        api_client.close.assert_awaited_once()
