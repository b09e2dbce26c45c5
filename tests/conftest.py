"""Shared fixtures: an in-memory cluster that speaks the ClusterClient protocol."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from kubexplorer.cluster.client import APIResourceList, ClusterAPIError, ObjectList
from kubexplorer.models.resources import ResourceType

_LIST_VERBS = ["create", "delete", "get", "list", "patch", "update", "watch"]


def _res(name: str, kind: str, short: str = "", namespaced: bool = True, verbs: list[str] | None = None) -> dict[str, Any]:
    entry: dict[str, Any] = {
        "name": name,
        "kind": kind,
        "namespaced": namespaced,
        "verbs": _LIST_VERBS if verbs is None else verbs,
    }
    if short:
        entry["shortNames"] = [short]
    return entry


def _obj(name: str, namespace: str = "default", **metadata: Any) -> dict[str, Any]:
    return {"metadata": {"name": name, "namespace": namespace, **metadata}}


class FakeClusterClient:
    """Deterministic stand-in for KubernetesClusterClient.

    Mutate the public attributes to shape the cluster a test needs; the call
    counters let tests assert how many remote round-trips happened.
    """

    def __init__(self) -> None:
        self.namespaces = ["default", "kube-system", "team-a"]
        self.resource_lists: dict[str, list[dict[str, Any]]] = {
            "v1": [
                _res("pods", "Pod", "po"),
                _res("pods/log", "Pod", verbs=["get"]),
                _res("services", "Service", "svc"),
                _res("configmaps", "ConfigMap", "cm"),
                _res("secrets", "Secret"),
                _res("bindings", "Binding", verbs=["create"]),
                _res("namespaces", "Namespace", "ns", namespaced=False),
            ],
            "apps/v1": [
                _res("deployments", "Deployment", "deploy"),
                _res("deployments/scale", "Scale", verbs=["get", "patch", "update"]),
                _res("replicasets", "ReplicaSet", "rs"),
            ],
            "batch/v1": [
                _res("jobs", "Job"),
                _res("cronjobs", "CronJob", "cj"),
            ],
            "authorization.k8s.io/v1": [
                _res("localsubjectaccessreviews", "LocalSubjectAccessReview", verbs=["create"]),
            ],
            "events.k8s.io/v1": [
                _res("events", "Event", "ev"),
            ],
        }
        self.objects: dict[tuple[str, str], list[dict[str, Any]]] = {
            ("pods", "default"): [_obj("web-1"), _obj("web-2"), _obj("worker-1")],
            ("services", "default"): [_obj("web", labels={"app": "web"})],
            ("configmaps", "default"): [_obj("kube-root-ca.crt"), _obj("settings")],
            ("deployments.apps", "default"): [_obj("web", creationTimestamp="2024-01-15T10:30:00Z")],
        }
        self.failing_group_versions: set[str] = set()
        self.group_list_error: Exception | None = None
        self.list_errors: dict[str, Exception] = {}
        self.report_remaining = True
        self.list_delay = 0.0
        # When set, resource-list discovery blocks until the event fires.
        self.discovery_gate: asyncio.Event | None = None

        self.group_list_calls = 0
        self.resource_list_calls = 0
        self.list_calls: list[dict[str, Any]] = []
        self.closed = False

    @property
    def group_versions(self) -> list[str]:
        return list(self.resource_lists)

    async def list_namespaces(self) -> list[str]:
        return list(self.namespaces)

    async def list_group_versions(self) -> list[str]:
        self.group_list_calls += 1
        if self.group_list_error is not None:
            raise self.group_list_error
        return self.group_versions

    async def get_resource_list(self, group_version: str) -> APIResourceList:
        self.resource_list_calls += 1
        if self.discovery_gate is not None:
            await self.discovery_gate.wait()
        if group_version in self.failing_group_versions:
            raise ClusterAPIError(503, "Service Unavailable", f"/apis/{group_version}")
        return APIResourceList(group_version=group_version, resources=list(self.resource_lists[group_version]))

    async def list_objects(
        self,
        resource: ResourceType,
        namespace: str,
        *,
        limit: int | None = None,
        metadata_only: bool = False,
        timeout: float | None = None,
    ) -> ObjectList:
        self.list_calls.append(
            {"resource": resource.full_name, "namespace": namespace, "limit": limit, "metadata_only": metadata_only}
        )
        if self.list_delay:
            await asyncio.sleep(self.list_delay)
        error = self.list_errors.get(resource.full_name)
        if error is not None:
            raise error
        items = list(self.objects.get((resource.full_name, namespace), []))
        if limit is not None and len(items) > limit:
            remaining = len(items) - limit
            return ObjectList(
                items=items[:limit],
                continue_token="next-page",
                remaining_item_count=remaining if self.report_remaining else None,
            )
        return ObjectList(items=items)

    async def get_object(self, resource: ResourceType, namespace: str, name: str) -> dict[str, Any]:
        for item in self.objects.get((resource.full_name, namespace), []):
            if item["metadata"]["name"] == name:
                return {"apiVersion": resource.group_version, "kind": resource.kind, "spec": {}, **item}
        raise ClusterAPIError(404, "Not Found", f"{resource.full_name}/{name}")

    async def close(self) -> None:
        self.closed = True

    def calls_for(self, full_name: str) -> int:
        return sum(1 for call in self.list_calls if call["resource"] == full_name)


class FakeClock:
    """Manually advanced UTC clock for TTL tests."""

    def __init__(self) -> None:
        self.now = datetime(2024, 1, 15, 10, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def fake_client() -> FakeClusterClient:
    return FakeClusterClient()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def pods() -> ResourceType:
    return ResourceType(name="pods", kind="Pod", api_group="", api_version="v1", namespaced=True, short_name="po")


@pytest.fixture
def deployments() -> ResourceType:
    return ResourceType(
        name="deployments", kind="Deployment", api_group="apps", api_version="v1", namespaced=True, short_name="deploy"
    )
