"""Pydantic response models for the kubexplorer REST API.

All models use Pydantic v2 syntax.  Field descriptions are also used
by FastAPI to generate the OpenAPI schema.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class HealthStatus(BaseModel):
    """Response body for ``GET /api/v1/health``."""

    status: str = Field(
        ...,
        description="Always ``ok`` while the process is running.",
        examples=["ok"],
    )
    version: str = Field(
        ...,
        description="kubexplorer version string.",
        examples=["0.1.0"],
    )
    cluster_available: bool = Field(
        ...,
        description="False when the service started without a cluster connection.",
    )


class ErrorResponse(BaseModel):
    """Standard error envelope returned for all 4xx and 5xx responses."""

    error: str = Field(
        ...,
        description="Machine-readable error code.",
        examples=[
            "CLUSTER_UNAVAILABLE",
            "DISCOVERY_FAILED",
            "RESOURCE_NOT_FOUND",
            "OBJECT_NOT_FOUND",
            "UPSTREAM_ERROR",
            "INTERNAL_ERROR",
        ],
    )
    detail: str = Field(
        ...,
        description="Human-readable description of the error.",
        examples=["resource widgets not found or not namespaced"],
    )


class NamespaceListResponse(BaseModel):
    """Response body for ``GET /api/v1/namespaces``."""

    namespaces: list[str]
    count: int


class ResourceTypeResponse(BaseModel):
    """One resource type with its object count in a namespace."""

    name: str
    full_name: str = Field(..., examples=["deployments.apps", "pods"])
    display_name: str = Field(..., examples=["deployments (apps)", "pods"])
    kind: str
    short_name: str = ""
    api_group: str = Field(..., description="Empty for the core group.")
    api_version: str
    count: int
    count_status: str = Field(
        ...,
        description="``ok``, ``denied`` (no permission, reported as 0), ``error`` or ``skipped``.",
    )


class NamespaceResourcesResponse(BaseModel):
    """Response body for ``GET /api/v1/resources/{namespace}``."""

    namespace: str
    resources: list[ResourceTypeResponse]
    total_objects: int = Field(..., description="Sum of counts before filtering.")
    discovered: int = Field(..., description="Resource types scanned before filtering.")
    shown: int = Field(..., description="Resource types returned after filtering.")
    cached: bool
    fetched_at: str


class ObjectSummaryResponse(BaseModel):
    name: str
    namespace: str
    kind: str
    api_version: str
    creation_timestamp: str | None = None
    labels: dict[str, str] = Field(default_factory=dict)
    annotations: dict[str, str] = Field(default_factory=dict)


class ObjectListResponse(BaseModel):
    """Response body for ``GET /api/v1/objects/{namespace}/{resource}``."""

    namespace: str
    resource: str
    objects: list[ObjectSummaryResponse]
    count: int


class ObjectDetailResponse(ObjectSummaryResponse):
    """Response body for ``GET /api/v1/object/{namespace}/{resource}/{name}``."""

    spec: dict[str, Any] = Field(default_factory=dict)
    status: dict[str, Any] = Field(default_factory=dict)


class CacheClearResponse(BaseModel):
    status: str = Field(default="cleared", examples=["cleared"])
