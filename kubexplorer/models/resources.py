"""Resource type, count and cache entry data structures."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import StrEnum
from typing import Any

CORE_GROUP_LABEL = "core"


class CountStatus(StrEnum):
    """Outcome of counting one resource type in one namespace."""

    OK = "ok"
    DENIED = "denied"
    ERROR = "error"
    SKIPPED = "skipped"


def full_name_for(name: str, api_group: str) -> str:
    """Return the cross-group unique key, e.g. ``deployments.apps`` or ``pods``."""
    return f"{name}.{api_group}" if api_group else name


def display_name_for(name: str, api_group: str) -> str:
    """Return the human label, e.g. ``deployments (apps)`` or ``pods``."""
    return f"{name} ({api_group})" if api_group else name


@dataclass(frozen=True)
class ResourceType:
    """One discoverable API resource kind.

    Produced fresh by each discovery call and never mutated afterwards;
    ``full_name`` is unique within one discovery snapshot, ``name`` is not.
    """

    name: str
    kind: str
    api_group: str
    api_version: str
    namespaced: bool
    short_name: str = ""
    verbs: tuple[str, ...] = ()

    @property
    def full_name(self) -> str:
        return full_name_for(self.name, self.api_group)

    @property
    def display_name(self) -> str:
        return display_name_for(self.name, self.api_group)

    @property
    def group_version(self) -> str:
        """The ``apiVersion`` string objects of this type carry (``apps/v1``, ``v1``)."""
        return f"{self.api_group}/{self.api_version}" if self.api_group else self.api_version

    @property
    def group_label(self) -> str:
        return self.api_group or CORE_GROUP_LABEL

    @property
    def listable(self) -> bool:
        """False only when discovery advertised verbs and ``list`` is not among them."""
        return not self.verbs or "list" in self.verbs


@dataclass(frozen=True)
class CountedResourceType:
    """A ResourceType annotated with the number of objects observed in a namespace."""

    resource: ResourceType
    count: int = 0
    count_status: CountStatus = CountStatus.OK

    def __post_init__(self) -> None:
        if self.count < 0:
            raise ValueError(f"count must be non-negative, got {self.count}")

    @property
    def name(self) -> str:
        return self.resource.name

    @property
    def full_name(self) -> str:
        return self.resource.full_name

    @property
    def kind(self) -> str:
        return self.resource.kind

    @property
    def api_group(self) -> str:
        return self.resource.api_group


@dataclass(frozen=True)
class CatalogCacheEntry:
    """The single process-wide discovery snapshot."""

    resources: tuple[ResourceType, ...]
    fetched_at: datetime
    failed_groups: int = 0

    def age(self, now: datetime | None = None) -> timedelta:
        return (now or datetime.now(tz=UTC)) - self.fetched_at

    def is_fresh(self, ttl: timedelta, now: datetime | None = None) -> bool:
        return self.age(now) < ttl


@dataclass(frozen=True)
class NamespaceCacheEntry:
    """Counted resource types for one namespace, replaced wholesale on refresh."""

    namespace: str
    resources: tuple[CountedResourceType, ...]
    fetched_at: datetime
    scan_duration_s: float = 0.0

    def age(self, now: datetime | None = None) -> timedelta:
        return (now or datetime.now(tz=UTC)) - self.fetched_at

    def is_fresh(self, ttl: timedelta, now: datetime | None = None) -> bool:
        return self.age(now) < ttl

    @property
    def total_objects(self) -> int:
        return sum(r.count for r in self.resources)


@dataclass(frozen=True)
class ObjectSummary:
    """Metadata-level view of one object, as shown in resource listings."""

    name: str
    namespace: str
    kind: str
    api_version: str
    creation_timestamp: str | None = None
    labels: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_raw(cls, raw: dict[str, Any], fallback: ResourceType | None = None) -> ObjectSummary:
        """Build a summary from a raw object dict.

        Items inside a list response usually omit ``kind``/``apiVersion``; the
        owning resource type fills them in.
        """
        metadata = raw.get("metadata", {})
        if not isinstance(metadata, dict):
            metadata = {}
        kind = str(raw.get("kind") or (fallback.kind if fallback else ""))
        api_version = str(raw.get("apiVersion") or (fallback.group_version if fallback else ""))
        return cls(
            name=str(metadata.get("name", "")),
            namespace=str(metadata.get("namespace", "")),
            kind=kind,
            api_version=api_version,
            creation_timestamp=metadata.get("creationTimestamp"),
            labels=_str_map(metadata.get("labels")),
            annotations=_str_map(metadata.get("annotations")),
        )


@dataclass(frozen=True)
class ObjectDetail:
    """Object summary plus its spec and status sections."""

    summary: ObjectSummary
    spec: dict[str, Any] = field(default_factory=dict)
    status: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_raw(cls, raw: dict[str, Any], fallback: ResourceType | None = None) -> ObjectDetail:
        spec = raw.get("spec", {})
        status = raw.get("status", {})
        return cls(
            summary=ObjectSummary.from_raw(raw, fallback),
            spec=spec if isinstance(spec, dict) else {},
            status=status if isinstance(status, dict) else {},
        )


def with_count(resource: ResourceType, count: int, status: CountStatus = CountStatus.OK) -> CountedResourceType:
    return CountedResourceType(resource=resource, count=count, count_status=status)


def _str_map(value: Any) -> dict[str, str]:
    if not isinstance(value, dict):
        return {}
    return {str(k): str(v) for k, v in value.items()}
