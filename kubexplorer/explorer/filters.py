"""View filters applied to a namespace's counted resource types.

Filtering is a pure in-memory operation over a cached entry and never
changes what is cached.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from kubexplorer.models.resources import CORE_GROUP_LABEL, CountedResourceType


@dataclass(frozen=True)
class ResourceFilters:
    search: str = ""
    populated_only: bool = False
    api_group: str = ""

    @property
    def active(self) -> bool:
        return bool(self.search or self.populated_only or self.api_group)

    def matches(self, counted: CountedResourceType) -> bool:
        if self.populated_only and counted.count == 0:
            return False
        if self.api_group and not _group_matches(self.api_group, counted.api_group):
            return False
        if self.search:
            needle = self.search.lower()
            if needle not in counted.name.lower() and needle not in counted.kind.lower():
                return False
        return True

    def apply(self, resources: Iterable[CountedResourceType]) -> list[CountedResourceType]:
        """Return the matching resources, keeping their order."""
        return [r for r in resources if self.matches(r)]


def top_resources(resources: Iterable[CountedResourceType], limit: int) -> list[CountedResourceType]:
    """Return the ``limit`` most populated resource types, largest first.

    Ties keep their incoming (discovery) order.
    """
    if limit <= 0:
        return []
    return sorted(resources, key=lambda r: r.count, reverse=True)[:limit]


def _group_matches(wanted: str, api_group: str) -> bool:
    wanted = wanted.lower()
    if wanted == CORE_GROUP_LABEL:
        return api_group == ""
    return wanted == api_group.lower()
