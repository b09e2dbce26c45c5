"""Per-namespace object counting for a single resource type.

A count is one bounded list call asking for metadata only.  Most API servers
report ``remainingItemCount`` on a truncated page, which gives the exact
total without a second request; when it is absent but a continue token is
present, one unbounded follow-up list is made instead.
"""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING

from kubexplorer.cluster.client import ClusterAPIError, ClusterUnavailableError
from kubexplorer.models.config import CountConfig
from kubexplorer.observability.logging import get_logger
from kubexplorer.observability.metrics import count_duration_seconds, count_followup_lists_total

if TYPE_CHECKING:
    from kubexplorer.cluster.client import ClusterClient
    from kubexplorer.models.resources import ResourceType


class CountError(Exception):
    """Counting one resource type failed.

    ``expected`` is True for authorization-style refusals (by default HTTP
    403 and 405), which are normal for a restricted service account and are
    not worth a warning.
    """

    def __init__(self, resource: str, namespace: str, expected: bool, cause: str) -> None:
        super().__init__(f"count {resource} in {namespace}: {cause}")
        self.resource = resource
        self.namespace = namespace
        self.expected = expected
        self.cause = cause


class ObjectCounter:
    def __init__(self, client: ClusterClient | None, config: CountConfig | None = None) -> None:
        self._client = client
        self._config = config or CountConfig()
        self._expected_statuses = frozenset(self._config.expected_denial_statuses)
        self._log = get_logger("counter")

    @property
    def config(self) -> CountConfig:
        return self._config

    async def count(self, namespace: str, resource: ResourceType) -> int:
        """Return the number of ``resource`` objects in ``namespace``.

        The whole operation, follow-up list included, is bounded by the
        configured count timeout.

        Raises:
            CountError: the list call failed, timed out or raised unexpectedly.
            ClusterUnavailableError: no cluster client is configured.
        """
        if self._client is None:
            raise ClusterUnavailableError("no kubernetes client available")
        started = time.monotonic()
        try:
            async with asyncio.timeout(self._config.timeout_seconds):
                total = await self._count(namespace, resource)
        except TimeoutError as exc:
            raise CountError(
                resource.full_name,
                namespace,
                expected=False,
                cause=f"timed out after {self._config.timeout_seconds}s",
            ) from exc
        except ClusterAPIError as exc:
            raise CountError(
                resource.full_name,
                namespace,
                expected=self.is_expected_denial(exc),
                cause=str(exc),
            ) from exc
        except Exception as exc:
            self._log.debug("count_unexpected_error", namespace=namespace, resource=resource.full_name, exc_info=True)
            raise CountError(
                resource.full_name,
                namespace,
                expected=False,
                cause=f"{type(exc).__name__}: {exc}",
            ) from exc
        finally:
            count_duration_seconds.observe(time.monotonic() - started)
        return total

    def is_expected_denial(self, exc: ClusterAPIError) -> bool:
        return exc.status is not None and exc.status in self._expected_statuses

    async def _count(self, namespace: str, resource: ResourceType) -> int:
        assert self._client is not None
        page = await self._client.list_objects(
            resource,
            namespace,
            limit=self._config.page_size,
            metadata_only=True,
            timeout=self._config.timeout_seconds,
        )
        if page.remaining_item_count is not None:
            return len(page.items) + page.remaining_item_count
        if not page.continue_token:
            return len(page.items)

        count_followup_lists_total.inc()
        self._log.debug(
            "count_followup_list",
            namespace=namespace,
            resource=resource.full_name,
            first_page=len(page.items),
        )
        full = await self._client.list_objects(
            resource,
            namespace,
            metadata_only=True,
            timeout=self._config.timeout_seconds,
        )
        return len(full.items)
