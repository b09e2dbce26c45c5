"""Tests for kubexplorer.counter.object_counter."""

from __future__ import annotations

import asyncio
from typing import Any
from unittest.mock import AsyncMock

import pytest

from kubexplorer.cluster.client import ClusterAPIError, ClusterUnavailableError, ObjectList
from kubexplorer.counter.object_counter import CountError, ObjectCounter
from kubexplorer.models.config import CountConfig
from kubexplorer.models.resources import ResourceType


class TestCount:
    @pytest.mark.asyncio
    async def test_single_page_count(self, fake_client: Any, pods: ResourceType) -> None:
        counter = ObjectCounter(fake_client)
        assert await counter.count("default", pods) == 3

    @pytest.mark.asyncio
    async def test_empty_namespace_counts_zero(self, fake_client: Any, pods: ResourceType) -> None:
        counter = ObjectCounter(fake_client)
        assert await counter.count("team-a", pods) == 0

    @pytest.mark.asyncio
    async def test_first_request_is_bounded_and_metadata_only(self, fake_client: Any, pods: ResourceType) -> None:
        counter = ObjectCounter(fake_client, CountConfig(page_size=50))
        await counter.count("default", pods)
        call = fake_client.list_calls[0]
        assert call["limit"] == 50
        assert call["metadata_only"] is True

    @pytest.mark.asyncio
    async def test_remaining_item_count_avoids_second_call(self, fake_client: Any, pods: ResourceType) -> None:
        counter = ObjectCounter(fake_client, CountConfig(page_size=2))
        assert await counter.count("default", pods) == 3
        assert fake_client.calls_for("pods") == 1

    @pytest.mark.asyncio
    async def test_continue_token_triggers_one_unbounded_followup(self, fake_client: Any, pods: ResourceType) -> None:
        fake_client.report_remaining = False
        counter = ObjectCounter(fake_client, CountConfig(page_size=2))

        assert await counter.count("default", pods) == 3

        assert fake_client.calls_for("pods") == 2
        assert fake_client.list_calls[1]["limit"] is None

    @pytest.mark.asyncio
    async def test_remaining_item_count_zero_is_used(self, pods: ResourceType) -> None:
        client = AsyncMock()
        client.list_objects = AsyncMock(
            return_value=ObjectList(items=[{}, {}], continue_token="tok", remaining_item_count=0)
        )
        counter = ObjectCounter(client)
        assert await counter.count("default", pods) == 2
        assert client.list_objects.await_count == 1


class TestCountErrors:
    @pytest.mark.asyncio
    async def test_forbidden_is_expected(self, fake_client: Any, pods: ResourceType) -> None:
        fake_client.list_errors["pods"] = ClusterAPIError(403, "Forbidden")
        counter = ObjectCounter(fake_client)
        with pytest.raises(CountError) as exc_info:
            await counter.count("default", pods)
        assert exc_info.value.expected is True
        assert exc_info.value.resource == "pods"

    @pytest.mark.asyncio
    async def test_method_not_allowed_is_expected(self, fake_client: Any, pods: ResourceType) -> None:
        fake_client.list_errors["pods"] = ClusterAPIError(405, "MethodNotAllowed")
        with pytest.raises(CountError) as exc_info:
            await ObjectCounter(fake_client).count("default", pods)
        assert exc_info.value.expected is True

    @pytest.mark.asyncio
    async def test_server_error_is_unexpected(self, fake_client: Any, pods: ResourceType) -> None:
        fake_client.list_errors["pods"] = ClusterAPIError(500, "Internal Server Error")
        with pytest.raises(CountError) as exc_info:
            await ObjectCounter(fake_client).count("default", pods)
        assert exc_info.value.expected is False

    @pytest.mark.asyncio
    async def test_transport_error_is_unexpected(self, fake_client: Any, pods: ResourceType) -> None:
        fake_client.list_errors["pods"] = ClusterAPIError(None, "connection reset")
        with pytest.raises(CountError) as exc_info:
            await ObjectCounter(fake_client).count("default", pods)
        assert exc_info.value.expected is False
        assert "connection reset" in exc_info.value.cause

    @pytest.mark.asyncio
    async def test_configurable_denial_statuses(self, fake_client: Any, pods: ResourceType) -> None:
        fake_client.list_errors["pods"] = ClusterAPIError(404, "Not Found")
        counter = ObjectCounter(fake_client, CountConfig(expected_denial_statuses=(403, 404)))
        with pytest.raises(CountError) as exc_info:
            await counter.count("default", pods)
        assert exc_info.value.expected is True

    @pytest.mark.asyncio
    async def test_timeout_is_unexpected(self, fake_client: Any, pods: ResourceType) -> None:
        fake_client.list_delay = 5.0
        counter = ObjectCounter(fake_client, CountConfig(timeout_seconds=0.05))
        with pytest.raises(CountError, match="timed out") as exc_info:
            await counter.count("default", pods)
        assert exc_info.value.expected is False

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [ConnectionResetError("peer reset"), ValueError("invalid literal for int()")])
    async def test_other_exceptions_are_unexpected(self, fake_client: Any, pods: ResourceType, error: Exception) -> None:
        fake_client.list_errors["pods"] = error
        with pytest.raises(CountError) as exc_info:
            await ObjectCounter(fake_client).count("default", pods)
        assert exc_info.value.expected is False
        assert type(error).__name__ in exc_info.value.cause
        assert exc_info.value.__cause__ is error

    @pytest.mark.asyncio
    async def test_no_client_raises_cluster_unavailable(self, pods: ResourceType) -> None:
        with pytest.raises(ClusterUnavailableError):
            await ObjectCounter(None).count("default", pods)

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self, fake_client: Any, pods: ResourceType) -> None:
        fake_client.list_delay = 5.0
        task = asyncio.create_task(ObjectCounter(fake_client).count("default", pods))
        await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
