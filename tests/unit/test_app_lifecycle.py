"""Unit tests for kubexplorer.app: ExplorerApp lifecycle, _ComponentError and main()."""

from __future__ import annotations

import asyncio
import os
import signal
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from kubexplorer.app import ExplorerApp, _ComponentError, main
from kubexplorer.cluster.client import ClusterUnavailableError
from kubexplorer.models.config import APIConfig, ExplorerConfig

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _server_mock() -> MagicMock:
    server = MagicMock()

    async def serve() -> None:
        await asyncio.sleep(3600)

    server.serve = serve
    return server


def _config() -> ExplorerConfig:
    return ExplorerConfig(api=APIConfig(port=18080))


# ---------------------------------------------------------------------------
# TestComponentError
# ---------------------------------------------------------------------------


class TestComponentError:
    def test_stores_fields(self) -> None:
        cause = ValueError("bad ttl")
        err = _ComponentError("core", cause)
        assert err.component == "core"
        assert err.cause is cause
        assert "core" in str(err)
        assert "bad ttl" in str(err)


# ---------------------------------------------------------------------------
# TestLifecycle
# ---------------------------------------------------------------------------


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_with_cluster(self, fake_client: Any) -> None:
        app = ExplorerApp(config=_config())
        with (
            patch("kubexplorer.app.setup_logging"),
            patch("kubexplorer.app.KubernetesClusterClient.connect", AsyncMock(return_value=fake_client)),
            patch("uvicorn.Server", return_value=_server_mock()),
        ):
            await app.start()

        assert app.running
        assert app.service is not None
        assert app.service.cluster_available is True
        assert await app.service.list_namespaces() == ["default", "kube-system", "team-a"]

        await app.stop()

        assert not app.running
        assert app.service is None
        assert fake_client.closed is True

    @pytest.mark.asyncio
    async def test_degraded_mode_without_cluster(self) -> None:
        app = ExplorerApp(config=_config())
        with (
            patch("kubexplorer.app.setup_logging"),
            patch(
                "kubexplorer.app.KubernetesClusterClient.connect",
                AsyncMock(side_effect=RuntimeError("no kubeconfig")),
            ),
            patch("uvicorn.Server", return_value=_server_mock()),
        ):
            await app.start()

        assert app.running
        assert app.service is not None
        assert app.service.cluster_available is False
        with pytest.raises(ClusterUnavailableError):
            await app.service.list_namespaces()
        await app.stop()

    @pytest.mark.asyncio
    async def test_rest_failure_raises_component_error(self, fake_client: Any) -> None:
        app = ExplorerApp(config=_config())
        with (
            patch("kubexplorer.app.setup_logging"),
            patch("kubexplorer.app.KubernetesClusterClient.connect", AsyncMock(return_value=fake_client)),
            patch("uvicorn.Server", side_effect=OSError("address in use")),
            pytest.raises(_ComponentError) as exc_info,
        ):
            await app.start()

        assert exc_info.value.component == "rest"
        await app.stop()
        assert fake_client.closed is True

    @pytest.mark.asyncio
    async def test_stop_before_start_is_noop(self) -> None:
        app = ExplorerApp(config=_config())
        await app.stop()
        assert not app.running

    @pytest.mark.asyncio
    async def test_stop_twice_is_safe(self, fake_client: Any) -> None:
        app = ExplorerApp(config=_config())
        with (
            patch("kubexplorer.app.setup_logging"),
            patch("kubexplorer.app.KubernetesClusterClient.connect", AsyncMock(return_value=fake_client)),
            patch("uvicorn.Server", return_value=_server_mock()),
        ):
            await app.start()
        await app.stop()
        await app.stop()
        assert not app.running

    @pytest.mark.asyncio
    async def test_client_close_failure_does_not_abort_shutdown(self) -> None:
        client = MagicMock()
        client.close = AsyncMock(side_effect=RuntimeError("pool already closed"))
        app = ExplorerApp(config=_config())
        with (
            patch("kubexplorer.app.setup_logging"),
            patch("kubexplorer.app.KubernetesClusterClient.connect", AsyncMock(return_value=client)),
            patch("uvicorn.Server", return_value=_server_mock()),
        ):
            await app.start()

        await app.stop()

        client.close.assert_awaited_once()
        assert not app.running

    @pytest.mark.asyncio
    async def test_stop_cancels_scans_before_closing_client(self, fake_client: Any) -> None:
        fake_client.list_delay = 5.0
        app = ExplorerApp(config=_config())
        with (
            patch("kubexplorer.app.setup_logging"),
            patch("kubexplorer.app.KubernetesClusterClient.connect", AsyncMock(return_value=fake_client)),
            patch("uvicorn.Server", return_value=_server_mock()),
        ):
            await app.start()
        assert app.service is not None
        cache = app.service._cache
        scans_at_close: list[int] = []
        original_close = fake_client.close

        async def close() -> None:
            scans_at_close.append(len(cache._tasks))
            await original_close()

        fake_client.close = close
        waiter = asyncio.create_task(app.service.get_namespace_resources("default"))
        while not fake_client.list_calls:
            await asyncio.sleep(0)

        await asyncio.wait_for(app.stop(), timeout=2.0)

        with pytest.raises(asyncio.CancelledError):
            await waiter
        assert scans_at_close == [0]
        assert fake_client.closed is True


# ---------------------------------------------------------------------------
# TestRunUntil
# ---------------------------------------------------------------------------


class TestRunUntil:
    @pytest.mark.asyncio
    async def test_returns_when_stop_requested(self, fake_client: Any) -> None:
        app = ExplorerApp(config=_config())
        with (
            patch("kubexplorer.app.setup_logging"),
            patch("kubexplorer.app.KubernetesClusterClient.connect", AsyncMock(return_value=fake_client)),
            patch("uvicorn.Server", return_value=_server_mock()),
        ):
            await app.start()
        stop_requested = asyncio.Event()
        runner = asyncio.create_task(app.run_until(stop_requested))
        await asyncio.sleep(0.01)
        assert not runner.done()

        stop_requested.set()
        await asyncio.wait_for(runner, timeout=1.0)
        await app.stop()

    @pytest.mark.asyncio
    async def test_returns_when_server_exits(self, fake_client: Any) -> None:
        server = MagicMock()

        async def serve() -> None:
            return None

        server.serve = serve
        app = ExplorerApp(config=_config())
        with (
            patch("kubexplorer.app.setup_logging"),
            patch("kubexplorer.app.KubernetesClusterClient.connect", AsyncMock(return_value=fake_client)),
            patch("uvicorn.Server", return_value=server),
        ):
            await app.start()

        await asyncio.wait_for(app.run_until(asyncio.Event()), timeout=1.0)
        await app.stop()
        assert fake_client.closed is True


# ---------------------------------------------------------------------------
# TestMain
# ---------------------------------------------------------------------------


class TestMain:
    @pytest.mark.asyncio
    async def test_startup_failure_exits_nonzero_after_stopping(self) -> None:
        app = MagicMock()
        app.start = AsyncMock(side_effect=_ComponentError("rest", OSError("address in use")))
        app.stop = AsyncMock()
        with (
            patch("kubexplorer.app.ExplorerApp", return_value=app),
            patch("kubexplorer.app.get_logger"),
            pytest.raises(SystemExit) as exc_info,
        ):
            await main()

        assert exc_info.value.code == 1
        app.stop.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_sigterm_stops_app(self) -> None:
        app = MagicMock()
        app.start = AsyncMock()
        app.stop = AsyncMock()

        async def run_until(stop_requested: asyncio.Event) -> None:
            os.kill(os.getpid(), signal.SIGTERM)
            await stop_requested.wait()

        app.run_until = run_until
        with patch("kubexplorer.app.ExplorerApp", return_value=app):
            await asyncio.wait_for(main(), timeout=2.0)

        app.stop.assert_awaited_once()
