"""Application bootstrap for kubexplorer.

Wires all components in dependency order and manages the asyncio lifecycle.
Startup order: config → logging → cluster client → catalog → counter
              → namespace cache → explorer service → REST

The cluster client is optional: if no credentials can be loaded the service
still starts and answers cluster operations with 503 CLUSTER_UNAVAILABLE.
Shutdown stops components in reverse startup order; each stop is guarded so
that one failure does not prevent the rest from shutting down.
"""

from __future__ import annotations

import asyncio
import signal
from typing import TYPE_CHECKING

from kubexplorer.cache.namespace_cache import NamespaceCache
from kubexplorer.catalog.resource_catalog import ResourceCatalog
from kubexplorer.cluster.client import KubernetesClusterClient
from kubexplorer.config import load_config
from kubexplorer.counter.object_counter import ObjectCounter
from kubexplorer.explorer.service import ExplorerService
from kubexplorer.models.config import ExplorerConfig
from kubexplorer.observability.logging import get_logger, setup_logging

if TYPE_CHECKING:
    from structlog.typing import FilteringBoundLogger

    from kubexplorer.cluster.client import ClusterClient

_SHUTDOWN_GRACE_SECONDS = 15


class _ComponentError(Exception):
    """Raised when a mandatory component fails to start."""

    def __init__(self, component: str, cause: Exception) -> None:
        super().__init__(f"Component '{component}' failed to start: {cause}")
        self.component = component
        self.cause = cause


class ExplorerApp:
    """Application root.  Owns every component and coordinates their lifecycle.

    Calling ``stop()`` on an app that was never started (or already stopped)
    is safe.
    """

    def __init__(self, config: ExplorerConfig | None = None, console_log: bool = False) -> None:
        self.config = config
        self._console_log = console_log

        self._client: ClusterClient | None = None
        self._catalog: ResourceCatalog | None = None
        self._counter: ObjectCounter | None = None
        self._cache: NamespaceCache | None = None
        self._service: ExplorerService | None = None
        self._rest_server: object | None = None

        self._background_tasks: list[asyncio.Task[None]] = []

        self._running = False
        self._log: FilteringBoundLogger | None = None

    @property
    def running(self) -> bool:
        return self._running

    @property
    def service(self) -> ExplorerService | None:
        return self._service

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start all components in dependency order.

        Raises _ComponentError if a mandatory component cannot start.
        """
        # --- 1. Configuration -------------------------------------------
        if self.config is None:
            self.config = load_config()

        # --- 2. Logging -------------------------------------------------
        setup_logging(self.config.log.level, console=self._console_log)
        self._log = get_logger("app")
        self._log.info("kubexplorer starting", version=_kubexplorer_version(), debug=self.config.debug)

        # --- 3. Cluster client (optional) -------------------------------
        await self._start_cluster_client()

        # --- 4. Catalog, counter, namespace cache, service ---------------
        self._start_core()

        # --- 5. REST API ------------------------------------------------
        await self._start_rest()

        self._running = True
        self._log.info(
            "kubexplorer started",
            port=self.config.api.port,
            cluster_available=self._client is not None,
        )

    async def _start_cluster_client(self) -> None:
        """Connect to the cluster; failure leaves the app in degraded mode."""
        assert self._log is not None
        assert self.config is not None
        self._log.debug("starting cluster client")
        try:
            self._client = await KubernetesClusterClient.connect(self.config.cluster)
        except Exception as exc:
            self._client = None
            self._log.warning(
                "cluster client unavailable; cluster operations will return 503",
                error=str(exc),
            )

    def _start_core(self) -> None:
        assert self._log is not None
        assert self.config is not None
        try:
            self._catalog = ResourceCatalog(self._client, ttl=self.config.cache.catalog_ttl)
            self._counter = ObjectCounter(self._client, self.config.count)
            self._cache = NamespaceCache(
                self._catalog,
                self._counter,
                config=self.config.cache,
                progress=self.config.progress,
            )
            self._service = ExplorerService(
                self._client,
                self._catalog,
                self._cache,
                progress=self.config.progress,
            )
        except Exception as exc:
            raise _ComponentError("core", exc) from exc
        self._log.info(
            "explorer core ready",
            catalog_ttl_s=self.config.cache.catalog_ttl_seconds,
            namespace_ttl_s=self.config.cache.namespace_ttl_seconds,
            count_concurrency=self.config.count.concurrency,
        )

    async def _start_rest(self) -> None:
        """Start the uvicorn REST server."""
        assert self._log is not None
        assert self.config is not None
        assert self._service is not None
        self._log.debug("starting rest api")
        try:
            import uvicorn

            from kubexplorer.api.app import create_app

            fastapi_app = create_app(self._service, self.config)
            uv_config = uvicorn.Config(
                app=fastapi_app,
                host="0.0.0.0",
                port=self.config.api.port,
                log_config=None,  # structlog handles all logging
                access_log=False,
            )
            server = uvicorn.Server(uv_config)
            task = asyncio.create_task(server.serve(), name="rest-server")
            self._background_tasks.append(task)
            self._rest_server = server
            self._log.info("rest api started", port=self.config.api.port)
        except Exception as exc:
            raise _ComponentError("rest", exc) from exc

    async def run_until(self, stop_requested: asyncio.Event) -> None:
        """Serve until ``stop_requested`` is set or the REST server exits by itself."""
        waiter = asyncio.create_task(stop_requested.wait(), name="stop-requested")
        try:
            await asyncio.wait([waiter, *self._background_tasks], return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
        if not stop_requested.is_set():
            log = self._log or get_logger("app")
            log.error("rest server exited unexpectedly")

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    async def stop(self) -> None:
        """Gracefully stop all components in reverse startup order."""
        if not self._running and self._log is None:
            return

        log = self._log or get_logger("app")
        log.info("kubexplorer shutting down")
        self._running = False

        server = self._rest_server
        if server is not None:
            server.should_exit = True  # type: ignore[attr-defined]

        for task in reversed(self._background_tasks):
            if not task.done():
                task.cancel()
        if self._background_tasks:
            await asyncio.gather(*self._background_tasks, return_exceptions=True)
        self._background_tasks.clear()
        self._rest_server = None

        await self._cancel_scans()
        if self._cache is not None:
            self._cache.clear()
        self._service = None
        self._cache = None
        self._counter = None
        self._catalog = None
        await self._stop_cluster_client()

        log.info("kubexplorer stopped")

    async def _cancel_scans(self) -> None:
        """Cancel progress streams and namespace scans while the client is still open."""
        if self._service is None:
            return
        log = self._log or get_logger("app")
        try:
            await asyncio.wait_for(self._service.aclose(), timeout=_SHUTDOWN_GRACE_SECONDS)
        except TimeoutError:
            log.warning("namespace scans did not stop in time", timeout=_SHUTDOWN_GRACE_SECONDS)

    async def _stop_cluster_client(self) -> None:
        """Close the kubernetes_asyncio connection pool."""
        if self._client is None:
            return
        log = self._log or get_logger("app")
        try:
            await asyncio.wait_for(self._client.close(), timeout=_SHUTDOWN_GRACE_SECONDS)
        except TimeoutError:
            log.warning("cluster client close timed out", timeout=_SHUTDOWN_GRACE_SECONDS)
        except Exception as exc:
            log.debug("cluster client close raised (non-fatal)", error=str(exc))
        self._client = None


def _kubexplorer_version() -> str:
    from kubexplorer import __version__

    return __version__


# ---------------------------------------------------------------------------
# Async entrypoint
# ---------------------------------------------------------------------------


async def main(console_log: bool = False) -> None:
    """Run the explorer until SIGTERM or SIGINT arrives.

    A component that fails to start is logged and turned into exit status 1.
    """
    app = ExplorerApp(console_log=console_log)
    stop_requested = asyncio.Event()
    loop = asyncio.get_running_loop()
    stop_signals = (signal.SIGTERM, signal.SIGINT)
    for sig in stop_signals:
        loop.add_signal_handler(sig, stop_requested.set)

    try:
        await app.start()
        await app.run_until(stop_requested)
    except _ComponentError as exc:
        get_logger("app").critical("fatal startup error", component=exc.component, error=str(exc.cause))
        raise SystemExit(1) from exc
    finally:
        for sig in stop_signals:
            loop.remove_signal_handler(sig)
        await app.stop()
