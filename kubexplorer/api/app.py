"""FastAPI application factory.

``create_app`` wires the explorer service into ``app.state`` and mounts the
versioned router plus the Prometheus ``/metrics`` endpoint.  Request
validation errors are returned in the same ``{error, detail}`` envelope as
every other failure.
"""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app

from kubexplorer.api.routes import router
from kubexplorer.api.schemas import ErrorResponse
from kubexplorer.explorer.service import ExplorerService
from kubexplorer.models.config import ExplorerConfig


def create_app(service: ExplorerService, config: ExplorerConfig | None = None) -> FastAPI:
    from kubexplorer import __version__

    app = FastAPI(
        title="kubexplorer",
        description="Browse the resource types and objects present in a Kubernetes namespace.",
        version=__version__,
    )
    app.state.service = service
    app.state.config = config or ExplorerConfig()

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        detail = "; ".join(
            f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg', '')}" for err in exc.errors()
        )
        return JSONResponse(
            status_code=400,
            content=ErrorResponse(error="INVALID_REQUEST", detail=detail).model_dump(),
        )

    app.include_router(router, prefix="/api/v1")
    app.mount("/metrics", make_asgi_app())
    return app
