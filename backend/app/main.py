# This file bootstraps the FastAPI app, wires up middlewares for
# logging and request context, and includes the sandbox routers.
# The registry is built here and handed to requests via app.state.

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Response
from fastapi.responses import JSONResponse
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from starlette.concurrency import run_in_threadpool

from app.core.backend import SearchBackendClient, StorageUnavailable
from app.core.config import Settings, settings as default_settings
from app.core.logging import APILoggingMiddleware, get_structured_logger
from app.sandbox.errors import UnknownTenant
from app.sandbox.interceptor import RequestInterceptor
from app.sandbox.middleware import RequestContextMiddleware
from app.sandbox.registry import SandboxRegistry

from app.api.sandbox import router as sandbox_router
from app.api.proxy import router as proxy_router

logger = get_structured_logger("app")


def create_app(
    config: Optional[Settings] = None,
    *,
    backend: Optional[SearchBackendClient] = None,
    registry: Optional[SandboxRegistry] = None,
) -> FastAPI:
    # An empty registry is falsy, so compare against None.
    if config is None:
        config = default_settings
    if backend is None:
        backend = SearchBackendClient(config)
    if registry is None:
        registry = SandboxRegistry(persist_enabled=config.SANDBOX_PERSIST)

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        registry.start()
        logger.info(
            "sandbox.registry.started",
            extra={"persist": registry.persist_enabled, "enabled": config.SANDBOX_ENABLED},
        )
        yield
        # Teardown issues blocking HTTP deletes.
        deleted = await run_in_threadpool(registry.stop, backend.delete_index)
        logger.info("sandbox.registry.stopped", extra={"deletes": deleted})
        backend.close()

    app = FastAPI(
        title="Index Sandbox Gateway",
        lifespan=lifespan,
        docs_url="/_gateway/docs",
        openapi_url="/_gateway/openapi.json",
        redoc_url=None,
    )
    app.state.settings = config
    app.state.backend = backend
    app.state.registry = registry
    app.state.interceptor = RequestInterceptor(
        registry,
        header_name=config.SANDBOX_HEADER_NAME,
    )

    @app.exception_handler(UnknownTenant)
    def handle_unknown_tenant(_request, exc: UnknownTenant):
        response = JSONResponse(status_code=400, content={"detail": str(exc)})
        response.headers["X-Error-Code"] = "invalid_sandbox"
        return response

    @app.exception_handler(StorageUnavailable)
    def handle_storage_unavailable(_request, exc: StorageUnavailable):
        logger.warning("backend.unavailable", extra={"error": str(exc)})
        response = JSONResponse(status_code=502, content={"detail": "Search backend unavailable"})
        response.headers["X-Error-Code"] = "backend_unavailable"
        return response

    # Added last, the request context middleware runs outermost and fills
    # request.state before the logging middleware reads it.
    app.add_middleware(APILoggingMiddleware)
    app.add_middleware(RequestContextMiddleware, header_name=config.SANDBOX_HEADER_NAME)

    # Gateway endpoints live under "_" so they never shadow an index name.
    @app.get("/_gateway/metrics", include_in_schema=False)
    def metrics() -> Response:
        return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

    @app.get("/_gateway/ping")
    def ping():
        return {"message": "pong"}

    # The proxy route matches every path, so it goes last.
    app.include_router(sandbox_router)
    app.include_router(proxy_router)
    return app


app = create_app()
