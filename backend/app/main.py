############################################################
#
# switchyard - Messages API Translation Gateway
#
# main.py: FastAPI application entry point and configuration
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""FastAPI application entry point."""

import uuid
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from backend.app.api import api_router
from backend.app.core.errors import GatewayError
from backend.app.core.routing import SessionRoutingState
from backend.app.logging_config import (
    bind_request_context,
    clear_request_context,
    get_logger,
    setup_logging,
)
from backend.app.services.dispatcher import GatewayDispatcher
from backend.app.settings import Settings, get_settings

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """Application lifespan manager."""
    settings: Settings = app.state.settings
    logger.info("switchyard_starting", host=settings.host, port=settings.port)

    # One pooled client for every upstream; per-request timeouts come from the relay
    client = httpx.AsyncClient(
        timeout=httpx.Timeout(
            connect=settings.upstream_connect_timeout,
            read=settings.upstream_idle_timeout,
            write=settings.upstream_write_timeout,
            pool=settings.upstream_connect_timeout,
        ),
        transport=app.state.upstream_transport,
    )

    app.state.http_client = client
    app.state.session_state = SessionRoutingState()
    app.state.dispatcher = GatewayDispatcher(settings, client, app.state.session_state)

    logger.info("switchyard_started")

    yield

    # Shutdown
    logger.info("switchyard_stopping")
    await client.aclose()
    logger.info("switchyard_stopped")


class RequestIDMiddleware:
    """Raw ASGI middleware for request ID injection.

    Unlike @app.middleware("http") which wraps in BaseHTTPMiddleware,
    this does NOT run the handler in a separate task, so a client disconnect
    cancels the streaming relay directly and the upstream is closed with it.
    """

    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        headers = dict(scope.get("headers", []))
        request_id = (
            headers.get(b"x-request-id", b"").decode()
            or str(uuid.uuid4())
        )

        bind_request_context(request_id=request_id)

        async def send_wrapper(message):
            if message["type"] == "http.response.start":
                response_headers = list(message.get("headers", []))
                response_headers.append(
                    (b"x-request-id", request_id.encode())
                )
                message = {**message, "headers": response_headers}
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            clear_request_context()


def create_app(
    settings: Optional[Settings] = None,
    upstream_transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Settings to use instead of the cached environment settings
        upstream_transport: Transport for the shared upstream client (tests)
    """
    settings = settings or get_settings()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Messages API gateway for OpenAI, OpenRouter, Gemini, Ollama, Anthropic and GLM",
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url=None,
    )
    app.state.settings = settings
    app.state.upstream_transport = upstream_transport

    app.add_middleware(RequestIDMiddleware)

    # Exception handlers
    @app.exception_handler(GatewayError)
    async def gateway_exception_handler(request: Request, exc: GatewayError):
        """Errors raised before any response bytes were sent."""
        logger.warning(
            "request_rejected",
            status_code=exc.status_code,
            error_type=exc.error_type,
            error=exc.message,
        )
        return JSONResponse(status_code=exc.status_code, content=exc.to_body())

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Global exception handler."""
        logger.exception("unhandled_exception", error=str(exc))
        return JSONResponse(
            status_code=500,
            content={"type": "error", "error": {"type": "api_error", "message": "Internal server error"}},
        )

    app.include_router(api_router)

    return app


def main():
    """Run the gateway using uvicorn."""
    import uvicorn

    settings = get_settings()
    setup_logging(settings)

    uvicorn.run(
        "backend.app.main:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        reload=settings.reload,
        log_level=settings.log_level.lower(),
        log_config=None,
    )


if __name__ == "__main__":
    main()
