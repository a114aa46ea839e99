"""Main FastAPI application for the nimbridge proxy."""

import logging
import socket
from typing import Awaitable, Callable, Optional

import httpx
from fastapi import FastAPI, Request, Response
from fastapi.exception_handlers import http_exception_handler
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .api.routes import (
    CHAT_PATHS,
    chat_completions,
    chat_usage_hint,
    health,
    list_models,
    root,
    upstream_models,
    whoami,
)
from .config_loader import ProxySettings, load_settings
from .core import ChatProxy, FallbackRouter, UpstreamClient, build_model_state
from .core.handler import error_body
from .logging import HitRecorder, setup_logging

logger = logging.getLogger("nimbridge")


def build_proxy(
    settings: ProxySettings, transport: Optional[httpx.AsyncBaseTransport] = None
) -> ChatProxy:
    """Wire the upstream client, shared model state and fallback router."""
    upstream = UpstreamClient(
        base_url=settings.base_url,
        api_key=settings.api_key,
        timeout=settings.request_timeout,
        transport=transport,
    )
    state = build_model_state(settings.primary_model, settings.fallback_models)
    router = FallbackRouter(
        upstream,
        state,
        client_error_delay=settings.client_error_delay,
        server_error_delay=settings.server_error_delay,
    )
    return ChatProxy(
        client=upstream,
        state=state,
        router=router,
        enable_streaming=settings.enable_streaming,
        enable_smart_truncation=settings.enable_smart_truncation,
        show_reasoning=settings.show_reasoning,
        tiers=settings.truncation_tiers,
    )


def create_app(
    settings: Optional[ProxySettings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """Factory function to create the FastAPI application.

    Args:
        settings: Proxy settings; loaded from config file and environment when omitted.
        transport: Optional httpx transport for the upstream (in-process fakes in tests).

    Returns:
        The configured FastAPI application instance.
    """
    if settings is None:
        settings = load_settings()
    proxy = build_proxy(settings, transport)

    app = FastAPI(title="nimbridge proxy")
    app.state.settings = settings
    app.state.proxy = proxy
    app.state.upstream = proxy.client
    app.state.model_state = proxy.state
    app.state.hits = HitRecorder()

    # Browsers reject credentialed requests to a wildcard origin.
    allow_credentials = "*" not in settings.cors_origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=allow_credentials,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def record_and_limit(
        request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        app.state.hits.record(request.method, request.url.path)
        content_length = request.headers.get("content-length")
        if content_length and content_length.isdigit():
            if int(content_length) > settings.max_body_bytes:
                logger.warning(
                    "Rejecting %s %s: body of %s bytes exceeds %d",
                    request.method,
                    request.url.path,
                    content_length,
                    settings.max_body_bytes,
                )
                return JSONResponse(
                    status_code=413,
                    content=error_body("Request body too large", "invalid_request_error", "body_too_large"),
                )
        return await call_next(request)

    @app.exception_handler(StarletteHTTPException)
    async def not_found_handler(request: Request, exc: StarletteHTTPException) -> Response:
        if exc.status_code != 404:
            return await http_exception_handler(request, exc)
        return JSONResponse(
            status_code=404,
            content={
                "error": {
                    "message": "Route not found",
                    "method": request.method,
                    "path": request.url.path,
                }
            },
        )

    @app.on_event("startup")
    async def startup_event():
        """Handle application startup."""
        logger.info("nimbridge proxy starting up...")
        logger.info("Configured bind address %s:%s", settings.host, settings.port)
        if settings.host == "0.0.0.0":
            hostname = socket.gethostname()
            logger.info("Reachable on local network at http://%s:%s", hostname, settings.port)
        logger.info("Upstream: %s", settings.base_url)
        logger.info("Primary model: %s", settings.primary_model)
        logger.info("Fallback models: %s", list(settings.fallback_models))
        logger.info(
            "Streaming=%s smart truncation=%s show reasoning=%s",
            settings.enable_streaming,
            settings.enable_smart_truncation,
            settings.show_reasoning,
        )
        if not settings.api_key:
            logger.warning("NIM_API_KEY is not set; chat requests will fail with 500")

    # Register routes
    app.get("/")(root)
    app.get("/health")(health)
    app.get("/whoami")(whoami)
    app.get("/v1/models")(list_models)
    app.get("/upstream/models")(upstream_models)
    for path in CHAT_PATHS:
        app.get(path)(chat_usage_hint)
        app.post(path)(chat_completions)
    app.post("/")(chat_completions)

    return app


setup_logging()
app = create_app()


__all__ = ["app", "build_proxy", "create_app"]
