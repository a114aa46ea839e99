"""Health and debug endpoints."""

from fastapi import Request
from fastapi.responses import PlainTextResponse


async def root() -> PlainTextResponse:
    return PlainTextResponse("Proxy up. Try /health, /whoami, /upstream/models")


async def health(request: Request) -> dict:
    """GET /health"""
    state = request.app.state.model_state
    return {
        "status": "ok",
        "model": state.primary_model,
        "currentModel": state.current_model,
        "hasApiKey": request.app.state.upstream.has_api_key,
    }


async def whoami(request: Request) -> dict:
    """GET /whoami - last request seen plus model selection state."""
    state = request.app.state.model_state
    return {
        "lastHit": request.app.state.hits.last_hit,
        "model": state.primary_model,
        "currentModel": state.current_model,
        "failureCount": state.failure_count,
        "hasApiKey": request.app.state.upstream.has_api_key,
    }
