"""OpenAI-compatible chat completions endpoint."""

import json
import logging

from fastapi import Request, Response
from fastapi.responses import JSONResponse, PlainTextResponse

from ...core.handler import ChatProxy, error_body

logger = logging.getLogger("nimbridge")

# Clients disagree on base URLs, so every common spelling maps to one handler.
CHAT_PATHS = (
    "/v1/chat/completions",
    "/v1/chat/completions/",
    "/chat/completions",
    "/chat/completions/",
    "/v1",
    "/v1/",
)


async def chat_completions(request: Request) -> Response:
    """Chat completions endpoint - OpenAI compatible.

    POST /v1/chat/completions (and the aliases in CHAT_PATHS, plus /)
    """
    logger.info(f"Handling {request.method} request to {request.url.path}")
    body = await request.body()
    try:
        payload = json.loads(body or b"{}")
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        logger.error(f"Invalid JSON payload: {exc}")
        return JSONResponse(
            status_code=400,
            content=error_body("Invalid JSON payload", "invalid_request_error", "invalid_json"),
        )

    proxy: ChatProxy = request.app.state.proxy
    return await proxy.handle(payload)


async def chat_usage_hint() -> Response:
    """Friendly answer for browsers that GET a chat path."""
    return PlainTextResponse("Use POST with JSON body { messages: [...] }")
