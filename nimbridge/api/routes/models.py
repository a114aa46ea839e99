"""Models listing endpoints."""

import logging
import time

import httpx
from fastapi import Request
from fastapi.responses import JSONResponse

from ...core.backend import decode_body, format_httpx_error
from ...core.handler import error_body

logger = logging.getLogger("nimbridge")


async def list_models(request: Request) -> dict:
    """List configured models in OpenAI API format.

    GET /v1/models
    """
    state = request.app.state.model_state
    created = int(time.time())
    models = [
        {"id": name, "object": "model", "created": created, "owned_by": "nimbridge"}
        for name in state.known_models
    ]
    return {"object": "list", "data": models}


async def upstream_models(request: Request) -> JSONResponse:
    """Pass the provider's own model list through.

    GET /upstream/models
    """
    upstream = request.app.state.upstream
    if not upstream.has_api_key:
        return JSONResponse(
            status_code=500,
            content=error_body("Missing NIM_API_KEY", "configuration_error"),
        )
    try:
        resp = await upstream.list_models()
    except httpx.HTTPError as exc:
        detail = format_httpx_error(exc, url=upstream.build_url("/models"))
        logger.error("Upstream model listing failed: %s", detail)
        return JSONResponse(status_code=502, content={"message": str(exc) or exc.__class__.__name__})

    body = decode_body(resp.content)
    if resp.status_code >= 400:
        logger.warning("Upstream model listing returned %d: %r", resp.status_code, body)
    if not isinstance(body, (dict, list)):
        body = {"message": body}
    return JSONResponse(status_code=resp.status_code, content=body)
