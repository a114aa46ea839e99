"""Chat-completion request handling: validation, shaping, dispatch, errors."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Sequence

import httpx
from fastapi import Response
from fastapi.responses import JSONResponse, StreamingResponse

from .backend import UpstreamClient, UpstreamResult
from .exceptions import (
    ConfigurationError,
    InvalidRequestError,
    ModelsExhaustedError,
    UpstreamClientError,
    UpstreamServerError,
)
from .normalizer import normalize_completion
from .router import FallbackRouter
from .sse import StreamNormalizer, iter_normalized_stream
from .state import ModelState
from .truncation import DEFAULT_TIERS, TruncationTier, truncate_messages

logger = logging.getLogger("nimbridge")

DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_TOKENS = 12000
MIN_MAX_TOKENS = 200
MAX_MAX_TOKENS = 8000
DEFAULT_SYSTEM_PROMPT = "Respond naturally. Do not overanalyze. Stay concise."

RATE_LIMIT_MESSAGE = "Rate limited by upstream provider, please wait and retry"
UNAVAILABLE_MESSAGE = "Upstream provider temporarily unavailable, please retry later"


def error_body(message: str, error_type: str, code: Optional[str] = None, **extra: Any) -> dict[str, Any]:
    error: dict[str, Any] = {"message": message, "type": error_type}
    if code:
        error["code"] = code
    error.update(extra)
    return {"error": error}


def resolve_temperature(value: Any) -> float:
    if value is None or isinstance(value, bool):
        return DEFAULT_TEMPERATURE
    try:
        return float(value)
    except (TypeError, ValueError):
        return DEFAULT_TEMPERATURE


def resolve_max_tokens(value: Any) -> int:
    """Clamp the requested max_tokens; an absent value is clamped too."""
    if value is None or isinstance(value, bool):
        requested = DEFAULT_MAX_TOKENS
    else:
        try:
            requested = int(value)
        except (TypeError, ValueError):
            requested = DEFAULT_MAX_TOKENS
    return max(MIN_MAX_TOKENS, min(MAX_MAX_TOKENS, requested))


def validate_messages(raw: Any) -> list[dict[str, Any]]:
    if not isinstance(raw, list):
        raise InvalidRequestError("You must provide a messages array", code="missing_parameter")
    messages: list[dict[str, Any]] = []
    for item in raw:
        if not isinstance(item, Mapping):
            raise InvalidRequestError("Each message must be an object", code="invalid_message")
        messages.append(dict(item))
    return messages


def has_system_message(messages: Sequence[Mapping[str, Any]]) -> bool:
    return any(message.get("role") == "system" for message in messages)


def with_default_system(
    messages: list[dict[str, Any]], had_system: bool, prompt: str = DEFAULT_SYSTEM_PROMPT
) -> list[dict[str, Any]]:
    if had_system:
        return messages
    return [{"role": "system", "content": prompt}] + messages


@dataclass
class ChatProxy:
    """Composition root for POST /chat/completions."""

    client: UpstreamClient
    state: ModelState
    router: FallbackRouter
    enable_streaming: bool = True
    enable_smart_truncation: bool = True
    show_reasoning: bool = False
    tiers: Sequence[TruncationTier] = DEFAULT_TIERS
    system_prompt: str = DEFAULT_SYSTEM_PROMPT

    def prepare_messages(self, raw_messages: Any) -> list[dict[str, Any]]:
        messages = validate_messages(raw_messages)
        had_system = has_system_message(messages)
        if self.enable_smart_truncation:
            messages = truncate_messages(messages, self.tiers)
        return with_default_system(messages, had_system, self.system_prompt)

    async def handle(self, payload: Any) -> Response:
        try:
            if not self.client.has_api_key:
                raise ConfigurationError("Missing NIM_API_KEY")
            if not isinstance(payload, Mapping):
                raise InvalidRequestError(
                    "Request body must be a JSON object", code="invalid_json_shape"
                )
            messages = self.prepare_messages(payload.get("messages"))
        except ConfigurationError as exc:
            logger.error("Configuration error: %s", exc.message)
            return JSONResponse(
                status_code=500, content=error_body(exc.message, "configuration_error")
            )
        except InvalidRequestError as exc:
            logger.error("Invalid request: %s", exc.message)
            return JSONResponse(
                status_code=400,
                content=error_body(exc.message, "invalid_request_error", exc.code),
            )

        temperature = resolve_temperature(payload.get("temperature"))
        max_tokens = resolve_max_tokens(payload.get("max_tokens"))
        stream = bool(payload.get("stream")) and self.enable_streaming
        requested_model = payload.get("model")
        session_id = payload.get("session_id")
        logger.info(
            "Chat request: %d messages, temperature=%s, max_tokens=%d, stream=%s, session=%s",
            len(messages),
            temperature,
            max_tokens,
            stream,
            session_id,
        )

        try:
            result = await self.router.dispatch(messages, temperature, max_tokens, stream)
        except UpstreamClientError as exc:
            return self._client_error_response(exc)
        except (UpstreamServerError, httpx.HTTPError, ModelsExhaustedError) as exc:
            logger.error("Upstream unavailable after fallback: %s", exc)
            return self._unavailable_response()
        except Exception as exc:
            logger.exception("Unexpected upstream failure after fallback: %s", exc)
            return self._unavailable_response()

        label = requested_model if isinstance(requested_model, str) and requested_model else result.model
        return await self._build_response(result, label, stream)

    async def _build_response(self, result: UpstreamResult, label: str, stream: bool) -> Response:
        if stream and result.is_event_stream:
            normalizer = StreamNormalizer(show_reasoning=self.show_reasoning)
            return StreamingResponse(
                iter_normalized_stream(result, normalizer),
                media_type="text/event-stream",
                headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
            )

        if stream:
            # Provider ignored stream=true and answered with a plain body.
            try:
                await result.response.aread()
            except httpx.HTTPError as exc:
                logger.error("Reading non-streamed body from %s failed: %s", result.model, exc)
                return self._unavailable_response()
            finally:
                await result.aclose()
        body = result.json()
        return JSONResponse(content=normalize_completion(body, label, self.show_reasoning))

    @staticmethod
    def _unavailable_response() -> JSONResponse:
        return JSONResponse(
            status_code=503,
            content=error_body(UNAVAILABLE_MESSAGE, "upstream_unavailable"),
        )

    @staticmethod
    def _client_error_response(exc: UpstreamClientError) -> JSONResponse:
        if exc.is_rate_limited:
            logger.warning("Rate limited on the last model tried, body: %r", exc.body)
            return JSONResponse(
                status_code=429,
                content=error_body(RATE_LIMIT_MESSAGE, "rate_limit_error", "rate_limited"),
            )
        body = exc.body
        logger.warning("Returning upstream status %d to caller", exc.status_code)
        if isinstance(body, dict) and "error" in body:
            return JSONResponse(status_code=exc.status_code, content=body)
        if not isinstance(body, (dict, list)):
            body = {"message": str(body) if body is not None else exc.message}
        return JSONResponse(status_code=exc.status_code, content={"error": body})
