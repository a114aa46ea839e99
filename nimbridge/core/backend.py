"""Upstream provider client: one HTTP call per attempt."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional

import httpx

from .exceptions import UpstreamServerError

logger = logging.getLogger("nimbridge")

DEFAULT_BASE_URL = "https://integrate.api.nvidia.com/v1"
# Large contexts can legitimately take minutes on the provider side.
DEFAULT_TIMEOUT = 300.0
MODELS_TIMEOUT = 60.0


def decode_body(content: bytes) -> Any:
    """Return the upstream body as JSON when possible, else as text."""
    if not content:
        return None
    try:
        return json.loads(content)
    except (json.JSONDecodeError, UnicodeDecodeError):
        return content.decode("utf-8", errors="replace")


def format_httpx_error(exc: Any, url: Optional[str] = None, timeout: Optional[float] = None) -> str:
    """Produce a detailed, operator-facing description of an httpx error."""
    parts = [exc.__class__.__name__]
    message = str(exc).strip()
    if message:
        parts.append(message)

    request = None
    try:
        request = getattr(exc, "request", None)
    except RuntimeError:
        # httpx raises when .request was never attached
        request = None
    if request is not None:
        parts.append(f"request={request.method} {request.url}")
    elif url:
        parts.append(f"url={url}")

    if isinstance(exc, httpx.TimeoutException) and timeout:
        parts.append(f"timeout={timeout}s")

    return "; ".join(parts)


@dataclass
class UpstreamResult:
    """A successful (or client-error) upstream response for one model.

    For streaming calls the response body is still open and ``client`` owns
    the connection; call :meth:`aclose` once the body has been consumed.
    """

    model: str
    response: httpx.Response
    stream: bool = False
    client: Optional[httpx.AsyncClient] = None

    @property
    def status_code(self) -> int:
        return self.response.status_code

    def json(self) -> Any:
        return decode_body(self.response.content)

    @property
    def is_event_stream(self) -> bool:
        content_type = self.response.headers.get("content-type", "")
        return "text/event-stream" in content_type.lower()

    async def aclose(self) -> None:
        await self.response.aclose()
        if self.client is not None:
            await self.client.aclose()
            self.client = None


class UpstreamClient:
    """Talks to an OpenAI-compatible ``/chat/completions`` provider."""

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        api_key: str = "",
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url
        self.api_key = api_key
        self.timeout = timeout
        self.transport = transport

    @property
    def has_api_key(self) -> bool:
        return bool(self.api_key)

    def build_url(self, path: str) -> str:
        """Build the full URL for an upstream request."""
        base = self.base_url.rstrip("/")
        normalized_path = path or ""
        if not normalized_path.startswith("/"):
            normalized_path = f"/{normalized_path}"
        if base.endswith("/v1") and normalized_path.startswith("/v1/"):
            normalized_path = normalized_path[len("/v1"):]
        return f"{base}{normalized_path}"

    def build_headers(self, is_stream: bool = False) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            # Explicitly request uncompressed responses
            "Accept-Encoding": "identity",
        }
        if is_stream:
            headers["Accept"] = "text/event-stream"
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _client(self, timeout: httpx.Timeout | float) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=timeout, transport=self.transport, follow_redirects=True
        )

    @staticmethod
    def build_payload(model: str, payload: Mapping[str, Any]) -> dict[str, Any]:
        return {
            "model": model,
            "messages": payload.get("messages", []),
            "temperature": payload.get("temperature"),
            "max_tokens": payload.get("max_tokens"),
            "stream": bool(payload.get("stream")),
        }

    async def chat_completion(
        self, model: str, payload: Mapping[str, Any]
    ) -> UpstreamResult:
        """POST a non-streaming completion.

        Statuses below 500 are returned as-is so the caller can classify
        them; 5xx raises :class:`UpstreamServerError`.
        """
        url = self.build_url("/chat/completions")
        body = self.build_payload(model, {**payload, "stream": False})
        logger.debug("POST %s model=%s timeout=%ss", url, model, self.timeout)

        async with self._client(self.timeout) as client:
            resp = await client.post(url, headers=self.build_headers(), json=body)

        logger.debug("Received response from %s: status %s", url, resp.status_code)
        if resp.status_code >= 500:
            raise UpstreamServerError(
                f"{model} returned status {resp.status_code}",
                status_code=resp.status_code,
                body=decode_body(resp.content),
                model=model,
            )
        return UpstreamResult(model=model, response=resp)

    async def open_stream(
        self, model: str, payload: Mapping[str, Any]
    ) -> UpstreamResult:
        """POST a streaming completion and return once headers arrive.

        On 200 the body is left open for the caller. Other statuses below 500
        are read fully and the connection is released.
        """
        url = self.build_url("/chat/completions")
        body = self.build_payload(model, {**payload, "stream": True})
        # The read bound covers both the wait for headers and each gap between chunks.
        stream_timeout = httpx.Timeout(self.timeout)
        client = self._client(stream_timeout)
        try:
            request = client.build_request(
                "POST", url, headers=self.build_headers(is_stream=True), json=body
            )
            resp = await client.send(request, stream=True)
        except Exception as exc:
            logger.error(
                "Failed to send streaming request to %s: %s (type: %s)",
                url,
                exc,
                exc.__class__.__name__,
            )
            await client.aclose()
            raise

        if resp.status_code == 200:
            return UpstreamResult(model=model, response=resp, stream=True, client=client)

        try:
            await resp.aread()
        finally:
            await resp.aclose()
            await client.aclose()

        if resp.status_code >= 500:
            raise UpstreamServerError(
                f"{model} stream returned status {resp.status_code}",
                status_code=resp.status_code,
                body=decode_body(resp.content),
                model=model,
            )
        return UpstreamResult(model=model, response=resp, stream=True)

    async def list_models(self) -> httpx.Response:
        """Fetch the provider's own model catalogue."""
        url = self.build_url("/models")
        async with self._client(MODELS_TIMEOUT) as client:
            return await client.get(url, headers=self.build_headers())
