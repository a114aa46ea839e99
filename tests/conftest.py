"""Pytest configuration and fixtures for testing."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Union

import httpx
import pytest

from nimbridge.config_loader import ProxySettings
from nimbridge.core import FallbackRouter, ModelState, UpstreamClient

UPSTREAM_BASE = "http://upstream.local/v1"

Reply = Union[httpx.Response, Exception, Callable[[httpx.Request], httpx.Response]]


def completion_body(content: Any = "hello", **extra: Any) -> dict[str, Any]:
    """Build an upstream non-streaming completion body."""
    message: dict[str, Any] = {"role": "assistant", "content": content}
    message.update(extra.pop("message_extra", {}))
    body: dict[str, Any] = {
        "id": "upstream-1",
        "object": "chat.completion",
        "choices": [{"index": 0, "message": message, "finish_reason": "stop"}],
        "usage": {"prompt_tokens": 3, "completion_tokens": 5, "total_tokens": 8},
    }
    body.update(extra)
    return body


def sse_lines(*events: Any, done: bool = True) -> bytes:
    """Encode events as upstream SSE bytes."""
    out = []
    for event in events:
        data = event if isinstance(event, str) else json.dumps(event)
        out.append(f"data: {data}\n\n")
    if done:
        out.append("data: [DONE]\n\n")
    return "".join(out).encode("utf-8")


def delta_event(content: Optional[str] = None, reasoning: Optional[str] = None, finish_reason: Optional[str] = None) -> dict[str, Any]:
    delta: dict[str, Any] = {}
    if content is not None:
        delta["content"] = content
    if reasoning is not None:
        delta["reasoning_content"] = reasoning
    return {
        "id": "chunk-1",
        "object": "chat.completion.chunk",
        "model": "upstream-model",
        "choices": [{"index": 0, "delta": delta, "finish_reason": finish_reason}],
    }


def parse_sse_payloads(raw: bytes) -> list[Any]:
    """Return decoded JSON (or raw strings) for every data line."""
    payloads: list[Any] = []
    for line in raw.decode("utf-8").split("\n"):
        if not line.startswith("data:"):
            continue
        data = line[5:].strip()
        try:
            payloads.append(json.loads(data))
        except json.JSONDecodeError:
            payloads.append(data)
    return payloads


@dataclass
class FakeUpstream:
    """Queue of canned replies served through an httpx.MockTransport.

    Each reply is used once per request in order; the last one repeats when
    the queue runs dry.
    """

    replies: list[Reply] = field(default_factory=list)
    requests: list[httpx.Request] = field(default_factory=list)

    def queue(self, *replies: Reply) -> "FakeUpstream":
        self.replies.extend(replies)
        return self

    @property
    def payloads(self) -> list[dict[str, Any]]:
        return [json.loads(request.content or b"{}") for request in self.requests]

    @property
    def models(self) -> list[str]:
        return [payload.get("model") for payload in self.payloads]

    def _handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if not self.replies:
            return httpx.Response(200, json=completion_body())
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, httpx.Response):
            # Fresh copy so a repeated reply is never a consumed response.
            return httpx.Response(
                reply.status_code, headers=reply.headers, content=reply.content
            )
        return reply(request)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self._handle)


@pytest.fixture
def fake_upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture
def make_settings() -> Callable[..., ProxySettings]:
    def _make(**overrides: Any) -> ProxySettings:
        values: dict[str, Any] = {
            "api_key": "test-key",
            "base_url": UPSTREAM_BASE,
            "primary_model": "primary",
            "fallback_models": ("fallback-a", "fallback-b"),
            "client_error_delay": 0.0,
            "server_error_delay": 0.0,
        }
        values.update(overrides)
        return ProxySettings(**values)

    return _make


class SleepRecorder:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def sleep_recorder() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def make_router(fake_upstream: FakeUpstream, sleep_recorder: SleepRecorder):
    def _make(primary: str = "primary", fallbacks: tuple[str, ...] = ("fallback-a", "fallback-b")):
        client = UpstreamClient(
            base_url=UPSTREAM_BASE, api_key="test-key", transport=fake_upstream.transport
        )
        state = ModelState(primary_model=primary, fallback_models=fallbacks)
        return FallbackRouter(
            client,
            state,
            client_error_delay=1.0,
            server_error_delay=2.0,
            sleep=sleep_recorder,
        )

    return _make
