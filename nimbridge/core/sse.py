"""SSE (Server-Sent Events) line buffering and streaming reasoning fusion."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Optional

import httpx

from .backend import UpstreamResult
from .normalizer import THINK_CLOSE, THINK_OPEN

logger = logging.getLogger("nimbridge")

DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"
REASONING_FIELD = "reasoning_content"


class SSELineBuffer:
    """Reassembles complete lines from arbitrarily split byte chunks."""

    def __init__(self) -> None:
        self._pending = b""

    def feed(self, chunk: bytes) -> list[str]:
        if not chunk:
            return []
        data = self._pending + chunk
        parts = data.split(b"\n")
        # The last element is either b"" or an incomplete line.
        self._pending = parts.pop()
        return [self._decode(part) for part in parts]

    def flush(self) -> Optional[str]:
        if not self._pending:
            return None
        leftover = self._pending
        self._pending = b""
        return self._decode(leftover)

    @staticmethod
    def _decode(raw: bytes) -> str:
        # Splitting on bytes keeps multi-byte characters intact across chunks.
        text = raw.decode("utf-8", errors="replace")
        if text.endswith("\r"):
            text = text[:-1]
        return text


@dataclass
class ReasoningChoiceState:
    inside_reasoning: bool = False


@dataclass
class StreamNormalizer:
    """Rewrites provider SSE lines into a single visible content stream.

    With ``show_reasoning`` the ``reasoning_content`` deltas are folded into
    ``content`` between ``<think>`` and ``</think>``; without it the
    reasoning field is dropped. Lines that are not JSON pass through as-is.
    """

    show_reasoning: bool = False
    choices: dict[int, ReasoningChoiceState] = field(default_factory=dict)
    saw_done: bool = False
    _buffer: SSELineBuffer = field(default_factory=SSELineBuffer)
    _envelope: dict[str, Any] = field(default_factory=dict)

    def feed(self, chunk: bytes) -> bytes:
        out: list[str] = []
        for line in self._buffer.feed(chunk):
            out.extend(self.process_line(line))
        return "".join(out).encode("utf-8")

    def finish(self) -> bytes:
        out: list[str] = []
        leftover = self._buffer.flush()
        if leftover:
            out.extend(self.process_line(leftover))
        if not self.saw_done:
            out.extend(self._close_open_segments())
            out.append(f"{DATA_PREFIX} {DONE_SENTINEL}\n\n")
            self.saw_done = True
        return "".join(out).encode("utf-8")

    def process_line(self, line: str) -> list[str]:
        if not line.startswith(DATA_PREFIX):
            return [f"{line}\n"]

        data = line[len(DATA_PREFIX):].strip()
        if data == DONE_SENTINEL:
            out = self._close_open_segments()
            self.saw_done = True
            out.append(f"{line}\n")
            return out

        try:
            payload = json.loads(data)
        except json.JSONDecodeError:
            logger.debug("Forwarding unparseable SSE line unchanged: %r", line[:200])
            return [f"{line}\n"]
        if not isinstance(payload, dict):
            return [f"{line}\n"]

        self._remember_envelope(payload)
        self._apply_event(payload)
        return [f"{DATA_PREFIX} {json.dumps(payload, ensure_ascii=False)}\n"]

    def _state(self, index: int) -> ReasoningChoiceState:
        state = self.choices.get(index)
        if state is None:
            state = ReasoningChoiceState()
            self.choices[index] = state
        return state

    def _apply_event(self, event: dict[str, Any]) -> None:
        choices = event.get("choices")
        if not isinstance(choices, list):
            return
        for choice in choices:
            if not isinstance(choice, dict):
                continue
            delta = choice.get("delta")
            if not isinstance(delta, dict):
                continue

            if not self.show_reasoning:
                delta.pop(REASONING_FIELD, None)
                continue

            try:
                index = int(choice.get("index", 0))
            except (TypeError, ValueError):
                index = 0
            state = self._state(index)
            reasoning = delta.pop(REASONING_FIELD, None)
            content = delta.get("content")
            new_content: Optional[str] = None

            if isinstance(reasoning, str) and reasoning:
                prefix = "" if state.inside_reasoning else THINK_OPEN
                if isinstance(content, str) and content:
                    new_content = f"{prefix}{reasoning}{THINK_CLOSE}{content}"
                    state.inside_reasoning = False
                else:
                    new_content = f"{prefix}{reasoning}"
                    state.inside_reasoning = True
            elif isinstance(content, str) and content and state.inside_reasoning:
                new_content = f"{THINK_CLOSE}{content}"
                state.inside_reasoning = False

            if new_content is not None:
                delta["content"] = new_content

            if state.inside_reasoning and choice.get("finish_reason") is not None:
                delta["content"] = (delta.get("content") or "") + THINK_CLOSE
                state.inside_reasoning = False

    def _remember_envelope(self, payload: dict[str, Any]) -> None:
        envelope = {key: value for key, value in payload.items() if key in ("id", "object", "created", "model")}
        if envelope:
            self._envelope = envelope

    def _close_open_segments(self) -> list[str]:
        out: list[str] = []
        for index, state in self.choices.items():
            if not state.inside_reasoning:
                continue
            state.inside_reasoning = False
            event = dict(self._envelope)
            event["choices"] = [
                {"index": index, "delta": {"content": THINK_CLOSE}, "finish_reason": None}
            ]
            out.append(f"{DATA_PREFIX} {json.dumps(event, ensure_ascii=False)}\n\n")
        return out


async def iter_normalized_stream(
    result: UpstreamResult, normalizer: StreamNormalizer
) -> AsyncIterator[bytes]:
    """Relay an open upstream SSE body through ``normalizer``.

    An upstream read error ends the outbound stream instead of raising into
    the server; the upstream connection is always released.
    """
    chunk_count = 0
    try:
        try:
            async for chunk in result.response.aiter_bytes():
                if not chunk:
                    continue
                chunk_count += 1
                out = normalizer.feed(chunk)
                if out:
                    yield out
        except (httpx.HTTPError, httpx.StreamError) as exc:
            logger.error(
                "Upstream stream from %s failed after %d chunks: %s (type: %s)",
                result.model,
                chunk_count,
                exc,
                exc.__class__.__name__,
            )
            return
        tail = normalizer.finish()
        if tail:
            yield tail
    finally:
        logger.debug("Stream from %s closed after %d chunks", result.model, chunk_count)
        await result.aclose()
