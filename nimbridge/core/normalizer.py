"""Reshape provider completions into the OpenAI chat-completion contract."""

from __future__ import annotations

import time
from typing import Any, Mapping, Optional

THINK_TAG = "think"
THINK_OPEN = f"<{THINK_TAG}>"
THINK_CLOSE = f"</{THINK_TAG}>"

# Some clients treat an empty string as "no reply" and render an error.
EMPTY_CONTENT = " "
DEFAULT_FINISH_REASON = "stop"
USAGE_FIELDS = ("prompt_tokens", "completion_tokens", "total_tokens")


def completion_id() -> str:
    return f"chatcmpl-{int(time.time() * 1000)}"


def wrap_reasoning(reasoning: str, content: Optional[str]) -> str:
    prefix = f"{THINK_OPEN}{reasoning}{THINK_CLOSE}"
    if content:
        return f"{prefix}\n\n{content}"
    return prefix


def zero_usage() -> dict[str, int]:
    return {field: 0 for field in USAGE_FIELDS}


def normalize_usage(usage: Any) -> dict[str, int]:
    """Keep the three OpenAI usage counters, zero-filling what is missing."""
    if not isinstance(usage, Mapping):
        return zero_usage()
    normalized: dict[str, int] = {}
    for field in USAGE_FIELDS:
        value = usage.get(field)
        try:
            normalized[field] = int(value) if value is not None else 0
        except (TypeError, ValueError):
            normalized[field] = 0
    if not normalized["total_tokens"]:
        normalized["total_tokens"] = normalized["prompt_tokens"] + normalized["completion_tokens"]
    return normalized


def _first_choice(body: Mapping[str, Any]) -> Mapping[str, Any]:
    choices = body.get("choices")
    if isinstance(choices, list) and choices and isinstance(choices[0], Mapping):
        return choices[0]
    return {}


def normalize_completion(
    body: Any, model_label: str, show_reasoning: bool = False
) -> dict[str, Any]:
    """Build the response callers expect from an upstream JSON body."""
    if not isinstance(body, Mapping):
        body = {}
    choice = _first_choice(body)
    message = choice.get("message")
    if not isinstance(message, Mapping):
        message = {}

    content = message.get("content")
    if not isinstance(content, str):
        content = ""
    reasoning = message.get("reasoning_content")
    if show_reasoning and isinstance(reasoning, str) and reasoning:
        content = wrap_reasoning(reasoning, content)
    if not content:
        content = EMPTY_CONTENT

    finish_reason = choice.get("finish_reason")
    if not isinstance(finish_reason, str) or not finish_reason:
        finish_reason = DEFAULT_FINISH_REASON

    return {
        "id": completion_id(),
        "object": "chat.completion",
        "created": int(time.time()),
        "model": model_label,
        "choices": [
            {
                "index": 0,
                "message": {"role": "assistant", "content": content},
                "finish_reason": finish_reason,
            }
        ],
        "usage": normalize_usage(body.get("usage")),
    }
