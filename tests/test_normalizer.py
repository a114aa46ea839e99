"""Tests for non-streaming response normalization."""

from conftest import completion_body
from nimbridge.core.normalizer import (
    EMPTY_CONTENT,
    normalize_completion,
    normalize_usage,
    wrap_reasoning,
)


class TestNormalizeCompletion:
    """Tests for normalize_completion."""

    def test_extracts_content_and_usage(self):
        result = normalize_completion(completion_body("Hello there"), "label")
        assert result["object"] == "chat.completion"
        assert result["model"] == "label"
        assert result["id"].startswith("chatcmpl-")
        assert isinstance(result["created"], int)
        assert result["choices"] == [
            {
                "index": 0,
                "message": {"role": "assistant", "content": "Hello there"},
                "finish_reason": "stop",
            }
        ]
        assert result["usage"] == {"prompt_tokens": 3, "completion_tokens": 5, "total_tokens": 8}

    def test_empty_content_becomes_single_space(self):
        result = normalize_completion(completion_body(""), "m")
        assert result["choices"][0]["message"]["content"] == EMPTY_CONTENT

    def test_missing_choices_gives_placeholders(self):
        result = normalize_completion({}, "m")
        assert result["choices"][0]["message"]["content"] == " "
        assert result["choices"][0]["finish_reason"] == "stop"
        assert result["usage"] == {"prompt_tokens": 0, "completion_tokens": 0, "total_tokens": 0}

    def test_non_dict_body_is_tolerated(self):
        result = normalize_completion("oops", "m")
        assert result["choices"][0]["message"]["content"] == " "

    def test_finish_reason_passthrough(self):
        body = completion_body("x")
        body["choices"][0]["finish_reason"] = "length"
        assert normalize_completion(body, "m")["choices"][0]["finish_reason"] == "length"

    def test_reasoning_dropped_when_hidden(self):
        body = completion_body("answer", message_extra={"reasoning_content": "pondering"})
        result = normalize_completion(body, "m", show_reasoning=False)
        assert result["choices"][0]["message"]["content"] == "answer"

    def test_reasoning_fused_when_shown(self):
        body = completion_body("answer", message_extra={"reasoning_content": "pondering"})
        result = normalize_completion(body, "m", show_reasoning=True)
        assert result["choices"][0]["message"]["content"] == "<think>pondering</think>\n\nanswer"

    def test_reasoning_only_message(self):
        body = completion_body(None, message_extra={"reasoning_content": "pondering"})
        result = normalize_completion(body, "m", show_reasoning=True)
        assert result["choices"][0]["message"]["content"] == "<think>pondering</think>"


class TestNormalizeUsage:
    """Tests for usage normalization."""

    def test_fills_total_from_parts(self):
        assert normalize_usage({"prompt_tokens": 2, "completion_tokens": 4}) == {
            "prompt_tokens": 2,
            "completion_tokens": 4,
            "total_tokens": 6,
        }

    def test_ignores_garbage_values(self):
        assert normalize_usage({"prompt_tokens": "abc"})["prompt_tokens"] == 0

    def test_non_mapping_is_zero(self):
        assert normalize_usage(None) == {"prompt_tokens": 0, "completion_tokens": 0, "total_tokens": 0}


def test_wrap_reasoning_without_content():
    assert wrap_reasoning("r", None) == "<think>r</think>"
