"""Tests for the upstream client."""

import httpx
import pytest

from conftest import UPSTREAM_BASE, completion_body, sse_lines
from nimbridge.core.backend import UpstreamClient, decode_body, format_httpx_error
from nimbridge.core.exceptions import UpstreamServerError


class TestUpstreamClientBasics:
    """Tests for URL and header building."""

    def test_build_url_joins_base_and_path(self):
        client = UpstreamClient(base_url="https://api.example.com/v1/")
        assert client.build_url("/chat/completions") == "https://api.example.com/v1/chat/completions"

    def test_build_url_drops_duplicate_v1(self):
        client = UpstreamClient(base_url="https://api.example.com/v1")
        assert client.build_url("/v1/models") == "https://api.example.com/v1/models"

    def test_build_url_adds_leading_slash(self):
        client = UpstreamClient(base_url="https://api.example.com")
        assert client.build_url("models") == "https://api.example.com/models"

    def test_headers_carry_bearer_key(self):
        headers = UpstreamClient(api_key="secret").build_headers()
        assert headers["Authorization"] == "Bearer secret"
        assert headers["Content-Type"] == "application/json"
        assert headers["Accept-Encoding"] == "identity"

    def test_headers_without_key(self):
        client = UpstreamClient(api_key="")
        assert "Authorization" not in client.build_headers()
        assert client.has_api_key is False

    def test_stream_headers_accept_event_stream(self):
        assert UpstreamClient().build_headers(is_stream=True)["Accept"] == "text/event-stream"


class TestDecodeBody:
    """Tests for decode_body."""

    def test_json(self):
        assert decode_body(b'{"a": 1}') == {"a": 1}

    def test_text(self):
        assert decode_body(b"plain") == "plain"

    def test_empty(self):
        assert decode_body(b"") is None


class TestFormatHttpxError:
    """Tests for format_httpx_error."""

    def test_includes_url_when_request_missing(self):
        message = format_httpx_error(httpx.ConnectError("refused"), url="http://x/y")
        assert message.startswith("ConnectError; refused")
        assert "url=http://x/y" in message

    def test_includes_timeout(self):
        message = format_httpx_error(httpx.ReadTimeout("slow"), timeout=300.0)
        assert "timeout=300.0s" in message


def _client(handler):
    return UpstreamClient(
        base_url=UPSTREAM_BASE, api_key="k", transport=httpx.MockTransport(handler)
    )


@pytest.mark.asyncio
async def test_chat_completion_returns_client_errors():
    client = _client(lambda request: httpx.Response(422, json={"error": "bad"}))
    result = await client.chat_completion("m", {"messages": []})
    assert result.status_code == 422
    assert result.json() == {"error": "bad"}


@pytest.mark.asyncio
async def test_chat_completion_raises_on_server_error():
    client = _client(lambda request: httpx.Response(502, text="bad gateway"))
    with pytest.raises(UpstreamServerError) as exc_info:
        await client.chat_completion("m", {"messages": []})
    assert exc_info.value.status_code == 502
    assert exc_info.value.body == "bad gateway"
    assert exc_info.value.model == "m"


@pytest.mark.asyncio
async def test_chat_completion_forces_non_streaming_payload():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json=completion_body())

    client = _client(handler)
    await client.chat_completion("m", {"messages": [], "stream": True, "temperature": 1, "max_tokens": 5})
    assert b'"stream": false' in seen[0].content or b'"stream":false' in seen[0].content


@pytest.mark.asyncio
async def test_open_stream_reads_client_error_body():
    client = _client(lambda request: httpx.Response(429, json={"error": "slow"}))
    result = await client.open_stream("m", {"messages": []})
    assert result.status_code == 429
    assert result.json() == {"error": "slow"}
    assert result.client is None


@pytest.mark.asyncio
async def test_open_stream_raises_on_server_error():
    client = _client(lambda request: httpx.Response(500, json={"error": "boom"}))
    with pytest.raises(UpstreamServerError):
        await client.open_stream("m", {"messages": []})


@pytest.mark.asyncio
async def test_open_stream_success_keeps_body_open():
    raw = sse_lines()
    client = _client(
        lambda request: httpx.Response(200, headers={"content-type": "text/event-stream"}, content=raw)
    )
    result = await client.open_stream("m", {"messages": []})
    assert result.client is not None
    assert await result.response.aread() == raw
    await result.aclose()
    assert result.client is None


@pytest.mark.asyncio
async def test_list_models_hits_models_endpoint():
    seen = []

    def handler(request):
        seen.append(str(request.url))
        return httpx.Response(200, json={"data": []})

    resp = await _client(handler).list_models()
    assert resp.status_code == 200
    assert seen == [f"{UPSTREAM_BASE}/models"]
