"""Tests for the OpenCode transport."""

import json

import httpx
import pytest

from aichat_live.backends import get_transport
from aichat_live.backends.opencode import OpenCodeTransport, iter_sse_data, split_model
from aichat_live.provider import SendError, SendRequest, TransportError

BASE_URL = "http://opencode.test"
DIRECTORY = "/Users/testuser/dev/api-server"


def _transport(handler, **kwargs):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return OpenCodeTransport(BASE_URL, DIRECTORY, client=client, **kwargs)


async def _chunks(*parts):
    for part in parts:
        yield part


async def _collect(aiter):
    return [item async for item in aiter]


def _request(**kwargs):
    values = dict(session_id="ses_001", message_id="msg_1", text="hello", directory=DIRECTORY)
    values.update(kwargs)
    return SendRequest(**values)


class TestSseParsing:
    @pytest.mark.asyncio
    async def test_events_split_on_blank_lines(self):
        events = await _collect(iter_sse_data(_chunks(
            'data: {"type": "a"}\n\n',
            'data: {"type": "b"}\n\n',
        )))
        assert events == [{"type": "a"}, {"type": "b"}]

    @pytest.mark.asyncio
    async def test_event_split_across_chunks(self):
        events = await _collect(iter_sse_data(_chunks('data: {"ty', 'pe": "a"}', "\n", "\n")))
        assert events == [{"type": "a"}]

    @pytest.mark.asyncio
    async def test_crlf_split_across_chunks(self):
        events = await _collect(iter_sse_data(_chunks('data: {"type": "a"}\r', "\n\r\n")))
        assert events == [{"type": "a"}]

    @pytest.mark.asyncio
    async def test_multiline_data_joined(self):
        events = await _collect(iter_sse_data(_chunks('data: {"type":\ndata: "a"}\n\n')))
        assert events == [{"type": "a"}]

    @pytest.mark.asyncio
    async def test_comments_and_bad_json_skipped(self):
        events = await _collect(iter_sse_data(_chunks(
            ": keepalive\n\n",
            "event: ping\n\n",
            "data: not json\n\n",
            'data: {"type": "ok"}\n\n',
        )))
        assert events == [{"type": "ok"}]

    @pytest.mark.asyncio
    async def test_incomplete_trailing_event_dropped(self):
        events = await _collect(iter_sse_data(_chunks('data: {"type": "a"}\n\ndata: {"type": "b"}')))
        assert events == [{"type": "a"}]


class TestStream:
    @pytest.mark.asyncio
    async def test_stream_yields_envelopes(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            body = 'data: {"type": "server.connected", "properties": {}}\n\n'
            return httpx.Response(200, text=body, headers={"content-type": "text/event-stream"})

        transport = _transport(handler)
        events = await _collect(transport.stream())
        assert events == [{"type": "server.connected", "properties": {}}]
        assert seen["url"].startswith(f"{BASE_URL}/event?directory=")

    @pytest.mark.asyncio
    async def test_non_success_raises(self):
        transport = _transport(lambda request: httpx.Response(500))
        with pytest.raises(TransportError, match="SSE failed: 500"):
            await _collect(transport.stream())

    @pytest.mark.asyncio
    async def test_connection_error_raises(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        transport = _transport(handler)
        with pytest.raises(TransportError, match="connection refused"):
            await _collect(transport.stream())

    def test_reconnect_backoff(self):
        transport = OpenCodeTransport(BASE_URL, DIRECTORY, reconnect_delay=1.0,
                                      reconnect_max_delay=5.0, max_reconnects=4)
        assert [transport.reconnect_delay(n) for n in range(1, 6)] == [1.0, 2.0, 4.0, 5.0, None]


class TestSend:
    @pytest.mark.asyncio
    async def test_send_posts_prompt(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            return httpx.Response(204)

        transport = _transport(handler)
        result = await transport.send_message(_request(
            model="anthropic/claude-sonnet", system="Be brief.",
            parts=[{"type": "text", "text": "hello"}],
        ))
        assert result == {}
        assert seen["url"].startswith(f"{BASE_URL}/session/ses_001/prompt_async?directory=")
        assert seen["body"] == {
            "messageID": "msg_1",
            "parts": [{"type": "text", "text": "hello"}],
            "model": {"providerID": "anthropic", "modelID": "claude-sonnet"},
            "system": "Be brief.",
        }

    @pytest.mark.asyncio
    async def test_send_without_parts_sends_text(self):
        seen = {}

        def handler(request):
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"ok": True})

        transport = _transport(handler)
        assert await transport.send_message(_request()) == {"ok": True}
        assert seen["body"] == {"messageID": "msg_1", "parts": [{"type": "text", "text": "hello"}]}

    @pytest.mark.asyncio
    async def test_send_retries_then_succeeds(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(503 if len(calls) < 3 else 200)

        transport = _transport(handler, send_retry_delay=0)
        await transport.send_message(_request())
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_send_gives_up(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(500)

        transport = _transport(handler, send_retries=2, send_retry_delay=0)
        with pytest.raises(SendError):
            await transport.send_message(_request())
        assert len(calls) == 3


class TestFetchMessages:
    @pytest.mark.asyncio
    async def test_fetch_messages(self):
        items = [{"info": {"id": "msg_1"}, "parts": []}]
        transport = _transport(lambda request: httpx.Response(200, json=items))
        assert await transport.fetch_messages("ses_001") == items

    @pytest.mark.asyncio
    async def test_unexpected_body_is_empty(self):
        transport = _transport(lambda request: httpx.Response(200, json={"error": "nope"}))
        assert await transport.fetch_messages("ses_001") == []

    @pytest.mark.asyncio
    async def test_fetch_failure(self):
        transport = _transport(lambda request: httpx.Response(404))
        with pytest.raises(TransportError):
            await transport.fetch_messages("ses_missing")


class TestHelpers:
    def test_split_model(self):
        assert split_model("openai/gpt-4o") == {"providerID": "openai", "modelID": "gpt-4o"}
        assert split_model("openrouter/meta/llama") == {"providerID": "openrouter", "modelID": "meta/llama"}
        assert split_model("gpt-4o") is None
        assert split_model("/gpt") is None
        assert split_model(None) is None

    def test_registry(self):
        transport = get_transport(base_url=BASE_URL + "/", directory=DIRECTORY)
        assert isinstance(transport, OpenCodeTransport)
        assert transport.base_url == BASE_URL
        with pytest.raises(ValueError):
            get_transport("carrier-pigeon")
