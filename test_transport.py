"""
Tests for the SSE transport: line splitting, framing, retries and errors.
"""

import json

import httpx
import pytest

from transport import (
    BedrockEventSource,
    SseFramer,
    SseLineBuffer,
    SseTransport,
    TransportError,
)


def _sse_body(*payloads) -> bytes:
    return "".join(f"data: {json.dumps(p)}\n\n" for p in payloads).encode() + b"data: [DONE]\n\n"


def _transport(handler, **kwargs) -> SseTransport:
    client = httpx.Client(transport=httpx.MockTransport(handler))
    kwargs.setdefault("sleep", lambda _s: None)
    return SseTransport(client=client, **kwargs)


def test_line_buffer_keeps_split_multibyte_char():
    buf = SseLineBuffer()
    encoded = "data: {\"t\": \"héllo\"}\n".encode("utf-8")
    split = encoded.index("é".encode("utf-8")) + 1
    assert buf.feed(encoded[:split]) == []
    assert buf.feed(encoded[split:]) == ['data: {"t": "héllo"}']


def test_line_buffer_flush_returns_trailing_line():
    buf = SseLineBuffer()
    assert buf.feed(b"data: 1\r\ndata: 2") == ["data: 1"]
    assert buf.flush() == ["data: 2"]
    assert buf.flush() == []


def test_framer_skips_comments_done_and_malformed():
    framer = SseFramer()
    assert framer.push(": keep-alive") is None
    assert framer.push("data: [DONE]") is None
    assert framer.push("data: {not json") is None
    event = framer.push('data: {"a": 1}')
    assert event.data == {"a": 1}
    assert event.event == "message"


def test_framer_named_event_and_bare_json():
    framer = SseFramer()
    assert framer.push("event: content_block_delta") is None
    event = framer.push('data: {"x": true}')
    assert event.event == "content_block_delta"
    framer.push("")
    bare = framer.push('{"y": 2}')
    assert bare.data == {"y": 2}
    assert bare.event == "message"


def test_open_streams_events():
    def handler(request):
        assert request.headers["accept"] == "text/event-stream"
        assert json.loads(request.content) == {"hello": "world"}
        return httpx.Response(200, content=_sse_body({"n": 1}, {"n": 2}))

    source = _transport(handler).open("https://example.test/chat", None, {"hello": "world"})
    assert [e.data["n"] for e in source] == [1, 2]


def test_open_retries_retryable_status():
    calls = []
    sleeps = []

    def handler(request):
        calls.append(1)
        if len(calls) < 3:
            return httpx.Response(503, text="busy")
        return httpx.Response(200, content=_sse_body({"ok": True}))

    transport = _transport(handler, max_retries=3, retry_backoff=0.5, sleep=sleeps.append)
    source = transport.open("https://example.test/chat", {}, {})
    assert [e.data for e in source] == [{"ok": True}]
    assert len(calls) == 3
    assert sleeps == [0.5, 1.0]


def test_open_raises_http_error_with_code_and_body():
    def handler(request):
        return httpx.Response(401, text="bad key")

    with pytest.raises(TransportError) as excinfo:
        _transport(handler).open("https://example.test/chat", {}, {})
    assert excinfo.value.code == 401
    assert "bad key" in excinfo.value.message


def test_open_gives_up_after_max_retries():
    calls = []

    def handler(request):
        calls.append(1)
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(TransportError) as excinfo:
        _transport(handler, max_retries=2).open("https://example.test/chat", {}, {})
    assert len(calls) == 3
    assert excinfo.value.code is None
    assert isinstance(excinfo.value.cause, httpx.ConnectError)


def test_get_json():
    def handler(request):
        return httpx.Response(200, json={"data": [{"id": "m1"}]})

    assert _transport(handler).get_json("https://example.test/models") == {"data": [{"id": "m1"}]}


def test_closed_source_ends_quietly():
    def handler(request):
        return httpx.Response(200, content=_sse_body({"n": 1}, {"n": 2}))

    source = _transport(handler).open("https://example.test/chat", {}, {})
    source.close()
    assert source.closed
    assert list(source) == []


def test_bedrock_event_source_decodes_chunks():
    stream = [
        {"chunk": {"bytes": json.dumps({"type": "message_start"}).encode()}},
        {"other": {}},
        {"chunk": {"bytes": b"not json"}},
        {"chunk": {"bytes": json.dumps({"type": "content_block_delta", "delta": {}}).encode()}},
    ]
    events = list(BedrockEventSource(stream))
    assert [e.event for e in events] == ["message_start", "content_block_delta"]
