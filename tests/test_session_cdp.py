from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable
from typing import Any

import pytest

from page_context.config import ContextConfig, DebugOptions
from page_context.errors import ProtocolError
from page_context.session_cdp import CdpConnection


class FakeWebSocket:
    """In-memory stand-in for a websockets client connection."""

    def __init__(self, responder: Callable[[dict[str, Any]], Any] | None = None) -> None:
        self.sent: list[dict[str, Any]] = []
        self.incoming: asyncio.Queue = asyncio.Queue()
        self.responder = responder
        self.closed = False

    async def send(self, raw: str) -> None:
        if self.closed:
            raise ConnectionError("socket closed")
        msg = json.loads(raw)
        self.sent.append(msg)
        if self.responder is not None:
            reply = self.responder(msg)
            if reply is not None:
                self.feed(reply)

    def feed(self, data: Any) -> None:
        self.incoming.put_nowait(data if isinstance(data, str) else json.dumps(data))

    def drop(self) -> None:
        self.incoming.put_nowait(None)

    async def close(self) -> None:
        self.closed = True
        self.drop()

    def __aiter__(self) -> FakeWebSocket:
        return self

    async def __anext__(self) -> str:
        item = await self.incoming.get()
        if item is None:
            raise StopAsyncIteration
        return item


def _ok(msg: dict[str, Any]) -> dict[str, Any]:
    if msg["method"] == "Target.attachToTarget":
        return {"id": msg["id"], "result": {"sessionId": "S1"}}
    return {"id": msg["id"], "result": {"echo": msg["method"]}}


async def _settle() -> None:
    for _ in range(5):
        await asyncio.sleep(0)


def _connection(responder: Callable[[dict[str, Any]], Any] | None = _ok, **cfg: Any) -> tuple[CdpConnection, FakeWebSocket]:
    ws = FakeWebSocket(responder)
    conn = CdpConnection(ws, config=ContextConfig(**cfg))
    conn.start()
    return conn, ws


def test_send_returns_result_and_frames_request() -> None:
    async def _main() -> None:
        conn, ws = _connection()
        result = await conn.root.send("Browser.getVersion")
        assert result == {"echo": "Browser.getVersion"}
        assert ws.sent == [{"id": 1, "method": "Browser.getVersion", "params": {}}]
        await conn.close()

    asyncio.run(_main())


def test_concurrent_requests_are_correlated_by_id() -> None:
    async def _main() -> None:
        conn, ws = _connection(responder=None)
        first = asyncio.ensure_future(conn.root.send("A.one"))
        second = asyncio.ensure_future(conn.root.send("A.two"))
        await _settle()
        assert [m["method"] for m in ws.sent] == ["A.one", "A.two"]

        ws.feed({"id": ws.sent[1]["id"], "result": {"n": 2}})
        ws.feed({"id": ws.sent[0]["id"], "result": {"n": 1}})
        assert await first == {"n": 1}
        assert await second == {"n": 2}
        await conn.close()

    asyncio.run(_main())


def test_error_response_raises_protocol_error() -> None:
    def responder(msg: dict[str, Any]) -> dict[str, Any]:
        return {"id": msg["id"], "error": {"code": -32000, "message": "No node with given id", "data": "x"}}

    async def _main() -> None:
        conn, _ws = _connection(responder)
        with pytest.raises(ProtocolError) as excinfo:
            await conn.root.send("DOM.getContentQuads", {"backendNodeId": 5})
        err = excinfo.value
        assert err.method == "DOM.getContentQuads"
        assert err.code == -32000
        assert err.data == {"data": "x"}
        assert str(err) == "[DOM.getContentQuads] No node with given id (code -32000)"
        await conn.close()

    asyncio.run(_main())


def test_malformed_result_raises_protocol_error() -> None:
    def responder(msg: dict[str, Any]) -> dict[str, Any]:
        return {"id": msg["id"], "result": ["not", "an", "object"]}

    async def _main() -> None:
        conn, _ws = _connection(responder)
        with pytest.raises(ProtocolError, match="malformed response"):
            await conn.root.send("DOM.getDocument")
        await conn.close()

    asyncio.run(_main())


def test_non_json_frames_are_dropped(caplog: pytest.LogCaptureFixture) -> None:
    async def _main() -> None:
        conn, ws = _connection(responder=None)
        pending = asyncio.ensure_future(conn.root.send("Page.enable"))
        await _settle()
        ws.feed("{not json")
        ws.feed("[1, 2]")
        ws.feed({"id": ws.sent[0]["id"], "result": {}})
        assert await pending == {}
        await conn.close()

    with caplog.at_level(logging.WARNING, logger="page_context.session"):
        asyncio.run(_main())
    messages = [r.getMessage() for r in caplog.records]
    assert any("non-JSON frame" in m for m in messages)
    assert any("non-object frame" in m for m in messages)


def test_send_times_out_with_protocol_error() -> None:
    async def _main() -> None:
        conn, _ws = _connection(responder=None)
        with pytest.raises(ProtocolError, match="timed out"):
            await conn.root.send("Page.navigate", {"url": "about:blank"}, timeout=0.05)
        assert conn._pending == {}
        await conn.close()

    asyncio.run(_main())


def test_detach_is_idempotent_and_sends_fail_afterwards() -> None:
    async def _main() -> None:
        conn, ws = _connection()
        root = conn.root
        await root.detach()
        await root.detach()
        assert root.detached
        assert conn.closed
        assert ws.closed
        with pytest.raises(ProtocolError, match="detached"):
            await root.send("DOM.enable")

    asyncio.run(_main())


def test_child_session_routes_requests_and_events() -> None:
    async def _main() -> None:
        conn, ws = _connection()
        child = await conn.root.attach("T1")
        assert child.session_id == "S1"
        assert child.target_id == "T1"
        assert ws.sent[0]["params"] == {"targetId": "T1", "flatten": True}

        await child.send("DOM.enable")
        assert ws.sent[-1]["sessionId"] == "S1"

        seen: list[dict[str, Any]] = []
        root_seen: list[dict[str, Any]] = []
        child.on("Page.loadEventFired", seen.append)
        conn.root.on("Page.loadEventFired", root_seen.append)
        ws.feed({"method": "Page.loadEventFired", "sessionId": "S1", "params": {"timestamp": 1}})
        await _settle()
        assert seen == [{"timestamp": 1}]
        assert root_seen == []

        child.off("Page.loadEventFired", seen.append)
        ws.feed({"method": "Page.loadEventFired", "sessionId": "S1", "params": {"timestamp": 2}})
        await _settle()
        assert seen == [{"timestamp": 1}]

        await child.detach()
        await child.detach()
        detach_calls = [m for m in ws.sent if m["method"] == "Target.detachFromTarget"]
        assert detach_calls == [{"id": detach_calls[0]["id"], "method": "Target.detachFromTarget", "params": {"sessionId": "S1"}}]
        assert child.detached
        assert not conn.root.detached
        with pytest.raises(ProtocolError):
            await child.send("DOM.enable")
        await conn.close()

    asyncio.run(_main())


def test_browser_initiated_detach_marks_child_inert() -> None:
    async def _main() -> None:
        conn, ws = _connection()
        child = await conn.root.attach("T1")
        ws.feed({"method": "Target.detachedFromTarget", "params": {"sessionId": "S1", "targetId": "T1"}})
        await _settle()
        assert child.detached
        with pytest.raises(ProtocolError, match="detached"):
            await child.send("DOM.enable")
        await conn.close()

    asyncio.run(_main())


def test_connection_loss_fails_pending_requests() -> None:
    async def _main() -> None:
        conn, ws = _connection(responder=None)
        pending = asyncio.ensure_future(conn.root.send("DOM.getDocument"))
        await _settle()
        ws.drop()
        with pytest.raises(ProtocolError, match="connection closed"):
            await pending
        assert conn.closed
        assert conn.root.detached

    asyncio.run(_main())


def test_failing_event_handler_is_logged_and_isolated(caplog: pytest.LogCaptureFixture) -> None:
    seen: list[int] = []

    def bad(_params: dict[str, Any]) -> None:
        raise RuntimeError({"why": "handler bug"})

    async def good_async(params: dict[str, Any]) -> None:
        seen.append(params["n"])

    async def _main() -> None:
        conn, ws = _connection()
        conn.root.on("Target.targetCreated", bad)
        conn.root.on("Target.targetCreated", good_async)
        ws.feed({"method": "Target.targetCreated", "params": {"n": 7}})
        await _settle()
        await conn.close()

    with caplog.at_level(logging.WARNING, logger="page_context.session"):
        asyncio.run(_main())
    assert seen == [7]
    assert any('{"why": "handler bug"}' in r.getMessage() for r in caplog.records)


def test_wait_for_event(caplog: pytest.LogCaptureFixture) -> None:
    async def _main() -> tuple[Any, Any]:
        conn, ws = _connection(debug=DebugOptions(trace_wait=True))
        waiter = asyncio.ensure_future(conn.root.wait_for_event("Page.frameNavigated", timeout=1.0))
        await _settle()
        ws.feed({"method": "Page.frameNavigated", "params": {"frame": {"id": "F"}}})
        got = await waiter
        missed = await conn.root.wait_for_event("Page.frameNavigated", timeout=0.01)
        await conn.close()
        return got, missed

    with caplog.at_level(logging.DEBUG, logger="page_context.session"):
        got, missed = asyncio.run(_main())
    assert got == {"frame": {"id": "F"}}
    assert missed is None
    assert any("timed out" in r.getMessage() for r in caplog.records)


def test_protocol_traffic_logging_redacts_input(caplog: pytest.LogCaptureFixture) -> None:
    async def _main() -> None:
        conn, _ws = _connection(debug=DebugOptions(cdp_sessions=True))
        await conn.root.send("Input.insertText", {"text": "hunter2"})
        await conn.close()

    with caplog.at_level(logging.DEBUG, logger="page_context.session"):
        asyncio.run(_main())
    text = "\n".join(r.getMessage() for r in caplog.records)
    assert "Input.insertText" in text
    assert "hunter2" not in text
