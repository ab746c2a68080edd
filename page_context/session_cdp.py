"""Asynchronous CDP transport.

- CdpConnection: one websocket, request/response correlation by id, event
  routing by flattened `sessionId`.
- CdpSession: the send/on/off/detach surface the rest of the package borrows.

Many requests may be in flight at once on one connection; each waits on its
own future. Nothing here retries. A detached session is permanently inert:
every later `send` fails with ProtocolError immediately.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
from collections.abc import Callable
from contextlib import suppress
from typing import Any, Protocol

from .config import ContextConfig
from .diagnostics import format_diagnostic
from .errors import ProtocolError
from .redaction import redact_protocol_params
from .session_helpers import browser_ws_url

_LOGGER = logging.getLogger("page_context.session")

EventHandler = Callable[[dict[str, Any]], Any]


class ProtocolSession(Protocol):
    """Narrow surface the DOM helpers need; `CdpSession` and test fakes both satisfy it."""

    @property
    def detached(self) -> bool: ...

    async def send(self, method: str, params: dict[str, Any] | None = None) -> dict[str, Any]: ...

    def on(self, event: str, handler: EventHandler) -> None: ...

    def off(self, event: str, handler: EventHandler) -> None: ...

    async def detach(self) -> None: ...


def _import_websockets():
    try:
        from websockets.asyncio.client import connect

        return connect
    except ImportError as exc:
        raise RuntimeError("CDP transport requires the 'websockets' package (pip install websockets)") from exc


class CdpConnection:
    """Low-level CDP websocket connection shared by a root session and its children."""

    def __init__(self, ws: Any, *, config: ContextConfig | None = None, url: str = "") -> None:
        self.ws = ws
        self.url = url
        self.config = config or ContextConfig()
        self._next_id = 1
        self._pending: dict[int, tuple[asyncio.Future, str, str | None]] = {}
        self._sessions: dict[str | None, CdpSession] = {}
        self._reader: asyncio.Task | None = None
        self._closed = False
        self.root = CdpSession(self, None)

    @classmethod
    async def connect(cls, ws_url: str, *, config: ContextConfig | None = None) -> CdpConnection:
        connect = _import_websockets()
        try:
            ws = await connect(ws_url, max_size=None)
        except Exception as exc:  # noqa: BLE001
            raise ProtocolError(method="connect", reason=format_diagnostic(exc)) from exc
        conn = cls(ws, config=config, url=ws_url)
        conn.start()
        return conn

    @classmethod
    async def connect_port(
        cls, host: str = "127.0.0.1", port: int = 9222, *, config: ContextConfig | None = None
    ) -> CdpConnection:
        ws_url = await asyncio.to_thread(browser_ws_url, host, port)
        return await cls.connect(ws_url, config=config)

    @property
    def closed(self) -> bool:
        return self._closed

    def start(self) -> None:
        if self._reader is None:
            self._reader = asyncio.get_running_loop().create_task(self._read_loop(), name="cdp-reader")

    def _register(self, session: CdpSession) -> None:
        self._sessions[session.session_id] = session

    def _unregister(self, session: CdpSession) -> None:
        if self._sessions.get(session.session_id) is session:
            del self._sessions[session.session_id]

    async def send(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        *,
        session_id: str | None = None,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        if self._closed:
            raise ProtocolError(method=method, reason="connection is closed")

        msg_id = self._next_id
        self._next_id += 1
        message: dict[str, Any] = {"id": msg_id, "method": method, "params": params or {}}
        if session_id is not None:
            message["sessionId"] = session_id

        fut: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[msg_id] = (fut, method, session_id)

        if self.config.debug.cdp_sessions:
            _LOGGER.debug(
                "CDP -> #%d %s %s",
                msg_id,
                method,
                json.dumps(redact_protocol_params(method, params or {}), ensure_ascii=False, default=str),
            )

        try:
            await self.ws.send(json.dumps(message))
        except Exception as exc:  # noqa: BLE001
            self._pending.pop(msg_id, None)
            raise ProtocolError(method=method, reason=f"send failed: {format_diagnostic(exc)}") from exc

        wait = self.config.cdp_timeout if timeout is None else timeout
        try:
            return await asyncio.wait_for(fut, timeout=wait)
        except asyncio.TimeoutError as exc:
            raise ProtocolError(method=method, reason=f"response timed out after {wait:g}s") from exc
        finally:
            self._pending.pop(msg_id, None)

    async def _read_loop(self) -> None:
        reason = "connection closed"
        try:
            async for raw in self.ws:
                self._dispatch(raw)
        except asyncio.CancelledError:
            reason = "connection reader cancelled"
            raise
        except Exception as exc:  # noqa: BLE001
            reason = f"connection lost: {format_diagnostic(exc, max_chars=self.config.diagnostic_max_chars)}"
            _LOGGER.warning("CDP reader stopped: %s", reason)
        finally:
            self._closed = True
            self._fail_pending(reason)
            for session in list(self._sessions.values()):
                session._mark_detached()

    def _dispatch(self, raw: Any) -> None:
        try:
            data = json.loads(raw)
        except (TypeError, ValueError):
            _LOGGER.warning("CDP: dropping non-JSON frame: %s", format_diagnostic(raw, max_chars=200))
            return
        if not isinstance(data, dict):
            _LOGGER.warning("CDP: dropping non-object frame: %s", format_diagnostic(data, max_chars=200))
            return

        msg_id = data.get("id")
        if msg_id is not None:
            entry = self._pending.get(msg_id) if isinstance(msg_id, int) else None
            if entry is None:
                return
            fut, method, _session_id = entry
            if fut.done():
                return
            if "error" in data:
                err = data.get("error")
                err = err if isinstance(err, dict) else {"message": err}
                code = err.get("code")
                fut.set_exception(
                    ProtocolError(
                        method=method,
                        reason=format_diagnostic(err.get("message") or err, max_chars=self.config.diagnostic_max_chars),
                        code=code if isinstance(code, int) else None,
                        data={k: v for k, v in err.items() if k not in {"message", "code"}},
                    )
                )
                return
            result = data.get("result", {})
            if not isinstance(result, dict):
                fut.set_exception(ProtocolError(method=method, reason="malformed response: result is not an object"))
                return
            if self.config.debug.cdp_sessions:
                _LOGGER.debug("CDP <- #%d %s (%d keys)", msg_id, method, len(result))
            fut.set_result(result)
            return

        event = data.get("method")
        if isinstance(event, str):
            params = data.get("params")
            params = params if isinstance(params, dict) else {}
            session = self._sessions.get(data.get("sessionId"))
            if session is not None:
                session._emit(event, params)
            if event == "Target.detachedFromTarget":
                self._target_detached(params.get("sessionId"))

    def _target_detached(self, session_id: Any) -> None:
        # Browser-initiated detach (tab closed, target crashed).
        if not isinstance(session_id, str):
            return
        session = self._sessions.get(session_id)
        if session is None:
            return
        session._mark_detached()
        self._unregister(session)
        self._fail_pending(f"session {session_id} detached by browser", session_id=session_id)

    def _fail_pending(self, reason: str, *, session_id: Any = ...) -> None:
        for msg_id, (fut, method, sid) in list(self._pending.items()):
            if session_id is not ... and sid != session_id:
                continue
            if not fut.done():
                fut.set_exception(ProtocolError(method=method, reason=reason))
            self._pending.pop(msg_id, None)

    async def close(self) -> None:
        """Close the socket; pending requests fail with ProtocolError."""
        if self._closed and self._reader is None:
            return
        self._closed = True
        self._fail_pending("connection closed")
        with suppress(Exception):
            await self.ws.close()
        reader = self._reader
        self._reader = None
        if reader is not None and not reader.done():
            reader.cancel()
            with suppress(asyncio.CancelledError, Exception):
                await reader
        for session in list(self._sessions.values()):
            session._mark_detached()


class CdpSession:
    """One CDP target session (root browser session or a flattened child).

    The page-control layer owns it; DOM helpers only borrow it.
    """

    def __init__(self, connection: CdpConnection, session_id: str | None, *, target_id: str | None = None) -> None:
        self.connection = connection
        self.session_id = session_id
        self.target_id = target_id
        self._handlers: dict[str, list[EventHandler]] = {}
        self._detached = False
        self._tasks: set[asyncio.Task] = set()
        connection._register(self)

    @property
    def id(self) -> str:
        return self.session_id or "root"

    @property
    def detached(self) -> bool:
        return self._detached

    async def send(self, method: str, params: dict[str, Any] | None = None, *, timeout: float | None = None) -> dict[str, Any]:
        if self._detached:
            raise ProtocolError(method=method, reason=f"session {self.id} is detached")
        return await self.connection.send(method, params, session_id=self.session_id, timeout=timeout)

    def on(self, event: str, handler: EventHandler) -> None:
        self._handlers.setdefault(event, []).append(handler)

    def off(self, event: str, handler: EventHandler) -> None:
        handlers = self._handlers.get(event)
        if not handlers:
            return
        with suppress(ValueError):
            handlers.remove(handler)
        if not handlers:
            del self._handlers[event]

    def _emit(self, event: str, params: dict[str, Any]) -> None:
        for handler in list(self._handlers.get(event, ())):
            try:
                result = handler(params)
            except Exception as exc:  # noqa: BLE001
                _LOGGER.warning("CDP event handler for %s failed: %s", event, format_diagnostic(exc))
                continue
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._tasks.add(task)
                task.add_done_callback(self._handler_done)

    def _handler_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            _LOGGER.warning("CDP async event handler failed: %s", format_diagnostic(exc))

    async def wait_for_event(self, event: str, *, timeout: float = 10.0) -> dict[str, Any] | None:
        """Wait for the next occurrence of `event`; None on timeout."""
        fut: asyncio.Future = asyncio.get_running_loop().create_future()

        def _handler(params: dict[str, Any]) -> None:
            if not fut.done():
                fut.set_result(params)

        trace = self.connection.config.debug.trace_wait
        if trace:
            _LOGGER.debug("[%s] waiting for %s (timeout %.1fs)", self.id, event, timeout)
        self.on(event, _handler)
        try:
            params = await asyncio.wait_for(fut, timeout=timeout)
        except asyncio.TimeoutError:
            if trace:
                _LOGGER.debug("[%s] wait for %s timed out", self.id, event)
            return None
        finally:
            self.off(event, _handler)
        if trace:
            _LOGGER.debug("[%s] received %s", self.id, event)
        return params

    async def attach(self, target_id: str) -> CdpSession:
        """Attach to a target over this connection (flattened) and return its session."""
        result = await self.send("Target.attachToTarget", {"targetId": target_id, "flatten": True})
        child_id = result.get("sessionId")
        if not isinstance(child_id, str) or not child_id:
            raise ProtocolError(method="Target.attachToTarget", reason="malformed response: missing sessionId")
        return CdpSession(self.connection, child_id, target_id=target_id)

    def _mark_detached(self) -> None:
        self._detached = True
        self._handlers.clear()

    async def detach(self) -> None:
        """Idempotent. Child sessions detach from their target; the root closes the socket."""
        if self._detached:
            return
        self._mark_detached()
        self.connection._fail_pending(f"session {self.id} is detached", session_id=self.session_id)
        self.connection._unregister(self)
        if self.session_id is None:
            await self.connection.close()
            return
        root = self.connection.root
        if root.detached:
            return
        try:
            await root.send("Target.detachFromTarget", {"sessionId": self.session_id})
        except ProtocolError as exc:
            _LOGGER.warning("Detach of session %s failed: %s", self.id, format_diagnostic(exc))


__all__ = ["CdpConnection", "CdpSession", "EventHandler", "ProtocolSession"]
