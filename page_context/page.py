"""Page handle over a CDP target session.

Exposes what the message builder reads (current URL, open tabs, scroll
position) and the page mutations that must invalidate the DOM cache.
Every mutation runs inside `DomStateCache.mutation()`, so the cache is
dropped whether the mutation succeeds, fails, or is cancelled.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any, Protocol

from .config import ContextConfig
from .diagnostics import format_diagnostic
from .dom.cache import DomStateCache
from .dom.snapshot import DomStateSnapshot
from .errors import ProtocolError
from .messages.types import OpenTab, PageState
from .redaction import redact_url_brief

_LOGGER = logging.getLogger("page_context.page")

_SCROLL_INFO_JS = (
    "(() => { const el = document.scrollingElement || document.documentElement;"
    " const above = Math.max(0, window.scrollY || el.scrollTop || 0);"
    " const below = Math.max(0, (el.scrollHeight || 0) - above - (window.innerHeight || 0));"
    " return [Math.round(above), Math.round(below)]; })()"
)


class PageHandle(Protocol):
    async def url(self) -> str: ...

    async def open_tabs(self) -> list[OpenTab]: ...

    async def scroll_info(self) -> tuple[int, int]: ...


class CdpPage:
    def __init__(
        self,
        session: Any,
        *,
        target_id: str | None = None,
        browser: Any = None,
        cache: DomStateCache | None = None,
        config: ContextConfig | None = None,
    ) -> None:
        self.session = session
        self.target_id = target_id or getattr(session, "target_id", None)
        self.browser = browser or session
        self.config = config or ContextConfig()
        self.cache = cache or DomStateCache(session, config=self.config)
        self._page_enabled = False

    @classmethod
    async def attach(cls, browser: Any, target_id: str, *, config: ContextConfig | None = None) -> CdpPage:
        session = await browser.attach(target_id)
        return cls(session, target_id=target_id, browser=browser, config=config)

    async def close(self) -> None:
        self.cache.invalidate()
        await self.session.detach()

    # Read side

    async def url(self) -> str:
        if self.target_id:
            result = await self.browser.send("Target.getTargetInfo", {"targetId": self.target_id})
            info = result.get("targetInfo")
            if isinstance(info, dict) and isinstance(info.get("url"), str):
                return info["url"]
        return str(await self._evaluate_value("location.href") or "")

    async def open_tabs(self) -> list[OpenTab]:
        """Page targets in browser order, read live on every call."""
        result = await self.browser.send("Target.getTargets")
        infos = result.get("targetInfos")
        if not isinstance(infos, list):
            raise ProtocolError(method="Target.getTargets", reason="malformed response: targetInfos is not a list")
        pages = [info for info in infos if isinstance(info, dict) and info.get("type") == "page"]
        return [
            OpenTab(url=str(info.get("url") or ""), current=bool(self.target_id) and info.get("targetId") == self.target_id)
            for info in pages
        ]

    async def scroll_info(self) -> tuple[int, int]:
        """(pixels above, pixels below) the viewport; (0, 0) when unreadable."""
        try:
            value = await self._evaluate_value(_SCROLL_INFO_JS)
        except Exception as exc:  # noqa: BLE001
            _LOGGER.debug("Scroll info unavailable: %s", format_diagnostic(exc, max_chars=self.config.diagnostic_max_chars))
            return 0, 0
        if isinstance(value, list) and len(value) >= 2:
            try:
                return int(value[0]), int(value[1])
            except (TypeError, ValueError):
                pass
        return 0, 0

    async def dom_state(self) -> DomStateSnapshot:
        return await self.cache.get_or_build()

    async def page_state(self) -> PageState:
        snapshot = await self.dom_state()
        above, below = await self.scroll_info()
        return PageState.from_snapshot(snapshot, pixels_above=above, pixels_below=below)

    # Mutations

    async def navigate(self, url: str, *, wait: bool = True, timeout: float = 30.0) -> dict[str, Any]:
        _LOGGER.info("Navigating to %s", redact_url_brief(url))

        async def _navigate() -> dict[str, Any]:
            result = await self.session.send("Page.navigate", {"url": url})
            error_text = result.get("errorText")
            if error_text:
                raise ProtocolError(method="Page.navigate", reason=str(error_text))
            return result

        async with self.cache.mutation():
            return await self._with_load_wait(_navigate, wait=wait, timeout=timeout)

    async def reload(self, *, wait: bool = True, timeout: float = 30.0) -> None:
        async with self.cache.mutation():
            await self._with_load_wait(lambda: self.session.send("Page.reload"), wait=wait, timeout=timeout)

    async def evaluate(self, expression: str) -> Any:
        """Run script in the page. Scripts can mutate the DOM, so this invalidates too."""
        async with self.cache.mutation():
            return await self._evaluate_value(expression)

    async def scroll(self, dx: float = 0, dy: float = 0) -> tuple[int, int]:
        async with self.cache.mutation():
            await self._evaluate_value(f"window.scrollBy({float(dx)}, {float(dy)})")
        return await self.scroll_info()

    # Helpers

    async def _evaluate_value(self, expression: str) -> Any:
        result = await self.session.send(
            "Runtime.evaluate", {"expression": expression, "returnByValue": True, "awaitPromise": True}
        )
        details = result.get("exceptionDetails")
        if isinstance(details, dict):
            exc = details.get("exception")
            text = exc.get("description") if isinstance(exc, dict) else None
            raise ProtocolError(method="Runtime.evaluate", reason=str(text or details.get("text") or "script threw"))
        remote = result.get("result")
        return remote.get("value") if isinstance(remote, dict) else None

    async def _with_load_wait(
        self, action: Callable[[], Any], *, wait: bool, timeout: float
    ) -> dict[str, Any]:
        if not wait:
            return await action()
        if not self._page_enabled:
            await self.session.send("Page.enable")
            self._page_enabled = True

        loaded: asyncio.Future = asyncio.get_running_loop().create_future()

        def _on_load(params: dict[str, Any]) -> None:
            if not loaded.done():
                loaded.set_result(params)

        self.session.on("Page.loadEventFired", _on_load)
        try:
            result = await action()
            try:
                await asyncio.wait_for(loaded, timeout=timeout)
            except asyncio.TimeoutError:
                _LOGGER.warning("Page load event not seen within %.1fs", timeout)
            return result
        finally:
            self.session.off("Page.loadEventFired", _on_load)


__all__ = ["CdpPage", "PageHandle"]
