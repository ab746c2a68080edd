"""Per-page DOM state cache.

`get_or_build()` memoizes one snapshot; `invalidate()` drops it. Every action
that can change page content (navigate, reload, scroll, click, type, script
evaluation) must end with `invalidate()`, on success and on failure alike,
otherwise later steps resolve element ids against a document that no longer
exists. `mutation()` wraps an action so that this happens on every exit path.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Any

from ..config import ContextConfig
from ..diagnostics import format_diagnostic
from .maps import build_backend_id_maps
from .snapshot import DomStateSnapshot
from .types import BackendIdMaps

_LOGGER = logging.getLogger("page_context.dom.cache")

MapBuilder = Callable[..., Awaitable[BackendIdMaps]]


class DomStateCache:
    def __init__(
        self,
        session: Any,
        *,
        config: ContextConfig | None = None,
        builder: MapBuilder = build_backend_id_maps,
    ) -> None:
        self.session = session
        self.config = config or ContextConfig()
        self._builder = builder
        self._snapshot: DomStateSnapshot | None = None
        self._generation = 0
        # Bumped by every invalidate(); a build that straddles one is not memoized.
        self._epoch = 0
        self._lock = asyncio.Lock()
        self._listeners: list[Callable[[], Any]] = []

    @property
    def is_fresh(self) -> bool:
        return self._snapshot is not None

    @property
    def snapshot(self) -> DomStateSnapshot | None:
        """Current memoized snapshot without triggering a build."""
        return self._snapshot

    @property
    def generation(self) -> int:
        return self._generation

    def on_invalidate(self, callback: Callable[[], Any]) -> None:
        self._listeners.append(callback)

    async def get_or_build(self) -> DomStateSnapshot:
        snapshot = self._snapshot
        if snapshot is not None:
            return snapshot

        async with self._lock:
            if self._snapshot is not None:
                return self._snapshot

            epoch = self._epoch
            started = time.perf_counter()
            maps = await self._builder(self.session, config=self.config)
            self._generation += 1
            snapshot = DomStateSnapshot(
                maps=maps,
                session=self.session,
                config=self.config,
                generation=self._generation,
            )

            if self.config.debug.profile_dom_capture:
                _LOGGER.info(
                    "DOM capture generation %d took %dms (%s)",
                    snapshot.generation,
                    round((time.perf_counter() - started) * 1000),
                    maps.summary(),
                )

            if snapshot.degraded:
                # Serve the empty snapshot to this step only; the next call rebuilds.
                _LOGGER.warning("DOM snapshot generation %d is degraded (empty maps); not memoized", snapshot.generation)
                return snapshot
            if epoch != self._epoch:
                _LOGGER.debug("DOM snapshot generation %d invalidated during build; not memoized", snapshot.generation)
                return snapshot

            self._snapshot = snapshot
            return snapshot

    def invalidate(self) -> None:
        """Drop the memoized snapshot. Never raises."""
        self._epoch += 1
        self._snapshot = None
        for callback in list(self._listeners):
            try:
                callback()
            except Exception as exc:  # noqa: BLE001
                _LOGGER.debug("DOM cache invalidation listener failed: %s", format_diagnostic(exc))

    @asynccontextmanager
    async def mutation(self) -> AsyncIterator[DomStateCache]:
        """Run a page-mutating action; the cache is invalidated on every exit path."""
        try:
            yield self
        finally:
            self.invalidate()


def invalidate_safely(cache: Any) -> None:
    """Invalidate when `cache` exposes `invalidate()`; swallow any failure."""
    invalidate = getattr(cache, "invalidate", None)
    if not callable(invalidate):
        return
    try:
        invalidate()
    except Exception as exc:  # noqa: BLE001
        _LOGGER.debug("DOM cache invalidation failed: %s", format_diagnostic(exc))


__all__ = ["DomStateCache", "invalidate_safely"]
