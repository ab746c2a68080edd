from __future__ import annotations

import asyncio
import logging
from typing import Any

import pytest

from page_context.config import ContextConfig, DebugOptions
from page_context.dom.cache import DomStateCache, invalidate_safely
from page_context.dom.snapshot import DomStateSnapshot, render_dom_state
from page_context.dom.types import BackendIdMaps, BoundingBox, NodeDescriptor


def _node(backend_id: int, tag: str, *, frame: str = "MAIN", index: int = 0, **attrs: str) -> NodeDescriptor:
    return NodeDescriptor(
        backend_node_id=backend_id,
        node_id=backend_id + 100,
        node_type=1,
        node_name=tag.upper(),
        frame_id=frame,
        frame_index=index,
        attributes=dict(attrs),
    )


def _maps() -> BackendIdMaps:
    nodes = {
        2: _node(2, "div"),
        3: _node(3, "button"),
        4: _node(4, "input", type="email"),
        5: _node(5, "div", role="tab"),
        6: _node(6, "span"),
        7: _node(7, "a", frame="CHILD", index=1),
    }
    return BackendIdMaps(
        tag_name_map={k: v.node_name.lower() for k, v in nodes.items()},
        xpath_map={2: "/html[1]/body[1]/div[1]", 3: "/html[1]/body[1]/button[1]", 4: "/html[1]/body[1]/input[1]", 5: "/html[1]/body[1]/div[2]", 6: "/html[1]/body[1]/span[1]", 7: "/html[1]/body[1]/a[1]"},
        accessible_name_map={3: "Save", 4: "Email", 6: "Hello\nworld", 7: "Docs"},
        backend_node_map=nodes,
        frame_map={"MAIN": frozenset({2, 3, 4, 5, 6}), "CHILD": frozenset({7})},
        frame_index={"MAIN": 0, "CHILD": 1},
    )


class CountingBuilder:
    def __init__(self, results: list[BackendIdMaps] | None = None) -> None:
        self.calls = 0
        self.results = results

    async def __call__(self, session: Any, *, config: ContextConfig | None = None) -> BackendIdMaps:
        self.calls += 1
        if self.results:
            return self.results.pop(0)
        return _maps()


def test_get_or_build_memoizes_until_invalidated() -> None:
    builder = CountingBuilder()
    cache = DomStateCache(object(), builder=builder)

    async def _main() -> None:
        first = await cache.get_or_build()
        second = await cache.get_or_build()
        assert first is second
        assert cache.is_fresh
        assert builder.calls == 1

        cache.invalidate()
        assert not cache.is_fresh
        assert cache.snapshot is None
        third = await cache.get_or_build()
        assert third is not first
        assert third.generation == first.generation + 1
        assert builder.calls == 2

    asyncio.run(_main())


def test_concurrent_callers_share_one_build() -> None:
    builder = CountingBuilder()
    cache = DomStateCache(object(), builder=builder)

    async def _main() -> None:
        a, b = await asyncio.gather(cache.get_or_build(), cache.get_or_build())
        assert a is b

    asyncio.run(_main())
    assert builder.calls == 1


def test_degraded_build_is_served_but_not_memoized(caplog: pytest.LogCaptureFixture) -> None:
    builder = CountingBuilder(results=[BackendIdMaps.empty(), _maps()])
    cache = DomStateCache(object(), builder=builder)

    async def _main() -> None:
        degraded = await cache.get_or_build()
        assert degraded.degraded
        assert degraded.dom_state == ""
        assert not cache.is_fresh
        healthy = await cache.get_or_build()
        assert not healthy.degraded
        assert cache.snapshot is healthy

    with caplog.at_level(logging.WARNING, logger="page_context.dom.cache"):
        asyncio.run(_main())
    assert builder.calls == 2
    assert any("degraded" in r.getMessage() for r in caplog.records)


def test_build_interrupted_by_invalidation_is_not_memoized() -> None:
    holder: dict[str, asyncio.Event] = {}

    async def slow_builder(session: Any, *, config: ContextConfig | None = None) -> BackendIdMaps:
        holder["started"].set()
        await holder["release"].wait()
        return _maps()

    async def _main() -> None:
        holder["started"] = asyncio.Event()
        holder["release"] = asyncio.Event()
        cache = DomStateCache(object(), builder=slow_builder)
        task = asyncio.ensure_future(cache.get_or_build())
        await holder["started"].wait()
        cache.invalidate()
        holder["release"].set()
        snapshot = await task
        assert not snapshot.degraded
        assert cache.snapshot is None

    asyncio.run(_main())


def test_invalidate_never_raises(caplog: pytest.LogCaptureFixture) -> None:
    cache = DomStateCache(object(), builder=CountingBuilder())
    calls: list[str] = []

    def broken() -> None:
        raise RuntimeError("listener bug")

    cache.on_invalidate(broken)
    cache.on_invalidate(lambda: calls.append("ok"))

    with caplog.at_level(logging.DEBUG, logger="page_context.dom.cache"):
        cache.invalidate()
        cache.invalidate()
    assert calls == ["ok", "ok"]
    assert any("listener bug" in r.getMessage() for r in caplog.records)


def test_mutation_invalidates_on_success_and_failure() -> None:
    cache = DomStateCache(object(), builder=CountingBuilder())

    async def _main() -> None:
        await cache.get_or_build()
        async with cache.mutation():
            assert cache.is_fresh
        assert not cache.is_fresh

        await cache.get_or_build()
        with pytest.raises(ValueError):
            async with cache.mutation():
                raise ValueError("click failed after scrolling")
        assert not cache.is_fresh

    asyncio.run(_main())


def test_invalidate_safely_tolerates_anything() -> None:
    class Exploding:
        def invalidate(self) -> None:
            raise RuntimeError("boom")

    invalidate_safely(None)
    invalidate_safely(object())
    invalidate_safely(Exploding())

    cache = DomStateCache(object(), builder=CountingBuilder())
    asyncio.run(cache.get_or_build())
    invalidate_safely(cache)
    assert not cache.is_fresh


def test_profile_logging(caplog: pytest.LogCaptureFixture) -> None:
    cfg = ContextConfig(debug=DebugOptions(profile_dom_capture=True))
    cache = DomStateCache(object(), config=cfg, builder=CountingBuilder())
    with caplog.at_level(logging.INFO, logger="page_context.dom.cache"):
        asyncio.run(cache.get_or_build())
    assert any("DOM capture generation 1 took" in r.getMessage() for r in caplog.records)


def test_render_dom_state_lists_interactive_elements_by_frame() -> None:
    text = render_dom_state(_maps())
    assert text == (
        '[0-3] button "Save"\n'
        '[0-4] input type=email "Email"\n'
        "[0-5] div role=tab\n"
        '[0-6] span "Hello world"\n'
        "\n"
        "--- frame 1 (CHILD) ---\n"
        '[1-7] a "Docs"'
    )


def test_snapshot_resolve_and_lazy_geometry() -> None:
    class Session:
        def __init__(self) -> None:
            self.quads_calls = 0

        async def send(self, method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
            if method == "DOM.getContentQuads":
                self.quads_calls += 1
                return {"quads": [[1, 1, 11, 1, 11, 6, 1, 6]]}
            return {}

    session = Session()
    snapshot = DomStateSnapshot(maps=_maps(), session=session)
    assert snapshot.element_count() == 5

    element = snapshot.resolve("1-7")
    assert element is not None
    assert element.frame_id == "CHILD"
    assert element.xpath == "/html[1]/body[1]/a[1]"
    assert element.accessible_name == "Docs"
    assert snapshot.resolve("0-7") is None
    assert snapshot.resolve("garbage") is None

    async def _main() -> None:
        box = await snapshot.bounding_box_for("0-3")
        again = await snapshot.bounding_box(3)
        missing = await snapshot.bounding_box(999)
        assert box == again == BoundingBox(x=1.0, y=1.0, width=10.0, height=5.0)
        assert missing is None

    asyncio.run(_main())
    assert session.quads_calls == 1
