"""Backend-id map builder.

One `DOM.getDocument(depth=-1, pierce=true)` call, a walk over the returned
tree (iframe documents and open shadow roots included), then one
`Accessibility.getFullAXTree` per frame, issued in frame discovery order.

The result is all-or-nothing: if any step fails, the builder logs one
diagnostic and returns empty maps. A consumer never sees a half-built
generation.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from ..config import ContextConfig
from ..diagnostics import format_diagnostic
from ..errors import BuildError
from .types import MAIN_FRAME_KEY, BackendIdMaps, NodeDescriptor

_LOGGER = logging.getLogger("page_context.dom.maps")

ELEMENT_NODE = 1
TEXT_NODE = 3
COMMENT_NODE = 8
DOCUMENT_NODE = 9


def _attributes(raw: Any) -> dict[str, str]:
    if not isinstance(raw, list):
        return {}
    out: dict[str, str] = {}
    for i in range(0, len(raw) - 1, 2):
        k, v = raw[i], raw[i + 1]
        if isinstance(k, str):
            out[k] = v if isinstance(v, str) else str(v)
    return out


def _xpath_step(node: dict[str, Any], counters: dict[str, int]) -> str | None:
    node_type = node.get("nodeType")
    if node_type == ELEMENT_NODE:
        name = str(node.get("localName") or node.get("nodeName") or "").lower()
        if not name:
            return None
        counters[name] = counters.get(name, 0) + 1
        if ":" in name:
            return f"*[name()='{name}'][{counters[name]}]"
        return f"{name}[{counters[name]}]"
    if node_type == TEXT_NODE:
        counters["text()"] = counters.get("text()", 0) + 1
        return f"text()[{counters['text()']}]"
    if node_type == COMMENT_NODE:
        counters["comment()"] = counters.get("comment()", 0) + 1
        return f"comment()[{counters['comment()']}]"
    return None


def _tag_name(node: dict[str, Any]) -> str:
    if node.get("nodeType") == ELEMENT_NODE:
        return str(node.get("localName") or node.get("nodeName") or "").lower()
    return str(node.get("nodeName") or "").lower()


class _DomWalker:
    """Accumulates one document generation. Discarded on any failure."""

    def __init__(self) -> None:
        self.tag_name_map: dict[int, str] = {}
        self.xpath_map: dict[int, str] = {}
        self.accessible_name_map: dict[int, str] = {}
        self.backend_node_map: dict[int, NodeDescriptor] = {}
        self.frame_nodes: dict[str, set[int]] = {}
        self.frame_index: dict[str, int] = {}
        self.synthetic_frames: set[str] = set()

    def _frame(self, frame_id: str) -> int:
        if frame_id not in self.frame_index:
            self.frame_index[frame_id] = len(self.frame_index)
            self.frame_nodes[frame_id] = set()
        return self.frame_index[frame_id]

    def _record(self, node: dict[str, Any], *, xpath: str, frame_id: str, parent: int | None) -> int | None:
        backend_id = node.get("backendNodeId")
        if not isinstance(backend_id, int):
            return None
        frame_idx = self._frame(frame_id)
        content_doc = node.get("contentDocument")
        content_doc_id = content_doc.get("backendNodeId") if isinstance(content_doc, dict) else None
        node_id = node.get("nodeId")
        self.tag_name_map[backend_id] = _tag_name(node)
        self.xpath_map[backend_id] = xpath
        self.backend_node_map[backend_id] = NodeDescriptor(
            backend_node_id=backend_id,
            node_id=node_id if isinstance(node_id, int) else None,
            node_type=int(node.get("nodeType") or 0),
            node_name=str(node.get("nodeName") or ""),
            frame_id=frame_id,
            frame_index=frame_idx,
            parent_backend_node_id=parent,
            attributes=_attributes(node.get("attributes")),
            content_document_backend_node_id=content_doc_id if isinstance(content_doc_id, int) else None,
        )
        self.frame_nodes[frame_id].add(backend_id)
        return backend_id

    def walk(self, root: dict[str, Any], *, frame_id: str) -> None:
        """Iterative pre-order walk; xpaths are relative to each frame's document."""
        self._frame(frame_id)
        stack: list[tuple[dict[str, Any], str, str, int | None]] = [(root, "", frame_id, None)]
        while stack:
            node, path, fid, parent = stack.pop()
            if node.get("nodeType") == DOCUMENT_NODE:
                own = self._record(node, xpath="/", frame_id=fid, parent=parent)
                base = ""
            else:
                own = self._record(node, xpath=path, frame_id=fid, parent=parent)
                base = path

            children: list[tuple[dict[str, Any], str, str, int | None]] = []
            counters: dict[str, int] = {}
            for child in node.get("children") or ():
                if not isinstance(child, dict):
                    continue
                step = _xpath_step(child, counters)
                if step is None and child.get("nodeType") != DOCUMENT_NODE:
                    continue
                children.append((child, f"{base}/{step}" if step else base, fid, own))

            shadow_counters: dict[str, int] = {}
            for shadow in node.get("shadowRoots") or ():
                if not isinstance(shadow, dict):
                    continue
                for child in shadow.get("children") or ():
                    if not isinstance(child, dict):
                        continue
                    step = _xpath_step(child, shadow_counters)
                    if step is not None:
                        children.append((child, f"{base}//{step}", fid, own))

            content_doc = node.get("contentDocument")
            if isinstance(content_doc, dict):
                child_frame = node.get("frameId") or content_doc.get("frameId")
                if not isinstance(child_frame, str) or not child_frame:
                    child_frame = f"{fid}/frame-{node.get('backendNodeId')}"
                    self.synthetic_frames.add(child_frame)
                self._frame(child_frame)
                children.append((content_doc, "", child_frame, own))

            # Reverse so the stack pops children in document order.
            stack.extend(reversed(children))

    def merge_ax(self, nodes: Iterable[Any]) -> None:
        for ax in nodes:
            if not isinstance(ax, dict):
                continue
            backend_id = ax.get("backendDOMNodeId")
            if not isinstance(backend_id, int) or backend_id not in self.backend_node_map:
                continue
            name = ax.get("name")
            value = name.get("value") if isinstance(name, dict) else None
            if isinstance(value, str) and value.strip():
                self.accessible_name_map[backend_id] = value.strip()

    def to_maps(self) -> BackendIdMaps:
        return BackendIdMaps(
            tag_name_map=dict(self.tag_name_map),
            xpath_map=dict(self.xpath_map),
            accessible_name_map=dict(self.accessible_name_map),
            backend_node_map=dict(self.backend_node_map),
            frame_map={fid: frozenset(ids) for fid, ids in self.frame_nodes.items()},
            frame_index=dict(self.frame_index),
        )


def _ax_nodes(result: Any, method: str) -> list[Any]:
    nodes = result.get("nodes") if isinstance(result, dict) else None
    if not isinstance(nodes, list):
        raise BuildError(f"{method} returned unexpected payload")
    return nodes


async def build_backend_id_maps(session: Any, *, config: ContextConfig | None = None) -> BackendIdMaps:
    """Build tag/xpath/accessible-name/descriptor maps plus the frame map.

    Never raises for protocol or payload failures; returns `BackendIdMaps.empty()`.
    Cancellation propagates.
    """
    cfg = config or ContextConfig()
    try:
        doc = await session.send("DOM.getDocument", {"depth": -1, "pierce": True})
        root = doc.get("root") if isinstance(doc, dict) else None
        if not isinstance(root, dict):
            raise BuildError("DOM.getDocument returned no root node")

        main_frame = root.get("frameId")
        main_frame = main_frame if isinstance(main_frame, str) and main_frame else MAIN_FRAME_KEY

        walker = _DomWalker()
        walker.walk(root, frame_id=main_frame)

        for frame_id in list(walker.frame_index):
            if frame_id in walker.synthetic_frames:
                continue
            if frame_id == main_frame:
                result = await session.send("Accessibility.getFullAXTree")
            else:
                result = await session.send("Accessibility.getFullAXTree", {"frameId": frame_id})
            walker.merge_ax(_ax_nodes(result, "Accessibility.getFullAXTree"))

        return walker.to_maps()
    except Exception as exc:  # noqa: BLE001
        _LOGGER.error(
            "Error building backend ID maps: %s",
            format_diagnostic(exc, max_chars=cfg.diagnostic_max_chars),
        )
        return BackendIdMaps.empty()


__all__ = ["build_backend_id_maps"]
