from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any

from ..config import ContextConfig
from .bounding_box import get_bounding_box
from .types import BackendIdMaps, BoundingBox, NodeDescriptor, decode_id, encode_id

INTERACTIVE_TAGS = frozenset(
    {"a", "button", "input", "select", "textarea", "option", "label", "summary", "details", "iframe"}
)
INTERACTIVE_ROLES = frozenset(
    {
        "button",
        "link",
        "textbox",
        "searchbox",
        "combobox",
        "checkbox",
        "radio",
        "switch",
        "tab",
        "menuitem",
        "option",
        "slider",
    }
)
MAX_NAME_CHARS = 120


@dataclass(frozen=True)
class ResolvedElement:
    encoded_id: str
    backend_node_id: int
    frame_id: str
    frame_index: int
    tag_name: str
    xpath: str
    accessible_name: str | None
    descriptor: NodeDescriptor


def _is_listed(descriptor: NodeDescriptor, tag: str, name: str | None) -> bool:
    if descriptor.node_type != 1:
        return False
    if tag in INTERACTIVE_TAGS:
        return True
    attrs = descriptor.attributes
    if attrs.get("role", "").lower() in INTERACTIVE_ROLES:
        return True
    if "onclick" in attrs:
        return True
    if "contenteditable" in attrs and attrs["contenteditable"].lower() in {"", "true", "plaintext-only"}:
        return True
    return bool(name)


def _short(text: str) -> str:
    text = " ".join(text.split())
    if len(text) <= MAX_NAME_CHARS:
        return text
    return text[:MAX_NAME_CHARS] + "..."


def render_dom_state(maps: BackendIdMaps) -> str:
    """Compact element listing, one line per listed element, grouped by frame."""
    frames: dict[int, list[str]] = {}
    for backend_id, descriptor in maps.backend_node_map.items():
        tag = maps.tag_name_map.get(backend_id, "")
        name = maps.accessible_name_map.get(backend_id)
        if not _is_listed(descriptor, tag, name):
            continue
        parts = [f"[{encode_id(descriptor.frame_index, backend_id)}]", tag]
        input_type = descriptor.attributes.get("type")
        if tag == "input" and input_type:
            parts.append(f"type={input_type}")
        role = descriptor.attributes.get("role")
        if role:
            parts.append(f"role={role}")
        if name:
            parts.append(f'"{_short(name)}"')
        frames.setdefault(descriptor.frame_index, []).append(" ".join(parts))

    blocks: list[str] = []
    index_to_frame = {idx: fid for fid, idx in maps.frame_index.items()}
    for frame_idx in sorted(frames):
        lines = frames[frame_idx]
        if frame_idx != 0:
            lines = [f"--- frame {frame_idx} ({index_to_frame.get(frame_idx, '?')}) ---", *lines]
        blocks.append("\n".join(lines))
    return "\n\n".join(blocks)


@dataclass
class DomStateSnapshot:
    """One document generation plus lazily resolved geometry.

    Replaced wholesale by the cache on rebuild; never patched.
    """

    maps: BackendIdMaps
    session: Any = None
    config: ContextConfig = field(default_factory=ContextConfig)
    generation: int = 0
    built_at: float = field(default_factory=time.time)
    _boxes: dict[int, BoundingBox | None] = field(default_factory=dict, repr=False)
    _dom_state: str | None = field(default=None, repr=False)

    @property
    def degraded(self) -> bool:
        return self.maps.is_empty()

    @property
    def dom_state(self) -> str:
        if self._dom_state is None:
            self._dom_state = render_dom_state(self.maps)
        return self._dom_state

    def element_count(self) -> int:
        return sum(1 for line in self.dom_state.splitlines() if line.startswith("["))

    def resolve(self, encoded_id: str) -> ResolvedElement | None:
        decoded = decode_id(encoded_id)
        if decoded is None:
            return None
        frame_idx, backend_id = decoded
        descriptor = self.maps.backend_node_map.get(backend_id)
        if descriptor is None or descriptor.frame_index != frame_idx:
            return None
        return ResolvedElement(
            encoded_id=encode_id(frame_idx, backend_id),
            backend_node_id=backend_id,
            frame_id=descriptor.frame_id,
            frame_index=frame_idx,
            tag_name=self.maps.tag_name_map.get(backend_id, ""),
            xpath=self.maps.xpath_map.get(backend_id, ""),
            accessible_name=self.maps.accessible_name_map.get(backend_id),
            descriptor=descriptor,
        )

    async def bounding_box(self, backend_node_id: int) -> BoundingBox | None:
        """Resolve on demand; memoized for this generation only."""
        if backend_node_id in self._boxes:
            return self._boxes[backend_node_id]
        if self.session is None or backend_node_id not in self.maps.backend_node_map:
            return None
        box = await get_bounding_box(self.session, backend_node_id, config=self.config)
        self._boxes[backend_node_id] = box
        return box

    async def bounding_box_for(self, encoded_id: str) -> BoundingBox | None:
        element = self.resolve(encoded_id)
        if element is None:
            return None
        return await self.bounding_box(element.backend_node_id)
