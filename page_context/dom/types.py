from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

MAIN_FRAME_KEY = "main"


def encode_id(frame_index: int, backend_node_id: int) -> str:
    """Element handle shown to the model: `<frameIndex>-<backendNodeId>`."""
    return f"{int(frame_index)}-{int(backend_node_id)}"


def decode_id(encoded_id: str) -> tuple[int, int] | None:
    if not isinstance(encoded_id, str):
        return None
    head, sep, tail = encoded_id.strip().partition("-")
    if not sep:
        return None
    try:
        return int(head), int(tail)
    except ValueError:
        return None


@dataclass(frozen=True)
class NodeDescriptor:
    """Opaque per-node record kept alongside the tag/xpath/name maps."""

    backend_node_id: int
    node_id: int | None
    node_type: int
    node_name: str
    frame_id: str
    frame_index: int
    parent_backend_node_id: int | None = None
    attributes: dict[str, str] = field(default_factory=dict)
    content_document_backend_node_id: int | None = None


@dataclass(frozen=True)
class BoundingBox:
    x: float
    y: float
    width: float
    height: float

    @property
    def left(self) -> float:
        return self.x

    @property
    def top(self) -> float:
        return self.y

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    @property
    def center(self) -> tuple[float, float]:
        return self.x + self.width / 2, self.y + self.height / 2

    def to_dict(self) -> dict[str, float]:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}


@dataclass(frozen=True)
class BackendIdMaps:
    """One document generation's element maps. Never patched after construction."""

    tag_name_map: dict[int, str] = field(default_factory=dict)
    xpath_map: dict[int, str] = field(default_factory=dict)
    accessible_name_map: dict[int, str] = field(default_factory=dict)
    backend_node_map: dict[int, NodeDescriptor] = field(default_factory=dict)
    frame_map: dict[str, frozenset[int]] = field(default_factory=dict)
    # frame id -> index in discovery order (main frame is 0)
    frame_index: dict[str, int] = field(default_factory=dict)

    @classmethod
    def empty(cls) -> BackendIdMaps:
        return cls()

    def is_empty(self) -> bool:
        return not (
            self.tag_name_map or self.xpath_map or self.accessible_name_map or self.backend_node_map or self.frame_map
        )

    def summary(self) -> dict[str, Any]:
        return {
            "nodes": len(self.backend_node_map),
            "xpaths": len(self.xpath_map),
            "accessibleNames": len(self.accessible_name_map),
            "frames": {fid: len(ids) for fid, ids in self.frame_map.items()},
        }
