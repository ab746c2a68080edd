"""
DOM state for agent steps.

Provides:
- build_backend_id_maps: tag/xpath/accessible-name/frame maps from one DOM walk
- get_bounding_box: node geometry from content quads
- DomStateSnapshot: one document generation plus lazy geometry
- DomStateCache: lazy build + explicit invalidation per page
"""

from .bounding_box import get_bounding_box, quad_to_box
from .cache import DomStateCache, invalidate_safely
from .maps import build_backend_id_maps
from .snapshot import DomStateSnapshot, ResolvedElement, render_dom_state
from .types import BackendIdMaps, BoundingBox, NodeDescriptor, decode_id, encode_id

__all__ = [
    "BackendIdMaps",
    "BoundingBox",
    "DomStateCache",
    "DomStateSnapshot",
    "NodeDescriptor",
    "ResolvedElement",
    "build_backend_id_maps",
    "decode_id",
    "encode_id",
    "get_bounding_box",
    "invalidate_safely",
    "quad_to_box",
    "render_dom_state",
]
