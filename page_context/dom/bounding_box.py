"""Node geometry from raw `DOM.getContentQuads`.

Resolution never raises: a failing `DOM.enable`, a failing quads call, or a
node with no rendered quads all resolve to None, with one warning per
failure through the shared diagnostic formatter.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

from ..config import ContextConfig
from ..diagnostics import format_diagnostic
from ..errors import ResolutionError
from .types import BoundingBox

_LOGGER = logging.getLogger("page_context.dom.bounding_box")
_PREFIX = "[CDP][BoundingBox]"


def quad_to_box(quad: Sequence[Any]) -> BoundingBox | None:
    """Axis-aligned box spanning a quad's four (x, y) vertices."""
    if not isinstance(quad, Sequence) or isinstance(quad, (str, bytes)) or len(quad) < 8:
        return None
    try:
        xs = [float(quad[i]) for i in range(0, 8, 2)]
        ys = [float(quad[i]) for i in range(1, 8, 2)]
    except (TypeError, ValueError):
        return None
    left, right = min(xs), max(xs)
    top, bottom = min(ys), max(ys)
    return BoundingBox(x=left, y=top, width=right - left, height=bottom - top)


def _first_box(result: Any) -> BoundingBox:
    quads = result.get("quads") if isinstance(result, dict) else None
    if not isinstance(quads, list) or not quads:
        raise ResolutionError("node has no content quads")
    for quad in quads:
        box = quad_to_box(quad)
        if box is not None and box.width > 0 and box.height > 0:
            return box
    raise ResolutionError("node has only empty content quads")


async def get_bounding_box(
    session: Any, backend_node_id: int, *, config: ContextConfig | None = None
) -> BoundingBox | None:
    """Resolve the on-screen box of one node, or None when it has none."""
    cfg = config or ContextConfig()
    max_chars = cfg.diagnostic_max_chars

    try:
        await session.send("DOM.enable")
    except Exception as exc:  # noqa: BLE001
        _LOGGER.warning("%s Failed to enable DOM domain: %s", _PREFIX, format_diagnostic(exc, max_chars=max_chars))

    try:
        result = await session.send("DOM.getContentQuads", {"backendNodeId": int(backend_node_id)})
    except Exception as exc:  # noqa: BLE001
        _LOGGER.warning("%s Failed to get content quads: %s", _PREFIX, format_diagnostic(exc, max_chars=max_chars))
        return None

    try:
        return _first_box(result)
    except ResolutionError as exc:
        _LOGGER.debug("%s backendNodeId=%s: %s", _PREFIX, backend_node_id, exc)
        return None


__all__ = ["get_bounding_box", "quad_to_box"]
