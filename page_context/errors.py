"""Error taxonomy.

Only `ProtocolError` ever crosses a public call boundary (raised by the CDP
session). The other errors are raised inside a component and recovered at its
edge: map builds degrade to empty maps, geometry degrades to None, and
serialization substitutes markers.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(eq=False)
class ProtocolError(Exception):
    """Transport or command failure at the CDP session boundary."""

    method: str
    reason: str
    code: int | None = None
    data: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        prefix = f"[{self.method}] " if self.method else ""
        code = f" (code {self.code})" if self.code is not None else ""
        return f"{prefix}{self.reason}{code}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": True,
            "method": self.method,
            "reason": self.reason,
            **({"code": self.code} if self.code is not None else {}),
            **({"data": self.data} if self.data else {}),
        }


class BuildError(Exception):
    """A DOM walk step failed; the builder recovers to empty maps."""


class ResolutionError(Exception):
    """Geometry for a node is unavailable; the resolver recovers to None."""


class SerializationError(Exception):
    """A payload value could not be encoded; the writer substitutes a marker."""
