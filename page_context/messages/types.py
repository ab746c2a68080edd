from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

Role = Literal["system", "user", "assistant"]


@dataclass(frozen=True)
class AgentAction:
    type: str
    params: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "params": dict(self.params)}


@dataclass(frozen=True)
class ActionOutcome:
    """Result of one executed action. `extract` is None unless the action extracted data."""

    success: bool
    message: str
    extract: Any = None

    @property
    def has_extract(self) -> bool:
        return self.extract is not None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"success": self.success, "message": self.message}
        if self.has_extract:
            out["extract"] = self.extract
        return out


@dataclass(frozen=True)
class AgentStep:
    """One completed step. Appended to the run history and never modified."""

    index: int
    thoughts: str
    memory: str
    action: AgentAction
    outcome: ActionOutcome

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "thoughts": self.thoughts,
            "memory": self.memory,
            "action": self.action.to_dict(),
            "outcome": self.outcome.to_dict(),
        }


@dataclass(frozen=True)
class Variable:
    """Named placeholder; the value is substituted at message-build time only."""

    key: str
    description: str
    value: Any = None


@dataclass(frozen=True)
class OpenTab:
    url: str
    current: bool = False


@dataclass(frozen=True)
class Message:
    role: Role
    content: str | list[dict[str, Any]]

    def to_dict(self) -> dict[str, Any]:
        content = self.content if isinstance(self.content, str) else [dict(part) for part in self.content]
        return {"role": self.role, "content": content}

    def text(self) -> str:
        """Concatenated text parts (image parts skipped)."""
        if isinstance(self.content, str):
            return self.content
        return "".join(str(part.get("text", "")) for part in self.content if part.get("type") == "text")


@dataclass(frozen=True)
class PageState:
    dom_state: str
    pixels_above: int = 0
    pixels_below: int = 0

    @classmethod
    def from_snapshot(cls, snapshot: Any, *, pixels_above: int = 0, pixels_below: int = 0) -> PageState:
        try:
            dom_state = snapshot.dom_state
        except Exception:  # noqa: BLE001
            dom_state = None
        return cls(
            dom_state=dom_state if isinstance(dom_state, str) else "DOM state unavailable",
            pixels_above=pixels_above,
            pixels_below=pixels_below,
        )


__all__ = ["ActionOutcome", "AgentAction", "AgentStep", "Message", "OpenTab", "PageState", "Role", "Variable"]
