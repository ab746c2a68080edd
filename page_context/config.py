from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_TOKEN_ENCODING = "cl100k_base"
DEFAULT_TOKEN_LIMIT = 128_000
DEFAULT_DIAGNOSTIC_MAX_CHARS = 2000

_DEBUG_FLAG_ALIASES: dict[str, str] = {
    "cdp": "cdp_sessions",
    "cdp_sessions": "cdp_sessions",
    "cdpsessions": "cdp_sessions",
    "wait": "trace_wait",
    "trace_wait": "trace_wait",
    "tracewait": "trace_wait",
    "dom": "profile_dom_capture",
    "profile": "profile_dom_capture",
    "profile_dom_capture": "profile_dom_capture",
}


def expand_path(raw: str) -> str:
    return str(Path(raw).expanduser())


@dataclass(frozen=True)
class DebugOptions:
    """Per-run debug switches. Passed in at construction, never read from globals."""

    cdp_sessions: bool = False
    trace_wait: bool = False
    profile_dom_capture: bool = False

    @property
    def enabled(self) -> bool:
        return self.cdp_sessions or self.trace_wait or self.profile_dom_capture

    @classmethod
    def parse(cls, raw: str | None) -> DebugOptions:
        value = (raw or "").strip().lower()
        if not value or value in {"0", "false", "off", "no"}:
            return cls()
        if value in {"1", "true", "on", "yes", "all", "*"}:
            return cls(cdp_sessions=True, trace_wait=True, profile_dom_capture=True)
        flags: dict[str, bool] = {}
        for part in value.replace(";", ",").split(","):
            name = _DEBUG_FLAG_ALIASES.get(part.strip().replace("-", "_"))
            if name:
                flags[name] = True
        return cls(**flags)


@dataclass
class ContextConfig:
    debug: DebugOptions = field(default_factory=DebugOptions)
    debug_dir: str = "debug"
    cdp_timeout: float = 30.0
    token_encoding: str = DEFAULT_TOKEN_ENCODING
    token_limit: int = DEFAULT_TOKEN_LIMIT
    diagnostic_max_chars: int = DEFAULT_DIAGNOSTIC_MAX_CHARS

    @staticmethod
    def normalize_timeout(raw: str | float | None) -> float:
        try:
            value = float(raw) if raw not in (None, "") else 30.0
        except (TypeError, ValueError):
            value = 30.0
        return max(1.0, min(value, 300.0))

    @classmethod
    def from_env(cls) -> ContextConfig:
        debug = DebugOptions.parse(os.environ.get("PAGE_CONTEXT_DEBUG"))
        debug_dir = expand_path(os.environ.get("PAGE_CONTEXT_DEBUG_DIR", "debug"))
        timeout = cls.normalize_timeout(os.environ.get("PAGE_CONTEXT_CDP_TIMEOUT"))
        encoding = (os.environ.get("PAGE_CONTEXT_TOKEN_ENCODING") or DEFAULT_TOKEN_ENCODING).strip()
        try:
            token_limit = int(os.environ.get("PAGE_CONTEXT_TOKEN_LIMIT", str(DEFAULT_TOKEN_LIMIT)))
        except ValueError:
            token_limit = DEFAULT_TOKEN_LIMIT
        try:
            max_chars = int(os.environ.get("PAGE_CONTEXT_DIAGNOSTIC_MAX_CHARS", str(DEFAULT_DIAGNOSTIC_MAX_CHARS)))
        except ValueError:
            max_chars = DEFAULT_DIAGNOSTIC_MAX_CHARS
        return cls(
            debug=debug,
            debug_dir=debug_dir,
            cdp_timeout=timeout,
            token_encoding=encoding or DEFAULT_TOKEN_ENCODING,
            token_limit=max(1, token_limit),
            diagnostic_max_chars=max(64, max_chars),
        )
