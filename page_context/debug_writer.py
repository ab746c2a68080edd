"""Debug snapshots: one readable file per logical section.

Layout written by `DebugSnapshotWriter`:

    <debug_dir>/<session stamp>/action-<n>/
        metadata.json            caller metadata + what was written
        dom-tree.txt             rendered DOM state
        llm-response.json/.txt   raw model output
        found-element.json       resolved element descriptor
        available-elements.txt   (or .json when not text)
        error.json               formatted failure
        frame-debug-info.json
        screenshot.png           validated with Pillow
        <other>.json             any unknown section

JSON goes through `to_jsonable`, so cycles become "[Circular]" and integers
beyond the safe range become tagged strings ("12345678901234567890n").
`load_debug_json` reverses the tagging. Writing never raises: a section that
cannot be written is recorded in metadata.json and the rest are still written.
"""

from __future__ import annotations

import base64
import json
import logging
import os
import re
import time
from collections.abc import Mapping
from io import BytesIO
from pathlib import Path
from typing import Any

from .config import ContextConfig
from .diagnostics import decode_tagged, format_diagnostic, safe_json_dumps, to_jsonable

_LOGGER = logging.getLogger("page_context.debug_writer")

_SAFE_NAME_RE = re.compile(r"[^a-z0-9_-]+")
_CAMEL_RE = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")

TEXT_SECTIONS = {"dom-tree"}


def _now_iso() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())


def _section_name(key: Any) -> str:
    raw = _CAMEL_RE.sub("-", str(key)).lower().replace("_", "-")
    name = _SAFE_NAME_RE.sub("-", raw).strip("-")
    return name[:80] or "section"


def _write_text(path: Path, text: str) -> Path:
    path.write_text(text, encoding="utf-8")
    return path


def _write_json(path: Path, value: Any) -> Path:
    return _write_text(path, safe_json_dumps(value, indent=2))


def _as_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, Mapping):
        for key in ("content", "text"):
            inner = value.get(key)
            if isinstance(inner, str):
                return inner
    return safe_json_dumps(value, indent=2)


def _image_bytes(value: Any) -> bytes:
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value)
    if isinstance(value, str):
        data = value.split(",", 1)[1] if value.startswith("data:") else value
        return base64.b64decode(data, validate=False)
    raise TypeError(f"unsupported screenshot type: {type(value).__name__}")


def _image_info(raw: bytes) -> dict[str, Any]:
    from PIL import Image

    with Image.open(BytesIO(raw)) as img:
        img.verify()
        return {"width": int(img.width), "height": int(img.height), "format": img.format, "bytes": len(raw)}


def _write_screenshot(directory: Path, value: Any) -> tuple[list[Path], dict[str, Any]]:
    raw = _image_bytes(value)
    try:
        info = _image_info(raw)
    except Exception as exc:  # noqa: BLE001
        # Keep the bytes for inspection, but not under an image extension.
        path = directory / "screenshot.bin"
        path.write_bytes(raw)
        return [path], {"valid": False, "bytes": len(raw), "error": format_diagnostic(exc, max_chars=300)}
    ext = "png" if (info.get("format") or "").upper() == "PNG" else str(info.get("format") or "bin").lower()
    path = directory / f"screenshot.{ext}"
    path.write_bytes(raw)
    return [path], {"valid": True, **info}


def _write_section(directory: Path, name: str, value: Any) -> list[Path]:
    if name in TEXT_SECTIONS:
        return [_write_text(directory / f"{name}.txt", _as_text(value))]
    if name == "llm-response":
        return [
            _write_json(directory / "llm-response.json", value),
            _write_text(directory / "llm-response.txt", _as_text(value)),
        ]
    if name == "available-elements":
        if isinstance(value, str):
            return [_write_text(directory / "available-elements.txt", value)]
        return [_write_json(directory / "available-elements.json", value)]
    return [_write_json(directory / f"{name}.json", value)]


def write_debug_snapshot(payload: Any, directory: str | Path) -> dict[str, Any]:
    """Write `payload` under `directory`, one file per section. Never raises.

    Returns a summary: `{"directory", "files", "errors"}`.
    """
    summary: dict[str, Any] = {"directory": str(directory), "files": [], "errors": {}}
    try:
        target = Path(directory)
        target.mkdir(parents=True, exist_ok=True)
    except Exception as exc:  # noqa: BLE001
        _LOGGER.warning("Debug snapshot directory unavailable (%s): %s", directory, format_diagnostic(exc))
        summary["errors"]["directory"] = format_diagnostic(exc)
        return summary

    sections = payload if isinstance(payload, Mapping) else {"payload": payload}
    metadata: Any = None
    screenshot_info: dict[str, Any] | None = None

    try:
        items = list(sections.items())
    except Exception as exc:  # noqa: BLE001
        items = []
        summary["errors"]["payload"] = format_diagnostic(exc)

    for key, value in items:
        name = _section_name(key)
        if name == "metadata":
            metadata = value
            continue
        try:
            if name == "screenshot":
                paths, screenshot_info = _write_screenshot(target, value)
            else:
                paths = _write_section(target, name, value)
            summary["files"].extend(p.name for p in paths)
        except Exception as exc:  # noqa: BLE001
            diagnostic = format_diagnostic(exc)
            summary["errors"][name] = diagnostic
            _LOGGER.warning("Debug snapshot section %s not written: %s", name, diagnostic)

    meta: dict[str, Any] = {}
    user_meta = to_jsonable(metadata) if metadata is not None else None
    if isinstance(user_meta, dict):
        meta.update(user_meta)
    elif user_meta is not None:
        meta["value"] = user_meta
    meta["snapshot"] = {
        "createdAt": _now_iso(),
        "files": list(summary["files"]),
        **({"errors": dict(summary["errors"])} if summary["errors"] else {}),
        **({"screenshot": screenshot_info} if screenshot_info is not None else {}),
    }
    try:
        _write_json(target / "metadata.json", meta)
        summary["files"].append("metadata.json")
    except Exception as exc:  # noqa: BLE001
        summary["errors"]["metadata"] = format_diagnostic(exc)
        _LOGGER.warning("Debug snapshot metadata not written: %s", format_diagnostic(exc))
    return summary


def load_debug_json(path: str | Path) -> Any:
    """Read a JSON section back, restoring tagged integers."""
    return decode_tagged(json.loads(Path(path).read_text(encoding="utf-8")))


def _session_stamp() -> str:
    return f"{time.strftime('%Y%m%dT%H%M%SZ', time.gmtime())}-{os.getpid()}"


class DebugSnapshotWriter:
    """Numbered per-action snapshot directories under one session directory."""

    def __init__(self, base_dir: str | Path | None = None, *, config: ContextConfig | None = None) -> None:
        self.config = config or ContextConfig()
        self.base_dir = Path(base_dir if base_dir is not None else self.config.debug_dir)
        self.session_dir = self.base_dir / _session_stamp()
        self._actions = 0

    @property
    def action_count(self) -> int:
        return self._actions

    def next_action_dir(self) -> Path:
        self._actions += 1
        return self.session_dir / f"action-{self._actions}"

    def write(self, payload: Any) -> dict[str, Any]:
        return write_debug_snapshot(payload, self.next_action_dir())


__all__ = ["DebugSnapshotWriter", "load_debug_json", "write_debug_snapshot"]
