"""Shared diagnostic formatting and safe JSON encoding.

Every recovered failure in the package is logged through `format_diagnostic`,
so operators see one shape of message regardless of what was raised:
- control characters replaced, whitespace collapsed;
- length-capped with an explicit `... [truncated N chars]` suffix;
- non-string exception payloads (dicts, lists) rendered as JSON, not repr.

`to_jsonable` is the traversal used by both the formatter and the debug
snapshot writer. It never raises: cycles become `CIRCULAR_MARKER`, integers
outside the IEEE-754 safe range become tagged strings (`"9007199254740993n"`),
and anything else it cannot encode becomes a readable placeholder.
"""

from __future__ import annotations

import base64
import dataclasses
import json
import math
import re
from collections.abc import Mapping
from typing import Any

from .errors import SerializationError

CIRCULAR_MARKER = "[Circular]"
MAX_DEPTH_MARKER = "[MaxDepth]"
MAX_SAFE_INTEGER = 2**53 - 1
DEFAULT_MAX_CHARS = 2000
DEFAULT_MAX_DEPTH = 64

_TAGGED_INT_RE = re.compile(r"^-?\d+n$")
_ESCAPED_TAGGED_INT_RE = re.compile(r"^\\+-?\d+n$")
_WS_RE = re.compile(r"\s+")


def sanitize_text(value: str, *, keep_newlines: bool = False) -> str:
    """Replace C0 control characters and DEL with spaces."""
    if not value:
        return value
    out: list[str] = []
    for ch in value:
        code = ord(ch)
        if keep_newlines and ch in "\t\n\r":
            out.append(ch)
        elif code < 32 or code == 127:
            out.append(" ")
        else:
            out.append(ch)
    return "".join(out)


def truncate_text(value: str, max_chars: int) -> str:
    if max_chars <= 0 or len(value) <= max_chars:
        return value
    omitted = len(value) - max_chars
    return f"{value[:max_chars]}... [truncated {omitted} chars]"


def encode_tagged_int(value: int) -> str:
    return f"{value}n"


def _escape_string(value: str) -> str:
    # Ordinary strings that look like tagged ints get one extra leading backslash.
    if _TAGGED_INT_RE.match(value) or _ESCAPED_TAGGED_INT_RE.match(value):
        return "\\" + value
    return value


def decode_tagged(value: Any) -> Any:
    """Reverse `to_jsonable`'s integer tagging on an already-parsed JSON tree."""
    if isinstance(value, str):
        if _TAGGED_INT_RE.match(value):
            return int(value[:-1])
        if _ESCAPED_TAGGED_INT_RE.match(value):
            return value[1:]
        return value
    if isinstance(value, list):
        return [decode_tagged(v) for v in value]
    if isinstance(value, dict):
        return {k: decode_tagged(v) for k, v in value.items()}
    return value


def _encode_scalar(value: Any, *, escape_strings: bool = True) -> Any:
    if value is None or isinstance(value, bool):
        return value
    if isinstance(value, int):
        if -MAX_SAFE_INTEGER <= value <= MAX_SAFE_INTEGER:
            return value
        return encode_tagged_int(value)
    if isinstance(value, float):
        if math.isnan(value):
            return "NaN"
        if math.isinf(value):
            return "Infinity" if value > 0 else "-Infinity"
        return value
    if isinstance(value, str):
        return _escape_string(value) if escape_strings else value
    if isinstance(value, (bytes, bytearray, memoryview)):
        raw = bytes(value)
        return {"__bytes__": len(raw), "base64": base64.b64encode(raw[:4096]).decode("ascii")}
    raise SerializationError(type(value).__name__)


def _placeholder(value: Any) -> str:
    try:
        text = repr(value)
    except Exception:  # noqa: BLE001
        text = ""
    name = type(value).__name__
    if not text:
        return f"[Unserializable {name}]"
    return f"[{name}] {truncate_text(text, 200)}"


def to_jsonable(value: Any, *, max_depth: int = DEFAULT_MAX_DEPTH, escape_strings: bool = True) -> Any:
    """Convert an arbitrary object tree into a JSON-safe tree. Never raises.

    With `escape_strings=False`, strings pass through untouched. Use that for
    text read by a model rather than by `decode_tagged`.
    """
    ancestors: set[int] = set()

    def _walk(node: Any, depth: int) -> Any:
        try:
            return _encode_scalar(node, escape_strings=escape_strings)
        except SerializationError:
            pass

        if depth >= max_depth:
            return MAX_DEPTH_MARKER

        node_id = id(node)
        if node_id in ancestors:
            return CIRCULAR_MARKER

        ancestors.add(node_id)
        try:
            if isinstance(node, BaseException):
                return {"error": type(node).__name__, "message": format_unknown_error(node)}
            if dataclasses.is_dataclass(node) and not isinstance(node, type):
                items = {f.name: getattr(node, f.name, None) for f in dataclasses.fields(node)}
                return {k: _walk(v, depth + 1) for k, v in items.items()}
            if isinstance(node, Mapping):
                out: dict[str, Any] = {}
                for k, v in list(node.items()):
                    key = k if isinstance(k, str) else str(_walk(k, depth + 1))
                    try:
                        out[key] = _walk(v, depth + 1)
                    except Exception:  # noqa: BLE001
                        out[key] = _placeholder(v)
                return out
            if isinstance(node, (list, tuple, set, frozenset)):
                seq = list(node)
                if isinstance(node, (set, frozenset)):
                    try:
                        seq = sorted(seq)
                    except TypeError:
                        pass
                return [_walk(v, depth + 1) for v in seq]
            to_dict = getattr(node, "to_dict", None)
            if callable(to_dict):
                return _walk(to_dict(), depth + 1)
            attrs = getattr(node, "__dict__", None)
            if isinstance(attrs, dict) and attrs:
                return _walk(dict(attrs), depth + 1)
            return _placeholder(node)
        except Exception:  # noqa: BLE001
            return _placeholder(node)
        finally:
            ancestors.discard(node_id)

    return _walk(value, 0)


def safe_json_dumps(value: Any, *, indent: int | None = None, escape_strings: bool = True) -> str:
    """Serialize anything to JSON text. Falls back to a `__nonSerializable` wrapper."""
    try:
        tree = to_jsonable(value, escape_strings=escape_strings)
        return json.dumps(tree, ensure_ascii=False, indent=indent, allow_nan=False)
    except Exception:  # noqa: BLE001
        return json.dumps({"__nonSerializable": _placeholder(value)}, ensure_ascii=False, indent=indent)


def format_unknown_error(error: Any) -> str:
    """Render any raised value (or plain payload) as one string."""
    if isinstance(error, BaseException):
        args = getattr(error, "args", ())
        if len(args) == 1 and not isinstance(args[0], str):
            return safe_json_dumps(args[0])
        try:
            message = str(error).strip()
        except Exception:  # noqa: BLE001
            message = ""
        return message or type(error).__name__
    if isinstance(error, str):
        return error
    if error is None:
        return "None"
    if isinstance(error, (Mapping, list, tuple)) or hasattr(error, "__dict__"):
        return safe_json_dumps(error)
    try:
        return str(error)
    except Exception:  # noqa: BLE001
        return _placeholder(error)


def format_diagnostic(error: Any, *, max_chars: int = DEFAULT_MAX_CHARS) -> str:
    """Single-line, sanitized, length-capped diagnostic for logs."""
    normalized = _WS_RE.sub(" ", sanitize_text(format_unknown_error(error))).strip()
    if not normalized:
        return "unknown error"
    return truncate_text(normalized, max_chars)


__all__ = [
    "CIRCULAR_MARKER",
    "MAX_SAFE_INTEGER",
    "decode_tagged",
    "encode_tagged_int",
    "format_diagnostic",
    "format_unknown_error",
    "safe_json_dumps",
    "sanitize_text",
    "to_jsonable",
    "truncate_text",
]
