"""Redaction utilities for prompts and protocol traffic logs.

Prefers safety over fidelity: credentials in URLs and obviously sensitive
command parameters never reach the model context or the debug log.
"""

from __future__ import annotations

from typing import Any
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from .sensitivity import is_sensitive_key

_REDACTED = "<redacted>"

# Commands whose free-text parameters are user input (typed text, cookies, storage).
_TEXT_INPUT_METHODS = {
    "Input.insertText": {"text"},
    "Input.dispatchKeyEvent": {"text", "unmodifiedText"},
    "Network.setCookie": {"value"},
    "Network.setCookies": {"cookies"},
    "DOMStorage.setDOMStorageItem": {"value"},
}


def _looks_like_query_string(value: str) -> bool:
    if not isinstance(value, str) or not value:
        return False
    return "=" in value


def _redact_pairs(raw: str) -> tuple[str, bool]:
    pairs = parse_qsl(raw, keep_blank_values=True)
    redacted_any = False
    out_pairs: list[tuple[str, str]] = []
    for k, v in pairs:
        if is_sensitive_key(k) and v:
            out_pairs.append((k, _REDACTED))
            redacted_any = True
        else:
            out_pairs.append((k, v))
    if not redacted_any:
        return raw, False
    return urlencode(out_pairs, doseq=True), True


def redact_url(url: str) -> str:
    """Redact credentials in a URL without destroying ordinary queries.

    - Removes userinfo (`user:pass@host`) from the netloc.
    - Redacts values of token/secret/password-like query keys.
    - Same for the fragment when it looks like a query string (OAuth implicit flow).

    Returns the original string unchanged when nothing needed redaction.
    """
    if not isinstance(url, str) or not url:
        return url
    try:
        parts = urlsplit(url)
    except ValueError:
        return url

    changed = False
    netloc = parts.netloc
    query = parts.query
    fragment = parts.fragment

    if "@" in netloc:
        netloc = netloc.split("@", 1)[1]
        changed = True

    if query:
        query, did = _redact_pairs(query)
        changed = changed or did

    if fragment and _looks_like_query_string(fragment):
        fragment, did = _redact_pairs(fragment)
        changed = changed or did

    if not changed:
        return url
    return urlunsplit((parts.scheme, netloc, parts.path, query, fragment))


def redact_url_brief(url: str) -> str:
    """Low-noise URL redaction (drops query+fragment; removes userinfo)."""
    if not isinstance(url, str) or not url:
        return url
    try:
        parts = urlsplit(url)
    except ValueError:
        return url
    netloc = parts.netloc.split("@", 1)[1] if "@" in parts.netloc else parts.netloc
    return urlunsplit((parts.scheme, netloc, parts.path, "", ""))


def _redacted_summary(value: Any) -> str:
    if isinstance(value, (bytes, bytearray)):
        return f"<redacted bytes len={len(value)}>"
    if isinstance(value, str):
        return f"<redacted str len={len(value)}>"
    if isinstance(value, (list, tuple, set)):
        return f"<redacted list len={len(value)}>"
    if isinstance(value, dict):
        return f"<redacted dict keys={len(value)}>"
    return _REDACTED


def _redact_any(value: Any, *, key: str | None, text_keys: set[str], max_text_chars: int) -> Any:
    if isinstance(value, dict):
        return {
            k: _redact_any(v, key=str(k), text_keys=text_keys, max_text_chars=max_text_chars)
            for k, v in value.items()
        }
    if isinstance(value, list):
        return [_redact_any(v, key=key, text_keys=text_keys, max_text_chars=max_text_chars) for v in value]
    if key is not None and (key in text_keys or is_sensitive_key(key)):
        return _redacted_summary(value)
    if isinstance(value, str):
        if key is not None and key.lower() == "url":
            return redact_url(value)
        if key == "data" and len(value) > 256:
            # Screenshots and other base64 blobs.
            return f"<omitted base64 len={len(value)}>"
        if max_text_chars and len(value) > max_text_chars:
            return f"{value[:max_text_chars]}... [truncated {len(value) - max_text_chars} chars]"
    return value


def redact_protocol_params(method: str, params: Any, *, max_text_chars: int = 512) -> Any:
    """Redact a CDP command's params (or an event/result payload) for debug logs."""
    text_keys = _TEXT_INPUT_METHODS.get(method or "", set())
    return _redact_any(params, key=None, text_keys=set(text_keys), max_text_chars=max_text_chars)


__all__ = ["redact_protocol_params", "redact_url", "redact_url_brief"]
