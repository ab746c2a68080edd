"""Decide which query and parameter keys carry secrets.

Keys are compared after lowercasing and dropping `-`, `_`, `.` and spaces, so
`access_token`, `Access-Token` and `accessToken` all normalize the same way.
"""

from __future__ import annotations

import re

_SEPARATORS_RE = re.compile(r"[-_.\s]+")

# Matched anywhere inside the normalized key.
_SECRET_FRAGMENTS = frozenset(
    {
        "token",
        "secret",
        "password",
        "passwd",
        "pwd",
        "authorization",
        "cookie",
        "session",
        "jwt",
        "bearer",
        "apikey",
        "accesskey",
        "privatekey",
        "credential",
    }
)

# Too short to match as fragments ("author", "spinner", "otpauth").
_SECRET_KEYS = frozenset({"auth", "otp", "pin", "sig"})

# Protocol routing ids that contain a secret fragment but are not secrets.
_PROTOCOL_IDS = frozenset({"sessionid", "targetsessionid"})


def normalize_key(key: str) -> str:
    return _SEPARATORS_RE.sub("", (key or "").strip().lower())


def is_sensitive_key(key: str) -> bool:
    k = normalize_key(key)
    if not k or k in _PROTOCOL_IDS:
        return False
    if k in _SECRET_KEYS:
        return True
    return any(fragment in k for fragment in _SECRET_FRAGMENTS)


__all__ = ["is_sensitive_key", "normalize_key"]
