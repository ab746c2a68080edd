"""DevTools HTTP discovery helpers (`/json/version`, `/json/list`)."""

from __future__ import annotations

import json
from typing import Any
from urllib.error import URLError
from urllib.request import urlopen

from .errors import ProtocolError


def _http_get_json(url: str, timeout: float = 2.0) -> Any:
    """Fetch JSON from URL."""
    try:
        with urlopen(url, timeout=timeout) as resp:
            return json.loads(resp.read().decode())
    except (URLError, TimeoutError, OSError) as exc:
        raise ProtocolError(method="http", reason=f"GET {url} failed: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise ProtocolError(method="http", reason=f"GET {url} returned invalid JSON") from exc


def browser_ws_url(host: str = "127.0.0.1", port: int = 9222, *, timeout: float = 2.0) -> str:
    """Return the browser-level websocket debugger URL."""
    data = _http_get_json(f"http://{host}:{int(port)}/json/version", timeout=timeout)
    ws_url = data.get("webSocketDebuggerUrl") if isinstance(data, dict) else None
    if not isinstance(ws_url, str) or not ws_url:
        raise ProtocolError(method="http", reason="/json/version has no webSocketDebuggerUrl")
    return ws_url


def list_page_targets(host: str = "127.0.0.1", port: int = 9222, *, timeout: float = 2.0) -> list[dict[str, Any]]:
    """Return page targets reported by `/json/list` (other target types filtered out)."""
    data = _http_get_json(f"http://{host}:{int(port)}/json/list", timeout=timeout)
    if not isinstance(data, list):
        return []
    return [t for t in data if isinstance(t, dict) and t.get("type") == "page"]


__all__ = ["browser_ws_url", "list_page_targets"]
