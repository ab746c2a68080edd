"""Page context for browser agents.

Keeps a CDP-derived model of the page DOM (element maps, geometry) behind an
explicitly invalidated cache, and turns it plus the run history into
bounded, ordered messages for a language model.

Keep this package import light: `import page_context` must not pull in the
websocket transport, tiktoken or Pillow. Public names resolve lazily.
"""

from __future__ import annotations

from typing import Any

_EXPORTS: dict[str, str] = {
    "ContextConfig": ".config",
    "DebugOptions": ".config",
    "ProtocolError": ".errors",
    "BuildError": ".errors",
    "ResolutionError": ".errors",
    "SerializationError": ".errors",
    "format_diagnostic": ".diagnostics",
    "CdpConnection": ".session_cdp",
    "CdpSession": ".session_cdp",
    "ProtocolSession": ".session_cdp",
    "CdpPage": ".page",
    "PageHandle": ".page",
    "BackendIdMaps": ".dom",
    "DomStateCache": ".dom",
    "DomStateSnapshot": ".dom",
    "build_backend_id_maps": ".dom",
    "get_bounding_box": ".dom",
    "build_agent_step_messages": ".messages",
    "AgentStep": ".messages",
    "Message": ".messages",
    "Variable": ".messages",
    "TokenBudget": ".tokens",
    "count_tokens": ".tokens",
    "truncate_to_token_limit": ".tokens",
    "DebugSnapshotWriter": ".debug_writer",
    "write_debug_snapshot": ".debug_writer",
}

__all__ = sorted(_EXPORTS)


def __getattr__(name: str) -> Any:  # pragma: no cover
    module_name = _EXPORTS.get(name)
    if module_name is None:
        raise AttributeError(name)
    from importlib import import_module

    return getattr(import_module(module_name, __name__), name)
