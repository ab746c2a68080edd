"""Per-step context messages for the model.

Section order is fixed:

    task -> current URL -> open tabs -> page state -> variables -> step history

Everything taken from the page or the run (URLs, DOM text, variable values,
step thoughts and outcomes) is control-character stripped and capped before
it reaches a prompt. Tab URLs are read live from the page at call time; apart
from that the output is a pure function of the inputs.

History longer than `MAX_HISTORY_STEPS` is trimmed to the most recent steps,
and trimming is always announced with an explicit marker plus a compact
summary of the last few omitted steps.
"""

from __future__ import annotations

import base64
import logging
import math
from collections.abc import Mapping, Sequence
from typing import Any

from ..diagnostics import format_diagnostic, format_unknown_error, safe_json_dumps, sanitize_text
from ..redaction import redact_url
from .types import Message, OpenTab, PageState

_LOGGER = logging.getLogger("page_context.messages.builder")

MAX_HISTORY_STEPS = 10
MAX_PROMPT_VALUE_CHARS = 2000
MAX_DOM_STATE_CHARS = 50_000
MAX_OPEN_TABS = 20
MAX_TAB_URL_CHARS = 500
MAX_VARIABLE_KEY_CHARS = 120
MAX_VARIABLES = 25
MAX_SUMMARY_STEPS = 5
MAX_SUMMARY_CHARS = 1500
MAX_SUMMARY_ACTION_CHARS = 120
MAX_SUMMARY_OUTCOME_CHARS = 220

URL_UNAVAILABLE = "about:blank (url unavailable)"


def _read(source: Any, name: str) -> Any:
    if source is None:
        return None
    try:
        if isinstance(source, Mapping):
            return source.get(name)
        return getattr(source, name, None)
    except Exception:  # noqa: BLE001
        return None


def _prompt_text(value: str) -> str:
    text = sanitize_text(value, keep_newlines=True)
    if len(text) <= MAX_PROMPT_VALUE_CHARS:
        return text
    return text[:MAX_PROMPT_VALUE_CHARS] + "... [truncated for prompt budget]"


def _dom_text(value: str) -> str:
    text = sanitize_text(value, keep_newlines=True)
    if len(text) <= MAX_DOM_STATE_CHARS:
        return text
    return text[:MAX_DOM_STATE_CHARS] + "... [DOM truncated for prompt budget]"


def _compact(value: Any, fallback: str, max_chars: int) -> str:
    if value is None:
        return fallback
    raw = value if isinstance(value, str) else format_unknown_error(value)
    text = " ".join(sanitize_text(raw).split()) or fallback
    if len(text) <= max_chars:
        return text
    return f"{text[:max_chars]}... [truncated]"


def _serialize(value: Any) -> str:
    return _prompt_text(safe_json_dumps(value, escape_strings=False))


def _step_text(value: Any, fallback: str) -> str:
    if value is None:
        return fallback
    if isinstance(value, str):
        return _prompt_text(value)
    return _prompt_text(format_unknown_error(value))


def _step_label(step: Any, fallback: int) -> int:
    index = _read(step, "index")
    if isinstance(index, int) and not isinstance(index, bool) and index >= 0:
        return index
    return fallback


def _tab_url(url: Any) -> str:
    if not isinstance(url, str):
        return URL_UNAVAILABLE
    text = " ".join(sanitize_text(url).split()) or "about:blank"
    text = redact_url(text)
    if len(text) <= MAX_TAB_URL_CHARS:
        return text
    return f"{text[:MAX_TAB_URL_CHARS]}... [tab url truncated]"


def _tab_fields(tab: Any) -> tuple[Any, bool]:
    if isinstance(tab, str):
        return tab, False
    return _read(tab, "url"), bool(_read(tab, "current"))


async def _current_url(page: Any) -> str:
    try:
        return _tab_url(await page.url())
    except Exception as exc:  # noqa: BLE001
        _LOGGER.debug("Current URL unavailable: %s", format_diagnostic(exc))
        return "Current URL unavailable"


async def _open_tabs(page: Any, current_url: str) -> str:
    try:
        tabs: list[OpenTab | Any] = list(await page.open_tabs())
    except Exception as exc:  # noqa: BLE001
        _LOGGER.debug("Open tabs unavailable: %s", format_diagnostic(exc))
        return "Open tabs unavailable"
    if not tabs:
        return f"[0] {current_url} (current)"

    visible = list(enumerate(tabs[:MAX_OPEN_TABS]))
    current_index = next((i for i, tab in enumerate(tabs) if _tab_fields(tab)[1]), None)
    if current_index is not None and current_index >= MAX_OPEN_TABS:
        visible = visible[: MAX_OPEN_TABS - 1] + [(current_index, tabs[current_index])]

    lines: list[str] = []
    for index, tab in visible:
        url, current = _tab_fields(tab)
        lines.append(f"[{index}] {_tab_url(url)}{' (current)' if current else ''}")
    hidden = len(tabs) - len(visible)
    if hidden > 0:
        lines.append(f"... {hidden} more tabs omitted")
    return "\n".join(lines)


def _normalize_scroll(value: Any) -> tuple[int, int]:
    if isinstance(value, Sequence) and not isinstance(value, str) and len(value) >= 2:
        above, below = value[0], value[1]
        numbers = all(isinstance(v, (int, float)) and not isinstance(v, bool) for v in (above, below))
        if numbers and math.isfinite(above) and math.isfinite(below):
            return int(above), int(below)
    return 0, 0


async def _scroll_info(page: Any) -> tuple[int, int]:
    scroll_info = getattr(page, "scroll_info", None)
    if not callable(scroll_info):
        return 0, 0
    try:
        return _normalize_scroll(await scroll_info())
    except Exception as exc:  # noqa: BLE001
        _LOGGER.debug("Scroll info unavailable: %s", format_diagnostic(exc))
        return 0, 0


async def _page_state(page: Any, page_state: Any) -> PageState:
    if isinstance(page_state, PageState):
        return page_state
    if isinstance(page_state, str):
        above, below = await _scroll_info(page)
        return PageState(dom_state=page_state, pixels_above=above, pixels_below=below)
    above, below = await _scroll_info(page)
    return PageState.from_snapshot(page_state, pixels_above=above, pixels_below=below)


def _screenshot_url(screenshot: str | bytes) -> str:
    if isinstance(screenshot, (bytes, bytearray)):
        return "data:image/png;base64," + base64.b64encode(bytes(screenshot)).decode("ascii")
    if screenshot.startswith("data:"):
        return screenshot
    return f"data:image/png;base64,{screenshot}"


def _page_state_message(state: PageState, screenshot: str | bytes | None) -> Message:
    dom_state = _dom_text(state.dom_state) if state.dom_state else "No elements found"
    text = (
        "=== Page State ===\n"
        f"Pixels above: {state.pixels_above}\n"
        f"Pixels below: {state.pixels_below}\n"
        "\n"
        f"=== Elements ===\n{dom_state}\n"
    )
    if not screenshot:
        return Message(role="user", content=text)
    return Message(
        role="user",
        content=[
            {"type": "text", "text": text},
            {"type": "text", "text": "=== Page Screenshot ===\n"},
            {"type": "image", "url": _screenshot_url(screenshot), "mimeType": "image/png"},
        ],
    )


def _variables_content(variables: Sequence[Any]) -> str:
    items = list(variables or ())
    visible = items[:MAX_VARIABLES]
    if not visible:
        return "No variables set"
    lines: list[str] = []
    for index, variable in enumerate(visible):
        key = _compact(_read(variable, "key"), f"variable_{index + 1}", MAX_VARIABLE_KEY_CHARS)
        description = _prompt_text(
            _compact(_read(variable, "description"), "Variable description unavailable", MAX_PROMPT_VALUE_CHARS)
        )
        lines.append(f"<<{key}>> - {description} | current value: {_serialize(_read(variable, 'value'))}")
    omitted = len(items) - len(visible)
    if omitted > 0:
        lines.append(f"... {omitted} more variable{'' if omitted == 1 else 's'} omitted for context budget")
    return "\n".join(lines)


def _omitted_summary(steps: Sequence[Any]) -> str:
    """One line per omitted step (action type and outcome only), newest last."""
    if not steps:
        return ""
    shown = list(steps[-MAX_SUMMARY_STEPS:])
    skipped = len(steps) - len(shown)
    lines: list[str] = []
    for position, step in enumerate(shown, start=skipped):
        action_type = _compact(_read(_read(step, "action"), "type"), "unknown", MAX_SUMMARY_ACTION_CHARS)
        outcome = _compact(
            _read(_read(step, "outcome"), "message"), "Action output unavailable", MAX_SUMMARY_OUTCOME_CHARS
        )
        lines.append(f"- Step {_step_label(step, position)}: action={action_type}; outcome={outcome}")
    text = "\n".join(lines)
    if skipped:
        text = f"({skipped} earlier omitted step{'' if skipped == 1 else 's'} not summarized)\n{text}"
    if len(text) > MAX_SUMMARY_CHARS:
        text = f"{text[:MAX_SUMMARY_CHARS]}... [summary truncated {len(text) - MAX_SUMMARY_CHARS} chars]"
    return _prompt_text(text)


def _history_messages(steps: list[Any]) -> list[Message]:
    if not steps:
        return []
    recent = steps[-MAX_HISTORY_STEPS:]
    hidden = len(steps) - len(recent)

    header = "=== Previous Actions ===\n"
    if hidden:
        header += (
            f"(Showing latest {len(recent)} of {len(steps)} steps; "
            f"{hidden} older step{'' if hidden == 1 else 's'} omitted for context budget.)\n"
        )
    out = [Message(role="user", content=header)]
    if hidden:
        summary = _omitted_summary(steps[:hidden])
        if summary:
            out.append(Message(role="user", content=f"=== Earlier Actions Summary ===\n{summary}\n"))

    for step in recent:
        thoughts = _step_text(_read(step, "thoughts"), "Thoughts unavailable")
        memory = _step_text(_read(step, "memory"), "Memory unavailable")
        outcome = _read(step, "outcome")
        message = _step_text(_read(outcome, "message"), "Action output unavailable")
        extract = _read(outcome, "extract")
        out.append(
            Message(
                role="assistant",
                content=f"Thoughts: {thoughts}\nMemory: {memory}\nAction: {_serialize(_read(step, 'action'))}",
            )
        )
        out.append(Message(role="user", content=message if extract is None else f"{message} :\n {_serialize(extract)}"))
    return out


async def build_agent_step_messages(
    base_messages: Sequence[Message],
    steps: Sequence[Any],
    task: str,
    page: Any,
    page_state: PageState | Any,
    screenshot: str | bytes | None = None,
    variables: Sequence[Any] = (),
) -> list[Message]:
    """Compose the messages for one agent step.

    `page` needs async `url()` and `open_tabs()`; `scroll_info()` is used when
    `page_state` is a DOM snapshot (or plain text) rather than a `PageState`.
    Never raises for unreadable page data; each section degrades to a short
    "unavailable" line instead.
    """
    messages = list(base_messages)
    history = [step for step in (steps or ()) if step is not None]

    messages.append(Message(role="user", content=f"=== Final Goal ===\n{_prompt_text(task or '')}\n"))

    current_url = await _current_url(page)
    messages.append(Message(role="user", content=f"=== Current URL ===\n{current_url}\n"))

    tabs = await _open_tabs(page, current_url)
    messages.append(Message(role="user", content=f"=== Open Tabs ===\n{tabs or 'No open tabs'}\n"))

    messages.append(_page_state_message(await _page_state(page, page_state), screenshot))

    messages.append(Message(role="user", content=f"=== Variables ===\n{_variables_content(variables)}\n"))

    messages.extend(_history_messages(history))
    return messages


__all__ = ["MAX_HISTORY_STEPS", "build_agent_step_messages"]
