"""Token counting and token-aligned truncation.

The default tokenizer is tiktoken's `cl100k_base` encoding, so counts are
stable across processes. Any object with `encode(text) -> list[int]` and
`decode(tokens) -> str` can be injected instead. When the tokenizer also has
`encode_ordinary` (tiktoken encodings do), it is preferred so special-token
strings in page text count as ordinary text.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from typing import Any, Protocol

from .config import ContextConfig
from .diagnostics import format_diagnostic

_LOGGER = logging.getLogger("page_context.tokens")

DEFAULT_TRUNCATION_MESSAGE = "\n[Content truncated due to length]"
# Chat framing overhead per message (role markers, separators).
MESSAGE_OVERHEAD_TOKENS = 4


class Tokenizer(Protocol):
    def encode(self, text: str) -> list[int]: ...

    def decode(self, tokens: Sequence[int]) -> str: ...


def _load_encoding(name: str) -> Tokenizer:
    import tiktoken

    return tiktoken.get_encoding(name)


class TokenBudget:
    def __init__(self, tokenizer: Tokenizer | None = None, *, config: ContextConfig | None = None) -> None:
        self.config = config or ContextConfig()
        self._tokenizer = tokenizer

    @property
    def tokenizer(self) -> Tokenizer:
        if self._tokenizer is None:
            self._tokenizer = _load_encoding(self.config.token_encoding)
        return self._tokenizer

    @property
    def limit(self) -> int:
        return self.config.token_limit

    def encode(self, text: str) -> list[int]:
        if not text:
            return []
        tokenizer = self.tokenizer
        encode_ordinary = getattr(tokenizer, "encode_ordinary", None)
        if callable(encode_ordinary):
            return list(encode_ordinary(text))
        return list(tokenizer.encode(text))

    def count_tokens(self, text: str) -> int:
        return len(self.encode(text))

    def truncate_to_token_limit(
        self,
        text: str,
        limit: int | None = None,
        truncation_message: str = DEFAULT_TRUNCATION_MESSAGE,
    ) -> str:
        """Return `text` if it fits in `limit` tokens, else a token-aligned prefix plus the message.

        The result always re-counts within `limit` (unless the message alone is
        larger), so truncating an already-truncated text returns it unchanged.
        Never raises.
        """
        limit = self.limit if limit is None else max(0, int(limit))
        try:
            tokens = self.encode(text)
            if len(tokens) <= limit:
                return text
            available = max(0, limit - self.count_tokens(truncation_message))
            while available > 0:
                result = self.tokenizer.decode(tokens[:available]) + truncation_message
                overshoot = self.count_tokens(result) - limit
                if overshoot <= 0:
                    return result
                # Boundary tokens can merge differently after decoding; shrink and re-check.
                available = max(0, available - overshoot)
            return truncation_message
        except Exception as exc:  # noqa: BLE001
            _LOGGER.warning("Token truncation failed; using character estimate: %s", format_diagnostic(exc))
            keep = max(0, limit - len(truncation_message) // 4) * 4
            if len(text) <= keep:
                return text
            return text[:keep] + truncation_message

    def count_message_tokens(self, messages: Iterable[Any]) -> int:
        """Approximate prompt size: text parts plus a fixed per-message overhead.

        Image parts are not counted.
        """
        total = 0
        for message in messages:
            role = message.get("role") if isinstance(message, dict) else getattr(message, "role", "")
            content = message.get("content") if isinstance(message, dict) else getattr(message, "content", "")
            total += MESSAGE_OVERHEAD_TOKENS + self.count_tokens(str(role or ""))
            if isinstance(content, str):
                total += self.count_tokens(content)
            elif isinstance(content, list):
                for part in content:
                    if isinstance(part, dict) and part.get("type") == "text":
                        total += self.count_tokens(str(part.get("text") or ""))
        return total


_DEFAULT_BUDGET: TokenBudget | None = None


def default_budget() -> TokenBudget:
    global _DEFAULT_BUDGET
    if _DEFAULT_BUDGET is None:
        _DEFAULT_BUDGET = TokenBudget()
    return _DEFAULT_BUDGET


def count_tokens(text: str) -> int:
    return default_budget().count_tokens(text)


def truncate_to_token_limit(text: str, limit: int, truncation_message: str = DEFAULT_TRUNCATION_MESSAGE) -> str:
    return default_budget().truncate_to_token_limit(text, limit, truncation_message)


__all__ = [
    "DEFAULT_TRUNCATION_MESSAGE",
    "TokenBudget",
    "Tokenizer",
    "count_tokens",
    "default_budget",
    "truncate_to_token_limit",
]
