from __future__ import annotations

import logging
from collections.abc import Sequence

import pytest

from page_context import tokens as tokens_mod
from page_context.config import ContextConfig
from page_context.messages.types import Message
from page_context.tokens import DEFAULT_TRUNCATION_MESSAGE, TokenBudget


class CharTokenizer:
    def encode(self, text: str) -> list[int]:
        return [ord(c) for c in text]

    def decode(self, tokens: Sequence[int]) -> str:
        return "".join(chr(t) for t in tokens)


class DoublingTokenizer(CharTokenizer):
    """Each token decodes to two characters, so a decoded prefix re-encodes larger."""

    def decode(self, tokens: Sequence[int]) -> str:
        return "".join(chr(t) * 2 for t in tokens)


class BrokenTokenizer:
    def encode(self, text: str) -> list[int]:
        raise RuntimeError("tokenizer unavailable")

    def decode(self, tokens: Sequence[int]) -> str:
        raise RuntimeError("tokenizer unavailable")


@pytest.fixture
def real_budget() -> TokenBudget:
    tiktoken = pytest.importorskip("tiktoken")
    try:
        encoding = tiktoken.get_encoding("cl100k_base")
    except Exception as exc:  # noqa: BLE001
        pytest.skip(f"cl100k_base encoding unavailable: {exc}")
    return TokenBudget(encoding)


def test_count_tokens_with_cl100k(real_budget: TokenBudget) -> None:
    assert real_budget.count_tokens("") == 0
    assert real_budget.count_tokens("hello world") == 2


def test_truncate_leaves_short_text_unchanged(real_budget: TokenBudget) -> None:
    assert real_budget.truncate_to_token_limit("hello world", 1000, "[cut]") == "hello world"


def test_truncate_is_token_aligned_and_idempotent(real_budget: TokenBudget) -> None:
    text = "The quick brown fox jumps over the lazy dog. " * 200
    once = real_budget.truncate_to_token_limit(text, 50)
    assert once.endswith(DEFAULT_TRUNCATION_MESSAGE)
    assert real_budget.count_tokens(once) <= 50
    assert text.startswith(once[: -len(DEFAULT_TRUNCATION_MESSAGE)])
    assert real_budget.truncate_to_token_limit(once, 50) == once


def test_truncate_handles_multibyte_text(real_budget: TokenBudget) -> None:
    text = "日本語のテキストと絵文字🙂" * 100
    once = real_budget.truncate_to_token_limit(text, 30)
    assert real_budget.count_tokens(once) <= 30
    assert real_budget.truncate_to_token_limit(once, 30) == once


def test_truncate_takes_prefix_plus_message() -> None:
    budget = TokenBudget(CharTokenizer())
    assert budget.count_tokens("") == 0
    out = budget.truncate_to_token_limit("abcdefghij", 6, "..")
    assert out == "abcd.."
    assert budget.truncate_to_token_limit(out, 6, "..") == out


def test_truncate_limit_smaller_than_message() -> None:
    budget = TokenBudget(CharTokenizer())
    out = budget.truncate_to_token_limit("abcdefghij", 1, "...")
    assert out == "..."
    assert budget.truncate_to_token_limit(out, 1, "...") == out
    assert budget.truncate_to_token_limit("abcdefghij", 0, "") == ""


def test_truncate_shrinks_until_result_fits() -> None:
    budget = TokenBudget(DoublingTokenizer())
    text = "abcdefghijklmnopqrst"
    out = budget.truncate_to_token_limit(text, 12, ".")
    assert budget.count_tokens(out) <= 12
    assert out.endswith(".")
    assert budget.truncate_to_token_limit(out, 12, ".") == out


def test_truncate_never_raises(caplog: pytest.LogCaptureFixture) -> None:
    budget = TokenBudget(BrokenTokenizer())
    with caplog.at_level(logging.WARNING, logger="page_context.tokens"):
        out = budget.truncate_to_token_limit("x" * 100, 10, "..")
    assert out == "x" * 40 + ".."
    assert any("tokenizer unavailable" in r.getMessage() for r in caplog.records)


def test_count_message_tokens() -> None:
    budget = TokenBudget(CharTokenizer())
    messages = [
        Message(role="user", content="abc"),
        {"role": "assistant", "content": [{"type": "text", "text": "de"}, {"type": "image", "url": "data:x"}]},
    ]
    # (4 overhead + "user" + "abc") + (4 overhead + "assistant" + "de")
    assert budget.count_message_tokens(messages) == 11 + 15


def test_default_limit_and_lazy_encoding(monkeypatch: pytest.MonkeyPatch) -> None:
    requested: list[str] = []

    def fake_load(name: str) -> CharTokenizer:
        requested.append(name)
        return CharTokenizer()

    monkeypatch.setattr(tokens_mod, "_load_encoding", fake_load)
    budget = TokenBudget(config=ContextConfig(token_encoding="o200k_base", token_limit=5))
    assert requested == []
    assert budget.truncate_to_token_limit("abcdefgh", truncation_message="!") == "abcd!"
    assert budget.count_tokens("xyz") == 3
    assert requested == ["o200k_base"]


def test_module_level_helpers_use_default_budget(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(tokens_mod, "_DEFAULT_BUDGET", TokenBudget(CharTokenizer()))
    assert tokens_mod.count_tokens("") == 0
    assert tokens_mod.count_tokens("four") == 4
    assert tokens_mod.truncate_to_token_limit("hello world", 1000, "[cut]") == "hello world"
    assert tokens_mod.truncate_to_token_limit("hello world", 7, "[cut]") == "he[cut]"


class SpecialAwareTokenizer(CharTokenizer):
    """Rejects special-token text in `encode`, like tiktoken's default."""

    def encode(self, text: str) -> list[int]:
        if "<|endoftext|>" in text:
            raise ValueError("Encountered text corresponding to disallowed special token '<|endoftext|>'")
        return super().encode(text)

    def encode_ordinary(self, text: str) -> list[int]:
        return super().encode(text)


def test_special_token_text_is_counted_as_plain_text(caplog: pytest.LogCaptureFixture) -> None:
    budget = TokenBudget(SpecialAwareTokenizer())
    text = "page text <|endoftext|> more"
    assert budget.count_tokens(text) == len(text)

    with caplog.at_level(logging.WARNING, logger="page_context.tokens"):
        out = budget.truncate_to_token_limit("<|endoftext|> " + "word " * 400, 50, "[cut]")
    assert budget.count_tokens(out) <= 50
    assert out == ("<|endoftext|> " + "word " * 400)[:45] + "[cut]"
    assert not caplog.records


def test_special_token_text_with_cl100k(real_budget: TokenBudget) -> None:
    text = "<|endoftext|> " + "word " * 400
    assert real_budget.count_tokens("page text <|endoftext|> more") > 1
    out = real_budget.truncate_to_token_limit(text, 50, "[cut]")
    assert out.endswith("[cut]")
    assert real_budget.count_tokens(out) <= 50
    assert real_budget.truncate_to_token_limit(out, 50, "[cut]") == out
