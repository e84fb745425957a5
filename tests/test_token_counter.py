"""Tests for TokenCounter."""

import logging

import pytest
import tiktoken

from shared.helper.TokenCounter import TokenCounter


class FakeEncoding:
    """Counts one token per whitespace-separated word."""

    def __init__(self, name: str):
        self.name = name
        self.calls = 0

    def encode(self, text: str, disallowed_special=()) -> list[int]:
        self.calls += 1
        return list(range(len(text.split())))


@pytest.fixture
def tokenizer_env(env):
    env.setenv("CHUNK_TOKENIZER", "tiktoken")
    env.setenv("CHUNK_TOKENIZER_MODEL", "gpt-4o-mini")
    return env


class TestTokenCounter:
    """Tests for tokenizer selection and the character estimate."""

    def test_uses_model_encoding(self, tokenizer_env, helper_config, monkeypatch):
        encoding = FakeEncoding("o200k_base")
        requested = []
        monkeypatch.setattr(tiktoken, "encoding_for_model", lambda model: requested.append(model) or encoding)

        counter = TokenCounter(helper_config=helper_config)

        assert counter.count("one two three") == 3
        assert counter.count("four five") == 2
        assert requested == ["gpt-4o-mini"]
        assert encoding.calls == 2

    def test_unknown_model_falls_back_to_base_encoding(self, tokenizer_env, helper_config, monkeypatch):
        def unknown(model):
            raise KeyError(model)

        monkeypatch.setattr(tiktoken, "encoding_for_model", unknown)
        monkeypatch.setattr(tiktoken, "get_encoding", FakeEncoding)

        counter = TokenCounter(helper_config=helper_config)

        assert counter.count("a b c d") == 4
        assert counter._encoding.name == "cl100k_base"

    def test_load_failure_is_logged_once_then_estimated(self, tokenizer_env, helper_config, monkeypatch, caplog):
        calls = []

        def offline(model):
            calls.append(model)
            raise OSError("could not download encoding")

        monkeypatch.setattr(tiktoken, "encoding_for_model", offline)
        counter = TokenCounter(helper_config=helper_config)

        with caplog.at_level(logging.ERROR):
            first = counter.count("x" * 10)
            second = counter.count("y" * 8)

        assert (first, second) == (3, 2)
        assert len(calls) == 1
        assert len([r for r in caplog.records if "Loading the tokenizer" in r.getMessage()]) == 1

    def test_estimate_mode_never_loads_a_tokenizer(self, helper_config, monkeypatch):
        def forbidden(model):
            raise AssertionError("tokenizer must not be loaded")

        monkeypatch.setattr(tiktoken, "encoding_for_model", forbidden)
        counter = TokenCounter(helper_config=helper_config)

        assert counter.count("abcde") == 2
        assert counter.count("") == 0

    def test_estimate_is_four_characters_per_token_rounded_up(self):
        assert TokenCounter.estimate("abcd") == 1
        assert TokenCounter.estimate("abcdefghi") == 3
