"""Tests for TextMatcher."""

import pytest

from crawl_relay.errors import ConfigurationError
from crawl_relay.utils.text_matcher import MatchMethod, TextMatcher


def test_basic_is_exact_and_literal():
    m = TextMatcher.basic("a.b")
    assert m.matches("a.b")
    assert not m.matches("axb")
    assert not m.matches("a.b.c")


def test_basic_ignore_case():
    assert TextMatcher.basic("Content-Type", ignore_case=True).matches("content-type")
    assert not TextMatcher.basic("Content-Type").matches("content-type")


def test_basic_partial_is_substring():
    m = TextMatcher("ipsum", partial=True)
    assert m.matches("lorem ipsum dolor")


def test_wildcard():
    m = TextMatcher.wildcard("text/*")
    assert m.matches("text/html")
    assert not m.matches("image/png")
    assert not m.matches("xtext/html")


def test_wildcard_partial():
    m = TextMatcher("*.pdf", method=MatchMethod.WILDCARD, partial=True)
    assert m.matches("https://x/a.pdf?download=1")


def test_regex_fullmatch_vs_search():
    assert not TextMatcher.regex(r"\d+").matches("abc123")
    assert TextMatcher.regex(r"\d+", partial=True).matches("abc123")


def test_none_pattern_and_none_text_never_match():
    assert not TextMatcher().matches("anything")
    assert not TextMatcher.basic("x").matches(None)


def test_invalid_regex_is_configuration_error():
    with pytest.raises(ConfigurationError):
        TextMatcher.regex("(")


def test_unknown_method_is_configuration_error():
    with pytest.raises(ConfigurationError):
        TextMatcher("x", method="glob")


class TestFromConfig:
    def test_string_is_basic(self):
        m = TextMatcher.from_config("Title")
        assert m.method is MatchMethod.BASIC
        assert m.matches("Title")

    def test_mapping(self):
        m = TextMatcher.from_config({"pattern": "^x-", "method": "regex", "partial": True, "ignore_case": True})
        assert m.matches("X-Custom")

    def test_none_stays_none(self):
        assert TextMatcher.from_config(None) is None

    def test_unknown_keys_rejected(self):
        with pytest.raises(ConfigurationError):
            TextMatcher.from_config({"pattern": "x", "regex": True})

    def test_wrong_type_rejected(self):
        with pytest.raises(ConfigurationError):
            TextMatcher.from_config(42)


def test_filter_names_sorted():
    m = TextMatcher.wildcard("x-*")
    assert m.filter_names(["x-b", "y", "x-a"]) == ["x-a", "x-b"]
