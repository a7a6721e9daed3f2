"""Tests for filter rules, chains and the config-driven chain builder."""

import pytest

from conftest import make_record
from crawl_relay.errors import ConfigurationError, StageError
from crawl_relay.filters import make_filter_chain
from crawl_relay.filters.base import FilterDecision, FilterRule, FilterTarget, OnMatch
from crawl_relay.filters.chain import FilterChain, NoMatchPolicy
from crawl_relay.pipeline.context import DocumentRecord
from crawl_relay.utils.text_matcher import TextMatcher


def _meta_rule(field, value, on_match):
    return FilterRule(FilterTarget.METADATA, on_match, TextMatcher.basic(field), TextMatcher.from_config(value))


# =============================================================================
# Rules
# =============================================================================


def test_metadata_rule_matches_any_value():
    rule = _meta_rule("lang", "fr", OnMatch.INCLUDE)
    assert rule.matches(make_record("r", lang=["en", "fr"]))
    assert not rule.matches(make_record("r", lang="en"))


def test_metadata_rule_without_value_means_field_present():
    rule = FilterRule(FilterTarget.METADATA, OnMatch.EXCLUDE, TextMatcher.basic("noindex"))
    assert rule.matches(make_record("r", noindex=""))
    assert not rule.matches(make_record("r", title="t"))


def test_reference_rule():
    rule = FilterRule(FilterTarget.REFERENCE, OnMatch.EXCLUDE, value_matcher=TextMatcher.wildcard("*/private/*"))
    assert rule.matches(make_record("https://x/private/a"))


def test_content_rule_reads_content():
    rule = FilterRule(FilterTarget.CONTENT, OnMatch.EXCLUDE, value_matcher=TextMatcher("secret", partial=True))
    assert rule.matches(make_record("r", content="a secret page"))


def test_content_rule_without_content_raises_stage_error():
    rule = FilterRule(FilterTarget.CONTENT, OnMatch.EXCLUDE, value_matcher=TextMatcher("x", partial=True))
    with pytest.raises(StageError) as exc:
        rule.matches(make_record("r"))
    assert exc.value.reason_code == "CONTENT_UNREADABLE"


def test_metadata_rule_requires_field():
    with pytest.raises(ConfigurationError):
        FilterRule(FilterTarget.METADATA, OnMatch.INCLUDE, None, TextMatcher.basic("x"))


def test_content_rule_rejects_field():
    with pytest.raises(ConfigurationError):
        FilterRule(FilterTarget.CONTENT, OnMatch.INCLUDE, TextMatcher.basic("f"), TextMatcher.basic("x"))


# =============================================================================
# Chain
# =============================================================================


class TestFirstMatchWins:
    def test_include_before_exclude(self):
        chain = FilterChain([
            _meta_rule("type", "pdf", OnMatch.INCLUDE),
            _meta_rule("type", "pdf", OnMatch.EXCLUDE),
        ])
        res = chain.evaluate(make_record("r", type="pdf"))
        assert res.accepted
        assert res.rule_index == 0

    def test_exclude_before_include(self):
        chain = FilterChain([
            _meta_rule("type", "pdf", OnMatch.EXCLUDE),
            _meta_rule("type", "pdf", OnMatch.INCLUDE),
        ])
        res = chain.evaluate(make_record("r", type="pdf"))
        assert res.decision is FilterDecision.REJECT
        assert res.rule_index == 0

    def test_later_rules_not_consulted(self):
        class Boom(TextMatcher):
            def matches(self, text):
                raise AssertionError("second rule evaluated")

        chain = FilterChain([
            _meta_rule("a", "1", OnMatch.INCLUDE),
            FilterRule(FilterTarget.METADATA, OnMatch.EXCLUDE, Boom("a")),
        ])
        assert chain.evaluate(make_record("r", a="1")).accepted


class TestNoMatchPolicy:
    def test_auto_rejects_with_include_rules(self):
        chain = FilterChain([_meta_rule("type", "html", OnMatch.INCLUDE)])
        res = chain.evaluate(make_record("r", type="pdf"))
        assert not res.accepted
        assert res.rule is None

    def test_auto_accepts_exclude_only(self):
        chain = FilterChain([_meta_rule("type", "html", OnMatch.EXCLUDE)])
        assert chain.evaluate(make_record("r", type="pdf")).accepted

    def test_empty_chain_accepts(self):
        assert FilterChain().evaluate(make_record("r")).accepted

    def test_explicit_accept(self):
        chain = FilterChain([_meta_rule("type", "html", OnMatch.INCLUDE)], no_match=NoMatchPolicy.ACCEPT)
        assert chain.evaluate(make_record("r", type="pdf")).accepted

    def test_explicit_reject(self):
        chain = FilterChain([_meta_rule("type", "html", OnMatch.EXCLUDE)], no_match="reject")
        assert not chain.evaluate(make_record("r", type="pdf")).accepted

    def test_unknown_policy(self):
        with pytest.raises(ConfigurationError):
            FilterChain([], no_match="maybe")


# =============================================================================
# Builder
# =============================================================================


def test_make_filter_chain_from_mapping():
    chain = make_filter_chain({
        "no_match": "accept",
        "rules": [
            {"field": "Content-Type", "value": {"pattern": "image/*", "method": "wildcard"}, "on_match": "exclude"},
        ],
    })
    assert chain.no_match is NoMatchPolicy.ACCEPT
    assert not chain.evaluate(make_record("r", Content_Type="image/png")).accepted
    assert chain.evaluate(make_record("r", Content_Type="text/html")).accepted


def test_make_filter_chain_infers_targets():
    chain = make_filter_chain([
        {"value": {"pattern": "spam", "partial": True}, "on_match": "exclude"},
        {"field": "title", "on_match": "include"},
        {"target": "reference", "value": "https://x/a", "on_match": "exclude"},
    ])
    assert [r.target for r in chain.rules] == [FilterTarget.CONTENT, FilterTarget.METADATA, FilterTarget.REFERENCE]
    assert chain.needs_content


def test_metadata_chain_refuses_content_rules():
    with pytest.raises(ConfigurationError):
        make_filter_chain([{"value": "x", "on_match": "exclude"}], name="metadata_filters", metadata_only=True)


@pytest.mark.parametrize("rule", [
    {"field": "a"},
    {"field": "a", "on_match": "keep"},
    {"field": "a", "on_match": "include", "extra": 1},
    {"target": "headers", "value": "x", "on_match": "include"},
    {"field": {"pattern": "(", "method": "regex"}, "on_match": "include"},
])
def test_bad_rules_fail_at_load(rule):
    with pytest.raises(ConfigurationError):
        make_filter_chain([rule])


def test_none_config_is_empty_chain():
    chain = make_filter_chain(None)
    assert len(chain) == 0
    assert chain.evaluate(DocumentRecord("r")).accepted
