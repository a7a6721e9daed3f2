"""Build filter chains from configuration.

Accepted shapes (YAML):

    metadata_filters:
      no_match: auto            # accept | reject | auto
      rules:
        - field: Content-Type
          value: {pattern: "image/*", method: wildcard}
          on_match: exclude

    document_filters:           # a bare list is accepted too (no_match=auto)
      - value: {pattern: "(?i)lorem ipsum", method: regex, partial: true}
        on_match: exclude       # no field -> content rule
      - target: reference
        value: {pattern: "*/private/*", method: wildcard}
        on_match: exclude
"""

from __future__ import annotations
from typing import Any, Dict, List, Optional

from ..errors import ConfigurationError
from ..utils.text_matcher import TextMatcher
from .base import FilterRule, FilterTarget, OnMatch
from .chain import FilterChain, NoMatchPolicy

_RULE_KEYS = {"field", "value", "on_match", "target"}


def make_rule(cfg: Dict[str, Any], *, index: int = 0) -> FilterRule:
    if not isinstance(cfg, dict):
        raise ConfigurationError(f"Filter rule #{index} must be a mapping, got {type(cfg).__name__}")
    unknown = set(cfg) - _RULE_KEYS
    if unknown:
        raise ConfigurationError(f"Filter rule #{index}: unknown keys {sorted(unknown)}")
    if "on_match" not in cfg:
        raise ConfigurationError(f"Filter rule #{index}: on_match is required (include|exclude)")
    try:
        on_match = OnMatch(str(cfg["on_match"]).lower())
    except ValueError:
        raise ConfigurationError(f"Filter rule #{index}: on_match must be include or exclude") from None

    field_matcher = TextMatcher.from_config(cfg.get("field"))
    value_matcher = TextMatcher.from_config(cfg.get("value"))
    if "target" in cfg:
        try:
            target = FilterTarget(str(cfg["target"]).lower())
        except ValueError:
            raise ConfigurationError(
                f"Filter rule #{index}: unknown target {cfg['target']!r}"
            ) from None
    else:
        target = FilterTarget.METADATA if field_matcher is not None else FilterTarget.CONTENT

    try:
        return FilterRule(target, on_match, field_matcher, value_matcher)
    except ConfigurationError as e:
        raise ConfigurationError(f"Filter rule #{index}: {e}") from e


def make_filter_chain(cfg: Any, *, name: str = "filters", metadata_only: bool = False) -> FilterChain:
    """Create a FilterChain from a list of rules or a {no_match, rules} mapping."""
    if cfg is None:
        return FilterChain()
    no_match: Optional[str] = None
    if isinstance(cfg, dict):
        unknown = set(cfg) - {"no_match", "rules"}
        if unknown:
            raise ConfigurationError(f"{name}: unknown keys {sorted(unknown)}")
        no_match = cfg.get("no_match")
        rules_cfg = cfg.get("rules") or []
    elif isinstance(cfg, list):
        rules_cfg = cfg
    else:
        raise ConfigurationError(f"{name} must be a list or mapping, got {type(cfg).__name__}")

    rules: List[FilterRule] = [make_rule(r, index=i) for i, r in enumerate(rules_cfg)]
    chain = FilterChain(rules, no_match=str(no_match).lower() if no_match else NoMatchPolicy.AUTO)
    if metadata_only:
        chain.assert_metadata_only(name)
    return chain
