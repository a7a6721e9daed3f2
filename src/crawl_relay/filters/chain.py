"""Ordered first-match-wins filter chain.

Evaluation walks the rules in configured order. The first rule that matches
decides: INCLUDE accepts, EXCLUDE rejects, and no further rule is looked at.

When nothing matches, the chain's `no_match` policy decides:
- accept: accept
- reject: reject
- auto:   reject if the chain holds any INCLUDE rule (it is an allow-list), else accept
"""

from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Sequence

from ..errors import ConfigurationError
from ..pipeline.context import DocumentRecord
from .base import FilterDecision, FilterRule, FilterTarget, OnMatch


class NoMatchPolicy(str, Enum):
    ACCEPT = "accept"
    REJECT = "reject"
    AUTO = "auto"


@dataclass(frozen=True)
class ChainResult:
    decision: FilterDecision
    rule: Optional[FilterRule] = None   # None when the no-match policy decided
    rule_index: int = -1

    @property
    def accepted(self) -> bool:
        return self.decision is FilterDecision.ACCEPT


class FilterChain:
    def __init__(self, rules: Sequence[FilterRule] = (), no_match: NoMatchPolicy = NoMatchPolicy.AUTO):
        self.rules: tuple = tuple(rules)
        try:
            self.no_match = NoMatchPolicy(no_match)
        except ValueError:
            raise ConfigurationError(
                f"Unknown no_match policy: {no_match!r}. Use one of {[p.value for p in NoMatchPolicy]}"
            ) from None

    def __len__(self) -> int:
        return len(self.rules)

    @property
    def has_include(self) -> bool:
        return any(r.on_match is OnMatch.INCLUDE for r in self.rules)

    @property
    def needs_content(self) -> bool:
        return any(r.needs_content for r in self.rules)

    def default_decision(self) -> FilterDecision:
        if self.no_match is NoMatchPolicy.ACCEPT:
            return FilterDecision.ACCEPT
        if self.no_match is NoMatchPolicy.REJECT:
            return FilterDecision.REJECT
        return FilterDecision.REJECT if self.has_include else FilterDecision.ACCEPT

    def evaluate(self, record: DocumentRecord) -> ChainResult:
        """Return the decision for `record`. May raise StageError for unreadable content."""
        for i, rule in enumerate(self.rules):
            if rule.matches(record):
                decision = FilterDecision.ACCEPT if rule.on_match is OnMatch.INCLUDE else FilterDecision.REJECT
                return ChainResult(decision, rule, i)
        return ChainResult(self.default_decision())

    def assert_metadata_only(self, name: str) -> None:
        bad: List[str] = [r.describe() for r in self.rules if r.target is FilterTarget.CONTENT]
        if bad:
            raise ConfigurationError(f"{name} cannot hold content rules: {bad}")
