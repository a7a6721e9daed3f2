"""Include/exclude filtering with first-match-wins semantics."""

from .base import FilterDecision, FilterRule, FilterTarget, OnMatch
from .chain import ChainResult, FilterChain, NoMatchPolicy
from .registry import make_filter_chain, make_rule

__all__ = [
    "FilterDecision",
    "FilterRule",
    "FilterTarget",
    "OnMatch",
    "ChainResult",
    "FilterChain",
    "NoMatchPolicy",
    "make_filter_chain",
    "make_rule",
]
