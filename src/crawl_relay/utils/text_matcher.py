"""Text matching for filter rules, checksum field selection and committer field filtering.

A matcher is configured as either a plain string (basic, exact match) or a mapping:

    field:
      pattern: "Content-*"
      method: wildcard     # basic | wildcard | regex
      ignore_case: true
      partial: false       # basic: substring, regex: search instead of fullmatch

Patterns are compiled once at load time; an invalid regex is a ConfigurationError.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, List, Optional
import fnmatch
import re

from ..errors import ConfigurationError


class MatchMethod(str, Enum):
    BASIC = "basic"
    WILDCARD = "wildcard"
    REGEX = "regex"


@dataclass(frozen=True)
class TextMatcher:
    pattern: Optional[str] = None
    method: MatchMethod = MatchMethod.BASIC
    ignore_case: bool = False
    partial: bool = False
    _compiled: Optional[re.Pattern] = field(default=None, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        try:
            method = MatchMethod(self.method)
        except ValueError:
            raise ConfigurationError(
                f"Unknown match method: {self.method!r}. Use one of {[m.value for m in MatchMethod]}"
            ) from None
        object.__setattr__(self, "method", method)
        if self.pattern is None:
            return
        flags = re.IGNORECASE if self.ignore_case else 0
        if method is MatchMethod.REGEX:
            source = self.pattern
        elif method is MatchMethod.WILDCARD:
            # fnmatch.translate anchors with \Z; partial wildcard strips the anchor below
            source = fnmatch.translate(self.pattern)
            if self.partial:
                source = source[len("(?s:"):-len(")\\Z")] if source.startswith("(?s:") else source
        else:
            source = re.escape(self.pattern)
        try:
            compiled = re.compile(source, flags)
        except re.error as e:
            raise ConfigurationError(f"Invalid {method.value} pattern {self.pattern!r}: {e}") from e
        object.__setattr__(self, "_compiled", compiled)

    @classmethod
    def basic(cls, pattern: str, ignore_case: bool = False) -> "TextMatcher":
        return cls(pattern, MatchMethod.BASIC, ignore_case)

    @classmethod
    def wildcard(cls, pattern: str, ignore_case: bool = False) -> "TextMatcher":
        return cls(pattern, MatchMethod.WILDCARD, ignore_case)

    @classmethod
    def regex(cls, pattern: str, ignore_case: bool = False, partial: bool = False) -> "TextMatcher":
        return cls(pattern, MatchMethod.REGEX, ignore_case, partial)

    @classmethod
    def from_config(cls, cfg: Any) -> Optional["TextMatcher"]:
        """Build from a string or mapping; None stays None."""
        if cfg is None:
            return None
        if isinstance(cfg, TextMatcher):
            return cfg
        if isinstance(cfg, str):
            return cls.basic(cfg)
        if isinstance(cfg, dict):
            unknown = set(cfg) - {"pattern", "method", "ignore_case", "partial"}
            if unknown:
                raise ConfigurationError(f"Unknown matcher keys: {sorted(unknown)}")
            pattern = cfg.get("pattern")
            if pattern is not None and not isinstance(pattern, str):
                raise ConfigurationError(f"Matcher pattern must be a string, got {type(pattern).__name__}")
            return cls(
                pattern=pattern,
                method=cfg.get("method", MatchMethod.BASIC.value),
                ignore_case=bool(cfg.get("ignore_case", False)),
                partial=bool(cfg.get("partial", False)),
            )
        raise ConfigurationError(f"Matcher must be a string or mapping, got {type(cfg).__name__}")

    def matches(self, text: Optional[str]) -> bool:
        if self._compiled is None or text is None:
            return False
        if self.partial:
            return self._compiled.search(text) is not None
        return self._compiled.fullmatch(text) is not None

    def match_any(self, texts: Iterable[str]) -> bool:
        return any(self.matches(t) for t in texts)

    def filter_names(self, names: Iterable[str]) -> List[str]:
        """Matching names, sorted so callers get a reproducible order."""
        return sorted(n for n in names if self.matches(n))
