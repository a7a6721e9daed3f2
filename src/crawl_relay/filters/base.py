"""Filter rule primitives.

A rule is a closed, tagged variant selected by configuration:
- metadata: field name matcher (+ optional value matcher; no value matcher = field present)
- content:  value matcher over the decoded document content
- reference: value matcher over the document reference

Rules are immutable once loaded. Their order inside a chain is significant.
"""

from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from ..errors import ConfigurationError, StageError
from ..pipeline.context import DocumentRecord
from ..utils.text_matcher import TextMatcher


class OnMatch(str, Enum):
    INCLUDE = "include"
    EXCLUDE = "exclude"


class FilterTarget(str, Enum):
    METADATA = "metadata"
    CONTENT = "content"
    REFERENCE = "reference"


class FilterDecision(str, Enum):
    ACCEPT = "accept"
    REJECT = "reject"


@dataclass(frozen=True)
class FilterRule:
    target: FilterTarget
    on_match: OnMatch
    field_matcher: Optional[TextMatcher] = None
    value_matcher: Optional[TextMatcher] = None

    def __post_init__(self) -> None:
        if self.target is FilterTarget.METADATA:
            if self.field_matcher is None or self.field_matcher.pattern is None:
                raise ConfigurationError("Metadata filter rule requires a field pattern")
        else:
            if self.field_matcher is not None:
                raise ConfigurationError(f"{self.target.value} filter rule must not set a field pattern")
            if self.value_matcher is None or self.value_matcher.pattern is None:
                raise ConfigurationError(f"{self.target.value} filter rule requires a value pattern")

    @property
    def needs_content(self) -> bool:
        return self.target is FilterTarget.CONTENT

    def matches(self, record: DocumentRecord) -> bool:
        if self.target is FilterTarget.REFERENCE:
            return self.value_matcher.matches(record.reference)
        if self.target is FilterTarget.CONTENT:
            try:
                text = record.read_text()
            except OSError as e:
                raise StageError(f"Content unreadable for {record.reference}: {e}", "CONTENT_UNREADABLE") from e
            return self.value_matcher.matches(text)
        for name, values in record.iter_fields():
            if not self.field_matcher.matches(name):
                continue
            if self.value_matcher is None:
                return True
            if self.value_matcher.match_any(values):
                return True
        return False

    def describe(self) -> str:
        parts = [self.on_match.value, self.target.value]
        if self.field_matcher is not None:
            parts.append(f"field={self.field_matcher.pattern!r}")
        if self.value_matcher is not None:
            parts.append(f"value={self.value_matcher.pattern!r}")
        return " ".join(parts)
