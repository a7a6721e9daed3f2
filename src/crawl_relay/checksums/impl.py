"""Built-in checksummers.

- FieldsChecksummer: SHA-256 over the values of matching metadata fields
- ContentChecksummer: SHA-256 over the raw content bytes

Field signatures sort matching field names, so the same fields yield the same
signature regardless of the order the fetcher inserted them in.
"""

from __future__ import annotations
from typing import Optional
import logging

from ..errors import ConfigurationError, StageError
from ..pipeline.context import DocumentRecord
from ..utils.hashing import sha256_hex, sha256_stream_hex
from ..utils.text_matcher import TextMatcher
from .base import Checksummer, ChecksumMode

log = logging.getLogger("crawl_relay.checksums")

# unit/record separators keep "a=b|c" distinct from values containing those characters
_FIELD_SEP = "\x1f"
_RECORD_SEP = "\x1e"


class FieldsChecksummer(Checksummer):
    mode = ChecksumMode.FIELDS

    def __init__(self, field_matcher: TextMatcher):
        if field_matcher is None or field_matcher.pattern is None:
            raise ConfigurationError("fields checksum requires a field pattern")
        self.field_matcher = field_matcher

    def compute(self, record: DocumentRecord) -> Optional[str]:
        names = self.field_matcher.filter_names(record.metadata.keys())
        if not names:
            log.debug("No checksum fields matched for %s", record.reference)
            return None
        parts = []
        for name in names:
            values = record.metadata.get(name) or []
            parts.append(name + "=" + _FIELD_SEP.join(values))
        return sha256_hex(_RECORD_SEP.join(parts))

    def describe(self) -> dict:
        return {
            "mode": self.mode.value,
            "field": self.field_matcher.pattern,
            "method": self.field_matcher.method.value,
        }


class ContentChecksummer(Checksummer):
    mode = ChecksumMode.CONTENT

    def compute(self, record: DocumentRecord) -> Optional[str]:
        if not record.has_content:
            raise StageError(f"No content to checksum for {record.reference}", "CONTENT_MISSING")
        try:
            return sha256_stream_hex(record.open_content())
        except OSError as e:
            raise StageError(f"Content unreadable for {record.reference}: {e}", "CONTENT_UNREADABLE") from e
