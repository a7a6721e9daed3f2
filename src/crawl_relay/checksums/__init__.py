"""Change detection: signatures, classification and the persistent checksum store."""

from typing import Any, Dict, Optional

from ..errors import ConfigurationError
from ..utils.text_matcher import TextMatcher
from .base import Checksummer, ChecksumMode
from .impl import ContentChecksummer, FieldsChecksummer
from .store import ChecksumStore, FileChecksumStore, MemoryChecksumStore
from .engine import ChecksumEngine, ChecksumUpdate


def make_checksummer(cfg: Optional[Dict[str, Any]]) -> Optional[Checksummer]:
    """`{mode: fields, fields: <matcher>}` XOR `{mode: content}` (alias: `use_content: true`)."""
    if not cfg:
        return None
    if not isinstance(cfg, dict):
        raise ConfigurationError(f"checksum must be a mapping, got {type(cfg).__name__}")
    unknown = set(cfg) - {"mode", "fields", "use_content"}
    if unknown:
        raise ConfigurationError(f"checksum: unknown keys {sorted(unknown)}")
    use_content = bool(cfg.get("use_content", False))
    has_fields = cfg.get("fields") is not None
    mode = cfg.get("mode")
    if mode is None:
        mode = ChecksumMode.CONTENT.value if use_content else ChecksumMode.FIELDS.value
    try:
        mode = ChecksumMode(str(mode).lower())
    except ValueError:
        raise ConfigurationError(f"checksum.mode must be fields or content, got {mode!r}") from None
    if use_content and mode is not ChecksumMode.CONTENT:
        raise ConfigurationError("checksum: use_content conflicts with mode=fields")
    if mode is ChecksumMode.CONTENT:
        if has_fields:
            raise ConfigurationError("checksum: fields and content mode are mutually exclusive")
        return ContentChecksummer()
    if not has_fields:
        raise ConfigurationError("checksum: mode=fields requires a fields matcher")
    return FieldsChecksummer(TextMatcher.from_config(cfg["fields"]))


__all__ = [
    "Checksummer",
    "ChecksumMode",
    "ContentChecksummer",
    "FieldsChecksummer",
    "ChecksumStore",
    "FileChecksumStore",
    "MemoryChecksumStore",
    "ChecksumEngine",
    "ChecksumUpdate",
    "make_checksummer",
]
