"""Checksummer interface.

A checksummer turns a document into a compact signature used to detect change
between crawl sessions. Implementations form a closed set chosen by config
(`fields` or `content`); see checksums.impl.
"""

from __future__ import annotations
from abc import ABC, abstractmethod
from enum import Enum
from typing import Optional

from ..pipeline.context import DocumentRecord


class ChecksumMode(str, Enum):
    FIELDS = "fields"
    CONTENT = "content"


class Checksummer(ABC):
    mode: ChecksumMode

    @property
    def needs_content(self) -> bool:
        return self.mode is ChecksumMode.CONTENT

    @abstractmethod
    def compute(self, record: DocumentRecord) -> Optional[str]:
        """Return the signature, or None when nothing could be derived.

        Raises StageError when the record cannot be read.
        """
        ...

    def describe(self) -> dict:
        return {"mode": self.mode.value}
