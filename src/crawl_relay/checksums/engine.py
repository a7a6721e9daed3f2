"""Checksum engine: compute -> classify, with deferred store updates.

Classification never writes the store. The new signature travels with the
staged committer request as a ChecksumUpdate and is applied only once the
batch holding it has been acknowledged downstream. A crash before that point
leaves the old signature in place, so the document is sent again rather than
being mistaken for UNMODIFIED.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional
import logging

from ..pipeline.context import DocState, DocumentRecord
from .base import Checksummer
from .store import ChecksumStore

log = logging.getLogger("crawl_relay.checksums.engine")


@dataclass(frozen=True)
class ChecksumUpdate:
    """Pending store write. signature=None removes the entry (deletions)."""
    reference: str
    signature: Optional[str]

    def to_dict(self) -> Dict[str, Any]:
        return {"reference": self.reference, "signature": self.signature}

    @classmethod
    def from_dict(cls, d: Optional[Dict[str, Any]]) -> Optional["ChecksumUpdate"]:
        if not d:
            return None
        return cls(reference=d["reference"], signature=d.get("signature"))


class ChecksumEngine:
    def __init__(self, checksummer: Checksummer, store: ChecksumStore):
        self.checksummer = checksummer
        self.store = store

    @property
    def needs_content(self) -> bool:
        return self.checksummer.needs_content

    def compute(self, record: DocumentRecord) -> Optional[str]:
        return self.checksummer.compute(record)

    def classify(self, reference: str, signature: Optional[str]) -> DocState:
        return self._classify(self.store.get(reference), signature)

    @staticmethod
    def _classify(prior: Optional[str], signature: Optional[str]) -> DocState:
        if prior is None:
            return DocState.NEW
        if signature is not None and prior == signature:
            return DocState.UNMODIFIED
        # no signature: change cannot be ruled out
        return DocState.MODIFIED

    def evaluate(self, record: DocumentRecord) -> DocState:
        """Compute, classify and record both signatures on the record."""
        signature = self.compute(record)
        prior = self.store.get(record.reference)
        record.prior_checksum = prior
        record.new_checksum = signature
        state = self._classify(prior, signature)
        log.debug("Checksum %s prior=%s new=%s -> %s", record.reference, prior, signature, state.value)
        return state

    def pending_update(self, record: DocumentRecord) -> Optional[ChecksumUpdate]:
        """The store write to apply once this record's request is committed."""
        if record.state is DocState.DELETED:
            return ChecksumUpdate(record.reference, None)
        if record.state is not None and record.state.is_new_or_modified and record.new_checksum is not None:
            return ChecksumUpdate(record.reference, record.new_checksum)
        return None

    def apply(self, updates: Iterable[Optional[ChecksumUpdate]]) -> int:
        n = 0
        for u in updates:
            if u is None:
                continue
            if u.signature is None:
                self.store.remove(u.reference)
            else:
                self.store.put(u.reference, u.signature)
            n += 1
        return n
