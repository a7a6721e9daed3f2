"""In-memory committer.

Keeps every committed request in a list. Meant for tests and dry runs:
- content is copied to bytes (or dropped when ignore_content=True)
- field_matcher keeps only the matching metadata fields
"""

from __future__ import annotations
from typing import Dict, List, Optional
import logging
import threading

from ..utils.text_matcher import TextMatcher
from .base import Committer
from .request import CommitterRequest, DeleteRequest, UpsertRequest

log = logging.getLogger("crawl_relay.committer.memory")


class MemoryCommitter(Committer):
    name = "memory"

    def __init__(self, ignore_content: bool = False, field_matcher: Optional[TextMatcher] = None):
        super().__init__()
        self.ignore_content = ignore_content
        self.field_matcher = field_matcher
        self._lock = threading.Lock()
        self._requests: List[CommitterRequest] = []
        self.upsert_count = 0
        self.delete_count = 0

    @property
    def requests(self) -> List[CommitterRequest]:
        with self._lock:
            return list(self._requests)

    @property
    def upserts(self) -> List[UpsertRequest]:
        return [r for r in self.requests if isinstance(r, UpsertRequest)]

    @property
    def deletes(self) -> List[DeleteRequest]:
        return [r for r in self.requests if isinstance(r, DeleteRequest)]

    @property
    def request_count(self) -> int:
        with self._lock:
            return len(self._requests)

    def references(self) -> List[str]:
        return [r.reference for r in self.requests]

    def remove_request(self, request: CommitterRequest) -> bool:
        with self._lock:
            try:
                self._requests.remove(request)
                return True
            except ValueError:
                return False

    def _filtered_metadata(self, metadata: Dict[str, List[str]]) -> Dict[str, List[str]]:
        if self.field_matcher is None or self.field_matcher.pattern is None:
            return {k: list(v) for k, v in metadata.items()}
        return {k: list(v) for k, v in metadata.items() if self.field_matcher.matches(k)}

    def _do_upsert(self, request: UpsertRequest) -> None:
        log.debug("Committing upsert request for %s", request.reference)
        content = None if self.ignore_content else request.read_content()
        stored = UpsertRequest(request.reference, self._filtered_metadata(request.metadata), content)
        with self._lock:
            self._requests.append(stored)
            self.upsert_count += 1

    def _do_delete(self, request: DeleteRequest) -> None:
        log.debug("Committing delete request for %s", request.reference)
        stored = DeleteRequest(request.reference, self._filtered_metadata(request.metadata))
        with self._lock:
            self._requests.append(stored)
            self.delete_count += 1

    def _do_close(self) -> None:
        log.info("%d upserts committed.", self.upsert_count)
        log.info("%d deletions committed.", self.delete_count)

    def _do_clean(self) -> None:
        with self._lock:
            self._requests.clear()
            self.upsert_count = 0
            self.delete_count = 0
