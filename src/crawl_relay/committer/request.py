"""Committer requests.

Two immutable variants:
- UpsertRequest(reference, metadata, content): add or replace a document downstream
- DeleteRequest(reference, metadata): remove a document downstream

Ownership passes to the CommitQueue on submit; the queue re-creates requests
from disk (content as an open file) when it hands a batch to a committer.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import BinaryIO, Dict, List, Optional, Union
import io

Content = Union[bytes, BinaryIO]


@dataclass(frozen=True)
class CommitterRequest:
    reference: str
    metadata: Dict[str, List[str]] = field(default_factory=dict)

    kind: str = field(default="request", init=False)


@dataclass(frozen=True)
class UpsertRequest(CommitterRequest):
    content: Optional[Content] = None

    kind: str = field(default="upsert", init=False)

    def open_content(self) -> Optional[BinaryIO]:
        if self.content is None:
            return None
        if isinstance(self.content, (bytes, bytearray)):
            return io.BytesIO(self.content)
        if self.content.seekable():
            self.content.seek(0)
        return self.content

    def read_content(self) -> Optional[bytes]:
        stream = self.open_content()
        return stream.read() if stream is not None else None


@dataclass(frozen=True)
class DeleteRequest(CommitterRequest):
    kind: str = field(default="delete", init=False)


