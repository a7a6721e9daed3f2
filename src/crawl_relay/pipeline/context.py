"""Core pipeline data model.

DocumentRecord is the unit of work flowing through stages. One worker owns a
record for the duration of a pipeline run; stages mutate only that record.

State machine:
- NEW / MODIFIED   -> upsert request
- DELETED          -> delete request (filters and checksum are bypassed)
- UNMODIFIED       -> nothing to send
- REJECTED / ERROR -> nothing to send; never overridden later in the same run
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, BinaryIO, Dict, Iterator, List, Optional, Union
import io
import shutil
import tempfile
import time

if TYPE_CHECKING:
    from ..checksums.engine import ChecksumEngine
    from ..filters.chain import FilterChain

Content = Union[bytes, BinaryIO]

_SPOOL_MAX_MEMORY = 1024 * 1024


class DocState(str, Enum):
    NEW = "new"
    MODIFIED = "modified"
    UNMODIFIED = "unmodified"
    REJECTED = "rejected"
    ERROR = "error"
    DELETED = "deleted"

    @property
    def is_rejecting(self) -> bool:
        return self in (DocState.REJECTED, DocState.ERROR)

    @property
    def is_new_or_modified(self) -> bool:
        return self in (DocState.NEW, DocState.MODIFIED)


class FetchDirective(str, Enum):
    METADATA = "metadata"    # headers/metadata only, no content yet
    DOCUMENT = "document"    # metadata + content


class StageAction(str, Enum):
    CONTINUE = "continue"
    STOP = "stop"


@dataclass
class StageResult:
    action: StageAction
    stage: str
    state: Optional[DocState] = None
    reason_code: str = ""
    reason_detail: str = ""

    @property
    def stopped(self) -> bool:
        return self.action is StageAction.STOP

    @classmethod
    def proceed(cls, stage: str, state: Optional[DocState] = None) -> "StageResult":
        return cls(StageAction.CONTINUE, stage, state)

    @classmethod
    def stop(cls, stage: str, state: DocState, reason_code: str = "", reason_detail: str = "") -> "StageResult":
        return cls(StageAction.STOP, stage, state, reason_code, reason_detail)


def _normalize_metadata(metadata: Optional[Dict[str, Any]]) -> Dict[str, List[str]]:
    out: Dict[str, List[str]] = {}
    for k, v in (metadata or {}).items():
        if v is None:
            out[str(k)] = []
        elif isinstance(v, (list, tuple)):
            out[str(k)] = [str(x) for x in v]
        else:
            out[str(k)] = [str(v)]
    return out


@dataclass
class DocumentRecord:
    reference: str
    metadata: Dict[str, List[str]] = field(default_factory=dict)
    content: Optional[Content] = None
    deleted: bool = False

    state: Optional[DocState] = None
    prior_checksum: Optional[str] = None
    new_checksum: Optional[str] = None

    # last stage that decided the state, for rejection logs
    reason_stage: str = ""
    reason_code: str = ""
    reason_detail: str = ""
    created_at_ms: int = field(default_factory=lambda: int(time.time() * 1000))

    def __post_init__(self) -> None:
        if not self.reference:
            raise ValueError("DocumentRecord.reference must be a non-empty string")
        self.metadata = _normalize_metadata(self.metadata)

    def get_first(self, name: str) -> Optional[str]:
        values = self.metadata.get(name) or []
        return values[0] if values else None

    def iter_fields(self) -> Iterator[tuple]:
        for name, values in self.metadata.items():
            yield name, values

    @property
    def has_content(self) -> bool:
        return self.content is not None

    def open_content(self) -> BinaryIO:
        """Return a stream positioned at the start of the content.

        Raises OSError if the content cannot be rewound or read.
        """
        if self.content is None:
            raise OSError(f"No content for {self.reference}")
        if isinstance(self.content, (bytes, bytearray)):
            return io.BytesIO(self.content)
        stream = self.content
        if not stream.seekable():
            # spool once so filters, checksum and queue staging can each re-read
            spool = tempfile.SpooledTemporaryFile(max_size=_SPOOL_MAX_MEMORY)
            shutil.copyfileobj(stream, spool)
            self.content = stream = spool
        stream.seek(0)
        return stream

    def read_text(self, encoding: str = "utf-8") -> str:
        return self.open_content().read().decode(encoding, errors="replace")


@dataclass
class PipelineContext:
    """Binding of one record to the pipeline configuration for a single run."""
    record: DocumentRecord
    metadata_filters: Optional["FilterChain"] = None
    document_filters: Optional["FilterChain"] = None
    checksum: Optional["ChecksumEngine"] = None
    fetch_directive: FetchDirective = FetchDirective.DOCUMENT
    trail: List[StageResult] = field(default_factory=list)

    def supports(self, directive: FetchDirective) -> bool:
        if directive is FetchDirective.METADATA:
            return True
        return self.fetch_directive is FetchDirective.DOCUMENT
