"""On-disk batch layout.

    <queue_dir>/
      000001/                        folder (at most max_per_folder batches)
        batch-000000001.batch/       closed, pending flush
          manifest.json              {"batch_id", "folder", "slots": [0, 1, ...], "closed_at_ms"}
          000000.json                request record
          000000.bin                 request content (upserts with content only)
        batch-000000002.open/        still receiving submissions
          000003.json.tmp            half-written slot, discarded on recovery
      000002/

Write protocol for one slot: content -> `.bin.tmp` -> rename, then record ->
`.json.tmp` -> rename. A `.json` therefore always has complete content next to it.
Closing a batch writes manifest.json and renames `.open` -> `.batch`; removing
one renames `.batch` -> `.done` before deleting the tree.
"""

from __future__ import annotations
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Tuple
import json
import os
import re
import shutil
import time

from ..checksums.engine import ChecksumUpdate
from ..committer.request import CommitterRequest, DeleteRequest, UpsertRequest

OPEN = ".open"
CLOSED = ".batch"
DONE = ".done"
MANIFEST = "manifest.json"
TMP = ".tmp"

_BATCH_RE = re.compile(r"^batch-(\d{9})(\.open|\.batch|\.done)$")
_FOLDER_RE = re.compile(r"^\d{6}$")
_SLOT_RE = re.compile(r"^(\d{6})\.json$")
_COPY_CHUNK = 1024 * 1024


def folder_name(folder: int) -> str:
    return f"{folder:06d}"


def batch_dir_name(batch_id: int, suffix: str) -> str:
    return f"batch-{batch_id:09d}{suffix}"


def _fsync_file(f) -> None:
    f.flush()
    os.fsync(f.fileno())


def _write_json_atomic(path: str, obj: Dict[str, Any], fsync: bool) -> None:
    tmp = path + TMP
    with open(tmp, "w", encoding="utf-8") as f:
        json.dump(obj, f, ensure_ascii=False)
        if fsync:
            _fsync_file(f)
    os.replace(tmp, path)


@dataclass
class StagedRequest:
    slot: int
    request: CommitterRequest
    checksum_update: Optional[ChecksumUpdate] = None


def write_slot(
    batch_path: str,
    slot: int,
    request: CommitterRequest,
    checksum_update: Optional[ChecksumUpdate] = None,
    *,
    fsync: bool = True,
) -> None:
    """Stage one request. Raises OSError on any write failure (nothing half-visible remains)."""
    content_name = None
    if isinstance(request, UpsertRequest):
        stream = request.open_content()
        if stream is not None:
            content_name = f"{slot:06d}.bin"
            bin_path = os.path.join(batch_path, content_name)
            with open(bin_path + TMP, "wb") as out:
                shutil.copyfileobj(stream, out, _COPY_CHUNK)
                if fsync:
                    _fsync_file(out)
            os.replace(bin_path + TMP, bin_path)
    elif not isinstance(request, DeleteRequest):
        raise TypeError(f"Unsupported request type: {type(request).__name__}")

    record = {
        "slot": slot,
        "kind": request.kind,
        "reference": request.reference,
        "metadata": request.metadata,
        "content": content_name,
        "checksum": checksum_update.to_dict() if checksum_update else None,
        "staged_at_ms": int(time.time() * 1000),
    }
    _write_json_atomic(os.path.join(batch_path, f"{slot:06d}.json"), record, fsync)


def complete_slots(batch_path: str) -> List[int]:
    """Slots whose record file is fully written, in slot order."""
    slots = []
    for name in os.listdir(batch_path):
        m = _SLOT_RE.match(name)
        if m:
            slots.append(int(m.group(1)))
    return sorted(slots)


def discard_partial_files(batch_path: str) -> int:
    """Remove temp files and content without a record. Returns the number removed."""
    removed = 0
    recorded = {f"{s:06d}.bin" for s in complete_slots(batch_path)}
    for name in os.listdir(batch_path):
        if name.endswith(TMP) or (name.endswith(".bin") and name not in recorded):
            os.remove(os.path.join(batch_path, name))
            removed += 1
    return removed


def write_manifest(batch_path: str, batch_id: int, folder: int, slots: List[int], *, fsync: bool = True) -> None:
    _write_json_atomic(
        os.path.join(batch_path, MANIFEST),
        {"batch_id": batch_id, "folder": folder, "slots": list(slots), "closed_at_ms": int(time.time() * 1000)},
        fsync,
    )


def parse_batch_dir(name: str) -> Optional[Tuple[int, str]]:
    m = _BATCH_RE.match(name)
    if not m:
        return None
    return int(m.group(1)), m.group(2)


def scan_layout(queue_dir: str) -> List[Tuple[int, int, str, str]]:
    """All batch directories as (folder, batch_id, suffix, path), sorted by batch id."""
    found = []
    if not os.path.isdir(queue_dir):
        return found
    for fname in os.listdir(queue_dir):
        fpath = os.path.join(queue_dir, fname)
        if not (_FOLDER_RE.match(fname) and os.path.isdir(fpath)):
            continue
        for bname in os.listdir(fpath):
            parsed = parse_batch_dir(bname)
            if parsed is None:
                continue
            batch_id, suffix = parsed
            found.append((int(fname), batch_id, suffix, os.path.join(fpath, bname)))
    found.sort(key=lambda t: t[1])
    return found


def list_folders(queue_dir: str) -> List[int]:
    if not os.path.isdir(queue_dir):
        return []
    return sorted(int(n) for n in os.listdir(queue_dir) if _FOLDER_RE.match(n) and os.path.isdir(os.path.join(queue_dir, n)))


@dataclass
class QueueBatch:
    """A closed batch on disk. Immutable; requests are re-read from disk on demand."""
    batch_id: int
    folder: int
    path: str
    slots: List[int] = field(default_factory=list)

    @property
    def size(self) -> int:
        return len(self.slots)

    @classmethod
    def load(cls, path: str) -> "QueueBatch":
        with open(os.path.join(path, MANIFEST), "r", encoding="utf-8") as f:
            m = json.load(f)
        return cls(batch_id=int(m["batch_id"]), folder=int(m["folder"]), path=path, slots=[int(s) for s in m["slots"]])

    def _read_slot(self, slot: int, stack: ExitStack) -> StagedRequest:
        with open(os.path.join(self.path, f"{slot:06d}.json"), "r", encoding="utf-8") as f:
            rec = json.load(f)
        update = ChecksumUpdate.from_dict(rec.get("checksum"))
        if rec["kind"] == "delete":
            return StagedRequest(slot, DeleteRequest(rec["reference"], rec.get("metadata") or {}), update)
        content = None
        if rec.get("content"):
            content = stack.enter_context(open(os.path.join(self.path, rec["content"]), "rb"))
        return StagedRequest(slot, UpsertRequest(rec["reference"], rec.get("metadata") or {}, content), update)

    @contextmanager
    def open_requests(self) -> Iterator[List[StagedRequest]]:
        """Yield the batch's requests in order; content files stay open inside the block."""
        with ExitStack() as stack:
            yield [self._read_slot(s, stack) for s in self.slots]

    def remove(self) -> None:
        """Delete the batch from disk: rename to .done, then drop the tree."""
        parsed = parse_batch_dir(os.path.basename(self.path))
        done = os.path.join(os.path.dirname(self.path), batch_dir_name(self.batch_id, DONE))
        if parsed is None or parsed[1] != DONE:
            os.replace(self.path, done)
            self.path = done
        shutil.rmtree(self.path)
