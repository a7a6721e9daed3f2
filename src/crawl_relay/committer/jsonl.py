from __future__ import annotations
import base64
import json
import os
from typing import Optional
from .base import Committer
from .request import DeleteRequest, UpsertRequest

class JSONLCommitter(Committer):
    """Appends one JSON line per request to rolling files under `<out_dir>/commits/`.

    Content is stored as UTF-8 text when it decodes cleanly, base64 otherwise.
    """
    name = "jsonl"

    def __init__(self, out_dir: str, max_lines_per_file: int = 10000, include_content: bool = True):
        super().__init__()
        self.out_dir = out_dir
        self.max_lines_per_file = max_lines_per_file
        self.include_content = include_content
        self.base = os.path.join(out_dir, "commits")
        self._file_idx = 0
        self._lines_in_file = 0
        self._fh = None

    def _do_init(self) -> None:
        os.makedirs(self.base, exist_ok=True)
        existing = sorted(f for f in os.listdir(self.base) if f.startswith("commits_") and f.endswith(".jsonl"))
        # always start a new file so a resumed session never appends to a torn line
        self._file_idx = int(existing[-1][len("commits_"):-len(".jsonl")]) + 1 if existing else 0
        self._lines_in_file = 0

    def _path(self) -> str:
        return os.path.join(self.base, f"commits_{self._file_idx:06d}.jsonl")

    def _write(self, row: dict) -> None:
        if self._fh is None:
            self._fh = open(self._path(), "a", encoding="utf-8")
        self._fh.write(json.dumps(row, ensure_ascii=False) + "\n")
        self._fh.flush()
        self._lines_in_file += 1
        if self._lines_in_file >= self.max_lines_per_file:
            self._fh.close()
            self._fh = None
            self._file_idx += 1
            self._lines_in_file = 0

    def _do_upsert(self, request: UpsertRequest) -> None:
        row = {"op": "upsert", "reference": request.reference, "metadata": request.metadata}
        if self.include_content:
            data: Optional[bytes] = request.read_content()
            if data is not None:
                try:
                    row["content"] = data.decode("utf-8")
                except UnicodeDecodeError:
                    row["content_b64"] = base64.b64encode(data).decode("ascii")
        self._write(row)

    def _do_delete(self, request: DeleteRequest) -> None:
        self._write({"op": "delete", "reference": request.reference, "metadata": request.metadata})

    def _do_close(self) -> None:
        if self._fh is not None:
            self._fh.close()
            self._fh = None

    def _do_clean(self) -> None:
        self._do_close()
        if os.path.isdir(self.base):
            for f in os.listdir(self.base):
                if f.startswith("commits_") and f.endswith(".jsonl"):
                    os.remove(os.path.join(self.base, f))
        self._file_idx = 0
        self._lines_in_file = 0
