"""Local JSONL document source.

Each line is one crawled document:
- reference (required)
- metadata: {field: value | [values]}
- content (UTF-8 text) or content_b64 (raw bytes)
- deleted: true to request removal downstream

Accepts a single file, a list of files, a directory (all *.jsonl, recursive)
or a glob pattern.
"""

from __future__ import annotations
import base64
import glob
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Iterator, List, Union

from ..errors import ConfigurationError
from ..pipeline.context import DocumentRecord

log = logging.getLogger("crawl_relay.sources")


def resolve_files(dataset: Union[str, List[str]]) -> List[str]:
    if isinstance(dataset, list):
        files: List[str] = []
        for item in dataset:
            files.extend(resolve_files(item))
        return files
    if any(ch in dataset for ch in "*?["):
        return sorted(f for f in glob.glob(dataset, recursive=True) if os.path.isfile(f))
    path = Path(dataset)
    if path.is_dir():
        return sorted(str(f) for f in path.glob("**/*.jsonl") if f.is_file())
    return [dataset]


def record_from_dict(row: Dict[str, Any]) -> DocumentRecord:
    if not isinstance(row, dict) or not row.get("reference"):
        raise ValueError("row must be an object with a non-empty 'reference'")
    metadata = row.get("metadata") or {}
    if not isinstance(metadata, dict):
        raise ValueError(f"'metadata' must be an object, got {type(metadata).__name__}")
    content = None
    if row.get("content_b64") is not None:
        content = base64.b64decode(row["content_b64"])
    elif row.get("content") is not None:
        content = str(row["content"]).encode("utf-8")
    return DocumentRecord(
        reference=str(row["reference"]),
        metadata=metadata,
        content=content,
        deleted=bool(row.get("deleted", False)),
    )


def iter_records(dataset: Union[str, List[str]]) -> Iterator[DocumentRecord]:
    """Yield records from JSONL files; malformed lines are logged and skipped."""
    files = resolve_files(dataset)
    if not files:
        raise ConfigurationError(f"No input files found for {dataset!r}")
    for path in files:
        if not os.path.isfile(path):
            raise ConfigurationError(f"Input file not found: {path}")
        with open(path, "r", encoding="utf-8") as f:
            for lineno, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    yield record_from_dict(json.loads(line))
                except ValueError as e:
                    log.warning("Skipping %s:%d: %s", path, lineno, e)
