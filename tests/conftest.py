"""Shared fixtures and helpers for crawl_relay tests."""

from typing import Any, Dict, Optional

import pytest

from crawl_relay.committer.memory import MemoryCommitter
from crawl_relay.config import parse_config
from crawl_relay.pipeline.context import DocumentRecord


def make_record(reference: str, content: Optional[str] = None, deleted: bool = False, **metadata: Any) -> DocumentRecord:
    """Build a record; keyword arguments become metadata (underscores -> dashes)."""
    meta = {k.replace("_", "-"): v for k, v in metadata.items()}
    return DocumentRecord(
        reference=reference,
        metadata=meta,
        content=content.encode("utf-8") if content is not None else None,
        deleted=deleted,
    )


class FlakyCommitter(MemoryCommitter):
    """Memory committer whose first `failures` batches raise."""

    def __init__(self, failures: int = 1):
        super().__init__()
        self.failures = failures
        self.attempts = 0

    def commit_batch(self, requests):
        self.attempts += 1
        if self.attempts <= self.failures:
            raise ConnectionError(f"downstream unavailable (attempt {self.attempts})")
        super().commit_batch(requests)


@pytest.fixture
def committer():
    c = MemoryCommitter()
    c.init()
    yield c
    c.close()


@pytest.fixture
def crawl_cfg(tmp_path):
    """Config dict for a session rooted in tmp_path; tests tweak it before parsing."""
    return {
        "crawler": {"name": "test-crawler", "work_dir": str(tmp_path / "work")},
        "run": {"run_id": "run1", "out_dir": str(tmp_path / "out"), "log_every_docs": 1000},
        "pipeline": {
            "workers": 1,
            "metadata_filters": {
                "rules": [
                    {"field": {"pattern": "content-type", "ignore_case": True},
                     "value": {"pattern": "text/*", "method": "wildcard"},
                     "on_match": "include"},
                ],
            },
            "document_filters": [
                {"value": {"pattern": "lorem ipsum", "partial": True, "ignore_case": True}, "on_match": "exclude"},
            ],
            "checksum": {"mode": "content"},
        },
        "checksum_store": {"kind": "file", "flush_every": 1},
        "queue": {"batch_size": 2, "max_per_folder": 2, "flush_interval": 0, "retry_backoff": 0,
                  "max_retries": 1, "fsync": False},
        "committer": {"kind": "memory"},
        "analytics": {"enabled": False},
    }


@pytest.fixture
def parsed(crawl_cfg):
    def _parse(overrides: Optional[Dict[str, Any]] = None):
        cfg = dict(crawl_cfg)
        for section, values in (overrides or {}).items():
            cfg[section] = {**cfg.get(section, {}), **values}
        return parse_config(cfg)
    return _parse
