"""End-to-end tests: config -> session -> pipeline -> queue -> committer -> checksum store."""

import contextlib
import json
import os
import threading
import time

import pytest

from conftest import FlakyCommitter, make_record
from crawl_relay.committer.memory import MemoryCommitter
from crawl_relay.errors import CommitterFlushError, ConfigurationError, QueueStateError
from crawl_relay.pipeline.context import DocState, StageResult
from crawl_relay.pipeline.processor import DocumentProcessor
from crawl_relay.pipeline.runner import PipelineRunner
from crawl_relay.pipeline.session import CrawlSession
from crawl_relay.queue import CommitQueue
from crawl_relay.queue import batch as layout
from crawl_relay.stages.base import Stage


def _html(ref, body, **meta):
    return make_record(ref, content=body, content_type="text/html", **meta)


def _run(cfg, records, committer=None, **kwargs):
    committer = committer or MemoryCommitter()
    with CrawlSession(cfg, committer=committer) as session:
        states = [session.process(r) for r in records]
    return committer, states, session


def _store(cfg):
    with open(cfg.checksum_store.path, "r", encoding="utf-8") as f:
        return json.load(f)["checksums"]


def test_first_crawl_commits_accepted_documents(parsed):
    cfg = parsed()
    committer, states, _ = _run(cfg, [
        _html("https://x/a", "hello"),
        make_record("https://x/img", content="png", content_type="image/png"),
        _html("https://x/spam", "Lorem Ipsum filler"),
    ])
    assert states == [DocState.NEW, DocState.REJECTED, DocState.REJECTED]
    assert committer.references() == ["https://x/a"]
    assert committer.upserts[0].content == b"hello"
    assert set(_store(cfg)) == {"https://x/a"}


def test_second_crawl_detects_changes_and_deletions(parsed):
    cfg = parsed()
    _run(cfg, [_html("https://x/a", "v1"), _html("https://x/b", "v1")])

    committer, states, _ = _run(cfg, [
        _html("https://x/a", "v1"),
        _html("https://x/b", "v2"),
        make_record("https://x/a", deleted=True),
    ])
    assert states == [DocState.UNMODIFIED, DocState.MODIFIED, DocState.DELETED]
    assert [r.kind for r in committer.requests] == ["upsert", "delete"]
    assert set(_store(cfg)) == {"https://x/b"}


def test_checksum_advances_only_after_commit(parsed):
    cfg = parsed({"queue": {"max_retries": 0}})
    failing = FlakyCommitter(failures=10)
    with contextlib.suppress(CommitterFlushError):
        _run(cfg, [_html("https://x/a", "v1")], committer=failing)

    assert failing.request_count == 0
    assert _store_or_empty(cfg) == {}
    assert [e[2] for e in layout.scan_layout(cfg.queue.dir)] == [layout.CLOSED]

    # next session delivers the staged batch and records the checksum
    committer, _, _ = _run(cfg, [])
    assert committer.references() == ["https://x/a"]
    assert set(_store(cfg)) == {"https://x/a"}
    assert layout.scan_layout(cfg.queue.dir) == []


def _store_or_empty(cfg):
    if not os.path.exists(cfg.checksum_store.path):
        return {}
    return _store(cfg)


def test_process_many_with_workers(parsed):
    cfg = parsed({"queue": {"batch_size": 5}})
    committer = MemoryCommitter()
    records = [_html(f"https://x/{i}", f"body {i}") for i in range(40)]
    records.append(make_record("https://x/img", content="png", content_type="image/png"))
    with CrawlSession(cfg, committer=committer) as session:
        totals = session.process_many(records, workers=4, progress=False)
    assert totals == {"new": 40, "rejected": 1}
    assert sorted(committer.references()) == sorted(r.reference for r in records[:40])
    assert session.totals == totals


class ConcurrencyTrackingStage(Stage):
    """Tracks how many workers are inside the pipeline for each reference."""

    name = "overlap"

    def __init__(self):
        self._lock = threading.Lock()
        self.active = {}
        self.peak = {}

    def apply(self, ctx):
        ref = ctx.record.reference
        with self._lock:
            self.active[ref] = self.active.get(ref, 0) + 1
            self.peak[ref] = max(self.peak.get(ref, 0), self.active[ref])
        time.sleep(0.005)
        with self._lock:
            self.active[ref] -= 1
        return StageResult.proceed(self.name)


def test_same_reference_never_processed_concurrently(committer, tmp_path):
    stage = ConcurrencyTrackingStage()
    queue = CommitQueue(committer, str(tmp_path / "queue"), batch_size=4, fsync=False)
    queue.recover()
    processor = DocumentProcessor(PipelineRunner([stage]), queue)
    records = [make_record(f"https://x/{i % 3}", content=f"v{i}") for i in range(24)]

    totals = processor.process_many(records, workers=6, progress=False)
    queue.close()

    assert totals == {"new": 24}
    assert stage.peak == {"https://x/0": 1, "https://x/1": 1, "https://x/2": 1}
    assert len(processor.locks) == 0
    assert committer.request_count == 24


def test_stop_writes_manifest_and_rejections(parsed):
    cfg = parsed()
    _, _, session = _run(cfg, [
        _html("https://x/a", "hello"),
        _html("https://x/spam", "lorem ipsum"),
    ])
    manifest_path = os.path.join(cfg.run.out_dir, "manifests", "run1.json")
    with open(manifest_path, "r", encoding="utf-8") as f:
        manifest = json.load(f)
    assert manifest["crawler"] == "test-crawler"
    assert manifest["totals"] == {"new": 1, "rejected": 1}
    assert manifest["queue"]["pending_batches"] == 0
    assert manifest["checksums"] == 1
    assert len(manifest["config_fingerprint"]) == 64

    with open(os.path.join(cfg.run.out_dir, "rejections", "rejections.jsonl"), "r", encoding="utf-8") as f:
        rej, = [json.loads(line) for line in f]
    assert rej["reference"] == "https://x/spam"
    assert rej["stage"] == "document_filters"
    assert rej["reason_code"] == "EXCLUDED"


def test_analytics_written(parsed):
    pq = pytest.importorskip("pyarrow.parquet")
    cfg = parsed({"analytics": {"enabled": True}})
    _run(cfg, [_html("https://x/a", "hello"), _html("https://x/b", "lorem ipsum")])

    agg = pq.read_table(os.path.join(cfg.run.out_dir, "analytics", "aggregates", "daily_aggregates.parquet")).to_pylist()
    by_stage = {row["stage"]: row for row in agg}
    assert by_stage["metadata_filters"]["input_docs"] == 2
    assert by_stage["document_filters"]["rejected_docs"] == 1
    assert by_stage["checksum"]["accepted_docs"] == 1


def test_bad_config_fails_at_construction(parsed):
    cfg = parsed({"pipeline": {"document_filters": [{"value": {"pattern": "(", "method": "regex"}, "on_match": "exclude"}]}})
    with pytest.raises(ConfigurationError):
        CrawlSession(cfg)


def test_content_rule_in_metadata_filters_refused(parsed):
    cfg = parsed({"pipeline": {"metadata_filters": [{"value": "x", "on_match": "exclude"}]}})
    with pytest.raises(ConfigurationError):
        CrawlSession(cfg)


def test_process_requires_start(parsed):
    session = CrawlSession(parsed(), committer=MemoryCommitter())
    with pytest.raises(QueueStateError):
        session.process(_html("https://x/a", "hello"))


def test_clean_resets_crawler(parsed):
    cfg = parsed()
    committer = MemoryCommitter()
    _run(cfg, [_html("https://x/a", "hello")], committer=committer)
    assert committer.request_count == 1

    CrawlSession(cfg, committer=committer).clean()
    assert committer.request_count == 0
    assert _store(cfg) == {}
    assert not os.path.exists(cfg.queue.dir)

    _, states, _ = _run(cfg, [_html("https://x/a", "hello")])
    assert states == [DocState.NEW]
