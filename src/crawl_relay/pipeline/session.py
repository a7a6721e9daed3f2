"""Crawl session: wires config into a running pipeline.

One session = one run of a crawler:
- start(): committer.init -> checksum store open -> queue recovery + flusher
- process()/process_many(): evaluate documents and stage their requests
- stop(): drain the queue -> close committer and store -> write analytics and the run manifest

Everything configurable is built in the constructor, so a bad filter pattern or
an unknown committer fails before any document is read. Durable state (queue,
checksum store) lives under crawler.work_dir and is shared by all sessions of a
crawler; logs, analytics, rejections and manifests go to the per-run out_dir.
"""

from __future__ import annotations
from typing import Any, Dict, Iterable, Optional
import json
import logging
import os
import shutil
import threading
import time

from ..analytics.schemas import make_event
from ..analytics.sink import AnalyticsSink
from ..checksums import ChecksumEngine, make_checksummer
from ..checksums.engine import ChecksumUpdate
from ..checksums.store import ChecksumStore, FileChecksumStore, MemoryChecksumStore
from ..committer.base import Committer
from ..committer.registry import get_committer
from ..config import CrawlConfig
from ..errors import QueueStateError
from ..filters.registry import make_filter_chain
from ..queue.commit_queue import CommitQueue
from ..stages.registry import make_stages
from ..storage.base import get_storage_backend
from ..utils.fingerprint import stable_fingerprint
from .context import DocState, DocumentRecord
from .processor import DocumentProcessor
from .runner import PipelineRunner

log = logging.getLogger("crawl_relay.session")


class CrawlSession:
    def __init__(
        self,
        cfg: CrawlConfig,
        committer: Optional[Committer] = None,
        checksum_store: Optional[ChecksumStore] = None,
    ):
        self.cfg = cfg
        self.storage = get_storage_backend(cfg.raw.get("storage"))

        p = cfg.pipeline
        metadata_filters = make_filter_chain(p.metadata_filters, name="metadata_filters", metadata_only=True)
        document_filters = make_filter_chain(p.document_filters, name="document_filters")

        checksummer = make_checksummer(p.checksum)
        if checksum_store is None:
            if cfg.checksum_store.kind == "memory":
                checksum_store = MemoryChecksumStore()
            else:
                checksum_store = FileChecksumStore(cfg.checksum_store.path, storage=self.storage,
                                                   flush_every=cfg.checksum_store.flush_every)
        self.checksum_store = checksum_store
        self.engine = ChecksumEngine(checksummer, checksum_store) if checksummer is not None else None

        self.committer = committer or get_committer(cfg.committer.kind, cfg.committer.options, out_dir=cfg.run.out_dir)
        q = cfg.queue
        self.queue = CommitQueue(
            self.committer,
            q.dir,
            batch_size=q.batch_size,
            max_per_folder=q.max_per_folder,
            max_backlog_batches=q.max_backlog_batches,
            flush_interval=q.flush_interval,
            max_retries=q.max_retries,
            retry_backoff=q.retry_backoff,
            max_retry_backoff=q.max_retry_backoff,
            fsync=q.fsync,
            on_committed=self._on_committed,
        )

        stages = make_stages(p.stages, checksum_needs_content=checksummer.needs_content if checksummer else True)
        self.runner = PipelineRunner(stages)
        self.processor = DocumentProcessor(
            self.runner,
            self.queue,
            metadata_filters=metadata_filters,
            document_filters=document_filters,
            checksum=self.engine,
            fetch_directive=p.fetch_directive,
        )

        self.sink: Optional[AnalyticsSink] = None
        self._lock = threading.Lock()
        self._totals: Dict[str, int] = {}
        self._seen = 0
        self._started = False
        self._start_time_ms = 0

    # ------------------------------------------------------------------ lifecycle

    def start(self) -> None:
        if self._started:
            return
        self._start_time_ms = int(time.time() * 1000)
        if self.cfg.analytics_enabled:
            self.sink = AnalyticsSink(out_dir=self.cfg.run.out_dir, run_id=self.cfg.run.run_id)
        self.committer.init()
        self.checksum_store.open()
        recovered = self.queue.recover()
        if recovered:
            log.info("Recovered %d staged batch(es) from %s", recovered, self.cfg.queue.dir)
        self.queue.start()
        self._started = True
        log.info("Session started: crawler=%s run_id=%s stages=%s committer=%s",
                 self.cfg.name, self.cfg.run.run_id, self.runner.stage_names, self.cfg.committer.kind)

    def stop(self) -> Dict[str, Any]:
        """Drain and close everything; returns the run manifest.

        A CommitterFlushError from draining propagates after the committer and
        store are closed; the unflushed batches stay on disk for the next run.
        """
        if not self._started:
            raise QueueStateError("session was not started")
        try:
            self.queue.close()
        finally:
            self._started = False
            self.committer.close()
            self.checksum_store.close()
            self.flush_reports()
            manifest = self._write_manifest()
        log.info("Session complete: %s", json.dumps(manifest["totals"], sort_keys=True))
        return manifest

    def clean(self) -> None:
        """Forget everything this crawler committed: committer data, checksums, staged batches."""
        if self._started:
            raise QueueStateError("cannot clean a running session")
        self.committer.clean()
        self.checksum_store.open()
        self.checksum_store.clear()
        self.checksum_store.close()
        if os.path.isdir(self.cfg.queue.dir):
            shutil.rmtree(self.cfg.queue.dir)
        log.info("Cleaned crawler %s (queue=%s store=%s)", self.cfg.name, self.cfg.queue.dir, self.cfg.checksum_store.path)

    def resume(self) -> None:
        self.queue.resume()

    def __enter__(self) -> "CrawlSession":
        self.start()
        return self

    def __exit__(self, *exc) -> None:
        if self._started:
            self.stop()

    # ------------------------------------------------------------------ documents

    def process(self, record: DocumentRecord) -> DocState:
        if not self._started:
            raise QueueStateError("session was not started")
        state = self.processor.process(record)
        self._after_doc(record, state)
        return state

    def process_many(self, records: Iterable[DocumentRecord], *, workers: Optional[int] = None,
                     progress: bool = True) -> Dict[str, int]:
        if not self._started:
            raise QueueStateError("session was not started")
        return self.processor.process_many(
            records,
            workers=workers or self.cfg.pipeline.workers,
            progress=progress,
            on_done=self._after_doc,
        )

    def _after_doc(self, record: DocumentRecord, state: DocState) -> None:
        with self._lock:
            self._totals[state.value] = self._totals.get(state.value, 0) + 1
            self._seen += 1
            due = self._seen % self.cfg.run.log_every_docs == 0
            seen = self._seen
        if due:
            log.info("processed=%d %s", seen, " ".join(f"{k}={v}" for k, v in sorted(self.totals.items())))
            self.flush_reports()

    @property
    def totals(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._totals)

    def _on_committed(self, updates: Iterable[ChecksumUpdate]) -> None:
        if self.engine is not None:
            self.engine.apply(updates)

    # ------------------------------------------------------------------ reporting

    def flush_reports(self) -> None:
        """Emit stage analytics and append buffered rejections."""
        snap = self.processor.counters.drain()
        if self.sink is not None:
            for name, c in snap["stages"].items():
                if not c["input_docs"]:
                    continue
                layer = next((st.layer for st in self.runner.stages if st.name == name), "evaluation")
                ev = make_event(
                    run_id=self.cfg.run.run_id,
                    stage=name,
                    crawler=self.cfg.name,
                    layer=layer,
                    counts=c,
                    rejection_breakdown=c["reasons"],
                )
                if snap["content_bytes"] and name == self.runner.stage_names[-1]:
                    ev["metric_samples"] = {"content_bytes": snap["content_bytes"]}
                self.sink.emit(ev)
            self.sink.flush_aggregates()

        rejs = self.processor.drain_rejections()
        if rejs:
            path = os.path.join(self.cfg.run.out_dir, "rejections", "rejections.jsonl")
            blob = "".join(json.dumps(r, ensure_ascii=False) + "\n" for r in rejs)
            self.storage.append_file(path, blob.encode("utf-8"))

    def _write_manifest(self) -> Dict[str, Any]:
        out_dir = self.cfg.run.out_dir
        run_id = self.cfg.run.run_id
        manifest = {
            "run_id": run_id,
            "crawler": self.cfg.name,
            "start_time_ms": self._start_time_ms,
            "end_time_ms": int(time.time() * 1000),
            "config_path": os.environ.get("CRAWL_RELAY_CONFIG_PATH"),
            "config_fingerprint": stable_fingerprint(self.cfg.raw),
            "stages": self.runner.stage_names,
            "committer": self.cfg.committer.kind,
            "totals": self.totals,
            "queue": self.queue.stats(),
            "checksums": len(self.checksum_store),
            "outputs": {
                "work_dir": self.cfg.work_dir,
                "queue_dir": self.cfg.queue.dir,
                "checksum_store": self.cfg.checksum_store.path if self.cfg.checksum_store.kind == "file" else None,
                "rejections": os.path.join(out_dir, "rejections", "rejections.jsonl"),
                "analytics_events": os.path.join(out_dir, "analytics", "events"),
                "analytics_aggregates": os.path.join(out_dir, "analytics", "aggregates"),
            },
        }
        path = os.path.join(out_dir, "manifests", f"{run_id}.json")
        self.storage.write_file(path, json.dumps(manifest, indent=2, ensure_ascii=False).encode("utf-8"))
        return manifest
