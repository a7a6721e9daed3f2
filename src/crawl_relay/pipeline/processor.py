"""Document processor: evaluate one record and hand the outcome to the queue.

For every incoming document:
1) take the per-reference lock (one pipeline run per reference at a time)
2) run the stage list (filters -> checksum)
3) NEW / MODIFIED -> UpsertRequest, DELETED -> DeleteRequest, others -> nothing
4) submit the request together with its pending checksum update

Counters are kept per stage for analytics; rejections are buffered for the
session's rejection log. Both are drained periodically by the session.
"""

from __future__ import annotations
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Any, Callable, Dict, Iterable, List, Optional
import logging
import os
import threading
import time

from tqdm import tqdm

from ..checksums.engine import ChecksumEngine
from ..committer.request import CommitterRequest, DeleteRequest, UpsertRequest
from ..errors import QueueIOError
from ..filters.chain import FilterChain
from ..queue.commit_queue import CommitQueue
from .context import DocState, DocumentRecord, FetchDirective, PipelineContext
from .locks import ReferenceLocks
from .runner import PipelineRunner

log = logging.getLogger("crawl_relay.pipeline.processor")

OnDone = Callable[[DocumentRecord, DocState], None]


def _content_size(record: DocumentRecord) -> Optional[int]:
    if record.content is None:
        return None
    if isinstance(record.content, (bytes, bytearray)):
        return len(record.content)
    try:
        stream = record.open_content()
        stream.seek(0, os.SEEK_END)
        return stream.tell()
    except OSError:
        return None


class StageCounters:
    """Thread-safe per-stage counters, reset on drain()."""

    def __init__(self, stage_names: Iterable[str]):
        self._lock = threading.Lock()
        self._names = list(stage_names)
        self._reset()

    def _reset(self) -> None:
        self._stages = {n: {"input_docs": 0, "accepted_docs": 0, "rejected_docs": 0, "error_docs": 0, "reasons": {}}
                        for n in self._names}
        self._outcomes: Dict[str, int] = {}
        self._content_bytes: List[int] = []

    def record(self, ctx: PipelineContext, size: Optional[int] = None) -> None:
        with self._lock:
            for result in ctx.trail:
                c = self._stages.setdefault(result.stage, {"input_docs": 0, "accepted_docs": 0, "rejected_docs": 0,
                                                           "error_docs": 0, "reasons": {}})
                c["input_docs"] += 1
                if result.state is DocState.ERROR:
                    c["error_docs"] += 1
                elif result.state is DocState.REJECTED:
                    c["rejected_docs"] += 1
                else:
                    c["accepted_docs"] += 1
                if result.stopped and result.reason_code:
                    c["reasons"][result.reason_code] = c["reasons"].get(result.reason_code, 0) + 1
            state = ctx.record.state.value if ctx.record.state else "unknown"
            self._outcomes[state] = self._outcomes.get(state, 0) + 1
            if size is not None:
                self._content_bytes.append(size)

    def count_outcome(self, state: DocState) -> None:
        with self._lock:
            self._outcomes[state.value] = self._outcomes.get(state.value, 0) + 1

    def drain(self) -> Dict[str, Any]:
        with self._lock:
            snap = {"stages": self._stages, "outcomes": self._outcomes, "content_bytes": self._content_bytes}
            self._reset()
            return snap


class DocumentProcessor:
    def __init__(
        self,
        runner: PipelineRunner,
        queue: CommitQueue,
        *,
        metadata_filters: Optional[FilterChain] = None,
        document_filters: Optional[FilterChain] = None,
        checksum: Optional[ChecksumEngine] = None,
        fetch_directive: FetchDirective = FetchDirective.DOCUMENT,
        locks: Optional[ReferenceLocks] = None,
    ):
        self.runner = runner
        self.queue = queue
        self.metadata_filters = metadata_filters
        self.document_filters = document_filters
        self.checksum = checksum
        self.fetch_directive = fetch_directive
        self.locks = locks or ReferenceLocks()
        self.counters = StageCounters(runner.stage_names)

        self._rej_lock = threading.Lock()
        self._rejections: List[dict] = []

    def context_for(self, record: DocumentRecord) -> PipelineContext:
        return PipelineContext(
            record=record,
            metadata_filters=self.metadata_filters,
            document_filters=self.document_filters,
            checksum=self.checksum,
            fetch_directive=self.fetch_directive,
        )

    def process(self, record: DocumentRecord) -> DocState:
        """Evaluate one record and stage its request.

        Raises QueueIOError if the request could not be staged; the checksum
        store is untouched in that case, so the next crawl retries the document.
        """
        with self.locks.hold(record.reference):
            ctx = self.context_for(record)
            state = self.runner.run(ctx)
            self.counters.record(ctx, _content_size(record) if state.is_new_or_modified else None)
            if state.is_rejecting:
                self._log_rejection(record)
                return state
            request = self.to_request(record)
            if request is not None:
                update = self.checksum.pending_update(record) if self.checksum is not None else None
                self.queue.submit(request, update)
            return state

    @staticmethod
    def to_request(record: DocumentRecord) -> Optional[CommitterRequest]:
        if record.state is DocState.DELETED:
            return DeleteRequest(record.reference, record.metadata)
        if record.state is not None and record.state.is_new_or_modified:
            content = None
            if record.content is not None:
                content = record.content if isinstance(record.content, (bytes, bytearray)) else record.open_content()
            return UpsertRequest(record.reference, record.metadata, content)
        return None

    def _log_rejection(self, record: DocumentRecord) -> None:
        log.debug("Rejected %s: stage=%s reason=%s detail=%s",
                  record.reference, record.reason_stage, record.reason_code, record.reason_detail)
        with self._rej_lock:
            self._rejections.append({
                "reference": record.reference,
                "state": record.state.value,
                "stage": record.reason_stage,
                "reason_code": record.reason_code,
                "reason_detail": record.reason_detail,
                "ts_ms": int(time.time() * 1000),
            })

    def drain_rejections(self) -> List[dict]:
        with self._rej_lock:
            out, self._rejections = self._rejections, []
            return out

    def _process_safe(self, record: DocumentRecord) -> DocState:
        try:
            return self.process(record)
        except QueueIOError as e:
            log.error("Could not stage %s: %s", record.reference, e)
            record.state = DocState.ERROR
            record.reason_stage, record.reason_code, record.reason_detail = "queue", "QUEUE_IO", str(e)
            self.counters.count_outcome(DocState.ERROR)
            self._log_rejection(record)
            return DocState.ERROR

    def process_many(
        self,
        records: Iterable[DocumentRecord],
        *,
        workers: int = 1,
        progress: bool = True,
        on_done: Optional[OnDone] = None,
    ) -> Dict[str, int]:
        """Process an iterable of records with a bounded worker pool.

        Returns outcome counts by state. A document that cannot be staged is
        counted as error and logged; other failures propagate.
        """
        totals: Dict[str, int] = {}
        bar = tqdm(desc="documents", unit="doc", disable=not progress)

        def _done(record: DocumentRecord, state: DocState) -> None:
            totals[state.value] = totals.get(state.value, 0) + 1
            bar.update(1)
            if on_done is not None:
                on_done(record, state)

        try:
            if workers <= 1:
                for record in records:
                    _done(record, self._process_safe(record))
                return totals

            max_in_flight = workers * 2
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="pipeline") as pool:
                in_flight: Dict[Future, DocumentRecord] = {}

                def _collect(done) -> None:
                    for fut in done:
                        _done(in_flight.pop(fut), fut.result())

                for record in records:
                    if len(in_flight) >= max_in_flight:
                        done, _ = wait(in_flight, return_when=FIRST_COMPLETED)
                        _collect(done)
                    in_flight[pool.submit(self._process_safe, record)] = record
                while in_flight:
                    done, _ = wait(in_flight, return_when=FIRST_COMPLETED)
                    _collect(done)
            return totals
        finally:
            bar.close()
