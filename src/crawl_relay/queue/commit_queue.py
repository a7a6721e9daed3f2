"""Durable, batched commit queue.

Sits between the pipeline workers and a Committer:
- submit() stages each request on disk right away (content streamed to a file)
- requests fill the open batch; a full (or force-closed) batch becomes pending
- one flusher hands pending batches to the committer, strictly in batch-id order
- a batch is deleted from disk only after the committer accepted it; checksum
  updates carried by its requests are applied after that deletion
- recover() turns whatever a crash left on disk back into pending batches
- a batch whose close failed keeps blocking younger batches; flush_ready()
  retries the close before looking for work

Locking: one Condition guards id/slot assignment, batch close and the pending
list. File writes for a slot happen outside it. A separate flush lock keeps a
single batch in flight. There is no timeout on a committer call.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional
import bisect
import logging
import os
import shutil
import threading
import time

from ..checksums.engine import ChecksumUpdate
from ..committer.base import Committer
from ..committer.request import CommitterRequest
from ..errors import ConfigurationError, CommitterFlushError, QueueIOError, QueueStateError
from . import batch as layout
from .batch import QueueBatch

log = logging.getLogger("crawl_relay.queue")

OnCommitted = Callable[[List[ChecksumUpdate]], None]


@dataclass
class _OpenBatch:
    batch_id: int
    folder: int
    path: str
    created_at: float = field(default_factory=time.monotonic)
    assigned: int = 0
    completed: int = 0
    written: List[int] = field(default_factory=list)
    closing: bool = False
    close_failed: bool = False

    @property
    def settled(self) -> bool:
        return self.closing and self.completed == self.assigned


class CommitQueue:
    def __init__(
        self,
        committer: Committer,
        queue_dir: str,
        *,
        batch_size: int = 100,
        max_per_folder: int = 100,
        max_backlog_batches: Optional[int] = None,
        flush_interval: Optional[float] = None,
        max_retries: int = 3,
        retry_backoff: float = 1.0,
        max_retry_backoff: float = 60.0,
        fsync: bool = True,
        on_committed: Optional[OnCommitted] = None,
    ):
        if batch_size < 1:
            raise ConfigurationError("queue.batch_size must be >= 1")
        if max_per_folder < 1:
            raise ConfigurationError("queue.max_per_folder must be >= 1")
        if max_backlog_batches is not None and max_backlog_batches < 1:
            raise ConfigurationError("queue.max_backlog_batches must be >= 1 or unset")
        if max_retries < 0:
            raise ConfigurationError("queue.max_retries must be >= 0")

        self.committer = committer
        self.queue_dir = queue_dir
        self.batch_size = batch_size
        self.max_per_folder = max_per_folder
        self.max_backlog_batches = max_backlog_batches
        self.flush_interval = flush_interval
        self.max_retries = max_retries
        self.retry_backoff = retry_backoff
        self.max_retry_backoff = max_retry_backoff
        self.fsync = fsync
        self.on_committed = on_committed

        self._cond = threading.Condition()
        self._flush_lock = threading.Lock()
        self._open: Optional[_OpenBatch] = None
        self._unfinished: Dict[int, _OpenBatch] = {}
        self._pending: List[QueueBatch] = []   # sorted by batch_id
        self._next_batch_id = 1
        self._folder = 1
        self._folder_count = 0
        self._recovered = False
        self._closed = False
        self._halted = False
        self._committed_batches = 0
        self._committed_requests = 0

        self._thread: Optional[threading.Thread] = None
        self._stop = threading.Event()
        self._wakeup = threading.Event()

    # ------------------------------------------------------------------ lifecycle

    def recover(self) -> int:
        """Re-queue batches left on disk. Must run before the first submit().

        Returns the number of pending batches found.
        """
        with self._cond:
            if self._recovered:
                log.warning("recover() called twice on %s; ignoring", self.queue_dir)
                return len(self._pending)
            os.makedirs(self.queue_dir, exist_ok=True)
            max_id = 0
            max_folder = 0
            recovered: List[QueueBatch] = []
            for folder, batch_id, suffix, path in layout.scan_layout(self.queue_dir):
                max_id = max(max_id, batch_id)
                max_folder = max(max_folder, folder)
                if suffix == layout.DONE:
                    shutil.rmtree(path)
                    continue
                batch = self._recover_dir(folder, batch_id, suffix, path)
                if batch is not None:
                    recovered.append(batch)
            folders = layout.list_folders(self.queue_dir)
            if folders:
                max_folder = max(max_folder, folders[-1])
            # never mix new batches into a folder written by an earlier session
            self._folder = max_folder + 1
            self._folder_count = 0
            for folder in folders:
                self._remove_folder_if_empty(folder)

            recovered.sort(key=lambda b: b.batch_id)
            self._pending = recovered
            self._next_batch_id = max_id + 1
            self._recovered = True
            n_req = sum(b.size for b in recovered)
        if recovered:
            log.info("Recovered %d batch(es) / %d request(s) from %s", len(recovered), n_req, self.queue_dir)
        return len(recovered)

    def _recover_dir(self, folder: int, batch_id: int, suffix: str, path: str) -> Optional[QueueBatch]:
        if suffix == layout.CLOSED and os.path.exists(os.path.join(path, layout.MANIFEST)):
            return QueueBatch.load(path)
        # crash while the batch was open (or before the manifest landed): keep complete slots only
        dropped = layout.discard_partial_files(path)
        slots = layout.complete_slots(path)
        if dropped:
            log.warning("Batch %d: discarded %d partially written file(s)", batch_id, dropped)
        if not slots:
            shutil.rmtree(path)
            return None
        layout.write_manifest(path, batch_id, folder, slots, fsync=self.fsync)
        closed_path = os.path.join(os.path.dirname(path), layout.batch_dir_name(batch_id, layout.CLOSED))
        if path != closed_path:
            os.replace(path, closed_path)
        log.info("Batch %d: closed after restart with %d request(s)", batch_id, len(slots))
        return QueueBatch(batch_id=batch_id, folder=folder, path=closed_path, slots=slots)

    def start(self) -> None:
        """Recover if needed and launch the background flusher."""
        if not self._recovered:
            self.recover()
        if self._thread is not None:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run_flusher, name="commit-queue-flusher", daemon=True)
        self._thread.start()
        self._wakeup.set()

    def close(self) -> None:
        """Force-close the open batch, stop the flusher and drain what is pending.

        Raises CommitterFlushError if draining fails; staged data stays on disk.
        """
        if self._closed:
            return
        self.close_open_batch()
        self._stop.set()
        self._wakeup.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None
        with self._cond:
            self._closed = True
            self._cond.notify_all()
        if self._halted:
            log.warning("Queue halted; %d batch(es) left staged in %s", len(self._pending), self.queue_dir)
            return
        self.flush_ready()
        with self._cond:
            left = len(self._pending) + sum(1 for ob in self._unfinished.values() if ob.close_failed)
        if left:
            log.warning("%d batch(es) left staged in %s", left, self.queue_dir)

    # ------------------------------------------------------------------ submission

    def submit(self, request: CommitterRequest, checksum_update: Optional[ChecksumUpdate] = None) -> None:
        """Stage a request. Blocks while the backlog bound is reached; never drops.

        Raises QueueIOError if the request could not be written.
        """
        with self._cond:
            if not self._recovered:
                raise QueueStateError("recover() must run before submit()")
            while self._backlog_full() and not self._closed:
                self._cond.wait()
            if self._closed:
                raise QueueStateError("queue is closed")
            ob = self._open
            if ob is None:
                ob = self._new_open_batch()
            slot = ob.assigned
            ob.assigned += 1
            if ob.assigned >= self.batch_size:
                ob.closing = True
                self._open = None

        ok = False
        error: Optional[OSError] = None
        try:
            layout.write_slot(ob.path, slot, request, checksum_update, fsync=self.fsync)
            ok = True
        except OSError as e:
            error = e
        finally:
            with self._cond:
                ob.completed += 1
                if ok:
                    ob.written.append(slot)
                if ob.settled:
                    self._finish_close(ob)

        if error is not None:
            log.error("Could not stage %s into batch %d: %s", request.reference, ob.batch_id, error)
            raise QueueIOError(f"Could not stage {request.reference}: {error}") from error

    def _backlog_full(self) -> bool:
        if self.max_backlog_batches is None:
            return False
        return len(self._pending) >= self.max_backlog_batches

    def _new_open_batch(self) -> _OpenBatch:
        if self._folder_count >= self.max_per_folder:
            self._folder += 1
            self._folder_count = 0
        self._folder_count += 1
        batch_id = self._next_batch_id
        self._next_batch_id += 1
        path = os.path.join(self.queue_dir, layout.folder_name(self._folder), layout.batch_dir_name(batch_id, layout.OPEN))
        try:
            os.makedirs(path, exist_ok=True)
        except OSError as e:
            raise QueueIOError(f"Could not create batch directory {path}: {e}") from e
        ob = _OpenBatch(batch_id=batch_id, folder=self._folder, path=path)
        self._open = ob
        self._unfinished[batch_id] = ob
        return ob

    def close_open_batch(self) -> Optional[int]:
        """Force-close the open batch (flush timer, shutdown). Returns its id, if any."""
        with self._cond:
            ob = self._open
            if ob is None or ob.assigned == 0:
                return None
            ob.closing = True
            self._open = None
            if ob.settled:
                self._finish_close(ob)
            return ob.batch_id

    def _finish_close(self, ob: _OpenBatch) -> bool:
        # caller holds self._cond
        if not ob.written:
            self._unfinished.pop(ob.batch_id, None)
            shutil.rmtree(ob.path, ignore_errors=True)
            return True
        slots = sorted(ob.written)
        closed_path = os.path.join(os.path.dirname(ob.path), layout.batch_dir_name(ob.batch_id, layout.CLOSED))
        try:
            layout.write_manifest(ob.path, ob.batch_id, ob.folder, slots, fsync=self.fsync)
            os.replace(ob.path, closed_path)
        except OSError as e:
            # stays unfinished so younger batches cannot overtake it; flush_ready() retries
            ob.close_failed = True
            log.error("Could not close batch %d: %s", ob.batch_id, e)
            return False
        ob.close_failed = False
        self._unfinished.pop(ob.batch_id, None)
        bisect.insort(self._pending, QueueBatch(ob.batch_id, ob.folder, closed_path, slots), key=lambda b: b.batch_id)
        log.debug("Batch %d closed with %d request(s)", ob.batch_id, len(slots))
        self._cond.notify_all()
        self._wakeup.set()
        return True

    def _retry_failed_closes(self) -> None:
        # caller holds self._cond
        for batch_id in sorted(self._unfinished):
            ob = self._unfinished[batch_id]
            if ob.close_failed and self._finish_close(ob):
                log.info("Batch %d closed on retry", batch_id)

    # ------------------------------------------------------------------ flushing

    def flush_ready(self) -> int:
        """Flush pending batches in order until none is ready. Returns the number committed.

        Raises CommitterFlushError once retries for a batch are exhausted; the
        queue is then halted until resume().
        """
        if self._halted:
            log.warning("Queue halted; not flushing (call resume() first)")
            return 0
        flushed = 0
        with self._flush_lock:
            while True:
                with self._cond:
                    if self._halted:
                        break
                    self._retry_failed_closes()
                    batch = self._next_flushable()
                if batch is None:
                    break
                updates = self._flush_one(batch)
                with self._cond:
                    self._pending.remove(batch)
                    self._committed_batches += 1
                    self._committed_requests += batch.size
                    self._cond.notify_all()
                flushed += 1
                if updates and self.on_committed is not None:
                    self.on_committed(updates)
        return flushed

    def _next_flushable(self) -> Optional[QueueBatch]:
        if not self._pending:
            return None
        head = self._pending[0]
        # an older batch still being written must go first
        if any(bid < head.batch_id for bid in self._unfinished):
            return None
        return head

    def _flush_one(self, batch: QueueBatch) -> List[ChecksumUpdate]:
        last_error: Optional[Exception] = None
        updates: List[ChecksumUpdate] = []
        for attempt in range(self.max_retries + 1):
            try:
                with batch.open_requests() as staged:
                    self.committer.commit_batch([s.request for s in staged])
                    updates = [s.checksum_update for s in staged if s.checksum_update is not None]
                last_error = None
                break
            except Exception as e:
                last_error = e
                if attempt < self.max_retries:
                    delay = min(self.retry_backoff * (2 ** attempt), self.max_retry_backoff)
                    log.warning("Batch %d flush failed (attempt %d/%d): %s; retrying in %.1fs",
                                batch.batch_id, attempt + 1, self.max_retries + 1, e, delay)
                    time.sleep(delay)
        if last_error is not None:
            with self._cond:
                self._halted = True
                self._cond.notify_all()
            log.error("Batch %d flush failed after %d attempt(s); flushing halted, batch kept at %s",
                      batch.batch_id, self.max_retries + 1, batch.path)
            raise CommitterFlushError(
                f"Batch {batch.batch_id} could not be committed: {last_error}",
                batch_id=batch.batch_id,
                attempts=self.max_retries + 1,
            ) from last_error

        try:
            batch.remove()
        except OSError as e:
            # committed but still on disk: it will be sent again, which at-least-once allows
            raise QueueIOError(f"Batch {batch.batch_id} committed but could not be removed: {e}") from e
        with self._cond:
            self._remove_folder_if_empty(batch.folder)
        log.info("Batch %d committed (%d request(s))", batch.batch_id, batch.size)
        return updates

    def _remove_folder_if_empty(self, folder: int) -> None:
        if folder == self._folder:
            return
        path = os.path.join(self.queue_dir, layout.folder_name(folder))
        try:
            if os.path.isdir(path) and not os.listdir(path):
                os.rmdir(path)
        except OSError as e:
            log.debug("Could not remove folder %s: %s", path, e)

    def resume(self) -> None:
        """Clear a halt after an operator fixed the downstream system."""
        with self._cond:
            if not self._halted:
                return
            self._halted = False
        log.info("Queue flushing resumed (%d batch(es) pending)", len(self._pending))
        self._wakeup.set()

    def _run_flusher(self) -> None:
        while not self._stop.is_set():
            self._wakeup.wait(timeout=self.flush_interval)
            self._wakeup.clear()
            if self._stop.is_set():
                break
            if self.flush_interval is not None:
                self._close_if_idle()
            try:
                self.flush_ready()
            except CommitterFlushError as e:
                log.error("Background flush halted: %s", e)
            except Exception:
                log.exception("Unexpected error in commit queue flusher")
                with self._cond:
                    self._halted = True
                    self._cond.notify_all()

    def _close_if_idle(self) -> None:
        with self._cond:
            ob = self._open
            due = ob is not None and ob.assigned > 0 and time.monotonic() - ob.created_at >= self.flush_interval
        if due:
            self.close_open_batch()

    # ------------------------------------------------------------------ introspection

    @property
    def halted(self) -> bool:
        return self._halted

    def pending_batches(self) -> List[QueueBatch]:
        with self._cond:
            return list(self._pending)

    def stats(self) -> Dict[str, object]:
        with self._cond:
            ob = self._open
            return {
                "queue_dir": self.queue_dir,
                "pending_batches": len(self._pending),
                "pending_requests": sum(b.size for b in self._pending),
                "open_batch_id": ob.batch_id if ob else None,
                "open_batch_requests": ob.assigned if ob else 0,
                "committed_batches": self._committed_batches,
                "committed_requests": self._committed_requests,
                "next_batch_id": self._next_batch_id,
                "folder": self._folder,
                "halted": self._halted,
            }

    def __enter__(self) -> "CommitQueue":
        self.start()
        return self

    def __exit__(self, *exc) -> None:
        self.close()
