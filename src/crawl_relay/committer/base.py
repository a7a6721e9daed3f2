"""Committer SPI.

A committer is the downstream sink (search index, database, file drop) that
receives committed documents. The CommitQueue is its only caller.

Contract:
- init():    prepare the sink; InitializationError if unreachable/misconfigured
- upsert():  idempotent add/replace
- delete():  idempotent removal
- commit_batch(): deliver one staged batch in order (default: one call per request)
- close():   finalize after the last batch
- clean():   reset sink-side state (tests, full re-crawls)

Subclasses implement the `_do_*` hooks; the public methods add lifecycle
checks, logging and error wrapping.
"""

from __future__ import annotations
from abc import ABC, abstractmethod
from typing import Iterable
import logging

from ..errors import CommitterError, InitializationError
from .request import CommitterRequest, DeleteRequest, UpsertRequest

log = logging.getLogger("crawl_relay.committer")


class Committer(ABC):
    name: str = "committer"

    def __init__(self):
        self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    def init(self) -> None:
        if self._initialized:
            return
        try:
            self._do_init()
        except InitializationError:
            raise
        except Exception as e:
            raise InitializationError(f"Could not initialize committer {self.name}: {e}") from e
        self._initialized = True
        log.info("Committer %s initialized", self.name)

    def upsert(self, request: UpsertRequest) -> None:
        self._ensure_initialized()
        self._call(self._do_upsert, request)

    def delete(self, request: DeleteRequest) -> None:
        self._ensure_initialized()
        self._call(self._do_delete, request)

    def commit_batch(self, requests: Iterable[CommitterRequest]) -> None:
        """Deliver requests in the given order. Any failure fails the whole batch."""
        self._ensure_initialized()
        for req in requests:
            if isinstance(req, UpsertRequest):
                self._call(self._do_upsert, req)
            elif isinstance(req, DeleteRequest):
                self._call(self._do_delete, req)
            else:
                raise CommitterError(f"Unsupported request type: {type(req).__name__}")

    def close(self) -> None:
        if not self._initialized:
            return
        try:
            self._do_close()
        except CommitterError:
            raise
        except Exception as e:
            raise CommitterError(f"Could not close committer {self.name}: {e}") from e
        finally:
            self._initialized = False

    def clean(self) -> None:
        try:
            self._do_clean()
        except CommitterError:
            raise
        except Exception as e:
            raise CommitterError(f"Could not clean committer {self.name}: {e}") from e
        log.info("Committer %s cleaned", self.name)

    def _ensure_initialized(self) -> None:
        if not self._initialized:
            raise CommitterError(f"Committer {self.name} used before init()")

    @staticmethod
    def _call(fn, request: CommitterRequest) -> None:
        try:
            fn(request)
        except CommitterError:
            raise
        except Exception as e:
            raise CommitterError(f"{request.kind} failed for {request.reference}: {e}") from e

    def _do_init(self) -> None:
        pass

    @abstractmethod
    def _do_upsert(self, request: UpsertRequest) -> None:
        raise NotImplementedError

    @abstractmethod
    def _do_delete(self, request: DeleteRequest) -> None:
        raise NotImplementedError

    def _do_close(self) -> None:
        pass

    @abstractmethod
    def _do_clean(self) -> None:
        raise NotImplementedError
