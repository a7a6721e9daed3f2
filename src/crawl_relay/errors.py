"""Error taxonomy.

- ConfigurationError: bad filter/checksum/queue settings, raised while loading (never per document)
- StageError: one document cannot be evaluated; the runner turns it into state ERROR
- QueueIOError: a submission could not be staged; raised to the submitter
- QueueStateError: queue used out of lifecycle order (e.g. submit before recover)
- CommitterError / InitializationError / CommitterFlushError: downstream failures
"""

from __future__ import annotations
from typing import Optional


class CrawlRelayError(Exception):
    """Base class for all crawl_relay errors."""


class ConfigurationError(CrawlRelayError):
    pass


class StageError(CrawlRelayError):
    def __init__(self, message: str, reason_code: str = "STAGE_ERROR"):
        super().__init__(message)
        self.reason_code = reason_code


class QueueIOError(CrawlRelayError):
    pass


class QueueStateError(CrawlRelayError):
    pass


class CommitterError(CrawlRelayError):
    pass


class InitializationError(CommitterError):
    pass


class CommitterFlushError(CommitterError):
    def __init__(self, message: str, batch_id: Optional[int] = None, attempts: int = 0):
        super().__init__(message)
        self.batch_id = batch_id
        self.attempts = attempts
