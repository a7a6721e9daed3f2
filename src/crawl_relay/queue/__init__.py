"""Durable batched delivery to committers."""

from .batch import QueueBatch, StagedRequest
from .commit_queue import CommitQueue

__all__ = ["CommitQueue", "QueueBatch", "StagedRequest"]
