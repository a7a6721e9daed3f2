"""Committer SPI, requests and reference committers."""

from .request import CommitterRequest, DeleteRequest, UpsertRequest
from .base import Committer
from .memory import MemoryCommitter
from .jsonl import JSONLCommitter
from .registry import get_committer, list_committers, register_committer

__all__ = [
    "CommitterRequest",
    "DeleteRequest",
    "UpsertRequest",
    "Committer",
    "MemoryCommitter",
    "JSONLCommitter",
    "get_committer",
    "list_committers",
    "register_committer",
]
