"""Committer registry.

Add new committers without changing session code by registering a factory here.
Factories receive the `committer.options` mapping from the crawl YAML as keyword
arguments, plus `out_dir` for committers that write files.
"""

from __future__ import annotations
from typing import Any, Callable, Dict, Optional
from ..errors import ConfigurationError
from ..utils.text_matcher import TextMatcher
from .base import Committer
from .jsonl import JSONLCommitter
from .memory import MemoryCommitter

def _memory(out_dir: Optional[str] = None, ignore_content: bool = False, fields: Any = None) -> Committer:
    return MemoryCommitter(ignore_content=ignore_content, field_matcher=TextMatcher.from_config(fields))

def _jsonl(out_dir: Optional[str] = None, path: Optional[str] = None, max_lines_per_file: int = 10000,
           include_content: bool = True) -> Committer:
    target = path or out_dir
    if not target:
        raise ConfigurationError("jsonl committer requires 'path' or a run out_dir")
    return JSONLCommitter(target, max_lines_per_file=int(max_lines_per_file), include_content=bool(include_content))

_COMMITTERS: Dict[str, Callable[..., Committer]] = {
    "memory": _memory,
    "jsonl": _jsonl,
}

def register_committer(kind: str, factory: Callable[..., Committer]) -> None:
    """Register a new committer factory dynamically."""
    if kind in _COMMITTERS:
        raise ValueError(f"Committer '{kind}' already registered")
    _COMMITTERS[kind] = factory

def list_committers() -> list[str]:
    return list(_COMMITTERS.keys())

def get_committer(kind: str, options: Optional[Dict[str, Any]] = None, *, out_dir: Optional[str] = None) -> Committer:
    """Create a committer by kind."""
    if kind not in _COMMITTERS:
        raise ConfigurationError(
            f"Unknown committer: {kind}. "
            f"Available: {list(_COMMITTERS)}. "
            f"Register with register_committer()"
        )
    try:
        return _COMMITTERS[kind](out_dir=out_dir, **(options or {}))
    except TypeError as e:
        raise ConfigurationError(f"Invalid options for committer {kind}: {e}") from e
