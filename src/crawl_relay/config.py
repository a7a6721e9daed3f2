"""Crawl configuration.

One YAML file describes a crawler's evaluation pipeline, its checksum store,
its commit queue and its committer:

    crawler:
      name: docs-site
      work_dir: work/docs-site          # durable state shared by every session
    run:
      run_id_auto: {enabled: true, prefix_digits: 8, suffix_digits: 6}
      out_dir: storage/{run_id}         # per-session logs, analytics, manifest
      log_level: INFO
      log_every_docs: 1000
    pipeline:
      workers: 4
      fetch_directive: document         # metadata | document
      stages: [metadata_filters, document_filters, checksum]
      metadata_filters: {no_match: auto, rules: [...]}
      document_filters: [...]
      checksum: {mode: content}
    checksum_store: {kind: file, flush_every: 1000}
    queue: {batch_size: 100, max_per_folder: 100, flush_interval: 5}
    committer: {kind: jsonl, options: {max_lines_per_file: 10000}}
    analytics: {enabled: true}

Values are validated here; filter rules and checksum settings are compiled by
the session at startup so a bad pattern fails before the first document.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
import os

from .errors import ConfigurationError
from .pipeline.context import FetchDirective
from .policies.loader import load_yaml
from .run_id import crawler_name, resolve_out_dir, resolve_run_id
from .stages.registry import DEFAULT_STAGES


def _section(cfg: Dict[str, Any], key: str) -> Dict[str, Any]:
    value = cfg.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigurationError(f"'{key}' must be a mapping, got {type(value).__name__}")
    return value


def _positive_int(section: str, d: Dict[str, Any], key: str, default: Optional[int]) -> Optional[int]:
    raw = d.get(key, default)
    if raw is None:
        return None
    try:
        value = int(raw)
    except (TypeError, ValueError):
        raise ConfigurationError(f"{section}.{key} must be an integer, got {raw!r}") from None
    if value < 1:
        raise ConfigurationError(f"{section}.{key} must be >= 1, got {value}")
    return value


def _non_negative_float(section: str, d: Dict[str, Any], key: str, default: Optional[float]) -> Optional[float]:
    raw = d.get(key, default)
    if raw is None:
        return None
    try:
        value = float(raw)
    except (TypeError, ValueError):
        raise ConfigurationError(f"{section}.{key} must be a number, got {raw!r}") from None
    if value < 0:
        raise ConfigurationError(f"{section}.{key} must be >= 0, got {value}")
    return value


@dataclass
class RunConfig:
    run_id: str
    out_dir: str
    log_dir: Optional[str] = None
    log_level: str = "INFO"
    log_every_docs: int = 1000


@dataclass
class PipelineConfig:
    workers: int = 4
    fetch_directive: FetchDirective = FetchDirective.DOCUMENT
    stages: List[str] = field(default_factory=lambda: list(DEFAULT_STAGES))
    metadata_filters: Any = None
    document_filters: Any = None
    checksum: Optional[Dict[str, Any]] = None


@dataclass
class ChecksumStoreConfig:
    kind: str = "file"           # file | memory
    path: str = ""
    flush_every: int = 1000


@dataclass
class QueueConfig:
    dir: str = ""
    batch_size: int = 100
    max_per_folder: int = 100
    max_backlog_batches: Optional[int] = None
    flush_interval: Optional[float] = 5.0
    max_retries: int = 3
    retry_backoff: float = 1.0
    max_retry_backoff: float = 60.0
    fsync: bool = True


@dataclass
class CommitterConfig:
    kind: str = "memory"
    options: Dict[str, Any] = field(default_factory=dict)


@dataclass
class CrawlConfig:
    name: str
    work_dir: str
    run: RunConfig
    pipeline: PipelineConfig
    checksum_store: ChecksumStoreConfig
    queue: QueueConfig
    committer: CommitterConfig
    analytics_enabled: bool = True
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)


def parse_config(cfg: Dict[str, Any]) -> CrawlConfig:
    if not isinstance(cfg, dict):
        raise ConfigurationError("Crawl config must be a mapping")
    crawler = _section(cfg, "crawler")
    name = crawler_name(cfg)
    work_dir = str(crawler.get("work_dir") or os.path.join("work", name))

    run_s = _section(cfg, "run")
    run_id = resolve_run_id(cfg)
    run = RunConfig(
        run_id=run_id,
        out_dir=resolve_out_dir(cfg, run_id),
        log_dir=run_s.get("log_dir"),
        log_level=str(run_s.get("log_level", "INFO")),
        log_every_docs=_positive_int("run", run_s, "log_every_docs", 1000),
    )

    p = _section(cfg, "pipeline")
    try:
        directive = FetchDirective(str(p.get("fetch_directive", FetchDirective.DOCUMENT.value)).lower())
    except ValueError:
        raise ConfigurationError(f"pipeline.fetch_directive must be metadata or document, got {p.get('fetch_directive')!r}") from None
    stages = p.get("stages") or list(DEFAULT_STAGES)
    if not isinstance(stages, list) or not all(isinstance(s, str) for s in stages):
        raise ConfigurationError("pipeline.stages must be a list of stage names")
    pipeline = PipelineConfig(
        workers=_positive_int("pipeline", p, "workers", 4),
        fetch_directive=directive,
        stages=stages,
        metadata_filters=p.get("metadata_filters"),
        document_filters=p.get("document_filters"),
        checksum=p.get("checksum"),
    )

    cs = _section(cfg, "checksum_store")
    kind = str(cs.get("kind", "file")).lower()
    if kind not in ("file", "memory"):
        raise ConfigurationError(f"checksum_store.kind must be file or memory, got {kind!r}")
    store = ChecksumStoreConfig(
        kind=kind,
        path=str(cs.get("path") or os.path.join(work_dir, "checksums.json")),
        flush_every=_positive_int("checksum_store", cs, "flush_every", 1000),
    )

    q = _section(cfg, "queue")
    max_retries = q.get("max_retries", 3)
    if not isinstance(max_retries, int) or max_retries < 0:
        raise ConfigurationError(f"queue.max_retries must be an integer >= 0, got {max_retries!r}")
    queue = QueueConfig(
        dir=str(q.get("dir") or os.path.join(work_dir, "queue")),
        batch_size=_positive_int("queue", q, "batch_size", 100),
        max_per_folder=_positive_int("queue", q, "max_per_folder", 100),
        max_backlog_batches=_positive_int("queue", q, "max_backlog_batches", None),
        flush_interval=_non_negative_float("queue", q, "flush_interval", 5.0) or None,
        max_retries=max_retries,
        retry_backoff=_non_negative_float("queue", q, "retry_backoff", 1.0),
        max_retry_backoff=_non_negative_float("queue", q, "max_retry_backoff", 60.0),
        fsync=bool(q.get("fsync", True)),
    )

    c = _section(cfg, "committer")
    options = c.get("options") or {}
    if not isinstance(options, dict):
        raise ConfigurationError("committer.options must be a mapping")
    committer = CommitterConfig(kind=str(c.get("kind", "memory")), options=options)

    analytics = _section(cfg, "analytics")
    return CrawlConfig(
        name=name,
        work_dir=work_dir,
        run=run,
        pipeline=pipeline,
        checksum_store=store,
        queue=queue,
        committer=committer,
        analytics_enabled=bool(analytics.get("enabled", True)),
        raw=cfg,
    )


def load_config(path: str) -> CrawlConfig:
    return parse_config(load_yaml(path))
