"""CLI entrypoint.

Commands:
- `crawl-relay run --config crawl.yaml --input docs.jsonl [--workers N]`
- `crawl-relay resume --config crawl.yaml`      deliver batches staged by an earlier run
- `crawl-relay queue-status --config crawl.yaml`
- `crawl-relay clean --config crawl.yaml --yes`  drop committed data, checksums and staged batches
"""

from __future__ import annotations
import argparse
import json
import logging
import os
import sys
from typing import List, Optional

from .config import CrawlConfig, load_config
from .errors import CommitterFlushError, CrawlRelayError
from .logging_ import setup_logging
from .pipeline.session import CrawlSession
from .sources.jsonl import iter_records
from .tools.queue_report import collect_status, render_status

log = logging.getLogger("crawl_relay.cli")


def _setup(cfg: CrawlConfig) -> None:
    log_path = setup_logging(out_dir=cfg.run.out_dir, run_id=cfg.run.run_id, log_dir=cfg.run.log_dir,
                             level=cfg.run.log_level)
    log.info("Logging to %s", log_path)


def _run(cfg: CrawlConfig, inputs: List[str], workers: Optional[int], progress: bool) -> int:
    session = CrawlSession(cfg)
    session.start()
    try:
        totals = session.process_many(iter_records(inputs), workers=workers, progress=progress)
    finally:
        manifest = session.stop()
    print(json.dumps({"run_id": cfg.run.run_id, "totals": totals, "queue": manifest["queue"]}, indent=2))
    return 0


def _resume(cfg: CrawlConfig) -> int:
    session = CrawlSession(cfg)
    session.start()
    manifest = session.stop()
    print(json.dumps({"run_id": cfg.run.run_id, "queue": manifest["queue"]}, indent=2))
    return 0


def _clean(cfg: CrawlConfig, yes: bool) -> int:
    if not yes:
        print(f"Refusing to clean crawler '{cfg.name}' without --yes", file=sys.stderr)
        return 1
    CrawlSession(cfg).clean()
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    p = argparse.ArgumentParser(prog="crawl-relay")
    sub = p.add_subparsers(dest="cmd", required=True)

    pr = sub.add_parser("run", help="evaluate documents and deliver changes")
    pr.add_argument("--config", required=True)
    pr.add_argument("--input", required=True, nargs="+", help="JSONL file(s), directory or glob")
    pr.add_argument("--workers", type=int, default=None)
    pr.add_argument("--no-progress", action="store_true")

    pu = sub.add_parser("resume", help="deliver batches left staged by an earlier run")
    pu.add_argument("--config", required=True)

    ps = sub.add_parser("queue-status", help="show staged batches")
    ps.add_argument("--config", required=True)
    ps.add_argument("--json", action="store_true", help="print raw JSON instead of a table")

    pc = sub.add_parser("clean", help="reset committer, checksum store and queue")
    pc.add_argument("--config", required=True)
    pc.add_argument("--yes", action="store_true")

    args = p.parse_args(argv)

    try:
        cfg = load_config(args.config)
        if args.cmd == "queue-status":
            status = collect_status(cfg.queue.dir)
            if args.json:
                print(json.dumps(status, indent=2))
            else:
                render_status(status)
            return 0

        _setup(cfg)
        os.environ["CRAWL_RELAY_CONFIG_PATH"] = os.path.abspath(args.config)
        if args.cmd == "run":
            return _run(cfg, args.input, args.workers, progress=not args.no_progress)
        if args.cmd == "resume":
            return _resume(cfg)
        return _clean(cfg, args.yes)
    except CommitterFlushError as e:
        log.error("Delivery halted: %s (batch %s kept on disk; run `crawl-relay resume` once fixed)", e, e.batch_id)
        return 2
    except CrawlRelayError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
