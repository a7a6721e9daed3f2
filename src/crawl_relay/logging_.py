"""Logging utilities.

We use Python's standard `logging` module with a plain structured format.
Library modules only create named loggers (`crawl_relay.<area>`); handlers are
attached here, by the CLI, once per process.

- Logs go to: `<log_dir>/<run_id>.log`
- Also prints concise progress to stdout.
"""

from __future__ import annotations
import logging
import os
from typing import Optional

_FORMAT = "%(asctime)s %(levelname)s %(name)s | %(message)s"
_DATEFMT = "%Y-%m-%dT%H:%M:%S"

def setup_logging(out_dir: str, run_id: str, log_dir: Optional[str] = None, level: str = "INFO") -> str:
    """
    Setup logging configuration.

    Args:
        out_dir: Run output directory (logs go to out_dir/logs when log_dir is None)
        run_id: Run identifier, used as the log file name
        log_dir: Global log directory
        level: Root log level name

    Returns:
        Path of the log file.
    """
    if log_dir is None:
        log_dir = os.path.join(out_dir, "logs")

    os.makedirs(log_dir, exist_ok=True)
    log_path = os.path.join(log_dir, f"{run_id}.log")

    root = logging.getLogger()
    root.setLevel(getattr(logging, str(level).upper(), logging.INFO))

    fmt = logging.Formatter(fmt=_FORMAT, datefmt=_DATEFMT)

    # File
    fh = logging.FileHandler(log_path, encoding="utf-8")
    fh.setFormatter(fmt)
    root.addHandler(fh)

    # Console
    ch = logging.StreamHandler()
    ch.setFormatter(fmt)
    root.addHandler(ch)
    return log_path
