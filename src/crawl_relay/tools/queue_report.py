"""Queue status report.

Reads a queue directory without opening it (safe while a session is running)
and renders what is staged: batches by state, request counts, folder spread.
"""

from __future__ import annotations
from typing import Any, Dict, List, Optional

from rich import box
from rich.console import Console
from rich.table import Table

from ..queue import batch as layout
from ..queue.batch import QueueBatch


def _request_count(suffix: str, path: str) -> int:
    if suffix == layout.CLOSED:
        try:
            return QueueBatch.load(path).size
        except (OSError, ValueError, KeyError):
            pass
    return len(layout.complete_slots(path))


def collect_status(queue_dir: str) -> Dict[str, Any]:
    batches: List[Dict[str, Any]] = []
    for folder, batch_id, suffix, path in layout.scan_layout(queue_dir):
        batches.append({
            "batch_id": batch_id,
            "folder": folder,
            "state": suffix.lstrip("."),
            "requests": _request_count(suffix, path),
            "path": path,
        })
    return {
        "queue_dir": queue_dir,
        "folders": layout.list_folders(queue_dir),
        "batches": batches,
        "pending_requests": sum(b["requests"] for b in batches if b["state"] != "done"),
    }


def render_status(status: Dict[str, Any], console: Optional[Console] = None) -> None:
    console = console or Console()
    t = Table(title=f"Commit queue: {status['queue_dir']}", box=box.SIMPLE_HEAVY)
    t.add_column("Batch", justify="right")
    t.add_column("Folder", justify="right")
    t.add_column("State")
    t.add_column("Requests", justify="right")
    for b in status["batches"]:
        style = {"open": "yellow", "batch": "cyan", "done": "dim"}.get(b["state"], "")
        t.add_row(str(b["batch_id"]), layout.folder_name(b["folder"]), b["state"], str(b["requests"]), style=style)
    console.print(t)
    console.print(f"folders={len(status['folders'])} batches={len(status['batches'])} "
                  f"pending_requests={status['pending_requests']}")
