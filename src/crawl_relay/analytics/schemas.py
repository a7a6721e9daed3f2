"""Analytics event schemas.

Stage analytics are emitted as small, periodic events: one event per stage
holding the counters accumulated since the previous flush. Events are stored
to Parquet by AnalyticsSink.

Helper constructors and recommended keys only; no strict validation, to keep
per-document overhead low.
"""

from __future__ import annotations
from typing import Dict, Any
import time

COUNT_KEYS = ("input_docs", "accepted_docs", "rejected_docs", "error_docs")

def make_event(
    *,
    run_id: str,
    stage: str,
    crawler: str,
    layer: str,
    counts: Dict[str, int],
    metrics: Dict[str, float] | None = None,
    rejection_breakdown: Dict[str, int] | None = None,
) -> Dict[str, Any]:
    return {
        "run_id": run_id,
        "stage": stage,
        "crawler": crawler,
        "layer": layer,
        "timestamp_ms": int(time.time() * 1000),
        "counts": {k: int(counts.get(k, 0)) for k in COUNT_KEYS},
        "metrics": metrics or {},
        "rejection_breakdown": rejection_breakdown or {},
    }
