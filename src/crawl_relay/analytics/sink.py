"""Analytics sink.

Two storage layers under `<out_dir>/analytics`:
1) Raw events (append-only Parquet): `events/stage=.../date=.../events.parquet`
2) Aggregates (append-only Parquet): `aggregates/daily_aggregates.parquet`

Callers may pass metric samples via event["metric_samples"] = {"content_bytes": [..]};
they are reduced to p50/p90/p99 before the event is written.
"""

from __future__ import annotations
from typing import Dict, Any, List
from datetime import datetime, timezone
import logging
import os
import threading

import numpy as np
import pyarrow as pa
import pyarrow.parquet as pq

from .schemas import COUNT_KEYS

log = logging.getLogger("crawl_relay.analytics")

def _percentiles(xs: List[float], ps=(50, 90, 99)) -> Dict[str, float]:
    if not xs:
        return {}
    arr = np.array(xs, dtype=np.float64)
    out = {}
    for p in ps:
        out[f"p{p}"] = float(np.percentile(arr, p))
    return out

class AnalyticsSink:
    def __init__(self, out_dir: str, run_id: str):
        self.out_dir = out_dir
        self.run_id = run_id
        self.events_dir = os.path.join(out_dir, "analytics", "events")
        self.aggs_dir = os.path.join(out_dir, "analytics", "aggregates")
        os.makedirs(self.events_dir, exist_ok=True)
        os.makedirs(self.aggs_dir, exist_ok=True)

        self._lock = threading.Lock()
        # key=(date, stage, crawler) -> counters + latest percentile metrics
        self._agg: Dict[tuple, Dict[str, Any]] = {}

    def emit(self, event: Dict[str, Any]) -> None:
        stage = event["stage"]
        date = datetime.fromtimestamp(event["timestamp_ms"] / 1000, tz=timezone.utc).date().isoformat()

        metric_samples = event.pop("metric_samples", None) or {}
        pct_metrics = {}
        for k, xs in metric_samples.items():
            for pk, pv in _percentiles(xs).items():
                pct_metrics[f"{k}_{pk}"] = pv
        event.setdefault("metrics", {})
        event["metrics"].update(pct_metrics)

        with self._lock:
            p = os.path.join(self.events_dir, f"stage={stage}", f"date={date}", "events.parquet")
            os.makedirs(os.path.dirname(p), exist_ok=True)
            self._append_parquet(p, [event])

            key = (date, stage, event["crawler"])
            cur = self._agg.get(key)
            if cur is None:
                cur = {"date": date, "stage": stage, "crawler": event["crawler"]}
                cur.update({k: 0 for k in COUNT_KEYS})
            counts = event.get("counts", {})
            for k in COUNT_KEYS:
                cur[k] += int(counts.get(k, 0))
            # last write wins for percentile metrics
            for mk, mv in (event.get("metrics") or {}).items():
                if isinstance(mv, (int, float)):
                    cur[mk] = float(mv)
            self._agg[key] = cur

    def flush_aggregates(self) -> None:
        with self._lock:
            if not self._agg:
                return
            rows = list(self._agg.values())
            p = os.path.join(self.aggs_dir, "daily_aggregates.parquet")
            self._append_parquet(p, rows)
            self._agg.clear()

    @staticmethod
    def _normalize_row(row: Dict[str, Any]) -> Dict[str, Any]:
        """Empty dicts cannot be typed as Parquet structs; store them as null."""
        return {k: (None if isinstance(v, dict) and not v else v) for k, v in row.items()}

    def _to_table(self, rows: List[Dict[str, Any]]) -> pa.Table:
        # from_pylist takes its columns from the first row; align on the union of keys
        keys: Dict[str, None] = {}
        for r in rows:
            keys.update(dict.fromkeys(r))
        return pa.Table.from_pylist([{k: r.get(k) for k in keys} for r in map(self._normalize_row, rows)])

    def _append_parquet(self, path: str, rows: List[Dict[str, Any]]) -> None:
        table = self._to_table(rows)

        if os.path.exists(path):
            if os.path.getsize(path) == 0:
                os.remove(path)
            else:
                try:
                    existing = pq.read_table(path)
                    existing_rows = existing.to_pylist()
                    # schemas drift when new metric keys show up; re-infer over both sets
                    table = self._to_table(existing_rows + rows)
                except (pa.ArrowInvalid, OSError) as e:
                    log.warning("Discarding unreadable analytics file %s: %s", path, e)
                    os.remove(path)

        pq.write_table(table, path, compression="zstd")
