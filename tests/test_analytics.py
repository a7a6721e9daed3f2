"""Tests for analytics events and the Parquet sink."""

import os

import pyarrow.parquet as pq

from crawl_relay.analytics.schemas import make_event
from crawl_relay.analytics.sink import AnalyticsSink, _percentiles


def _event(stage, **counts):
    return make_event(run_id="r1", stage=stage, crawler="site", layer="filter", counts=counts)


def test_make_event_fills_count_keys():
    ev = _event("checksum", input_docs=3)
    assert ev["counts"] == {"input_docs": 3, "accepted_docs": 0, "rejected_docs": 0, "error_docs": 0}
    assert ev["metrics"] == {}


def test_percentiles():
    pct = _percentiles([1, 2, 3, 4, 5])
    assert pct["p50"] == 3.0
    assert _percentiles([]) == {}


def test_sink_writes_events_and_aggregates(tmp_path):
    sink = AnalyticsSink(str(tmp_path), "r1")
    sink.emit(_event("metadata_filters", input_docs=2, accepted_docs=1, rejected_docs=1))
    ev = _event("checksum", input_docs=1, accepted_docs=1)
    ev["metric_samples"] = {"content_bytes": [100, 200, 300]}
    sink.emit(ev)
    sink.emit(_event("metadata_filters", input_docs=3, accepted_docs=3))
    sink.flush_aggregates()

    agg = pq.read_table(os.path.join(tmp_path, "analytics", "aggregates", "daily_aggregates.parquet")).to_pylist()
    by_stage = {row["stage"]: row for row in agg}
    assert by_stage["metadata_filters"]["input_docs"] == 5
    assert by_stage["metadata_filters"]["rejected_docs"] == 1
    assert by_stage["checksum"]["content_bytes_p50"] == 200.0

    events_dir = os.path.join(tmp_path, "analytics", "events", "stage=metadata_filters")
    date_dir, = os.listdir(events_dir)
    events = pq.read_table(os.path.join(events_dir, date_dir, "events.parquet")).to_pylist()
    assert len(events) == 2


def test_aggregates_append_across_flushes(tmp_path):
    sink = AnalyticsSink(str(tmp_path), "r1")
    sink.emit(_event("checksum", input_docs=1))
    sink.flush_aggregates()
    sink.emit(_event("checksum", input_docs=2))
    sink.flush_aggregates()
    rows = pq.read_table(os.path.join(tmp_path, "analytics", "aggregates", "daily_aggregates.parquet")).to_pylist()
    assert [r["input_docs"] for r in rows] == [1, 2]
