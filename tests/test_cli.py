"""Tests for the crawl-relay CLI."""

import json

import pytest
import yaml

from crawl_relay.cli import main
from crawl_relay.sources.jsonl import iter_records, record_from_dict


@pytest.fixture
def config_file(tmp_path, crawl_cfg):
    crawl_cfg["committer"] = {"kind": "jsonl", "options": {"path": str(tmp_path / "sink")}}
    path = tmp_path / "crawl.yaml"
    path.write_text(yaml.safe_dump(crawl_cfg), encoding="utf-8")
    return path


@pytest.fixture
def input_file(tmp_path):
    rows = [
        {"reference": "https://x/a", "metadata": {"Content-Type": "text/html"}, "content": "hello"},
        {"reference": "https://x/b", "metadata": {"Content-Type": "image/png"}, "content_b64": "iVBORw=="},
        {"reference": "https://x/c", "deleted": True},
    ]
    path = tmp_path / "docs.jsonl"
    path.write_text("\n".join(json.dumps(r) for r in rows) + "\nnot json\n", encoding="utf-8")
    return path


def _committed(tmp_path):
    lines = []
    for f in sorted((tmp_path / "sink" / "commits").glob("*.jsonl")):
        lines.extend(json.loads(line) for line in f.read_text(encoding="utf-8").splitlines())
    return lines


def test_run_commits_documents(tmp_path, config_file, input_file, capsys):
    assert main(["run", "--config", str(config_file), "--input", str(input_file), "--no-progress"]) == 0
    summary = json.loads(capsys.readouterr().out)
    assert summary["totals"] == {"new": 1, "rejected": 1, "deleted": 1}

    ops = [(row["op"], row["reference"]) for row in _committed(tmp_path)]
    assert ops == [("upsert", "https://x/a"), ("delete", "https://x/c")]


def test_queue_status_json(config_file, capsys):
    assert main(["queue-status", "--config", str(config_file), "--json"]) == 0
    status = json.loads(capsys.readouterr().out)
    assert status["batches"] == []
    assert status["pending_requests"] == 0


def test_clean_requires_yes(config_file):
    assert main(["clean", "--config", str(config_file)]) == 1
    assert main(["clean", "--config", str(config_file), "--yes"]) == 0


def test_config_error_exit_code(tmp_path, capsys):
    path = tmp_path / "bad.yaml"
    path.write_text("queue:\n  batch_size: 0\n", encoding="utf-8")
    assert main(["queue-status", "--config", str(path)]) == 1
    assert "batch_size" in capsys.readouterr().err


def test_jsonl_source(input_file):
    records = list(iter_records(str(input_file)))
    assert [r.reference for r in records] == ["https://x/a", "https://x/b", "https://x/c"]
    assert records[1].content == b"\x89PNG"
    assert records[2].deleted


def test_record_requires_reference():
    with pytest.raises(ValueError):
        record_from_dict({"content": "x"})


def test_non_mapping_metadata_line_skipped(tmp_path):
    path = tmp_path / "mixed.jsonl"
    rows = [
        {"reference": "https://x/list", "metadata": ["text/html"]},
        {"reference": "https://x/str", "metadata": "text/html"},
        {"reference": "https://x/ok", "metadata": {"Content-Type": "text/html"}},
    ]
    path.write_text("\n".join(json.dumps(r) for r in rows) + "\n", encoding="utf-8")
    assert [r.reference for r in iter_records(str(path))] == ["https://x/ok"]
    with pytest.raises(ValueError):
        record_from_dict(rows[0])
