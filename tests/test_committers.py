"""Tests for the committer SPI, reference committers and the registry."""

import base64
import json

import pytest

from crawl_relay.committer import get_committer, list_committers, register_committer
from crawl_relay.committer.base import Committer
from crawl_relay.committer.jsonl import JSONLCommitter
from crawl_relay.committer.memory import MemoryCommitter
from crawl_relay.committer.request import DeleteRequest, UpsertRequest
from crawl_relay.errors import CommitterError, ConfigurationError, InitializationError
from crawl_relay.utils.text_matcher import TextMatcher


def _read_lines(path):
    return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]


class TestMemoryCommitter:
    def test_records_requests(self, committer):
        committer.upsert(UpsertRequest("a", {"t": ["1"]}, b"body"))
        committer.delete(DeleteRequest("b"))
        assert committer.references() == ["a", "b"]
        assert committer.upserts[0].content == b"body"
        assert committer.upsert_count == 1
        assert committer.delete_count == 1

    def test_ignore_content_and_field_filter(self):
        c = MemoryCommitter(ignore_content=True, field_matcher=TextMatcher.wildcard("x-*"))
        c.init()
        c.upsert(UpsertRequest("a", {"x-keep": ["1"], "drop": ["2"]}, b"body"))
        up, = c.upserts
        assert up.content is None
        assert up.metadata == {"x-keep": ["1"]}

    def test_remove_request_and_clean(self, committer):
        committer.upsert(UpsertRequest("a"))
        req = committer.requests[0]
        assert committer.remove_request(req)
        assert not committer.remove_request(req)
        committer.upsert(UpsertRequest("b"))
        committer.clean()
        assert committer.request_count == 0
        assert committer.upsert_count == 0

    def test_use_before_init(self):
        with pytest.raises(CommitterError):
            MemoryCommitter().upsert(UpsertRequest("a"))


class TestCommitterLifecycle:
    def test_init_failure_wrapped(self):
        class Unreachable(MemoryCommitter):
            def _do_init(self):
                raise ConnectionRefusedError("no route")

        with pytest.raises(InitializationError):
            Unreachable().init()

    def test_request_failure_wrapped(self):
        class Rejecting(MemoryCommitter):
            def _do_upsert(self, request):
                raise ValueError("schema mismatch")

        c = Rejecting()
        c.init()
        with pytest.raises(CommitterError, match="upsert failed for a"):
            c.commit_batch([UpsertRequest("a")])

    def test_close_is_idempotent(self, committer):
        committer.close()
        committer.close()
        assert not committer.initialized


class TestJSONLCommitter:
    def test_writes_rolling_files(self, tmp_path):
        c = JSONLCommitter(str(tmp_path), max_lines_per_file=2)
        c.init()
        c.commit_batch([
            UpsertRequest("a", {"t": ["1"]}, b"hello"),
            UpsertRequest("b", {}, b"\xff\xfe"),
            DeleteRequest("c"),
        ])
        c.close()

        first = _read_lines(tmp_path / "commits" / "commits_000000.jsonl")
        second = _read_lines(tmp_path / "commits" / "commits_000001.jsonl")
        assert first[0] == {"op": "upsert", "reference": "a", "metadata": {"t": ["1"]}, "content": "hello"}
        assert base64.b64decode(first[1]["content_b64"]) == b"\xff\xfe"
        assert second == [{"op": "delete", "reference": "c", "metadata": {}}]

    def test_new_session_starts_new_file(self, tmp_path):
        for ref in ("a", "b"):
            c = JSONLCommitter(str(tmp_path))
            c.init()
            c.delete(DeleteRequest(ref))
            c.close()
        assert sorted(p.name for p in (tmp_path / "commits").iterdir()) == ["commits_000000.jsonl", "commits_000001.jsonl"]

    def test_without_content(self, tmp_path):
        c = JSONLCommitter(str(tmp_path), include_content=False)
        c.init()
        c.upsert(UpsertRequest("a", {}, b"hello"))
        c.close()
        row, = _read_lines(tmp_path / "commits" / "commits_000000.jsonl")
        assert "content" not in row

    def test_clean(self, tmp_path):
        c = JSONLCommitter(str(tmp_path))
        c.init()
        c.delete(DeleteRequest("a"))
        c.clean()
        assert list((tmp_path / "commits").iterdir()) == []


class TestRegistry:
    def test_builtin_kinds(self):
        assert {"memory", "jsonl"} <= set(list_committers())

    def test_memory_options(self):
        c = get_committer("memory", {"ignore_content": True, "fields": "title"})
        assert isinstance(c, MemoryCommitter)
        assert c.ignore_content

    def test_jsonl_uses_out_dir(self, tmp_path):
        c = get_committer("jsonl", {"max_lines_per_file": 5}, out_dir=str(tmp_path))
        assert isinstance(c, JSONLCommitter)
        assert c.out_dir == str(tmp_path)

    def test_unknown_kind(self):
        with pytest.raises(ConfigurationError):
            get_committer("solr")

    def test_bad_option(self):
        with pytest.raises(ConfigurationError):
            get_committer("memory", {"batch": 3})

    def test_register_custom(self):
        class Null(Committer):
            name = "null"

            def _do_upsert(self, request):
                pass

            def _do_delete(self, request):
                pass

            def _do_clean(self):
                pass

        register_committer("null-test", lambda out_dir=None, **_: Null())
        assert isinstance(get_committer("null-test"), Null)
        with pytest.raises(ValueError):
            register_committer("null-test", lambda **_: Null())
