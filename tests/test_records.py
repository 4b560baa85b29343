"""Tests for record-set parsing, serialization and invariants."""

from __future__ import annotations

import pytest

from issuesync.errors import RecordParseError
from issuesync.records import (
    content_hash,
    count_records,
    parse_record_set,
    serialize_record,
    serialize_record_set,
    titles_by_id,
    validate_record,
    validate_record_set,
)
from issuesync.testing import make_record


def test_parse_skips_blank_lines_and_keeps_last_duplicate():
    data = b'{"id":"a","title":"one"}\n\n   \n{"id":"a","title":"two"}\n{"id":"b"}\n'
    records = parse_record_set(data)
    assert sorted(records) == ["a", "b"]
    assert records["a"]["title"] == "two"


@pytest.mark.parametrize(
    "data,message",
    [
        (b"[1, 2]\n", "not a JSON object"),
        (b'{"title":"x"}\n', "no id"),
        (b'{"id":""}\n', "no id"),
        (b"{broken\n", "invalid JSON"),
    ],
)
def test_parse_rejects_bad_lines(data, message):
    with pytest.raises(RecordParseError) as excinfo:
        parse_record_set(data, source="remote")
    assert message in str(excinfo.value)
    assert str(excinfo.value).startswith("remote:1: ")


def test_parse_rejects_invalid_utf8():
    with pytest.raises(RecordParseError):
        parse_record_set(b"\xff\xfe\n")


def test_serialize_uses_canonical_field_order():
    record = {"zeta": 1, "status": "open", "id": "a", "title": "T", "alpha": 2}
    assert serialize_record(record) == '{"id":"a","title":"T","status":"open","alpha":2,"zeta":1}'


def test_serialize_record_set_sorts_by_id():
    data = serialize_record_set([{"id": "b"}, {"id": "a"}])
    assert data == b'{"id":"a"}\n{"id":"b"}\n'
    assert serialize_record_set({}) == b""


def test_serialize_keeps_unicode():
    assert serialize_record({"id": "a", "title": "café"}) == '{"id":"a","title":"café"}'


def test_count_and_titles():
    data = b'{"id":"a","title":"A"}\n\nnot json\n{"id":"b"}\n'
    assert count_records(data) == 3
    assert titles_by_id(data) == {"a": "A", "b": ""}


class TestContentHash:
    def test_ignores_id_and_timestamps(self):
        a = make_record("a", title="same", updated_at="2026-01-01T00:00:00Z")
        b = make_record("b", title="same", updated_at="2026-05-05T00:00:00Z")
        assert content_hash(a) == content_hash(b)

    def test_label_order_does_not_matter(self):
        a = make_record("a", labels=["x", "y"])
        b = make_record("a", labels=["y", "x"])
        assert content_hash(a) == content_hash(b)

    def test_semantic_change_alters_hash(self):
        assert content_hash(make_record("a", title="one")) != content_hash(make_record("a", title="two"))


class TestValidation:
    def test_valid_records(self):
        assert validate_record(make_record("a")) == []
        assert validate_record(make_record("a", status="closed")) == []
        assert validate_record(make_record("a", status="tombstone")) == []

    def test_closed_without_closed_at(self):
        record = make_record("a")
        record["status"] = "closed"
        assert validate_record(record) == ["a: status is closed but closed_at is missing"]

    def test_open_with_closed_at(self):
        problems = validate_record(make_record("a", closed_at="2026-01-01T00:00:00Z"))
        assert problems == ["a: closed_at is set but status is 'open'"]

    def test_tombstone_without_deleted_at(self):
        record = make_record("a", status="tombstone")
        del record["deleted_at"]
        assert validate_record(record) == ["a: status is tombstone but deleted_at is missing"]

    def test_unknown_status(self):
        assert validate_record(make_record("a", status="wontfix")) == ["a: unknown status 'wontfix'"]

    def test_record_set_problems_sorted_by_id(self):
        records = {
            "b": make_record("b", status="wontfix"),
            "a": make_record("a", deleted_at="2026-01-01T00:00:00Z"),
        }
        problems = validate_record_set(records)
        assert problems[0].startswith("a: ")
        assert problems[1].startswith("b: ")

    def test_schema_rejects_wrong_types(self):
        record = make_record("a", title=3, labels=["ok", 7])
        problems = validate_record(record)
        assert "a: labels.1: 7 is not of type 'string'" in problems
        assert "a: title: 3 is not of type 'string', 'null'" in problems

    def test_unknown_fields_are_allowed(self):
        assert validate_record(make_record("a", custom={"x": 1})) == []
