"""
Tests for logpipe Record model and timestamp interpretation
"""

from datetime import datetime, timedelta, timezone

import pytest

from logpipe.record import (
    SOURCE_FIELD,
    Record,
    ValueKind,
    canonical_string,
    interpret_timestamp,
    kind_of,
)


class TestValueKind:
    """Tests for value classification"""

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("text", ValueKind.STRING),
            (1.5, ValueKind.NUMBER),
            (3, ValueKind.NUMBER),
            (True, ValueKind.BOOLEAN),
            (None, ValueKind.NULL),
            ({"a": 1}, ValueKind.OBJECT),
            (Record({"a": 1}), ValueKind.OBJECT),
            ([1, 2], ValueKind.ARRAY),
        ],
    )
    def test_kind_of(self, value, expected):
        assert kind_of(value) is expected

    def test_unsupported_type(self):
        with pytest.raises(TypeError):
            kind_of(object())


class TestCanonicalString:
    """Tests for canonical string rendering"""

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("error", "error"),
            (10.0, "10"),
            (-3.0, "-3"),
            (1.5, "1.5"),
            (1e21, "1e+21"),
            (True, "true"),
            (False, "false"),
            (None, "null"),
            ({"b": 2.0, "a": "x"}, '{"a":"x","b":2}'),
            (["a", None], '["a",null]'),
        ],
    )
    def test_values(self, value, expected):
        assert canonical_string(value) == expected

    def test_nested_numbers_match_top_level_form(self):
        assert canonical_string({"n": 1.0}) == '{"n":1}'
        assert canonical_string([10.0, 1.5, {"m": -3.0}]) == '[10,1.5,{"m":-3}]'
        assert canonical_string({"n": 10.0}) == canonical_string({"n": 10})


class TestRecord:
    """Tests for the immutable Record mapping"""

    def test_mapping_behaviour(self):
        record = Record({"level": "info", "msg": "hi"})

        assert record["level"] == "info"
        assert len(record) == 2
        assert set(record) == {"level", "msg"}
        assert record == {"level": "info", "msg": "hi"}

    def test_is_read_only(self):
        record = Record({"a": "1"})
        with pytest.raises(TypeError):
            record["a"] = "2"

    def test_with_source_returns_tagged_copy(self):
        record = Record({"a": "1"})
        tagged = record.with_source("app.log")

        assert tagged[SOURCE_FIELD] == "app.log"
        assert SOURCE_FIELD not in record

    def test_extract_string_uses_first_present_key(self):
        record = Record({"ts": 5.0, "timestamp": "later"})
        assert record.extract_string(("time", "ts", "timestamp")) == "5"

    def test_extract_string_missing(self):
        assert Record().extract_string(("time", "ts")) == ""

    def test_to_dict_flattens_nested_records(self):
        record = Record({"inner": Record({"x": 1.0})})
        assert record.to_dict() == {"inner": {"x": 1.0}}
        assert type(record.to_dict()["inner"]) is dict

    def test_to_dict_integral_numbers_become_ints(self):
        plain = Record({"n": 3.0, "f": 1.5, "big": 1e21, "l": [2.0]}).to_dict()

        assert type(plain["n"]) is int
        assert type(plain["f"]) is float
        assert type(plain["big"]) is float
        assert type(plain["l"][0]) is int


class TestInterpretTimestamp:
    """Tests for timestamp interpretation"""

    def test_unix_seconds(self):
        assert interpret_timestamp("1704067200") == datetime(2024, 1, 1, tzinfo=timezone.utc)

    def test_unix_float_truncated(self):
        assert interpret_timestamp("1704067200.9") == datetime(2024, 1, 1, tzinfo=timezone.utc)

    def test_small_number_not_epoch(self):
        assert interpret_timestamp("123") is None

    def test_rfc3339_utc(self):
        parsed = interpret_timestamp("2024-01-15T09:30:00Z")
        assert parsed == datetime(2024, 1, 15, 9, 30, tzinfo=timezone.utc)

    def test_rfc3339_offset_kept(self):
        parsed = interpret_timestamp("2024-06-01T18:00:00+02:00")
        assert parsed.utcoffset() == timedelta(hours=2)
        assert parsed.hour == 18

    def test_rfc3339_nanoseconds(self):
        parsed = interpret_timestamp("2024-01-15T09:30:00.123456789Z")
        assert parsed.microsecond == 123456

    def test_missing_offset_rejected(self):
        assert interpret_timestamp("2024-01-15T09:30:00") is None

    def test_garbage(self):
        assert interpret_timestamp("yesterday") is None
        assert interpret_timestamp("") is None
