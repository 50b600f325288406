"""
Tests for logpipe Output Formatters
"""

import io

import orjson
import pytest

from logpipe.errors import RenderError
from logpipe.formatters import (
    JsonFormatter,
    LogfmtFormatter,
    Palette,
    TextFormatter,
    create_formatter,
    format_timestamp,
    quote_logfmt_value,
)
from logpipe.log_parser import JsonlParser
from logpipe.record import Record, kind_of


def _render(formatter, record):
    sink = io.StringIO()
    formatter.format(sink, Record(record))
    return sink.getvalue()


class BrokenSink:
    """Text sink whose writes always fail"""

    def write(self, text):
        raise OSError("broken pipe")


# =============================================================================
# JsonFormatter Tests
# =============================================================================


class TestJsonFormatter:
    """Tests for JSON output"""

    def test_compact_single_line(self):
        out = _render(JsonFormatter(), {"level": "info", "n": 1.0})

        assert out.endswith("\n")
        assert out.count("\n") == 1
        assert orjson.loads(out) == {"level": "info", "n": 1.0}

    def test_pretty_indented(self):
        out = _render(JsonFormatter(pretty=True), {"a": "1", "b": "2"})

        assert out == '{\n  "a": "1",\n  "b": "2"\n}\n'

    def test_keys_sorted(self):
        out = _render(JsonFormatter(), {"b": "2", "a": "1"})
        assert out == '{"a":"1","b":"2"}\n'

    def test_empty_record(self):
        assert _render(JsonFormatter(), {}) == "{}\n"

    def test_integral_numbers_written_without_fraction(self):
        assert _render(JsonFormatter(), {"n": 3}) == '{"n":3}\n'

    def test_parsed_integers_keep_integer_form(self):
        record = JsonlParser().parse_line('{"count": 10, "meta": {"n": 1}, "ratio": 0.5}').record
        assert _render(JsonFormatter(), record) == '{"count":10,"meta":{"n":1},"ratio":0.5}\n'

    def test_round_trip_preserves_fields_and_kinds(self):
        line = '{"s": "x", "n": 3, "f": 1.25, "t": true, "z": null, "o": {"k": [1, "a"]}, "l": []}'
        original = JsonlParser().parse_line(line).record

        rendered = _render(JsonFormatter(), original)
        reparsed = JsonlParser().parse_line(rendered.strip()).record

        assert reparsed == original
        assert {k: kind_of(v) for k, v in reparsed.items()} == {
            k: kind_of(v) for k, v in original.items()
        }

    def test_write_failure_raises_render_error(self):
        with pytest.raises(RenderError, match="broken pipe"):
            JsonFormatter().format(BrokenSink(), Record({"a": "1"}))


# =============================================================================
# TextFormatter Tests
# =============================================================================


class TestTextFormatter:
    """Tests for human-readable output"""

    def test_error_level_bracketed(self):
        out = _render(TextFormatter(), {"level": "error", "msg": "x"})
        assert "[ERROR]" in out

    @pytest.mark.parametrize(
        "level,expected",
        [("info", "[INFO ]"), ("warn", "[WARN ]"), ("debug", "[DEBUG]"), ("INFO", "[INFO ]")],
    )
    def test_level_padding_without_color(self, level, expected):
        assert expected in _render(TextFormatter(), {"level": level})

    def test_basic_layout(self):
        out = _render(
            TextFormatter(),
            {"time": "2024-01-15T09:30:00Z", "level": "info", "msg": "started", "port": 8080.0},
        )
        assert out == "09:30:00 [INFO ] started port=8080\n"

    def test_missing_slots(self):
        out = _render(TextFormatter(), {})
        assert out == " " * 15 + " [     ] \n"

    @pytest.mark.parametrize("key", ["lvl", "severity"])
    def test_alternative_level_keys(self, key):
        assert "[WARN ]" in _render(TextFormatter(), {key: "warn"})

    @pytest.mark.parametrize("key", ["message", "msg", "text"])
    def test_alternative_message_keys(self, key):
        assert "hello there" in _render(TextFormatter(), {key: "hello there"})

    @pytest.mark.parametrize("key", ["time", "ts", "timestamp"])
    def test_alternative_time_keys(self, key):
        assert _render(TextFormatter(), {key: 1704067200.0}).startswith("00:00:00 ")

    def test_canonical_fields_not_in_extras(self):
        out = _render(TextFormatter(), {"time": "x", "ts": "y", "level": "info", "lvl": "z", "msg": "m", "text": "t"})
        assert "ts=" not in out
        assert "lvl=" not in out
        assert "text=" not in out

    def test_nested_numbers_rendered_like_top_level(self):
        out = _render(TextFormatter(), {"msg": "m", "count": 10.0, "meta": {"n": 1.0}})
        assert out.endswith(' count=10 meta={"n":1}\n')

    def test_extras_sorted(self):
        out = _render(TextFormatter(), {"zeta": "1", "alpha": "2", "mid": "3"})
        assert out.endswith(" alpha=2 mid=3 zeta=1\n")

    def test_explicit_fields_in_order_absent_skipped(self):
        formatter = TextFormatter(fields=["user", "missing", "id"])
        out = _render(formatter, {"id": "7", "user": "bob", "other": "x"})

        assert out.endswith(" user=bob id=7\n")
        assert "other=" not in out

    def test_does_not_mutate_record(self):
        record = Record({"level": "info", "a": "1"})
        TextFormatter(palette=Palette.ansi()).format(io.StringIO(), record)
        assert record == {"level": "info", "a": "1"}

    def test_color_contains_ansi(self):
        out = _render(TextFormatter(palette=Palette.ansi()), {"level": "info", "msg": "x"})
        assert "\x1b[" in out

    @pytest.mark.parametrize(
        "level,code,label",
        [
            ("error", "31", "[ERROR]"),
            ("err", "31", "[ERROR]"),
            ("FATAL", "31", "[ERROR]"),
            ("crit", "31", "[ERROR]"),
            ("warn", "33", "[WARN ]"),
            ("warning", "33", "[WARN ]"),
            ("info", "32", "[INFO ]"),
            ("information", "32", "[INFO ]"),
            ("trace", "90", "[TRACE]"),
        ],
    )
    def test_color_by_level(self, level, code, label):
        level_str = TextFormatter(palette=Palette.ansi()).colorize_level(level)

        assert label in level_str
        assert code in level_str.split("m", 1)[0]

    def test_color_extras_gray(self):
        out = _render(TextFormatter(palette=Palette.ansi()), {"msg": "x", "k": "v"})
        assert "\x1b[90mk=v\x1b[0m" in out

    def test_no_ansi_without_palette(self):
        out = _render(TextFormatter(), {"level": "error", "msg": "x", "k": "v"})
        assert "\x1b[" not in out


class TestFormatTimestamp:
    """Tests for timestamp normalization"""

    def test_empty_is_blank_column(self):
        assert format_timestamp("") == " " * 15

    def test_empty_with_color_is_gray(self):
        assert "\x1b[90m" in format_timestamp("", Palette.ansi())

    def test_rfc3339(self):
        assert format_timestamp("2024-01-15T09:30:00Z") == "09:30:00"

    def test_rfc3339_with_offset(self):
        assert format_timestamp("2024-06-01T18:00:00+00:00") == "18:00:00"

    def test_unix_seconds(self):
        assert format_timestamp("1704067200") == "00:00:00"

    def test_unix_float(self):
        assert format_timestamp("1704067200.5") == "00:00:00"

    def test_small_number_passed_through(self):
        assert format_timestamp("123") == "123"

    def test_exactly_fifteen_chars(self):
        assert format_timestamp("abcdefghijklmno") == "abcdefghijklmno"

    def test_long_value_truncated(self):
        assert format_timestamp("Jan 15 2024 09:30:00 PST") == "Jan 15 2024 09:"


# =============================================================================
# LogfmtFormatter Tests
# =============================================================================


class TestLogfmtFormatter:
    """Tests for logfmt output"""

    def test_sorted_pairs(self):
        out = _render(LogfmtFormatter(), {"level": "info", "app": "api", "code": 200.0})
        assert out == "app=api code=200 level=info\n"

    def test_quotes_values_with_space(self):
        assert _render(LogfmtFormatter(), {"msg": "hello world"}) == 'msg="hello world"\n'

    def test_quotes_values_with_tab(self):
        assert _render(LogfmtFormatter(), {"msg": "a\tb"}) == 'msg="a\tb"\n'

    def test_escapes_inner_quotes(self):
        assert _render(LogfmtFormatter(), {"msg": 'say "hi"'}) == 'msg="say \\"hi\\""\n'

    def test_booleans_and_null(self):
        assert _render(LogfmtFormatter(), {"ok": True, "v": None}) == "ok=true v=null\n"

    def test_empty_record_is_blank_line(self):
        assert _render(LogfmtFormatter(), {}) == "\n"

    def test_multiple_records_each_on_own_line(self):
        sink = io.StringIO()
        formatter = LogfmtFormatter()
        formatter.format(sink, Record({"a": "1"}))
        formatter.format(sink, Record({"b": "2"}))
        assert sink.getvalue() == "a=1\nb=2\n"

    def test_quote_plain_value_untouched(self):
        assert quote_logfmt_value("plain") == "plain"

    def test_write_failure_raises_render_error(self):
        with pytest.raises(RenderError):
            LogfmtFormatter().format(BrokenSink(), Record({"a": "1"}))


class TestCreateFormatter:
    """Tests for the formatter factory"""

    def test_text_with_color(self):
        formatter = create_formatter("text", color=True, fields=["a"])
        assert isinstance(formatter, TextFormatter)
        assert formatter.palette is not None
        assert formatter.fields == ("a",)

    def test_json_pretty(self):
        formatter = create_formatter("json", pretty=True)
        assert isinstance(formatter, JsonFormatter)
        assert formatter.pretty

    def test_logfmt(self):
        assert isinstance(create_formatter("logfmt"), LogfmtFormatter)

    def test_unknown(self):
        with pytest.raises(ValueError):
            create_formatter("xml")
