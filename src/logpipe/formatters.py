"""
logpipe Output Formatters

Renders Records to a text sink in one of three forms:
- json:   one JSON object per line (compact or indented)
- text:   "<time> [LEVEL] <message> key=value ..." for humans
- logfmt: sorted key=value pairs

Terminal colors are carried by an explicit Palette passed to the text
formatter; there is no process-wide color state.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, TextIO

import orjson
from rich.color import ColorSystem
from rich.style import Style

from logpipe.errors import RenderError
from logpipe.record import (
    CANONICAL_KEYS,
    LEVEL_KEYS,
    MESSAGE_KEYS,
    TIMESTAMP_KEYS,
    Record,
    canonical_string,
    interpret_timestamp,
    to_plain,
)


# Width of the timestamp column when the value is passed through raw
TIMESTAMP_WIDTH = 15


# =============================================================================
# Color Palette
# =============================================================================


@dataclass(frozen=True)
class Palette:
    """Styles used by the text formatter when color output is enabled"""
    error: Style = field(default_factory=lambda: Style(color="red", bold=True))
    warning: Style = field(default_factory=lambda: Style(color="yellow", bold=True))
    info: Style = field(default_factory=lambda: Style(color="green", bold=True))
    other: Style = field(default_factory=lambda: Style(color="bright_black"))
    extras: Style = field(default_factory=lambda: Style(color="bright_black"))
    color_system: ColorSystem = ColorSystem.STANDARD

    @classmethod
    def ansi(cls) -> Palette:
        """Default 16-color ANSI palette"""
        return cls()

    def paint(self, style: Style, text: str) -> str:
        """Wrap text in the ANSI codes for style"""
        return style.render(text, color_system=self.color_system)


# =============================================================================
# Formatter Base
# =============================================================================


class Formatter:
    """Base class for record renderers"""

    name = ""

    def render(self, record: Mapping[str, Any]) -> str:
        """Return the full text for one record, including the line terminator"""
        raise NotImplementedError

    def format(self, sink: TextIO, record: Mapping[str, Any]) -> None:
        """
        Write one record to the sink.

        Raises:
            RenderError: If the record cannot be serialized or written
        """
        try:
            sink.write(self.render(record))
        except (OSError, UnicodeError, TypeError, orjson.JSONEncodeError) as e:
            raise RenderError(f"failed to write {self.name} record: {e}") from e


# =============================================================================
# JSON Formatter
# =============================================================================


class JsonFormatter(Formatter):
    """Writes each record as a JSON object followed by a newline"""

    name = "json"

    def __init__(self, pretty: bool = False):
        self.pretty = pretty

    def render(self, record: Mapping[str, Any]) -> str:
        option = orjson.OPT_SORT_KEYS
        if self.pretty:
            option |= orjson.OPT_INDENT_2
        data = orjson.dumps(to_plain(record), option=option)
        return data.decode("utf-8") + "\n"


# =============================================================================
# Text Formatter
# =============================================================================


def format_timestamp(value: str, palette: Palette | None = None) -> str:
    """
    Normalize a raw timestamp for display.

    Accepts:
    - A Unix epoch (seconds, possibly fractional) greater than 1e9
    - An RFC 3339 string
    - Any other string, truncated to 15 characters

    Epoch values render as HH:MM:SS in UTC, RFC 3339 values as HH:MM:SS in
    their own offset. An empty value renders as a blank column.
    """
    if not value:
        blank = " " * TIMESTAMP_WIDTH
        return palette.paint(palette.other, blank) if palette else blank

    parsed = interpret_timestamp(value)
    if parsed is not None:
        return parsed.strftime("%H:%M:%S")

    return value[:TIMESTAMP_WIDTH]


class TextFormatter(Formatter):
    """
    Human-readable renderer:

        <timestamp> [LEVEL] <message> key=value ...

    Well-known field names (time/ts/timestamp, level/lvl/severity,
    message/msg/text) fill fixed slots; remaining fields are appended as
    key=value pairs, either the explicitly requested ones in order or all
    others sorted alphabetically.
    """

    name = "text"

    def __init__(self, palette: Palette | None = None, fields: Sequence[str] = ()):
        """
        Args:
            palette: Colors to use, or None for plain output
            fields: Restrict extras to these fields (empty: all non-canonical)
        """
        self.palette = palette
        self.fields = tuple(fields)

    def render(self, record: Mapping[str, Any]) -> str:
        if not isinstance(record, Record):
            record = Record(record)

        timestamp = record.extract_string(TIMESTAMP_KEYS)
        level = record.extract_string(LEVEL_KEYS)
        message = record.extract_string(MESSAGE_KEYS)

        time_str = format_timestamp(timestamp, self.palette)
        level_str = self.colorize_level(level)
        extras_str = self._render_extras(record)

        return f"{time_str} {level_str} {message}{extras_str}\n"

    def colorize_level(self, level: str) -> str:
        """
        Bracket the level, coloring it by severity when a palette is set.

        Without color the level is upper-cased and padded to five characters.
        """
        if self.palette is None:
            return f"[{level.upper():<5}]"

        palette = self.palette
        lowered = level.lower()
        if lowered in ("error", "err", "fatal", "crit"):
            return palette.paint(palette.error, "[ERROR]")
        if lowered in ("warn", "warning"):
            return palette.paint(palette.warning, "[WARN ]")
        if lowered in ("info", "information"):
            return palette.paint(palette.info, "[INFO ]")
        return palette.paint(palette.other, f"[{level.upper()}]")

    def _render_extras(self, record: Record) -> str:
        if self.fields:
            keys = [name for name in self.fields if name in record]
        else:
            keys = sorted(key for key in record if key not in CANONICAL_KEYS)

        if not keys:
            return ""

        extras = " ".join(f"{key}={canonical_string(record[key])}" for key in keys)
        if self.palette is not None:
            extras = self.palette.paint(self.palette.extras, extras)
        return " " + extras


# =============================================================================
# Logfmt Formatter
# =============================================================================


def quote_logfmt_value(value: str) -> str:
    """Quote a value containing space, tab or double quote"""
    if any(ch in value for ch in (" ", "\t", '"')):
        return '"' + value.replace('"', '\\"') + '"'
    return value


class LogfmtFormatter(Formatter):
    """
    Writes each record as space-separated key=value pairs sorted by key.
    An empty record renders as an empty line.
    """

    name = "logfmt"

    def render(self, record: Mapping[str, Any]) -> str:
        parts = [
            f"{key}={quote_logfmt_value(canonical_string(record[key]))}"
            for key in sorted(record)
        ]
        return " ".join(parts) + "\n"


# =============================================================================
# Factory
# =============================================================================


def create_formatter(
    name: str,
    color: bool = False,
    pretty: bool = False,
    fields: Sequence[str] = (),
) -> Formatter:
    """
    Build a formatter by output format name.

    Args:
        name: One of "text", "json", "logfmt"
        color: Enable ANSI colors (text only)
        pretty: Indent JSON output (json only)
        fields: Explicit extras for the text formatter

    Raises:
        ValueError: If the format name is unknown
    """
    if name == "json":
        return JsonFormatter(pretty=pretty)
    if name == "text":
        return TextFormatter(palette=Palette.ansi() if color else None, fields=fields)
    if name == "logfmt":
        return LogfmtFormatter()
    raise ValueError(f"Unsupported output format: {name}")
