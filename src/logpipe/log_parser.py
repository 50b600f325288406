"""
logpipe Log Parser Module

Implements parsing for structured log streams.
Supports JSON Lines (JSONL) and key-value (logfmt) formats, plus format
sniffing that peeks at the first content line without losing any bytes.

Each parser yields one ParseOutcome per non-blank line: either a Record or an
error. Records and errors travel in a single ordered sequence, so a burst of
bad lines can never stall delivery of the good lines that follow them.
"""

from __future__ import annotations

import io
import logging
import re
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, BinaryIO, Callable

import orjson

from logpipe.errors import KeyValueSyntaxError, SourceError
from logpipe.record import Record, kind_of

logger = logging.getLogger(__name__)


# =============================================================================
# Log Format Detection
# =============================================================================


class LogFormat(Enum):
    """Log format types supported by logpipe"""
    JSONL = "jsonl"          # JSON Lines format: {"time": "...", "level": "info", ...}
    KEYVALUE = "keyvalue"    # Key-value format: time=... level=info msg="..."
    AUTO = "auto"            # Sniff the first content line

    @classmethod
    def from_name(cls, name: str) -> LogFormat:
        """
        Resolve a user-facing format name.

        Accepts the CLI spellings ("json", "logfmt") as well as the
        enum values ("jsonl", "keyvalue", "auto").

        Raises:
            ValueError: If the name is unknown
        """
        aliases = {
            "json": cls.JSONL,
            "logfmt": cls.KEYVALUE,
        }
        normalized = name.strip().lower()
        if normalized in aliases:
            return aliases[normalized]
        return cls(normalized)


# =============================================================================
# Parse Outcome
# =============================================================================


@dataclass(frozen=True)
class ParseOutcome:
    """
    Result of parsing one non-blank line.

    Attributes:
        line_number: 1-based line number in the source stream
        record: The parsed record (None if parsing failed)
        error: Cause of the failure (None if parsing succeeded)
    """
    line_number: int
    record: Record | None = None
    error: str | None = None

    @property
    def is_valid(self) -> bool:
        """Check if the line was parsed successfully"""
        return self.error is None

    @property
    def message(self) -> str:
        """Error message in the form 'line N: <cause>'"""
        return f"line {self.line_number}: {self.error}"


@dataclass
class ParseStats:
    """Statistics for log parsing operations"""
    total_lines: int = 0
    successful_parses: int = 0
    failed_parses: int = 0
    empty_lines: int = 0
    format_counts: dict[str, int] = field(default_factory=dict)

    def success_rate(self) -> float:
        """Calculate success rate as percentage of non-blank lines"""
        parsed = self.successful_parses + self.failed_parses
        if parsed == 0:
            return 100.0
        return (self.successful_parses / parsed) * 100

    def record(self, outcome: ParseOutcome, format: LogFormat) -> None:
        """Account for one parsed line"""
        if outcome.is_valid:
            self.successful_parses += 1
            self.format_counts[format.value] = self.format_counts.get(format.value, 0) + 1
        else:
            self.failed_parses += 1


def _decode_line(raw: bytes | str) -> str:
    if isinstance(raw, bytes):
        return raw.decode("utf-8", errors="replace")
    return raw


# =============================================================================
# Base Parser
# =============================================================================


class BaseParser:
    """
    Shared streaming loop for line-oriented parsers.

    Subclasses implement parse_line(); parse() handles line numbering,
    blank-line skipping and read failures.
    """

    format: LogFormat

    def parse_line(self, line: str, line_number: int = 0) -> ParseOutcome:
        raise NotImplementedError

    def parse(
        self,
        stream: Iterable[bytes] | Iterable[str],
        stats: ParseStats | None = None,
    ) -> Iterator[ParseOutcome]:
        """
        Parse a stream lazily.

        Args:
            stream: Binary or text stream (any iterable of lines)
            stats: Optional statistics to update while parsing

        Yields:
            One ParseOutcome per non-blank line, in line order
        """
        line_number = 0
        lines = iter(stream)

        while True:
            try:
                raw = next(lines)
            except StopIteration:
                return
            except OSError as e:
                yield ParseOutcome(line_number=line_number + 1, error=f"read error: {e}")
                return

            line_number += 1
            if stats is not None:
                stats.total_lines += 1

            line = _decode_line(raw).strip()
            if not line:
                if stats is not None:
                    stats.empty_lines += 1
                continue

            outcome = self.parse_line(line, line_number)
            if stats is not None:
                stats.record(outcome, self.format)
            yield outcome


# =============================================================================
# JSON Lines Parser
# =============================================================================


def _coerce_numbers(value: Any) -> Any:
    """Convert every integer in a decoded JSON value to float"""
    if isinstance(value, bool) or value is None:
        return value
    if isinstance(value, int):
        return float(value)
    if isinstance(value, dict):
        return {key: _coerce_numbers(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_coerce_numbers(item) for item in value]
    return value


class JsonlParser(BaseParser):
    """
    Parser for JSON Lines (JSONL) format.

    Each line is a complete JSON object:
    {"time": "2026-02-07T10:30:00Z", "level": "info", "msg": "Worker started"}

    Numbers decode to float; nested objects and arrays are kept as-is.
    """

    format = LogFormat.JSONL

    def parse_line(self, line: str, line_number: int = 0) -> ParseOutcome:
        """
        Parse a single JSONL line.

        Args:
            line: Raw log line
            line_number: Line number for error reporting

        Returns:
            ParseOutcome carrying the record or the decode error
        """
        try:
            data = orjson.loads(line)
        except orjson.JSONDecodeError as e:
            return ParseOutcome(line_number=line_number, error=f"invalid JSON: {e}")

        if not isinstance(data, dict):
            return ParseOutcome(
                line_number=line_number,
                error=f"expected a JSON object, got {kind_of(data).value}",
            )

        return ParseOutcome(line_number=line_number, record=Record(_coerce_numbers(data)))


# =============================================================================
# Key-Value Parser
# =============================================================================


_WHITESPACE = re.compile(r"\s")


def parse_key_values(line: str) -> dict[str, Any]:
    """
    Tokenize one key=value line.

    Format:
    level=info msg="Worker started" task_id=bd-abc

    Rules:
    - Text with no '=' left in it becomes a single flag field set to True
      and ends the scan ("verbose debug" -> {"verbose debug": True})
    - A value starting with '"' runs to the next quote not preceded by a
      backslash; the text between the quotes is stored verbatim
    - Any other value runs to the next whitespace character
    - "key=" at end of line yields an empty string

    Raises:
        KeyValueSyntaxError: If a quoted value is never closed
    """
    fields: dict[str, Any] = {}
    remaining = line

    while remaining:
        remaining = remaining.strip()
        if not remaining:
            break

        eq_idx = remaining.find("=")
        if eq_idx == -1:
            fields[remaining] = True
            break

        key = remaining[:eq_idx]
        remaining = remaining[eq_idx + 1:]

        if remaining.startswith('"'):
            # NOTE: only the single preceding character is checked, so a
            # value ending in an escaped backslash ("a\\") is misread as
            # unterminated. Kept as-is for compatibility with existing logs.
            end_idx = 1
            while end_idx < len(remaining):
                if remaining[end_idx] == '"' and remaining[end_idx - 1] != "\\":
                    break
                end_idx += 1
            if end_idx >= len(remaining):
                raise KeyValueSyntaxError("unterminated string value")
            value = remaining[1:end_idx]
            remaining = remaining[end_idx + 1:]
        else:
            match = _WHITESPACE.search(remaining)
            if match is None:
                value = remaining
                remaining = ""
            else:
                value = remaining[:match.start()]
                remaining = remaining[match.end():]

        fields[key] = value

    return fields


class KeyValueParser(BaseParser):
    """
    Parser for key-value (logfmt) format.

    Format:
    time=2026-02-07T10:30:00Z level=info worker=alpha msg="Worker started"
    verbose
    """

    format = LogFormat.KEYVALUE

    def parse_line(self, line: str, line_number: int = 0) -> ParseOutcome:
        """
        Parse a single key-value line.

        Args:
            line: Raw log line
            line_number: Line number for error reporting

        Returns:
            ParseOutcome carrying the record or the syntax error
        """
        try:
            fields = parse_key_values(line)
        except KeyValueSyntaxError as e:
            return ParseOutcome(line_number=line_number, error=str(e))

        return ParseOutcome(line_number=line_number, record=Record(fields))


def parser_for(format: LogFormat) -> BaseParser:
    """
    Create the parser for a concrete format.

    Raises:
        ValueError: If format is AUTO (sniff the stream first)
    """
    if format == LogFormat.JSONL:
        return JsonlParser()
    if format == LogFormat.KEYVALUE:
        return KeyValueParser()
    raise ValueError(f"No parser for format: {format.value}")


# =============================================================================
# Format Sniffing
# =============================================================================


class ReplayStream(io.RawIOBase):
    """
    Raw stream that replays already-consumed bytes before the rest of the
    underlying stream.

    Closing a ReplayStream does not close the underlying stream; its owner
    stays responsible for that.
    """

    def __init__(self, prefix: bytes, stream: BinaryIO):
        super().__init__()
        self._prefix = prefix
        self._stream = stream

    def readable(self) -> bool:
        return True

    def readinto(self, buffer: Any) -> int:
        if self._prefix:
            count = min(len(buffer), len(self._prefix))
            buffer[:count] = self._prefix[:count]
            self._prefix = self._prefix[count:]
            return count

        # Prefer read1 so that piped input is delivered as it arrives
        read = getattr(self._stream, "read1", self._stream.read)
        data = read(len(buffer))
        if not data:
            return 0
        count = len(data)
        buffer[:count] = data
        return count


def sniff_format(stream: BinaryIO) -> tuple[LogFormat, io.BufferedReader]:
    """
    Detect the log format from the first non-blank line of a binary stream.

    A line starting with '{' selects JSONL, anything else key-value. An empty
    or all-blank stream defaults to JSONL.

    Args:
        stream: Binary stream positioned at the start of the input

    Returns:
        (detected format, stream that replays every byte of the input)

    Raises:
        SourceError: If reading the stream fails
    """
    peeked: list[bytes] = []
    detected = LogFormat.JSONL

    try:
        while True:
            line = stream.readline()
            if not line:
                break
            peeked.append(line)

            trimmed = line.strip()
            if trimmed:
                detected = LogFormat.JSONL if trimmed.startswith(b"{") else LogFormat.KEYVALUE
                break
    except OSError as e:
        raise SourceError(f"auto-detecting input format: {e}")

    logger.debug("Sniffed format %s after %d line(s)", detected.value, len(peeked))
    return detected, io.BufferedReader(ReplayStream(b"".join(peeked), stream))


# =============================================================================
# Universal Log Parser
# =============================================================================


class LogParser:
    """
    Universal log parser with optional format sniffing.

    Usage:
        parser = LogParser(format=LogFormat.AUTO, on_malformed=report)
        for record in parser.records(stream):
            ...
    """

    def __init__(
        self,
        format: LogFormat = LogFormat.AUTO,
        on_malformed: Callable[[ParseOutcome], None] | None = None,
    ):
        """
        Initialize the log parser.

        Args:
            format: Log format to use (AUTO sniffs the stream)
            on_malformed: Optional callback for lines that fail to parse
        """
        self.format = format
        self.on_malformed = on_malformed
        self.detected_format: LogFormat | None = None

        # Statistics
        self.stats = ParseStats()

    def parse(self, stream: BinaryIO) -> Iterator[ParseOutcome]:
        """
        Parse a stream, sniffing its format first when configured as AUTO.

        Yields:
            ParseOutcome objects in line order
        """
        format_to_use = self.format
        if format_to_use == LogFormat.AUTO:
            format_to_use, stream = sniff_format(stream)
        self.detected_format = format_to_use

        for outcome in parser_for(format_to_use).parse(stream, stats=self.stats):
            if not outcome.is_valid and self.on_malformed:
                self.on_malformed(outcome)
            yield outcome

    def records(self, stream: BinaryIO) -> Iterator[Record]:
        """Yield only successfully parsed records"""
        for outcome in self.parse(stream):
            if outcome.record is not None:
                yield outcome.record


# =============================================================================
# Convenience Functions
# =============================================================================


def parse_log_line(line: str, format: LogFormat = LogFormat.JSONL) -> ParseOutcome:
    """
    Convenience function to parse a single log line.

    Args:
        line: Raw log line
        format: JSONL or KEYVALUE

    Returns:
        ParseOutcome for the line (line number 1)
    """
    return parser_for(format).parse_line(line.strip(), 1)
