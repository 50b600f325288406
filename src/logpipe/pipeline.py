"""
logpipe Pipeline Orchestration

Wires parser -> filter -> formatter for a single source, loads and
timestamp-sorts several sources in merge mode, and computes value
frequency tables in stats mode.

Merge mode is not streaming: every source is read fully into memory
before the first record is emitted.
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, BinaryIO, Callable, TextIO

from logpipe.errors import RenderError
from logpipe.formatters import Formatter
from logpipe.log_parser import BaseParser, ParseOutcome, ParseStats, parser_for, sniff_format
from logpipe.record import TIMESTAMP_KEYS, Record, canonical_string, interpret_timestamp

logger = logging.getLogger(__name__)

Predicate = Callable[[Mapping[str, Any]], bool]

# Sort key for records without a usable timestamp
EARLIEST = datetime.min.replace(tzinfo=timezone.utc)

# Stats label for records lacking the requested field
MISSING_VALUE = "(none)"


# =============================================================================
# Single-Source Pipeline
# =============================================================================


@dataclass
class PipelineResult:
    """Outcome of feeding records through filter and formatter"""
    matched: int = 0
    rendered: int = 0
    render_failures: int = 0

    @property
    def failed(self) -> bool:
        """True if any record failed to render"""
        return self.render_failures > 0


def report_parse_error(source: str) -> Callable[[ParseOutcome], None]:
    """Build an on_malformed callback that logs errors for one source"""

    def _report(outcome: ParseOutcome) -> None:
        logger.warning("Error parsing %s: %s", source, outcome.message)

    return _report


def run_pipeline(
    records: Iterable[Mapping[str, Any]],
    predicate: Predicate,
    formatter: Formatter,
    sink: TextIO,
) -> PipelineResult:
    """
    Render every record that satisfies the predicate.

    A record that fails to render is logged and counted; the remaining
    records are still processed.

    Returns:
        PipelineResult with match, render and failure counts
    """
    result = PipelineResult()

    for record in records:
        if not predicate(record):
            continue
        result.matched += 1

        try:
            formatter.format(sink, record)
        except RenderError as e:
            result.render_failures += 1
            logger.error("Error formatting log: %s", e)
            continue
        result.rendered += 1

    return result


# =============================================================================
# Merge Mode
# =============================================================================


@dataclass
class MergedRecord:
    """A record tagged with its source label and parsed timestamp"""
    record: Record
    source: str
    timestamp: datetime | None = None

    @property
    def sort_key(self) -> datetime:
        """Timestamp for ordering; missing timestamps sort first"""
        return self.timestamp if self.timestamp is not None else EARLIEST


def parse_timestamp(record: Mapping[str, Any]) -> datetime | None:
    """
    Extract a sortable timestamp from a record.

    Probes time, ts and timestamp in order and returns the first value that
    reads as a Unix epoch (> 1e9) or an RFC 3339 date-time.

    Returns:
        Timezone-aware datetime, or None if no usable timestamp is present
    """
    for key in TIMESTAMP_KEYS:
        if key not in record:
            continue
        parsed = interpret_timestamp(canonical_string(record[key]))
        if parsed is not None:
            return parsed
    return None


def load_and_tag(
    stream: BinaryIO,
    parser: BaseParser,
    source: str,
    stats: ParseStats | None = None,
) -> list[MergedRecord]:
    """
    Drain a parser, tagging every record with its source.

    Parse errors are logged with the source label and skipped.

    Args:
        stream: Input stream for the parser
        parser: Parser matching the stream's format
        source: Label stored in each record's _source field
        stats: Optional parse statistics to update

    Returns:
        MergedRecords in parse order
    """
    report = report_parse_error(source)
    loaded: list[MergedRecord] = []

    for outcome in parser.parse(stream, stats=stats):
        if outcome.record is None:
            report(outcome)
            continue
        tagged = outcome.record.with_source(source)
        loaded.append(MergedRecord(record=tagged, source=source, timestamp=parse_timestamp(tagged)))

    logger.debug("Loaded %d record(s) from %s", len(loaded), source)
    return loaded


def sort_merged(entries: Iterable[MergedRecord]) -> list[MergedRecord]:
    """Stable ascending sort by timestamp; ties keep their input order"""
    return sorted(entries, key=lambda entry: entry.sort_key)


def merge_sources(
    sources: Iterable[tuple[str, BinaryIO]],
    stats: ParseStats | None = None,
) -> list[MergedRecord]:
    """
    Load several sources and merge them into one timestamp-ordered list.

    Each source's format is sniffed independently. Sources are read one
    after another; records without a timestamp come first, and records with
    equal timestamps keep source-then-line order.

    Args:
        sources: (label, binary stream) pairs in command-line order
        stats: Optional parse statistics shared across sources

    Raises:
        SourceError: If a source cannot be read while sniffing
    """
    loaded: list[MergedRecord] = []
    for label, stream in sources:
        detected, replay = sniff_format(stream)
        loaded.extend(load_and_tag(replay, parser_for(detected), label, stats=stats))
    return sort_merged(loaded)


# =============================================================================
# Stats Mode
# =============================================================================


@dataclass(frozen=True)
class StatEntry:
    """One row of a frequency table"""
    value: str
    count: int


def compute_stats(
    records: Iterable[Mapping[str, Any]],
    predicate: Predicate,
    field: str,
) -> list[StatEntry]:
    """
    Tally the canonical string of a field over matching records.

    Records without the field are counted under "(none)". Rows are sorted
    by count descending, ties broken alphabetically by value.
    """
    counts: Counter[str] = Counter()
    for record in records:
        if not predicate(record):
            continue
        if field in record:
            counts[canonical_string(record[field])] += 1
        else:
            counts[MISSING_VALUE] += 1

    rows = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
    return [StatEntry(value=value, count=count) for value, count in rows]


def write_stats(entries: Iterable[StatEntry], sink: TextIO) -> None:
    """Print a frequency table as 'value: count' lines"""
    for entry in entries:
        sink.write(f"{entry.value}: {entry.count}\n")
