"""
logpipe CLI Entry Point

Reads structured log records from a file, stdin, or several merged files,
filters them, and writes them to stdout as text, JSON or logfmt. With
--stats, prints a value frequency table for one field instead.
"""

import logging
import sys
from contextlib import ExitStack, contextmanager
from pathlib import Path
from typing import Iterator, NoReturn

import click

from logpipe.config import (
    INPUT_FORMATS,
    OUTPUT_FORMATS,
    ConfigError,
    load_config,
)
from logpipe.errors import FilterCompileError, SourceError
from logpipe.filters import build_filter
from logpipe.formatters import create_formatter
from logpipe.log_parser import LogFormat, LogParser
from logpipe.pipeline import (
    compute_stats,
    merge_sources,
    report_parse_error,
    run_pipeline,
    write_stats,
)

__version__ = "0.1.0"

logger = logging.getLogger(__name__)


@contextmanager
def stderr_logging(level: str) -> Iterator[None]:
    """Send logpipe diagnostics to stderr for the duration of a command"""
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(message)s"))

    package_logger = logging.getLogger("logpipe")
    previous_level = package_logger.level
    package_logger.addHandler(handler)
    package_logger.setLevel(level)
    try:
        yield
    finally:
        package_logger.removeHandler(handler)
        package_logger.setLevel(previous_level)


def fail(message: str) -> NoReturn:
    """Print an error and exit with status 1"""
    click.secho(f"✗ {message}", fg="red", err=True)
    sys.exit(1)


def split_fields(value: str | None, default: list[str]) -> list[str]:
    """Split a comma-separated --fields value, falling back to the config"""
    if value is None:
        return list(default)
    return [name.strip() for name in value.split(",") if name.strip()]


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(version=__version__, prog_name="logpipe", message="%(prog)s %(version)s")
@click.option(
    "--format",
    "output_format",
    type=click.Choice(sorted(OUTPUT_FORMATS)),
    default=None,
    help="Output format (default: text)",
)
@click.option(
    "--input",
    "input_format",
    type=click.Choice(sorted(INPUT_FORMATS)),
    default=None,
    help="Input format (default: auto)",
)
@click.option(
    "--file",
    "file_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Path to log file (default: stdin)",
)
@click.option(
    "--merge",
    "merge_paths",
    multiple=True,
    type=click.Path(dir_okay=False, path_type=Path),
    help="File to include in merged timestamp-sorted output (repeatable)",
)
@click.option(
    "--filter",
    "filter_expressions",
    multiple=True,
    help="Filter expression, e.g. level=error or time>=2024-01-01 (repeatable, ANDed)",
)
@click.option(
    "--fields",
    default=None,
    help="Comma-separated list of fields to display (text format)",
)
@click.option(
    "--color/--no-color",
    default=None,
    help="Enable color output (text format only)",
)
@click.option(
    "--pretty/--no-pretty",
    default=None,
    help="Pretty-print JSON output (json format only)",
)
@click.option(
    "--stats",
    "stats_field",
    default=None,
    help="Print a frequency table of values for the named field instead of formatting entries",
)
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Path to config file (defaults to ~/.logpipe/config.yaml)",
)
def cli(
    output_format: str | None,
    input_format: str | None,
    file_path: Path | None,
    merge_paths: tuple[Path, ...],
    filter_expressions: tuple[str, ...],
    fields: str | None,
    color: bool | None,
    pretty: bool | None,
    stats_field: str | None,
    config_path: Path | None,
) -> None:
    """logpipe - filter, merge and re-render structured logs.

    Reads JSON Lines or key=value logs from stdin, --file, or several
    --merge files, and writes the records that pass every --filter.
    """
    try:
        config = load_config(config_path)
    except ConfigError as e:
        fail(f"Configuration error: {e}")

    with stderr_logging(config.log_level):
        run(
            output_format=output_format or config.output.format,
            input_format=input_format or config.input.format,
            file_path=file_path,
            merge_paths=merge_paths,
            filter_expressions=filter_expressions,
            fields=split_fields(fields, config.output.fields),
            color=config.output.color if color is None else color,
            pretty=config.output.pretty if pretty is None else pretty,
            stats_field=stats_field,
        )


def run(
    output_format: str,
    input_format: str,
    file_path: Path | None,
    merge_paths: tuple[Path, ...],
    filter_expressions: tuple[str, ...],
    fields: list[str],
    color: bool,
    pretty: bool,
    stats_field: str | None,
) -> None:
    """Execute one logpipe invocation with fully resolved settings"""
    if file_path is not None and merge_paths:
        fail("--file and --merge are mutually exclusive")

    try:
        predicate = build_filter(filter_expressions)
    except FilterCompileError as e:
        fail(f"Invalid filter: {e}")

    formatter = create_formatter(output_format, color=color, pretty=pretty, fields=fields)
    sink = click.get_text_stream("stdout")

    with ExitStack() as stack:
        if merge_paths:
            sources = []
            for path in merge_paths:
                try:
                    handle = stack.enter_context(open(path, "rb"))
                except OSError as e:
                    fail(f"Error opening {path}: {e}")
                sources.append((path.name, handle))

            try:
                merged = merge_sources(sources)
            except SourceError as e:
                fail(f"Error detecting input format: {e}")
            records = [entry.record for entry in merged]
        else:
            if file_path is not None:
                try:
                    stream = stack.enter_context(open(file_path, "rb"))
                except OSError as e:
                    fail(f"Error opening file: {e}")
                label = file_path.name
            else:
                stream = click.get_binary_stream("stdin")
                label = "stdin"

            parser = LogParser(
                format=LogFormat.from_name(input_format),
                on_malformed=report_parse_error(label),
            )
            records = parser.records(stream)

        try:
            if stats_field:
                write_stats(compute_stats(records, predicate, stats_field), sink)
                sys.exit(0)

            result = run_pipeline(records, predicate, formatter, sink)
        except SourceError as e:
            fail(f"Error detecting input format: {e}")

    logger.debug(
        "Matched %d record(s), rendered %d, %d failure(s)",
        result.matched,
        result.rendered,
        result.render_failures,
    )
    sys.exit(1 if result.failed else 0)


def main() -> None:
    """Main entry point for the CLI"""
    cli()


if __name__ == "__main__":
    main()
