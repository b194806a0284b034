"""
Command-line interface for b64pipe.

This module provides the ``b64pipe`` entry point: decoding the Base64
payloads embedded in a file, decoding an inline string, and scanning a file
for payloads without writing anything.
"""

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from b64pipe.extractors import build_extractor_spec
from b64pipe.io.sinks import (
    DirectorySinkFactory,
    NullSinkFactory,
    SharedSinkFactory,
    StreamSink,
)
from b64pipe.io.sources import open_source
from b64pipe.models import AlphabetName, ExtractorKind, ExtractorSpec, RunReport
from b64pipe.pipeline import DecodePipeline
from b64pipe.utils.errors import (
    ConfigurationError,
    ExtractionError,
    PayloadValidationError,
    SourceReadError,
)
from b64pipe.utils.logging import setup_logging

# Initialize Typer app and Rich consoles
app = typer.Typer(
    name="b64pipe",
    help="Extract and decode Base64 payloads embedded in text documents",
    add_completion=False,
)
console = Console()
err_console = Console(stderr=True)

# Exit code for usage and configuration problems
EXIT_USAGE = 2

# Extractor options shared by decode and scan
KIND_OPTION = typer.Option(
    ExtractorKind.DELIMITED,
    "--kind",
    "-k",
    case_sensitive=False,
    help="Where payloads are embedded",
)
START_OPTION = typer.Option(None, "--start", help="Block start marker (delimited)")
END_OPTION = typer.Option(
    None,
    "--end",
    help="Block end marker (delimited); an empty value ends blocks at a blank line",
)
REGEX_OPTION = typer.Option(False, "--regex", help="Treat markers as regular expressions")
FIELD_OPTION = typer.Option(None, "--field", help="Field selector, e.g. data.items[*].blob (json)")
MIME_OPTION = typer.Option(None, "--mime", help="Only data URIs of this type, e.g. image/* (data-uri)")
MIN_LENGTH_OPTION = typer.Option(None, "--min-length", help="Shortest run to carve (carve)")
ALPHABET_OPTION = typer.Option(None, "--alphabet", "-a", case_sensitive=False, help="Base64 alphabet")
REPAIR_OPTION = typer.Option(
    None,
    "--repair/--strict",
    help="Pad short final groups instead of rejecting them",
)


def _fail(message: str, code: int = EXIT_USAGE) -> None:
    err_console.print(f"[red]Error:[/red] {message}")
    raise typer.Exit(code)


def _build_spec(
    kind: ExtractorKind,
    start: Optional[str],
    end: Optional[str],
    regex: bool,
    field: Optional[str],
    mime: Optional[str],
    min_length: Optional[int],
) -> ExtractorSpec:
    try:
        return build_extractor_spec(
            kind,
            start_marker=start,
            end_marker=end,
            regex=regex,
            field_path=field,
            mime_filter=mime,
            min_length=min_length,
        )
    except (ConfigurationError, ExtractionError) as e:
        _fail(str(e))


def _build_pipeline(
    alphabet: Optional[AlphabetName],
    repair: Optional[bool],
    workers: Optional[int] = None,
) -> DecodePipeline:
    try:
        return DecodePipeline(alphabet=alphabet, repair_padding=repair, max_workers=workers)
    except ConfigurationError as e:
        _fail(str(e))


def _location(start: Optional[int], end: Optional[int]) -> str:
    if start is None:
        return "-"
    return f"{start}-{'EOF' if end is None else end}"


def _details(metadata: dict) -> str:
    for key in ("path", "mime_type", "filename", "content_type", "start_line"):
        if metadata.get(key):
            return str(metadata[key])
    return ""


def _print_report(report: RunReport, out: Console, title: str, show_output: bool = True) -> None:
    """Print per-payload results as a table followed by a summary line."""
    table = Table(title=title)
    table.add_column("#", justify="right", style="cyan")
    table.add_column("Location")
    table.add_column("Details", style="dim")
    table.add_column("Result")
    table.add_column("Bytes", justify="right")
    if show_output:
        table.add_column("Output")

    for result in report.results:
        if result.ok:
            outcome = "[green]ok[/green]"
        else:
            outcome = f"[red]{result.failure.kind.value}[/red]"
        row = [
            str(result.index),
            _location(result.start, result.end),
            _details(result.metadata),
            outcome,
            str(result.bytes_written) if result.ok else "-",
        ]
        if show_output:
            row.append(result.destination or (result.failure.message if result.failure else ""))
        table.add_row(*row)

    out.print(table)

    status_style = {"success": "green", "partial_failure": "yellow"}.get(report.status.value, "red")
    out.print(
        f"[{status_style}]{report.status.value}[/{status_style}]: "
        f"{len(report.succeeded)} of {len(report.results)} payload(s) decoded "
        f"in {report.duration_seconds:.2f}s"
    )
    if not show_output:
        for result in report.failed:
            out.print(f"  [dim]#{result.index}: {result.failure.message}[/dim]")


@app.command()
def decode(
    source: str = typer.Argument(..., help="Input file, or '-' for stdin"),
    kind: ExtractorKind = KIND_OPTION,
    start: Optional[str] = START_OPTION,
    end: Optional[str] = END_OPTION,
    regex: bool = REGEX_OPTION,
    field: Optional[str] = FIELD_OPTION,
    mime: Optional[str] = MIME_OPTION,
    min_length: Optional[int] = MIN_LENGTH_OPTION,
    alphabet: Optional[AlphabetName] = ALPHABET_OPTION,
    repair: Optional[bool] = REPAIR_OPTION,
    output_dir: Optional[Path] = typer.Option(
        None,
        "--output-dir",
        "-o",
        help="Directory for decoded files (default from settings)",
    ),
    to_stdout: bool = typer.Option(False, "--stdout", help="Write decoded bytes to stdout"),
    workers: Optional[int] = typer.Option(None, "--workers", "-w", help="Concurrent payloads"),
    json_output: bool = typer.Option(False, "--json", help="Print the report as JSON"),
):
    """Decode every Base64 payload found in SOURCE."""
    spec = _build_spec(kind, start, end, regex, field, mime, min_length)
    pipeline = _build_pipeline(alphabet, repair, workers)

    if to_stdout:
        sink_factory = SharedSinkFactory(StreamSink(typer.get_binary_stream("stdout")))
    else:
        sink_factory = DirectorySinkFactory(output_dir)

    try:
        report = pipeline.run(open_source(source), spec, sink_factory)
    except SourceReadError as e:
        _fail(e.message)

    # Decoded bytes own stdout when --stdout is given
    out = err_console if to_stdout else console
    if json_output:
        typer.echo(report.model_dump_json(indent=2), err=to_stdout)
    else:
        _print_report(report, out, title=f"Payloads in {report.source_id}")

    raise typer.Exit(report.exit_code)


@app.command()
def inline(
    text: str = typer.Argument(..., help="Base64 text, or '-' to read it from stdin"),
    alphabet: Optional[AlphabetName] = ALPHABET_OPTION,
    repair: Optional[bool] = REPAIR_OPTION,
):
    """Decode an inline Base64 string to stdout."""
    pipeline = _build_pipeline(alphabet, repair)

    if text == "-":
        text = typer.get_text_stream("stdin").read()

    try:
        data = pipeline.decode_text(text)
    except PayloadValidationError as e:
        _fail(e.message)

    stdout = typer.get_binary_stream("stdout")
    stdout.write(data)
    stdout.flush()


@app.command()
def scan(
    source: str = typer.Argument(..., help="Input file, or '-' for stdin"),
    kind: ExtractorKind = KIND_OPTION,
    start: Optional[str] = START_OPTION,
    end: Optional[str] = END_OPTION,
    regex: bool = REGEX_OPTION,
    field: Optional[str] = FIELD_OPTION,
    mime: Optional[str] = MIME_OPTION,
    min_length: Optional[int] = MIN_LENGTH_OPTION,
    alphabet: Optional[AlphabetName] = ALPHABET_OPTION,
    repair: Optional[bool] = REPAIR_OPTION,
    json_output: bool = typer.Option(False, "--json", help="Print the report as JSON"),
):
    """List the payloads found in SOURCE and whether they decode, writing nothing."""
    spec = _build_spec(kind, start, end, regex, field, mime, min_length)
    pipeline = _build_pipeline(alphabet, repair)

    try:
        report = pipeline.run(open_source(source), spec, NullSinkFactory())
    except SourceReadError as e:
        _fail(e.message)

    if json_output:
        typer.echo(report.model_dump_json(indent=2))
    else:
        _print_report(report, console, title=f"Scan of {report.source_id}", show_output=False)

    raise typer.Exit(report.exit_code)


@app.callback()
def main(
    debug: bool = typer.Option(False, "--debug", help="Enable debug logging"),
):
    """b64pipe - locate, validate and stream-decode embedded Base64 payloads."""
    # Setup logging
    log_level = "DEBUG" if debug else None
    setup_logging(log_level=log_level)


if __name__ == "__main__":
    app()
