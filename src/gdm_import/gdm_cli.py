#!/usr/bin/env python3
"""GDM Import CLI Tool - Command-line interface for glycemia spreadsheet ingestion.

This tool provides access to the parser and record processor:
- Layout detection (header row, column map, patient metadata)
- Parsing a spreadsheet to a record, payload and readings table
- Batch import of a folder with failures grouped by category
- Readings table schema export

Can be used as:
- Installed command: gdm-cli <command>
- Python module: python -m gdm_import.gdm_cli <command>
- Direct script: python scripts/gdm_cli.py <command>
"""

import json
import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table
from rich.progress import Progress, SpinnerColumn, TextColumn

from gdm_import.sheet_parser import SpreadsheetParser
from gdm_import.record_processor import RecordProcessor
from gdm_import.interface.gdm_interface import (
    CanonicalField,
    ImportFailureError,
    IngestionWarning,
    ParsedPatientRecord,
    GLUCOSE_MIN_MG_DL,
    GLUCOSE_MAX_MG_DL,
    MAX_CONSECUTIVE_EMPTY_ROWS,
)
from gdm_import.formats.readings import READINGS_SCHEMA

app = typer.Typer(
    name="gdm-cli",
    help="GDM Import CLI - Parse gestational diabetes glycemia spreadsheets",
    add_completion=False,
)
console = Console()

MIN_GLUCOSE_OPTION = typer.Option(GLUCOSE_MIN_MG_DL, "--min-glucose", help="Lowest accepted glucose (mg/dL)")
MAX_GLUCOSE_OPTION = typer.Option(GLUCOSE_MAX_MG_DL, "--max-glucose", help="Highest accepted glucose (mg/dL)")
MAX_EMPTY_ROWS_OPTION = typer.Option(
    MAX_CONSECUTIVE_EMPTY_ROWS, "--max-empty-rows", help="Rows without glucose that end the table"
)


@app.callback()
def configure_logging(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging"),
) -> None:
    """Parse gestational diabetes glycemia spreadsheets."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def _build_parser(min_glucose: float, max_glucose: float, max_empty_rows: int) -> SpreadsheetParser:
    try:
        return SpreadsheetParser(glucose_min=min_glucose, glucose_max=max_glucose, max_empty_rows=max_empty_rows)
    except ValueError as e:
        console.print(f"[red]✗ Invalid option: {escape(str(e))}[/red]")
        raise typer.Exit(1)


def _require_file(input_file: Path) -> None:
    if not input_file.exists():
        console.print(f"[red]Error: File not found: {input_file}[/red]")
        raise typer.Exit(1)


# ===== Detection & Parsing Commands =====

@app.command()
def detect(
    input_file: Path = typer.Argument(..., help="Spreadsheet (.xlsx or .csv)"),
) -> None:
    """Show the layout the parser infers for a spreadsheet."""
    _require_file(input_file)
    parser = SpreadsheetParser()
    raw_data = input_file.read_bytes()

    try:
        format_type = parser.detect_format(raw_data)
        grid = parser.load_grid(raw_data)
        metadata = parser.scan_metadata(grid, input_file.name)
        detection = parser.detect_header(grid)
    except ImportFailureError as e:
        console.print(f"[red]✗ {e.category.value}: {escape(str(e))}[/red]")
        raise typer.Exit(1)

    console.print(f"\n[green]✓[/green] Detected format: [bold]{format_type.value}[/bold]")

    table = Table(show_header=False, box=None)
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="white")
    table.add_row("Patient", metadata.patient_name + ("" if metadata.name_from_sheet else " (from file name)"))
    table.add_row("DUM", "-" if metadata.raw_dum is None else str(metadata.raw_dum))
    table.add_row("Header Row", str(detection.header_row_index + 1))
    table.add_row("Score", str(detection.score))
    table.add_row("Date Column", _column_label(detection.date_column))
    table.add_row("Gestational Age Column", _column_label(detection.gestational_age_column))
    console.print(table)

    mapping = Table(title="Glucose Columns")
    mapping.add_column("Column", style="cyan")
    mapping.add_column("Header", style="white")
    mapping.add_column("Field", style="green")
    header_row = grid[detection.header_row_index]
    for column, slot in sorted(detection.column_map.items()):
        mapping.add_row(_column_label(column), str(header_row[column]), slot.value)
    console.print(mapping)


@app.command()
def parse(
    input_file: Path = typer.Argument(..., help="Spreadsheet (.xlsx or .csv)"),
    output_file: Optional[Path] = typer.Option(None, "--output", "-o", help="Output CSV file (readings table)"),
    payload_file: Optional[Path] = typer.Option(None, "--payload", help="Output JSON file (recommendation payload)"),
    show_preview: bool = typer.Option(False, "--preview", "-p", help="Show readings preview"),
    min_glucose: float = MIN_GLUCOSE_OPTION,
    max_glucose: float = MAX_GLUCOSE_OPTION,
    max_empty_rows: int = MAX_EMPTY_ROWS_OPTION,
) -> None:
    """Parse one spreadsheet to a patient record."""
    _require_file(input_file)
    parser = _build_parser(min_glucose, max_glucose, max_empty_rows)

    try:
        with console.status(f"[bold green]Parsing {input_file.name}..."):
            record = parser.parse_file(input_file)
    except ImportFailureError as e:
        console.print(f"[red]✗ {e.category.value}: {escape(str(e))}[/red]")
        raise typer.Exit(1)

    console.print(f"\n[green]✓[/green] Successfully parsed {len(record.readings)} rows")
    _print_record_summary(record)

    if show_preview:
        _print_readings_preview(record)

    if output_file:
        RecordProcessor.to_dataframe(record).write_csv(output_file)
        console.print(f"\n[green]✓[/green] Saved readings to: {output_file}")

    if payload_file:
        _write_json(payload_file, RecordProcessor.to_payload(record))
        console.print(f"[green]✓[/green] Saved payload to: {payload_file}")


# ===== Batch Commands =====

@app.command()
def batch(
    input_dir: Path = typer.Argument(..., help="Directory containing spreadsheets"),
    output_file: Optional[Path] = typer.Option(None, "--output", "-o", help="Output JSON file with all payloads"),
    pattern: str = typer.Option("*.xlsx", "--pattern", "-p", help="File pattern to match"),
    workers: Optional[int] = typer.Option(None, "--workers", "-w", min=1, help="Parallel workers"),
    min_glucose: float = MIN_GLUCOSE_OPTION,
    max_glucose: float = MAX_GLUCOSE_OPTION,
    max_empty_rows: int = MAX_EMPTY_ROWS_OPTION,
) -> None:
    """Import every matching spreadsheet in a directory."""
    if not input_dir.exists():
        console.print(f"[red]Error: Directory not found: {input_dir}[/red]")
        raise typer.Exit(1)

    if not input_dir.is_dir():
        console.print(f"[red]Error: Not a directory: {input_dir}[/red]")
        raise typer.Exit(1)

    files = sorted(path for path in input_dir.glob(pattern) if path.is_file())
    if not files:
        console.print(f"[red]Error: No files matching '{pattern}' found in {input_dir}[/red]")
        raise typer.Exit(1)

    processor = RecordProcessor(_build_parser(min_glucose, max_glucose, max_empty_rows))
    console.print(f"\n[bold]Importing {len(files)} file(s)[/bold]\n")

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
    ) as progress:
        progress.add_task("Importing...", total=None)
        result = processor.import_batch(files, max_workers=workers)

    console.print("\n[bold]Batch import complete:[/bold]")
    console.print(f"  [green]Success: {len(result.records)}[/green]")
    if result.failures:
        console.print(f"  [red]Failed: {len(result.failures)}[/red]")

    for category, failures in result.grouped_failures().items():
        console.print(f"\n[bold red]{category.value}[/bold red] ({len(failures)})")
        for failure in failures:
            console.print(f"  - {escape(failure.file_name)}: {escape(failure.message)}")

    flagged = [record for record in result.records if record.warnings]
    if flagged:
        console.print("\n[bold yellow]Warnings:[/bold yellow]")
        for record in flagged:
            console.print(f"  - {record.source_file_name}: {_describe_warnings(record.warnings)}")

    if output_file:
        _write_json(output_file, [
            {"fileName": record.source_file_name, **RecordProcessor.to_payload(record)}
            for record in result.records
        ])
        console.print(f"\n[green]✓[/green] Payloads saved to: {output_file}")


# ===== Schema Commands =====

@app.command()
def schema(
    output_file: Optional[Path] = typer.Option(None, "--output", "-o", help="Output JSON file"),
) -> None:
    """Export the readings table schema (Frictionless Table Schema)."""
    if output_file:
        READINGS_SCHEMA.export_to_json(str(output_file))
        console.print(f"[green]✓[/green] Schema saved to: {output_file}")
    else:
        console.print_json(data=READINGS_SCHEMA.to_frictionless_schema())


# ===== Helper Functions =====

def _column_label(column: Optional[int]) -> str:
    """Spreadsheet-style column letter for a 0-based index."""
    if column is None:
        return "-"
    label = ""
    index = column + 1
    while index:
        index, remainder = divmod(index - 1, 26)
        label = chr(ord("A") + remainder) + label
    return label


def _describe_warnings(warnings: IngestionWarning) -> str:
    descriptions = {
        IngestionWarning.EARLY_GESTATIONAL_AGE: "gestational age below 12 weeks, check the DUM",
        IngestionWarning.GESTATIONAL_AGE_OUT_OF_RANGE: "gestational age above 42 weeks, discarded",
        IngestionWarning.GESTATIONAL_AGE_MISSING: "no gestational age found",
        IngestionWarning.DUM_UNPARSABLE: "DUM cell is not a date",
    }
    return "; ".join(text for flag, text in descriptions.items() if flag in warnings)


def _print_record_summary(record: ParsedPatientRecord) -> None:
    console.print("\n[bold]Patient Record:[/bold]")

    table = Table(show_header=False, box=None)
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="white")

    age = record.gestational_age
    table.add_row("Patient", record.patient_name)
    table.add_row("Gestational Age", f"{age.weeks}w {age.days}d ({age.source.value})" if age.is_known else "-")
    table.add_row("Uses Insulin", "yes" if record.uses_insulin else "no")
    table.add_row("Readings", f"{len(record.readings):,}")
    if record.warnings:
        table.add_row("Warnings", f"[yellow]{_describe_warnings(record.warnings)}[/yellow]")

    console.print(table)


def _print_readings_preview(record: ParsedPatientRecord, limit: int = 10) -> None:
    preview = Table(title="Readings Preview")
    preview.add_column("Row", style="cyan")
    preview.add_column("Date", style="white")
    for slot in CanonicalField:
        preview.add_column(slot.value, justify="right")

    for reading in record.readings[:limit]:
        preview.add_row(
            str(reading.row_index + 1),
            reading.measurement_date.isoformat() if reading.measurement_date else "-",
            *(str(reading.get(slot) or "") for slot in CanonicalField),
        )
    console.print(preview)


def _write_json(path: Path, data) -> None:
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, ensure_ascii=False)
        f.write("\n")


# ===== Main Entry Point =====

def main() -> None:
    """Main entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
