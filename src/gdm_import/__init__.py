"""gdm_import - Glycemia spreadsheet ingestion for gestational diabetes follow-up.

This package reads clinician-authored self-monitoring spreadsheets (irregular
layouts, Portuguese headers, mixed date and number formats) and turns each
file into a normalized patient record.

Main Components:
    SpreadsheetParser: Parse a workbook to a ParsedPatientRecord (Stages 1-3)
    RecordProcessor: Payloads, readings export and batch import

Quick Start:
    >>> from gdm_import import SpreadsheetParser, RecordProcessor
    >>>
    >>> record = SpreadsheetParser().parse_file("data/MARIA_SILVA.xlsx")
    >>> payload = RecordProcessor.to_payload(record)
    >>>
    >>> # Whole folder, failures grouped by category
    >>> result = RecordProcessor().import_batch(["data/a.xlsx", "data/b.xlsx"])
    >>> result.grouped_failures()
"""

from gdm_import.sheet_parser import SpreadsheetParser
from gdm_import.record_processor import RecordProcessor, BatchImportResult

__version__ = "0.1.0"

__all__ = [
    "SpreadsheetParser",
    "RecordProcessor",
    "BatchImportResult",
    "__version__",
]
