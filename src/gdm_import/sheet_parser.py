"""Spreadsheet parser for glycemia self-monitoring workbooks."""

import logging
from base64 import b64decode
from binascii import Error as Base64Error
from datetime import date
from functools import reduce
from io import BytesIO, StringIO
from pathlib import Path
from typing import Any, List, Optional, Sequence, Tuple, Union

import openpyxl
import polars as pl

from gdm_import.interface.gdm_interface import (
    GlycemiaParser,
    RawGrid,
    WorkbookFormat,
    GestationalAgeSource,
    GestationalAgeEstimate,
    HeaderDetectionResult,
    PatientMetadata,
    GlucoseReading,
    ParsedPatientRecord,
    IngestionWarning,
    HeaderNotFoundError,
    NoGlucoseDataError,
    WorkbookFormatError,
    GLUCOSE_MIN_MG_DL,
    GLUCOSE_MAX_MG_DL,
    HEADER_SCAN_ROWS,
    METADATA_SCAN_ROWS,
    MAX_CONSECUTIVE_EMPTY_ROWS,
    MAX_GESTATIONAL_WEEKS,
    EARLY_GESTATIONAL_WEEKS,
    INSULIN_MIN_ROWS,
    INSULIN_MIN_FRACTION,
)
from gdm_import.formats.spreadsheet import (
    GESTATIONAL_AGE_SUBSTRINGS,
    GESTATIONAL_AGE_EXACT,
    GESTATIONAL_AGE_TOKEN,
    DATE_HEADER_EXACT,
    DATE_HEADER_SUBSTRINGS,
    PATIENT_NAME_CUES,
    DUM_TOKEN,
    MIN_PATIENT_NAME_LENGTH,
    SHEET_NAME_HINTS,
    XLSX_MAGIC,
    OLE2_MAGIC,
    CSV_SEPARATORS,
)
from gdm_import.normalizers import (
    is_blank,
    normalize_header,
    header_tokens,
    match_column,
    parse_glucose_value,
    parse_date,
    parse_gestational_age,
    gestational_age_from_dum,
    patient_name_from_file_name,
)

logger = logging.getLogger(__name__)

# Common encoding artifacts and their fixes
UTF8_BOM = b'\xef\xbb\xbf'
ENCODING_ARTIFACTS = {
    # Double-encoded BOM in quotes: "ïººº¿"
    b'\x22\xc3\xaf\xc2\xbb\xc2\xbf\x22': UTF8_BOM,
    # Double-encoded BOM without quotes
    b'\xc3\xaf\xc2\xbb\xc2\xbf': UTF8_BOM,
    # Quoted BOM (some systems do this)
    b'\x22\xef\xbb\xbf\x22': UTF8_BOM,
}

SEPARATOR_PROBE_LINES = 20

# (decimal weeks, source) as tracked during the row walk
_AgeValue = Tuple[float, GestationalAgeSource]


def _cell(row: Sequence[Any], column: Optional[int]) -> Any:
    if column is None or column < 0 or column >= len(row):
        return None
    return row[column]


class GestationalAgeTracker:
    """Gestational age state threaded through the row walk.

    Each row resolves its own age with the priority explicit > calculated >
    propagated. Only explicit/calculated values become the "last known" value,
    and only those, when they belong to a row with glucose values, can decide
    the file-level estimate directly.
    """

    def __init__(self) -> None:
        self._last_known: Optional[_AgeValue] = None
        self._current: Optional[_AgeValue] = None
        self._last_with_glucose: Optional[_AgeValue] = None

    def resolve(self, explicit_weeks: float, calculated_weeks: float) -> Optional[GestationalAgeEstimate]:
        """Pick the current row's estimate from its explicit and calculated ages.

        Args:
            explicit_weeks: Parsed gestational age column (0.0 if absent)
            calculated_weeks: Age from DUM + row date (0.0 if absent)

        Returns:
            The row's estimate, or None when nothing is known yet
        """
        if explicit_weeks > 0:
            self._current = (explicit_weeks, GestationalAgeSource.EXPLICIT)
        elif calculated_weeks > 0:
            self._current = (calculated_weeks, GestationalAgeSource.CALCULATED)
        else:
            self._current = None

        if self._current is not None:
            self._last_known = self._current
            return GestationalAgeEstimate.from_decimal_weeks(*self._current)
        if self._last_known is not None:
            return GestationalAgeEstimate.from_decimal_weeks(
                self._last_known[0], GestationalAgeSource.PROPAGATED
            )
        return None

    def record_data_row(self) -> None:
        """Mark the current row as carrying glucose values."""
        if self._current is not None:
            self._last_with_glucose = self._current

    def final_value(self) -> Optional[_AgeValue]:
        """File-level age: last data row with its own age, else last known (propagated)."""
        if self._last_with_glucose is not None:
            return self._last_with_glucose
        if self._last_known is not None:
            return (self._last_known[0], GestationalAgeSource.PROPAGATED)
        return None


class SpreadsheetParser(GlycemiaParser):
    """Main spreadsheet parser implementing the GlycemiaParser interface.

    This class orchestrates the parsing pipeline from workbook bytes to a record:
    1. Load the grid (sniff container, decode text, pick the worksheet)
    2. Detect layout (patient metadata, header row and column map)
    3. Walk the data rows and aggregate the record

    Clinical bounds are constructor arguments so that they stay a product
    decision rather than constants buried in the walk.
    """

    def __init__(
        self,
        glucose_min: float = GLUCOSE_MIN_MG_DL,
        glucose_max: float = GLUCOSE_MAX_MG_DL,
        header_scan_rows: int = HEADER_SCAN_ROWS,
        metadata_scan_rows: int = METADATA_SCAN_ROWS,
        max_empty_rows: int = MAX_CONSECUTIVE_EMPTY_ROWS,
        max_gestational_weeks: float = MAX_GESTATIONAL_WEEKS,
        early_gestational_weeks: float = EARLY_GESTATIONAL_WEEKS,
        insulin_min_rows: int = INSULIN_MIN_ROWS,
        insulin_min_fraction: float = INSULIN_MIN_FRACTION,
    ):
        """Initialize the parser.

        Args:
            glucose_min: Lowest accepted glucose value in mg/dL (default: 20)
            glucose_max: Highest accepted glucose value in mg/dL (default: 600)
            header_scan_rows: Rows searched for the header (default: 20)
            metadata_scan_rows: Rows searched for name/DUM cues (default: 10)
            max_empty_rows: Consecutive rows without glucose that end the walk (default: 3)
            max_gestational_weeks: Final ages above this are discarded (default: 42)
            early_gestational_weeks: Final ages below this raise a warning (default: 12)
            insulin_min_rows: Rows with insulin-only slots that imply insulin use (default: 3)
            insulin_min_fraction: Share of rows with insulin-only slots that implies it (default: 0.3)
        """
        if glucose_min > glucose_max:
            raise ValueError(f"glucose_min ({glucose_min}) is above glucose_max ({glucose_max})")
        if max_empty_rows < 1:
            raise ValueError("max_empty_rows must be at least 1")
        self.glucose_min = glucose_min
        self.glucose_max = glucose_max
        self.header_scan_rows = header_scan_rows
        self.metadata_scan_rows = metadata_scan_rows
        self.max_empty_rows = max_empty_rows
        self.max_gestational_weeks = max_gestational_weeks
        self.early_gestational_weeks = early_gestational_weeks
        self.insulin_min_rows = insulin_min_rows
        self.insulin_min_fraction = insulin_min_fraction

    # ===== STAGE 1: Load Raw Grid =====

    @staticmethod
    def decode_raw_data(raw_data: Union[bytes, str]) -> str:
        """Remove BOM marks and encoding artifacts from delimited text.

        Exports from Brazilian Excel installs are often cp1252; UTF-8 is tried first.

        Args:
            raw_data: Raw file contents (bytes or string)

        Returns:
            Cleaned string data
        """
        if isinstance(raw_data, str):
            return raw_data.lstrip('\ufeff')

        normalized = raw_data
        for corrupted_pattern, proper_bom in ENCODING_ARTIFACTS.items():
            if normalized.startswith(corrupted_pattern):
                normalized = proper_bom + normalized[len(corrupted_pattern):]
                break

        try:
            return normalized.decode('utf-8-sig')
        except UnicodeDecodeError:
            return normalized.decode('cp1252', errors='replace')

    @staticmethod
    def detect_format(raw_data: Union[bytes, str]) -> WorkbookFormat:
        """Guess the container from the first bytes.

        Raises:
            WorkbookFormatError: For legacy binary workbooks and other binary content
        """
        if isinstance(raw_data, str):
            return WorkbookFormat.CSV
        if raw_data.startswith(XLSX_MAGIC):
            return WorkbookFormat.XLSX
        if raw_data.startswith(OLE2_MAGIC):
            raise WorkbookFormatError(
                "Legacy binary .xls workbooks are not supported; save the file as .xlsx"
            )
        if not raw_data.strip():
            raise WorkbookFormatError("File is empty")
        if b'\x00' in raw_data[:1024]:
            raise WorkbookFormatError("Unrecognized binary file format")
        return WorkbookFormat.CSV

    @staticmethod
    def select_sheet_name(sheet_names: Sequence[str]) -> str:
        """Prefer a glucose-control sheet, fall back to the first one."""
        if not sheet_names:
            raise WorkbookFormatError("Workbook has no worksheets")
        for name in sheet_names:
            lowered = name.lower()
            if any(hint in lowered for hint in SHEET_NAME_HINTS):
                return name
        return sheet_names[0]

    def load_grid(self, raw_data: Union[bytes, str]) -> RawGrid:
        """Turn file contents into the rows of the selected worksheet."""
        format_type = self.detect_format(raw_data)
        if format_type == WorkbookFormat.XLSX:
            return self._load_xlsx(raw_data)
        return self._load_csv(self.decode_raw_data(raw_data))

    @classmethod
    def _load_xlsx(cls, raw_data: bytes) -> RawGrid:
        # openpyxl reports damaged workbooks with many unrelated exception types
        try:
            workbook = openpyxl.load_workbook(BytesIO(raw_data), data_only=True)
        except Exception as e:
            raise WorkbookFormatError(f"Could not open workbook: {e}") from e

        sheet_name = cls.select_sheet_name([sheet.title for sheet in workbook.worksheets])
        worksheet = workbook[sheet_name]
        logger.debug("Reading worksheet '%s' of %s", sheet_name, workbook.sheetnames)
        try:
            return tuple(tuple(row) for row in worksheet.iter_rows(values_only=True))
        except Exception as e:
            raise WorkbookFormatError(f"Could not read worksheet '{sheet_name}': {e}") from e

    @staticmethod
    def _probe_separator(lines: List[str]) -> str:
        """Pick the separator that appears most often in the first lines."""
        sample = lines[:SEPARATOR_PROBE_LINES]
        counts = {sep: sum(line.count(sep) for line in sample) for sep in CSV_SEPARATORS}
        best = max(CSV_SEPARATORS, key=lambda sep: counts[sep])
        return best if counts[best] > 0 else ","

    @classmethod
    def _load_csv(cls, text_data: str) -> RawGrid:
        lines = text_data.splitlines()
        if not any(line.strip() for line in lines):
            raise WorkbookFormatError("File is empty")

        separator = cls._probe_separator(lines)
        # Metadata lines above the table are usually shorter than data lines,
        # so every line is padded to the widest one before polars sees it
        width = max(line.count(separator) + 1 for line in lines)
        padded = "\n".join(
            line + separator * (width - 1 - line.count(separator)) for line in lines
        )
        try:
            df = pl.read_csv(
                StringIO(padded + "\n"),
                separator=separator,
                has_header=False,
                schema={f"column_{i}": pl.Utf8 for i in range(width)},
                truncate_ragged_lines=True,
            )
        except pl.exceptions.PolarsError as e:
            raise WorkbookFormatError(f"Failed to parse delimited text: {e}") from e

        return tuple(
            tuple(None if cell is None or not cell.strip() else cell.strip() for cell in row)
            for row in df.rows()
        )

    # ===== STAGE 2: Layout Detection =====

    def scan_metadata(self, grid: RawGrid, file_name: str) -> PatientMetadata:
        """Find patient name and DUM cues in the first rows of the grid.

        A cue cell's right-hand neighbour holds the value. Later cues override
        earlier ones. Without a name cue the name comes from the file name.
        """
        patient_name = patient_name_from_file_name(file_name)
        name_from_sheet = False
        raw_dum = None

        for row in grid[:self.metadata_scan_rows]:
            if not row:
                continue
            for j, cell in enumerate(row):
                if not isinstance(cell, str):
                    continue
                text = normalize_header(cell)
                next_cell = _cell(row, j + 1)

                if any(cue in text for cue in PATIENT_NAME_CUES):
                    if isinstance(next_cell, str) and len(next_cell.strip()) >= MIN_PATIENT_NAME_LENGTH:
                        patient_name = next_cell.strip()
                        name_from_sheet = True

                if DUM_TOKEN in header_tokens(text) and not is_blank(next_cell):
                    raw_dum = next_cell

        return PatientMetadata(patient_name=patient_name, raw_dum=raw_dum, name_from_sheet=name_from_sheet)

    @staticmethod
    def _is_gestational_age_header(normalized: str) -> bool:
        return (
            any(fragment in normalized for fragment in GESTATIONAL_AGE_SUBSTRINGS)
            or normalized in GESTATIONAL_AGE_EXACT
            or GESTATIONAL_AGE_TOKEN in header_tokens(normalized)
        )

    @staticmethod
    def _is_date_header(normalized: str) -> bool:
        return normalized in DATE_HEADER_EXACT or any(
            fragment in normalized for fragment in DATE_HEADER_SUBSTRINGS
        )

    @classmethod
    def scan_header_row(cls, row_index: int, row: Sequence[Any]) -> HeaderDetectionResult:
        """Build the column layout a single row would imply if it were the header."""
        column_map = {}
        gestational_age_column = None
        date_column = None

        for j, cell in enumerate(row):
            if is_blank(cell):
                continue
            normalized = normalize_header(cell)
            if cls._is_gestational_age_header(normalized):
                gestational_age_column = j
            if cls._is_date_header(normalized):
                date_column = j
            slot = match_column(normalized)
            if slot is not None and slot not in column_map.values():
                column_map[j] = slot

        # Sheets without a date header keep dates just left of the gestational age
        if date_column is None:
            date_column = gestational_age_column - 1 if gestational_age_column else 0

        return HeaderDetectionResult(
            header_row_index=row_index,
            column_map=column_map,
            gestational_age_column=gestational_age_column,
            date_column=date_column,
            score=len(column_map),
        )

    @staticmethod
    def _prefer_candidate(
        best: Optional[HeaderDetectionResult],
        candidate: HeaderDetectionResult,
    ) -> Optional[HeaderDetectionResult]:
        # Strictly greater: on a tie the earlier row stays
        if candidate.score < 1:
            return best
        if best is None or candidate.score > best.score:
            return candidate
        return best

    def detect_header(self, grid: RawGrid) -> HeaderDetectionResult:
        """Pick the row that maps the most glucose columns."""
        candidates = (
            self.scan_header_row(i, row)
            for i, row in enumerate(grid[:self.header_scan_rows])
            if row
        )
        best = reduce(self._prefer_candidate, candidates, None)
        if best is None:
            raise HeaderNotFoundError(
                "Spreadsheet header not found. Check that the sheet has columns such as "
                "'Jejum', 'Pós Café', 'Pós Almoço' in its first "
                f"{self.header_scan_rows} rows"
            )
        logger.debug(
            "Header at row %d (score %d), gestational age column %s, date column %s",
            best.header_row_index, best.score, best.gestational_age_column, best.date_column,
        )
        return best

    # ===== STAGE 3: Extraction =====

    def extract_rows(
        self,
        grid: RawGrid,
        detection: HeaderDetectionResult,
        dum_date: Optional[date] = None,
    ) -> Tuple[List[GlucoseReading], GestationalAgeTracker]:
        """Walk the rows below the header and collect glucose readings.

        Args:
            grid: Loaded worksheet
            detection: Header layout from detect_header()
            dum_date: Parsed DUM, enables the calculated gestational age tier

        Returns:
            Tuple of (accepted readings in row order, gestational age tracker)
        """
        tracker = GestationalAgeTracker()
        readings: List[GlucoseReading] = []
        empty_rows = 0

        for row_index in range(detection.header_row_index + 1, len(grid)):
            row = grid[row_index]
            if not row:
                empty_rows += 1
                if empty_rows >= self.max_empty_rows:
                    logger.debug("Stopping at row %d: %d consecutive empty rows", row_index, empty_rows)
                    break
                continue

            explicit_weeks = parse_gestational_age(_cell(row, detection.gestational_age_column))
            measurement_date = parse_date(_cell(row, detection.date_column))
            calculated_weeks = 0.0
            if not explicit_weeks and dum_date is not None and measurement_date is not None:
                calculated_weeks = gestational_age_from_dum(measurement_date, dum_date)
            estimate = tracker.resolve(explicit_weeks, calculated_weeks)

            values = {}
            for column, slot in detection.column_map.items():
                value = parse_glucose_value(_cell(row, column), self.glucose_min, self.glucose_max)
                if value is not None:
                    values[slot] = value

            if values:
                readings.append(GlucoseReading(
                    values=values,
                    row_index=row_index,
                    measurement_date=measurement_date,
                    gestational_age=estimate,
                ))
                tracker.record_data_row()
                empty_rows = 0
            else:
                empty_rows += 1
                if empty_rows >= self.max_empty_rows:
                    logger.debug(
                        "Stopping at row %d: %d consecutive rows without glucose data",
                        row_index, empty_rows,
                    )
                    break

        return readings, tracker

    def infer_insulin_use(self, readings: Sequence[GlucoseReading]) -> bool:
        """Insulin users also measure before meals and overnight.

        True when enough rows carry a pre-lunch, pre-dinner or overnight value,
        either in absolute count or as a share of all rows.
        """
        if not readings:
            return False
        insulin_rows = sum(1 for reading in readings if reading.has_insulin_fields())
        return (
            insulin_rows >= self.insulin_min_rows
            or insulin_rows >= len(readings) * self.insulin_min_fraction
        )

    def _final_gestational_age(
        self,
        tracker: GestationalAgeTracker,
        patient_name: str,
    ) -> Tuple[GestationalAgeEstimate, IngestionWarning]:
        final = tracker.final_value()
        if final is None:
            return GestationalAgeEstimate.absent(), IngestionWarning.GESTATIONAL_AGE_MISSING

        weeks, source = final
        if weeks > self.max_gestational_weeks:
            logger.warning(
                "%s: gestational age %.2f weeks is above %s, discarding it",
                patient_name, weeks, self.max_gestational_weeks,
            )
            return GestationalAgeEstimate(0, 0, source), IngestionWarning.GESTATIONAL_AGE_OUT_OF_RANGE

        estimate = GestationalAgeEstimate.from_decimal_weeks(weeks, source)
        if weeks < self.early_gestational_weeks:
            logger.warning(
                "%s: suspicious gestational age %.2f weeks, check the DUM in the spreadsheet",
                patient_name, weeks,
            )
            return estimate, IngestionWarning.EARLY_GESTATIONAL_AGE
        return estimate, IngestionWarning.NONE

    def parse_grid(self, grid: RawGrid, file_name: str) -> ParsedPatientRecord:
        """Run layout detection and row extraction over a loaded grid."""
        metadata = self.scan_metadata(grid, file_name)
        detection = self.detect_header(grid)
        warnings = IngestionWarning.NONE

        dum_date = None
        if metadata.raw_dum is not None:
            dum_date = parse_date(metadata.raw_dum)
            logger.debug("%s: DUM raw %r parsed as %s", metadata.patient_name, metadata.raw_dum, dum_date)
            if dum_date is None:
                warnings |= IngestionWarning.DUM_UNPARSABLE

        readings, tracker = self.extract_rows(grid, detection, dum_date)
        if not readings:
            raise NoGlucoseDataError(
                "No glucose data found in the spreadsheet. Check that numeric values "
                "are in the glucose columns"
            )

        gestational_age, age_warning = self._final_gestational_age(tracker, metadata.patient_name)
        warnings |= age_warning

        return ParsedPatientRecord(
            source_file_name=Path(file_name).name,
            patient_name=metadata.patient_name,
            gestational_age=gestational_age,
            readings=tuple(readings),
            uses_insulin=self.infer_insulin_use(readings),
            raw_dum=metadata.raw_dum,
            warnings=warnings,
        )

    # ===== Convenience Methods =====

    def parse_from_bytes(self, raw_data: Union[bytes, str], file_name: str) -> ParsedPatientRecord:
        """Parse raw file contents to a record.

        Raises:
            WorkbookFormatError: If the file cannot be opened
            HeaderNotFoundError: If the header row cannot be found
            NoGlucoseDataError: If no row carries a valid glucose value
        """
        grid = self.load_grid(raw_data)
        return self.parse_grid(grid, file_name)

    def parse_file(self, file_path: Union[str, Path]) -> ParsedPatientRecord:
        """Parse a spreadsheet from a file path.

        Raises:
            FileNotFoundError: If file doesn't exist
            ImportFailureError: Any of the file-level failures
        """
        file_path = Path(file_path)
        with open(file_path, 'rb') as f:
            raw_data = f.read()
        return self.parse_from_bytes(raw_data, file_path.name)

    def parse_base64(self, base64_data: str, file_name: str) -> ParsedPatientRecord:
        """Parse a spreadsheet from a base64 encoded upload.

        Raises:
            WorkbookFormatError: If base64 decoding fails or the file cannot be opened
        """
        try:
            raw_data = b64decode(base64_data, validate=True)
        except (Base64Error, ValueError) as e:
            raise WorkbookFormatError(f"Failed to decode base64 data: {e}") from e
        return self.parse_from_bytes(raw_data, file_name)
