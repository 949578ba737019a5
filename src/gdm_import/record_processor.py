"""Record-level operations on parsed glycemia spreadsheets.

Turns ParsedPatientRecord objects into the recommendation payload and the
readings table, and imports whole folders of spreadsheets in parallel.
"""

import logging
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

import polars as pl

from gdm_import.interface.gdm_interface import (
    CanonicalField,
    FailureCategory,
    GlucoseReading,
    ImportFailure,
    ImportFailureError,
    ImportResult,
    ImportStatus,
    IngestionWarning,
    ParsedPatientRecord,
)
from gdm_import.formats.readings import READINGS_SCHEMA
from gdm_import.sheet_parser import SpreadsheetParser

logger = logging.getLogger(__name__)

DEFAULT_DIET_ADHERENCE = "regular"

# Collaborator that turns a payload into a clinical recommendation
RecommendFn = Callable[[Dict[str, Any]], Any]


@dataclass(frozen=True)
class BatchImportResult:
    """Outcome of importing several files, in input order."""
    results: Tuple[ImportResult, ...]

    @property
    def records(self) -> List[ParsedPatientRecord]:
        return [r for r in self.results if isinstance(r, ParsedPatientRecord)]

    @property
    def failures(self) -> List[ImportFailure]:
        return [r for r in self.results if isinstance(r, ImportFailure)]

    def grouped_failures(self) -> Dict[FailureCategory, List[ImportFailure]]:
        """Failures keyed by category, categories in first-seen order."""
        grouped: Dict[FailureCategory, List[ImportFailure]] = defaultdict(list)
        for failure in self.failures:
            grouped[failure.category].append(failure)
        return dict(grouped)


class RecordProcessor:
    """Operations on ParsedPatientRecord objects.

    This processor provides:
    - Payload building for the recommendation service
    - Readings export as a polars DataFrame
    - Batch import with per-file isolation
    - Applying a recommendation result as a new record

    Soft warnings of every record that passes through import_batch() are
    collected and can be retrieved via get_warnings() or checked via has_warnings().
    """

    def __init__(self, parser: Optional[SpreadsheetParser] = None):
        """Initialize the processor.

        Args:
            parser: Parser used by import_batch() (default: SpreadsheetParser())
        """
        self.parser = parser if parser is not None else SpreadsheetParser()
        self._warnings: List[IngestionWarning] = []

    def get_warnings(self) -> List[IngestionWarning]:
        return self._warnings.copy()

    def has_warnings(self) -> bool:
        return len(self._warnings) > 0

    def _add_warning(self, warning: IngestionWarning) -> None:
        self._warnings.append(warning)

    # ===== Payload =====

    @staticmethod
    def reading_to_payload(reading: GlucoseReading) -> Optional[Dict[str, Any]]:
        """Wire form of one reading, or None if it carries no positive value."""
        values = {slot.value: value for slot, value in reading.values.items() if value and value > 0}
        if not values:
            return None
        if reading.measurement_date is not None:
            values["measurementDate"] = reading.measurement_date.isoformat()
        if reading.gestational_age is not None and reading.gestational_age.is_known:
            values["gestationalAge"] = round(reading.gestational_age.decimal_weeks, 4)
        return values

    @classmethod
    def to_payload(cls, record: ParsedPatientRecord) -> Dict[str, Any]:
        """Build the request body for the recommendation service.

        Args:
            record: Parsed record

        Returns:
            JSON-serializable dictionary

        Examples:
            >>> payload = RecordProcessor.to_payload(record)
            >>> payload["glucoseReadings"][0]
            {'jejum': 92, 'posCafe1h': 130, 'measurementDate': '2025-04-25'}
        """
        readings = [cls.reading_to_payload(reading) for reading in record.readings]
        return {
            "patientName": record.patient_name,
            "weight": None,
            "gestationalWeeks": record.gestational_age.weeks,
            "gestationalDays": record.gestational_age.days,
            "gestationalAgeSource": record.gestational_age.source.value,
            "usesInsulin": record.uses_insulin,
            "insulinRegimens": [],
            "dietAdherence": DEFAULT_DIET_ADHERENCE,
            "glucoseReadings": [r for r in readings if r is not None],
        }

    # ===== Readings table =====

    @staticmethod
    def to_dataframe(record: ParsedPatientRecord, data_only: bool = False) -> pl.DataFrame:
        """Readings of a record as a polars DataFrame following READINGS_SCHEMA.

        Args:
            record: Parsed record
            data_only: If True, keep only the seven glucose columns

        Returns:
            DataFrame with one row per accepted reading
        """
        rows = []
        for reading in record.readings:
            estimate = reading.gestational_age
            row = {
                "row_index": reading.row_index,
                "measurement_date": reading.measurement_date,
                "gestational_age": estimate.decimal_weeks if estimate is not None else None,
                "gestational_age_source": estimate.source.value if estimate is not None else None,
            }
            for slot in CanonicalField:
                row[slot.value] = reading.get(slot)
            rows.append(row)

        df = pl.DataFrame(rows, schema=READINGS_SCHEMA.get_polars_schema())
        if data_only:
            return df.select(READINGS_SCHEMA.get_column_names(data_only=True))
        return df

    # ===== Batch import =====

    def import_one(self, path: Union[str, Path]) -> ImportResult:
        """Parse one file, turning file-level failures into ImportFailure."""
        path = Path(path)
        try:
            record = self.parser.parse_file(path)
        except ImportFailureError as e:
            logger.info("%s: %s (%s)", path.name, e, e.category.value)
            return ImportFailure(file_name=path.name, category=e.category, message=str(e))
        except OSError as e:
            logger.info("%s: cannot read file: %s", path.name, e)
            return ImportFailure(
                file_name=path.name,
                category=FailureCategory.FILE_FORMAT,
                message=f"Could not read file: {e}",
            )
        logger.debug(
            "%s: %d readings, insulin=%s, warnings=%s",
            path.name, len(record.readings), record.uses_insulin, record.warnings,
        )
        return record

    def import_batch(
        self,
        paths: Sequence[Union[str, Path]],
        max_workers: Optional[int] = None,
    ) -> BatchImportResult:
        """Import several spreadsheets, one independent task per file.

        Results are merged in input order after all tasks finish. A failing
        file never affects the others.

        Args:
            paths: Files to import
            max_workers: Thread pool size (default: concurrent.futures default)

        Returns:
            BatchImportResult with one entry per path
        """
        if not paths:
            return BatchImportResult(results=())

        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            results = tuple(executor.map(self.import_one, paths))

        for result in results:
            if isinstance(result, ParsedPatientRecord) and result.warnings:
                self._add_warning(result.warnings)

        batch = BatchImportResult(results=results)
        logger.info("Imported %d of %d files", len(batch.records), len(results))
        return batch

    # ===== Recommendation =====

    @classmethod
    def apply_recommendation(cls, record: ParsedPatientRecord, recommend: RecommendFn) -> ParsedPatientRecord:
        """Run the recommendation collaborator and return a new record.

        The input record is never modified.

        Args:
            record: Parsed record (normally with status PENDING)
            recommend: Callable receiving the payload from to_payload()

        Returns:
            Copy of the record with status SUCCESS and the recommendation,
            or status ERROR and the exception message
        """
        try:
            recommendation = recommend(cls.to_payload(record))
        except Exception as e:
            logger.warning("%s: recommendation failed: %s", record.source_file_name, e)
            return replace(record, status=ImportStatus.ERROR, error_detail=str(e) or type(e).__name__)
        return replace(record, status=ImportStatus.SUCCESS, error_detail=None, recommendation=recommendation)
