"""Interface package for glycemia spreadsheet ingestion.

This package provides base interfaces, record types and policy defaults.
"""

from gdm_import.interface.schema import (
    EnumLiteral,
    ColumnSchema,
    TableSchemaDefinition,
)
from gdm_import.interface.gdm_interface import (
    RawGrid,
    CanonicalField,
    INSULIN_ONLY_FIELDS,
    GestationalAgeSource,
    ImportStatus,
    FailureCategory,
    WorkbookFormat,
    IngestionWarning,
    ImportFailureError,
    HeaderNotFoundError,
    NoGlucoseDataError,
    WorkbookFormatError,
    GestationalAgeEstimate,
    HeaderDetectionResult,
    PatientMetadata,
    GlucoseReading,
    ParsedPatientRecord,
    ImportFailure,
    ImportResult,
    GlycemiaParser,
    GLUCOSE_MIN_MG_DL,
    GLUCOSE_MAX_MG_DL,
    HEADER_SCAN_ROWS,
    METADATA_SCAN_ROWS,
    MAX_CONSECUTIVE_EMPTY_ROWS,
    MAX_GESTATIONAL_WEEKS,
    EARLY_GESTATIONAL_WEEKS,
    MAX_DUM_DAYS,
    INSULIN_MIN_ROWS,
    INSULIN_MIN_FRACTION,
)

__all__ = [
    # Schema definitions
    "EnumLiteral",
    "ColumnSchema",
    "TableSchemaDefinition",
    # Core interface and records
    "RawGrid",
    "CanonicalField",
    "INSULIN_ONLY_FIELDS",
    "GestationalAgeSource",
    "ImportStatus",
    "FailureCategory",
    "WorkbookFormat",
    "GestationalAgeEstimate",
    "HeaderDetectionResult",
    "PatientMetadata",
    "GlucoseReading",
    "ParsedPatientRecord",
    "ImportFailure",
    "ImportResult",
    "GlycemiaParser",
    # Exceptions
    "ImportFailureError",
    "HeaderNotFoundError",
    "NoGlucoseDataError",
    "WorkbookFormatError",
    # Warnings
    "IngestionWarning",
    # Policy defaults
    "GLUCOSE_MIN_MG_DL",
    "GLUCOSE_MAX_MG_DL",
    "HEADER_SCAN_ROWS",
    "METADATA_SCAN_ROWS",
    "MAX_CONSECUTIVE_EMPTY_ROWS",
    "MAX_GESTATIONAL_WEEKS",
    "EARLY_GESTATIONAL_WEEKS",
    "MAX_DUM_DAYS",
    "INSULIN_MIN_ROWS",
    "INSULIN_MIN_FRACTION",
]
