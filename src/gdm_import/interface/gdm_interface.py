"""Abstract Base Class interface for glycemia spreadsheet ingestion.

Separated into two concerns:
- GlycemiaParser: Workbook-specific parsing to a normalized record (Stages 1-3)
- RecordProcessor: Record-level operations (payloads, exports, batches)
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date
from enum import Enum, Flag, auto
from typing import Any, Dict, Optional, Tuple, Union

from gdm_import.interface.schema import EnumLiteral


# ===== Parsing policy defaults =====
# Every value here is a default for a SpreadsheetParser keyword argument.

GLUCOSE_MIN_MG_DL = 20  # below this a capillary reading is clinically impossible
GLUCOSE_MAX_MG_DL = 600  # glucometer ceiling
HEADER_SCAN_ROWS = 20  # metadata may sit above the real header
METADATA_SCAN_ROWS = 10
MAX_CONSECUTIVE_EMPTY_ROWS = 3  # stop the row walk after this many rows without glucose
MAX_GESTATIONAL_WEEKS = 42  # final estimates above this are discarded
EARLY_GESTATIONAL_WEEKS = 12  # final estimates below this raise a soft warning
MAX_DUM_DAYS = 315  # ~45 weeks between DUM and measurement
INSULIN_MIN_ROWS = 3
INSULIN_MIN_FRACTION = 0.3

# Type alias to highlight that this is the worksheet as loaded
# (tuple of rows, each a tuple of str/int/float/date/datetime/None cells)
RawGrid = Tuple[Tuple[Any, ...], ...]


class CanonicalField(EnumLiteral):
    """The seven glucose measurement slots of a daily self-monitoring sheet.

    Values are the keys the recommendation service expects.
    """
    FASTING = "jejum"
    POST_BREAKFAST_1H = "posCafe1h"
    PRE_LUNCH = "preAlmoco"
    POST_LUNCH_1H = "posAlmoco1h"
    PRE_DINNER = "preJantar"
    POST_DINNER_1H = "posJantar1h"
    OVERNIGHT = "madrugada"


# Slots that are only measured by patients on insulin
INSULIN_ONLY_FIELDS = (
    CanonicalField.PRE_LUNCH,
    CanonicalField.PRE_DINNER,
    CanonicalField.OVERNIGHT,
)


class GestationalAgeSource(EnumLiteral):
    """Provenance of a gestational age estimate."""
    EXPLICIT = "explicit"  # read from a gestational age column
    CALCULATED = "calculated"  # DUM + measurement date
    PROPAGATED = "propagated"  # carried forward from an earlier row


class ImportStatus(EnumLiteral):
    PENDING = "pending"
    SUCCESS = "success"
    ERROR = "error"


class FailureCategory(Enum):
    """File-level failure groups, valued with the label shown to clinicians."""
    STRUCTURE = "Estrutura da Planilha"
    GLUCOSE_DATA = "Dados de Glicemia"
    FILE_FORMAT = "Formato do Arquivo"


class WorkbookFormat(Enum):
    """Supported input containers."""
    XLSX = "xlsx"
    CSV = "csv"


class IngestionWarning(Flag):
    """Soft problems found while parsing a file that did not stop the import.

    These are flags that can be combined using bitwise OR operations.
    Example: warnings = IngestionWarning.EARLY_GESTATIONAL_AGE | IngestionWarning.DUM_UNPARSABLE
    """
    NONE = 0
    EARLY_GESTATIONAL_AGE = auto()  # final age below 12 weeks, DUM probably wrong
    GESTATIONAL_AGE_OUT_OF_RANGE = auto()  # final age above 42 weeks, discarded
    GESTATIONAL_AGE_MISSING = auto()  # no row produced an estimate
    DUM_UNPARSABLE = auto()  # a DUM cell was found but is not a date


class ImportFailureError(ValueError):
    """Base class for file-level failures. Carries the failure category."""
    category: FailureCategory = FailureCategory.STRUCTURE


class HeaderNotFoundError(ImportFailureError):
    """Raised when no row in the scanned prefix maps a glucose column."""
    category = FailureCategory.STRUCTURE


class NoGlucoseDataError(ImportFailureError):
    """Raised when a header was found but no row carries a valid glucose value."""
    category = FailureCategory.GLUCOSE_DATA


class WorkbookFormatError(ImportFailureError):
    """Raised when the file cannot be opened or decoded as a worksheet."""
    category = FailureCategory.FILE_FORMAT


# ===== Records =====

@dataclass(frozen=True)
class GestationalAgeEstimate:
    """Gestational age in completed weeks + days, with its provenance."""
    weeks: int
    days: int
    source: GestationalAgeSource

    @classmethod
    def from_decimal_weeks(cls, decimal_weeks: float, source: GestationalAgeSource) -> "GestationalAgeEstimate":
        weeks = int(decimal_weeks)
        days = min(int((decimal_weeks - weeks) * 7 + 0.5), 6)
        return cls(weeks=weeks, days=days, source=source)

    @classmethod
    def absent(cls) -> "GestationalAgeEstimate":
        return cls(weeks=0, days=0, source=GestationalAgeSource.EXPLICIT)

    @property
    def decimal_weeks(self) -> float:
        return self.weeks + self.days / 7

    @property
    def is_known(self) -> bool:
        return self.weeks > 0 or self.days > 0


@dataclass(frozen=True)
class HeaderDetectionResult:
    """Winning header row and its column layout. score == len(column_map)."""
    header_row_index: int
    column_map: Dict[int, CanonicalField]
    gestational_age_column: Optional[int]
    date_column: Optional[int]
    score: int


@dataclass(frozen=True)
class PatientMetadata:
    """Cues scavenged from the rows above the glucose table."""
    patient_name: str
    raw_dum: Any = None
    name_from_sheet: bool = False


@dataclass(frozen=True)
class GlucoseReading:
    """One accepted data row: the glucose values it carried and its context."""
    values: Dict[CanonicalField, int]
    row_index: int = -1
    measurement_date: Optional[date] = None
    gestational_age: Optional[GestationalAgeEstimate] = None

    def get(self, slot: CanonicalField) -> Optional[int]:
        return self.values.get(slot)

    def has_insulin_fields(self) -> bool:
        return any(slot in self.values for slot in INSULIN_ONLY_FIELDS)


@dataclass(frozen=True)
class ParsedPatientRecord:
    """Normalized result of importing one spreadsheet."""
    source_file_name: str
    patient_name: str
    gestational_age: GestationalAgeEstimate
    readings: Tuple[GlucoseReading, ...]
    uses_insulin: bool
    status: ImportStatus = ImportStatus.PENDING
    error_detail: Optional[str] = None
    raw_dum: Any = None
    warnings: IngestionWarning = IngestionWarning.NONE
    recommendation: Any = field(default=None, compare=False)


@dataclass(frozen=True)
class ImportFailure:
    """Typed failure for one file of a batch."""
    file_name: str
    category: FailureCategory
    message: str


# Typed result per file
ImportResult = Union[ParsedPatientRecord, ImportFailure]


class GlycemiaParser(ABC):
    """Abstract base class for spreadsheet parsing (Stages 1-3).

    This interface handles:
    - Stage 1: Loading the raw grid from workbook bytes (format sniffing, sheet choice)
    - Stage 2: Layout detection (patient metadata and the glucose header row)
    - Stage 3: Row extraction and aggregation into a ParsedPatientRecord

    After stage 3, data is a ParsedPatientRecord and can be handed to RecordProcessor.
    """

    # ===== STAGE 1: Load Raw Grid =====

    @abstractmethod
    def load_grid(self, raw_data: Union[bytes, str]) -> RawGrid:
        """Turn file contents into the rows of the selected worksheet.

        Args:
            raw_data: Raw file contents (bytes, or already decoded CSV text)

        Returns:
            The worksheet as a RawGrid

        Raises:
            WorkbookFormatError: If the content is not a readable worksheet
        """
        pass

    # ===== STAGE 2: Layout Detection =====

    @abstractmethod
    def scan_metadata(self, grid: RawGrid, file_name: str) -> PatientMetadata:
        """Find patient name and DUM cues in the first rows of the grid.

        Args:
            grid: Loaded worksheet
            file_name: Original file name, used for the default patient name

        Returns:
            PatientMetadata
        """
        pass

    @abstractmethod
    def detect_header(self, grid: RawGrid) -> HeaderDetectionResult:
        """Pick the row that maps the most glucose columns.

        Args:
            grid: Loaded worksheet

        Returns:
            HeaderDetectionResult for the best candidate row

        Raises:
            HeaderNotFoundError: If no row maps at least one glucose column
        """
        pass

    # ===== STAGE 3: Extraction =====

    @abstractmethod
    def parse_grid(self, grid: RawGrid, file_name: str) -> ParsedPatientRecord:
        """Run layout detection and row extraction over a loaded grid.

        Args:
            grid: Loaded worksheet
            file_name: Original file name

        Returns:
            ParsedPatientRecord with status PENDING

        Raises:
            HeaderNotFoundError: If the header row cannot be found
            NoGlucoseDataError: If no data row carries a valid glucose value
        """
        pass
