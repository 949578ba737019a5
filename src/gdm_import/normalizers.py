"""Cell-level normalizers for glycemia spreadsheets.

All functions here are pure: they take one raw cell (whatever openpyxl or the
CSV reader produced) and return a normalized value, or a "nothing" marker
(None / 0.0). They never raise on bad input, since a bad cell only means the
field is absent.

Multi-format values (dates, gestational age) are resolved by trying an ordered
tuple of small parsers; the first one that returns something wins.
"""

import math
import re
import unicodedata
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Optional, Tuple

from gdm_import.interface.gdm_interface import (
    CanonicalField,
    GLUCOSE_MIN_MG_DL,
    GLUCOSE_MAX_MG_DL,
    MAX_DUM_DAYS,
)
from gdm_import.formats.spreadsheet import COLUMN_PATTERNS


SERIAL_EPOCH = date(1899, 12, 30)  # spreadsheet day 0, includes the 1900 leap-year bug
SERIAL_MIN = 1000
SERIAL_MAX = 100000
TWO_DIGIT_YEAR_PIVOT = 50  # 00-50 -> 2000s, 51-99 -> 1900s

MIN_GESTATIONAL_WEEKS = 1
MAX_PARSED_GESTATIONAL_WEEKS = 45  # exclusive

EXOTIC_SPACES = re.compile(r"[\u00A0\u2007\u202F\u2060]")
WHITESPACE = re.compile(r"\s+")
_WORD = re.compile(r"[a-z0-9]+")

_GLUCOSE_TOKEN = re.compile(r"^\d+[,.]?\d*")

_ISO_TIMESTAMP = re.compile(r"^\d{4}-\d{2}-\d{2}T")
_VERBOSE_DATE = re.compile(r"^[A-Za-z]{3}\s+([A-Za-z]{3})\s+(\d{1,2})\s+(\d{4})")
_NUMERIC_STRING = re.compile(r"^\d+(?:\.\d+)?$")
_DMY_LONG = re.compile(r"^(\d{1,2})[/\-.](\d{1,2})[/\-.](\d{4})$")
_DMY_SHORT = re.compile(r"^(\d{1,2})[/\-.](\d{1,2})[/\-.](\d{2})$")
_YMD = re.compile(r"^(\d{4})[/\-](\d{1,2})[/\-](\d{1,2})$")

_AGE_WEEKS_PLUS_DAYS = re.compile(r"(\d+)\s*[+/]\s*(\d+)")
_AGE_WEEKS_COMMA_DAY = re.compile(r"^(\d+)[,.](\d)$")
_AGE_WEEKS_ONLY = re.compile(r"^(\d+)\s*(?:semanas?|sem|s)?$", re.IGNORECASE)
_AGE_LOOSE_NUMBER = re.compile(r"(\d+[,.]?\d*)")

_MONTH_ABBREVIATIONS = {
    "jan": 1, "feb": 2, "mar": 3, "apr": 4, "may": 5, "jun": 6,
    "jul": 7, "aug": 8, "sep": 9, "oct": 10, "nov": 11, "dec": 12,
}


def is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def is_number(value: Any) -> bool:
    # bool is an int subclass; a TRUE/FALSE cell is never a measurement
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


# ===== Header Normalizer & Column Matcher =====

def normalize_header(text: Any) -> str:
    """Lower-case, strip accents, collapse whitespace, trim.

    >>> normalize_header("  Pós   Almoço ")
    'pos almoco'
    """
    decomposed = unicodedata.normalize("NFD", str(text).lower())
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return WHITESPACE.sub(" ", stripped).strip()


def header_tokens(text: Any) -> Tuple[str, ...]:
    """Alphanumeric words of a normalized header ("IG:" -> ("ig",))."""
    return tuple(_WORD.findall(normalize_header(text)))


def match_column(text: Any) -> Optional[CanonicalField]:
    """Map a free-text header cell to a glucose slot, or None."""
    normalized = normalize_header(text)
    if not normalized:
        return None
    for pattern, slot in COLUMN_PATTERNS:
        if pattern in normalized:
            return slot
    return None


# ===== Glucose Value Normalizer =====

def parse_glucose_value(
    value: Any,
    minimum: float = GLUCOSE_MIN_MG_DL,
    maximum: float = GLUCOSE_MAX_MG_DL,
) -> Optional[int]:
    """Parse a glucose cell to integer mg/dL.

    Accepts numbers and strings such as "110", "95,5" or "110 mg/dL".
    Values outside [minimum, maximum] are clinically impossible and dropped.

    Returns:
        Rounded mg/dL value, or None when the cell holds no usable reading
    """
    if is_blank(value) or value == "-" or isinstance(value, bool):
        return None

    if is_number(value):
        number = float(value)
    else:
        text = WHITESPACE.sub(" ", EXOTIC_SPACES.sub(" ", str(value))).strip()
        match = _GLUCOSE_TOKEN.match(text)
        if not match:
            return None
        try:
            number = float(match.group(0).replace(",", "."))
        except ValueError:
            return None

    if math.isnan(number) or number < minimum or number > maximum:
        return None
    return _round_half_up(number)


# ===== Date Normalizer =====

def _safe_date(year: int, month: int, day: int) -> Optional[date]:
    # datetime.date refuses out-of-range parts instead of rolling over
    try:
        return date(year, month, day)
    except ValueError:
        return None


def _date_from_native(value: Any) -> Optional[date]:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return None


def _date_from_iso_timestamp(value: Any) -> Optional[date]:
    if not isinstance(value, str) or not _ISO_TIMESTAMP.match(value.strip()):
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text).date()
    except ValueError:
        return None


def _date_from_verbose_string(value: Any) -> Optional[date]:
    # "Fri Apr 25 2025 00:00:28 GMT-0300 (Horário Padrão de Brasília)"
    if not isinstance(value, str):
        return None
    match = _VERBOSE_DATE.match(value.strip())
    if not match:
        return None
    month = _MONTH_ABBREVIATIONS.get(match.group(1).lower())
    if month is None:
        return None
    return _safe_date(int(match.group(3)), month, int(match.group(2)))


def _date_from_serial(value: Any) -> Optional[date]:
    if is_number(value):
        serial = float(value)
    elif isinstance(value, str) and _NUMERIC_STRING.match(value.strip()):
        serial = float(value.strip())
    else:
        return None
    if math.isnan(serial) or not SERIAL_MIN < serial < SERIAL_MAX:
        return None
    return SERIAL_EPOCH + timedelta(days=math.floor(serial))


def _date_from_day_month_long_year(value: Any) -> Optional[date]:
    match = _DMY_LONG.match(str(value).strip())
    if not match:
        return None
    day, month, year = (int(part) for part in match.groups())
    return _safe_date(year, month, day)


def _date_from_day_month_short_year(value: Any) -> Optional[date]:
    match = _DMY_SHORT.match(str(value).strip())
    if not match:
        return None
    day, month, short_year = (int(part) for part in match.groups())
    year = 2000 + short_year if short_year <= TWO_DIGIT_YEAR_PIVOT else 1900 + short_year
    return _safe_date(year, month, day)


def _date_from_year_month_day(value: Any) -> Optional[date]:
    match = _YMD.match(str(value).strip())
    if not match:
        return None
    year, month, day = (int(part) for part in match.groups())
    return _safe_date(year, month, day)


DATE_PARSERS: Tuple[Callable[[Any], Optional[date]], ...] = (
    _date_from_native,
    _date_from_iso_timestamp,
    _date_from_verbose_string,
    _date_from_serial,
    _date_from_day_month_long_year,
    _date_from_day_month_short_year,
    _date_from_year_month_day,
)


def parse_date(value: Any) -> Optional[date]:
    """Parse a date cell of unknown type. None means "no date", not an error."""
    if is_blank(value) or isinstance(value, bool):
        return None
    for parser in DATE_PARSERS:
        parsed = parser(value)
        if parsed is not None:
            return parsed
    return None


# ===== Gestational-Age Normalizer =====

def _weeks_and_days(weeks: int, days: int) -> Optional[float]:
    if MIN_GESTATIONAL_WEEKS <= weeks < MAX_PARSED_GESTATIONAL_WEEKS and 0 <= days <= 6:
        return weeks + days / 7
    return None


def _fraction_as_days(number: float) -> Optional[float]:
    # Brazilian clinical notation: 21.2 is 21 weeks and 2 days, not 21.2 weeks
    if math.isnan(number) or not 0 < number < MAX_PARSED_GESTATIONAL_WEEKS:
        return None
    weeks = math.floor(number)
    fraction = number - weeks
    days = _round_half_up(fraction * 10) if fraction > 0 else 0
    return _weeks_and_days(weeks, days)


def _age_from_number(value: Any) -> Optional[float]:
    if not is_number(value):
        return None
    return _fraction_as_days(float(value))


def _age_from_weeks_plus_days(value: Any) -> Optional[float]:
    match = _AGE_WEEKS_PLUS_DAYS.search(str(value))
    if not match:
        return None
    return _weeks_and_days(int(match.group(1)), int(match.group(2)))


def _age_from_weeks_comma_day(value: Any) -> Optional[float]:
    match = _AGE_WEEKS_COMMA_DAY.match(str(value).strip())
    if not match:
        return None
    return _weeks_and_days(int(match.group(1)), int(match.group(2)))


def _age_from_weeks_only(value: Any) -> Optional[float]:
    match = _AGE_WEEKS_ONLY.match(str(value).strip())
    if not match:
        return None
    return _weeks_and_days(int(match.group(1)), 0)


def _age_from_loose_number(value: Any) -> Optional[float]:
    match = _AGE_LOOSE_NUMBER.search(str(value))
    if not match:
        return None
    try:
        number = float(match.group(1).replace(",", "."))
    except ValueError:
        return None
    return _fraction_as_days(number)


GESTATIONAL_AGE_PARSERS: Tuple[Callable[[Any], Optional[float]], ...] = (
    _age_from_number,
    _age_from_weeks_plus_days,
    _age_from_weeks_comma_day,
    _age_from_weeks_only,
    _age_from_loose_number,
)


def parse_gestational_age(value: Any) -> float:
    """Parse a gestational age cell to decimal weeks.

    Accepted shapes: 21.2 (number, fraction = days), "21+2", "21/2", "21,2",
    "21 semanas", and any text holding such a number.

    Returns:
        Decimal weeks (21 weeks 2 days -> 21.2857), or 0.0 when absent/invalid
    """
    if is_blank(value) or isinstance(value, bool):
        return 0.0
    if is_number(value):
        # a numeric cell is decided by the numeric reading alone
        return _age_from_number(value) or 0.0
    for parser in GESTATIONAL_AGE_PARSERS:
        parsed = parser(value)
        if parsed is not None:
            return parsed
    return 0.0


def gestational_age_from_dum(
    measurement_date: date,
    dum_date: date,
    max_days: int = MAX_DUM_DAYS,
) -> float:
    """Gestational age in decimal weeks between DUM and a measurement date.

    Returns 0.0 when the measurement precedes the DUM or is more than
    max_days after it; both mean the DUM cell is wrong, not that the age is.
    """
    days = (measurement_date - dum_date).days
    if days < 0 or days > max_days:
        return 0.0
    return days / 7


# ===== Patient name =====

_TRAILING_COUNTER = re.compile(r"_\d+$")


def patient_name_from_file_name(file_name: str) -> str:
    """Derive a display name from an upload name.

    >>> patient_name_from_file_name("__MARIA_DA_SILVA_2.xlsx")
    'Maria Da Silva'
    """
    stem = Path(file_name).name
    if "." in stem:
        stem = stem.rsplit(".", 1)[0]
    stem = _TRAILING_COUNTER.sub("", stem.lstrip("_"))
    words = stem.replace("_", " ").split()
    return " ".join(word[:1].upper() + word[1:].lower() for word in words)
