from typing import List, Tuple

from gdm_import.interface.gdm_interface import CanonicalField


# Ordered (pattern, field) pairs matched by substring against normalized headers.
# Order is significant: first match wins, so specific spellings must come before
# the generic "almoco" / "jantar" fallbacks they contain.
COLUMN_PATTERNS: List[Tuple[str, CanonicalField]] = [
    ("jejum", CanonicalField.FASTING),
    ("cafe manha", CanonicalField.POST_BREAKFAST_1H),
    ("cafe da manha", CanonicalField.POST_BREAKFAST_1H),
    ("pos cafe", CanonicalField.POST_BREAKFAST_1H),
    ("pos-cafe", CanonicalField.POST_BREAKFAST_1H),
    ("poscafe", CanonicalField.POST_BREAKFAST_1H),
    ("1h cafe", CanonicalField.POST_BREAKFAST_1H),
    ("depois cafe", CanonicalField.POST_BREAKFAST_1H),
    ("cafe pos", CanonicalField.POST_BREAKFAST_1H),
    ("antes do almoco", CanonicalField.PRE_LUNCH),
    ("pre almoco", CanonicalField.PRE_LUNCH),
    ("pre-almoco", CanonicalField.PRE_LUNCH),
    ("prealmoco", CanonicalField.PRE_LUNCH),
    ("almoco pre", CanonicalField.PRE_LUNCH),
    ("pos almoco", CanonicalField.POST_LUNCH_1H),
    ("pos-almoco", CanonicalField.POST_LUNCH_1H),
    ("posalmoco", CanonicalField.POST_LUNCH_1H),
    ("1h almoco", CanonicalField.POST_LUNCH_1H),
    ("depois almoco", CanonicalField.POST_LUNCH_1H),
    ("almoco", CanonicalField.POST_LUNCH_1H),
    ("antes do jantar", CanonicalField.PRE_DINNER),
    ("pre jantar", CanonicalField.PRE_DINNER),
    ("pre-jantar", CanonicalField.PRE_DINNER),
    ("prejantar", CanonicalField.PRE_DINNER),
    ("jantar pre", CanonicalField.PRE_DINNER),
    ("pos jantar", CanonicalField.POST_DINNER_1H),
    ("pos-jantar", CanonicalField.POST_DINNER_1H),
    ("posjantar", CanonicalField.POST_DINNER_1H),
    ("1h jantar", CanonicalField.POST_DINNER_1H),
    ("depois jantar", CanonicalField.POST_DINNER_1H),
    ("jantar", CanonicalField.POST_DINNER_1H),
    ("madrugada", CanonicalField.OVERNIGHT),
    ("3h da manha", CanonicalField.OVERNIGHT),
    ("3h manha", CanonicalField.OVERNIGHT),
    ("3h", CanonicalField.OVERNIGHT),
    ("3 horas", CanonicalField.OVERNIGHT),
]

# Gestational age column cues (normalized header text)
GESTATIONAL_AGE_SUBSTRINGS = ("idade gestacional", "semana gestacional", "semanas")
GESTATIONAL_AGE_EXACT = ("idade gest",)
GESTATIONAL_AGE_TOKEN = "ig"

# Measurement date column cues
DATE_HEADER_EXACT = ("data", "dia", "date")
DATE_HEADER_SUBSTRINGS = ("data da", "data do")

# Metadata cues above the table
PATIENT_NAME_CUES = ("nome", "paciente")
DUM_TOKEN = "dum"
MIN_PATIENT_NAME_LENGTH = 3

# Preferred worksheet name fragments (lower-cased)
SHEET_NAME_HINTS = ("controle", "glicemi")

# Container sniffing
XLSX_MAGIC = b"PK\x03\x04"
OLE2_MAGIC = b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1"  # legacy .xls, not supported
CSV_SEPARATORS = (";", ",", "\t")
