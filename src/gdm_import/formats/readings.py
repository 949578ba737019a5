"""Schema of the readings table exported from a parsed spreadsheet.

Service columns: where the row came from and its gestational age context.
Data columns: one nullable integer column per glucose measurement slot.
"""

import polars as pl

from gdm_import.interface.schema import TableSchemaDefinition
from gdm_import.interface.gdm_interface import CanonicalField, GestationalAgeSource


GLUCOSE_CONSTRAINTS = {"minimum": 20, "maximum": 600}

_SLOT_DESCRIPTIONS = {
    CanonicalField.FASTING: "Fasting glucose",
    CanonicalField.POST_BREAKFAST_1H: "Glucose 1h after breakfast",
    CanonicalField.PRE_LUNCH: "Glucose before lunch",
    CanonicalField.POST_LUNCH_1H: "Glucose 1h after lunch",
    CanonicalField.PRE_DINNER: "Glucose before dinner",
    CanonicalField.POST_DINNER_1H: "Glucose 1h after dinner",
    CanonicalField.OVERNIGHT: "Overnight (3am) glucose",
}

READINGS_SCHEMA = TableSchemaDefinition(
    service_columns=[
        {
            "name": "row_index",
            "dtype": pl.Int64,
            "description": "0-indexed worksheet row the reading was taken from",
        },
        {
            "name": "measurement_date",
            "dtype": pl.Date,
            "description": "Measurement date, when the date column parsed",
        },
        {
            "name": "gestational_age",
            "dtype": pl.Float64,
            "description": "Gestational age of the row in decimal weeks",
            "unit": "weeks",
        },
        {
            "name": "gestational_age_source",
            "dtype": pl.Utf8,
            "description": "How the row's gestational age was obtained",
            "constraints": {"enum": [source.value for source in GestationalAgeSource]},
        },
    ],
    data_columns=[
        {
            "name": slot.value,
            "dtype": pl.Int64,
            "description": description,
            "unit": "mg/dL",
            "constraints": GLUCOSE_CONSTRAINTS,
        }
        for slot, description in _SLOT_DESCRIPTIONS.items()
    ],
    primary_key=["row_index"],
)
