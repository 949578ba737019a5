"""Base Schema Infrastructure.

This module defines the base types and the schema builder used to describe
the readings table exported from a parsed spreadsheet.
"""

import polars as pl
from enum import Enum
from typing import Dict, Any, List, Union, Type, TypedDict, NotRequired


class EnumLiteral(str, Enum):
    """
    A general base class for string-based enums that behave like literals.
    Ensures compatibility with str comparisons and retains enum benefits.
    """
    def __new__(cls, value, *args, **kwargs):
        obj = str.__new__(cls, value)
        obj._value_ = value
        return obj

    def __str__(self):
        return self.value

    def __eq__(self, other):
        if isinstance(other, str):
            return self.value == other
        return super().__eq__(other)

    def __hash__(self):
        return hash(self.value)

    def __repr__(self):
        return self.value


class ColumnSchema(TypedDict):
    """Schema definition for a single column."""
    name: str
    dtype: Union[Type[pl.DataType], pl.DataType]
    description: str
    unit: NotRequired[str]
    constraints: NotRequired[Dict[str, Any]]


class TableSchemaDefinition:
    """Schema definition for an exported table.

    Service columns describe where a row came from (row index, date,
    gestational age); data columns hold the measurements.
    """

    def __init__(
        self,
        service_columns: List[ColumnSchema],
        data_columns: List[ColumnSchema],
        primary_key: List[str] | None = None
    ) -> None:
        self.service_columns = service_columns
        self.data_columns = data_columns
        self.primary_key = primary_key

    def get_polars_schema(self, data_only: bool = False) -> Dict[str, pl.DataType]:
        """Get Polars dtype schema dictionary.

        Args:
            data_only: If True, return only data columns (excludes service columns)
        """
        columns = self.data_columns if data_only else self.service_columns + self.data_columns
        return {col["name"]: col["dtype"] for col in columns}

    def get_column_names(self, data_only: bool = False) -> List[str]:
        columns = self.data_columns if data_only else self.service_columns + self.data_columns
        return [col["name"] for col in columns]

    def to_frictionless_schema(self, primary_key: List[str] | None = None) -> Dict[str, Any]:
        """Convert to Frictionless Data Table Schema format.

        Args:
            primary_key: Optional list of field names that form the primary key.
                        If None, uses the schema's primary_key (if set).

        Returns:
            Dictionary in Frictionless Data Table Schema format
        """
        fields = []

        for col in self.service_columns + self.data_columns:
            field = {
                "name": col["name"],
                "type": self._polars_to_frictionless_type(col["dtype"]),
                "description": col["description"],
            }
            if col.get("unit"):
                field["unit"] = col["unit"]
            if col.get("constraints"):
                field["constraints"] = col["constraints"]
            fields.append(field)

        schema = {"fields": fields}

        effective_primary_key = primary_key if primary_key is not None else self.primary_key
        if effective_primary_key:
            schema["primaryKey"] = effective_primary_key

        return schema

    @staticmethod
    def _polars_to_frictionless_type(dtype: pl.DataType) -> str:
        # isinstance for parameterized types, equality for bare classes
        if isinstance(dtype, pl.Datetime) or dtype == pl.Datetime:
            return "datetime"
        elif isinstance(dtype, pl.Date) or dtype == pl.Date:
            return "date"
        elif dtype == pl.Int64 or dtype == pl.Int32:
            return "integer"
        elif dtype == pl.Float64 or dtype == pl.Float32:
            return "number"
        elif dtype == pl.Utf8 or dtype == pl.String:
            return "string"
        elif dtype == pl.Boolean:
            return "boolean"
        else:
            return "string"

    def export_to_json(self, output_path: str, primary_key: List[str] | None = None) -> None:
        """Export schema to JSON file in Frictionless Data Table Schema format."""
        import json
        from pathlib import Path

        schema_file = Path(output_path)
        with open(schema_file, "w") as f:
            json.dump(self.to_frictionless_schema(primary_key=primary_key), f, indent=2)
            f.write("\n")
