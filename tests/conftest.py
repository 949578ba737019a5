"""Shared fixtures: synthetic glycemia spreadsheets built in memory."""

from datetime import date, timedelta
from io import BytesIO
from typing import Any, List, Optional, Sequence
from zipfile import ZipFile

import pytest
from openpyxl import Workbook


HEADER = ["Data", "IG", "Jejum", "Pós Café", "Pré Almoço", "Pós Almoço", "Pré Jantar", "Pós Jantar", "Madrugada"]
DUM = date(2024, 11, 1)
FIRST_DAY = date(2025, 4, 1)  # 151 days after DUM, 21 weeks 4 days


def workbook_bytes(rows: Sequence[Sequence[Any]], sheet_title: str = "Controle Glicêmico",
                   extra_sheets: Optional[List[str]] = None) -> bytes:
    """Write rows to an in-memory .xlsx workbook and return its bytes.

    Sheets listed in extra_sheets are created before the data sheet and hold
    a single unrelated row.
    """
    wb = Workbook()
    first = wb.active
    if extra_sheets:
        first.title = extra_sheets[0]
        first.append(["Resumo", "sem dados"])
        for title in extra_sheets[1:]:
            wb.create_sheet(title).append(["Resumo", "sem dados"])
        ws = wb.create_sheet(sheet_title)
    else:
        ws = first
        ws.title = sheet_title

    for row in rows:
        ws.append(list(row))

    buffer = BytesIO()
    wb.save(buffer)
    return buffer.getvalue()


def daily_rows(days: int, with_dates: bool = True, ig=None, start: date = FIRST_DAY) -> List[list]:
    """Data rows with fasting, post-breakfast and post-lunch values only."""
    rows = []
    for i in range(days):
        rows.append([
            start + timedelta(days=i) if with_dates else None,
            ig[i] if ig is not None else None,
            90 + i, 130 + i, None, 125 + i, None, 128 + i, None,
        ])
    return rows


@pytest.fixture
def scenario_dum_rows() -> List[list]:
    """Patient name and DUM above the header, five dated rows, empty IG column."""
    return [
        ["Nome:", "Maria Aparecida Souza"],
        ["DUM:", DUM],
        [],
        HEADER,
        *daily_rows(5),
    ]


@pytest.fixture
def scenario_explicit_rows() -> List[list]:
    """No DUM; every row has its own gestational age in clinical notation."""
    return [
        ["Paciente", "Joana Lima"],
        HEADER,
        *daily_rows(5, ig=[21.2, "21+3", "21/4", "21,5", 21.6]),
    ]


@pytest.fixture
def scenario_dum_xlsx(scenario_dum_rows) -> bytes:
    return workbook_bytes(scenario_dum_rows)


@pytest.fixture
def scenario_explicit_xlsx(scenario_explicit_rows) -> bytes:
    return workbook_bytes(scenario_explicit_rows)


@pytest.fixture
def legacy_xls_bytes() -> bytes:
    return b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1" + b"\x00" * 512


@pytest.fixture
def damaged_xlsx_bytes(scenario_dum_xlsx) -> bytes:
    """A valid zip container whose worksheet XML is cut off mid-tag."""
    source = ZipFile(BytesIO(scenario_dum_xlsx))
    buffer = BytesIO()
    with ZipFile(buffer, "w") as target:
        for item in source.infolist():
            content = source.read(item.filename)
            if item.filename == "xl/worksheets/sheet1.xml":
                content = content[:60]
            target.writestr(item, content)
    return buffer.getvalue()
