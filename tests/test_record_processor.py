"""Tests for RecordProcessor: payloads, readings export, batch import, recommendations."""

from datetime import date

import polars as pl
import pytest

from gdm_import.record_processor import RecordProcessor, BatchImportResult
from gdm_import.sheet_parser import SpreadsheetParser
from gdm_import.formats.readings import READINGS_SCHEMA
from gdm_import.interface.gdm_interface import (
    CanonicalField,
    FailureCategory,
    GestationalAgeEstimate,
    GestationalAgeSource,
    GlucoseReading,
    ImportFailure,
    ImportStatus,
    IngestionWarning,
    ParsedPatientRecord,
)

from conftest import HEADER, daily_rows, workbook_bytes


@pytest.fixture
def sample_record() -> ParsedPatientRecord:
    estimate = GestationalAgeEstimate(weeks=24, days=3, source=GestationalAgeSource.CALCULATED)
    return ParsedPatientRecord(
        source_file_name="maria.xlsx",
        patient_name="Maria Souza",
        gestational_age=estimate,
        readings=(
            GlucoseReading(
                values={CanonicalField.FASTING: 92, CanonicalField.POST_BREAKFAST_1H: 130},
                row_index=4,
                measurement_date=date(2025, 4, 25),
                gestational_age=estimate,
            ),
            GlucoseReading(values={CanonicalField.PRE_LUNCH: 101}, row_index=5),
            GlucoseReading(values={}, row_index=6),
        ),
        uses_insulin=False,
    )


@pytest.fixture
def batch_dir(tmp_path, scenario_dum_xlsx, scenario_explicit_xlsx, legacy_xls_bytes):
    (tmp_path / "a_maria.xlsx").write_bytes(scenario_dum_xlsx)
    (tmp_path / "b_antigo.xlsx").write_bytes(legacy_xls_bytes)
    (tmp_path / "c_joana.xlsx").write_bytes(scenario_explicit_xlsx)
    (tmp_path / "d_vazia.xlsx").write_bytes(workbook_bytes([["Relatório"], ["nada aqui"]]))
    (tmp_path / "e_precoce.xlsx").write_bytes(workbook_bytes([HEADER, *daily_rows(2, ig=[9, 9])]))
    return tmp_path


class TestPayload:

    def test_payload_fields(self, sample_record):
        payload = RecordProcessor.to_payload(sample_record)
        assert payload["patientName"] == "Maria Souza"
        assert payload["weight"] is None
        assert payload["gestationalWeeks"] == 24
        assert payload["gestationalDays"] == 3
        assert payload["gestationalAgeSource"] == "calculated"
        assert payload["usesInsulin"] is False
        assert payload["insulinRegimens"] == []
        assert payload["dietAdherence"] == "regular"

    def test_readings_without_values_are_dropped(self, sample_record):
        readings = RecordProcessor.to_payload(sample_record)["glucoseReadings"]
        assert len(readings) == 2
        assert readings[0] == {
            "jejum": 92,
            "posCafe1h": 130,
            "measurementDate": "2025-04-25",
            "gestationalAge": round(24 + 3 / 7, 4),
        }
        assert readings[1] == {"preAlmoco": 101}


class TestDataFrame:

    def test_schema(self, sample_record):
        df = RecordProcessor.to_dataframe(sample_record)
        assert df.columns == READINGS_SCHEMA.get_column_names()
        assert df.schema["measurement_date"] == pl.Date
        assert df.schema["jejum"] == pl.Int64
        assert len(df) == 3

    def test_values(self, sample_record):
        df = RecordProcessor.to_dataframe(sample_record)
        first = df.row(0, named=True)
        assert first["row_index"] == 4
        assert first["measurement_date"] == date(2025, 4, 25)
        assert first["jejum"] == 92
        assert first["preAlmoco"] is None
        assert first["gestational_age_source"] == "calculated"
        assert df["gestational_age"].null_count() == 2

    def test_data_only(self, sample_record):
        df = RecordProcessor.to_dataframe(sample_record, data_only=True)
        assert df.columns == [slot.value for slot in CanonicalField]

    def test_empty_record(self, sample_record):
        empty = ParsedPatientRecord(
            source_file_name="x.xlsx",
            patient_name="X",
            gestational_age=GestationalAgeEstimate.absent(),
            readings=(),
            uses_insulin=False,
        )
        df = RecordProcessor.to_dataframe(empty)
        assert len(df) == 0
        assert df.columns == READINGS_SCHEMA.get_column_names()


class TestBatchImport:

    def test_results_in_input_order(self, batch_dir):
        paths = sorted(batch_dir.glob("*.xlsx"))
        result = RecordProcessor().import_batch(paths, max_workers=3)

        assert isinstance(result, BatchImportResult)
        assert len(result.results) == len(paths)
        names = [
            r.source_file_name if isinstance(r, ParsedPatientRecord) else r.file_name
            for r in result.results
        ]
        assert names == [p.name for p in paths]

    def test_failures_are_isolated(self, batch_dir):
        result = RecordProcessor().import_batch(sorted(batch_dir.glob("*.xlsx")))
        assert [r.patient_name for r in result.records] == ["Maria Aparecida Souza", "Joana Lima", "E Precoce"]
        assert all(isinstance(f, ImportFailure) for f in result.failures)
        assert len(result.failures) == 2

    def test_grouped_failures(self, batch_dir):
        paths = sorted(batch_dir.glob("*.xlsx")) + [batch_dir / "nao_existe.xlsx"]
        grouped = RecordProcessor().import_batch(paths).grouped_failures()

        assert set(grouped) == {FailureCategory.FILE_FORMAT, FailureCategory.STRUCTURE}
        assert [f.file_name for f in grouped[FailureCategory.FILE_FORMAT]] == ["b_antigo.xlsx", "nao_existe.xlsx"]
        assert [f.file_name for f in grouped[FailureCategory.STRUCTURE]] == ["d_vazia.xlsx"]

    def test_warnings_are_collected(self, batch_dir):
        processor = RecordProcessor()
        assert not processor.has_warnings()
        processor.import_batch(sorted(batch_dir.glob("*.xlsx")))
        assert processor.has_warnings()
        assert any(IngestionWarning.EARLY_GESTATIONAL_AGE in w for w in processor.get_warnings())

    def test_parser_settings_are_used(self, tmp_path):
        path = tmp_path / "alto.xlsx"
        path.write_bytes(workbook_bytes([HEADER, [None, None, 650, None, None, None, None, None, None]]))

        default = RecordProcessor().import_batch([path])
        assert default.failures[0].category == FailureCategory.GLUCOSE_DATA

        relaxed = RecordProcessor(SpreadsheetParser(glucose_max=700)).import_batch([path])
        assert relaxed.records[0].readings[0].get(CanonicalField.FASTING) == 650

    def test_damaged_workbook_does_not_abort_batch(self, tmp_path, damaged_xlsx_bytes, scenario_dum_xlsx):
        (tmp_path / "a_danificada.xlsx").write_bytes(damaged_xlsx_bytes)
        (tmp_path / "b_maria.xlsx").write_bytes(scenario_dum_xlsx)

        result = RecordProcessor().import_batch(sorted(tmp_path.glob("*.xlsx")), max_workers=2)

        assert len(result.results) == 2
        assert result.failures[0].file_name == "a_danificada.xlsx"
        assert result.failures[0].category == FailureCategory.FILE_FORMAT
        assert [r.source_file_name for r in result.records] == ["b_maria.xlsx"]

    def test_empty_batch(self):
        result = RecordProcessor().import_batch([])
        assert result.results == ()
        assert result.grouped_failures() == {}


class TestRecommendation:

    def test_success_creates_new_record(self, sample_record):
        received = []

        def recommend(payload):
            received.append(payload)
            return {"recommendation": "manter dieta"}

        updated = RecordProcessor.apply_recommendation(sample_record, recommend)

        assert updated.status == ImportStatus.SUCCESS
        assert updated.recommendation == {"recommendation": "manter dieta"}
        assert received[0] == RecordProcessor.to_payload(sample_record)
        assert sample_record.status == ImportStatus.PENDING
        assert sample_record.recommendation is None

    def test_error_keeps_message(self, sample_record):
        def recommend(payload):
            raise RuntimeError("service unavailable")

        updated = RecordProcessor.apply_recommendation(sample_record, recommend)

        assert updated.status == ImportStatus.ERROR
        assert updated.error_detail == "service unavailable"
        assert updated.recommendation is None
        assert sample_record.status == ImportStatus.PENDING
