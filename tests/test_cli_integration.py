"""Integration tests for the GDM CLI tool.

Tests the CLI by actually invoking it via subprocess, simulating real usage.
"""

import json
import os
import subprocess
import sys
from pathlib import Path
from typing import List

import polars as pl
import pytest

from conftest import HEADER, workbook_bytes

PROJECT_ROOT = Path(__file__).parent.parent


def run_cli_command(args: List[str]) -> subprocess.CompletedProcess:
    """Run CLI command via subprocess.

    Args:
        args: Command arguments (without 'gdm-cli')

    Returns:
        CompletedProcess with stdout/stderr/returncode
    """
    # Run as module to avoid installation requirement
    env = dict(os.environ)
    env["PYTHONPATH"] = os.pathsep.join(filter(None, [str(PROJECT_ROOT / "src"), env.get("PYTHONPATH")]))
    env["COLUMNS"] = "200"
    cmd = [sys.executable, "-m", "gdm_import.gdm_cli"] + args
    return subprocess.run(cmd, capture_output=True, text=True, cwd=PROJECT_ROOT, env=env)


@pytest.fixture
def workbook_file(tmp_path, scenario_dum_xlsx) -> Path:
    path = tmp_path / "maria.xlsx"
    path.write_bytes(scenario_dum_xlsx)
    return path


@pytest.fixture
def batch_folder(tmp_path, scenario_dum_xlsx, scenario_explicit_xlsx, legacy_xls_bytes) -> Path:
    folder = tmp_path / "planilhas"
    folder.mkdir()
    (folder / "maria.xlsx").write_bytes(scenario_dum_xlsx)
    (folder / "joana.xlsx").write_bytes(scenario_explicit_xlsx)
    (folder / "antigo.xlsx").write_bytes(legacy_xls_bytes)
    return folder


class TestCLIBasics:

    def test_help(self):
        result = run_cli_command(["--help"])
        assert result.returncode == 0
        for command in ("detect", "parse", "batch", "schema"):
            assert command in result.stdout

    def test_missing_file(self, tmp_path):
        result = run_cli_command(["parse", str(tmp_path / "nao_existe.xlsx")])
        assert result.returncode == 1
        assert "File not found" in result.stdout


class TestDetectCommand:

    def test_detect_layout(self, workbook_file):
        result = run_cli_command(["detect", str(workbook_file)])
        assert result.returncode == 0, result.stdout + result.stderr
        assert "xlsx" in result.stdout
        assert "Maria Aparecida Souza" in result.stdout
        for slot in ("jejum", "posCafe1h", "madrugada"):
            assert slot in result.stdout

    def test_detect_without_header(self, tmp_path):
        path = tmp_path / "sem_cabecalho.xlsx"
        path.write_bytes(workbook_bytes([["Relatório"], ["nada"]]))
        result = run_cli_command(["detect", str(path)])
        assert result.returncode == 1
        assert "Estrutura da Planilha" in result.stdout


class TestParseCommand:

    def test_parse(self, workbook_file):
        result = run_cli_command(["parse", str(workbook_file), "--preview"])
        assert result.returncode == 0, result.stdout + result.stderr
        assert "Successfully parsed 5 rows" in result.stdout
        assert "22w 1d (calculated)" in result.stdout

    def test_parse_outputs(self, workbook_file, tmp_path):
        csv_path = tmp_path / "leituras.csv"
        payload_path = tmp_path / "payload.json"
        result = run_cli_command([
            "parse", str(workbook_file),
            "--output", str(csv_path),
            "--payload", str(payload_path),
        ])
        assert result.returncode == 0, result.stdout + result.stderr

        df = pl.read_csv(csv_path)
        assert len(df) == 5
        assert "jejum" in df.columns

        payload = json.loads(payload_path.read_text(encoding="utf-8"))
        assert payload["patientName"] == "Maria Aparecida Souza"
        assert payload["gestationalWeeks"] == 22
        assert len(payload["glucoseReadings"]) == 5

    def test_parse_with_glucose_bounds(self, tmp_path):
        path = tmp_path / "alto.xlsx"
        path.write_bytes(workbook_bytes([HEADER, [None, None, 650, None, None, None, None, None, None]]))

        rejected = run_cli_command(["parse", str(path)])
        assert rejected.returncode == 1
        assert "Dados de Glicemia" in rejected.stdout

        accepted = run_cli_command(["parse", str(path), "--max-glucose", "700"])
        assert accepted.returncode == 0, accepted.stdout + accepted.stderr

    def test_parse_legacy_format(self, tmp_path, legacy_xls_bytes):
        path = tmp_path / "antigo.xls"
        path.write_bytes(legacy_xls_bytes)
        result = run_cli_command(["parse", str(path)])
        assert result.returncode == 1
        assert "Formato do Arquivo" in result.stdout

    def test_parse_damaged_workbook(self, tmp_path, damaged_xlsx_bytes):
        path = tmp_path / "danificada.xlsx"
        path.write_bytes(damaged_xlsx_bytes)
        result = run_cli_command(["parse", str(path)])
        assert result.returncode == 1
        assert "Formato do Arquivo" in result.stdout
        assert "Traceback" not in result.stderr

    def test_verbose_logging(self, workbook_file):
        result = run_cli_command(["--verbose", "parse", str(workbook_file)])
        assert result.returncode == 0, result.stdout + result.stderr
        assert "Header at row" in result.stderr


class TestBatchCommand:

    def test_batch(self, batch_folder, tmp_path):
        output = tmp_path / "payloads.json"
        result = run_cli_command(["batch", str(batch_folder), "--workers", "2", "--output", str(output)])
        assert result.returncode == 0, result.stdout + result.stderr
        assert "Success: 2" in result.stdout
        assert "Failed: 1" in result.stdout
        assert "Formato do Arquivo" in result.stdout
        assert "antigo.xlsx" in result.stdout

        payloads = json.loads(output.read_text(encoding="utf-8"))
        assert [p["fileName"] for p in payloads] == ["joana.xlsx", "maria.xlsx"]

    def test_batch_no_matches(self, batch_folder):
        result = run_cli_command(["batch", str(batch_folder), "--pattern", "*.csv"])
        assert result.returncode == 1
        assert "No files matching" in result.stdout


class TestSchemaCommand:

    def test_schema_to_file(self, tmp_path):
        output = tmp_path / "schema.json"
        result = run_cli_command(["schema", "--output", str(output)])
        assert result.returncode == 0, result.stdout + result.stderr

        schema = json.loads(output.read_text())
        names = [field["name"] for field in schema["fields"]]
        assert names[:4] == ["row_index", "measurement_date", "gestational_age", "gestational_age_source"]
        assert len(names) == 11
        assert schema["primaryKey"] == ["row_index"]

    def test_schema_to_stdout(self):
        result = run_cli_command(["schema"])
        assert result.returncode == 0
        assert "posAlmoco1h" in result.stdout
