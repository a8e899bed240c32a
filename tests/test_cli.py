import json
import logging

import pytest

from core.config import get_settings
from main import main


@pytest.fixture
def file_env(monkeypatch, tmp_path):
    monkeypatch.setenv("STORAGE_BACKEND", "file")
    monkeypatch.setenv("STORAGE_PATH", str(tmp_path / "records.json"))
    monkeypatch.setenv("BACKUP_DIR", str(tmp_path / "backups"))
    monkeypatch.setenv("API_DELAY_MS", "0")
    get_settings.cache_clear()

    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield tmp_path
    root.handlers[:] = handlers
    root.setLevel(level)
    get_settings.cache_clear()


def test_info_reports_counts(file_env, capsys):
    assert main(["--log-level", "ERROR", "info"]) == 0
    info = json.loads(capsys.readouterr().out)
    assert info["courses"] == 0
    assert info["storage_backend"] == "file"
    assert info["checks"]["total_tests"] > 0


def test_export_writes_file(file_env):
    output = file_env / "out" / "export.json"
    assert main(["--log-level", "ERROR", "export", "--output", str(output)]) == 0
    data = json.loads(output.read_text(encoding="utf-8"))
    assert data["courses"] == []
    assert data["app_version"] == "1.0.0"


def test_reset_requires_confirmation(file_env):
    assert main(["--log-level", "ERROR", "reset"]) == 2
    assert main(["--log-level", "ERROR", "reset", "--yes"]) == 0


def test_validation_checks_pass(file_env, capsys):
    assert main(["--log-level", "ERROR", "checks", "--category", "validation"]) == 0
    assert "4/4 passed" in capsys.readouterr().out
