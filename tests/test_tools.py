"""Tests for the command line tools."""

from __future__ import annotations

import json
import sys
from importlib import util
from pathlib import Path
from types import ModuleType
from unittest.mock import MagicMock

import pytest
import yaml

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from fieldsync.errors import ConfigParseError  # noqa: E402
from fieldsync.pipeline import ScanResult, ScanStats  # noqa: E402
from fieldsync.workflow import create_pipeline  # noqa: E402


def _load_tool(name: str) -> ModuleType:
    spec = util.spec_from_file_location(f"tools_{name}", PROJECT_ROOT / "tools" / f"{name}.py")
    assert spec and spec.loader
    module = util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


@pytest.fixture(name="config_path")
def fixture_config_path(tmp_path: Path) -> Path:
    config = {
        "security": {"cipher_secret": "cipher", "hmac_secret": "hmac"},
        "storage": {
            "data_directory": str(tmp_path / "data"),
            "fields_config": "fields.json",
            "template": str(tmp_path / "template.json"),
            "store_file": "store.json",
            "write_backoff_seconds": 0,
        },
        "logging": {"console": {"enabled": False}, "file": {"enabled": False}},
    }
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump(config), encoding="utf-8")
    return path


def _fields_path(config_path: Path) -> Path:
    return config_path.parent / "data" / "fields.json"


def _write_fields(config_path: Path, data) -> None:
    path = _fields_path(config_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data), encoding="utf-8")


def test_store_token_round_trip(config_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    tool = _load_tool("store_token")

    assert tool.run(str(config_path), check=True) == 1
    assert tool.run(str(config_path), token="  api-token ") == 0
    assert tool.run(str(config_path), check=True) == 0

    stored = json.loads((config_path.parent / "data" / "store.json").read_text(encoding="utf-8"))
    assert "api-token" not in json.dumps(stored)
    assert "A usable API token is stored." in capsys.readouterr().out

    assert tool.run(str(config_path), clear=True) == 0
    assert tool.run(str(config_path), check=True) == 1


def test_field_intelligence_prints_report(config_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    _write_fields(config_path, {
        "contact.privateEmail": {"id": "contact.privateEmail", "example": "anna@example.com"},
        "cf.1": {"id": "cf.1", "example": "anna@example.com", "area": "above"},
    })
    tool = _load_tool("field_intelligence")

    assert tool.run(str(config_path), as_of="2026-01-02T04:04:05+01:00") == 0

    report = json.loads(capsys.readouterr().out)
    assert report["timestamp"] == "2026-01-02 03:04:05"
    assert report["total_fields"] == 2
    assert len(report["duplicates"]) == 1


def test_field_intelligence_reports_broken_config(config_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    _fields_path(config_path).parent.mkdir(parents=True)
    _fields_path(config_path).write_text("{", encoding="utf-8")
    tool = _load_tool("field_intelligence")

    assert tool.run(str(config_path)) == 1
    assert "could not be read" in capsys.readouterr().err


def test_import_and_export_template(config_path: Path) -> None:
    template = config_path.parent / "template.json"
    template.write_text(json.dumps({"cf.1": {"label": "Eins"}}), encoding="utf-8")
    tool = _load_tool("import_template")

    assert tool.run(str(config_path)) == 0
    assert json.loads(_fields_path(config_path).read_text(encoding="utf-8"))["cf.1"]["label"] == "Eins"
    assert tool.run(str(config_path), export=True) == 1
    assert tool.run(str(config_path), export=True, force=True) == 0


def test_cleanup_duplicate_fields(config_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    _write_fields(config_path, {
        "cf.1": {"id": "cf.1"},
        "cfraw.1": {"id": "cfraw.1", "label": "Kurs"},
    })
    tool = _load_tool("cleanup_duplicate_fields")

    assert tool.run(str(config_path)) == 0

    assert "migrated cfraw.1 -> cf.1 (label)" in capsys.readouterr().out
    assert set(json.loads(_fields_path(config_path).read_text(encoding="utf-8"))) == {"cf.1"}


def test_scan_fields_dry_run(monkeypatch: pytest.MonkeyPatch, config_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    tool = _load_tool("scan_fields")
    pipeline = MagicMock()
    pipeline.run.return_value = ScanResult(catalogue={}, labelled={}, report=MagicMock(), stats=ScanStats())
    monkeypatch.setattr(tool, "create_pipeline", lambda config, base_dir=None: pipeline)

    assert tool.run(str(config_path), offset=5, limit=10, dry_run=True) == 0

    pipeline.run.assert_called_once_with(offset=5, limit=10)
    pipeline.scan_and_save.assert_not_called()
    assert json.loads(capsys.readouterr().out) == {}


def test_scan_fields_reports_errors(monkeypatch: pytest.MonkeyPatch, config_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    tool = _load_tool("scan_fields")
    pipeline = MagicMock()
    pipeline.scan_and_save.side_effect = ConfigParseError("broken")
    monkeypatch.setattr(tool, "create_pipeline", lambda config, base_dir=None: pipeline)

    assert tool.run(str(config_path)) == 1
    assert "could not be read" in capsys.readouterr().err


def test_create_pipeline_from_config(tmp_path: Path) -> None:
    config = {
        "security": {"cipher_secret": "cipher", "hmac_secret": "hmac"},
        "storage": {"data_directory": str(tmp_path), "template": ""},
        "sync": {"target_custom_fields": ["50359307"], "sync_all_members": True, "batch_size": 5},
        "rate_limits": {"custom-field-options": {"max_requests": 7, "window_seconds": 30}},
    }

    pipeline = create_pipeline(config, base_dir=tmp_path)

    assert pipeline.settings.target_custom_fields == [50359307]
    assert pipeline.settings.sync_all_members is True
    assert pipeline.settings.batch_size == 5
    assert pipeline.config_store.path == tmp_path / "fields-config.json"
    assert pipeline.config_store.template_path is None
    assert pipeline.extractor.resolver.max_requests == 7
    assert pipeline.extractor.resolver.window_seconds == 30
    assert pipeline.client.on_token_refresh == pipeline.token_store.save


def test_scan_fields_refuses_to_save_over_broken_config(
    monkeypatch: pytest.MonkeyPatch, config_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    tool = _load_tool("scan_fields")
    pipeline = MagicMock()
    stats = ScanStats(errors=["fields.json is not valid JSON"])
    pipeline.scan_and_save.return_value = ScanResult(
        catalogue={}, labelled={}, report=MagicMock(), stats=stats, config_error="fields.json is not valid JSON"
    )
    monkeypatch.setattr(tool, "create_pipeline", lambda config, base_dir=None: pipeline)

    assert tool.run(str(config_path)) == 1
    assert "could not be read" in capsys.readouterr().err
