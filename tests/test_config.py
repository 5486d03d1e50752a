from datetime import time

import pytest
import yaml

from finance_tracker import config


def test_missing_file_returns_defaults(tmp_path, monkeypatch):
    for name in ("FINTRACK_DB_PATH", "FINTRACK_LOG_LEVEL", "FINTRACK_RUN_AT"):
        monkeypatch.delenv(name, raising=False)
    cfg = config.load_config(tmp_path / "nope.yaml")
    assert cfg == config.DEFAULT_CONFIG
    cfg["scheduler"]["run_at"] = "05:00"
    assert config.DEFAULT_CONFIG["scheduler"]["run_at"] == "00:00"


def test_file_values_merge_over_defaults(tmp_path, monkeypatch):
    for name in ("FINTRACK_DB_PATH", "FINTRACK_LOG_LEVEL", "FINTRACK_RUN_AT"):
        monkeypatch.delenv(name, raising=False)
    path = tmp_path / "config.yaml"
    with open(path, "w") as f:
        yaml.safe_dump({"db_path": "custom.db", "scheduler": {}}, f)

    cfg = config.load_config(path)
    assert cfg["db_path"] == "custom.db"
    assert cfg["scheduler"]["run_at"] == "00:00"
    assert cfg["log_level"] == "INFO"


def test_environment_overrides(tmp_path, monkeypatch):
    monkeypatch.setenv("FINTRACK_RUN_AT", "03:30")
    monkeypatch.setenv("FINTRACK_LOG_LEVEL", "debug")
    cfg = config.load_config(tmp_path / "nope.yaml")
    assert cfg["scheduler"]["run_at"] == "03:30"
    assert cfg["log_level"] == "debug"


def test_parse_run_at():
    assert config.parse_run_at("03:30") == time(3, 30)
    with pytest.raises(ValueError):
        config.parse_run_at("25:00")
    with pytest.raises(ValueError):
        config.parse_run_at("midnight")
