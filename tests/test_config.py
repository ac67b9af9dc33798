"""Tests for openwatch.config — environment-driven process settings."""

from pathlib import Path

from openwatch.config import AppConfig, PathConfig, RetentionConfig, SourceConfig


def test_defaults(monkeypatch):
    for var in (
        "OPENWATCH_STATUS_URL",
        "OPENWATCH_STATUS_TIMEOUT",
        "OPENWATCH_ANNOUNCE_URL",
        "OPENWATCH_DATA_DIR",
        "OPENWATCH_RETENTION_DAYS",
    ):
        monkeypatch.delenv(var, raising=False)

    config = AppConfig.from_env()
    assert config.source.url == ""
    assert config.source.timeout_s == 10.0
    assert config.paths.data_dir == Path.home() / ".openwatch"
    assert config.retention.max_days is None


def test_source_from_env(monkeypatch):
    monkeypatch.setenv("OPENWATCH_STATUS_URL", "http://status.local/api")
    monkeypatch.setenv("OPENWATCH_STATUS_TIMEOUT", "2.5")
    monkeypatch.setenv("OPENWATCH_ANNOUNCE_URL", "http://chat.local/hook")
    source = SourceConfig.from_env()
    assert source.url == "http://status.local/api"
    assert source.timeout_s == 2.5
    assert source.announce_url == "http://chat.local/hook"


def test_paths(tmp_path, monkeypatch):
    monkeypatch.setenv("OPENWATCH_DATA_DIR", str(tmp_path / "data"))
    paths = PathConfig.from_env()
    assert paths.settings_db == tmp_path / "data" / "hub.db"
    assert paths.events_db == tmp_path / "data" / "events.db"
    paths.ensure_dirs()
    assert (tmp_path / "data").is_dir()


def test_retention(monkeypatch):
    monkeypatch.setenv("OPENWATCH_RETENTION_DAYS", "365")
    assert RetentionConfig.from_env().max_days == 365
