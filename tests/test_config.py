from __future__ import annotations

import json
import os
from pathlib import Path

import pytest
from pydantic import ValidationError

from devlake_telemetry.config import TelemetrySettings, get_settings, login_user, resolve_config_file


@pytest.fixture
def config_file(tmp_path: Path, monkeypatch) -> Path:
    path = tmp_path / "config.json"
    monkeypatch.setenv("CONFIG_FILE", str(path))
    for key in ("DEVLAKE_WEBHOOK_URL", "DEVLAKE_API_TOKEN", "DEVLAKE_LOG_LEVEL", "DATA_DIR"):
        monkeypatch.delenv(key, raising=False)
    return path


def test_defaults_without_config_file(config_file: Path) -> None:
    settings = TelemetrySettings()
    assert settings.webhook_url is None
    assert settings.collection_interval_seconds == 3600
    assert settings.data_retention_days == 30
    assert settings.max_send_attempts == 3
    assert settings.privacy.collect_command_arguments is False


def test_json_file_is_read_and_env_overrides(config_file: Path, monkeypatch) -> None:
    config_file.write_text(
        json.dumps(
            {
                "webhook_url": "https://file.example.com/hook",
                "api_token": "from-file",
                "collection_interval_seconds": 1800,
                "developer_tools": ["vscode", "docker"],
                "privacy": {"exclude_commands": ["ssh"]},
            }
        ),
        encoding="utf-8",
    )
    monkeypatch.setenv("DEVLAKE_WEBHOOK_URL", "https://env.example.com/hook")
    monkeypatch.setenv("DEVLAKE_LOG_LEVEL", "debug")

    settings = TelemetrySettings()

    assert settings.webhook_url == "https://env.example.com/hook"
    assert settings.api_token == "from-file"
    assert settings.collection_interval_seconds == 1800
    assert settings.developer_tools == ["vscode", "docker"]
    assert settings.privacy.exclude_commands == ["ssh"]
    assert settings.log_level == "DEBUG"


def test_privacy_switches_cannot_be_enabled(config_file: Path) -> None:
    config_file.write_text(json.dumps({"privacy": {"collect_urls": True}}), encoding="utf-8")
    with pytest.raises(ValidationError):
        TelemetrySettings()


@pytest.mark.parametrize(
    "overrides",
    [
        {"collection_interval_seconds": 30},
        {"data_retention_days": 0},
        {"log_level": "verbose"},
        {"retry_backoff_seconds": -1},
    ],
)
def test_invalid_values_are_rejected(config_file: Path, overrides: dict) -> None:
    config_file.write_text(json.dumps(overrides), encoding="utf-8")
    with pytest.raises(ValidationError):
        TelemetrySettings()


def test_blank_webhook_means_disabled(config_file: Path, monkeypatch) -> None:
    monkeypatch.setenv("DEVLAKE_WEBHOOK_URL", "  ")
    assert TelemetrySettings().webhook_url is None


def test_signature_paths_parse_from_env(config_file: Path, monkeypatch, tmp_path: Path) -> None:
    first, second = tmp_path / "a", tmp_path / "b"
    monkeypatch.setenv("DEVLAKE_SIGNATURE_PATHS", f"{first}{os.pathsep}{second}")
    assert TelemetrySettings().signature_paths == (first, second)


def test_get_settings_expands_paths(config_file: Path, monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("DATA_DIR", str(tmp_path / "data"))
    get_settings.cache_clear()
    try:
        settings = get_settings()
        assert settings.data_dir == (tmp_path / "data").resolve()
    finally:
        get_settings.cache_clear()


def test_resolve_config_file_and_login_user(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("CONFIG_FILE", str(tmp_path / "custom.json"))
    monkeypatch.setenv("SUDO_USER", "alex")
    assert resolve_config_file() == tmp_path / "custom.json"
    assert login_user() == "alex"
