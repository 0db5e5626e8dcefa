"""Configuration management for the DevLake telemetry agent."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Annotated
import getpass
import os
import pwd

from pydantic import AliasChoices, BaseModel, Field, ValidationInfo, field_validator
from pydantic_settings import (
    BaseSettings,
    JsonConfigSettingsSource,
    NoDecode,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

DEFAULT_CONFIG_FILE = Path("~/.config/devlake-telemetry/config.json")
DEFAULT_DATA_DIR = Path("~/.local/share/devlake-telemetry")


def resolve_config_file() -> Path:
    """Return the JSON config path, honouring the ``CONFIG_FILE`` override."""

    return Path(os.environ.get("CONFIG_FILE") or DEFAULT_CONFIG_FILE).expanduser()


def login_user() -> str:
    """Return the invoking user, preferring the account behind ``sudo``."""

    return os.environ.get("SUDO_USER") or getpass.getuser()


def _default_home() -> Path:
    try:
        return Path(pwd.getpwnam(login_user()).pw_dir)
    except KeyError:
        return Path.home()


class PrivacySettings(BaseModel):
    """Privacy switches. Capture of arguments, paths and URLs is never allowed."""

    collect_command_arguments: bool = False
    collect_file_paths: bool = False
    collect_urls: bool = False
    exclude_commands: list[str] = Field(default_factory=list)

    @field_validator("collect_command_arguments", "collect_file_paths", "collect_urls")
    @classmethod
    def _must_stay_disabled(cls, value: bool, info: ValidationInfo) -> bool:
        if value:
            raise ValueError(f"privacy.{info.field_name} cannot be enabled")
        return value


class TelemetrySettings(BaseSettings):
    """Runtime configuration sourced from the JSON config file, environment and .env."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    webhook_url: str | None = Field(
        default=None, validation_alias=AliasChoices("webhook_url", "DEVLAKE_WEBHOOK_URL")
    )
    webhook_url_secondary: str | None = Field(
        default=None,
        validation_alias=AliasChoices("webhook_url_secondary", "DEVLAKE_WEBHOOK_URL_SECONDARY"),
    )
    api_token: str | None = Field(
        default=None, validation_alias=AliasChoices("api_token", "DEVLAKE_API_TOKEN")
    )
    collection_interval_seconds: int = Field(
        default=3600,
        validation_alias=AliasChoices("collection_interval_seconds", "DEVLAKE_COLLECTION_INTERVAL"),
    )
    data_retention_days: int = Field(
        default=30, validation_alias=AliasChoices("data_retention_days", "DEVLAKE_RETENTION_DAYS")
    )
    data_dir: Path = DEFAULT_DATA_DIR
    log_file: Path | None = None
    log_level: str = Field(
        default="INFO", validation_alias=AliasChoices("log_level", "DEVLAKE_LOG_LEVEL")
    )
    home_dir: Path = Field(
        default_factory=_default_home,
        validation_alias=AliasChoices("home_dir", "DEVLAKE_HOME_DIR"),
    )
    git_author: str | None = Field(
        default=None, validation_alias=AliasChoices("git_author", "DEVLAKE_GIT_AUTHOR")
    )
    developer_tools: list[str] | None = None
    privacy: PrivacySettings = Field(default_factory=PrivacySettings)
    project_scan_depth: int = Field(
        default=4, validation_alias=AliasChoices("project_scan_depth", "DEVLAKE_PROJECT_SCAN_DEPTH")
    )
    collector_timeout_seconds: float = Field(
        default=60.0,
        validation_alias=AliasChoices("collector_timeout_seconds", "DEVLAKE_COLLECTOR_TIMEOUT"),
    )
    request_timeout_seconds: float = 30.0
    connect_timeout_seconds: float = 10.0
    max_send_attempts: int = Field(
        default=3, validation_alias=AliasChoices("max_send_attempts", "DEVLAKE_MAX_SEND_ATTEMPTS")
    )
    retry_backoff_seconds: float = 5.0
    signature_paths: Annotated[tuple[Path, ...], NoDecode] = Field(
        default=(), validation_alias=AliasChoices("signature_paths", "DEVLAKE_SIGNATURE_PATHS")
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # Environment wins over the installed config.json.
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            JsonConfigSettingsSource(settings_cls, json_file=resolve_config_file()),
            file_secret_settings,
        )

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError(
                "DEVLAKE_LOG_LEVEL must be one of CRITICAL, ERROR, WARNING, INFO, DEBUG"
            )
        return normalized

    @field_validator("webhook_url", "webhook_url_secondary", "api_token", "git_author", mode="before")
    @classmethod
    def _blank_to_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("signature_paths", mode="before")
    @classmethod
    def _parse_signature_paths(cls, value):
        if value is None or value == "":
            return ()
        if isinstance(value, (list, tuple)):
            return tuple(Path(str(item)) for item in value)
        if isinstance(value, str):
            parts = [part.strip() for part in value.split(os.pathsep) if part.strip()]
            return tuple(Path(part) for part in parts)
        raise TypeError("DEVLAKE_SIGNATURE_PATHS must be a list of paths or a path-separated string")

    @field_validator("collection_interval_seconds")
    @classmethod
    def _validate_interval(cls, value: int) -> int:
        if value < 60:
            raise ValueError("collection_interval_seconds must be >= 60")
        return value

    @field_validator("data_retention_days", "max_send_attempts", "project_scan_depth")
    @classmethod
    def _validate_positive(cls, value: int, info: ValidationInfo) -> int:
        if value < 1:
            raise ValueError(f"{info.field_name} must be >= 1")
        return value

    @field_validator(
        "collector_timeout_seconds",
        "request_timeout_seconds",
        "connect_timeout_seconds",
        "retry_backoff_seconds",
    )
    @classmethod
    def _validate_non_negative(cls, value: float, info: ValidationInfo) -> float:
        if value < 0:
            raise ValueError(f"{info.field_name} must be >= 0")
        return value


@lru_cache(maxsize=1)
def get_settings() -> TelemetrySettings:
    """Return cached settings instance."""

    settings = TelemetrySettings()
    settings.data_dir = settings.data_dir.expanduser().resolve()
    settings.home_dir = settings.home_dir.expanduser()
    if settings.log_file is not None:
        settings.log_file = settings.log_file.expanduser()
    settings.signature_paths = tuple(path.expanduser().resolve() for path in settings.signature_paths)
    return settings


__all__ = [
    "DEFAULT_CONFIG_FILE",
    "DEFAULT_DATA_DIR",
    "PrivacySettings",
    "TelemetrySettings",
    "get_settings",
    "login_user",
    "resolve_config_file",
]
