from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

from pydantic import Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_DATA_DIR = ".encyclopedia"
_DATA_DIR_RELATIVE_DEFAULTS: tuple[tuple[str, Path], ...] = (
    ("db_path", Path("content.db")),
    ("log_dir", Path("logs")),
)
_PATH_FIELDS: tuple[str, ...] = (
    "data_dir",
    *(field_name for field_name, _ in _DATA_DIR_RELATIVE_DEFAULTS),
)
_BOOLEAN_COERCION_FIELDS: tuple[str, ...] = ("telemetry_enabled",)


def _default_in_data_dir(relative_path: Path) -> Path:
    return Path(DEFAULT_DATA_DIR) / relative_path


def _data_dir_default_note(relative_path: Path) -> str:
    return f"Defaults to `${{ENCYCLOPEDIA_DATA_DIR}}/{relative_path}` when not explicitly set."


def _resolve_path(value: str | Path) -> Path:
    return Path(value).expanduser().resolve()


def _parse_bool_with_default(value: Any, *, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        if value == 1:
            return True
        if value == 0:
            return False
        return default
    if not isinstance(value, str):
        return default

    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


class AppSettings(BaseSettings):
    """
    Runtime configuration for the encyclopedia backend.

    Every option is read from an `ENCYCLOPEDIA_*` environment variable (or `.env`)
    and documents its own default here.
    """

    model_config = SettingsConfigDict(
        env_prefix="ENCYCLOPEDIA_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    # Paths.
    data_dir: Path = Field(
        default=Path(DEFAULT_DATA_DIR),
        description="Root runtime directory for the content database and logs.",
    )
    db_path: Path = Field(
        default=_default_in_data_dir(Path("content.db")),
        description=f"SQLite content database. {_data_dir_default_note(Path('content.db'))}",
    )
    log_dir: Path = Field(
        default=_default_in_data_dir(Path("logs")),
        description=f"Directory for application logs. {_data_dir_default_note(Path('logs'))}",
    )
    log_level: str = Field(
        default="INFO",
        description="Console log level (file logs always record DEBUG).",
    )

    # Telemetry.
    telemetry_enabled: bool = Field(
        default=True,
        description="Emit structured telemetry events for requests and workflow actions.",
    )
    telemetry_sink: Literal["none", "log"] = Field(
        default="log",
        description="Telemetry destination. `log` writes events through structlog.",
    )

    # Submission guardrails.
    submission_rate_limit_max_requests: int = Field(
        default=20,
        description="Maximum draft creations per user inside one rate-limit window.",
    )
    submission_rate_limit_window_seconds: int = Field(
        default=900,
        description="Sliding window length for draft creation rate limiting.",
    )

    # Batch content_html repair.
    content_fix_concurrency: int = Field(
        default=4,
        description="Records normalized concurrently by the content_html repair job.",
    )
    content_fix_item_timeout_seconds: float = Field(
        default=10.0,
        description="Per-record timeout for the content_html repair job.",
    )

    # HTTP.
    cors_allow_origins: list[str] = Field(
        default_factory=lambda: ["http://localhost:3000", "http://localhost:5173"],
        description="Origins allowed to call the API (Vue and React front-ends).",
    )

    @field_validator(*_PATH_FIELDS, mode="before")
    @classmethod
    def _normalize_paths(cls, value: Any) -> Any:
        if value is None:
            return None
        return _resolve_path(value)

    @field_validator(*_BOOLEAN_COERCION_FIELDS, mode="before")
    @classmethod
    def _normalize_booleans(cls, value: Any, info: ValidationInfo) -> bool:
        field_name = info.field_name
        assert field_name is not None
        default_value = cls.model_fields[field_name].default
        assert isinstance(default_value, bool)
        return _parse_bool_with_default(value, default=default_value)

    @field_validator("submission_rate_limit_max_requests", "content_fix_concurrency")
    @classmethod
    def _at_least_one(cls, value: int) -> int:
        return max(1, value)


def _apply_path_defaults(settings: AppSettings) -> AppSettings:
    updates: dict[str, Path] = {}
    for field_name, relative_default in _DATA_DIR_RELATIVE_DEFAULTS:
        if field_name in settings.model_fields_set:
            continue
        updates[field_name] = settings.data_dir / relative_default
    if not updates:
        return settings
    return settings.model_copy(update=updates)


def _resolve_path_fields(settings: AppSettings) -> AppSettings:
    resolved_updates = {
        field_name: _resolve_path(getattr(settings, field_name))
        for field_name in _PATH_FIELDS
    }
    return settings.model_copy(update=resolved_updates)


def load_settings() -> AppSettings:
    settings = AppSettings()
    settings = _apply_path_defaults(settings)
    return _resolve_path_fields(settings)
