from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

from pydantic import Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_DATA_DIR = ".youtube-field"
PRIVACY_STATUSES: frozenset[str] = frozenset({"unlisted", "private", "public"})
_DATA_DIR_RELATIVE_DEFAULTS: tuple[tuple[str, Path], ...] = (
    ("db_path", Path("state.db")),
    ("log_dir", Path("logs")),
)
_PATH_FIELDS: tuple[str, ...] = (
    "data_dir",
    *(field_name for field_name, _ in _DATA_DIR_RELATIVE_DEFAULTS),
)
_BOOLEAN_COERCION_FIELDS: tuple[str, ...] = (
    "scheduler_enabled",
    "field_made_for_kids",
    "field_allow_upload",
    "field_allow_select",
    "field_sync_on_update",
    "field_delete_on_remove",
    "telemetry_enabled",
)


def _default_in_data_dir(relative_path: Path) -> Path:
    return Path(DEFAULT_DATA_DIR) / relative_path


def _data_dir_default_note(relative_path: Path) -> str:
    return f"Defaults to `${{YOUTUBE_FIELD_DATA_DIR}}/{relative_path}` when not explicitly set."


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


def _normalize_optional_text(value: Any) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        return None
    normalized = value.strip()
    if normalized:
        return normalized
    return None


class AppSettings(BaseSettings):
    """
    Canonical runtime configuration.

    Every option is read from `YOUTUBE_FIELD_*` environment variables (or a
    `.env` file in the working directory). OAuth client settings are optional
    at load time: missing values surface as a configuration error on each
    authorization attempt instead of blocking startup.
    """

    model_config = SettingsConfigDict(
        env_prefix="YOUTUBE_FIELD_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    # Core paths.
    data_dir: Path = Field(
        default=Path(DEFAULT_DATA_DIR),
        description="Root runtime directory for local state and logs.",
    )
    db_path: Path = Field(
        default=_default_in_data_dir(Path("state.db")),
        description=f"SQLite database path. {_data_dir_default_note(Path('state.db'))}",
    )

    # Google OAuth client.
    google_oauth_client_id: str | None = Field(
        default=None,
        description="OAuth 2.0 web client id from the Google Cloud console.",
    )
    google_oauth_client_secret: str | None = Field(
        default=None,
        description="OAuth 2.0 web client secret.",
    )
    google_oauth_redirect_uri: str | None = Field(
        default=None,
        description="Redirect URI registered for the web client (points at /oauth/callback).",
    )
    oauth_account_key: str = Field(
        default="default",
        description="Key of the single stored channel credential for this installation.",
    )
    oauth_token_expiry_leeway_seconds: int = Field(
        default=30,
        ge=0,
        description="Treat access tokens as expired this many seconds before their expiry.",
    )
    provider_http_timeout_seconds: float = Field(
        default=30.0,
        description="HTTP timeout for raw provider requests (resumable upload initiation).",
    )

    # Scheduler and quota guardrails.
    scheduler_enabled: bool = Field(
        default=True,
        validation_alias="YOUTUBE_FIELD_ENABLE_SCHEDULER",
        description="Enable the background token check loop.",
    )
    token_check_interval_seconds: int = Field(
        default=3600,
        description="Cadence of the background token check (hourly by default).",
    )
    youtube_daily_quota_limit: int = Field(
        default=10_000,
        description="Expected daily YouTube Data API quota budget used for warnings.",
    )
    youtube_quota_warning_percent: float = Field(
        default=0.8,
        description="Warn when estimated daily usage exceeds this fraction of quota limit.",
    )

    # Field defaults, used when a request does not carry its own field config.
    field_category_id: int = Field(
        default=22,
        ge=0,
        description="Default YouTube category id (22 = People & Blogs).",
    )
    field_tags: str = Field(
        default="",
        description="Comma separated default tags for uploaded videos.",
    )
    field_privacy_status: Literal["unlisted", "private", "public"] = Field(
        default="unlisted",
        description="Default privacy status for uploads and catalog filtering.",
    )
    field_made_for_kids: bool = Field(
        default=False,
        description="Default self-declared made-for-kids flag for uploads.",
    )
    field_allow_upload: bool = Field(
        default=True,
        description="Allow uploading new videos from the field.",
    )
    field_allow_select: bool = Field(
        default=True,
        description="Allow selecting existing videos from the channel.",
    )
    field_sync_on_update: bool = Field(
        default=True,
        description="Push record title/excerpt to the linked video when the record is saved.",
    )
    field_delete_on_remove: bool = Field(
        default=False,
        description="Delete the linked video when the record is deleted.",
    )

    # Logging.
    log_dir: Path = Field(
        default=_default_in_data_dir(Path("logs")),
        description=f"Directory for backend log files. {_data_dir_default_note(Path('logs'))}",
    )
    log_level: str = Field(
        default="INFO",
        description="Console log level (stdout).",
    )

    # Telemetry.
    telemetry_enabled: bool = Field(
        default=True,
        description="Enable lightweight internal telemetry events.",
    )
    telemetry_sink: Literal["none", "log"] = Field(
        default="log",
        description=(
            "Telemetry sink backend. `log` emits structured telemetry locally; "
            "`none` disables sink output."
        ),
    )

    @property
    def oauth_client_configured(self) -> bool:
        return (
            self.google_oauth_client_id is not None
            and self.google_oauth_client_secret is not None
            and self.google_oauth_redirect_uri is not None
        )

    @property
    def field_tag_list(self) -> tuple[str, ...]:
        return tuple(tag.strip() for tag in self.field_tags.split(",") if tag.strip())

    @field_validator("field_privacy_status", mode="before")
    @classmethod
    def _normalize_privacy_status(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("YOUTUBE_FIELD_FIELD_PRIVACY_STATUS must be a string.")
        normalized = value.strip().lower()
        if normalized in PRIVACY_STATUSES:
            return normalized
        raise ValueError(
            "YOUTUBE_FIELD_FIELD_PRIVACY_STATUS must be set to: unlisted, private, public."
        )

    @field_validator("telemetry_sink", mode="before")
    @classmethod
    def _normalize_telemetry_sink(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("YOUTUBE_FIELD_TELEMETRY_SINK must be a string.")
        normalized = value.strip().lower()
        if normalized in {"none", "log"}:
            return normalized
        raise ValueError("YOUTUBE_FIELD_TELEMETRY_SINK must be set to: none, log.")

    @field_validator("oauth_account_key", mode="before")
    @classmethod
    def _normalize_account_key(cls, value: Any) -> str:
        normalized = _normalize_optional_text(value)
        if normalized is None:
            raise ValueError("YOUTUBE_FIELD_OAUTH_ACCOUNT_KEY must not be empty.")
        return normalized

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

    @field_validator(
        "google_oauth_client_id",
        "google_oauth_client_secret",
        "google_oauth_redirect_uri",
        mode="before",
    )
    @classmethod
    def _normalize_optional_strings(cls, value: Any) -> str | None:
        return _normalize_optional_text(value)


def _validate_oauth_client_configuration(settings: AppSettings) -> None:
    errors: list[str] = []

    if settings.google_oauth_client_id is None:
        errors.append("YOUTUBE_FIELD_GOOGLE_OAUTH_CLIENT_ID is required.")
    if settings.google_oauth_client_secret is None:
        errors.append("YOUTUBE_FIELD_GOOGLE_OAUTH_CLIENT_SECRET is required.")
    if settings.google_oauth_redirect_uri is None:
        errors.append("YOUTUBE_FIELD_GOOGLE_OAUTH_REDIRECT_URI is required.")

    if errors:
        bullets = "\n".join(f"- {message}" for message in errors)
        raise ValueError(f"Invalid OAuth client configuration:\n{bullets}")


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


def load_settings(*, require_oauth_client: bool = False) -> AppSettings:
    settings = AppSettings()
    settings = _apply_path_defaults(settings)
    settings = _resolve_path_fields(settings)

    if require_oauth_client and not settings.oauth_client_configured:
        _validate_oauth_client_configuration(settings)

    return settings
