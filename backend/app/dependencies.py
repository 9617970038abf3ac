from __future__ import annotations

from functools import lru_cache

from backend.app.config import AppSettings, load_settings
from backend.app.repositories.credential_repository import CredentialRepository
from backend.app.repositories.database import Database
from backend.app.repositories.youtube_quota_repository import YouTubeQuotaRepository
from backend.app.services.field_config import FieldConfig
from backend.app.services.field_dispatcher import FieldDispatcher
from backend.app.services.oauth_session import OAuthSession
from backend.app.services.upload_session_broker import UploadSessionBroker
from backend.app.services.video_catalog import VideoCatalogQuery
from backend.app.services.video_lifecycle import VideoLifecycleSync
from backend.app.telemetry import TelemetryClient, build_telemetry_client


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    return load_settings()


@lru_cache(maxsize=1)
def get_database() -> Database:
    database = Database(get_settings().db_path)
    database.initialize()
    return database


def build_oauth_session(
    settings: AppSettings,
    database: Database,
    *,
    telemetry: TelemetryClient | None = None,
) -> OAuthSession:
    return OAuthSession(
        credential_repository=CredentialRepository(database),
        client_id=settings.google_oauth_client_id,
        client_secret=settings.google_oauth_client_secret,
        redirect_uri=settings.google_oauth_redirect_uri,
        account_key=settings.oauth_account_key,
        expiry_leeway_seconds=settings.oauth_token_expiry_leeway_seconds,
        telemetry=telemetry,
    )


@lru_cache(maxsize=1)
def get_dispatcher() -> FieldDispatcher:
    settings = get_settings()
    database = get_database()
    telemetry = get_telemetry()

    return FieldDispatcher(
        oauth_session=build_oauth_session(settings, database, telemetry=telemetry),
        upload_broker=UploadSessionBroker(
            timeout_seconds=settings.provider_http_timeout_seconds,
            telemetry=telemetry,
        ),
        catalog=VideoCatalogQuery(),
        lifecycle=VideoLifecycleSync(telemetry=telemetry),
        youtube_quota_repository=YouTubeQuotaRepository(database),
        field_defaults=FieldConfig.from_settings(settings),
        youtube_daily_quota_limit=settings.youtube_daily_quota_limit,
        youtube_quota_warning_percent=settings.youtube_quota_warning_percent,
        telemetry=telemetry,
    )


@lru_cache(maxsize=1)
def get_telemetry() -> TelemetryClient:
    settings = get_settings()
    return build_telemetry_client(
        enabled=settings.telemetry_enabled,
        sink=settings.telemetry_sink,
    )


def reset_cached_dependencies() -> None:
    get_dispatcher.cache_clear()
    get_telemetry.cache_clear()
    get_database.cache_clear()
    get_settings.cache_clear()
