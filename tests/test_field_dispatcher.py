from __future__ import annotations

import sqlite3
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any, cast

import pytest

from backend.app.models.field_contracts import (
    FieldConfigPayload,
    FieldValidateRequest,
    RecordDeletedRequest,
    RecordPayload,
    RecordSavedRequest,
    UploadSessionRequest,
)
from backend.app.repositories.credential_repository import Credential, CredentialRepository
from backend.app.repositories.database import Database
from backend.app.repositories.youtube_quota_repository import YouTubeQuotaRepository
from backend.app.services.errors import (
    EmptyResultError,
    ProviderRequestError,
    ReferenceNotFoundError,
    UploadInitError,
    UploadQuotaOrPermissionError,
)
from backend.app.services.field_config import FieldConfig
from backend.app.services.field_dispatcher import TECHNICAL_PROBLEM_MESSAGE, FieldDispatcher
from backend.app.services.oauth_session import OAuthSession
from backend.app.services.upload_session_broker import StatusFlags, UploadSession, VideoMetadata
from backend.app.services.video_catalog import CatalogItem, CatalogPage
from backend.app.services.video_lifecycle import RecordSnapshot, SyncOutcome


@dataclass
class _FakeBroker:
    error: Exception | None = None
    calls: list[tuple[VideoMetadata, StatusFlags]] = field(default_factory=list)

    def create_session(
        self,
        credential: Credential,
        metadata: VideoMetadata,
        status_flags: StatusFlags,
    ) -> UploadSession:
        _ = credential
        self.calls.append((metadata, status_flags))
        if self.error is not None:
            raise self.error
        return UploadSession(upload_url="https://upload.example.test/session/abc")


@dataclass
class _FakeCatalog:
    error: Exception | None = None
    calls: list[tuple[str, str, str | None]] = field(default_factory=list)

    def list_playlists(
        self,
        credential: Credential,
        privacy_status: str,
        *,
        page_token: str | None = None,
    ) -> CatalogPage:
        _ = credential
        self.calls.append(("playlists", privacy_status, page_token))
        if self.error is not None:
            raise self.error
        return CatalogPage(items=[CatalogItem(id="PL1", title="Tutorials")], next_page_token="N2")

    def list_videos_in_playlist(
        self,
        credential: Credential,
        playlist_id: str,
        privacy_status: str,
        *,
        page_token: str | None = None,
    ) -> CatalogPage:
        _ = credential
        self.calls.append((playlist_id, privacy_status, page_token))
        if self.error is not None:
            raise self.error
        return CatalogPage(items=[CatalogItem(id="v1", title="Intro")])


@dataclass
class _FakeLifecycle:
    reference_error: Exception | None = None
    saved: list[tuple[str, RecordSnapshot, FieldConfig, bool]] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)
    validated: list[str] = field(default_factory=list)

    def on_record_saved(
        self,
        credential: Credential,
        video_id: str,
        record: RecordSnapshot,
        field_config: FieldConfig,
        *,
        upload_mode: bool = False,
    ) -> SyncOutcome:
        _ = credential
        self.saved.append((video_id, record, field_config, upload_mode))
        return SyncOutcome(video_id=video_id, action="update", status="succeeded")

    def on_record_deleted(
        self,
        credential: Credential,
        video_id: str,
        field_config: FieldConfig,
    ) -> SyncOutcome:
        _ = (credential, field_config)
        self.deleted.append(video_id)
        return SyncOutcome(video_id=video_id, action="delete", status="succeeded")

    def validate_reference(self, credential: Credential, video_id: str) -> bool:
        _ = credential
        self.validated.append(video_id)
        if self.reference_error is not None:
            raise self.reference_error
        return True


@dataclass
class _Harness:
    dispatcher: FieldDispatcher
    repository: CredentialRepository
    broker: _FakeBroker
    catalog: _FakeCatalog
    lifecycle: _FakeLifecycle

    def authorize(self, *, refresh_token: str = "refresh-1") -> None:
        self.repository.save(
            "default",
            Credential(
                access_token="access-1",
                refresh_token=refresh_token,
                expires_at=datetime.now(UTC) + timedelta(hours=1),
            ),
        )


@pytest.fixture
def harness(database: Database) -> _Harness:
    repository = CredentialRepository(database)
    broker = _FakeBroker()
    catalog = _FakeCatalog()
    lifecycle = _FakeLifecycle()
    dispatcher = FieldDispatcher(
        oauth_session=OAuthSession(
            credential_repository=repository,
            client_id="client-id",
            client_secret="client-secret",
            redirect_uri="https://cms.example.test/oauth/callback",
        ),
        upload_broker=cast(Any, broker),
        catalog=cast(Any, catalog),
        lifecycle=cast(Any, lifecycle),
        youtube_quota_repository=YouTubeQuotaRepository(database),
        field_defaults=FieldConfig(category_id=27, tags=("field-default",)),
        youtube_daily_quota_limit=10_000,
        youtube_quota_warning_percent=0.8,
    )
    return _Harness(dispatcher, repository, broker, catalog, lifecycle)


def test_upload_session_applies_field_defaults_and_records_quota(harness: _Harness) -> None:
    harness.authorize()

    response = harness.dispatcher.request_upload_session(
        UploadSessionRequest(title="  Launch recap  ", description="")
    )

    assert response.ok is True
    assert response.operation == "upload.session"
    assert response.result["upload_url"] == "https://upload.example.test/session/abc"
    assert response.result["quota"]["estimated_units_this_call"] == 1600
    assert response.result["quota"]["units_by_operation_today"] == {"upload.session": 1600}
    metadata, status_flags = harness.broker.calls[0]
    assert metadata == VideoMetadata(
        title="Launch recap",
        category_id=27,
        description=None,
        tags=("field-default",),
    )
    assert status_flags == StatusFlags(privacy_status="unlisted", made_for_kids=False)


def test_upload_session_request_values_override_field(harness: _Harness) -> None:
    harness.authorize()

    harness.dispatcher.request_upload_session(
        UploadSessionRequest(
            title="Launch recap",
            category_id=0,
            tags=["one"],
            privacy_status="private",
            made_for_kids=True,
        )
    )

    metadata, status_flags = harness.broker.calls[0]
    assert metadata.category_id == 0
    assert metadata.tags == ("one",)
    assert status_flags == StatusFlags(privacy_status="private", made_for_kids=True)


def test_upload_session_requires_authorization(harness: _Harness) -> None:
    response = harness.dispatcher.request_upload_session(UploadSessionRequest(title="Recap"))

    assert response.ok is False
    assert response.error is not None
    assert response.error.code == "not_authorized"
    assert response.result["quota"]["estimated_units_this_call"] == 0
    assert harness.broker.calls == []


def test_upload_session_rejects_blank_title_and_disabled_uploads(harness: _Harness) -> None:
    harness.authorize()

    blank = harness.dispatcher.request_upload_session(UploadSessionRequest(title="   "))
    disabled = harness.dispatcher.request_upload_session(
        UploadSessionRequest(title="Recap", field=FieldConfigPayload(allow_upload=False))
    )

    assert blank.error is not None and blank.error.code == "invalid_input"
    assert disabled.error is not None and disabled.error.code == "invalid_input"
    assert harness.broker.calls == []


def test_upload_quota_error_surfaces_provider_message(harness: _Harness) -> None:
    harness.authorize()
    harness.broker.error = UploadQuotaOrPermissionError(
        "YouTube refused the upload session (status 403)",
        status_code=403,
        provider_message="The user has exceeded the number of videos they may upload.",
    )

    response = harness.dispatcher.request_upload_session(UploadSessionRequest(title="Recap"))

    assert response.error is not None
    assert response.error.code == "youtube_quota_or_permission"
    assert response.error.message == (
        "The user has exceeded the number of videos they may upload."
    )
    assert response.error.retryable is False


def test_upload_init_failure_uses_generic_message(harness: _Harness) -> None:
    harness.authorize()
    harness.broker.error = UploadInitError(
        "YouTube refused the upload session (status 500): Backend Error",
        status_code=500,
        raw_response='{"error": {"message": "Backend Error"}}',
    )

    response = harness.dispatcher.request_upload_session(UploadSessionRequest(title="Recap"))

    assert response.error is not None
    assert response.error.code == "upload_init_failed"
    assert response.error.message == TECHNICAL_PROBLEM_MESSAGE
    assert response.error.retryable is True


def test_missing_refresh_token_requires_reauthorization(harness: _Harness) -> None:
    harness.authorize(refresh_token="")

    response = harness.dispatcher.list_playlists()

    assert response.error is not None
    assert response.error.code == "reauthorization_required"
    assert harness.repository.get("default") is None


def test_list_playlists_uses_field_privacy_by_default(harness: _Harness) -> None:
    harness.authorize()

    default_response = harness.dispatcher.list_playlists()
    explicit_response = harness.dispatcher.list_playlists("public", page_token="P2")

    assert default_response.result["items"] == [{"id": "PL1", "title": "Tutorials"}]
    assert default_response.result["next_page_token"] == "N2"
    assert explicit_response.ok is True
    assert harness.catalog.calls == [("playlists", "unlisted", None), ("playlists", "public", "P2")]
    assert explicit_response.result["quota"]["estimated_units_today"] == 2


def test_list_playlist_videos_empty_result_code(harness: _Harness) -> None:
    harness.authorize()
    harness.catalog.error = EmptyResultError("No unlisted videos found in playlist PL123.")

    response = harness.dispatcher.list_playlist_videos("PL123")

    assert response.error is not None
    assert response.error.code == "empty_result"
    assert "PL123" in response.error.message


def test_catalog_is_blocked_when_selection_disabled(harness: _Harness) -> None:
    harness.authorize()

    response = harness.dispatcher.list_playlists(field=FieldConfigPayload(allow_select=False))

    assert response.error is not None
    assert response.error.code == "invalid_input"
    assert harness.catalog.calls == []


def test_unexpected_errors_propagate(harness: _Harness) -> None:
    harness.authorize()
    harness.catalog.error = RuntimeError("boom")

    with pytest.raises(RuntimeError, match="boom"):
        harness.dispatcher.list_playlists()


def test_record_saved_without_credential_reports_failed_sync(harness: _Harness) -> None:
    response = harness.dispatcher.on_record_saved(
        RecordSavedRequest(video_id="vid-1", record=RecordPayload(title="Title"))
    )

    assert response.ok is True
    sync = response.result["sync"]
    assert sync["status"] == "failed"
    assert sync["action"] == "update"
    assert "not authorized" in sync["error"]
    assert response.result["quota"]["estimated_units_this_call"] == 0
    assert harness.lifecycle.saved == []


def test_record_saved_forwards_snapshot_and_upload_mode(harness: _Harness) -> None:
    harness.authorize()

    response = harness.dispatcher.on_record_saved(
        RecordSavedRequest(
            video_id="vid-1",
            record=RecordPayload(title="Title", excerpt="Summary"),
            field=FieldConfigPayload(sync_on_update=False),
            upload_mode=True,
        )
    )

    assert response.result["sync"] == {
        "video_id": "vid-1",
        "action": "update",
        "status": "succeeded",
        "error": None,
    }
    assert response.result["quota"]["estimated_units_this_call"] == 51
    video_id, record, field_config, upload_mode = harness.lifecycle.saved[0]
    assert video_id == "vid-1"
    assert record == RecordSnapshot(title="Title", excerpt="Summary")
    assert field_config.sync_on_update is False
    assert upload_mode is True


def test_record_saved_skips_when_sync_disabled(harness: _Harness) -> None:
    harness.authorize()

    response = harness.dispatcher.on_record_saved(
        RecordSavedRequest(
            video_id="vid-1",
            record=RecordPayload(title="Title"),
            field=FieldConfigPayload(sync_on_update=False),
        )
    )

    assert response.result["sync"]["status"] == "skipped"
    assert harness.lifecycle.saved == []


def test_record_deleted_only_when_delete_on_remove(harness: _Harness) -> None:
    harness.authorize()

    skipped = harness.dispatcher.on_record_deleted(RecordDeletedRequest(video_id="vid-1"))
    deleted = harness.dispatcher.on_record_deleted(
        RecordDeletedRequest(video_id="vid-1", field=FieldConfigPayload(delete_on_remove=True))
    )

    assert skipped.result["sync"]["status"] == "skipped"
    assert deleted.result["sync"]["status"] == "succeeded"
    assert harness.lifecycle.deleted == ["vid-1"]


def test_field_validate_required_and_optional_empty_values(harness: _Harness) -> None:
    optional = harness.dispatcher.on_field_validate(FieldValidateRequest(value=""))
    required = harness.dispatcher.on_field_validate(
        FieldValidateRequest(value=None, field=FieldConfigPayload(required=True))
    )

    assert optional.result["valid"] is True
    assert required.result == {
        "valid": False,
        "message": "This field is required.",
        "quota": required.result["quota"],
    }
    assert harness.lifecycle.validated == []


def test_field_validate_needs_record_title_when_syncing(harness: _Harness) -> None:
    harness.authorize()

    response = harness.dispatcher.on_field_validate(
        FieldValidateRequest(value="vid-1", record=RecordPayload(title=""))
    )

    assert response.result["valid"] is False
    assert "title" in response.result["message"]
    assert harness.lifecycle.validated == []


def test_field_validate_checks_video_reference(harness: _Harness) -> None:
    harness.authorize()
    request = FieldValidateRequest(value="vid-1", record=RecordPayload(title="Title"))

    valid = harness.dispatcher.on_field_validate(request)
    harness.lifecycle.reference_error = ReferenceNotFoundError(
        "Video vid-1 does not belong to the authorized channel."
    )
    invalid = harness.dispatcher.on_field_validate(request)

    assert valid.result["valid"] is True
    assert invalid.ok is True
    assert invalid.result["valid"] is False
    assert invalid.result["message"] == "Video vid-1 does not belong to the authorized channel."
    assert harness.lifecycle.validated == ["vid-1", "vid-1"]


def test_confirm_uploaded_video_rejects_foreign_reference(harness: _Harness) -> None:
    harness.authorize()
    harness.lifecycle.reference_error = ReferenceNotFoundError("Video vid-9 was not found.")

    response = harness.dispatcher.confirm_uploaded_video("vid-9")

    assert response.error is not None
    assert response.error.code == "reference_not_found"


def test_status_logout_and_deactivate(harness: _Harness) -> None:
    status = harness.dispatcher.get_status()
    assert status.result == {"client_configured": True, "authorized": False, "email": None}
    assert "quota" not in status.result

    harness.authorize()
    logout = harness.dispatcher.logout()
    assert logout.result == {"authorized": False, "removed": True}
    assert harness.repository.get("default") is None

    harness.authorize()
    deactivate = harness.dispatcher.deactivate()
    assert deactivate.result == {"deactivated": True, "removed": True}
    assert harness.dispatcher.check_and_refresh_token().result == {"authorized": False}


def test_callback_without_code_is_auth_exchange_failure(harness: _Harness) -> None:
    response = harness.dispatcher.handle_callback(None)

    assert response.error is not None
    assert response.error.code == "auth_exchange_failed"


def test_resolve_field_config_merges_overrides(harness: _Harness) -> None:
    resolved = harness.dispatcher.resolve_field_config(
        FieldConfigPayload(tags=[" a ", "", "b"], privacy_status="private", required=True)
    )

    assert resolved.category_id == 27
    assert resolved.tags == ("a", "b")
    assert resolved.privacy_status == "private"
    assert resolved.required is True
    assert harness.dispatcher.resolve_field_config(None) is harness.dispatcher.field_defaults


def test_status_keeps_authorization_when_account_email_lookup_fails(
    harness: _Harness,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    harness.authorize()

    def _fail(credential: Credential) -> str | None:
        _ = credential
        raise ProviderRequestError("userinfo unavailable", status_code=503)

    monkeypatch.setattr(harness.dispatcher.oauth_session, "fetch_account_email", _fail)

    status = harness.dispatcher.get_status()

    assert status.ok is True
    assert status.result == {"client_configured": True, "authorized": True, "email": None}


def test_record_hooks_survive_quota_ledger_failure(
    harness: _Harness,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    harness.authorize()

    def _locked(self: YouTubeQuotaRepository, **kwargs: Any) -> Any:
        _ = (self, kwargs)
        raise sqlite3.OperationalError("database is locked")

    monkeypatch.setattr(YouTubeQuotaRepository, "record_and_snapshot", _locked)

    saved = harness.dispatcher.on_record_saved(
        RecordSavedRequest(video_id="vid-1", record=RecordPayload(title="Title"))
    )
    deleted = harness.dispatcher.on_record_deleted(
        RecordDeletedRequest(video_id="vid-1", field=FieldConfigPayload(delete_on_remove=True))
    )

    assert saved.ok is True
    assert saved.result["sync"]["status"] == "succeeded"
    assert "quota" not in saved.result
    assert deleted.result["sync"]["status"] == "succeeded"
    with pytest.raises(sqlite3.OperationalError):
        harness.dispatcher.list_playlists()


def test_callback_reports_refused_consent(harness: _Harness) -> None:
    refused = harness.dispatcher.handle_callback(None, provider_error="access_denied")
    other = harness.dispatcher.handle_callback(None, provider_error="server_error")

    assert refused.error is not None
    assert refused.error.code == "auth_exchange_failed"
    assert "refused" in refused.error.message
    assert "access_denied" in refused.error.message
    assert other.error is not None
    assert other.error.message == "Google returned an authorization error: server_error"
