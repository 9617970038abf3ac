from __future__ import annotations

import logging
import sqlite3
from collections.abc import Callable
from dataclasses import asdict, replace
from time import perf_counter
from typing import Any

from backend.app.models.field_contracts import (
    OPERATION_QUOTA_UNITS,
    FieldConfigPayload,
    FieldError,
    FieldResponse,
    FieldValidateRequest,
    OperationName,
    RecordDeletedRequest,
    RecordPayload,
    RecordSavedRequest,
    UploadSessionRequest,
)
from backend.app.repositories.credential_repository import Credential
from backend.app.repositories.youtube_quota_repository import YouTubeQuotaRepository
from backend.app.services.errors import (
    AuthExchangeError,
    ConfigurationError,
    EmptyResultError,
    InputValidationError,
    NotAuthorizedError,
    ProviderQuotaOrPermissionError,
    ProviderRequestError,
    ReferenceNotFoundError,
    TokenRefreshError,
    UploadInitError,
    YouTubeFieldError,
)
from backend.app.services.field_config import FieldConfig
from backend.app.services.oauth_session import OAuthSession
from backend.app.services.upload_session_broker import (
    StatusFlags,
    UploadSessionBroker,
    VideoMetadata,
)
from backend.app.services.video_catalog import CatalogPage, VideoCatalogQuery
from backend.app.services.video_lifecycle import (
    RecordSnapshot,
    SyncAction,
    SyncOutcome,
    VideoLifecycleSync,
)
from backend.app.services.youtube_client import coerce_nonempty_string
from backend.app.telemetry import TelemetryClient

LOGGER = logging.getLogger("youtube_field.dispatcher")

TECHNICAL_PROBLEM_MESSAGE = (
    "A technical problem occurred while talking to YouTube. Please try again later."
)

_Handler = Callable[[], tuple[dict[str, Any], int]]


class FieldDispatcher:
    """Caller-facing entry points of the YouTube field.

    Every operation returns a `FieldResponse`; exceptions from the OAuth
    session, broker, catalog and lifecycle layers are mapped to a `FieldError`
    here and nowhere else. Provider-touching operations carry an estimated
    quota snapshot in `result["quota"]`.
    """

    def __init__(
        self,
        *,
        oauth_session: OAuthSession,
        upload_broker: UploadSessionBroker,
        catalog: VideoCatalogQuery,
        lifecycle: VideoLifecycleSync,
        youtube_quota_repository: YouTubeQuotaRepository,
        field_defaults: FieldConfig,
        youtube_daily_quota_limit: int,
        youtube_quota_warning_percent: float,
        telemetry: TelemetryClient | None = None,
    ) -> None:
        self._oauth_session = oauth_session
        self._upload_broker = upload_broker
        self._catalog = catalog
        self._lifecycle = lifecycle
        self._youtube_quota_repository = youtube_quota_repository
        self._field_defaults = field_defaults
        self._telemetry = telemetry if telemetry is not None else TelemetryClient.disabled()
        self._youtube_daily_quota_limit = max(0, youtube_daily_quota_limit)
        bounded_warning_percent = min(1.0, max(0.0, youtube_quota_warning_percent))
        self._youtube_quota_warning_threshold = int(
            self._youtube_daily_quota_limit * bounded_warning_percent
        )

    @property
    def oauth_session(self) -> OAuthSession:
        return self._oauth_session

    @property
    def field_defaults(self) -> FieldConfig:
        return self._field_defaults

    # OAuth lifecycle.

    def get_authorization_url(self) -> FieldResponse:
        def handler() -> tuple[dict[str, Any], int]:
            return {"authorization_url": self._oauth_session.get_authorization_url()}, 0

        return self._run("oauth.authorization_url", handler)

    def handle_callback(
        self,
        code: str | None,
        *,
        provider_error: str | None = None,
    ) -> FieldResponse:
        def handler() -> tuple[dict[str, Any], int]:
            if provider_error:
                if provider_error == "access_denied":
                    raise AuthExchangeError(
                        "Access to the YouTube account was refused on the Google consent "
                        "screen (access_denied)."
                    )
                raise AuthExchangeError(f"Google returned an authorization error: {provider_error}")
            self._oauth_session.authorize(code or "")
            return {"authorized": True}, 0

        return self._run("oauth.callback", handler)

    def get_status(self) -> FieldResponse:
        def handler() -> tuple[dict[str, Any], int]:
            result: dict[str, Any] = {
                "client_configured": self._oauth_session.client_configured,
                "authorized": False,
                "email": None,
            }
            session = self._oauth_session
            if not session.client_configured or not session.is_authorized():
                return result, 0
            try:
                credential = self._oauth_session.load_valid_credential()
            except (NotAuthorizedError, TokenRefreshError):
                return result, 0
            result["authorized"] = True
            try:
                result["email"] = self._oauth_session.fetch_account_email(credential)
            except ProviderRequestError as exc:
                LOGGER.warning(
                    "youtube field account_email_unavailable status=%s error=%s",
                    exc.status_code,
                    exc,
                )
            return result, 0

        return self._run("oauth.status", handler)

    def logout(self) -> FieldResponse:
        def handler() -> tuple[dict[str, Any], int]:
            removed = self._oauth_session.revoke()
            return {"authorized": False, "removed": removed}, 0

        return self._run("oauth.logout", handler)

    def deactivate(self) -> FieldResponse:
        def handler() -> tuple[dict[str, Any], int]:
            removed = self._oauth_session.revoke()
            LOGGER.info("youtube field deactivated credential_removed=%s", removed)
            return {"deactivated": True, "removed": removed}, 0

        return self._run("field.deactivate", handler)

    def check_and_refresh_token(self) -> FieldResponse:
        def handler() -> tuple[dict[str, Any], int]:
            return {"authorized": self._oauth_session.check_and_refresh_token()}, 0

        return self._run("oauth.token_check", handler)

    # Uploads and catalog.

    def request_upload_session(self, request: UploadSessionRequest) -> FieldResponse:
        def handler() -> tuple[dict[str, Any], int]:
            field = self.resolve_field_config(request.field)
            if not field.allow_upload:
                raise InputValidationError("Uploading new videos is disabled for this field.")
            title = coerce_nonempty_string(request.title)
            if title is None:
                raise InputValidationError("A title is required to upload a video.")

            metadata = VideoMetadata(
                title=title,
                description=coerce_nonempty_string(request.description),
                category_id=(
                    request.category_id if request.category_id is not None else field.category_id
                ),
                tags=tuple(request.tags) if request.tags is not None else field.tags,
            )
            status_flags = StatusFlags(
                privacy_status=request.privacy_status or field.privacy_status,
                made_for_kids=(
                    request.made_for_kids
                    if request.made_for_kids is not None
                    else field.made_for_kids
                ),
            )
            credential = self._oauth_session.load_valid_credential()
            session = self._upload_broker.create_session(credential, metadata, status_flags)
            return {"upload_url": session.upload_url}, OPERATION_QUOTA_UNITS["upload.session"]

        return self._run(
            "upload.session",
            handler,
            context={"title": request.title, "privacy_status": request.privacy_status},
        )

    def confirm_uploaded_video(self, video_id: str) -> FieldResponse:
        def handler() -> tuple[dict[str, Any], int]:
            credential = self._oauth_session.load_valid_credential()
            self._lifecycle.validate_reference(credential, video_id)
            return {"video_id": video_id.strip()}, OPERATION_QUOTA_UNITS["upload.confirm"]

        return self._run("upload.confirm", handler, context={"video_id": video_id})

    def list_playlists(
        self,
        privacy_status: str | None = None,
        *,
        page_token: str | None = None,
        field: FieldConfigPayload | None = None,
    ) -> FieldResponse:
        def handler() -> tuple[dict[str, Any], int]:
            resolved_field = self.resolve_field_config(field)
            if not resolved_field.allow_select:
                raise InputValidationError("Selecting existing videos is disabled for this field.")
            status = privacy_status or resolved_field.privacy_status
            credential = self._oauth_session.load_valid_credential()
            page = self._catalog.list_playlists(credential, status, page_token=page_token)
            return _catalog_page_payload(page), OPERATION_QUOTA_UNITS["catalog.playlists"]

        return self._run(
            "catalog.playlists",
            handler,
            context={"privacy_status": privacy_status, "page_token": page_token},
        )

    def list_playlist_videos(
        self,
        playlist_id: str,
        privacy_status: str | None = None,
        *,
        page_token: str | None = None,
        field: FieldConfigPayload | None = None,
    ) -> FieldResponse:
        def handler() -> tuple[dict[str, Any], int]:
            resolved_field = self.resolve_field_config(field)
            if not resolved_field.allow_select:
                raise InputValidationError("Selecting existing videos is disabled for this field.")
            status = privacy_status or resolved_field.privacy_status
            credential = self._oauth_session.load_valid_credential()
            page = self._catalog.list_videos_in_playlist(
                credential,
                playlist_id,
                status,
                page_token=page_token,
            )
            return _catalog_page_payload(page), OPERATION_QUOTA_UNITS["catalog.playlist_videos"]

        return self._run(
            "catalog.playlist_videos",
            handler,
            context={
                "playlist_id": playlist_id,
                "privacy_status": privacy_status,
                "page_token": page_token,
            },
        )

    # Record hooks.

    def on_record_saved(self, request: RecordSavedRequest) -> FieldResponse:
        def handler() -> tuple[dict[str, Any], int]:
            field = self.resolve_field_config(request.field)
            if not (field.sync_on_update or request.upload_mode):
                outcome = SyncOutcome(
                    video_id=request.video_id.strip(), action="update", status="skipped"
                )
                return _sync_outcome_payload(outcome), 0
            credential = self._credential_for_sync(request.video_id, "update")
            if isinstance(credential, SyncOutcome):
                return _sync_outcome_payload(credential), 0
            outcome = self._lifecycle.on_record_saved(
                credential,
                request.video_id,
                _record_snapshot(request.record),
                field,
                upload_mode=request.upload_mode,
            )
            units = OPERATION_QUOTA_UNITS["record.saved"] if outcome.status != "skipped" else 0
            return _sync_outcome_payload(outcome), units

        return self._run(
            "record.saved",
            handler,
            context={"video_id": request.video_id},
            record_hook=True,
        )

    def on_record_deleted(self, request: RecordDeletedRequest) -> FieldResponse:
        def handler() -> tuple[dict[str, Any], int]:
            field = self.resolve_field_config(request.field)
            if not field.delete_on_remove:
                outcome = SyncOutcome(
                    video_id=request.video_id.strip(), action="delete", status="skipped"
                )
                return _sync_outcome_payload(outcome), 0
            credential = self._credential_for_sync(request.video_id, "delete")
            if isinstance(credential, SyncOutcome):
                return _sync_outcome_payload(credential), 0
            outcome = self._lifecycle.on_record_deleted(credential, request.video_id, field)
            units = OPERATION_QUOTA_UNITS["record.deleted"] if outcome.status != "skipped" else 0
            return _sync_outcome_payload(outcome), units

        return self._run(
            "record.deleted",
            handler,
            context={"video_id": request.video_id},
            record_hook=True,
        )

    def on_field_validate(self, request: FieldValidateRequest) -> FieldResponse:
        def handler() -> tuple[dict[str, Any], int]:
            field = self.resolve_field_config(request.field)
            video_id = coerce_nonempty_string(request.value)
            if video_id is None:
                if field.required:
                    return {"valid": False, "message": "This field is required."}, 0
                return {"valid": True, "message": None}, 0

            if (request.upload_mode or field.sync_on_update) and not coerce_nonempty_string(
                request.record.title
            ):
                return {
                    "valid": False,
                    "message": "The record needs a title before its video can be synced.",
                }, 0

            units = OPERATION_QUOTA_UNITS["field.validate"]
            credential = self._oauth_session.load_valid_credential()
            try:
                self._lifecycle.validate_reference(credential, video_id)
            except ReferenceNotFoundError as exc:
                LOGGER.warning("youtube field invalid_reference video_id=%s", video_id)
                return {"valid": False, "message": str(exc)}, units
            return {"valid": True, "message": None}, units

        return self._run("field.validate", handler, context={"value": request.value})

    def resolve_field_config(self, payload: FieldConfigPayload | None) -> FieldConfig:
        if payload is None:
            return self._field_defaults
        overrides = payload.model_dump(exclude_none=True)
        if "tags" in overrides:
            overrides["tags"] = tuple(
                tag.strip() for tag in overrides["tags"] if isinstance(tag, str) and tag.strip()
            )
        return replace(self._field_defaults, **overrides)

    def _credential_for_sync(
        self,
        video_id: str,
        action: SyncAction,
    ) -> Credential | SyncOutcome:
        try:
            return self._oauth_session.load_valid_credential()
        except YouTubeFieldError as exc:
            LOGGER.error(
                "youtube sync credential_unavailable video_id=%s action=%s error=%s",
                video_id,
                action,
                exc,
            )
            return SyncOutcome(
                video_id=video_id.strip(),
                action=action,
                status="failed",
                error=str(exc),
            )

    def _run(
        self,
        operation: OperationName,
        handler: _Handler,
        *,
        context: dict[str, Any] | None = None,
        record_hook: bool = False,
    ) -> FieldResponse:
        started_at = perf_counter()
        self._telemetry.emit("field.operation.start", operation=operation)
        try:
            result, units = handler()
            response = FieldResponse(ok=True, operation=operation, result=result)
        except YouTubeFieldError as exc:
            units = 0
            response = self._error_response(operation, exc, context=context or {})
        except Exception as exc:
            self._telemetry.emit(
                "field.operation.error",
                operation=operation,
                duration_ms=int((perf_counter() - started_at) * 1000),
                error_type=type(exc).__name__,
            )
            raise

        if operation in OPERATION_QUOTA_UNITS and OPERATION_QUOTA_UNITS[operation] > 0:
            try:
                response = self._attach_quota_snapshot(
                    response,
                    operation=operation,
                    estimated_units_this_call=units,
                )
            except sqlite3.Error:
                # Record hooks must not fail the content save.
                if not record_hook:
                    raise
                LOGGER.error(
                    "youtube quota ledger_unavailable operation=%s", operation, exc_info=True
                )
        self._telemetry.emit(
            "field.operation.finish",
            operation=operation,
            duration_ms=int((perf_counter() - started_at) * 1000),
            outcome="ok" if response.ok else "error",
            error_code=response.error.code if response.error is not None else None,
        )
        return response

    def _error_response(
        self,
        operation: OperationName,
        exc: YouTubeFieldError,
        *,
        context: dict[str, Any],
    ) -> FieldResponse:
        if isinstance(exc, InputValidationError):
            LOGGER.warning(
                "youtube field validation_failed operation=%s context=%s error=%s",
                operation,
                context,
                exc,
            )
            code = "invalid_input"
            if isinstance(exc, EmptyResultError):
                code = "empty_result"
            elif isinstance(exc, ReferenceNotFoundError):
                code = "reference_not_found"
            return _error(operation, code=code, message=str(exc))

        if isinstance(exc, ConfigurationError):
            LOGGER.error("youtube field configuration_error operation=%s error=%s", operation, exc)
            return _error(operation, code="configuration_error", message=str(exc))
        if isinstance(exc, NotAuthorizedError):
            return _error(operation, code="not_authorized", message=str(exc))
        if isinstance(exc, AuthExchangeError):
            LOGGER.warning(
                "youtube field auth_exchange_failed operation=%s error=%s", operation, exc
            )
            return _error(operation, code="auth_exchange_failed", message=str(exc))
        if isinstance(exc, TokenRefreshError):
            return _error(
                operation,
                code="reauthorization_required",
                message=f"{exc} Please authorize the YouTube account again.",
            )

        if isinstance(exc, ProviderRequestError):
            LOGGER.error(
                "youtube field provider_failed operation=%s context=%s status=%s response=%s",
                operation,
                context,
                exc.status_code,
                exc.raw_response,
                exc_info=exc,
            )
            if isinstance(exc, ProviderQuotaOrPermissionError):
                return _error(
                    operation,
                    code="youtube_quota_or_permission",
                    message=exc.provider_message,
                    retryable=exc.status_code == 429,
                )
            code = "youtube_unavailable"
            if isinstance(exc, UploadInitError):
                code = "upload_init_failed"
            return _error(operation, code=code, message=TECHNICAL_PROBLEM_MESSAGE, retryable=True)

        LOGGER.error(
            "youtube field failed operation=%s context=%s", operation, context, exc_info=exc
        )
        return _error(operation, code="internal_error", message=TECHNICAL_PROBLEM_MESSAGE)

    def _attach_quota_snapshot(
        self,
        response: FieldResponse,
        *,
        operation: OperationName,
        estimated_units_this_call: int,
    ) -> FieldResponse:
        snapshot = self._youtube_quota_repository.record_and_snapshot(
            operation=operation,
            estimated_units_this_call=estimated_units_this_call,
            daily_limit=self._youtube_daily_quota_limit,
            warning_threshold=self._youtube_quota_warning_threshold,
        )
        quota_payload: dict[str, Any] = {
            "date_utc": snapshot.date_utc,
            "estimated_units_this_call": snapshot.estimated_units_this_call,
            "estimated_units_today": snapshot.estimated_units_today,
            "estimated_calls_today": snapshot.estimated_calls_today,
            "daily_limit": snapshot.daily_limit,
            "warning_threshold": snapshot.warning_threshold,
            "warning": snapshot.warning,
            "units_by_operation_today": self._youtube_quota_repository.units_by_operation(
                snapshot.date_utc
            ),
        }
        if snapshot.warning:
            quota_payload["warning_message"] = (
                "Estimated YouTube API quota usage is above warning threshold "
                f"({snapshot.estimated_units_today}/{snapshot.daily_limit})."
            )

        result = dict(response.result)
        result["quota"] = quota_payload
        return response.model_copy(update={"result": result})


def _error(
    operation: OperationName,
    *,
    code: str,
    message: str,
    retryable: bool = False,
) -> FieldResponse:
    return FieldResponse(
        ok=False,
        operation=operation,
        result={"status": "failed"},
        error=FieldError(code=code, message=message, retryable=retryable),
    )


def _catalog_page_payload(page: CatalogPage) -> dict[str, Any]:
    return {
        "items": [{"id": item.id, "title": item.title} for item in page.items],
        "next_page_token": page.next_page_token,
    }


def _sync_outcome_payload(outcome: SyncOutcome) -> dict[str, Any]:
    return {"sync": asdict(outcome)}


def _record_snapshot(record: RecordPayload) -> RecordSnapshot:
    return RecordSnapshot(title=record.title, excerpt=record.excerpt)
