from __future__ import annotations

from collections.abc import Callable
from typing import Annotated

from fastapi import APIRouter, Depends, Query
from structlog.contextvars import bind_contextvars, reset_contextvars

from backend.app.dependencies import get_dispatcher
from backend.app.models.field_contracts import (
    ConfirmUploadRequest,
    FieldConfigPayload,
    FieldResponse,
    FieldValidateRequest,
    OperationName,
    PrivacyStatus,
    RecordDeletedRequest,
    RecordSavedRequest,
    UploadSessionRequest,
)
from backend.app.services.field_dispatcher import FieldDispatcher

router = APIRouter()

Dispatcher = Annotated[FieldDispatcher, Depends(get_dispatcher)]


def _handle_operation(
    operation: OperationName,
    call: Callable[[], FieldResponse],
) -> FieldResponse:
    context_tokens = bind_contextvars(field_operation=operation)
    try:
        return call()
    finally:
        reset_contextvars(**context_tokens)


def _catalog_field(allow_select: bool | None) -> FieldConfigPayload | None:
    if allow_select is None:
        return None
    return FieldConfigPayload(allow_select=allow_select)


@router.get(
    "/oauth/authorization-url",
    response_model=FieldResponse,
    tags=["oauth"],
    operation_id="oauth_authorization_url",
)
def oauth_authorization_url(dispatcher: Dispatcher) -> FieldResponse:
    return _handle_operation("oauth.authorization_url", dispatcher.get_authorization_url)


@router.get(
    "/oauth/callback",
    response_model=FieldResponse,
    tags=["oauth"],
    operation_id="oauth_callback",
)
def oauth_callback(
    dispatcher: Dispatcher,
    code: Annotated[str | None, Query()] = None,
    error: Annotated[str | None, Query()] = None,
) -> FieldResponse:
    # Google redirects with `error=access_denied` and no code when consent is refused.
    return _handle_operation(
        "oauth.callback",
        lambda: dispatcher.handle_callback(code, provider_error=error),
    )


@router.get(
    "/oauth/status",
    response_model=FieldResponse,
    tags=["oauth"],
    operation_id="oauth_status",
)
def oauth_status(dispatcher: Dispatcher) -> FieldResponse:
    return _handle_operation("oauth.status", dispatcher.get_status)


@router.post(
    "/oauth/logout",
    response_model=FieldResponse,
    tags=["oauth"],
    operation_id="oauth_logout",
)
def oauth_logout(dispatcher: Dispatcher) -> FieldResponse:
    return _handle_operation("oauth.logout", dispatcher.logout)


@router.post(
    "/uploads/session",
    response_model=FieldResponse,
    tags=["uploads"],
    operation_id="uploads_session",
)
def uploads_session(request: UploadSessionRequest, dispatcher: Dispatcher) -> FieldResponse:
    return _handle_operation(
        "upload.session",
        lambda: dispatcher.request_upload_session(request),
    )


@router.post(
    "/uploads/confirm",
    response_model=FieldResponse,
    tags=["uploads"],
    operation_id="uploads_confirm",
)
def uploads_confirm(request: ConfirmUploadRequest, dispatcher: Dispatcher) -> FieldResponse:
    return _handle_operation(
        "upload.confirm",
        lambda: dispatcher.confirm_uploaded_video(request.video_id),
    )


@router.get(
    "/catalog/playlists",
    response_model=FieldResponse,
    tags=["catalog"],
    operation_id="catalog_playlists",
)
def catalog_playlists(
    dispatcher: Dispatcher,
    privacy_status: Annotated[PrivacyStatus | None, Query()] = None,
    page_token: Annotated[str | None, Query()] = None,
    allow_select: Annotated[bool | None, Query()] = None,
) -> FieldResponse:
    return _handle_operation(
        "catalog.playlists",
        lambda: dispatcher.list_playlists(
            privacy_status,
            page_token=page_token,
            field=_catalog_field(allow_select),
        ),
    )


@router.get(
    "/catalog/playlists/{playlist_id}/videos",
    response_model=FieldResponse,
    tags=["catalog"],
    operation_id="catalog_playlist_videos",
)
def catalog_playlist_videos(
    playlist_id: str,
    dispatcher: Dispatcher,
    privacy_status: Annotated[PrivacyStatus | None, Query()] = None,
    page_token: Annotated[str | None, Query()] = None,
    allow_select: Annotated[bool | None, Query()] = None,
) -> FieldResponse:
    return _handle_operation(
        "catalog.playlist_videos",
        lambda: dispatcher.list_playlist_videos(
            playlist_id,
            privacy_status,
            page_token=page_token,
            field=_catalog_field(allow_select),
        ),
    )


@router.post(
    "/records/saved",
    response_model=FieldResponse,
    tags=["records"],
    operation_id="records_saved",
)
def records_saved(request: RecordSavedRequest, dispatcher: Dispatcher) -> FieldResponse:
    return _handle_operation("record.saved", lambda: dispatcher.on_record_saved(request))


@router.post(
    "/records/deleted",
    response_model=FieldResponse,
    tags=["records"],
    operation_id="records_deleted",
)
def records_deleted(request: RecordDeletedRequest, dispatcher: Dispatcher) -> FieldResponse:
    return _handle_operation("record.deleted", lambda: dispatcher.on_record_deleted(request))


@router.post(
    "/fields/validate",
    response_model=FieldResponse,
    tags=["fields"],
    operation_id="fields_validate",
)
def fields_validate(request: FieldValidateRequest, dispatcher: Dispatcher) -> FieldResponse:
    return _handle_operation("field.validate", lambda: dispatcher.on_field_validate(request))


@router.post(
    "/fields/deactivate",
    response_model=FieldResponse,
    tags=["fields"],
    operation_id="fields_deactivate",
)
def fields_deactivate(dispatcher: Dispatcher) -> FieldResponse:
    return _handle_operation("field.deactivate", dispatcher.deactivate)
