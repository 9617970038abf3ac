from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

OperationName = Literal[
    "oauth.authorization_url",
    "oauth.callback",
    "oauth.status",
    "oauth.logout",
    "field.deactivate",
    "upload.session",
    "upload.confirm",
    "catalog.playlists",
    "catalog.playlist_videos",
    "record.saved",
    "record.deleted",
    "field.validate",
    "oauth.token_check",
]

PrivacyStatus = Literal["unlisted", "private", "public"]

# Estimated YouTube Data API cost per operation.
OPERATION_QUOTA_UNITS: dict[OperationName, int] = {
    "oauth.status": 0,
    "upload.session": 1600,
    "upload.confirm": 2,
    "catalog.playlists": 1,
    "catalog.playlist_videos": 1,
    "record.saved": 51,
    "record.deleted": 50,
    "field.validate": 2,
}


class FieldError(BaseModel):
    model_config = ConfigDict(extra="forbid")

    code: str
    message: str
    retryable: bool = False


def _default_result() -> dict[str, Any]:
    return {}


class FieldResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    ok: bool
    operation: OperationName
    result: dict[str, Any] = Field(default_factory=_default_result)
    error: FieldError | None = None


class FieldConfigPayload(BaseModel):
    """Per-request overrides of the configured field defaults."""

    model_config = ConfigDict(extra="forbid")

    category_id: int | None = Field(default=None, ge=0)
    tags: list[str] | None = None
    privacy_status: PrivacyStatus | None = None
    made_for_kids: bool | None = None
    allow_upload: bool | None = None
    allow_select: bool | None = None
    sync_on_update: bool | None = None
    delete_on_remove: bool | None = None
    required: bool | None = None


class RecordPayload(BaseModel):
    model_config = ConfigDict(extra="forbid")

    title: str = ""
    excerpt: str | None = None


class UploadSessionRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    title: str
    description: str | None = None
    category_id: int | None = Field(default=None, ge=0)
    tags: list[str] | None = None
    privacy_status: PrivacyStatus | None = None
    made_for_kids: bool | None = None
    field: FieldConfigPayload | None = None


class ConfirmUploadRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    video_id: str


class RecordSavedRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    video_id: str
    record: RecordPayload
    field: FieldConfigPayload | None = None
    upload_mode: bool = False


class RecordDeletedRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    video_id: str
    field: FieldConfigPayload | None = None


class FieldValidateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    value: str | None = None
    record: RecordPayload = Field(default_factory=RecordPayload)
    field: FieldConfigPayload | None = None
    upload_mode: bool = False
