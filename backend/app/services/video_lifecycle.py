from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Literal

from backend.app.repositories.credential_repository import Credential
from backend.app.services.errors import ReferenceNotFoundError
from backend.app.services.field_config import FieldConfig
from backend.app.services.youtube_client import (
    as_dict,
    as_list,
    build_youtube_client,
    coerce_nonempty_string,
    execute_request,
    summarize_exception_message,
)
from backend.app.telemetry import TelemetryClient

LOGGER = logging.getLogger("youtube_field.lifecycle")

SyncAction = Literal["update", "delete"]
SyncStatus = Literal["skipped", "succeeded", "failed"]


@dataclass(frozen=True)
class RecordSnapshot:
    title: str
    excerpt: str | None = None


@dataclass(frozen=True)
class SyncOutcome:
    video_id: str
    action: SyncAction
    status: SyncStatus
    error: str | None = None


class VideoLifecycleSync:
    """Mirror content-record changes onto the linked YouTube video.

    Record saves and deletes must never fail because YouTube did, so the two
    hooks log provider failures and report them as a failed `SyncOutcome`.
    `validate_reference` is the exception: it raises so the caller can reject
    the field value.
    """

    def __init__(
        self,
        *,
        client_factory: Callable[[str], Any] | None = None,
        telemetry: TelemetryClient | None = None,
    ) -> None:
        self._client_factory = client_factory or build_youtube_client
        self._telemetry = telemetry or TelemetryClient.disabled()

    def on_record_saved(
        self,
        credential: Credential,
        video_id: str,
        record: RecordSnapshot,
        field: FieldConfig,
        *,
        upload_mode: bool = False,
    ) -> SyncOutcome:
        normalized_video_id = coerce_nonempty_string(video_id)
        if normalized_video_id is None:
            return SyncOutcome(video_id="", action="update", status="skipped")
        if not (field.sync_on_update or upload_mode):
            return SyncOutcome(video_id=normalized_video_id, action="update", status="skipped")

        title = coerce_nonempty_string(record.title)
        if title is None:
            LOGGER.warning(
                "youtube sync skipped video_id=%s reason=empty_title", normalized_video_id
            )
            return SyncOutcome(
                video_id=normalized_video_id,
                action="update",
                status="skipped",
                error="Record title is empty.",
            )

        try:
            client = self._client_factory(credential.access_token)
            response = execute_request(
                client.videos().list(part="snippet", id=normalized_video_id),
                operation="videos.list",
            )
            items = as_list(response.get("items"))
            if not items:
                raise ReferenceNotFoundError(f"Video {normalized_video_id} was not found.")
            remote_snippet = as_dict(as_dict(items[0]).get("snippet"))
            snippet = _merge_snippet(remote_snippet, title=title, record=record, field=field)
            execute_request(
                client.videos().update(
                    part="snippet",
                    body={"id": normalized_video_id, "snippet": snippet},
                ),
                operation="videos.update",
            )
        except Exception as exc:
            return self._failed(normalized_video_id, "update", exc)

        LOGGER.info("youtube sync updated video_id=%s", normalized_video_id)
        self._telemetry.emit(
            "youtube.video.sync",
            video_id=normalized_video_id,
            action="update",
            status="succeeded",
        )
        return SyncOutcome(video_id=normalized_video_id, action="update", status="succeeded")

    def on_record_deleted(
        self,
        credential: Credential,
        video_id: str,
        field: FieldConfig,
    ) -> SyncOutcome:
        normalized_video_id = coerce_nonempty_string(video_id)
        if normalized_video_id is None:
            return SyncOutcome(video_id="", action="delete", status="skipped")
        if not field.delete_on_remove:
            return SyncOutcome(video_id=normalized_video_id, action="delete", status="skipped")

        try:
            client = self._client_factory(credential.access_token)
            execute_request(
                client.videos().delete(id=normalized_video_id),
                operation="videos.delete",
            )
        except Exception as exc:
            return self._failed(normalized_video_id, "delete", exc)

        LOGGER.info("youtube sync deleted video_id=%s", normalized_video_id)
        self._telemetry.emit(
            "youtube.video.sync",
            video_id=normalized_video_id,
            action="delete",
            status="succeeded",
        )
        return SyncOutcome(video_id=normalized_video_id, action="delete", status="succeeded")

    def validate_reference(self, credential: Credential, video_id: str) -> bool:
        normalized_video_id = coerce_nonempty_string(video_id)
        if normalized_video_id is None:
            raise ReferenceNotFoundError("Video id is empty.")

        client = self._client_factory(credential.access_token)
        videos = execute_request(
            client.videos().list(part="snippet", id=normalized_video_id),
            operation="videos.list",
        )
        items = as_list(videos.get("items"))
        if not items:
            raise ReferenceNotFoundError(f"Video {normalized_video_id} was not found.")

        channels = execute_request(
            client.channels().list(part="id", mine=True),
            operation="channels.list",
        )
        own_channel_ids = {
            channel_id
            for channel_id in (
                coerce_nonempty_string(as_dict(item).get("id"))
                for item in as_list(channels.get("items"))
            )
            if channel_id is not None
        }
        owner = coerce_nonempty_string(as_dict(as_dict(items[0]).get("snippet")).get("channelId"))
        if owner is None or owner not in own_channel_ids:
            raise ReferenceNotFoundError(
                f"Video {normalized_video_id} does not belong to the authorized channel."
            )
        return True

    def _failed(self, video_id: str, action: SyncAction, exc: Exception) -> SyncOutcome:
        message = summarize_exception_message(exc)
        LOGGER.error(
            "youtube sync failed video_id=%s action=%s error=%s",
            video_id,
            action,
            message,
            exc_info=True,
        )
        self._telemetry.emit(
            "youtube.video.sync",
            video_id=video_id,
            action=action,
            status="failed",
            error_type=exc.__class__.__name__,
        )
        return SyncOutcome(video_id=video_id, action=action, status="failed", error=message)


def _merge_snippet(
    remote_snippet: dict[str, Any],
    *,
    title: str,
    record: RecordSnapshot,
    field: FieldConfig,
) -> dict[str, Any]:
    snippet: dict[str, Any] = {
        "title": title,
        "categoryId": coerce_nonempty_string(remote_snippet.get("categoryId"))
        or str(field.category_id),
    }
    tags = as_list(remote_snippet.get("tags"))
    if tags:
        snippet["tags"] = tags
    excerpt = coerce_nonempty_string(record.excerpt)
    if excerpt is not None:
        snippet["description"] = excerpt
    elif isinstance(remote_snippet.get("description"), str):
        snippet["description"] = remote_snippet["description"]
    return snippet
