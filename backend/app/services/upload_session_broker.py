from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode
from urllib.request import Request, urlopen

from backend.app.repositories.credential_repository import Credential
from backend.app.services.errors import UploadInitError, UploadQuotaOrPermissionError
from backend.app.services.youtube_client import (
    extract_provider_message,
    is_quota_or_permission_failure,
    summarize_exception_message,
)
from backend.app.telemetry import TelemetryClient

LOGGER = logging.getLogger("youtube_field.uploads")

RESUMABLE_UPLOAD_ENDPOINT = "https://www.googleapis.com/upload/youtube/v3/videos"
RESUMABLE_UPLOAD_PARAMS: dict[str, str] = {
    "uploadType": "resumable",
    "part": "snippet,status",
}


@dataclass(frozen=True)
class VideoMetadata:
    title: str
    category_id: int
    description: str | None = None
    tags: tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class StatusFlags:
    privacy_status: str
    made_for_kids: bool = False


@dataclass(frozen=True)
class UploadSession:
    upload_url: str


@dataclass(frozen=True)
class _InitiationResponse:
    status_code: int
    location: str | None
    raw_body: str


class UploadSessionBroker:
    """Start a resumable `videos.insert` session the browser uploads into.

    The backend never touches video bytes: it only asks YouTube for a session
    URL and hands it back untouched.
    """

    def __init__(
        self,
        *,
        timeout_seconds: float = 30.0,
        telemetry: TelemetryClient | None = None,
    ) -> None:
        self._timeout_seconds = timeout_seconds
        self._telemetry = telemetry or TelemetryClient.disabled()

    def create_session(
        self,
        credential: Credential,
        metadata: VideoMetadata,
        status_flags: StatusFlags,
    ) -> UploadSession:
        body = build_insert_body(metadata, status_flags)
        try:
            response = _post_resumable_initiation(
                url=f"{RESUMABLE_UPLOAD_ENDPOINT}?{urlencode(RESUMABLE_UPLOAD_PARAMS)}",
                access_token=credential.access_token,
                body=body,
                timeout_seconds=self._timeout_seconds,
            )
        except (URLError, TimeoutError, OSError) as exc:
            message = summarize_exception_message(exc)
            LOGGER.error("youtube upload_session network_failed error=%s", message)
            raise UploadInitError(
                f"Upload session request failed: {message}",
                provider_message=message,
            ) from exc

        if not 200 <= response.status_code < 300:
            provider_message = extract_provider_message(response.raw_body) or response.raw_body
            LOGGER.error(
                "youtube upload_session rejected status=%s request=%s response=%s",
                response.status_code,
                json.dumps(body, sort_keys=True),
                response.raw_body,
            )
            error_cls = (
                UploadQuotaOrPermissionError
                if is_quota_or_permission_failure(response.status_code, response.raw_body)
                else UploadInitError
            )
            raise error_cls(
                f"YouTube refused the upload session (status {response.status_code}): "
                f"{provider_message}",
                status_code=response.status_code,
                provider_message=provider_message,
                raw_response=response.raw_body,
            )

        if not response.location:
            LOGGER.error(
                "youtube upload_session missing_location status=%s response=%s",
                response.status_code,
                response.raw_body,
            )
            raise UploadInitError(
                "YouTube did not return an upload session URL.",
                status_code=response.status_code,
                raw_response=response.raw_body,
            )

        self._telemetry.emit(
            "youtube.upload_session.created",
            privacy_status=status_flags.privacy_status,
            category_id=metadata.category_id,
        )
        return UploadSession(upload_url=response.location)


def build_insert_body(metadata: VideoMetadata, status_flags: StatusFlags) -> dict[str, Any]:
    snippet: dict[str, Any] = {
        "title": metadata.title,
        "categoryId": str(metadata.category_id),
        "tags": list(metadata.tags),
    }
    if metadata.description:
        snippet["description"] = metadata.description
    return {
        "snippet": snippet,
        "status": {
            "privacyStatus": status_flags.privacy_status,
            "selfDeclaredMadeForKids": status_flags.made_for_kids,
        },
    }


def _post_resumable_initiation(
    *,
    url: str,
    access_token: str,
    body: dict[str, Any],
    timeout_seconds: float,
) -> _InitiationResponse:
    request = Request(
        url,
        data=json.dumps(body).encode("utf-8"),
        headers={
            "authorization": f"Bearer {access_token}",
            "content-type": "application/json; charset=UTF-8",
            "accept": "application/json",
            "user-agent": "youtube-field/1.0",
        },
        method="POST",
    )

    try:
        with urlopen(request, timeout=timeout_seconds) as response:
            return _InitiationResponse(
                status_code=int(response.getcode() or 0),
                location=response.headers.get("Location"),
                raw_body=response.read().decode("utf-8", errors="replace"),
            )
    except HTTPError as exc:
        return _InitiationResponse(
            status_code=int(exc.code),
            location=None,
            raw_body=exc.read().decode("utf-8", errors="replace"),
        )
