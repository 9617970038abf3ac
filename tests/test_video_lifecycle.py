from __future__ import annotations

import json
import types
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from backend.app.repositories.credential_repository import Credential
from backend.app.services.errors import ProviderRequestError, ReferenceNotFoundError
from backend.app.services.field_config import FieldConfig
from backend.app.services.video_lifecycle import RecordSnapshot, VideoLifecycleSync


class FakeHttpError(Exception):
    def __init__(self, status: int, payload: dict[str, Any]) -> None:
        super().__init__(f"HttpError {status}")
        self.resp = types.SimpleNamespace(status=status)
        self.content = json.dumps(payload).encode("utf-8")


class _FakeRequest:
    def __init__(self, outcome: object) -> None:
        self._outcome = outcome

    def execute(self) -> object:
        if isinstance(self._outcome, Exception):
            raise self._outcome
        return self._outcome


class _FakeResource:
    def __init__(self, client: FakeYouTube, name: str) -> None:
        self._client = client
        self._name = name

    def list(self, **kwargs: Any) -> _FakeRequest:
        return self._client.record(f"{self._name}.list", kwargs)

    def update(self, **kwargs: Any) -> _FakeRequest:
        return self._client.record(f"{self._name}.update", kwargs)

    def delete(self, **kwargs: Any) -> _FakeRequest:
        return self._client.record(f"{self._name}.delete", kwargs)


class FakeYouTube:
    def __init__(self, responses: dict[str, object]) -> None:
        self.responses = responses
        self.calls: list[tuple[str, dict[str, Any]]] = []

    def record(self, key: str, kwargs: dict[str, Any]) -> _FakeRequest:
        self.calls.append((key, kwargs))
        return _FakeRequest(self.responses[key])

    def videos(self) -> _FakeResource:
        return _FakeResource(self, "videos")

    def channels(self) -> _FakeResource:
        return _FakeResource(self, "channels")


def _credential() -> Credential:
    return Credential(
        access_token="access-1",
        refresh_token="refresh-1",
        expires_at=datetime.now(UTC) + timedelta(hours=1),
    )


def _lifecycle(client: FakeYouTube) -> VideoLifecycleSync:
    return VideoLifecycleSync(client_factory=lambda _token: client)


def _video(
    video_id: str,
    *,
    channel_id: str = "UC-own",
    description: str | None = "Original description",
    category_id: str | None = "27",
    tags: list[str] | None = None,
) -> dict[str, Any]:
    snippet: dict[str, Any] = {"title": "Old title", "channelId": channel_id}
    if description is not None:
        snippet["description"] = description
    if category_id is not None:
        snippet["categoryId"] = category_id
    if tags is not None:
        snippet["tags"] = tags
    return {"id": video_id, "snippet": snippet}


def _updated_snippet(client: FakeYouTube) -> dict[str, Any]:
    update_calls = [kwargs for key, kwargs in client.calls if key == "videos.update"]
    assert len(update_calls) == 1
    assert update_calls[0]["part"] == "snippet"
    return update_calls[0]["body"]["snippet"]


def test_on_record_saved_updates_title_and_description() -> None:
    client = FakeYouTube(
        {
            "videos.list": {"items": [_video("vid-1", tags=["launch"])]},
            "videos.update": {"id": "vid-1"},
        }
    )

    outcome = _lifecycle(client).on_record_saved(
        _credential(),
        "vid-1",
        RecordSnapshot(title="New title", excerpt="A short summary"),
        FieldConfig(),
    )

    assert outcome.status == "succeeded"
    assert outcome.action == "update"
    assert client.calls[0] == ("videos.list", {"part": "snippet", "id": "vid-1"})
    assert _updated_snippet(client) == {
        "title": "New title",
        "categoryId": "27",
        "tags": ["launch"],
        "description": "A short summary",
    }


def test_on_record_saved_empty_excerpt_keeps_remote_description() -> None:
    client = FakeYouTube(
        {"videos.list": {"items": [_video("vid-1")]}, "videos.update": {"id": "vid-1"}}
    )

    _lifecycle(client).on_record_saved(
        _credential(),
        "vid-1",
        RecordSnapshot(title="New title", excerpt="   "),
        FieldConfig(),
    )

    assert _updated_snippet(client)["description"] == "Original description"


def test_on_record_saved_falls_back_to_field_category() -> None:
    client = FakeYouTube(
        {
            "videos.list": {"items": [_video("vid-1", category_id=None, description=None)]},
            "videos.update": {"id": "vid-1"},
        }
    )

    _lifecycle(client).on_record_saved(
        _credential(),
        "vid-1",
        RecordSnapshot(title="New title"),
        FieldConfig(category_id=10),
    )

    snippet = _updated_snippet(client)
    assert snippet["categoryId"] == "10"
    assert "description" not in snippet
    assert "tags" not in snippet


def test_on_record_saved_provider_failure_never_raises() -> None:
    client = FakeYouTube(
        {
            "videos.list": {"items": [_video("vid-1")]},
            "videos.update": FakeHttpError(500, {"error": {"message": "Backend Error"}}),
        }
    )

    outcome = _lifecycle(client).on_record_saved(
        _credential(),
        "vid-1",
        RecordSnapshot(title="New title"),
        FieldConfig(),
    )

    assert outcome.status == "failed"
    assert outcome.error is not None
    assert "Backend Error" in outcome.error


def test_on_record_saved_client_factory_failure_never_raises() -> None:
    def _factory(_token: str) -> Any:
        raise RuntimeError("discovery document unavailable")

    outcome = VideoLifecycleSync(client_factory=_factory).on_record_saved(
        _credential(),
        "vid-1",
        RecordSnapshot(title="New title"),
        FieldConfig(),
    )

    assert outcome.status == "failed"
    assert outcome.error == "discovery document unavailable"


def test_on_record_saved_missing_video_is_failed_outcome() -> None:
    client = FakeYouTube({"videos.list": {"items": []}})

    outcome = _lifecycle(client).on_record_saved(
        _credential(),
        "vid-gone",
        RecordSnapshot(title="New title"),
        FieldConfig(),
    )

    assert outcome.status == "failed"
    assert [key for key, _kwargs in client.calls] == ["videos.list"]


def test_on_record_saved_skips_without_provider_calls() -> None:
    client = FakeYouTube({})
    lifecycle = _lifecycle(client)

    no_video = lifecycle.on_record_saved(
        _credential(), "  ", RecordSnapshot(title="T"), FieldConfig()
    )
    sync_off = lifecycle.on_record_saved(
        _credential(), "vid-1", RecordSnapshot(title="T"), FieldConfig(sync_on_update=False)
    )
    empty_title = lifecycle.on_record_saved(
        _credential(), "vid-1", RecordSnapshot(title=" "), FieldConfig()
    )

    assert no_video.status == "skipped"
    assert sync_off.status == "skipped"
    assert empty_title.status == "skipped"
    assert empty_title.error == "Record title is empty."
    assert client.calls == []


def test_on_record_saved_upload_mode_syncs_even_when_updates_disabled() -> None:
    client = FakeYouTube(
        {"videos.list": {"items": [_video("vid-1")]}, "videos.update": {"id": "vid-1"}}
    )

    outcome = _lifecycle(client).on_record_saved(
        _credential(),
        "vid-1",
        RecordSnapshot(title="First title"),
        FieldConfig(sync_on_update=False),
        upload_mode=True,
    )

    assert outcome.status == "succeeded"


def test_on_record_deleted_only_deletes_when_enabled() -> None:
    client = FakeYouTube({"videos.delete": ""})
    lifecycle = _lifecycle(client)

    skipped = lifecycle.on_record_deleted(_credential(), "vid-1", FieldConfig())
    assert skipped.status == "skipped"
    assert client.calls == []

    deleted = lifecycle.on_record_deleted(
        _credential(), "vid-1", FieldConfig(delete_on_remove=True)
    )
    assert deleted.status == "succeeded"
    assert client.calls == [("videos.delete", {"id": "vid-1"})]


def test_on_record_deleted_failure_is_swallowed() -> None:
    client = FakeYouTube(
        {"videos.delete": FakeHttpError(404, {"error": {"message": "Video not found."}})}
    )

    outcome = _lifecycle(client).on_record_deleted(
        _credential(), "vid-1", FieldConfig(delete_on_remove=True)
    )

    assert outcome.status == "failed"
    assert outcome.action == "delete"


def test_validate_reference_accepts_own_video() -> None:
    client = FakeYouTube(
        {
            "videos.list": {"items": [_video("vid-1", channel_id="UC-own")]},
            "channels.list": {"items": [{"id": "UC-own"}]},
        }
    )

    assert _lifecycle(client).validate_reference(_credential(), "vid-1") is True
    assert ("channels.list", {"part": "id", "mine": True}) in client.calls


def test_validate_reference_rejects_foreign_video() -> None:
    client = FakeYouTube(
        {
            "videos.list": {"items": [_video("vid-1", channel_id="UC-someone-else")]},
            "channels.list": {"items": [{"id": "UC-own"}]},
        }
    )

    with pytest.raises(ReferenceNotFoundError, match="authorized channel"):
        _lifecycle(client).validate_reference(_credential(), "vid-1")


def test_validate_reference_rejects_missing_video() -> None:
    client = FakeYouTube({"videos.list": {"items": []}})

    with pytest.raises(ReferenceNotFoundError, match="not found"):
        _lifecycle(client).validate_reference(_credential(), "vid-404")


def test_validate_reference_propagates_provider_errors() -> None:
    client = FakeYouTube(
        {"videos.list": FakeHttpError(500, {"error": {"message": "Backend Error"}})}
    )

    with pytest.raises(ProviderRequestError):
        _lifecycle(client).validate_reference(_credential(), "vid-1")
