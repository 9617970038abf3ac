from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from backend.app.repositories.credential_repository import Credential
from backend.app.services.errors import EmptyResultError, InputValidationError
from backend.app.services.youtube_client import (
    as_dict,
    as_list,
    build_youtube_client,
    coerce_nonempty_string,
    execute_request,
)

LOGGER = logging.getLogger("youtube_field.catalog")

CATALOG_PAGE_SIZE = 50


@dataclass(frozen=True)
class CatalogItem:
    id: str
    title: str


@dataclass(frozen=True)
class CatalogPage:
    items: list[CatalogItem] = field(default_factory=list)
    next_page_token: str | None = None


class VideoCatalogQuery:
    """Read-only listings of the authorized channel, filtered by privacy status."""

    def __init__(self, *, client_factory: Callable[[str], Any] | None = None) -> None:
        self._client_factory = client_factory or build_youtube_client

    def list_playlists(
        self,
        credential: Credential,
        privacy_status: str,
        *,
        page_token: str | None = None,
    ) -> CatalogPage:
        client = self._client_factory(credential.access_token)
        params: dict[str, Any] = {
            "part": "snippet,status",
            "mine": True,
            "maxResults": CATALOG_PAGE_SIZE,
        }
        if page_token:
            params["pageToken"] = page_token
        response = execute_request(client.playlists().list(**params), operation="playlists.list")

        items = _filter_and_dedupe(
            as_list(response.get("items")),
            privacy_status=privacy_status,
            id_getter=lambda item: item.get("id"),
        )
        LOGGER.debug(
            "youtube catalog playlists privacy_status=%s count=%s",
            privacy_status,
            len(items),
        )
        return CatalogPage(
            items=items,
            next_page_token=coerce_nonempty_string(response.get("nextPageToken")),
        )

    def list_videos_in_playlist(
        self,
        credential: Credential,
        playlist_id: str,
        privacy_status: str,
        *,
        page_token: str | None = None,
    ) -> CatalogPage:
        normalized_playlist_id = coerce_nonempty_string(playlist_id)
        if normalized_playlist_id is None:
            raise InputValidationError("playlist_id is required.")

        client = self._client_factory(credential.access_token)
        params: dict[str, Any] = {
            "part": "snippet,status",
            "playlistId": normalized_playlist_id,
            "maxResults": CATALOG_PAGE_SIZE,
        }
        if page_token:
            params["pageToken"] = page_token
        response = execute_request(
            client.playlistItems().list(**params),
            operation="playlistItems.list",
        )

        items = _filter_and_dedupe(
            as_list(response.get("items")),
            privacy_status=privacy_status,
            id_getter=lambda item: as_dict(as_dict(item.get("snippet")).get("resourceId")).get(
                "videoId"
            ),
        )
        if not items:
            raise EmptyResultError(
                f"No {privacy_status} videos found in playlist {normalized_playlist_id}."
            )
        return CatalogPage(
            items=items,
            next_page_token=coerce_nonempty_string(response.get("nextPageToken")),
        )


def _filter_and_dedupe(
    raw_items: Iterable[Any],
    *,
    privacy_status: str,
    id_getter: Callable[[dict[str, Any]], object],
) -> list[CatalogItem]:
    seen: set[str] = set()
    items: list[CatalogItem] = []
    for raw_item in raw_items:
        item = as_dict(raw_item)
        if as_dict(item.get("status")).get("privacyStatus") != privacy_status:
            continue
        item_id = coerce_nonempty_string(id_getter(item))
        if item_id is None or item_id in seen:
            continue
        seen.add(item_id)
        title = as_dict(item.get("snippet")).get("title")
        items.append(CatalogItem(id=item_id, title=title if isinstance(title, str) else ""))
    return items
