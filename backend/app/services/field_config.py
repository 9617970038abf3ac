from __future__ import annotations

from dataclasses import dataclass

from backend.app.config import PRIVACY_STATUSES, AppSettings
from backend.app.services.errors import InputValidationError


@dataclass(frozen=True)
class FieldConfig:
    category_id: int = 22
    tags: tuple[str, ...] = ()
    privacy_status: str = "unlisted"
    made_for_kids: bool = False
    allow_upload: bool = True
    allow_select: bool = True
    sync_on_update: bool = True
    delete_on_remove: bool = False
    required: bool = False

    def __post_init__(self) -> None:
        if self.category_id < 0:
            raise InputValidationError("category_id must be zero or positive.")
        if self.privacy_status not in PRIVACY_STATUSES:
            raise InputValidationError(
                "privacy_status must be one of: " + ", ".join(sorted(PRIVACY_STATUSES))
            )

    @classmethod
    def from_settings(cls, settings: AppSettings) -> FieldConfig:
        return cls(
            category_id=settings.field_category_id,
            tags=settings.field_tag_list,
            privacy_status=settings.field_privacy_status,
            made_for_kids=settings.field_made_for_kids,
            allow_upload=settings.field_allow_upload,
            allow_select=settings.field_allow_select,
            sync_on_update=settings.field_sync_on_update,
            delete_on_remove=settings.field_delete_on_remove,
        )
