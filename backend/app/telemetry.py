from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any, Literal, get_args

import structlog

LOGGER = logging.getLogger("youtube_field.telemetry")

TelemetryEvent = Literal[
    "http.request.start",
    "http.request.finish",
    "http.request.error",
    "field.operation.start",
    "field.operation.finish",
    "field.operation.error",
    "oauth.token.refreshed",
    "oauth.token.refresh_failed",
    "youtube.upload_session.created",
    "youtube.video.sync",
    "scheduler.tick.finish",
    "scheduler.tick.error",
]
KNOWN_EVENTS: frozenset[str] = frozenset(get_args(TelemetryEvent))

AttributeValue = bool | int | float | str | None
TelemetrySink = Callable[[str, dict[str, AttributeValue]], None]

# OAuth material and upload session URLs grant access to the channel.
_REDACTED_KEYS: frozenset[str] = frozenset(
    {"access_token", "refresh_token", "client_secret", "code", "upload_url", "authorization"}
)
_REDACTED_SUFFIXES: tuple[str, ...] = ("_secret", "_password")
_MAX_STRING_LENGTH = 160


def log_sink(event_name: str, attributes: dict[str, AttributeValue]) -> None:
    structlog.get_logger("youtube_field.telemetry").info(
        "telemetry",
        telemetry_event=event_name,
        telemetry_area=event_name.split(".", 1)[0],
        **attributes,
    )


@dataclass(frozen=True)
class TelemetryClient:
    """Emits the events named by `TelemetryEvent` to one sink.

    Attributes reach the sink as scalars with OAuth secrets and upload URLs
    redacted.
    """

    sink: TelemetrySink | None = None

    @property
    def enabled(self) -> bool:
        return self.sink is not None

    @classmethod
    def disabled(cls) -> TelemetryClient:
        return cls()

    def emit(self, event_name: TelemetryEvent, **attributes: Any) -> None:
        if self.sink is None:
            return
        if event_name not in KNOWN_EVENTS:
            LOGGER.warning("telemetry event dropped; unknown name event=%s", event_name)
            return
        self.sink(event_name, scrub_attributes(attributes))


def build_telemetry_client(*, enabled: bool, sink: Literal["none", "log"]) -> TelemetryClient:
    if not enabled or sink == "none":
        return TelemetryClient.disabled()
    return TelemetryClient(sink=log_sink)


def scrub_attributes(attributes: Mapping[str, Any]) -> dict[str, AttributeValue]:
    scrubbed: dict[str, AttributeValue] = {}
    for raw_key, raw_value in attributes.items():
        key = str(raw_key).strip().lower()
        if not key:
            continue
        if key in _REDACTED_KEYS or key.endswith(_REDACTED_SUFFIXES):
            scrubbed[key] = "[redacted]"
        else:
            scrubbed[key] = _scalar(raw_value)
    return scrubbed


def _scalar(value: Any) -> AttributeValue:
    if value is None or isinstance(value, bool | int | float):
        return value
    if not isinstance(value, str):
        return type(value).__name__
    compact = " ".join(value.split())
    if len(compact) > _MAX_STRING_LENGTH:
        return f"{compact[:_MAX_STRING_LENGTH]}..."
    return compact
