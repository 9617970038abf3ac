from __future__ import annotations

import json
import logging
from importlib import import_module
from typing import Any, cast

from backend.app.services.errors import (
    ConfigurationError,
    ProviderQuotaOrPermissionError,
    ProviderRequestError,
)

LOGGER = logging.getLogger("youtube_field.provider")

# Google always grants `openid` with userinfo.email; oauthlib rejects a token whose
# scope differs from the request.
OAUTH_SCOPES: tuple[str, ...] = (
    "openid",
    "https://www.googleapis.com/auth/userinfo.email",
    "https://www.googleapis.com/auth/youtube.force-ssl",
    "https://www.googleapis.com/auth/youtube.upload",
)
GOOGLE_AUTH_URI = "https://accounts.google.com/o/oauth2/auth"
GOOGLE_TOKEN_URI = "https://oauth2.googleapis.com/token"

QUOTA_OR_PERMISSION_STATUSES: frozenset[int] = frozenset({403, 429})
_QUOTA_REASON_MARKERS: tuple[str, ...] = (
    "quotaexceeded",
    "dailylimitexceeded",
    "ratelimitexceeded",
    "userratelimitexceeded",
    "forbidden",
    "insufficientpermissions",
)


def build_youtube_client(access_token: str) -> Any:
    return _build_google_client("youtube", "v3", access_token)


def build_oauth2_client(access_token: str) -> Any:
    return _build_google_client("oauth2", "v2", access_token)


def _build_google_client(service_name: str, version: str, access_token: str) -> Any:
    try:
        credentials_module = import_module("google.oauth2.credentials")
        discovery_module = import_module("googleapiclient.discovery")
    except ImportError as exc:  # pragma: no cover - dependency controlled at runtime
        raise ConfigurationError(
            "YouTube access requires google-auth and google-api-python-client dependencies"
        ) from exc

    credentials_cls: Any = credentials_module.Credentials
    build_fn: Any = discovery_module.build
    # Access-token-only credentials: refresh is owned by OAuthSession, never the client.
    credentials = credentials_cls(token=access_token)
    return build_fn(service_name, version, credentials=credentials, cache_discovery=False)


def execute_request(request: Any, *, operation: str) -> dict[str, Any]:
    """Run a prepared Google API request and translate its failures.

    Non-2xx responses become `ProviderQuotaOrPermissionError` (403/429 and
    quota reasons) or `ProviderRequestError`; transport failures become
    `ProviderRequestError` without a status code.
    """
    try:
        response = request.execute()
    except Exception as exc:
        raise translate_provider_error(exc, operation=operation) from exc
    return as_dict(response)


def translate_provider_error(exc: Exception, *, operation: str) -> ProviderRequestError:
    if isinstance(exc, ProviderRequestError):
        return exc

    status_code = _extract_status_code(exc)
    raw_body = _extract_error_body(exc)
    if status_code is None:
        message = summarize_exception_message(exc)
        LOGGER.error(
            "youtube provider transport_failed operation=%s error=%s",
            operation,
            message,
        )
        return ProviderRequestError(
            f"YouTube request failed during {operation}: {message}",
            provider_message=message,
        )

    provider_message = extract_provider_message(raw_body) or summarize_exception_message(exc)
    LOGGER.error(
        "youtube provider request_failed operation=%s status=%s response=%s",
        operation,
        status_code,
        raw_body,
    )
    error_cls = (
        ProviderQuotaOrPermissionError
        if is_quota_or_permission_failure(status_code, raw_body)
        else ProviderRequestError
    )
    return error_cls(
        f"YouTube request failed during {operation} (status {status_code}): {provider_message}",
        status_code=status_code,
        provider_message=provider_message,
        raw_response=raw_body,
    )


def is_quota_or_permission_failure(status_code: int, raw_body: str) -> bool:
    if status_code in QUOTA_OR_PERMISSION_STATUSES:
        return True
    reasons = _extract_error_reasons(raw_body)
    return any(marker in reason for reason in reasons for marker in _QUOTA_REASON_MARKERS)


def extract_provider_message(raw_body: str) -> str | None:
    payload = parse_json_dict(raw_body)
    error = payload.get("error")
    if isinstance(error, dict):
        message = as_dict(error).get("message")
        if isinstance(message, str) and message.strip():
            return message.strip()
    if isinstance(error, str) and error.strip():
        description = payload.get("error_description")
        if isinstance(description, str) and description.strip():
            return description.strip()
        return error.strip()
    return None


def parse_json_dict(raw_body: str) -> dict[str, Any]:
    if not raw_body.strip():
        return {}
    try:
        parsed = json.loads(raw_body)
    except json.JSONDecodeError:
        return {}
    return as_dict(parsed)


def summarize_exception_message(exc: Exception, *, max_length: int = 400) -> str:
    raw = str(exc).strip()
    if not raw:
        raw = repr(exc)
    if len(raw) <= max_length:
        return raw
    return f"{raw[: max_length - 3]}..."


def _extract_status_code(exc: Exception) -> int | None:
    response = getattr(exc, "resp", None)
    raw_status = getattr(response, "status", None)
    if raw_status is None:
        raw_status = getattr(exc, "status_code", None)
    try:
        return int(raw_status) if raw_status is not None else None
    except (TypeError, ValueError):
        return None


def _extract_error_body(exc: Exception) -> str:
    content = getattr(exc, "content", None)
    if isinstance(content, bytes):
        return content.decode("utf-8", errors="replace")
    if isinstance(content, str):
        return content
    return ""


def _extract_error_reasons(raw_body: str) -> list[str]:
    error = as_dict(parse_json_dict(raw_body).get("error"))
    reasons: list[str] = []
    for item in as_list(error.get("errors")):
        reason = as_dict(item).get("reason")
        if isinstance(reason, str):
            reasons.append(reason.lower())
    status = error.get("status")
    if isinstance(status, str):
        reasons.append(status.lower())
    return reasons


def coerce_nonempty_string(raw_value: object) -> str | None:
    if isinstance(raw_value, str) and raw_value.strip():
        return raw_value.strip()
    return None


def as_dict(value: Any) -> dict[str, Any]:
    if isinstance(value, dict):
        raw_dict = cast(dict[object, object], value)
        converted: dict[str, Any] = {}
        for key, item in raw_dict.items():
            if isinstance(key, str):
                converted[key] = item
        return converted
    return {}


def as_list(value: Any) -> list[Any]:
    if isinstance(value, list):
        raw_list = cast(list[Any], value)
        return list(raw_list)
    return []
