from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from importlib import import_module
from typing import Any

from backend.app.repositories.common import as_utc
from backend.app.repositories.credential_repository import Credential, CredentialRepository
from backend.app.services.errors import (
    AuthExchangeError,
    ConfigurationError,
    NotAuthorizedError,
    ProviderRequestError,
    TokenRefreshError,
)
from backend.app.services.youtube_client import (
    GOOGLE_AUTH_URI,
    GOOGLE_TOKEN_URI,
    OAUTH_SCOPES,
    build_oauth2_client,
    coerce_nonempty_string,
    execute_request,
    summarize_exception_message,
)
from backend.app.telemetry import TelemetryClient

LOGGER = logging.getLogger("youtube_field.oauth")

CONSENT_PROMPT = "select_account consent"
# Google does not always echo expires_in; access tokens live one hour.
_DEFAULT_TOKEN_LIFETIME = timedelta(hours=1)


def _utc_now() -> datetime:
    return datetime.now(UTC)


class OAuthSession:
    """Google authorization-code flow and refresh-token lifecycle for one channel.

    The stored credential moves between two states: Unauthorized (no row) and
    Authorized. A successful code exchange or refresh keeps it Authorized; a
    refresh rejected by Google, a logout or a deactivation deletes the row.
    Concurrent refreshes of the same account are collapsed behind a
    per-account lock so only one network refresh happens.
    """

    def __init__(
        self,
        *,
        credential_repository: CredentialRepository,
        client_id: str | None,
        client_secret: str | None,
        redirect_uri: str | None,
        account_key: str = "default",
        expiry_leeway_seconds: int = 30,
        telemetry: TelemetryClient | None = None,
        now_fn: Callable[[], datetime] | None = None,
    ) -> None:
        self._repository = credential_repository
        self._client_id = client_id
        self._client_secret = client_secret
        self._redirect_uri = redirect_uri
        self._account_key = account_key
        self._expiry_leeway_seconds = max(0, expiry_leeway_seconds)
        self._telemetry = telemetry or TelemetryClient.disabled()
        self._now = now_fn or _utc_now
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    @property
    def account_key(self) -> str:
        return self._account_key

    @property
    def client_configured(self) -> bool:
        return bool(self._client_id and self._client_secret and self._redirect_uri)

    def is_authorized(self) -> bool:
        return self._repository.get(self._account_key) is not None

    def get_authorization_url(self) -> str:
        flow = self._build_flow()
        authorization_url, _state = flow.authorization_url(
            access_type="offline",
            prompt=CONSENT_PROMPT,
        )
        return str(authorization_url)

    def exchange_code(self, code: str) -> Credential:
        normalized_code = code.strip() if isinstance(code, str) else ""
        if not normalized_code:
            raise AuthExchangeError("Authorization code is missing.")

        flow = self._build_flow()
        try:
            flow.fetch_token(code=normalized_code)
        except OSError as exc:
            raise ProviderRequestError(
                f"Authorization code exchange failed: {summarize_exception_message(exc)}",
                provider_message=summarize_exception_message(exc),
            ) from exc
        except Exception as exc:
            LOGGER.warning(
                "oauth code_exchange_rejected error=%s",
                summarize_exception_message(exc),
            )
            raise AuthExchangeError(
                f"Google rejected the authorization code: {summarize_exception_message(exc)}"
            ) from exc

        google_credentials: Any = flow.credentials
        refresh_token = coerce_nonempty_string(getattr(google_credentials, "refresh_token", None))
        if refresh_token is None:
            raise AuthExchangeError(
                "Google did not return a refresh token. Remove the app from the Google "
                "account permissions and authorize again to re-grant offline access."
            )
        access_token = coerce_nonempty_string(getattr(google_credentials, "token", None))
        if access_token is None:
            raise AuthExchangeError("Google did not return an access token.")

        return Credential(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=self._resolve_expiry(getattr(google_credentials, "expiry", None)),
            scopes=_granted_scopes(google_credentials),
        )

    def authorize(self, code: str) -> Credential:
        credential = self.exchange_code(code)
        self._repository.save(self._account_key, credential)
        LOGGER.info("oauth authorized account_key=%s", self._account_key)
        return credential

    def ensure_valid(self, credential: Credential) -> Credential:
        if not credential.has_refresh_token:
            raise TokenRefreshError("Stored credential has no refresh token; re-authorize.")
        if not credential.is_expired(self._now(), leeway_seconds=self._expiry_leeway_seconds):
            return credential
        return self._refresh(credential)

    def load_valid_credential(self) -> Credential:
        credential = self._repository.get(self._account_key)
        if credential is None:
            raise NotAuthorizedError("YouTube account is not authorized.")
        if credential.has_refresh_token and not credential.is_expired(
            self._now(), leeway_seconds=self._expiry_leeway_seconds
        ):
            return credential

        with self._lock_for(self._account_key):
            # Another request may have refreshed while this one waited.
            current = self._repository.get(self._account_key)
            if current is None:
                raise NotAuthorizedError("YouTube account is not authorized.")
            try:
                valid = self.ensure_valid(current)
            except TokenRefreshError as exc:
                self._repository.delete(self._account_key)
                LOGGER.warning(
                    "oauth credential_cleared account_key=%s reason=%s",
                    self._account_key,
                    exc,
                )
                self._telemetry.emit(
                    "oauth.token.refresh_failed",
                    account_key=self._account_key,
                    reason=str(exc),
                )
                raise
            if valid is not current:
                self._repository.save(self._account_key, valid)
            return valid

    def revoke(self, credential: Credential | None = None) -> bool:
        _ = credential
        removed = self._repository.delete(self._account_key)
        LOGGER.info(
            "oauth credential_revoked account_key=%s removed=%s", self._account_key, removed
        )
        return removed

    def check_and_refresh_token(self) -> bool:
        if not self.client_configured:
            LOGGER.debug("oauth token_check skipped reason=client_not_configured")
            return False
        if not self.is_authorized():
            LOGGER.debug("oauth token_check skipped reason=not_authorized")
            return False
        try:
            self.load_valid_credential()
        except (NotAuthorizedError, TokenRefreshError):
            return False
        return True

    def fetch_account_email(self, credential: Credential) -> str | None:
        client = build_oauth2_client(credential.access_token)
        payload = execute_request(client.userinfo().get(), operation="oauth.userinfo")
        return coerce_nonempty_string(payload.get("email"))

    def _refresh(self, credential: Credential) -> Credential:
        client_id, client_secret, _redirect_uri = self._require_client_config()
        try:
            credentials_module = import_module("google.oauth2.credentials")
            requests_module = import_module("google.auth.transport.requests")
            exceptions_module = import_module("google.auth.exceptions")
        except ImportError as exc:  # pragma: no cover - dependency controlled at runtime
            raise ConfigurationError("Token refresh requires the google-auth dependency") from exc

        credentials_cls: Any = credentials_module.Credentials
        google_credentials = credentials_cls(
            token=credential.access_token,
            refresh_token=credential.refresh_token,
            token_uri=GOOGLE_TOKEN_URI,
            client_id=client_id,
            client_secret=client_secret,
            scopes=sorted(credential.scopes) or list(OAUTH_SCOPES),
        )
        try:
            google_credentials.refresh(requests_module.Request())
        except exceptions_module.RefreshError as exc:
            message = summarize_exception_message(exc)
            if bool(getattr(exc, "retryable", False)):
                raise ProviderRequestError(
                    f"Token refresh failed temporarily: {message}",
                    provider_message=message,
                ) from exc
            raise TokenRefreshError(f"Google rejected the refresh token: {message}") from exc
        except (exceptions_module.TransportError, OSError) as exc:
            message = summarize_exception_message(exc)
            raise ProviderRequestError(
                f"Token refresh request failed: {message}",
                provider_message=message,
            ) from exc

        access_token = coerce_nonempty_string(getattr(google_credentials, "token", None))
        if access_token is None:
            raise TokenRefreshError("Google returned no access token on refresh.")
        refreshed = Credential(
            access_token=access_token,
            refresh_token=(
                coerce_nonempty_string(getattr(google_credentials, "refresh_token", None))
                or credential.refresh_token
            ),
            expires_at=self._resolve_expiry(getattr(google_credentials, "expiry", None)),
            scopes=_granted_scopes(google_credentials) or credential.scopes,
        )
        LOGGER.info(
            "oauth token_refreshed account_key=%s expires_at=%s",
            self._account_key,
            refreshed.expires_at.isoformat(),
        )
        self._telemetry.emit(
            "oauth.token.refreshed",
            account_key=self._account_key,
            expires_at=refreshed.expires_at.isoformat(),
        )
        return refreshed

    def _build_flow(self) -> Any:
        client_id, client_secret, redirect_uri = self._require_client_config()
        try:
            flow_module = import_module("google_auth_oauthlib.flow")
        except ImportError as exc:  # pragma: no cover - dependency controlled at runtime
            raise ConfigurationError(
                "OAuth flow requires the google-auth-oauthlib dependency"
            ) from exc

        flow_cls: Any = flow_module.Flow
        return flow_cls.from_client_config(
            {
                "web": {
                    "client_id": client_id,
                    "client_secret": client_secret,
                    "auth_uri": GOOGLE_AUTH_URI,
                    "token_uri": GOOGLE_TOKEN_URI,
                    "redirect_uris": [redirect_uri],
                }
            },
            scopes=list(OAUTH_SCOPES),
            redirect_uri=redirect_uri,
            autogenerate_code_verifier=False,
        )

    def _require_client_config(self) -> tuple[str, str, str]:
        if not self._client_id or not self._client_secret or not self._redirect_uri:
            raise ConfigurationError(
                "Google OAuth client id, client secret and redirect URI must be configured."
            )
        return self._client_id, self._client_secret, self._redirect_uri

    def _resolve_expiry(self, raw_expiry: object) -> datetime:
        if isinstance(raw_expiry, datetime):
            return as_utc(raw_expiry)
        return self._now() + _DEFAULT_TOKEN_LIFETIME

    def _lock_for(self, account_key: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(account_key)
            if lock is None:
                lock = threading.Lock()
                self._locks[account_key] = lock
            return lock


def _granted_scopes(google_credentials: Any) -> frozenset[str]:
    for attribute in ("granted_scopes", "scopes"):
        raw_scopes = getattr(google_credentials, attribute, None)
        if isinstance(raw_scopes, list | tuple | set | frozenset):
            scopes = frozenset(scope for scope in raw_scopes if isinstance(scope, str))
            if scopes:
                return scopes
    return frozenset()
