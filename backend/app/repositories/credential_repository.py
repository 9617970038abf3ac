from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime, timedelta

from backend.app.repositories.common import as_utc, parse_utc_iso, utc_now_iso
from backend.app.repositories.database import Database


@dataclass(frozen=True)
class Credential:
    access_token: str
    refresh_token: str
    expires_at: datetime
    scopes: frozenset[str] = frozenset()

    @property
    def has_refresh_token(self) -> bool:
        return bool(self.refresh_token.strip())

    def is_expired(self, now: datetime, *, leeway_seconds: int = 0) -> bool:
        leeway = timedelta(seconds=max(0, leeway_seconds))
        return as_utc(now) >= as_utc(self.expires_at) - leeway


class CredentialRepository:
    """Durable get-or-null / set / delete store for the installation's credential."""

    def __init__(self, db: Database) -> None:
        self._db = db

    def get(self, account_key: str) -> Credential | None:
        with self._db.connection() as conn:
            row = conn.execute(
                """
                SELECT access_token, refresh_token, expires_at, scopes_json
                FROM oauth_credentials
                WHERE account_key = ?
                """,
                (account_key,),
            ).fetchone()

        if row is None:
            return None
        return Credential(
            access_token=str(row["access_token"]),
            refresh_token=str(row["refresh_token"]),
            expires_at=parse_utc_iso(str(row["expires_at"])),
            scopes=_decode_scopes(row["scopes_json"]),
        )

    def save(self, account_key: str, credential: Credential) -> None:
        now_iso = utc_now_iso()
        with self._db.connection() as conn:
            conn.execute(
                """
                INSERT INTO oauth_credentials
                (account_key, access_token, refresh_token, expires_at, scopes_json,
                 created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(account_key) DO UPDATE SET
                    access_token = excluded.access_token,
                    refresh_token = excluded.refresh_token,
                    expires_at = excluded.expires_at,
                    scopes_json = excluded.scopes_json,
                    updated_at = excluded.updated_at
                """,
                (
                    account_key,
                    credential.access_token,
                    credential.refresh_token,
                    as_utc(credential.expires_at).isoformat(),
                    json.dumps(sorted(credential.scopes)),
                    now_iso,
                    now_iso,
                ),
            )

    def delete(self, account_key: str) -> bool:
        with self._db.connection() as conn:
            cursor = conn.execute(
                "DELETE FROM oauth_credentials WHERE account_key = ?",
                (account_key,),
            )
        return cursor.rowcount > 0


def _decode_scopes(raw_value: object) -> frozenset[str]:
    if not isinstance(raw_value, str):
        return frozenset()
    try:
        parsed = json.loads(raw_value)
    except json.JSONDecodeError:
        return frozenset()
    if not isinstance(parsed, list):
        return frozenset()
    return frozenset(item for item in parsed if isinstance(item, str))
