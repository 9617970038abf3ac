from __future__ import annotations

import argparse
import sys

from backend.app.config import AppSettings, load_settings
from backend.app.dependencies import build_oauth_session
from backend.app.repositories.database import Database
from backend.app.services.errors import YouTubeFieldError
from backend.app.services.oauth_session import OAuthSession


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description=(
            "Bootstrap YouTube OAuth for the YouTube field backend. Without --code, prints "
            "the Google consent URL; with --code, exchanges it and stores the credential."
        ),
    )
    parser.add_argument(
        "--code",
        type=str,
        default=None,
        help="Authorization code copied from the OAuth redirect.",
    )
    return parser.parse_args(argv)


def _build_session(settings: AppSettings) -> OAuthSession:
    database = Database(settings.db_path)
    database.initialize()
    return build_oauth_session(settings, database)


def run(code: str | None, *, session: OAuthSession) -> str:
    if code is None:
        return f"Open this URL and grant access:\n{session.get_authorization_url()}"

    credential = session.authorize(code)
    email = session.fetch_account_email(credential)
    return (
        f"OAuth success. Account: {email or 'unknown'}. "
        f"Access token expires at {credential.expires_at.isoformat()}."
    )


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    settings = load_settings(require_oauth_client=True)
    try:
        message = run(args.code, session=_build_session(settings))
    except YouTubeFieldError as exc:
        print(f"OAuth setup failed: {exc}", file=sys.stderr)
        return 1
    print(message)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
