from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from backend.app.dependencies import reset_cached_dependencies
from backend.app.main import create_app
from backend.app.repositories.credential_repository import CredentialRepository
from backend.app.repositories.database import Database

TEST_CLIENT_ID = "test-client-id.apps.googleusercontent.com"
TEST_CLIENT_SECRET = "test-client-secret"
TEST_REDIRECT_URI = "https://cms.example.test/oauth/callback"


@pytest.fixture
def database(tmp_path: Path) -> Database:
    db = Database(tmp_path / "state.db")
    db.initialize()
    return db


@pytest.fixture
def credential_repository(database: Database) -> CredentialRepository:
    return CredentialRepository(database)


@pytest.fixture
def data_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    runtime_dir = tmp_path / "runtime-data"
    runtime_dir.mkdir(parents=True, exist_ok=True)

    monkeypatch.setenv("YOUTUBE_FIELD_DATA_DIR", str(runtime_dir))
    monkeypatch.setenv("YOUTUBE_FIELD_ENABLE_SCHEDULER", "0")
    monkeypatch.setenv("YOUTUBE_FIELD_GOOGLE_OAUTH_CLIENT_ID", TEST_CLIENT_ID)
    monkeypatch.setenv("YOUTUBE_FIELD_GOOGLE_OAUTH_CLIENT_SECRET", TEST_CLIENT_SECRET)
    monkeypatch.setenv("YOUTUBE_FIELD_GOOGLE_OAUTH_REDIRECT_URI", TEST_REDIRECT_URI)
    monkeypatch.setenv("YOUTUBE_FIELD_TELEMETRY_SINK", "none")
    reset_cached_dependencies()
    return runtime_dir


@pytest.fixture
def client(data_dir: Path) -> Iterator[TestClient]:
    _ = data_dir
    app = create_app()
    with TestClient(app) as test_client:
        yield test_client

    reset_cached_dependencies()
