"""
Pytest config.

Local imports like `import disc` rely on the repo root being on sys.path. In some
environments (e.g. when invoking a global `pytest` entrypoint) that doesn't happen
reliably during collection, so we pin the behavior here.

API tests build the app with in-memory stores (`tests/fakes.py`); nothing here talks
to Postgres, Spotify or an LLM provider.
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Iterator

import pytest


def _ensure_repo_root_on_syspath() -> None:
    repo_root = Path(__file__).resolve().parents[1]
    repo_root_str = str(repo_root)
    if repo_root_str not in sys.path:
        sys.path.insert(0, repo_root_str)


_ensure_repo_root_on_syspath()

from fastapi.testclient import TestClient  # noqa: E402

from disc.auth.config import load_auth_config  # noqa: E402
from tests.fakes import InMemorySessionStore, InMemoryStorage  # noqa: E402

TEST_SESSION_SECRET = "test-secret-key-for-testing-purposes-only"


@pytest.fixture(autouse=True)
def _auth_env(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """
    Deterministic auth config for every test.

    Postgres and Spotify env vars are cleared so `create_app()` never reaches for a real
    database and Spotify starts disabled; tests that need Spotify set the client vars.
    """
    for name in (
        "POSTGRES_DSN",
        "DATABASE_URL",
        "POSTGRES_HOST",
        "POSTGRES_PORT",
        "POSTGRES_DB",
        "POSTGRES_USER",
        "POSTGRES_PASSWORD",
        "POSTGRES_CONNECT_TIMEOUT",
        "DB_AUTO_MIGRATE",
        "SPOTIFY_CLIENT_ID",
        "SPOTIFY_CLIENT_SECRET",
        "ADMIN_INITIAL_USERNAME",
        "ADMIN_INITIAL_PASSWORD",
        "AUTH_COOKIE_SECURE",
        "AUTH_PUBLIC_BASE_URL",
        "LLM_MOCK",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("AUTH_SESSION_SECRET", TEST_SESSION_SECRET)
    load_auth_config.cache_clear()
    yield
    load_auth_config.cache_clear()


@pytest.fixture()
def spotify_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SPOTIFY_CLIENT_ID", "spotify-client-id")
    monkeypatch.setenv("SPOTIFY_CLIENT_SECRET", "spotify-client-secret")
    monkeypatch.setenv("AUTH_PUBLIC_BASE_URL", "http://testserver")
    load_auth_config.cache_clear()


@pytest.fixture()
def storage() -> InMemoryStorage:
    return InMemoryStorage()


@pytest.fixture()
def sessions() -> InMemorySessionStore:
    return InMemorySessionStore()


@pytest.fixture()
def client(storage: InMemoryStorage, sessions: InMemorySessionStore) -> TestClient:
    from disc.api.server import create_app

    return TestClient(create_app(storage=storage, sessions=sessions))

