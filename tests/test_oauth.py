from __future__ import annotations

import re
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
from unittest.mock import patch
from urllib.parse import parse_qs, urlparse

import pytest
import requests

from disc.auth import spotify
from disc.auth.oauth import IdentityAlreadyLinkedError, link_oauth_identity, login_with_oauth
from disc.auth.session import LINK_USER_ID_KEY, USER_ID_KEY
from disc.auth.util import pkce_challenge, sanitize_next_path
from tests.fakes import InMemoryStorage, login, make_user


def _profile(spotify_id: str = "sp-1", display_name: Optional[str] = "Alice", **extra: Any) -> Dict[str, Any]:
    p: Dict[str, Any] = {
        "id": spotify_id,
        "display_name": display_name,
        "email": "alice@example.com",
        "images": [{"url": "https://i.scdn.co/image/alice.jpg"}],
    }
    p.update(extra)
    return p


def _tokens(access: str = "access-1", refresh: Optional[str] = "refresh-1", expires_in: int = 3600) -> Dict[str, Any]:
    t: Dict[str, Any] = {"access_token": access, "token_type": "Bearer", "expires_in": expires_in}
    if refresh:
        t["refresh_token"] = refresh
    return t


@contextmanager
def _spotify_returns(profile: Dict[str, Any], tokens: Optional[Dict[str, Any]] = None):
    with patch("disc.auth.spotify.exchange_code_for_tokens", return_value=tokens or _tokens()) as ex, patch(
        "disc.auth.spotify.get_profile", return_value=profile
    ):
        yield ex


def _start(client, path: str) -> str:
    r = client.get(path, follow_redirects=False)
    assert r.status_code == 302
    location = r.headers["location"]
    assert location.startswith(spotify.AUTHORIZE_URL)
    qs = parse_qs(urlparse(location).query)
    assert qs["code_challenge_method"] == ["S256"]
    return qs["state"][0]


def _callback(client, path: str, state: str, code: str = "auth-code"):
    return client.get(f"{path}?code={code}&state={state}", follow_redirects=False)


# ---- login ----


def test_login_redirect_carries_pkce_and_state(client, spotify_env) -> None:
    r = client.get("/api/auth/spotify", follow_redirects=False)
    assert r.status_code == 302
    qs = parse_qs(urlparse(r.headers["location"]).query)
    assert qs["client_id"] == ["spotify-client-id"]
    assert qs["redirect_uri"] == ["http://testserver/api/auth/spotify/callback"]
    assert qs["code_challenge_method"] == ["S256"]
    assert qs["code_challenge"] == [pkce_challenge(client.cookies.get("disc_oauth_verifier"))]
    assert "user-top-read" in qs["scope"][0].split(" ")
    assert client.cookies.get("disc_oauth_state") == qs["state"][0]


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("/account", "/account"),
        ("/albums?q=dummy", "/albums?q=dummy"),
        (None, "/"),
        ("https://evil.example", "/"),
        ("//evil.example", "/"),
        ("/\\evil.example", "/"),
        ("/account\r\nSet-Cookie: x=1", "/accountSet-Cookie: x=1"),
    ],
)
def test_sanitize_next_path(raw, expected) -> None:
    assert sanitize_next_path(raw) == expected


def test_login_requires_spotify_config(client) -> None:
    r = client.get("/api/auth/spotify", follow_redirects=False)
    assert r.status_code == 503


def test_callback_creates_exactly_one_user_and_link(client, storage, spotify_env) -> None:
    state = _start(client, "/api/auth/spotify")
    with _spotify_returns(_profile()) as ex:
        r = _callback(client, "/api/auth/spotify/callback", state)

    assert r.status_code == 302
    assert r.headers["location"] == "/"
    assert ex.call_args.kwargs["redirect_uri"] == "http://testserver/api/auth/spotify/callback"

    assert storage.count_users() == 1
    assert len(storage.oauth) == 1
    user = storage.get_user_by_username("Alice")
    assert user is not None
    assert user.password is None
    assert user.email == "alice@example.com"
    assert user.profile_image == "https://i.scdn.co/image/alice.jpg"

    (link,) = storage.oauth.values()
    assert link.user_id == user.id
    assert link.provider == "spotify"
    assert link.provider_id == "sp-1"
    assert link.access_token == "access-1"
    assert link.refresh_token == "refresh-1"
    assert link.token_expires_at is not None
    assert link.profile_data["display_name"] == "Alice"

    assert client.get("/api/user").json()["username"] == "Alice"


def test_callback_for_known_identity_refreshes_tokens(client, storage, spotify_env) -> None:
    state = _start(client, "/api/auth/spotify")
    with _spotify_returns(_profile()):
        _callback(client, "/api/auth/spotify/callback", state)
    client.post("/api/logout")

    state = _start(client, "/api/auth/spotify")
    with _spotify_returns(_profile(), _tokens(access="access-2", refresh=None)):
        r = _callback(client, "/api/auth/spotify/callback", state)

    assert r.headers["location"] == "/"
    assert storage.count_users() == 1
    (link,) = storage.oauth.values()
    assert link.access_token == "access-2"
    # Spotify did not rotate the refresh token; the stored one is kept.
    assert link.refresh_token == "refresh-1"


def test_callback_suffixes_taken_username(client, storage, spotify_env) -> None:
    make_user(storage, "Alice")
    state = _start(client, "/api/auth/spotify")
    with _spotify_returns(_profile()):
        _callback(client, "/api/auth/spotify/callback", state)

    assert storage.count_users() == 2
    new_user = storage.get_user(max(storage.users))
    assert re.fullmatch(r"Alice_[0-9a-f]{8}", new_user.username)


def test_callback_without_display_name_uses_provider_id(client, storage, spotify_env) -> None:
    state = _start(client, "/api/auth/spotify")
    with _spotify_returns(_profile(spotify_id="xyz", display_name=None)):
        _callback(client, "/api/auth/spotify/callback", state)
    assert storage.get_user_by_username("spotify_xyz") is not None


def test_callback_rejects_state_mismatch(client, storage, spotify_env) -> None:
    _start(client, "/api/auth/spotify")
    with _spotify_returns(_profile()) as ex:
        r = _callback(client, "/api/auth/spotify/callback", "forged-state")

    assert r.headers["location"] == "/auth?error=spotify-auth-failed"
    ex.assert_not_called()
    assert storage.count_users() == 0


def test_callback_provider_error_param(client, storage, spotify_env) -> None:
    state = _start(client, "/api/auth/spotify")
    r = client.get(f"/api/auth/spotify/callback?error=access_denied&state={state}", follow_redirects=False)
    assert r.headers["location"] == "/auth?error=spotify-auth-failed"
    assert storage.count_users() == 0


@pytest.mark.parametrize(
    "exc",
    [spotify.SpotifyAuthError("Spotify token request failed (status=400)"), requests.ConnectionError("down")],
)
def test_callback_exchange_failure_redirects(client, storage, spotify_env, exc) -> None:
    state = _start(client, "/api/auth/spotify")
    with patch("disc.auth.spotify.exchange_code_for_tokens", side_effect=exc):
        r = _callback(client, "/api/auth/spotify/callback", state)

    assert r.status_code == 302
    assert r.headers["location"] == "/auth?error=spotify-auth-failed"
    assert storage.count_users() == 0
    assert client.get("/api/user").status_code == 401


def test_callback_clears_oauth_cookies(client, spotify_env) -> None:
    state = _start(client, "/api/auth/spotify")
    with _spotify_returns(_profile()):
        r = _callback(client, "/api/auth/spotify/callback", state)

    cleared = [h for h in r.headers.get_list("set-cookie") if h.startswith("disc_oauth_")]
    assert len(cleared) == 3
    assert all("max-age=0" in h.lower() for h in cleared)


def test_callback_honors_sanitized_next(client, spotify_env) -> None:
    state = _start(client, "/api/auth/spotify?next=//evil.example.com")
    with _spotify_returns(_profile()):
        r = _callback(client, "/api/auth/spotify/callback", state)
    assert r.headers["location"] == "/"


# ---- linking ----


def test_link_requires_login(client, spotify_env) -> None:
    r = client.get("/api/link/spotify", follow_redirects=False)
    assert r.status_code == 401
    assert r.json() == {"message": "You must be logged in to link accounts"}


def test_link_attaches_identity_to_logged_in_user(client, storage, sessions, spotify_env) -> None:
    alice = make_user(storage, "alice")
    login(client, "alice")

    state = _start(client, "/api/link/spotify")
    (record,) = sessions.records.values()
    assert record["data"][LINK_USER_ID_KEY] == alice.id

    with _spotify_returns(_profile(spotify_id="sp-alice")) as ex:
        r = _callback(client, "/api/link/spotify/callback", state)

    assert r.headers["location"] == "/account?success=spotify-linked"
    assert ex.call_args.kwargs["redirect_uri"] == "http://testserver/api/link/spotify/callback"
    link = storage.get_oauth_provider(alice.id, "spotify")
    assert link is not None
    assert link.provider_id == "sp-alice"
    assert storage.count_users() == 1

    (record,) = sessions.records.values()
    assert LINK_USER_ID_KEY not in record["data"]


def test_link_refuses_identity_owned_by_another_user(client, storage, sessions, spotify_env) -> None:
    bob = make_user(storage, "bob")
    storage.create_oauth_provider(
        user_id=bob.id,
        provider="spotify",
        provider_id="sp-bob",
        access_token="bob-access",
        refresh_token="bob-refresh",
        token_expires_at=None,
    )
    alice = make_user(storage, "alice")
    login(client, "alice")

    state = _start(client, "/api/link/spotify")
    with _spotify_returns(_profile(spotify_id="sp-bob")):
        r = _callback(client, "/api/link/spotify/callback", state)

    assert r.headers["location"] == "/account?error=spotify-already-linked"
    assert storage.get_oauth_provider(alice.id, "spotify") is None
    assert storage.get_oauth_provider(bob.id, "spotify").access_token == "bob-access"
    (record,) = sessions.records.values()
    assert LINK_USER_ID_KEY not in record["data"]


def test_link_callback_without_pending_user(client, storage, spotify_env) -> None:
    make_user(storage, "alice")
    login(client, "alice")
    with _spotify_returns(_profile()) as ex:
        r = client.get("/api/link/spotify/callback?code=c&state=s", follow_redirects=False)

    assert r.headers["location"] == "/account?error=spotify-link-failed-no-user"
    ex.assert_not_called()


def test_link_failure_clears_pending_user(client, storage, sessions, spotify_env) -> None:
    alice = make_user(storage, "alice")
    login(client, "alice")
    state = _start(client, "/api/link/spotify")

    with patch("disc.auth.spotify.exchange_code_for_tokens", side_effect=spotify.SpotifyAuthError("bad code")):
        r = _callback(client, "/api/link/spotify/callback", state)

    assert r.headers["location"] == "/account?error=spotify-link-failed"
    assert storage.get_oauth_provider(alice.id, "spotify") is None
    (record,) = sessions.records.values()
    assert LINK_USER_ID_KEY not in record["data"]
    # Still logged in as alice.
    assert client.get("/api/user").json()["username"] == "alice"


def test_link_callback_requires_session_still_logged_in_as_linking_user(client, storage, sessions, spotify_env) -> None:
    alice = make_user(storage, "alice")
    login(client, "alice")
    state = _start(client, "/api/link/spotify")

    # The login lapses between the redirect to Spotify and the callback.
    (record,) = sessions.records.values()
    del record["data"][USER_ID_KEY]

    with _spotify_returns(_profile(spotify_id="sp-alice")) as ex:
        r = _callback(client, "/api/link/spotify/callback", state)

    assert r.headers["location"] == "/account?error=spotify-link-failed-not-authenticated"
    ex.assert_not_called()
    assert storage.get_oauth_provider(alice.id, "spotify") is None
    (record,) = sessions.records.values()
    assert LINK_USER_ID_KEY not in record["data"]


# ---- service level ----


def test_login_with_oauth_is_idempotent_per_identity() -> None:
    storage = InMemoryStorage()
    now = datetime(2026, 1, 1, tzinfo=timezone.utc)

    user1, created1 = login_with_oauth(storage, provider="spotify", profile=_profile(), tokens=_tokens(), now=now)
    user2, created2 = login_with_oauth(
        storage, provider="spotify", profile=_profile(), tokens=_tokens(access="access-2"), now=now
    )

    assert created1 is True
    assert created2 is False
    assert user1.id == user2.id
    assert storage.count_users() == 1
    (link,) = storage.oauth.values()
    assert link.access_token == "access-2"
    assert link.token_expires_at == now + timedelta(seconds=3600)


def test_login_with_oauth_requires_profile_id() -> None:
    storage = InMemoryStorage()
    with pytest.raises(ValueError):
        login_with_oauth(storage, provider="spotify", profile={"display_name": "x"}, tokens=_tokens())
    assert storage.count_users() == 0


def test_link_same_identity_refreshes_tokens() -> None:
    storage = InMemoryStorage()
    alice = storage.create_user(username="alice")
    link_oauth_identity(storage, user_id=alice.id, provider="spotify", profile=_profile(), tokens=_tokens())
    link_oauth_identity(
        storage, user_id=alice.id, provider="spotify", profile=_profile(), tokens=_tokens(access="access-2")
    )

    (link,) = storage.oauth.values()
    assert link.access_token == "access-2"
    assert link.refresh_token == "refresh-1"


def test_link_different_identity_repoints_row() -> None:
    storage = InMemoryStorage()
    alice = storage.create_user(username="alice")
    link_oauth_identity(storage, user_id=alice.id, provider="spotify", profile=_profile("sp-old"), tokens=_tokens())
    link_oauth_identity(
        storage, user_id=alice.id, provider="spotify", profile=_profile("sp-new"), tokens=_tokens(access="a2")
    )

    (link,) = storage.oauth.values()
    assert link.provider_id == "sp-new"
    assert link.access_token == "a2"


def test_link_identity_of_other_user_raises() -> None:
    storage = InMemoryStorage()
    alice = storage.create_user(username="alice")
    bob = storage.create_user(username="bob")
    link_oauth_identity(storage, user_id=bob.id, provider="spotify", profile=_profile("sp-bob"), tokens=_tokens())

    with pytest.raises(IdentityAlreadyLinkedError):
        link_oauth_identity(
            storage, user_id=alice.id, provider="spotify", profile=_profile("sp-bob"), tokens=_tokens()
        )
