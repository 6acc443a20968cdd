"""Spotify OAuth (authorization code + PKCE) and the few Web API calls we proxy."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import requests

from disc.auth.config import AuthConfig

PROVIDER = "spotify"

AUTHORIZE_URL = "https://accounts.spotify.com/authorize"
TOKEN_URL = "https://accounts.spotify.com/api/token"
API_BASE_URL = "https://api.spotify.com/v1"

SCOPES = [
    "user-read-email",
    "user-read-private",
    "user-top-read",
    "user-read-recently-played",
    "user-library-read",
]


class SpotifyAuthError(ValueError):
    """Raised when Spotify rejects a token exchange/refresh or returns an unusable payload."""


def login_redirect_uri(cfg: AuthConfig) -> str:
    return f"{cfg.public_base_url}/api/auth/spotify/callback"


def link_redirect_uri(cfg: AuthConfig) -> str:
    return f"{cfg.public_base_url}/api/link/spotify/callback"


def build_authorize_url(
    cfg: AuthConfig,
    *,
    redirect_uri: str,
    state: str,
    code_challenge: str,
) -> str:
    """
    Build the Spotify authorization URL.
    """
    if not cfg.spotify_client_id:
        raise ValueError("Spotify client ID not configured")

    params = {
        "client_id": cfg.spotify_client_id,
        "response_type": "code",
        "redirect_uri": redirect_uri,
        "scope": " ".join(SCOPES),
        "state": state,
        "code_challenge_method": "S256",
        "code_challenge": code_challenge,
    }
    return f"{AUTHORIZE_URL}?{urlencode(params)}"


def _token_request(cfg: AuthConfig, payload: Dict[str, str]) -> Dict[str, Any]:
    if not cfg.spotify_client_id or not cfg.spotify_client_secret:
        raise ValueError("Spotify client ID/secret not configured")

    r = requests.post(
        TOKEN_URL,
        data=payload,
        auth=(cfg.spotify_client_id, cfg.spotify_client_secret),
        timeout=cfg.spotify_timeout_seconds,
    )
    if r.status_code >= 400:
        # Avoid leaking sensitive info; include minimal context.
        raise SpotifyAuthError(f"Spotify token request failed (status={r.status_code})")
    data = r.json()
    if not isinstance(data, dict) or not data.get("access_token"):
        raise SpotifyAuthError("Invalid token response")
    return data


def exchange_code_for_tokens(
    cfg: AuthConfig,
    *,
    redirect_uri: str,
    code: str,
    code_verifier: str,
) -> Dict[str, Any]:
    """
    Exchange authorization code for tokens (access_token, refresh_token, expires_in).
    """
    return _token_request(
        cfg,
        {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri,
            "code_verifier": code_verifier,
        },
    )


def refresh_access_token(cfg: AuthConfig, refresh_token: str) -> Dict[str, Any]:
    """
    Exchange a refresh token for a new access token.

    Spotify may rotate the refresh token; when it does the response carries a new
    `refresh_token`, otherwise the old one stays valid.
    """
    return _token_request(cfg, {"grant_type": "refresh_token", "refresh_token": refresh_token})


def expires_at_from(tokens: Dict[str, Any], *, now: Optional[datetime] = None) -> Optional[datetime]:
    try:
        expires_in = int(tokens.get("expires_in") or 0)
    except (TypeError, ValueError):
        return None
    if expires_in <= 0:
        return None
    return (now or datetime.now(timezone.utc)) + timedelta(seconds=expires_in)


def _api_get(cfg: AuthConfig, access_token: str, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    r = requests.get(
        f"{API_BASE_URL}{path}",
        headers={"Authorization": f"Bearer {access_token}"},
        params=params,
        timeout=cfg.spotify_timeout_seconds,
    )
    r.raise_for_status()
    data = r.json()
    if not isinstance(data, dict):
        raise SpotifyAuthError(f"Unexpected response from {path}")
    return data


def get_profile(cfg: AuthConfig, access_token: str) -> Dict[str, Any]:
    """Current user's profile (`id`, `display_name`, `email`, `images`, ...)."""
    profile = _api_get(cfg, access_token, "/me")
    if not str(profile.get("id") or "").strip():
        raise SpotifyAuthError("Spotify profile missing id")
    return profile


def get_top_tracks(
    cfg: AuthConfig, access_token: str, *, limit: int = 20, time_range: str = "medium_term"
) -> Dict[str, Any]:
    return _api_get(cfg, access_token, "/me/top/tracks", {"limit": limit, "time_range": time_range})


def profile_image_url(profile: Dict[str, Any]) -> Optional[str]:
    images = profile.get("images")
    if isinstance(images, list) and images:
        first = images[0]
        if isinstance(first, dict):
            url = str(first.get("url") or "").strip()
            return url or None
    return None
