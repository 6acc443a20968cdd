from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional


@dataclass(frozen=True)
class AuthConfig:
    # Spotify OAuth (optional)
    spotify_client_id: Optional[str]
    spotify_client_secret: Optional[str]
    spotify_timeout_seconds: int

    # Session configuration
    public_base_url: str  # Used to build OAuth redirect URIs
    session_secret: Optional[str]  # Required for cookie signing
    session_ttl_seconds: int  # Server-side lifetime of a browser-session login
    remember_me_seconds: int  # Cookie + server lifetime when "remember me" is set
    cookie_secure: bool

    # Local auth bootstrap
    admin_initial_username: Optional[str]
    admin_initial_password: Optional[str]

    @property
    def spotify_enabled(self) -> bool:
        return bool(self.spotify_client_id and self.spotify_client_secret)

    @property
    def local_enabled(self) -> bool:
        """Local auth is always enabled."""
        return True


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(float(raw))
    except ValueError:
        return default


@lru_cache(maxsize=1)
def load_auth_config() -> AuthConfig:
    """
    Load authentication configuration from environment variables.

    Spotify login is enabled when SPOTIFY_CLIENT_ID and SPOTIFY_CLIENT_SECRET are set.
    Sessions can only be issued when AUTH_SESSION_SECRET is set.
    """
    public_base_url = (os.getenv("AUTH_PUBLIC_BASE_URL", "") or "").strip().rstrip("/") or "http://localhost:5000"
    cookie_secure_env = (os.getenv("AUTH_COOKIE_SECURE", "") or "").strip().lower()
    if cookie_secure_env in ("1", "true", "yes", "on"):
        cookie_secure = True
    elif cookie_secure_env in ("0", "false", "no", "off"):
        cookie_secure = False
    else:
        # Default: secure cookies when base URL is https; otherwise allow local dev.
        cookie_secure = public_base_url.startswith("https://")

    ttl = _env_int("AUTH_SESSION_TTL_SECONDS", 86400)
    if ttl <= 60:
        ttl = 60

    remember_days = _env_int("AUTH_REMEMBER_ME_DAYS", 30)
    if remember_days < 1:
        remember_days = 1

    timeout = max(1, min(_env_int("SPOTIFY_TIMEOUT_SECONDS", 10), 60))

    return AuthConfig(
        spotify_client_id=(os.getenv("SPOTIFY_CLIENT_ID", "") or "").strip() or None,
        spotify_client_secret=(os.getenv("SPOTIFY_CLIENT_SECRET", "") or "").strip() or None,
        spotify_timeout_seconds=timeout,
        public_base_url=public_base_url,
        session_secret=(os.getenv("AUTH_SESSION_SECRET", "") or "").strip() or None,
        session_ttl_seconds=ttl,
        remember_me_seconds=remember_days * 24 * 60 * 60,
        cookie_secure=cookie_secure,
        admin_initial_username=(os.getenv("ADMIN_INITIAL_USERNAME", "") or "").strip() or None,
        admin_initial_password=(os.getenv("ADMIN_INITIAL_PASSWORD", "") or "").strip() or None,
    )
