"""Random tokens, PKCE values and redirect-target checks for the login flows."""

from __future__ import annotations

import base64
import hashlib
import secrets
import uuid
from typing import Tuple


def b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def random_token(nbytes: int = 32) -> str:
    return b64url(secrets.token_bytes(nbytes))


def pkce_challenge(verifier: str) -> str:
    """S256 code challenge for a PKCE verifier."""
    return b64url(hashlib.sha256(verifier.encode("ascii")).digest())


def pkce_pair() -> Tuple[str, str]:
    """Return `(verifier, challenge)`; 32 random bytes encode to a 43-char verifier."""
    verifier = random_token(32)
    return verifier, pkce_challenge(verifier)


def short_suffix() -> str:
    """8 hex chars, used to de-duplicate usernames taken from OAuth profiles."""
    return uuid.uuid4().hex[:8]


def sanitize_next_path(next_path: str | None) -> str:
    """
    Where to send the browser after Spotify login.

    Only same-origin paths such as `/account` survive; anything else becomes `/`.
    """
    p = (next_path or "").replace("\r", "").replace("\n", "").strip()
    # Browsers treat `//host` and `/\host` as absolute URLs.
    if not p.startswith("/") or p[1:2] in ("/", "\\"):
        return "/"
    return p
