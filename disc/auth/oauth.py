"""
Third-party identity handling: OAuth login, account linking and token refresh.

Token columns on `oauth_providers` are written only from here (the callback paths
and `ensure_fresh_access_token`).
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from disc.auth import spotify
from disc.auth.config import AuthConfig
from disc.auth.util import short_suffix
from disc.core.errors import DuplicateUsernameError, ReauthRequiredError
from disc.core.models import OAuthProvider, User
from disc.storage.base import Storage

logger = logging.getLogger(__name__)


class IdentityAlreadyLinkedError(ValueError):
    """The third-party identity belongs to a different local account."""


def _provider_id(profile: Dict[str, Any]) -> str:
    pid = str(profile.get("id") or "").strip()
    if not pid:
        raise ValueError("OAuth profile missing id")
    return pid


def _pick_username(storage: Storage, provider: str, profile: Dict[str, Any]) -> str:
    base = str(profile.get("display_name") or "").strip() or f"{provider}_{_provider_id(profile)}"
    if storage.get_user_by_username(base) is None:
        return base
    return f"{base}_{short_suffix()}"


def login_with_oauth(
    storage: Storage,
    *,
    provider: str,
    profile: Dict[str, Any],
    tokens: Dict[str, Any],
    now: Optional[datetime] = None,
) -> Tuple[User, bool]:
    """
    Resolve (or create) the local user for a third-party login.

    Existing link: stored tokens are refreshed and its user returned.
    Unseen identity: exactly one user and one provider link are created.

    Returns: (user, created)
    """
    provider_id = _provider_id(profile)
    access_token = tokens.get("access_token")
    refresh_token = tokens.get("refresh_token")
    expires_at = spotify.expires_at_from(tokens, now=now)

    user = storage.get_user_by_oauth_provider(provider, provider_id)
    if user is not None:
        link = storage.get_oauth_provider(user.id, provider)
        if link is not None:
            storage.update_oauth_provider_tokens(
                link.id,
                access_token,
                refresh_token or link.refresh_token,
                expires_at,
            )
        return user, False

    email = str(profile.get("email") or "").strip() or None
    try:
        user = storage.create_user(
            username=_pick_username(storage, provider, profile),
            email=email,
            profile_image=spotify.profile_image_url(profile),
        )
    except DuplicateUsernameError:
        # Lost a race for the plain name; the suffixed form is effectively unique.
        base = str(profile.get("display_name") or "").strip() or f"{provider}_{provider_id}"
        user = storage.create_user(
            username=f"{base}_{short_suffix()}",
            email=email,
            profile_image=spotify.profile_image_url(profile),
        )

    storage.create_oauth_provider(
        user_id=user.id,
        provider=provider,
        provider_id=provider_id,
        access_token=access_token,
        refresh_token=refresh_token,
        token_expires_at=expires_at,
        profile_data=profile,
    )
    logger.info("Created user %r from %s login", user.username, provider)
    return user, True


def link_oauth_identity(
    storage: Storage,
    *,
    user_id: int,
    provider: str,
    profile: Dict[str, Any],
    tokens: Dict[str, Any],
    now: Optional[datetime] = None,
) -> OAuthProvider:
    """
    Attach a third-party identity to an existing account.

    Raises:
        IdentityAlreadyLinkedError: If the identity is linked to a different user
    """
    provider_id = _provider_id(profile)
    access_token = tokens.get("access_token")
    refresh_token = tokens.get("refresh_token")
    expires_at = spotify.expires_at_from(tokens, now=now)

    owner = storage.get_oauth_provider_by_provider_id(provider, provider_id)
    if owner is not None and owner.user_id != user_id:
        raise IdentityAlreadyLinkedError(f"{provider} account already linked to another user")

    existing = owner or storage.get_oauth_provider(user_id, provider)
    if existing is None:
        return storage.create_oauth_provider(
            user_id=user_id,
            provider=provider,
            provider_id=provider_id,
            access_token=access_token,
            refresh_token=refresh_token,
            token_expires_at=expires_at,
            profile_data=profile,
        )

    if existing.provider_id != provider_id:
        # One link per (user, provider): switching to a different account re-points the row.
        relinked = storage.relink_oauth_provider(existing.id, provider_id=provider_id, profile_data=profile)
        existing = relinked or existing

    updated = storage.update_oauth_provider_tokens(
        existing.id,
        access_token,
        refresh_token or existing.refresh_token,
        expires_at,
    )
    return updated or existing


def ensure_fresh_access_token(
    storage: Storage,
    cfg: AuthConfig,
    link: OAuthProvider,
    *,
    now: Optional[datetime] = None,
) -> str:
    """
    Return a usable access token for `link`, refreshing it first if it has expired.

    Raises:
        ReauthRequiredError: Expired (or missing) access token and no refresh token stored
        spotify.SpotifyAuthError: Spotify rejected the refresh
    """
    now = now or datetime.now(timezone.utc)
    expired = link.token_expires_at is not None and link.token_expires_at < now

    if link.access_token and not expired:
        return link.access_token

    if not link.refresh_token:
        raise ReauthRequiredError()

    data = spotify.refresh_access_token(cfg, link.refresh_token)
    access_token = str(data["access_token"])
    refresh_token = str(data.get("refresh_token") or link.refresh_token)
    storage.update_oauth_provider_tokens(
        link.id,
        access_token,
        refresh_token,
        spotify.expires_at_from(data, now=now),
    )
    logger.info("Refreshed %s access token for user %s", link.provider, link.user_id)
    return access_token
