"""
Authentication routes: local accounts, Spotify login/linking and the Spotify passthrough.

Every handler that changes who is logged in does so through the request `Session`;
the session middleware persists it and sets the cookie after the handler returns.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Tuple

import requests
from fastapi import APIRouter, Depends, Query, Request, Response
from fastapi.responses import RedirectResponse

from disc.auth import spotify
from disc.auth.config import AuthConfig, load_auth_config
from disc.auth.deps import get_current_user, get_session, get_storage, require_user
from disc.auth.local import authenticate_local, register_local_user
from disc.auth.oauth import (
    IdentityAlreadyLinkedError,
    ensure_fresh_access_token,
    link_oauth_identity,
    login_with_oauth,
)
from disc.auth.session import LINK_USER_ID_KEY, Session
from disc.auth.util import pkce_pair, random_token, sanitize_next_path
from disc.core.errors import (
    AuthenticationError,
    DiscError,
    NotAuthenticatedError,
    NotFoundError,
    ReauthRequiredError,
    ServiceUnavailableError,
    UpstreamError,
)
from disc.core.models import LoginRequest, RegisterRequest, User
from disc.storage.base import Storage

logger = logging.getLogger(__name__)

router = APIRouter()

# OAuth state lives in short-lived cookies scoped to /api so both the login and the
# link callbacks receive them.
_OAUTH_COOKIE_PATH = "/api"
_OAUTH_TTL_SECONDS = 10 * 60
_OAUTH_STATE_COOKIE = "disc_oauth_state"
_OAUTH_VERIFIER_COOKIE = "disc_oauth_verifier"
_OAUTH_NEXT_COOKIE = "disc_oauth_next"

LOGIN_FAILED_REDIRECT = "/auth?error=spotify-auth-failed"
LINK_SUCCESS_REDIRECT = "/account?success=spotify-linked"
LINK_ALREADY_LINKED_REDIRECT = "/account?error=spotify-already-linked"
LINK_NO_USER_REDIRECT = "/account?error=spotify-link-failed-no-user"
LINK_NOT_AUTHENTICATED_REDIRECT = "/account?error=spotify-link-failed-not-authenticated"
LINK_FAILED_REDIRECT = "/account?error=spotify-link-failed"


def _oauth_cookie_kwargs(cfg: AuthConfig, *, key: str, value: str, max_age: int) -> dict:
    return {
        "key": key,
        "value": value,
        "max_age": max_age,
        "httponly": True,
        "secure": cfg.cookie_secure,
        "samesite": "lax",
        "path": _OAUTH_COOKIE_PATH,
    }


def _oauth_cookie_clear_kwargs(cfg: AuthConfig, *, key: str) -> dict:
    return _oauth_cookie_kwargs(cfg, key=key, value="", max_age=0)


def _user_body(user: User) -> Dict[str, Any]:
    return user.model_dump(by_alias=True, mode="json")


def _require_session_signing(cfg: AuthConfig) -> None:
    if not cfg.session_secret:
        raise ServiceUnavailableError("Session signing is not configured (AUTH_SESSION_SECRET)")


def _require_spotify(cfg: AuthConfig) -> None:
    if not cfg.spotify_enabled:
        raise ServiceUnavailableError("Spotify auth is not enabled")


# ---- Local accounts ----


@router.post("/api/register", status_code=201)
def register(
    body: RegisterRequest,
    response: Response,
    session: Session = Depends(get_session),
    storage: Storage = Depends(get_storage),
) -> Dict[str, Any]:
    """Create a local account and log it in."""
    cfg = load_auth_config()
    _require_session_signing(cfg)

    user = register_local_user(storage, body)
    session.login(user.id)
    logger.info("Registered user %r", user.username)

    response.headers["Cache-Control"] = "no-store"
    return _user_body(user)


@router.post("/api/login")
def login(
    body: LoginRequest,
    response: Response,
    session: Session = Depends(get_session),
    storage: Storage = Depends(get_storage),
) -> Dict[str, Any]:
    """
    Local username/password authentication.

    Unknown user and wrong password produce the same 401.
    """
    cfg = load_auth_config()
    _require_session_signing(cfg)

    user = authenticate_local(storage, body.username, body.password)
    if user is None:
        logger.info("Failed login for %r", body.username)
        raise AuthenticationError()

    session.login(user.id, remember=body.remember_me)
    response.headers["Cache-Control"] = "no-store"
    return _user_body(user)


@router.post("/api/logout")
def logout(response: Response, session: Session = Depends(get_session)) -> Dict[str, Any]:
    session.logout()
    response.headers["Cache-Control"] = "no-store"
    return {"ok": True}


@router.get("/api/user")
def current_user(user: User = Depends(require_user)) -> Dict[str, Any]:
    return _user_body(user)


@router.get("/api/auth/mode")
def auth_mode() -> Dict[str, Any]:
    """
    Expose the enabled login methods so the UI can render the right options.
    Public; returns no secrets.
    """
    cfg = load_auth_config()
    result: Dict[str, Any] = {
        "ok": True,
        "localEnabled": cfg.local_enabled,
        "spotifyEnabled": cfg.spotify_enabled,
    }
    if cfg.spotify_enabled:
        result["spotifyLoginUrl"] = "/api/auth/spotify"
        result["spotifyLinkUrl"] = "/api/link/spotify"
    return result


# ---- Spotify OAuth ----


def _start_spotify_flow(cfg: AuthConfig, *, redirect_uri: str, next_path: str) -> RedirectResponse:
    state = random_token(32)
    verifier, challenge = pkce_pair()
    url = spotify.build_authorize_url(
        cfg,
        redirect_uri=redirect_uri,
        state=state,
        code_challenge=challenge,
    )

    resp = RedirectResponse(url=url, status_code=302)
    resp.headers["Cache-Control"] = "no-store"
    resp.set_cookie(**_oauth_cookie_kwargs(cfg, key=_OAUTH_STATE_COOKIE, value=state, max_age=_OAUTH_TTL_SECONDS))
    resp.set_cookie(**_oauth_cookie_kwargs(cfg, key=_OAUTH_VERIFIER_COOKIE, value=verifier, max_age=_OAUTH_TTL_SECONDS))
    resp.set_cookie(**_oauth_cookie_kwargs(cfg, key=_OAUTH_NEXT_COOKIE, value=next_path, max_age=_OAUTH_TTL_SECONDS))
    return resp


def _complete_spotify_flow(
    request: Request,
    cfg: AuthConfig,
    *,
    redirect_uri: str,
    code: Optional[str],
    state: Optional[str],
    error: Optional[str],
) -> Tuple[Dict[str, Any], Dict[str, Any]]:
    """
    Validate the callback against the OAuth cookies, exchange the code and fetch the profile.

    Returns: (tokens, profile)
    """
    if error:
        raise spotify.SpotifyAuthError(f"Spotify authorization denied ({error})")
    if not cfg.spotify_enabled:
        raise spotify.SpotifyAuthError("Spotify auth is not enabled")

    cookie_state = (request.cookies.get(_OAUTH_STATE_COOKIE) or "").strip()
    cookie_verifier = (request.cookies.get(_OAUTH_VERIFIER_COOKIE) or "").strip()
    if not cookie_state or cookie_state != (state or "").strip():
        raise spotify.SpotifyAuthError("Invalid OAuth state")
    if not cookie_verifier:
        raise spotify.SpotifyAuthError("Missing OAuth verifier")
    if not code:
        raise spotify.SpotifyAuthError("Missing authorization code")

    tokens = spotify.exchange_code_for_tokens(cfg, redirect_uri=redirect_uri, code=code, code_verifier=cookie_verifier)
    profile = spotify.get_profile(cfg, str(tokens["access_token"]))
    return tokens, profile


def _finish_redirect(cfg: AuthConfig, url: str) -> RedirectResponse:
    resp = RedirectResponse(url=url, status_code=302)
    resp.headers["Cache-Control"] = "no-store"
    resp.set_cookie(**_oauth_cookie_clear_kwargs(cfg, key=_OAUTH_STATE_COOKIE))
    resp.set_cookie(**_oauth_cookie_clear_kwargs(cfg, key=_OAUTH_VERIFIER_COOKIE))
    resp.set_cookie(**_oauth_cookie_clear_kwargs(cfg, key=_OAUTH_NEXT_COOKIE))
    return resp


@router.get("/api/auth/spotify")
def spotify_login(next_path: str = Query("/", alias="next")) -> RedirectResponse:
    """Initiate Spotify login (authorization code + PKCE)."""
    cfg = load_auth_config()
    _require_spotify(cfg)
    return _start_spotify_flow(
        cfg, redirect_uri=spotify.login_redirect_uri(cfg), next_path=sanitize_next_path(next_path)
    )


@router.get("/api/auth/spotify/callback")
def spotify_login_callback(
    request: Request,
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
    session: Session = Depends(get_session),
    storage: Storage = Depends(get_storage),
) -> RedirectResponse:
    """Handle the Spotify callback for login: find or create the local user."""
    cfg = load_auth_config()
    next_path = sanitize_next_path(request.cookies.get(_OAUTH_NEXT_COOKIE))

    try:
        if not cfg.session_secret:
            raise ServiceUnavailableError("Session signing is not configured (AUTH_SESSION_SECRET)")
        tokens, profile = _complete_spotify_flow(
            request, cfg, redirect_uri=spotify.login_redirect_uri(cfg), code=code, state=state, error=error
        )
        user, _created = login_with_oauth(storage, provider=spotify.PROVIDER, profile=profile, tokens=tokens)
    except (ValueError, requests.RequestException, DiscError) as e:
        logger.warning("Spotify login failed: %s", str(e))
        return _finish_redirect(cfg, LOGIN_FAILED_REDIRECT)

    session.login(user.id)
    return _finish_redirect(cfg, next_path)


@router.get("/api/link/spotify")
def spotify_link(
    session: Session = Depends(get_session),
    user: Optional[User] = Depends(get_current_user),
) -> RedirectResponse:
    """Start linking a Spotify account to the logged-in user."""
    if user is None:
        raise NotAuthenticatedError("You must be logged in to link accounts")
    cfg = load_auth_config()
    _require_spotify(cfg)

    session.set(LINK_USER_ID_KEY, user.id)
    return _start_spotify_flow(cfg, redirect_uri=spotify.link_redirect_uri(cfg), next_path="/account")


@router.get("/api/link/spotify/callback")
def spotify_link_callback(
    request: Request,
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
    session: Session = Depends(get_session),
    storage: Storage = Depends(get_storage),
) -> RedirectResponse:
    """Handle the Spotify callback for linking: attach the identity to the stashed user."""
    cfg = load_auth_config()

    # Cleared on every outcome.
    link_user_id = session.pop(LINK_USER_ID_KEY)
    if not isinstance(link_user_id, int) or storage.get_user(link_user_id) is None:
        logger.warning("Spotify link callback without a pending link user")
        return _finish_redirect(cfg, LINK_NO_USER_REDIRECT)
    if session.user_id != link_user_id:
        logger.warning("Spotify link callback for user %s on a session not logged in as them", link_user_id)
        return _finish_redirect(cfg, LINK_NOT_AUTHENTICATED_REDIRECT)

    try:
        tokens, profile = _complete_spotify_flow(
            request, cfg, redirect_uri=spotify.link_redirect_uri(cfg), code=code, state=state, error=error
        )
        link_oauth_identity(
            storage,
            user_id=link_user_id,
            provider=spotify.PROVIDER,
            profile=profile,
            tokens=tokens,
        )
    except IdentityAlreadyLinkedError:
        logger.info("Spotify link for user %s refused: identity belongs to another user", link_user_id)
        return _finish_redirect(cfg, LINK_ALREADY_LINKED_REDIRECT)
    except (ValueError, requests.RequestException, DiscError) as e:
        logger.warning("Spotify link failed for user %s: %s", link_user_id, str(e))
        return _finish_redirect(cfg, LINK_FAILED_REDIRECT)

    logger.info("Linked Spotify account to user %s", link_user_id)
    return _finish_redirect(cfg, LINK_SUCCESS_REDIRECT)


# ---- Spotify passthrough ----


def _spotify_access_token(storage: Storage, user: User, *, failure_message: str) -> str:
    link = storage.get_oauth_provider(user.id, spotify.PROVIDER)
    if link is None:
        raise NotFoundError("No Spotify account connected")
    try:
        return ensure_fresh_access_token(storage, load_auth_config(), link)
    except spotify.SpotifyAuthError as e:
        # Spotify rejected the stored refresh token.
        logger.warning("Spotify token refresh rejected for user %s: %s", user.id, str(e))
        raise ReauthRequiredError() from e
    except (ValueError, requests.RequestException) as e:
        logger.warning("Spotify token refresh failed for user %s: %s", user.id, str(e))
        raise UpstreamError(failure_message) from e


@router.get("/api/spotify/me")
def spotify_me(user: User = Depends(require_user), storage: Storage = Depends(get_storage)) -> Dict[str, Any]:
    failure = "Failed to get Spotify profile"
    access_token = _spotify_access_token(storage, user, failure_message=failure)
    try:
        return spotify.get_profile(load_auth_config(), access_token)
    except (ValueError, requests.RequestException) as e:
        logger.warning("Spotify profile request failed for user %s: %s", user.id, str(e))
        raise UpstreamError(failure) from e


@router.get("/api/spotify/top-tracks")
def spotify_top_tracks(
    limit: int = Query(20, ge=1, le=50),
    time_range: str = Query("medium_term", alias="timeRange", pattern="^(short_term|medium_term|long_term)$"),
    user: User = Depends(require_user),
    storage: Storage = Depends(get_storage),
) -> Dict[str, Any]:
    failure = "Failed to get Spotify top tracks"
    access_token = _spotify_access_token(storage, user, failure_message=failure)
    try:
        return spotify.get_top_tracks(load_auth_config(), access_token, limit=limit, time_range=time_range)
    except (ValueError, requests.RequestException) as e:
        logger.warning("Spotify top tracks request failed for user %s: %s", user.id, str(e))
        raise UpstreamError(failure) from e
