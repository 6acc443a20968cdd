"""
Server-side sessions.

The cookie carries only a random session id, signed with itsdangerous so forged or
tampered values are rejected before touching the store. Session data (user id, the
pending OAuth link target) lives in the session store.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Protocol

from itsdangerous import BadSignature, BadTimeSignature, URLSafeTimedSerializer

from disc.auth.config import AuthConfig
from disc.auth.util import random_token

logger = logging.getLogger(__name__)

SESSION_SALT = "disc-session-v1"

USER_ID_KEY = "userId"
LINK_USER_ID_KEY = "linkUserId"
REMEMBER_KEY = "remember"


def session_cookie_name(cfg: AuthConfig) -> str:
    # `__Host-` requires Secure + Path=/ + no Domain; browsers may reject it on HTTP.
    return "__Host-disc_session" if cfg.cookie_secure else "disc_session"


class SessionStore(Protocol):
    """Persistence for session records. Expired records must load as None."""

    def load(self, sid: str) -> Optional[Dict[str, Any]]: ...

    def save(self, sid: str, data: Dict[str, Any], expires_at: datetime) -> None: ...

    def destroy(self, sid: str) -> None: ...

    def prune_expired(self) -> int: ...


@dataclass
class Session:
    """
    Per-request session context handed to route handlers.

    Mutations only mark the session dirty; `commit_session` persists it and decides
    which cookie to send once the handler has returned.
    """

    sid: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)
    modified: bool = False
    destroyed: bool = False
    previous_sid: Optional[str] = None

    @property
    def user_id(self) -> Optional[int]:
        v = self.data.get(USER_ID_KEY)
        return int(v) if isinstance(v, int) else None

    @property
    def remember(self) -> bool:
        return bool(self.data.get(REMEMBER_KEY))

    def get(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self.data[key] = value
        self.modified = True

    def pop(self, key: str, default: Any = None) -> Any:
        if key in self.data:
            self.modified = True
        return self.data.pop(key, default)

    def regenerate(self) -> None:
        """Issue a fresh id (the old record is destroyed on commit) to prevent fixation."""
        if self.sid and not self.previous_sid:
            self.previous_sid = self.sid
        self.sid = None
        self.modified = True

    def login(self, user_id: int, *, remember: bool = False) -> None:
        self.regenerate()
        self.data = {USER_ID_KEY: int(user_id), REMEMBER_KEY: bool(remember)}
        self.destroyed = False

    def logout(self) -> None:
        self.data = {}
        self.destroyed = True
        self.modified = True


def _serializer(cfg: AuthConfig) -> Optional[URLSafeTimedSerializer]:
    if not cfg.session_secret:
        return None
    return URLSafeTimedSerializer(secret_key=cfg.session_secret, salt=SESSION_SALT)


def sign_session_id(cfg: AuthConfig, sid: str) -> Optional[str]:
    s = _serializer(cfg)
    if s is None:
        return None
    return s.dumps(sid)


def unsign_session_id(cfg: AuthConfig, value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    s = _serializer(cfg)
    if s is None:
        return None
    try:
        sid = s.loads(value, max_age=cfg.remember_me_seconds)
    except (BadSignature, BadTimeSignature):
        return None
    return sid if isinstance(sid, str) and sid else None


def restore_session(cfg: AuthConfig, store: Optional[SessionStore], cookie_value: Optional[str]) -> Session:
    """Load the session referenced by the request cookie, or an empty one."""
    sid = unsign_session_id(cfg, cookie_value)
    if sid is None or store is None:
        return Session()
    data = store.load(sid)
    if data is None:
        return Session()
    return Session(sid=sid, data=dict(data))


def session_lifetime_seconds(cfg: AuthConfig, session: Session) -> int:
    return cfg.remember_me_seconds if session.remember else cfg.session_ttl_seconds


def commit_session(cfg: AuthConfig, store: Optional[SessionStore], session: Session, response: Any) -> None:
    """
    Persist a modified session and set/clear the cookie on `response`.

    Untouched sessions are left alone (no store write, no Set-Cookie).
    """
    if store is None:
        return

    if session.previous_sid:
        store.destroy(session.previous_sid)

    if session.destroyed:
        if session.sid:
            store.destroy(session.sid)
        response.set_cookie(**clear_session_cookie_kwargs(cfg))
        return

    if not session.modified:
        return

    if not session.sid:
        session.sid = random_token(32)
    lifetime = session_lifetime_seconds(cfg, session)
    expires_at = datetime.now(timezone.utc) + timedelta(seconds=lifetime)

    signed = sign_session_id(cfg, session.sid)
    if signed is None:
        logger.warning("Session not persisted: AUTH_SESSION_SECRET is not configured")
        return
    store.save(session.sid, session.data, expires_at)
    response.set_cookie(**session_cookie_kwargs(cfg, signed, max_age=lifetime if session.remember else None))


def clear_session_cookie_kwargs(cfg: AuthConfig) -> dict:
    return {
        "key": session_cookie_name(cfg),
        "value": "",
        "max_age": 0,
        "httponly": True,
        "secure": cfg.cookie_secure,
        "samesite": "lax",
        "path": "/",
    }


def session_cookie_kwargs(cfg: AuthConfig, value: str, *, max_age: Optional[int] = None) -> dict:
    """`max_age=None` produces a browser-session cookie (cleared when the client closes)."""
    return {
        "key": session_cookie_name(cfg),
        "value": value,
        "max_age": max_age,
        "httponly": True,
        "secure": cfg.cookie_secure,
        "samesite": "lax",
        "path": "/",
    }


class PostgresSessionStore:
    """Session records in the `sessions` table (see migrations/0001_init.sql)."""

    def __init__(self, dsn: str) -> None:
        self._dsn = dsn

    def _connect(self):
        import psycopg  # type: ignore[import-not-found]

        return psycopg.connect(self._dsn)

    def load(self, sid: str) -> Optional[Dict[str, Any]]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT data FROM sessions WHERE sid = %s AND expires_at > now()",
                (sid,),
            ).fetchone()
        if not row:
            return None
        data = row[0]
        return data if isinstance(data, dict) else None

    def save(self, sid: str, data: Dict[str, Any], expires_at: datetime) -> None:
        from psycopg.types.json import Jsonb  # type: ignore[import-not-found]

        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO sessions (sid, data, expires_at)
                VALUES (%s, %s, %s)
                ON CONFLICT (sid) DO UPDATE SET data = EXCLUDED.data, expires_at = EXCLUDED.expires_at
                """,
                (sid, Jsonb(data), expires_at),
            )

    def destroy(self, sid: str) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM sessions WHERE sid = %s", (sid,))

    def prune_expired(self) -> int:
        with self._connect() as conn:
            cur = conn.execute("DELETE FROM sessions WHERE expires_at <= now()")
            return cur.rowcount
