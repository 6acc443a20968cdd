from __future__ import annotations

import logging
from typing import Optional

import bcrypt

from disc.core.errors import DuplicateUsernameError, NotFoundError
from disc.core.models import RegisterRequest, User
from disc.storage.base import Storage

logger = logging.getLogger(__name__)

# Verified against when the username is unknown so both failure paths cost one bcrypt check.
_DUMMY_HASH = bcrypt.hashpw(b"disc-dummy-password", bcrypt.gensalt(rounds=12)).decode("utf-8")


def hash_password(password: str) -> str:
    """
    Hash password with bcrypt (cost factor 12).

    The per-password salt is generated here and embedded in the returned hash.

    Args:
        password: Plain text password

    Returns:
        Bcrypt hash string
    """
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=12)).decode("utf-8")


def verify_password(password: str, password_hash: Optional[str]) -> bool:
    """
    Verify password against bcrypt hash with constant-time comparison.

    Args:
        password: Plain text password
        password_hash: Bcrypt hash (None for OAuth-only accounts)

    Returns:
        True if password matches, False otherwise
    """
    if not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Invalid hash format
        return False


def authenticate_local(storage: Storage, username: str, password: str) -> Optional[User]:
    """
    Authenticate local user with username/password.

    Unknown username, OAuth-only account and wrong password all return None.

    Args:
        storage: Persistence layer
        username: Username
        password: Plain text password

    Returns:
        User if authentication succeeds, None otherwise
    """
    user = storage.get_user_by_username(username)
    if user is None or not user.password:
        verify_password(password, _DUMMY_HASH)
        return None

    if not verify_password(password, user.password):
        return None

    return user


def register_local_user(storage: Storage, req: RegisterRequest) -> User:
    """
    Create a local account. Only the bcrypt hash of the password is stored.

    Raises:
        DuplicateUsernameError: If the username is taken (checked up front, and again by
            the storage layer's unique constraint under concurrent registration)
    """
    if storage.get_user_by_username(req.username) is not None:
        raise DuplicateUsernameError()

    return storage.create_user(
        username=req.username,
        password_hash=hash_password(req.password),
        email=req.email,
        location=req.location,
    )


def initialize_admin_user(storage: Storage, username: str, password: str) -> Optional[User]:
    """
    Create initial admin user if the users table is empty.

    Called on application startup so a fresh deployment always has an admin account.
    """
    if not username or not password:
        return None

    if storage.count_users() > 0:
        return None

    try:
        user = storage.create_user(username=username, password_hash=hash_password(password), is_admin=True)
    except DuplicateUsernameError:
        # Another instance bootstrapped concurrently.
        return None
    logger.info("Created initial admin user %r", username)
    return user


def make_admin(storage: Storage, username: str) -> User:
    """Promote an existing user to admin."""
    user = storage.get_user_by_username(username)
    if user is None:
        raise NotFoundError(f"User '{username}' not found")
    updated = storage.set_user_admin(user.id, True)
    if updated is None:
        raise NotFoundError(f"User '{username}' not found")
    return updated
