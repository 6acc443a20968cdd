from __future__ import annotations

from typing import Awaitable, Callable, Optional, Type, TypeVar

from fastapi import Depends, Request
from fastapi.exceptions import RequestValidationError
from pydantic import BaseModel, ValidationError

from disc.auth.session import Session
from disc.core.errors import ForbiddenError, NotAuthenticatedError, ServiceUnavailableError
from disc.core.models import User
from disc.storage.base import Storage

BodyT = TypeVar("BodyT", bound=BaseModel)


def get_storage(request: Request) -> Storage:
    storage = getattr(request.app.state, "storage", None)
    if storage is None:
        raise ServiceUnavailableError("Database not configured")
    return storage


def get_session(request: Request) -> Session:
    """The session restored by the HTTP middleware for this request."""
    session = getattr(request.state, "session", None)
    if session is None:
        session = Session()
        request.state.session = session
    return session


def get_current_user(request: Request, session: Session = Depends(get_session)) -> Optional[User]:
    """
    Resolve the session's user id to a user, or None for anonymous requests.

    A session pointing at a deleted user is treated as logged out.
    """
    user_id = session.user_id
    if user_id is None:
        return None
    user = get_storage(request).get_user(user_id)
    if user is None:
        session.logout()
    return user


def require_user(user: Optional[User] = Depends(get_current_user)) -> User:
    if user is None:
        raise NotAuthenticatedError()
    return user


def require_admin(user: User = Depends(require_user)) -> User:
    if not user.is_admin:
        raise ForbiddenError()
    return user


def gated_body(model: Type[BodyT], gate: Callable[..., User]) -> Callable[..., Awaitable[BodyT]]:
    """
    Dependency that parses the JSON body as `model` only after `gate` has passed.

    FastAPI validates declared body parameters before running any dependency, which
    would answer anonymous or non-admin callers with 400 instead of 401/403.
    """

    async def _parse(request: Request, _user: User = Depends(gate)) -> BodyT:
        raw = await request.body()
        if not raw.strip():
            raise RequestValidationError([{"loc": ("body",), "msg": "Field required", "type": "missing"}])
        try:
            return model.model_validate_json(raw)
        except ValidationError as e:
            raise RequestValidationError(e.errors(include_url=False)) from e

    return _parse
