"""
Admin management routes (`/api/admin/*`).

Every route requires an admin. Bodies are parsed by `gated_body` after that check,
so non-admins get 401/403 and never see data or validation details.
"""

from __future__ import annotations

import logging
from typing import List

from fastapi import APIRouter, Depends, Response

from disc.auth.deps import gated_body, get_storage, require_admin
from disc.core.errors import NotFoundError, ValidationFailedError
from disc.core.models import (
    AdminUserUpdate,
    Album,
    AlbumCreate,
    AlbumUpdate,
    Artist,
    ArtistCreate,
    ArtistUpdate,
    Event,
    EventCreate,
    EventUpdate,
    User,
)
from disc.storage.base import Storage

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", dependencies=[Depends(require_admin)])


def _body(model):
    return gated_body(model, require_admin)


def _changes(body) -> dict:
    # Explicit nulls are ignored: a PATCH cannot clear a column.
    return body.model_dump(exclude_unset=True, exclude_none=True)


def _ensure_artist_exists(storage: Storage, artist_id: int) -> None:
    if storage.get_artist(artist_id) is None:
        raise ValidationFailedError([{"field": "artistId", "message": "Artist not found"}])


# ---- Users ----


@router.get("/users", response_model=List[User])
def list_users(storage: Storage = Depends(get_storage)) -> List[User]:
    return storage.list_users()


@router.patch("/users/{user_id}", response_model=User)
def update_user(
    user_id: int,
    body: AdminUserUpdate = Depends(_body(AdminUserUpdate)),
    admin: User = Depends(require_admin),
    storage: Storage = Depends(get_storage),
) -> User:
    user = storage.set_user_admin(user_id, body.is_admin)
    if user is None:
        raise NotFoundError("User not found")
    logger.info("Admin %s set isAdmin=%s for user %s", admin.id, body.is_admin, user_id)
    return user


# ---- Artists ----


@router.get("/artists", response_model=List[Artist])
def list_artists(storage: Storage = Depends(get_storage)) -> List[Artist]:
    return storage.list_artists()


@router.post("/artists", response_model=Artist, status_code=201)
def create_artist(body: ArtistCreate = Depends(_body(ArtistCreate)), storage: Storage = Depends(get_storage)) -> Artist:
    return storage.create_artist(body)


@router.patch("/artists/{artist_id}", response_model=Artist)
def update_artist(artist_id: int,
    body: ArtistUpdate = Depends(_body(ArtistUpdate)),
    storage: Storage = Depends(get_storage),
) -> Artist:
    artist = storage.update_artist(artist_id, _changes(body))
    if artist is None:
        raise NotFoundError("Artist not found")
    return artist


@router.delete("/artists/{artist_id}", status_code=204)
def delete_artist(artist_id: int, storage: Storage = Depends(get_storage)) -> Response:
    if not storage.delete_artist(artist_id):
        raise NotFoundError("Artist not found")
    return Response(status_code=204)


# ---- Albums ----


@router.get("/albums", response_model=List[Album])
def list_albums(storage: Storage = Depends(get_storage)) -> List[Album]:
    return storage.list_albums()


@router.post("/albums", response_model=Album, status_code=201)
def create_album(body: AlbumCreate = Depends(_body(AlbumCreate)), storage: Storage = Depends(get_storage)) -> Album:
    _ensure_artist_exists(storage, body.artist_id)
    return storage.create_album(body)


@router.patch("/albums/{album_id}", response_model=Album)
def update_album(album_id: int,
    body: AlbumUpdate = Depends(_body(AlbumUpdate)),
    storage: Storage = Depends(get_storage),
) -> Album:
    changes = _changes(body)
    if changes.get("artist_id") is not None:
        _ensure_artist_exists(storage, changes["artist_id"])
    album = storage.update_album(album_id, changes)
    if album is None:
        raise NotFoundError("Album not found")
    return album


@router.delete("/albums/{album_id}", status_code=204)
def delete_album(album_id: int, storage: Storage = Depends(get_storage)) -> Response:
    if not storage.delete_album(album_id):
        raise NotFoundError("Album not found")
    return Response(status_code=204)


# ---- Events ----


@router.get("/events", response_model=List[Event])
def list_events(storage: Storage = Depends(get_storage)) -> List[Event]:
    return storage.list_events()


@router.post("/events", response_model=Event, status_code=201)
def create_event(body: EventCreate = Depends(_body(EventCreate)), storage: Storage = Depends(get_storage)) -> Event:
    return storage.create_event(body)


@router.patch("/events/{event_id}", response_model=Event)
def update_event(event_id: int,
    body: EventUpdate = Depends(_body(EventUpdate)),
    storage: Storage = Depends(get_storage),
) -> Event:
    event = storage.update_event(event_id, _changes(body))
    if event is None:
        raise NotFoundError("Event not found")
    return event


@router.delete("/events/{event_id}", status_code=204)
def delete_event(event_id: int, storage: Storage = Depends(get_storage)) -> Response:
    if not storage.delete_event(event_id):
        raise NotFoundError("Event not found")
    return Response(status_code=204)
