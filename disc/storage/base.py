from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol

from disc.core.models import (
    Album,
    AlbumCreate,
    Artist,
    ArtistCreate,
    Event,
    EventCreate,
    OAuthProvider,
    Review,
    ReviewCreate,
    User,
)


class Storage(Protocol):
    """
    Persistence interface used by every handler.

    Implementations: `disc.storage.postgres.PostgresStorage` (system of record) and the
    in-memory fake in `tests/fakes.py`.

    Uniqueness (usernames, one provider link per identity) is enforced by the
    implementation; a username collision raises `DuplicateUsernameError`.
    `update_*` methods take a mapping of column -> value (only the columns to change)
    and return None when the id does not exist. `delete_*` return False in that case.
    """

    # ---- users ----
    def get_user(self, user_id: int) -> Optional[User]: ...

    def get_user_by_username(self, username: str) -> Optional[User]: ...

    def create_user(
        self,
        *,
        username: str,
        password_hash: Optional[str] = None,
        email: Optional[str] = None,
        profile_image: Optional[str] = None,
        location: Optional[str] = None,
        is_admin: bool = False,
    ) -> User: ...

    def list_users(self) -> List[User]: ...

    def count_users(self) -> int: ...

    def set_user_admin(self, user_id: int, is_admin: bool) -> Optional[User]: ...

    # ---- oauth providers ----
    def get_user_by_oauth_provider(self, provider: str, provider_id: str) -> Optional[User]: ...

    def get_oauth_provider(self, user_id: int, provider: str) -> Optional[OAuthProvider]: ...

    def get_oauth_provider_by_provider_id(self, provider: str, provider_id: str) -> Optional[OAuthProvider]: ...

    def create_oauth_provider(
        self,
        *,
        user_id: int,
        provider: str,
        provider_id: str,
        access_token: Optional[str],
        refresh_token: Optional[str],
        token_expires_at: Optional[datetime],
        profile_data: Optional[Dict[str, Any]] = None,
    ) -> OAuthProvider: ...

    def relink_oauth_provider(
        self, oauth_provider_id: int, *, provider_id: str, profile_data: Optional[Dict[str, Any]]
    ) -> Optional[OAuthProvider]: ...

    def update_oauth_provider_tokens(
        self,
        oauth_provider_id: int,
        access_token: Optional[str],
        refresh_token: Optional[str],
        token_expires_at: Optional[datetime],
    ) -> Optional[OAuthProvider]: ...

    # ---- artists ----
    def list_artists(self) -> List[Artist]: ...

    def get_artist(self, artist_id: int) -> Optional[Artist]: ...

    def create_artist(self, artist: ArtistCreate) -> Artist: ...

    def update_artist(self, artist_id: int, changes: Dict[str, Any]) -> Optional[Artist]: ...

    def delete_artist(self, artist_id: int) -> bool: ...

    # ---- albums ----
    def list_albums(self, *, artist_id: Optional[int] = None) -> List[Album]: ...

    def search_albums(self, query: str) -> List[Album]: ...

    def get_album(self, album_id: int) -> Optional[Album]: ...

    def create_album(self, album: AlbumCreate) -> Album: ...

    def update_album(self, album_id: int, changes: Dict[str, Any]) -> Optional[Album]: ...

    def delete_album(self, album_id: int) -> bool: ...

    # ---- reviews ----
    def list_reviews(self) -> List[Review]: ...

    def create_review(self, review: ReviewCreate, *, user_id: int) -> Review: ...

    # ---- events ----
    def list_events(self, *, location: Optional[str] = None) -> List[Event]: ...

    def create_event(self, event: EventCreate) -> Event: ...

    def update_event(self, event_id: int, changes: Dict[str, Any]) -> Optional[Event]: ...

    def delete_event(self, event_id: int) -> bool: ...
