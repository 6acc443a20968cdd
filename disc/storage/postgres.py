"""Postgres-backed `Storage` (system of record)."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, FrozenSet, List, Optional, Type, TypeVar

from pydantic import BaseModel

from disc.core.errors import DuplicateUsernameError
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

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

_USER_COLS = "id, username, password, email, profile_image, location, is_admin, created_at"
_OAUTH_COLS = (
    "id, user_id, provider, provider_id, access_token, refresh_token, token_expires_at, "
    "profile_data, created_at, updated_at"
)
_ARTIST_COLS = "id, name, genres, image_url, spotify_id, created_at"
_ALBUM_COLS = "id, title, artist_id, cover_url, release_date, genres, spotify_id, created_at"
_REVIEW_COLS = "id, user_id, album_id, rating, review, created_at"
_EVENT_COLS = "id, songkick_id, title, venue, date, artist_name, location, metadata"

# Columns an admin update may touch, per table.
_UPDATABLE: Dict[str, FrozenSet[str]] = {
    "artists": frozenset({"name", "genres", "image_url", "spotify_id"}),
    "albums": frozenset({"title", "artist_id", "cover_url", "release_date", "genres", "spotify_id"}),
    "events": frozenset({"songkick_id", "title", "venue", "date", "artist_name", "location", "metadata"}),
}
_JSON_COLS = frozenset({"metadata", "profile_data"})


def _jsonb(value: Any) -> Any:
    if value is None:
        return None
    from psycopg.types.json import Jsonb  # type: ignore[import-not-found]

    return Jsonb(value)


class PostgresStorage:
    """
    One short-lived connection per call (same pattern as the CLI helpers).

    Uniqueness is delegated to the schema: a duplicate username surfaces as
    `DuplicateUsernameError`.
    """

    def __init__(self, dsn: str) -> None:
        self._dsn = dsn

    def _connect(self):
        import psycopg  # type: ignore[import-not-found]
        from psycopg.rows import dict_row  # type: ignore[import-not-found]

        return psycopg.connect(self._dsn, row_factory=dict_row)

    def _one(self, model: Type[ModelT], query: str, params: tuple = ()) -> Optional[ModelT]:
        with self._connect() as conn:
            row = conn.execute(query, params).fetchone()
        return model.model_validate(row) if row else None

    def _all(self, model: Type[ModelT], query: str, params: tuple = ()) -> List[ModelT]:
        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [model.model_validate(r) for r in rows]

    def _update(
        self, table: str, cols: str, model: Type[ModelT], row_id: int, changes: Dict[str, Any]
    ) -> Optional[ModelT]:
        from psycopg import sql  # type: ignore[import-not-found]

        allowed = _UPDATABLE[table]
        fields = {k: v for k, v in changes.items() if k in allowed}
        if not fields:
            return self._one(model, f"SELECT {cols} FROM {table} WHERE id = %s", (row_id,))

        assignments = sql.SQL(", ").join(
            sql.SQL("{} = %s").format(sql.Identifier(k)) for k in fields.keys()
        )
        query = sql.SQL("UPDATE {} SET {} WHERE id = %s RETURNING " + cols).format(
            sql.Identifier(table), assignments
        )
        params = [(_jsonb(v) if k in _JSON_COLS else v) for k, v in fields.items()]
        params.append(row_id)
        with self._connect() as conn:
            row = conn.execute(query, params).fetchone()
        return model.model_validate(row) if row else None

    def _delete(self, table: str, row_id: int) -> bool:
        with self._connect() as conn:
            cur = conn.execute(f"DELETE FROM {table} WHERE id = %s", (row_id,))
            return cur.rowcount > 0

    # ---- users ----
    def get_user(self, user_id: int) -> Optional[User]:
        return self._one(User, f"SELECT {_USER_COLS} FROM users WHERE id = %s", (user_id,))

    def get_user_by_username(self, username: str) -> Optional[User]:
        return self._one(User, f"SELECT {_USER_COLS} FROM users WHERE username = %s", (username,))

    def create_user(
        self,
        *,
        username: str,
        password_hash: Optional[str] = None,
        email: Optional[str] = None,
        profile_image: Optional[str] = None,
        location: Optional[str] = None,
        is_admin: bool = False,
    ) -> User:
        import psycopg  # type: ignore[import-not-found]

        try:
            with self._connect() as conn:
                row = conn.execute(
                    f"""
                    INSERT INTO users (username, password, email, profile_image, location, is_admin)
                    VALUES (%s, %s, %s, %s, %s, %s)
                    RETURNING {_USER_COLS}
                    """,
                    (username, password_hash, email, profile_image, location, is_admin),
                ).fetchone()
        except psycopg.errors.UniqueViolation as e:
            raise DuplicateUsernameError() from e
        if not row:
            raise ValueError("Failed to create user")
        return User.model_validate(row)

    def list_users(self) -> List[User]:
        return self._all(User, f"SELECT {_USER_COLS} FROM users ORDER BY id")

    def count_users(self) -> int:
        with self._connect() as conn:
            row = conn.execute("SELECT COUNT(*) AS n FROM users").fetchone()
        return int(row["n"]) if row else 0

    def set_user_admin(self, user_id: int, is_admin: bool) -> Optional[User]:
        return self._one(
            User,
            f"UPDATE users SET is_admin = %s WHERE id = %s RETURNING {_USER_COLS}",
            (is_admin, user_id),
        )

    # ---- oauth providers ----
    def get_user_by_oauth_provider(self, provider: str, provider_id: str) -> Optional[User]:
        cols = ", ".join(f"u.{c.strip()}" for c in _USER_COLS.split(","))
        return self._one(
            User,
            f"""
            SELECT {cols}
            FROM users u
            JOIN oauth_providers op ON op.user_id = u.id
            WHERE op.provider = %s AND op.provider_id = %s
            """,
            (provider, provider_id),
        )

    def get_oauth_provider(self, user_id: int, provider: str) -> Optional[OAuthProvider]:
        return self._one(
            OAuthProvider,
            f"SELECT {_OAUTH_COLS} FROM oauth_providers WHERE user_id = %s AND provider = %s",
            (user_id, provider),
        )

    def get_oauth_provider_by_provider_id(self, provider: str, provider_id: str) -> Optional[OAuthProvider]:
        return self._one(
            OAuthProvider,
            f"SELECT {_OAUTH_COLS} FROM oauth_providers WHERE provider = %s AND provider_id = %s",
            (provider, provider_id),
        )

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
    ) -> OAuthProvider:
        with self._connect() as conn:
            row = conn.execute(
                f"""
                INSERT INTO oauth_providers
                  (user_id, provider, provider_id, access_token, refresh_token, token_expires_at, profile_data)
                VALUES (%s, %s, %s, %s, %s, %s, %s)
                RETURNING {_OAUTH_COLS}
                """,
                (user_id, provider, provider_id, access_token, refresh_token, token_expires_at, _jsonb(profile_data)),
            ).fetchone()
        if not row:
            raise ValueError("Failed to create oauth provider link")
        return OAuthProvider.model_validate(row)

    def relink_oauth_provider(
        self, oauth_provider_id: int, *, provider_id: str, profile_data: Optional[Dict[str, Any]]
    ) -> Optional[OAuthProvider]:
        return self._one(
            OAuthProvider,
            f"""
            UPDATE oauth_providers
            SET provider_id = %s, profile_data = %s, updated_at = now()
            WHERE id = %s
            RETURNING {_OAUTH_COLS}
            """,
            (provider_id, _jsonb(profile_data), oauth_provider_id),
        )

    def update_oauth_provider_tokens(
        self,
        oauth_provider_id: int,
        access_token: Optional[str],
        refresh_token: Optional[str],
        token_expires_at: Optional[datetime],
    ) -> Optional[OAuthProvider]:
        return self._one(
            OAuthProvider,
            f"""
            UPDATE oauth_providers
            SET access_token = %s, refresh_token = %s, token_expires_at = %s, updated_at = now()
            WHERE id = %s
            RETURNING {_OAUTH_COLS}
            """,
            (access_token, refresh_token, token_expires_at, oauth_provider_id),
        )

    # ---- artists ----
    def list_artists(self) -> List[Artist]:
        return self._all(Artist, f"SELECT {_ARTIST_COLS} FROM artists ORDER BY name")

    def get_artist(self, artist_id: int) -> Optional[Artist]:
        return self._one(Artist, f"SELECT {_ARTIST_COLS} FROM artists WHERE id = %s", (artist_id,))

    def create_artist(self, artist: ArtistCreate) -> Artist:
        created = self._one(
            Artist,
            f"""
            INSERT INTO artists (name, genres, image_url, spotify_id)
            VALUES (%s, %s, %s, %s)
            RETURNING {_ARTIST_COLS}
            """,
            (artist.name, list(artist.genres), artist.image_url, artist.spotify_id),
        )
        if created is None:
            raise ValueError("Failed to create artist")
        return created

    def update_artist(self, artist_id: int, changes: Dict[str, Any]) -> Optional[Artist]:
        return self._update("artists", _ARTIST_COLS, Artist, artist_id, changes)

    def delete_artist(self, artist_id: int) -> bool:
        return self._delete("artists", artist_id)

    # ---- albums ----
    def list_albums(self, *, artist_id: Optional[int] = None) -> List[Album]:
        if artist_id is not None:
            return self._all(
                Album, f"SELECT {_ALBUM_COLS} FROM albums WHERE artist_id = %s ORDER BY id", (artist_id,)
            )
        return self._all(Album, f"SELECT {_ALBUM_COLS} FROM albums ORDER BY id")

    def search_albums(self, query: str) -> List[Album]:
        pattern = "%" + query.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_") + "%"
        return self._all(
            Album,
            f"SELECT {_ALBUM_COLS} FROM albums WHERE title ILIKE %s ORDER BY title",
            (pattern,),
        )

    def get_album(self, album_id: int) -> Optional[Album]:
        return self._one(Album, f"SELECT {_ALBUM_COLS} FROM albums WHERE id = %s", (album_id,))

    def create_album(self, album: AlbumCreate) -> Album:
        created = self._one(
            Album,
            f"""
            INSERT INTO albums (title, artist_id, cover_url, release_date, genres, spotify_id)
            VALUES (%s, %s, %s, %s, %s, %s)
            RETURNING {_ALBUM_COLS}
            """,
            (album.title, album.artist_id, album.cover_url, album.release_date, list(album.genres), album.spotify_id),
        )
        if created is None:
            raise ValueError("Failed to create album")
        return created

    def update_album(self, album_id: int, changes: Dict[str, Any]) -> Optional[Album]:
        return self._update("albums", _ALBUM_COLS, Album, album_id, changes)

    def delete_album(self, album_id: int) -> bool:
        return self._delete("albums", album_id)

    # ---- reviews ----
    def list_reviews(self) -> List[Review]:
        return self._all(Review, f"SELECT {_REVIEW_COLS} FROM reviews ORDER BY created_at DESC, id DESC")

    def create_review(self, review: ReviewCreate, *, user_id: int) -> Review:
        created = self._one(
            Review,
            f"""
            INSERT INTO reviews (user_id, album_id, rating, review)
            VALUES (%s, %s, %s, %s)
            RETURNING {_REVIEW_COLS}
            """,
            (user_id, review.album_id, review.rating, review.review),
        )
        if created is None:
            raise ValueError("Failed to create review")
        return created

    # ---- events ----
    def list_events(self, *, location: Optional[str] = None) -> List[Event]:
        if location is not None:
            return self._all(
                Event, f"SELECT {_EVENT_COLS} FROM events WHERE location = %s ORDER BY date", (location,)
            )
        return self._all(Event, f"SELECT {_EVENT_COLS} FROM events ORDER BY date")

    def create_event(self, event: EventCreate) -> Event:
        created = self._one(
            Event,
            f"""
            INSERT INTO events (songkick_id, title, venue, date, artist_name, location, metadata)
            VALUES (%s, %s, %s, %s, %s, %s, %s)
            RETURNING {_EVENT_COLS}
            """,
            (
                event.songkick_id,
                event.title,
                event.venue,
                event.date,
                event.artist_name,
                event.location,
                _jsonb(event.metadata),
            ),
        )
        if created is None:
            raise ValueError("Failed to create event")
        return created

    def update_event(self, event_id: int, changes: Dict[str, Any]) -> Optional[Event]:
        return self._update("events", _EVENT_COLS, Event, event_id, changes)

    def delete_event(self, event_id: int) -> bool:
        return self._delete("events", event_id)
