"""Canonical domain models (single source of truth).

Used across:
- storage (rows are loaded into these models)
- request validation (the `*Create` / `*Update` bodies)
- responses (serialized with camelCase aliases for the web client)

Design note:
- Request bodies ignore unknown keys so clients can't smuggle columns such as
  `isAdmin` or `password` hashes into a create call.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


def _utc(v: Any) -> Any:
    # Prevent naive/aware mixing bugs in expiry comparisons.
    if isinstance(v, datetime) and v.tzinfo is None:
        return v.replace(tzinfo=timezone.utc)
    return v


def _strip_required(v: Any) -> Any:
    if isinstance(v, str):
        return v.strip()
    return v


# ---- Entities ----


class User(ApiModel):
    id: int
    username: str
    # bcrypt hash (salt embedded); never serialized to clients.
    password: Optional[str] = Field(default=None, exclude=True)
    email: Optional[str] = None
    profile_image: Optional[str] = None
    location: Optional[str] = None
    is_admin: bool = False
    created_at: Optional[datetime] = None

    @field_validator("created_at")
    @classmethod
    def _created_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _utc(v)


class OAuthProvider(ApiModel):
    id: int
    user_id: int
    provider: str
    provider_id: str
    access_token: Optional[str] = Field(default=None, exclude=True)
    refresh_token: Optional[str] = Field(default=None, exclude=True)
    token_expires_at: Optional[datetime] = None
    profile_data: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("token_expires_at", "created_at", "updated_at")
    @classmethod
    def _times_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _utc(v)


class Artist(ApiModel):
    id: int
    name: str
    genres: List[str] = Field(default_factory=list)
    image_url: Optional[str] = None
    spotify_id: Optional[str] = None
    created_at: Optional[datetime] = None

    @field_validator("genres", mode="before")
    @classmethod
    def _genres_list(cls, v: Any) -> List[str]:
        return list(v) if v else []


class Album(ApiModel):
    id: int
    title: str
    artist_id: int
    cover_url: Optional[str] = None
    release_date: Optional[date] = None
    genres: List[str] = Field(default_factory=list)
    spotify_id: Optional[str] = None
    created_at: Optional[datetime] = None

    @field_validator("genres", mode="before")
    @classmethod
    def _genres_list(cls, v: Any) -> List[str]:
        return list(v) if v else []


class Review(ApiModel):
    id: int
    user_id: Optional[int] = None
    album_id: str
    rating: int
    review: Optional[str] = None
    created_at: Optional[datetime] = None


class Event(ApiModel):
    id: int
    songkick_id: str
    title: str
    venue: str
    date: datetime
    artist_name: str
    location: str
    metadata: Optional[Dict[str, Any]] = None


# ---- Request bodies ----


class RegisterRequest(ApiModel):
    username: str = Field(min_length=1, max_length=100)
    password: str = Field(min_length=1)
    email: Optional[str] = None
    location: Optional[str] = None

    @field_validator("username", mode="before")
    @classmethod
    def _username_trim(cls, v: Any) -> Any:
        return _strip_required(v)


class LoginRequest(ApiModel):
    username: str = Field(min_length=1)
    password: str = Field(min_length=1)
    remember_me: bool = False

    @field_validator("username", mode="before")
    @classmethod
    def _username_trim(cls, v: Any) -> Any:
        return _strip_required(v)


class AdminUserUpdate(ApiModel):
    is_admin: bool


class ArtistCreate(ApiModel):
    name: str = Field(min_length=1)
    genres: List[str] = Field(default_factory=list)
    image_url: Optional[str] = None
    spotify_id: Optional[str] = None


class ArtistUpdate(ApiModel):
    name: Optional[str] = Field(default=None, min_length=1)
    genres: Optional[List[str]] = None
    image_url: Optional[str] = None
    spotify_id: Optional[str] = None


class AlbumCreate(ApiModel):
    title: str = Field(min_length=1)
    artist_id: int
    cover_url: Optional[str] = None
    release_date: Optional[date] = None
    genres: List[str] = Field(default_factory=list)
    spotify_id: Optional[str] = None


class AlbumUpdate(ApiModel):
    title: Optional[str] = Field(default=None, min_length=1)
    artist_id: Optional[int] = None
    cover_url: Optional[str] = None
    release_date: Optional[date] = None
    genres: Optional[List[str]] = None
    spotify_id: Optional[str] = None


class ReviewCreate(ApiModel):
    album_id: str = Field(min_length=1)
    rating: int = Field(ge=1, le=5)
    review: Optional[str] = None


class EventCreate(ApiModel):
    songkick_id: str = Field(min_length=1)
    title: str = Field(min_length=1)
    venue: str = Field(min_length=1)
    date: datetime
    artist_name: str = Field(min_length=1)
    location: str = Field(min_length=1)
    metadata: Optional[Dict[str, Any]] = None


class EventUpdate(ApiModel):
    songkick_id: Optional[str] = Field(default=None, min_length=1)
    title: Optional[str] = Field(default=None, min_length=1)
    venue: Optional[str] = Field(default=None, min_length=1)
    date: Optional[datetime] = None
    artist_name: Optional[str] = Field(default=None, min_length=1)
    location: Optional[str] = Field(default=None, min_length=1)
    metadata: Optional[Dict[str, Any]] = None


class RecommendationRequest(ApiModel):
    liked_albums: List[str] = Field(default_factory=list)
    reviews: List[str] = Field(default_factory=list)


class AnalyzeReviewRequest(ApiModel):
    review: str = Field(min_length=1)
