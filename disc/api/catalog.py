"""Public catalog routes plus the authenticated review, event and LLM endpoints."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query

from disc.auth.deps import gated_body, get_storage, require_user
from disc.core.errors import NotFoundError
from disc.core.models import (
    Album,
    AnalyzeReviewRequest,
    Artist,
    Event,
    EventCreate,
    RecommendationRequest,
    Review,
    ReviewCreate,
    User,
)
from disc.llm.recommend import analyze_sentiment, generate_recommendation
from disc.storage.base import Storage

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")


# ---- Artists ----


@router.get("/artists", response_model=List[Artist])
def list_artists(storage: Storage = Depends(get_storage)) -> List[Artist]:
    return storage.list_artists()


@router.get("/artists/{artist_id}", response_model=Artist)
def get_artist(artist_id: int, storage: Storage = Depends(get_storage)) -> Artist:
    artist = storage.get_artist(artist_id)
    if artist is None:
        raise NotFoundError("Artist not found")
    return artist


# ---- Albums ----


@router.get("/albums", response_model=List[Album])
def list_albums(
    artist_id: Optional[int] = Query(None, alias="artistId"),
    storage: Storage = Depends(get_storage),
) -> List[Album]:
    return storage.list_albums(artist_id=artist_id)


# Registered before /albums/{album_id} so "search" is not parsed as an id.
@router.get("/albums/search", response_model=List[Album])
def search_albums(q: str = Query(""), storage: Storage = Depends(get_storage)) -> List[Album]:
    """Case-insensitive substring match on album title. A blank query matches nothing."""
    query = q.strip()
    if not query:
        return []
    return storage.search_albums(query)


@router.get("/albums/{album_id}", response_model=Album)
def get_album(album_id: int, storage: Storage = Depends(get_storage)) -> Album:
    album = storage.get_album(album_id)
    if album is None:
        raise NotFoundError("Album not found")
    return album


# Bodies on authenticated routes are parsed by `gated_body`, after `require_user`.

# ---- Reviews ----


@router.get("/reviews", response_model=List[Review])
def list_reviews(storage: Storage = Depends(get_storage)) -> List[Review]:
    return storage.list_reviews()


@router.post("/reviews", response_model=Review, status_code=201)
def create_review(
    body: ReviewCreate = Depends(gated_body(ReviewCreate, require_user)),
    user: User = Depends(require_user),
    storage: Storage = Depends(get_storage),
) -> Review:
    """The author and timestamp are set here; client-supplied values are ignored."""
    review = storage.create_review(body, user_id=user.id)
    logger.info("User %s reviewed album %s (%d stars)", user.id, review.album_id, review.rating)
    return review


# ---- Events ----


@router.get("/events", response_model=List[Event])
def list_events(storage: Storage = Depends(get_storage)) -> List[Event]:
    return storage.list_events()


@router.get("/events/{location}", response_model=List[Event])
def list_events_by_location(location: str, storage: Storage = Depends(get_storage)) -> List[Event]:
    return storage.list_events(location=location)


@router.post("/events", response_model=Event, status_code=201)
def create_event(
    body: EventCreate = Depends(gated_body(EventCreate, require_user)),
    user: User = Depends(require_user),
    storage: Storage = Depends(get_storage),
) -> Event:
    return storage.create_event(body)


# ---- LLM ----


@router.post("/recommendations")
def recommendations(
    body: RecommendationRequest = Depends(gated_body(RecommendationRequest, require_user)),
) -> Dict[str, Any]:
    return generate_recommendation(body.liked_albums, body.reviews)


@router.post("/analyze-review")
def analyze_review(
    body: AnalyzeReviewRequest = Depends(gated_body(AnalyzeReviewRequest, require_user)),
) -> Dict[str, Any]:
    return analyze_sentiment(body.review)
