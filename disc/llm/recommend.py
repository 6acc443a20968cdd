"""Album recommendations and review sentiment, backed by a single LLM call each.

No retry and no caching: any provider failure becomes an `UpstreamError`.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List

from pydantic import ValidationError

from disc.core.errors import UpstreamError
from disc.llm.client import generate_json
from disc.llm.schemas import SentimentResponse

logger = logging.getLogger(__name__)

RECOMMENDATION_SYSTEM_PROMPT = (
    "You are a music recommendation expert. Based on the user's liked albums and their reviews, "
    "suggest similar albums they might enjoy. Provide recommendations and a brief explanation of why "
    "they might like each one. Return in JSON format with 'recommendations' array and 'explanation' string."
)

SENTIMENT_SYSTEM_PROMPT = (
    "Analyze the sentiment of this music review and provide a rating from 1 to 5 stars and "
    "confidence score between 0 and 1. Return in JSON format with 'rating' and 'confidence'."
)

_MOCK_RECOMMENDATION: Dict[str, Any] = {
    "recommendations": [],
    "explanation": "LLM_MOCK enabled: no external call was made.",
}
_MOCK_SENTIMENT: Dict[str, Any] = {"rating": 3, "confidence": 0.0}


def build_recommendation_prompt(liked_albums: List[str], reviews: List[str]) -> str:
    return f"Liked albums: {', '.join(liked_albums)}\nReviews: " + "\n".join(reviews)


def generate_recommendation(liked_albums: List[str], reviews: List[str]) -> Dict[str, Any]:
    """
    Ask the model for albums similar to `liked_albums`.

    The parsed JSON object is returned as the model produced it (normally
    `recommendations` + `explanation`).
    """
    obj, err = generate_json(
        build_recommendation_prompt(liked_albums, reviews),
        system=RECOMMENDATION_SYSTEM_PROMPT,
        mock=_MOCK_RECOMMENDATION,
    )
    if err or obj is None:
        logger.warning("Recommendation generation failed: %s", err)
        raise UpstreamError("Failed to generate recommendations")
    return obj


def analyze_sentiment(review: str) -> Dict[str, Any]:
    """
    Estimate a star rating for free-text `review`.

    Returns: {"rating": 1..5, "confidence": 0..1}
    """
    obj, err = generate_json(review, system=SENTIMENT_SYSTEM_PROMPT, mock=_MOCK_SENTIMENT)
    if err or obj is None:
        logger.warning("Sentiment analysis failed: %s", err)
        raise UpstreamError("Failed to analyze review")
    try:
        result = SentimentResponse.model_validate(obj)
    except ValidationError as e:
        logger.warning("Sentiment analysis returned unusable output: %s", e.errors())
        raise UpstreamError("Failed to analyze review") from e
    return result.model_dump()
