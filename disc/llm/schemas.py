from __future__ import annotations

import math
from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator


def _as_float(v: Any) -> float:
    if isinstance(v, bool):
        raise ValueError("expected a number")
    try:
        return float(v)
    except (TypeError, ValueError) as e:
        raise ValueError("expected a number") from e


class SentimentResponse(BaseModel):
    """Model-estimated star rating for a review, clamped to the rating scale."""

    model_config = ConfigDict(extra="ignore")

    rating: int
    confidence: float

    @field_validator("rating", mode="before")
    @classmethod
    def _rating_clamp(cls, v: Any) -> int:
        # Round half up, then clamp to 1..5 stars.
        x = _as_float(v)
        if math.isnan(x):
            raise ValueError("rating is NaN")
        if math.isinf(x):
            return 5 if x > 0 else 1
        return max(1, min(5, math.floor(x + 0.5)))

    @field_validator("confidence", mode="before")
    @classmethod
    def _confidence_clamp(cls, v: Any) -> float:
        x = _as_float(v)
        if math.isnan(x):
            raise ValueError("confidence is NaN")
        return max(0.0, min(1.0, x))
