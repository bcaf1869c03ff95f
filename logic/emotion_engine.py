# logic/emotion_engine.py

"""
Emotion engine: folds player choices into a place's collective emotional
profile.

Every function here is pure and total. Malformed vectors and visit counts are
coerced to safe values instead of raising, so the engine can be called
concurrently from any request without coordination. Persisting the result is
the caller's job (see db/profile_store.py).
"""

import logging
import math
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional, Tuple

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

# Fixed enumeration order; get_dominant_emotion breaks ties by this order.
EMOTION_DIMENSIONS: Tuple[str, ...] = ("warmth", "loneliness", "tension", "nostalgia", "belonging")

NEUTRAL = "neutral"

# Weight of a new interaction against the existing profile
LEARNING_RATE = 0.15
MIN_LEARNING_RATE = 0.05
VISIT_DECAY = 0.1

DEFAULT_EMOTION_VALUE = 0.5

EMOTION_COLORS: Dict[str, str] = {
    "warmth": "hsl(35, 90%, 55%)",
    "loneliness": "hsl(220, 70%, 55%)",
    "tension": "hsl(0, 75%, 55%)",
    "nostalgia": "hsl(280, 60%, 55%)",
    "belonging": "hsl(145, 65%, 45%)",
    NEUTRAL: "hsl(220, 15%, 55%)",
}


def _default_emotions() -> Dict[str, float]:
    return {dim: DEFAULT_EMOTION_VALUE for dim in EMOTION_DIMENSIONS}


class PlaceProfile(BaseModel):
    """Accumulated emotional profile of one place."""

    name: str = ""
    region: Optional[str] = None
    lat: float = 0.0
    lng: float = 0.0
    emotions: Dict[str, float] = Field(default_factory=_default_emotions)
    dominant_emotion: str = NEUTRAL
    visit_count: int = 0
    last_updated: Optional[str] = None

    def snapshot(self) -> Dict[str, Any]:
        """The subset of the profile returned alongside a scenario."""
        return {
            "emotions": dict(self.emotions),
            "visit_count": self.visit_count,
            "dominant_emotion": self.dominant_emotion,
        }


def coerce_emotion_value(value: Any) -> float:
    """
    Coerce one raw dimension value into [0, 1].

    Numbers and numeric strings are clamped to the nearest bound, infinities
    included. NaN, booleans, None and anything unparseable become 0.
    """
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError):
        return 0.0
    if math.isnan(number):
        return 0.0
    return max(0.0, min(1.0, number))


def normalize_emotions(raw: Any) -> Dict[str, float]:
    """Return a complete vector: every known dimension present, unknown keys dropped."""
    if not isinstance(raw, Mapping):
        raw = {}
    return {dim: coerce_emotion_value(raw.get(dim)) for dim in EMOTION_DIMENSIONS}


def _coerce_visit_count(value: Any) -> int:
    if value is None or isinstance(value, bool):
        return 0
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError):
        return 0
    if not math.isfinite(number):
        return 0
    return max(0, int(number))


def compute_learning_rate(prior_visit_count: Any) -> float:
    """
    Adaptive rate ``max(0.05, 0.15 / sqrt(1 + 0.1 * n))``.

    Early visits move a place noticeably; the weight shrinks as visits accumulate
    but never reaches zero.
    """
    visits = _coerce_visit_count(prior_visit_count)
    return max(MIN_LEARNING_RATE, LEARNING_RATE / math.sqrt(1 + VISIT_DECAY * visits))


def _round3(value: float) -> float:
    # Half-up rounding; round() would bank to even
    return math.floor(value * 1000 + 0.5) / 1000


def merge_emotions(existing: Any, incoming: Any, prior_visit_count: Any) -> Dict[str, float]:
    """
    Blend ``incoming`` into ``existing`` with the adaptive learning rate.

    Args:
        existing: Current emotion vector of the place
        incoming: Emotion vector of the chosen option
        prior_visit_count: Visits recorded before this interaction

    Returns:
        A fresh vector with every dimension in [0, 1], rounded to 3 decimals
    """
    old = normalize_emotions(existing)
    new = normalize_emotions(incoming)
    rate = compute_learning_rate(prior_visit_count)

    return {
        dim: _round3(old[dim] * (1 - rate) + new[dim] * rate)
        for dim in EMOTION_DIMENSIONS
    }


def get_dominant_emotion(emotions: Any) -> str:
    """Name of the strictly greatest dimension; the first in enumeration order wins ties."""
    values = normalize_emotions(emotions)
    dominant = EMOTION_DIMENSIONS[0]
    max_val = -1.0
    for dim in EMOTION_DIMENSIONS:
        if values[dim] > max_val:
            max_val = values[dim]
            dominant = dim
    return dominant


def get_default_profile(name: str = "") -> PlaceProfile:
    """A balanced profile for a place nobody has visited. New instance on every call."""
    return PlaceProfile(name=name)


def apply_interaction(
    existing: Optional[PlaceProfile],
    incoming: Any,
    name: str,
    region: Optional[str] = None,
    lat: Optional[float] = None,
    lng: Optional[float] = None,
    now: Optional[datetime] = None,
) -> PlaceProfile:
    """
    Fold one chosen option into a place profile and return the updated copy.

    Identity fields prefer the values supplied with the interaction, then the
    stored ones. ``existing`` is never modified.
    """
    base = existing if existing is not None else get_default_profile(name)
    prior_visits = _coerce_visit_count(base.visit_count)

    merged = merge_emotions(base.emotions, incoming, prior_visits)
    timestamp = (now or datetime.now(timezone.utc)).isoformat()

    return PlaceProfile(
        name=name or base.name,
        region=region if region else base.region,
        lat=_pick_coordinate(lat, base.lat),
        lng=_pick_coordinate(lng, base.lng),
        emotions=merged,
        dominant_emotion=get_dominant_emotion(merged),
        visit_count=prior_visits + 1,
        last_updated=timestamp,
    )


def _pick_coordinate(supplied: Any, stored: float) -> float:
    if supplied is None or isinstance(supplied, bool):
        return stored
    try:
        value = float(supplied)
    except (TypeError, ValueError):
        return stored
    return value if math.isfinite(value) else stored


def get_emotion_color(emotion: Optional[str]) -> str:
    """HSL colour used to draw a place with the given dominant emotion."""
    return EMOTION_COLORS.get(emotion or NEUTRAL, EMOTION_COLORS[NEUTRAL])
