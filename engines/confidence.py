"""Overall confidence of a style profile."""

from __future__ import annotations

import math
from datetime import datetime

from schemas import StyleProfile, utcnow

SAMPLE_WEIGHT = 0.4
INSIGHT_WEIGHT = 0.3
RECENCY_WEIGHT = 0.3

SAMPLE_SATURATION = 50
INSIGHT_SATURATION = 10
RECENCY_TIME_CONSTANT_DAYS = 30.0

_SECONDS_PER_DAY = 60 * 60 * 24


def _clamp(value: float) -> float:
    return min(1.0, max(0.0, value))


def calculate_confidence(profile: StyleProfile, now: datetime | None = None) -> float:
    """Weighted blend of sample size, learned insights and recency.

    Recency is measured against ``profile.last_updated`` as stored, so a
    caller refreshing the timestamp must do so after calling this.
    """

    moment = now or utcnow()
    sample_factor = _clamp(profile.total_interactions / SAMPLE_SATURATION)
    insight_factor = _clamp(len(profile.insights) / INSIGHT_SATURATION)

    days_since_update = (moment - profile.last_updated).total_seconds() / _SECONDS_PER_DAY
    recency_factor = _clamp(math.exp(-days_since_update / RECENCY_TIME_CONSTANT_DAYS))

    confidence = (
        SAMPLE_WEIGHT * sample_factor
        + INSIGHT_WEIGHT * insight_factor
        + RECENCY_WEIGHT * recency_factor
    )
    return round(_clamp(confidence), 2)


def personalization_score(profile: StyleProfile) -> int:
    """Confidence as the integer percentage shown on the dashboard."""

    return int(round(profile.confidence * 100))
