"""Adaptive-rate EMA learner for teacher style profiles."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, List, Optional

from engines import insights as insight_ledger
from engines.base import BaseSignalDetector
from engines.confidence import calculate_confidence
from engines.feature_extractor import FeatureSet, analyze, count_words
from schemas import DifficultyDistribution, StyleProfile, utcnow

DETAIL_HIGH_TARGET = 5.0
DETAIL_LOW_TARGET = 1.0

INCONCLUSIVE_REPLY_WORDS = 400
SHORT_REPLY_MAX_WORDS = 700
LONG_REPLY_MIN_WORDS = 1000

DIFFICULTY_STEP = 2.0
DIFFICULTY_TIER_CAP = 60.0


def learning_rate(total_interactions: int) -> float:
    """EMA blending factor: fast while cold, stable once warmed up."""

    if total_interactions < 5:
        return 0.3
    if total_interactions < 20:
        return 0.2
    return 0.1


def ema_update(old_value: float, target: float, alpha: float) -> float:
    return alpha * target + (1 - alpha) * old_value


def update_difficulty(
    distribution: DifficultyDistribution,
    tier: str,
    *,
    step: float = DIFFICULTY_STEP,
    cap: float = DIFFICULTY_TIER_CAP,
) -> DifficultyDistribution:
    """Nudge ``tier`` up by ``step`` (capped) and rescale back to 100."""

    values = distribution.as_dict()
    if tier not in values:
        raise ValueError(f"Unknown difficulty tier: {tier}")

    current = values[tier]
    # A tier already above the cap (e.g. from an import) is held, not cut.
    values[tier] = max(current, min(cap, current + step))

    total = sum(values.values())
    if total > 100.0:
        scale = 100.0 / total
        values = {key: value * scale for key, value in values.items()}
    return DifficultyDistribution(**values)


def infer_document_length(features: FeatureSet, ai_word_count: int) -> Optional[str]:
    """Return the new ``document_length`` implied by a reply, if any."""

    if ai_word_count < INCONCLUSIVE_REPLY_WORDS:
        return None
    if ai_word_count < SHORT_REPLY_MAX_WORDS and features.is_brief_request:
        return "short"
    if ai_word_count > LONG_REPLY_MIN_WORDS and features.is_detailed_request:
        return "very_long"
    return None


@dataclass
class LearningOutcome:
    profile: StyleProfile
    features: FeatureSet
    alpha: float
    insight_keys: List[str]

    def summary(self) -> Dict[str, object]:
        return {
            "alpha": self.alpha,
            "difficulty": self.features.difficulty,
            "topics": sorted(self.features.topics),
            "insights": list(self.insight_keys),
            "total_interactions": self.profile.total_interactions,
            "confidence": self.profile.confidence,
        }


class LearningEngine:
    def __init__(
        self,
        detector: BaseSignalDetector | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.detector = detector
        self.clock = clock

    def learn(self, user_message: str, ai_response: str, profile: StyleProfile) -> StyleProfile:
        """Return a new profile updated from one completed exchange."""

        return self.observe(user_message, ai_response, profile).profile

    def observe(self, user_message: str, ai_response: str, profile: StyleProfile) -> LearningOutcome:
        now = self.clock()
        features = analyze(user_message, self.detector)
        updated = profile.model_copy(deep=True)
        content = updated.preferences.content_preferences
        alpha = learning_rate(updated.total_interactions)
        fired: List[str] = []

        def _insight(key: str) -> None:
            insight_ledger.add_or_reinforce(updated, key, now=now)
            fired.append(key)

        # Both pulls apply when a message asks for detail and brevity at once.
        if features.is_detailed_request:
            content.detail_level = ema_update(content.detail_level, DETAIL_HIGH_TARGET, alpha)
            _insight("detail_high")
        if features.is_brief_request:
            content.detail_level = ema_update(content.detail_level, DETAIL_LOW_TARGET, alpha)
            _insight("detail_low")

        if features.has_table:
            content.use_tables = True
            _insight("use_tables")
        if features.has_image:
            content.use_images = True
            _insight("use_images")
        if features.has_latex:
            content.use_latex = True
            _insight("use_latex")

        document_length = infer_document_length(features, count_words(ai_response))
        if document_length is not None:
            content.document_length = document_length

        if features.difficulty:
            content.difficulty_distribution = update_difficulty(
                content.difficulty_distribution, features.difficulty
            )

        updated.total_interactions += 1
        # Recency is scored against the previous timestamp, then refreshed.
        updated.confidence = calculate_confidence(updated, now)
        updated.last_updated = now

        return LearningOutcome(profile=updated, features=features, alpha=alpha, insight_keys=fired)
