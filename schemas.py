"""Pydantic schemas for teacher preferences, style profiles and API bodies."""

from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Dict, List, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

__all__ = [
    "DocumentLength",
    "DOCUMENT_LENGTH_WORD_BANDS",
    "DifficultyDistribution",
    "ContentPreferences",
    "CommunicationStyle",
    "PedagogicalApproach",
    "TechnicalPreferences",
    "TeacherPreferences",
    "Insight",
    "StyleProfile",
    "COLD_START_CONFIDENCE",
    "LearnBody",
    "PromptResponse",
    "ScoreResponse",
    "utcnow",
]

DocumentLength = Literal["short", "medium", "long", "very_long"]

# (min_words, max_words); ``None`` means open-ended.
DOCUMENT_LENGTH_WORD_BANDS: Dict[str, tuple[int, int | None]] = {
    "short": (200, 400),
    "medium": (400, 700),
    "long": (700, 1000),
    "very_long": (1000, None),
}

COLD_START_CONFIDENCE = 0.3
_DISTRIBUTION_TOLERANCE = 0.01


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class _CamelModel(BaseModel):
    """Base model serialised with the camelCase keys used by exported profiles."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class DifficultyDistribution(BaseModel):
    """Percentages of questions per difficulty tier; always sums to 100."""

    nhan_biet: float = Field(default=30.0, ge=0.0, le=100.0)
    thong_hieu: float = Field(default=40.0, ge=0.0, le=100.0)
    van_dung: float = Field(default=20.0, ge=0.0, le=100.0)
    van_dung_cao: float = Field(default=10.0, ge=0.0, le=100.0)

    @model_validator(mode="after")
    def _check_simplex(self) -> "DifficultyDistribution":
        total = self.nhan_biet + self.thong_hieu + self.van_dung + self.van_dung_cao
        if not math.isclose(total, 100.0, abs_tol=_DISTRIBUTION_TOLERANCE):
            raise ValueError(f"difficulty distribution must sum to 100 (got {total:.4f})")
        return self

    def as_dict(self) -> Dict[str, float]:
        return {
            "nhan_biet": self.nhan_biet,
            "thong_hieu": self.thong_hieu,
            "van_dung": self.van_dung,
            "van_dung_cao": self.van_dung_cao,
        }


class ContentPreferences(_CamelModel):
    document_length: DocumentLength = "medium"
    detail_level: float = Field(default=3.0, ge=1.0, le=5.0)
    use_headings: bool = True
    use_lists: bool = True
    use_tables: bool = False
    use_mind_maps: bool = False
    use_images: bool = False
    use_latex: bool = False
    difficulty_distribution: DifficultyDistribution = Field(default_factory=DifficultyDistribution)


class CommunicationStyle(_CamelModel):
    formality_score: float = Field(
        default=0.5,
        ge=0.0,
        le=1.0,
        description="0 = formal, 1 = casual.",
    )
    address_style: Literal["ban", "thay_co", "anh_chi"] = "ban"
    explanation_length: Literal["short", "balanced", "detailed"] = "balanced"
    use_emoji: bool = True


class PedagogicalApproach(_CamelModel):
    student_centered: bool = True
    critical_thinking: bool = True
    real_world_connection: bool = False
    exam_focused: bool = False
    preferred_exercise_types: List[str] = Field(
        default_factory=lambda: ["trac_nghiem", "tu_luan"],
        description="Exercise category tags such as trac_nghiem, tu_luan, tinh_huong, du_an_nhom.",
    )
    assessment_frequency: Literal["per_lesson", "per_chapter", "mid_final"] = "per_chapter"

    @field_validator("preferred_exercise_types")
    @classmethod
    def _dedupe_exercise_types(cls, value: List[str]) -> List[str]:
        seen: set[str] = set()
        deduped: List[str] = []
        for item in value:
            tag = str(item).strip()
            if not tag or tag in seen:
                continue
            seen.add(tag)
            deduped.append(tag)
        return deduped


class TechnicalPreferences(_CamelModel):
    """Manually configured only; the learning engine never touches these."""

    preferred_file_format: Literal["docx", "pdf", "md", "html"] = "docx"
    image_quality: Literal["low", "medium", "high"] = "medium"
    auto_save_documents: bool = True
    auto_backup_chat: bool = True
    remind_exams: bool = True
    suggest_materials: bool = True
    weekly_report: bool = False


class TeacherPreferences(_CamelModel):
    content_preferences: ContentPreferences = Field(default_factory=ContentPreferences)
    communication_style: CommunicationStyle = Field(default_factory=CommunicationStyle)
    pedagogical_approach: PedagogicalApproach = Field(default_factory=PedagogicalApproach)
    technical_preferences: TechnicalPreferences = Field(default_factory=TechnicalPreferences)


class Insight(_CamelModel):
    key: str = Field(min_length=1, description="Stable identifier, unique within a profile.")
    label: str
    confidence: float = Field(ge=0.0, le=1.0)
    learned_at: datetime = Field(default_factory=utcnow)
    source: Literal["auto", "manual"] = "auto"

    @field_validator("learned_at")
    @classmethod
    def _coerce_learned_at(cls, value: datetime) -> datetime:
        return _as_utc(value)


class StyleProfile(_CamelModel):
    """Complete persisted personalization record for one teacher."""

    preferences: TeacherPreferences = Field(default_factory=TeacherPreferences)
    confidence: float = Field(default=COLD_START_CONFIDENCE, ge=0.0, le=1.0)
    total_interactions: int = Field(default=0, ge=0)
    insights: List[Insight] = Field(default_factory=list, alias="learnedInsights")
    created_at: datetime = Field(default_factory=utcnow)
    last_updated: datetime = Field(default_factory=utcnow)

    @field_validator("created_at", "last_updated")
    @classmethod
    def _coerce_timestamps(cls, value: datetime) -> datetime:
        return _as_utc(value)

    @field_validator("insights")
    @classmethod
    def _unique_insight_keys(cls, value: List[Insight]) -> List[Insight]:
        keys = [insight.key for insight in value]
        if len(keys) != len(set(keys)):
            raise ValueError("insight keys must be unique")
        return value

    @classmethod
    def cold_start(cls, now: datetime | None = None) -> "StyleProfile":
        moment = now or utcnow()
        return cls(created_at=moment, last_updated=moment)

    def to_document(self) -> Dict[str, object]:
        """Return the JSON-ready export document."""

        return self.model_dump(mode="json", by_alias=True)


# ---------------------------------------------------------------------------
# HTTP bodies


class LearnBody(BaseModel):
    profile_id: str | None = None
    user_message: str
    ai_response: str


class PromptResponse(BaseModel):
    profile_id: str
    prompt: str


class ScoreResponse(BaseModel):
    profile_id: str
    score: int = Field(ge=0, le=100)
