"""Keyword-based feature extraction from teacher chat messages."""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, Mapping, Optional, Sequence, Set, Tuple

from engines.difficulty_tiers import DIFFICULTY_TIERS, DifficultyTierRegistry
from engines.base import BaseSignalDetector


@dataclass(frozen=True)
class FeatureSet:
    length: int = 0
    word_count: int = 0
    has_table: bool = False
    has_image: bool = False
    has_latex: bool = False
    has_list: bool = False
    is_exam_related: bool = False
    is_lesson_related: bool = False
    is_detailed_request: bool = False
    is_brief_request: bool = False
    difficulty: Optional[str] = None
    topics: FrozenSet[str] = field(default_factory=frozenset)


def normalize_text(text: str) -> str:
    """NFC-normalise and lower-case ``text`` for keyword matching."""

    return unicodedata.normalize("NFC", text or "").lower()


def count_words(text: str) -> int:
    return len((text or "").split())


def _contains_any(text: str, keywords: Iterable[str]) -> bool:
    return any(keyword in text for keyword in keywords)


def _word_pattern(keywords: Sequence[str]) -> re.Pattern[str]:
    alternatives = "|".join(re.escape(keyword) for keyword in keywords)
    return re.compile(rf"(?<!\w)(?:{alternatives})(?!\w)")


TABLE_KEYWORDS: Tuple[str, ...] = ("bảng", "table", "ma trận")
IMAGE_KEYWORDS: Tuple[str, ...] = ("hình", "ảnh", "minh họa", "minh hoạ", "sơ đồ")
LATEX_KEYWORDS: Tuple[str, ...] = ("$", "toán", "phương trình", "biểu thức")
LIST_KEYWORDS: Tuple[str, ...] = ("danh sách", "liệt kê", "bullet")
EXAM_KEYWORDS: Tuple[str, ...] = ("đề thi", "kiểm tra", "trắc nghiệm", "tự luận", "đề")
LESSON_KEYWORDS: Tuple[str, ...] = ("giáo án", "bài giảng", "tiết dạy", "kế hoạch")
DETAIL_KEYWORDS: Tuple[str, ...] = ("chi tiết", "cụ thể", "giải thích", "phân tích kỹ")
BRIEF_KEYWORDS: Tuple[str, ...] = ("ngắn gọn", "tóm tắt", "vắn tắt", "nhanh")

# Topic groups are matched on whole words; short tokens such as "ai" would
# otherwise hit inside unrelated words ("hai", "sai").
TOPIC_KEYWORDS: Dict[str, Tuple[str, ...]] = {
    "de_thi": ("đề thi", "kiểm tra", "trắc nghiệm"),
    "giao_an": ("giáo án", "bài giảng", "kế hoạch"),
    "danh_gia": ("nhận xét", "đánh giá", "học bạ"),
    "phuong_phap": ("phương pháp", "dạy học", "stem", "pbl"),
    "skkn": ("sáng kiến", "skkn", "kinh nghiệm"),
    "cong_nghe": ("công cụ", "phần mềm", "ai", "app"),
}


class KeywordSignalDetector(BaseSignalDetector):
    """Vietnamese classroom-vocabulary detector."""

    def __init__(
        self,
        *,
        tiers: DifficultyTierRegistry | None = None,
        topic_keywords: Mapping[str, Sequence[str]] | None = None,
    ) -> None:
        self.tiers = tiers or DIFFICULTY_TIERS
        groups = topic_keywords if topic_keywords is not None else TOPIC_KEYWORDS
        self._topic_patterns: Dict[str, re.Pattern[str]] = {
            topic: _word_pattern([normalize_text(kw) for kw in keywords])
            for topic, keywords in groups.items()
            if keywords
        }

    def wants_table(self, text: str) -> bool:
        return _contains_any(text, TABLE_KEYWORDS)

    def wants_image(self, text: str) -> bool:
        return _contains_any(text, IMAGE_KEYWORDS)

    def wants_latex(self, text: str) -> bool:
        return _contains_any(text, LATEX_KEYWORDS)

    def wants_list(self, text: str) -> bool:
        return _contains_any(text, LIST_KEYWORDS)

    def is_exam_related(self, text: str) -> bool:
        return _contains_any(text, EXAM_KEYWORDS)

    def is_lesson_related(self, text: str) -> bool:
        return _contains_any(text, LESSON_KEYWORDS)

    def wants_detail(self, text: str) -> bool:
        return _contains_any(text, DETAIL_KEYWORDS)

    def wants_brevity(self, text: str) -> bool:
        return _contains_any(text, BRIEF_KEYWORDS)

    def difficulty_tier(self, text: str) -> Optional[str]:
        for tier in self.tiers.match_order():
            if _contains_any(text, tier.phrases):
                return tier.id
        return None

    def topics(self, text: str) -> Set[str]:
        return {topic for topic, pattern in self._topic_patterns.items() if pattern.search(text)}


_DEFAULT_DETECTOR: Optional[KeywordSignalDetector] = None


def default_detector() -> KeywordSignalDetector:
    global _DEFAULT_DETECTOR
    if _DEFAULT_DETECTOR is None:
        _DEFAULT_DETECTOR = KeywordSignalDetector()
    return _DEFAULT_DETECTOR


def analyze(text: str, detector: BaseSignalDetector | None = None) -> FeatureSet:
    """Parse one teacher utterance into a :class:`FeatureSet`.

    Never raises for string input; empty text yields an all-default set.
    """

    raw = text or ""
    if not raw.strip():
        return FeatureSet(length=len(raw))

    active = detector or default_detector()
    lowered = normalize_text(raw)
    return FeatureSet(
        length=len(raw),
        word_count=count_words(raw),
        has_table=active.wants_table(lowered),
        has_image=active.wants_image(lowered),
        has_latex=active.wants_latex(lowered),
        has_list=active.wants_list(lowered),
        is_exam_related=active.is_exam_related(lowered),
        is_lesson_related=active.is_lesson_related(lowered),
        is_detailed_request=active.wants_detail(lowered),
        is_brief_request=active.wants_brevity(lowered),
        difficulty=active.difficulty_tier(lowered),
        topics=frozenset(active.topics(lowered)),
    )
