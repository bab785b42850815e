"""Render a style profile as a system-prompt addendum."""

from __future__ import annotations

import math
from typing import List

from engines.difficulty_tiers import DIFFICULTY_TIERS
from schemas import DOCUMENT_LENGTH_WORD_BANDS, StyleProfile

MIN_CONFIDENCE = 0.2

HEADER = "\n## SỞ THÍCH CÁ NHÂN CỦA GIÁO VIÊN (Chatbot đã học)"


def _band_label(low: int, high: int | None) -> str:
    if high is None:
        return f"trên {low} từ"
    return f"{low}-{high} từ"


LENGTH_LABELS = {name: _band_label(*band) for name, band in DOCUMENT_LENGTH_WORD_BANDS.items()}

ADDRESS_LABELS = {
    "ban": "bạn",
    "thay_co": "thầy/cô",
    "anh_chi": "anh/chị",
}

CASUAL_THRESHOLD = 0.6
FORMAL_THRESHOLD = 0.4


def _format_detail(value: float) -> str:
    return f"{round(value, 1):g}"


def _percent(value: float) -> int:
    # Half-up, so 12.5 renders as 13.
    return int(math.floor(value + 0.5))


def synthesize(profile: StyleProfile, min_confidence: float = MIN_CONFIDENCE) -> str:
    """Return the preference addendum, or "" for an undertrained profile."""

    if profile.confidence < min_confidence:
        return ""

    prefs = profile.preferences
    content = prefs.content_preferences
    comm = prefs.communication_style
    pedagogy = prefs.pedagogical_approach

    parts: List[str] = [HEADER]
    parts.append(f"- Độ dài tài liệu ưa thích: {LENGTH_LABELS[content.document_length]}")
    parts.append(f"- Mức độ chi tiết: {_format_detail(content.detail_level)}/5")

    structures: List[str] = []
    if content.use_tables:
        structures.append("bảng biểu")
    if content.use_images:
        structures.append("hình ảnh")
    if content.use_latex:
        structures.append("LaTeX")
    if content.use_lists:
        structures.append("danh sách")
    if structures:
        parts.append(f"- Thích dùng: {', '.join(structures)}")

    if comm.formality_score > CASUAL_THRESHOLD:
        parts.append("- Phong cách: Thân thiện, gần gũi")
    elif comm.formality_score < FORMAL_THRESHOLD:
        parts.append("- Phong cách: Trang trọng, chuyên nghiệp")

    parts.append(f'- Xưng hô: Gọi giáo viên là "{ADDRESS_LABELS[comm.address_style]}"')

    if comm.use_emoji:
        parts.append("- Có thể dùng emoji 😊")

    distribution = content.difficulty_distribution.as_dict()
    codes = DIFFICULTY_TIERS.code_map()
    shares = " / ".join(
        f"{codes.get(tier_id, tier_id)} {_percent(distribution[tier_id])}%"
        for tier_id in DIFFICULTY_TIERS.sequence()
        if tier_id in distribution
    )
    parts.append(f"- Phân bố độ khó: {shares}")

    if pedagogy.real_world_connection:
        parts.append("- Thích kết nối với thực tế")
    if pedagogy.exam_focused:
        parts.append("- Tập trung vào kỹ thuật làm bài thi")

    return "\n".join(parts)
