"""Insight ledger: discrete, labelled facts learned about a teacher."""

from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Literal, Optional

from schemas import Insight, StyleProfile, utcnow

NEW_INSIGHT_CONFIDENCE = 0.5
REINFORCEMENT_STEP = 0.05

INSIGHT_LABELS: Dict[str, str] = {
    "detail_high": "Bạn thường yêu cầu giải thích chi tiết",
    "detail_low": "Bạn thích nội dung ngắn gọn, súc tích",
    "use_tables": "Bạn thích sử dụng bảng biểu",
    "use_images": "Bạn thích dùng hình ảnh minh họa",
    "use_latex": "Bạn hay dùng công thức toán LaTeX",
}


def find_insight(insights: List[Insight], key: str) -> Optional[Insight]:
    for insight in insights:
        if insight.key == key:
            return insight
    return None


def add_or_reinforce(
    profile: StyleProfile,
    key: str,
    label: str | None = None,
    *,
    now: datetime | None = None,
    source: Literal["auto", "manual"] = "auto",
) -> Insight:
    """Append a new insight for ``key`` or bump the existing one.

    A new entry starts at confidence 0.5; each repeat adds 0.05 up to 1.0.
    Key and label never change once created. Mutates ``profile.insights``
    in place and returns the affected entry.
    """

    existing = find_insight(profile.insights, key)
    if existing is not None:
        existing.confidence = min(1.0, round(existing.confidence + REINFORCEMENT_STEP, 10))
        return existing

    insight = Insight(
        key=key,
        label=label if label is not None else INSIGHT_LABELS.get(key, key),
        confidence=NEW_INSIGHT_CONFIDENCE,
        learned_at=now or utcnow(),
        source=source,
    )
    profile.insights.append(insight)
    return insight
