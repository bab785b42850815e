"""Difficulty tier configuration loader."""

from __future__ import annotations

import json
import unicodedata
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Tuple


class DifficultyTierConfigError(ValueError):
    """Raised when ``difficulty_tiers.json`` contains invalid data."""


@dataclass(frozen=True)
class DifficultyTier:
    """Immutable representation of one question-difficulty tier."""

    id: str
    label: str
    code: str
    description: str
    phrases: Tuple[str, ...]


class DifficultyTierRegistry:
    """Load the four Bloom-like tiers from ``difficulty_tiers.json``.

    The file lists tiers from the lowest (recall) to the highest
    (higher-order application). That order is kept as-is.
    """

    def __init__(self, path: str | Path | None = None) -> None:
        base_path = Path(__file__).resolve().parent
        self.path = Path(path) if path is not None else base_path / "difficulty_tiers.json"
        self._tiers: List[DifficultyTier] = []
        self.reload()

    # ------------------------------------------------------------------
    def reload(self) -> None:
        """Reload tiers from disk and validate the structure."""

        if not self.path.exists():
            raise FileNotFoundError(f"Difficulty tier file not found: {self.path}")

        with self.path.open("r", encoding="utf-8") as fh:
            raw = json.load(fh)

        if not isinstance(raw, list):
            raise DifficultyTierConfigError("Difficulty tier file must contain a JSON list")

        tiers: List[DifficultyTier] = []
        seen: set[str] = set()
        for idx, entry in enumerate(raw, start=1):
            if not isinstance(entry, dict):
                raise DifficultyTierConfigError(f"Entry #{idx} must be a JSON object")

            for key in ("id", "label", "code"):
                if key not in entry or not str(entry[key]).strip():
                    raise DifficultyTierConfigError(f"Entry #{idx} is missing a non-empty '{key}'")

            tier_id = str(entry["id"]).strip()
            if tier_id in seen:
                raise DifficultyTierConfigError(f"Duplicate difficulty tier id detected: {tier_id}")
            seen.add(tier_id)

            phrases_raw = entry.get("phrases")
            if not isinstance(phrases_raw, list) or not phrases_raw:
                raise DifficultyTierConfigError(f"Entry {tier_id} must list at least one match phrase")
            phrases = tuple(
                unicodedata.normalize("NFC", str(phrase)).strip().lower()
                for phrase in phrases_raw
                if str(phrase).strip()
            )
            if not phrases:
                raise DifficultyTierConfigError(f"Entry {tier_id} has only blank match phrases")

            tiers.append(
                DifficultyTier(
                    id=tier_id,
                    label=str(entry["label"]).strip(),
                    code=str(entry["code"]).strip(),
                    description=str(entry.get("description", "")).strip(),
                    phrases=phrases,
                )
            )

        if not tiers:
            raise DifficultyTierConfigError("Difficulty tier file may not be empty")

        self._tiers = tiers

    # ------------------------------------------------------------------
    @property
    def tiers(self) -> List[DifficultyTier]:
        return list(self._tiers)

    def sequence(self) -> Sequence[str]:
        """Return the tier identifiers from lowest to highest."""

        return tuple(tier.id for tier in self._tiers)

    def match_order(self) -> Sequence[DifficultyTier]:
        """Return tiers highest first.

        A higher tier's phrase may contain a lower tier's phrase
        ("vận dụng cao" contains "vận dụng"), so matching must try the
        highest tier before the lower ones.
        """

        return tuple(reversed(self._tiers))

    def get(self, tier_id: str) -> Optional[DifficultyTier]:
        for tier in self._tiers:
            if tier.id == tier_id:
                return tier
        return None

    def code_map(self) -> dict[str, str]:
        """Return a mapping from tier identifier to short code (NB, TH, ...)."""

        return {tier.id: tier.code for tier in self._tiers}

    # ------------------------------------------------------------------
    def __iter__(self) -> Iterable[DifficultyTier]:
        return iter(self._tiers)


DIFFICULTY_TIERS = DifficultyTierRegistry()
"""Singleton registry used throughout the application."""
