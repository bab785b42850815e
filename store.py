"""Persistence collaborators for style profiles.

A profile row is either absent, corrupt or readable. Absence is reported
as ``None``, a document that no longer validates raises
:class:`CorruptProfileError`, and a storage failure on read or write
raises :class:`PersistenceError`. The preferences projection and the id
listing are display-only reads and fall back to ``None`` / ``[]``.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from typing import Dict, List, Optional, Tuple

from pydantic import ValidationError

import db
from schemas import StyleProfile, TeacherPreferences

logger = logging.getLogger(__name__)


class PersistenceError(RuntimeError):
    """Raised when a profile could not be read from or written to storage."""


class CorruptProfileError(ValueError):
    """Raised when a stored profile document exists but fails validation."""

    def __init__(self, profile_id: str, error_count: int) -> None:
        super().__init__(f"stored style profile {profile_id} is corrupt ({error_count} errors)")
        self.profile_id = profile_id
        self.error_count = error_count


def _decode_profile(raw: Optional[str], profile_id: str) -> Optional[StyleProfile]:
    if raw is None:
        return None
    try:
        return StyleProfile.model_validate_json(raw)
    except ValidationError as exc:
        logger.warning(
            "Corrupt style profile %s (%d errors): %s",
            profile_id,
            exc.error_count(),
            exc.errors(include_url=False)[:3],
        )
        raise CorruptProfileError(profile_id, exc.error_count()) from exc


def _decode_preferences(raw: Optional[str], profile_id: str) -> Optional[TeacherPreferences]:
    if raw is None:
        return None
    try:
        return TeacherPreferences.model_validate_json(raw)
    except ValidationError:
        logger.warning("Discarding corrupt preferences projection for %s", profile_id)
        return None


def _encode(profile: StyleProfile) -> Tuple[Dict[str, object], Dict[str, object]]:
    document = profile.to_document()
    return document, profile.preferences.model_dump(mode="json", by_alias=True)


class ProfileStore:
    """Keyed storage for :class:`StyleProfile` documents."""

    def load(self, profile_id: str) -> Optional[StyleProfile]:
        """Return the stored profile or ``None`` when no row exists.

        Raises :class:`CorruptProfileError` or :class:`PersistenceError`.
        """
        raise NotImplementedError

    def load_preferences(self, profile_id: str) -> Optional[TeacherPreferences]:
        raise NotImplementedError

    def save(self, profile_id: str, profile: StyleProfile) -> None:
        """Persist ``profile`` and its preferences projection together."""
        raise NotImplementedError

    def list_ids(self, limit: int = 100) -> List[str]:
        raise NotImplementedError


class SQLiteProfileStore(ProfileStore):
    """Store backed by the ``db`` module's SQLite tables."""

    def __init__(self) -> None:
        try:
            db.init()
        except sqlite3.Error as exc:
            raise PersistenceError(f"Could not initialise profile tables: {exc}") from exc

    def load(self, profile_id: str) -> Optional[StyleProfile]:
        try:
            raw = db.get_style_profile(profile_id)
        except sqlite3.Error as exc:
            raise PersistenceError(f"Could not read style profile {profile_id}: {exc}") from exc
        return _decode_profile(raw, profile_id)

    def load_preferences(self, profile_id: str) -> Optional[TeacherPreferences]:
        try:
            raw = db.get_preferences(profile_id)
        except sqlite3.Error:
            logger.warning("Failed to read preferences for %s; using defaults", profile_id, exc_info=True)
            return None
        return _decode_preferences(raw, profile_id)

    def save(self, profile_id: str, profile: StyleProfile) -> None:
        document, preferences = _encode(profile)
        try:
            db.save_style_profile(profile_id, document, preferences)
        except sqlite3.Error as exc:
            raise PersistenceError(f"Could not save style profile {profile_id}: {exc}") from exc

    def list_ids(self, limit: int = 100) -> List[str]:
        try:
            return db.list_profile_ids(limit)
        except sqlite3.Error:
            logger.warning("Failed to list style profiles", exc_info=True)
            return []


class InMemoryProfileStore(ProfileStore):
    """Process-local store holding serialised documents, as SQLite would."""

    def __init__(self) -> None:
        self._profiles: Dict[str, str] = {}
        self._preferences: Dict[str, str] = {}
        self._lock = threading.Lock()

    def load(self, profile_id: str) -> Optional[StyleProfile]:
        with self._lock:
            raw = self._profiles.get(profile_id)
        return _decode_profile(raw, profile_id)

    def load_preferences(self, profile_id: str) -> Optional[TeacherPreferences]:
        with self._lock:
            raw = self._preferences.get(profile_id)
        return _decode_preferences(raw, profile_id)

    def save(self, profile_id: str, profile: StyleProfile) -> None:
        document, preferences = _encode(profile)
        profile_json = json.dumps(document, ensure_ascii=False)
        preferences_json = json.dumps(preferences, ensure_ascii=False)
        with self._lock:
            self._profiles[profile_id] = profile_json
            self._preferences[profile_id] = preferences_json

    def list_ids(self, limit: int = 100) -> List[str]:
        with self._lock:
            return sorted(self._profiles)[:limit]

