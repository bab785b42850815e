"""Teacher personalization service: learn, persist and render style profiles."""

from __future__ import annotations

import json
import logging
import math
import threading
import weakref
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from pydantic import ValidationError

from engines.confidence import personalization_score
from engines.learning import LearningEngine
from engines.prompt_synthesizer import MIN_CONFIDENCE, synthesize
from env_validation import get_env_float
from schemas import StyleProfile, TeacherPreferences, utcnow
from store import CorruptProfileError, ProfileStore, SQLiteProfileStore

_LOGGER = logging.getLogger(__name__)

ImportDocument = Union[str, bytes, bytearray, Mapping[str, Any]]


def _log_json(event: str, payload: Dict[str, Any]) -> None:
    """Emit a one-line structured JSON log record."""

    record = {"event": event, **payload}
    try:
        message = json.dumps(record, ensure_ascii=False, sort_keys=True)
    except (TypeError, ValueError):
        fallback = {
            "event": event,
            "error": "serialization_failed",
            "payload_repr": repr(payload),
        }
        message = json.dumps(fallback, ensure_ascii=False, sort_keys=True)
    _LOGGER.info(message)


def _is_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def export_filename(now: datetime | None = None) -> str:
    moment = now or utcnow()
    return f"teacher_profile_{moment.date().isoformat()}.json"


class PersonalizationService:
    """Explicit-profile facade over the learning engine and a profile store.

    Every read-modify-write on a profile runs under that profile's lock, so
    concurrent requests for the same teacher are applied one after another.
    """

    def __init__(
        self,
        store: ProfileStore | None = None,
        *,
        engine: LearningEngine | None = None,
        clock: Callable[[], datetime] = utcnow,
        min_confidence: float = MIN_CONFIDENCE,
    ) -> None:
        self.store = store if store is not None else SQLiteProfileStore()
        self.clock = clock
        self.engine = engine or LearningEngine(clock=clock)
        self.min_confidence = min_confidence
        self._locks: "weakref.WeakValueDictionary[str, threading.RLock]" = weakref.WeakValueDictionary()
        self._locks_guard = threading.Lock()

    # ------------------------------------------------------------------
    def _lock_for(self, profile_id: str) -> threading.RLock:
        """Return the lock for ``profile_id``; it is dropped once no caller holds it."""

        with self._locks_guard:
            lock = self._locks.get(profile_id)
            if lock is None:
                lock = threading.RLock()
                self._locks[profile_id] = lock
            return lock

    def _load_existing(self, profile_id: str) -> Optional[StyleProfile]:
        """Return the stored profile, ``None`` when absent or corrupt."""

        try:
            return self.store.load(profile_id)
        except CorruptProfileError as exc:
            _log_json("style_profile.corrupt", {"profile_id": profile_id, "errors": exc.error_count})
            return None

    def _load_or_create(self, profile_id: str) -> StyleProfile:
        try:
            profile = self.store.load(profile_id)
        except CorruptProfileError as exc:
            # The stored document stays in place until a learning event or edit replaces it.
            _log_json("style_profile.corrupt", {"profile_id": profile_id, "errors": exc.error_count})
            return StyleProfile.cold_start(self.clock())
        if profile is None:
            profile = StyleProfile.cold_start(self.clock())
            self.store.save(profile_id, profile)
            _log_json("style_profile.created", {"profile_id": profile_id})
        return profile

    # ------------------------------------------------------------------
    def get_profile(self, profile_id: str) -> StyleProfile:
        """Return the stored profile, creating a cold-start one on first access."""

        with self._lock_for(profile_id):
            return self._load_or_create(profile_id)

    def list_profiles(self, limit: int = 100) -> List[str]:
        return self.store.list_ids(limit)

    def learn_from_interaction(self, profile_id: str, user_message: str, ai_response: str) -> StyleProfile:
        """Update and persist the profile from one completed exchange.

        Raises ``ValueError`` for an empty reply (the exchange did not
        complete) and lets ``PersistenceError`` propagate.
        """

        if not ai_response or not ai_response.strip():
            raise ValueError("ai_response is empty; refusing to learn from an incomplete exchange")

        with self._lock_for(profile_id):
            current = self._load_or_create(profile_id)
            outcome = self.engine.observe(user_message or "", ai_response, current)
            self.store.save(profile_id, outcome.profile)

        _log_json("style_profile.learned", {"profile_id": profile_id, **outcome.summary()})
        return outcome.profile

    def build_preferences_prompt(self, profile_id: str) -> str:
        return synthesize(self.get_profile(profile_id), self.min_confidence)

    def personalization_score(self, profile_id: str) -> int:
        return personalization_score(self.get_profile(profile_id))

    # ------------------------------------------------------------------
    def get_preferences(self, profile_id: str) -> TeacherPreferences:
        """Read the standalone preferences projection, defaulting when absent."""

        preferences = self.store.load_preferences(profile_id)
        if preferences is None:
            return TeacherPreferences()
        return preferences

    def save_preferences(self, profile_id: str, preferences: TeacherPreferences) -> StyleProfile:
        """Manual edit: replace preferences, keep counters, insights and confidence."""

        with self._lock_for(profile_id):
            current = self._load_or_create(profile_id)
            updated = current.model_copy(
                update={
                    "preferences": preferences.model_copy(deep=True),
                    "last_updated": self.clock(),
                }
            )
            self.store.save(profile_id, updated)

        _log_json("style_profile.preferences_saved", {"profile_id": profile_id})
        return updated

    def reset_preferences(self, profile_id: str) -> StyleProfile:
        """Restore default preferences and return to the cold-start state."""

        with self._lock_for(profile_id):
            previous = self._load_existing(profile_id)
            now = self.clock()
            created_at = previous.created_at if previous is not None else now
            fresh = StyleProfile(created_at=created_at, last_updated=now)
            self.store.save(profile_id, fresh)

        _log_json(
            "style_profile.reset",
            {
                "profile_id": profile_id,
                "discarded_insights": len(previous.insights) if previous is not None else 0,
                "discarded_interactions": previous.total_interactions if previous is not None else 0,
            },
        )
        return fresh

    # ------------------------------------------------------------------
    def export_profile(self, profile_id: str) -> Dict[str, Any]:
        return self.get_profile(profile_id).to_document()

    def export_json(self, profile_id: str) -> str:
        return json.dumps(self.export_profile(profile_id), ensure_ascii=False, indent=2)

    def export_filename(self) -> str:
        return export_filename(self.clock())

    def import_profile(self, profile_id: str, document: ImportDocument) -> bool:
        """Replace the stored profile with an exported document.

        Returns ``False`` without touching the stored profile when the
        document is unparseable, lacks a ``preferences`` object or a numeric
        ``confidence``, or fails validation.
        """

        data: Any = document
        if isinstance(document, (str, bytes, bytearray)):
            try:
                data = json.loads(document)
            except ValueError:
                _LOGGER.info("Rejected profile import for %s: not valid JSON", profile_id)
                return False

        if not isinstance(data, Mapping):
            return False
        if not isinstance(data.get("preferences"), Mapping) or not _is_number(data.get("confidence")):
            _LOGGER.info("Rejected profile import for %s: missing preferences or confidence", profile_id)
            return False

        try:
            imported = StyleProfile.model_validate(dict(data))
        except ValidationError as exc:
            _LOGGER.info("Rejected profile import for %s: %d validation errors", profile_id, exc.error_count())
            return False

        with self._lock_for(profile_id):
            imported = imported.model_copy(update={"last_updated": self.clock()})
            self.store.save(profile_id, imported)

        _log_json(
            "style_profile.imported",
            {
                "profile_id": profile_id,
                "confidence": imported.confidence,
                "insights": len(imported.insights),
                "total_interactions": imported.total_interactions,
            },
        )
        return True


_DEFAULT_SERVICE: Optional[PersonalizationService] = None
_DEFAULT_SERVICE_LOCK = threading.Lock()


def get_service() -> PersonalizationService:
    """Return the process-wide service backed by SQLite."""

    global _DEFAULT_SERVICE
    with _DEFAULT_SERVICE_LOCK:
        if _DEFAULT_SERVICE is None:
            _DEFAULT_SERVICE = PersonalizationService(
                min_confidence=get_env_float("PROMPT_MIN_CONFIDENCE", MIN_CONFIDENCE),
            )
        return _DEFAULT_SERVICE


def set_service(service: Optional[PersonalizationService]) -> None:
    global _DEFAULT_SERVICE
    with _DEFAULT_SERVICE_LOCK:
        _DEFAULT_SERVICE = service
