import gc
import json
import sqlite3
import threading

import pytest

from engines.insights import add_or_reinforce
from personalization import PersonalizationService, export_filename
from schemas import COLD_START_CONFIDENCE, StyleProfile, TeacherPreferences
from store import InMemoryProfileStore, PersistenceError


def _reply(words: int) -> str:
    return " ".join(["từ"] * words)


@pytest.fixture
def store():
    return InMemoryProfileStore()


@pytest.fixture
def service(store, clock):
    return PersonalizationService(store, clock=clock)


def test_first_access_creates_cold_start_profile(service, store, clock):
    profile = service.get_profile("teacher")
    assert profile.confidence == COLD_START_CONFIDENCE
    assert profile.total_interactions == 0
    assert profile.insights == []
    assert profile.created_at == clock.now
    assert store.load("teacher") == profile


def test_learning_persists_profile_and_projection(service, store):
    updated = service.learn_from_interaction("teacher", "giải thích chi tiết giúp tôi", _reply(1200))

    assert updated.total_interactions == 1
    assert updated.preferences.content_preferences.document_length == "very_long"
    assert store.load("teacher") == updated
    assert service.get_preferences("teacher") == updated.preferences


def test_profiles_are_isolated(service):
    service.learn_from_interaction("a", "lập bảng", _reply(10))
    assert service.get_profile("b").preferences.content_preferences.use_tables is False
    assert sorted(service.list_profiles()) == ["a", "b"]


def test_incomplete_exchange_is_not_learned(service):
    service.get_profile("teacher")
    for reply in ("", "   "):
        with pytest.raises(ValueError):
            service.learn_from_interaction("teacher", "giải thích chi tiết", reply)
    assert service.get_profile("teacher").total_interactions == 0


class _FailingStore(InMemoryProfileStore):
    def __init__(self):
        super().__init__()
        self.fail = False

    def save(self, profile_id, profile):
        if self.fail:
            raise PersistenceError("quota exceeded")
        super().save(profile_id, profile)


def test_write_failure_reaches_caller(clock):
    store = _FailingStore()
    service = PersonalizationService(store, clock=clock)
    service.get_profile("teacher")

    store.fail = True
    with pytest.raises(PersistenceError):
        service.learn_from_interaction("teacher", "bảng", _reply(10))
    with pytest.raises(PersistenceError):
        service.save_preferences("teacher", TeacherPreferences())

    store.fail = False
    assert service.get_profile("teacher").total_interactions == 0


def test_manual_edit_keeps_learned_state(service, clock):
    learned = service.learn_from_interaction("teacher", "lập bảng chi tiết", _reply(10))

    prefs = TeacherPreferences()
    prefs.communication_style.address_style = "thay_co"
    prefs.technical_preferences.preferred_file_format = "pdf"
    clock.advance(hours=1)
    saved = service.save_preferences("teacher", prefs)

    assert saved.preferences == prefs
    assert saved.total_interactions == learned.total_interactions
    assert saved.insights == learned.insights
    assert saved.confidence == learned.confidence
    assert saved.last_updated == clock.now
    assert service.get_preferences("teacher").technical_preferences.preferred_file_format == "pdf"


def test_reset_returns_to_cold_start(service, clock):
    created = service.get_profile("teacher").created_at
    for _ in range(3):
        service.learn_from_interaction("teacher", "lập bảng, vẽ sơ đồ", _reply(10))

    clock.advance(days=2)
    fresh = service.reset_preferences("teacher")

    assert fresh.preferences == TeacherPreferences()
    assert fresh.insights == []
    assert fresh.total_interactions == 0
    assert fresh.confidence == COLD_START_CONFIDENCE
    assert fresh.created_at == created
    assert service.get_preferences("teacher") == TeacherPreferences()


def test_export_import_round_trip(service):
    service.learn_from_interaction("teacher", "giải thích chi tiết, câu vận dụng cao", _reply(1500))
    original = service.get_profile("teacher")

    exported = service.export_json("teacher")
    assert service.import_profile("copy", exported) is True

    copy = service.get_profile("copy")
    assert copy.preferences == original.preferences
    assert copy.confidence == original.confidence
    assert copy.insights == original.insights
    assert copy.total_interactions == original.total_interactions


def test_export_document_shape(service, clock):
    document = service.export_profile("teacher")
    assert set(document) == {
        "preferences",
        "confidence",
        "totalInteractions",
        "learnedInsights",
        "createdAt",
        "lastUpdated",
    }
    assert document["preferences"]["contentPreferences"]["difficultyDistribution"]["nhan_biet"] == 30
    assert service.export_filename() == f"teacher_profile_{clock.now.date().isoformat()}.json"
    assert export_filename(clock.now) == "teacher_profile_2025-03-01.json"


@pytest.mark.parametrize(
    "document",
    [
        "{not json",
        b"\xff\xfe",
        "[]",
        json.dumps({"preferences": {}}),
        json.dumps({"confidence": 0.5}),
        json.dumps({"preferences": {}, "confidence": "0.5"}),
        json.dumps({"preferences": {}, "confidence": True}),
        json.dumps({"preferences": [], "confidence": 0.5}),
        json.dumps({"preferences": {}, "confidence": 1.5}),
        json.dumps(
            {
                "preferences": {
                    "contentPreferences": {
                        "difficultyDistribution": {
                            "nhan_biet": 90,
                            "thong_hieu": 40,
                            "van_dung": 20,
                            "van_dung_cao": 10,
                        }
                    }
                },
                "confidence": 0.5,
            }
        ),
        {"preferences": {}, "confidence": 0.5, "totalInteractions": -1},
    ],
)
def test_invalid_import_leaves_profile_untouched(service, document):
    service.learn_from_interaction("teacher", "lập bảng", _reply(10))
    before = service.get_profile("teacher")

    assert service.import_profile("teacher", document) is False
    assert service.get_profile("teacher") == before


def test_import_accepts_document_exported_by_web_app(service):
    document = {
        "preferences": {
            "contentPreferences": {
                "documentLength": "long",
                "detailLevel": 4.2,
                "useHeadings": True,
                "useLists": True,
                "useTables": True,
                "useMindMaps": False,
                "useImages": False,
                "useLatex": True,
                "difficultyDistribution": {
                    "nhan_biet": 25,
                    "thong_hieu": 35,
                    "van_dung": 25,
                    "van_dung_cao": 15,
                },
            },
            "communicationStyle": {
                "formalityScore": 0.2,
                "addressStyle": "anh_chi",
                "explanationLength": "detailed",
                "useEmoji": False,
            },
            "pedagogicalApproach": {
                "studentCentered": True,
                "criticalThinking": False,
                "realWorldConnection": True,
                "examFocused": True,
                "preferredExerciseTypes": ["tu_luan", "tinh_huong", "tu_luan"],
                "assessmentFrequency": "per_lesson",
            },
            "technicalPreferences": {
                "preferredFileFormat": "md",
                "imageQuality": "high",
                "autoSaveDocuments": True,
                "autoBackupChat": False,
                "remindExams": True,
                "suggestMaterials": False,
                "weeklyReport": True,
            },
        },
        "confidence": 0.67,
        "totalInteractions": 31,
        "learnedInsights": [
            {
                "key": "use_tables",
                "label": "Bạn thích sử dụng bảng biểu",
                "confidence": 0.65,
                "learnedAt": "2024-11-02T09:15:00.000Z",
                "source": "auto",
            }
        ],
        "lastUpdated": "2024-12-01T10:00:00.000Z",
        "createdAt": "2024-10-01T10:00:00.000Z",
    }
    assert service.import_profile("teacher", json.dumps(document)) is True

    profile = service.get_profile("teacher")
    assert profile.confidence == 0.67
    assert profile.total_interactions == 31
    assert profile.preferences.pedagogical_approach.preferred_exercise_types == ["tu_luan", "tinh_huong"]
    assert profile.insights[0].learned_at.tzinfo is not None
    assert service.personalization_score("teacher") == 67
    assert "Trang trọng" in service.build_preferences_prompt("teacher")


def test_prompt_gated_by_service_threshold(store, clock):
    strict = PersonalizationService(store, clock=clock, min_confidence=0.5)
    assert strict.build_preferences_prompt("teacher") == ""

    lenient = PersonalizationService(store, clock=clock)
    assert lenient.build_preferences_prompt("teacher").startswith("\n## SỞ THÍCH")


def test_concurrent_learning_is_serialised(service):
    service.get_profile("teacher")
    errors = []

    def _worker():
        try:
            for _ in range(10):
                service.learn_from_interaction("teacher", "câu vận dụng", _reply(10))
        except Exception as exc:  # pragma: no cover - surfaced below
            errors.append(exc)

    threads = [threading.Thread(target=_worker) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    profile = service.get_profile("teacher")
    assert profile.total_interactions == 80
    dist = profile.preferences.content_preferences.difficulty_distribution.as_dict()
    assert sum(dist.values()) == pytest.approx(100.0)


def test_manual_insights_survive_learning(service, store):
    profile = service.get_profile("teacher")
    add_or_reinforce(profile, "prefers_group_work", "Thích hoạt động nhóm", source="manual")
    store.save("teacher", profile)

    updated = service.learn_from_interaction("teacher", "lập bảng", _reply(10))
    assert [i.key for i in updated.insights] == ["prefers_group_work", "use_tables"]


def test_sqlite_backed_service_survives_restart(temp_db, clock):
    first = PersonalizationService(clock=clock)
    first.learn_from_interaction("teacher", "thêm hình minh họa", _reply(10))

    second = PersonalizationService(clock=clock)
    profile = second.get_profile("teacher")
    assert profile.total_interactions == 1
    assert profile.preferences.content_preferences.use_images is True
    assert second.get_preferences("teacher").content_preferences.use_images is True


def test_read_failure_keeps_learned_profile(temp_db, clock, monkeypatch):
    import db

    service = PersonalizationService(clock=clock)
    for _ in range(5):
        service.learn_from_interaction("teacher", "lập bảng chi tiết", _reply(10))

    original = db.get_style_profile
    calls = {"n": 0}

    def _locked_once(profile_id):
        calls["n"] += 1
        if calls["n"] == 1:
            raise sqlite3.OperationalError("database is locked")
        return original(profile_id)

    monkeypatch.setattr(db, "get_style_profile", _locked_once)
    with pytest.raises(PersistenceError):
        service.build_preferences_prompt("teacher")

    profile = service.get_profile("teacher")
    assert profile.total_interactions == 5
    assert {i.key for i in profile.insights} == {"detail_high", "use_tables"}


def test_corrupt_profile_is_only_replaced_by_a_write(service, store, clock):
    store._profiles["teacher"] = '{"confidence": "high"}'

    assert service.get_profile("teacher") == StyleProfile.cold_start(clock())
    assert service.build_preferences_prompt("teacher") != ""
    assert store._profiles["teacher"] == '{"confidence": "high"}'

    learned = service.learn_from_interaction("teacher", "lập bảng", _reply(10))
    assert learned.total_interactions == 1
    assert store.load("teacher") == learned


def test_reset_replaces_corrupt_profile(service, store, clock):
    store._profiles["teacher"] = "{not json"
    fresh = service.reset_preferences("teacher")
    assert fresh.created_at == clock()
    assert store.load("teacher") == fresh


def test_profile_locks_are_released_after_use(service):
    for name in ("a", "b", "c"):
        service.get_profile(name)
        service.learn_from_interaction(name, "bảng", _reply(10))
    gc.collect()
    assert len(service._locks) == 0
