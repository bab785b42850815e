# app.py - teacher personalization API
# - Style profile learning from completed chat exchanges
# - Preference addendum for the system prompt
# - Manual preference edits, reset, export/import

import logging
import os
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import Body, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, Response

import personalization
from env_validation import get_env_bool
from schemas import LearnBody, PromptResponse, ScoreResponse, TeacherPreferences
from store import PersistenceError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def _lifespan(_: FastAPI):
    try:
        # Validate environment variables first
        from env_validation import validate_environment
        validate_environment()

        personalization.get_service()
        logger.info(
            "Personalization ready | default profile: %s | learning enabled: %s",
            _default_profile_id(),
            _learning_enabled(),
        )
        yield
    except Exception as e:
        logger.error("Failed to initialize application: %s", str(e), exc_info=True)
        raise


app = FastAPI(title="Teacher Personalization", version="1.0.0", lifespan=_lifespan)


def _default_profile_id() -> str:
    return os.getenv("DEFAULT_PROFILE_ID") or "default"


def _learning_enabled() -> bool:
    return get_env_bool("PERSONALIZATION_ENABLED", default=True)


def _resolve_profile_id(profile_id: Optional[str]) -> str:
    candidate = (profile_id or "").strip()
    return candidate or _default_profile_id()


def _profile_payload(profile) -> dict[str, Any]:
    return profile.to_document()


@app.exception_handler(PersistenceError)
async def _persistence_error_handler(request: Request, exc: PersistenceError):
    logger.error("Profile persistence failed on %s: %s", request.url.path, exc, exc_info=exc)
    return JSONResponse(status_code=503, content={"detail": "profile storage unavailable"})


@app.get("/profiles")
def list_profiles(limit: int = 100):
    return {"profiles": personalization.get_service().list_profiles(limit=limit)}


@app.get("/profile")
def get_profile(profile_id: Optional[str] = None):
    pid = _resolve_profile_id(profile_id)
    return _profile_payload(personalization.get_service().get_profile(pid))


@app.post("/profile/learn")
def learn(body: LearnBody):
    pid = _resolve_profile_id(body.profile_id)
    service = personalization.get_service()
    if not _learning_enabled():
        return _profile_payload(service.get_profile(pid))
    try:
        profile = service.learn_from_interaction(pid, body.user_message, body.ai_response)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return _profile_payload(profile)


@app.get("/profile/prompt", response_model=PromptResponse)
def preferences_prompt(profile_id: Optional[str] = None):
    pid = _resolve_profile_id(profile_id)
    prompt = ""
    if _learning_enabled():
        prompt = personalization.get_service().build_preferences_prompt(pid)
    return PromptResponse(profile_id=pid, prompt=prompt)


@app.get("/profile/score", response_model=ScoreResponse)
def score(profile_id: Optional[str] = None):
    pid = _resolve_profile_id(profile_id)
    return ScoreResponse(profile_id=pid, score=personalization.get_service().personalization_score(pid))


@app.get("/preferences")
def get_preferences(profile_id: Optional[str] = None):
    pid = _resolve_profile_id(profile_id)
    prefs = personalization.get_service().get_preferences(pid)
    return prefs.model_dump(mode="json", by_alias=True)


@app.put("/preferences")
def put_preferences(preferences: TeacherPreferences, profile_id: Optional[str] = None):
    pid = _resolve_profile_id(profile_id)
    profile = personalization.get_service().save_preferences(pid, preferences)
    return _profile_payload(profile)


@app.post("/preferences/reset")
def reset_preferences(profile_id: Optional[str] = None):
    pid = _resolve_profile_id(profile_id)
    return _profile_payload(personalization.get_service().reset_preferences(pid))


@app.get("/profile/export")
def export_profile(profile_id: Optional[str] = None):
    pid = _resolve_profile_id(profile_id)
    service = personalization.get_service()
    content = service.export_json(pid)
    filename = service.export_filename()
    return Response(
        content=content.encode("utf-8"),
        media_type="application/json",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@app.post("/profile/import")
def import_profile(document: Any = Body(...), profile_id: Optional[str] = None):
    pid = _resolve_profile_id(profile_id)
    if not personalization.get_service().import_profile(pid, document):
        raise HTTPException(status_code=400, detail="invalid profile document")
    return {"status": "success", "profile_id": pid}
