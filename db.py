import json
import os
import sqlite3
from typing import Any, Dict, Iterable, Optional

from db_pool import SQLiteConnectionPool

DB_PATH = os.getenv("DB_PATH", "data.db")

# Initialize connection pool
_pool = SQLiteConnectionPool(DB_PATH, max_connections=10)


def _query(sql: str, params: Iterable = ()) -> list[sqlite3.Row]:
    with _pool.get_connection() as con:
        cur = con.execute(sql, params)
        return cur.fetchall()


def init():
    """Create the profile tables if they don't exist."""
    with _pool.get_connection() as con:
        con.execute(
            """
            CREATE TABLE IF NOT EXISTS style_profiles (
                profile_id TEXT PRIMARY KEY,
                payload TEXT NOT NULL,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
            """
        )
        # Read-optimised copy of ``payload["preferences"]``; written together
        # with ``style_profiles`` so the two never diverge.
        con.execute(
            """
            CREATE TABLE IF NOT EXISTS teacher_preferences (
                profile_id TEXT PRIMARY KEY,
                payload TEXT NOT NULL,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
            """
        )
        con.commit()


def get_style_profile(profile_id: str) -> Optional[str]:
    """Return the raw JSON document stored for ``profile_id``."""
    rows = _query("SELECT payload FROM style_profiles WHERE profile_id = ?", [profile_id])
    if not rows:
        return None
    return rows[0]["payload"]


def get_preferences(profile_id: str) -> Optional[str]:
    rows = _query("SELECT payload FROM teacher_preferences WHERE profile_id = ?", [profile_id])
    if not rows:
        return None
    return rows[0]["payload"]


def save_style_profile(
    profile_id: str,
    profile: Dict[str, Any],
    preferences: Dict[str, Any],
) -> None:
    """Upsert the profile document and its preferences projection atomically."""
    profile_json = json.dumps(profile, ensure_ascii=False)
    preferences_json = json.dumps(preferences, ensure_ascii=False)
    with _pool.get_connection() as con:
        con.execute(
            """
            INSERT INTO style_profiles (profile_id, payload, updated_at)
            VALUES (?, ?, CURRENT_TIMESTAMP)
            ON CONFLICT(profile_id) DO UPDATE SET
                payload = excluded.payload,
                updated_at = CURRENT_TIMESTAMP
            """,
            (profile_id, profile_json),
        )
        con.execute(
            """
            INSERT INTO teacher_preferences (profile_id, payload, updated_at)
            VALUES (?, ?, CURRENT_TIMESTAMP)
            ON CONFLICT(profile_id) DO UPDATE SET
                payload = excluded.payload,
                updated_at = CURRENT_TIMESTAMP
            """,
            (profile_id, preferences_json),
        )
        con.commit()


def list_profile_ids(limit: int = 100) -> list[str]:
    rows = _query(
        "SELECT profile_id FROM style_profiles ORDER BY updated_at DESC, profile_id LIMIT ?",
        (int(limit),),
    )
    return [row["profile_id"] for row in rows]
