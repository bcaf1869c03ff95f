# db/profile_store.py

"""
Durable storage of place profiles, keyed by normalized place identity.

Two implementations share the ProfileStore protocol:
- InMemoryProfileStore for development and tests (no DB_DSN configured)
- PostgresProfileStore on top of the asyncpg pool in db.connection
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from typing import Any, Callable, Dict, List, Optional, Protocol

import asyncpg

from db.connection import get_db_connection_context
from logic.emotion_engine import PlaceProfile
from utils.error_handling import ProfileStoreError

logger = logging.getLogger(__name__)

_WHITESPACE_RE = re.compile(r"\s+")


def place_key(name: Any) -> str:
    """Normalize a place name into its store key: trimmed, lowercase, whitespace runs -> '_'."""
    if name is None:
        return ""
    return _WHITESPACE_RE.sub("_", str(name).strip().lower())


class ProfileStore(Protocol):
    async def get(self, key: str) -> Optional[PlaceProfile]:
        ...

    async def put(self, key: str, profile: PlaceProfile) -> None:
        ...

    async def list_top_by_visits(self, limit: int) -> List[PlaceProfile]:
        ...


class InMemoryProfileStore:
    """Process-local store. Profiles are copied in and out so callers never share state with it."""

    def __init__(self):
        self._profiles: Dict[str, PlaceProfile] = {}
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> Optional[PlaceProfile]:
        async with self._lock:
            profile = self._profiles.get(key)
            return profile.model_copy(deep=True) if profile is not None else None

    async def put(self, key: str, profile: PlaceProfile) -> None:
        async with self._lock:
            self._profiles[key] = profile.model_copy(deep=True)

    async def list_top_by_visits(self, limit: int) -> List[PlaceProfile]:
        async with self._lock:
            ranked = sorted(
                self._profiles.items(),
                key=lambda kv: (-kv[1].visit_count, kv[0]),
            )
            return [profile.model_copy(deep=True) for _, profile in ranked[:max(0, limit)]]


CREATE_TABLE_SQL = """
    CREATE TABLE IF NOT EXISTS place_profiles (
        place_key TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        region TEXT,
        lat DOUBLE PRECISION NOT NULL DEFAULT 0,
        lng DOUBLE PRECISION NOT NULL DEFAULT 0,
        emotions JSONB NOT NULL,
        dominant_emotion TEXT NOT NULL DEFAULT 'neutral',
        visit_count INTEGER NOT NULL DEFAULT 0,
        last_updated TEXT
    )
"""

CREATE_INDEX_SQL = """
    CREATE INDEX IF NOT EXISTS idx_place_profiles_visit_count
    ON place_profiles (visit_count DESC)
"""

_SELECT_COLUMNS = "name, region, lat, lng, emotions, dominant_emotion, visit_count, last_updated"

# Errors that mean the store could not be reached or the statement failed
_STORE_ERRORS = (asyncpg.PostgresError, OSError, ConnectionError, asyncio.TimeoutError)


def _row_to_profile(row: Any) -> PlaceProfile:
    emotions = row["emotions"]
    if not isinstance(emotions, dict):
        emotions = json.loads(emotions) if emotions else {}
    return PlaceProfile(
        name=row["name"],
        region=row["region"],
        lat=row["lat"],
        lng=row["lng"],
        emotions=emotions,
        dominant_emotion=row["dominant_emotion"],
        visit_count=row["visit_count"],
        last_updated=row["last_updated"],
    )


class PostgresProfileStore:
    """ProfileStore over a single ``place_profiles`` table."""

    def __init__(self, connection_factory: Callable[[], Any] = get_db_connection_context):
        self._connection_factory = connection_factory

    async def ensure_schema(self) -> None:
        try:
            async with self._connection_factory() as conn:
                await conn.execute(CREATE_TABLE_SQL)
                await conn.execute(CREATE_INDEX_SQL)
        except _STORE_ERRORS as e:
            raise ProfileStoreError("schema setup", cause=e) from e
        logger.info("place_profiles schema ready")

    async def get(self, key: str) -> Optional[PlaceProfile]:
        try:
            async with self._connection_factory() as conn:
                row = await conn.fetchrow(
                    f"SELECT {_SELECT_COLUMNS} FROM place_profiles WHERE place_key = $1",
                    key,
                )
        except _STORE_ERRORS as e:
            logger.error(f"Profile read failed for {key}: {e}")
            raise ProfileStoreError("read", key, e) from e

        return _row_to_profile(row) if row else None

    async def put(self, key: str, profile: PlaceProfile) -> None:
        try:
            async with self._connection_factory() as conn:
                await conn.execute(
                    """
                    INSERT INTO place_profiles
                        (place_key, name, region, lat, lng, emotions,
                         dominant_emotion, visit_count, last_updated)
                    VALUES ($1, $2, $3, $4, $5, $6::jsonb, $7, $8, $9)
                    ON CONFLICT (place_key) DO UPDATE SET
                        name = EXCLUDED.name,
                        region = EXCLUDED.region,
                        lat = EXCLUDED.lat,
                        lng = EXCLUDED.lng,
                        emotions = EXCLUDED.emotions,
                        dominant_emotion = EXCLUDED.dominant_emotion,
                        visit_count = EXCLUDED.visit_count,
                        last_updated = EXCLUDED.last_updated
                    """,
                    key,
                    profile.name,
                    profile.region,
                    profile.lat,
                    profile.lng,
                    json.dumps(profile.emotions),
                    profile.dominant_emotion,
                    profile.visit_count,
                    profile.last_updated,
                )
        except _STORE_ERRORS as e:
            logger.error(f"Profile write failed for {key}: {e}")
            raise ProfileStoreError("write", key, e) from e

    async def list_top_by_visits(self, limit: int) -> List[PlaceProfile]:
        try:
            async with self._connection_factory() as conn:
                rows = await conn.fetch(
                    f"SELECT {_SELECT_COLUMNS} FROM place_profiles "
                    "ORDER BY visit_count DESC, place_key ASC LIMIT $1",
                    max(0, int(limit)),
                )
        except _STORE_ERRORS as e:
            logger.error(f"Profile listing failed: {e}")
            raise ProfileStoreError("list", cause=e) from e

        return [_row_to_profile(row) for row in rows]


def create_profile_store(config: Any) -> ProfileStore:
    """Postgres-backed store when DB_DSN or DATABASE_URL is configured, in-memory otherwise."""
    if config.get("DB_DSN") or config.get("DATABASE_URL"):
        return PostgresProfileStore()
    logger.warning("Neither DB_DSN nor DATABASE_URL configured; place profiles are kept in memory only.")
    return InMemoryProfileStore()
