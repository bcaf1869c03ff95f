# logic/atlas_service.py

"""
Atlas service: the operations exposed to the game's transport layer.

Wires the profile store, the scenario pipeline and the emotion engine
together and owns the read-side caches. Request flow for one visit:

    read profile (cached) -> pipeline scenario (cached) -> player picks a choice
    -> merge choice into stored profile -> write through -> invalidate place caches
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from config import CONFIG
from db.connection import close_connection_pool
from db.profile_store import (
    PostgresProfileStore,
    ProfileStore,
    create_profile_store,
    place_key,
)
from logic.emotion_engine import PlaceProfile, apply_interaction, get_emotion_color
from logic.generator_client import init_text_generator
from logic.place_validator import DEFAULT_SEARCH_LIMIT, PlaceCatalog, validate_place
from logic.scenario_generator import ScenarioPipeline, sanitize_text, scenario_cache_key
from monitoring.metrics import record_profile_merge
from utils.caching import (
    OVERVIEW_CACHE,
    PLACE_SEARCH_CACHE,
    PROFILE_CACHE,
    SCENARIO_CACHE,
    BoundedCache,
)
from utils.error_handling import InvalidInputError, ProfileStoreError

logger = logging.getLogger(__name__)

DEFAULT_OVERVIEW_LIMIT = 500
MAX_OVERVIEW_LIMIT = 1000

_OVERVIEW_PREFIX = "overview:"

MAX_PLACE_NAME_LENGTH = 100
MAX_REGION_LENGTH = 100
MAX_CHOICE_ID_LENGTH = 8
MAX_SEARCH_LIMIT = 50


def _profile_cache_key(key: str) -> str:
    return f"profile:{key}"


def _require_place_name(place_name: Any) -> str:
    """Sanitized place name; names that are blank after cleaning are rejected."""
    name = sanitize_text(place_name, max_length=MAX_PLACE_NAME_LENGTH)
    if not name:
        raise InvalidInputError("Place name is required.", field="place")
    return name


def _clean_optional(text: Any, max_length: int) -> Optional[str]:
    return sanitize_text(text, max_length=max_length) or None


def _clamp_limit(limit: Any, default: int, maximum: int) -> int:
    """Coerce a caller-supplied limit into [1, maximum]; unparseable means default."""
    try:
        value = int(limit) if limit is not None else default
    except (TypeError, ValueError):
        value = default
    return max(1, min(value, maximum))


class AtlasService:
    """Async facade over validation, scenario generation and place profiles."""

    def __init__(
        self,
        store: ProfileStore,
        pipeline: ScenarioPipeline,
        catalog: Optional[PlaceCatalog] = None,
        profile_cache: Optional[BoundedCache] = None,
        overview_cache: Optional[BoundedCache] = None,
        search_cache: Optional[BoundedCache] = None,
        overview_default_limit: int = DEFAULT_OVERVIEW_LIMIT,
        overview_max_limit: int = MAX_OVERVIEW_LIMIT,
    ):
        self.store = store
        self.pipeline = pipeline
        self.catalog = catalog or PlaceCatalog.default()
        self.profile_cache = profile_cache
        self.overview_cache = overview_cache
        self.search_cache = search_cache
        self.overview_default_limit = overview_default_limit
        self.overview_max_limit = overview_max_limit

    @classmethod
    def from_config(cls, config=CONFIG) -> "AtlasService":
        """Build the service with the global caches and configured collaborators."""
        pipeline = ScenarioPipeline(
            generator=init_text_generator(config),
            cache=SCENARIO_CACHE,
            max_retries=config.get("GENERATOR_MAX_RETRIES", 2),
            base_delay=config.get("GENERATOR_BASE_DELAY", 0.5),
            attempt_timeout=config.get("GENERATOR_TIMEOUT", 20.0),
        )
        return cls(
            store=create_profile_store(config),
            pipeline=pipeline,
            profile_cache=PROFILE_CACHE,
            overview_cache=OVERVIEW_CACHE,
            search_cache=PLACE_SEARCH_CACHE,
            overview_default_limit=config.get("OVERVIEW_DEFAULT_LIMIT", DEFAULT_OVERVIEW_LIMIT),
            overview_max_limit=config.get("OVERVIEW_MAX_LIMIT", MAX_OVERVIEW_LIMIT),
        )

    async def startup(self) -> None:
        if isinstance(self.store, PostgresProfileStore):
            await self.store.ensure_schema()

    async def shutdown(self) -> None:
        if isinstance(self.store, PostgresProfileStore):
            await close_connection_pool()

    # ---- validation & search ----

    def validate_place(
        self,
        name: Any,
        previous: Optional[str] = None,
        used: Optional[Sequence[str]] = None,
    ) -> Dict[str, Any]:
        return validate_place(self.catalog, name, previous, used).model_dump()

    def search_places(self, query: Any, limit: Any = DEFAULT_SEARCH_LIMIT) -> Dict[str, Any]:
        q = query.strip() if isinstance(query, str) else ""
        if not q:
            return {"results": []}
        limit = _clamp_limit(limit, DEFAULT_SEARCH_LIMIT, MAX_SEARCH_LIMIT)

        def compute() -> List[Dict[str, Any]]:
            return [place.model_dump() for place in self.catalog.search(q, limit)]

        if self.search_cache is None:
            return {"results": compute()}
        return {"results": self.search_cache.get_or_compute(f"search:{q.lower()}:{limit}", compute)}

    # ---- scenario ----

    async def generate_scenario(self, place_name: Any, region: Optional[str] = None) -> Dict[str, Any]:
        """
        Scenario for a place plus a snapshot of its current profile.

        A store outage only costs the profile conditioning; the scenario is
        still produced.
        """
        name = _require_place_name(place_name)
        key = place_key(name)

        try:
            profile = await self._get_profile(key)
        except ProfileStoreError as e:
            logger.error(f"Profile unavailable while generating scenario for {name}: {e}")
            profile = None

        scenario = await self.pipeline.generate(
            name,
            region=region,
            emotion_profile=profile.emotions if profile else None,
        )

        return {
            **scenario.model_dump(),
            "existing_profile": profile.snapshot() if profile else None,
        }

    # ---- choices & profiles ----

    async def submit_choice(
        self,
        place_name: Any,
        emotions: Any,
        choice_id: Optional[str] = None,
        region: Optional[str] = None,
        lat: Optional[float] = None,
        lng: Optional[float] = None,
    ) -> Dict[str, Any]:
        """
        Merge the chosen option into the place profile and write it through.

        A failed read surfaces as ProfileStoreError, since merging into a
        default profile would overwrite real history. A failed write is logged
        and the choice is still acknowledged with the merged profile.
        """
        name = _require_place_name(place_name)
        if emotions is None:
            raise InvalidInputError("Choice emotions are required.", field="emotions")

        region = _clean_optional(region, MAX_REGION_LENGTH)
        choice_id = _clean_optional(choice_id, MAX_CHOICE_ID_LENGTH)

        key = place_key(name)
        existing = await self.store.get(key)
        updated = apply_interaction(existing, emotions, name, region=region, lat=lat, lng=lng)

        persisted = True
        try:
            await self.store.put(key, updated)
        except ProfileStoreError as e:
            persisted = False
            record_profile_merge("write_failed")
            logger.error(f"Profile write failed for {name}; choice acknowledged anyway: {e}")
        else:
            record_profile_merge("persisted")
            logger.info(f"Place profile updated: {name} (visit_count={updated.visit_count})")

        self._invalidate_place(key)

        return {
            "success": True,
            "persisted": persisted,
            "choice_id": choice_id,
            "profile": updated.model_dump(),
            "emotion_color": get_emotion_color(updated.dominant_emotion),
        }

    async def read_profile(self, place_name: Any) -> Dict[str, Any]:
        name = _require_place_name(place_name)
        profile = await self._get_profile(place_key(name))

        if profile is None:
            return {"exists": False, "place": name}

        return {
            "exists": True,
            **profile.model_dump(),
            "emotion_color": get_emotion_color(profile.dominant_emotion),
        }

    async def list_for_overview(self, limit: Any = None) -> Dict[str, Any]:
        """Most visited places with their colours, for the world overview."""
        clamped = self._clamp_overview_limit(limit)

        async def load() -> Dict[str, Any]:
            profiles = await self.store.list_top_by_visits(clamped)
            places = [
                {
                    "name": p.name,
                    "region": p.region,
                    "lat": p.lat,
                    "lng": p.lng,
                    "emotions": dict(p.emotions),
                    "dominant_emotion": p.dominant_emotion,
                    "visit_count": p.visit_count,
                    "color": get_emotion_color(p.dominant_emotion),
                }
                for p in profiles
            ]
            return {"count": len(places), "places": places}

        if self.overview_cache is None:
            return await load()
        return await self.overview_cache.get_or_compute_async(f"{_OVERVIEW_PREFIX}{clamped}", load)

    # ---- diagnostics ----

    def cache_stats(self) -> Dict[str, Dict[str, Any]]:
        caches = [self.pipeline.cache, self.profile_cache, self.overview_cache, self.search_cache]
        return {cache.name: cache.stats() for cache in caches if cache is not None}

    def health(self) -> Dict[str, Any]:
        return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}

    # ---- internals ----

    async def _get_profile(self, key: str) -> Optional[PlaceProfile]:
        if self.profile_cache is None:
            return await self.store.get(key)

        async def load() -> Optional[PlaceProfile]:
            return await self.store.get(key)

        return await self.profile_cache.get_or_compute_async(_profile_cache_key(key), load)

    def _invalidate_place(self, key: str) -> None:
        if self.profile_cache is not None:
            self.profile_cache.delete(_profile_cache_key(key))
        if self.pipeline.cache is not None:
            self.pipeline.cache.delete(scenario_cache_key(key))
        if self.overview_cache is not None:
            self.overview_cache.remove_prefix(_OVERVIEW_PREFIX)

    def _clamp_overview_limit(self, limit: Any) -> int:
        return _clamp_limit(limit, self.overview_default_limit, self.overview_max_limit)
