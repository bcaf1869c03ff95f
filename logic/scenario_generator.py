# logic/scenario_generator.py

"""
Scenario generation pipeline.

Asks the external generator for a short everyday moment set in a place,
conditioned on the place's accumulated emotional profile. Each request runs a
small attempt-indexed state machine:

    BUILD_PROMPT -> CALL(0) -> DONE
                           \\-> RETRY_WAIT -> CALL(1) -> ... -> FALLBACK

A call error, a timeout and output that fails the validation gate all count
as a failed attempt. After ``max_retries`` retries the pipeline returns canned
fallback content, so callers always get a structurally valid scenario.
Accepted and fallback results are cached per place for the scenario TTL.
"""

import asyncio
import json
import logging
import random
import re
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional

from pydantic import BaseModel, Field, StrictStr, ValidationError

from db.profile_store import place_key
from logic.emotion_engine import EMOTION_DIMENSIONS, normalize_emotions
from logic.generator_client import GeneratorInit
from monitoring.metrics import record_generator_attempt, record_generator_result, track_latency
from utils.caching import BoundedCache
from utils.error_handling import InvalidGeneratedContentError

logger = logging.getLogger(__name__)

MAX_RETRIES = 2
BASE_DELAY_SECONDS = 0.5
DEFAULT_ATTEMPT_TIMEOUT = 20.0

MAX_TEXT_LENGTH = 500
MIN_CHOICES = 2
MAX_CHOICES = 4
CHOICE_IDS = ("A", "B", "C", "D")
DEFAULT_TONE = "neutral"

_TAG_RE = re.compile(r"<[^>]*>")
_DISALLOWED_CHARS_RE = re.compile(r"[^\w\s.,!?;:'\"()\-–—]")
_CODE_FENCE_RE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL | re.IGNORECASE)


# -------------------------------------------------------
# Models
# -------------------------------------------------------

class ScenarioChoice(BaseModel):
    id: str
    text: str
    emotions: Dict[str, float]


class ScenarioResult(BaseModel):
    place: str
    region: Optional[str] = None
    scenario: str
    choices: List[ScenarioChoice]
    tone: str = DEFAULT_TONE
    generated: bool


class _RawChoice(BaseModel):
    text: StrictStr = Field(min_length=1)
    emotions: Dict[str, Any]


class _RawScenario(BaseModel):
    """Shape the generator must return. Extra keys are ignored."""

    scenario: StrictStr = Field(min_length=1)
    choices: List[_RawChoice] = Field(min_length=MIN_CHOICES, max_length=MAX_CHOICES)
    tone: Optional[Any] = None


class GenerationState(Enum):
    BUILD_PROMPT = "build_prompt"
    CALL = "call"
    RETRY_WAIT = "retry_wait"
    FALLBACK = "fallback"


# -------------------------------------------------------
# Text helpers
# -------------------------------------------------------

def sanitize_text(text: Any, max_length: int = MAX_TEXT_LENGTH) -> str:
    """
    Make free text safe to store and display.

    Strips markup-like tags, drops every character outside word characters,
    whitespace and basic punctuation, trims, and truncates to ``max_length``.
    Non-string input yields an empty string.
    """
    if not isinstance(text, str):
        return ""
    cleaned = _TAG_RE.sub("", text)
    cleaned = _DISALLOWED_CHARS_RE.sub("", cleaned)
    return cleaned.strip()[:max_length]


def extract_json(raw: str) -> Any:
    """Parse model output, tolerating a surrounding Markdown code fence."""
    text = (raw or "").strip()
    match = _CODE_FENCE_RE.match(text)
    if match:
        text = match.group(1)
    return json.loads(text)


def validate_scenario_payload(payload: Any) -> _RawScenario:
    """
    Validation gate for generator output.

    Raises:
        InvalidGeneratedContentError: if the payload does not have a non-empty
            scenario and 2-4 choices, each with non-empty text and an emotions object
    """
    if not isinstance(payload, Mapping):
        raise InvalidGeneratedContentError(
            "Scenario payload is not a JSON object",
            {"payload_type": type(payload).__name__},
        )
    try:
        return _RawScenario.model_validate(dict(payload))
    except ValidationError as e:
        raise InvalidGeneratedContentError(
            "Scenario payload failed validation",
            {"error_count": e.error_count()},
        ) from e


def build_prompt(place: str, region: Optional[str], emotion_profile: Optional[Mapping[str, Any]]) -> str:
    """Render the generator prompt for a place."""
    place = sanitize_text(place, max_length=100) or "this place"
    region = sanitize_text(region, max_length=100) or None
    location = f"{place}, {region}" if region else place

    if emotion_profile:
        normalized = normalize_emotions(emotion_profile)
        mood_lines = "\n".join(
            f"- {dim}: {normalized[dim] * 100:.0f}%" for dim in EMOTION_DIMENSIONS
        )
        profile_context = (
            "\nThis place has been visited before. Its current emotional atmosphere is:\n"
            f"{mood_lines}\n"
            "Subtly reflect this accumulated mood in the scenario's tone."
        )
    else:
        profile_context = "\nThis is the first visit to this place. Generate a fresh, culturally grounded moment."

    emotion_template = ",\n".join(f'        "{dim}": 0.0-1.0' for dim in EMOTION_DIMENSIONS)

    return f"""You are a culturally aware storytelling engine for a geography game called Atlas.

TASK: Generate a short, emotionally resonant everyday moment set in {location}.

RULES:
- The moment must be culturally plausible for {place}
- Maximum 2 sentences for the scenario
- It must describe a real, ordinary human moment (a vendor, a commuter, a student, etc.)
- NO fantasy, supernatural, or fictional elements
- NO stereotypes or offensive content
- NO generic filler; every detail should feel specific to this place
- Present tense, second person ("You see...", "You notice...")
{profile_context}

RESPONSE FORMAT (strict JSON, {MIN_CHOICES} to {MAX_CHOICES} choices):
{{
  "scenario": "A 1-2 sentence scene set in {place}",
  "choices": [
    {{
      "text": "Short action choice (max 8 words)",
      "emotions": {{
{emotion_template}
      }}
    }}
  ],
  "tone": "one word describing the overall mood"
}}

The choices should lead to meaningfully different emotional outcomes. One should lean warmer/brighter, another more introspective/complex."""


# -------------------------------------------------------
# Fallback content
# -------------------------------------------------------

_FALLBACK_POOL: List[Dict[str, Any]] = [
    {
        "scenario": "You arrive in {place} as the golden hour bathes the streets in amber light. "
                    "A street vendor arranges fresh flowers, humming an old melody.",
        "choices": [
            ("Stop and choose a flower",
             {"warmth": 0.8, "loneliness": 0.1, "tension": 0.1, "nostalgia": 0.4, "belonging": 0.6}),
            ("Walk on, lost in thought",
             {"warmth": 0.2, "loneliness": 0.7, "tension": 0.1, "nostalgia": 0.6, "belonging": 0.1}),
        ],
        "tone": "wistful",
    },
    {
        "scenario": "Rain falls softly on {place}. Through a window, you see an elderly couple "
                    "sharing tea, their laughter barely audible above the downpour.",
        "choices": [
            ("Seek shelter in a nearby cafe",
             {"warmth": 0.7, "loneliness": 0.2, "tension": 0.1, "nostalgia": 0.3, "belonging": 0.7}),
            ("Keep walking through the rain",
             {"warmth": 0.1, "loneliness": 0.6, "tension": 0.3, "nostalgia": 0.5, "belonging": 0.1}),
        ],
        "tone": "reflective",
    },
    {
        "scenario": "Morning light breaks over {place}. A baker pulls bread from the oven, "
                    "the aroma drifting to where you stand at the corner.",
        "choices": [
            ("Buy a warm loaf and smile",
             {"warmth": 0.9, "loneliness": 0.05, "tension": 0.05, "nostalgia": 0.3, "belonging": 0.7}),
            ("Watch from a distance, remembering",
             {"warmth": 0.3, "loneliness": 0.5, "tension": 0.1, "nostalgia": 0.8, "belonging": 0.2}),
        ],
        "tone": "nostalgic",
    },
    {
        "scenario": "A crowded tram rattles through {place} at rush hour. A child beside you "
                    "presses a drawing against the fogged glass, glancing up to see if you noticed.",
        "choices": [
            ("Smile and admire the drawing",
             {"warmth": 0.8, "loneliness": 0.1, "tension": 0.1, "nostalgia": 0.4, "belonging": 0.8}),
            ("Look away, counting the stops",
             {"warmth": 0.1, "loneliness": 0.6, "tension": 0.5, "nostalgia": 0.2, "belonging": 0.1}),
            ("Remember your own first drawings",
             {"warmth": 0.5, "loneliness": 0.3, "tension": 0.1, "nostalgia": 0.9, "belonging": 0.3}),
        ],
        "tone": "tender",
    },
]


def get_fallback_scenario(
    place: Any,
    region: Optional[str] = None,
    rng: Optional[random.Random] = None,
) -> ScenarioResult:
    """Pick canned content for a place. Has no external dependency and cannot fail."""
    place_name = sanitize_text(place) if isinstance(place, str) else ""
    if not place_name:
        place_name = "this place"

    template = (rng or random).choice(_FALLBACK_POOL)
    choices = [
        ScenarioChoice(id=CHOICE_IDS[index], text=text, emotions=normalize_emotions(emotions))
        for index, (text, emotions) in enumerate(template["choices"])
    ]

    return ScenarioResult(
        place=place_name,
        region=sanitize_text(region) or None,
        scenario=sanitize_text(template["scenario"].format(place=place_name)),
        choices=choices,
        tone=template["tone"],
        generated=False,
    )


# -------------------------------------------------------
# Pipeline
# -------------------------------------------------------

def scenario_cache_key(place: Any) -> str:
    return f"scenario:{place_key(place)}"


class ScenarioPipeline:
    """Resilient, cached scenario generation for one generator handle."""

    def __init__(
        self,
        generator: GeneratorInit,
        cache: Optional[BoundedCache] = None,
        max_retries: int = MAX_RETRIES,
        base_delay: float = BASE_DELAY_SECONDS,
        attempt_timeout: float = DEFAULT_ATTEMPT_TIMEOUT,
        cache_ttl: Optional[float] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ):
        self.generator = generator
        self.cache = cache
        self.max_retries = max(0, int(max_retries))
        self.base_delay = float(base_delay)
        self.attempt_timeout = float(attempt_timeout)
        self.cache_ttl = cache_ttl
        self._sleep = sleep
        self._rng = rng or random.Random()

    def backoff_delay(self, attempt: int) -> float:
        """Delay before the retry that follows failed attempt ``attempt`` (0-based)."""
        return self.base_delay * (2 ** attempt)

    async def generate(
        self,
        place: str,
        region: Optional[str] = None,
        emotion_profile: Optional[Mapping[str, Any]] = None,
    ) -> ScenarioResult:
        """
        Return a scenario for ``place``; never raises for generator failures.

        A cached result for the place is returned unchanged, skipping the prompt,
        the call and validation.
        """
        if self.cache is None:
            return await self._produce(place, region, emotion_profile)

        produced = False

        async def supplier() -> ScenarioResult:
            nonlocal produced
            produced = True
            return await self._produce(place, region, emotion_profile)

        result = await self.cache.get_or_compute_async(scenario_cache_key(place), supplier, self.cache_ttl)
        if not produced:
            record_generator_result("cache")
            logger.debug(f"Scenario cache hit for {place}")
        return result

    async def _produce(
        self,
        place: str,
        region: Optional[str],
        emotion_profile: Optional[Mapping[str, Any]],
    ) -> ScenarioResult:
        if not self.generator.available:
            logger.warning(
                f"Generator unavailable ({self.generator.reason}), using fallback for {place}"
            )
            return self._fallback(place, region)

        state = GenerationState.BUILD_PROMPT
        attempt = 0
        prompt = ""

        while True:
            if state is GenerationState.BUILD_PROMPT:
                prompt = build_prompt(place, region, emotion_profile)
                state = GenerationState.CALL

            elif state is GenerationState.CALL:
                try:
                    result = await self._attempt(prompt, place, region)
                except asyncio.TimeoutError:
                    record_generator_attempt("timeout")
                    logger.warning(f"Scenario generation timed out for {place} (attempt={attempt})")
                except InvalidGeneratedContentError as e:
                    record_generator_attempt("invalid")
                    logger.warning(
                        f"Invalid generator response for {place} (attempt={attempt}): {e.message}"
                    )
                except Exception as e:
                    record_generator_attempt("error")
                    logger.error(
                        f"Scenario generation attempt failed for {place} (attempt={attempt}): "
                        f"{type(e).__name__}: {e}"
                    )
                else:
                    record_generator_attempt("success")
                    record_generator_result("generated")
                    return result

                state = GenerationState.RETRY_WAIT if attempt < self.max_retries else GenerationState.FALLBACK

            elif state is GenerationState.RETRY_WAIT:
                delay = self.backoff_delay(attempt)
                logger.info(f"Retrying scenario for {place} in {delay:.2f}s")
                await self._sleep(delay)
                attempt += 1
                state = GenerationState.CALL

            else:
                logger.warning(f"Scenario attempts exhausted for {place}, using fallback")
                return self._fallback(place, region)

    @track_latency("GENERATOR_LATENCY")
    async def _attempt(self, prompt: str, place: str, region: Optional[str]) -> ScenarioResult:
        raw = await asyncio.wait_for(self.generator.handle.generate(prompt), timeout=self.attempt_timeout)
        try:
            payload = extract_json(raw)
        except (json.JSONDecodeError, TypeError) as e:
            raise InvalidGeneratedContentError("Generator output is not valid JSON") from e

        parsed = validate_scenario_payload(payload)
        return self._to_result(parsed, place, region)

    def _to_result(self, parsed: _RawScenario, place: str, region: Optional[str]) -> ScenarioResult:
        scenario = sanitize_text(parsed.scenario)
        if not scenario:
            raise InvalidGeneratedContentError("Scenario text is empty after sanitization")

        choices = []
        for index, raw_choice in enumerate(parsed.choices):
            text = sanitize_text(raw_choice.text)
            if not text:
                raise InvalidGeneratedContentError(
                    "Choice text is empty after sanitization", {"choice": index}
                )
            choices.append(
                ScenarioChoice(
                    id=CHOICE_IDS[index],
                    text=text,
                    emotions=normalize_emotions(raw_choice.emotions),
                )
            )

        tone = sanitize_text(parsed.tone, max_length=40) if isinstance(parsed.tone, str) else ""

        return ScenarioResult(
            place=sanitize_text(place) or "this place",
            region=sanitize_text(region) or None,
            scenario=scenario,
            choices=choices,
            tone=tone or DEFAULT_TONE,
            generated=True,
        )

    def _fallback(self, place: str, region: Optional[str]) -> ScenarioResult:
        record_generator_result("fallback")
        return get_fallback_scenario(place, region, self._rng)
