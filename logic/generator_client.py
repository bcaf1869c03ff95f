# logic/generator_client.py

"""
Handle on the external generative text service.

The scenario pipeline never looks up a process-wide client. It is handed a
GeneratorInit, which either carries a ready TextGenerator or records why the
service is unavailable. Tests inject their own TextGenerator.
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional, Protocol, runtime_checkable

from openai import AsyncOpenAI

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You write short, culturally grounded everyday moments for a geography game. "
    "Always answer with a single JSON object and nothing else."
)


@runtime_checkable
class TextGenerator(Protocol):
    """Anything that turns a fully rendered prompt into raw model text."""

    async def generate(self, prompt: str) -> str:
        ...


class OpenAITextGenerator:
    """TextGenerator backed by the OpenAI chat completions API in JSON mode."""

    def __init__(
        self,
        client: AsyncOpenAI,
        model: str,
        temperature: float = 0.85,
        top_p: float = 0.92,
        max_tokens: int = 1024,
    ):
        self.client = client
        self.model = model
        self.temperature = temperature
        self.top_p = top_p
        self.max_tokens = max_tokens

    async def generate(self, prompt: str) -> str:
        response = await self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            temperature=self.temperature,
            top_p=self.top_p,
            max_tokens=self.max_tokens,
            response_format={"type": "json_object"},
        )
        if not response.choices:
            return ""
        return response.choices[0].message.content or ""


@dataclass(frozen=True)
class GeneratorInit:
    """Outcome of generator initialization: a usable handle or an unavailable marker."""

    handle: Optional[TextGenerator]
    reason: Optional[str] = None

    @property
    def available(self) -> bool:
        return self.handle is not None

    @classmethod
    def ready(cls, handle: TextGenerator) -> "GeneratorInit":
        return cls(handle=handle)

    @classmethod
    def unavailable(cls, reason: str) -> "GeneratorInit":
        return cls(handle=None, reason=reason)


def init_text_generator(config: Any) -> GeneratorInit:
    """
    Build the OpenAI-backed generator from configuration.

    Never raises: a missing key or a client construction failure yields an
    unavailable marker, and every scenario request then uses fallback content.
    """
    api_key = config.get("OPENAI_API_KEY")
    if not api_key:
        logger.warning("No OPENAI_API_KEY configured. Scenario generation will use fallback content.")
        return GeneratorInit.unavailable("missing api key")

    client_config = {
        "api_key": api_key,
        "timeout": config.get("GENERATOR_TIMEOUT", 20.0),
        # Retries are owned by the scenario pipeline
        "max_retries": 0,
    }
    base_url = config.get("OPENAI_BASE_URL")
    if base_url:
        client_config["base_url"] = base_url

    try:
        client = AsyncOpenAI(**client_config)
    except Exception as e:
        logger.error(f"OpenAI client initialization failed: {e}")
        return GeneratorInit.unavailable(f"client initialization failed: {type(e).__name__}")

    model = config.get("OPENAI_SCENARIO_MODEL", "gpt-4o-mini")
    logger.info(f"Scenario generator initialized (model={model})")
    return GeneratorInit.ready(OpenAITextGenerator(client, model))
