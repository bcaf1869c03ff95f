from types import SimpleNamespace

import pytest

from logic import generator_client
from logic.generator_client import (
    SYSTEM_PROMPT,
    GeneratorInit,
    OpenAITextGenerator,
    TextGenerator,
    init_text_generator,
)


class _FakeCompletions:
    def __init__(self, content):
        self.content = content
        self.calls = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.content is None:
            return SimpleNamespace(choices=[])
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def _client(content):
    completions = _FakeCompletions(content)
    return SimpleNamespace(chat=SimpleNamespace(completions=completions)), completions


@pytest.mark.asyncio
async def test_openai_generator_requests_json_mode():
    client, completions = _client('{"scenario": "x"}')
    generator = OpenAITextGenerator(client, "gpt-test")

    raw = await generator.generate("Describe Lima")

    assert raw == '{"scenario": "x"}'
    call = completions.calls[0]
    assert call["model"] == "gpt-test"
    assert call["response_format"] == {"type": "json_object"}
    assert call["messages"][0] == {"role": "system", "content": SYSTEM_PROMPT}
    assert call["messages"][1]["content"] == "Describe Lima"
    assert isinstance(generator, TextGenerator)


@pytest.mark.asyncio
async def test_openai_generator_empty_response_is_empty_text():
    client, _ = _client(None)
    assert await OpenAITextGenerator(client, "gpt-test").generate("p") == ""


def test_init_without_api_key_is_unavailable():
    result = init_text_generator({"OPENAI_API_KEY": None})
    assert result.available is False
    assert result.handle is None
    assert result.reason == "missing api key"


def test_init_builds_client_without_sdk_retries(monkeypatch):
    captured = {}

    class FakeAsyncOpenAI:
        def __init__(self, **kwargs):
            captured.update(kwargs)

    monkeypatch.setattr(generator_client, "AsyncOpenAI", FakeAsyncOpenAI)

    result = init_text_generator(
        {
            "OPENAI_API_KEY": "sk-test",
            "GENERATOR_TIMEOUT": 5.0,
            "OPENAI_BASE_URL": "http://localhost:9999/v1",
            "OPENAI_SCENARIO_MODEL": "gpt-local",
        }
    )

    assert result.available is True
    assert result.handle.model == "gpt-local"
    assert captured["max_retries"] == 0
    assert captured["timeout"] == 5.0
    assert captured["base_url"] == "http://localhost:9999/v1"


def test_init_client_failure_is_unavailable(monkeypatch):
    def boom(**kwargs):
        raise ValueError("bad config")

    monkeypatch.setattr(generator_client, "AsyncOpenAI", boom)

    result = init_text_generator({"OPENAI_API_KEY": "sk-test"})
    assert result.available is False
    assert "ValueError" in result.reason


def test_generator_init_constructors():
    handle = OpenAITextGenerator(object(), "m")
    assert GeneratorInit.ready(handle).available
    assert not GeneratorInit.unavailable("nope").available
