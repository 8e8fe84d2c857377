"""
LLMService with a stubbed OpenAI client: request shape, usage, error wrapping, research JSON parsing.
"""
from types import SimpleNamespace

import pytest

from autopilot.errors import ConfigurationError, ResearchError, ScriptGenerationError
from autopilot.services.llm_service import LLMService


def _response(content: str, total_tokens: int = 30) -> SimpleNamespace:
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
        usage=SimpleNamespace(prompt_tokens=10, completion_tokens=total_tokens - 10, total_tokens=total_tokens),
    )


def _service(make_settings, create) -> LLMService:
    service = LLMService(make_settings(openai_api_key="sk-test"))
    service._client = SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))
    return service


@pytest.mark.asyncio
async def test_generate_script_request_and_usage(make_settings) -> None:
    calls = []

    def create(**kwargs):
        calls.append(kwargs)
        return _response("  [0:00-0:03] Hook. Follow for daily tips.  ", total_tokens=120)

    service = _service(make_settings, create)
    script, usage = await service.generate_script({"idea": "Cold showers", "category": "Lifestyle"})

    assert script == "[0:00-0:03] Hook. Follow for daily tips."
    assert usage == {"prompt_tokens": 10, "completion_tokens": 110, "total_tokens": 120}
    sent = calls[0]
    assert sent["model"] == "gpt-4o"
    assert sent["temperature"] == 0.5
    assert sent["max_tokens"] == 2048
    assert [m["role"] for m in sent["messages"]] == ["system", "user"]
    assert "Cold showers" in sent["messages"][1]["content"]


@pytest.mark.asyncio
async def test_missing_api_key_is_configuration_error(make_settings) -> None:
    service = LLMService(make_settings(openai_api_key=None))
    with pytest.raises(ConfigurationError, match="OPENAI_API_KEY"):
        await service.generate_script({"idea": "x"})
    with pytest.raises(ConfigurationError):
        await service.generate_research("x", None)


@pytest.mark.asyncio
async def test_script_errors_are_wrapped(make_settings) -> None:
    def create(**kwargs):
        raise RuntimeError("upstream timeout")

    service = _service(make_settings, create)
    with pytest.raises(ScriptGenerationError, match="Failed to generate script: upstream timeout"):
        await service.generate_script({"idea": "x"})


@pytest.mark.asyncio
async def test_empty_script_is_an_error(make_settings) -> None:
    service = _service(make_settings, lambda **kwargs: _response("   "))
    with pytest.raises(ScriptGenerationError, match="empty response"):
        await service.generate_script({"idea": "x"})


@pytest.mark.asyncio
async def test_research_parses_fenced_json(make_settings) -> None:
    content = (
        "```json\n"
        '{"idea": "Two-minute tidy", "description": "A short reset.", "why_it_matters": "Less stress.", '
        '"useful_tips": "Set a timer.", "category": ""}\n'
        "```"
    )
    service = _service(make_settings, lambda **kwargs: _response(content))
    research, usage = await service.generate_research(None, "Lifestyle")

    assert research == {
        "idea": "Two-minute tidy",
        "description": "A short reset.",
        "why_it_matters": "Less stress.",
        "useful_tips": "Set a timer.",
        "category": "Lifestyle",
    }
    assert usage["total_tokens"] == 30


@pytest.mark.asyncio
async def test_research_falls_back_to_topic_for_idea(make_settings) -> None:
    service = _service(make_settings, lambda **kwargs: _response('{"description": "d"}'))
    research, _ = await service.generate_research("  Sleep hygiene ", None)
    assert research["idea"] == "Sleep hygiene"


@pytest.mark.asyncio
async def test_research_invalid_json(make_settings) -> None:
    service = _service(make_settings, lambda **kwargs: _response("Sure! Here is an idea: naps."))
    with pytest.raises(ResearchError, match="invalid JSON"):
        await service.generate_research("naps", None)


@pytest.mark.asyncio
async def test_research_without_idea_or_topic(make_settings) -> None:
    service = _service(make_settings, lambda **kwargs: _response('{"idea": ""}'))
    with pytest.raises(ResearchError, match="no idea"):
        await service.generate_research(None, None)
