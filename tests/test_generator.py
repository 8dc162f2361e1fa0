"""Tests for the HTTP week generator adapter."""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from conftest import sample_week

from core.services.errors import GeneratorError
from core.services.generator import HttpWeekGenerator, normalize_preferences
from core.services.periodization import Phase
from core.services.progression import build_progression_context

URL = "http://generator.test/generate-week"


def _context():
    return build_progression_context(None, Phase.BUILD, True, False, 5, 12, 7)


def _generate(handler):
    async def run():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await HttpWeekGenerator(URL, 5.0, client=client).generate({"primary_goal": "strength"}, _context())

    return asyncio.run(run())


def test_posts_preferences_and_context():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"weekly_plan": sample_week("Front Squat")})

    assert _generate(handler) == sample_week("Front Squat")
    assert seen["url"] == URL
    assert seen["body"]["preferences"]["primary_goal"] == "strength"
    assert seen["body"]["preferences"]["experience_level"] == "intermediate"
    assert seen["body"]["periodization_context"]["target_week"] == 5
    assert seen["body"]["periodization_context"]["phase_changed"] is True


@pytest.mark.parametrize(
    "response, message",
    [
        (httpx.Response(503, text="busy"), "HTTP 503"),
        (httpx.Response(200, text="not json"), "invalid JSON"),
        (httpx.Response(200, json={"weekly_plan": []}), "valid plan"),
        (httpx.Response(200, json=["no", "plan"]), "valid plan"),
    ],
)
def test_bad_responses_raise_generator_error(response, message):
    with pytest.raises(GeneratorError) as exc:
        _generate(lambda request: response)
    assert message in exc.value.reason


def test_timeout_raises_generator_error():
    def handler(request):
        raise httpx.ReadTimeout("too slow", request=request)

    with pytest.raises(GeneratorError) as exc:
        _generate(handler)
    assert "timed out" in exc.value.reason


def test_connection_failure_raises_generator_error():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(GeneratorError) as exc:
        _generate(handler)
    assert "request failed" in exc.value.reason


def test_normalize_preferences_fills_defaults_and_drops_blanks():
    merged = normalize_preferences({"primary_goal": "hypertrophy", "experience_level": "", "pain_points": None})
    assert merged["primary_goal"] == "hypertrophy"
    assert merged["experience_level"] == "intermediate"
    assert merged["pain_points"] == []
