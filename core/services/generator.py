"""Adapters for the external week generator.

The generator is opaque to the scheduler: user preferences and a
progression context go in, the next week's plan comes out. Every failure
mode is surfaced as ``GeneratorError`` so the orchestrator can fail the lease
and let the next scan retry.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any

import httpx

from core.services.errors import GeneratorError
from core.services.progression import ProgressionContext

logger = logging.getLogger(__name__)

PREFERENCE_DEFAULTS: dict[str, Any] = {
    "primary_goal": "general_fitness",
    "experience_level": "intermediate",
    "training_frequency": "3-4",
    "preferred_session_length": "60",
    "pain_points": [],
}


def normalize_preferences(preferences: dict[str, Any]) -> dict[str, Any]:
    """Fill generator defaults and drop empty optional fields."""
    merged = dict(PREFERENCE_DEFAULTS)
    for key, value in preferences.items():
        if value is None or value == "":
            continue
        merged[key] = value
    return merged


class WeekGenerator(ABC):
    @abstractmethod
    async def generate(self, preferences: dict[str, Any], context: ProgressionContext) -> Any:
        """Return the generated week content, or raise GeneratorError."""


class HttpWeekGenerator(WeekGenerator):
    """Calls a remote generation service over HTTP."""

    def __init__(self, url: str, timeout_seconds: float = 120.0, client: httpx.AsyncClient | None = None):
        self.url = url
        self.timeout_seconds = timeout_seconds
        self._client = client

    async def _post(self, client: httpx.AsyncClient, body: dict[str, Any]) -> httpx.Response:
        return await client.post(self.url, json=body, timeout=self.timeout_seconds)

    async def generate(self, preferences: dict[str, Any], context: ProgressionContext) -> Any:
        body = {
            "preferences": normalize_preferences(preferences),
            "periodization_context": context.to_payload(),
        }
        try:
            if self._client is not None:
                resp = await self._post(self._client, body)
            else:
                async with httpx.AsyncClient() as client:
                    resp = await self._post(client, body)
            resp.raise_for_status()
            data = resp.json()
        except httpx.TimeoutException as exc:
            raise GeneratorError(f"Generator timed out after {self.timeout_seconds}s") from exc
        except httpx.HTTPStatusError as exc:
            raise GeneratorError(f"Generator returned HTTP {exc.response.status_code}") from exc
        except httpx.HTTPError as exc:
            raise GeneratorError(f"Generator request failed: {exc}") from exc
        except ValueError as exc:
            raise GeneratorError("Generator returned invalid JSON") from exc

        weekly_plan = data.get("weekly_plan") if isinstance(data, dict) else None
        if not weekly_plan:
            raise GeneratorError("Generator failed to produce a valid plan")
        logger.debug("Generator returned week %s", context.target_week)
        return weekly_plan
