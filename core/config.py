"""Application configuration with environment-specific profiles.

Supports dev, staging, production and test environments via APP_ENV.
All values can be overridden by environment variables.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache


@dataclass(frozen=True)
class Settings:
    """Immutable application settings resolved from environment."""

    database_url: str
    app_env: str = "dev"
    log_level: str = "INFO"

    # Generation leases
    lease_duration_minutes: int = 30

    # Phase allocation (fractions of total plan weeks)
    taper_ratio: float = 0.10
    peak_ratio: float = 0.15
    base_deload_every: int = 4
    build_deload_every: int = 3
    rolling_block_weeks: tuple[int, ...] = (4, 4, 3, 1)
    event_urgency_weeks: int = 2

    # Dispatch
    max_concurrent_generations: int = 4

    # Remote plan generator
    generator_url: str = "http://localhost:8100/generate-week"
    generator_timeout_seconds: float = 120.0

    # Schedule (UTC)
    scheduler_enabled: bool = False
    weekly_scan_weekday: int = 0
    weekly_scan_hour: int = 5
    daily_scan_hour: int = 6
    lease_sweep_minute: int = 15

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"

    @property
    def is_dev(self) -> bool:
        return self.app_env == "dev"


# -- Environment profiles --

_ENV_PROFILES: dict[str, dict] = {
    "dev": {
        "log_level": "DEBUG",
        "scheduler_enabled": False,
        "max_concurrent_generations": 2,
    },
    "test": {
        "log_level": "WARNING",
        "scheduler_enabled": False,
        "max_concurrent_generations": 2,
    },
    "staging": {
        "log_level": "INFO",
        "scheduler_enabled": True,
        "max_concurrent_generations": 4,
    },
    "production": {
        "log_level": "WARNING",
        "scheduler_enabled": True,
        "max_concurrent_generations": 8,
    },
}


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_weeks(name: str, default: tuple[int, ...]) -> tuple[int, ...]:
    """Parse a comma separated list of four week counts, e.g. ``4,4,3,1``."""
    raw = os.getenv(name)
    if not raw:
        return default
    weeks = tuple(int(part) for part in raw.split(",") if part.strip())
    if len(weeks) != 4 or any(w < 0 for w in weeks) or sum(weeks) == 0:
        raise ValueError(f"{name} must be four non-negative week counts, got {raw!r}")
    return weeks


def get_database_url() -> str:
    """Resolve database URL from the DATABASE_URL env var or a local default."""
    env_url = os.getenv("DATABASE_URL")
    if env_url:
        return env_url
    return "postgresql+psycopg2://localhost:5432/periodization"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Build Settings by merging environment profile with env-var overrides."""
    app_env = os.getenv("APP_ENV", "dev")
    profile = _ENV_PROFILES.get(app_env, _ENV_PROFILES["dev"])

    return Settings(
        database_url=get_database_url(),
        app_env=app_env,
        log_level=os.getenv("LOG_LEVEL", profile.get("log_level", "INFO")),
        lease_duration_minutes=int(os.getenv("LEASE_DURATION_MINUTES", "30")),
        taper_ratio=float(os.getenv("TAPER_RATIO", "0.10")),
        peak_ratio=float(os.getenv("PEAK_RATIO", "0.15")),
        base_deload_every=int(os.getenv("BASE_DELOAD_EVERY", "4")),
        build_deload_every=int(os.getenv("BUILD_DELOAD_EVERY", "3")),
        rolling_block_weeks=_env_weeks("ROLLING_BLOCK_WEEKS", (4, 4, 3, 1)),
        event_urgency_weeks=int(os.getenv("EVENT_URGENCY_WEEKS", "2")),
        max_concurrent_generations=int(
            os.getenv("MAX_CONCURRENT_GENERATIONS", str(profile.get("max_concurrent_generations", 4)))
        ),
        generator_url=os.getenv("GENERATOR_URL", "http://localhost:8100/generate-week"),
        generator_timeout_seconds=float(os.getenv("GENERATOR_TIMEOUT_SECONDS", "120")),
        scheduler_enabled=_env_bool("SCHEDULER_ENABLED", profile.get("scheduler_enabled", False)),
        weekly_scan_weekday=int(os.getenv("WEEKLY_SCAN_WEEKDAY", "0")),
        weekly_scan_hour=int(os.getenv("WEEKLY_SCAN_HOUR", "5")),
        daily_scan_hour=int(os.getenv("DAILY_SCAN_HOUR", "6")),
        lease_sweep_minute=int(os.getenv("LEASE_SWEEP_MINUTE", "15")),
    )
