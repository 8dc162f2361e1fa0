"""Tests for configuration module."""

from __future__ import annotations

import pytest

from core.config import Settings, _ENV_PROFILES, get_database_url, get_settings
from core.services.periodization import PeriodizationConfig


@pytest.fixture(autouse=True)
def _fresh_settings():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def test_settings_dataclass():
    s = Settings(database_url="postgres://localhost/test")
    assert s.database_url == "postgres://localhost/test"
    assert s.app_env == "dev"
    assert s.lease_duration_minutes == 30
    assert s.taper_ratio == 0.10
    assert s.peak_ratio == 0.15
    assert s.max_concurrent_generations == 4


def test_settings_frozen():
    s = Settings(database_url="x")
    try:
        s.database_url = "y"
        assert False, "Should raise"
    except AttributeError:
        pass


def test_settings_is_production():
    s = Settings(database_url="x", app_env="production")
    assert s.is_production is True
    assert s.is_dev is False


def test_settings_is_dev():
    s = Settings(database_url="x", app_env="dev")
    assert s.is_dev is True
    assert s.is_production is False


def test_get_database_url_from_env(monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "postgres://from-env/db")
    assert get_database_url() == "postgres://from-env/db"


def test_get_database_url_default(monkeypatch):
    monkeypatch.delenv("DATABASE_URL", raising=False)
    assert "postgresql" in get_database_url()


def test_get_settings_uses_env(monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "postgres://test/db")
    monkeypatch.setenv("APP_ENV", "production")
    monkeypatch.setenv("LEASE_DURATION_MINUTES", "45")
    monkeypatch.setenv("GENERATOR_URL", "http://gen.internal/week")
    s = get_settings()
    assert s.database_url == "postgres://test/db"
    assert s.app_env == "production"
    assert s.lease_duration_minutes == 45
    assert s.generator_url == "http://gen.internal/week"


def test_env_profiles_exist():
    assert "dev" in _ENV_PROFILES
    assert "staging" in _ENV_PROFILES
    assert "production" in _ENV_PROFILES


def test_dev_profile_debug_logging():
    assert _ENV_PROFILES["dev"]["log_level"] == "DEBUG"


def test_production_profile_runs_scheduler(monkeypatch):
    monkeypatch.setenv("APP_ENV", "production")
    monkeypatch.delenv("SCHEDULER_ENABLED", raising=False)
    monkeypatch.delenv("MAX_CONCURRENT_GENERATIONS", raising=False)
    s = get_settings()
    assert s.scheduler_enabled is True
    assert s.max_concurrent_generations == 8


def test_scheduler_flag_override(monkeypatch):
    monkeypatch.setenv("APP_ENV", "production")
    monkeypatch.setenv("SCHEDULER_ENABLED", "off")
    assert get_settings().scheduler_enabled is False


def test_periodization_config_from_settings():
    cfg = PeriodizationConfig.from_settings(Settings(database_url="x", taper_ratio=0.2, build_deload_every=2))
    assert cfg.taper_ratio == 0.2
    assert cfg.build_deload_every == 2
    assert cfg.base_deload_every == 4
    assert cfg.rolling_block_weeks == (4, 4, 3, 1)


def test_rolling_block_from_env(monkeypatch):
    monkeypatch.setenv("ROLLING_BLOCK_WEEKS", "3, 3, 2, 1")
    assert get_settings().rolling_block_weeks == (3, 3, 2, 1)


@pytest.mark.parametrize("raw", ["4,4,3", "4,4,3,-1", "0,0,0,0"])
def test_rolling_block_rejects_bad_values(monkeypatch, raw):
    monkeypatch.setenv("ROLLING_BLOCK_WEEKS", raw)
    with pytest.raises(ValueError):
        get_settings()
