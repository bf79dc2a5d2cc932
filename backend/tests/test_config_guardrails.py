import pytest

from core import config as config_module


def _reset_settings_cache():
    config_module.get_settings.cache_clear()


@pytest.fixture(autouse=True)
def _fresh_settings():
    _reset_settings_cache()
    yield
    _reset_settings_cache()


def test_non_local_debug_mode_is_blocked(monkeypatch):
    monkeypatch.setenv("APP_ENV", "production")
    monkeypatch.setenv("DEBUG", "true")

    with pytest.raises(ValueError, match="debug=true"):
        config_module.get_settings()


def test_non_positive_rate_limit_is_blocked(monkeypatch):
    monkeypatch.setenv("APP_ENV", "local")
    monkeypatch.setenv("RATE_LIMIT_MAX_REQUESTS", "0")

    with pytest.raises(ValueError, match="Rate limit"):
        config_module.get_settings()


def test_local_allows_debug(monkeypatch):
    monkeypatch.setenv("APP_ENV", "local")
    monkeypatch.setenv("DEBUG", "true")

    settings = config_module.get_settings()
    assert settings.app_env == "local"
    assert settings.debug is True


def test_performance_settings_from_env(monkeypatch):
    monkeypatch.setenv("APP_ENV", "test")
    monkeypatch.setenv("RATE_LIMIT_WINDOW_MS", "1000")
    monkeypatch.setenv("INVENTORY_CACHE_TTL_SECONDS", "30")
    monkeypatch.setenv("FRAUD_LOCAL_TIMEZONE", "America/New_York")

    settings = config_module.get_settings()
    assert settings.rate_limit_window_ms == 1000
    assert settings.inventory_cache_ttl_seconds == 30
    assert settings.fraud_local_timezone == "America/New_York"
