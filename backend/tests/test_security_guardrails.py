import pytest

from core import config as config_module
from core.security import create_access_token, decode_access_token, has_permission


def _reset_settings_cache():
    config_module.get_settings.cache_clear()


@pytest.fixture(autouse=True)
def _restore_settings_cache():
    yield
    _reset_settings_cache()


def test_non_local_debug_mode_is_blocked(monkeypatch):
    monkeypatch.setenv("APP_ENV", "production")
    monkeypatch.setenv("DEBUG", "true")
    monkeypatch.setenv("JWT_SECRET", "real-secret")
    _reset_settings_cache()

    with pytest.raises(ValueError, match="debug=true"):
        config_module.get_settings()


def test_non_local_default_secrets_are_blocked(monkeypatch):
    monkeypatch.setenv("APP_ENV", "staging")
    monkeypatch.setenv("DEBUG", "false")
    monkeypatch.setenv("JWT_SECRET", config_module.DEFAULT_JWT_SECRET)
    _reset_settings_cache()

    with pytest.raises(ValueError, match="default JWT secret"):
        config_module.get_settings()


def test_local_allows_dev_defaults(monkeypatch):
    monkeypatch.setenv("APP_ENV", "local")
    monkeypatch.setenv("DEBUG", "false")
    monkeypatch.setenv("JWT_SECRET", config_module.DEFAULT_JWT_SECRET)
    _reset_settings_cache()

    settings = config_module.get_settings()
    assert settings.app_env == "local"


def test_band_settings_from_env(monkeypatch):
    monkeypatch.setenv("APP_ENV", "test")
    monkeypatch.setenv("WATCH_BAND_RATIO", "1.5")
    monkeypatch.setenv("MINIMUM_ORDER_SIZE", "24")
    _reset_settings_cache()

    settings = config_module.get_settings()
    assert settings.watch_band_ratio == 1.5
    assert settings.minimum_order_size == 24


def test_token_round_trip_carries_permissions():
    token = create_access_token({"sub": "buyer", "permissions": ["alerts:write"]})

    payload = decode_access_token(token)

    assert payload["sub"] == "buyer"
    assert has_permission(payload, "alerts:write")
    assert not has_permission(payload, "purchasing:write")


def test_tampered_token_is_rejected():
    token = create_access_token({"sub": "buyer"})
    assert decode_access_token(token[:-2] + "xx") is None


def test_wildcard_permission():
    assert has_permission({"permissions": ["*"]}, "purchasing:write")
    assert not has_permission({}, "inventory:write")
