"""
Tests for configuration validation and defaults.

Tests cover:
- Defaults class values
- ProxyConfig.from_settings() - all sections, missing sections use defaults
- ConfigValidationError on invalid values
- String log level coercion ("DEBUG" -> 4)
- Environment overrides
- load_settings() with and without a file
- validate_environment() / config_summary()
"""
import pytest

from tts_proxy.core.config import (
    ConfigValidationError,
    Defaults,
    ProxyConfig,
    Settings,
    load_settings,
    settings_path,
    validate_environment,
    config_summary,
)


class TestDefaults:

    def test_upstream_defaults(self):
        assert Defaults.UPSTREAM_API_URL == "https://api.openai.com/v1/audio/speech"
        assert Defaults.UPSTREAM_MODEL == "gpt-4o-mini-tts"
        assert Defaults.UPSTREAM_MAX_RETRIES == 2
        assert Defaults.UPSTREAM_RETRY_BASE_DELAY_S == 1.0

    def test_rate_limit_defaults(self):
        assert Defaults.RATE_LIMIT_IP_MAX == 10
        assert Defaults.RATE_LIMIT_IP_WINDOW_S == 60.0
        assert Defaults.RATE_LIMIT_USER_MAX == 50
        assert Defaults.RATE_LIMIT_USER_WINDOW_S == 60.0

    def test_quota_defaults(self):
        assert Defaults.QUOTA_ENABLED is False
        assert Defaults.QUOTA_SWEEP_INTERVAL_S == 3600.0
        assert Defaults.QUOTA_TIER_LIMITS == {"FREE": 10_000, "BASIC": 100_000, "PRO": 500_000}

    def test_identity_defaults(self):
        assert Defaults.IDENTITY_COOKIE_NAME == "tts_user_id"
        assert Defaults.IDENTITY_COOKIE_MAX_AGE_S == 31_536_000


class TestFromSettings:

    def test_empty_settings_use_defaults(self):
        config = ProxyConfig.from_settings(Settings(raw={}))
        assert config.upstream.model == Defaults.UPSTREAM_MODEL
        assert config.upstream.api_key is None
        assert config.rate_limit.ip_max_requests == 10
        assert config.quota.enabled is False
        assert config.quota.tier_limits["PRO"] == 500_000
        assert config.identity.cookie_name == "tts_user_id"
        assert config.logging.level == 2

    def test_sections_are_read(self):
        config = ProxyConfig.from_settings(Settings(raw={
            "upstream": {"timeout_s": 30, "max_retries": 4},
            "rate_limit": {"ip_max_requests": 5, "ip_window_s": 30, "sweep_interval_s": 120},
            "quota": {"enabled": True, "tier_limits": {"free": 2000}},
            "identity": {"secure_cookies": True},
        }))
        assert config.upstream.timeout_s == 30.0
        assert config.upstream.max_retries == 4
        assert config.rate_limit.ip_max_requests == 5
        assert config.rate_limit.ip_window_s == 30.0
        assert config.quota.enabled is True
        assert config.quota.tier_limits["FREE"] == 2000
        assert config.quota.tier_limits["BASIC"] == 100_000
        assert config.identity.secure_cookies is True

    def test_null_sections_use_defaults(self):
        config = ProxyConfig.from_settings(Settings(raw={"upstream": None, "quota": None}))
        assert config.upstream.max_retries == 2
        assert config.quota.enabled is False

    @pytest.mark.parametrize("raw", [
        {"upstream": {"timeout_s": 0}},
        {"upstream": {"max_retries": -1}},
        {"rate_limit": {"ip_max_requests": 0}},
        {"rate_limit": {"user_window_s": -5}},
        {"rate_limit": {"sweep_interval_s": 10}},
        {"quota": {"warning_threshold": 1.5}},
        {"quota": {"tier_limits": {"FREE": 0}}},
        {"identity": {"cookie_max_age_s": 0}},
        {"logging": {"level": 7}},
    ])
    def test_invalid_values_rejected(self, raw):
        with pytest.raises(ConfigValidationError):
            ProxyConfig.from_settings(Settings(raw=raw))

    @pytest.mark.parametrize("name, level", [("DEBUG", 4), ("verbose", 3), ("INFO", 2), ("minimal", 1)])
    def test_string_log_levels(self, name, level):
        config = ProxyConfig.from_settings(Settings(raw={"logging": {"level": name}}))
        assert config.logging.level == level


class TestEnvironmentOverrides:

    def test_api_key_from_env(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-from-env")
        config = ProxyConfig.from_settings(Settings(raw={}))
        assert config.upstream.api_key == "sk-from-env"

    def test_api_key_not_in_repr(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-from-env")
        config = ProxyConfig.from_settings(Settings(raw={}))
        assert "sk-from-env" not in repr(config.upstream)

    def test_env_beats_file(self, monkeypatch):
        monkeypatch.setenv("TTS_PROXY_MODEL", "tts-1")
        monkeypatch.setenv("TTS_PROXY_QUOTA_ENABLED", "0")
        monkeypatch.setenv("TTS_PROXY_SECURE_COOKIES", "yes")
        config = ProxyConfig.from_settings(Settings(raw={
            "upstream": {"model": "gpt-4o-mini-tts"},
            "quota": {"enabled": True},
        }))
        assert config.upstream.model == "tts-1"
        assert config.quota.enabled is False
        assert config.identity.secure_cookies is True

    def test_environment_name(self, monkeypatch):
        assert Settings(raw={}).environment == "development"
        assert Settings(raw={"environment": "production"}).is_production
        monkeypatch.setenv("TTS_PROXY_ENV", "production")
        assert Settings(raw={}).is_production


class TestLoadSettings:

    def test_loads_yaml(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text("rate_limit:\n  ip_max_requests: 3\n", encoding="utf-8")
        settings = load_settings(str(path))
        assert settings.get_proxy_config().rate_limit.ip_max_requests == 3

    def test_empty_file(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text("", encoding="utf-8")
        assert load_settings(str(path)).raw == {}

    def test_missing_file_raises(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_settings(str(tmp_path / "nope.yaml"))

    def test_missing_file_ok(self, tmp_path):
        assert load_settings(str(tmp_path / "nope.yaml"), missing_ok=True).raw == {}

    def test_settings_path_override(self, monkeypatch):
        assert settings_path() == "config/settings.yaml"
        monkeypatch.setenv("TTS_PROXY_SETTINGS", "/etc/tts-proxy.yaml")
        assert settings_path() == "/etc/tts-proxy.yaml"

    def test_shipped_settings_file_is_valid(self):
        from pathlib import Path
        path = Path(__file__).parent.parent / "config" / "settings.yaml"
        config = load_settings(str(path)).get_proxy_config()
        assert config.rate_limit.user_max_requests == 50


class TestValidateEnvironment:

    def test_missing_api_key(self):
        assert validate_environment(Settings(raw={})) == ["OPENAI_API_KEY is required"]

    def test_ready(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-x")
        assert validate_environment(Settings(raw={})) == []

    def test_production_requires_secure_cookies(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-x")
        problems = validate_environment(Settings(raw={"environment": "production"}))
        assert problems == ["identity.secure_cookies must be enabled in production"]

    def test_invalid_config_reported(self):
        problems = validate_environment(Settings(raw={"upstream": {"timeout_s": -1}}))
        assert len(problems) == 1
        assert "timeout_s" in problems[0]

    def test_summary_has_no_secrets(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-secret")
        summary = config_summary(Settings(raw={}))
        assert summary["api_configured"] is True
        assert summary["rate_limit_ip"] == "10 req/60s"
        assert "sk-secret" not in str(summary)
