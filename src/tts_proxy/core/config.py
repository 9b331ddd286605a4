"""
Configuration Management for tts-proxy.

This module provides centralized configuration handling with:
    - Default values (Defaults class)
    - Dataclass-based configuration objects
    - YAML file loading with environment variable overrides
    - Validation with meaningful error messages

Configuration Hierarchy (highest priority first):
    1. Environment variables (OPENAI_API_KEY, TTS_PROXY_QUOTA_ENABLED, etc.)
    2. YAML config file (config/settings.yaml)
    3. Defaults class values

Example settings.yaml:
    upstream:
      model: gpt-4o-mini-tts
      timeout_s: 60
      max_retries: 2

    rate_limit:
      ip_max_requests: 10
      ip_window_s: 60

    quota:
      enabled: true

    logging:
      level: 2  # NORMAL
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List
import os
import yaml


class ConfigValidationError(Exception):
    """Raised when a configuration value is outside acceptable bounds."""
    pass


_TRUE_VALUES = {"1", "true", "yes", "on"}


def _env_flag(name: str) -> bool | None:
    value = os.getenv(name)
    if value is None:
        return None
    return value.strip().lower() in _TRUE_VALUES


class Defaults:
    """
    Centralized default configuration values.

    Sections:
        - Upstream: Speech provider endpoint and retry policy
        - Rate limiting: Fixed-window limits per identity class
        - Quota: Monthly character budgets per tier
        - Identity: Anonymous user cookie
        - Logging: Log level and formatting
    """

    # ─────────────────────────────────────────────────────────────────────────
    # Upstream Provider
    # ─────────────────────────────────────────────────────────────────────────
    UPSTREAM_API_URL = "https://api.openai.com/v1/audio/speech"
    UPSTREAM_MODEL = "gpt-4o-mini-tts"
    UPSTREAM_TIMEOUT_S = 60.0           # Whole-request timeout for one attempt
    UPSTREAM_MAX_RETRIES = 2            # Retries after the first attempt
    UPSTREAM_RETRY_BASE_DELAY_S = 1.0   # delay = base * attempt
    UPSTREAM_HEALTH_TIMEOUT_S = 10.0

    # ─────────────────────────────────────────────────────────────────────────
    # Rate Limiting
    # ─────────────────────────────────────────────────────────────────────────
    RATE_LIMIT_IP_MAX = 10              # Requests per window per address
    RATE_LIMIT_IP_WINDOW_S = 60.0
    RATE_LIMIT_USER_MAX = 50            # Requests per window per user token
    RATE_LIMIT_USER_WINDOW_S = 60.0
    RATE_LIMIT_SWEEP_INTERVAL_S = 60.0

    # ─────────────────────────────────────────────────────────────────────────
    # Quota
    # ─────────────────────────────────────────────────────────────────────────
    QUOTA_ENABLED = False
    QUOTA_SWEEP_INTERVAL_S = 3600.0
    QUOTA_WARNING_THRESHOLD = 0.8
    QUOTA_TIER_LIMITS = {
        "FREE": 10_000,
        "BASIC": 100_000,
        "PRO": 500_000,
    }

    # ─────────────────────────────────────────────────────────────────────────
    # Identity
    # ─────────────────────────────────────────────────────────────────────────
    IDENTITY_COOKIE_NAME = "tts_user_id"
    IDENTITY_COOKIE_MAX_AGE_S = 365 * 24 * 60 * 60
    IDENTITY_SECURE_COOKIES = False

    # ─────────────────────────────────────────────────────────────────────────
    # Logging
    # ─────────────────────────────────────────────────────────────────────────
    LOGGING_LEVEL = 2                   # 1=MINIMAL, 2=NORMAL, 3=VERBOSE, 4=DEBUG


@dataclass
class UpstreamConfig:
    """Speech provider endpoint, credentials and retry policy."""
    api_url: str = Defaults.UPSTREAM_API_URL
    model: str = Defaults.UPSTREAM_MODEL
    api_key: str | None = None
    timeout_s: float = Defaults.UPSTREAM_TIMEOUT_S
    max_retries: int = Defaults.UPSTREAM_MAX_RETRIES
    retry_base_delay_s: float = Defaults.UPSTREAM_RETRY_BASE_DELAY_S
    health_timeout_s: float = Defaults.UPSTREAM_HEALTH_TIMEOUT_S

    def __repr__(self) -> str:
        key = "set" if self.api_key else None
        return (
            f"UpstreamConfig(api_url={self.api_url!r}, model={self.model!r}, "
            f"api_key={key!r}, timeout_s={self.timeout_s}, max_retries={self.max_retries})"
        )


@dataclass
class RateLimitConfig:
    """Fixed-window limits for the address and user identity classes."""
    ip_max_requests: int = Defaults.RATE_LIMIT_IP_MAX
    ip_window_s: float = Defaults.RATE_LIMIT_IP_WINDOW_S
    user_max_requests: int = Defaults.RATE_LIMIT_USER_MAX
    user_window_s: float = Defaults.RATE_LIMIT_USER_WINDOW_S
    sweep_interval_s: float = Defaults.RATE_LIMIT_SWEEP_INTERVAL_S


@dataclass
class QuotaConfig:
    """
    Monthly character quota configuration.

    When ``enabled`` is False the tracker accepts every request and records
    nothing.
    """
    enabled: bool = Defaults.QUOTA_ENABLED
    sweep_interval_s: float = Defaults.QUOTA_SWEEP_INTERVAL_S
    warning_threshold: float = Defaults.QUOTA_WARNING_THRESHOLD
    tier_limits: Dict[str, int] = field(default_factory=lambda: dict(Defaults.QUOTA_TIER_LIMITS))


@dataclass
class IdentityConfig:
    """Anonymous user cookie settings."""
    cookie_name: str = Defaults.IDENTITY_COOKIE_NAME
    cookie_max_age_s: int = Defaults.IDENTITY_COOKIE_MAX_AGE_S
    secure_cookies: bool = Defaults.IDENTITY_SECURE_COOKIES


@dataclass
class LoggingConfig:
    """
    Logging configuration.

    Log levels:
        1 = MINIMAL: Startup, shutdown, critical errors only
        2 = NORMAL: Request lifecycle (default)
        3 = VERBOSE: Pipeline state transitions, retry timing
        4 = DEBUG: Internal state
    """
    level: int = Defaults.LOGGING_LEVEL


@dataclass
class ProxyConfig:
    """
    Validated configuration for the speech pipeline.

    Usage:
        settings = load_settings("config/settings.yaml")
        config = ProxyConfig.from_settings(settings)
        print(config.rate_limit.ip_max_requests)
    """
    upstream: UpstreamConfig = field(default_factory=UpstreamConfig)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    quota: QuotaConfig = field(default_factory=QuotaConfig)
    identity: IdentityConfig = field(default_factory=IdentityConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_settings(cls, settings: "Settings") -> "ProxyConfig":
        """
        Create ProxyConfig from Settings with validation.

        Args:
            settings: Raw Settings object loaded from YAML.

        Returns:
            Validated ProxyConfig instance.

        Raises:
            ConfigValidationError: If any value fails validation.
        """
        raw = settings.raw

        # ─────────────────────────────────────────────────────────────────────
        # Upstream provider
        # ─────────────────────────────────────────────────────────────────────
        upstream_raw = raw.get("upstream", {}) or {}
        upstream = UpstreamConfig(
            api_url=str(os.getenv("TTS_PROXY_API_URL") or upstream_raw.get("api_url", Defaults.UPSTREAM_API_URL)),
            model=str(os.getenv("TTS_PROXY_MODEL") or upstream_raw.get("model", Defaults.UPSTREAM_MODEL)),
            api_key=os.getenv("OPENAI_API_KEY") or None,
            timeout_s=float(upstream_raw.get("timeout_s", Defaults.UPSTREAM_TIMEOUT_S)),
            max_retries=int(upstream_raw.get("max_retries", Defaults.UPSTREAM_MAX_RETRIES)),
            retry_base_delay_s=float(upstream_raw.get("retry_base_delay_s", Defaults.UPSTREAM_RETRY_BASE_DELAY_S)),
            health_timeout_s=float(upstream_raw.get("health_timeout_s", Defaults.UPSTREAM_HEALTH_TIMEOUT_S)),
        )
        cls._validate_positive("upstream.timeout_s", upstream.timeout_s)
        cls._validate_non_negative("upstream.max_retries", upstream.max_retries)
        cls._validate_non_negative("upstream.retry_base_delay_s", upstream.retry_base_delay_s)
        cls._validate_positive("upstream.health_timeout_s", upstream.health_timeout_s)

        # ─────────────────────────────────────────────────────────────────────
        # Rate limiting
        # ─────────────────────────────────────────────────────────────────────
        rate_raw = raw.get("rate_limit", {}) or {}
        rate_limit = RateLimitConfig(
            ip_max_requests=int(rate_raw.get("ip_max_requests", Defaults.RATE_LIMIT_IP_MAX)),
            ip_window_s=float(rate_raw.get("ip_window_s", Defaults.RATE_LIMIT_IP_WINDOW_S)),
            user_max_requests=int(rate_raw.get("user_max_requests", Defaults.RATE_LIMIT_USER_MAX)),
            user_window_s=float(rate_raw.get("user_window_s", Defaults.RATE_LIMIT_USER_WINDOW_S)),
            sweep_interval_s=float(rate_raw.get("sweep_interval_s", Defaults.RATE_LIMIT_SWEEP_INTERVAL_S)),
        )
        cls._validate_positive("rate_limit.ip_max_requests", rate_limit.ip_max_requests)
        cls._validate_positive("rate_limit.ip_window_s", rate_limit.ip_window_s)
        cls._validate_positive("rate_limit.user_max_requests", rate_limit.user_max_requests)
        cls._validate_positive("rate_limit.user_window_s", rate_limit.user_window_s)
        # Sweeping faster than a window would only churn live entries
        longest_window = max(rate_limit.ip_window_s, rate_limit.user_window_s)
        if rate_limit.sweep_interval_s < longest_window:
            raise ConfigValidationError(
                f"rate_limit.sweep_interval_s must be >= {longest_window}, got {rate_limit.sweep_interval_s}"
            )

        # ─────────────────────────────────────────────────────────────────────
        # Quota
        # ─────────────────────────────────────────────────────────────────────
        quota_raw = raw.get("quota", {}) or {}
        quota_enabled = _env_flag("TTS_PROXY_QUOTA_ENABLED")
        tier_limits = dict(Defaults.QUOTA_TIER_LIMITS)
        for tier, limit in (quota_raw.get("tier_limits", {}) or {}).items():
            tier_limits[str(tier).upper()] = int(limit)
        quota = QuotaConfig(
            enabled=quota_enabled if quota_enabled is not None
                else bool(quota_raw.get("enabled", Defaults.QUOTA_ENABLED)),
            sweep_interval_s=float(quota_raw.get("sweep_interval_s", Defaults.QUOTA_SWEEP_INTERVAL_S)),
            warning_threshold=float(quota_raw.get("warning_threshold", Defaults.QUOTA_WARNING_THRESHOLD)),
            tier_limits=tier_limits,
        )
        cls._validate_positive("quota.sweep_interval_s", quota.sweep_interval_s)
        cls._validate_range("quota.warning_threshold", quota.warning_threshold, 0.0, 1.0)
        for tier, limit in quota.tier_limits.items():
            cls._validate_positive(f"quota.tier_limits.{tier}", limit)

        # ─────────────────────────────────────────────────────────────────────
        # Identity
        # ─────────────────────────────────────────────────────────────────────
        identity_raw = raw.get("identity", {}) or {}
        secure = _env_flag("TTS_PROXY_SECURE_COOKIES")
        identity = IdentityConfig(
            cookie_name=str(identity_raw.get("cookie_name", Defaults.IDENTITY_COOKIE_NAME)),
            cookie_max_age_s=int(identity_raw.get("cookie_max_age_s", Defaults.IDENTITY_COOKIE_MAX_AGE_S)),
            secure_cookies=secure if secure is not None
                else bool(identity_raw.get("secure_cookies", Defaults.IDENTITY_SECURE_COOKIES)),
        )
        cls._validate_positive("identity.cookie_max_age_s", identity.cookie_max_age_s)

        # ─────────────────────────────────────────────────────────────────────
        # Logging
        # ─────────────────────────────────────────────────────────────────────
        logging_raw = raw.get("logging", {}) or {}
        log_level_raw = logging_raw.get("level", Defaults.LOGGING_LEVEL)
        if isinstance(log_level_raw, str):
            level_map = {
                "MINIMAL": 1, "1": 1,
                "NORMAL": 2, "INFO": 2, "2": 2,
                "VERBOSE": 3, "3": 3,
                "DEBUG": 4, "TRACE": 4, "4": 4,
            }
            log_level = level_map.get(log_level_raw.upper(), Defaults.LOGGING_LEVEL)
        else:
            log_level = int(log_level_raw)
        logging_cfg = LoggingConfig(level=log_level)
        cls._validate_range("logging.level", logging_cfg.level, 1, 4)

        return cls(
            upstream=upstream,
            rate_limit=rate_limit,
            quota=quota,
            identity=identity,
            logging=logging_cfg,
        )

    @staticmethod
    def _validate_positive(name: str, value: int | float) -> None:
        """Validate that a value is positive (> 0)."""
        if value <= 0:
            raise ConfigValidationError(f"{name} must be positive, got {value}")

    @staticmethod
    def _validate_non_negative(name: str, value: int | float) -> None:
        """Validate that a value is non-negative (>= 0)."""
        if value < 0:
            raise ConfigValidationError(f"{name} must be non-negative, got {value}")

    @staticmethod
    def _validate_range(name: str, value: int | float, min_val: int | float, max_val: int | float) -> None:
        """Validate that a value is within a range [min_val, max_val]."""
        if not (min_val <= value <= max_val):
            raise ConfigValidationError(f"{name} must be between {min_val} and {max_val}, got {value}")


@dataclass(frozen=True)
class Settings:
    """
    Immutable settings container loaded from YAML.

    Use get_proxy_config() to get the validated ProxyConfig.
    """
    raw: Dict[str, Any]

    @property
    def environment(self) -> str:
        """Deployment environment name (development/production)."""
        return str(os.getenv("TTS_PROXY_ENV") or self.raw.get("environment", "development"))

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    def get_proxy_config(self) -> ProxyConfig:
        """
        Get validated ProxyConfig from these settings.

        Raises:
            ConfigValidationError: If validation fails.
        """
        return ProxyConfig.from_settings(self)


def load_settings(path: str = "config/settings.yaml", missing_ok: bool = False) -> Settings:
    """
    Load settings from a YAML configuration file.

    Args:
        path: Path to the YAML configuration file.
        missing_ok: Return empty settings (all defaults) instead of raising
            when the file does not exist.

    Returns:
        Settings object with loaded configuration.

    Raises:
        FileNotFoundError: If the settings file doesn't exist and
            missing_ok is False.
    """
    p = Path(path)
    if not p.exists():
        if missing_ok:
            return Settings(raw={})
        raise FileNotFoundError(f"settings file not found: {p.resolve()}")

    with p.open("r", encoding="utf-8") as f:
        raw: Dict[str, Any] = yaml.safe_load(f) or {}

    return Settings(raw=raw)


def settings_path() -> str:
    """Settings file location, overridable with TTS_PROXY_SETTINGS."""
    return os.getenv("TTS_PROXY_SETTINGS", "config/settings.yaml")


def validate_environment(settings: Settings) -> List[str]:
    """
    Check that the environment carries everything needed to serve traffic.

    Returns:
        List of human-readable problems (empty when the environment is ready).
    """
    problems: List[str] = []
    try:
        config = settings.get_proxy_config()
    except ConfigValidationError as e:
        return [str(e)]

    if not config.upstream.api_key:
        problems.append("OPENAI_API_KEY is required")
    if settings.is_production and not config.identity.secure_cookies:
        problems.append("identity.secure_cookies must be enabled in production")
    return problems


def config_summary(settings: Settings) -> Dict[str, Any]:
    """Loggable summary of the active configuration (no secrets)."""
    config = settings.get_proxy_config()
    rl = config.rate_limit
    return {
        "environment": settings.environment,
        "api_configured": bool(config.upstream.api_key),
        "model": config.upstream.model,
        "rate_limit_ip": f"{rl.ip_max_requests} req/{rl.ip_window_s:g}s",
        "rate_limit_user": f"{rl.user_max_requests} req/{rl.user_window_s:g}s",
        "quota_enabled": config.quota.enabled,
    }
