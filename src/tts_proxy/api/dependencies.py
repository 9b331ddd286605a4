"""
FastAPI Dependency Injection Providers.

Dependency chain:
    get_settings() -> get_config() -> get_speech_pipeline()

All three are process-wide singletons. Tests replace the pipeline with
``app.dependency_overrides[get_speech_pipeline]``.

Lifecycle:
    1. Application startup (main.py) calls start_pipeline(), which creates
       the pipeline and starts its background sweeps
    2. Each request receives the same SpeechPipeline via Depends()
    3. Shutdown calls stop_pipeline(), closing the provider client
"""
from __future__ import annotations

from functools import lru_cache

from tts_proxy.core.config import ProxyConfig, Settings, load_settings, settings_path
from tts_proxy.services.pipeline import SpeechPipeline, get_pipeline, reset_pipeline


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Load and cache application settings.

    The file comes from TTS_PROXY_SETTINGS (default config/settings.yaml);
    a missing file means all defaults.
    """
    return load_settings(settings_path(), missing_ok=True)


@lru_cache(maxsize=1)
def get_config() -> ProxyConfig:
    """Validated configuration; raises ConfigValidationError on bad values."""
    return get_settings().get_proxy_config()


def get_speech_pipeline() -> SpeechPipeline:
    return get_pipeline(get_config())


def start_pipeline() -> None:
    get_speech_pipeline().start()


async def stop_pipeline() -> None:
    await get_speech_pipeline().aclose()
    reset_pipeline()
