"""Tests for the numeric-level logging system."""
from __future__ import annotations

import io
import json
import logging

import pytest


class TestLogLevelEnum:

    def test_level_enum_values(self):
        from tts_proxy.core.logging import LogLevel

        assert LogLevel.MINIMAL == 1
        assert LogLevel.NORMAL == 2
        assert LogLevel.VERBOSE == 3
        assert LogLevel.DEBUG == 4


class TestLevelCoercion:

    def test_level_from_int_and_names(self):
        from tts_proxy.core.logging import LogLevel, coerce_level

        assert coerce_level(3) == LogLevel.VERBOSE
        assert coerce_level("debug") == LogLevel.DEBUG
        assert coerce_level("4") == LogLevel.DEBUG
        assert coerce_level("INFO") == LogLevel.NORMAL
        assert coerce_level("WARNING") == LogLevel.MINIMAL

    def test_python_levels_fold_onto_scale(self):
        from tts_proxy.core.logging import LogLevel, coerce_level

        assert coerce_level(logging.ERROR) == LogLevel.MINIMAL
        assert coerce_level(logging.INFO) == LogLevel.NORMAL
        assert coerce_level(logging.DEBUG) == LogLevel.DEBUG

    def test_invalid_level_defaults_to_normal(self):
        from tts_proxy.core.logging import LogLevel, coerce_level

        assert coerce_level("invalid") == LogLevel.NORMAL
        assert coerce_level(None) == LogLevel.NORMAL


class TestRedaction:

    def test_secret_shaped_keys_are_masked(self):
        from tts_proxy.core.logging import REDACTED, redact_fields

        clean = redact_fields({
            "api_key": "sk-123",
            "Authorization": "Bearer sk-123",
            "client_secret": "s",
            "password": "p",
            "refresh_token": "t",
            "chars": 42,
        })
        assert clean == {
            "api_key": REDACTED,
            "Authorization": REDACTED,
            "client_secret": REDACTED,
            "password": REDACTED,
            "refresh_token": REDACTED,
            "chars": 42,
        }

    def test_nested_fields(self):
        from tts_proxy.core.logging import REDACTED, redact_fields

        clean = redact_fields({"headers": {"authorization": "Bearer x", "accept": "audio/mpeg"}})
        assert clean == {"headers": {"authorization": REDACTED, "accept": "audio/mpeg"}}

    def test_input_not_mutated(self):
        from tts_proxy.core.logging import redact_fields

        fields = {"api_key": "sk-123"}
        redact_fields(fields)
        assert fields == {"api_key": "sk-123"}


@pytest.fixture
def captured():
    """Attach a JSONL formatter to an in-memory stream."""
    from tts_proxy.core.logging import JsonlFormatter, configure_logging

    configure_logging()
    stream = io.StringIO()
    handler = logging.StreamHandler(stream)
    handler.setLevel(1)
    handler.setFormatter(JsonlFormatter())
    logger = logging.getLogger("tts-proxy.test")
    logger.addHandler(handler)
    yield logger, stream
    logger.removeHandler(handler)


def _lines(stream):
    return [json.loads(line) for line in stream.getvalue().splitlines() if line.strip()]


class TestHelpers:

    def test_jsonl_record_shape(self, captured):
        from tts_proxy.core.logging import info, set_request_id

        logger, stream = captured
        set_request_id("abc123def456")
        info(logger, "generate_ok", chars=37, seconds=0.5, api_key="sk-live")

        record = _lines(stream)[-1]
        assert record["message"] == "generate_ok"
        assert record["tag"] == "INFO"
        assert record["level"] == 2
        assert record["request_id"] == "abc123def456"
        assert record["seconds"] == 0.5
        assert record["extra"] == {"chars": 37, "api_key": "[REDACTED]"}

    def test_level_gate(self, captured):
        from tts_proxy.core.logging import LogLevel, debug, get_level, set_level, verbose

        logger, stream = captured
        previous = get_level()
        try:
            set_level(LogLevel.NORMAL)
            verbose(logger, "hidden_verbose")
            debug(logger, "hidden_debug")
            assert _lines(stream) == []

            set_level(LogLevel.DEBUG)
            debug(logger, "shown_debug")
            assert _lines(stream)[-1]["message"] == "shown_debug"
        finally:
            set_level(previous)

    def test_error_with_exception(self, captured):
        from tts_proxy.core.logging import error

        logger, stream = captured
        try:
            raise ValueError("boom")
        except ValueError:
            error(logger, "crashed", exc_info=True, endpoint="/api/generate")

        record = _lines(stream)[-1]
        assert record["tag"] == "ERROR"
        assert record["level"] == 1
        assert "ValueError: boom" in record["exc"]
        assert record["extra"] == {"endpoint": "/api/generate"}


class TestConsoleFormatter:

    def test_plain_line_without_colors(self, monkeypatch):
        from tts_proxy.core.logging import ColoredConsoleFormatter, colors

        monkeypatch.setattr(colors, "USE_COLORS", False)
        record = logging.LogRecord("tts-proxy", logging.WARNING, __file__, 1, "upstream_retry", None, None)
        record.tag = "WARN"
        record.request_id = "rid000000001"
        record.extra_data = {"attempt": 2, "status": 503}
        record.seconds = None

        line = ColoredConsoleFormatter().format(record)

        assert "[ WARN  ]" in line
        assert "(rid000000001)" in line
        assert "upstream_retry" in line
        assert "attempt=2" in line
        assert "status=503" in line
        assert "\033[" not in line

    def test_no_color_env(self, monkeypatch):
        from tts_proxy.core.logging import supports_color

        monkeypatch.setenv("TTS_PROXY_NO_COLOR", "1")
        assert supports_color() is False


class TestReadLoggingConfig:

    def test_env_overrides(self, monkeypatch, tmp_path):
        from tts_proxy.core.logging import read_logging_config

        monkeypatch.setenv("TTS_PROXY_SETTINGS", str(tmp_path / "missing.yaml"))
        monkeypatch.setenv("TTS_PROXY_LOG_LEVEL", "3")
        monkeypatch.setenv("TTS_PROXY_LOG_DIR", str(tmp_path))
        monkeypatch.setenv("TTS_PROXY_LOG_ROTATE_BACKUP", "2")

        cfg = read_logging_config()

        assert cfg["level"] == "3"
        assert cfg["log_dir"] == str(tmp_path)
        assert cfg["rotate_backup_count"] == 2

    def test_settings_file_section(self, monkeypatch, tmp_path):
        from tts_proxy.core.logging import read_logging_config

        path = tmp_path / "settings.yaml"
        path.write_text("logging:\n  level: 4\n  jsonl_file: x.jsonl\n", encoding="utf-8")
        monkeypatch.setenv("TTS_PROXY_SETTINGS", str(path))

        cfg = read_logging_config()

        assert cfg["level"] == 4
        assert cfg["jsonl_file"] == "x.jsonl"
