"""
Command-Line Interface for tts-proxy.

Runs the validation and synthesis path without the HTTP server. Rate limits
and quotas do not apply to local use.

Usage Examples:
    # Synthesize to a file
    tts-proxy --text "Hello there, how are you today?" --voice coral --out hello.mp3

    # Positional text (same as above)
    tts-proxy "Hello there, how are you today?" --voice coral

    # Dry-run: validate and show derived facts, no provider call
    tts-proxy --text "Hello there, how are you today?" --dry-run --json

    # Probe the provider
    tts-proxy --health

    # Check that the environment is ready to serve
    tts-proxy --check-env

Environment Variables:
    OPENAI_API_KEY: Provider credential
    TTS_PROXY_SETTINGS: Settings file path (default config/settings.yaml)
"""

from __future__ import annotations

import argparse
import asyncio
import json
from pathlib import Path
from typing import List, Optional
from uuid import uuid4

from tts_proxy.core.config import config_summary, load_settings, settings_path, validate_environment
from tts_proxy.core.logging import configure_logging, get_logger, info, set_request_id
from tts_proxy.services.errors import AppError
from tts_proxy.services.validators import (
    DEFAULT_FORMAT,
    VALID_FORMATS,
    VALID_VOICES,
    RawSpeechRequest,
    ValidatedRequest,
    validate_and_sanitize,
)
from tts_proxy.upstream.client import SynthesisClient
from tts_proxy.upstream.formats import content_type_for, generate_filename


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="tts-proxy CLI (speech synthesis through the provider)")

    parser.add_argument("text_pos", nargs="?", help="Text to synthesize (positional)")
    parser.add_argument("--text", help="Text to synthesize")

    parser.add_argument("--voice", default="alloy", choices=VALID_VOICES, help="Provider voice")
    parser.add_argument("--format", dest="fmt", choices=VALID_FORMATS, help="Audio format (default mp3)")
    parser.add_argument("--speed", help="Speed multiplier, 0.25-4.0")
    parser.add_argument("--instructions", help="Delivery instructions")
    parser.add_argument("--out", help="Output file (default: generated name in the current directory)")

    parser.add_argument("--dry-run", action="store_true",
                        help="Validate and summarize without calling the provider")
    parser.add_argument("--json", action="store_true",
                        help="Print JSON summary")

    parser.add_argument("--health", action="store_true",
                        help="Probe the speech provider and exit")
    parser.add_argument("--check-env", action="store_true",
                        help="Check configuration and required environment variables")

    return parser.parse_args(argv)


def _summary(validated: ValidatedRequest) -> dict:
    return {
        "characters": validated.character_count,
        "language": validated.language,
        "voice": validated.voice,
        "format": validated.format,
        "speed": validated.speed,
        "instructions": validated.instructions is not None,
        "content_type": content_type_for(validated.format),
    }


def _emit(payload: dict, as_json: bool) -> None:
    if as_json:
        print(json.dumps(payload, ensure_ascii=False))
    else:
        print(payload)


async def _synthesize(client: SynthesisClient, validated: ValidatedRequest, out_path: Path) -> int:
    try:
        result = await client.generate(validated)
        written = 0
        with out_path.open("wb") as f:
            async for chunk in result.audio:
                f.write(chunk)
                written += len(chunk)
        return written
    finally:
        await client.aclose()


async def _health(client: SynthesisClient) -> bool:
    try:
        return await client.health_check()
    finally:
        await client.aclose()


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main CLI entry point.

    Returns:
        Exit code (0 for success, 1 for validation, provider or environment
        failures).
    """
    args = _parse_args(argv)

    configure_logging()
    log = get_logger("tts-proxy.cli")
    set_request_id(str(uuid4())[:12])

    settings = load_settings(settings_path(), missing_ok=True)

    if args.check_env:
        problems = validate_environment(settings)
        payload = {"ok": not problems, "problems": problems}
        if not problems:
            payload["config"] = config_summary(settings)
        _emit(payload, args.json)
        print("ENV_OK" if not problems else "ENV_INVALID")
        return 0 if not problems else 1

    config = settings.get_proxy_config()

    if args.health:
        healthy = asyncio.run(_health(SynthesisClient(config.upstream)))
        _emit({"ok": healthy, "upstream": healthy}, args.json)
        return 0 if healthy else 1

    text = args.text or args.text_pos
    if not text:
        raise SystemExit("Provide --text or a positional text.")

    try:
        validated = validate_and_sanitize(RawSpeechRequest(
            input=text,
            voice=args.voice,
            speed=args.speed,
            format=args.fmt or DEFAULT_FORMAT,
            instructions=args.instructions,
        ))
    except AppError as e:
        _emit({"ok": False, **e.to_dict()}, args.json)
        return 1

    if args.dry_run:
        payload = {"ok": True, "dry_run": True, "request": _summary(validated)}
        if not args.json:
            info(log, "dry_run", chars=validated.character_count, language=validated.language)
        _emit(payload, args.json)
        print("DRY_RUN_OK")
        return 0

    out_path = Path(args.out or generate_filename(validated.voice, validated.format))
    out_path.parent.mkdir(parents=True, exist_ok=True)
    info(log, "synth_start", chars=validated.character_count, out=str(out_path))

    try:
        written = asyncio.run(_synthesize(SynthesisClient(config.upstream), validated, out_path))
    except AppError as e:
        _emit({"ok": False, **e.to_dict()}, args.json)
        return 1

    _emit({"ok": True, "dry_run": False, "out": str(out_path), "bytes": written}, args.json)
    print("CLI_OK")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
