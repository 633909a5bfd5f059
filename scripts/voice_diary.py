#!/usr/bin/env python

import argparse
import asyncio
import logging
import os

from agri_buddy.app import build_orchestrator, build_services
from agri_buddy.config import get_settings
from agri_buddy.voice.audio_io import AudioIO, AudioIOConfig
from agri_buddy.voice.stt import STTConfig, WhisperSTT
from agri_buddy.voice.tts import PiperTTS, TTSConfig
from agri_buddy.voice.voice_session import VoiceSession, VoiceSessionConfig, build_capture, build_playback


def _flag(v: str) -> bool:
    return (v or "").strip().lower() in {"1", "true", "yes", "y", "on"}


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Record the farm diary by voice")

    p.add_argument("--artifacts-dir", default="data/sessions", help="Where to store session artifacts")
    p.add_argument("--sample-rate", type=int, default=16000)
    p.add_argument("--location", default=None, help="Greenhouse to record against (default: settings)")

    p.add_argument(
        "--tts-enabled",
        default=os.getenv("AGRI_BUDDY_TTS_ENABLED", "true"),
        help="Speak questions aloud (default: AGRI_BUDDY_TTS_ENABLED or true)",
    )

    # STT
    p.add_argument(
        "--stt-model",
        default=os.getenv("AGRI_BUDDY_STT_MODEL", "small"),
        help="faster-whisper model size (default: AGRI_BUDDY_STT_MODEL or 'small')",
    )
    p.add_argument(
        "--stt-device",
        default=os.getenv("AGRI_BUDDY_STT_DEVICE", "cpu"),
        choices=["cpu", "cuda", "auto"],
        help="STT device (default: AGRI_BUDDY_STT_DEVICE or 'cpu')",
    )

    # TTS
    p.add_argument(
        "--piper-bin",
        default=os.getenv("AGRI_BUDDY_PIPER_BIN", "piper"),
        help="Path/name of Piper TTS binary (default: AGRI_BUDDY_PIPER_BIN or 'piper')",
    )
    p.add_argument(
        "--piper-model",
        default=os.getenv("AGRI_BUDDY_PIPER_MODEL", None),
        help="Path to Piper .onnx model (default: AGRI_BUDDY_PIPER_MODEL)",
    )
    p.add_argument(
        "--piper-timeout",
        type=float,
        default=float(os.getenv("AGRI_BUDDY_PIPER_TIMEOUT_S", "60") or "60"),
        help="Timeout (seconds) per Piper synthesis chunk (default: AGRI_BUDDY_PIPER_TIMEOUT_S or 60)",
    )

    return p


async def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)

    settings = get_settings()
    if args.location:
        settings = settings.model_copy(update={"default_location": args.location})
    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    audio = AudioIO(AudioIOConfig(sample_rate=args.sample_rate))
    stt = WhisperSTT(STTConfig(model_size=args.stt_model, device=args.stt_device))
    # Prefer an explicit per-chunk timeout to avoid indefinite hangs.
    tts = PiperTTS(TTSConfig(piper_bin=args.piper_bin, model_path=args.piper_model, timeout_s=args.piper_timeout))

    config = VoiceSessionConfig(artifacts_dir=args.artifacts_dir, tts_enabled=_flag(args.tts_enabled))
    services = await build_services(settings)
    try:
        orchestrator = build_orchestrator(
            services,
            settings,
            capture=build_capture(audio, stt, settings),
            playback=build_playback(audio, tts, config.artifacts_dir, enabled=config.tts_enabled, settings=settings),
        )
        await VoiceSession(orchestrator=orchestrator, config=config).run()
    finally:
        await services.close()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        raise SystemExit(0)
