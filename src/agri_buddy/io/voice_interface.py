"""Voice-based diary interface.

This file stays intentionally thin: it builds the local microphone and speaker
components and delegates the loop to `agri_buddy.voice.voice_session`.
"""

from __future__ import annotations

import asyncio
import os
import shutil
from typing import TYPE_CHECKING

from agri_buddy.app import AppServices, build_orchestrator
from agri_buddy.config import Settings, get_settings
from agri_buddy.io.text_interface import InterviewInterface

if TYPE_CHECKING:
    from agri_buddy.voice.audio_io import AudioIO
    from agri_buddy.voice.stt import STTProvider
    from agri_buddy.voice.tts import TTSProvider
    from agri_buddy.voice.voice_session import VoiceSessionConfig


def _env_flag(name: str, default: bool) -> bool:
    v = os.getenv(name)
    if v is None:
        return default
    return v.strip().lower() in {"1", "true", "yes", "y", "on"}


class VoiceInterface(InterviewInterface):
    def __init__(
        self,
        services: AppServices,
        settings: Settings | None = None,
        *,
        audio: "AudioIO | None" = None,
        stt: "STTProvider | None" = None,
        tts: "TTSProvider | None" = None,
        session_config: "VoiceSessionConfig | None" = None,
    ) -> None:
        settings = settings or get_settings()

        try:
            from agri_buddy.voice.audio_io import AudioIO, AudioIOConfig
            from agri_buddy.voice.stt import STTConfig, WhisperSTT
            from agri_buddy.voice.tts import PiperTTS, TTSConfig
            from agri_buddy.voice.voice_session import (
                VoiceSession,
                VoiceSessionConfig,
                build_capture,
                build_playback,
            )
        except ModuleNotFoundError as e:
            raise RuntimeError(
                "Voice mode dependencies are not installed. Install with: pip install -e '.[voice]'. "
                "Also install `piper` (CLI) and download a Japanese Piper .onnx voice model."
            ) from e

        self._audio = audio or AudioIO(AudioIOConfig())
        self._stt = stt or WhisperSTT(
            STTConfig(
                model_size=os.getenv("AGRI_BUDDY_STT_MODEL", "small"),
                device=os.getenv("AGRI_BUDDY_STT_DEVICE", "cpu"),
            )
        )
        self._tts = tts or PiperTTS(
            TTSConfig(
                piper_bin=os.getenv("AGRI_BUDDY_PIPER_BIN", "piper"),
                model_path=os.getenv("AGRI_BUDDY_PIPER_MODEL", None),
                timeout_s=float(os.getenv("AGRI_BUDDY_PIPER_TIMEOUT_S", "60") or "60"),
            )
        )
        self._config = session_config or VoiceSessionConfig(
            tts_enabled=_env_flag("AGRI_BUDDY_TTS_ENABLED", True),
        )

        capture = build_capture(self._audio, self._stt, settings)
        playback = build_playback(
            self._audio,
            self._tts,
            self._config.artifacts_dir,
            enabled=self._config.tts_enabled,
            settings=settings,
        )
        self._orchestrator = build_orchestrator(services, settings, capture=capture, playback=playback)
        self._session = VoiceSession(orchestrator=self._orchestrator, config=self._config)

    async def run(self) -> None:
        print("\n" + "=" * 60)
        print("あぐりバディ 作業日誌 (音声モード)")
        print("=" * 60 + "\n")

        ok, reason = self._tts.is_available()
        if ok and self._config.tts_enabled:
            piper_path = shutil.which(getattr(getattr(self._tts, "config", None), "piper_bin", "piper"))
            print(f"読み上げ: 有効 (piper='{piper_path}')")
        else:
            print(
                "読み上げ: 無効。AGRI_BUDDY_PIPER_MODEL=/path/to/voice.onnx と "
                f"AGRI_BUDDY_PIPER_BIN を設定してください。理由: {reason}"
            )

        await self._session.run()

    async def send_message(self, message: str) -> None:
        # Voice mode speaks through the playback controller.
        print(message)

    async def receive_input(self) -> str:
        try:
            return await asyncio.to_thread(input, "あなた: ")
        except EOFError:
            return "/quit"
