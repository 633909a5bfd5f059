"""Voice session loop (glue layer).

This module wires:
mic -> STT -> capture manager -> orchestrator -> playback -> TTS -> speaker

It intentionally does NOT re-implement interview logic; the console stays
available for commands (skip, save, photo, ...) while capture runs.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Awaitable, Callable

from agri_buddy.config import Settings
from agri_buddy.io.commands import HELP_TEXT, handle_line, render_context
from agri_buddy.orchestrator.interview_orchestrator import InterviewOrchestrator
from agri_buddy.orchestrator.interview_state import InterviewContext
from agri_buddy.orchestrator.schemas import Phase
from agri_buddy.voice.audio_io import AudioIO
from agri_buddy.voice.capture import CaptureConfig, CaptureSessionManager, EngineResource
from agri_buddy.voice.engines import LocalRecognitionEngine, LocalSpeechSynthesizer
from agri_buddy.voice.playback import ConsoleSynthesizer, PlaybackConfig, PlaybackController
from agri_buddy.voice.stt import STTProvider
from agri_buddy.voice.tts import TTSProvider

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VoiceSessionConfig:
    artifacts_dir: str = "data/sessions"
    tts_enabled: bool = True


def build_capture(audio: AudioIO, stt: STTProvider, settings: Settings | None = None) -> CaptureSessionManager:
    resource = EngineResource(lambda: LocalRecognitionEngine(audio, stt))
    return CaptureSessionManager(resource, CaptureConfig.from_settings(settings))


def build_playback(
    audio: AudioIO,
    tts: TTSProvider,
    out_dir: str | Path,
    *,
    enabled: bool = True,
    settings: Settings | None = None,
) -> PlaybackController:
    """Piper playback, or console output when TTS is disabled or unavailable."""
    config = PlaybackConfig.from_settings(settings)
    if not enabled:
        logger.info("[VOICE][TTS] skipped reason=tts_disabled")
        return PlaybackController(ConsoleSynthesizer(), config)
    available, reason = tts.is_available()
    if not available:
        logger.warning(f"TTS unavailable; falling back to text output: {reason}")
        return PlaybackController(ConsoleSynthesizer(), config)
    voice_name = getattr(tts, "voice_name", "Piper")
    return PlaybackController(LocalSpeechSynthesizer(audio, tts, voice_name, out_dir), config)


class VoiceSession:
    def __init__(
        self,
        *,
        orchestrator: InterviewOrchestrator,
        config: VoiceSessionConfig | None = None,
        read_line: Callable[[str], Awaitable[str]] | None = None,
    ) -> None:
        self._orchestrator = orchestrator
        self._config = config or VoiceSessionConfig()
        self._read_line = read_line or self._console_input

        self._session_dir: Path | None = None
        self._turn_log_path: Path | None = None
        self._logged_messages = 0
        self._last_phase: Phase | None = None

        orchestrator.add_observer(self._on_context)
        orchestrator.add_interim_listener(self._on_interim)

    @property
    def config(self) -> VoiceSessionConfig:
        return self._config

    @property
    def session_dir(self) -> Path | None:
        return self._session_dir

    async def start(self) -> Path:
        self._session_dir = self._make_session_dir()
        self._turn_log_path = self._session_dir / "turns.jsonl"
        self._write_meta()
        await self._orchestrator.begin()
        return self._session_dir

    async def run(self) -> None:
        await self.start()
        print(HELP_TEXT, flush=True)
        try:
            while True:
                line = await self._read_line("\n[Voice] 話しかけてください（コマンドも入力できます）> ")
                if not await handle_line(self._orchestrator, line, print):
                    break
                outcome = self._orchestrator.last_outcome
                if outcome is not None and line.strip() == "/save":
                    self._write_outcome(outcome.record.id, outcome.record.model_dump(mode="json"))
        finally:
            await self._orchestrator.aclose()

    def _on_interim(self, text: str) -> None:
        print(f"\r（聞き取り中）{text}", end="", flush=True)

    def _on_context(self, ctx: InterviewContext) -> None:
        if len(ctx.conversation) < self._logged_messages:
            self._logged_messages = 0
        for message in ctx.conversation[self._logged_messages :]:
            self._log_turn(role=message.role, text=message.text, phase=ctx.phase.value)
            label = "あなた" if message.role == "user" else "AI"
            print(f"\n[{label}] {message.text}", flush=True)
        self._logged_messages = len(ctx.conversation)

        if ctx.phase != self._last_phase:
            self._last_phase = ctx.phase
            rendered = render_context(ctx)
            if rendered:
                print(f"\n{rendered}\n", flush=True)

    @staticmethod
    async def _console_input(prompt: str) -> str:
        try:
            return await asyncio.to_thread(input, prompt)
        except EOFError:
            return "/quit"

    def _make_session_dir(self) -> Path:
        d = Path(self._config.artifacts_dir) / datetime.now().strftime("%Y%m%d_%H%M%S")
        d.mkdir(parents=True, exist_ok=True)
        return d

    def _write_meta(self) -> None:
        if not self._session_dir:
            return
        ctx = self._orchestrator.context
        meta = {
            "started_at": datetime.now().isoformat(),
            "location": ctx.location,
            "tts_enabled": self._config.tts_enabled,
        }
        (self._session_dir / "meta.json").write_text(json.dumps(meta, ensure_ascii=False, indent=2), encoding="utf-8")

    def _write_outcome(self, record_id: str, data: dict) -> None:
        if not self._session_dir:
            return
        path = self._session_dir / f"record_{record_id}.json"
        path.write_text(json.dumps(data, ensure_ascii=False, indent=2, default=str), encoding="utf-8")

    def _log_turn(self, *, role: str, text: str, phase: str) -> None:
        if not self._turn_log_path:
            return
        rec = {
            "ts": datetime.now().isoformat(),
            "role": role,
            "text": text,
            "phase": phase,
        }
        with self._turn_log_path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(rec, ensure_ascii=False) + "\n")
