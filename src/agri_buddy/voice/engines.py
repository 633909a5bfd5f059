"""Offline engines backing the capture manager and playback controller.

`LocalRecognitionEngine` records phrase by phrase and transcribes each with
Whisper, delivering one final result per phrase. `LocalSpeechSynthesizer`
renders text with Piper and plays it through the speaker.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from pathlib import Path
from typing import Callable

from agri_buddy.voice.audio_io import AudioIO
from agri_buddy.voice.capture import CaptureError, EngineCallbacks, RecognitionEngine, RecognitionResult
from agri_buddy.voice.playback import JAPANESE_LANG, SpeechSynthesizer, Utterance, Voice
from agri_buddy.voice.stt import STTProvider
from agri_buddy.voice.tts import TTSError, TTSProvider

logger = logging.getLogger(__name__)


class LocalRecognitionEngine(RecognitionEngine):
    def __init__(self, audio: AudioIO, stt: STTProvider) -> None:
        self._audio = audio
        self._stt = stt
        self._callbacks: EngineCallbacks | None = None
        self._task: asyncio.Task | None = None
        self._stop_requested = False
        self._drop_pending = False

    def set_callbacks(self, callbacks: EngineCallbacks) -> None:
        self._callbacks = callbacks

    async def request_permission(self) -> bool:
        return await asyncio.to_thread(self._audio.has_input_device)

    async def start(self, *, continuous: bool) -> None:
        if self._task is not None and not self._task.done():
            raise CaptureError("invalid-state", "recognition already running")
        if not await self.request_permission():
            raise CaptureError("not-allowed", "no microphone available")
        self._stop_requested = False
        self._drop_pending = False
        self._task = asyncio.get_running_loop().create_task(self._run(continuous))

    async def stop(self) -> None:
        self._stop_requested = True

    async def abort(self) -> None:
        self._stop_requested = True
        self._drop_pending = True

    async def _run(self, continuous: bool) -> None:
        callbacks = self._callbacks
        results: list[RecognitionResult] = []
        try:
            while not self._stop_requested:
                audio = await self._audio.record_phrase(lambda: self._stop_requested)
                if self._drop_pending or audio.size == 0:
                    continue
                transcription = await self._stt.transcribe_array(audio, self._audio.config.sample_rate)
                if self._drop_pending or not transcription.text:
                    continue
                results.append(RecognitionResult(text=transcription.text, is_final=True))
                if callbacks is not None:
                    callbacks.on_results(list(results))
                if not continuous:
                    break
        except (RuntimeError, OSError, ValueError) as e:
            logger.error(f"[VOICE][CAPTURE] local recognition failed: {e}")
            if callbacks is not None:
                callbacks.on_error("audio-capture")
        finally:
            if callbacks is not None:
                callbacks.on_end()


class LocalSpeechSynthesizer(SpeechSynthesizer):
    def __init__(self, audio: AudioIO, tts: TTSProvider, voice_name: str, out_dir: str | Path) -> None:
        self._audio = audio
        self._tts = tts
        self._voice = Voice(name=voice_name, lang=JAPANESE_LANG)
        self._out_dir = Path(out_dir)
        self._task: asyncio.Task | None = None

    @property
    def speaking(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def pending(self) -> bool:
        return False

    def get_voices(self) -> list[Voice]:
        return [self._voice]

    def speak(
        self,
        utterance: Utterance,
        on_end: Callable[[], None],
        on_error: Callable[[str], None],
    ) -> None:
        self._task = asyncio.get_running_loop().create_task(self._play(utterance, on_end, on_error))

    async def _play(
        self,
        utterance: Utterance,
        on_end: Callable[[], None],
        on_error: Callable[[str], None],
    ) -> None:
        base = f"tts_{uuid.uuid4().hex[:8]}"
        try:
            wavs = await self._tts.synthesize_to_wavs(utterance.text, self._out_dir, base, rate=utterance.rate)
            for wav in wavs:
                await self._audio.play_wav(wav)
        except (TTSError, RuntimeError, OSError) as e:
            logger.error(f"[VOICE][TTS] synthesis failed: {e}")
            on_error("synthesis-failed")
            return
        on_end()

    def cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._audio.stop_playback()
