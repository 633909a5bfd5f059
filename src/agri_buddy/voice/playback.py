"""
Playback controller.

Speaks one utterance at a time through a `SpeechSynthesizer`. Some platforms
never deliver the finished signal, so the controller can guard every
utterance with a length-proportional fallback timer and a short drain delay
before the audio device is considered free again.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Awaitable, Callable, Sequence

from agri_buddy.config import Settings, get_settings

logger = logging.getLogger(__name__)

PREFERRED_VOICE_NAME = "Google 日本語"
PREFERRED_VOICE_FRAGMENTS = ("Kyoko", "O-ren", "Haruka", "Sayaka")
JAPANESE_LANG = "ja-JP"


@dataclass(frozen=True)
class Voice:
    name: str
    lang: str


@dataclass(frozen=True)
class Utterance:
    text: str
    voice: Voice | None = None
    lang: str = JAPANESE_LANG
    pitch: float = 1.6
    rate: float = 1.0
    volume: float = 1.0


class SpeechSynthesizer(ABC):
    """
    Text-to-speech output device.

    `speak` returns immediately; the synthesizer later calls exactly one of
    `on_end` or `on_error` on the event loop (or neither, on platforms with
    an unreliable finished signal).
    """

    @property
    @abstractmethod
    def speaking(self) -> bool:
        ...

    @property
    @abstractmethod
    def pending(self) -> bool:
        ...

    @abstractmethod
    def get_voices(self) -> list[Voice]:
        ...

    @abstractmethod
    def speak(
        self,
        utterance: Utterance,
        on_end: Callable[[], None],
        on_error: Callable[[str], None],
    ) -> None:
        ...

    @abstractmethod
    def cancel(self) -> None:
        ...


def pick_voice(voices: Sequence[Voice]) -> Voice | None:
    """Best Japanese voice available, or None for the platform default."""
    for v in voices:
        if v.name == PREFERRED_VOICE_NAME:
            return v
    for v in voices:
        if any(fragment in v.name for fragment in PREFERRED_VOICE_FRAGMENTS):
            return v
    for v in voices:
        if v.lang == JAPANESE_LANG:
            return v
    return None


@dataclass(frozen=True)
class PlaybackConfig:
    fallback_floor_ms: int = 4000
    per_char_ms: int = 250
    drain_ms: int = 300
    cancel_gap_ms: int = 50
    unreliable_end_event: bool = False
    voice_poll_attempts: int = 20
    voice_poll_interval_ms: int = 100
    pitch: float = 1.6
    rate: float = 1.0

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "PlaybackConfig":
        settings = settings or get_settings()
        return cls(
            fallback_floor_ms=settings.playback_fallback_floor_ms,
            per_char_ms=settings.playback_per_char_ms,
            drain_ms=settings.playback_drain_ms,
            cancel_gap_ms=settings.playback_cancel_gap_ms,
            unreliable_end_event=settings.playback_unreliable_end_event,
        )

    def fallback_seconds(self, text: str) -> float:
        return max(self.fallback_floor_ms, len(text) * self.per_char_ms) / 1000.0


class PlaybackController:
    """Owns the single in-flight utterance."""

    def __init__(
        self,
        synthesizer: SpeechSynthesizer,
        config: PlaybackConfig | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._synth = synthesizer
        self._config = config or PlaybackConfig.from_settings()
        self._sleep = sleep
        self._current: asyncio.Future | None = None

    @property
    def config(self) -> PlaybackConfig:
        return self._config

    @property
    def synthesizer(self) -> SpeechSynthesizer:
        return self._synth

    @property
    def is_speaking(self) -> bool:
        return self._current is not None and not self._current.done()

    async def _voices(self) -> list[Voice]:
        voices = self._synth.get_voices()
        attempts = 0
        while not voices and attempts < self._config.voice_poll_attempts:
            await self._sleep(self._config.voice_poll_interval_ms / 1000.0)
            attempts += 1
            voices = self._synth.get_voices()
        return voices

    async def speak(self, text: str) -> None:
        """Speak `text`; returns once audio finished or was abandoned."""
        if not text:
            return

        if self._synth.speaking or self._synth.pending:
            self._synth.cancel()
            self._settle()
            await self._sleep(self._config.cancel_gap_ms / 1000.0)

        voice = pick_voice(await self._voices())
        utterance = Utterance(
            text=text,
            voice=voice,
            pitch=self._config.pitch,
            rate=self._config.rate,
        )

        loop = asyncio.get_running_loop()
        finished: asyncio.Future = loop.create_future()
        self._current = finished

        def on_end() -> None:
            if not finished.done():
                finished.set_result(None)

        def on_error(code: str) -> None:
            logger.warning(f"[VOICE][TTS] playback error: {code}")
            if not finished.done():
                finished.set_result(None)

        logger.info(f"[VOICE][TTS] speak chars={len(text)} voice={voice.name if voice else 'default'}")
        self._synth.speak(utterance, on_end, on_error)

        try:
            if self._config.unreliable_end_event:
                timeout = self._config.fallback_seconds(text)
                done, _ = await asyncio.wait({finished}, timeout=timeout)
                if not done:
                    logger.warning(f"[VOICE][TTS] no end event after {timeout:.1f}s; resolving by fallback")
                await self._sleep(self._config.drain_ms / 1000.0)
            else:
                await finished
        finally:
            if self._current is finished:
                self._current = None

    def cancel(self) -> None:
        """Abandon the in-flight utterance, if any."""
        if self._synth.speaking or self._synth.pending or self.is_speaking:
            self._synth.cancel()
        self._settle()

    def _settle(self) -> None:
        if self._current is not None and not self._current.done():
            self._current.set_result(None)


class ConsoleSynthesizer(SpeechSynthesizer):
    """Writes utterances to the terminal instead of a speaker."""

    def __init__(self, write: Callable[[str], None] = print, prefix: str = "AI: ") -> None:
        self._write = write
        self._prefix = prefix

    @property
    def speaking(self) -> bool:
        return False

    @property
    def pending(self) -> bool:
        return False

    def get_voices(self) -> list[Voice]:
        return [Voice(name="console", lang=JAPANESE_LANG)]

    def speak(
        self,
        utterance: Utterance,
        on_end: Callable[[], None],
        on_error: Callable[[str], None],
    ) -> None:
        self._write(f"{self._prefix}{utterance.text}")
        asyncio.get_running_loop().call_soon(on_end)

    def cancel(self) -> None:
        return None
