"""Microphone and speaker I/O.

Pure hardware access: phrase-level microphone capture using an RMS voice
gate, WAV helpers, and interruptible speaker playback. Nothing here knows
about interviews or speech recognition.
"""

from __future__ import annotations

import asyncio
import logging
import time
import wave
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

import numpy as np

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AudioIOConfig:
    sample_rate: int = 16000
    channels: int = 1
    dtype: str = "int16"  # sounddevice dtype and WAV sample width
    voice_rms_threshold: float = 0.015
    phrase_pause_s: float = 0.6
    max_phrase_s: float = 15.0
    poll_interval_s: float = 0.05


def rms(block: np.ndarray) -> float:
    """RMS of an int16 or float block, normalized to [0, 1]."""
    if block.size == 0:
        return 0.0
    data = block.astype(np.float32)
    if block.dtype == np.int16:
        data = data / 32768.0
    return float(np.sqrt(np.mean(np.square(data))))


class AudioIO:
    def __init__(self, config: AudioIOConfig | None = None) -> None:
        self._config = config or AudioIOConfig()
        self._playing = False

    @property
    def config(self) -> AudioIOConfig:
        return self._config

    @property
    def is_playing(self) -> bool:
        return self._playing

    def _require_sounddevice(self):
        try:
            import sounddevice as sd  # type: ignore

            return sd
        except (ImportError, OSError) as e:  # pragma: no cover
            raise RuntimeError(
                "sounddevice is required for voice mode. Install with: pip install -e '.[voice]'. "
                "If you see 'PortAudio library not found', install PortAudio (Debian/Ubuntu: sudo apt-get install portaudio19-dev)."
            ) from e

    def has_input_device(self) -> bool:
        """True when a microphone can be opened with the configured format."""
        sd = self._require_sounddevice()
        try:
            sd.check_input_settings(
                samplerate=self._config.sample_rate,
                channels=self._config.channels,
                dtype=self._config.dtype,
            )
        except (sd.PortAudioError, ValueError) as e:
            logger.warning(f"[VOICE][AUDIO] no usable input device: {e}")
            return False
        return True

    async def record_phrase(self, should_stop: Callable[[], bool]) -> np.ndarray:
        """
        Record one phrase.

        Recording ends after `phrase_pause_s` of quiet following speech, after
        `max_phrase_s`, or as soon as `should_stop()` returns True. Returns an
        empty array when nothing above the voice gate was heard.
        """
        sd = self._require_sounddevice()
        cfg = self._config
        frames: list[np.ndarray] = []
        voiced_at: list[float] = []

        def callback(indata, frames_count, time_info, status):  # noqa: ANN001
            if status:
                logger.debug(f"Input status: {status}")
            frames.append(indata.copy())
            if rms(indata) >= cfg.voice_rms_threshold:
                voiced_at.append(time.monotonic())

        stream = sd.InputStream(
            samplerate=cfg.sample_rate,
            channels=cfg.channels,
            dtype=cfg.dtype,
            callback=callback,
        )
        await asyncio.to_thread(stream.start)
        started = time.monotonic()
        try:
            while not should_stop():
                await asyncio.sleep(cfg.poll_interval_s)
                now = time.monotonic()
                if voiced_at and now - voiced_at[-1] >= cfg.phrase_pause_s:
                    break
                if voiced_at and now - started >= cfg.max_phrase_s:
                    break
                if not voiced_at:
                    # Drop leading silence so phrases stay short.
                    del frames[:-4]
                    started = now
        finally:
            await asyncio.to_thread(stream.stop)
            await asyncio.to_thread(stream.close)

        if not voiced_at or not frames:
            return np.zeros((0, cfg.channels), dtype=np.int16)
        return np.concatenate(frames, axis=0)

    def write_wav(self, wav_path: str | Path, audio: np.ndarray) -> Path:
        """Write int16 PCM WAV."""
        wav_path = Path(wav_path)
        wav_path.parent.mkdir(parents=True, exist_ok=True)

        if audio.ndim == 1:
            audio = audio[:, None]

        with wave.open(str(wav_path), "wb") as wf:
            wf.setnchannels(self._config.channels)
            wf.setsampwidth(2)
            wf.setframerate(self._config.sample_rate)
            wf.writeframes(audio.astype(np.int16, copy=False).tobytes())

        return wav_path

    def read_wav(self, wav_path: str | Path) -> tuple[np.ndarray, int]:
        with wave.open(str(Path(wav_path)), "rb") as wf:
            sr = wf.getframerate()
            n_channels = wf.getnchannels()
            if wf.getsampwidth() != 2:
                raise ValueError(f"Only 16-bit WAV supported, got sampwidth={wf.getsampwidth()}")
            frames = wf.readframes(wf.getnframes())

        audio = np.frombuffer(frames, dtype=np.int16).reshape(-1, max(n_channels, 1))
        return audio, sr

    async def play_wav(self, wav_path: str | Path) -> None:
        """Play a WAV file to the default output; returns when done or stopped."""
        sd = self._require_sounddevice()
        audio, sr = self.read_wav(wav_path)
        self._playing = True
        try:
            sd.play(audio.astype(np.float32) / 32768.0, samplerate=sr, blocking=False)
            await asyncio.to_thread(sd.wait)
        finally:
            self._playing = False

    def stop_playback(self) -> None:
        if not self._playing:
            return
        sd = self._require_sounddevice()
        sd.stop()
        self._playing = False
