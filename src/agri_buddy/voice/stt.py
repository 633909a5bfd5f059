"""Speech-to-text (offline).

Default implementation uses `faster-whisper`, tuned for Japanese farm talk.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path

import numpy as np

logger = logging.getLogger(__name__)

# Biases decoding toward the vocabulary farmers actually use.
FARM_VOCABULARY_PROMPT = "ハウス、換気、灌水、摘果、袋掛け、剪定、施肥、肥料、農薬、防除、病害虫、収穫、最高気温、最低気温、湿度。"


@dataclass(frozen=True)
class STTConfig:
    model_size: str = "small"
    device: str = "cpu"  # cpu|cuda|auto
    compute_type: str | None = None  # e.g. int8, float16
    language: str = "ja"
    vad_filter: bool = True
    initial_prompt: str | None = FARM_VOCABULARY_PROMPT


@dataclass(frozen=True)
class TranscriptionResult:
    text: str
    avg_logprob: float | None = None
    no_speech_prob: float | None = None


class STTProvider:
    async def transcribe_file(self, wav_path: str | Path) -> TranscriptionResult:
        raise NotImplementedError

    async def transcribe_array(self, audio: np.ndarray, sample_rate: int) -> TranscriptionResult:
        raise NotImplementedError


class WhisperSTT(STTProvider):
    """faster-whisper wrapper."""

    def __init__(self, config: STTConfig | None = None) -> None:
        self._config = config or STTConfig()
        self._model = None

    @property
    def config(self) -> STTConfig:
        return self._config

    def _load_model(self):
        if self._model is not None:
            return self._model

        try:
            from faster_whisper import WhisperModel  # type: ignore
        except ImportError as e:  # pragma: no cover
            raise RuntimeError(
                "faster-whisper is required for STT. Install with: pip install -e '.[voice]'"
            ) from e

        device = "cpu" if self._config.device == "auto" else self._config.device
        kwargs = {}
        if self._config.compute_type:
            kwargs["compute_type"] = self._config.compute_type

        logger.info(f"[VOICE][STT] loading whisper model={self._config.model_size} device={device}")
        self._model = WhisperModel(self._config.model_size, device=device, **kwargs)
        return self._model

    def _transcribe(self, source) -> TranscriptionResult:  # noqa: ANN001
        model = self._load_model()
        segments, info = model.transcribe(
            source,
            language=self._config.language,
            vad_filter=self._config.vad_filter,
            initial_prompt=self._config.initial_prompt,
        )
        # Japanese has no word spacing.
        text = "".join(s.text.strip() for s in segments if s.text).strip()
        return TranscriptionResult(
            text=text,
            avg_logprob=getattr(info, "avg_logprob", None),
            no_speech_prob=getattr(info, "no_speech_prob", None),
        )

    async def transcribe_file(self, wav_path: str | Path) -> TranscriptionResult:
        return await asyncio.to_thread(self._transcribe, str(Path(wav_path)))

    async def transcribe_array(self, audio: np.ndarray, sample_rate: int) -> TranscriptionResult:
        if sample_rate != 16000:
            raise ValueError(f"Whisper expects 16 kHz audio, got {sample_rate}")
        mono = audio[:, 0] if audio.ndim == 2 else audio
        samples = mono.astype(np.float32) / 32768.0
        return await asyncio.to_thread(self._transcribe, samples)
