"""Text-to-speech (offline).

Default implementation runs the `piper` CLI with a Japanese voice model.
"""

from __future__ import annotations

import asyncio
import logging
import re
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

_SENTENCE_END_RE = re.compile(r"(?<=[。！？!?])")


@dataclass(frozen=True)
class TTSConfig:
    piper_bin: str = "piper"
    model_path: str | None = None  # path to *.onnx
    speaker_id: int | None = None
    max_chars_per_chunk: int = 120
    timeout_s: float = 60.0


class TTSError(RuntimeError):
    """Raised when the synthesizer cannot produce audio."""


class TTSProvider:
    def is_available(self) -> tuple[bool, str]:
        return True, "ok"

    async def synthesize_to_wavs(
        self, text: str, out_dir: str | Path, base_name: str, *, rate: float = 1.0
    ) -> list[Path]:
        raise NotImplementedError


def chunk_text(text: str, max_chars: int) -> list[str]:
    """Split Japanese text on sentence ends and re-pack up to `max_chars`."""
    t = (text or "").strip()
    if not t:
        return []

    chunks: list[str] = []
    current = ""
    for part in (p.strip() for p in _SENTENCE_END_RE.split(t)):
        if not part:
            continue
        if current and len(current) + len(part) > max_chars:
            chunks.append(current)
            current = part
        else:
            current += part
    if current:
        chunks.append(current)

    out: list[str] = []
    for c in chunks:
        out.extend(c[i : i + max_chars] for i in range(0, len(c), max_chars))
    return out


class PiperTTS(TTSProvider):
    def __init__(self, config: TTSConfig | None = None) -> None:
        self._config = config or TTSConfig()
        self._validated_piper_path: str | None = None

    @property
    def config(self) -> TTSConfig:
        return self._config

    @property
    def voice_name(self) -> str:
        return f"Piper {Path(self._config.model_path).stem}" if self._config.model_path else "Piper"

    def is_available(self) -> tuple[bool, str]:
        try:
            self._require_piper()
            return True, "ok"
        except TTSError as e:
            return False, str(e)

    def _require_piper(self) -> str:
        if self._validated_piper_path:
            return self._validated_piper_path

        p = shutil.which(self._config.piper_bin)
        if not p:
            raise TTSError(
                "piper CLI not found. Install piper and ensure it's on PATH, or set AGRI_BUDDY_PIPER_BIN."
            )
        if not self._config.model_path:
            raise TTSError("Piper model path not configured. Set AGRI_BUDDY_PIPER_MODEL to a Japanese *.onnx voice.")

        self._validated_piper_path = p
        return p

    async def synthesize_to_wavs(
        self, text: str, out_dir: str | Path, base_name: str, *, rate: float = 1.0
    ) -> list[Path]:
        out_dir = Path(out_dir)
        out_dir.mkdir(parents=True, exist_ok=True)

        piper_bin = self._require_piper()
        wavs: list[Path] = []
        for idx, chunk in enumerate(chunk_text(text, self._config.max_chars_per_chunk)):
            wav_path = out_dir / f"{base_name}_{idx:02d}.wav"
            cmd = [piper_bin, "--model", str(self._config.model_path), "--output_file", str(wav_path)]
            if self._config.speaker_id is not None:
                cmd += ["--speaker", str(self._config.speaker_id)]
            if rate > 0 and rate != 1.0:
                cmd += ["--length_scale", f"{1.0 / rate:.2f}"]
            await asyncio.to_thread(self._run, cmd, chunk)
            wavs.append(wav_path)
        return wavs

    def _run(self, cmd: list[str], chunk: str) -> None:
        try:
            subprocess.run(
                cmd,
                input=chunk,
                text=True,
                check=True,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                timeout=self._config.timeout_s,
            )
        except subprocess.TimeoutExpired as e:
            raise TTSError(f"piper timed out after {self._config.timeout_s:.1f}s") from e
        except subprocess.CalledProcessError as e:
            stderr = (e.stderr or "").strip()
            raise TTSError(f"piper failed (exit={e.returncode}) stderr={stderr or '<empty>'}") from e
