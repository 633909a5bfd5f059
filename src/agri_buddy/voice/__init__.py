"""Voice capture and playback.

mic -> recognition engine -> capture manager -> orchestrator -> playback -> speaker

The capture and playback controllers only depend on abstract engines; the
local microphone, Whisper and Piper implementations live in
`agri_buddy.voice.engines` and need the `voice` extra.
"""

from agri_buddy.voice.capture import (
    CaptureConfig,
    CaptureError,
    CaptureMode,
    CaptureOutcome,
    CaptureSessionManager,
    EngineResource,
    RecognitionEngine,
    RecognitionResult,
)
from agri_buddy.voice.playback import (
    ConsoleSynthesizer,
    PlaybackConfig,
    PlaybackController,
    SpeechSynthesizer,
    Utterance,
    Voice,
)

__all__ = [
    "CaptureConfig",
    "CaptureError",
    "CaptureMode",
    "CaptureOutcome",
    "CaptureSessionManager",
    "EngineResource",
    "RecognitionEngine",
    "RecognitionResult",
    "ConsoleSynthesizer",
    "PlaybackConfig",
    "PlaybackController",
    "SpeechSynthesizer",
    "Utterance",
    "Voice",
]
