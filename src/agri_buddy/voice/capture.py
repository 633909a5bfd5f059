"""Capture session manager.

Owns the one speech-recognition engine instance and the lifecycle around it:
mute/unmute without tearing the session down, utterance-end detection by
silence, a hard cap per listening window, and silent auto-restart when the
host kills the session.

Engines only have to implement `RecognitionEngine`; everything stateful lives
here so that engines stay thin adapters.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Sequence

from agri_buddy.config import Settings, get_settings
from agri_buddy.retry import RetryPolicy, linear_backoff

logger = logging.getLogger(__name__)

PERMISSION_ERROR_CODES = frozenset({"not-allowed", "service-not-allowed"})
BENIGN_ERROR_CODES = frozenset({"no-speech", "aborted"})

PERMISSION_DENIED_NOTICE = "マイクの使用が許可されていません。端末の設定でマイクを許可するか、文字か写真で入力してください。"
CAPTURE_FAILED_NOTICE = "音声入力がうまく動きません。文字か写真で入力してください。"


class CaptureError(Exception):
    """Recognition failure reported by an engine."""

    def __init__(self, code: str, message: str = "") -> None:
        super().__init__(message or code)
        self.code = code
        self.message = message or code

    @property
    def is_permission_error(self) -> bool:
        return self.code in PERMISSION_ERROR_CODES


class CaptureMode(str, Enum):
    NORMAL = "normal"
    PERSISTENT = "persistent"


class CaptureOutcome(str, Enum):
    REVIEW = "review"
    IDLE = "idle"


@dataclass(frozen=True)
class RecognitionResult:
    text: str
    is_final: bool = True


@dataclass(frozen=True)
class EngineCallbacks:
    on_results: Callable[[Sequence[RecognitionResult]], None]
    on_end: Callable[[], None]
    on_error: Callable[[str], None]


class RecognitionEngine(ABC):
    """
    Speech recognition engine contract.

    `on_results` receives the full result list of the current session each
    time it changes. `on_end` fires once per session, including after
    `on_error`, `stop()` and `abort()`.
    """

    @abstractmethod
    def set_callbacks(self, callbacks: EngineCallbacks) -> None:
        ...

    @abstractmethod
    async def start(self, *, continuous: bool) -> None:
        """Begin a session. Raises CaptureError when it cannot."""
        ...

    @abstractmethod
    async def stop(self) -> None:
        """End the session after delivering pending results."""
        ...

    @abstractmethod
    async def abort(self) -> None:
        """End the session immediately, dropping pending results."""
        ...

    async def request_permission(self) -> bool:
        return True


class EngineResource:
    """
    Lazily created, reused recognition engine.

    Some hosts crash after a handful of engine instantiations, so the
    instance is kept for the lifetime of the app and only replaced after
    `invalidate()`.
    """

    def __init__(self, factory: Callable[[], RecognitionEngine]) -> None:
        self._factory = factory
        self._engine: RecognitionEngine | None = None
        self.instances_created = 0

    @property
    def engine(self) -> RecognitionEngine | None:
        return self._engine

    def acquire(self) -> RecognitionEngine:
        if self._engine is None:
            self._engine = self._factory()
            self.instances_created += 1
            logger.info(f"[VOICE][CAPTURE] engine created (#{self.instances_created})")
        return self._engine

    def invalidate(self) -> None:
        if self._engine is not None:
            logger.warning("[VOICE][CAPTURE] engine invalidated")
        self._engine = None


@dataclass
class CaptureCursor:
    """Mute flag and the index of the first result that belongs to the caller."""

    muted: bool = False
    result_offset: int = 0


@dataclass(frozen=True)
class CaptureConfig:
    max_seconds: float = 120.0
    silence_s: float = 1.5
    restart_attempts: int = 3
    restart_backoff_s: float = 0.3

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "CaptureConfig":
        settings = settings or get_settings()
        return cls(
            max_seconds=settings.capture_max_seconds,
            silence_s=settings.capture_silence_s,
            restart_attempts=settings.capture_restart_attempts,
        )


def _noop(*args: object) -> None:
    return None


@dataclass
class CaptureHandlers:
    on_utterance: Callable[[str], None]
    on_interim: Callable[[str], None] = field(default=_noop)
    on_permission_denied: Callable[[str], None] = field(default=_noop)
    on_failure: Callable[[CaptureError], None] = field(default=_noop)
    on_max_duration: Callable[[str], None] = field(default=_noop)


def _restartable(error: BaseException) -> bool:
    return not (isinstance(error, CaptureError) and error.is_permission_error)


class CaptureSessionManager:
    """Single owner of the recognition session."""

    def __init__(
        self,
        resource: EngineResource,
        config: CaptureConfig | None = None,
        retry_policy: RetryPolicy | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._resource = resource
        self._config = config or CaptureConfig.from_settings()
        self._retry_policy = retry_policy or RetryPolicy(
            max_attempts=self._config.restart_attempts,
            backoff=linear_backoff(self._config.restart_backoff_s, 2.0),
            should_retry=_restartable,
        )
        self._sleep = sleep

        self._cursor = CaptureCursor()
        self._handlers = CaptureHandlers(on_utterance=_noop)
        self._mode = CaptureMode.NORMAL
        self._results: list[RecognitionResult] = []
        self._prefix = ""
        self._listening = False
        self._engine_running = False
        self._suppress_restart = False
        self._pending_error: CaptureError | None = None
        self._failures = 0
        self._session_id = 0
        self.last_transcript = ""

        self._silence_task: asyncio.Task | None = None
        self._max_task: asyncio.Task | None = None
        self._restart_task: asyncio.Task | None = None

    @property
    def resource(self) -> EngineResource:
        return self._resource

    @property
    def cursor(self) -> CaptureCursor:
        return self._cursor

    @property
    def mode(self) -> CaptureMode:
        return self._mode

    @property
    def is_listening(self) -> bool:
        return self._listening

    @property
    def transcript(self) -> str:
        """Carried prefix plus every result past the offset."""
        return self._prefix + "".join(r.text for r in self._results[self._cursor.result_offset :])

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def start(self, mode: CaptureMode, handlers: CaptureHandlers) -> None:
        """Begin listening. Calling it while a session is live only swaps handlers and mode."""
        self._handlers = handlers
        if self._listening:
            self._mode = mode
            if not self._cursor.muted and self._max_task is None:
                self._arm_max_timer()
            return

        self._mode = mode
        self._listening = True
        self._suppress_restart = False
        self._prefix = ""
        self._failures = 0
        self._pending_error = None
        logger.info(f"[VOICE][CAPTURE] start mode={mode.value}")
        try:
            await self._launch()
        except CaptureError as e:
            self._handle_launch_failure(e)
            return
        if not self._cursor.muted:
            self._arm_max_timer()

    async def stop(self, user_initiated: bool = False) -> CaptureOutcome:
        """
        Stop listening.

        A user-initiated stop suppresses the next auto-restart and keeps the
        transcript for review; any other stop aborts the engine.
        """
        text = self.transcript.strip()
        self._listening = False
        self._suppress_restart = user_initiated
        self._cancel_timers()
        self._cancel(self._restart_task)
        self._restart_task = None

        engine = self._resource.engine
        if engine is not None and self._engine_running:
            self._engine_running = False
            try:
                if user_initiated:
                    await engine.stop()
                else:
                    await engine.abort()
            except CaptureError as e:
                logger.warning(f"[VOICE][CAPTURE] engine refused to stop ({e.code}); invalidating")
                self._resource.invalidate()
        self._session_id += 1

        self._prefix = ""
        self._results = []
        self._cursor.result_offset = 0
        self.last_transcript = text
        outcome = CaptureOutcome.REVIEW if text else CaptureOutcome.IDLE
        logger.info(f"[VOICE][CAPTURE] stop user={user_initiated} outcome={outcome.value}")
        return outcome

    def mute(self) -> None:
        """Discard results without ending the session."""
        self._cursor.muted = True
        self._cursor.result_offset = len(self._results)
        self._prefix = ""
        self._cancel_timers()

    def unmute(self) -> None:
        self._cursor.muted = False
        self._cursor.result_offset = len(self._results)
        if self._listening and self._max_task is None:
            self._arm_max_timer()

    async def request_permission(self) -> bool:
        """Ask the engine for microphone access. Never raises."""
        engine = self._resource.acquire()
        try:
            granted = await engine.request_permission()
        except CaptureError as e:
            logger.warning(f"[VOICE][CAPTURE] permission request failed: {e.code}")
            granted = False
        if not granted:
            logger.warning("[VOICE][CAPTURE] microphone permission denied")
        return granted

    # ------------------------------------------------------------------
    # Engine session
    # ------------------------------------------------------------------

    async def _launch(self) -> None:
        engine = self._resource.acquire()
        self._session_id += 1
        sid = self._session_id
        engine.set_callbacks(
            EngineCallbacks(
                on_results=lambda results: self._handle_results(sid, results),
                on_end=lambda: self._handle_end(sid),
                on_error=lambda code: self._handle_error(sid, code),
            )
        )
        # A new engine session numbers its results from zero.
        self._results = []
        self._cursor.result_offset = 0
        await engine.start(continuous=self._mode is CaptureMode.PERSISTENT)
        self._engine_running = True

    def _handle_results(self, sid: int, results: Sequence[RecognitionResult]) -> None:
        if sid != self._session_id:
            return
        self._results = list(results)
        self._failures = 0
        if self._cursor.muted:
            self._cursor.result_offset = len(self._results)
            return

        fresh = self._results[self._cursor.result_offset :]
        if not fresh:
            return
        self._handlers.on_interim(self.transcript)
        self._cancel(self._silence_task)
        self._silence_task = None
        if fresh[-1].is_final:
            self._silence_task = asyncio.get_running_loop().create_task(self._wait_for_silence())

    def _handle_error(self, sid: int, code: str) -> None:
        if sid != self._session_id:
            return
        if code in PERMISSION_ERROR_CODES:
            self._listening = False
            self._cancel_timers()
            self._handlers.on_permission_denied(PERMISSION_DENIED_NOTICE)
            return
        if code in BENIGN_ERROR_CODES:
            logger.debug(f"[VOICE][CAPTURE] benign engine error: {code}")
            return
        logger.warning(f"[VOICE][CAPTURE] engine error: {code}")
        self._pending_error = CaptureError(code)

    def _handle_end(self, sid: int) -> None:
        if sid != self._session_id:
            return
        self._engine_running = False
        self._cancel(self._silence_task)
        self._silence_task = None
        if self._suppress_restart:
            self._suppress_restart = False
            return
        if not self._listening:
            return

        error, self._pending_error = self._pending_error, None
        fresh = self._results[self._cursor.result_offset :]
        if fresh and not self._cursor.muted:
            # A non-continuous engine ends right after its final result.
            if self._mode is CaptureMode.PERSISTENT or fresh[-1].is_final:
                self._emit_utterance()
            else:
                self._prefix = self.transcript
        logger.info(f"[VOICE][CAPTURE] session ended unexpectedly; restarting mode={self._mode.value}")
        self._restart_task = asyncio.get_running_loop().create_task(self._restart(error))

    def _handle_launch_failure(self, error: CaptureError) -> None:
        if error.is_permission_error:
            self._listening = False
            self._handlers.on_permission_denied(PERMISSION_DENIED_NOTICE)
            return
        self._resource.invalidate()
        self._restart_task = asyncio.get_running_loop().create_task(self._restart(error))

    async def _restart(self, cause: CaptureError | None) -> None:
        error = cause
        while self._listening:
            if error is not None:
                self._failures += 1
                if not self._retry_policy.allows(self._failures, error):
                    self._give_up(error)
                    return
                await self._sleep(self._retry_policy.delay_for(self._failures, error))
                if not self._listening:
                    return
            try:
                await self._launch()
                return
            except CaptureError as e:
                if e.is_permission_error:
                    self._handle_launch_failure(e)
                    return
                logger.warning(f"[VOICE][CAPTURE] restart failed: {e.code}")
                self._resource.invalidate()
                error = e

    def _give_up(self, error: CaptureError) -> None:
        logger.error(f"[VOICE][CAPTURE] giving up after {self._failures} failures: {error.code}")
        self._listening = False
        self._cancel_timers()
        self._resource.invalidate()
        self._handlers.on_failure(error)

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------

    async def _wait_for_silence(self) -> None:
        await self._sleep(self._config.silence_s)
        self._silence_task = None
        self._emit_utterance()

    def _emit_utterance(self) -> None:
        text = self.transcript.strip()
        self._cursor.result_offset = len(self._results)
        self._prefix = ""
        if text:
            logger.info(f"[VOICE][CAPTURE] utterance chars={len(text)}")
            self._handlers.on_utterance(text)

    def _arm_max_timer(self) -> None:
        self._cancel(self._max_task)
        self._max_task = asyncio.get_running_loop().create_task(self._wait_max_duration())

    async def _wait_max_duration(self) -> None:
        await self._sleep(self._config.max_seconds)
        self._max_task = None
        text = self.transcript.strip()
        logger.info(f"[VOICE][CAPTURE] max duration {self._config.max_seconds}s reached")
        await self.stop()
        self._handlers.on_max_duration(text)

    def _cancel_timers(self) -> None:
        self._cancel(self._silence_task)
        self._cancel(self._max_task)
        self._silence_task = None
        self._max_task = None

    @staticmethod
    def _cancel(task: asyncio.Task | None) -> None:
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
