"""
Interview orchestrator.

The single effect runner of the interview state machine. Events from the
capture manager, typed input and UI commands go through one queue; each is
applied with `transition()` and its effects are executed in order before the
next event is taken. Interrupting commands bump a generation counter which
cancels the effect in flight and drops queued follow-ups of the old
generation.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable

from agri_buddy.agents.risk_classifier import RiskClassifier, RiskThresholds
from agri_buddy.agents.risk_responses import pick_nudge
from agri_buddy.agents.slot_extraction import local_extraction_response
from agri_buddy.config import Settings, get_settings
from agri_buddy.models.llm_client import LLMError
from agri_buddy.orchestrator.interview_state import InterviewContext
from agri_buddy.orchestrator.schemas import ExtractionRequest, OutdoorWeather, Phase, labelled_items
from agri_buddy.orchestrator.transitions import (
    AdminLogReady,
    AttachPhoto,
    Begin,
    CancelPlayback,
    CaptureFailed,
    CaptureStopped,
    Discard,
    Dispatch,
    EditItem,
    ExtractionDone,
    FetchTomorrowWeather,
    Finalize,
    FlushAdminLog,
    MentorAnswer,
    Mute,
    OcrDone,
    Pacing,
    Pause,
    PermissionDenied,
    ReadImage,
    RequestExtraction,
    RequestPermission,
    Save,
    Saved,
    ScheduleAdminLog,
    SeedImage,
    SkipAll,
    SkipStep,
    Speak,
    StartCapture,
    StopCapture,
    Unmute,
    Utterance,
    WeatherFetched,
    transition,
)
from agri_buddy.records.finalizer import RecordDraft, RecordFinalizer, SaveOutcome
from agri_buddy.services.admin_log import AdminLogService
from agri_buddy.services.extraction import ExtractionService
from agri_buddy.services.ocr import OcrError, OcrService
from agri_buddy.services.weather import WeatherError, WeatherService
from agri_buddy.voice.capture import (
    CAPTURE_FAILED_NOTICE,
    PERMISSION_DENIED_NOTICE,
    CaptureError,
    CaptureHandlers,
    CaptureOutcome,
    CaptureSessionManager,
)
from agri_buddy.voice.playback import PlaybackController

logger = logging.getLogger(__name__)

Observer = Callable[[InterviewContext], None]


@dataclass
class _QueueItem:
    generation: int
    event: object
    done: asyncio.Future | None


def pacing_from_settings(settings: Settings) -> Pacing:
    return Pacing(
        breathing_s=settings.breathing_ms / 1000.0,
        quick_breathing_s=settings.quick_breathing_ms / 1000.0,
        admin_log_debounce_s=settings.admin_log_debounce_s,
    )


class InterviewOrchestrator:
    """
    Runs one farm-diary interview at a time.

    Every collaborator is optional: without capture the orchestrator works
    on typed input only, without playback it stays silent, and without the
    AI services it falls back to the local generators.
    """

    def __init__(
        self,
        capture: CaptureSessionManager | None = None,
        playback: PlaybackController | None = None,
        extraction: ExtractionService | None = None,
        admin_log: AdminLogService | None = None,
        weather: WeatherService | None = None,
        ocr: OcrService | None = None,
        finalizer: RecordFinalizer | None = None,
        classifier: RiskClassifier | None = None,
        pacing: Pacing | None = None,
        settings: Settings | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: random.Random | None = None,
    ) -> None:
        settings = settings or get_settings()
        self._capture = capture
        self._playback = playback
        self._extraction = extraction
        self._admin_log = admin_log
        self._weather = weather
        self._ocr = ocr
        self._finalizer = finalizer
        self._classifier = classifier or RiskClassifier(
            RiskThresholds(
                tier3=settings.risk_tier3_score,
                tier2=settings.risk_tier2_score,
                tier1=settings.risk_tier1_score,
            )
        )
        self._pacing = pacing or pacing_from_settings(settings)
        self._sleep = sleep
        self._rng = rng

        self._context = InterviewContext(location=settings.default_location)
        self._observers: list[Observer] = []
        self._generation = 0
        self._queue: asyncio.Queue[_QueueItem] | None = None
        self._worker: asyncio.Task | None = None
        self._interrupt: asyncio.Future | None = None

        self._admin_job: asyncio.Task | None = None
        self._admin_flush: asyncio.Event | None = None
        self._last_weather: OutdoorWeather | None = None
        self._last_outcome: SaveOutcome | None = None
        self._interim_listeners: list[Callable[[str], None]] = []

        self._handlers = CaptureHandlers(
            on_utterance=self._on_captured_utterance,
            on_interim=self._on_interim,
            on_permission_denied=lambda notice: self._post(PermissionDenied(notice)),
            on_failure=self._on_capture_failure,
            on_max_duration=self._on_max_duration,
        )

    # ------------------------------------------------------------------
    # Read-only state
    # ------------------------------------------------------------------

    @property
    def context(self) -> InterviewContext:
        return self._context

    @property
    def last_outcome(self) -> SaveOutcome | None:
        return self._last_outcome

    def add_observer(self, observer: Observer) -> None:
        """Call `observer` with the new context after every transition."""
        self._observers.append(observer)

    def add_interim_listener(self, listener: Callable[[str], None]) -> None:
        """Call `listener` with the running transcript while the user is still talking."""
        self._interim_listeners.append(listener)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def begin(self) -> None:
        await self._submit(Begin())

    async def submit_text(self, text: str) -> None:
        """Feed typed text through the same path as a spoken utterance."""
        event = self._utterance_event(text)
        await self._submit(event, preempt=self._interrupts(event))

    async def stop_listening(self) -> None:
        """User-initiated stop: the transcript so far is treated as an utterance."""
        if self._capture is None:
            return
        outcome = await self._capture.stop(user_initiated=True)
        if outcome is CaptureOutcome.REVIEW:
            await self.submit_text(self._capture.last_transcript)
        else:
            await self._submit(CaptureStopped())

    async def skip_step(self) -> None:
        await self._submit(SkipStep())

    async def skip_all(self) -> None:
        await self._submit(SkipAll(), preempt=True)

    async def discard(self) -> None:
        await self._submit(Discard(), preempt=True)

    async def attach_photo(self) -> None:
        await self._submit(AttachPhoto())

    async def edit_item(self, key: str, value: str) -> None:
        await self._submit(EditItem(key=key, value=value))

    async def mentor_answer(self, yes: bool) -> None:
        await self._submit(MentorAnswer(yes=yes))

    async def seed_from_image(self, image: bytes, mime_type: str = "image/jpeg") -> None:
        await self._submit(SeedImage(image=image, mime_type=mime_type))

    async def save(self) -> SaveOutcome | None:
        """
        Save the reviewed record.

        Waits for a pending AI admin log first so the newest text is stored.

        Returns:
            The outcome, or None when there was nothing to save.
        """
        self._last_outcome = None
        await self._submit(Save())
        return self._last_outcome

    async def wait_idle(self) -> None:
        """Wait until no event is queued and no admin-log fetch is pending."""
        queue = self._ensure_started()
        while True:
            await queue.join()
            job = self._admin_job
            if job is not None and not job.done():
                await asyncio.wait({job})
                continue
            if queue.empty():
                return

    async def aclose(self) -> None:
        for task in (self._worker, self._admin_job):
            if task is not None and not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        if self._capture is not None and self._capture.is_listening:
            await self._capture.stop()
        if self._playback is not None:
            self._playback.cancel()

    # ------------------------------------------------------------------
    # Event queue
    # ------------------------------------------------------------------

    def _ensure_started(self) -> asyncio.Queue[_QueueItem]:
        if self._queue is None:
            self._queue = asyncio.Queue()
            self._interrupt = asyncio.get_running_loop().create_future()
            self._admin_flush = asyncio.Event()
        if self._worker is None or self._worker.done():
            self._worker = asyncio.get_running_loop().create_task(self._run())
        return self._queue

    def _preempt(self) -> None:
        self._generation += 1
        if self._interrupt is not None and not self._interrupt.done():
            self._interrupt.set_result(None)
        self._interrupt = asyncio.get_running_loop().create_future()
        if self._playback is not None:
            self._playback.cancel()
        logger.info(f"[INTERVIEW] preempted; generation={self._generation}")

    def _post(
        self,
        event: object,
        generation: int | None = None,
        preempt: bool = False,
        track: bool = False,
    ) -> asyncio.Future | None:
        queue = self._ensure_started()
        if preempt:
            self._preempt()
        done = asyncio.get_running_loop().create_future() if track else None
        queue.put_nowait(_QueueItem(self._generation if generation is None else generation, event, done))
        return done

    async def _submit(self, event: object, preempt: bool = False) -> None:
        done = self._post(event, preempt=preempt, track=True)
        assert done is not None
        await done

    async def _run(self) -> None:
        queue = self._queue
        assert queue is not None
        while True:
            item = await queue.get()
            try:
                if item.generation != self._generation:
                    logger.debug(f"[INTERVIEW] dropped stale {type(item.event).__name__}")
                else:
                    await self._process(item.event, item.generation)
                if item.done is not None and not item.done.done():
                    item.done.set_result(None)
            except Exception as e:
                logger.exception(f"[INTERVIEW] {type(item.event).__name__} failed: {e}")
                if item.done is not None and not item.done.done():
                    item.done.set_exception(e)
            finally:
                queue.task_done()

    def _apply(self, event: object) -> tuple:
        result = transition(self._context, event, self._pacing)
        if result.context is not self._context:
            previous = self._context.phase
            self._context = result.context
            if previous != self._context.phase:
                logger.info(f"[INTERVIEW] {previous.value} -> {self._context.phase.value}")
            for observer in self._observers:
                observer(self._context)
        return result.effects

    async def _process(self, event: object, generation: int) -> None:
        for effect in self._apply(event):
            if generation != self._generation:
                logger.debug(f"[INTERVIEW] skipping {type(effect).__name__} after preemption")
                return
            await self._run_interruptible(effect, generation)

    async def _run_interruptible(self, effect: object, generation: int) -> None:
        interrupt = self._interrupt
        assert interrupt is not None
        task = asyncio.get_running_loop().create_task(self._run_effect(effect, generation))
        try:
            done, _ = await asyncio.wait({task, interrupt}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            raise
        if task in done:
            task.result()
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    # ------------------------------------------------------------------
    # Effects
    # ------------------------------------------------------------------

    async def _run_effect(self, effect: object, generation: int) -> None:
        capture = self._capture
        if isinstance(effect, Speak):
            if self._playback is not None:
                await self._playback.speak(effect.text)
        elif isinstance(effect, CancelPlayback):
            if self._playback is not None:
                self._playback.cancel()
        elif isinstance(effect, StopCapture):
            if capture is not None and capture.is_listening:
                await capture.stop()
        elif isinstance(effect, StartCapture):
            if capture is not None:
                await capture.start(effect.mode, self._handlers)
        elif isinstance(effect, Mute):
            if capture is not None:
                capture.mute()
        elif isinstance(effect, Unmute):
            if capture is not None:
                capture.unmute()
        elif isinstance(effect, Pause):
            await self._sleep(effect.seconds)
        elif isinstance(effect, Dispatch):
            self._post(effect.event, generation=generation)
        elif isinstance(effect, RequestPermission):
            await self._request_permission(generation)
        elif isinstance(effect, RequestExtraction):
            await self._request_extraction(effect.utterance, generation)
        elif isinstance(effect, ScheduleAdminLog):
            self._schedule_admin_log(effect.revision, effect.delay)
        elif isinstance(effect, FlushAdminLog):
            await self._flush_admin_log()
        elif isinstance(effect, FetchTomorrowWeather):
            await self._fetch_tomorrow(generation)
        elif isinstance(effect, ReadImage):
            await self._read_image(effect.image, effect.mime_type, generation)
        elif isinstance(effect, Finalize):
            await self._finalize(generation)
        else:
            raise TypeError(f"Unknown interview effect: {type(effect).__name__}")

    async def _request_permission(self, generation: int) -> None:
        if self._capture is None:
            return
        if not await self._capture.request_permission():
            self._post(PermissionDenied(PERMISSION_DENIED_NOTICE), generation=generation)

    async def _current_weather(self) -> OutdoorWeather | None:
        if self._weather is None:
            return None
        try:
            self._last_weather = await self._weather.current()
        except WeatherError as e:
            logger.warning(f"[INTERVIEW] weather unavailable: {e}")
        return self._last_weather

    async def _request_extraction(self, utterance: str, generation: int) -> None:
        ctx = self._context
        locations = await self._finalizer.known_locations() if self._finalizer is not None else []
        history = list(ctx.conversation)
        # The narration being extracted is already the last user message.
        if history and history[-1].role == "user" and history[-1].text == utterance:
            history.pop()
        request = ExtractionRequest(
            utterance=utterance,
            history=history,
            known_locations=locations,
            weather=await self._current_weather(),
            partial=ctx.slots,
            location=ctx.location,
        )
        if self._extraction is None:
            response = local_extraction_response(request)
        else:
            try:
                response = await self._extraction.extract(request)
            except LLMError as e:
                logger.warning(f"[INTERVIEW] extraction failed ({e}); using local fallback")
                response = local_extraction_response(request)
        self._post(ExtractionDone(epoch=ctx.epoch, response=response), generation=generation)

    def _schedule_admin_log(self, revision: int, delay: float) -> None:
        if self._admin_log is None:
            return
        if self._admin_job is not None and not self._admin_job.done():
            self._admin_job.cancel()
        assert self._admin_flush is not None
        self._admin_flush.clear()
        items = labelled_items(self._context.confirm_items)
        job = asyncio.get_running_loop().create_task(
            self._admin_log_job(self._context.epoch, revision, items, delay)
        )
        job.add_done_callback(self._on_admin_log_done)
        self._admin_job = job

    async def _admin_log_job(
        self, epoch: int, revision: int, items: list[tuple[str, str]], delay: float
    ) -> AdminLogReady | None:
        assert self._admin_log is not None and self._admin_flush is not None
        if delay > 0:
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(self._admin_flush.wait(), timeout=delay)
        if not items:
            return None
        try:
            text = await self._admin_log.generate(items)
        except LLMError as e:
            logger.warning(f"[INTERVIEW] admin log unavailable ({e}); keeping template")
            return None
        return AdminLogReady(epoch=epoch, revision=revision, text=text)

    def _on_admin_log_done(self, job: asyncio.Task) -> None:
        if job.cancelled():
            return
        error = job.exception()
        if error is not None:
            logger.error(f"[INTERVIEW] admin log job failed: {error!r}")
            return
        event = job.result()
        if event is not None:
            self._post(event)

    async def _flush_admin_log(self) -> None:
        job = self._admin_job
        if job is None or job.cancelled():
            return
        assert self._admin_flush is not None
        self._admin_flush.set()
        try:
            event = await asyncio.shield(job)
        except asyncio.CancelledError:
            if job.cancelled():
                return
            raise
        except Exception:
            logger.warning("[INTERVIEW] saving with the template admin log")
            return
        if event is not None:
            self._apply(event)

    async def _fetch_tomorrow(self, generation: int) -> None:
        epoch = self._context.epoch
        weather = None
        if self._weather is not None:
            try:
                weather = await self._weather.tomorrow()
            except WeatherError as e:
                logger.warning(f"[INTERVIEW] forecast unavailable: {e}")
        self._post(WeatherFetched(epoch=epoch, weather=weather), generation=generation)

    async def _read_image(self, image: bytes, mime_type: str, generation: int) -> None:
        epoch = self._context.epoch
        if self._ocr is None:
            self._post(OcrDone(epoch=epoch, result=None, failed=True), generation=generation)
            return
        try:
            result = await self._ocr.read(image, mime_type)
        except OcrError as e:
            logger.warning(f"[INTERVIEW] OCR failed: {e}")
            self._post(OcrDone(epoch=epoch, result=None, failed=True), generation=generation)
            return
        self._post(OcrDone(epoch=epoch, result=result), generation=generation)

    async def _finalize(self, generation: int) -> None:
        if self._finalizer is None:
            logger.warning("[INTERVIEW] no record store configured; record not saved")
            return
        ctx = self._context
        draft = RecordDraft(
            slots=ctx.slots,
            confirm_items=ctx.confirm_items,
            location=ctx.location,
            admin_log=ctx.admin_log,
            advice=ctx.advice,
            strategic_advice=ctx.strategic_advice,
            photo_count=ctx.photo_count,
            raw_transcript=ctx.raw_transcript,
            ocr_date=ctx.ocr_date,
            deferred=ctx.deferred,
            weather_description=self._last_weather.description if self._last_weather else None,
            weather_temperature=self._last_weather.temperature if self._last_weather else None,
        )
        outcome = await self._finalizer.finalize(draft)
        self._last_outcome = outcome
        self._post(Saved(message=outcome.message), generation=generation)

    # ------------------------------------------------------------------
    # Capture callbacks
    # ------------------------------------------------------------------

    def _utterance_event(self, text: str) -> Utterance:
        analysis = self._classifier.analyze(text)
        nudge = pick_nudge(analysis.primary_category, self._rng) if analysis.tier == 1 else None
        return Utterance(text=text, analysis=analysis, nudge=nudge)

    def _interrupts(self, event: Utterance) -> bool:
        return event.analysis.tier >= 3 and self._context.phase != Phase.MENTOR

    def _on_captured_utterance(self, text: str) -> None:
        event = self._utterance_event(text)
        self._post(event, preempt=self._interrupts(event))

    def _on_interim(self, text: str) -> None:
        for listener in self._interim_listeners:
            listener(text)

    def _on_capture_failure(self, error: CaptureError) -> None:
        logger.warning(f"[INTERVIEW] capture unavailable ({error.code}); switching to manual entry")
        self._post(CaptureFailed(CAPTURE_FAILED_NOTICE))

    def _on_max_duration(self, text: str) -> None:
        if text:
            self._on_captured_utterance(text)
        else:
            self._post(CaptureStopped())
