"""
Smoke tests for the interview orchestrator.

Runs whole interviews through the event queue with fake services, no
microphone and no speaker.
"""

import asyncio
import random
from datetime import datetime

import pytest

from agri_buddy.agents.risk_responses import MENTOR_ASK_LINE, MENTOR_COMFORT_LINE
from agri_buddy.models.llm_client import LLMError
from agri_buddy.orchestrator.interview_orchestrator import InterviewOrchestrator
from agri_buddy.orchestrator.schemas import (
    ExtractionRequest,
    ExtractionResponse,
    FollowUpStep,
    LocalRecord,
    LocationMaster,
    MentorStep,
    MoodEntry,
    OutdoorWeather,
    PartialSlots,
    Phase,
    TomorrowWeather,
)
from agri_buddy.orchestrator.transitions import OPENING_LINE, RETRY_LINE, Pacing
from agri_buddy.records.finalizer import RecordFinalizer, RecordStore
from agri_buddy.services.admin_log import AdminLogService
from agri_buddy.services.extraction import ExtractionService
from agri_buddy.services.ocr import OcrResult, OcrService
from agri_buddy.services.weather import WeatherService
from agri_buddy.voice.capture import PERMISSION_DENIED_NOTICE, CaptureMode, CaptureOutcome


async def no_sleep(_: float) -> None:
    return None


class RecordingPlayback:
    def __init__(self) -> None:
        self.spoken: list[str] = []
        self.cancels = 0

    async def speak(self, text: str) -> None:
        self.spoken.append(text)

    def cancel(self) -> None:
        self.cancels += 1


class ScriptedExtraction(ExtractionService):
    def __init__(self, response: ExtractionResponse) -> None:
        self.response = response
        self.requests: list[ExtractionRequest] = []

    async def extract(self, request: ExtractionRequest) -> ExtractionResponse:
        self.requests.append(request)
        return self.response


class BlockingExtraction(ExtractionService):
    """Holds the request open until released."""

    def __init__(self, response: ExtractionResponse) -> None:
        self.response = response
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def extract(self, request: ExtractionRequest) -> ExtractionResponse:
        self.entered.set()
        await self.release.wait()
        return self.response


class FailingExtraction(ExtractionService):
    async def extract(self, request: ExtractionRequest) -> ExtractionResponse:
        raise LLMError("server down", status_code=503)


class CountingAdminLog(AdminLogService):
    def __init__(self) -> None:
        self.calls: list[list[tuple[str, str]]] = []

    async def generate(self, items: list[tuple[str, str]]) -> str:
        self.calls.append(items)
        return f"AI日誌{len(self.calls)}"


class BrokenAdminLog(AdminLogService):
    async def generate(self, items: list[tuple[str, str]]) -> str:
        raise ValueError("unexpected payload")


class FixedWeather(WeatherService):
    async def current(self) -> OutdoorWeather:
        return OutdoorWeather(description="晴れ", temperature=22, code=1)

    async def tomorrow(self) -> TomorrowWeather:
        return TomorrowWeather(description="くもり", max_temp=24, min_temp=15, code=3)


class FixedOcr(OcrService):
    async def read(self, image: bytes, mime_type: str = "image/jpeg") -> OcrResult:
        return OcrResult(raw_text="4/28 灌水 28度", slots=PartialSlots(work_log="灌水", max_temp=28), date="2024-04-28")


class ListStore(RecordStore):
    def __init__(self) -> None:
        self.records: list[LocalRecord] = []
        self.locations: list[LocationMaster] = []
        self.mood: list[MoodEntry] = []

    async def append_record(self, record: LocalRecord) -> None:
        self.records.append(record)

    async def list_records(self) -> list[LocalRecord]:
        return list(self.records)

    async def list_locations(self) -> list[LocationMaster]:
        return list(self.locations)

    async def save_location(self, location: LocationMaster) -> None:
        self.locations = [loc for loc in self.locations if loc.id != location.id] + [location]

    async def append_mood(self, entry: MoodEntry, prune_before_ms: int) -> None:
        self.mood.append(entry)


class FakeCapture:
    def __init__(self, permission: bool = True) -> None:
        self.permission = permission
        self.is_listening = False
        self.muted = True
        self.modes: list[CaptureMode] = []
        self.handlers = None
        self.last_transcript = ""

    async def request_permission(self) -> bool:
        return self.permission

    async def start(self, mode, handlers) -> None:
        self.is_listening = True
        self.modes.append(mode)
        self.handlers = handlers

    async def stop(self, user_initiated: bool = False) -> CaptureOutcome:
        self.is_listening = False
        return CaptureOutcome.REVIEW if self.last_transcript else CaptureOutcome.IDLE

    def mute(self) -> None:
        self.muted = True

    def unmute(self) -> None:
        self.muted = False


def irrigation_response(*missing: FollowUpStep) -> ExtractionResponse:
    return ExtractionResponse(
        reply="灌水ですね。",
        slots=PartialSlots(work_log="灌水"),
        missing_questions=list(missing),
    )


class Harness:
    def __init__(
        self,
        extraction: ExtractionService | None = None,
        capture: FakeCapture | None = None,
        admin_log: AdminLogService | None = None,
    ) -> None:
        self.playback = RecordingPlayback()
        self.admin_log = admin_log or CountingAdminLog()
        self.store = ListStore()
        self.finalizer = RecordFinalizer(
            self.store,
            default_location="茂木町ハウス",
            clock=lambda: datetime(2024, 5, 1, 18, 0),
            rng=random.Random(0),
        )
        self.orchestrator = InterviewOrchestrator(
            capture=capture,  # type: ignore[arg-type]
            playback=self.playback,  # type: ignore[arg-type]
            extraction=extraction,
            admin_log=self.admin_log,
            weather=FixedWeather(),
            ocr=FixedOcr(),
            finalizer=self.finalizer,
            pacing=Pacing(admin_log_debounce_s=60.0),
            sleep=no_sleep,
            rng=random.Random(0),
        )

    @property
    def ctx(self):
        return self.orchestrator.context

    async def say(self, text: str) -> None:
        await self.orchestrator.submit_text(text)
        await self.orchestrator.wait_idle()


@pytest.mark.asyncio
async def test_full_interview_saves_ai_diary() -> None:
    h = Harness(ScriptedExtraction(irrigation_response(FollowUpStep.HOUSE_TEMP)))
    phases: list[Phase] = []
    h.orchestrator.add_observer(lambda ctx: phases.append(ctx.phase))

    await h.orchestrator.begin()
    assert h.ctx.phase == Phase.LISTENING
    assert h.playback.spoken == [OPENING_LINE]

    await h.say("灌水した")
    assert h.ctx.phase == Phase.FOLLOW_UP
    assert h.ctx.current_step == FollowUpStep.HOUSE_TEMP
    assert "灌水ですね。" in h.playback.spoken

    await h.say("28度と19度")
    assert h.ctx.slots.max_temp == 28.0
    assert h.ctx.slots.min_temp == 19.0
    assert h.ctx.current_step == FollowUpStep.PHOTO

    await h.orchestrator.attach_photo()
    await h.orchestrator.wait_idle()
    assert h.ctx.phase == Phase.CONFIRM
    assert h.ctx.admin_log == "AI日誌1"
    assert h.ctx.admin_log_source == "ai"

    outcome = await h.orchestrator.save()

    assert outcome is not None
    assert h.store.records == [outcome.record]
    assert outcome.record.admin_log == "AI日誌1"
    assert outcome.record.photo_count == 1
    assert outcome.record.slots.work_log == "灌水"
    assert h.ctx.phase == Phase.IDLE
    assert h.playback.spoken[-1] == outcome.message
    assert Phase.BREATHING in phases
    await h.orchestrator.aclose()


@pytest.mark.asyncio
async def test_save_waits_for_pending_admin_log() -> None:
    h = Harness(ScriptedExtraction(irrigation_response()))
    await h.orchestrator.begin()
    await h.say("灌水した")
    await h.orchestrator.skip_all()
    await h.orchestrator.wait_idle()
    assert h.ctx.admin_log == "AI日誌1"

    # The edit schedules a debounced regeneration well past the test run.
    await h.orchestrator.edit_item("max_temp", "31")
    assert h.ctx.admin_log_source == "template"

    outcome = await h.orchestrator.save()

    assert outcome is not None
    assert outcome.record.slots.max_temp == 31.0
    assert outcome.record.admin_log == "AI日誌2"
    await h.orchestrator.aclose()


@pytest.mark.asyncio
async def test_broken_admin_log_service_saves_the_template() -> None:
    h = Harness(ScriptedExtraction(irrigation_response()), admin_log=BrokenAdminLog())
    await h.orchestrator.begin()
    await h.say("灌水した")
    await h.orchestrator.skip_all()
    await h.orchestrator.wait_idle()
    assert h.ctx.admin_log_source == "template"

    await h.orchestrator.edit_item("max_temp", "31")
    outcome = await h.orchestrator.save()

    assert outcome is not None
    assert outcome.record.admin_log.startswith("【日付】")
    assert "最高31℃" in outcome.record.admin_log
    assert h.store.records == [outcome.record]
    await h.orchestrator.aclose()


@pytest.mark.asyncio
async def test_short_fertilizer_answer_is_asked_again() -> None:
    h = Harness(ScriptedExtraction(irrigation_response(FollowUpStep.FERTILIZER)))
    await h.orchestrator.begin()
    await h.say("灌水した")

    await h.say("油")
    assert h.playback.spoken[-1] == RETRY_LINE
    assert h.ctx.current_step == FollowUpStep.FERTILIZER

    await h.say("油かすを2袋")
    assert h.ctx.slots.fertilizer is not None
    assert h.ctx.current_step == FollowUpStep.PHOTO
    await h.orchestrator.aclose()


@pytest.mark.asyncio
async def test_skip_all_keeps_keywords_of_abandoned_extraction() -> None:
    extraction = BlockingExtraction(ExtractionResponse(reply="使われない返事"))
    h = Harness(extraction)
    await h.orchestrator.begin()

    pending = asyncio.create_task(h.orchestrator.submit_text("灌水した。28度"))
    await extraction.entered.wait()
    await h.orchestrator.skip_all()
    await pending
    await h.orchestrator.wait_idle()

    assert h.ctx.phase == Phase.CONFIRM
    assert h.ctx.slots.work_log == "灌水"
    assert h.ctx.slots.max_temp == 28.0
    assert "使われない返事" not in h.playback.spoken
    await h.orchestrator.aclose()


@pytest.mark.asyncio
async def test_extraction_failure_falls_back_to_keywords() -> None:
    h = Harness(FailingExtraction())
    await h.orchestrator.begin()
    await h.say("剪定した")

    assert h.ctx.phase == Phase.FOLLOW_UP
    assert h.ctx.slots.work_log == "剪定"
    assert h.ctx.queue[-1] == FollowUpStep.PHOTO
    await h.orchestrator.aclose()


@pytest.mark.asyncio
async def test_fallback_reads_a_single_temperature_once() -> None:
    h = Harness(FailingExtraction())
    await h.orchestrator.begin()
    await h.say("今日は灌水した、気温28度")

    assert h.ctx.slots.work_log == "灌水"
    assert h.ctx.slots.max_temp == 28.0
    assert h.ctx.slots.min_temp is None
    await h.orchestrator.aclose()


@pytest.mark.asyncio
async def test_extraction_history_excludes_the_current_utterance() -> None:
    extraction = ScriptedExtraction(irrigation_response(FollowUpStep.HOUSE_TEMP))
    h = Harness(extraction)
    await h.orchestrator.begin()
    await h.say("灌水した")

    request = extraction.requests[0]
    assert request.utterance == "灌水した"
    assert all(m.text != "灌水した" for m in request.history)
    await h.orchestrator.aclose()


@pytest.mark.asyncio
async def test_sos_interrupts_and_offers_consultation() -> None:
    h = Harness(ScriptedExtraction(irrigation_response(FollowUpStep.HOUSE_TEMP)))
    await h.orchestrator.begin()
    await h.say("灌水した")

    await h.say("もう死にたい")

    assert h.ctx.phase == Phase.MENTOR
    assert h.ctx.mentor_step == MentorStep.ASK
    assert MENTOR_COMFORT_LINE in h.playback.spoken
    assert "あしたはくもり、最高24度。てんきにあわせて、むりなく。" in h.playback.spoken
    assert h.playback.spoken[-1] == MENTOR_ASK_LINE

    await h.orchestrator.mentor_answer(True)
    assert h.ctx.mentor_step == MentorStep.SHEET
    assert "もう死にたい" in h.ctx.consultation_sheet
    assert h.store.records == []
    await h.orchestrator.aclose()


@pytest.mark.asyncio
async def test_discard_drops_session() -> None:
    h = Harness(ScriptedExtraction(irrigation_response(FollowUpStep.HOUSE_TEMP)))
    await h.orchestrator.begin()
    await h.say("灌水した")
    epoch = h.ctx.epoch

    await h.orchestrator.discard()
    await h.orchestrator.wait_idle()

    assert h.ctx.phase == Phase.IDLE
    assert h.ctx.epoch == epoch + 1
    assert h.ctx.slots == PartialSlots()
    assert await h.orchestrator.save() is None
    assert h.store.records == []
    await h.orchestrator.aclose()


@pytest.mark.asyncio
async def test_image_seed_goes_to_review() -> None:
    h = Harness()
    await h.orchestrator.seed_from_image(b"jpeg-bytes")
    await h.orchestrator.wait_idle()

    assert h.ctx.phase == Phase.CONFIRM
    assert h.ctx.ocr_date == "2024-04-28"

    outcome = await h.orchestrator.save()
    assert outcome is not None
    assert outcome.record.date == "2024-04-28"
    await h.orchestrator.aclose()


class TestWithCapture:
    @pytest.mark.asyncio
    async def test_capture_follows_the_interview(self) -> None:
        capture = FakeCapture()
        h = Harness(ScriptedExtraction(irrigation_response(FollowUpStep.HOUSE_TEMP)), capture=capture)
        await h.orchestrator.begin()

        assert capture.is_listening
        assert capture.muted is False
        assert capture.modes == [CaptureMode.PERSISTENT]

        capture.handlers.on_utterance("灌水した")
        await asyncio.sleep(0)
        await h.orchestrator.wait_idle()

        assert h.ctx.current_step == FollowUpStep.HOUSE_TEMP
        assert capture.muted is False
        await h.orchestrator.aclose()
        assert not capture.is_listening

    @pytest.mark.asyncio
    async def test_interim_transcript_reaches_listeners(self) -> None:
        capture = FakeCapture()
        h = Harness(capture=capture)
        heard: list[str] = []
        h.orchestrator.add_interim_listener(heard.append)
        await h.orchestrator.begin()

        capture.handlers.on_interim("灌水")
        capture.handlers.on_interim("灌水した")

        assert heard == ["灌水", "灌水した"]
        assert h.ctx.phase == Phase.LISTENING
        await h.orchestrator.aclose()

    @pytest.mark.asyncio
    async def test_permission_denied_switches_to_manual_entry(self) -> None:
        h = Harness(capture=FakeCapture(permission=False))
        await h.orchestrator.begin()
        await h.orchestrator.wait_idle()

        assert h.ctx.manual_entry is True
        assert h.ctx.notice == PERMISSION_DENIED_NOTICE
        await h.orchestrator.aclose()

    @pytest.mark.asyncio
    async def test_stop_listening_submits_the_transcript(self) -> None:
        capture = FakeCapture()
        h = Harness(ScriptedExtraction(irrigation_response(FollowUpStep.HOUSE_TEMP)), capture=capture)
        await h.orchestrator.begin()

        capture.last_transcript = "灌水した"
        await h.orchestrator.stop_listening()
        await h.orchestrator.wait_idle()

        assert h.ctx.phase == Phase.FOLLOW_UP
        assert h.ctx.conversation[0].text == "灌水した"
        await h.orchestrator.aclose()
