"""
Interview state machine transitions.

Every transition is a pure function `(InterviewContext, event) ->
Transition(context, effects)`. Effects are plain data; the orchestrator is
the only component that executes them, in order, one event at a time.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import date
from typing import TYPE_CHECKING, Callable

from agri_buddy.agents import confidence as conf_engine
from agri_buddy.agents.confidence import is_negative_input
from agri_buddy.agents.risk_responses import (
    MENTOR_ASK_LINE,
    MENTOR_COMFORT_LINE,
    MENTOR_SHEET_READY_LINE,
    build_consultation_sheet,
    tomorrow_hint,
)
from agri_buddy.agents.slot_extraction import (
    apply_answer,
    detect_location_override,
    extract_slots,
    sanitize_location,
)
from agri_buddy.orchestrator.interview_state import InterviewContext
from agri_buddy.orchestrator.schemas import (
    DATA_STEPS,
    ConfirmItem,
    EmotionAnalysis,
    ExtractionResponse,
    FollowUpStep,
    MentorStep,
    PartialSlots,
    Phase,
    TomorrowWeather,
    build_confirm_items,
    flatten_confirm_items,
)
from agri_buddy.voice.capture import CaptureMode

if TYPE_CHECKING:
    from agri_buddy.services.ocr import OcrResult

logger = logging.getLogger(__name__)

OPENING_LINE = "おつかれさまです。きょうの作業を話してください。"
COMPLETION_LINE = "ありがとうございます。内容を確認してください。"
REST_NUDGE_LINE = "ながい作業、おつかれさま。むりは禁物。15分やすみませんか？"
RETRY_LINE = "もう一度お願いします"
PHOTO_WAIT_LINE = "写真を追加してください。「次へ」でとばせます。"
OCR_EMPTY_LINE = "読み取れるデータがありませんでした。"
OCR_FAILED_LINE = "写真の読み取りに失敗しました。もう一度試してください。"
MENTOR_REPEAT_LINE = "「はい」か「いいえ」で教えてください。"
MENTOR_DECLINED_LINE = "わかりました。いつでもここで話してくださいね。"
DEFAULT_REPLY = "お疲れさまです。"

QUESTION_SUFFIX = "なければ「次へ」。"
PHOTO_SUFFIX = "「次へ」でとばせます。"

QUESTION_POOLS: dict[FollowUpStep, tuple[str, ...]] = {
    FollowUpStep.WORK: ("今日の主な作業は何ですか？", "きょうはどんな作業をしましたか？"),
    FollowUpStep.HOUSE_TEMP: ("ハウスの温度は？（最高・最低も）", "ハウスは何度くらいでしたか？"),
    FollowUpStep.FERTILIZER: ("肥料は使いましたか？", "肥料はまきましたか？"),
    FollowUpStep.PEST: ("病害虫はいましたか？", "虫や病気は見かけましたか？"),
    FollowUpStep.HARVEST: ("収穫はしましたか？", "きょうの収穫はどれくらいですか？"),
    FollowUpStep.COST: ("資材や燃料費はかかりましたか？", "きょう使ったお金はありますか？"),
    FollowUpStep.DURATION: ("作業時間はどれくらいですか？", "何時間くらい作業しましたか？"),
    FollowUpStep.PHOTO: ("写真は撮りますか？",),
}

# Whole-utterance forms only: "30度以上" must not end the interview.
DONE_RE = re.compile(
    r"^(?:これで|きょうは|今日は)?(?:以上|いじょう|終わり|おわり|終了|しゅうりょう)(?:です)?[。！!、\s]*$"
)
SKIP_COMMAND_RE = re.compile(
    r"^(?:スキップ|すきっぷ|パス|ぱす|次へ|つぎへ|次|いいえ)(?:で|です|して)?[。！!、\s]*$"
)
PHOTO_COMMAND_RE = re.compile(r"写真を?撮って|カメラを?起動|撮影して|撮るよ")
YES_RE = re.compile(r"^(?:はい|うん|ええ|お願い|おねがい|相談したい|そうする|する)")
NO_RE = re.compile(r"^(?:いいえ|いや|大丈夫|だいじょうぶ|しない|いらない|結構|けっこう)")
_HOURS_RE = re.compile(r"(\d+(?:\.\d+)?)\s*時間")

REST_NUDGE_HOURS = 4


# ----------------------------------------------------------------------
# Effects
# ----------------------------------------------------------------------


@dataclass(frozen=True)
class CancelPlayback:
    pass


@dataclass(frozen=True)
class StopCapture:
    pass


@dataclass(frozen=True)
class StartCapture:
    mode: CaptureMode = CaptureMode.PERSISTENT


@dataclass(frozen=True)
class Mute:
    pass


@dataclass(frozen=True)
class Unmute:
    pass


@dataclass(frozen=True)
class Speak:
    text: str


@dataclass(frozen=True)
class Pause:
    seconds: float


@dataclass(frozen=True)
class RequestPermission:
    pass


@dataclass(frozen=True)
class RequestExtraction:
    utterance: str


@dataclass(frozen=True)
class ScheduleAdminLog:
    revision: int
    delay: float


@dataclass(frozen=True)
class FlushAdminLog:
    pass


@dataclass(frozen=True)
class FetchTomorrowWeather:
    pass


@dataclass(frozen=True)
class ReadImage:
    image: bytes
    mime_type: str


@dataclass(frozen=True)
class Finalize:
    pass


@dataclass(frozen=True)
class Dispatch:
    event: object


Effect = (
    CancelPlayback
    | StopCapture
    | StartCapture
    | Mute
    | Unmute
    | Speak
    | Pause
    | RequestPermission
    | RequestExtraction
    | ScheduleAdminLog
    | FlushAdminLog
    | FetchTomorrowWeather
    | ReadImage
    | Finalize
    | Dispatch
)


# ----------------------------------------------------------------------
# Events
# ----------------------------------------------------------------------


@dataclass(frozen=True)
class Begin:
    pass


@dataclass(frozen=True)
class Utterance:
    """A spoken or typed utterance, classified for risk before it is queued."""

    text: str
    analysis: EmotionAnalysis = field(default_factory=EmotionAnalysis)
    nudge: str | None = None


@dataclass(frozen=True)
class ExtractionDone:
    epoch: int
    response: ExtractionResponse


@dataclass(frozen=True)
class Present:
    epoch: int


@dataclass(frozen=True)
class SkipStep:
    pass


@dataclass(frozen=True)
class SkipAll:
    pass


@dataclass(frozen=True)
class Discard:
    pass


@dataclass(frozen=True)
class AttachPhoto:
    pass


@dataclass(frozen=True)
class EditItem:
    key: str
    value: str


@dataclass(frozen=True)
class AdminLogReady:
    epoch: int
    revision: int
    text: str


@dataclass(frozen=True)
class WeatherFetched:
    epoch: int
    weather: TomorrowWeather | None


@dataclass(frozen=True)
class MentorAnswer:
    yes: bool


@dataclass(frozen=True)
class PermissionDenied:
    notice: str


@dataclass(frozen=True)
class CaptureFailed:
    notice: str


@dataclass(frozen=True)
class CaptureStopped:
    pass


@dataclass(frozen=True)
class SeedImage:
    image: bytes
    mime_type: str = "image/jpeg"


@dataclass(frozen=True)
class OcrDone:
    epoch: int
    result: OcrResult | None
    failed: bool = False


@dataclass(frozen=True)
class Save:
    pass


@dataclass(frozen=True)
class Saved:
    message: str


@dataclass(frozen=True)
class Transition:
    context: InterviewContext
    effects: tuple = ()


@dataclass(frozen=True)
class Pacing:
    breathing_s: float = 1.5
    quick_breathing_s: float = 0.5
    admin_log_debounce_s: float = 1.5


DEFAULT_PACING = Pacing()


# ----------------------------------------------------------------------
# Helpers
# ----------------------------------------------------------------------


def is_done_phrase(text: str) -> bool:
    return DONE_RE.match(text.strip()) is not None


def is_no_answer(text: str) -> bool:
    """Empty, an explicit skip command, or a negative answer."""
    t = text.strip()
    if not t:
        return True
    if SKIP_COMMAND_RE.match(t):
        return True
    return is_negative_input(t.rstrip("。！!、 "))


def step_filled(step: FollowUpStep, slots: PartialSlots, photo_count: int = 0) -> bool:
    if step == FollowUpStep.WORK:
        return slots.work_log is not None
    if step == FollowUpStep.HOUSE_TEMP:
        return slots.has_house_data
    if step == FollowUpStep.FERTILIZER:
        return slots.fertilizer is not None
    if step == FollowUpStep.PEST:
        return slots.pest_status is not None
    if step == FollowUpStep.HARVEST:
        return slots.harvest_amount is not None
    if step == FollowUpStep.COST:
        return slots.material_cost is not None or slots.fuel_cost is not None
    if step == FollowUpStep.DURATION:
        return slots.work_duration is not None
    return photo_count > 0


def build_queue(missing: list[FollowUpStep] | None, slots: PartialSlots) -> tuple[FollowUpStep, ...]:
    """
    Follow-up queue after an extraction.

    Uses the service's missing-question list when it is valid, otherwise
    every unfilled data step in asking order. Filled steps and duplicates
    are dropped and PHOTO always comes last.
    """
    candidates = missing if missing is not None else list(DATA_STEPS)
    queue: list[FollowUpStep] = []
    for step in candidates:
        if step == FollowUpStep.PHOTO or step in queue or step_filled(step, slots):
            continue
        queue.append(step)
    queue.append(FollowUpStep.PHOTO)
    return tuple(queue)


def next_unfilled(ctx: InterviewContext, start: int) -> int:
    """Index of the first step at or after `start` that still needs asking."""
    index = start
    while index < len(ctx.queue) and step_filled(ctx.queue[index], ctx.slots, ctx.photo_count):
        index += 1
    return index


def question_for(step: FollowUpStep, asked: int) -> str:
    pool = QUESTION_POOLS[step]
    suffix = PHOTO_SUFFIX if step == FollowUpStep.PHOTO else QUESTION_SUFFIX
    return f"{pool[asked % len(pool)]}　{suffix}"


def needs_rest(slots: PartialSlots) -> bool:
    m = _HOURS_RE.search(slots.work_duration or "")
    return m is not None and float(m.group(1)) >= REST_NUDGE_HOURS


def date_label(day: date) -> str:
    return f"{day.year}年{day.month}月{day.day}日"


def _append_transcript(ctx: InterviewContext, text: str) -> str:
    return f"{ctx.raw_transcript}\n{text}" if ctx.raw_transcript else text


def _note_risk(ctx: InterviewContext, event: Utterance) -> InterviewContext:
    analysis = event.analysis
    if analysis.tier == 2 and (ctx.deferred is None or analysis.score > ctx.deferred.score):
        return ctx.evolve(deferred=analysis)
    if analysis.tier == 1 and event.nudge and not ctx.pending_nudge:
        return ctx.evolve(pending_nudge=event.nudge)
    return ctx


def _note_location(ctx: InterviewContext, text: str) -> InterviewContext:
    found = detect_location_override(text, ctx.location)
    if found:
        logger.info(f"[INTERVIEW] location override -> {found}")
        return ctx.evolve(location=found, new_location=found)
    return ctx


# ----------------------------------------------------------------------
# Shared transitions
# ----------------------------------------------------------------------


def complete(ctx: InterviewContext, lead: tuple = ()) -> Transition:
    """Leave the interview for the review screen."""
    revision = ctx.admin_log_revision + 1
    nxt = ctx.evolve(
        phase=Phase.CONFIRM,
        index=len(ctx.queue),
        muted=True,
        awaiting_photo=False,
        confirm_items=build_confirm_items(ctx.slots, ctx.ocr_date),
        admin_log=conf_engine.admin_log(ctx.slots, ctx.location),
        admin_log_source="template",
        admin_log_revision=revision,
    )
    effects: tuple = lead + (
        Mute(),
        StopCapture(),
        ScheduleAdminLog(revision=revision, delay=0.0),
        Speak(COMPLETION_LINE),
    )
    if needs_rest(ctx.slots):
        effects += (Speak(REST_NUDGE_LINE),)
    logger.info(f"[INTERVIEW] confirm filled={ctx.slots.filled_fields()}")
    return Transition(nxt, effects)


def advance(ctx: InterviewContext, pacing: Pacing, quick: bool) -> Transition:
    """Move past the current step, breathing before the next question."""
    index = next_unfilled(ctx, ctx.index + 1)
    if index >= len(ctx.queue):
        return complete(ctx.evolve(index=index))
    pause = pacing.quick_breathing_s if quick else pacing.breathing_s
    nxt = ctx.evolve(phase=Phase.BREATHING, index=index, muted=True, awaiting_photo=False, quick_breath=quick)
    return Transition(nxt, (Mute(), Pause(pause), Dispatch(Present(epoch=ctx.epoch))))


def enter_mentor(ctx: InterviewContext, text: str) -> Transition:
    logger.info("[RISK] entering mentor mode")
    nxt = ctx.evolve(
        phase=Phase.MENTOR,
        mentor_step=MentorStep.COMFORT,
        mentor_text=text,
        consultation_sheet="",
        tomorrow_weather=None,
        muted=True,
        awaiting_photo=False,
        pending_nudge=None,
    )
    return Transition(
        nxt,
        (StopCapture(), CancelPlayback(), Speak(MENTOR_COMFORT_LINE), FetchTomorrowWeather()),
    )


# ----------------------------------------------------------------------
# Event handlers
# ----------------------------------------------------------------------


def _on_begin(ctx: InterviewContext, event: Begin, pacing: Pacing) -> Transition:
    nxt = ctx.fresh().evolve(phase=Phase.LISTENING, muted=False)
    return Transition(
        nxt,
        (
            CancelPlayback(),
            StopCapture(),
            RequestPermission(),
            Speak(OPENING_LINE),
            StartCapture(CaptureMode.PERSISTENT),
            Unmute(),
        ),
    )


def _narration(ctx: InterviewContext, event: Utterance, text: str) -> Transition:
    if ctx.phase == Phase.IDLE:
        ctx = ctx.fresh()
    ctx = _note_location(_note_risk(ctx, event), text)
    nxt = ctx.with_message("user", text).evolve(
        phase=Phase.THINKING,
        muted=True,
        raw_transcript=_append_transcript(ctx, text),
        notice=None,
    )
    return Transition(nxt, (Mute(), RequestExtraction(utterance=text)))


def _answer(ctx: InterviewContext, event: Utterance, text: str, pacing: Pacing) -> Transition:
    step = ctx.current_step
    if step is None:
        return complete(ctx)

    ctx = _note_risk(ctx, event)
    cleaned = PHOTO_COMMAND_RE.sub("", text).strip()
    if text:
        ctx = ctx.with_message("user", text)

    if is_done_phrase(cleaned):
        logger.info("[INTERVIEW] done phrase; skipping remaining questions")
        return complete(ctx)

    if is_no_answer(cleaned):
        return advance(ctx, pacing, quick=True)

    if step in (FollowUpStep.FERTILIZER, FollowUpStep.PEST) and len(cleaned) <= 2:
        logger.info(f"[INTERVIEW] answer too short for {step.value}; asking again")
        return Transition(ctx.evolve(muted=False), (Mute(), Speak(RETRY_LINE), Unmute()))

    if step == FollowUpStep.PHOTO:
        return Transition(ctx.evolve(awaiting_photo=True, muted=True), (Mute(), Speak(PHOTO_WAIT_LINE)))

    ctx = _note_location(ctx, cleaned)
    slots, matched = apply_answer(step, cleaned, ctx.slots)
    logger.info(
        f"[INTERVIEW] answer step={step.value} matched={[s.value for s in matched] or 'verbatim'}"
    )
    ctx = ctx.evolve(slots=slots, raw_transcript=_append_transcript(ctx, cleaned))
    return advance(ctx, pacing, quick=False)


def _mentor_voice(ctx: InterviewContext, text: str, pacing: Pacing) -> Transition:
    if ctx.mentor_step != MentorStep.ASK:
        return Transition(ctx)
    t = text.strip()
    if YES_RE.match(t):
        return _on_mentor_answer(ctx, MentorAnswer(yes=True), pacing)
    if NO_RE.match(t):
        return _on_mentor_answer(ctx, MentorAnswer(yes=False), pacing)
    return Transition(ctx.evolve(muted=False), (Mute(), Speak(MENTOR_REPEAT_LINE), Unmute()))


def _on_utterance(ctx: InterviewContext, event: Utterance, pacing: Pacing) -> Transition:
    text = event.text.strip()
    if event.analysis.tier >= 3 and ctx.phase != Phase.MENTOR:
        return enter_mentor(ctx, text)
    if ctx.phase == Phase.MENTOR:
        return _mentor_voice(ctx, text, pacing)
    if ctx.phase == Phase.FOLLOW_UP:
        return _answer(ctx, event, text, pacing)
    if ctx.phase in (Phase.IDLE, Phase.LISTENING) and text:
        return _narration(ctx, event, text)
    logger.debug(f"[INTERVIEW] utterance ignored in phase={ctx.phase.value}")
    return Transition(ctx)


def _on_extraction_done(ctx: InterviewContext, event: ExtractionDone, pacing: Pacing) -> Transition:
    if event.epoch != ctx.epoch or ctx.phase != Phase.THINKING:
        return Transition(ctx)
    response = event.response
    if response.mentor_mode:
        return enter_mentor(ctx, ctx.last_user_text)

    slots = ctx.slots.overlay(response.slots)
    location, new_location = ctx.location, ctx.new_location
    suggested = sanitize_location(response.new_location)
    if suggested and suggested != ctx.location:
        location, new_location = suggested, suggested

    reply = response.reply or DEFAULT_REPLY
    spoken = f"{reply}{ctx.pending_nudge}" if ctx.pending_nudge else reply
    nxt = ctx.with_message("assistant", reply).evolve(
        phase=Phase.FOLLOW_UP,
        slots=slots,
        queue=build_queue(response.missing_questions, slots),
        index=0,
        first_question=True,
        quick_breath=False,
        pending_nudge=None,
        location=location,
        new_location=new_location,
        advice=response.advice or ctx.advice,
        strategic_advice=response.strategic_advice or ctx.strategic_advice,
    )
    logger.info(
        f"[INTERVIEW] queue={[s.value for s in nxt.queue]} degraded={response.degraded}"
    )
    return Transition(nxt, (Speak(spoken), Dispatch(Present(epoch=ctx.epoch))))


def _on_present(ctx: InterviewContext, event: Present, pacing: Pacing) -> Transition:
    if event.epoch != ctx.epoch or ctx.phase not in (Phase.FOLLOW_UP, Phase.BREATHING):
        return Transition(ctx)
    index = next_unfilled(ctx, ctx.index)
    if index >= len(ctx.queue):
        return complete(ctx.evolve(index=index))

    step = ctx.queue[index]
    effects: tuple = ()
    if ctx.pending_nudge:
        effects += (Speak(ctx.pending_nudge),)
    effects += (Speak(question_for(step, ctx.questions_asked)),)
    if step != FollowUpStep.PHOTO:
        effects += (StartCapture(CaptureMode.PERSISTENT), Unmute())

    nxt = ctx.evolve(
        phase=Phase.FOLLOW_UP,
        index=index,
        first_question=False,
        quick_breath=False,
        pending_nudge=None,
        questions_asked=ctx.questions_asked + 1,
        muted=step == FollowUpStep.PHOTO,
        awaiting_photo=False,
    )
    return Transition(nxt, effects)


def _on_skip_step(ctx: InterviewContext, event: SkipStep, pacing: Pacing) -> Transition:
    if ctx.phase != Phase.FOLLOW_UP:
        return Transition(ctx)
    return advance(ctx, pacing, quick=True)


def _on_skip_all(ctx: InterviewContext, event: SkipAll, pacing: Pacing) -> Transition:
    if not ctx.in_interview:
        return Transition(ctx)
    slots = ctx.slots
    if ctx.phase == Phase.THINKING and ctx.last_user_text:
        # The in-flight extraction was abandoned; keep what the keywords give.
        slots = extract_slots(ctx.last_user_text, slots)
    return complete(ctx.evolve(slots=slots), lead=(StopCapture(), CancelPlayback()))


def _on_discard(ctx: InterviewContext, event: Discard, pacing: Pacing) -> Transition:
    return Transition(ctx.fresh(), (StopCapture(), CancelPlayback()))


def _on_attach_photo(ctx: InterviewContext, event: AttachPhoto, pacing: Pacing) -> Transition:
    ctx = ctx.evolve(photo_count=ctx.photo_count + 1)
    if ctx.phase == Phase.FOLLOW_UP and ctx.current_step == FollowUpStep.PHOTO:
        return advance(ctx, pacing, quick=False)
    return Transition(ctx)


def _on_edit_item(ctx: InterviewContext, event: EditItem, pacing: Pacing) -> Transition:
    if ctx.phase != Phase.CONFIRM:
        return Transition(ctx)
    if not any(item.key == event.key for item in ctx.confirm_items):
        logger.warning(f"[INTERVIEW] unknown review field: {event.key}")
        return Transition(ctx)

    items = tuple(
        ConfirmItem(key=i.key, label=i.label, value=event.value) if i.key == event.key else i
        for i in ctx.confirm_items
    )
    slots = flatten_confirm_items(items, ctx.slots)
    ocr_date = ctx.ocr_date
    if event.key == "ocr_date":
        ocr_date = event.value.strip() or None
    revision = ctx.admin_log_revision + 1
    # Advice from the extraction no longer matches edited slots; the finalizer recomputes it.
    stale = slots != ctx.slots
    nxt = ctx.evolve(
        slots=slots,
        ocr_date=ocr_date,
        confirm_items=build_confirm_items(slots, ocr_date),
        admin_log=conf_engine.admin_log(slots, ctx.location),
        admin_log_source="template",
        admin_log_revision=revision,
        advice=None if stale else ctx.advice,
        strategic_advice=None if stale else ctx.strategic_advice,
    )
    return Transition(nxt, (ScheduleAdminLog(revision=revision, delay=pacing.admin_log_debounce_s),))


def _on_admin_log_ready(ctx: InterviewContext, event: AdminLogReady, pacing: Pacing) -> Transition:
    if (
        ctx.phase != Phase.CONFIRM
        or event.epoch != ctx.epoch
        or event.revision != ctx.admin_log_revision
    ):
        logger.debug(f"[INTERVIEW] stale admin log revision={event.revision}")
        return Transition(ctx)
    return Transition(ctx.evolve(admin_log=event.text, admin_log_source="ai"))


def _on_weather_fetched(ctx: InterviewContext, event: WeatherFetched, pacing: Pacing) -> Transition:
    if event.epoch != ctx.epoch or ctx.phase != Phase.MENTOR or ctx.mentor_step != MentorStep.COMFORT:
        return Transition(ctx)
    effects: tuple = ()
    if event.weather is not None:
        effects += (Speak(tomorrow_hint(event.weather)),)
    effects += (Speak(MENTOR_ASK_LINE), StartCapture(CaptureMode.NORMAL), Unmute())
    nxt = ctx.evolve(tomorrow_weather=event.weather, mentor_step=MentorStep.ASK, muted=False)
    return Transition(nxt, effects)


def _on_mentor_answer(ctx: InterviewContext, event: MentorAnswer, pacing: Pacing) -> Transition:
    if ctx.phase != Phase.MENTOR or ctx.mentor_step == MentorStep.SHEET:
        return Transition(ctx)
    if event.yes:
        sheet = build_consultation_sheet(ctx.mentor_text, date_label(date.today()), ctx.tomorrow_weather)
        nxt = ctx.evolve(mentor_step=MentorStep.SHEET, consultation_sheet=sheet, muted=True)
        return Transition(nxt, (StopCapture(), CancelPlayback(), Speak(MENTOR_SHEET_READY_LINE)))
    return Transition(ctx.fresh(), (StopCapture(), CancelPlayback(), Speak(MENTOR_DECLINED_LINE)))


def _on_permission_denied(ctx: InterviewContext, event: PermissionDenied, pacing: Pacing) -> Transition:
    return Transition(ctx.evolve(notice=event.notice, manual_entry=True))


def _on_capture_failed(ctx: InterviewContext, event: CaptureFailed, pacing: Pacing) -> Transition:
    return Transition(ctx.evolve(notice=event.notice, manual_entry=True))


def _on_capture_stopped(ctx: InterviewContext, event: CaptureStopped, pacing: Pacing) -> Transition:
    if ctx.phase == Phase.LISTENING:
        return Transition(ctx.evolve(phase=Phase.IDLE, muted=True))
    return Transition(ctx)


def _on_seed_image(ctx: InterviewContext, event: SeedImage, pacing: Pacing) -> Transition:
    if ctx.phase not in (Phase.IDLE, Phase.LISTENING):
        return Transition(ctx)
    base = ctx.fresh() if ctx.phase == Phase.IDLE else ctx
    nxt = base.evolve(phase=Phase.THINKING, muted=True, notice=None)
    return Transition(nxt, (StopCapture(), CancelPlayback(), ReadImage(event.image, event.mime_type)))


def _on_ocr_done(ctx: InterviewContext, event: OcrDone, pacing: Pacing) -> Transition:
    if event.epoch != ctx.epoch or ctx.phase != Phase.THINKING:
        return Transition(ctx)
    result = event.result
    if result is not None and result.has_data:
        nxt = ctx.evolve(
            slots=ctx.slots.overlay(result.slots),
            ocr_date=result.date or ctx.ocr_date,
            raw_transcript=ctx.raw_transcript or result.raw_text,
        )
        return complete(nxt)
    line = OCR_FAILED_LINE if event.failed else OCR_EMPTY_LINE
    return Transition(ctx.evolve(phase=Phase.IDLE, notice=line), (Speak(line),))


def _on_save(ctx: InterviewContext, event: Save, pacing: Pacing) -> Transition:
    if ctx.phase != Phase.CONFIRM:
        return Transition(ctx)
    return Transition(ctx, (StopCapture(), CancelPlayback(), FlushAdminLog(), Finalize()))


def _on_saved(ctx: InterviewContext, event: Saved, pacing: Pacing) -> Transition:
    return Transition(ctx.fresh(), (Speak(event.message),))


_HANDLERS: dict[type, Callable[[InterviewContext, object, Pacing], Transition]] = {
    Begin: _on_begin,
    Utterance: _on_utterance,
    ExtractionDone: _on_extraction_done,
    Present: _on_present,
    SkipStep: _on_skip_step,
    SkipAll: _on_skip_all,
    Discard: _on_discard,
    AttachPhoto: _on_attach_photo,
    EditItem: _on_edit_item,
    AdminLogReady: _on_admin_log_ready,
    WeatherFetched: _on_weather_fetched,
    MentorAnswer: _on_mentor_answer,
    PermissionDenied: _on_permission_denied,
    CaptureFailed: _on_capture_failed,
    CaptureStopped: _on_capture_stopped,
    SeedImage: _on_seed_image,
    OcrDone: _on_ocr_done,
    Save: _on_save,
    Saved: _on_saved,
}


def transition(ctx: InterviewContext, event: object, pacing: Pacing = DEFAULT_PACING) -> Transition:
    """
    Apply one event.

    Args:
        ctx: Current context.
        event: One of the event dataclasses of this module.
        pacing: Pause lengths.

    Returns:
        The next context and the effects to run, in order.
    """
    handler = _HANDLERS.get(type(event))
    if handler is None:
        raise TypeError(f"Unknown interview event: {type(event).__name__}")
    return handler(ctx, event, pacing)
