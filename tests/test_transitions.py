"""
Tests for the pure interview transitions.

Each test builds a context, applies one event and checks the next context
and the effects the orchestrator would run.
"""

import pytest

from agri_buddy.agents.risk_classifier import analyze_emotion
from agri_buddy.agents.risk_responses import MENTOR_ASK_LINE, MENTOR_COMFORT_LINE, MENTOR_SHEET_READY_LINE
from agri_buddy.orchestrator.interview_state import InterviewContext
from agri_buddy.orchestrator.schemas import (
    ConvMessage,
    ExtractionResponse,
    FollowUpStep,
    MentorStep,
    PartialSlots,
    Phase,
    TomorrowWeather,
)
from agri_buddy.orchestrator.transitions import (
    COMPLETION_LINE,
    MENTOR_DECLINED_LINE,
    MENTOR_REPEAT_LINE,
    OCR_FAILED_LINE,
    OPENING_LINE,
    PHOTO_WAIT_LINE,
    REST_NUDGE_LINE,
    RETRY_LINE,
    AdminLogReady,
    AttachPhoto,
    Begin,
    CancelPlayback,
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
    Pause,
    PermissionDenied,
    Present,
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
    build_queue,
    is_done_phrase,
    is_no_answer,
    question_for,
    transition,
)
from agri_buddy.services.ocr import OcrResult
from agri_buddy.voice.capture import CaptureMode

F = FollowUpStep


def follow_up(queue: tuple, index: int = 0, **changes) -> InterviewContext:
    return InterviewContext(phase=Phase.FOLLOW_UP, queue=queue, index=index, muted=False, epoch=1, **changes)


def say(text: str, nudge: str | None = None) -> Utterance:
    return Utterance(text=text, analysis=analyze_emotion(text), nudge=nudge)


def confirm_ctx() -> InterviewContext:
    ctx = follow_up((F.PHOTO,), slots=PartialSlots(work_log="灌水", max_temp=28), location="茂木町ハウス")
    return transition(ctx, SkipAll()).context


def mentor_ctx() -> InterviewContext:
    ctx = InterviewContext(phase=Phase.LISTENING, muted=False, epoch=2)
    return transition(ctx, say("死にたい")).context


def asking_ctx() -> InterviewContext:
    ctx = mentor_ctx()
    return transition(ctx, WeatherFetched(epoch=ctx.epoch, weather=None)).context


class TestHelpers:
    @pytest.mark.parametrize("text", ["以上", "以上です。", "これで終わり", "今日は終了です"])
    def test_done_phrases(self, text: str) -> None:
        assert is_done_phrase(text)

    @pytest.mark.parametrize("text", ["30度以上", "以上の作業をした", "終わりに灌水"])
    def test_done_words_inside_sentences_do_not_count(self, text: str) -> None:
        assert not is_done_phrase(text)

    @pytest.mark.parametrize("text", ["", "スキップ", "次へ。", "なし", "使いませんでした", "いいえ"])
    def test_no_answers(self, text: str) -> None:
        assert is_no_answer(text)

    @pytest.mark.parametrize("text", ["油かす", "次の作業", "28度"])
    def test_real_answers(self, text: str) -> None:
        assert not is_no_answer(text)

    def test_build_queue_fallback_skips_filled_steps(self) -> None:
        slots = PartialSlots(work_log="灌水", max_temp=28)
        assert build_queue(None, slots) == (F.FERTILIZER, F.PEST, F.HARVEST, F.COST, F.DURATION, F.PHOTO)

    def test_build_queue_from_service_list(self) -> None:
        slots = PartialSlots(work_log="灌水")
        queue = build_queue([F.PHOTO, F.HOUSE_TEMP, F.WORK, F.FERTILIZER, F.HOUSE_TEMP], slots)
        assert queue == (F.HOUSE_TEMP, F.FERTILIZER, F.PHOTO)

    def test_questions_rotate_phrasing(self) -> None:
        assert question_for(F.FERTILIZER, 0) == "肥料は使いましたか？　なければ「次へ」。"
        assert question_for(F.FERTILIZER, 1) == "肥料はまきましたか？　なければ「次へ」。"
        assert question_for(F.PHOTO, 5) == "写真は撮りますか？　「次へ」でとばせます。"


class TestNarration:
    def test_begin_opens_a_fresh_session(self) -> None:
        ctx = InterviewContext(phase=Phase.CONFIRM, epoch=4, location="A号ハウス", slots=PartialSlots(work_log="x"))
        result = transition(ctx, Begin())

        assert result.context.phase == Phase.LISTENING
        assert result.context.epoch == 5
        assert result.context.slots == PartialSlots()
        assert result.context.location == "A号ハウス"
        assert result.effects == (
            CancelPlayback(),
            StopCapture(),
            RequestPermission(),
            Speak(OPENING_LINE),
            StartCapture(CaptureMode.PERSISTENT),
            Unmute(),
        )

    def test_narration_requests_extraction(self) -> None:
        ctx = InterviewContext(phase=Phase.LISTENING, muted=False)
        result = transition(ctx, say("灌水した"))

        assert result.context.phase == Phase.THINKING
        assert result.context.muted is True
        assert result.context.last_user_text == "灌水した"
        assert result.context.raw_transcript == "灌水した"
        assert result.effects == (Mute(), RequestExtraction(utterance="灌水した"))

    def test_narration_from_idle_starts_a_new_session(self) -> None:
        ctx = InterviewContext(phase=Phase.IDLE, epoch=3, slots=PartialSlots(work_log="剪定"))
        result = transition(ctx, say("灌水した"))

        assert result.context.epoch == 4
        assert result.context.slots.work_log is None

    def test_location_override_in_narration(self) -> None:
        ctx = InterviewContext(phase=Phase.LISTENING, location="茂木町ハウス")
        result = transition(ctx, say("2号ハウスで灌水"))

        assert result.context.location == "2号ハウス"
        assert result.context.new_location == "2号ハウス"

    def test_tier_one_nudge_is_spoken_after_reply(self) -> None:
        ctx = InterviewContext(phase=Phase.LISTENING, epoch=1)
        thinking = transition(ctx, say("灌水した。腰が痛い", nudge="むりせんでね。")).context
        assert thinking.pending_nudge == "むりせんでね。"

        done = transition(
            thinking,
            ExtractionDone(epoch=1, response=ExtractionResponse(reply="お疲れさまです。")),
        )
        assert done.effects[0] == Speak("お疲れさまです。むりせんでね。")
        assert done.context.pending_nudge is None

    def test_tier_two_is_deferred(self) -> None:
        ctx = InterviewContext(phase=Phase.LISTENING)
        result = transition(ctx, say("疲れたし腰が痛い"))

        assert result.context.deferred is not None
        assert result.context.deferred.tier == 2
        assert result.context.phase == Phase.THINKING


class TestExtraction:
    def _thinking(self) -> InterviewContext:
        return InterviewContext(
            phase=Phase.THINKING,
            epoch=1,
            conversation=(ConvMessage(role="user", text="灌水した"),),
        )

    def test_extraction_builds_queue_and_presents(self) -> None:
        response = ExtractionResponse(
            reply="灌水ですね。",
            slots=PartialSlots(work_log="灌水"),
            missing_questions=[F.HOUSE_TEMP, F.FERTILIZER],
        )
        result = transition(self._thinking(), ExtractionDone(epoch=1, response=response))

        assert result.context.phase == Phase.FOLLOW_UP
        assert result.context.queue == (F.HOUSE_TEMP, F.FERTILIZER, F.PHOTO)
        assert result.context.slots.work_log == "灌水"
        assert result.context.conversation[-1] == ConvMessage(role="assistant", text="灌水ですね。")
        assert result.effects == (Speak("灌水ですね。"), Dispatch(Present(epoch=1)))

    def test_stale_extraction_is_ignored(self) -> None:
        ctx = self._thinking()
        result = transition(ctx, ExtractionDone(epoch=0, response=ExtractionResponse()))

        assert result.context is ctx
        assert result.effects == ()

    def test_service_can_request_mentor_mode(self) -> None:
        result = transition(self._thinking(), ExtractionDone(epoch=1, response=ExtractionResponse(mentor_mode=True)))

        assert result.context.phase == Phase.MENTOR
        assert result.context.mentor_text == "灌水した"

    def test_ghost_location_from_service_is_ignored(self) -> None:
        ctx = self._thinking().evolve(location="茂木町ハウス")
        result = transition(ctx, ExtractionDone(epoch=1, response=ExtractionResponse(new_location="はハウス")))

        assert result.context.location == "茂木町ハウス"
        assert result.context.new_location is None


class TestFollowUp:
    def test_present_asks_the_current_question(self) -> None:
        ctx = follow_up((F.HOUSE_TEMP, F.PHOTO))
        result = transition(ctx, Present(epoch=1))

        assert result.effects == (
            Speak(question_for(F.HOUSE_TEMP, 0)),
            StartCapture(CaptureMode.PERSISTENT),
            Unmute(),
        )
        assert result.context.questions_asked == 1
        assert result.context.muted is False

    def test_present_skips_steps_filled_meanwhile(self) -> None:
        ctx = follow_up((F.HOUSE_TEMP, F.FERTILIZER, F.PHOTO), slots=PartialSlots(max_temp=28))
        result = transition(ctx, Present(epoch=1))

        assert result.context.index == 1
        assert result.effects[0] == Speak(question_for(F.FERTILIZER, 0))

    def test_photo_question_keeps_capture_muted(self) -> None:
        result = transition(follow_up((F.PHOTO,)), Present(epoch=1))

        assert result.effects == (Speak(question_for(F.PHOTO, 0)),)
        assert result.context.muted is True

    def test_answer_fills_slots_and_breathes(self) -> None:
        ctx = follow_up((F.HOUSE_TEMP, F.FERTILIZER, F.PHOTO))
        result = transition(ctx, say("28度と19度"))

        assert result.context.slots.max_temp == 28.0
        assert result.context.slots.min_temp == 19.0
        assert result.context.phase == Phase.BREATHING
        assert result.context.index == 1
        assert result.effects == (Mute(), Pause(1.5), Dispatch(Present(epoch=1)))

    def test_no_answer_takes_a_quick_breath(self) -> None:
        ctx = follow_up((F.HOUSE_TEMP, F.FERTILIZER, F.PHOTO), index=1)
        result = transition(ctx, say("なし"))

        assert result.context.slots.fertilizer is None
        assert result.effects[1] == Pause(0.5)
        assert result.context.index == 2

    def test_too_short_fertilizer_answer_is_asked_again(self) -> None:
        ctx = follow_up((F.FERTILIZER, F.PHOTO))
        result = transition(ctx, say("油"))

        assert result.context.index == 0
        assert result.context.slots.fertilizer is None
        assert result.effects == (Mute(), Speak(RETRY_LINE), Unmute())

    def test_done_phrase_jumps_to_review(self) -> None:
        ctx = follow_up((F.HOUSE_TEMP, F.FERTILIZER, F.PHOTO), slots=PartialSlots(work_log="灌水"))
        result = transition(ctx, say("以上です"))

        assert result.context.phase == Phase.CONFIRM
        assert result.context.admin_log_revision == 1
        assert result.effects == (
            Mute(),
            StopCapture(),
            ScheduleAdminLog(revision=1, delay=0.0),
            Speak(COMPLETION_LINE),
        )

    def test_done_word_inside_an_answer_is_data(self) -> None:
        ctx = follow_up((F.HOUSE_TEMP, F.PHOTO))
        result = transition(ctx, say("30度以上"))

        assert result.context.slots.max_temp == 30.0
        assert result.context.phase == Phase.BREATHING

    def test_spoken_answer_to_photo_waits_for_attachment(self) -> None:
        result = transition(follow_up((F.PHOTO,)), say("はい"))

        assert result.context.awaiting_photo is True
        assert result.effects == (Mute(), Speak(PHOTO_WAIT_LINE))

    def test_skip_at_photo_completes(self) -> None:
        result = transition(follow_up((F.PHOTO,)), say("次へ"))
        assert result.context.phase == Phase.CONFIRM

    def test_photo_attachment_completes_with_rest_nudge(self) -> None:
        ctx = follow_up((F.PHOTO,), slots=PartialSlots(work_duration="5時間"))
        result = transition(ctx, AttachPhoto())

        assert result.context.phase == Phase.CONFIRM
        assert result.context.photo_count == 1
        assert result.effects[-1] == Speak(REST_NUDGE_LINE)

    def test_skip_step(self) -> None:
        ctx = follow_up((F.HARVEST, F.COST, F.PHOTO))
        result = transition(ctx, SkipStep())

        assert result.context.index == 1
        assert result.effects[1] == Pause(0.5)

    def test_skip_all_keeps_keywords_of_abandoned_extraction(self) -> None:
        ctx = InterviewContext(
            phase=Phase.THINKING,
            conversation=(ConvMessage(role="user", text="灌水した。28度"),),
        )
        result = transition(ctx, SkipAll())

        assert result.context.phase == Phase.CONFIRM
        assert result.context.slots.work_log == "灌水"
        assert result.context.slots.max_temp == 28.0
        assert result.effects[:2] == (StopCapture(), CancelPlayback())

    def test_skip_all_outside_interview_is_ignored(self) -> None:
        ctx = InterviewContext(phase=Phase.IDLE)
        assert transition(ctx, SkipAll()).context is ctx

    def test_discard_resets(self) -> None:
        ctx = follow_up((F.PHOTO,), slots=PartialSlots(work_log="灌水"))
        result = transition(ctx, Discard())

        assert result.context.phase == Phase.IDLE
        assert result.context.slots == PartialSlots()
        assert result.context.epoch == 2


class TestReview:
    def test_review_shows_template_log_and_items(self) -> None:
        ctx = confirm_ctx()

        assert ctx.phase == Phase.CONFIRM
        assert ctx.admin_log_source == "template"
        assert "【作業】灌水" in ctx.admin_log
        assert "【圃場】茂木町ハウス" in ctx.admin_log
        assert {i.key: i.value for i in ctx.confirm_items}["max_temp"] == "28"

    def test_edit_updates_slots_and_schedules_log(self) -> None:
        ctx = confirm_ctx()
        result = transition(ctx, EditItem(key="max_temp", value="31"))

        assert result.context.slots.max_temp == 31.0
        assert result.context.admin_log_revision == ctx.admin_log_revision + 1
        assert "最高31℃" in result.context.admin_log
        assert result.effects == (ScheduleAdminLog(revision=ctx.admin_log_revision + 1, delay=1.5),)

    def test_edit_drops_advice_computed_from_old_slots(self) -> None:
        ctx = confirm_ctx().evolve(advice="AIの助言", strategic_advice="次回: 様子を見る")

        same = transition(ctx, EditItem(key="max_temp", value="28")).context
        assert same.advice == "AIの助言"
        assert same.strategic_advice == "次回: 様子を見る"

        changed = transition(ctx, EditItem(key="max_temp", value="31")).context
        assert changed.advice is None
        assert changed.strategic_advice is None

    def test_unknown_field_edit_is_ignored(self) -> None:
        ctx = confirm_ctx()
        assert transition(ctx, EditItem(key="weather", value="x")).context is ctx

    def test_ai_log_replaces_template_for_current_revision_only(self) -> None:
        ctx = confirm_ctx()
        stale = transition(ctx, AdminLogReady(epoch=ctx.epoch, revision=ctx.admin_log_revision - 1, text="古い"))
        assert stale.context.admin_log_source == "template"

        fresh = transition(ctx, AdminLogReady(epoch=ctx.epoch, revision=ctx.admin_log_revision, text="本日は灌水。"))
        assert fresh.context.admin_log == "本日は灌水。"
        assert fresh.context.admin_log_source == "ai"

    def test_save_flushes_then_finalizes(self) -> None:
        result = transition(confirm_ctx(), Save())
        assert result.effects == (StopCapture(), CancelPlayback(), FlushAdminLog(), Finalize())

    def test_save_outside_review_does_nothing(self) -> None:
        assert transition(follow_up((F.PHOTO,)), Save()).effects == ()

    def test_saved_resets_and_speaks(self) -> None:
        ctx = confirm_ctx()
        result = transition(ctx, Saved(message="記録を保存しました。"))

        assert result.context.phase == Phase.IDLE
        assert result.context.epoch == ctx.epoch + 1
        assert result.effects == (Speak("記録を保存しました。"),)


class TestMentor:
    def test_sos_enters_mentor_mode(self) -> None:
        ctx = InterviewContext(phase=Phase.FOLLOW_UP, queue=(F.PHOTO,), epoch=2)
        result = transition(ctx, say("もう死にたい"))

        assert result.context.phase == Phase.MENTOR
        assert result.context.mentor_step == MentorStep.COMFORT
        assert result.context.mentor_text == "もう死にたい"
        assert result.effects == (StopCapture(), CancelPlayback(), Speak(MENTOR_COMFORT_LINE), FetchTomorrowWeather())

    def test_weather_then_question(self) -> None:
        ctx = mentor_ctx()
        weather = TomorrowWeather(description="晴れ", max_temp=25, min_temp=15, code=1)
        result = transition(ctx, WeatherFetched(epoch=ctx.epoch, weather=weather))

        assert result.context.mentor_step == MentorStep.ASK
        assert result.effects == (
            Speak("あしたは晴れ、最高25度。てんきにあわせて、むりなく。"),
            Speak(MENTOR_ASK_LINE),
            StartCapture(CaptureMode.NORMAL),
            Unmute(),
        )

    def test_weather_failure_still_asks(self) -> None:
        ctx = mentor_ctx()
        result = transition(ctx, WeatherFetched(epoch=ctx.epoch, weather=None))
        assert result.effects[0] == Speak(MENTOR_ASK_LINE)

    def test_yes_builds_sheet(self) -> None:
        ctx = asking_ctx()
        result = transition(ctx, say("はい"))

        assert result.context.mentor_step == MentorStep.SHEET
        assert "死にたい" in result.context.consultation_sheet
        assert result.effects[-1] == Speak(MENTOR_SHEET_READY_LINE)

    def test_no_returns_to_idle(self) -> None:
        ctx = asking_ctx()
        result = transition(ctx, MentorAnswer(yes=False))

        assert result.context.phase == Phase.IDLE
        assert result.effects[-1] == Speak(MENTOR_DECLINED_LINE)

    def test_unclear_answer_is_asked_again(self) -> None:
        ctx = asking_ctx()
        result = transition(ctx, say("死にたい"))

        assert result.context.phase == Phase.MENTOR
        assert result.effects == (Mute(), Speak(MENTOR_REPEAT_LINE), Unmute())


class TestCaptureAndImages:
    def test_permission_denied_switches_to_manual_entry(self) -> None:
        result = transition(InterviewContext(phase=Phase.LISTENING), PermissionDenied(notice="マイク不可"))

        assert result.context.manual_entry is True
        assert result.context.notice == "マイク不可"

    def test_capture_stopped_while_listening_goes_idle(self) -> None:
        result = transition(InterviewContext(phase=Phase.LISTENING), CaptureStopped())
        assert result.context.phase == Phase.IDLE

    def test_image_seed_reads_then_reviews(self) -> None:
        seeded = transition(InterviewContext(phase=Phase.IDLE, epoch=1), SeedImage(image=b"img"))
        assert seeded.context.phase == Phase.THINKING
        assert seeded.effects[-1] == ReadImage(b"img", "image/jpeg")

        result = OcrResult(raw_text="5/1 灌水", slots=PartialSlots(work_log="灌水"), date="2024-05-01")
        done = transition(seeded.context, OcrDone(epoch=seeded.context.epoch, result=result))

        assert done.context.phase == Phase.CONFIRM
        assert done.context.confirm_items[-1].key == "ocr_date"
        assert done.context.raw_transcript == "5/1 灌水"

    def test_failed_read_returns_to_idle(self) -> None:
        seeded = transition(InterviewContext(phase=Phase.IDLE), SeedImage(image=b"img")).context
        result = transition(seeded, OcrDone(epoch=seeded.epoch, result=None, failed=True))

        assert result.context.phase == Phase.IDLE
        assert result.context.notice == OCR_FAILED_LINE
        assert result.effects == (Speak(OCR_FAILED_LINE),)


def test_unknown_event_is_rejected() -> None:
    with pytest.raises(TypeError):
        transition(InterviewContext(), object())
