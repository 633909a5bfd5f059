from agri_buddy.agents.slot_extraction import (
    apply_answer,
    correct_agri_terms,
    correct_for_log,
    detect_location_override,
    estimate_revenue,
    extract_slots,
    local_extraction_response,
    sanitize_location,
)
from agri_buddy.orchestrator.schemas import Confidence, ConvMessage, ExtractionRequest, FollowUpStep, PartialSlots


class TestCorrections:
    def test_misrecognized_terms(self) -> None:
        assert correct_agri_terms("感謝した") == "換気した"
        assert correct_agri_terms("あぶら虫がいた") == "アブラムシがいた"

    def test_log_cleanup_removes_fillers_and_navigation(self) -> None:
        assert correct_for_log("えーと、水をやった。次へ") == "灌水。"


class TestExtractSlots:
    def test_work_and_single_temperature(self) -> None:
        slots = extract_slots("今日は灌水した。ハウスは28度")
        assert slots.work_log == "灌水"
        assert slots.max_temp == 28.0
        assert slots.min_temp is None
        assert slots.plant_status == "良好"

    def test_two_temperatures_split_into_max_and_min(self) -> None:
        slots = extract_slots("最高28度で最低19度")
        assert slots.max_temp == 28.0
        assert slots.min_temp == 19.0

    def test_single_temperature_does_not_overwrite_known_max(self) -> None:
        slots = extract_slots("19度", PartialSlots(max_temp=28))
        assert slots.max_temp == 28.0

    def test_fertilizer_with_amount(self) -> None:
        slots = extract_slots("硫安を20kg撒いた")
        assert slots.fertilizer == "硫安 20kg"
        assert slots.harvest_amount is None

    def test_pest_and_humidity(self) -> None:
        slots = extract_slots("アブラムシがいた。湿度は70%")
        assert slots.pest_status == "アブラムシ"
        assert slots.humidity == 70.0

    def test_fuel_amount_is_not_material_cost(self) -> None:
        slots = extract_slots("灯油代3000円")
        assert slots.fuel_cost == "灯油代3000円"
        assert slots.material_cost is None


class TestApplyAnswer:
    def test_unmatched_answer_goes_to_current_step(self) -> None:
        slots, matched = apply_answer(FollowUpStep.FERTILIZER, "油かす", PartialSlots())
        assert matched == []
        assert slots.fertilizer == "油かす"

    def test_temperatures_in_answer(self) -> None:
        slots, matched = apply_answer(FollowUpStep.HOUSE_TEMP, "28度と19度", PartialSlots())
        assert FollowUpStep.HOUSE_TEMP in matched
        assert (slots.max_temp, slots.min_temp) == (28.0, 19.0)

    def test_bare_number_for_temperature(self) -> None:
        slots, _ = apply_answer(FollowUpStep.HOUSE_TEMP, "28", PartialSlots())
        assert slots.max_temp == 28.0

    def test_out_of_range_bare_temperature_is_dropped(self) -> None:
        slots, _ = apply_answer(FollowUpStep.HOUSE_TEMP, "80", PartialSlots())
        assert slots.max_temp is None

    def test_bare_number_for_duration(self) -> None:
        slots, _ = apply_answer(FollowUpStep.DURATION, "3", PartialSlots())
        assert slots.work_duration == "3時間"

    def test_answer_can_fill_another_step(self) -> None:
        slots, matched = apply_answer(FollowUpStep.COST, "灯油代2000円", PartialSlots())
        assert matched == [FollowUpStep.COST]
        assert slots.fuel_cost == "灯油代2000円"
        assert slots.material_cost is None


class TestLocations:
    def test_sanitize_location(self) -> None:
        assert sanitize_location("はハウス") == ""
        assert sanitize_location("ハウス") == ""
        assert sanitize_location(" 2号ハウス ") == "2号ハウス"

    def test_detect_location_override(self) -> None:
        assert detect_location_override("今日は2号ハウスで灌水", "茂木町ハウス") == "2号ハウス"
        assert detect_location_override("今日は2号ハウスで灌水", "2号ハウス") is None
        assert detect_location_override("ハウスで灌水", None) is None


def test_local_extraction_response_uses_history() -> None:
    request = ExtractionRequest(
        utterance="28度だった",
        history=[ConvMessage(role="user", text="灌水した"), ConvMessage(role="assistant", text="はい")],
    )
    response = local_extraction_response(request)

    assert response.degraded is True
    assert response.missing_questions is None
    assert response.slots.work_log == "灌水"
    assert response.slots.max_temp == 28.0
    assert response.confidence == Confidence.MEDIUM
    assert response.reply == "お疲れさまです。気温28℃、灌水で記録しました。"


def test_estimate_revenue() -> None:
    assert estimate_revenue(PartialSlots()) is None
    assert estimate_revenue(PartialSlots(harvest_amount="30kg", work_duration="2時間")) == 27000
