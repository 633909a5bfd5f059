from agri_buddy.orchestrator.schemas import (
    ConfirmItem,
    Confidence,
    ExtractionResponse,
    FollowUpStep,
    PartialSlots,
    build_confirm_items,
    flatten_confirm_items,
    parse_missing_steps,
    parse_number,
)


class TestPartialSlots:
    def test_out_of_range_values_are_dropped_not_clamped(self) -> None:
        slots = PartialSlots(max_temp=75, min_temp=-25, humidity=120)
        assert slots.max_temp is None
        assert slots.min_temp is None
        assert slots.humidity is None

    def test_boundaries_are_valid(self) -> None:
        slots = PartialSlots(max_temp=60, min_temp=-20, humidity=0)
        assert slots.max_temp == 60.0
        assert slots.min_temp == -20.0
        assert slots.humidity == 0.0

    def test_numbers_parse_from_text(self) -> None:
        slots = PartialSlots(max_temp="２８℃", humidity="65%")
        assert slots.max_temp == 28.0
        assert slots.humidity == 65.0

    def test_blank_text_is_none(self) -> None:
        assert PartialSlots(work_log="   ").work_log is None
        assert PartialSlots(harvest_amount=12).harvest_amount == "12"

    def test_merged_revalidates(self) -> None:
        slots = PartialSlots(max_temp=28).merged(max_temp=99, work_log="灌水")
        assert slots.max_temp is None
        assert slots.work_log == "灌水"

    def test_overlay_keeps_existing_values(self) -> None:
        base = PartialSlots(work_log="灌水", max_temp=28)
        merged = base.overlay(PartialSlots(min_temp=19))
        assert merged.work_log == "灌水"
        assert merged.max_temp == 28.0
        assert merged.min_temp == 19.0


def test_parse_number() -> None:
    assert parse_number("−3.5度") == -3.5
    assert parse_number(True) is None
    assert parse_number("なし") is None


def test_confirm_items_round_trip_through_edits() -> None:
    slots = PartialSlots(work_log="灌水", max_temp=28.5)
    items = build_confirm_items(slots, ocr_date="2024-05-01")

    assert items[0] == ConfirmItem(key="work_log", label="作業内容", value="灌水")
    assert any(i.key == "max_temp" and i.value == "28.5" for i in items)
    assert items[-1].key == "ocr_date"

    edited = [i.model_copy(update={"value": "80"}) if i.key == "max_temp" else i for i in items]
    edited = [i.model_copy(update={"value": ""}) if i.key == "work_log" else i for i in edited]
    result = flatten_confirm_items(edited, slots)

    assert result.max_temp is None
    assert result.work_log is None


class TestMissingSteps:
    def test_step_names_and_hints(self) -> None:
        assert parse_missing_steps(["HOUSE_TEMP", "肥料", "pest"]) == [
            FollowUpStep.HOUSE_TEMP,
            FollowUpStep.FERTILIZER,
            FollowUpStep.PEST,
        ]

    def test_malformed_selects_fallback(self) -> None:
        assert parse_missing_steps("HOUSE_TEMP") is None
        assert parse_missing_steps(["HOUSE_TEMP", 3]) is None
        assert parse_missing_steps(["天気"]) is None

    def test_empty_list_is_not_malformed(self) -> None:
        assert parse_missing_steps([]) == []


class TestExtractionResponse:
    def test_nested_slots_and_house_data(self) -> None:
        response = ExtractionResponse.from_payload(
            {
                "reply": "了解です",
                "slots": {"work_log": "灌水"},
                "house_data": {"max_temp": "28", "humidity": 150},
                "missing_questions": ["FERTILIZER"],
                "confidence": "medium",
                "mentor_mode": "yes",
            }
        )
        assert response.reply == "了解です"
        assert response.slots.work_log == "灌水"
        assert response.slots.max_temp == 28.0
        assert response.slots.humidity is None
        assert response.missing_questions == [FollowUpStep.FERTILIZER]
        assert response.confidence == Confidence.MEDIUM
        assert response.mentor_mode is False

    def test_flat_slots_and_unknown_confidence(self) -> None:
        response = ExtractionResponse.from_payload(
            {"work_log": "摘果", "confidence": "very", "estimated_revenue": "12000円"}
        )
        assert response.slots.work_log == "摘果"
        assert response.confidence is None
        assert response.missing_questions is None
        assert response.estimated_revenue == 12000
