"""
Pydantic schemas for the orchestrator module.

Defines data models for slots, follow-up steps, risk analysis, review rows,
AI service contracts and persisted records.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

TEMP_MIN = -20.0
TEMP_MAX = 60.0
HUMIDITY_MIN = 0.0
HUMIDITY_MAX = 100.0

_NUMBER_RE = re.compile(r"-?\d+(?:\.\d+)?")
_FULLWIDTH_DIGITS = str.maketrans("０１２３４５６７８９．", "0123456789.")


def _now_utc() -> datetime:
    """Get current UTC datetime (timezone-aware)."""
    return datetime.now(timezone.utc)


def is_valid_temp(value: float) -> bool:
    return TEMP_MIN <= value <= TEMP_MAX


def is_valid_humidity(value: float) -> bool:
    return HUMIDITY_MIN <= value <= HUMIDITY_MAX


def parse_number(value: Any) -> float | None:
    """Best-effort numeric parse ("28", "28℃", 28.0 -> 28.0); None when impossible."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        m = _NUMBER_RE.search(value.replace("−", "-").translate(_FULLWIDTH_DIGITS))
        if m:
            return float(m.group(0))
    return None


def format_number(value: float) -> str:
    """Render 28.0 as "28" and 28.5 as "28.5"."""
    return str(int(value)) if float(value).is_integer() else str(value)


class Phase(str, Enum):
    """Phases of an interview session."""

    IDLE = "idle"
    LISTENING = "listening"
    THINKING = "thinking"
    FOLLOW_UP = "follow_up"
    BREATHING = "breathing"
    CONFIRM = "confirm"
    MENTOR = "mentor"


class FollowUpStep(str, Enum):
    """Question categories of the follow-up queue."""

    WORK = "WORK"
    HOUSE_TEMP = "HOUSE_TEMP"
    FERTILIZER = "FERTILIZER"
    PEST = "PEST"
    HARVEST = "HARVEST"
    COST = "COST"
    DURATION = "DURATION"
    PHOTO = "PHOTO"


# Steps considered by the deterministic queue builder, in asking order.
DATA_STEPS: tuple[FollowUpStep, ...] = (
    FollowUpStep.WORK,
    FollowUpStep.HOUSE_TEMP,
    FollowUpStep.FERTILIZER,
    FollowUpStep.PEST,
    FollowUpStep.HARVEST,
    FollowUpStep.COST,
    FollowUpStep.DURATION,
)


class EmotionCategory(str, Enum):
    """Categories of distress signals."""

    PHYSICAL = "physical"
    WEATHER = "weather"
    ISOLATION = "isolation"
    FINANCIAL = "financial"
    MOTIVATION = "motivation"
    RESIGNATION = "resignation"
    SOS = "sos"


class Confidence(str, Enum):
    """Coarse bucket of how much data a turn produced."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class MentorStep(str, Enum):
    """Sub-steps of the support flow."""

    COMFORT = "comfort"
    ASK = "ask"
    SHEET = "sheet"


TEXT_SLOTS: tuple[str, ...] = (
    "work_log",
    "plant_status",
    "fertilizer",
    "pest_status",
    "harvest_amount",
    "material_cost",
    "work_duration",
    "fuel_cost",
    "location",
)
NUMERIC_SLOTS: tuple[str, ...] = ("max_temp", "min_temp", "humidity")


class PartialSlots(BaseModel):
    """
    Farm-activity data collected during one interview.

    Temperatures outside [-20, 60] and humidity outside [0, 100] are dropped
    to None by validation, never clamped. Instances are immutable; use
    `merged` or `overlay` to derive updated copies (both re-validate).
    """

    model_config = ConfigDict(frozen=True)

    max_temp: float | None = Field(default=None, description="Highest house temperature (℃)")
    min_temp: float | None = Field(default=None, description="Lowest house temperature (℃)")
    humidity: float | None = Field(default=None, description="House humidity (%)")
    work_log: str | None = Field(default=None, description="Work performed")
    plant_status: str | None = Field(default=None, description="Observed plant condition")
    fertilizer: str | None = Field(default=None, description="Fertilizer applied")
    pest_status: str | None = Field(default=None, description="Pests or diseases observed")
    harvest_amount: str | None = Field(default=None, description="Harvest quantity")
    material_cost: str | None = Field(default=None, description="Material spend")
    work_duration: str | None = Field(default=None, description="Time spent working")
    fuel_cost: str | None = Field(default=None, description="Fuel spend")
    location: str | None = Field(default=None, description="House or field name")

    @field_validator("max_temp", "min_temp", mode="before")
    @classmethod
    def _drop_invalid_temp(cls, value: Any) -> float | None:
        num = parse_number(value)
        if num is None or not is_valid_temp(num):
            return None
        return num

    @field_validator("humidity", mode="before")
    @classmethod
    def _drop_invalid_humidity(cls, value: Any) -> float | None:
        num = parse_number(value)
        if num is None or not is_valid_humidity(num):
            return None
        return num

    @field_validator(*TEXT_SLOTS, mode="before")
    @classmethod
    def _normalize_text(cls, value: Any) -> str | None:
        if value is None or isinstance(value, bool):
            return None
        if isinstance(value, (int, float)):
            value = format_number(value)
        if not isinstance(value, str):
            return None
        value = value.strip()
        return value or None

    def merged(self, **updates: Any) -> PartialSlots:
        """Return a validated copy with `updates` applied (None clears a field)."""
        data = self.model_dump()
        data.update(updates)
        return PartialSlots.model_validate(data)

    def overlay(self, other: PartialSlots) -> PartialSlots:
        """Return a copy where every field set on `other` replaces ours."""
        updates = {k: v for k, v in other.model_dump().items() if v is not None}
        return self.merged(**updates)

    def is_filled(self, name: str) -> bool:
        return getattr(self, name) is not None

    def filled_fields(self) -> list[str]:
        return [name for name in PartialSlots.model_fields if self.is_filled(name)]

    @property
    def has_house_data(self) -> bool:
        return self.max_temp is not None or self.min_temp is not None or self.humidity is not None


class ConvMessage(BaseModel):
    """One message of the narration conversation."""

    model_config = ConfigDict(frozen=True)

    role: Literal["user", "assistant"] = Field(..., description="Speaker")
    text: str = Field(..., description="Message text")


class EmotionSignal(BaseModel):
    """A distress phrase detected in an utterance."""

    model_config = ConfigDict(frozen=True)

    category: EmotionCategory = Field(..., description="Signal category")
    phrase: str = Field(..., description="Matched phrase")
    weight: int = Field(..., description="Weight contributed to the score")


class EmotionAnalysis(BaseModel):
    """Risk classification of one utterance."""

    model_config = ConfigDict(frozen=True)

    tier: int = Field(default=0, ge=0, le=3, description="Escalation tier 0-3")
    score: int = Field(default=0, description="Sum of matched weights")
    signals: tuple[EmotionSignal, ...] = Field(default=(), description="Matched signals")
    primary_category: EmotionCategory | None = Field(
        default=None,
        description="Category of the highest-weight signal",
    )

    @property
    def categories(self) -> list[EmotionCategory]:
        seen: list[EmotionCategory] = []
        for s in self.signals:
            if s.category not in seen:
                seen.append(s.category)
        return seen


class ConfirmItem(BaseModel):
    """One editable row on the review screen."""

    model_config = ConfigDict(frozen=True)

    key: str = Field(..., description="Slot name (or ocr_date)")
    label: str = Field(..., description="Display label")
    value: str = Field(default="", description="Editable text value")


CONFIRM_FIELDS: tuple[tuple[str, str], ...] = (
    ("work_log", "作業内容"),
    ("max_temp", "最高気温 (℃)"),
    ("min_temp", "最低気温 (℃)"),
    ("humidity", "湿度 (%)"),
    ("fertilizer", "肥料"),
    ("pest_status", "病害虫"),
    ("harvest_amount", "収穫"),
    ("material_cost", "資材費"),
    ("fuel_cost", "燃料費"),
    ("work_duration", "作業時間"),
    ("plant_status", "所見"),
)


def build_confirm_items(slots: PartialSlots, ocr_date: str | None = None) -> tuple[ConfirmItem, ...]:
    """Render slots as review rows, one per known field."""
    items: list[ConfirmItem] = []
    for key, label in CONFIRM_FIELDS:
        value = getattr(slots, key)
        if value is None:
            text = ""
        elif isinstance(value, float):
            text = format_number(value)
        else:
            text = value
        items.append(ConfirmItem(key=key, label=label, value=text))
    if ocr_date:
        items.append(ConfirmItem(key="ocr_date", label="日付", value=ocr_date))
    return tuple(items)


def flatten_confirm_items(items: tuple[ConfirmItem, ...] | list[ConfirmItem], base: PartialSlots) -> PartialSlots:
    """
    Fold review rows back into slots.

    Empty values clear the field; numeric rows go through the same range
    validation as every other slot update.
    """
    updates: dict[str, Any] = {}
    for item in items:
        if item.key not in PartialSlots.model_fields:
            continue
        value = item.value.strip()
        updates[item.key] = value or None
    return base.merged(**updates)


def labelled_items(items: tuple[ConfirmItem, ...] | list[ConfirmItem]) -> list[tuple[str, str]]:
    """Non-empty rows as (label, value) pairs."""
    return [(i.label, i.value.strip()) for i in items if i.value.strip()]


class OutdoorWeather(BaseModel):
    """Current outdoor weather."""

    description: str = Field(..., description="Japanese description")
    temperature: float = Field(..., description="Temperature (℃)")
    code: int = Field(..., description="WMO weather code")


class TomorrowWeather(BaseModel):
    """Next-day forecast."""

    description: str = Field(..., description="Japanese description")
    max_temp: float = Field(..., description="Forecast high (℃)")
    min_temp: float = Field(..., description="Forecast low (℃)")
    code: int = Field(..., description="WMO weather code")


class ExtractionRequest(BaseModel):
    """Request sent to the AI extraction service."""

    utterance: str = Field(..., description="Raw narration")
    history: list[ConvMessage] = Field(default_factory=list, description="Conversation so far")
    known_locations: list[str] = Field(default_factory=list, description="Registered location names")
    weather: OutdoorWeather | None = Field(default=None, description="Optional outdoor weather")
    partial: PartialSlots = Field(default_factory=PartialSlots, description="Slots extracted so far")
    location: str = Field(default="", description="Current location name")


# Hints the extraction service uses instead of step names.
_MISSING_HINTS: dict[str, FollowUpStep] = {
    "作業内容": FollowUpStep.WORK,
    "作業": FollowUpStep.WORK,
    "気温": FollowUpStep.HOUSE_TEMP,
    "温度": FollowUpStep.HOUSE_TEMP,
    "ハウス環境": FollowUpStep.HOUSE_TEMP,
    "肥料": FollowUpStep.FERTILIZER,
    "施肥": FollowUpStep.FERTILIZER,
    "病害虫": FollowUpStep.PEST,
    "収穫": FollowUpStep.HARVEST,
    "費用": FollowUpStep.COST,
    "資材費": FollowUpStep.COST,
    "燃料費": FollowUpStep.COST,
    "作業時間": FollowUpStep.DURATION,
    "写真": FollowUpStep.PHOTO,
}


def parse_missing_steps(value: Any) -> list[FollowUpStep] | None:
    """
    Parse a missing-question list.

    Returns None when the value is absent or malformed (not a list, or an
    element that names no known step), which selects the fallback builder.
    """
    if not isinstance(value, list):
        return None
    steps: list[FollowUpStep] = []
    for raw in value:
        if not isinstance(raw, str):
            return None
        key = raw.strip()
        if key.upper() in FollowUpStep.__members__:
            steps.append(FollowUpStep[key.upper()])
        elif key in _MISSING_HINTS:
            steps.append(_MISSING_HINTS[key])
        else:
            return None
    return steps


def _optional_text(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


class ExtractionResponse(BaseModel):
    """Response of the AI extraction service (or its local substitute)."""

    reply: str = Field(default="", description="Text to voice back")
    slots: PartialSlots = Field(default_factory=PartialSlots, description="Extracted slots")
    missing_questions: list[FollowUpStep] | None = Field(
        default=None,
        description="Steps still to ask; None when absent or malformed",
    )
    confidence: Confidence | None = Field(default=None, description="Service confidence")
    new_location: str | None = Field(default=None, description="Newly mentioned location")
    mentor_mode: bool = Field(default=False, description="Service requests the support flow")
    advice: str | None = Field(default=None, description="Cultivation advice")
    strategic_advice: str | None = Field(default=None, description="Next-time advice")
    admin_log: str | None = Field(default=None, description="Diary text")
    estimated_revenue: int | None = Field(default=None, description="Revenue estimate (yen)")
    degraded: bool = Field(default=False, description="Produced by the local fallback")

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> ExtractionResponse:
        """
        Build a response from loosely structured JSON.

        Accepts slots nested under `slots` or flat at the top level, and
        temperatures either flat or under `house_data`. Unusable values are
        dropped field by field rather than rejecting the whole payload.
        """
        source = data.get("slots") if isinstance(data.get("slots"), dict) else data
        slot_data: dict[str, Any] = {}
        for name in PartialSlots.model_fields:
            if name in source:
                slot_data[name] = source[name]
        house = data.get("house_data")
        if isinstance(house, dict):
            for name in NUMERIC_SLOTS:
                if house.get(name) is not None:
                    slot_data[name] = house[name]

        missing = data.get("missing_questions", data.get("missing_hints"))

        confidence: Confidence | None = None
        if data.get("confidence") in {c.value for c in Confidence}:
            confidence = Confidence(data["confidence"])

        revenue = parse_number(data.get("estimated_revenue"))

        return cls(
            reply=_optional_text(data.get("reply")) or "",
            slots=PartialSlots.model_validate(slot_data),
            missing_questions=parse_missing_steps(missing),
            confidence=confidence,
            new_location=_optional_text(data.get("new_location")),
            mentor_mode=data.get("mentor_mode") is True,
            advice=_optional_text(data.get("advice")),
            strategic_advice=_optional_text(data.get("strategic_advice")),
            admin_log=_optional_text(data.get("admin_log")),
            estimated_revenue=int(revenue) if revenue is not None else None,
        )


class LocalRecord(BaseModel):
    """A saved diary record. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Record id (<epoch ms>-<random>)")
    date: str = Field(..., description="Work date (YYYY-MM-DD)")
    location: str = Field(..., description="Canonical location name")
    location_id: str | None = Field(default=None, description="LocationMaster id")
    slots: PartialSlots = Field(..., description="Snapshot of the collected slots")
    admin_log: str = Field(..., description="Diary text")
    advice: str = Field(default="", description="Cultivation advice")
    strategic_advice: str = Field(default="", description="Next-time advice")
    photo_count: int = Field(default=0, description="Attached photos")
    estimated_profit: int = Field(default=0, description="Estimated harvest value (yen)")
    raw_transcript: str = Field(default="", description="Original narration")
    synced: bool = Field(default=False, description="Uploaded to a remote store")
    timestamp: int = Field(..., description="Creation time (epoch ms)")


class LocationMaster(BaseModel):
    """A registered house or field."""

    id: str = Field(..., description="Location id")
    name: str = Field(..., description="Canonical name")
    aliases: list[str] = Field(default_factory=list, description="Alternative spellings")
    created_at: datetime = Field(default_factory=_now_utc, description="Registration time")


class MoodEntry(BaseModel):
    """Coarse summary of a session's distress signals."""

    date: str = Field(..., description="Date (YYYY-MM-DD)")
    timestamp: int = Field(..., description="Epoch ms")
    tier: int = Field(..., description="Risk tier")
    score: int = Field(..., description="Risk score")
    categories: list[str] = Field(default_factory=list, description="Distinct signal categories")
    weather: str | None = Field(default=None, description="Weather description at the time")
