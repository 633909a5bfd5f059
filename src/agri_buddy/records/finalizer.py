"""
Record finalizer.

Turns a reviewed interview into an immutable `LocalRecord`, resolves the
location against the location master, and decides how the save is
acknowledged (celebration, or comfort content when distress was deferred).
"""

from __future__ import annotations

import logging
import random
import re
import secrets
import time
import unicodedata
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Callable

from agri_buddy.agents.confidence import (
    ProfitEstimate,
    admin_log,
    advice,
    confidence,
    estimate_profit,
    strategic_advice,
)
from agri_buddy.agents.risk_responses import Tier2Content, get_comfort, weather_care
from agri_buddy.agents.slot_extraction import sanitize_location
from agri_buddy.config import get_settings
from agri_buddy.orchestrator.schemas import (
    ConfirmItem,
    EmotionAnalysis,
    LocalRecord,
    LocationMaster,
    MoodEntry,
    PartialSlots,
    flatten_confirm_items,
)

logger = logging.getLogger(__name__)

DEFAULT_SAVE_MESSAGE = "きょうもおつかれさま！記録を保存しました。"
COMFORT_SAVE_PREFIX = "記録を保存しました。"

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"
_ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def new_record_id(timestamp_ms: int | None = None) -> str:
    """`<epoch ms>-<6 random base36 chars>`."""
    ts = timestamp_ms if timestamp_ms is not None else int(time.time() * 1000)
    suffix = "".join(secrets.choice(_BASE36) for _ in range(6))
    return f"{ts}-{suffix}"


def _format_yen(amount: int) -> str:
    return f"{amount / 10000:.1f}万円" if amount >= 10000 else f"{amount:,}円"


def _valid_iso_date(value: str | None) -> str | None:
    if not value or not _ISO_DATE_RE.match(value.strip()):
        return None
    try:
        return date.fromisoformat(value.strip()).isoformat()
    except ValueError:
        return None


class RecordStore(ABC):
    """Append-only storage for records, locations and the mood log."""

    @abstractmethod
    async def append_record(self, record: LocalRecord) -> None:
        ...

    @abstractmethod
    async def list_records(self) -> list[LocalRecord]:
        ...

    @abstractmethod
    async def list_locations(self) -> list[LocationMaster]:
        ...

    @abstractmethod
    async def save_location(self, location: LocationMaster) -> None:
        """Insert or replace a location by id."""
        ...

    @abstractmethod
    async def append_mood(self, entry: MoodEntry, prune_before_ms: int) -> None:
        """Append a mood entry and drop entries older than `prune_before_ms`."""
        ...


@dataclass(frozen=True)
class RecordDraft:
    """Everything the review screen holds at the moment of saving."""

    slots: PartialSlots
    confirm_items: tuple[ConfirmItem, ...] = ()
    location: str = ""
    admin_log: str = ""
    advice: str | None = None
    strategic_advice: str | None = None
    photo_count: int = 0
    raw_transcript: str = ""
    ocr_date: str | None = None
    deferred: EmotionAnalysis | None = None
    weather_description: str | None = None
    weather_temperature: float | None = None


@dataclass(frozen=True)
class SaveOutcome:
    record: LocalRecord
    celebrate: bool
    message: str
    comfort: Tier2Content | None = None
    weather_tip: str | None = None
    profit: ProfitEstimate = field(default_factory=ProfitEstimate)


class RecordFinalizer:
    """
    Builds and persists records.

    Args:
        store: Record storage.
        default_location: Used when the session names no location.
        retention_days: Mood log retention.
        clock: Current time source.
        rng: Random source for comfort card selection.
    """

    def __init__(
        self,
        store: RecordStore,
        default_location: str | None = None,
        retention_days: int | None = None,
        clock: Callable[[], datetime] = datetime.now,
        rng: random.Random | None = None,
    ) -> None:
        settings = get_settings()
        self._store = store
        self._default_location = default_location or settings.default_location
        self._retention_days = retention_days if retention_days is not None else settings.mood_retention_days
        self._clock = clock
        self._rng = rng

    @property
    def store(self) -> RecordStore:
        return self._store

    async def known_locations(self) -> list[str]:
        return [loc.name for loc in await self._store.list_locations()]

    async def normalize_location(self, name: str | None) -> LocationMaster:
        """
        Resolve a spoken or typed location to its master entry.

        Unknown names are registered; a raw spelling that differs from the
        canonical name is remembered as an alias.
        """
        raw = unicodedata.normalize("NFKC", name or "").strip()
        clean = sanitize_location(raw) or self._default_location

        for loc in await self._store.list_locations():
            if loc.name == clean or clean in loc.aliases:
                if raw and raw != loc.name and raw not in loc.aliases and sanitize_location(raw):
                    loc = loc.model_copy(update={"aliases": [*loc.aliases, raw]})
                    await self._store.save_location(loc)
                    logger.info(f"[RECORDS] alias added: {raw} -> {loc.name}")
                return loc

        created = LocationMaster(
            id=new_record_id(),
            name=clean,
            aliases=[raw] if raw and raw != clean and sanitize_location(raw) else [],
            created_at=self._clock(),
        )
        await self._store.save_location(created)
        logger.info(f"[RECORDS] location registered: {created.name}")
        return created

    async def finalize(self, draft: RecordDraft) -> SaveOutcome:
        """
        Persist the reviewed session.

        Args:
            draft: Review-screen state.

        Returns:
            The saved record and how to acknowledge it.
        """
        slots = flatten_confirm_items(draft.confirm_items, draft.slots) if draft.confirm_items else draft.slots
        location = await self.normalize_location(draft.location or slots.location)

        conf = confidence(slots)
        advice_text = draft.advice or advice(slots, conf)
        strategic = draft.strategic_advice or strategic_advice(slots)
        profit = estimate_profit(slots)

        now = self._clock()
        timestamp = int(now.timestamp() * 1000)
        day = _valid_iso_date(draft.ocr_date) or now.date().isoformat()

        record = LocalRecord(
            id=new_record_id(timestamp),
            date=day,
            location=location.name,
            location_id=location.id,
            slots=slots.merged(location=location.name),
            admin_log=draft.admin_log or admin_log(slots, location.name, now.date()),
            advice=advice_text,
            strategic_advice=strategic,
            photo_count=draft.photo_count,
            estimated_profit=profit.total,
            raw_transcript=draft.raw_transcript,
            timestamp=timestamp,
        )
        await self._store.append_record(record)
        logger.info(f"[RECORDS] saved id={record.id} location={record.location} confidence={conf.value}")

        deferred = draft.deferred
        if deferred is not None and deferred.tier == 2:
            comfort = get_comfort(deferred.primary_category, self._rng)
            await self._store.append_mood(
                MoodEntry(
                    date=day,
                    timestamp=timestamp,
                    tier=deferred.tier,
                    score=deferred.score,
                    categories=[c.value for c in deferred.categories],
                    weather=draft.weather_description,
                ),
                prune_before_ms=int((now - timedelta(days=self._retention_days)).timestamp() * 1000),
            )
            return SaveOutcome(
                record=record,
                celebrate=False,
                message=f"{COMFORT_SAVE_PREFIX}{comfort.message}",
                comfort=comfort,
                weather_tip=weather_care(draft.weather_temperature) if draft.weather_temperature is not None else None,
                profit=profit,
            )

        if profit.total > 0:
            message = f"{profit.praise} きょうの見込み増益: 推定{_format_yen(profit.total)}。"
        else:
            message = DEFAULT_SAVE_MESSAGE
        return SaveOutcome(record=record, celebrate=True, message=message, profit=profit)
