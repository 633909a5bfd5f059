"""
SQLAlchemy models for database persistence.

Defines the local store schema: saved diary records (insert only), the
location master, and the coarse mood log.
"""

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import JSON, BigInteger, Boolean, DateTime, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class RecordModel(Base):
    """Database model for saved diary records."""

    __tablename__ = "records"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    date: Mapped[str] = mapped_column(String(10), nullable=False, index=True)
    location: Mapped[str] = mapped_column(String(255), nullable=False)
    location_id: Mapped[str | None] = mapped_column(String(32), nullable=True)
    slots: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)
    admin_log: Mapped[str] = mapped_column(Text, nullable=False)
    advice: Mapped[str] = mapped_column(Text, default="", nullable=False)
    strategic_advice: Mapped[str] = mapped_column(Text, default="", nullable=False)
    photo_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    estimated_profit: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    raw_transcript: Mapped[str] = mapped_column(Text, default="", nullable=False)
    synced: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    timestamp: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        nullable=False,
    )


class LocationModel(Base):
    """Database model for registered houses and fields."""

    __tablename__ = "locations"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    aliases: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        nullable=False,
    )


class MoodEntryModel(Base):
    """Database model for the mood log."""

    __tablename__ = "mood_entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    date: Mapped[str] = mapped_column(String(10), nullable=False)
    timestamp: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    tier: Mapped[int] = mapped_column(Integer, nullable=False)
    score: Mapped[int] = mapped_column(Integer, nullable=False)
    categories: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    weather: Mapped[str | None] = mapped_column(String(100), nullable=True)
