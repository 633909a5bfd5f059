"""
Repository pattern for database operations.

Provides a clean abstraction over SQLAlchemy for the record store tables.
"""

from abc import ABC, abstractmethod
from typing import Generic, TypeVar

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from agri_buddy.db.models import Base, LocationModel, MoodEntryModel, RecordModel
from agri_buddy.orchestrator.schemas import LocalRecord, LocationMaster, MoodEntry, PartialSlots

T = TypeVar("T", bound=Base)


class BaseRepository(ABC, Generic[T]):
    """Abstract base repository with common CRUD operations."""

    def __init__(self, session: AsyncSession) -> None:
        """
        Initialize the repository.

        Args:
            session: SQLAlchemy async session.
        """
        self._session = session

    @property
    @abstractmethod
    def _model_class(self) -> type[T]:
        """Get the model class for this repository."""
        ...

    async def get_by_id(self, entity_id: str | int) -> T | None:
        """
        Get an entity by its ID.

        Args:
            entity_id: The entity's primary key.

        Returns:
            The entity if found, None otherwise.
        """
        return await self._session.get(self._model_class, entity_id)

    async def create(self, entity: T) -> T:
        """
        Create a new entity.

        Args:
            entity: The entity to create.

        Returns:
            The created entity.
        """
        self._session.add(entity)
        await self._session.flush()
        await self._session.refresh(entity)
        return entity

    async def update(self, entity: T) -> T:
        """
        Update an existing entity.

        Args:
            entity: The entity to update.

        Returns:
            The updated entity.
        """
        await self._session.flush()
        await self._session.refresh(entity)
        return entity


class RecordRepository(BaseRepository[RecordModel]):
    """Repository for saved records. Records are never updated or deleted."""

    @property
    def _model_class(self) -> type[RecordModel]:
        return RecordModel

    async def create_from_record(self, record: LocalRecord) -> RecordModel:
        """
        Insert a record.

        Args:
            record: Finalized record.

        Returns:
            The created record model.
        """
        model = RecordModel(
            id=record.id,
            date=record.date,
            location=record.location,
            location_id=record.location_id,
            slots=record.slots.model_dump(exclude_none=True),
            admin_log=record.admin_log,
            advice=record.advice,
            strategic_advice=record.strategic_advice,
            photo_count=record.photo_count,
            estimated_profit=record.estimated_profit,
            raw_transcript=record.raw_transcript,
            synced=record.synced,
            timestamp=record.timestamp,
        )
        return await self.create(model)

    async def list_all(self, limit: int = 100, offset: int = 0) -> list[RecordModel]:
        """
        List records, newest first.

        Args:
            limit: Maximum number to return.
            offset: Number to skip.

        Returns:
            List of records.
        """
        stmt = select(RecordModel).order_by(RecordModel.timestamp.desc()).limit(limit).offset(offset)
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def get_by_date(self, day: str) -> list[RecordModel]:
        stmt = select(RecordModel).where(RecordModel.date == day).order_by(RecordModel.timestamp)
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    def to_record(model: RecordModel) -> LocalRecord:
        return LocalRecord(
            id=model.id,
            date=model.date,
            location=model.location,
            location_id=model.location_id,
            slots=PartialSlots.model_validate(model.slots),
            admin_log=model.admin_log,
            advice=model.advice,
            strategic_advice=model.strategic_advice,
            photo_count=model.photo_count,
            estimated_profit=model.estimated_profit,
            raw_transcript=model.raw_transcript,
            synced=model.synced,
            timestamp=model.timestamp,
        )


class LocationRepository(BaseRepository[LocationModel]):
    """Repository for the location master."""

    @property
    def _model_class(self) -> type[LocationModel]:
        return LocationModel

    async def get_by_name(self, name: str) -> LocationModel | None:
        stmt = select(LocationModel).where(LocationModel.name == name)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_all(self) -> list[LocationModel]:
        stmt = select(LocationModel).order_by(LocationModel.created_at)
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def upsert_from_master(self, location: LocationMaster) -> LocationModel:
        """
        Create or update a location by id.

        Args:
            location: Location master entry.

        Returns:
            The created or updated model.
        """
        existing = await self.get_by_id(location.id)
        if existing is None:
            return await self.create(
                LocationModel(
                    id=location.id,
                    name=location.name,
                    aliases=list(location.aliases),
                    created_at=location.created_at,
                )
            )
        existing.name = location.name
        existing.aliases = list(location.aliases)
        return await self.update(existing)

    @staticmethod
    def to_master(model: LocationModel) -> LocationMaster:
        return LocationMaster(
            id=model.id,
            name=model.name,
            aliases=list(model.aliases or []),
            created_at=model.created_at,
        )


class MoodEntryRepository(BaseRepository[MoodEntryModel]):
    """Repository for the mood log."""

    @property
    def _model_class(self) -> type[MoodEntryModel]:
        return MoodEntryModel

    async def create_from_entry(self, entry: MoodEntry) -> MoodEntryModel:
        model = MoodEntryModel(
            date=entry.date,
            timestamp=entry.timestamp,
            tier=entry.tier,
            score=entry.score,
            categories=list(dict.fromkeys(entry.categories)),
            weather=entry.weather,
        )
        return await self.create(model)

    async def prune_before(self, timestamp_ms: int) -> int:
        """
        Delete entries older than `timestamp_ms`.

        Returns:
            Number of deleted entries.
        """
        stmt = delete(MoodEntryModel).where(MoodEntryModel.timestamp < timestamp_ms)
        result = await self._session.execute(stmt)
        await self._session.flush()
        return result.rowcount or 0

    async def list_recent(self, limit: int = 100) -> list[MoodEntryModel]:
        stmt = select(MoodEntryModel).order_by(MoodEntryModel.timestamp.desc()).limit(limit)
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    def to_entry(model: MoodEntryModel) -> MoodEntry:
        return MoodEntry(
            date=model.date,
            timestamp=model.timestamp,
            tier=model.tier,
            score=model.score,
            categories=list(model.categories or []),
            weather=model.weather,
        )
