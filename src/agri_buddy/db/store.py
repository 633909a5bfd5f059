"""
SQL-backed record store.
"""

import logging

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from agri_buddy.db.repository import LocationRepository, MoodEntryRepository, RecordRepository
from agri_buddy.orchestrator.schemas import LocalRecord, LocationMaster, MoodEntry
from agri_buddy.records.finalizer import RecordStore

logger = logging.getLogger(__name__)


class SqlRecordStore(RecordStore):
    """`RecordStore` on top of the repositories, one transaction per call."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._sessions = session_factory

    async def append_record(self, record: LocalRecord) -> None:
        async with self._sessions() as session, session.begin():
            await RecordRepository(session).create_from_record(record)

    async def list_records(self) -> list[LocalRecord]:
        async with self._sessions() as session:
            models = await RecordRepository(session).list_all(limit=1000)
            return [RecordRepository.to_record(m) for m in models]

    async def list_locations(self) -> list[LocationMaster]:
        async with self._sessions() as session:
            models = await LocationRepository(session).list_all()
            return [LocationRepository.to_master(m) for m in models]

    async def save_location(self, location: LocationMaster) -> None:
        async with self._sessions() as session, session.begin():
            await LocationRepository(session).upsert_from_master(location)

    async def append_mood(self, entry: MoodEntry, prune_before_ms: int) -> None:
        async with self._sessions() as session, session.begin():
            repo = MoodEntryRepository(session)
            await repo.create_from_entry(entry)
            pruned = await repo.prune_before(prune_before_ms)
        if pruned:
            logger.info(f"[RECORDS] pruned {pruned} mood entries")

    async def list_mood(self, limit: int = 100) -> list[MoodEntry]:
        async with self._sessions() as session:
            models = await MoodEntryRepository(session).list_recent(limit)
            return [MoodEntryRepository.to_entry(m) for m in models]
