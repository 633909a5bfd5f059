"""
Database module for persistence.

Provides SQLAlchemy models and repository pattern for
diary record persistence.
"""

from agri_buddy.db.models import Base, LocationModel, MoodEntryModel, RecordModel
from agri_buddy.db.repository import LocationRepository, MoodEntryRepository, RecordRepository
from agri_buddy.db.store import SqlRecordStore

__all__ = [
    "Base",
    "LocationModel",
    "MoodEntryModel",
    "RecordModel",
    "LocationRepository",
    "MoodEntryRepository",
    "RecordRepository",
    "SqlRecordStore",
]
