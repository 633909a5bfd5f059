"""
Record finalization and the storage contract it writes through.
"""

from agri_buddy.records.finalizer import RecordDraft, RecordFinalizer, RecordStore, SaveOutcome

__all__ = ["RecordDraft", "RecordFinalizer", "RecordStore", "SaveOutcome"]
