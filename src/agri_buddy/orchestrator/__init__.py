"""
Orchestrator module for managing the diary interview flow.
"""

from agri_buddy.orchestrator.interview_state import InterviewContext
from agri_buddy.orchestrator.schemas import (
    ExtractionRequest,
    ExtractionResponse,
    FollowUpStep,
    LocalRecord,
    PartialSlots,
    Phase,
)

__all__ = [
    "InterviewContext",
    "ExtractionRequest",
    "ExtractionResponse",
    "FollowUpStep",
    "LocalRecord",
    "PartialSlots",
    "Phase",
]
