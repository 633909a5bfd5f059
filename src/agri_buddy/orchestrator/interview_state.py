"""
Interview state.

`InterviewContext` is the single immutable value the state machine threads
through every transition: phase, collected slots, follow-up queue and
cursor, the desired mute state, and everything the review and support
screens need. Transitions derive new contexts with `evolve`.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Literal

from agri_buddy.orchestrator.schemas import (
    ConfirmItem,
    ConvMessage,
    EmotionAnalysis,
    FollowUpStep,
    MentorStep,
    PartialSlots,
    Phase,
    TomorrowWeather,
)

AdminLogSource = Literal["template", "ai"]


@dataclass(frozen=True)
class InterviewContext:
    """Immutable snapshot of one interview session."""

    phase: Phase = Phase.IDLE
    slots: PartialSlots = field(default_factory=PartialSlots)
    queue: tuple[FollowUpStep, ...] = ()
    index: int = 0
    first_question: bool = True
    quick_breath: bool = False
    muted: bool = True
    conversation: tuple[ConvMessage, ...] = ()
    location: str = ""

    # Risk routing
    deferred: EmotionAnalysis | None = None
    pending_nudge: str | None = None
    mentor_step: MentorStep | None = None
    mentor_text: str = ""
    consultation_sheet: str = ""
    tomorrow_weather: TomorrowWeather | None = None

    # Review
    confirm_items: tuple[ConfirmItem, ...] = ()
    admin_log: str = ""
    admin_log_source: AdminLogSource = "template"
    admin_log_revision: int = 0
    advice: str | None = None
    strategic_advice: str | None = None
    new_location: str | None = None

    photo_count: int = 0
    awaiting_photo: bool = False
    notice: str | None = None
    manual_entry: bool = False
    ocr_date: str | None = None
    raw_transcript: str = ""
    questions_asked: int = 0
    epoch: int = 0

    @property
    def current_step(self) -> FollowUpStep | None:
        if 0 <= self.index < len(self.queue):
            return self.queue[self.index]
        return None

    @property
    def last_user_text(self) -> str:
        for message in reversed(self.conversation):
            if message.role == "user":
                return message.text
        return ""

    @property
    def in_interview(self) -> bool:
        return self.phase in (Phase.LISTENING, Phase.THINKING, Phase.FOLLOW_UP, Phase.BREATHING)

    def evolve(self, **changes) -> InterviewContext:
        return replace(self, **changes)

    def fresh(self) -> InterviewContext:
        """
        A new, empty session.

        Keeps what outlives a session (location, permission state, question
        rotation, admin-log revision) and advances the epoch so results of
        the old session are recognized as stale.
        """
        return InterviewContext(
            location=self.location,
            manual_entry=self.manual_entry,
            questions_asked=self.questions_asked,
            admin_log_revision=self.admin_log_revision,
            epoch=self.epoch + 1,
        )

    def with_message(self, role: Literal["user", "assistant"], text: str) -> InterviewContext:
        return replace(self, conversation=self.conversation + (ConvMessage(role=role, text=text),))
