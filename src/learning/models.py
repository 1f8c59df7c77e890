"""Data models for the learning system."""

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any

from shared_types import (
    OperationType,
    PreferenceType,
    RefinementMode,
    ReviewDecision,
    SessionType,
)

# Pattern activation thresholds
MIN_ACTIVE_OCCURRENCES = 3
MIN_ACTIVE_CONFIDENCE = 0.6


def new_id() -> str:
    return uuid.uuid4().hex


def clamp(value: float, low: float = -1.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


@dataclass(frozen=True)
class LearningSession:
    """One submitted edit review or A/B choice. Append-only history."""

    original_text: str
    ai_refined_text: str
    user_final_text: str
    mode: RefinementMode
    text_length: int
    session_type: SessionType
    was_skipped: bool = False
    id: str = field(default_factory=new_id)
    timestamp: datetime = field(default_factory=datetime.now)
    synced: bool = False

    def __post_init__(self):
        if self.text_length <= 0:
            raise ValueError(f"text_length must be positive, got {self.text_length}")


@dataclass
class LearnedPattern:
    original_phrase: str
    corrected_phrase: str
    occurrence_count: int = 1
    confidence: float = 0.3
    mode: RefinementMode | None = None
    id: str = field(default_factory=new_id)
    first_seen: datetime = field(default_factory=datetime.now)
    last_seen: datetime = field(default_factory=datetime.now)

    @property
    def is_active(self) -> bool:
        return (
            self.occurrence_count >= MIN_ACTIVE_OCCURRENCES
            and self.confidence > MIN_ACTIVE_CONFIDENCE
        )

    @property
    def key(self) -> tuple[str, str]:
        return (self.original_phrase, self.corrected_phrase)

    def merged_with(self, other: "LearnedPattern") -> "LearnedPattern":
        """Combine two replicas of the same phrase pair without losing reinforcement.

        Counts and confidence take the max, the seen-window is the union, and the
        mode follows whichever replica saw the correction most recently.
        """
        if self.key != other.key:
            raise ValueError(f"Cannot merge patterns {self.key} and {other.key}")
        newer = other if other.last_seen > self.last_seen else self
        return replace(
            self,
            occurrence_count=max(self.occurrence_count, other.occurrence_count),
            confidence=min(1.0, max(self.confidence, other.confidence)),
            first_seen=min(self.first_seen, other.first_seen),
            last_seen=max(self.last_seen, other.last_seen),
            mode=newer.mode,
        )


@dataclass
class UserPreference:
    preference_type: PreferenceType
    value: float = 0.0
    sample_count: int = 0
    id: str = field(default_factory=new_id)
    last_updated: datetime = field(default_factory=datetime.now)

    def __post_init__(self):
        self.value = clamp(self.value)

    def merged_with(self, other: "UserPreference") -> "UserPreference":
        """Keep the replica backed by more samples; newer wins a tie."""
        if self.preference_type != other.preference_type:
            raise ValueError(
                f"Cannot merge {self.preference_type} with {other.preference_type}"
            )
        if (other.sample_count, other.last_updated) > (self.sample_count, self.last_updated):
            return replace(other, id=self.id)
        return self


@dataclass
class OfflineOperation:
    """A remote write waiting for connectivity."""

    op_type: OperationType
    payload: dict[str, Any]
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=datetime.now)
    last_attempt: datetime | None = None
    attempt_count: int = 0


@dataclass
class AppAssignment:
    """Refinement mode pinned to a host application (remote-only)."""

    app_bundle_id: str
    app_name: str
    assigned_mode: RefinementMode
    is_user_override: bool = True
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class ReviewRequest:
    """What the UI should ask the user for after a transcription.

    `deadline` is advisory: the engine accepts whatever is submitted (or
    skipped) and never enforces the timeout itself.
    """

    decision: ReviewDecision
    original_text: str = ""
    refined_text: str = ""
    mode: RefinementMode = RefinementMode.CLEANUP
    deadline: datetime | None = None

    @property
    def wants_review(self) -> bool:
        return self.decision != ReviewDecision.NONE


@dataclass(frozen=True)
class TextChange:
    """A replaced span between two versions of a text."""

    original: str
    edited: str

    @property
    def is_significant(self) -> bool:
        # Short or punctuation-only edits are noise
        return (
            len(self.original) > 2
            and len(self.edited) > 2
            and self.original.lower() != self.edited.lower()
            and not _only_punctuation(self.original)
            and not _only_punctuation(self.edited)
        )


def _only_punctuation(text: str) -> bool:
    return all(not ch.isalnum() for ch in text)
