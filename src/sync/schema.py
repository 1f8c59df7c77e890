"""Typed, versioned records exchanged with the remote store and snapshot files.

Every row leaving or entering the Local Store passes through one of these
models, so malformed remote data is rejected at the boundary.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from learning.models import (
    AppAssignment,
    LearnedPattern,
    LearningSession,
    OfflineOperation,
    UserPreference,
)
from shared_types import OperationType, PreferenceType, RefinementMode, SessionType

SCHEMA_VERSION = 1


def _naive(value: datetime) -> datetime:
    """Local naive time, matching what the Local Store writes."""
    if value.tzinfo is not None:
        return value.astimezone().replace(tzinfo=None)
    return value


def _aware(value: datetime) -> datetime:
    """Attach the local offset so the remote never reads local time as UTC."""
    return value.astimezone() if value.tzinfo is None else value


class _Record(BaseModel):
    model_config = ConfigDict(extra="ignore")

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


class SessionRecord(_Record):
    id: str
    timestamp: datetime
    original_transcription: str
    ai_refinement: str
    user_final_version: str
    refinement_mode: RefinementMode
    text_length: int = Field(gt=0)
    learning_type: SessionType
    was_skipped: bool = False

    @classmethod
    def from_domain(cls, session: LearningSession) -> "SessionRecord":
        return cls(
            id=session.id,
            timestamp=_aware(session.timestamp),
            original_transcription=session.original_text,
            ai_refinement=session.ai_refined_text,
            user_final_version=session.user_final_text,
            refinement_mode=session.mode,
            text_length=session.text_length,
            learning_type=session.session_type,
            was_skipped=session.was_skipped,
        )

    def to_domain(self, synced: bool = False) -> LearningSession:
        return LearningSession(
            id=self.id,
            timestamp=_naive(self.timestamp),
            original_text=self.original_transcription,
            ai_refined_text=self.ai_refinement,
            user_final_text=self.user_final_version,
            mode=self.refinement_mode,
            text_length=self.text_length,
            session_type=self.learning_type,
            was_skipped=self.was_skipped,
            synced=synced,
        )


class PatternRecord(_Record):
    id: str
    original_phrase: str = Field(min_length=1)
    corrected_phrase: str = Field(min_length=1)
    occurrence_count: int = Field(ge=1)
    first_seen: datetime
    last_seen: datetime
    refinement_mode: RefinementMode | None = None
    confidence: float = Field(ge=0.0, le=1.0)

    @classmethod
    def from_domain(cls, pattern: LearnedPattern) -> "PatternRecord":
        return cls(
            id=pattern.id,
            original_phrase=pattern.original_phrase,
            corrected_phrase=pattern.corrected_phrase,
            occurrence_count=pattern.occurrence_count,
            first_seen=_aware(pattern.first_seen),
            last_seen=_aware(pattern.last_seen),
            refinement_mode=pattern.mode,
            confidence=pattern.confidence,
        )

    def to_domain(self) -> LearnedPattern:
        return LearnedPattern(
            id=self.id,
            original_phrase=self.original_phrase,
            corrected_phrase=self.corrected_phrase,
            occurrence_count=self.occurrence_count,
            first_seen=_naive(self.first_seen),
            last_seen=_naive(self.last_seen),
            mode=self.refinement_mode,
            confidence=self.confidence,
        )


class PreferenceRecord(_Record):
    id: str
    preference_type: PreferenceType
    value: float = Field(ge=-1.0, le=1.0)
    sample_count: int = Field(ge=0)
    last_updated: datetime

    @classmethod
    def from_domain(cls, pref: UserPreference) -> "PreferenceRecord":
        return cls(
            id=pref.id,
            preference_type=pref.preference_type,
            value=pref.value,
            sample_count=pref.sample_count,
            last_updated=_aware(pref.last_updated),
        )

    def to_domain(self) -> UserPreference:
        return UserPreference(
            id=self.id,
            preference_type=self.preference_type,
            value=self.value,
            sample_count=self.sample_count,
            last_updated=_naive(self.last_updated),
        )


class AssignmentRecord(_Record):
    id: str
    app_bundle_id: str = Field(min_length=1)
    app_name: str
    assigned_mode: RefinementMode
    is_user_override: bool = True
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_domain(cls, assignment: AppAssignment) -> "AssignmentRecord":
        return cls(
            id=assignment.id,
            app_bundle_id=assignment.app_bundle_id,
            app_name=assignment.app_name,
            assigned_mode=assignment.assigned_mode,
            is_user_override=assignment.is_user_override,
            created_at=_aware(assignment.created_at),
            updated_at=_aware(assignment.updated_at),
        )


class SnapshotSessionRecord(SessionRecord):
    """Session row as written to export files; keeps the local sync flag."""

    synced: bool = False


# Remote rows carry the owning user


class RemotePatternRow(PatternRecord):
    user_id: str
    is_active: bool = True


class RemotePreferenceRow(PreferenceRecord):
    user_id: str


# Offline operation payloads


class SessionBatchPayload(_Record):
    """A submitted session plus the learning rows it touched."""

    session: SessionRecord
    patterns: list[PatternRecord] = Field(default_factory=list)
    preferences: list[PreferenceRecord] = Field(default_factory=list)


class PatternPayload(_Record):
    pattern: PatternRecord


class PreferencePayload(_Record):
    preference: PreferenceRecord


class AssignmentPayload(_Record):
    assignment: AssignmentRecord


class PatternKeyPayload(_Record):
    original_phrase: str
    corrected_phrase: str


PAYLOAD_MODELS: dict[OperationType, type[_Record] | None] = {
    OperationType.SAVE_SESSION: SessionBatchPayload,
    OperationType.SAVE_PATTERN: PatternPayload,
    OperationType.SAVE_PREFERENCE: PreferencePayload,
    OperationType.SAVE_ASSIGNMENT: AssignmentPayload,
    OperationType.DELETE_PATTERN: PatternKeyPayload,
    OperationType.DELETE_ALL: None,
}


def parse_payload(operation: OfflineOperation) -> _Record | None:
    """Validate a queued payload against its operation type."""
    model = PAYLOAD_MODELS[operation.op_type]
    return model.model_validate(operation.payload) if model else None


def session_batch_operation(
    session: LearningSession,
    patterns: list[LearnedPattern],
    preferences: list[UserPreference],
) -> OfflineOperation:
    payload = SessionBatchPayload(
        session=SessionRecord.from_domain(session),
        patterns=[PatternRecord.from_domain(p) for p in patterns],
        preferences=[PreferenceRecord.from_domain(p) for p in preferences],
    )
    return OfflineOperation(op_type=OperationType.SAVE_SESSION, payload=payload.to_json())


def assignment_operation(assignment: AppAssignment) -> OfflineOperation:
    payload = AssignmentPayload(assignment=AssignmentRecord.from_domain(assignment))
    return OfflineOperation(op_type=OperationType.SAVE_ASSIGNMENT, payload=payload.to_json())


def delete_pattern_operation(pattern: LearnedPattern) -> OfflineOperation:
    payload = PatternKeyPayload(
        original_phrase=pattern.original_phrase,
        corrected_phrase=pattern.corrected_phrase,
    )
    return OfflineOperation(op_type=OperationType.DELETE_PATTERN, payload=payload.to_json())


def delete_all_operation() -> OfflineOperation:
    return OfflineOperation(op_type=OperationType.DELETE_ALL, payload={})


class Snapshot(BaseModel):
    """Export file envelope."""

    model_config = ConfigDict(populate_by_name=True)

    export_date: datetime = Field(alias="exportDate")
    schema_version: int = Field(default=SCHEMA_VERSION, alias="schemaVersion")
    patterns: list[PatternRecord] = Field(default_factory=list)
    preferences: list[PreferenceRecord] = Field(default_factory=list)
    sessions: list[SnapshotSessionRecord] = Field(default_factory=list)
    aggregates: dict[str, Any] = Field(default_factory=dict)
