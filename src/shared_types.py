"""Shared enums and types for dictate."""

from enum import StrEnum


class RefinementMode(StrEnum):
    RAW = "raw"
    CLEANUP = "cleanup"
    EMAIL = "email"
    MESSAGING = "messaging"


class SessionType(StrEnum):
    EDIT_REVIEW = "edit_review"
    AB_TEST = "ab_test"


class PreferenceType(StrEnum):
    FORMALITY = "formality"
    CONCISENESS = "conciseness"
    CONTRACTIONS = "contractions"
    PUNCTUATION = "punctuation"


class ReviewDecision(StrEnum):
    NONE = "none"
    REQUEST_EDIT_REVIEW = "request_edit_review"
    REQUEST_AB_TEST = "request_ab_test"


class ConnectionStatus(StrEnum):
    UNKNOWN = "unknown"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    OFFLINE = "offline"
    ERROR = "error"


class OperationType(StrEnum):
    SAVE_SESSION = "save_session"
    SAVE_PATTERN = "save_pattern"
    SAVE_PREFERENCE = "save_preference"
    SAVE_ASSIGNMENT = "save_assignment"
    DELETE_PATTERN = "delete_pattern"
    DELETE_ALL = "delete_all"


class LearningQuality(StrEnum):
    MINIMAL = "minimal"  # < 10 sessions
    BASIC = "basic"  # 10-49
    GOOD = "good"  # 50-99
    EXCELLENT = "excellent"  # 100+
