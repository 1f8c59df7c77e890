"""Error taxonomy for the learning and sync subsystems."""


class LearningError(Exception):
    """Base exception for learning/sync errors."""


class ValidationError(LearningError):
    """Input rejected before any state was mutated."""


class PersistenceError(LearningError):
    """Local store read/write failed."""


class SyncError(LearningError):
    """Remote store unreachable, unauthorised or returned an error."""


class ConflictError(SyncError):
    """Remote store rejected a write because a divergent row already exists."""
