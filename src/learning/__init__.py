"""Learning: pattern extraction, preference profiling and the local store.

`LearningEngine` lives in `learning.engine`; it depends on the sync package,
which in turn depends on the modules exported here.
"""

from .applier import LearningApplier
from .models import (
    AppAssignment,
    LearnedPattern,
    LearningSession,
    OfflineOperation,
    ReviewRequest,
    UserPreference,
)
from .patterns import PatternExtractor
from .preferences import PreferenceProfiler
from .store import LocalStore

__all__ = [
    "LearningApplier",
    "AppAssignment",
    "LearnedPattern",
    "LearningSession",
    "OfflineOperation",
    "ReviewRequest",
    "UserPreference",
    "PatternExtractor",
    "PreferenceProfiler",
    "LocalStore",
]
