"""Applies learned patterns and preferences to refined text before it reaches the user."""

import structlog

from observability import metrics
from shared_types import RefinementMode

from .patterns import PatternExtractor
from .preferences import PreferenceProfiler

logger = structlog.get_logger()


class LearningApplier:
    """Read-only consumer of the pattern and preference models.

    Never raises: any failure leaves the text exactly as it came in.
    """

    def __init__(self, patterns: PatternExtractor, preferences: PreferenceProfiler):
        self.patterns = patterns
        self.preferences = preferences

    def apply(self, text: str, mode: RefinementMode | None = None) -> str:
        if not text:
            return text
        try:
            with metrics.timer("learning.apply"):
                adjusted = self.patterns.apply_patterns(text, mode)
                adjusted = self.preferences.adjust_for_preferences(adjusted)
        except Exception as e:
            metrics.counter("learning.apply_failed")
            logger.warning("learning.apply_failed", error=str(e), mode=mode)
            return text

        if adjusted != text:
            metrics.counter("learning.apply_changed")
            logger.debug("learning.applied", mode=mode, before_len=len(text), after_len=len(adjusted))
        return adjusted
