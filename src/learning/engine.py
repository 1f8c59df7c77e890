"""LearningEngine: the entry points the dictation pipeline and UI call into."""

import random
import threading
from datetime import datetime, timedelta

import structlog

from errors import ValidationError
from shared_types import LearningQuality, RefinementMode, ReviewDecision, SessionType
from sync.engine import SyncEngine
from sync.schema import (
    assignment_operation,
    delete_all_operation,
    delete_pattern_operation,
    session_batch_operation,
)

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
from .preferences import PreferenceProfiler, word_count
from .store import LocalStore

logger = structlog.get_logger()


def quality_for(session_count: int) -> LearningQuality:
    if session_count < 10:
        return LearningQuality.MINIMAL
    if session_count < 50:
        return LearningQuality.BASIC
    if session_count < 100:
        return LearningQuality.GOOD
    return LearningQuality.EXCELLENT


def _require_text(name: str, value: str) -> None:
    if not value or not value.strip():
        raise ValidationError(f"{name} is empty")


class LearningEngine:
    """Coordinates review decisions, learning, application and sync hand-off.

    Submissions are serialized: each writes its session and learning rows to
    the Local Store, then hands exactly one operation to the sync engine (or
    straight to the offline queue when there is none).
    """

    def __init__(
        self,
        store: LocalStore,
        extractor: PatternExtractor | None = None,
        profiler: PreferenceProfiler | None = None,
        applier: LearningApplier | None = None,
        sync: SyncEngine | None = None,
        min_review_words: int = 20,
        onboarding_sessions: int = 10,
        review_probability: float = 0.2,
        ab_test_session_cap: int = 50,
        review_timeout_seconds: float = 120.0,
        rng: random.Random | None = None,
    ):
        self.store = store
        self.extractor = extractor or PatternExtractor(store)
        self.profiler = profiler or PreferenceProfiler(store)
        self.applier = applier or LearningApplier(self.extractor, self.profiler)
        self.sync = sync
        self.min_review_words = min_review_words
        self.onboarding_sessions = onboarding_sessions
        self.review_probability = review_probability
        self.ab_test_session_cap = ab_test_session_cap
        self.review_timeout = timedelta(seconds=review_timeout_seconds)
        self.rng = rng or random.Random()
        self._enabled = True
        self._submit_lock = threading.Lock()

    # Review decisions

    def process_completed_transcription(
        self, original: str, refined: str, mode: RefinementMode
    ) -> ReviewRequest:
        """Decide whether to ask the user for an edit review or an A/B choice."""
        if not self._enabled:
            return ReviewRequest(ReviewDecision.NONE, original, refined, mode)

        sessions = self.store.sessions.count()
        words = word_count(original)
        if words >= self.min_review_words:
            if sessions < self.onboarding_sessions or self.rng.random() < self.review_probability:
                decision = ReviewDecision.REQUEST_EDIT_REVIEW
            else:
                decision = ReviewDecision.NONE
        elif sessions < self.ab_test_session_cap:
            decision = ReviewDecision.REQUEST_AB_TEST
        else:
            decision = ReviewDecision.NONE

        logger.debug("learning.review_decision", decision=decision, words=words, sessions=sessions)
        if decision == ReviewDecision.NONE:
            return ReviewRequest(decision, original, refined, mode)
        return ReviewRequest(
            decision, original, refined, mode, deadline=datetime.now() + self.review_timeout
        )

    # Submissions

    def submit_edit_review(
        self,
        original: str,
        ai_refined: str,
        user_final: str,
        mode: RefinementMode,
        skip_learning: bool = False,
    ) -> LearningSession:
        """Record an edit review; unless skipped, learn patterns and preferences from it."""
        _require_text("original", original)
        _require_text("ai_refined", ai_refined)
        _require_text("user_final", user_final)

        with self._submit_lock:
            session = self.store.save_session(
                LearningSession(
                    original_text=original,
                    ai_refined_text=ai_refined,
                    user_final_text=user_final,
                    mode=mode,
                    text_length=word_count(original),
                    session_type=SessionType.EDIT_REVIEW,
                    was_skipped=skip_learning,
                )
            )
            patterns: list[LearnedPattern] = []
            preferences: list[UserPreference] = []
            # A stored session always gets its queued operation
            try:
                if not skip_learning:
                    patterns = self.extractor.extract_patterns(ai_refined, user_final, mode)
                    preferences = self.profiler.analyze_preferences(ai_refined, user_final)
            finally:
                self._publish(session_batch_operation(session, patterns, preferences))

        logger.info(
            "learning.edit_review_submitted",
            session_id=session.id,
            mode=mode,
            skipped=skip_learning,
            patterns=len(patterns),
        )
        return session

    def submit_ab_test(
        self,
        original: str,
        option_a: str,
        option_b: str,
        selected: str,
        mode: RefinementMode,
    ) -> LearningSession:
        """Record which of two refinements the user picked and learn from the choice."""
        _require_text("original", original)
        if selected == option_a:
            rejected = option_b
        elif selected == option_b:
            rejected = option_a
        else:
            raise ValidationError("selected must be one of the two options")

        with self._submit_lock:
            session = self.store.save_session(
                LearningSession(
                    original_text=original,
                    ai_refined_text=selected,
                    user_final_text=selected,
                    mode=mode,
                    text_length=word_count(original),
                    session_type=SessionType.AB_TEST,
                )
            )
            preferences: list[UserPreference] = []
            try:
                preferences = self.profiler.learn_from_choice(selected, rejected)
            finally:
                self._publish(session_batch_operation(session, [], preferences))

        logger.info("learning.ab_test_submitted", session_id=session.id, mode=mode)
        return session

    def save_app_assignment(
        self,
        app_bundle_id: str,
        app_name: str,
        mode: RefinementMode,
        is_user_override: bool = True,
    ) -> AppAssignment:
        """Pin a refinement mode to an application. Stored remotely only."""
        _require_text("app_bundle_id", app_bundle_id)
        assignment = AppAssignment(
            app_bundle_id=app_bundle_id,
            app_name=app_name,
            assigned_mode=mode,
            is_user_override=is_user_override,
        )
        self._publish(assignment_operation(assignment))
        return assignment

    # Application

    def apply_learned_adjustments(self, text: str, mode: RefinementMode | None = None) -> str:
        if not self._enabled:
            return text
        return self.applier.apply(text, mode)

    # Management

    def reset_all_learning(self) -> dict:
        """Wipe local learning state and queue a remote wipe."""
        with self._submit_lock:
            counts = self.store.reset_all()
            self._publish(delete_all_operation())
        logger.info("learning.reset", **counts)
        return counts

    def delete_pattern(self, pattern_id: str) -> bool:
        pattern = self.store.delete_pattern(pattern_id)
        if pattern is None:
            return False
        self._publish(delete_pattern_operation(pattern))
        logger.info(
            "learning.pattern_deleted",
            pattern_id=pattern_id,
            original=pattern.original_phrase,
            corrected=pattern.corrected_phrase,
        )
        return True

    def pause(self) -> None:
        self._enabled = False
        logger.info("learning.paused")

    def resume(self) -> None:
        self._enabled = True
        logger.info("learning.resumed")

    @property
    def is_enabled(self) -> bool:
        return self._enabled

    # Queries

    @property
    def session_count(self) -> int:
        return self.store.sessions.count()

    @property
    def learning_quality(self) -> LearningQuality:
        return quality_for(self.session_count)

    def get_active_patterns(self) -> list[LearnedPattern]:
        return self.store.list_active_patterns()

    def get_preferences(self) -> list[UserPreference]:
        return self.store.preferences.list_all()

    def get_stats(self) -> dict:
        stats = self.store.get_stats()
        stats["learning_quality"] = quality_for(stats["sessions"]["total"]).value
        stats["enabled"] = self._enabled
        return stats

    def _publish(self, operation: OfflineOperation) -> None:
        if self.sync is not None:
            self.sync.submit(operation)
        else:
            self.store.enqueue_offline_operation(operation)
