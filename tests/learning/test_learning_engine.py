"""Tests for LearningEngine entry points, including end-to-end learning scenarios."""

from unittest.mock import MagicMock

import pytest

from conftest import FakeRemote
from errors import PersistenceError, ValidationError
from learning.engine import LearningEngine, quality_for
from learning.models import LearningSession
from shared_types import (
    ConnectionStatus,
    LearningQuality,
    OperationType,
    PreferenceType,
    RefinementMode,
    ReviewDecision,
    SessionType,
)
from sync.engine import SyncEngine

LONG_TEXT = " ".join(["word"] * 25)
SHORT_TEXT = "call me back later today"


def _seed_sessions(store, n):
    for _ in range(n):
        store.save_session(
            LearningSession(
                original_text="seed text",
                ai_refined_text="Seed text.",
                user_final_text="Seed text.",
                mode=RefinementMode.CLEANUP,
                text_length=2,
                session_type=SessionType.EDIT_REVIEW,
            )
        )


def _rng(value):
    rng = MagicMock()
    rng.random.return_value = value
    return rng


class TestReviewDecision:
    def test_onboarding_always_requests_edit_review(self, store):
        engine = LearningEngine(store, rng=_rng(0.99))
        request = engine.process_completed_transcription(LONG_TEXT, LONG_TEXT, RefinementMode.EMAIL)
        assert request.decision == ReviewDecision.REQUEST_EDIT_REVIEW
        assert request.deadline is not None
        assert request.wants_review

    def test_after_onboarding_one_in_five(self, store):
        _seed_sessions(store, 10)
        lucky = LearningEngine(store, rng=_rng(0.1))
        unlucky = LearningEngine(store, rng=_rng(0.5))

        assert (
            lucky.process_completed_transcription(LONG_TEXT, LONG_TEXT, RefinementMode.CLEANUP).decision
            == ReviewDecision.REQUEST_EDIT_REVIEW
        )
        request = unlucky.process_completed_transcription(LONG_TEXT, LONG_TEXT, RefinementMode.CLEANUP)
        assert request.decision == ReviewDecision.NONE
        assert request.deadline is None

    def test_short_text_requests_ab_test(self, engine):
        request = engine.process_completed_transcription(SHORT_TEXT, SHORT_TEXT, RefinementMode.MESSAGING)
        assert request.decision == ReviewDecision.REQUEST_AB_TEST
        assert request.mode == RefinementMode.MESSAGING

    def test_short_text_after_cap_requests_nothing(self, store):
        _seed_sessions(store, 50)
        engine = LearningEngine(store)
        request = engine.process_completed_transcription(SHORT_TEXT, SHORT_TEXT, RefinementMode.RAW)
        assert request.decision == ReviewDecision.NONE

    def test_paused_requests_nothing(self, engine):
        engine.pause()
        request = engine.process_completed_transcription(LONG_TEXT, LONG_TEXT, RefinementMode.CLEANUP)
        assert request.decision == ReviewDecision.NONE
        assert not engine.is_enabled


class TestSubmissions:
    def test_edit_review_records_and_queues_one_operation(self, engine, store):
        session = engine.submit_edit_review(
            "i will recieve it", "I will recieve it.", "I will receive it.", RefinementMode.CLEANUP
        )

        assert store.sessions.get(session.id) is not None
        assert session.text_length == 4
        ops = store.peek_queue()
        assert len(ops) == 1
        assert ops[0].op_type == OperationType.SAVE_SESSION
        assert ops[0].payload["session"]["id"] == session.id
        assert [p["original_phrase"] for p in ops[0].payload["patterns"]] == ["recieve"]
        assert len(ops[0].payload["preferences"]) == 4

    def test_skip_learning_records_session_only(self, engine, store):
        session = engine.submit_edit_review(
            "i will recieve it", "I will recieve it.", "I will receive it.",
            RefinementMode.CLEANUP, skip_learning=True,
        )
        assert store.sessions.get(session.id).was_skipped
        assert store.patterns.count() == (0, 0)
        assert store.preferences.list_all() == []
        payload = store.peek_queue()[0].payload
        assert payload["patterns"] == [] and payload["preferences"] == []

    def test_learning_failure_still_queues_session(self, engine, store, monkeypatch):
        def broken(*args, **kwargs):
            raise PersistenceError("Local store write failed: disk I/O error")

        monkeypatch.setattr(engine.extractor, "extract_patterns", broken)

        with pytest.raises(PersistenceError):
            engine.submit_edit_review(
                "i will recieve it", "I will recieve it.", "I will receive it.", RefinementMode.CLEANUP
            )

        (session,) = store.sessions.list_all()
        ops = store.peek_queue()
        assert len(ops) == 1
        assert ops[0].payload["session"]["id"] == session.id
        assert ops[0].payload["patterns"] == []

    def test_ab_learning_failure_still_queues_session(self, engine, store, monkeypatch):
        def broken(*args, **kwargs):
            raise PersistenceError("Local store write failed: database is locked")

        monkeypatch.setattr(engine.profiler, "learn_from_choice", broken)

        with pytest.raises(PersistenceError):
            engine.submit_ab_test("we should go", "We should go.", "We really should go.",
                                  "We should go.", RefinementMode.MESSAGING)

        ops = store.peek_queue()
        assert [op.op_type for op in ops] == [OperationType.SAVE_SESSION]
        assert ops[0].payload["session"]["id"] == store.sessions.list_all()[0].id

    def test_edit_review_rejects_empty_input(self, engine, store):
        with pytest.raises(ValidationError):
            engine.submit_edit_review("text", "Text.", "  ", RefinementMode.CLEANUP)
        assert store.sessions.count() == 0
        assert store.queue.count() == 0

    def test_ab_test_learns_from_choice(self, engine, store):
        session = engine.submit_ab_test(
            "we should go", "We should go.", "I think that we should basically go.",
            "We should go.", RefinementMode.MESSAGING,
        )
        assert session.session_type == SessionType.AB_TEST
        assert store.preferences.get(PreferenceType.CONCISENESS).value > 0
        ops = store.peek_queue()
        assert len(ops) == 1 and ops[0].op_type == OperationType.SAVE_SESSION

    def test_ab_test_rejects_unknown_selection(self, engine, store):
        with pytest.raises(ValidationError):
            engine.submit_ab_test("text", "A", "B", "C", RefinementMode.CLEANUP)
        assert store.sessions.count() == 0

    def test_app_assignment_is_queued(self, engine, store):
        assignment = engine.save_app_assignment("com.tinyspeck.slackmacgap", "Slack", RefinementMode.MESSAGING)
        op = store.peek_queue()[0]
        assert op.op_type == OperationType.SAVE_ASSIGNMENT
        assert op.payload["assignment"]["app_bundle_id"] == assignment.app_bundle_id


class TestManagement:
    def test_reset_leaves_single_delete_all(self, engine, store):
        for _ in range(3):
            engine.submit_edit_review("a b c", "I will recieve it.", "I will receive it.", RefinementMode.CLEANUP)

        engine.reset_all_learning()

        assert store.sessions.count() == 0
        assert store.patterns.count() == (0, 0)
        assert store.preferences.list_all() == []
        ops = store.peek_queue()
        assert [op.op_type for op in ops] == [OperationType.DELETE_ALL]

    def test_delete_pattern(self, engine, store):
        engine.submit_edit_review("a b c", "I will recieve it.", "I will receive it.", RefinementMode.CLEANUP)
        pattern = store.patterns.find("recieve", "receive")

        assert engine.delete_pattern(pattern.id) is True
        assert store.patterns.get(pattern.id) is None
        assert store.peek_queue()[-1].op_type == OperationType.DELETE_PATTERN
        assert engine.delete_pattern("missing") is False

    def test_paused_apply_is_identity(self, engine, store):
        for _ in range(3):
            engine.submit_edit_review("a b c", "I will recieve it.", "I will receive it.", RefinementMode.CLEANUP)
        engine.pause()
        assert engine.apply_learned_adjustments("recieve", RefinementMode.CLEANUP) == "recieve"
        engine.resume()
        assert engine.apply_learned_adjustments("recieve", RefinementMode.CLEANUP) == "receive"

    @pytest.mark.parametrize(
        "count,expected",
        [
            (0, LearningQuality.MINIMAL),
            (9, LearningQuality.MINIMAL),
            (10, LearningQuality.BASIC),
            (49, LearningQuality.BASIC),
            (50, LearningQuality.GOOD),
            (99, LearningQuality.GOOD),
            (100, LearningQuality.EXCELLENT),
        ],
    )
    def test_quality_thresholds(self, count, expected):
        assert quality_for(count) == expected

    def test_stats(self, engine):
        engine.submit_edit_review("a b c", "I will recieve it.", "I will receive it.", RefinementMode.CLEANUP)
        stats = engine.get_stats()
        assert stats["sessions"]["total"] == 1
        assert stats["learning_quality"] == "minimal"
        assert stats["enabled"] is True
        assert stats["queue_pending"] == 1


class TestScenarios:
    def test_repeated_correction_becomes_active(self, engine, store):
        for _ in range(3):
            engine.submit_edit_review(
                "i will recieve the package tomorrow",
                "I will recieve the package tomorrow.",
                "I will receive the package tomorrow.",
                RefinementMode.CLEANUP,
            )

        pattern = store.patterns.find("recieve", "receive")
        assert pattern.occurrence_count == 3
        assert pattern.confidence > 0.6
        assert [p.id for p in engine.get_active_patterns()] == [pattern.id]
        assert (
            engine.apply_learned_adjustments("Did you recieve my email?", RefinementMode.CLEANUP)
            == "Did you receive my email?"
        )

    def test_greeting_correction(self, engine, store):
        for _ in range(3):
            engine.submit_edit_review("hey there", "hey there", "hello there", RefinementMode.MESSAGING)

        pattern = store.patterns.find("hey", "hello")
        assert pattern.occurrence_count == 3 and pattern.is_active
        assert engine.apply_learned_adjustments("hey there", RefinementMode.MESSAGING) == "hello there"

    def test_concise_choices_remove_fillers(self, engine, store):
        verbose = "I think that we should basically go."
        concise = "We should go."

        values = []
        for _ in range(5):
            engine.submit_ab_test("we should go", verbose, concise, concise, RefinementMode.CLEANUP)
            values.append(store.preferences.get(PreferenceType.CONCISENESS).value)
        assert values == sorted(values) and len(set(values)) == 5

        for _ in range(30):
            if store.preferences.get(PreferenceType.CONCISENESS).value > 0.5:
                break
            engine.submit_ab_test("we should go", verbose, concise, concise, RefinementMode.CLEANUP)
        assert store.preferences.get(PreferenceType.CONCISENESS).value > 0.5

        assert engine.apply_learned_adjustments("I think that the plan works.") == "The plan works."

    def test_offline_submission_syncs_later(self, store, extractor, profiler, applier):
        remote = FakeRemote(online=False)
        sync = SyncEngine(store, remote=remote, backoff_base=0)
        engine = LearningEngine(store, extractor=extractor, profiler=profiler, applier=applier, sync=sync)

        assert sync.connect() == ConnectionStatus.DISCONNECTED
        session = engine.submit_edit_review(
            "i will recieve it", "I will recieve it.", "I will receive it.", RefinementMode.CLEANUP
        )
        assert store.queue.count() == 1
        assert not store.sessions.get(session.id).synced

        remote.online = True
        status = sync.sync_now()

        assert status.status == ConnectionStatus.CONNECTED
        assert status.pending_operations == 0
        assert status.last_sync_time is not None
        assert session.id in remote.sessions
        assert ("recieve", "receive") in remote.patterns
        assert store.sessions.get(session.id).synced
