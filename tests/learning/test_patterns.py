"""Tests for pattern extraction and application."""

import pytest

from errors import ValidationError
from learning.models import LearnedPattern, TextChange
from learning.patterns import PatternExtractor, find_changes, replace_phrase
from shared_types import RefinementMode


class TestFindChanges:
    def test_single_word_replacement(self):
        changes = find_changes("I need to recieve the package", "I need to receive the package")
        assert changes == [TextChange("recieve", "receive")]

    def test_multi_word_replacement(self):
        changes = find_changes("we will touch base tomorrow", "we will meet tomorrow")
        assert changes == [TextChange("touch base", "meet")]

    def test_capitalisation_only_is_ignored(self):
        assert find_changes("hello world", "Hello World") == []

    def test_punctuation_only_is_ignored(self):
        assert find_changes("hello, world", "hello world!") == []

    def test_pure_insertions_and_deletions_are_ignored(self):
        assert find_changes("the cat sat", "the big cat sat") == []
        assert find_changes("the big cat sat", "the cat sat") == []

    def test_long_rewrites_are_ignored(self):
        original = "one two three four five six"
        edited = "alpha beta gamma delta epsilon zeta"
        assert find_changes(original, edited) == []


class TestSignificance:
    @pytest.mark.parametrize(
        "original,edited,expected",
        [
            ("recieve", "receive", True),
            ("an", "a", False),
            ("Hello", "hello", False),
            ("...", "!!!", False),
            ("gonna", "going to", True),
        ],
    )
    def test_is_significant(self, original, edited, expected):
        assert TextChange(original, edited).is_significant is expected


class TestReplacePhrase:
    def test_whole_word_only(self):
        assert replace_phrase("theirs is theirs", "their", "there") == "theirs is theirs"

    def test_case_insensitive_keeps_leading_capital(self):
        assert replace_phrase("Their car is over their", "their", "there") == "There car is over there"

    def test_diacritic_insensitive(self):
        assert replace_phrase("meet at the café at noon", "cafe", "coffee shop") == (
            "meet at the coffee shop at noon"
        )

    def test_multiple_occurrences(self):
        assert replace_phrase("teh cat and teh dog", "teh", "the") == "the cat and the dog"

    def test_multi_word_phrase(self):
        assert replace_phrase("Let's touch base soon.", "touch base", "meet") == "Let's meet soon."

    def test_no_match_returns_input(self):
        text = "nothing to see"
        assert replace_phrase(text, "absent", "present") is text


class TestPatternExtractor:
    def test_rejects_empty_input(self, extractor):
        with pytest.raises(ValidationError):
            extractor.extract_patterns("", "something")
        with pytest.raises(ValidationError):
            extractor.extract_patterns("something", "   ")

    def test_extract_creates_pattern(self, extractor, store):
        touched = extractor.extract_patterns(
            "I will recieve it", "I will receive it", RefinementMode.CLEANUP
        )
        assert len(touched) == 1
        pattern = store.patterns.find("recieve", "receive")
        assert pattern.occurrence_count == 1
        assert pattern.confidence == pytest.approx(0.3)
        assert pattern.mode == RefinementMode.CLEANUP

    def test_insignificant_edits_create_nothing(self, extractor, store):
        assert extractor.extract_patterns("it is an apple", "it is a apple") == []
        assert store.patterns.count() == (0, 0)

    def test_three_reinforcements_activate(self, extractor, store):
        for _ in range(3):
            extractor.extract_patterns("I will recieve it", "I will receive it")

        pattern = store.patterns.find("recieve", "receive")
        assert pattern.occurrence_count == 3
        assert pattern.confidence == pytest.approx(0.7)
        assert pattern.is_active
        assert extractor.apply_patterns("Did you recieve my note?") == "Did you receive my note?"

    def test_inactive_patterns_are_not_applied(self, extractor):
        for _ in range(2):
            extractor.extract_patterns("I will recieve it", "I will receive it")
        assert extractor.apply_patterns("Did you recieve my note?") == "Did you recieve my note?"

    def test_confidence_is_bounded_and_monotonic(self, extractor, store):
        previous = 0.0
        for _ in range(10):
            extractor.extract_patterns("send it asap", "send it soon")
            confidence = store.patterns.find("asap", "soon").confidence
            assert previous <= confidence <= 1.0
            previous = confidence
        assert previous == pytest.approx(1.0)

    def test_mode_bonus(self, store):
        extractor = PatternExtractor(store, apply_threshold=0.75)
        store.merge_pattern(
            LearnedPattern("cheers", "best regards", occurrence_count=3, confidence=0.7,
                           mode=RefinementMode.EMAIL)
        )
        assert extractor.apply_patterns("cheers", RefinementMode.EMAIL) == "best regards"
        assert extractor.apply_patterns("cheers", RefinementMode.MESSAGING) == "cheers"

    def test_apply_is_idempotent(self, extractor):
        for _ in range(3):
            extractor.extract_patterns("I will recieve it", "I will receive it")
            extractor.extract_patterns("we touch base later", "we meet later")

        once = extractor.apply_patterns("Recieve it and touch base.")
        assert once == "Receive it and meet."
        assert extractor.apply_patterns(once) == once

    def test_apply_empty_text(self, extractor):
        assert extractor.apply_patterns("") == ""
