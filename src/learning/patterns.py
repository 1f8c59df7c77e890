"""Pattern extraction: word-level diffs between AI output and the user's edit."""

import difflib
import unicodedata

import structlog

from errors import ValidationError
from shared_types import RefinementMode

from .models import MIN_ACTIVE_CONFIDENCE, LearnedPattern, TextChange
from .store import LocalStore

logger = structlog.get_logger()

# Replace blocks longer than this are rewrites, not phrase corrections
MAX_PHRASE_WORDS = 4

_EDGE_PUNCTUATION = "\"'`.,;:!?()[]{}<>«»“”‘’…-—–"


def _tokenize(text: str) -> list[str]:
    tokens = []
    for raw in text.split():
        token = raw.strip(_EDGE_PUNCTUATION)
        if token:
            tokens.append(token)
    return tokens


def find_changes(original: str, edited: str, max_words: int = MAX_PHRASE_WORDS) -> list[TextChange]:
    """Return replaced spans between two texts, compared word by word.

    Tokens are compared case-insensitively with edge punctuation stripped, so
    capitalisation and punctuation-only edits never produce a change.
    Pure insertions and deletions are ignored.
    """
    a = _tokenize(original)
    b = _tokenize(edited)
    matcher = difflib.SequenceMatcher(
        None, [t.lower() for t in a], [t.lower() for t in b], autojunk=False
    )

    changes = []
    for opcode, a1, a2, b1, b2 in matcher.get_opcodes():
        if opcode != "replace":
            continue
        if a2 - a1 > max_words or b2 - b1 > max_words:
            continue
        changes.append(TextChange(original=" ".join(a[a1:a2]), edited=" ".join(b[b1:b2])))
    return changes


def _fold(text: str) -> tuple[str, list[int]]:
    """Case- and diacritic-folded copy of text plus a map back to source indices."""
    folded: list[str] = []
    index: list[int] = []
    for i, ch in enumerate(text):
        for part in unicodedata.normalize("NFKD", ch):
            if unicodedata.combining(part):
                continue
            for c in part.casefold():
                folded.append(c)
                index.append(i)
    return "".join(folded), index


def match_capital(matched: str, replacement: str) -> str:
    """Capitalise replacement when the text it replaces starts with a capital."""
    if matched[:1].isupper() and replacement[:1].islower():
        return replacement[:1].upper() + replacement[1:]
    return replacement


def replace_phrase(text: str, phrase: str, replacement: str) -> str:
    """Whole-word, case- and diacritic-insensitive replacement of phrase in text.

    A match that starts with a capital letter keeps it in the replacement.
    """
    needle, _ = _fold(phrase)
    if not needle:
        return text
    haystack, index = _fold(text)

    spans = []
    start = haystack.find(needle)
    while start != -1:
        end = start + len(needle)
        before_ok = start == 0 or not haystack[start - 1].isalnum()
        after_ok = end == len(haystack) or not haystack[end].isalnum()
        if before_ok and after_ok:
            spans.append((index[start], index[end - 1] + 1))
            start = haystack.find(needle, end)
        else:
            start = haystack.find(needle, start + 1)

    if not spans:
        return text

    parts = []
    cursor = 0
    for src_start, src_end in spans:
        if src_start < cursor:
            continue
        parts.append(text[cursor:src_start])
        parts.append(match_capital(text[src_start:src_end], replacement))
        cursor = src_end
    parts.append(text[cursor:])
    return "".join(parts)


class PatternExtractor:
    """Learns phrase corrections from edits and reapplies them."""

    def __init__(
        self,
        store: LocalStore,
        initial_confidence: float = 0.3,
        reinforcement_step: float = 0.2,
        mode_bonus: float = 0.1,
        apply_threshold: float = MIN_ACTIVE_CONFIDENCE,
        max_phrase_words: int = MAX_PHRASE_WORDS,
    ):
        self.store = store
        self.initial_confidence = initial_confidence
        self.reinforcement_step = reinforcement_step
        self.mode_bonus = mode_bonus
        self.apply_threshold = apply_threshold
        self.max_phrase_words = max_phrase_words

    def extract_patterns(
        self, original_text: str, edited_text: str, mode: RefinementMode | None = None
    ) -> list[LearnedPattern]:
        """Upsert a pattern for each significant change. Returns the touched patterns."""
        if not original_text or not original_text.strip():
            raise ValidationError("original_text is empty")
        if not edited_text or not edited_text.strip():
            raise ValidationError("edited_text is empty")

        significant = [
            c
            for c in find_changes(original_text, edited_text, self.max_phrase_words)
            if c.is_significant
        ]

        touched = []
        for change in significant:
            pattern = self.store.upsert_pattern(
                change.original,
                change.edited,
                mode,
                initial_confidence=self.initial_confidence,
                step=self.reinforcement_step,
            )
            touched.append(pattern)
            logger.debug(
                "patterns.reinforced",
                original=change.original,
                corrected=change.edited,
                occurrences=pattern.occurrence_count,
                confidence=round(pattern.confidence, 2),
            )

        if touched:
            logger.info("patterns.extracted", count=len(touched), mode=mode)
        return touched

    def apply_patterns(self, text: str, mode: RefinementMode | None = None) -> str:
        """Rewrite text with every active pattern whose effective confidence clears the bar."""
        if not text:
            return text

        result = text
        for pattern in self.store.list_active_patterns():
            bonus = self.mode_bonus if mode is not None and pattern.mode == mode else 0.0
            effective = min(1.0, pattern.confidence + bonus)
            if effective > self.apply_threshold:
                result = replace_phrase(result, pattern.original_phrase, pattern.corrected_phrase)
        return result
