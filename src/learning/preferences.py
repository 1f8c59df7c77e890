"""Preference profiling: stylistic leanings inferred from edits and A/B choices."""

import re

import structlog

from shared_types import PreferenceType

from .models import UserPreference, clamp
from .patterns import match_capital
from .store import LocalStore

logger = structlog.get_logger()

FORMAL_MARKERS = {
    "therefore", "furthermore", "however", "nevertheless", "consequently",
    "accordingly", "moreover", "regards", "sincerely", "dear", "mr", "mrs",
    "ms", "dr", "please", "kindly",
}
CASUAL_MARKERS = {"yeah", "ok", "okay", "cool", "awesome", "hey", "stuff", "lol", "btw", "yep", "nope"}
INFORMAL_CONTRACTIONS = {"gonna", "wanna", "gotta", "kinda", "sorta", "dunno", "ain't", "y'all", "lemme"}

CONTRACTIONS = {
    "don't", "won't", "can't", "shouldn't", "wouldn't", "couldn't", "haven't",
    "hasn't", "isn't", "aren't", "wasn't", "weren't", "didn't", "doesn't",
    "i'm", "you're", "he's", "she's", "it's", "we're", "they're", "i've",
    "you've", "we've", "they've", "i'll", "you'll", "he'll", "she'll",
    "it'll", "we'll", "they'll", "i'd", "you'd", "that's", "there's", "let's",
}

HEAVY_PUNCTUATION = "!?;:—"

# Casual -> formal
FORMALIZATIONS = {
    "gonna": "going to",
    "wanna": "want to",
    "gotta": "have to",
    "kinda": "somewhat",
    "yeah": "yes",
    "yep": "yes",
    "nope": "no",
    "ok": "very well",
}

# Formal -> casual
CASUALIZATIONS = {
    "going to": "gonna",
    "want to": "wanna",
    "have to": "gotta",
    "very well": "ok",
}

FILLER_PHRASES = [
    "I think that",
    "I believe that",
    "it seems like",
    "in my opinion",
    "I would say that",
    "you know",
    "basically",
    "kind of",
    "sort of",
]

CONTRACTION_MAP = {
    "do not": "don't",
    "does not": "doesn't",
    "did not": "didn't",
    "will not": "won't",
    "cannot": "can't",
    "should not": "shouldn't",
    "would not": "wouldn't",
    "could not": "couldn't",
    "have not": "haven't",
    "has not": "hasn't",
    "is not": "isn't",
    "are not": "aren't",
    "was not": "wasn't",
    "were not": "weren't",
    "I am": "I'm",
    "you are": "you're",
    "we are": "we're",
    "they are": "they're",
    "it is": "it's",
}

EXPANSION_MAP = {contraction: full for full, contraction in CONTRACTION_MAP.items()}

_WORD_RE = re.compile(r"[\w']+")


def _words(text: str) -> list[str]:
    return [w.strip("'") for w in _WORD_RE.findall(text.lower().replace("’", "'"))]


def word_count(text: str) -> int:
    return len(text.split())


def formality(text: str) -> float:
    """+0.2 per formal marker, -0.2 per casual marker, -0.3 per informal contraction."""
    score = 0.0
    for word in _words(text):
        if word in FORMAL_MARKERS:
            score += 0.2
        elif word in INFORMAL_CONTRACTIONS:
            score -= 0.3
        elif word in CASUAL_MARKERS:
            score -= 0.2
    return clamp(score)


def conciseness(before: str, after: str) -> float:
    """Positive when the user shortened the text."""
    before_count = word_count(before)
    if before_count == 0:
        return 0.0
    return clamp(1 - word_count(after) / before_count)


def contraction_ratio(text: str) -> float:
    total = word_count(text)
    if total == 0:
        return 0.0
    hits = sum(1 for w in _words(text) if w in CONTRACTIONS)
    return clamp(hits / total * 10)


def punctuation_density(text: str) -> float:
    total = word_count(text)
    if total == 0:
        return 0.0
    hits = sum(1 for ch in text if ch in HEAVY_PUNCTUATION)
    return clamp(hits / total * 10)


def _replace_words(text: str, table: dict[str, str]) -> str:
    # Longest keys first so "do not" wins over shorter overlaps
    for source in sorted(table, key=len, reverse=True):
        pattern = re.compile(rf"(?<![\w']){re.escape(source)}(?![\w'])", re.IGNORECASE)
        text = pattern.sub(lambda m, r=table[source]: match_capital(m.group(0), r), text)
    return text


def _tidy(text: str) -> str:
    text = re.sub(r"[ \t]{2,}", " ", text)
    text = re.sub(r" +([,.;:!?])", r"\1", text)
    text = re.sub(r"^[ ,]+", "", text)
    return text.strip()


class PreferenceProfiler:
    """Scores edits/choices and keeps smoothed preferences in the Local Store."""

    def __init__(
        self,
        store: LocalStore,
        alpha: float = 0.1,
        choice_weight: float = 0.5,
        threshold: float = 0.5,
    ):
        self.store = store
        self.alpha = alpha
        self.choice_weight = choice_weight
        self.threshold = threshold

    def analyze_preferences(self, before: str, after: str) -> list[UserPreference]:
        """Learn from a free edit of `before` into `after`."""
        deltas = {
            PreferenceType.FORMALITY: formality(after) - formality(before),
            PreferenceType.CONCISENESS: conciseness(before, after),
            PreferenceType.CONTRACTIONS: contraction_ratio(after) - contraction_ratio(before),
            PreferenceType.PUNCTUATION: punctuation_density(after) - punctuation_density(before),
        }
        return self._update(deltas, self.alpha)

    def learn_from_choice(self, selected: str, rejected: str) -> list[UserPreference]:
        """Learn from a forced choice; half the weight of a free edit."""
        deltas = {
            PreferenceType.FORMALITY: formality(selected) - formality(rejected),
            PreferenceType.CONCISENESS: conciseness(rejected, selected),
            PreferenceType.CONTRACTIONS: contraction_ratio(selected) - contraction_ratio(rejected),
        }
        return self._update(deltas, self.alpha * self.choice_weight)

    def _update(self, deltas: dict[PreferenceType, float], weight: float) -> list[UserPreference]:
        updated = [
            self.store.upsert_preference(ptype, delta * weight) for ptype, delta in deltas.items()
        ]
        logger.debug(
            "preferences.updated",
            values={p.preference_type.value: round(p.value, 3) for p in updated},
        )
        return updated

    def adjust_for_preferences(
        self, text: str, values: dict[PreferenceType, float] | None = None
    ) -> str:
        """Apply the fixed rewrite tables for any preference past the threshold."""
        if not text:
            return text
        if values is None:
            values = self.store.preferences.values()

        result = text
        form = values.get(PreferenceType.FORMALITY, 0.0)
        if form > self.threshold:
            result = _replace_words(result, FORMALIZATIONS)
        elif form < -self.threshold:
            result = _replace_words(result, CASUALIZATIONS)

        if values.get(PreferenceType.CONCISENESS, 0.0) > self.threshold:
            result = _tidy(_replace_words(result, {f: "" for f in FILLER_PHRASES}))
            result = match_capital(text, result)

        contractions = values.get(PreferenceType.CONTRACTIONS, 0.0)
        if contractions > self.threshold:
            result = _replace_words(result, CONTRACTION_MAP)
        elif contractions < -self.threshold:
            result = _replace_words(result, EXPANSION_MAP)

        return result
