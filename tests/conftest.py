"""Shared test fixtures for Dictate."""

import sys
from pathlib import Path

import pytest

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from errors import SyncError  # noqa: E402
from learning import LearningApplier, LocalStore, PatternExtractor, PreferenceProfiler  # noqa: E402
from learning.engine import LearningEngine  # noqa: E402
from sync.remote import RemoteStore  # noqa: E402


class FakeRemote(RemoteStore):
    """In-memory remote replica. Flip `online` to simulate connectivity loss."""

    name = "fake"

    def __init__(self, online: bool = True):
        self.online = online
        self.probe_error: Exception | None = None
        self.sessions: dict = {}
        self.patterns: dict = {}
        self.preferences: dict = {}
        self.assignments: dict = {}
        self.calls: list[str] = []
        self.closed = False

    def _check(self, call: str):
        self.calls.append(call)
        if not self.online:
            raise SyncError("Sync service unreachable")

    def probe(self) -> bool:
        if self.probe_error:
            raise self.probe_error
        return self.online

    def save_session(self, record):
        self._check("save_session")
        self.sessions.setdefault(record.id, record)

    def save_pattern(self, record):
        self._check("save_pattern")
        key = (record.original_phrase, record.corrected_phrase)
        existing = self.patterns.get(key)
        if existing:
            merged = existing.to_domain().merged_with(record.to_domain())
            record = type(record).from_domain(merged)
        self.patterns[key] = record

    def save_preference(self, record):
        self._check("save_preference")
        existing = self.preferences.get(record.preference_type)
        if existing:
            merged = existing.to_domain().merged_with(record.to_domain())
            record = type(record).from_domain(merged)
        self.preferences[record.preference_type] = record

    def save_assignment(self, record):
        self._check("save_assignment")
        self.assignments[record.app_bundle_id] = record

    def delete_pattern(self, original_phrase, corrected_phrase):
        self._check("delete_pattern")
        self.patterns.pop((original_phrase, corrected_phrase), None)

    def delete_all(self):
        self._check("delete_all")
        self.sessions.clear()
        self.patterns.clear()
        self.preferences.clear()
        self.assignments.clear()

    def fetch_patterns(self):
        self._check("fetch_patterns")
        return list(self.patterns.values())

    def fetch_preferences(self):
        self._check("fetch_preferences")
        return list(self.preferences.values())

    def close(self):
        self.closed = True


@pytest.fixture
def store(tmp_path):
    return LocalStore(tmp_path / "learning.db")


@pytest.fixture
def remote():
    return FakeRemote()


@pytest.fixture
def extractor(store):
    return PatternExtractor(store)


@pytest.fixture
def profiler(store):
    return PreferenceProfiler(store)


@pytest.fixture
def applier(extractor, profiler):
    return LearningApplier(extractor, profiler)


@pytest.fixture
def engine(store, extractor, profiler, applier):
    """LearningEngine with no sync engine: operations land in the offline queue."""
    return LearningEngine(store, extractor=extractor, profiler=profiler, applier=applier)
