"""JSON export/import of the whole learning state."""

import json
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

import pydantic
import structlog

from errors import LearningError
from learning.store import LocalStore

from .schema import (
    SCHEMA_VERSION,
    PatternRecord,
    PreferenceRecord,
    SessionRecord,
    Snapshot,
    SnapshotSessionRecord,
)

logger = structlog.get_logger()

# Applied in this order; a failure stops the import at that entity
IMPORT_ORDER = ("patterns", "preferences", "sessions")


@dataclass
class ImportReport:
    imported: dict[str, int] = field(default_factory=dict)
    failed_entity: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.failed_entity is None


class SnapshotExporter:
    """Writes and reads snapshot files for a LocalStore."""

    def __init__(self, store: LocalStore):
        self.store = store

    def build_snapshot(self) -> Snapshot:
        stats = self.store.get_stats()
        return Snapshot(
            export_date=datetime.now(),
            schema_version=SCHEMA_VERSION,
            patterns=[PatternRecord.from_domain(p) for p in self.store.patterns.list_all()],
            preferences=[
                PreferenceRecord.from_domain(p) for p in self.store.preferences.list_all()
            ],
            sessions=[
                SnapshotSessionRecord(
                    **SessionRecord.from_domain(s).model_dump(), synced=s.synced
                )
                for s in self.store.sessions.list_all()
            ],
            aggregates={
                "sessions": stats["sessions"],
                "patterns": stats["patterns"],
                "preferences": stats["preferences"],
            },
        )

    def export_snapshot(self, output_path: str | Path) -> Path:
        """Write a snapshot. A directory path gets a timestamped file name."""
        path = Path(output_path).expanduser()
        if path.is_dir():
            path = path / f"dictate_export_{datetime.now().strftime('%Y%m%d_%H%M%S')}.json"
        path.parent.mkdir(parents=True, exist_ok=True)

        snapshot = self.build_snapshot()
        data = snapshot.model_dump(mode="json", by_alias=True)
        path.write_text(json.dumps(data, indent=2, ensure_ascii=False))
        logger.info(
            "snapshot.exported",
            path=str(path),
            patterns=len(snapshot.patterns),
            preferences=len(snapshot.preferences),
            sessions=len(snapshot.sessions),
        )
        return path

    def import_snapshot(self, input_path: str | Path) -> ImportReport:
        """Merge a snapshot into the store, one entity type at a time.

        Each type is validated in full before any row is written, so a bad
        file leaves earlier types imported and the failing type untouched.
        """
        report = ImportReport()
        path = Path(input_path).expanduser()
        try:
            data = json.loads(path.read_text())
        except (OSError, json.JSONDecodeError) as e:
            return self._fail(report, "document", f"Cannot read snapshot: {e}")

        if not isinstance(data, dict):
            return self._fail(report, "document", "Snapshot root must be an object")
        version = data.get("schemaVersion", SCHEMA_VERSION)
        if not isinstance(version, int) or version > SCHEMA_VERSION:
            return self._fail(report, "document", f"Unsupported schema version: {version}")

        loaders = {
            "patterns": (PatternRecord, self._import_pattern),
            "preferences": (PreferenceRecord, self._import_preference),
            "sessions": (SnapshotSessionRecord, self._import_session),
        }
        for entity in IMPORT_ORDER:
            model, apply = loaders[entity]
            rows = data.get(entity, [])
            if not isinstance(rows, list):
                return self._fail(report, entity, f"'{entity}' must be a list")
            try:
                records = [model.model_validate(row) for row in rows]
                for record in records:
                    apply(record)
            except (pydantic.ValidationError, ValueError, LearningError) as e:
                return self._fail(report, entity, str(e))
            report.imported[entity] = len(records)

        logger.info("snapshot.imported", path=str(path), **report.imported)
        return report

    def _import_pattern(self, record: PatternRecord) -> None:
        self.store.merge_pattern(record.to_domain())

    def _import_preference(self, record: PreferenceRecord) -> None:
        self.store.merge_preference(record.to_domain())

    def _import_session(self, record: SnapshotSessionRecord) -> None:
        self.store.save_session(record.to_domain(synced=record.synced))

    @staticmethod
    def _fail(report: ImportReport, entity: str, error: str) -> ImportReport:
        report.failed_entity = entity
        report.error = error
        logger.warning("snapshot.import_failed", entity=entity, error=error)
        return report
