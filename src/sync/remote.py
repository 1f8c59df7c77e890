"""Remote store abstraction and the Supabase (PostgREST) implementation."""

from abc import ABC, abstractmethod

import httpx
import pydantic
import structlog

from cli.retry import remote_retry
from errors import ConflictError, SyncError
from learning.models import OfflineOperation
from shared_types import OperationType

from .schema import (
    AssignmentRecord,
    PatternRecord,
    PreferenceRecord,
    RemotePatternRow,
    RemotePreferenceRow,
    SessionRecord,
    parse_payload,
)

logger = structlog.get_logger()

SESSIONS_TABLE = "learning_sessions"
PATTERNS_TABLE = "learned_patterns"
PREFERENCES_TABLE = "user_preferences"
ASSIGNMENTS_TABLE = "app_assignments"

# Deleted child-first so foreign keys never block a wipe
USER_TABLES = (SESSIONS_TABLE, PATTERNS_TABLE, PREFERENCES_TABLE, ASSIGNMENTS_TABLE)


class RemoteStore(ABC):
    """Per-user replica of the learning data."""

    name: str = "base"

    @abstractmethod
    def probe(self) -> bool:
        """Cheap reachability check. False when unreachable; SyncError when rejected."""

    @abstractmethod
    def save_session(self, record: SessionRecord) -> None: ...

    @abstractmethod
    def save_pattern(self, record: PatternRecord) -> None: ...

    @abstractmethod
    def save_preference(self, record: PreferenceRecord) -> None: ...

    @abstractmethod
    def save_assignment(self, record: AssignmentRecord) -> None: ...

    @abstractmethod
    def delete_pattern(self, original_phrase: str, corrected_phrase: str) -> None: ...

    @abstractmethod
    def delete_all(self) -> None: ...

    @abstractmethod
    def fetch_patterns(self) -> list[PatternRecord]: ...

    @abstractmethod
    def fetch_preferences(self) -> list[PreferenceRecord]: ...

    def close(self) -> None:
        pass

    def execute(self, operation: OfflineOperation) -> None:
        """Replay one queued operation. Raises SyncError on any failure."""
        try:
            payload = parse_payload(operation)
        except pydantic.ValidationError as e:
            raise SyncError(f"Malformed {operation.op_type} payload: {e}") from e

        op_type = operation.op_type
        if op_type == OperationType.SAVE_SESSION:
            self.save_session(payload.session)
            for pattern in payload.patterns:
                self.save_pattern(pattern)
            for preference in payload.preferences:
                self.save_preference(preference)
        elif op_type == OperationType.SAVE_PATTERN:
            self.save_pattern(payload.pattern)
        elif op_type == OperationType.SAVE_PREFERENCE:
            self.save_preference(payload.preference)
        elif op_type == OperationType.SAVE_ASSIGNMENT:
            self.save_assignment(payload.assignment)
        elif op_type == OperationType.DELETE_PATTERN:
            self.delete_pattern(payload.original_phrase, payload.corrected_phrase)
        elif op_type == OperationType.DELETE_ALL:
            self.delete_all()
        else:
            raise SyncError(f"Unknown operation type: {op_type}")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


class SupabaseRemoteStore(RemoteStore):
    """Talks to the Supabase REST endpoint; rows are scoped by user_id."""

    name = "supabase"

    def __init__(
        self,
        url: str,
        api_key: str,
        user_id: str,
        access_token: str | None = None,
        timeout: float = 5.0,
        max_attempts: int = 2,
        min_wait: float = 0.5,
        max_wait: float = 2.0,
        client: httpx.Client | None = None,
    ):
        if not url or not api_key or not user_id:
            raise SyncError("Supabase url, api_key and user_id are required")
        self.url = url.rstrip("/")
        self.user_id = user_id
        self.client = client or httpx.Client(
            base_url=f"{self.url}/rest/v1",
            timeout=timeout,
            headers={
                "apikey": api_key,
                "Authorization": f"Bearer {access_token or api_key}",
                "Content-Type": "application/json",
            },
        )
        self._send = remote_retry(
            max_attempts=max_attempts, min_wait=min_wait, max_wait=max_wait
        )(self._send_once)

    def _send_once(self, method: str, table: str, **kwargs) -> httpx.Response:
        response = self.client.request(method, f"/{table}", **kwargs)
        response.raise_for_status()
        return response

    def _request(self, method: str, table: str, **kwargs) -> httpx.Response:
        try:
            return self._send(method, table, **kwargs)
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            logger.warning(
                "remote.http_error", table=table, method=method, status=status,
                body=e.response.text[:200],
            )
            if status == 409:
                raise ConflictError(f"{table}: conflicting row") from e
            if status in (401, 403):
                raise SyncError(f"Not authorised for {table} (HTTP {status})") from e
            raise SyncError(f"{method} {table} failed with HTTP {status}") from e
        except httpx.RequestError as e:
            logger.warning("remote.request_failed", table=table, method=method, error=str(e))
            raise SyncError(f"Sync service unreachable: {e}") from e

    def _upsert(self, table: str, row: dict, on_conflict: str, ignore_duplicates: bool = False):
        resolution = "ignore-duplicates" if ignore_duplicates else "merge-duplicates"
        self._request(
            "POST",
            table,
            params={"on_conflict": on_conflict},
            json=row,
            headers={"Prefer": f"resolution={resolution},return=minimal"},
        )

    def _owned(self, **filters: str) -> dict[str, str]:
        params = {"user_id": f"eq.{self.user_id}"}
        params.update({k: f"eq.{v}" for k, v in filters.items()})
        return params

    def probe(self) -> bool:
        try:
            self._send_once("GET", PATTERNS_TABLE, params={"select": "id", "limit": 1})
            return True
        except httpx.HTTPStatusError as e:
            if e.response.status_code in (401, 403):
                raise SyncError(f"Sync credentials rejected (HTTP {e.response.status_code})") from e
            logger.info("remote.probe_failed", status=e.response.status_code)
            return False
        except httpx.RequestError as e:
            logger.info("remote.probe_failed", error=str(e))
            return False

    def save_session(self, record: SessionRecord) -> None:
        row = {**record.to_json(), "user_id": self.user_id}
        # Retried sessions are already there; keep the first copy
        self._upsert(SESSIONS_TABLE, row, on_conflict="id", ignore_duplicates=True)

    def save_pattern(self, record: PatternRecord) -> None:
        incoming = record.to_domain()
        existing = self._fetch_pattern(record.original_phrase, record.corrected_phrase)
        merged = existing.to_domain().merged_with(incoming) if existing else incoming
        row = {
            **PatternRecord.from_domain(merged).to_json(),
            "user_id": self.user_id,
            "is_active": True,
        }
        self._upsert(PATTERNS_TABLE, row, on_conflict="user_id,original_phrase,corrected_phrase")

    def save_preference(self, record: PreferenceRecord) -> None:
        incoming = record.to_domain()
        existing = self._fetch_preference(record.preference_type.value)
        merged = existing.to_domain().merged_with(incoming) if existing else incoming
        row = {**PreferenceRecord.from_domain(merged).to_json(), "user_id": self.user_id}
        self._upsert(PREFERENCES_TABLE, row, on_conflict="user_id,preference_type")

    def save_assignment(self, record: AssignmentRecord) -> None:
        row = {**record.to_json(), "user_id": self.user_id}
        self._upsert(ASSIGNMENTS_TABLE, row, on_conflict="user_id,app_bundle_id")

    def delete_pattern(self, original_phrase: str, corrected_phrase: str) -> None:
        self._request(
            "DELETE",
            PATTERNS_TABLE,
            params=self._owned(original_phrase=original_phrase, corrected_phrase=corrected_phrase),
        )

    def delete_all(self) -> None:
        for table in USER_TABLES:
            self._request("DELETE", table, params=self._owned())
        logger.info("remote.deleted_all", user_id=self.user_id)

    def fetch_patterns(self) -> list[PatternRecord]:
        rows = self._select(PATTERNS_TABLE, self._owned(is_active="true"))
        return self._validate_rows(rows, RemotePatternRow, PATTERNS_TABLE)

    def fetch_preferences(self) -> list[PreferenceRecord]:
        rows = self._select(PREFERENCES_TABLE, self._owned())
        return self._validate_rows(rows, RemotePreferenceRow, PREFERENCES_TABLE)

    def _fetch_pattern(self, original_phrase: str, corrected_phrase: str) -> PatternRecord | None:
        rows = self._select(
            PATTERNS_TABLE,
            self._owned(original_phrase=original_phrase, corrected_phrase=corrected_phrase),
        )
        valid = self._validate_rows(rows, RemotePatternRow, PATTERNS_TABLE)
        return valid[0] if valid else None

    def _fetch_preference(self, preference_type: str) -> PreferenceRecord | None:
        rows = self._select(PREFERENCES_TABLE, self._owned(preference_type=preference_type))
        valid = self._validate_rows(rows, RemotePreferenceRow, PREFERENCES_TABLE)
        return valid[0] if valid else None

    def _select(self, table: str, params: dict[str, str]) -> list[dict]:
        response = self._request("GET", table, params={"select": "*", **params})
        data = response.json()
        if not isinstance(data, list):
            raise SyncError(f"Unexpected response shape from {table}")
        return data

    @staticmethod
    def _validate_rows(rows: list[dict], model, table: str) -> list:
        valid = []
        for row in rows:
            try:
                valid.append(model.model_validate(row))
            except pydantic.ValidationError as e:
                logger.warning(
                    "remote.invalid_row", table=table, row_id=row.get("id"),
                    errors=e.error_count(),
                )
        return valid

    def close(self) -> None:
        self.client.close()
