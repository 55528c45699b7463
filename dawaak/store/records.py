"""
Collection-oriented CRUD engine.

A RecordStore keeps named tables of JSON-like records in memory, writes every
mutated table through its Persistence backend and records each change in the
``audit_log`` table of the same store. Records handed out are copies; stored
dicts are replaced on mutation, never edited in place.

Deletion policy is soft delete: ``delete()`` flags the record
(``deleted=True``) and default reads skip it. ``purge()`` removes flagged
records physically.
"""
import copy
import logging
import secrets
import threading
import time
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Iterable, Mapping

from .errors import Conflict, NotFound, PersistenceError, UnsupportedOperation, ValidationError
from .persistence import Persistence
from .query import Query, matches_filters, matches_search, sort_records
from .schema import (
    AUDIT_TABLE,
    DEFAULT_TABLES,
    ERROR_TABLE,
    LIFECYCLE_FIELDS,
    PRIVATE_FIELDS,
    SERVER_FIELDS,
    TableSpec,
)
from .timestamps import to_iso, utc_now

logger = logging.getLogger(__name__)

Record = dict[str, Any]

_UNAUDITED = frozenset({AUDIT_TABLE, ERROR_TABLE})


@dataclass(frozen=True)
class AuditContext:
    """Who performed a mutation; copied into the audit trail."""

    user_id: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None


@dataclass
class FindResult:
    data: list[Record]
    total: int
    offset: int
    limit: int | None


class RecordStore:
    def __init__(
        self,
        persistence: Persistence,
        tables: Iterable[TableSpec] = DEFAULT_TABLES,
        *,
        audit: bool = True,
    ):
        self.persistence = persistence
        self.audit_enabled = audit
        self._specs: dict[str, TableSpec] = {spec.name: spec for spec in tables}
        self._data: dict[str, list[Record]] = {name: [] for name in self._specs}
        self._locks: dict[str, threading.RLock] = {name: threading.RLock() for name in self._specs}
        self._clock_lock = threading.Lock()
        self._last_stamp = None
        self.last_save_at: str | None = None
        self.load()

    @property
    def table_names(self) -> list[str]:
        return list(self._specs)

    def has_table(self, table: str) -> bool:
        return table in self._specs

    # --- internals -----------------------------------------------------

    def load(self) -> None:
        loaded = self.persistence.load()
        for name, rows in loaded.items():
            if name not in self._specs:
                logger.warning("Ignoring stored table %r: not in the table catalogue", name)
                continue
            valid = [r for r in rows if isinstance(r, dict) and isinstance(r.get("id"), str)]
            if len(valid) != len(rows):
                logger.warning("Table %s: skipped %d records without a string id", name, len(rows) - len(valid))
            with self._locks[name]:
                self._data[name] = valid
        logger.info(
            "Record store loaded (%s): %s",
            self.persistence.name,
            ", ".join(f"{n}={len(self._data[n])}" for n in self._specs),
        )

    def _spec(self, table: str) -> TableSpec:
        spec = self._specs.get(table)
        if spec is None:
            raise UnsupportedOperation(f"Table '{table}' does not exist.")
        return spec

    def _now(self) -> str:
        # Strictly increasing, so updated_at always advances
        with self._clock_lock:
            now = utc_now()
            if self._last_stamp is not None and now <= self._last_stamp:
                now = self._last_stamp + timedelta(microseconds=1)
            self._last_stamp = now
        return to_iso(now)

    def _new_id(self, spec: TableSpec) -> str:
        while True:
            candidate = f"{spec.id_prefix}_{int(time.time() * 1000)}_{secrets.token_hex(5)}"
            if self._index(spec.name, candidate) < 0:
                return candidate

    def _index(self, table: str, record_id: str) -> int:
        for i, record in enumerate(self._data[table]):
            if record.get("id") == record_id:
                return i
        return -1

    def _live_index(self, table: str, record_id: str) -> int:
        i = self._index(table, record_id)
        if i < 0 or self._data[table][i].get("deleted"):
            raise NotFound(f"Record '{record_id}' not found in '{table}'.")
        return i

    @contextmanager
    def _lock_tables(self, names: Iterable[str]):
        """Holds several table locks, always taken in name order."""
        with ExitStack() as stack:
            for name in sorted(set(names)):
                stack.enter_context(self._locks[name])
            yield

    def _persist(self, tables: Mapping[str, list[Record]]) -> None:
        """Writes the given tables; on failure restores the ``tables`` snapshots and re-raises."""
        try:
            self.persistence.save({name: self._data[name] for name in tables})
        except PersistenceError:
            logger.exception("Persisting %s failed; in-memory changes rolled back", ", ".join(tables))
            for name, snapshot in tables.items():
                self._data[name] = snapshot
            raise
        self.last_save_at = to_iso(utc_now())

    @staticmethod
    def _check_required(spec: TableSpec, record: Mapping[str, Any]) -> None:
        for name in spec.required:
            value = record.get(name)
            if value is None or (isinstance(value, str) and not value.strip()):
                raise ValidationError(f"Field '{name}' is required for '{spec.name}'.")

    def _check_unique(self, spec: TableSpec, values: Mapping[str, Any], exclude_id: str | None = None) -> None:
        for name in spec.unique:
            value = values.get(name)
            if value is None or value == "":
                continue
            for other in self.find(spec.name, {name: value}).data:
                if other["id"] != exclude_id:
                    raise Conflict(f"'{name}' value '{value}' already exists in '{spec.name}'.")

    @staticmethod
    def redact(record: Mapping[str, Any] | None) -> Record | None:
        if record is None:
            return None
        return {k: v for k, v in record.items() if k not in PRIVATE_FIELDS}

    def _audit(
        self,
        action: str,
        table: str,
        record_id: str | None,
        old: Mapping[str, Any] | None,
        new: Mapping[str, Any] | None,
        actor: AuditContext | None,
    ) -> None:
        if not self.audit_enabled or table in _UNAUDITED:
            return
        actor = actor or AuditContext()
        try:
            self.insert(
                AUDIT_TABLE,
                {
                    "user_id": actor.user_id or "system",
                    "action": action,
                    "table_name": table,
                    "record_id": record_id,
                    "old_values": self.redact(old),
                    "new_values": self.redact(new),
                    "ip_address": actor.ip_address,
                    "user_agent": actor.user_agent,
                },
            )
        except PersistenceError as e:
            # The data change is already saved at this point
            logger.warning("Audit write failed for %s %s/%s: %s", action, table, record_id, e.message)

    # --- CRUD ------------------------------------------------------------

    def insert(self, table: str, data: Mapping[str, Any], actor: AuditContext | None = None) -> Record:
        spec = self._spec(table)
        if not isinstance(data, Mapping):
            raise ValidationError("Record body must be a JSON object.")
        record = copy.deepcopy(
            {k: v for k, v in data.items() if k not in ("created_at", "updated_at") + LIFECYCLE_FIELDS}
        )
        given_id = record.pop("id", None)
        with self._locks[table]:
            if given_id is not None:
                if not isinstance(given_id, str) or not given_id.strip():
                    raise ValidationError("'id' must be a non-empty string.")
                if self._index(table, given_id) >= 0:
                    raise Conflict(f"Record '{given_id}' already exists in '{table}'.")
                record_id = given_id
            else:
                record_id = self._new_id(spec)
            self._check_required(spec, record)
            self._check_unique(spec, record)
            now = self._now()
            stored = {"id": record_id, **record, "created_at": now, "updated_at": now}
            snapshot = list(self._data[table])
            self._data[table].append(stored)
            self._persist({table: snapshot})
        self._audit("create", table, record_id, None, stored, actor)
        return copy.deepcopy(stored)

    def find(
        self,
        table: str,
        filters: Mapping[str, Any] | None = None,
        *,
        search: str | None = None,
        sort: str | None = None,
        offset: int = 0,
        limit: int | None = None,
        page: int | None = None,
        include_deleted: bool = False,
    ) -> FindResult:
        self._spec(table)
        if limit is not None and limit < 1:
            raise ValidationError("'limit' must be >= 1.")
        if page is not None:
            if page < 1:
                raise ValidationError("'page' must be >= 1.")
            offset = (page - 1) * limit if limit else 0
        if offset < 0:
            raise ValidationError("'offset' must be >= 0.")
        with self._locks[table]:
            rows = [
                r
                for r in self._data[table]
                if (include_deleted or not r.get("deleted"))
                and (not filters or matches_filters(r, filters))
                and (not search or matches_search(r, search))
            ]
        if sort:
            rows = sort_records(rows, sort)
        total = len(rows)
        window = rows[offset : offset + limit] if limit is not None else rows[offset:]
        return FindResult(data=copy.deepcopy(window), total=total, offset=offset, limit=limit)

    def find_query(self, table: str, query: Query) -> FindResult:
        return self.find(
            table,
            query.filters,
            search=query.search,
            sort=query.sort,
            offset=query.offset,
            limit=query.limit,
            include_deleted=query.include_deleted,
        )

    def find_one(self, table: str, filters: Mapping[str, Any] | None = None) -> Record | None:
        result = self.find(table, filters, limit=1)
        return result.data[0] if result.data else None

    def get(self, table: str, record_id: str, include_deleted: bool = False) -> Record:
        self._spec(table)
        with self._locks[table]:
            i = self._index(table, record_id)
            if i < 0 or (self._data[table][i].get("deleted") and not include_deleted):
                raise NotFound(f"Record '{record_id}' not found in '{table}'.")
            return copy.deepcopy(self._data[table][i])

    def update(
        self,
        table: str,
        record_id: str,
        patch: Mapping[str, Any],
        actor: AuditContext | None = None,
    ) -> Record:
        """Shallow merge: supplied fields overwrite, the rest are kept."""
        spec = self._spec(table)
        if not isinstance(patch, Mapping):
            raise ValidationError("Patch body must be a JSON object.")
        changes = copy.deepcopy(dict(patch))
        if "id" in changes and changes.pop("id") != record_id:
            raise ValidationError("'id' cannot be changed.")
        changes.pop("created_at", None)
        changes.pop("updated_at", None)
        for name in LIFECYCLE_FIELDS:
            changes.pop(name, None)
        with self._locks[table]:
            i = self._live_index(table, record_id)
            current = self._data[table][i]
            merged = {**current, **changes}
            self._check_required(spec, merged)
            self._check_unique(spec, changes, exclude_id=record_id)
            merged["updated_at"] = self._now()
            snapshot = list(self._data[table])
            self._data[table][i] = merged
            self._persist({table: snapshot})
        self._audit("update", table, record_id, current, merged, actor)
        return copy.deepcopy(merged)

    def replace(
        self,
        table: str,
        record_id: str,
        data: Mapping[str, Any],
        actor: AuditContext | None = None,
    ) -> Record:
        """Full replace: every field except ``id`` and ``created_at`` comes from ``data``."""
        spec = self._spec(table)
        if not isinstance(data, Mapping):
            raise ValidationError("Record body must be a JSON object.")
        if "id" in data and data["id"] != record_id:
            raise ValidationError("'id' cannot be changed.")
        body = copy.deepcopy({k: v for k, v in data.items() if k not in SERVER_FIELDS + LIFECYCLE_FIELDS})
        with self._locks[table]:
            i = self._live_index(table, record_id)
            current = self._data[table][i]
            self._check_required(spec, body)
            self._check_unique(spec, body, exclude_id=record_id)
            replaced = {"id": record_id, **body, "created_at": current.get("created_at"), "updated_at": self._now()}
            snapshot = list(self._data[table])
            self._data[table][i] = replaced
            self._persist({table: snapshot})
        self._audit("replace", table, record_id, current, replaced, actor)
        return copy.deepcopy(replaced)

    def delete(self, table: str, record_id: str, actor: AuditContext | None = None) -> Record:
        self._spec(table)
        with self._locks[table]:
            i = self._live_index(table, record_id)
            current = self._data[table][i]
            now = self._now()
            flagged = {**current, "deleted": True, "deleted_at": now, "updated_at": now}
            snapshot = list(self._data[table])
            self._data[table][i] = flagged
            self._persist({table: snapshot})
        self._audit("delete", table, record_id, current, None, actor)
        return copy.deepcopy(flagged)

    # --- maintenance -----------------------------------------------------

    def purge(self, table: str, actor: AuditContext | None = None) -> int:
        """Physically removes soft-deleted records; returns how many were removed."""
        self._spec(table)
        with self._locks[table]:
            snapshot = list(self._data[table])
            kept = [r for r in snapshot if not r.get("deleted")]
            removed = len(snapshot) - len(kept)
            if not removed:
                return 0
            self._data[table] = kept
            self._persist({table: snapshot})
        self._audit("purge", table, None, None, {"removed": removed}, actor)
        return removed

    def stats(self) -> dict[str, int]:
        counts = {}
        for name in self._specs:
            with self._locks[name]:
                counts[name] = sum(1 for r in self._data[name] if not r.get("deleted"))
        return counts

    def export(self) -> dict[str, list[Record]]:
        """Every table including soft-deleted records."""
        out = {}
        for name in self._specs:
            with self._locks[name]:
                out[name] = copy.deepcopy(self._data[name])
        return out

    def import_tables(self, tables: Mapping[str, Any], actor: AuditContext | None = None) -> dict[str, int]:
        """Replaces the given tables wholesale; all are validated before anything changes."""
        if not isinstance(tables, Mapping) or not tables:
            raise ValidationError("Import payload must map table names to record lists.")
        for name, rows in tables.items():
            self._spec(name)
            if not isinstance(rows, list):
                raise ValidationError(f"Table '{name}' must be a list of records.")
            seen: set[str] = set()
            for row in rows:
                if not isinstance(row, dict) or not isinstance(row.get("id"), str):
                    raise ValidationError(f"Every record in '{name}' needs a string 'id'.")
                if row["id"] in seen:
                    raise Conflict(f"Duplicate id '{row['id']}' in '{name}'.")
                seen.add(row["id"])
        names = sorted(tables)
        with self._lock_tables(names):
            snapshots = {name: self._data[name] for name in names}
            for name in names:
                self._data[name] = copy.deepcopy(tables[name])
            self._persist(snapshots)
        counts = {name: len(tables[name]) for name in names}
        self._audit("import", names[0] if len(names) == 1 else "*", None, None, counts, actor)
        return counts

    def reset(self, actor: AuditContext | None = None) -> None:
        """Empties every table except the audit trail."""
        names = [n for n in self._specs if n != AUDIT_TABLE]
        with self._lock_tables(names):
            snapshots = {name: self._data[name] for name in names}
            for name in names:
                self._data[name] = []
            self._persist(snapshots)
        self._audit("reset", "*", None, None, None, actor)
